"""Job status API: stream JobWatch snapshots for a remote upload/job id."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sse_starlette.sse import EventSourceResponse

from marketing_hub.config import Config
from marketing_hub.gateway.client import Gateway
from marketing_hub.gateway.operations import upload_status_check
from marketing_hub.jobs.poller import JobPoller
from marketing_hub.web.deps import get_config, get_gateway

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("/{request_id}/stream")
async def job_stream(
    request_id: str,
    config: Config = Depends(get_config),
    gateway: Gateway = Depends(get_gateway),
):
    """SSE stream of snapshots until the job is terminal or times out."""
    async def event_generator():
        poller = JobPoller(interval=config.job_poll_interval, timeout=config.job_timeout)
        handle = poller.watch(request_id, upload_status_check(gateway))
        try:
            async for snapshot in handle.snapshots():
                yield {"event": "job", "data": snapshot.model_dump_json()}
        finally:
            # Client went away or the job ended; either way no timer is left behind
            handle.stop()

    return EventSourceResponse(event_generator())
