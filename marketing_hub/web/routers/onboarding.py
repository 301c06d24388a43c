"""Onboarding API: UI event handlers for the workflow and connection handshake."""

from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from marketing_hub.connections.handshake import HandshakeError, HandshakeLimitReached
from marketing_hub.gateway import operations
from marketing_hub.gateway.errors import RemoteError
from marketing_hub.web.deps import (
    clear_progress,
    get_controller,
    get_surface,
    progress_events,
    start_progress,
)
from marketing_hub.workflow.controller import WorkflowController, WorkflowLocked, WorkflowStepError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/onboarding", tags=["onboarding"])


class PlatformUpdate(BaseModel):
    has_account: bool | None = None
    url: str | None = None


class ConnectRequest(BaseModel):
    platforms: list[str] | None = None


@router.get("/{user_id}")
async def get_state(controller: WorkflowController = Depends(get_controller)):
    return controller.snapshot()


@router.put("/{user_id}/platforms/{platform}")
async def update_platform(
    platform: str,
    update: PlatformUpdate,
    controller: WorkflowController = Depends(get_controller),
):
    try:
        if "has_account" in update.model_fields_set:
            controller.set_has_account(platform, update.has_account)
        if update.url is not None:
            controller.set_url(platform, update.url)
    except WorkflowLocked as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    except KeyError:
        return JSONResponse({"error": f"Unknown platform: {platform}"}, status_code=404)
    return controller.snapshot()


@router.post("/{user_id}/advance")
async def advance(user_id: str, controller: WorkflowController = Depends(get_controller)):
    step = controller.step
    if controller.is_last_step or not controller.can_proceed():
        return JSONResponse(
            {"error": "Cannot proceed from this step yet", "state": controller.snapshot()},
            status_code=409,
        )

    events = start_progress(user_id, step.index)
    try:
        await controller.advance()
    except WorkflowStepError as e:
        events.append({"user_id": user_id, "progress_pct": 0, "step": step.index,
                       "progress_msg": str(e), "status": "failed"})
        return JSONResponse({"error": str(e), "state": controller.snapshot()}, status_code=502)

    events.append({"user_id": user_id, "progress_pct": 100, "step": step.index,
                   "progress_msg": step.label, "status": "completed"})
    return controller.snapshot()


@router.post("/{user_id}/back")
async def back(controller: WorkflowController = Depends(get_controller)):
    try:
        controller.back()
    except WorkflowLocked as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    return controller.snapshot()


@router.post("/{user_id}/reset")
async def reset(user_id: str, controller: WorkflowController = Depends(get_controller)):
    try:
        controller.reset()
    except WorkflowLocked as e:
        return JSONResponse({"error": str(e)}, status_code=409)
    clear_progress(user_id)
    return controller.snapshot()


@router.post("/{user_id}/finish")
async def finish(controller: WorkflowController = Depends(get_controller)):
    try:
        done = await controller.finish()
    except WorkflowStepError as e:
        return JSONResponse({"error": str(e)}, status_code=502)
    if not done:
        return JSONResponse({"error": "Workflow is not on its final step"}, status_code=409)
    return controller.snapshot()


@router.get("/{user_id}/progress")
async def progress_stream(
    user_id: str,
    step: int | None = None,
    controller: WorkflowController = Depends(get_controller),
):
    """SSE stream of executor progress for one step (default: the current one).

    Ends with the step's completed/failed event. A new run of the same step
    restarts the stream from that run's first event.
    """
    step_index = controller.session.step_index if step is None else step

    async def event_generator():
        current = None
        last_idx = 0
        while True:
            events = progress_events(user_id, step_index)
            if events is not current:
                current, last_idx = events, 0
            while last_idx < len(events):
                evt = events[last_idx]
                yield {"event": "progress", "data": json.dumps(evt)}
                last_idx += 1
                if evt.get("status") in ("completed", "failed"):
                    return
            await asyncio.sleep(0.5)

    return EventSourceResponse(event_generator())


@router.post("/{user_id}/connect")
async def connect(
    req: ConnectRequest | None = None,
    controller: WorkflowController = Depends(get_controller),
):
    platforms = req.platforms if req else None
    try:
        hs = await controller.connect(platforms)
    except HandshakeLimitReached as e:
        return JSONResponse({"error": str(e), "limit_reached": True}, status_code=429)
    except HandshakeError as e:
        return JSONResponse({"error": str(e)}, status_code=502)

    surface = get_surface(controller.session.user_id)
    return {
        "handshake": hs.as_dict(),
        "surface": surface.as_dict() if surface and hs.access_url and not hs.fallback_url else None,
    }


@router.get("/{user_id}/surface")
async def surface_state(user_id: str):
    surface = get_surface(user_id)
    if surface is None:
        return JSONResponse({"error": "No connection window"}, status_code=404)
    return surface.as_dict()


@router.post("/{user_id}/surface/closed")
async def surface_closed(user_id: str):
    """The client reports that the user closed the connection window."""
    surface = get_surface(user_id)
    if surface is None:
        return JSONResponse({"error": "No connection window"}, status_code=404)
    surface.mark_closed()
    return surface.as_dict()


@router.post("/{user_id}/refresh")
async def refresh(controller: WorkflowController = Depends(get_controller)):
    await controller.refresh_connections()
    return controller.snapshot()


@router.get("/{user_id}/pages/{platform}")
async def list_pages(platform: str, controller: WorkflowController = Depends(get_controller)):
    """Facebook/LinkedIn pages available to the connected account."""
    username = controller.session.company_username
    if not username:
        return JSONResponse({"error": "No connected profile yet"}, status_code=409)
    listers = {
        "facebook": operations.get_facebook_pages,
        "linkedin": operations.get_linkedin_pages,
    }
    lister = listers.get(platform)
    if lister is None:
        return JSONResponse({"error": f"Page listing not available for {platform}"}, status_code=404)
    try:
        pages = await lister(controller.gateway, username)
    except RemoteError as e:
        return JSONResponse({"error": str(e)}, status_code=502)
    return {"platform": platform, "pages": pages}
