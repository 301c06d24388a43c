"""Generic watcher for asynchronous remote jobs: poll until terminal or deadline."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx

from marketing_hub.gateway.errors import ErrorKind, RemoteError
from marketing_hub.models import JOB_PROGRESS, JobStatus, JobWatch

logger = logging.getLogger(__name__)

CheckFn = Callable[[str], Awaitable[dict[str, Any]]]

# Provider wording → canonical status
_STATUS_ALIASES = {
    "completed": JobStatus.DONE,
    "complete": JobStatus.DONE,
    "success": JobStatus.DONE,
    "processing": JobStatus.RUNNING,
    "in_progress": JobStatus.RUNNING,
    "error": JobStatus.FAILED,
    "cancelled": JobStatus.FAILED,
    "expired": JobStatus.FAILED,
    "scheduled": JobStatus.QUEUED,
}


def parse_status(data: dict[str, Any] | None) -> JobStatus:
    """Read the remote status; anything unrecognised or absent is pending.

    The status may sit at the top level or one level down, as in
    ``{"success": true, "status": {"status": "completed", ...}}``.
    """
    if not data:
        return JobStatus.PENDING
    raw = data.get("status")
    if isinstance(raw, dict):
        raw = raw.get("status")
    if not isinstance(raw, str):
        return JobStatus.PENDING
    raw = raw.strip().lower()
    try:
        return JobStatus(raw)
    except ValueError:
        return _STATUS_ALIASES.get(raw, JobStatus.PENDING)


class JobWatchHandle:
    """Owner's view of one running watch.

    Snapshots are pushed onto a queue; ``wait()`` resolves to the single
    terminal snapshot, or None if the watch was stopped first.
    """

    def __init__(self, job_id: str):
        self.job_id = job_id
        self.latest: JobWatch | None = None
        self._queue: asyncio.Queue[JobWatch | None] = asyncio.Queue()
        self._result: asyncio.Future[JobWatch | None] = asyncio.get_running_loop().create_future()
        self._task: asyncio.Task | None = None
        self._finished = False

    @property
    def done(self) -> bool:
        return self._finished

    @property
    def cancelled(self) -> bool:
        return self._finished and self._result.result() is None

    def _emit(self, snapshot: JobWatch) -> None:
        self.latest = snapshot
        self._queue.put_nowait(snapshot)

    def _finish(self, terminal: JobWatch | None) -> None:
        if self._finished:
            return
        self._finished = True
        self._queue.put_nowait(None)
        if not self._result.done():
            self._result.set_result(terminal)

    def stop(self) -> None:
        """Cancel the watch. No-op once the watch has ended."""
        if self._finished:
            return
        logger.debug("Stopping watch for job %s", self.job_id)
        if self._task and not self._task.done():
            self._task.cancel()
        self._finish(None)

    async def wait(self) -> JobWatch | None:
        return await asyncio.shield(self._result)

    async def snapshots(self) -> AsyncIterator[JobWatch]:
        """Yield snapshots in emission order until the watch ends."""
        while True:
            item = await self._queue.get()
            if item is None:
                return
            yield item


class JobPoller:
    """Polls one job at a time on behalf of a single owner.

    Starting a new watch replaces (and cancels) the previous one.
    """

    def __init__(
        self,
        interval: float = 5.0,
        timeout: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.interval = interval
        self.timeout = timeout
        self._clock = clock
        self._current: JobWatchHandle | None = None

    @property
    def current(self) -> JobWatchHandle | None:
        return self._current

    def watch(
        self,
        job_id: str,
        check_fn: CheckFn,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> JobWatchHandle:
        """Start polling ``job_id``: one immediate check, then every ``interval`` seconds."""
        if self._current is not None:
            self._current.stop()

        handle = JobWatchHandle(job_id)
        handle._task = asyncio.create_task(
            self._run(
                handle,
                check_fn,
                self.interval if interval is None else interval,
                self.timeout if timeout is None else timeout,
            ),
            name=f"job-watch-{job_id}",
        )
        self._current = handle
        return handle

    def stop(self) -> None:
        if self._current is not None:
            self._current.stop()

    async def _run(
        self,
        handle: JobWatchHandle,
        check_fn: CheckFn,
        interval: float,
        timeout: float,
    ) -> None:
        job_id = handle.job_id
        start = self._clock()
        started_at = datetime.now(timezone.utc)
        deadline = started_at + timedelta(seconds=timeout)
        checks = 0
        status = JobStatus.PENDING

        def snapshot(status: JobStatus, error: str | None = None,
                     data: dict[str, Any] | None = None) -> JobWatch:
            return JobWatch(
                job_id=job_id,
                status=status,
                progress=JOB_PROGRESS[status],
                started_at=started_at,
                deadline=deadline,
                elapsed=round(self._clock() - start, 3),
                checks=checks,
                error=error,
                data=data,
            )

        try:
            while True:
                remaining = timeout - (self._clock() - start)
                if remaining <= 0:
                    terminal = snapshot(
                        JobStatus.FAILED,
                        error=f"Timeout: job {job_id} did not finish within {timeout:g}s",
                    )
                    logger.warning("Job %s timed out after %d checks", job_id, checks)
                    handle._emit(terminal)
                    handle._finish(terminal)
                    return

                checks += 1
                try:
                    data = await asyncio.wait_for(check_fn(job_id), timeout=remaining)
                except asyncio.TimeoutError:
                    continue  # deadline reached mid-check; handled at loop top
                except (RemoteError, httpx.TransportError) as e:
                    if isinstance(e, httpx.TransportError) or e.kind == ErrorKind.TRANSPORT:
                        logger.warning("Status check %d for job %s failed, will retry: %s",
                                       checks, job_id, e)
                    else:
                        terminal = snapshot(JobStatus.FAILED, error=str(e))
                        logger.error("Job %s status check rejected: %s", job_id, e)
                        handle._emit(terminal)
                        handle._finish(terminal)
                        return
                except Exception as e:
                    terminal = snapshot(JobStatus.FAILED, error=f"Status check error: {e}")
                    logger.exception("Status check for job %s raised", job_id)
                    handle._emit(terminal)
                    handle._finish(terminal)
                    return
                else:
                    status = parse_status(data)
                    current = snapshot(status, data=data)
                    if status == JobStatus.FAILED:
                        current = current.model_copy(update={"error": _failure_message(data)})
                    handle._emit(current)
                    if status.is_terminal:
                        logger.info("Job %s finished: %s (%d checks)", job_id, status.value, checks)
                        handle._finish(current)
                        return

                remaining = timeout - (self._clock() - start)
                await asyncio.sleep(max(0.0, min(interval, remaining)))
        except asyncio.CancelledError:
            handle._finish(None)
            raise


def _failure_message(data: dict[str, Any] | None) -> str:
    if not data:
        return "Job failed"
    nested = data.get("status") if isinstance(data.get("status"), dict) else {}
    return str(data.get("error") or nested.get("error") or "Job failed")
