"""Sequential per-platform task runner with failure isolation."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Callable

from marketing_hub.gateway.client import Gateway
from marketing_hub.ingest.platforms import Handler, PLATFORM_HANDLERS, get_handler
from marketing_hub.logs import console
from marketing_hub.models import Phase, PlatformConnection, PlatformTaskResult, WorkflowSession

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


class PlatformTaskExecutor:
    """Runs one task per connected platform, one platform at a time.

    Platforms are never processed concurrently, and the "now processing X"
    sequence follows list order. A failing platform yields a failed result
    and the batch moves on.
    """

    def __init__(
        self,
        gateway: Gateway,
        delay: float = 0.5,
        handlers: dict[str, dict[Phase, Handler]] | None = None,
    ):
        self.gateway = gateway
        self.delay = delay
        self.handlers = PLATFORM_HANDLERS if handlers is None else handlers
        self._sequence = itertools.count(1)

    async def run_all(
        self,
        connections: list[PlatformConnection],
        phase: Phase,
        session: WorkflowSession,
        progress_callback: ProgressCallback | None = None,
    ) -> list[PlatformTaskResult]:
        """Attempt every connected platform in list order and return all results."""
        # Snapshot which platforms count as connected before any work starts
        targets = [conn.model_copy() for conn in connections if conn.connected]
        if not targets:
            logger.info("No connected platforms for %s phase", phase)
            return []

        total = len(targets)
        results: list[PlatformTaskResult] = []
        console.print(f"\n[bold]{phase.title()}: {total} platform(s)[/bold]")

        for i, conn in enumerate(targets):
            _report(progress_callback, int(i * 100 / total), f"Processing {conn.label}...")
            console.print(f"  [{i+1}/{total}] {conn.label}...", end=" ")

            result = await self._run_one(conn, phase, session)
            results.append(result)

            if result.success:
                console.print(f"[green]{result.items_processed} items[/green]")
            else:
                console.print(f"[red]FAILED: {result.error}[/red]")

            if i < total - 1 and self.delay > 0:
                await asyncio.sleep(self.delay)

        ok = sum(1 for r in results if r.success)
        _report(progress_callback, 100, f"{phase.title()} finished: {ok}/{total} platforms")
        logger.info("%s phase finished: %d/%d platforms succeeded", phase, ok, total)
        return results

    async def _run_one(
        self,
        conn: PlatformConnection,
        phase: Phase,
        session: WorkflowSession,
    ) -> PlatformTaskResult:
        sequence = next(self._sequence)
        try:
            handler = self._lookup(conn.platform, phase)
            output = await handler(self.gateway, conn, session)
            return PlatformTaskResult(
                platform=conn.platform,
                phase=phase,
                sequence=sequence,
                success=True,
                items_processed=output.items_processed,
                insights_generated=output.insights_generated,
                actionables_generated=output.actionables_generated,
                profile=output.profile,
                insights=output.insights,
                actionables=output.actionables,
            )
        except Exception as e:
            logger.error("%s %s failed: %s", conn.label, phase, e)
            return PlatformTaskResult(
                platform=conn.platform,
                phase=phase,
                sequence=sequence,
                success=False,
                error=str(e) or type(e).__name__,
            )

    def _lookup(self, platform: str, phase: Phase) -> Handler:
        return get_handler(platform, phase, self.handlers)


def _report(callback: ProgressCallback | None, pct: int, msg: str) -> None:
    if callback is None:
        return
    try:
        callback(pct, msg)
    except Exception as e:
        logger.debug("Progress callback error: %s", e)
