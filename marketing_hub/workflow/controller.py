"""Onboarding state machine: configure → ingest → analyze → complete."""

from __future__ import annotations

import logging
from typing import Any, Callable

from marketing_hub.connections.handshake import HandshakeError, HandshakeManager, HandshakeSession
from marketing_hub.db.repository import OnboardingRepository
from marketing_hub.gateway import operations
from marketing_hub.gateway.client import Gateway
from marketing_hub.gateway.errors import RemoteError
from marketing_hub.ingest.executor import PlatformTaskExecutor
from marketing_hub.models import (
    NO_ACCOUNT_MARKER,
    PlatformConnection,
    StepKind,
    WorkflowSession,
    WorkflowStep,
    build_steps,
    is_valid_url,
)

logger = logging.getLogger(__name__)

ProgressListener = Callable[[int, str], None]


class WorkflowStepError(Exception):
    """A step's own required action failed; the step index did not move."""

    def __init__(self, step: WorkflowStep, message: str):
        super().__init__(f"{step.label}: {message}")
        self.step = step


class WorkflowLocked(RuntimeError):
    """The request would change state that a running or finished step depends on."""


def create_session(user_id: str, platforms: list[str], company_name: str = "") -> WorkflowSession:
    return WorkflowSession(
        user_id=user_id,
        company_name=company_name,
        connections=[PlatformConnection(platform=p) for p in platforms],
    )


class WorkflowController:
    """Sequences the onboarding steps over an explicit WorkflowSession.

    Advancing from step i runs step i's action first and only moves the
    index once it has completed. Going back never has side effects.
    """

    def __init__(
        self,
        session: WorkflowSession,
        repository: OnboardingRepository,
        executor: PlatformTaskExecutor,
        gateway: Gateway,
        handshake: HandshakeManager | None = None,
        onboarding_version: str = "1.0",
        progress_listener: ProgressListener | None = None,
    ):
        self.session = session
        self.repository = repository
        self.executor = executor
        self.gateway = gateway
        self.handshake = handshake
        self.onboarding_version = onboarding_version
        self.progress_listener = progress_listener
        self.steps: tuple[WorkflowStep, ...] = build_steps()

        if handshake is not None and handshake.on_closed is None:
            handshake.on_closed = self._on_handshake_closed

    # --- Navigation ---

    @property
    def step(self) -> WorkflowStep:
        return self.steps[self.session.step_index]

    @property
    def is_last_step(self) -> bool:
        return self.session.step_index == len(self.steps) - 1

    def step_completed(self, index: int) -> bool:
        if index == len(self.steps) - 1:
            return self.session.completed
        return index < self.session.step_index

    def can_proceed(self) -> bool:
        """Phase-specific readiness, independent of any previous action's outcome."""
        if self.session.running:
            return False
        if self.step.kind == StepKind.CONFIGURE:
            return any(c.has_account is not None for c in self.session.connections)
        return True

    async def advance(self) -> bool:
        """Run the current step's action, then move forward one step.

        Returns False when forward navigation is gated or already at the end.
        Raises WorkflowStepError if the action itself failed.
        """
        if self.is_last_step or not self.can_proceed():
            return False

        step = self.step
        self.session.running = True
        self.session.last_error = None
        logger.info("Running %s step for %s", step.kind.value, self.session.user_id)
        try:
            await self._run_action(step)
        except Exception as e:
            message = str(e) or type(e).__name__
            self.session.last_error = message
            logger.error("%s step failed for %s: %s", step.kind.value, self.session.user_id, message)
            raise WorkflowStepError(step, message) from e
        finally:
            self.session.running = False
            self.session.current_task = ""

        self.session.step_index = min(step.index + 1, len(self.steps) - 1)
        return True

    def back(self) -> int:
        if self.session.running:
            raise WorkflowLocked("Cannot go back while a step is running")
        self.session.step_index = max(self.session.step_index - 1, 0)
        return self.session.step_index

    def reset(self) -> None:
        """Restart the workflow; the platform configuration is kept."""
        if self.session.running:
            raise WorkflowLocked("Cannot reset while a step is running")
        if self.handshake is not None:
            self.handshake.stop()
        self.session.step_index = 0
        self.session.results = []
        self.session.insights = []
        self.session.actionables = []
        self.session.running = False
        self.session.current_task = ""
        self.session.last_error = None
        self.session.completed = False
        self.session.ingested_platforms = []

    async def finish(self) -> bool:
        """Record the completion marker. Only valid on the final step."""
        if not self.is_last_step:
            return False
        try:
            newly = self.repository.mark_onboarding_completed(
                self.session.user_id, self.onboarding_version,
            )
        except Exception as e:
            self.session.last_error = str(e)
            raise WorkflowStepError(self.step, f"Could not record completion: {e}") from e
        self.session.completed = True
        if newly:
            logger.info("Onboarding %s completed for %s", self.onboarding_version, self.session.user_id)
        return True

    # --- Platform configuration (user input) ---

    def load_existing(self) -> None:
        """Seed connections and profile username from storage."""
        company = self.repository.get_company(self.session.user_id)
        if company:
            self.session.company_name = self.session.company_name or company["name"]
            self.session.company_username = company["company_username"] or self.session.company_username

        stored = self.repository.get_platform_configs(self.session.user_id)
        for conn in self.session.connections:
            record = stored.get(conn.platform)
            if not record:
                continue
            url = record["url"]
            if url == NO_ACCOUNT_MARKER or record["has_account"] is False:
                conn.has_account = False
                conn.url = ""
            elif url:
                conn.url = url
                conn.has_account = True

    def _require_editable(self) -> None:
        # Ingest and analyze read the answers given on the first step
        if self.session.running or self.session.step_index > 0:
            raise WorkflowLocked("Platform configuration can only change on the first step")

    def set_has_account(self, platform: str, has_account: bool | None) -> PlatformConnection:
        self._require_editable()
        conn = self.session.connection(platform)
        conn.has_account = has_account
        if has_account is not True:
            conn.url = ""
        return conn

    def set_url(self, platform: str, url: str) -> PlatformConnection:
        self._require_editable()
        conn = self.session.connection(platform)
        conn.url = url.strip()
        if conn.url:
            conn.has_account = True
        return conn

    # --- External connection handshake ---

    async def connect(self, platforms: list[str] | None = None) -> HandshakeSession:
        if self.handshake is None:
            raise RuntimeError("No handshake manager configured")
        try:
            hs = await self.handshake.start_handshake(
                self.session.company_username or None, platforms,
            )
        except HandshakeError as e:
            self.session.last_error = str(e)
            raise
        if hs.company_username and hs.company_username != self.session.company_username:
            self.session.company_username = hs.company_username
            self.repository.upsert_company(
                self.session.user_id, self.session.company_name, hs.company_username,
            )
        return hs

    async def refresh_connections(self) -> bool:
        """Re-query the provider for connected accounts and update URLs."""
        username = self.session.company_username
        if not username:
            return False
        try:
            data = await operations.get_connections(self.gateway, username)
        except RemoteError as e:
            logger.warning("Could not refresh connections: %s", e)
            return False

        accounts = data.get("connections") or data.get("accounts") or []
        updated = 0
        for account in accounts:
            if not isinstance(account, dict) or not account.get("is_connected", True):
                continue
            url = account.get("profile_url") or account.get("url") or ""
            platform = str(account.get("platform", "")).lower()
            try:
                conn = self.session.connection(platform)
            except KeyError:
                continue
            if is_valid_url(url):
                conn.url = url
                conn.has_account = True
                updated += 1
        logger.info("Connections refreshed for %s: %d updated", username, updated)
        return True

    async def _on_handshake_closed(self, hs: HandshakeSession) -> None:
        if hs.company_username:
            self.session.company_username = hs.company_username
        await self.refresh_connections()

    def close(self) -> None:
        if self.handshake is not None:
            self.handshake.stop()

    # --- Step actions ---

    async def _run_action(self, step: WorkflowStep) -> None:
        if step.kind == StepKind.CONFIGURE:
            self._persist_configuration()
        elif step.kind == StepKind.INGEST:
            results = await self.executor.run_all(
                self.session.connections, "ingest", self.session, self._on_progress,
            )
            self.session.results.extend(results)
            self.session.ingested_platforms = [r.platform for r in results if r.success]
        elif step.kind == StepKind.ANALYZE:
            await self._analyze_and_consolidate()

    def _persist_configuration(self) -> None:
        self.repository.upsert_company(
            self.session.user_id, self.session.company_name, self.session.company_username or None,
        )
        saved = self.repository.save_platform_configs(self.session.user_id, self.session.connections)
        logger.info("Configuration saved (%d platforms)", saved)

    async def _analyze_and_consolidate(self) -> None:
        ingested = set(self.session.ingested_platforms)
        targets = [c for c in self.session.connections if c.platform in ingested]
        skipped = [c.label for c in self.session.connections if c.connected and c.platform not in ingested]
        if skipped:
            logger.info("Not analyzing %s: no successful ingest", ", ".join(skipped))

        results = await self.executor.run_all(
            targets, "analyze", self.session, self._on_progress,
        )
        self.session.results.extend(results)

        user_id = self.session.user_id
        for result in results:
            if not result.success:
                continue
            self.repository.append_insights(user_id, result.platform, result.insights)
            self.repository.append_actionables(user_id, result.platform, result.actionables)

        self._on_progress(95, "Generating cross-platform business insights...")
        try:
            await operations.generate_business_insights(self.gateway, user_id)
        except RemoteError as e:
            logger.warning("Business insights generation failed: %s", e)

        self.session.insights = self.repository.latest_insights(user_id)
        self.session.actionables = self.repository.pending_actionables(user_id)

    def _on_progress(self, pct: int, msg: str) -> None:
        self.session.current_task = msg
        if self.progress_listener is None:
            return
        try:
            self.progress_listener(pct, msg)
        except Exception as e:
            logger.debug("Progress listener error: %s", e)

    def snapshot(self) -> dict[str, Any]:
        data = self.session.model_dump(mode="json")
        data["steps"] = [
            {**step.model_dump(mode="json"), "completed": self.step_completed(step.index)}
            for step in self.steps
        ]
        data["can_proceed"] = self.can_proceed()
        if self.handshake is not None and self.handshake.active is not None:
            data["handshake"] = self.handshake.active.as_dict()
        return data
