"""Pydantic data models for the onboarding orchestrator."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, computed_field

# Stored in place of a URL when the user confirmed they have no account
NO_ACCOUNT_MARKER = "No tiene"

PLATFORM_LABELS = {
    "linkedin": "LinkedIn",
    "instagram": "Instagram",
    "facebook": "Facebook",
    "tiktok": "TikTok",
    "youtube": "YouTube",
    "twitter": "Twitter",
}

Phase = Literal["ingest", "analyze"]


def platform_label(platform: str) -> str:
    return PLATFORM_LABELS.get(platform, platform.title())


def is_valid_url(url: str | None) -> bool:
    """Structural check only: a scheme and a host must both be present."""
    if not url or not url.strip() or url == NO_ACCOUNT_MARKER:
        return False
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return False
    return bool(parsed.scheme and parsed.netloc)


# ---------------------------------------------------------------------------
# Workflow steps
# ---------------------------------------------------------------------------

class StepKind(str, Enum):
    CONFIGURE = "configure"
    INGEST = "ingest"
    ANALYZE = "analyze"
    COMPLETE = "complete"


class WorkflowStep(BaseModel):
    """One stage of the onboarding workflow."""
    model_config = ConfigDict(frozen=True)

    index: int
    kind: StepKind
    label: str


def build_steps() -> tuple[WorkflowStep, ...]:
    """The fixed, ordered step sequence."""
    labels = {
        StepKind.CONFIGURE: "Configure social platforms",
        StepKind.INGEST: "Collect platform data",
        StepKind.ANALYZE: "Consolidated insights",
        StepKind.COMPLETE: "Ready to grow",
    }
    return tuple(
        WorkflowStep(index=i, kind=kind, label=labels[kind])
        for i, kind in enumerate(StepKind)
    )


# ---------------------------------------------------------------------------
# Platform connections and task results
# ---------------------------------------------------------------------------

class PlatformConnection(BaseModel):
    """One external platform the user may or may not use.

    ``has_account`` is tri-state: None (not answered yet), True, False.
    """
    platform: str
    url: str = ""
    has_account: bool | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def connected(self) -> bool:
        return is_valid_url(self.url)

    @property
    def label(self) -> str:
        return platform_label(self.platform)


class PlatformTaskResult(BaseModel):
    """Outcome of one ingest or analyze attempt for one platform. Immutable."""
    model_config = ConfigDict(frozen=True)

    platform: str
    phase: Phase
    sequence: int
    success: bool
    items_processed: int = 0
    insights_generated: int = 0
    actionables_generated: int = 0
    profile: dict[str, Any] | None = None
    insights: list[dict[str, Any]] = Field(default_factory=list)
    actionables: list[dict[str, Any]] = Field(default_factory=list)
    error: str | None = None


# ---------------------------------------------------------------------------
# Job watching
# ---------------------------------------------------------------------------

class JobStatus(str, Enum):
    PENDING = "pending"
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)


# Coarse UX signal, not a measurement
JOB_PROGRESS = {
    JobStatus.PENDING: 10,
    JobStatus.QUEUED: 25,
    JobStatus.RUNNING: 60,
    JobStatus.DONE: 100,
    JobStatus.FAILED: 0,
}


class JobWatch(BaseModel):
    """Snapshot of one remote job being polled."""
    model_config = ConfigDict(frozen=True)

    job_id: str
    status: JobStatus = JobStatus.PENDING
    progress: int = JOB_PROGRESS[JobStatus.PENDING]
    started_at: datetime
    deadline: datetime
    elapsed: float = 0.0
    checks: int = 0
    error: str | None = None
    data: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Session context
# ---------------------------------------------------------------------------

class WorkflowSession(BaseModel):
    """Everything one onboarding run knows, passed explicitly between components."""
    user_id: str
    company_name: str = ""
    company_username: str = ""
    step_index: int = 0
    connections: list[PlatformConnection] = Field(default_factory=list)
    results: list[PlatformTaskResult] = Field(default_factory=list)
    insights: list[dict[str, Any]] = Field(default_factory=list)
    actionables: list[dict[str, Any]] = Field(default_factory=list)
    running: bool = False
    current_task: str = ""
    last_error: str | None = None
    completed: bool = False
    # Platforms whose ingest succeeded; the analyze pass runs over these only
    ingested_platforms: list[str] = Field(default_factory=list)

    def connection(self, platform: str) -> PlatformConnection:
        for conn in self.connections:
            if conn.platform == platform:
                return conn
        raise KeyError(f"Unknown platform: {platform}")
