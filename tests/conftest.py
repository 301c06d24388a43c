"""Shared fakes: a scripted gateway, a fake external surface, an in-memory store."""

from __future__ import annotations

from typing import Any

import pytest

from marketing_hub.db.database import Database
from marketing_hub.db.migrations import run_migrations
from marketing_hub.db.repository import OnboardingRepository
from marketing_hub.models import PlatformConnection, WorkflowSession


class FakeGateway:
    """Returns queued responses per (operation, action); the last one repeats.

    A queued Exception instance is raised instead of returned.
    """

    def __init__(self, log: list[str] | None = None):
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.log = log
        self._responses: dict[tuple[str, str | None], list[Any]] = {}

    def on(self, operation: str, *results: Any, action: str | None = None) -> "FakeGateway":
        self._responses[(operation, action)] = list(results)
        return self

    async def invoke(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        action = payload.get("action")
        self.calls.append((operation, payload))
        if self.log is not None:
            self.log.append(f"invoke:{action or operation}")
        queue = self._responses.get((operation, action)) or self._responses.get((operation, None))
        if not queue:
            return {"success": True}
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, BaseException):
            raise result
        return result

    def actions(self) -> list[str]:
        return [payload.get("action") or op for op, payload in self.calls]

    def count(self, name: str) -> int:
        return self.actions().count(name)


class FakeSurface:
    def __init__(self, log: list[str] | None = None):
        self.open = True
        self.urls: list[str] = []
        self.focused = False
        self.close_calls = 0
        self.log = log

    def is_open(self) -> bool:
        return self.open

    def navigate(self, url: str) -> None:
        self.urls.append(url)

    def focus(self) -> None:
        self.focused = True

    def close(self) -> None:
        self.close_calls += 1
        self.open = False


class SurfaceFactory:
    """Opener that records every surface it hands out."""

    def __init__(self, log: list[str] | None = None, blocked: bool = False):
        self.surfaces: list[FakeSurface] = []
        self.log = log
        self.blocked = blocked

    def __call__(self) -> FakeSurface | None:
        if self.log is not None:
            self.log.append("open_surface")
        if self.blocked:
            return None
        surface = FakeSurface(self.log)
        self.surfaces.append(surface)
        return surface


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def db():
    database = Database(":memory:")
    database.connect()
    run_migrations(database)
    yield database
    database.close()


@pytest.fixture
def repo(db) -> OnboardingRepository:
    return OnboardingRepository(db)


@pytest.fixture
def session() -> WorkflowSession:
    return WorkflowSession(
        user_id="user-1",
        company_name="Acme",
        connections=[
            PlatformConnection(platform="linkedin"),
            PlatformConnection(platform="instagram"),
            PlatformConnection(platform="facebook"),
            PlatformConnection(platform="tiktok"),
        ],
    )
