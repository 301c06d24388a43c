"""Dependency injection for FastAPI: shared config, database, gateway and per-user sessions."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from marketing_hub.config import Config, load_config
from marketing_hub.connections.handshake import HandshakeManager
from marketing_hub.connections.surface import RelayedSurface
from marketing_hub.db.database import Database
from marketing_hub.db.repository import OnboardingRepository
from marketing_hub.gateway.client import Gateway, RemoteCallGateway
from marketing_hub.ingest.executor import PlatformTaskExecutor
from marketing_hub.workflow.controller import WorkflowController, create_session


@lru_cache
def get_config() -> Config:
    return load_config()


_db_instance: Database | None = None
_gateway_instance: RemoteCallGateway | None = None

# Per-user in-process state (keyed by user_id)
_controllers: dict[str, WorkflowController] = {}
_surfaces: dict[str, RelayedSurface] = {}
# Progress events per (user_id, step index); each advance starts a fresh list
_progress: dict[tuple[str, int], list[dict]] = {}


def get_db() -> Database:
    global _db_instance
    if _db_instance is None or not _db_instance.connected:
        cfg = get_config()
        _db_instance = Database(cfg.db_path)
        _db_instance.connect()
        from marketing_hub.db.migrations import run_migrations
        run_migrations(_db_instance)
    return _db_instance


def get_gateway() -> Gateway:
    global _gateway_instance
    if _gateway_instance is None:
        cfg = get_config()
        _gateway_instance = RemoteCallGateway(
            cfg.gateway_url, cfg.gateway_api_key, timeout=cfg.gateway_timeout,
        )
    return _gateway_instance


def get_controller(
    user_id: str,
    config: Config = Depends(get_config),
    db: Database = Depends(get_db),
    gateway: Gateway = Depends(get_gateway),
) -> WorkflowController:
    """Return this user's controller, creating and seeding it on first use."""
    controller = _controllers.get(user_id)
    if controller is not None:
        return controller

    def open_surface() -> RelayedSurface:
        surface = RelayedSurface()
        _surfaces[user_id] = surface
        return surface

    def on_progress(pct: int, msg: str) -> None:
        progress_events(user_id, controller.session.step_index).append({
            "user_id": user_id,
            "progress_pct": pct,
            "progress_msg": msg,
            "status": "running",
            "step": controller.session.step_index,
        })

    controller = WorkflowController(
        session=create_session(user_id, config.onboarding_platforms),
        repository=OnboardingRepository(db),
        executor=PlatformTaskExecutor(gateway, delay=config.platform_delay),
        gateway=gateway,
        handshake=HandshakeManager(
            gateway,
            open_surface,
            redirect_url=config.handshake_redirect_url,
            platforms=config.handshake_platforms,
            check_interval=config.handshake_check_interval,
        ),
        onboarding_version=config.onboarding_version,
        progress_listener=on_progress,
    )
    controller.load_existing()
    _controllers[user_id] = controller
    return controller


def get_surface(user_id: str) -> RelayedSurface | None:
    return _surfaces.get(user_id)


def progress_events(user_id: str, step_index: int) -> list[dict]:
    return _progress.setdefault((user_id, step_index), [])


def start_progress(user_id: str, step_index: int) -> list[dict]:
    """Replace the event list for a step that is about to run."""
    events: list[dict] = []
    _progress[(user_id, step_index)] = events
    return events


def clear_progress(user_id: str) -> None:
    for key in [k for k in _progress if k[0] == user_id]:
        del _progress[key]


async def close_all() -> None:
    global _db_instance, _gateway_instance
    for controller in _controllers.values():
        controller.close()
    _controllers.clear()
    _surfaces.clear()
    _progress.clear()
    if _gateway_instance is not None:
        await _gateway_instance.close()
        _gateway_instance = None
    if _db_instance:
        _db_instance.close()
        _db_instance = None
