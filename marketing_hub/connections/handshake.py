"""External authorization handshake: open surface, get credential, watch for close."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from marketing_hub.connections.surface import ExternalSurface, SurfaceOpener
from marketing_hub.gateway import operations
from marketing_hub.gateway.client import Gateway
from marketing_hub.gateway.errors import ErrorKind, RemoteError

logger = logging.getLogger(__name__)


class HandshakeState(str, Enum):
    IDLE = "idle"
    OPENING = "opening"
    AWAITING_CREDENTIAL = "awaiting_credential"
    AWAITING_COMPLETION = "awaiting_completion"
    CLOSED = "closed"


class HandshakeError(Exception):
    """The handshake attempt ended without reaching the external surface."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.UNKNOWN):
        super().__init__(message)
        self.kind = kind


class HandshakeLimitReached(HandshakeError):
    """The provider refused to create or authorize another profile."""

    def __init__(self, message: str):
        super().__init__(message, ErrorKind.REJECTED)


@dataclass
class HandshakeSession:
    """One in-flight authorization attempt.

    The surface handle is private to the manager; everyone else reads
    ``state``, ``company_username`` and the URLs.
    """
    company_username: str = ""
    state: HandshakeState = HandshakeState.IDLE
    access_url: str = ""
    fallback_url: str = ""
    error: str | None = None
    _surface: ExternalSurface | None = field(default=None, repr=False)

    def as_dict(self) -> dict[str, Any]:
        return {
            "company_username": self.company_username,
            "state": self.state.value,
            "access_url": self.access_url,
            "fallback_url": self.fallback_url,
            "error": self.error,
        }


ClosedCallback = Callable[[HandshakeSession], "Awaitable[None] | None"]


class HandshakeManager:
    """Drives one handshake at a time; a new one supersedes the previous."""

    def __init__(
        self,
        gateway: Gateway,
        open_surface: SurfaceOpener,
        on_closed: ClosedCallback | None = None,
        redirect_url: str = "",
        platforms: list[str] | None = None,
        check_interval: float = 1.0,
    ):
        self.gateway = gateway
        self.open_surface = open_surface
        self.on_closed = on_closed
        self.redirect_url = redirect_url
        self.platforms = platforms or ["tiktok", "instagram", "linkedin", "facebook", "youtube", "twitter"]
        self.check_interval = check_interval
        self.active: HandshakeSession | None = None
        self._watch_task: asyncio.Task | None = None

    @property
    def watching(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    async def start_handshake(
        self,
        session_username: str | None = None,
        platforms: list[str] | None = None,
    ) -> HandshakeSession:
        """Open the surface, obtain an access URL and start watching for close.

        Raises HandshakeError (HandshakeLimitReached for quota refusals); the
        surface is closed before the error propagates.
        """
        self.stop()

        # Open before the first await: deferred opening gets blocked
        session = HandshakeSession(
            company_username=session_username or "",
            state=HandshakeState.OPENING,
        )
        self.active = session
        surface = self.open_surface()
        blocked = surface is None or not surface.is_open()
        session._surface = None if blocked else surface
        if blocked:
            logger.warning("External surface could not be opened, will fall back to redirect")

        session.state = HandshakeState.AWAITING_CREDENTIAL
        try:
            if not session.company_username:
                session.company_username = await self._init_profile()
            data = await self._request_credential(session, platforms or self.platforms)
        except HandshakeError as e:
            self._fail(session, str(e))
            raise
        except RemoteError as e:
            self._fail(session, str(e))
            raise HandshakeError(f"Could not start connection flow: {e}", e.kind) from e
        except Exception as e:
            self._fail(session, str(e))
            raise

        if self.active is not session:
            # A newer attempt replaced this one while the credential was pending
            logger.info("Handshake superseded before completion")
            return session

        access_url = data.get("access_url") or ""
        if not access_url:
            self._fail(session, "No access URL received")
            raise HandshakeError("No access URL received")
        session.access_url = access_url

        if blocked:
            session.fallback_url = access_url
            session.state = HandshakeState.CLOSED
            return session

        surface.navigate(access_url)
        surface.focus()
        session.state = HandshakeState.AWAITING_COMPLETION
        logger.info("Handshake for %s awaiting completion", session.company_username)
        self._watch_task = asyncio.create_task(
            self._watch(session), name="handshake-surface-watch",
        )
        return session

    def stop(self) -> None:
        """Supersede or tear down the active attempt without notifying anyone."""
        if self._watch_task is not None and not self._watch_task.done():
            self._watch_task.cancel()
        self._watch_task = None

        session = self.active
        if session is not None and session.state != HandshakeState.CLOSED:
            logger.info("Superseding handshake in state %s", session.state.value)
            self._close_surface(session)
            session.state = HandshakeState.CLOSED
        self.active = None

    async def _init_profile(self) -> str:
        try:
            data = await operations.init_profile(self.gateway)
        except RemoteError as e:
            if e.kind == ErrorKind.REJECTED:
                raise HandshakeLimitReached(f"Profile limit reached: {e.message}") from e
            raise

        username = data.get("companyUsername") or ""
        if not username:
            raise HandshakeError("Profile initialization returned no username")

        try:
            await operations.get_connections(self.gateway, username)
        except RemoteError as e:
            logger.warning("Could not sync connections after init_profile: %s", e)
        return username

    async def _request_credential(
        self,
        session: HandshakeSession,
        platforms: list[str],
    ) -> dict[str, Any]:
        """generate_jwt, with exactly one self-healing retry on a missing profile."""
        try:
            return await operations.generate_jwt(
                self.gateway, session.company_username, self.redirect_url, platforms,
            )
        except RemoteError as e:
            if e.kind == ErrorKind.REJECTED:
                raise HandshakeLimitReached(f"Connection limit reached: {e.message}") from e
            if e.kind != ErrorKind.PRECONDITION_MISSING:
                raise
            logger.info("generate_jwt needs a profile (%s), initializing and retrying once", e)

        session.company_username = await self._init_profile()
        try:
            return await operations.generate_jwt(
                self.gateway, session.company_username, self.redirect_url, platforms,
            )
        except RemoteError as e:
            if e.kind == ErrorKind.REJECTED:
                raise HandshakeLimitReached(f"Connection limit reached: {e.message}") from e
            raise HandshakeError(f"Access credential request failed after retry: {e}", e.kind) from e

    async def _watch(self, session: HandshakeSession) -> None:
        surface = session._surface
        while True:
            await asyncio.sleep(self.check_interval)
            if self.active is not session:
                return
            if surface is None or not surface.is_open():
                break

        session.state = HandshakeState.CLOSED
        session._surface = None
        self._watch_task = None
        logger.info("External surface closed for %s, refreshing connections", session.company_username)

        if self.on_closed is None:
            return
        try:
            result = self.on_closed(session)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Connection refresh after handshake failed")

    def _fail(self, session: HandshakeSession, message: str) -> None:
        logger.error("Handshake failed: %s", message)
        self._close_surface(session)
        session.error = message
        session.state = HandshakeState.CLOSED

    @staticmethod
    def _close_surface(session: HandshakeSession) -> None:
        surface = session._surface
        session._surface = None
        if surface is not None and surface.is_open():
            surface.close()
