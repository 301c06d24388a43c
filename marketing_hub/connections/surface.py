"""The detached authorization surface (a popup window, in a browser).

The orchestrator only needs open/closed state plus navigate and focus; the
platform layer injects whatever actually backs it.
"""

from __future__ import annotations

import uuid
from typing import Callable, Protocol

BLANK_URL = "about:blank"


class ExternalSurface(Protocol):
    def is_open(self) -> bool:
        ...

    def navigate(self, url: str) -> None:
        ...

    def focus(self) -> None:
        ...

    def close(self) -> None:
        ...


# Returns None when the surface could not be opened (e.g. a popup blocker)
SurfaceOpener = Callable[[], "ExternalSurface | None"]


class RelayedSurface:
    """Server-side mirror of a browser popup driven by the web client.

    The client reads ``target_url`` to know where to point its window and
    calls ``mark_closed()`` (via the API) once the user closes it.
    """

    def __init__(self, surface_id: str | None = None):
        self.surface_id = surface_id or uuid.uuid4().hex
        self.target_url = BLANK_URL
        self.focused = False
        self._open = True

    def is_open(self) -> bool:
        return self._open

    def navigate(self, url: str) -> None:
        self.target_url = url

    def focus(self) -> None:
        self.focused = True

    def close(self) -> None:
        self._open = False

    def mark_closed(self) -> None:
        self._open = False

    def as_dict(self) -> dict:
        return {
            "surface_id": self.surface_id,
            "target_url": self.target_url,
            "open": self._open,
            "focused": self.focused,
        }
