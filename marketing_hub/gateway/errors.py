"""Typed failures raised by the remote-call gateway."""

from __future__ import annotations

import re
from enum import Enum

_REJECTION_PATTERN = re.compile(r"limit|quota|exceeded", re.IGNORECASE)
_REJECTION_STATUSES = {402, 403, 429}
_PRECONDITION_STATUSES = {400, 404}


class ErrorKind(str, Enum):
    TRANSPORT = "transport"
    PRECONDITION_MISSING = "precondition_missing"
    REJECTED = "rejected"
    UNKNOWN = "unknown"


class RemoteError(Exception):
    """A named remote operation failed.

    ``kind`` is the coarse class callers base their retry policy on; the
    gateway itself never retries.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        operation: str = "",
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.operation = operation
        self.status_code = status_code

    def __str__(self) -> str:
        prefix = f"{self.operation}: " if self.operation else ""
        status = f" (HTTP {self.status_code})" if self.status_code else ""
        return f"{prefix}{self.message}{status}"


def classify(status_code: int | None, message: str = "") -> ErrorKind:
    """Map an HTTP status and failure message onto an ErrorKind.

    A limit/quota message is terminal even when it arrives with a 4xx that
    would otherwise read as a missing precondition.
    """
    if message and _REJECTION_PATTERN.search(message):
        return ErrorKind.REJECTED
    if status_code is None:
        return ErrorKind.UNKNOWN
    if status_code in _REJECTION_STATUSES:
        return ErrorKind.REJECTED
    if status_code in _PRECONDITION_STATUSES:
        return ErrorKind.PRECONDITION_MISSING
    if status_code >= 500:
        return ErrorKind.TRANSPORT
    return ErrorKind.UNKNOWN
