"""Async client for the remote-function host: one narrow invoke() call."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from marketing_hub.gateway.errors import ErrorKind, RemoteError, classify

logger = logging.getLogger(__name__)


class Gateway(Protocol):
    async def invoke(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        ...


class RemoteCallGateway:
    """Invokes named remote operations with a JSON payload.

    Each operation is POSTed to ``{base_url}/functions/v1/{operation}``.
    Responses follow ``{success, data?, error?}``; the whole JSON body is
    returned on success. No retries happen here.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def is_configured(self) -> bool:
        return bool(self.base_url)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Content-Type": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
            )
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._owns_client and self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def invoke(self, operation: str, payload: dict[str, Any]) -> dict[str, Any]:
        """Call ``operation`` and return its JSON output, or raise RemoteError."""
        if not self.is_configured:
            raise RemoteError(ErrorKind.TRANSPORT, "Gateway URL not configured", operation)

        client = await self._get_client()
        url = f"{self.base_url}/functions/v1/{operation}"
        logger.debug("Invoking %s (%s)", operation, payload.get("action", "-"))
        try:
            response = await client.post(url, json=payload)
        except httpx.TimeoutException as e:
            raise RemoteError(ErrorKind.TRANSPORT, f"timeout: {e}", operation) from e
        except httpx.TransportError as e:
            raise RemoteError(ErrorKind.TRANSPORT, str(e) or type(e).__name__, operation) from e

        body = _json_body(response)

        if response.status_code >= 400:
            message = _error_message(body) or response.text[:200] or response.reason_phrase
            kind = classify(response.status_code, message)
            logger.warning(
                "%s failed with HTTP %d (%s): %s",
                operation, response.status_code, kind.value, message,
            )
            raise RemoteError(kind, message, operation, response.status_code)

        if body is None:
            raise RemoteError(ErrorKind.UNKNOWN, "Response was not a JSON object", operation)

        if body.get("success") is False:
            message = _error_message(body) or "Operation reported failure"
            status = body.get("status") if isinstance(body.get("status"), int) else None
            raise RemoteError(classify(status, message), message, operation, status)

        return body


def _json_body(response: httpx.Response) -> dict[str, Any] | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _error_message(body: dict[str, Any] | None) -> str:
    if not body:
        return ""
    error = body.get("error") or body.get("message") or ""
    if isinstance(error, dict):
        error = error.get("message", "") or str(error)
    return str(error)
