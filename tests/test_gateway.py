"""RemoteCallGateway tests against an httpx MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from marketing_hub.gateway.client import RemoteCallGateway
from marketing_hub.gateway.errors import ErrorKind, RemoteError, classify


def _gateway(handler) -> RemoteCallGateway:
    client = httpx.AsyncClient(
        base_url="https://hub.example.com",
        transport=httpx.MockTransport(handler),
    )
    return RemoteCallGateway("https://hub.example.com", http_client=client)


@pytest.mark.asyncio
async def test_invoke_posts_payload_and_returns_body():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "access_url": "https://connect/x"})

    gw = _gateway(handler)
    data = await gw.invoke("upload-post-manager", {"action": "generate_jwt", "data": {}})

    assert data["access_url"] == "https://connect/x"
    assert captured["url"] == "https://hub.example.com/functions/v1/upload-post-manager"
    assert captured["body"] == {"action": "generate_jwt", "data": {}}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, body, kind",
    [
        (404, {"error": "Profile not found"}, ErrorKind.PRECONDITION_MISSING),
        (400, {"error": "Missing companyUsername"}, ErrorKind.PRECONDITION_MISSING),
        (400, {"error": "Profile limit reached for plan"}, ErrorKind.REJECTED),
        (429, {"error": "Too many requests"}, ErrorKind.REJECTED),
        (503, {"error": "upstream unavailable"}, ErrorKind.TRANSPORT),
        (409, {"error": "conflict"}, ErrorKind.UNKNOWN),
    ],
)
async def test_http_errors_are_classified(status, body, kind):
    gw = _gateway(lambda request: httpx.Response(status, json=body))

    with pytest.raises(RemoteError) as exc_info:
        await gw.invoke("upload-post-manager", {"action": "init_profile"})

    assert exc_info.value.kind == kind
    assert exc_info.value.status_code == status
    assert exc_info.value.operation == "upload-post-manager"


@pytest.mark.asyncio
async def test_network_failure_is_transport():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gw = _gateway(handler)
    with pytest.raises(RemoteError) as exc_info:
        await gw.invoke("tiktok-scraper", {"action": "get_posts"})

    assert exc_info.value.kind == ErrorKind.TRANSPORT
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_success_false_body_raises():
    gw = _gateway(lambda request: httpx.Response(
        200, json={"success": False, "error": "monthly quota exceeded"},
    ))
    with pytest.raises(RemoteError) as exc_info:
        await gw.invoke("instagram-scraper", {})
    assert exc_info.value.kind == ErrorKind.REJECTED

    gw = _gateway(lambda request: httpx.Response(200, json={"success": False, "error": "boom"}))
    with pytest.raises(RemoteError) as exc_info:
        await gw.invoke("instagram-scraper", {})
    assert exc_info.value.kind == ErrorKind.UNKNOWN


@pytest.mark.asyncio
async def test_unconfigured_gateway_fails_without_network():
    gw = RemoteCallGateway("")
    with pytest.raises(RemoteError) as exc_info:
        await gw.invoke("upload-post-manager", {})
    assert exc_info.value.kind == ErrorKind.TRANSPORT


def test_classify_prefers_rejection_message():
    assert classify(404, "limit reached") == ErrorKind.REJECTED
    assert classify(404, "not found") == ErrorKind.PRECONDITION_MISSING
    assert classify(None, "") == ErrorKind.UNKNOWN
    assert classify(502) == ErrorKind.TRANSPORT
