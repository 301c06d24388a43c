"""Named remote operations consumed by the orchestrator.

Connection management lives behind a single remote function that takes an
``action`` field; scrapers and analyzers are one function per platform.
"""

from __future__ import annotations

from typing import Any

from marketing_hub.gateway.client import Gateway

CONNECTIONS_FUNCTION = "upload-post-manager"
BUSINESS_INSIGHTS_FUNCTION = "advanced-business-insights"


async def call_action(
    gateway: Gateway,
    action: str,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    return await gateway.invoke(CONNECTIONS_FUNCTION, {"action": action, "data": data or {}})


async def init_profile(gateway: Gateway) -> dict[str, Any]:
    """Create (or look up) the provider-side profile. Returns ``companyUsername``."""
    return await call_action(gateway, "init_profile")


async def generate_jwt(
    gateway: Gateway,
    company_username: str,
    redirect_url: str,
    platforms: list[str],
) -> dict[str, Any]:
    """Request an access URL for the external connection surface."""
    return await call_action(gateway, "generate_jwt", {
        "companyUsername": company_username,
        "redirectUrl": redirect_url,
        "platforms": platforms,
    })


async def get_connections(gateway: Gateway, company_username: str) -> dict[str, Any]:
    return await call_action(gateway, "get_connections", {"companyUsername": company_username})


async def get_facebook_pages(gateway: Gateway, company_username: str) -> list[dict[str, Any]]:
    data = await call_action(gateway, "get_facebook_pages", {"companyUsername": company_username})
    return list(data.get("pages") or [])


async def get_linkedin_pages(gateway: Gateway, company_username: str) -> list[dict[str, Any]]:
    data = await call_action(gateway, "get_linkedin_pages", {"companyUsername": company_username})
    return list(data.get("pages") or [])


async def get_upload_status(gateway: Gateway, request_id: str) -> dict[str, Any]:
    return await call_action(gateway, "get_upload_status", {"requestId": request_id})


async def generate_business_insights(gateway: Gateway, user_id: str) -> dict[str, Any]:
    """Cross-platform aggregation run after every platform was analyzed."""
    return await gateway.invoke(BUSINESS_INSIGHTS_FUNCTION, {"user_id": user_id})


def upload_status_check(gateway: Gateway):
    """Return a JobPoller check function backed by ``get_upload_status``."""
    async def check(job_id: str) -> dict[str, Any]:
        return await get_upload_status(gateway, job_id)
    return check
