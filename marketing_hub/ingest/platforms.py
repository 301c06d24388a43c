"""Per-platform ingest and analyze sub-routines.

Each platform has its own payload shape and identifier-extraction rule, so
nothing here is shared across platforms beyond the output record.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from marketing_hub.gateway.client import Gateway
from marketing_hub.models import Phase, PlatformConnection, WorkflowSession

logger = logging.getLogger(__name__)

_LINKEDIN_COMPANY_RE = re.compile(r"linkedin\.com/company/([a-zA-Z0-9_-]+)")
_TIKTOK_USER_RE = re.compile(r"tiktok\.com/@([a-zA-Z0-9._-]+)")


class MalformedPlatformUrl(ValueError):
    """The profile URL did not yield the identifier the platform needs."""


class UnsupportedPlatform(LookupError):
    """No sub-routine is registered for this platform/phase."""


@dataclass
class PlatformOutput:
    """What a sub-routine hands back; the executor turns it into a result."""
    items_processed: int = 0
    insights_generated: int = 0
    actionables_generated: int = 0
    profile: dict[str, Any] | None = None
    insights: list[dict[str, Any]] = field(default_factory=list)
    actionables: list[dict[str, Any]] = field(default_factory=list)


Handler = Callable[[Gateway, PlatformConnection, WorkflowSession], Awaitable[PlatformOutput]]


def _dig(data: Any, *keys: str) -> Any:
    """Follow nested dict keys, returning None as soon as one is missing."""
    for key in keys:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _count(items: Any) -> int:
    return len(items) if isinstance(items, list) else 0


def _records(items: Any) -> list[dict[str, Any]]:
    """Keep only the dict entries of an analyzer list; free text is dropped."""
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def extract_linkedin_company(url: str) -> str:
    match = _LINKEDIN_COMPANY_RE.search(url or "")
    if not match:
        raise MalformedPlatformUrl(f"Invalid LinkedIn company URL: {url!r}")
    return match.group(1)


def extract_tiktok_username(url: str) -> str:
    match = _TIKTOK_USER_RE.search(url or "")
    if not match:
        raise MalformedPlatformUrl(f"Invalid TikTok profile URL: {url!r}")
    return match.group(1)


# ---------------------------------------------------------------------------
# Ingest
# ---------------------------------------------------------------------------

async def ingest_instagram(
    gateway: Gateway, conn: PlatformConnection, session: WorkflowSession,
) -> PlatformOutput:
    data = await gateway.invoke("instagram-scraper", {
        "action": "get_posts",
        "username_or_url": conn.url,
    })
    return PlatformOutput(
        items_processed=_count(_dig(data, "data", "posts")),
        profile=_dig(data, "data", "profile"),
    )


async def ingest_facebook(
    gateway: Gateway, conn: PlatformConnection, session: WorkflowSession,
) -> PlatformOutput:
    details = await gateway.invoke("facebook-scraper", {
        "action": "get_page_details",
        "page_url": conn.url,
    })
    page = _dig(details, "data", "page_details")
    page_id = _dig(page, "page_id")
    if not page_id:
        logger.info("Facebook page details had no page_id, skipping posts")
        return PlatformOutput(profile=page)

    posts = await gateway.invoke("facebook-scraper", {
        "action": "get_page_posts",
        "page_id": page_id,
    })
    return PlatformOutput(
        items_processed=_count(_dig(posts, "data", "posts")),
        profile=page,
    )


async def ingest_linkedin(
    gateway: Gateway, conn: PlatformConnection, session: WorkflowSession,
) -> PlatformOutput:
    identifier = extract_linkedin_company(conn.url)
    data = await gateway.invoke("linkedin-scraper", {
        "action": "get_company_posts",
        "company_identifier": identifier,
    })
    # The scraper wraps its payload twice
    return PlatformOutput(
        items_processed=_count(_dig(data, "data", "data", "posts")),
        profile={"company_identifier": identifier},
    )


async def ingest_tiktok(
    gateway: Gateway, conn: PlatformConnection, session: WorkflowSession,
) -> PlatformOutput:
    unique_id = extract_tiktok_username(conn.url)
    data = await gateway.invoke("tiktok-scraper", {
        "action": "get_posts",
        "unique_id": unique_id,
    })
    return PlatformOutput(
        items_processed=_count(_dig(data, "data", "videos")),
        profile=_dig(data, "data", "user") or {"unique_id": unique_id},
    )


# ---------------------------------------------------------------------------
# Analyze
# ---------------------------------------------------------------------------

def _analyzer(function_name: str) -> Handler:
    async def analyze(
        gateway: Gateway, conn: PlatformConnection, session: WorkflowSession,
    ) -> PlatformOutput:
        data = await gateway.invoke(function_name, {"user_id": session.user_id})
        insights = _records(data.get("insights"))
        actionables = _records(data.get("actionables"))
        return PlatformOutput(
            items_processed=int(data.get("posts_analyzed") or 0),
            insights_generated=int(data.get("insights_generated") or len(insights)),
            actionables_generated=int(data.get("actionables_generated") or len(actionables)),
            insights=insights,
            actionables=actionables,
        )
    analyze.__name__ = f"analyze_{function_name.split('-')[0]}"
    return analyze


PLATFORM_HANDLERS: dict[str, dict[Phase, Handler]] = {
    "instagram": {
        "ingest": ingest_instagram,
        "analyze": _analyzer("instagram-intelligent-analysis"),
    },
    "facebook": {
        "ingest": ingest_facebook,
        "analyze": _analyzer("facebook-intelligent-analysis"),
    },
    "linkedin": {
        "ingest": ingest_linkedin,
        "analyze": _analyzer("linkedin-intelligent-analysis"),
    },
    "tiktok": {
        "ingest": ingest_tiktok,
        "analyze": _analyzer("tiktok-intelligent-analysis"),
    },
}


def get_handler(
    platform: str,
    phase: Phase,
    handlers: dict[str, dict[Phase, Handler]] | None = None,
) -> Handler:
    registry = PLATFORM_HANDLERS if handlers is None else handlers
    try:
        return registry[platform][phase]
    except KeyError:
        raise UnsupportedPlatform(f"Platform not supported for {phase}: {platform}") from None
