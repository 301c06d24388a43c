"""Configuration management via environment variables and .env file."""

from __future__ import annotations

import os
import sys

from dotenv import load_dotenv
from pydantic import BaseModel

DEFAULT_HANDSHAKE_PLATFORMS = ["tiktok", "instagram", "linkedin", "facebook", "youtube", "twitter"]
DEFAULT_ONBOARDING_PLATFORMS = ["linkedin", "instagram", "facebook", "tiktok"]


class Config(BaseModel):
    """Application configuration loaded from environment."""

    # Remote function host (all named operations are invoked here)
    gateway_url: str = ""
    gateway_api_key: str = ""
    gateway_timeout: float = 60.0

    # Platform task executor
    platform_delay: float = 0.5  # Pause between platforms to spread quota usage

    # Job poller
    job_poll_interval: float = 5.0
    job_timeout: float = 600.0  # 10 minutes

    # Connection handshake
    handshake_check_interval: float = 1.0
    handshake_redirect_url: str = ""
    handshake_platforms: list[str] = DEFAULT_HANDSHAKE_PLATFORMS

    # Workflow
    onboarding_platforms: list[str] = DEFAULT_ONBOARDING_PLATFORMS
    onboarding_version: str = "1.0"

    # Storage
    db_path: str = ".marketing_hub.db"

    log_level: str = "INFO"


def _split_list(value: str | None, default: list[str]) -> list[str]:
    if not value:
        return list(default)
    return [item.strip().lower() for item in value.split(",") if item.strip()]


def load_config() -> Config:
    """Load configuration from .env file and environment variables.

    Environment variables override .env values.
    A missing gateway URL is reported but not fatal, so the storage-only
    parts of the app (and the tests) still start.
    """
    load_dotenv()

    gateway_url = os.getenv("MARKETING_HUB_GATEWAY_URL", "")
    if not gateway_url:
        print(
            "  Note: MARKETING_HUB_GATEWAY_URL not set, remote operations will fail",
            file=sys.stderr,
        )

    return Config(
        gateway_url=gateway_url.rstrip("/"),
        gateway_api_key=os.getenv("MARKETING_HUB_GATEWAY_KEY", ""),
        gateway_timeout=float(os.getenv("GATEWAY_TIMEOUT", "60")),
        platform_delay=float(os.getenv("PLATFORM_DELAY", "0.5")),
        job_poll_interval=float(os.getenv("JOB_POLL_INTERVAL", "5")),
        job_timeout=float(os.getenv("JOB_TIMEOUT", "600")),
        handshake_check_interval=float(os.getenv("HANDSHAKE_CHECK_INTERVAL", "1.0")),
        handshake_redirect_url=os.getenv("HANDSHAKE_REDIRECT_URL", ""),
        handshake_platforms=_split_list(
            os.getenv("HANDSHAKE_PLATFORMS"), DEFAULT_HANDSHAKE_PLATFORMS,
        ),
        onboarding_platforms=_split_list(
            os.getenv("ONBOARDING_PLATFORMS"), DEFAULT_ONBOARDING_PLATFORMS,
        ),
        onboarding_version=os.getenv("ONBOARDING_VERSION", "1.0"),
        db_path=os.getenv("MARKETING_HUB_DB", ".marketing_hub.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
