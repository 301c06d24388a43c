"""CRUD access to the onboarding tables."""

from __future__ import annotations

import json
import logging
from typing import Any

from marketing_hub.db.database import Database
from marketing_hub.models import NO_ACCOUNT_MARKER, PlatformConnection

logger = logging.getLogger(__name__)

# Analyzers label priorities with words; lower rank sorts first
PRIORITY_RANKS = {"urgent": 1, "high": 2, "medium": 3, "low": 4}
DEFAULT_PRIORITY = 3


def priority_rank(value: Any) -> int:
    """Numeric sort rank for a priority given as a word or a number."""
    if value is None or isinstance(value, bool):
        return DEFAULT_PRIORITY
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip().lower()
    if text in PRIORITY_RANKS:
        return PRIORITY_RANKS[text]
    try:
        return int(text)
    except ValueError:
        return DEFAULT_PRIORITY


class OnboardingRepository:
    """Per-platform config, append-only insight/actionable lists, completion marker."""

    def __init__(self, db: Database):
        self.db = db

    # --- Company ---

    def get_company(self, user_id: str) -> dict[str, Any] | None:
        row = self.db.fetchone("SELECT * FROM companies WHERE user_id = ?", (user_id,))
        return dict(row) if row else None

    def upsert_company(self, user_id: str, name: str = "", company_username: str | None = None) -> None:
        existing = self.get_company(user_id)
        if existing is None:
            self.db.insert(
                "INSERT INTO companies (user_id, name, company_username) VALUES (?, ?, ?)",
                (user_id, name or "My Company", company_username or ""),
            )
            return
        if company_username is not None:
            self.db.update(
                "UPDATE companies SET company_username = ? WHERE user_id = ?",
                (company_username, user_id),
            )
        if name:
            self.db.update("UPDATE companies SET name = ? WHERE user_id = ?", (name, user_id))

    # --- Platform configuration ---

    def get_platform_configs(self, user_id: str) -> dict[str, dict[str, Any]]:
        rows = self.db.fetchall(
            "SELECT platform, url, has_account FROM platform_configs WHERE user_id = ?",
            (user_id,),
        )
        return {
            row["platform"]: {
                "url": row["url"],
                "has_account": None if row["has_account"] is None else bool(row["has_account"]),
            }
            for row in rows
        }

    def save_platform_configs(self, user_id: str, connections: list[PlatformConnection]) -> int:
        """Persist answered platforms; unanswered ones are left as stored."""
        rows = []
        for conn in connections:
            if conn.has_account is False:
                rows.append((user_id, conn.platform, NO_ACCOUNT_MARKER, 0))
            elif conn.connected:
                rows.append((user_id, conn.platform, conn.url.strip(), 1))

        with self.db.transaction():
            for row in rows:
                self.db.execute(
                    "INSERT INTO platform_configs (user_id, platform, url, has_account) "
                    "VALUES (?, ?, ?, ?) "
                    "ON CONFLICT (user_id, platform) DO UPDATE SET "
                    "url = excluded.url, has_account = excluded.has_account, "
                    "updated_at = datetime('now')",
                    row,
                )
        logger.debug("Saved %d platform configs for %s", len(rows), user_id)
        return len(rows)

    # --- Insights & actionables (append-only) ---

    def append_insights(self, user_id: str, platform: str, insights: list[dict[str, Any]]) -> int:
        rows = []
        for insight in insights:
            try:
                rows.append((user_id, platform, str(insight.get("title", "")), json.dumps(insight)))
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable %s insight: %s", platform, e)

        with self.db.transaction():
            for row in rows:
                self.db.execute(
                    "INSERT INTO marketing_insights (user_id, platform, title, payload_json) "
                    "VALUES (?, ?, ?, ?)",
                    row,
                )
        return len(rows)

    def append_actionables(self, user_id: str, platform: str, actionables: list[dict[str, Any]]) -> int:
        """Store what can be stored; an item that can't be read is logged and skipped."""
        rows = []
        for item in actionables:
            try:
                rows.append((
                    user_id,
                    platform,
                    str(item.get("title", "")),
                    str(item.get("status", "pending")),
                    priority_rank(item.get("priority")),
                    json.dumps(item),
                ))
            except (AttributeError, TypeError, ValueError, OverflowError) as e:
                logger.warning("Skipping unreadable %s actionable: %s", platform, e)

        with self.db.transaction():
            for row in rows:
                self.db.execute(
                    "INSERT INTO marketing_actionables "
                    "(user_id, platform, title, status, priority, payload_json) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    row,
                )
        return len(rows)

    def latest_insights(self, user_id: str, limit: int = 10) -> list[dict[str, Any]]:
        rows = self.db.fetchall(
            "SELECT id, platform, payload_json, created_at FROM marketing_insights "
            "WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
        )
        return [_decode(row) for row in rows]

    def pending_actionables(self, user_id: str, limit: int = 10) -> list[dict[str, Any]]:
        rows = self.db.fetchall(
            "SELECT id, platform, priority, payload_json, created_at FROM marketing_actionables "
            "WHERE user_id = ? AND status = 'pending' ORDER BY priority ASC, id ASC LIMIT ?",
            (user_id, limit),
        )
        return [_decode(row) for row in rows]

    # --- Completion marker ---

    def mark_onboarding_completed(self, user_id: str, version: str) -> bool:
        """Returns False if this user already completed this version."""
        inserted = self.db.update(
            "INSERT OR IGNORE INTO onboarding_status (user_id, onboarding_version) VALUES (?, ?)",
            (user_id, version),
        )
        return inserted > 0

    def is_onboarding_completed(self, user_id: str, version: str) -> bool:
        row = self.db.fetchone(
            "SELECT 1 FROM onboarding_status WHERE user_id = ? AND onboarding_version = ?",
            (user_id, version),
        )
        return row is not None


def _decode(row) -> dict[str, Any]:
    payload = json.loads(row["payload_json"])
    payload.setdefault("id", row["id"])
    payload.setdefault("platform", row["platform"])
    payload.setdefault("created_at", row["created_at"])
    return payload
