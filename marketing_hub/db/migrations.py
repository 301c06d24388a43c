"""Applies the bundled ``migrations/*.sql`` files in filename order, once each."""

from __future__ import annotations

import logging
from pathlib import Path

from marketing_hub.db.database import Database

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

_TRACKING_TABLE = """
    CREATE TABLE IF NOT EXISTS _migrations (
        id INTEGER PRIMARY KEY,
        filename TEXT NOT NULL UNIQUE,
        applied_at TEXT NOT NULL DEFAULT (datetime('now'))
    );
"""


def pending_migrations(db: Database, directory: Path = MIGRATIONS_DIR) -> list[Path]:
    db.executescript(_TRACKING_TABLE)
    applied = {row["filename"] for row in db.fetchall("SELECT filename FROM _migrations")}
    return [path for path in sorted(directory.glob("*.sql")) if path.name not in applied]


def run_migrations(db: Database, directory: Path = MIGRATIONS_DIR) -> list[str]:
    """Bring the onboarding schema up to date. Returns the filenames applied."""
    applied: list[str] = []
    for path in pending_migrations(db, directory):
        logger.info("Applying migration: %s", path.name)
        # executescript commits on its own, so the bookkeeping row follows it
        db.executescript(path.read_text(encoding="utf-8"))
        db.insert("INSERT INTO _migrations (filename) VALUES (?)", (path.name,))
        applied.append(path.name)

    if applied:
        logger.info("Onboarding schema updated (%d migration(s))", len(applied))
    return applied
