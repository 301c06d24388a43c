"""SQLite access for onboarding state: one shared connection, WAL on disk."""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)

_DEFAULT_DB = ".marketing_hub.db"
MEMORY = ":memory:"


class Database:
    """sqlite3 connection shared by request handlers and background tasks.

    Multi-row writes go through ``transaction()`` so a failed configuration
    save leaves nothing half-written. Single statements can use ``insert``
    and ``update``, which commit immediately.
    """

    def __init__(self, db_path: str = _DEFAULT_DB):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None

    @property
    def in_memory(self) -> bool:
        return self.db_path == MEMORY

    @property
    def connected(self) -> bool:
        return self.conn is not None

    def connect(self) -> Database:
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        if not self.in_memory:
            self.conn.execute("PRAGMA journal_mode=WAL")
        self.conn.execute("PRAGMA foreign_keys=ON")
        self.conn.row_factory = sqlite3.Row
        logger.debug("Opened onboarding store at %s", self.db_path)
        return self

    def close(self) -> None:
        if self.conn:
            self.conn.close()
            self.conn = None

    def _require(self) -> sqlite3.Connection:
        if self.conn is None:
            raise RuntimeError(f"Database {self.db_path} is not connected")
        return self.conn

    def execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        return self._require().execute(sql, params)

    def executescript(self, sql: str) -> None:
        self._require().executescript(sql)

    def commit(self) -> None:
        self._require().commit()

    @contextmanager
    def transaction(self) -> Iterator[Database]:
        """Commit on success, roll back and re-raise on any error."""
        conn = self._require()
        try:
            yield self
        except Exception:
            conn.rollback()
            logger.warning("Rolled back onboarding store transaction")
            raise
        conn.commit()

    def fetchone(self, sql: str, params: tuple = ()) -> sqlite3.Row | None:
        return self.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        return self.execute(sql, params).fetchall()

    def insert(self, sql: str, params: tuple = ()) -> int:
        with self.transaction():
            cur = self.execute(sql, params)
        return cur.lastrowid  # type: ignore[return-value]

    def update(self, sql: str, params: tuple = ()) -> int:
        with self.transaction():
            cur = self.execute(sql, params)
        return cur.rowcount
