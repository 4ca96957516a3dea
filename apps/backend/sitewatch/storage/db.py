from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sitewatch.util.logging import get_logger

logger = get_logger(__name__)

VIEW_STATE_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS view_state (
  key TEXT PRIMARY KEY,
  value_json TEXT NOT NULL,
  updated_at TEXT NOT NULL
);
"""

SETTINGS_HISTORY_SQL = """
CREATE TABLE IF NOT EXISTS settings_history (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  created_at TEXT NOT NULL,
  key TEXT NOT NULL,
  value_json TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_settings_history_key ON settings_history(key, id);
"""

# Ordered (version, script) pairs; PRAGMA user_version records the last one applied.
MIGRATIONS: tuple[tuple[int, str], ...] = (
    (1, VIEW_STATE_SQL),
    (2, SETTINGS_HISTORY_SQL),
)


class Database:
    """Single shared SQLite connection, serialized by a lock."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._migrate()

    @property
    def schema_version(self) -> int:
        row = self.query_one("PRAGMA user_version")
        return int(row[0]) if row else 0

    def _migrate(self) -> None:
        with self._lock:
            current = self.schema_version
            pending = [(version, script) for version, script in MIGRATIONS if version > current]
            for version, script in pending:
                self._conn.executescript(script)
                self._conn.execute(f"PRAGMA user_version = {version}")
                self._conn.commit()
                logger.info("database %s migrated to schema v%d", self.db_path.name, version)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
            except Exception:
                self._conn.rollback()
                raise
            self._conn.commit()

    def execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        with self.transaction() as conn:
            return conn.execute(sql, params)

    def query(self, sql: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def query_one(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
