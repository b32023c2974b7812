# src/storage/sqlite_state_store.py - v1
"""SQLite-based state store (STATE_BACKEND=sqlite).

Uses stdlib sqlite3, one row per preserved operation.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from resilientai.storage.base_state_store import BaseStateStore
from resilientai.storage.models import PreservedState

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS preserved_state (
    key TEXT PRIMARY KEY,
    operation_id TEXT NOT NULL,
    data TEXT NOT NULL,
    saved_at TEXT DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_operation_id ON preserved_state(operation_id);
"""


class SqliteStateStore(BaseStateStore):
    """SQLite-backed state store."""

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path))
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)

    async def save(self, key: str, state: PreservedState) -> None:
        """Store preserved state (upsert)."""
        self._conn.execute(
            """INSERT OR REPLACE INTO preserved_state (key, operation_id, data)
               VALUES (?, ?, ?)""",
            (key, state.operation_id, state.model_dump_json()),
        )
        self._conn.commit()

    async def load(self, key: str) -> PreservedState | None:
        """Retrieve preserved state by key."""
        row = self._conn.execute(
            "SELECT data FROM preserved_state WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        try:
            return PreservedState.model_validate_json(row[0])
        except Exception as e:
            logger.warning("Failed to deserialize preserved state %s: %s", key, e)
            return None

    async def delete(self, key: str) -> None:
        """Remove preserved state."""
        self._conn.execute("DELETE FROM preserved_state WHERE key = ?", (key,))
        self._conn.commit()

    async def list_keys(self) -> list[str]:
        """List keys of all stored states."""
        rows = self._conn.execute("SELECT key FROM preserved_state ORDER BY key").fetchall()
        return [r[0] for r in rows]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()
