"""SQLite-backed durable namespace store."""

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path

from .base import NamespaceStore, StoreError

logger = logging.getLogger(__name__)

# One row per (namespace, field); the value column holds JSON text
SCHEMA = """
CREATE TABLE IF NOT EXISTS namespace_fields (
    namespace_key TEXT NOT NULL,
    field TEXT NOT NULL,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT CURRENT_TIMESTAMP,
    PRIMARY KEY (namespace_key, field)
);

CREATE INDEX IF NOT EXISTS idx_namespace_fields_key ON namespace_fields(namespace_key);
"""


class SQLiteNamespaceStore(NamespaceStore):
    """Namespace hashes stored in a single SQLite table.

    Statements run in a worker thread so the event loop never blocks on disk.
    """

    def __init__(self, db_path: str | Path):
        """Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ":memory:".
        """
        self.db_path = db_path if db_path == ":memory:" else Path(db_path).expanduser()
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._conn is not None:
            return

        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.executescript(SCHEMA)
            self._conn.commit()
        except sqlite3.Error as e:
            self._conn = None
            raise StoreError(f"Failed to open {self.db_path}: {e}") from e

        logger.info(f"SQLiteNamespaceStore connected to {self.db_path}")

    def _ensure_connected(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def _fetch_all(self, namespace_key: str) -> dict[str, str]:
        with self._lock:
            conn = self._ensure_connected()
            rows = conn.execute(
                "SELECT field, value FROM namespace_fields WHERE namespace_key = ?",
                (namespace_key,),
            ).fetchall()
        return {field: value for field, value in rows}

    def _set_field(self, namespace_key: str, field: str, value: str) -> None:
        with self._lock:
            conn = self._ensure_connected()
            conn.execute(
                """
                INSERT INTO namespace_fields (namespace_key, field, value)
                VALUES (?, ?, ?)
                ON CONFLICT(namespace_key, field) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (namespace_key, field, value),
            )
            conn.commit()

    def _delete_field(self, namespace_key: str, field: str) -> None:
        with self._lock:
            conn = self._ensure_connected()
            conn.execute(
                "DELETE FROM namespace_fields WHERE namespace_key = ? AND field = ?",
                (namespace_key, field),
            )
            conn.commit()

    async def fetch_all(self, namespace_key: str) -> dict[str, str]:
        try:
            return await asyncio.to_thread(self._fetch_all, namespace_key)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to read {namespace_key}: {e}") from e

    async def set_field(self, namespace_key: str, field: str, value: str) -> None:
        try:
            await asyncio.to_thread(self._set_field, namespace_key, field, value)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to write {namespace_key}[{field}]: {e}") from e

    async def delete_field(self, namespace_key: str, field: str) -> None:
        try:
            await asyncio.to_thread(self._delete_field, namespace_key, field)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete {namespace_key}[{field}]: {e}") from e

    def _close(self) -> None:
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None

    async def close(self) -> None:
        """Close database connection once any running statement has finished."""
        await asyncio.to_thread(self._close)
