"""SQLite-backed key-value store."""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from ae_chat.log import get_logger
from ae_chat.storage.base import KeyValueStore

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f','now'))
);
"""


class SqliteKeyValueStore(KeyValueStore):
    """Async SQLite key-value store."""

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    @property
    def backend_name(self) -> str:
        return "sqlite"

    async def initialize(self) -> None:
        """Open connection and create the table."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("database_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def get(self, key: str) -> str | None:
        cursor = await self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row["value"] if row else None

    async def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"value for {key!r} must be str, got {type(value).__name__}")
        await self.conn.execute(
            """INSERT INTO kv (key, value) VALUES (?, ?)
               ON CONFLICT(key)
               DO UPDATE SET value = excluded.value,
                             updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')""",
            (key, value),
        )
        await self.conn.commit()

    async def delete(self, key: str) -> None:
        await self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        await self.conn.commit()

    async def keys(self, prefix: str = "") -> list[str]:
        # Escape LIKE wildcards so prefixes are matched literally
        pattern = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        cursor = await self.conn.execute(
            "SELECT key FROM kv WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
            (pattern,),
        )
        rows = await cursor.fetchall()
        return [row["key"] for row in rows]

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("database_closed")
