"""SQLite implementation of the key-value store, for single-process deployments."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any

import aiosqlite

from oshaberi_bot.log import get_logger
from oshaberi_bot.storage.kv import KeyValueStore, KVError, encode_value

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS kv_scalars (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS kv_hashes (
    key         TEXT NOT NULL,
    field       TEXT NOT NULL,
    value       TEXT NOT NULL,
    PRIMARY KEY (key, field)
);
"""


class SqliteKV(KeyValueStore):
    """Async SQLite key-value store.

    Every operation is a single statement, so each one is atomic for its key.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open connection and create tables."""
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = await aiosqlite.connect(self._db_path)
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.executescript(SCHEMA_SQL)
            await self._conn.commit()
        except sqlite3.Error as e:
            raise KVError(f"SQLite initialization failed: {e}") from e
        logger.info("sqlite_kv_initialized", path=self._db_path)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise KVError("SQLite store not initialized. Call initialize() first.")
        return self._conn

    async def _fetch_value(self, sql: str, params: tuple[Any, ...]) -> str | None:
        try:
            cursor = await self.conn.execute(sql, params)
            row = await cursor.fetchone()
            await cursor.close()
        except sqlite3.Error as e:
            raise KVError(str(e)) from e
        return None if row is None else str(row[0])

    async def _write(self, sql: str, params: tuple[Any, ...]) -> str | None:
        try:
            cursor = await self.conn.execute(sql, params)
            row = await cursor.fetchone()
            await cursor.close()
            await self.conn.commit()
        except sqlite3.Error as e:
            raise KVError(str(e)) from e
        return None if row is None else str(row[0])

    async def get(self, key: str) -> str | None:
        return await self._fetch_value("SELECT value FROM kv_scalars WHERE key = ?", (key,))

    async def hget(self, key: str, field: str) -> str | None:
        return await self._fetch_value(
            "SELECT value FROM kv_hashes WHERE key = ? AND field = ?", (key, field)
        )

    async def set(self, key: str, value: Any) -> None:
        await self._write(
            """INSERT INTO kv_scalars (key, value) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
            (key, encode_value(value)),
        )

    async def hset(self, key: str, field: str, value: Any) -> None:
        await self._write(
            """INSERT INTO kv_hashes (key, field, value) VALUES (?, ?, ?)
               ON CONFLICT(key, field) DO UPDATE SET value = excluded.value""",
            (key, field, encode_value(value)),
        )

    async def incrby(self, key: str, amount: int) -> int:
        value = await self._write(
            """INSERT INTO kv_scalars (key, value) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE
               SET value = CAST(kv_scalars.value AS INTEGER) + CAST(excluded.value AS INTEGER)
               RETURNING value""",
            (key, str(amount)),
        )
        return int(value or 0)

    async def hincrby(self, key: str, field: str, amount: int) -> int:
        value = await self._write(
            """INSERT INTO kv_hashes (key, field, value) VALUES (?, ?, ?)
               ON CONFLICT(key, field) DO UPDATE
               SET value = CAST(kv_hashes.value AS INTEGER) + CAST(excluded.value AS INTEGER)
               RETURNING value""",
            (key, field, str(amount)),
        )
        return int(value or 0)

    async def delete(self, key: str) -> None:
        try:
            await self.conn.execute("DELETE FROM kv_scalars WHERE key = ?", (key,))
            await self.conn.execute("DELETE FROM kv_hashes WHERE key = ?", (key,))
            await self.conn.commit()
        except sqlite3.Error as e:
            raise KVError(str(e)) from e

    async def close(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None
            logger.info("sqlite_kv_closed")
