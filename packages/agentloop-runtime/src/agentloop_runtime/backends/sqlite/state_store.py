from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING

from agentloop_runtime.backends.sqlite._db import get_connection

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    import aiosqlite

_CREATE_STATE = """
CREATE TABLE IF NOT EXISTS state (
    key TEXT PRIMARY KEY,
    value BLOB NOT NULL,
    updated_at REAL NOT NULL
);
"""

_UPSERT = """INSERT INTO state (key, value, updated_at)
   VALUES (?, ?, ?)
   ON CONFLICT(key) DO UPDATE SET
       value = excluded.value,
       updated_at = excluded.updated_at"""


class SQLiteStateStore:
    """SQLite tier state store: a single KV table.

    Writes on this connection are serialized by an asyncio lock so that a
    read-modify-write in ``update`` runs inside one ``BEGIN IMMEDIATE``
    transaction. ``BEGIN IMMEDIATE`` also takes SQLite's reserved lock,
    which excludes writers from other processes sharing the file.
    """

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn
        self._write_lock = asyncio.Lock()

    @classmethod
    async def create(cls, db_path: str) -> SQLiteStateStore:
        conn = await get_connection(db_path)
        await conn.executescript(_CREATE_STATE)
        return cls(conn)

    async def close(self) -> None:
        await self._conn.close()

    async def get(self, key: str) -> bytes | None:
        async with self._conn.execute(
            "SELECT value FROM state WHERE key = ?", (key,)
        ) as cursor:
            row = await cursor.fetchone()
            return row[0] if row else None

    async def set(self, key: str, value: bytes) -> None:
        async with self._write_lock:
            await self._conn.execute(_UPSERT, (key, value, time.time()))

    async def delete(self, key: str) -> None:
        async with self._write_lock:
            await self._conn.execute("DELETE FROM state WHERE key = ?", (key,))

    async def exists(self, key: str) -> bool:
        async with self._conn.execute(
            "SELECT 1 FROM state WHERE key = ?", (key,)
        ) as cursor:
            return (await cursor.fetchone()) is not None

    async def list_keys(self, prefix: str) -> AsyncIterator[str]:
        # Escape LIKE wildcards in the prefix so that
        # characters like % and _ are matched literally.
        escaped = (
            prefix
            .replace("\\", "\\\\")
            .replace("%", "\\%")
            .replace("_", "\\_")
        )
        async with self._conn.execute(
            "SELECT key FROM state WHERE key LIKE ? ESCAPE '\\'",
            (escaped + "%",),
        ) as cursor:
            rows = await cursor.fetchall()
        for row in rows:
            yield row[0]

    async def update(
        self, key: str, fn: Callable[[bytes | None], bytes | None]
    ) -> bytes | None:
        async with self._write_lock:
            await self._conn.execute("BEGIN IMMEDIATE")
            try:
                async with self._conn.execute(
                    "SELECT value FROM state WHERE key = ?", (key,)
                ) as cursor:
                    row = await cursor.fetchone()
                new = fn(row[0] if row else None)
                if new is None:
                    await self._conn.execute(
                        "DELETE FROM state WHERE key = ?", (key,)
                    )
                else:
                    await self._conn.execute(
                        _UPSERT, (key, new, time.time())
                    )
            except BaseException:
                await self._conn.execute("ROLLBACK")
                raise
            await self._conn.execute("COMMIT")
            return new
