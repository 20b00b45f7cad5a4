"""
Ordered-list key-value backends for the recency cache.

Both backends implement the same primitives:
- ``push_front_unique``: remove members starting with ``dedup_prefix``, push
  ``member`` to the front and trim to ``limit`` entries, as one atomic unit
- ``head``: peek at index 0
- ``range``: whole list, most recent first
- ``delete``: drop the whole list
"""

from __future__ import annotations
import sqlite3
from pathlib import Path
from typing import List, Optional, Protocol

import redis
from loguru import logger

from songmap.errors import SongMapError, StoreTimeoutError, StoreUnavailableError
from songmap.store.sqlite_base import SQLiteDatabase


class ListCache(Protocol):
    def push_front_unique(self, key: str, member: str, dedup_prefix: str, limit: int) -> int:
        """Atomic dedup-remove, push-front, trim. Returns the new length."""
        ...

    def head(self, key: str) -> Optional[str]:
        ...

    def range(self, key: str) -> List[str]:
        ...

    def delete(self, key: str) -> None:
        ...

    def close(self) -> None:
        ...


class SQLiteListCache(SQLiteDatabase):
    """
    List cache in a local SQLite file.

    Each list is the set of rows sharing ``list_key``; a higher ``seq`` means
    more recent. ``BEGIN IMMEDIATE`` serialises concurrent pushes.
    """

    def __init__(self, db_path: str | Path = "data/cache/history.db", timeout: float = 5.0):
        super().__init__(db_path, timeout=timeout)

    def _create_schema(self, cursor: sqlite3.Cursor):
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS list_entries (
                list_key TEXT NOT NULL,
                seq INTEGER NOT NULL,
                member TEXT NOT NULL,
                PRIMARY KEY (list_key, seq)
            )
        """)

    def push_front_unique(self, key: str, member: str, dedup_prefix: str, limit: int) -> int:
        with self._transaction() as cursor:
            cursor.execute(
                "DELETE FROM list_entries WHERE list_key = ? AND substr(member, 1, ?) = ?",
                (key, len(dedup_prefix), dedup_prefix),
            )
            cursor.execute(
                "SELECT COALESCE(MAX(seq), 0) + 1 FROM list_entries WHERE list_key = ?",
                (key,),
            )
            seq = cursor.fetchone()[0]
            cursor.execute(
                "INSERT INTO list_entries (list_key, seq, member) VALUES (?, ?, ?)",
                (key, seq, member),
            )
            cursor.execute("""
                DELETE FROM list_entries
                WHERE list_key = ? AND seq NOT IN (
                    SELECT seq FROM list_entries WHERE list_key = ?
                    ORDER BY seq DESC LIMIT ?
                )
            """, (key, key, limit))
            cursor.execute("SELECT COUNT(*) FROM list_entries WHERE list_key = ?", (key,))
            return cursor.fetchone()[0]

    def head(self, key: str) -> Optional[str]:
        with self._read() as cursor:
            cursor.execute(
                "SELECT member FROM list_entries WHERE list_key = ? ORDER BY seq DESC LIMIT 1",
                (key,),
            )
            row = cursor.fetchone()
        return row["member"] if row else None

    def range(self, key: str) -> List[str]:
        with self._read() as cursor:
            cursor.execute(
                "SELECT member FROM list_entries WHERE list_key = ? ORDER BY seq DESC",
                (key,),
            )
            return [row["member"] for row in cursor.fetchall()]

    def delete(self, key: str) -> None:
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM list_entries WHERE list_key = ?", (key,))


_PUSH_UNIQUE_LUA = r"""
local key = KEYS[1]
local member = ARGV[1]
local prefix = ARGV[2]
local limit = tonumber(ARGV[3])
local items = redis.call('LRANGE', key, 0, -1)
for _, item in ipairs(items) do
  if string.sub(item, 1, string.len(prefix)) == prefix then
    redis.call('LREM', key, 0, item)
  end
end
redis.call('LPUSH', key, member)
redis.call('LTRIM', key, 0, limit - 1)
return redis.call('LLEN', key)
"""


def translate_redis_error(exc: redis.RedisError) -> SongMapError:
    if isinstance(exc, redis.TimeoutError):
        return StoreTimeoutError(f"Redis timed out: {exc}")
    return StoreUnavailableError(f"Redis failed: {exc}")


class RedisListCache:
    """List cache on Redis; the push runs as one Lua script so it cannot interleave."""

    def __init__(self, url: str = "redis://localhost:6379/0", timeout: float = 5.0, client=None):
        """
        Args:
            url: Redis URL
            timeout: Socket timeout in seconds
            client: Pre-built client, mainly for tests
        """
        self.client = client or redis.from_url(url, decode_responses=True, socket_timeout=timeout)
        self._push_script = self.client.register_script(_PUSH_UNIQUE_LUA)

    def push_front_unique(self, key: str, member: str, dedup_prefix: str, limit: int) -> int:
        try:
            return int(self._push_script(keys=[key], args=[member, dedup_prefix, limit]))
        except redis.RedisError as e:
            logger.error(f"Redis push failed for {key}: {e}")
            raise translate_redis_error(e)

    def head(self, key: str) -> Optional[str]:
        try:
            return self.client.lindex(key, 0)
        except redis.RedisError as e:
            raise translate_redis_error(e)

    def range(self, key: str) -> List[str]:
        try:
            return list(self.client.lrange(key, 0, -1))
        except redis.RedisError as e:
            raise translate_redis_error(e)

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            raise translate_redis_error(e)

    def close(self) -> None:
        self.client.close()
