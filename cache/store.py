"""
cache/store.py -- SQLite-backed TTL cache for user records.

Avoids a database round trip on every authenticated request: the bearer guard
resolves the user through UserService.find_one(), which reads this cache first.
Each entry carries its own expiry; the default TTL comes from
CACHE_USER_EXPIRES.

Usage:
    cache = UserCache(ttl=3600)
    cache.set("a@example.com", user.to_dict())
    data = cache.get("a@example.com")   # returns dict or None
    cache.delete(user.id, user.email)
    cache.purge_expired()               # call periodically to trim old entries
"""

import json
import sqlite3
import time
from pathlib import Path
from typing import Optional, Union

_DEFAULT_DB = "lanterra_cache.db"
_DEFAULT_TTL = 60 * 60  # 1 hour in seconds

_DDL = """
CREATE TABLE IF NOT EXISTS kv_cache (
    key         TEXT PRIMARY KEY,
    data        TEXT NOT NULL,
    expires_at  REAL NOT NULL
);
"""


class UserCache:
    def __init__(self, db_path: Union[str, Path] = _DEFAULT_DB, ttl: int = _DEFAULT_TTL) -> None:
        self.ttl = ttl
        self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute(_DDL)
        self._conn.commit()

    def get(self, key: str) -> Optional[dict]:
        """Return cached data for key if it exists and hasn't expired."""
        row = self._conn.execute(
            "SELECT data, expires_at FROM kv_cache WHERE key = ?",
            (key,),
        ).fetchone()
        if row is None:
            return None
        data, expires_at = row
        if time.time() >= expires_at:
            self.delete(key)
            return None
        return json.loads(data)

    def set(self, key: str, data: dict, ttl: Optional[int] = None) -> None:
        """Store data for key, replacing any existing entry."""
        expires_at = time.time() + (ttl if ttl is not None else self.ttl)
        self._conn.execute(
            "INSERT OR REPLACE INTO kv_cache (key, data, expires_at) VALUES (?, ?, ?)",
            (key, json.dumps(data), expires_at),
        )
        self._conn.commit()

    def delete(self, *keys: str) -> int:
        """Remove the given keys. Falsy keys are ignored. Returns rows removed."""
        keys = tuple(k for k in keys if k)
        if not keys:
            return 0
        cursor = self._conn.executemany("DELETE FROM kv_cache WHERE key = ?", [(k,) for k in keys])
        self._conn.commit()
        return cursor.rowcount

    def purge_expired(self) -> int:
        """Delete all expired entries. Returns number of rows removed."""
        cursor = self._conn.execute("DELETE FROM kv_cache WHERE expires_at <= ?", (time.time(),))
        self._conn.commit()
        return cursor.rowcount

    def close(self) -> None:
        self._conn.close()
