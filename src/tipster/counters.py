"""
Counter / cache store used by the budget guard and for cache invalidation.

Key-value store backed by SQLite (WAL mode), with the four operations the
rest of tipster relies on:
- incr: atomic increment, returning the post-increment value
- expire: set a TTL in seconds on an existing key
- get: read a value, honouring expiry
- delete / delete_prefix: drop keys

Expired keys behave as absent: an incr on an expired key restarts at 1.
"""

from __future__ import annotations
import logging
import sqlite3
import time
from contextlib import closing
from pathlib import Path
from typing import Callable, Optional, Protocol

from tipster.config import Settings
from tipster.errors import TipsterError

logger = logging.getLogger(__name__)


class CounterStoreError(TipsterError):
    """The counter store could not be reached or failed mid-operation."""


class CounterStore(Protocol):
    def incr(self, key: str) -> int: ...
    def expire(self, key: str, seconds: int) -> bool: ...
    def get(self, key: str) -> Optional[int]: ...
    def delete(self, key: str) -> int: ...
    def delete_prefix(self, prefix: str) -> int: ...


class SqliteCounterStore:
    """Counter store on a local SQLite file."""

    def __init__(self, db_path: str = "data/counters.db", clock: Callable[[], float] = time.time):
        """
        Initialize store.

        Args:
            db_path: Path to SQLite database file
            clock: Epoch-seconds clock used for expiry (injectable for tests)
        """
        self.db_path = Path(db_path)
        self.clock = clock
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._init_schema()
        except (sqlite3.Error, OSError) as exc:
            raise CounterStoreError(f"cannot open counter store at {self.db_path}: {exc}") from exc

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path), timeout=5.0)

    def _init_schema(self) -> None:
        """Create counter table if it doesn't exist."""
        with closing(self._connect()) as con:
            con.execute("PRAGMA journal_mode=WAL")  # Better concurrency
            con.execute("""
                CREATE TABLE IF NOT EXISTS counters (
                    key TEXT PRIMARY KEY,
                    value INTEGER NOT NULL DEFAULT 0,
                    expires_at REAL  -- epoch seconds, NULL = no expiry
                );
            """)
            con.commit()

    def incr(self, key: str) -> int:
        """
        Atomically increment *key* and return the new value.

        A single upsert statement, so concurrent callers never observe the
        same post-increment value.
        """
        now = self.clock()
        try:
            with closing(self._connect()) as con:
                row = con.execute("""
                    INSERT INTO counters (key, value, expires_at) VALUES (?, 1, NULL)
                    ON CONFLICT(key) DO UPDATE SET
                        value = CASE
                            WHEN counters.expires_at IS NOT NULL AND counters.expires_at <= ? THEN 1
                            ELSE counters.value + 1
                        END,
                        expires_at = CASE
                            WHEN counters.expires_at IS NOT NULL AND counters.expires_at <= ? THEN NULL
                            ELSE counters.expires_at
                        END
                    RETURNING value
                """, [key, now, now]).fetchall()[0]
                con.commit()
        except sqlite3.Error as exc:
            raise CounterStoreError(f"incr {key} failed: {exc}") from exc
        return int(row[0])

    def expire(self, key: str, seconds: int) -> bool:
        """Set a TTL on *key*. Returns False when the key does not exist."""
        try:
            with closing(self._connect()) as con:
                cursor = con.execute(
                    "UPDATE counters SET expires_at = ? WHERE key = ?",
                    [self.clock() + seconds, key],
                )
                con.commit()
        except sqlite3.Error as exc:
            raise CounterStoreError(f"expire {key} failed: {exc}") from exc
        return cursor.rowcount > 0

    def get(self, key: str) -> Optional[int]:
        """Current value of *key*, or None if missing or expired."""
        try:
            with closing(self._connect()) as con:
                row = con.execute(
                    "SELECT value, expires_at FROM counters WHERE key = ?", [key]
                ).fetchone()
        except sqlite3.Error as exc:
            raise CounterStoreError(f"get {key} failed: {exc}") from exc

        if not row:
            return None
        value, expires_at = row
        if expires_at is not None and expires_at <= self.clock():
            return None
        return int(value)

    def delete(self, key: str) -> int:
        try:
            with closing(self._connect()) as con:
                cursor = con.execute("DELETE FROM counters WHERE key = ?", [key])
                con.commit()
        except sqlite3.Error as exc:
            raise CounterStoreError(f"delete {key} failed: {exc}") from exc
        return cursor.rowcount

    def delete_prefix(self, prefix: str) -> int:
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        try:
            with closing(self._connect()) as con:
                cursor = con.execute(
                    "DELETE FROM counters WHERE key LIKE ? ESCAPE '\\'", [escaped + "%"]
                )
                con.commit()
        except sqlite3.Error as exc:
            raise CounterStoreError(f"delete_prefix {prefix} failed: {exc}") from exc
        logger.debug(f"[counters] deleted {cursor.rowcount} keys under {prefix!r}")
        return cursor.rowcount

    def cleanup(self) -> int:
        """Remove expired keys."""
        try:
            with closing(self._connect()) as con:
                cursor = con.execute(
                    "DELETE FROM counters WHERE expires_at IS NOT NULL AND expires_at <= ?",
                    [self.clock()],
                )
                con.commit()
        except sqlite3.Error as exc:
            raise CounterStoreError(f"cleanup failed: {exc}") from exc
        logger.info(f"[counters] cleanup removed {cursor.rowcount} expired keys")
        return cursor.rowcount


def counter_store_from_settings(s: Settings) -> Optional[SqliteCounterStore]:
    """Open the configured store, or None when it is disabled or unreachable."""
    if not s.counter_db_path:
        logger.warning("[counters] counter store disabled by configuration")
        return None
    try:
        return SqliteCounterStore(s.counter_db_path)
    except CounterStoreError as exc:
        logger.warning(f"[counters] counter store unavailable: {exc}")
        return None


# ---------------------------------------------------------------------------
# Cache keys + best-effort invalidation
# ---------------------------------------------------------------------------

def match_cache_prefix(match_id: int) -> str:
    return f"cache:match:{match_id}:"


LEADERBOARD_CACHE_PREFIX = "cache:leaderboard:"
ACTIVE_MODELS_CACHE_KEY = "cache:models:active"


def invalidate_match_caches(store: Optional[CounterStore], match_id: int) -> bool:
    """Drop cached views touched by scoring *match_id*.

    Never raises: the scoring write has already happened, so a failure here
    only means stale reads until the TTL runs out. Returns whether every
    delete succeeded.
    """
    if store is None:
        logger.warning(f"[counters] no store; skipping cache invalidation for match {match_id}")
        return False
    try:
        store.delete_prefix(match_cache_prefix(match_id))
        store.delete_prefix(LEADERBOARD_CACHE_PREFIX)
    except CounterStoreError as exc:
        logger.warning(f"[counters] cache invalidation failed for match {match_id}: {exc}")
        return False
    return True


def invalidate_model_caches(store: Optional[CounterStore]) -> bool:
    """Drop the cached active-model list after a health change. Never raises."""
    if store is None:
        return False
    try:
        store.delete(ACTIVE_MODELS_CACHE_KEY)
    except CounterStoreError as exc:
        logger.warning(f"[counters] active-models cache invalidation failed: {exc}")
        return False
    return True
