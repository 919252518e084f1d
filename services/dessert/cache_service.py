# services/dessert/cache_service.py
"""
Two-tier generation cache.

The memory tier is a bounded LRU with per-entry expiry living in the worker
process. The persistent tier is the Postgres ``cache`` table, shared by every
worker and surviving restarts. Writes go to memory first, then the table;
reads try memory, then the table, and repopulate memory on a table hit.
The tiers are eventually consistent.
"""

import asyncio
import logging
import threading
import time
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from shared.database import Database, affected_rows
from shared.json_utils import safe_json_dumps, safe_json_parse

from services.dessert.config import CACHE_MAX_SIZE, CACHE_TTL_SECONDS
from services.dessert.models import CacheStats

logger = logging.getLogger(__name__)


class MemoryCache:
    """Bounded LRU with TTL. Safe to share between threads."""

    def __init__(
        self,
        max_size: int = CACHE_MAX_SIZE,
        ttl_seconds: int = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_size = max_size
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, tuple[Any, float]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None

            self._entries.move_to_end(key)
            return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CacheStore:
    """Persistent tier over the ``cache`` table"""

    def __init__(self, db: Database):
        self.db = db

    async def fetch_active(self, key: str) -> Optional[dict]:
        return await self.db.fetch_one(
            """
            SELECT id, cache_key, data, hits, expires_at FROM cache
            WHERE cache_key = $1 AND expires_at > CURRENT_TIMESTAMP
            """,
            key,
        )

    async def upsert(self, key: str, data: Any, expires_at: datetime) -> None:
        # Overwrite payload and expiry, keep the accumulated hit count
        await self.db.execute(
            """
            INSERT INTO cache (cache_key, data, expires_at)
            VALUES ($1, $2::jsonb, $3)
            ON CONFLICT (cache_key) DO UPDATE SET
                data = EXCLUDED.data,
                expires_at = EXCLUDED.expires_at
            """,
            key,
            safe_json_dumps(data),
            expires_at,
        )

    async def increment_hits(self, row_id: int) -> None:
        await self.db.execute("UPDATE cache SET hits = hits + 1 WHERE id = $1", row_id)

    async def delete(self, key: str) -> None:
        await self.db.execute("DELETE FROM cache WHERE cache_key = $1", key)

    async def delete_expired(self) -> int:
        result = await self.db.execute("DELETE FROM cache WHERE expires_at < CURRENT_TIMESTAMP")
        return affected_rows(result)

    async def delete_all(self) -> int:
        result = await self.db.execute("DELETE FROM cache")
        return affected_rows(result)

    async def stats(self) -> dict:
        row = await self.db.fetch_one(
            """
            SELECT
                COUNT(*) as total,
                COUNT(*) FILTER (WHERE expires_at > CURRENT_TIMESTAMP) as active,
                COALESCE(SUM(hits), 0) as total_hits
            FROM cache
            """
        )
        return row or {"total": 0, "active": 0, "total_hits": 0}


class CacheService:
    """Read-through, write-through cache over a MemoryCache and a CacheStore"""

    def __init__(self, memory: MemoryCache, store: CacheStore):
        self.memory = memory
        self.store = store
        self._pending: set[asyncio.Task] = set()

    async def get(self, key: str) -> Optional[Any]:
        cached = self.memory.get(key)
        if cached is not None:
            logger.debug(f"📦 CACHE: Hit (memory) {key[:8]}...")
            return cached

        try:
            row = await self.store.fetch_active(key)
        except Exception as e:
            logger.warning(f"⚠️ CACHE: Persistent lookup failed for {key[:8]}...: {e}")
            return None

        if row:
            data = safe_json_parse(row["data"])
            if data is not None:
                self._schedule_hit_increment(row["id"], key)
                self.memory.set(key, data, self._remaining_ttl(row["expires_at"]))
                logger.info(f"📦 CACHE: Hit (db) {key[:8]}...")
                return data

        logger.info(f"📭 CACHE: Miss {key[:8]}...")
        return None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        ttl = self.memory.ttl_seconds if ttl_seconds is None else ttl_seconds
        self.memory.set(key, value, ttl)

        try:
            expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)
            await self.store.upsert(key, value, expires_at)
        except Exception as e:
            logger.warning(f"⚠️ CACHE: Persistent write failed for {key[:8]}...: {e}")
            return False

        logger.info(f"💾 CACHE: Set {key[:8]}...")
        return True

    async def remove(self, key: str) -> bool:
        self.memory.delete(key)
        try:
            await self.store.delete(key)
        except Exception as e:
            logger.warning(f"⚠️ CACHE: Persistent delete failed for {key[:8]}...: {e}")
            return False
        return True

    async def cleanup(self) -> int:
        """Reap expired persistent entries"""
        try:
            removed = await self.store.delete_expired()
        except Exception as e:
            logger.error(f"❌ CACHE: Cleanup failed: {e}")
            return 0

        logger.info(f"🧹 CACHE: Cleanup removed {removed} entries")
        return removed

    async def clear(self) -> bool:
        self.memory.clear()
        try:
            await self.store.delete_all()
        except Exception as e:
            logger.error(f"❌ CACHE: Clear failed: {e}")
            return False

        logger.info("🗑️ CACHE: Cleared both tiers")
        return True

    async def get_stats(self) -> CacheStats:
        stats = CacheStats(memory_size=len(self.memory), memory_max_size=self.memory.max_size)
        try:
            row = await self.store.stats()
        except Exception as e:
            logger.warning(f"⚠️ CACHE: Stats query failed: {e}")
            return stats

        stats.db_total = row["total"]
        stats.db_active = row["active"]
        stats.total_hits = row["total_hits"]
        return stats

    def _remaining_ttl(self, expires_at: datetime) -> float:
        """Seconds until the persistent row expires, capped at the memory TTL"""
        remaining = (expires_at - datetime.now(timezone.utc)).total_seconds()
        return max(0.0, min(remaining, self.memory.ttl_seconds))

    def _schedule_hit_increment(self, row_id: int, key: str) -> None:
        task = asyncio.create_task(self._increment_hits(row_id, key))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _increment_hits(self, row_id: int, key: str) -> None:
        try:
            await self.store.increment_hits(row_id)
        except Exception as e:
            logger.warning(f"⚠️ CACHE: Hit counter update failed for {key[:8]}...: {e}")

    async def drain(self) -> None:
        """Wait for outstanding hit-counter updates"""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
