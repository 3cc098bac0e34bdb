"""
Tiered Cache

Hot and warm tiers behind one interface. Each tier owns only its own
storage; deciding which tier answers a request is the orchestrator's job.

- Hot: optional, best effort. Misses and failures are indistinguishable.
- Warm: durable source of truth. Writes raise CacheWriteError on failure.
"""

import logging
from datetime import timedelta
from typing import Dict, Optional

from admetrics.cache.base import HotStore, WarmStore
from admetrics.cache.codec import RecordCodec
from admetrics.cache.config import CacheTTL
from admetrics.metrics.keys import KEY_PREFIX, MetricsKey, client_prefix
from admetrics.metrics.records import MetricsRecord


logger = logging.getLogger(__name__)


class TieredCache:
    """Hot (key-value, TTL) over warm (durable, upsert) storage."""

    def __init__(
        self,
        warm: WarmStore,
        hot: Optional[HotStore] = None,
        codec: Optional[RecordCodec] = None,
        hot_ttl: timedelta = CacheTTL.HOT,
    ):
        self.warm = warm
        self.hot = hot
        self.codec = codec or RecordCodec()
        self.hot_ttl = hot_ttl
        self._stats = {
            "hot_writes": 0,
            "hot_write_failures": 0,
            "warm_writes": 0,
            "bytes_saved": 0,
        }

    # =========================================================================
    # Hot tier
    # =========================================================================

    async def get_hot(self, key: MetricsKey) -> Optional[MetricsRecord]:
        if self.hot is None:
            return None

        try:
            data = await self.hot.get(key.cache_key)
            if data is None:
                return None
            record = self.codec.decode(data)
        except Exception as e:
            logger.warning(f"Hot tier read failed for {key}: {e}")
            return None

        if record is None or record.key != key:
            return None
        return record

    async def put_hot(
        self,
        key: MetricsKey,
        record: MetricsRecord,
        ttl: Optional[timedelta] = None,
    ) -> bool:
        """Best-effort hot write. Returns False instead of raising."""
        if self.hot is None:
            return False

        try:
            payload, stats = self.codec.encode(record)
            written = await self.hot.setex(key.cache_key, ttl or self.hot_ttl, payload)
        except Exception as e:
            logger.warning(f"Hot tier write failed for {key}: {e}")
            written = False
        else:
            self._stats["bytes_saved"] += stats.bytes_saved

        if written:
            self._stats["hot_writes"] += 1
        else:
            self._stats["hot_write_failures"] += 1
        return written

    # =========================================================================
    # Warm tier
    # =========================================================================

    async def get_warm(self, key: MetricsKey) -> Optional[MetricsRecord]:
        return await self.warm.get(key)

    async def put_warm(self, key: MetricsKey, record: MetricsRecord) -> None:
        """Durable upsert. Raises CacheWriteError when the write fails."""
        await self.warm.upsert(key, record)
        self._stats["warm_writes"] += 1

    # =========================================================================
    # Invalidation and stats
    # =========================================================================

    async def invalidate_client(self, client_id: str) -> Dict[str, int]:
        """Remove every hot and warm entry for a client."""
        hot_deleted = 0
        if self.hot is not None:
            try:
                hot_deleted = await self.hot.delete_prefix(client_prefix(client_id))
            except Exception as e:
                logger.warning(f"Hot tier invalidation failed for {client_id}: {e}")

        warm_deleted = await self.warm.delete_client(client_id)
        logger.info(
            f"Invalidated client {client_id}: {hot_deleted} hot, {warm_deleted} warm entries"
        )
        return {"hot": hot_deleted, "warm": warm_deleted}

    async def hot_entry_count(self) -> int:
        if self.hot is None:
            return 0
        try:
            return await self.hot.count(KEY_PREFIX)
        except Exception as e:
            logger.warning(f"Hot tier count failed: {e}")
            return 0

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)
