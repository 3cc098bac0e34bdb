"""
In-Process Cache Tiers

Dictionary-backed hot and warm stores for single-process deployments
and tests. Same contracts as the Redis and PostgreSQL implementations.
"""

import asyncio
import copy
import logging
import time
from datetime import timedelta
from typing import Callable, Dict, Optional, Tuple

from admetrics.metrics.errors import CacheWriteError
from admetrics.metrics.keys import MetricsKey
from admetrics.metrics.records import MetricsRecord


logger = logging.getLogger(__name__)


class InMemoryHotStore:
    """TTL-respecting in-process key-value store."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, Tuple[float, bytes]] = {}
        self._clock = clock

    def _live(self, key: str) -> Optional[bytes]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def get(self, key: str) -> Optional[bytes]:
        return self._live(key)

    async def setex(self, key: str, ttl: timedelta, value: bytes) -> bool:
        seconds = ttl.total_seconds()
        if seconds <= 0:
            return False
        self._entries[key] = (self._clock() + seconds, value)
        return True

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def delete_prefix(self, prefix: str) -> int:
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    async def count(self, prefix: str = "") -> int:
        return sum(1 for key in list(self._entries) if key.startswith(prefix) and self._live(key) is not None)


class InMemoryWarmStore:
    """
    Dictionary-backed warm tier.

    Stores deep copies so callers can never mutate stored records.
    """

    def __init__(self):
        self._records: Dict[MetricsKey, MetricsRecord] = {}
        self._lock = asyncio.Lock()
        self.writes = 0

    async def get(self, key: MetricsKey) -> Optional[MetricsRecord]:
        record = self._records.get(key)
        return copy.deepcopy(record) if record is not None else None

    async def upsert(self, key: MetricsKey, record: MetricsRecord) -> None:
        if record.key != key:
            raise CacheWriteError(f"Record key {record.key} does not match {key}")
        async with self._lock:
            self._records[key] = copy.deepcopy(record)
            self.writes += 1

    async def delete_client(self, client_id: str) -> int:
        async with self._lock:
            doomed = [key for key in self._records if key.client_id == client_id]
            for key in doomed:
                del self._records[key]
        return len(doomed)

    async def count(self) -> int:
        return len(self._records)
