"""
Cache Tier Contracts

Hot tier: byte-level key-value store with TTLs (GET / SETEX / DEL /
prefix delete). Best effort: implementations report failure by return
value and never raise.

Warm tier: durable record store addressed by MetricsKey with upsert
semantics. A write is durable before upsert() returns; failures raise
CacheWriteError.
"""

from datetime import timedelta
from typing import Optional, Protocol

from admetrics.metrics.keys import MetricsKey
from admetrics.metrics.records import MetricsRecord


class HotStore(Protocol):

    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def setex(self, key: str, ttl: timedelta, value: bytes) -> bool:
        ...

    async def delete(self, key: str) -> bool:
        ...

    async def delete_prefix(self, prefix: str) -> int:
        ...

    async def count(self, prefix: str = "") -> int:
        ...


class WarmStore(Protocol):

    async def get(self, key: MetricsKey) -> Optional[MetricsRecord]:
        ...

    async def upsert(self, key: MetricsKey, record: MetricsRecord) -> None:
        ...

    async def delete_client(self, client_id: str) -> int:
        ...

    async def count(self) -> int:
        ...
