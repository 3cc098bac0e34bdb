"""
Metrics Caching Layer

Two tiers:
- Hot: Redis (or in-process) entries with a short TTL, best effort
- Warm: PostgreSQL metrics_cache table, durable source of truth

Key components:
- TieredCache: hot and warm tiers behind one interface
- RedisHotStore / InMemoryHotStore: hot tier implementations
- SQLAlchemyWarmStore / InMemoryWarmStore: warm tier implementations
- RecordCodec: LZ4/ZSTD-compressed hot-tier payloads
- CacheWarmer: scheduled refresh of current periods
"""

from admetrics.cache.config import CacheConfig, CacheTTL, get_cache_config
from admetrics.cache.codec import RecordCodec
from admetrics.cache.memory import InMemoryHotStore, InMemoryWarmStore
from admetrics.cache.redis_cache import RedisHotStore
from admetrics.cache.postgres_cache import SQLAlchemyWarmStore
from admetrics.cache.tiered import TieredCache
from admetrics.cache.warming import CacheWarmer

__all__ = [
    "CacheConfig",
    "CacheTTL",
    "get_cache_config",
    "RecordCodec",
    "InMemoryHotStore",
    "InMemoryWarmStore",
    "RedisHotStore",
    "SQLAlchemyWarmStore",
    "TieredCache",
    "CacheWarmer",
]
