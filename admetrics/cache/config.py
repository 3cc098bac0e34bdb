"""
Cache Configuration

Centralized configuration for the metrics caching layer.

Two tiers:
- Hot: Redis (or in-process) key-value entries with a short TTL
- Warm: PostgreSQL metrics_cache table, the durable source of truth
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache
from typing import Optional


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_seconds(name: str, default: int) -> timedelta:
    return timedelta(seconds=int(os.getenv(name, str(default))))


@dataclass(frozen=True)
class CacheTTL:
    """
    Cache durations by tier.

    Key insight: current-period metrics change a few times per hour at
    most, and closed periods never change. Vendor calls take 10-40s.
    """

    # Hot tier entries expire quickly; warm tier stays authoritative
    HOT: timedelta = timedelta(minutes=10)

    # Current-period warm records older than this are stale
    WARM_MAX_AGE: timedelta = timedelta(hours=3)

    # Minimum spacing between background refreshes of one key
    REFRESH_COOLDOWN: timedelta = timedelta(minutes=5)

    # Scheduled warming skips records younger than this
    WARMING_FRESH_MARGIN: timedelta = timedelta(hours=2, minutes=30)

    # Scheduled warming interval
    WARMING_INTERVAL: timedelta = timedelta(hours=3)


@dataclass
class CacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - CACHE_ENABLED: Enable/disable the hot tier
    - REDIS_URL: Hot tier Redis; unset means in-process hot tier
    - CACHE_HOT_TTL_SECONDS / CACHE_WARM_MAX_AGE_SECONDS: freshness windows
    """

    # Cache namespace (for key prefixes)
    namespace: str = field(default_factory=lambda: os.getenv(
        "CACHE_NAMESPACE",
        "admetrics"
    ))

    # Hot tier toggle
    enabled: bool = field(default_factory=lambda: _env_bool("CACHE_ENABLED", "true"))

    # Redis connection
    redis_url: Optional[str] = field(default_factory=lambda: os.getenv("REDIS_URL"))
    redis_max_connections: int = field(default_factory=lambda: int(os.getenv(
        "REDIS_MAX_CONNECTIONS",
        "50"
    )))
    redis_socket_timeout: float = 2.0
    redis_connect_timeout: float = 2.0

    # Compression of hot-tier payloads
    compression_enabled: bool = field(default_factory=lambda: _env_bool(
        "CACHE_COMPRESSION_ENABLED",
        "true"
    ))
    compression_threshold: int = 1024

    # Circuit breaker for the Redis connection
    circuit_breaker_enabled: bool = True
    circuit_breaker_threshold: int = 5
    circuit_breaker_timeout: int = 60

    # Freshness windows
    hot_ttl: timedelta = field(default_factory=lambda: _env_seconds(
        "CACHE_HOT_TTL_SECONDS",
        int(CacheTTL.HOT.total_seconds())
    ))
    warm_max_age: timedelta = field(default_factory=lambda: _env_seconds(
        "CACHE_WARM_MAX_AGE_SECONDS",
        int(CacheTTL.WARM_MAX_AGE.total_seconds())
    ))

    # Background refresh
    refresh_cooldown: timedelta = field(default_factory=lambda: _env_seconds(
        "CACHE_REFRESH_COOLDOWN_SECONDS",
        int(CacheTTL.REFRESH_COOLDOWN.total_seconds())
    ))
    max_concurrent_refreshes: int = field(default_factory=lambda: int(os.getenv(
        "CACHE_MAX_CONCURRENT_REFRESHES",
        "4"
    )))

    # Scheduled warming
    warming_interval: timedelta = field(default_factory=lambda: _env_seconds(
        "CACHE_WARMING_INTERVAL_SECONDS",
        int(CacheTTL.WARMING_INTERVAL.total_seconds())
    ))
    warming_fresh_margin: timedelta = field(default_factory=lambda: _env_seconds(
        "CACHE_WARMING_FRESH_MARGIN_SECONDS",
        int(CacheTTL.WARMING_FRESH_MARGIN.total_seconds())
    ))
    warming_batch_size: int = 2

    # Timezone that decides which day is "today" for period classification
    report_timezone: str = field(default_factory=lambda: os.getenv("REPORT_TIMEZONE", "UTC"))


@lru_cache(maxsize=1)
def get_cache_config() -> CacheConfig:
    """Get singleton cache configuration."""
    return CacheConfig()
