"""
Redis Hot Tier

Best-effort Redis store with:
- Connection pooling and lazy initialization
- Circuit breaker for resilience
- Namespace isolation
- Graceful degradation (misses and False on errors, never raises)
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError

from admetrics.cache.config import CacheConfig, get_cache_config


logger = logging.getLogger(__name__)

# Characters with meaning in a Redis MATCH pattern
_GLOB_SPECIAL = "*?[]\\"


@dataclass
class RedisStats:
    """Redis operation statistics."""
    hits: int = 0
    misses: int = 0
    errors: int = 0
    bytes_written: int = 0
    bytes_read: int = 0
    latency_samples: List[float] = field(default_factory=list)

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    @property
    def avg_latency_ms(self) -> float:
        if not self.latency_samples:
            return 0.0
        recent = self.latency_samples[-100:]
        return sum(recent) / len(recent) * 1000

    def record_latency(self, seconds: float):
        self.latency_samples.append(seconds)
        if len(self.latency_samples) > 1000:
            self.latency_samples = self.latency_samples[-1000:]


@dataclass
class CircuitBreakerState:
    """Circuit breaker state tracking."""
    failures: int = 0
    last_failure: float = 0.0
    is_open: bool = False
    opened_at: float = 0.0


class CircuitBreaker:
    """
    Circuit breaker for the Redis connection.

    Fails fast after `threshold` consecutive failures, then lets a
    request through again once `timeout` seconds have passed.
    """

    def __init__(self, threshold: int = 5, timeout: int = 60):
        self.threshold = threshold
        self.timeout = timeout
        self.state = CircuitBreakerState()
        self._lock = asyncio.Lock()

    async def is_available(self) -> bool:
        if not self.state.is_open:
            return True

        if time.time() - self.state.opened_at >= self.timeout:
            async with self._lock:
                self.state.is_open = False
                self.state.failures = 0
                logger.info("Circuit breaker closed, allowing requests")
            return True

        return False

    async def record_success(self):
        async with self._lock:
            self.state.failures = 0
            self.state.is_open = False

    async def record_failure(self):
        async with self._lock:
            self.state.failures += 1
            self.state.last_failure = time.time()

            if self.state.failures >= self.threshold and not self.state.is_open:
                self.state.is_open = True
                self.state.opened_at = time.time()
                logger.warning(
                    f"Circuit breaker opened after {self.state.failures} failures. "
                    f"Will retry in {self.timeout} seconds."
                )


class RedisHotStore:
    """
    Hot tier on Redis.

    Keys are namespaced as "<namespace>:<key>". Values are opaque bytes
    (see RecordCodec).
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        redis: Optional[Redis] = None,
    ):
        self.config = config or get_cache_config()
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = redis
        self._initialized = redis is not None
        self._circuit_breaker = CircuitBreaker(
            threshold=self.config.circuit_breaker_threshold,
            timeout=self.config.circuit_breaker_timeout,
        ) if self.config.circuit_breaker_enabled else None
        self._stats = RedisStats()
        self._lock = asyncio.Lock()

    async def initialize(self):
        """Initialize the Redis connection pool."""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            try:
                self._pool = ConnectionPool.from_url(
                    self.config.redis_url,
                    max_connections=self.config.redis_max_connections,
                    socket_timeout=self.config.redis_socket_timeout,
                    socket_connect_timeout=self.config.redis_connect_timeout,
                    decode_responses=False,
                )
                self._redis = Redis(connection_pool=self._pool)
                await self._redis.ping()
                self._initialized = True
                logger.info(f"Redis hot tier initialized: {self.config.redis_url}")

            except Exception as e:
                logger.error(f"Failed to initialize Redis: {e}")
                self._initialized = False
                raise

    async def close(self):
        """Close the Redis connection pool."""
        if self._redis:
            await self._redis.aclose()
        if self._pool:
            await self._pool.disconnect()
        self._initialized = False
        logger.info("Redis hot tier closed")

    async def _ensure_ready(self) -> bool:
        if not self.config.enabled:
            return False
        if self._initialized:
            return True
        try:
            await self.initialize()
            return True
        except Exception:
            self._stats.errors += 1
            return False

    @asynccontextmanager
    async def _with_circuit_breaker(self):
        if self._circuit_breaker and not await self._circuit_breaker.is_available():
            raise RedisConnectionError("Circuit breaker is open")

        try:
            yield
            if self._circuit_breaker:
                await self._circuit_breaker.record_success()
        except RedisError:
            if self._circuit_breaker:
                await self._circuit_breaker.record_failure()
            raise

    def _make_key(self, key: str) -> str:
        return f"{self.config.namespace}:{key}"

    # =========================================================================
    # Core Operations
    # =========================================================================

    async def get(self, key: str) -> Optional[bytes]:
        if not await self._ensure_ready():
            return None

        start_time = time.time()
        try:
            async with self._with_circuit_breaker():
                data = await self._redis.get(self._make_key(key))
        except RedisError as e:
            self._stats.errors += 1
            logger.warning(f"Redis get failed for {key}: {e}")
            return None

        self._stats.record_latency(time.time() - start_time)
        if data is None:
            self._stats.misses += 1
            return None

        self._stats.hits += 1
        self._stats.bytes_read += len(data)
        return data

    async def setex(self, key: str, ttl: timedelta, value: bytes) -> bool:
        if not await self._ensure_ready():
            return False

        start_time = time.time()
        try:
            async with self._with_circuit_breaker():
                await self._redis.setex(self._make_key(key), ttl, value)
        except RedisError as e:
            self._stats.errors += 1
            logger.warning(f"Redis setex failed for {key}: {e}")
            return False

        self._stats.record_latency(time.time() - start_time)
        self._stats.bytes_written += len(value)
        return True

    async def delete(self, key: str) -> bool:
        if not await self._ensure_ready():
            return False

        try:
            async with self._with_circuit_breaker():
                await self._redis.delete(self._make_key(key))
            return True
        except RedisError as e:
            self._stats.errors += 1
            logger.error(f"Redis delete failed for {key}: {e}")
            return False

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix. Returns count deleted."""
        if not await self._ensure_ready():
            return 0

        pattern = _escape_glob(self._make_key(prefix)) + "*"
        try:
            async with self._with_circuit_breaker():
                keys = [key async for key in self._redis.scan_iter(match=pattern, count=100)]
                if not keys:
                    return 0
                deleted = await self._redis.delete(*keys)
            logger.info(f"Deleted {deleted} hot-tier keys matching {pattern}")
            return deleted
        except RedisError as e:
            self._stats.errors += 1
            logger.error(f"Redis prefix delete failed for {prefix}: {e}")
            return 0

    async def count(self, prefix: str = "") -> int:
        if not await self._ensure_ready():
            return 0

        pattern = _escape_glob(self._make_key(prefix)) + "*"
        try:
            async with self._with_circuit_breaker():
                total = 0
                async for _ in self._redis.scan_iter(match=pattern, count=500):
                    total += 1
                return total
        except RedisError as e:
            self._stats.errors += 1
            logger.warning(f"Redis count failed: {e}")
            return 0

    # =========================================================================
    # Statistics and Health
    # =========================================================================

    def get_stats(self) -> Dict:
        return {
            "enabled": self.config.enabled,
            "initialized": self._initialized,
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "errors": self._stats.errors,
            "hit_rate_percent": round(self._stats.hit_rate * 100, 2),
            "avg_latency_ms": round(self._stats.avg_latency_ms, 2),
            "bytes_written": self._stats.bytes_written,
            "bytes_read": self._stats.bytes_read,
            "circuit_breaker_open": (
                self._circuit_breaker.state.is_open
                if self._circuit_breaker else False
            ),
        }

    async def health_check(self) -> Dict:
        if not self.config.enabled:
            return {"healthy": True, "status": "disabled"}

        try:
            if not self._initialized:
                await self.initialize()

            start = time.time()
            async with self._with_circuit_breaker():
                await self._redis.ping()
            latency_ms = (time.time() - start) * 1000

            return {
                "healthy": True,
                "status": "connected",
                "latency_ms": round(latency_ms, 2),
                "stats": self.get_stats(),
            }

        except Exception as e:
            return {
                "healthy": False,
                "status": "error",
                "error": str(e),
                "stats": self.get_stats(),
            }


def _escape_glob(text: str) -> str:
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIAL else ch for ch in text)
