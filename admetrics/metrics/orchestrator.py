"""
Metrics Orchestrator

The single entry point used by dashboards, reports and email jobs.

Per platform, a request walks:

    CheckHot -> CheckWarm -> ServeWarmFresh
                          -> ServeWarmStaleAndRefresh
                          -> CheckLive -> ServeLive | Fail

1. Hot hit: served immediately.
2. Warm record for a historical period with campaigns: served regardless
   of age, hot tier populated.
3. Warm record, current period: fresh records are served (hot populated);
   stale records are served at once and refreshed in the background.
4. Warm miss or forced refresh: one coalesced live fetch, written through
   to warm then hot.

A "both" request resolves each platform independently, so only the
platforms that missed go live, then merges the parts. Fail (no requested
platform produced live or cached data) raises BothPlatformsFailedError;
nothing is ever fabricated.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from admetrics.cache.config import CacheTTL
from admetrics.cache.tiered import TieredCache
from admetrics.metrics.aggregator import ParallelAggregator
from admetrics.metrics.coalescer import RequestCoalescer
from admetrics.metrics.errors import (
    BothPlatformsFailedError,
    CacheWriteError,
    platform_error_from_dict,
)
from admetrics.metrics.freshness import FreshnessPolicy, record_age, utc_now
from admetrics.metrics.keys import MetricsKey, RangeLike, build_key
from admetrics.metrics.models import SourceTier
from admetrics.metrics.recorder import InMemoryMetricsRecorder, MetricsRecorder
from admetrics.metrics.records import MetricsRecord, merge_records
from admetrics.metrics.refresher import BackgroundRefresher


logger = logging.getLogger(__name__)


class MetricsOrchestrator:
    """
    Decides which tier answers each request.

    All collaborators are injected; nothing here is process-global.
    """

    def __init__(
        self,
        aggregator: ParallelAggregator,
        cache: TieredCache,
        policy: Optional[FreshnessPolicy] = None,
        coalescer: Optional[RequestCoalescer] = None,
        recorder: Optional[MetricsRecorder] = None,
        clock: Callable[[], datetime] = utc_now,
        refresh_cooldown: timedelta = CacheTTL.REFRESH_COOLDOWN,
        max_concurrent_refreshes: int = 4,
    ):
        self.aggregator = aggregator
        self.cache = cache
        self.policy = policy or FreshnessPolicy(hot_ttl=cache.hot_ttl)
        self.coalescer = coalescer or RequestCoalescer()
        self.recorder = recorder or InMemoryMetricsRecorder()
        self.clock = clock
        self.refresher = BackgroundRefresher(
            fetch=self._fetch_and_store,
            coalescer=self.coalescer,
            needs_refresh=self._needs_refresh,
            cooldown=refresh_cooldown,
            max_concurrent=max_concurrent_refreshes,
            recorder=self.recorder,
            clock=clock,
        )

    # =========================================================================
    # Public operations
    # =========================================================================

    async def get_metrics(
        self,
        client_id: str,
        platform: Any,
        date_range: RangeLike,
        force_refresh: bool = False,
    ) -> MetricsRecord:
        """
        Metrics for a client, platform ("social", "search" or "both") and range.

        Raises:
            InvalidRangeError: malformed or inverted range
            ValueError: empty client id or unknown platform
            BothPlatformsFailedError: no requested platform produced data
        """
        key = build_key(client_id, platform, date_range)
        start_time = time.perf_counter()
        self.recorder.increment("requests")

        platform_keys = [key.for_platform(p) for p in key.platform.expand()]
        parts: List[MetricsRecord] = await asyncio.gather(
            *(self._resolve(pkey, force_refresh) for pkey in platform_keys)
        )

        failures = {
            name: error
            for part in parts
            for name, error in part.platform_errors.items()
            if error is not None
        }
        # Platforms the client has no account on neither succeed nor fail
        attempted = [part for part in parts if not part.skipped]
        if failures and len(failures) == len(attempted):
            self.recorder.increment("requests.failed")
            logger.error(f"All platforms failed for {key}: {sorted(failures)}")
            raise BothPlatformsFailedError(
                {name: platform_error_from_dict(error) for name, error in failures.items()}
            )

        record = merge_records(key, parts)
        if failures:
            record = record.served_from(record.source_tier, stale=record.stale)
            for name, error in sorted(failures.items()):
                record.warnings.append(
                    f"{name} data unavailable: {error.get('message', 'fetch failed')}"
                )

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        self.recorder.observe("request.latency_ms", elapsed_ms)
        self.recorder.increment(f"served.{record.source_tier.value}")
        logger.info(
            f"Served {key} from {record.source_tier.value}"
            f"{' (stale)' if record.stale else ''} in {elapsed_ms:.0f}ms"
        )
        return record

    async def invalidate_client(self, client_id: str) -> Dict[str, int]:
        """Drop every cached record for a client, e.g. after its credentials change."""
        self.aggregator.forget_client(client_id)
        return await self.cache.invalidate_client(client_id)

    async def get_cache_stats(self) -> Dict[str, Any]:
        lookups = self.recorder.count("cache.lookups")
        hits = (
            self.recorder.count("cache.hot.hit")
            + self.recorder.count("cache.warm.hit")
            + self.recorder.count("cache.warm.stale")
        )
        return {
            "hitRate": round(hits / lookups, 4) if lookups else 0.0,
            "hotEntries": await self.cache.hot_entry_count(),
            "avgLatency": round(self.recorder.average("request.latency_ms"), 2),
            "lookups": lookups,
            "hotHits": self.recorder.count("cache.hot.hit"),
            "warmHits": self.recorder.count("cache.warm.hit"),
            "staleServes": self.recorder.count("cache.warm.stale"),
            "liveFetches": self.recorder.count("live.fetch"),
            "refreshes": {
                "scheduled": self.recorder.count("refresh.scheduled"),
                "succeeded": self.recorder.count("refresh.success"),
                "failed": self.recorder.count("refresh.failure"),
                "pending": self.refresher.pending,
            },
            "coalescer": self.coalescer.get_stats(),
        }

    async def refresh_if_stale(
        self,
        client_id: str,
        platform: Any,
        date_range: RangeLike,
        fresh_margin: Optional[timedelta] = None,
    ) -> int:
        """
        Live-fetch every platform whose warm record is missing or older
        than fresh_margin. Returns the number of platforms fetched.
        """
        key = build_key(client_id, platform, date_range)
        margin = fresh_margin or self.policy.max_age
        now = self.clock()

        fetched = 0
        for pkey in (key.for_platform(p) for p in key.platform.expand()):
            warm = await self._read_warm(pkey)
            if warm is not None:
                age = record_age(warm.fetched_at, now)
                if age is not None and timedelta(0) <= age < margin:
                    logger.debug(f"Skipping {pkey}: refreshed {age} ago")
                    continue
            await self.coalescer.run_once(pkey.cache_key, lambda k=pkey: self._fetch_and_store(k))
            fetched += 1
        return fetched

    async def aclose(self) -> None:
        await self.refresher.aclose()

    # =========================================================================
    # Tier state machine
    # =========================================================================

    async def _resolve(self, key: MetricsKey, force_refresh: bool) -> MetricsRecord:
        if not force_refresh:
            self.recorder.increment("cache.lookups")

            hot = await self.cache.get_hot(key)
            if hot is not None:
                self.recorder.increment("cache.hot.hit")
                logger.debug(f"Hot hit for {key}")
                return hot.served_from(SourceTier.HOT)

            warm = await self._read_warm(key)
            if warm is not None:
                now = self.clock()
                if warm.has_campaigns and self.policy.is_historical(key.period_id, now):
                    return await self._serve_warm(key, warm, "historical")
                if self.policy.is_fresh(warm, now):
                    return await self._serve_warm(key, warm, "fresh")

                self.recorder.increment("cache.warm.stale")
                self.refresher.schedule_refresh(key)
                logger.info(f"Serving stale warm record for {key}, refresh scheduled")
                return warm.served_from(SourceTier.WARM, stale=True)

            self.recorder.increment("cache.miss")

        record = await self.coalescer.run_once(key.cache_key, lambda: self._fetch_and_store(key))
        error = record.platform_errors.get(key.platform.value)
        if error is not None and force_refresh:
            # A forced refresh that fails falls back to whatever is cached
            cached = await self._read_warm(key)
            if cached is not None:
                fallback = cached.served_from(SourceTier.WARM, stale=True)
                fallback.warnings.append(
                    f"{key.platform.value} refresh failed, serving cached data: "
                    f"{error.get('message', 'fetch failed')}"
                )
                return fallback
        return record.served_from(SourceTier.LIVE_FRESH)

    async def _serve_warm(self, key: MetricsKey, warm: MetricsRecord, reason: str) -> MetricsRecord:
        self.recorder.increment("cache.warm.hit")
        logger.debug(f"Warm hit for {key} ({reason})")
        await self.cache.put_hot(key, warm)
        return warm.served_from(SourceTier.WARM)

    async def _read_warm(self, key: MetricsKey) -> Optional[MetricsRecord]:
        try:
            return await self.cache.get_warm(key)
        except Exception as e:
            logger.error(f"Warm tier read failed for {key}: {e}")
            self.recorder.increment("cache.warm.read_failure")
            return None

    async def _needs_refresh(self, key: MetricsKey) -> bool:
        warm = await self._read_warm(key)
        return warm is None or not self.policy.is_fresh(warm, self.clock())

    async def _fetch_and_store(self, key: MetricsKey) -> MetricsRecord:
        """
        Live fetch for one platform key, written through on success.

        Failed and skipped platforms are returned but never cached.
        """
        self.recorder.increment("live.fetch")
        result = await self.aggregator.fetch_platform(key.client_id, key.platform, key.date_range)
        record = result.to_record(key)

        if result.skipped:
            record.skipped = True
            return record
        if not result.succeeded:
            self.recorder.increment("live.failure")
            return record

        try:
            await self.cache.put_warm(key, record)
        except CacheWriteError as e:
            self.recorder.increment("cache.warm.write_failure")
            logger.warning(f"Could not persist {key}: {e}")
            record.warnings.append(f"Cache write failed for {key.platform.value}: {e}")
            return record

        await self.cache.put_hot(key, record)
        return record
