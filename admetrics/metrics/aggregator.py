"""
Parallel Platform Aggregation

Fans out to both ad platforms at once and merges what comes back:
- Each platform call has its own timeout; a late answer is discarded
- Both calls settle before merging; one failure never aborts the other
- A failed platform contributes zero totals plus a recorded error
- A platform the client has no credentials for is skipped (empty, not failed)
- Combined ratios are recomputed from summed numerators/denominators
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Set, Tuple

from admetrics.metrics.errors import (
    CredentialError,
    EmptyResultError,
    PlatformError,
    TransientFetchError,
)
from admetrics.metrics.freshness import utc_now
from admetrics.metrics.keys import MetricsKey, normalize_range
from admetrics.metrics.models import (
    Campaign,
    ConversionMetrics,
    DateRange,
    Platform,
    SourceTier,
    Totals,
)
from admetrics.metrics.recorder import InMemoryMetricsRecorder, MetricsRecorder
from admetrics.metrics.records import MetricsRecord
from admetrics.platforms.base import CredentialsProvider, PlatformClient


logger = logging.getLogger(__name__)


@dataclass
class PlatformResult:
    """Outcome of one platform fetch."""
    platform: Platform
    campaigns: List[Campaign] = field(default_factory=list)
    error: Optional[PlatformError] = None
    skipped: bool = False
    fetched_at: Optional[datetime] = None
    duration_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_record(self, key: MetricsKey) -> MetricsRecord:
        """Per-platform record. A failure yields zero totals and a recorded error."""
        return MetricsRecord.from_campaigns(
            key=key,
            campaigns=self.campaigns,
            fetched_at=self.fetched_at or utc_now(),
            platform_errors={self.platform.value: self.error.to_dict() if self.error else None},
            source_tier=SourceTier.LIVE_FRESH,
        )


@dataclass
class AggregatedResult:
    """Merged outcome of a multi-platform fetch."""
    client_id: str
    date_range: DateRange
    results: Dict[Platform, PlatformResult]
    totals: Totals
    conversion_metrics: ConversionMetrics
    duration_ms: float = 0.0

    @property
    def campaigns(self) -> List[Campaign]:
        return [c for result in self.results.values() for c in result.campaigns]

    @property
    def platform_errors(self) -> Dict[str, Optional[PlatformError]]:
        return {platform.value: result.error for platform, result in self.results.items()}

    @property
    def all_failed(self) -> bool:
        return bool(self.results) and all(not r.succeeded for r in self.results.values())

    def to_record(self, platform: Platform = Platform.BOTH) -> MetricsRecord:
        key = MetricsKey(self.client_id, platform, normalize_range(self.date_range))
        fetched = [r.fetched_at for r in self.results.values() if r.fetched_at]
        return MetricsRecord(
            key=key,
            campaigns=self.campaigns,
            totals=self.totals,
            conversion_metrics=self.conversion_metrics,
            fetched_at=min(fetched) if fetched else utc_now(),
            source_tier=SourceTier.LIVE_FRESH,
            platform_errors={
                name: error.to_dict() if error else None
                for name, error in self.platform_errors.items()
            },
        )


def merge_results(
    client_id: str,
    date_range: DateRange,
    results: Iterable[PlatformResult],
    duration_ms: float = 0.0,
) -> AggregatedResult:
    """Sum per-platform totals. Failed platforms contribute nothing."""
    results = {r.platform: r for r in results}
    per_platform = [Totals.from_campaigns(r.campaigns) for r in results.values()]
    totals = Totals.combine(per_platform)
    conversion_metrics = ConversionMetrics.combine(
        (ConversionMetrics.from_campaigns(r.campaigns) for r in results.values()),
        spend=totals.spend,
    )
    return AggregatedResult(
        client_id=client_id,
        date_range=date_range,
        results=results,
        totals=totals,
        conversion_metrics=conversion_metrics,
        duration_ms=duration_ms,
    )


class ParallelAggregator:
    """
    Concurrent fetch from both platforms with per-platform timeouts.

    A CredentialError disables that (client, platform) pair for the rest
    of the process, until forget_client() is called after the client's
    credentials change.
    """

    def __init__(
        self,
        clients: Dict[Platform, PlatformClient],
        credentials: CredentialsProvider,
        per_platform_timeout: timedelta = timedelta(seconds=30),
        recorder: Optional[MetricsRecorder] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.clients = dict(clients)
        self.credentials = credentials
        self.per_platform_timeout = per_platform_timeout
        self.recorder = recorder or InMemoryMetricsRecorder()
        self.clock = clock
        self._rejected: Dict[Tuple[str, Platform], CredentialError] = {}

    async def fetch_both(
        self,
        client_id: str,
        date_range: DateRange,
        platforms: Optional[Iterable[Platform]] = None,
    ) -> AggregatedResult:
        """Fetch every requested platform concurrently and merge."""
        platforms = list(platforms or Platform.concrete())
        start_time = time.perf_counter()

        results = await asyncio.gather(
            *(self.fetch_platform(client_id, platform, date_range) for platform in platforms)
        )

        elapsed_ms = (time.perf_counter() - start_time) * 1000
        merged = merge_results(client_id, date_range, results, duration_ms=elapsed_ms)
        logger.info(
            f"Parallel fetch for {client_id} completed in {elapsed_ms:.0f}ms: "
            + ", ".join(
                f"{r.platform.value}={'skipped' if r.skipped else 'ok' if r.succeeded else 'failed'}"
                for r in results
            )
            + f", spend={merged.totals.spend:.2f}"
        )
        return merged

    async def fetch_platform(
        self,
        client_id: str,
        platform: Platform,
        date_range: DateRange,
    ) -> PlatformResult:
        """
        Fetch one platform. Never raises: failures come back in the result.
        """
        start_time = time.perf_counter()
        result = await self._fetch_platform(client_id, platform, date_range)
        result.duration_ms = (time.perf_counter() - start_time) * 1000

        outcome = "skipped" if result.skipped else "success" if result.succeeded else "failure"
        self.recorder.increment(f"platform.{platform.value}.{outcome}")
        self.recorder.observe(f"platform.{platform.value}.latency_ms", result.duration_ms)
        return result

    async def _fetch_platform(
        self,
        client_id: str,
        platform: Platform,
        date_range: DateRange,
    ) -> PlatformResult:
        rejected = self._rejected.get((client_id, platform))
        if rejected is not None:
            logger.info(f"Skipping {platform.value} for {client_id}: credentials rejected earlier")
            return PlatformResult(platform=platform, error=rejected, fetched_at=self.clock())

        client = self.clients.get(platform)
        if client is None:
            return PlatformResult(platform=platform, skipped=True, fetched_at=self.clock())

        try:
            account = await self.credentials.get_account(client_id, platform)
        except Exception as e:
            logger.error(f"Credential lookup failed for {client_id}/{platform.value}: {e}")
            return PlatformResult(
                platform=platform,
                error=TransientFetchError(f"credential lookup failed: {e}", platform=platform.value),
                fetched_at=self.clock(),
            )

        if account is None:
            logger.debug(f"No {platform.value} credentials for {client_id}, skipping")
            return PlatformResult(platform=platform, skipped=True, fetched_at=self.clock())

        timeout = self.per_platform_timeout.total_seconds()
        try:
            campaigns = await asyncio.wait_for(
                client.fetch_campaigns(account, date_range),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"{platform.value} fetch for {client_id} timed out after {timeout:.0f}s")
            error = TransientFetchError(
                f"{platform.value} fetch timed out after {timeout:.0f}s",
                platform=platform.value,
            )
            return PlatformResult(platform=platform, error=error, fetched_at=self.clock())
        except EmptyResultError as e:
            logger.info(f"{platform.value} returned no campaigns for {client_id}: {e}")
            return PlatformResult(platform=platform, campaigns=[], fetched_at=self.clock())
        except CredentialError as e:
            logger.warning(f"{platform.value} credentials rejected for {client_id}: {e}")
            if e.platform is None:
                e.platform = platform.value
            self._rejected[(client_id, platform)] = e
            return PlatformResult(platform=platform, error=e, fetched_at=self.clock())
        except PlatformError as e:
            logger.warning(f"{platform.value} fetch failed for {client_id}: {e}")
            if e.platform is None:
                e.platform = platform.value
            return PlatformResult(platform=platform, error=e, fetched_at=self.clock())
        except Exception as e:
            logger.error(f"Unexpected {platform.value} error for {client_id}: {e!r}")
            error = TransientFetchError(f"{platform.value} fetch failed: {e}", platform=platform.value)
            return PlatformResult(platform=platform, error=error, fetched_at=self.clock())

        return PlatformResult(platform=platform, campaigns=list(campaigns), fetched_at=self.clock())

    def forget_client(self, client_id: str) -> None:
        """Drop remembered credential failures for a client."""
        for pair in [pair for pair in self._rejected if pair[0] == client_id]:
            del self._rejected[pair]

    @property
    def rejected_pairs(self) -> Set[Tuple[str, Platform]]:
        return set(self._rejected)
