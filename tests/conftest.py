"""
Pytest Configuration and Shared Fixtures

Fake platform clients, credentials and an injectable clock shared by the
metrics tests. Nothing here touches the network, Redis or PostgreSQL.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest

from admetrics.cache.memory import InMemoryHotStore, InMemoryWarmStore
from admetrics.cache.tiered import TieredCache
from admetrics.metrics.aggregator import ParallelAggregator
from admetrics.metrics.freshness import FreshnessPolicy
from admetrics.metrics.models import AccountRef, Campaign, DateRange, Platform
from admetrics.metrics.orchestrator import MetricsOrchestrator
from admetrics.metrics.recorder import InMemoryMetricsRecorder


# ============================================================================
# Test Doubles
# ============================================================================

class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def monotonic(self) -> float:
        return self.now.timestamp()


class FakePlatformClient:
    """
    Scriptable platform client.

    Returns `campaigns`, or raises `error`. An optional `gate` event holds
    every call until it is set, and `delay` adds latency.
    """

    def __init__(
        self,
        platform: Platform,
        campaigns: Optional[List[Campaign]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.platform = platform
        self.campaigns = list(campaigns or [])
        self.error = error
        self.delay = delay
        self.gate: Optional[asyncio.Event] = None
        self.calls: List[Tuple[str, DateRange]] = []

    async def fetch_campaigns(self, account: AccountRef, date_range: DateRange) -> List[Campaign]:
        self.calls.append((account.account_id, date_range))
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.campaigns)

    @property
    def call_count(self) -> int:
        return len(self.calls)


class FakeCredentials:
    """Every client has both platforms unless listed in `missing`."""

    def __init__(self, missing: Optional[Set[Tuple[str, Platform]]] = None):
        self.missing = set(missing or ())
        self.lookups: List[Tuple[str, Platform]] = []

    async def get_account(self, client_id: str, platform: Platform) -> Optional[AccountRef]:
        self.lookups.append((client_id, platform))
        if (client_id, platform) in self.missing:
            return None
        return AccountRef(platform=platform, account_id=f"{client_id}-{platform.value}", access_token="token")


def make_campaign(platform: Platform, spend: float, name: str = "Campaign", **metrics) -> Campaign:
    defaults = {"impressions": 1000, "clicks": 50, "conversions": 5.0}
    defaults.update(metrics)
    return Campaign(
        campaign_id=f"{platform.value}-{name}",
        campaign_name=name,
        platform=platform.value,
        status="ACTIVE",
        spend=spend,
        **defaults,
    )


# ============================================================================
# Fixtures
# ============================================================================

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture
def social_client() -> FakePlatformClient:
    return FakePlatformClient(Platform.SOCIAL, [make_campaign(Platform.SOCIAL, 100.0, "Summer")])


@pytest.fixture
def search_client() -> FakePlatformClient:
    return FakePlatformClient(Platform.SEARCH, [make_campaign(Platform.SEARCH, 50.0, "Brand")])


@pytest.fixture
def credentials() -> FakeCredentials:
    return FakeCredentials()


@pytest.fixture
def recorder() -> InMemoryMetricsRecorder:
    return InMemoryMetricsRecorder()


@pytest.fixture
def warm_store() -> InMemoryWarmStore:
    return InMemoryWarmStore()


@pytest.fixture
def hot_store(clock) -> InMemoryHotStore:
    return InMemoryHotStore(clock=clock.monotonic)


@pytest.fixture
def cache(warm_store, hot_store) -> TieredCache:
    return TieredCache(warm=warm_store, hot=hot_store, hot_ttl=timedelta(minutes=10))


@pytest.fixture
def aggregator(social_client, search_client, credentials, recorder, clock) -> ParallelAggregator:
    return ParallelAggregator(
        clients={Platform.SOCIAL: social_client, Platform.SEARCH: search_client},
        credentials=credentials,
        per_platform_timeout=timedelta(seconds=1),
        recorder=recorder,
        clock=clock,
    )


@pytest.fixture
async def orchestrator(aggregator, cache, recorder, clock):
    orchestrator = MetricsOrchestrator(
        aggregator=aggregator,
        cache=cache,
        policy=FreshnessPolicy(max_age=timedelta(hours=3), hot_ttl=timedelta(minutes=10)),
        recorder=recorder,
        clock=clock,
        refresh_cooldown=timedelta(minutes=5),
    )
    yield orchestrator
    await orchestrator.aclose()
