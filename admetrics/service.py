"""
Service Wiring

Builds a MetricsOrchestrator from environment configuration:

- Warm tier: SQLAlchemy metrics_cache table (DATABASE_URL, SQLite fallback)
- Hot tier: Redis when REDIS_URL is set, in-process otherwise,
  none when CACHE_ENABLED=false
- Platform clients: social always, search when a developer token is set
- Credentials: ad_clients table
"""

import logging
from datetime import timedelta
from typing import Dict, Optional

from admetrics.cache.codec import RecordCodec
from admetrics.cache.config import CacheConfig, get_cache_config
from admetrics.cache.memory import InMemoryHotStore
from admetrics.cache.postgres_cache import SQLAlchemyWarmStore
from admetrics.cache.redis_cache import RedisHotStore
from admetrics.cache.tiered import TieredCache
from admetrics.cache.warming import CacheWarmer
from admetrics.database.repository import ClientRepository
from admetrics.database.session import get_session_factory
from admetrics.metrics.aggregator import ParallelAggregator
from admetrics.metrics.freshness import FreshnessPolicy
from admetrics.metrics.models import Platform
from admetrics.metrics.orchestrator import MetricsOrchestrator
from admetrics.metrics.recorder import InMemoryMetricsRecorder
from admetrics.platforms.base import PlatformClient
from admetrics.platforms.config import PlatformSettings, get_platform_settings
from admetrics.platforms.search import SearchAdsClient
from admetrics.platforms.social import SocialAdsClient


logger = logging.getLogger(__name__)


def build_hot_store(config: CacheConfig):
    if not config.enabled:
        logger.info("Hot tier disabled, running warm-only")
        return None
    if config.redis_url:
        return RedisHotStore(config)
    logger.info("REDIS_URL not set, using in-process hot tier")
    return InMemoryHotStore()


def build_platform_clients(settings: PlatformSettings) -> Dict[Platform, PlatformClient]:
    clients: Dict[Platform, PlatformClient] = {Platform.SOCIAL: SocialAdsClient(settings)}
    if settings.is_search_configured:
        clients[Platform.SEARCH] = SearchAdsClient(settings)
    else:
        logger.warning("GOOGLE_ADS_DEVELOPER_TOKEN not set, search platform disabled")
    return clients


def build_orchestrator(
    config: Optional[CacheConfig] = None,
    settings: Optional[PlatformSettings] = None,
    session_factory=None,
) -> MetricsOrchestrator:
    """Wire an orchestrator from configuration."""
    config = config or get_cache_config()
    settings = settings or get_platform_settings()
    session_factory = session_factory or get_session_factory()

    recorder = InMemoryMetricsRecorder()
    cache = TieredCache(
        warm=SQLAlchemyWarmStore(session_factory),
        hot=build_hot_store(config),
        codec=RecordCodec(
            compression_enabled=config.compression_enabled,
            threshold=config.compression_threshold,
        ),
        hot_ttl=config.hot_ttl,
    )
    aggregator = ParallelAggregator(
        clients=build_platform_clients(settings),
        credentials=ClientRepository(session_factory),
        per_platform_timeout=timedelta(seconds=settings.per_platform_timeout),
        recorder=recorder,
    )
    policy = FreshnessPolicy(
        max_age=config.warm_max_age,
        hot_ttl=config.hot_ttl,
        timezone_name=config.report_timezone,
    )
    return MetricsOrchestrator(
        aggregator=aggregator,
        cache=cache,
        policy=policy,
        recorder=recorder,
        refresh_cooldown=config.refresh_cooldown,
        max_concurrent_refreshes=config.max_concurrent_refreshes,
    )


def build_warmer(orchestrator: MetricsOrchestrator, session_factory=None) -> CacheWarmer:
    session_factory = session_factory or get_session_factory()
    return CacheWarmer(orchestrator, ClientRepository(session_factory))


# =============================================================================
# Singleton
# =============================================================================

_orchestrator: Optional[MetricsOrchestrator] = None


def get_orchestrator() -> MetricsOrchestrator:
    """Get or create the process-wide orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


async def close_orchestrator():
    """Stop background work and release connections."""
    global _orchestrator
    if _orchestrator is None:
        return

    await _orchestrator.aclose()
    for client in _orchestrator.aggregator.clients.values():
        close = getattr(client, "close", None)
        if close is not None:
            await close()
    hot = _orchestrator.cache.hot
    if isinstance(hot, RedisHotStore):
        await hot.close()
    _orchestrator = None
