"""
Metrics API

Endpoints:
- Metrics for a client, platform and date range (cached, coalesced)
- Per-client invalidation after credential changes
- Cache statistics and health for monitoring
"""

import logging
import time
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from admetrics.metrics.errors import BothPlatformsFailedError, CacheWriteError
from admetrics.metrics.freshness import utc_now
from admetrics.metrics.keys import current_month_range
from admetrics.metrics.orchestrator import MetricsOrchestrator
from admetrics.service import get_orchestrator


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/metrics", tags=["Metrics"])


def get_metrics_orchestrator() -> MetricsOrchestrator:
    """Dependency returning the process-wide orchestrator."""
    return get_orchestrator()


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class MetricsResponse(BaseModel):
    """Metrics for one client, platform scope and period."""
    key: Dict[str, str]
    campaigns: List[Dict[str, Any]]
    totals: Dict[str, Any]
    conversion_metrics: Dict[str, Any]
    fetched_at: Optional[str] = None
    source_tier: str = Field(..., description="hot, warm or live_fresh")
    platform_errors: Dict[str, Optional[Dict[str, Any]]] = {}
    stale: bool = False
    warnings: List[str] = []


class InvalidationResponse(BaseModel):
    """Client invalidation response."""
    success: bool
    client_id: str
    hot_deleted: int
    warm_deleted: int
    duration_ms: float


class CacheStatsResponse(BaseModel):
    """Cache statistics response."""
    hitRate: float
    hotEntries: int
    avgLatency: float
    details: Dict[str, Any] = {}


class HealthResponse(BaseModel):
    """Cache tier health."""
    status: str = Field(..., description="healthy or unhealthy")
    hot: Dict[str, Any]
    warm: Dict[str, Any]
    timestamp: datetime = Field(default_factory=utc_now)


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("/stats", response_model=CacheStatsResponse)
async def cache_stats(orchestrator: MetricsOrchestrator = Depends(get_metrics_orchestrator)):
    """
    Hit rate, hot entry count and average request latency.

    Stats are per process and reset on restart.
    """
    stats = await orchestrator.get_cache_stats()
    return CacheStatsResponse(
        hitRate=stats.pop("hitRate"),
        hotEntries=stats.pop("hotEntries"),
        avgLatency=stats.pop("avgLatency"),
        details=stats,
    )


@router.get("/health", response_model=HealthResponse)
async def cache_health(orchestrator: MetricsOrchestrator = Depends(get_metrics_orchestrator)):
    """Check both cache tiers. A missing hot tier is reported, not unhealthy."""
    cache = orchestrator.cache

    if cache.hot is None:
        hot = {"healthy": True, "status": "disabled"}
    elif hasattr(cache.hot, "health_check"):
        hot = await cache.hot.health_check()
    else:
        hot = {"healthy": True, "status": "in-process"}

    if hasattr(cache.warm, "health_check"):
        warm = await cache.warm.health_check()
    else:
        warm = {"healthy": True, "status": "in-process"}

    # The hot tier is best effort; only the warm tier decides health
    return HealthResponse(
        status="healthy" if warm.get("healthy") else "unhealthy",
        hot=hot,
        warm=warm,
    )


@router.post("/invalidate/{client_id}", response_model=InvalidationResponse)
async def invalidate_client(
    client_id: str,
    orchestrator: MetricsOrchestrator = Depends(get_metrics_orchestrator),
):
    """
    Drop every cached record for a client.

    Call after the client's platform credentials change.
    """
    start = time.perf_counter()
    try:
        deleted = await orchestrator.invalidate_client(client_id)
    except CacheWriteError as e:
        logger.error(f"Failed to invalidate client {client_id}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return InvalidationResponse(
        success=True,
        client_id=client_id,
        hot_deleted=deleted["hot"],
        warm_deleted=deleted["warm"],
        duration_ms=(time.perf_counter() - start) * 1000,
    )


@router.get("/{client_id}", response_model=MetricsResponse)
async def get_client_metrics(
    client_id: str,
    platform: str = Query("both", description="social, search or both"),
    period: Optional[str] = Query(None, description="YYYY-MM, YYYY-Www or start:end"),
    start: Optional[date] = Query(None, description="Range start (inclusive)"),
    end: Optional[date] = Query(None, description="Range end (inclusive)"),
    force_refresh: bool = Query(False, description="Bypass both cache tiers"),
    orchestrator: MetricsOrchestrator = Depends(get_metrics_orchestrator),
):
    """
    Metrics for a client.

    Pass either `period` or both `start` and `end`. Without either, the
    current month is used.
    """
    if period is not None:
        date_range: Any = period
    elif start is not None and end is not None:
        date_range = (start, end)
    elif start is None and end is None:
        date_range = current_month_range(orchestrator.clock())
    else:
        raise HTTPException(status_code=400, detail="Both start and end are required")

    try:
        record = await orchestrator.get_metrics(
            client_id,
            platform,
            date_range,
            force_refresh=force_refresh,
        )
    except BothPlatformsFailedError as e:
        status_code = 401 if e.requires_reauth else 502
        logger.warning(f"Metrics unavailable for {client_id}: {e}")
        raise HTTPException(
            status_code=status_code,
            detail={
                "message": str(e),
                "requires_reauth": e.requires_reauth,
                "errors": {name: error.to_dict() for name, error in e.errors.items()},
            },
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return MetricsResponse(**record.to_dict())

