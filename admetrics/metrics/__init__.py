"""
Metrics Core

Keys, freshness rules, records and the fetch pipeline.

Usage:
    from admetrics.metrics.orchestrator import MetricsOrchestrator

    record = await orchestrator.get_metrics("client-1", "both", "2024-03")
    record.totals.spend, record.platform_errors, record.source_tier
"""

from admetrics.metrics.errors import (
    BothPlatformsFailedError,
    CacheWriteError,
    CredentialError,
    EmptyResultError,
    InvalidRangeError,
    MetricsError,
    PlatformError,
    TransientFetchError,
)
from admetrics.metrics.models import (
    AccountRef,
    Campaign,
    ConversionMetrics,
    DateRange,
    Platform,
    SourceTier,
    Totals,
)
from admetrics.metrics.keys import MetricsKey, build_key
from admetrics.metrics.freshness import FreshnessPolicy, PeriodClassification, is_fresh
from admetrics.metrics.records import MetricsRecord, merge_records
from admetrics.metrics.coalescer import RequestCoalescer
from admetrics.metrics.recorder import InMemoryMetricsRecorder, MetricsRecorder

__all__ = [
    # Errors
    "BothPlatformsFailedError",
    "CacheWriteError",
    "CredentialError",
    "EmptyResultError",
    "InvalidRangeError",
    "MetricsError",
    "PlatformError",
    "TransientFetchError",
    # Models
    "AccountRef",
    "Campaign",
    "ConversionMetrics",
    "DateRange",
    "Platform",
    "SourceTier",
    "Totals",
    # Keys and freshness
    "MetricsKey",
    "build_key",
    "FreshnessPolicy",
    "PeriodClassification",
    "is_fresh",
    # Records
    "MetricsRecord",
    "merge_records",
    # Coordination
    "RequestCoalescer",
    "InMemoryMetricsRecorder",
    "MetricsRecorder",
]
