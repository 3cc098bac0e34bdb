"""
Metrics Record

The payload stored in both cache tiers and returned to callers.

Totals and conversion metrics are derivable from campaigns but stored
pre-aggregated. When a platform failed and contributed no campaigns, its
share of the totals is zero and its entry in platform_errors says why.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Union

from admetrics.metrics.freshness import parse_timestamp
from admetrics.metrics.keys import MetricsKey
from admetrics.metrics.models import (
    Campaign,
    ConversionMetrics,
    SourceTier,
    Totals,
)


@dataclass
class MetricsRecord:
    """Cached metrics for one key."""
    key: MetricsKey
    campaigns: List[Campaign]
    totals: Totals
    conversion_metrics: ConversionMetrics
    fetched_at: Union[datetime, str, None]
    source_tier: SourceTier = SourceTier.LIVE_FRESH
    platform_errors: Dict[str, Optional[Dict[str, Any]]] = field(default_factory=dict)

    # Response metadata, not persisted
    stale: bool = False
    warnings: List[str] = field(default_factory=list)

    # Set on live results for a platform the client has no account on
    skipped: bool = field(default=False, compare=False)

    @classmethod
    def from_campaigns(
        cls,
        key: MetricsKey,
        campaigns: Iterable[Campaign],
        fetched_at: datetime,
        platform_errors: Optional[Dict[str, Optional[Dict[str, Any]]]] = None,
        source_tier: SourceTier = SourceTier.LIVE_FRESH,
    ) -> "MetricsRecord":
        campaigns = list(campaigns)
        totals = Totals.from_campaigns(campaigns)
        return cls(
            key=key,
            campaigns=campaigns,
            totals=totals,
            conversion_metrics=ConversionMetrics.from_campaigns(campaigns),
            fetched_at=fetched_at,
            source_tier=source_tier,
            platform_errors=dict(platform_errors or {}),
        )

    @property
    def has_campaigns(self) -> bool:
        return bool(self.campaigns)

    @property
    def fetched_at_datetime(self) -> Optional[datetime]:
        return parse_timestamp(self.fetched_at)

    def served_from(self, tier: SourceTier, stale: bool = False) -> "MetricsRecord":
        """Copy tagged with the tier that answered the request."""
        return replace(self, source_tier=tier, stale=stale, warnings=list(self.warnings))

    def to_dict(self, include_response_fields: bool = True) -> Dict[str, Any]:
        fetched_at = self.fetched_at
        if isinstance(fetched_at, datetime):
            fetched_at = fetched_at.isoformat()
        elif fetched_at is not None:
            # Corrupt values are kept, as text
            fetched_at = str(fetched_at)

        data = {
            "key": self.key.to_dict(),
            "campaigns": [c.to_dict() for c in self.campaigns],
            "totals": self.totals.to_dict(),
            "conversion_metrics": self.conversion_metrics.to_dict(),
            "fetched_at": fetched_at,
            "source_tier": self.source_tier.value,
            "platform_errors": dict(self.platform_errors),
        }
        if include_response_fields:
            data["stale"] = self.stale
            data["warnings"] = list(self.warnings)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MetricsRecord":
        """
        Rebuild a stored record.

        An unparseable fetched_at is kept verbatim so freshness checks
        can see it and treat the record as stale.
        """
        raw_fetched_at = data.get("fetched_at")
        fetched_at = parse_timestamp(raw_fetched_at) or raw_fetched_at

        return cls(
            key=MetricsKey.from_dict(data["key"]),
            campaigns=[Campaign.from_dict(c) for c in data.get("campaigns") or []],
            totals=Totals.from_dict(data.get("totals")),
            conversion_metrics=ConversionMetrics.from_dict(data.get("conversion_metrics")),
            fetched_at=fetched_at,
            source_tier=SourceTier(data.get("source_tier", SourceTier.WARM.value)),
            platform_errors=dict(data.get("platform_errors") or {}),
            stale=bool(data.get("stale", False)),
            warnings=list(data.get("warnings") or []),
        )


def merge_records(key: MetricsKey, parts: List[MetricsRecord]) -> MetricsRecord:
    """
    Combine per-platform records into one view.

    Campaigns are concatenated, sums added and ratios recomputed from the
    summed pairs. The merged record is as old as its oldest part and as
    slow as its slowest tier.
    """
    if len(parts) == 1 and parts[0].key == key:
        return parts[0]

    campaigns: List[Campaign] = []
    platform_errors: Dict[str, Optional[Dict[str, Any]]] = {}
    warnings: List[str] = []
    for part in parts:
        campaigns.extend(part.campaigns)
        platform_errors.update(part.platform_errors)
        warnings.extend(w for w in part.warnings if w not in warnings)

    totals = Totals.combine(p.totals for p in parts)
    conversion_metrics = ConversionMetrics.combine(
        (p.conversion_metrics for p in parts), spend=totals.spend
    )

    timestamps = [p.fetched_at_datetime for p in parts]
    if any(ts is None for ts in timestamps):
        fetched_at = next(p.fetched_at for p, ts in zip(parts, timestamps) if ts is None)
    else:
        fetched_at = min(timestamps) if timestamps else None

    return MetricsRecord(
        key=key,
        campaigns=campaigns,
        totals=totals,
        conversion_metrics=conversion_metrics,
        fetched_at=fetched_at,
        source_tier=SourceTier.slowest(p.source_tier for p in parts),
        platform_errors=platform_errors,
        stale=any(p.stale for p in parts),
        warnings=warnings,
    )
