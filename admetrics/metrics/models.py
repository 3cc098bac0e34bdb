"""
Normalized Campaign Metrics Models

Platform-neutral shapes shared by both ad platforms:
- Campaign: one row of per-campaign metrics
- Totals / ConversionMetrics: pre-aggregated sums with derived ratios
- DateRange: inclusive calendar date range

Ratios (CTR, CPC, CPA, ROAS) are always recomputed from summed
numerators and denominators, never averaged from other ratios.
"""

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Tuple

from admetrics.metrics.errors import InvalidRangeError


class Platform(str, Enum):
    """Ad platforms. BOTH is a request scope, never a storage key."""
    SOCIAL = "social"
    SEARCH = "search"
    BOTH = "both"

    @classmethod
    def concrete(cls) -> Tuple["Platform", ...]:
        return (cls.SOCIAL, cls.SEARCH)

    def expand(self) -> List["Platform"]:
        """Platforms covered by this scope."""
        if self is Platform.BOTH:
            return list(Platform.concrete())
        return [self]


class SourceTier(str, Enum):
    """Where a response was served from, fastest first."""
    HOT = "hot"
    WARM = "warm"
    LIVE_FRESH = "live_fresh"

    @property
    def rank(self) -> int:
        return list(SourceTier).index(self)

    @classmethod
    def slowest(cls, tiers: Iterable["SourceTier"]) -> "SourceTier":
        return max(tiers, key=lambda tier: tier.rank, default=cls.LIVE_FRESH)


@dataclass(frozen=True)
class DateRange:
    """Inclusive date range."""
    start: date
    end: date

    def __post_init__(self):
        if self.start > self.end:
            raise InvalidRangeError(
                f"Range start {self.start.isoformat()} is after end {self.end.isoformat()}"
            )

    @classmethod
    def parse(cls, start: Any, end: Any) -> "DateRange":
        """Build from ISO date strings or date objects."""
        return cls(_parse_date(start), _parse_date(end))

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def _parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise InvalidRangeError(f"Malformed date: {value!r}")
    try:
        return date.fromisoformat(value.strip())
    except ValueError:
        raise InvalidRangeError(f"Malformed date: {value!r}") from None


# Conversion sub-metrics tracked per campaign
CONVERSION_FIELDS = (
    "click_to_call",
    "email_contacts",
    "form_submissions",
    "phone_calls",
    "booking_step_1",
    "booking_step_2",
    "booking_step_3",
    "reservations",
    "reservation_value",
)


@dataclass
class Campaign:
    """Per-campaign metrics row, normalized across platforms."""
    campaign_id: str
    campaign_name: str
    platform: str
    status: str = "UNKNOWN"

    # Core delivery metrics
    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    conversions: float = 0.0

    # Conversion sub-metrics
    click_to_call: float = 0.0
    email_contacts: float = 0.0
    form_submissions: float = 0.0
    phone_calls: float = 0.0
    booking_step_1: float = 0.0
    booking_step_2: float = 0.0
    booking_step_3: float = 0.0
    reservations: float = 0.0
    reservation_value: float = 0.0

    @property
    def ctr(self) -> float:
        return (self.clicks / self.impressions) * 100 if self.impressions > 0 else 0.0

    @property
    def cpc(self) -> float:
        return self.spend / self.clicks if self.clicks > 0 else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Campaign":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Totals:
    """Summed delivery metrics with derived averages."""
    spend: float = 0.0
    impressions: int = 0
    clicks: int = 0
    conversions: float = 0.0
    average_ctr: float = 0.0
    average_cpc: float = 0.0
    average_cpa: float = 0.0

    @classmethod
    def build(cls, spend: float, impressions: int, clicks: int, conversions: float) -> "Totals":
        return cls(
            spend=spend,
            impressions=impressions,
            clicks=clicks,
            conversions=conversions,
            average_ctr=(clicks / impressions) * 100 if impressions > 0 else 0.0,
            average_cpc=spend / clicks if clicks > 0 else 0.0,
            average_cpa=spend / conversions if conversions > 0 else 0.0,
        )

    @classmethod
    def from_campaigns(cls, campaigns: Iterable[Campaign]) -> "Totals":
        campaigns = list(campaigns)
        return cls.build(
            spend=sum(c.spend for c in campaigns),
            impressions=sum(c.impressions for c in campaigns),
            clicks=sum(c.clicks for c in campaigns),
            conversions=sum(c.conversions for c in campaigns),
        )

    @classmethod
    def combine(cls, parts: Iterable["Totals"]) -> "Totals":
        parts = list(parts)
        return cls.build(
            spend=sum(p.spend for p in parts),
            impressions=sum(p.impressions for p in parts),
            clicks=sum(p.clicks for p in parts),
            conversions=sum(p.conversions for p in parts),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Totals":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class ConversionMetrics:
    """Summed conversion sub-metrics with ROAS and cost per reservation."""
    click_to_call: float = 0.0
    email_contacts: float = 0.0
    form_submissions: float = 0.0
    phone_calls: float = 0.0
    booking_step_1: float = 0.0
    booking_step_2: float = 0.0
    booking_step_3: float = 0.0
    reservations: float = 0.0
    reservation_value: float = 0.0
    roas: float = 0.0
    cost_per_reservation: float = 0.0

    @classmethod
    def build(cls, sums: Dict[str, float], spend: float) -> "ConversionMetrics":
        metrics = cls(**{name: sums.get(name, 0.0) for name in CONVERSION_FIELDS})
        metrics.roas = metrics.reservation_value / spend if spend > 0 else 0.0
        metrics.cost_per_reservation = (
            spend / metrics.reservations if metrics.reservations > 0 else 0.0
        )
        return metrics

    @classmethod
    def from_campaigns(cls, campaigns: Iterable[Campaign]) -> "ConversionMetrics":
        campaigns = list(campaigns)
        sums = {name: sum(getattr(c, name) for c in campaigns) for name in CONVERSION_FIELDS}
        return cls.build(sums, spend=sum(c.spend for c in campaigns))

    @classmethod
    def combine(cls, parts: Iterable["ConversionMetrics"], spend: float) -> "ConversionMetrics":
        parts = list(parts)
        sums = {name: sum(getattr(p, name) for p in parts) for name in CONVERSION_FIELDS}
        return cls.build(sums, spend=spend)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConversionMetrics":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in (data or {}).items() if k in known})


@dataclass
class AccountRef:
    """Platform account a client's metrics are fetched from."""
    platform: Platform
    account_id: str
    access_token: str
    extra: Dict[str, str] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"AccountRef(platform={self.platform.value!r}, account_id={self.account_id!r})"
