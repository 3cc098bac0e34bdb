"""
Freshness Policy

Pure decisions about cached records:
- classify_period: is the period still mutable (CURRENT) or closed (HISTORICAL)?
- is_fresh: is a record younger than max_age?

Unparseable or future timestamps are never fresh. Serving old-looking
numbers in a billing-adjacent report is worse than a slow refetch.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any, Optional
from zoneinfo import ZoneInfo

from admetrics.metrics.keys import period_to_range


logger = logging.getLogger(__name__)


class PeriodClassification(Enum):
    """Mutability of a reporting period."""
    CURRENT = "current"
    HISTORICAL = "historical"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a stored timestamp into an aware UTC datetime.

    Naive values are taken as UTC. Returns None for anything unparseable.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def classify_period(
    period_id: str,
    now: datetime,
    tz: Optional[tzinfo] = None,
) -> PeriodClassification:
    """
    HISTORICAL when the period ended before today, CURRENT otherwise.

    Future periods count as CURRENT: their data can still change.
    "Today" is taken in the reporting timezone (UTC by default).
    """
    today = now.astimezone(tz or timezone.utc).date()
    if period_to_range(period_id).end < today:
        return PeriodClassification.HISTORICAL
    return PeriodClassification.CURRENT


def record_age(fetched_at: Any, now: datetime) -> Optional[timedelta]:
    """Age of a record, or None when its timestamp is unusable."""
    parsed = parse_timestamp(fetched_at)
    if parsed is None:
        return None
    return now - parsed


def is_fresh(record: Any, now: datetime, max_age: timedelta) -> bool:
    """True iff 0 <= now - record.fetched_at < max_age."""
    age = record_age(getattr(record, "fetched_at", None), now)
    if age is None:
        logger.warning(f"Unparseable fetched_at on {getattr(record, 'key', record)}, treating as stale")
        return False
    if age < timedelta(0):
        return False
    return age < max_age


@dataclass(frozen=True)
class FreshnessPolicy:
    """Configured freshness windows."""
    max_age: timedelta = timedelta(hours=3)
    hot_ttl: timedelta = timedelta(minutes=10)
    timezone_name: str = "UTC"
    tz: tzinfo = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if self.max_age <= timedelta(0):
            raise ValueError("max_age must be positive")
        tz = timezone.utc if self.timezone_name.upper() == "UTC" else ZoneInfo(self.timezone_name)
        object.__setattr__(self, "tz", tz)

    def classify(self, period_id: str, now: datetime) -> PeriodClassification:
        return classify_period(period_id, now, self.tz)

    def is_fresh(self, record: Any, now: datetime) -> bool:
        return is_fresh(record, now, self.max_age)

    def is_historical(self, period_id: str, now: datetime) -> bool:
        return self.classify(period_id, now) is PeriodClassification.HISTORICAL
