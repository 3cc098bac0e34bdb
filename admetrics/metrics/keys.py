"""
Metrics Cache Keys

Deterministic (client, platform, period) keys. A date range that exactly
spans a calendar month or an ISO week is normalized to a canonical
period id, so "January" and "2024-01-01..2024-01-31" share one entry:

    2024-01                   calendar month
    2024-W05                  ISO week (Monday to Sunday)
    2024-01-03:2024-01-17     any other range
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Union
from urllib.parse import quote

from admetrics.metrics.errors import InvalidRangeError
from admetrics.metrics.models import DateRange, Platform


_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")
_WEEK_RE = re.compile(r"^(\d{4})-W(\d{2})$")
_RANGE_SEPARATORS = ("..", ":")

RangeLike = Union[DateRange, str, tuple, list, dict]

KEY_PREFIX = "metrics:"


@dataclass(frozen=True)
class MetricsKey:
    """Identity of one cached metrics record."""
    client_id: str
    platform: Platform
    period_id: str

    @property
    def cache_key(self) -> str:
        """Flat string form, unique per key. Client ids are percent-encoded."""
        return f"{client_prefix(self.client_id)}{self.platform.value}:{self.period_id}"

    @property
    def date_range(self) -> DateRange:
        return period_to_range(self.period_id)

    def for_platform(self, platform: Platform) -> "MetricsKey":
        return MetricsKey(self.client_id, platform, self.period_id)

    def to_dict(self) -> dict:
        return {
            "client_id": self.client_id,
            "platform": self.platform.value,
            "period_id": self.period_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MetricsKey":
        return cls(data["client_id"], Platform(data["platform"]), data["period_id"])

    def __str__(self) -> str:
        return self.cache_key


def client_prefix(client_id: str) -> str:
    """Prefix shared by every cache key of a client."""
    return f"{KEY_PREFIX}{quote(client_id, safe='')}:"


def build_key(client_id: str, platform: Any, date_range: RangeLike) -> MetricsKey:
    """
    Build a MetricsKey.

    Args:
        client_id: Client identifier (non-empty)
        platform: Platform enum or its value ("social", "search", "both")
        date_range: DateRange, canonical period id, "start:end" string,
                    (start, end) pair or {"start": ..., "end": ...}

    Raises:
        InvalidRangeError: start > end or a malformed bound
        ValueError: empty client id or unknown platform
    """
    if not isinstance(client_id, str) or not client_id:
        raise ValueError("client_id must be a non-empty string")

    return MetricsKey(
        client_id=client_id,
        platform=Platform(platform),
        period_id=normalize_range(coerce_range(date_range)),
    )


def coerce_range(value: RangeLike) -> DateRange:
    """Turn any accepted range form into a DateRange."""
    if isinstance(value, DateRange):
        return value
    if isinstance(value, str):
        return period_to_range(value)
    if isinstance(value, dict):
        if "start" not in value or "end" not in value:
            raise InvalidRangeError(f"Range dict needs 'start' and 'end': {value!r}")
        return DateRange.parse(value["start"], value["end"])
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return DateRange.parse(value[0], value[1])
    raise InvalidRangeError(f"Unsupported date range: {value!r}")


def normalize_range(date_range: DateRange) -> str:
    """Canonical period id for a range."""
    start, end = date_range.start, date_range.end

    last_day = calendar.monthrange(start.year, start.month)[1]
    if start.day == 1 and end == start.replace(day=last_day):
        return month_period_id(start)

    if start.isoweekday() == 1 and end == start + timedelta(days=6):
        return week_period_id(start)

    return f"{start.isoformat()}:{end.isoformat()}"


def period_to_range(period_id: str) -> DateRange:
    """Inverse of normalize_range. Accepts 'start..end' as well as 'start:end'."""
    if not isinstance(period_id, str):
        raise InvalidRangeError(f"Malformed period id: {period_id!r}")
    text = period_id.strip()

    match = _MONTH_RE.match(text)
    if match:
        year, month = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12:
            raise InvalidRangeError(f"Malformed month period: {period_id!r}")
        last_day = calendar.monthrange(year, month)[1]
        return DateRange(date(year, month, 1), date(year, month, last_day))

    match = _WEEK_RE.match(text)
    if match:
        try:
            monday = date.fromisocalendar(int(match.group(1)), int(match.group(2)), 1)
        except ValueError:
            raise InvalidRangeError(f"Malformed week period: {period_id!r}") from None
        return DateRange(monday, monday + timedelta(days=6))

    for separator in _RANGE_SEPARATORS:
        if separator in text:
            start, end = text.split(separator, 1)
            return DateRange.parse(start, end)

    raise InvalidRangeError(f"Malformed period id: {period_id!r}")


def month_period_id(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def week_period_id(day: date) -> str:
    iso_year, iso_week, _ = day.isocalendar()
    return f"{iso_year:04d}-W{iso_week:02d}"


def current_month_range(now: datetime) -> DateRange:
    return period_to_range(month_period_id(now.date()))


def current_week_range(now: datetime) -> DateRange:
    return period_to_range(week_period_id(now.date()))
