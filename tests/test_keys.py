"""
Tests for metrics cache keys.

These tests verify:
- Calendar month and ISO week normalization
- Equivalent range forms map to the same key
- Invalid ranges are rejected
- Client ids cannot collide in the flat string form
"""

from datetime import date, datetime, timezone

import pytest

from admetrics.metrics.errors import InvalidRangeError
from admetrics.metrics.keys import (
    MetricsKey,
    build_key,
    client_prefix,
    current_month_range,
    current_week_range,
    normalize_range,
    period_to_range,
)
from admetrics.metrics.models import DateRange, Platform


# =============================================================================
# NORMALIZATION TESTS
# =============================================================================

class TestNormalizeRange:
    """Canonical period ids."""

    def test_full_month_becomes_month_id(self):
        assert normalize_range(DateRange(date(2024, 1, 1), date(2024, 1, 31))) == "2024-01"

    def test_leap_february(self):
        assert normalize_range(DateRange(date(2024, 2, 1), date(2024, 2, 29))) == "2024-02"
        assert normalize_range(DateRange(date(2024, 2, 1), date(2024, 2, 28))) == "2024-02-01:2024-02-28"

    def test_monday_to_sunday_becomes_iso_week(self):
        # 2024-01-29 is a Monday in ISO week 5
        assert normalize_range(DateRange(date(2024, 1, 29), date(2024, 2, 4))) == "2024-W05"

    def test_iso_week_at_year_boundary(self):
        # 2024-12-30 is the Monday of ISO week 1 of 2025
        assert normalize_range(DateRange(date(2024, 12, 30), date(2025, 1, 5))) == "2025-W01"

    def test_partial_range_is_literal(self):
        assert normalize_range(DateRange(date(2024, 1, 3), date(2024, 1, 17))) == "2024-01-03:2024-01-17"

    def test_single_day(self):
        assert normalize_range(DateRange(date(2024, 3, 5), date(2024, 3, 5))) == "2024-03-05:2024-03-05"

    def test_period_to_range_inverts(self):
        for period in ("2024-01", "2024-W05", "2024-01-03:2024-01-17"):
            assert normalize_range(period_to_range(period)) == period

    def test_dotted_separator_accepted(self):
        assert period_to_range("2024-01-01..2024-01-31") == DateRange(date(2024, 1, 1), date(2024, 1, 31))


# =============================================================================
# BUILD TESTS
# =============================================================================

class TestBuildKey:
    """Key construction from every accepted range form."""

    def test_month_forms_share_a_key(self):
        forms = [
            "2024-01",
            "2024-01-01..2024-01-31",
            "2024-01-01:2024-01-31",
            ("2024-01-01", "2024-01-31"),
            (date(2024, 1, 1), date(2024, 1, 31)),
            {"start": "2024-01-01", "end": "2024-01-31"},
            DateRange(date(2024, 1, 1), date(2024, 1, 31)),
        ]
        keys = {build_key("client-1", "social", form) for form in forms}
        assert keys == {MetricsKey("client-1", Platform.SOCIAL, "2024-01")}

    def test_platform_accepts_enum_and_value(self):
        assert build_key("c", Platform.BOTH, "2024-01") == build_key("c", "both", "2024-01")

    def test_datetime_bounds_use_their_date(self):
        start = datetime(2024, 1, 1, 8, 30, tzinfo=timezone.utc)
        end = datetime(2024, 1, 31, 23, 0, tzinfo=timezone.utc)
        assert build_key("c", "search", (start, end)).period_id == "2024-01"

    def test_inverted_range_rejected(self):
        with pytest.raises(InvalidRangeError):
            build_key("c", "social", ("2024-02-01", "2024-01-01"))

    @pytest.mark.parametrize("bad", ["2024-13", "2024-W60", "january", ("2024-01-01", "nope"), 42])
    def test_malformed_range_rejected(self, bad):
        with pytest.raises(InvalidRangeError):
            build_key("c", "social", bad)

    def test_invalid_range_is_value_error(self):
        with pytest.raises(ValueError):
            build_key("c", "social", "2024-13")

    def test_empty_client_rejected(self):
        with pytest.raises(ValueError):
            build_key("", "social", "2024-01")

    def test_unknown_platform_rejected(self):
        with pytest.raises(ValueError):
            build_key("c", "tiktok", "2024-01")


# =============================================================================
# STRING FORM TESTS
# =============================================================================

class TestCacheKeyString:
    """Flat string keys used by the hot tier."""

    def test_format(self):
        key = MetricsKey("client-1", Platform.SEARCH, "2024-01")
        assert key.cache_key == "metrics:client-1:search:2024-01"

    def test_separator_in_client_id_cannot_collide(self):
        a = MetricsKey("a:social", Platform.SEARCH, "2024-01")
        b = MetricsKey("a", Platform.SOCIAL, "search:2024-01")
        assert a.cache_key != b.cache_key

    def test_client_prefix_matches_only_that_client(self):
        key = MetricsKey("acme", Platform.SOCIAL, "2024-01")
        other = MetricsKey("acme2", Platform.SOCIAL, "2024-01")
        assert key.cache_key.startswith(client_prefix("acme"))
        assert not other.cache_key.startswith(client_prefix("acme"))

    def test_dict_round_trip(self):
        key = MetricsKey("client-1", Platform.SOCIAL, "2024-W05")
        assert MetricsKey.from_dict(key.to_dict()) == key

    def test_for_platform(self):
        key = MetricsKey("c", Platform.BOTH, "2024-01")
        assert key.for_platform(Platform.SEARCH) == MetricsKey("c", Platform.SEARCH, "2024-01")


class TestCurrentPeriods:

    def test_current_month(self):
        now = datetime(2024, 6, 15, 12, tzinfo=timezone.utc)
        assert current_month_range(now) == DateRange(date(2024, 6, 1), date(2024, 6, 30))

    def test_current_week(self):
        now = datetime(2024, 6, 15, 12, tzinfo=timezone.utc)  # Saturday
        assert current_week_range(now) == DateRange(date(2024, 6, 10), date(2024, 6, 16))
