"""
tests/test_availability.py — Pattern matching and precedence for preceptor availability.
"""

import sys
from datetime import date, datetime
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from clerkship_scheduler.availability import (
    AvailabilityResolver,
    build_availability_calendar,
    expand_pattern,
    pattern_covers,
    weekday_mask,
)
from clerkship_scheduler.models import AvailabilityPattern, PatternType
from tests.builders import block, created, individual, monthly, weekly


def _dates(*days, month=1, year=2025):
    return [date(year, month, d) for d in days]


# ---------------------------------------------------------------------------
# Weekly
# ---------------------------------------------------------------------------

class TestWeekly:

    def test_weekday_mask_from_bits(self):
        assert weekday_mask({"days_mask": 0b0000101}) == 0b101

    def test_weekday_mask_from_list(self):
        assert weekday_mask({"days_of_week": [0, 2, 4]}) == 0b10101

    def test_weekday_mask_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            weekday_mask({"days_of_week": [7]})

    def test_weekdays_only(self):
        resolver = AvailabilityResolver([weekly("p-1")])
        assert resolver.is_available("p-1", "site-1", date(2025, 1, 8))       # Wednesday
        assert not resolver.is_available("p-1", "site-1", date(2025, 1, 11))  # Saturday

    def test_days_of_week_config(self):
        pattern = AvailabilityPattern(
            id="w-mwf", preceptor_id="p-1", site_id="site-1", pattern_type=PatternType.WEEKLY,
            date_range_start=date(2025, 1, 1), date_range_end=date(2025, 1, 31),
            config={"days_of_week": [0, 2, 4]},
        )
        assert expand_pattern(pattern, date(2025, 1, 6), date(2025, 1, 12)) == _dates(6, 8, 10)

    def test_outside_date_range_not_covered(self):
        pattern = weekly("p-1", start=date(2025, 1, 6), end=date(2025, 1, 10))
        assert not pattern_covers(pattern, date(2025, 1, 13))
        assert pattern_covers(pattern, date(2025, 1, 10))


# ---------------------------------------------------------------------------
# Monthly
# ---------------------------------------------------------------------------

class TestMonthly:

    def test_specific_days_skip_missing_dates(self):
        pattern = monthly("p-1", {"monthly_type": "specific_days", "specific_days": [1, 15, 31]})
        days = expand_pattern(pattern, date(2025, 2, 1), date(2025, 2, 28))
        assert days == _dates(1, 15, month=2)

    def test_first_week_seven_days(self):
        pattern = monthly("p-1", {"monthly_type": "first_week"})
        assert expand_pattern(pattern, date(2025, 1, 1), date(2025, 1, 31)) == _dates(*range(1, 8))

    def test_first_week_calendar(self):
        # January 2025 starts on a Wednesday; the first Sunday is the 5th
        pattern = monthly("p-1", {"monthly_type": "first_week", "week_definition": "calendar"})
        assert expand_pattern(pattern, date(2025, 1, 1), date(2025, 1, 31)) == _dates(*range(5, 12))

    def test_last_week_calendar(self):
        # January 31, 2025 is a Friday; the last Saturday is the 25th
        pattern = monthly("p-1", {"monthly_type": "last_week", "week_definition": "calendar"})
        assert expand_pattern(pattern, date(2025, 1, 1), date(2025, 1, 31)) == _dates(*range(19, 26))

    def test_calendar_week_on_month_edges(self):
        # June 2025 starts on a Sunday; May 2025 ends on a Saturday
        first = monthly("p-1", {"monthly_type": "first_week", "week_definition": "calendar"})
        last = monthly("p-1", {"monthly_type": "last_week", "week_definition": "calendar"})
        assert expand_pattern(first, date(2025, 6, 1), date(2025, 6, 30)) == _dates(*range(1, 8), month=6)
        assert expand_pattern(last, date(2025, 5, 1), date(2025, 5, 31)) == _dates(*range(25, 32), month=5)

    def test_last_week_seven_days(self):
        pattern = monthly("p-1", {"monthly_type": "last_week"})
        assert expand_pattern(pattern, date(2025, 2, 1), date(2025, 2, 28)) == _dates(*range(22, 29), month=2)

    def test_first_business_week(self):
        # March 1, 2025 is a Saturday
        pattern = monthly("p-1", {"monthly_type": "first_business_week"})
        assert expand_pattern(pattern, date(2025, 3, 1), date(2025, 3, 31)) == _dates(*range(3, 8), month=3)

    def test_last_business_week(self):
        pattern = monthly("p-1", {"monthly_type": "last_business_week"})
        assert expand_pattern(pattern, date(2025, 1, 1), date(2025, 1, 31)) == _dates(*range(27, 32))

    def test_unknown_monthly_type(self):
        pattern = monthly("p-1", {"monthly_type": "every_other_tuesday"})
        with pytest.raises(ValueError):
            pattern_covers(pattern, date(2025, 1, 7))


# ---------------------------------------------------------------------------
# Precedence
# ---------------------------------------------------------------------------

class TestPrecedence:

    def test_no_pattern_is_unavailable(self):
        resolver = AvailabilityResolver([weekly("p-1")])
        assert not resolver.is_available("p-2", "site-1", date(2025, 1, 8))
        assert not resolver.is_available("p-1", "site-2", date(2025, 1, 8))

    def test_individual_overrides_weekly(self):
        resolver = AvailabilityResolver([weekly("p-1"), individual("p-1", date(2025, 1, 8))])
        assert not resolver.is_available("p-1", "site-1", date(2025, 1, 8))
        assert resolver.is_available("p-1", "site-1", date(2025, 1, 9))

    def test_block_overrides_weekly_and_monthly(self):
        patterns = [
            weekly("p-1"),
            monthly("p-1", {"monthly_type": "first_week"}),
            block("p-1", date(2025, 1, 6), date(2025, 1, 10), available=False),
        ]
        resolver = AvailabilityResolver(patterns)
        assert not resolver.is_available("p-1", "site-1", date(2025, 1, 6))
        assert resolver.is_available("p-1", "site-1", date(2025, 1, 13))

    def test_individual_available_inside_unavailable_block(self):
        patterns = [
            block("p-1", date(2025, 1, 6), date(2025, 1, 10), available=False),
            individual("p-1", date(2025, 1, 8), available=True),
        ]
        resolver = AvailabilityResolver(patterns)
        assert resolver.is_available("p-1", "site-1", date(2025, 1, 8))
        assert not resolver.is_available("p-1", "site-1", date(2025, 1, 9))

    def test_equal_specificity_latest_created_wins(self):
        patterns = [
            weekly("p-1", created_at=created(1)),
            weekly("p-1", is_available=False, created_at=created(5)),
        ]
        resolver = AvailabilityResolver(patterns)
        result = resolver.resolve("p-1", "site-1", date(2025, 1, 8))
        assert not result.available
        assert result.source.created_at == created(5)

    def test_explicit_specificity_beats_type_default(self):
        patterns = [
            weekly("p-1", is_available=False, specificity=10),
            individual("p-1", date(2025, 1, 8), available=True),
        ]
        resolver = AvailabilityResolver(patterns)
        assert not resolver.is_available("p-1", "site-1", date(2025, 1, 8))

    def test_disabled_pattern_ignored(self):
        patterns = [weekly("p-1"), individual("p-1", date(2025, 1, 8), enabled=False)]
        resolver = AvailabilityResolver(patterns)
        assert resolver.is_available("p-1", "site-1", date(2025, 1, 8))

    def test_resolution_is_deterministic(self):
        patterns = [
            weekly("p-1", id="a", created_at=datetime(2024, 1, 1)),
            weekly("p-1", id="b", is_available=False, created_at=datetime(2024, 1, 1)),
        ]
        first = AvailabilityResolver(patterns).resolve("p-1", "site-1", date(2025, 1, 8))
        second = AvailabilityResolver(list(reversed(patterns))).resolve("p-1", "site-1", date(2025, 1, 8))
        assert first == second
        assert first.source.id == "b"


class TestCalendar:

    def test_calendar_covers_each_pair(self):
        patterns = [weekly("p-1"), weekly("p-2", site_id="site-2", days_mask=0b1)]
        calendar = build_availability_calendar(patterns, date(2025, 1, 6), date(2025, 1, 12))
        assert set(calendar) == {("p-1", "site-1"), ("p-2", "site-2")}
        assert sum(calendar[("p-1", "site-1")].values()) == 5
        assert [d for d, ok in calendar[("p-2", "site-2")].items() if ok] == [date(2025, 1, 6)]

    def test_sites_for(self):
        resolver = AvailabilityResolver([weekly("p-1"), weekly("p-1", site_id="site-2")])
        assert resolver.sites_for("p-1") == {"site-1", "site-2"}
        assert resolver.available_sites("p-1", ["site-1", "site-3"], date(2025, 1, 8)) == ["site-1"]
