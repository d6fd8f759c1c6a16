"""
availability.py — Effective per-date preceptor availability

A preceptor's availability at a site comes from overlapping patterns:
  weekly < monthly < block < individual   (default specificity 1..4)

Resolution for (preceptor, site, date):
  1. Collect enabled patterns for the pair that cover the date.
  2. Highest specificity wins; at equal specificity an individual pattern
     beats any other type, then the latest created_at, then the highest id.
  3. No covering pattern → unavailable (fail closed).

Usage:
  resolver = AvailabilityResolver(snapshot.patterns)
  resolver.is_available("p-adams", "site-a", date(2025, 1, 8))
"""

import calendar
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from functools import lru_cache
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Optional, Set, Tuple

from clerkship_scheduler.models import AvailabilityPattern, PatternType
from clerkship_scheduler.schedule_config import (
    DEFAULT_WEEK_DEFINITION,
    MONTHLY_TYPES,
    PATTERN_SPECIFICITY,
    WEEK_DEFINITIONS,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    source: Optional[AvailabilityPattern] = None


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Yield every date in [start, end]."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def pattern_specificity(pattern: AvailabilityPattern) -> int:
    if pattern.specificity is not None:
        return pattern.specificity
    return PATTERN_SPECIFICITY[PatternType(pattern.pattern_type)]


def _precedence_key(pattern: AvailabilityPattern) -> Tuple[int, bool, datetime, str]:
    return (
        pattern_specificity(pattern),
        PatternType(pattern.pattern_type) is PatternType.INDIVIDUAL,
        pattern.created_at or datetime.min,
        pattern.id,
    )


# ---------------------------------------------------------------------------
# Weekly
# ---------------------------------------------------------------------------

def weekday_mask(config: Optional[Dict[str, Any]]) -> int:
    """Bit i set ⇔ weekday i (Monday = 0) is covered."""
    config = config or {}
    mask = config.get("days_mask")
    if mask is not None:
        return int(mask) & 0b1111111
    days = config.get("days_of_week") or []
    out = 0
    for d in days:
        d = int(d)
        if not 0 <= d <= 6:
            raise ValueError(f"days_of_week entries must be 0-6, got {d}")
        out |= 1 << d
    return out


def _matches_weekly(pattern: AvailabilityPattern, day: date) -> bool:
    return bool(weekday_mask(pattern.config) >> day.weekday() & 1)


# ---------------------------------------------------------------------------
# Monthly
# ---------------------------------------------------------------------------

def _month_days(year: int, month: int) -> List[date]:
    last = calendar.monthrange(year, month)[1]
    return [date(year, month, d) for d in range(1, last + 1)]


@lru_cache(maxsize=512)
def _week_dates(year: int, month: int, which: str, week_definition: str) -> FrozenSet[date]:
    """
    Dates of the first or last week of a month.

    seven_days: days 1-7, or the final seven days
    calendar:   Sunday-Saturday week starting on the first Sunday,
                or ending on the last Saturday
    business:   first five weekdays, or the last five
    """
    days = _month_days(year, month)
    if which == "last":
        days = list(reversed(days))

    if week_definition == "seven_days":
        return frozenset(days[:7])
    if week_definition == "business":
        return frozenset([d for d in days if d.weekday() < 5][:5])
    if week_definition == "calendar":
        # Week boundary: Sunday when scanning forward, Saturday when scanning back
        boundary = 6 if which == "first" else 5
        anchor = next(d for d in days if d.weekday() == boundary)
        step = timedelta(days=1) if which == "first" else timedelta(days=-1)
        week = [anchor + step * i for i in range(7)]
        return frozenset(d for d in week if d.month == month)
    raise ValueError(f"Unknown week_definition: {week_definition}")


def _matches_monthly(pattern: AvailabilityPattern, day: date) -> bool:
    config = pattern.config or {}
    monthly_type = config.get("monthly_type", "specific_days")
    if monthly_type not in MONTHLY_TYPES:
        raise ValueError(f"Unknown monthly_type '{monthly_type}' on pattern {pattern.id}")

    if monthly_type == "specific_days":
        # Days beyond the end of a short month never match
        return day.day in {int(d) for d in config.get("specific_days") or []}
    if monthly_type == "first_business_week":
        return day in _week_dates(day.year, day.month, "first", "business")
    if monthly_type == "last_business_week":
        return day in _week_dates(day.year, day.month, "last", "business")

    week_definition = config.get("week_definition", DEFAULT_WEEK_DEFINITION)
    if week_definition not in WEEK_DEFINITIONS:
        raise ValueError(f"Unknown week_definition '{week_definition}' on pattern {pattern.id}")
    which = "first" if monthly_type == "first_week" else "last"
    return day in _week_dates(day.year, day.month, which, week_definition)


# ---------------------------------------------------------------------------
# Block / individual
# ---------------------------------------------------------------------------

def _matches_block(pattern: AvailabilityPattern, day: date) -> bool:
    config = pattern.config or {}
    if config.get("exclude_weekends") and day.weekday() >= 5:
        return False
    return True


def _matches_individual(pattern: AvailabilityPattern, day: date) -> bool:
    return day == pattern.date_range_start


_MATCHERS = {
    PatternType.WEEKLY: _matches_weekly,
    PatternType.MONTHLY: _matches_monthly,
    PatternType.BLOCK: _matches_block,
    PatternType.INDIVIDUAL: _matches_individual,
}


def pattern_covers(pattern: AvailabilityPattern, day: date) -> bool:
    """True if the pattern makes a statement about this date."""
    if not pattern.enabled:
        return False
    pattern_type = PatternType(pattern.pattern_type)
    if pattern_type is PatternType.INDIVIDUAL:
        return day == pattern.date_range_start
    if not pattern.date_range_start <= day <= pattern.date_range_end:
        return False
    return _MATCHERS[pattern_type](pattern, day)


def expand_pattern(
    pattern: AvailabilityPattern,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> List[date]:
    """
    Every date the pattern generates, optionally clipped to [start, end].
    """
    lo = pattern.date_range_start
    hi = pattern.date_range_start if PatternType(pattern.pattern_type) is PatternType.INDIVIDUAL else pattern.date_range_end
    if start is not None:
        lo = max(lo, start)
    if end is not None:
        hi = min(hi, end)
    return [d for d in iter_dates(lo, hi) if pattern_covers(pattern, d)]


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class AvailabilityResolver:
    """
    Resolves (preceptor, site, date) → available/unavailable.

    Patterns are indexed once per pair and kept in descending precedence,
    so the first covering pattern is the winner.
    """

    def __init__(self, patterns: Iterable[AvailabilityPattern]):
        self._by_pair: Dict[Tuple[str, str], List[AvailabilityPattern]] = defaultdict(list)
        self._sites_by_preceptor: Dict[str, Set[str]] = defaultdict(set)
        self._cache: Dict[Tuple[str, str, date], AvailabilityResult] = {}

        skipped = 0
        for pattern in patterns:
            if not pattern.enabled:
                skipped += 1
                continue
            self._by_pair[(pattern.preceptor_id, pattern.site_id)].append(pattern)
            self._sites_by_preceptor[pattern.preceptor_id].add(pattern.site_id)

        for pair_patterns in self._by_pair.values():
            pair_patterns.sort(key=_precedence_key, reverse=True)

        if skipped:
            logger.debug(f"Ignoring {skipped} disabled availability patterns")

    def resolve(self, preceptor_id: str, site_id: str, day: date) -> AvailabilityResult:
        key = (preceptor_id, site_id, day)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        result = AvailabilityResult(available=False)
        for pattern in self._by_pair.get((preceptor_id, site_id), ()):
            if pattern_covers(pattern, day):
                result = AvailabilityResult(available=pattern.is_available, source=pattern)
                break

        self._cache[key] = result
        return result

    def is_available(self, preceptor_id: str, site_id: str, day: date) -> bool:
        return self.resolve(preceptor_id, site_id, day).available

    def available_sites(self, preceptor_id: str, site_ids: Iterable[str], day: date) -> List[str]:
        return [s for s in site_ids if self.is_available(preceptor_id, s, day)]

    def sites_for(self, preceptor_id: str) -> Set[str]:
        """Sites the preceptor has any pattern at."""
        return set(self._sites_by_preceptor.get(preceptor_id, ()))


def build_availability_calendar(
    patterns: Iterable[AvailabilityPattern],
    start: date,
    end: date,
) -> Dict[Tuple[str, str], Dict[date, bool]]:
    """
    Resolved availability for every (preceptor, site) pair with patterns,
    for each date in [start, end].
    """
    patterns = list(patterns)
    resolver = AvailabilityResolver(patterns)
    pairs = sorted({(p.preceptor_id, p.site_id) for p in patterns if p.enabled})
    return {
        pair: {d: resolver.is_available(pair[0], pair[1], d) for d in iter_dates(start, end)}
        for pair in pairs
    }
