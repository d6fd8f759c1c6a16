"""
capacity.py — Preceptor capacity ceilings and the per-request capacity ledger

Ceiling lookup (first match wins):
  1. rule for (preceptor, clerkship, requirement type)
  2. rule for (preceptor, clerkship, any type)
  3. rule for (preceptor, any clerkship, requirement type)
  4. rule for (preceptor, any clerkship, any type)
  5. preceptor's absolute defaults, then the requirement's effective config

Per-day ceiling is never unlimited: unset or non-positive → 1.
Per-year / per-block / blocks-per-year unset or 0 → no limit.

Site rules (SiteCapacityRule) use the same four-step lookup keyed by site,
with no default: a site without a rule is unlimited, and an unset site
per-day ceiling means no daily limit.

Check order on the ledger: daily, yearly (calendar year, distinct students),
per-block (distinct students), blocks per year (distinct blocks).
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Hashable, Iterable, List, Optional, Set, Tuple

from clerkship_scheduler.errors import InvariantViolationError
from clerkship_scheduler.models import (
    CapacityRule,
    EffectiveRequirementConfig,
    Preceptor,
    RequirementType,
    ScheduleAssignment,
    SiteCapacityRule,
)
from clerkship_scheduler.schedule_config import DEFAULT_MAX_STUDENTS_PER_DAY

logger = logging.getLogger(__name__)

SOURCE_CLERKSHIP_REQUIREMENT = "clerkship-requirement"
SOURCE_CLERKSHIP = "clerkship-specific"
SOURCE_REQUIREMENT_TYPE = "requirement-type-specific"
SOURCE_GENERAL = "general"
SOURCE_DEFAULT = "default"

CHECK_DAILY = "daily"
CHECK_YEARLY = "yearly"
CHECK_BLOCK = "block"
CHECK_BLOCKS_PER_YEAR = "blocks_per_year"

RuleKey = Tuple[str, Optional[str], Optional[RequirementType]]


@dataclass(frozen=True)
class CapacityCeilings:
    max_per_day: Optional[int]          # None only for site ceilings
    max_per_year: Optional[int] = None
    max_per_block: Optional[int] = None
    max_blocks_per_year: Optional[int] = None
    source: str = SOURCE_DEFAULT


@dataclass(frozen=True)
class CapacityCheck:
    has_capacity: bool
    check_type: Optional[str] = None
    current: int = 0
    maximum: Optional[int] = None

    @property
    def reason(self) -> str:
        if self.has_capacity:
            return ""
        return f"{self.check_type} capacity reached ({self.current}/{self.maximum})"


def _positive(value: Optional[int]) -> Optional[int]:
    if value is None or value <= 0:
        return None
    return int(value)


def _index_rules(rules: Iterable[Any], owner: str) -> Dict[RuleKey, Any]:
    """Rules keyed by (owner, clerkship, type); the first id wins on a duplicate scope."""
    indexed: Dict[RuleKey, Any] = {}
    for rule in sorted(rules, key=lambda r: r.id):
        rt = RequirementType(rule.requirement_type) if rule.requirement_type else None
        key = (getattr(rule, owner), rule.clerkship_id or None, rt)
        if key in indexed:
            logger.warning(
                f"Capacity rule {rule.id} duplicates scope of {indexed[key].id}; ignoring it"
            )
            continue
        indexed[key] = rule
    return indexed


def _lookup_order(
    owner_id: str,
    clerkship_id: Optional[str],
    requirement_type: Optional[RequirementType],
) -> List[Tuple[RuleKey, str]]:
    lookups = []
    if clerkship_id and requirement_type:
        lookups.append(((owner_id, clerkship_id, requirement_type), SOURCE_CLERKSHIP_REQUIREMENT))
    if clerkship_id:
        lookups.append(((owner_id, clerkship_id, None), SOURCE_CLERKSHIP))
    if requirement_type:
        lookups.append(((owner_id, None, requirement_type), SOURCE_REQUIREMENT_TYPE))
    lookups.append(((owner_id, None, None), SOURCE_GENERAL))
    return lookups


class CapacityResolver:
    """Resolves CapacityCeilings for a (preceptor, clerkship, requirement type) lookup."""

    def __init__(self, rules: Iterable[CapacityRule], preceptors: Iterable[Preceptor]):
        self._rules: Dict[RuleKey, CapacityRule] = _index_rules(rules, "preceptor_id")
        self._preceptors: Dict[str, Preceptor] = {p.id: p for p in preceptors}
        self._cache: Dict[tuple, CapacityCeilings] = {}

    def find_rule(
        self,
        preceptor_id: str,
        clerkship_id: Optional[str] = None,
        requirement_type: Optional[RequirementType] = None,
    ) -> Tuple[Optional[CapacityRule], str]:
        for key, source in _lookup_order(preceptor_id, clerkship_id, requirement_type):
            rule = self._rules.get(key)
            if rule is not None:
                return rule, source
        return None, SOURCE_DEFAULT

    def resolve(
        self,
        preceptor_id: str,
        clerkship_id: Optional[str] = None,
        requirement_type: Optional[RequirementType] = None,
        config: Optional[EffectiveRequirementConfig] = None,
    ) -> CapacityCeilings:
        if requirement_type is not None:
            requirement_type = RequirementType(requirement_type)
        cache_key = (preceptor_id, clerkship_id, requirement_type, config)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        rule, source = self.find_rule(preceptor_id, clerkship_id, requirement_type)
        if rule is not None:
            ceilings = CapacityCeilings(
                max_per_day=_positive(rule.max_students_per_day) or DEFAULT_MAX_STUDENTS_PER_DAY,
                max_per_year=_positive(rule.max_students_per_year),
                max_per_block=_positive(rule.max_students_per_block),
                max_blocks_per_year=_positive(rule.max_blocks_per_year),
                source=source,
            )
        else:
            preceptor = self._preceptors.get(preceptor_id)
            per_day = _positive(preceptor.max_students_per_day) if preceptor else None
            per_year = _positive(preceptor.max_students_per_year) if preceptor else None
            if config is not None:
                per_day = per_day or _positive(config.max_students_per_day)
                per_year = per_year or _positive(config.max_students_per_year)
            ceilings = CapacityCeilings(
                max_per_day=per_day or DEFAULT_MAX_STUDENTS_PER_DAY,
                max_per_year=per_year,
                max_per_block=_positive(config.max_students_per_block) if config else None,
                max_blocks_per_year=_positive(config.max_blocks_per_year) if config else None,
                source=SOURCE_DEFAULT,
            )

        self._cache[cache_key] = ceilings
        return ceilings


class SiteCapacityResolver:
    """Resolves site-wide CapacityCeilings, or None when no rule covers the site."""

    def __init__(self, rules: Iterable[SiteCapacityRule]):
        self._rules: Dict[RuleKey, SiteCapacityRule] = _index_rules(rules, "site_id")
        self._cache: Dict[tuple, Optional[CapacityCeilings]] = {}

    def resolve(
        self,
        site_id: Optional[str],
        clerkship_id: Optional[str] = None,
        requirement_type: Optional[RequirementType] = None,
    ) -> Optional[CapacityCeilings]:
        if not site_id or not self._rules:
            return None
        if requirement_type is not None:
            requirement_type = RequirementType(requirement_type)
        cache_key = (site_id, clerkship_id, requirement_type)
        if cache_key in self._cache:
            return self._cache[cache_key]

        ceilings = None
        for key, source in _lookup_order(site_id, clerkship_id, requirement_type):
            rule = self._rules.get(key)
            if rule is not None:
                ceilings = CapacityCeilings(
                    max_per_day=_positive(rule.max_students_per_day),
                    max_per_year=_positive(rule.max_students_per_year),
                    max_per_block=_positive(rule.max_students_per_block),
                    max_blocks_per_year=_positive(rule.max_blocks_per_year),
                    source=source,
                )
                break
        self._cache[cache_key] = ceilings
        return ceilings


class CapacityLedger:
    """
    Mutable capacity counters for a single generation request.

    Seeded from the assignments that already exist, then updated as the
    generator commits new ones. Never shared between requests. Site-wide
    counters live in a nested ledger keyed by site id (`sites`).
    """

    def __init__(self, track_sites: bool = True):
        self._daily: Dict[Tuple[str, date], int] = defaultdict(int)
        self._yearly_students: Dict[Tuple[str, int], Set[str]] = defaultdict(set)
        self._block_students: Dict[Tuple[str, Hashable], Set[str]] = defaultdict(set)
        self._blocks_by_year: Dict[Tuple[str, int], Set[Hashable]] = defaultdict(set)
        self.sites: Optional[CapacityLedger] = CapacityLedger(track_sites=False) if track_sites else None

    @classmethod
    def from_assignments(cls, assignments: Iterable[ScheduleAssignment]) -> "CapacityLedger":
        ledger = cls()
        for a in assignments:
            if a.is_active:
                ledger.record(a.preceptor_id, a.student_id, a.date, block_key_for(a), site_id=a.site_id)
        return ledger

    def record(
        self,
        preceptor_id: str,
        student_id: str,
        day: date,
        block_key: Optional[Hashable] = None,
        site_id: Optional[str] = None,
    ) -> None:
        self._daily[(preceptor_id, day)] += 1
        self._yearly_students[(preceptor_id, day.year)].add(student_id)
        if block_key is not None:
            self._block_students[(preceptor_id, block_key)].add(student_id)
            self._blocks_by_year[(preceptor_id, day.year)].add(block_key)
        if site_id and self.sites is not None:
            self.sites.record(site_id, student_id, day, block_key)

    def daily_count(self, preceptor_id: str, day: date) -> int:
        return self._daily.get((preceptor_id, day), 0)

    def headroom(self, preceptor_id: str, day: date, ceilings: CapacityCeilings) -> int:
        return ceilings.max_per_day - self.daily_count(preceptor_id, day)

    def check(
        self,
        preceptor_id: str,
        student_id: str,
        day: date,
        ceilings: CapacityCeilings,
        block_key: Optional[Hashable] = None,
    ) -> CapacityCheck:
        daily = self.daily_count(preceptor_id, day)
        if ceilings.max_per_day is not None and daily >= ceilings.max_per_day:
            return CapacityCheck(False, CHECK_DAILY, daily, ceilings.max_per_day)

        if ceilings.max_per_year:
            students = self._yearly_students.get((preceptor_id, day.year), set())
            if student_id not in students and len(students) >= ceilings.max_per_year:
                return CapacityCheck(False, CHECK_YEARLY, len(students), ceilings.max_per_year)

        if block_key is not None:
            if ceilings.max_per_block:
                students = self._block_students.get((preceptor_id, block_key), set())
                if student_id not in students and len(students) >= ceilings.max_per_block:
                    return CapacityCheck(False, CHECK_BLOCK, len(students), ceilings.max_per_block)
            if ceilings.max_blocks_per_year:
                blocks = self._blocks_by_year.get((preceptor_id, day.year), set())
                if block_key not in blocks and len(blocks) >= ceilings.max_blocks_per_year:
                    return CapacityCheck(False, CHECK_BLOCKS_PER_YEAR, len(blocks), ceilings.max_blocks_per_year)

        return CapacityCheck(True, current=daily, maximum=ceilings.max_per_day)

    def check_site(
        self,
        site_id: Optional[str],
        student_id: str,
        day: date,
        ceilings: Optional[CapacityCeilings],
        block_key: Optional[Hashable] = None,
    ) -> CapacityCheck:
        if ceilings is None or not site_id or self.sites is None:
            return CapacityCheck(True)
        return self.sites.check(site_id, student_id, day, ceilings, block_key)

    def consume(
        self,
        preceptor_id: str,
        student_id: str,
        day: date,
        ceilings: CapacityCeilings,
        block_key: Optional[Hashable] = None,
        site_id: Optional[str] = None,
    ) -> None:
        """Record a new assignment; a daily overflow here is a generator bug."""
        self.record(preceptor_id, student_id, day, block_key, site_id=site_id)
        count = self.daily_count(preceptor_id, day)
        if count > ceilings.max_per_day:
            raise InvariantViolationError(
                f"Preceptor {preceptor_id} over daily capacity on {day}: {count}/{ceilings.max_per_day}"
            )


def make_block_key(clerkship_id: str, requirement_type: RequirementType, block_number: int) -> Hashable:
    return (clerkship_id, RequirementType(requirement_type).value, block_number)


def block_key_for(assignment: ScheduleAssignment) -> Optional[Hashable]:
    """Ledger block key of an assignment, or None if it is not part of a block."""
    if assignment.block_number is None:
        return None
    return make_block_key(assignment.clerkship_id, assignment.requirement_type, assignment.block_number)
