"""
constraints.py — Constraint checks over a batch of clerkship assignments

Hard constraints (must NOT violate):
  - DOUBLE_BOOKING: a student has two assignments on the same date
  - BLACKOUT: assignment on a blackout date
  - CAPACITY_EXCEEDED: preceptor over their resolved per-day ceiling
  - PRECEPTOR_UNAVAILABLE: preceptor unavailable at the site on that date
  - HEALTH_SYSTEM_MISMATCH: enforce_same_system broken within a clerkship
  - ONBOARDING_INCOMPLETE: student not onboarded with the site's health system
  - PRECEPTOR_NOT_ASSOCIATED: preceptor not associated with the clerkship (or site)
  - SITE_CAPACITY_EXCEEDED: site over its daily or yearly student ceiling

Cancelled assignments are skipped by every check.

Soft constraints (reported, not errors):
  - UNMET_REQUIREMENT: requirement days left when the window closed
  - UNSCHEDULED_DAY: student/date left without an assignment

Blackout helpers report which existing assignments collide with a new
blackout date, and split a batch into kept / removed.

Usage:
  checker = ConstraintChecker(snapshot)
  hard, soft = checker.check_all(assignments, result.shortfalls, result.unscheduled)
"""

import datetime as dt
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from clerkship_scheduler.availability import AvailabilityResolver
from clerkship_scheduler.capacity import CapacityResolver, SiteCapacityResolver
from clerkship_scheduler.config_resolver import ConfigurationResolver
from clerkship_scheduler.eligibility import AssociationResolver, OnboardingTracker
from clerkship_scheduler.errors import ConfigurationError
from clerkship_scheduler.models import (
    BlackoutDate,
    HealthSystemRule,
    RequirementType,
    ScheduleAssignment,
    SchedulingSnapshot,
    Shortfall,
    UnscheduledDay,
)

logger = logging.getLogger(__name__)


class ConstraintSeverity(Enum):
    HARD = "hard"
    SOFT = "soft"


@dataclass
class ConstraintViolation:
    severity: ConstraintSeverity
    constraint_type: str
    description: str
    date: Optional[dt.date] = None
    student: Optional[str] = None
    preceptor: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        parts = [f"[{self.severity.value.upper()}] {self.constraint_type}"]
        if self.date:
            parts.append(f"date={self.date.isoformat()}")
        if self.student:
            parts.append(f"student={self.student}")
        if self.preceptor:
            parts.append(f"preceptor={self.preceptor}")
        parts.append(f"→ {self.description}")
        return " | ".join(parts)


# ---------------------------------------------------------------------------
# Batch helpers
# ---------------------------------------------------------------------------

def find_duplicate_bookings(
    assignments: Iterable[ScheduleAssignment],
    against: Iterable[ScheduleAssignment] = (),
) -> List[Tuple[ScheduleAssignment, ScheduleAssignment]]:
    """
    Pairs (first, duplicate) sharing a (student, date) key.

    Assignments in `against` are taken as already booked; only duplicates
    involving at least one entry of `assignments` are reported. Cancelled
    assignments never collide.
    """
    seen: Dict[Tuple[str, date], ScheduleAssignment] = {a.key: a for a in against if a.is_active}
    duplicates: List[Tuple[ScheduleAssignment, ScheduleAssignment]] = []
    for a in assignments:
        if not a.is_active:
            continue
        first = seen.get(a.key)
        if first is not None:
            duplicates.append((first, a))
        else:
            seen[a.key] = a
    return duplicates


def find_blackout_conflicts(
    assignments: Iterable[ScheduleAssignment],
    blackout_dates: Iterable[BlackoutDate],
) -> List[ScheduleAssignment]:
    blocked = {b.date for b in blackout_dates}
    return [a for a in assignments if a.date in blocked]


@dataclass
class BlackoutConflictReport:
    blackout_dates: List[BlackoutDate]
    conflicts: List[ScheduleAssignment]

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


def add_blackout_date(
    blackout_dates: Sequence[BlackoutDate],
    blackout: BlackoutDate,
    assignments: Iterable[ScheduleAssignment],
) -> BlackoutConflictReport:
    """
    Add a blackout date and report the existing assignments that fall on it.

    The assignments are not touched; the caller decides whether to delete
    them (see resolve_blackout_conflicts).
    """
    if any(b.date == blackout.date for b in blackout_dates):
        raise ValueError(f"Blackout date {blackout.date} already exists")
    updated = sorted([*blackout_dates, blackout], key=lambda b: b.date)
    conflicts = find_blackout_conflicts(assignments, [blackout])
    if conflicts:
        logger.warning(f"Blackout {blackout.date} conflicts with {len(conflicts)} existing assignments")
    return BlackoutConflictReport(blackout_dates=updated, conflicts=conflicts)


def resolve_blackout_conflicts(
    assignments: Iterable[ScheduleAssignment],
    blackout_dates: Iterable[BlackoutDate],
) -> Tuple[List[ScheduleAssignment], List[ScheduleAssignment]]:
    """Split assignments into (kept, removed) by blackout date."""
    blocked = {b.date for b in blackout_dates}
    kept: List[ScheduleAssignment] = []
    removed: List[ScheduleAssignment] = []
    for a in assignments:
        (removed if a.date in blocked else kept).append(a)
    return kept, removed


# ---------------------------------------------------------------------------
# Checker
# ---------------------------------------------------------------------------

class ConstraintChecker:
    """
    Validates an assignment batch against a scheduling snapshot.
    """

    def __init__(
        self,
        snapshot: SchedulingSnapshot,
        availability: Optional[AvailabilityResolver] = None,
        capacity: Optional[CapacityResolver] = None,
        configs: Optional[ConfigurationResolver] = None,
    ):
        self.snapshot = snapshot
        self.availability = availability or AvailabilityResolver(snapshot.patterns)
        self.capacity = capacity or CapacityResolver(snapshot.capacity_rules, snapshot.preceptors)
        self.configs = configs or ConfigurationResolver(
            snapshot.requirements, snapshot.global_defaults, snapshot.clerkships
        )
        self.site_capacity = SiteCapacityResolver(snapshot.site_capacity_rules)
        self.onboarding = OnboardingTracker(snapshot.student_onboarding)
        self.associations = AssociationResolver(snapshot.preceptor_associations)
        self.preceptors = {p.id: p for p in snapshot.preceptors}
        self.sites = {s.id: s for s in snapshot.sites}

    def _config(self, clerkship_id: str, requirement_type: RequirementType):
        try:
            return self.configs.resolve(clerkship_id, requirement_type)
        except ConfigurationError as exc:
            logger.debug(f"No usable config for {clerkship_id}/{requirement_type}: {exc}")
            return None

    def _system_of(self, assignment: ScheduleAssignment) -> Optional[str]:
        site = self.sites.get(assignment.site_id) if assignment.site_id else None
        if site is not None and site.health_system_id:
            return site.health_system_id
        preceptor = self.preceptors.get(assignment.preceptor_id)
        return preceptor.health_system_id if preceptor else None

    # -----------------------------------------------------------------------
    # Hard constraints
    # -----------------------------------------------------------------------

    def check_double_booking(self, assignments: Iterable[ScheduleAssignment]) -> List[ConstraintViolation]:
        violations = []
        for first, dup in find_duplicate_bookings(assignments):
            violations.append(ConstraintViolation(
                severity=ConstraintSeverity.HARD,
                constraint_type="DOUBLE_BOOKING",
                description=(
                    f"{dup.student_id} booked with {first.preceptor_id} and {dup.preceptor_id}"
                ),
                date=dup.date,
                student=dup.student_id,
                preceptor=dup.preceptor_id,
            ))
        return violations

    def check_blackout(self, assignments: Iterable[ScheduleAssignment]) -> List[ConstraintViolation]:
        reasons = {b.date: b.reason for b in self.snapshot.blackout_dates}
        violations = []
        for a in find_blackout_conflicts(assignments, self.snapshot.blackout_dates):
            violations.append(ConstraintViolation(
                severity=ConstraintSeverity.HARD,
                constraint_type="BLACKOUT",
                description=f"Assigned on blackout date ({reasons.get(a.date) or 'no reason given'})",
                date=a.date,
                student=a.student_id,
                preceptor=a.preceptor_id,
            ))
        return violations

    def check_preceptor_capacity(self, assignments: Iterable[ScheduleAssignment]) -> List[ConstraintViolation]:
        by_slot: Dict[Tuple[str, date], List[ScheduleAssignment]] = defaultdict(list)
        for a in assignments:
            by_slot[(a.preceptor_id, a.date)].append(a)

        violations = []
        for (preceptor_id, day), slot in sorted(by_slot.items()):
            # Tightest ceiling among the requirements booked in this slot
            limit = min(
                self.capacity.resolve(
                    preceptor_id, a.clerkship_id, a.requirement_type,
                    self._config(a.clerkship_id, a.requirement_type),
                ).max_per_day
                for a in slot
            )
            if len(slot) > limit:
                violations.append(ConstraintViolation(
                    severity=ConstraintSeverity.HARD,
                    constraint_type="CAPACITY_EXCEEDED",
                    description=f"{len(slot)} students assigned, daily ceiling is {limit}",
                    date=day,
                    preceptor=preceptor_id,
                    details={"students": sorted(a.student_id for a in slot)},
                ))
        return violations

    def check_availability(self, assignments: Iterable[ScheduleAssignment]) -> List[ConstraintViolation]:
        violations = []
        for a in assignments:
            if a.site_id and self.availability.is_available(a.preceptor_id, a.site_id, a.date):
                continue
            violations.append(ConstraintViolation(
                severity=ConstraintSeverity.HARD,
                constraint_type="PRECEPTOR_UNAVAILABLE",
                description=f"{a.preceptor_id} not available at {a.site_id or 'unknown site'}",
                date=a.date,
                student=a.student_id,
                preceptor=a.preceptor_id,
            ))
        return violations

    def check_health_system(self, assignments: Iterable[ScheduleAssignment]) -> List[ConstraintViolation]:
        by_student: Dict[Tuple[str, str], List[ScheduleAssignment]] = defaultdict(list)
        for a in assignments:
            by_student[(a.student_id, a.clerkship_id)].append(a)

        violations = []
        for (student_id, clerkship_id), items in sorted(by_student.items()):
            items.sort(key=lambda a: a.date)
            anchor_system = None
            for a in items:
                system = self._system_of(a)
                if system is None:
                    continue
                if anchor_system is None:
                    anchor_system = system
                    continue
                config = self._config(a.clerkship_id, a.requirement_type)
                if config is None or HealthSystemRule(config.health_system_rule) is not HealthSystemRule.ENFORCE_SAME_SYSTEM:
                    continue
                if system != anchor_system:
                    violations.append(ConstraintViolation(
                        severity=ConstraintSeverity.HARD,
                        constraint_type="HEALTH_SYSTEM_MISMATCH",
                        description=f"{clerkship_id} started in {anchor_system}, assigned in {system}",
                        date=a.date,
                        student=student_id,
                        preceptor=a.preceptor_id,
                    ))
        return violations

    def check_onboarding(self, assignments: Iterable[ScheduleAssignment]) -> List[ConstraintViolation]:
        violations = []
        for a in assignments:
            system = self._system_of(a)
            if self.onboarding.is_onboarded(a.student_id, system):
                continue
            violations.append(ConstraintViolation(
                severity=ConstraintSeverity.HARD,
                constraint_type="ONBOARDING_INCOMPLETE",
                description=f"{a.student_id} has not completed onboarding for {system}",
                date=a.date,
                student=a.student_id,
                preceptor=a.preceptor_id,
                details={"health_system_id": system},
            ))
        return violations

    def check_associations(self, assignments: Iterable[ScheduleAssignment]) -> List[ConstraintViolation]:
        violations = []
        for a in assignments:
            if self.associations.is_associated(a.preceptor_id, a.clerkship_id, a.site_id):
                continue
            violations.append(ConstraintViolation(
                severity=ConstraintSeverity.HARD,
                constraint_type="PRECEPTOR_NOT_ASSOCIATED",
                description=f"{a.preceptor_id} is not associated with {a.clerkship_id} at {a.site_id or 'any site'}",
                date=a.date,
                student=a.student_id,
                preceptor=a.preceptor_id,
            ))
        return violations

    def check_site_capacity(self, assignments: Iterable[ScheduleAssignment]) -> List[ConstraintViolation]:
        by_day: Dict[Tuple[str, date], List[ScheduleAssignment]] = defaultdict(list)
        by_year: Dict[Tuple[str, int], List[ScheduleAssignment]] = defaultdict(list)
        for a in assignments:
            if a.site_id:
                by_day[(a.site_id, a.date)].append(a)
                by_year[(a.site_id, a.date.year)].append(a)

        def tightest(items: List[ScheduleAssignment], attr: str) -> Optional[int]:
            limits = []
            for a in items:
                ceilings = self.site_capacity.resolve(a.site_id, a.clerkship_id, a.requirement_type)
                if ceilings is not None and getattr(ceilings, attr):
                    limits.append(getattr(ceilings, attr))
            return min(limits) if limits else None

        violations = []
        for (site_id, day), items in sorted(by_day.items()):
            limit = tightest(items, "max_per_day")
            if limit is not None and len(items) > limit:
                violations.append(ConstraintViolation(
                    severity=ConstraintSeverity.HARD,
                    constraint_type="SITE_CAPACITY_EXCEEDED",
                    description=f"Site {site_id}: {len(items)} students assigned, daily ceiling is {limit}",
                    date=day,
                    details={"site_id": site_id, "students": sorted(a.student_id for a in items)},
                ))
        for (site_id, year), items in sorted(by_year.items()):
            limit = tightest(items, "max_per_year")
            students = {a.student_id for a in items}
            if limit is not None and len(students) > limit:
                violations.append(ConstraintViolation(
                    severity=ConstraintSeverity.HARD,
                    constraint_type="SITE_CAPACITY_EXCEEDED",
                    description=f"Site {site_id}: {len(students)} students in {year}, yearly ceiling is {limit}",
                    details={"site_id": site_id, "year": year},
                ))
        return violations

    # -----------------------------------------------------------------------
    # Soft constraints)
    # -----------------------------------------------------------------------

    def check_shortfalls(self, shortfalls: Iterable[Shortfall]) -> List[ConstraintViolation]:
        return [
            ConstraintViolation(
                severity=ConstraintSeverity.SOFT,
                constraint_type="UNMET_REQUIREMENT",
                description=(
                    f"{s.clerkship_id}/{RequirementType(s.requirement_type).value}: "
                    f"{s.assigned_days}/{s.required_days} days ({s.reason})"
                ),
                student=s.student_id,
                details={"shortfall_days": s.shortfall_days},
            )
            for s in shortfalls
        ]

    def check_unscheduled(self, unscheduled: Iterable[UnscheduledDay]) -> List[ConstraintViolation]:
        return [
            ConstraintViolation(
                severity=ConstraintSeverity.SOFT,
                constraint_type="UNSCHEDULED_DAY",
                description=u.reason or "no eligible preceptor",
                date=u.date,
                student=u.student_id,
            )
            for u in unscheduled
        ]

    # -----------------------------------------------------------------------
    # Run all
    # -----------------------------------------------------------------------

    def check_all(
        self,
        assignments: Sequence[ScheduleAssignment],
        shortfalls: Iterable[Shortfall] = (),
        unscheduled: Iterable[UnscheduledDay] = (),
    ) -> Tuple[List[ConstraintViolation], List[ConstraintViolation]]:
        """
        Run all constraint checks.

        Returns:
            (hard_violations, soft_violations)
        """
        assignments = [a for a in assignments if a.is_active]
        hard: List[ConstraintViolation] = []
        hard.extend(self.check_double_booking(assignments))
        hard.extend(self.check_blackout(assignments))
        hard.extend(self.check_preceptor_capacity(assignments))
        hard.extend(self.check_availability(assignments))
        hard.extend(self.check_health_system(assignments))
        hard.extend(self.check_onboarding(assignments))
        hard.extend(self.check_associations(assignments))
        hard.extend(self.check_site_capacity(assignments))

        soft: List[ConstraintViolation] = []
        soft.extend(self.check_shortfalls(shortfalls))
        soft.extend(self.check_unscheduled(unscheduled))

        logger.info(f"Constraint check: {len(hard)} hard, {len(soft)} soft violations")
        return hard, soft
