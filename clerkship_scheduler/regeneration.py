"""
regeneration.py — Regenerate the future part of a schedule from a cutover date

Steps:
  1. Partition existing assignments at the cutover: past = date < cutover.
     Future assignments outside the regeneration scope (dated outside
     [max(start, cutover), end], or for a student or clerkship the request
     does not cover) are retained untouched.
  2. Pick what happens to in-scope future assignments:
       full-reoptimize  discard all of them
       minimal-change   keep the ones that are still valid (preceptor still
                        available, not a blackout date, within capacity)
  3. Credit past, retained and kept days toward each (student, clerkship, type).
  4. Generate only for dates ≥ cutover, with past + retained + kept as
     existing bookings.
  5. Merge and verify no (student, date) appears twice. A duplicate raises
     InvariantViolationError and nothing is returned.

Cancelled assignments are never credited and never block a day. Cancelled
in-scope future assignments are always discarded.

Past assignments are never modified. Running the same regeneration twice on
the same inputs gives the same future set.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from clerkship_scheduler.capacity import CapacityLedger, block_key_for
from clerkship_scheduler.constraints import find_duplicate_bookings
from clerkship_scheduler.engine import GENERATION_LOCK, AssignmentGenerator
from clerkship_scheduler.errors import ConfigurationError, InvariantViolationError
from clerkship_scheduler.models import (
    GenerationResult,
    RequirementKey,
    RequirementProgress,
    RequirementType,
    ScheduleAssignment,
    SchedulingSnapshot,
    Shortfall,
    UnscheduledDay,
)

logger = logging.getLogger(__name__)


class RegenerationStrategy(str, Enum):
    FULL_REOPTIMIZE = "full-reoptimize"
    MINIMAL_CHANGE = "minimal-change"


@dataclass
class RegenerationResult:
    cutover_date: date
    strategy: RegenerationStrategy
    past: List[ScheduleAssignment] = field(default_factory=list)
    retained: List[ScheduleAssignment] = field(default_factory=list)
    preserved: List[ScheduleAssignment] = field(default_factory=list)
    discarded: List[ScheduleAssignment] = field(default_factory=list)
    generated: List[ScheduleAssignment] = field(default_factory=list)
    credits: Dict[RequirementKey, int] = field(default_factory=dict)
    shortfalls: List[Shortfall] = field(default_factory=list)
    unscheduled: List[UnscheduledDay] = field(default_factory=list)
    progress: Dict[RequirementKey, RequirementProgress] = field(default_factory=dict)

    @property
    def future(self) -> List[ScheduleAssignment]:
        return self.preserved + self.generated

    @property
    def merged(self) -> List[ScheduleAssignment]:
        return sorted(self.past + self.retained + self.future, key=lambda a: (a.date, a.student_id))

    def as_generation_result(self) -> GenerationResult:
        """Generated assignments with shortfalls and progress, for metrics and reports."""
        return GenerationResult(
            assignments=list(self.generated),
            shortfalls=list(self.shortfalls),
            unscheduled=list(self.unscheduled),
            progress=dict(self.progress),
        )


@dataclass
class RegenerationImpact:
    cutover_date: date
    strategy: RegenerationStrategy
    past_count: int
    future_count: int
    to_delete: int
    to_preserve: int
    student_progress: List[Dict[str, Any]]
    retained_count: int = 0

    @property
    def summary(self) -> str:
        return (
            f"{self.past_count} past assignments kept, {self.to_delete} future assignments "
            f"replaced, {self.to_preserve} preserved, {self.retained_count} out of scope "
            f"({self.strategy.value})"
        )


def partition_assignments(
    assignments: Iterable[ScheduleAssignment],
    cutover_date: date,
) -> Tuple[List[ScheduleAssignment], List[ScheduleAssignment]]:
    """Split into (past, future); past is strictly before the cutover."""
    past: List[ScheduleAssignment] = []
    future: List[ScheduleAssignment] = []
    for a in sorted(assignments, key=lambda a: (a.date, a.student_id)):
        (past if a.date < cutover_date else future).append(a)
    return past, future


def split_by_scope(
    future: Iterable[ScheduleAssignment],
    start_date: date,
    end_date: Optional[date] = None,
    student_ids: Optional[Iterable[str]] = None,
    clerkship_ids: Optional[Iterable[str]] = None,
) -> Tuple[List[ScheduleAssignment], List[ScheduleAssignment]]:
    """
    Split future assignments into (scoped, retained).

    Scoped: dated within [start_date, end_date] and matching the student and
    clerkship filters; only these may be replaced. Everything else is
    retained as-is. end_date None means no upper bound.
    """
    students = set(student_ids) if student_ids is not None else None
    clerkships = set(clerkship_ids) if clerkship_ids is not None else None
    scoped: List[ScheduleAssignment] = []
    retained: List[ScheduleAssignment] = []
    for a in future:
        in_scope = (
            a.date >= start_date
            and (end_date is None or a.date <= end_date)
            and (students is None or a.student_id in students)
            and (clerkships is None or a.clerkship_id in clerkships)
        )
        (scoped if in_scope else retained).append(a)
    return scoped, retained


def credit_past_assignments(past: Iterable[ScheduleAssignment]) -> Dict[RequirementKey, int]:
    """Days already completed per (student, clerkship, requirement type)."""
    counts = Counter(
        (a.student_id, a.clerkship_id, RequirementType(a.requirement_type)) for a in past if a.is_active
    )
    return dict(counts)


def identify_affected_assignments(
    future: Sequence[ScheduleAssignment],
    generator: AssignmentGenerator,
    booked: Iterable[ScheduleAssignment] = (),
) -> Tuple[List[ScheduleAssignment], List[ScheduleAssignment]]:
    """
    Split future assignments into (affected, preservable).

    Affected: cancelled, on a blackout date, preceptor or clerkship no longer
    known, preceptor unavailable at the site or no longer associated with
    the clerkship, student not onboarded with the site's health system,
    student already booked that day, or preceptor or site capacity would
    be exceeded.
    """
    booked = list(booked)
    ledger = CapacityLedger.from_assignments(booked)
    taken = {a.key for a in booked if a.is_active}
    affected: List[ScheduleAssignment] = []
    preservable: List[ScheduleAssignment] = []

    for a in sorted(future, key=lambda a: (a.date, a.student_id)):
        reason = None
        if not a.is_active:
            reason = "cancelled"
        elif a.date in generator.blackout_dates:
            reason = "blackout date"
        elif a.preceptor_id not in generator.preceptors or a.clerkship_id not in generator.clerkships:
            reason = "unknown preceptor or clerkship"
        elif not a.site_id or not generator.availability.is_available(a.preceptor_id, a.site_id, a.date):
            reason = "preceptor unavailable"
        elif not generator.associations.is_associated(a.preceptor_id, a.clerkship_id, a.site_id):
            reason = "preceptor not associated with clerkship"
        elif not generator.onboarded_at(a.student_id, a.site_id, a.preceptor_id):
            reason = "student not onboarded"
        elif a.key in taken:
            reason = "student already booked"
        else:
            try:
                config = generator.configs.resolve(a.clerkship_id, a.requirement_type)
            except ConfigurationError:
                config = None
            ceilings = generator.capacity.resolve(a.preceptor_id, a.clerkship_id, a.requirement_type, config)
            check = ledger.check(a.preceptor_id, a.student_id, a.date, ceilings, block_key_for(a))
            if not check.has_capacity:
                reason = check.reason
            else:
                site_ceilings = generator.site_capacity.resolve(a.site_id, a.clerkship_id, a.requirement_type)
                site_check = ledger.check_site(a.site_id, a.student_id, a.date, site_ceilings, block_key_for(a))
                if not site_check.has_capacity:
                    reason = f"site {site_check.reason}"

        if reason:
            logger.debug(f"Future assignment {a.student_id} {a.date} affected: {reason}")
            affected.append(a)
        else:
            ledger.record(a.preceptor_id, a.student_id, a.date, block_key_for(a), site_id=a.site_id)
            taken.add(a.key)
            preservable.append(a)

    return affected, preservable


def _select_preserved(
    strategy: RegenerationStrategy,
    generator: AssignmentGenerator,
    booked: List[ScheduleAssignment],
    future: List[ScheduleAssignment],
) -> Tuple[List[ScheduleAssignment], List[ScheduleAssignment]]:
    """Returns (preserved, discarded)."""
    if strategy is RegenerationStrategy.MINIMAL_CHANGE:
        affected, preservable = identify_affected_assignments(future, generator, booked=booked)
        return preservable, affected
    return [], list(future)


def regenerate(
    snapshot: SchedulingSnapshot,
    start_date: date,
    end_date: date,
    cutover_date: date,
    strategy: RegenerationStrategy = RegenerationStrategy.FULL_REOPTIMIZE,
    student_ids: Optional[Iterable[str]] = None,
    clerkship_ids: Optional[Iterable[str]] = None,
) -> RegenerationResult:
    """
    Regenerate snapshot.assignments from cutover_date through end_date.

    start_date is the original window start; it anchors block numbering so
    regenerated blocks line up with the ones already booked. Only future
    assignments inside the window and the student/clerkship filters are
    replaced; the rest are carried into the result as `retained`.

    Raises:
        ConfigurationError: a requirement's configuration cannot be resolved.
        InvariantViolationError: the merged schedule double-books a student.
    """
    strategy = RegenerationStrategy(strategy)
    with GENERATION_LOCK:
        generator = AssignmentGenerator(snapshot)
        past, future = partition_assignments(snapshot.assignments, cutover_date)
        window_start = max(start_date, cutover_date)
        scoped, retained = split_by_scope(future, window_start, end_date, student_ids, clerkship_ids)
        preserved, discarded = _select_preserved(strategy, generator, past + retained, scoped)
        credits = credit_past_assignments(past + retained + preserved)

        logger.info(
            f"Regenerating from {cutover_date} ({strategy.value}): {len(past)} past, "
            f"{len(retained)} out of scope, {len(preserved)} preserved, {len(discarded)} discarded"
        )

        result = RegenerationResult(
            cutover_date=cutover_date,
            strategy=strategy,
            past=past,
            retained=retained,
            preserved=preserved,
            discarded=discarded,
            credits=credits,
        )

        if window_start <= end_date:
            generated = generator.generate(
                window_start,
                end_date,
                existing=past + retained + preserved,
                credits=credits,
                student_ids=student_ids,
                clerkship_ids=clerkship_ids,
                block_anchor=start_date,
            )
            result.generated = generated.assignments
            result.shortfalls = generated.shortfalls
            result.unscheduled = generated.unscheduled
            result.progress = generated.progress
        else:
            logger.info(f"Cutover {cutover_date} is after window end {end_date}; nothing to generate")

        duplicates = find_duplicate_bookings(result.merged)
        if duplicates:
            raise InvariantViolationError(
                f"Regeneration would double-book {len(duplicates)} student-days", duplicates
            )
        return result


def analyze_regeneration_impact(
    snapshot: SchedulingSnapshot,
    cutover_date: date,
    strategy: RegenerationStrategy = RegenerationStrategy.FULL_REOPTIMIZE,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    student_ids: Optional[Iterable[str]] = None,
    clerkship_ids: Optional[Iterable[str]] = None,
) -> RegenerationImpact:
    """
    Preview what regenerate() would keep and replace, without generating.

    Without start_date/end_date every future assignment is in scope.
    """
    strategy = RegenerationStrategy(strategy)
    generator = AssignmentGenerator(snapshot)
    configs = generator.resolve_configs(clerkship_ids)
    past, future = partition_assignments(snapshot.assignments, cutover_date)
    window_start = max(start_date, cutover_date) if start_date else cutover_date
    scoped, retained = split_by_scope(future, window_start, end_date, student_ids, clerkship_ids)
    preserved, discarded = _select_preserved(strategy, generator, past + retained, scoped)
    credits = credit_past_assignments(past + retained + preserved)
    students = sorted(generator.students) if student_ids is None else sorted(set(student_ids))

    progress: List[Dict[str, Any]] = []
    for student_id in students:
        for (clerkship_id, requirement_type), config in configs.items():
            completed = min(credits.get((student_id, clerkship_id, requirement_type), 0), config.required_days)
            progress.append({
                "student_id": student_id,
                "clerkship_id": clerkship_id,
                "requirement_type": requirement_type.value,
                "required_days": config.required_days,
                "completed_days": completed,
                "remaining_days": config.required_days - completed,
            })

    return RegenerationImpact(
        cutover_date=cutover_date,
        strategy=strategy,
        past_count=len(past),
        future_count=len(future),
        to_delete=len(discarded),
        to_preserve=len(preserved),
        student_progress=progress,
        retained_count=len(retained),
    )
