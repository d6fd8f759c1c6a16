"""
engine.py — Clerkship Assignment Generator

Greedy, date-ordered, single forward pass. Not optimal; deterministic.

Algorithm:
  Resolve every requirement's effective config (fails fast on bad config).
  Seed a request-scoped CapacityLedger from existing assignments and credit
  existing days toward each (student, requirement).
  For each date in the window, skipping blackout dates:
    Order students: block in progress first, most remaining days, then id.
    For each student not already booked that day:
      Try open requirements (in progress first) until one is assigned.
      Candidate order for a requirement:
        1. continuity-bound preceptor (continuous / block strategies)
        2. team members by priority (continuity strategies, teams allowed)
        3. matching preceptors ranked by same health system (when preferred),
           most remaining daily headroom, lowest id
        4. preceptors that only appear as fallback targets
      A blocked candidate in 1-3 has its fallback chain walked before the
      next candidate is tried.
      A site is usable when the preceptor is available there, the student is
      onboarded with its health system and site capacity allows.
    Nothing assignable → the (student, date) pair is reported unscheduled.
  Requirements with days left when the window closes are BLOCKED and
  reported as shortfalls.

Requirement state: PENDING → SCHEDULING → SATISFIED | BLOCKED

See clerkship_scheduler/schedule_config.py, clerkship_scheduler/regeneration.py
"""

import logging
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Hashable, Iterable, List, Optional, Sequence, Set, Tuple

from clerkship_scheduler.availability import AvailabilityResolver, iter_dates
from clerkship_scheduler.capacity import CapacityLedger, CapacityResolver, SiteCapacityResolver, make_block_key
from clerkship_scheduler.config_resolver import ConfigurationResolver
from clerkship_scheduler.constraints import find_duplicate_bookings
from clerkship_scheduler.eligibility import AssociationResolver, OnboardingTracker
from clerkship_scheduler.errors import ConfigurationError, InvariantViolationError
from clerkship_scheduler.models import (
    AssignmentStrategy,
    Clerkship,
    EffectiveRequirementConfig,
    GenerationResult,
    HealthSystemRule,
    Preceptor,
    RequirementKey,
    RequirementProgress,
    RequirementState,
    RequirementType,
    ScheduleAssignment,
    SchedulingSnapshot,
    Shortfall,
    UnscheduledDay,
)
from clerkship_scheduler.schedule_config import (
    CONTINUITY_STRATEGIES,
    REASON_NO_AVAILABLE_CAPACITY,
    REASON_NO_MATCHING_PRECEPTOR,
    REASON_PARTIAL_BLOCK_NOT_ALLOWED,
    REASON_WINDOW_CLOSED,
    REQUIREMENT_TYPE_ORDER,
)
from clerkship_scheduler.teams import FallbackResolver, TeamResolver, ordered_members

logger = logging.getLogger(__name__)

# Generation and regeneration calls are serialized process-wide.
GENERATION_LOCK = threading.RLock()

ConfigMap = Dict[Tuple[str, RequirementType], EffectiveRequirementConfig]


@dataclass(frozen=True)
class Candidate:
    preceptor_id: str
    site_id: str
    fallback_depth: int = 0


class AssignmentGenerator:
    """
    Builds the resolvers for one snapshot and runs the forward pass.

    The snapshot is never mutated; all per-request state lives in generate().
    """

    def __init__(self, snapshot: SchedulingSnapshot):
        self.snapshot = snapshot
        self.students = {s.id: s for s in snapshot.students}
        self.preceptors: Dict[str, Preceptor] = {p.id: p for p in snapshot.preceptors}
        self.sites = {s.id: s for s in snapshot.sites}
        self.clerkships: Dict[str, Clerkship] = {c.id: c for c in snapshot.clerkships}

        self.configs = ConfigurationResolver(snapshot.requirements, snapshot.global_defaults, snapshot.clerkships)
        self.availability = AvailabilityResolver(snapshot.patterns)
        self.capacity = CapacityResolver(snapshot.capacity_rules, snapshot.preceptors)
        self.site_capacity = SiteCapacityResolver(snapshot.site_capacity_rules)
        self.onboarding = OnboardingTracker(snapshot.student_onboarding)
        self.associations = AssociationResolver(snapshot.preceptor_associations)
        self.teams = TeamResolver(snapshot.teams, snapshot.preceptors, config_for=self._team_config)
        self.fallbacks = FallbackResolver(snapshot.fallbacks, snapshot.preceptors)
        self.blackout_dates: Set[date] = {b.date for b in snapshot.blackout_dates}

        self._matching: Dict[str, List[str]] = {}
        self._has_match: Dict[str, bool] = {}

    # -----------------------------------------------------------------------
    # Preflight
    # -----------------------------------------------------------------------

    def _team_config(self, clerkship_id: str) -> Optional[EffectiveRequirementConfig]:
        clerkship = self.clerkships.get(clerkship_id)
        if clerkship is None:
            return None
        try:
            return self.configs.resolve(clerkship_id, clerkship.clerkship_type)
        except ConfigurationError:
            # Reported by resolve_configs() when generation starts
            return None

    def resolve_configs(self, clerkship_ids: Optional[Iterable[str]] = None) -> ConfigMap:
        configs: ConfigMap = {}
        for clerkship_id, requirement_type in self.configs.requirement_keys(clerkship_ids):
            if clerkship_id not in self.clerkships:
                raise ConfigurationError(
                    f"Requirement references unknown clerkship {clerkship_id}",
                    clerkship_id=clerkship_id,
                    requirement_type=requirement_type.value,
                )
            configs[(clerkship_id, requirement_type)] = self.configs.resolve(clerkship_id, requirement_type)
        return configs

    def _init_progress(
        self,
        student_ids: Sequence[str],
        configs: ConfigMap,
        history: Dict[str, List[ScheduleAssignment]],
        credits: Optional[Dict[RequirementKey, int]],
    ) -> Dict[RequirementKey, RequirementProgress]:
        progress: Dict[RequirementKey, RequirementProgress] = {}
        for student_id in student_ids:
            for (clerkship_id, requirement_type), config in configs.items():
                key = (student_id, clerkship_id, requirement_type)
                prior = [
                    a for a in history.get(student_id, ())
                    if a.clerkship_id == clerkship_id and RequirementType(a.requirement_type) is requirement_type
                ]
                credited = credits.get(key, 0) if credits is not None else len(prior)
                prog = RequirementProgress(
                    student_id=student_id,
                    clerkship_id=clerkship_id,
                    requirement_type=requirement_type,
                    required_days=config.required_days,
                    credited_days=min(credited, config.required_days),
                )
                if prior:
                    prog.last_assigned = prior[-1].date
                    primaries = [a for a in prior if a.fallback_depth == 0]
                    if primaries:
                        prog.bound_preceptor_id = primaries[-1].preceptor_id
                        prog.bound_block = primaries[-1].block_number

                if prog.remaining_days == 0:
                    prog.state = RequirementState.SATISFIED
                elif self._partial_block_disallowed(config):
                    prog.state = RequirementState.BLOCKED
                    prog.reason = REASON_PARTIAL_BLOCK_NOT_ALLOWED
                progress[key] = prog
        return progress

    @staticmethod
    def _partial_block_disallowed(config: EffectiveRequirementConfig) -> bool:
        if AssignmentStrategy(config.assignment_strategy) is not AssignmentStrategy.BLOCK_BASED:
            return False
        if config.allow_partial_blocks or not config.block_size_days:
            return False
        return config.required_days % config.block_size_days != 0

    # -----------------------------------------------------------------------
    # Candidate helpers
    # -----------------------------------------------------------------------

    def _preceptor_sites(self, preceptor: Preceptor, clerkship: Clerkship) -> List[str]:
        sites = list(preceptor.site_ids) or sorted(self.availability.sites_for(preceptor.id))
        if clerkship.site_ids:
            sites = [s for s in sites if s in clerkship.site_ids]
        if self.associations.enabled:
            sites = [s for s in sites if self.associations.is_associated(preceptor.id, clerkship.id, s)]
        return sorted(sites)

    def _matches(self, preceptor: Preceptor, clerkship: Clerkship) -> bool:
        # Associations, when configured, replace the specialty match
        if self.associations.enabled:
            if not self.associations.is_associated(preceptor.id, clerkship.id):
                return False
        elif clerkship.specialty and (preceptor.specialty or "").lower() != clerkship.specialty.lower():
            return False
        return bool(self._preceptor_sites(preceptor, clerkship))

    def _matching_preceptors(self, clerkship: Clerkship) -> List[str]:
        """Preceptors eligible for the ranked list (fallback-only preceptors excluded)."""
        if clerkship.id not in self._matching:
            self._matching[clerkship.id] = [
                pid for pid in sorted(self.preceptors)
                if not self.preceptors[pid].fallback_only and self._matches(self.preceptors[pid], clerkship)
            ]
        return self._matching[clerkship.id]

    def _has_matching_preceptor(self, clerkship: Clerkship) -> bool:
        if clerkship.id not in self._has_match:
            self._has_match[clerkship.id] = any(self._matches(p, clerkship) for p in self.preceptors.values())
        return self._has_match[clerkship.id]

    def _site_system(self, site_id: Optional[str], preceptor: Optional[Preceptor]) -> Optional[str]:
        site = self.sites.get(site_id) if site_id else None
        if site is not None and site.health_system_id:
            return site.health_system_id
        return preceptor.health_system_id if preceptor else None

    def onboarded_at(self, student_id: str, site_id: Optional[str], preceptor_id: str) -> bool:
        return self.onboarding.is_onboarded(student_id, self._site_system(site_id, self.preceptors.get(preceptor_id)))

    def _preceptor_system(self, preceptor_id: str) -> Optional[str]:
        preceptor = self.preceptors.get(preceptor_id)
        if preceptor is None:
            return None
        if preceptor.health_system_id:
            return preceptor.health_system_id
        for site_id in preceptor.site_ids:
            system = self._site_system(site_id, None)
            if system:
                return system
        return None

    def _target_health_system(self, clerkship_id: str, history: Sequence[ScheduleAssignment]) -> Optional[str]:
        """Health system of the student's earliest assignment in the clerkship."""
        in_clerkship = [a for a in history if a.clerkship_id == clerkship_id]
        if not in_clerkship:
            return None
        first = min(in_clerkship, key=lambda a: a.date)
        return self._site_system(first.site_id, self.preceptors.get(first.preceptor_id))

    @staticmethod
    def _block_number(config: EffectiveRequirementConfig, day: date, anchor: date) -> Optional[int]:
        if AssignmentStrategy(config.assignment_strategy) is not AssignmentStrategy.BLOCK_BASED:
            return None
        if not config.block_size_days:
            return None
        return (day - anchor).days // config.block_size_days + 1

    def _eligible_site(
        self,
        preceptor_id: str,
        clerkship: Clerkship,
        prog: RequirementProgress,
        config: EffectiveRequirementConfig,
        day: date,
        target_system: Optional[str],
        ledger: CapacityLedger,
        block_key: Optional[Hashable],
    ) -> Optional[str]:
        """Best site where the preceptor can take this student today, or None."""
        preceptor = self.preceptors.get(preceptor_id)
        if preceptor is None or not self._matches(preceptor, clerkship):
            return None

        ceilings = self.capacity.resolve(preceptor_id, clerkship.id, prog.requirement_type, config)
        check = ledger.check(preceptor_id, prog.student_id, day, ceilings, block_key)
        if not check.has_capacity:
            logger.debug(f"{day} {preceptor_id}: {check.reason}")
            return None

        enforce = HealthSystemRule(config.health_system_rule) is HealthSystemRule.ENFORCE_SAME_SYSTEM
        best: Optional[Tuple[int, str]] = None
        for site_id in self._preceptor_sites(preceptor, clerkship):
            if not self.availability.is_available(preceptor_id, site_id, day):
                continue
            system = self._site_system(site_id, preceptor)
            if enforce and target_system and system != target_system:
                continue
            if not self.onboarding.is_onboarded(prog.student_id, system):
                logger.debug(f"{day} {prog.student_id}: not onboarded at {system} ({site_id})")
                continue
            site_ceilings = self.site_capacity.resolve(site_id, clerkship.id, prog.requirement_type)
            site_check = ledger.check_site(site_id, prog.student_id, day, site_ceilings, block_key)
            if not site_check.has_capacity:
                logger.debug(f"{day} site {site_id}: {site_check.reason}")
                continue
            rank = 0 if target_system is None or system == target_system else 1
            if best is None or (rank, site_id) < best:
                best = (rank, site_id)
        return best[1] if best else None

    def _ranked(
        self,
        preceptor_ids: Iterable[str],
        prog: RequirementProgress,
        config: EffectiveRequirementConfig,
        day: date,
        ledger: CapacityLedger,
        target_system: Optional[str],
    ) -> List[str]:
        prefer = (
            HealthSystemRule(config.health_system_rule) is not HealthSystemRule.NO_PREFERENCE
            and target_system is not None
        )

        def key(pid: str) -> Tuple[int, int, str]:
            same = 0 if not prefer or self._preceptor_system(pid) == target_system else 1
            ceilings = self.capacity.resolve(pid, prog.clerkship_id, prog.requirement_type, config)
            return (same, -ledger.headroom(pid, day, ceilings), pid)

        return sorted(preceptor_ids, key=key)

    def _candidate_order(
        self,
        prog: RequirementProgress,
        config: EffectiveRequirementConfig,
        clerkship: Clerkship,
        day: date,
        block_number: Optional[int],
        ledger: CapacityLedger,
        history: Sequence[ScheduleAssignment],
        target_system: Optional[str],
    ) -> Tuple[List[str], List[str]]:
        """
        Returns (primaries, backups). Fallback chains are walked for blocked
        primaries; backups are tried last.
        """
        matching = self._matching_preceptors(clerkship)
        matching_set = set(matching)
        strategy = AssignmentStrategy(config.assignment_strategy)
        order: List[str] = []
        late: List[str] = []

        def push(pid: str, target: List[str]) -> None:
            if pid in matching_set and pid not in order and pid not in late:
                target.append(pid)

        bound = prog.bound_preceptor_id
        if bound:
            if strategy in CONTINUITY_STRATEGIES:
                push(bound, order)
            elif strategy is AssignmentStrategy.BLOCK_BASED and (
                prog.bound_block == block_number or config.prefer_continuous_blocks
            ):
                push(bound, order)

        if config.allow_teams and strategy in CONTINUITY_STRATEGIES:
            binding = self.teams.resolve_team_for(prog.student_id, clerkship.id, config, history)
            teams = [binding.team] if binding else self.teams.teams_for(clerkship.id)
            for team in teams:
                for member in ordered_members(team):
                    push(member.preceptor_id, late if member.is_fallback_only else order)

        chain_targets = self.fallbacks.fallback_targets(matching, clerkship.id)
        regular = [p for p in matching if p not in chain_targets and p not in order and p not in late]
        order.extend(self._ranked(regular, prog, config, day, ledger, target_system))

        targets = [p for p in matching if p in chain_targets and p not in order and p not in late]
        backups = late + self._ranked(targets, prog, config, day, ledger, target_system)
        return order, backups

    def _select_candidate(
        self,
        prog: RequirementProgress,
        config: EffectiveRequirementConfig,
        day: date,
        anchor: date,
        ledger: CapacityLedger,
        history: Sequence[ScheduleAssignment],
    ) -> Tuple[Optional[Candidate], str]:
        clerkship = self.clerkships[prog.clerkship_id]
        if not self._has_matching_preceptor(clerkship):
            return None, REASON_NO_MATCHING_PRECEPTOR

        target_system = self._target_health_system(clerkship.id, history)
        block_number = self._block_number(config, day, anchor)
        block_key = (
            make_block_key(clerkship.id, prog.requirement_type, block_number)
            if block_number is not None else None
        )

        sites: Dict[str, Optional[str]] = {}

        def site_for(pid: str) -> Optional[str]:
            if pid not in sites:
                sites[pid] = self._eligible_site(pid, clerkship, prog, config, day, target_system, ledger, block_key)
            return sites[pid]

        primaries, backups = self._candidate_order(
            prog, config, clerkship, day, block_number, ledger, history, target_system
        )

        for pid in primaries:
            site = site_for(pid)
            if site:
                return Candidate(pid, site), ""
            if config.allow_fallbacks:
                choice = self.fallbacks.next_fallback(
                    pid,
                    clerkship.id,
                    excluded=(),
                    is_eligible=lambda f: site_for(f) is not None,
                    target_health_system_id=target_system or self._preceptor_system(pid),
                    config=config,
                )
                if choice is not None:
                    logger.debug(
                        f"{day} {prog.student_id}: {pid} blocked, fallback {choice.preceptor_id} "
                        f"(depth {choice.depth})"
                    )
                    return Candidate(choice.preceptor_id, site_for(choice.preceptor_id), choice.depth), ""

        for pid in backups:
            site = site_for(pid)
            if site:
                return Candidate(pid, site), ""

        return None, REASON_NO_AVAILABLE_CAPACITY

    # -----------------------------------------------------------------------
    # Commit / close
    # -----------------------------------------------------------------------

    def _commit(
        self,
        prog: RequirementProgress,
        config: EffectiveRequirementConfig,
        candidate: Candidate,
        day: date,
        anchor: date,
        ledger: CapacityLedger,
        history: Dict[str, List[ScheduleAssignment]],
        booked: Set[Tuple[str, date]],
        result: GenerationResult,
    ) -> ScheduleAssignment:
        block_number = self._block_number(config, day, anchor)
        block_key = (
            make_block_key(prog.clerkship_id, prog.requirement_type, block_number)
            if block_number is not None else None
        )
        ceilings = self.capacity.resolve(candidate.preceptor_id, prog.clerkship_id, prog.requirement_type, config)
        ledger.consume(candidate.preceptor_id, prog.student_id, day, ceilings, block_key, site_id=candidate.site_id)

        assignment = ScheduleAssignment(
            student_id=prog.student_id,
            preceptor_id=candidate.preceptor_id,
            clerkship_id=prog.clerkship_id,
            requirement_type=prog.requirement_type,
            date=day,
            site_id=candidate.site_id,
            block_number=block_number,
            fallback_depth=candidate.fallback_depth,
        )
        result.assignments.append(assignment)
        history[prog.student_id].append(assignment)
        booked.add(assignment.key)

        prog.assigned_days += 1
        prog.last_assigned = day
        if candidate.fallback_depth == 0:
            prog.bound_preceptor_id = candidate.preceptor_id
            prog.bound_block = block_number

        if prog.remaining_days == 0:
            prog.state = RequirementState.SATISFIED
            logger.debug(f"{prog.student_id} satisfied {prog.clerkship_id}/{prog.requirement_type.value} on {day}")
        else:
            prog.state = RequirementState.SCHEDULING
        return assignment

    @staticmethod
    def _close_requirements(result: GenerationResult) -> None:
        for prog in result.progress.values():
            if prog.state is RequirementState.SATISFIED:
                continue
            if prog.is_open:
                prog.state = RequirementState.BLOCKED
                prog.reason = prog.reason or REASON_WINDOW_CLOSED
            result.shortfalls.append(Shortfall(
                student_id=prog.student_id,
                clerkship_id=prog.clerkship_id,
                requirement_type=prog.requirement_type,
                required_days=prog.required_days,
                assigned_days=prog.completed_days,
                shortfall_days=prog.remaining_days,
                reason=prog.reason,
            ))

    # -----------------------------------------------------------------------
    # Forward pass
    # -----------------------------------------------------------------------

    def _student_order(
        self,
        student_ids: Iterable[str],
        by_student: Dict[str, List[RequirementProgress]],
        configs: ConfigMap,
        day: date,
        anchor: date,
    ) -> List[str]:
        def key(sid: str) -> Tuple[int, int, str]:
            open_reqs = [p for p in by_student[sid] if p.is_open]
            in_block = any(
                p.bound_block is not None
                and p.bound_block == self._block_number(configs[(p.clerkship_id, p.requirement_type)], day, anchor)
                for p in open_reqs
            )
            return (0 if in_block else 1, -sum(p.remaining_days for p in open_reqs), sid)

        return sorted(
            (sid for sid in student_ids if any(p.is_open for p in by_student[sid])),
            key=key,
        )

    @staticmethod
    def _requirement_order(progs: Iterable[RequirementProgress]) -> List[RequirementProgress]:
        return sorted(
            (p for p in progs if p.is_open),
            key=lambda p: (
                0 if p.last_assigned else 1,
                REQUIREMENT_TYPE_ORDER.index(RequirementType(p.requirement_type)),
                p.clerkship_id,
            ),
        )

    def generate(
        self,
        start_date: date,
        end_date: date,
        existing: Optional[Iterable[ScheduleAssignment]] = None,
        credits: Optional[Dict[RequirementKey, int]] = None,
        student_ids: Optional[Iterable[str]] = None,
        clerkship_ids: Optional[Iterable[str]] = None,
        block_anchor: Optional[date] = None,
    ) -> GenerationResult:
        """
        Generate assignments for [start_date, end_date].

        Args:
            existing: assignments already booked (default: snapshot.assignments).
                They count against capacity and block their (student, date);
                cancelled ones are ignored.
            credits: requirement days already satisfied per (student, clerkship,
                type). Default: counted from `existing`.
            block_anchor: first day of block 1 for block_based requirements
                (default: start_date).

        Returns:
            GenerationResult with only the newly created assignments.
        """
        if start_date > end_date:
            raise ValueError(f"start_date {start_date} is after end_date {end_date}")

        existing = [a for a in (self.snapshot.assignments if existing is None else existing) if a.is_active]
        configs = self.resolve_configs(clerkship_ids)
        students = sorted(self.students) if student_ids is None else sorted(set(student_ids))
        anchor = block_anchor or start_date

        history: Dict[str, List[ScheduleAssignment]] = defaultdict(list)
        booked: Set[Tuple[str, date]] = set()
        for a in sorted(existing, key=lambda a: (a.date, a.student_id)):
            history[a.student_id].append(a)
            booked.add(a.key)
        ledger = CapacityLedger.from_assignments(existing)

        result = GenerationResult(progress=self._init_progress(students, configs, history, credits))
        by_student: Dict[str, List[RequirementProgress]] = defaultdict(list)
        for prog in result.progress.values():
            by_student[prog.student_id].append(prog)

        dates = [d for d in iter_dates(start_date, end_date) if d not in self.blackout_dates]
        skipped = (end_date - start_date).days + 1 - len(dates)
        logger.info(
            f"Generating {start_date} → {end_date}: {len(students)} students, "
            f"{len(configs)} requirements, {len(dates)} dates ({skipped} blackout)"
        )

        for day in dates:
            for student_id in self._student_order(students, by_student, configs, day, anchor):
                if (student_id, day) in booked:
                    continue
                reasons: List[str] = []
                for prog in self._requirement_order(by_student[student_id]):
                    config = configs[(prog.clerkship_id, prog.requirement_type)]
                    candidate, reason = self._select_candidate(
                        prog, config, day, anchor, ledger, history[student_id]
                    )
                    if candidate is None:
                        prog.reason = reason
                        reasons.append(f"{prog.clerkship_id}/{prog.requirement_type.value}: {reason}")
                        continue
                    self._commit(prog, config, candidate, day, anchor, ledger, history, booked, result)
                    break
                else:
                    result.unscheduled.append(UnscheduledDay(student_id, day, "; ".join(reasons)))

        self._close_requirements(result)

        duplicates = find_duplicate_bookings(result.assignments, against=existing)
        if duplicates:
            raise InvariantViolationError(
                f"Generated {len(duplicates)} duplicate (student, date) bookings", duplicates
            )

        logger.info(
            f"Generated {len(result.assignments)} assignments | "
            f"{len(result.shortfalls)} shortfalls | {len(result.unscheduled)} unscheduled student-days"
        )
        return result


def generate_schedule(
    snapshot: SchedulingSnapshot,
    start_date: date,
    end_date: date,
    student_ids: Optional[Iterable[str]] = None,
    clerkship_ids: Optional[Iterable[str]] = None,
) -> GenerationResult:
    """
    Generate new assignments for the window on top of snapshot.assignments.

    Raises:
        ConfigurationError: a requirement's configuration cannot be resolved.
        InvariantViolationError: internal consistency check failed.
    """
    with GENERATION_LOCK:
        generator = AssignmentGenerator(snapshot)
        return generator.generate(
            start_date, end_date, student_ids=student_ids, clerkship_ids=clerkship_ids
        )


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

def calculate_schedule_metrics(
    result: GenerationResult,
    assignments: Optional[Sequence[ScheduleAssignment]] = None,
) -> Dict[str, Any]:
    """
    Summary numbers for a generation result.

    Returns dict with:
      - total_assignments, fallback_assignments
      - requirements_total, requirements_satisfied, shortfall_days
      - unscheduled_days, students_complete
      - preceptor_load: {preceptor_id: assignment count}
    """
    assignments = result.assignments if assignments is None else assignments
    load = Counter(a.preceptor_id for a in assignments)

    by_student: Dict[str, List[RequirementProgress]] = defaultdict(list)
    for prog in result.progress.values():
        by_student[prog.student_id].append(prog)

    return {
        "total_assignments": len(assignments),
        "fallback_assignments": sum(1 for a in assignments if a.fallback_depth > 0),
        "requirements_total": len(result.progress),
        "requirements_satisfied": sum(
            1 for p in result.progress.values() if p.state is RequirementState.SATISFIED
        ),
        "shortfall_days": sum(s.shortfall_days for s in result.shortfalls),
        "unscheduled_days": len(result.unscheduled),
        "students_complete": sum(
            1 for progs in by_student.values()
            if all(p.state is RequirementState.SATISFIED for p in progs)
        ),
        "preceptor_load": dict(sorted(load.items())),
    }
