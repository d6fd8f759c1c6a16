"""
Tests for the assignment generator (availability, capacity, continuity,
fallbacks, health-system rules, block handling)
"""

import sys
from collections import Counter
from datetime import date
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from clerkship_scheduler.constraints import ConstraintChecker
from clerkship_scheduler.engine import AssignmentGenerator, calculate_schedule_metrics, generate_schedule
from clerkship_scheduler.errors import ConfigurationError
from clerkship_scheduler.models import (
    AssignmentStatus,
    AssignmentStrategy,
    BlackoutDate,
    ClerkshipRequirement,
    FallbackEntry,
    OverrideMode,
    PreceptorClerkshipAssociation,
    RequirementState,
    RequirementType,
    Site,
    SiteCapacityRule,
    StudentOnboarding,
    Team,
    TeamMember,
)
from clerkship_scheduler.schedule_config import REASON_PARTIAL_BLOCK_NOT_ALLOWED, REASON_WINDOW_CLOSED
from tests.builders import (
    assignment,
    block,
    clerkship,
    individual,
    make_snapshot,
    preceptor,
    students,
    weekly,
)

MON = date(2025, 1, 6)
FRI = date(2025, 1, 10)
NEXT_FRI = date(2025, 1, 17)
INP = RequirementType.INPATIENT
OUT = RequirementType.OUTPATIENT


# ---------------------------------------------------------------------------
# Basics
# ---------------------------------------------------------------------------

class TestGenerateBasics:

    @pytest.fixture
    def snapshot(self):
        return make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-1")],
            clerkships=[clerkship("fm", days=5)],
            patterns=[weekly("p-1")],
        )

    def test_single_student_satisfied(self, snapshot):
        result = generate_schedule(snapshot, MON, FRI)
        assert len(result.assignments) == 5
        assert {a.preceptor_id for a in result.assignments} == {"p-1"}
        assert result.shortfalls == []
        prog = result.progress[("s-1", "fm", OUT)]
        assert prog.state is RequirementState.SATISFIED

    def test_weekends_left_unscheduled(self, snapshot):
        result = generate_schedule(snapshot, date(2025, 1, 4), date(2025, 1, 12))
        assert all(a.date.weekday() < 5 for a in result.assignments)
        assert len(result.assignments) == 5
        assert [u.date for u in result.unscheduled] == [date(2025, 1, 4), date(2025, 1, 5)]

    def test_shortfall_when_window_too_short(self, snapshot):
        result = generate_schedule(snapshot, MON, date(2025, 1, 8))
        assert len(result.assignments) == 3
        [shortfall] = result.shortfalls
        assert shortfall.shortfall_days == 2
        assert shortfall.assigned_days == 3
        assert shortfall.reason == REASON_WINDOW_CLOSED
        assert result.progress[("s-1", "fm", OUT)].state is RequirementState.BLOCKED

    def test_start_after_end(self, snapshot):
        with pytest.raises(ValueError):
            generate_schedule(snapshot, FRI, MON)

    def test_snapshot_not_mutated(self, snapshot):
        before = snapshot.assignments
        generate_schedule(snapshot, MON, FRI)
        assert snapshot.assignments == before

    def test_deterministic(self, snapshot):
        assert generate_schedule(snapshot, MON, FRI).assignments == generate_schedule(snapshot, MON, FRI).assignments

    def test_invalid_config_fails_before_generation(self):
        req = ClerkshipRequirement(
            clerkship_id="fm", requirement_type=OUT, required_days=5,
            override_mode=OverrideMode.OVERRIDE_SECTION, override_max_students_per_day=2,
        )
        snapshot = make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-1")],
            clerkships=[clerkship("fm")],
            requirements=[req],
            patterns=[weekly("p-1")],
        )
        with pytest.raises(ConfigurationError) as exc:
            generate_schedule(snapshot, MON, FRI)
        assert "assignment_strategy" in exc.value.fields

    def test_no_matching_specialty(self):
        snapshot = make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-1", specialty="surgery")],
            clerkships=[clerkship("fm", days=2)],
            patterns=[weekly("p-1")],
        )
        result = generate_schedule(snapshot, MON, FRI)
        assert result.assignments == []
        assert result.shortfalls[0].reason == "no_matching_preceptor"


# ---------------------------------------------------------------------------
# Capacity and double booking
# ---------------------------------------------------------------------------

class TestCapacity:

    def test_two_students_share_one_preceptor(self):
        snapshot = make_snapshot(
            students=students("s-1", "s-2"),
            preceptors=[preceptor("p-1", max_students_per_day=1)],
            clerkships=[clerkship("fm", days=5)],
            patterns=[weekly("p-1")],
        )
        result = generate_schedule(snapshot, MON, NEXT_FRI)
        per_slot = Counter((a.preceptor_id, a.date) for a in result.assignments)
        assert max(per_slot.values()) == 1
        counts = Counter(a.student_id for a in result.assignments)
        assert counts == {"s-1": 5, "s-2": 5}
        assert result.shortfalls == []

    def test_capacity_never_exceeded(self):
        snapshot = make_snapshot(
            students=students(*[f"s-{i}" for i in range(1, 7)]),
            preceptors=[preceptor("p-1", max_students_per_day=2), preceptor("p-2", max_students_per_day=2)],
            clerkships=[clerkship("fm", days=6)],
            patterns=[weekly("p-1"), weekly("p-2")],
        )
        result = generate_schedule(snapshot, MON, date(2025, 1, 24))
        per_slot = Counter((a.preceptor_id, a.date) for a in result.assignments)
        assert max(per_slot.values()) <= 2
        keys = [a.key for a in result.assignments]
        assert len(keys) == len(set(keys))

        hard, _ = ConstraintChecker(snapshot).check_all(result.assignments)
        assert hard == []

    def test_existing_assignments_block_the_day(self):
        existing = assignment("s-1", "p-2", MON, clerkship_id="other")
        snapshot = make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-1"), preceptor("p-2", specialty="surgery")],
            clerkships=[clerkship("fm", days=3)],
            patterns=[weekly("p-1")],
            assignments=[existing],
        )
        result = generate_schedule(snapshot, MON, FRI)
        assert MON not in {a.date for a in result.assignments}
        assert len(result.assignments) == 3

    def test_existing_assignments_use_capacity(self):
        existing = assignment("s-9", "p-1", MON)
        snapshot = make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-1", max_students_per_day=1)],
            clerkships=[clerkship("fm", days=1)],
            patterns=[weekly("p-1")],
            assignments=[existing],
        )
        result = generate_schedule(snapshot, MON, FRI, student_ids=["s-1"])
        assert [a.date for a in result.assignments] == [date(2025, 1, 7)]

    def test_existing_days_credited(self):
        existing = [assignment("s-1", "p-1", date(2025, 1, 2)), assignment("s-1", "p-1", date(2025, 1, 3))]
        snapshot = make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-1")],
            clerkships=[clerkship("fm", days=5)],
            patterns=[weekly("p-1")],
            assignments=existing,
        )
        result = generate_schedule(snapshot, MON, FRI)
        assert len(result.assignments) == 3

    def test_cancelled_assignment_frees_the_day(self):
        cancelled = assignment("s-1", "p-1", MON, status=AssignmentStatus.CANCELLED)
        snapshot = make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-1", max_students_per_day=1)],
            clerkships=[clerkship("fm", days=5)],
            patterns=[weekly("p-1")],
            assignments=[cancelled],
        )
        result = generate_schedule(snapshot, MON, FRI)
        assert len(result.assignments) == 5
        assert MON in {a.date for a in result.assignments}
        assert result.progress[("s-1", "fm", OUT)].credited_days == 0

    def test_site_capacity_shared_by_preceptors(self):
        snapshot = make_snapshot(
            students=students("s-1", "s-2"),
            preceptors=[preceptor("p-1", max_students_per_day=1), preceptor("p-2", max_students_per_day=1)],
            clerkships=[clerkship("fm", days=5)],
            patterns=[weekly("p-1"), weekly("p-2")],
            site_capacity_rules=[SiteCapacityRule(id="sc-1", site_id="site-1", max_students_per_day=1)],
        )
        result = generate_schedule(snapshot, MON, FRI)
        per_day = Counter(a.date for a in result.assignments)
        assert max(per_day.values()) == 1
        assert len(result.assignments) == 5

        hard, _ = ConstraintChecker(snapshot).check_all(result.assignments)
        assert hard == []

    def test_matching_flag_cached_per_clerkship(self):
        snapshot = make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-1")],
            clerkships=[clerkship("fm", days=3), clerkship("om", days=2, specialty="oncology")],
            patterns=[weekly("p-1")],
        )
        generator = AssignmentGenerator(snapshot)
        result = generator.generate(MON, FRI)
        assert generator._has_match == {"fm": True, "om": False}
        [shortfall] = result.shortfalls
        assert (shortfall.clerkship_id, shortfall.reason) == ("om", "no_matching_preceptor")


# ---------------------------------------------------------------------------
# Onboarding and associations
# ---------------------------------------------------------------------------

class TestEligibility:

    SITES = [Site(id="site-1", health_system_id="hs-1"), Site(id="site-2", health_system_id="hs-2")]

    def _snapshot(self, **collections):
        collections.setdefault("preceptors", [preceptor("p-1"), preceptor("p-2", system="hs-2", sites=["site-2"])])
        collections.setdefault("patterns", [weekly("p-1"), weekly("p-2", site_id="site-2")])
        return make_snapshot(
            sites=self.SITES,
            students=students("s-1"),
            clerkships=[clerkship("fm", days=5)],
            **collections,
        )

    def test_onboarding_restricts_health_system(self):
        snapshot = self._snapshot(student_onboarding=[StudentOnboarding("s-1", "hs-2", is_completed=True)])
        result = generate_schedule(snapshot, MON, FRI)
        assert len(result.assignments) == 5
        assert {(a.preceptor_id, a.site_id) for a in result.assignments} == {("p-2", "site-2")}

    def test_incomplete_onboarding_blocks_everything(self):
        snapshot = self._snapshot(student_onboarding=[StudentOnboarding("s-1", "hs-1", is_completed=False)])
        result = generate_schedule(snapshot, MON, FRI)
        assert result.assignments == []
        assert len(result.unscheduled) == 5
        assert result.shortfalls[0].shortfall_days == 5

    def test_no_onboarding_records_no_restriction(self):
        result = generate_schedule(self._snapshot(), MON, FRI)
        assert {a.preceptor_id for a in result.assignments} == {"p-1"}

    def test_association_replaces_specialty(self):
        snapshot = self._snapshot(
            preceptors=[preceptor("p-1"), preceptor("p-2", specialty="surgery", system="hs-2", sites=["site-2"])],
            preceptor_associations=[PreceptorClerkshipAssociation("p-2", "fm")],
        )
        result = generate_schedule(snapshot, MON, FRI)
        assert {a.preceptor_id for a in result.assignments} == {"p-2"}

    def test_association_limited_to_site(self):
        snapshot = self._snapshot(
            preceptors=[preceptor("p-1", sites=["site-1", "site-2"])],
            patterns=[weekly("p-1"), weekly("p-1", site_id="site-2")],
            preceptor_associations=[PreceptorClerkshipAssociation("p-1", "fm", site_id="site-2")],
        )
        result = generate_schedule(snapshot, MON, FRI)
        assert len(result.assignments) == 5
        assert {a.site_id for a in result.assignments} == {"site-2"}


# ---------------------------------------------------------------------------
# Blackouts and availability)
# ---------------------------------------------------------------------------

class TestBlackoutAndAvailability:

    def test_no_assignment_on_blackout(self):
        wednesday = date(2025, 1, 8)
        snapshot = make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-1")],
            clerkships=[clerkship("fm", days=5)],
            patterns=[weekly("p-1")],
            blackout_dates=[BlackoutDate(date=wednesday, reason="Holiday")],
        )
        result = generate_schedule(snapshot, MON, FRI)
        assert wednesday not in {a.date for a in result.assignments}
        assert len(result.assignments) == 4
        assert result.shortfalls[0].shortfall_days == 1
        # Blackout dates are skipped, not reported as unscheduled
        assert wednesday not in {u.date for u in result.unscheduled}

    def test_continuity_breaks_only_when_unavailable(self):
        wednesday = date(2025, 1, 8)
        snapshot = make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-a"), preceptor("p-b")],
            clerkships=[clerkship("fm", days=3)],
            patterns=[weekly("p-a"), weekly("p-b"), individual("p-a", wednesday)],
        )
        result = generate_schedule(snapshot, MON, FRI)
        by_date = {a.date: a.preceptor_id for a in result.assignments}
        assert by_date == {MON: "p-a", date(2025, 1, 7): "p-a", wednesday: "p-b"}

    def test_continuous_single_keeps_preceptor(self):
        snapshot = make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-a"), preceptor("p-b", max_students_per_day=3)],
            clerkships=[clerkship("fm", days=5)],
            patterns=[weekly("p-a"), weekly("p-b")],
        )
        result = generate_schedule(snapshot, MON, FRI)
        assert len({a.preceptor_id for a in result.assignments}) == 1


# ---------------------------------------------------------------------------
# Fallbacks
# ---------------------------------------------------------------------------

class TestFallbacks:

    def _snapshot(self, patterns):
        return make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-primary"), preceptor("p-f1"), preceptor("p-f2")],
            clerkships=[clerkship("fm", days=1)],
            patterns=patterns,
            fallbacks=[
                FallbackEntry(id="fb-2", primary_preceptor_id="p-primary", fallback_preceptor_id="p-f2", priority=2),
                FallbackEntry(id="fb-1", primary_preceptor_id="p-primary", fallback_preceptor_id="p-f1", priority=1),
            ],
        )

    def test_first_fallback_used_before_second(self):
        snapshot = self._snapshot([weekly("p-f1"), weekly("p-f2")])
        [a] = generate_schedule(snapshot, MON, MON).assignments
        assert a.preceptor_id == "p-f1"
        assert a.fallback_depth == 1

    def test_second_fallback_when_first_unavailable(self):
        snapshot = self._snapshot([weekly("p-f2")])
        [a] = generate_schedule(snapshot, MON, MON).assignments
        assert a.preceptor_id == "p-f2"
        assert a.fallback_depth == 1

    def test_primary_preferred_when_available(self):
        snapshot = self._snapshot([weekly("p-primary"), weekly("p-f1"), weekly("p-f2")])
        [a] = generate_schedule(snapshot, MON, MON).assignments
        assert a.preceptor_id == "p-primary"
        assert a.fallback_depth == 0

    def test_fallback_only_preceptor_reached_through_chain(self):
        snapshot = make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-primary"), preceptor("p-backup", fallback_only=True)],
            clerkships=[clerkship("fm", days=1)],
            patterns=[weekly("p-backup")],
            fallbacks=[FallbackEntry(id="fb", primary_preceptor_id="p-primary", fallback_preceptor_id="p-backup")],
        )
        [a] = generate_schedule(snapshot, MON, MON).assignments
        assert a.preceptor_id == "p-backup"

    def test_fallbacks_disabled(self):
        req = ClerkshipRequirement(
            clerkship_id="fm", requirement_type=OUT, required_days=1,
            override_mode=OverrideMode.OVERRIDE_FIELDS, override_allow_fallbacks=False,
        )
        snapshot = make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-primary"), preceptor("p-backup", fallback_only=True)],
            clerkships=[clerkship("fm", days=1)],
            requirements=[req],
            patterns=[weekly("p-backup")],
            fallbacks=[FallbackEntry(id="fb", primary_preceptor_id="p-primary", fallback_preceptor_id="p-backup")],
        )
        result = generate_schedule(snapshot, MON, MON)
        assert result.assignments == []
        assert len(result.unscheduled) == 1


# ---------------------------------------------------------------------------
# Health systems
# ---------------------------------------------------------------------------

class TestHealthSystems:

    SITES = [Site(id="site-x", health_system_id="hs-1"), Site(id="site-y", health_system_id="hs-2")]

    def _snapshot(self, clerkship_record):
        return make_snapshot(
            sites=self.SITES,
            students=students("s-1"),
            preceptors=[
                preceptor("p-x", specialty="internal_medicine", system="hs-1", sites=["site-x"]),
                preceptor("p-y", specialty="internal_medicine", system="hs-2", sites=["site-y"]),
            ],
            clerkships=[clerkship_record],
            patterns=[weekly("p-x", site_id="site-x", end=MON), weekly("p-y", site_id="site-y")],
            assignments=[assignment(
                "s-1", "p-x", MON, clerkship_id=clerkship_record.id,
                requirement_type=clerkship_record.clerkship_type, site_id="site-x",
            )],
        )

    def test_enforce_same_system(self):
        snapshot = self._snapshot(clerkship("im", days=3, requirement_type=INP, specialty="internal_medicine"))
        result = generate_schedule(snapshot, date(2025, 1, 7), date(2025, 1, 7))
        assert result.assignments == []
        assert [u.date for u in result.unscheduled] == [date(2025, 1, 7)]

    def test_prefer_same_system_allows_other(self):
        snapshot = self._snapshot(clerkship("om", days=3, requirement_type=OUT, specialty="internal_medicine"))
        [a] = generate_schedule(snapshot, date(2025, 1, 7), date(2025, 1, 7)).assignments
        assert a.preceptor_id == "p-y"


# ---------------------------------------------------------------------------
# Teams and blocks
# ---------------------------------------------------------------------------

class TestTeamsAndBlocks:

    def _team_snapshot(self, requirements=()):
        internists = [
            preceptor("p-a", specialty="internal_medicine"),
            preceptor("p-b", specialty="internal_medicine"),
            preceptor("p-c", specialty="internal_medicine", max_students_per_day=5),
        ]
        team = Team(
            id="t-1", clerkship_id="im",
            members=(TeamMember("p-a", 1), TeamMember("p-b", 2)),
        )
        return make_snapshot(
            students=students("s-1"),
            preceptors=internists,
            clerkships=[clerkship("im", days=2, requirement_type=INP, specialty="internal_medicine")],
            requirements=requirements,
            patterns=[weekly("p-a"), weekly("p-b"), weekly("p-c")],
            teams=[team],
        )

    def test_team_members_tried_first(self):
        result = generate_schedule(self._team_snapshot(), MON, FRI)
        assert {a.preceptor_id for a in result.assignments} == {"p-a"}

    def test_without_teams_most_headroom_wins(self):
        req = ClerkshipRequirement(
            clerkship_id="im", requirement_type=INP, required_days=2,
            override_mode=OverrideMode.OVERRIDE_FIELDS, override_allow_teams=False,
        )
        result = generate_schedule(self._team_snapshot([req]), MON, FRI)
        assert {a.preceptor_id for a in result.assignments} == {"p-c"}

    def _block_snapshot(self, required_days, allow_partial=False):
        req = ClerkshipRequirement(
            clerkship_id="fm", requirement_type=OUT, required_days=required_days,
            override_mode=OverrideMode.OVERRIDE_FIELDS,
            override_assignment_strategy=AssignmentStrategy.BLOCK_BASED,
            override_block_size_days=5,
            override_allow_partial_blocks=allow_partial,
        )
        return make_snapshot(
            students=students("s-1"),
            preceptors=[preceptor("p-1")],
            clerkships=[clerkship("fm", days=required_days)],
            requirements=[req],
            patterns=[block("p-1", MON, date(2025, 1, 31))],
        )

    def test_block_numbers(self):
        result = generate_schedule(self._block_snapshot(5), MON, FRI)
        assert [a.block_number for a in result.assignments] == [1] * 5

    def test_block_numbers_follow_anchor(self):
        generator = AssignmentGenerator(self._block_snapshot(5))
        result = generator.generate(date(2025, 1, 14), date(2025, 1, 18), block_anchor=MON)
        assert {a.block_number for a in result.assignments} == {2, 3}

    def test_partial_block_not_allowed(self):
        result = generate_schedule(self._block_snapshot(7), MON, NEXT_FRI)
        assert result.assignments == []
        [shortfall] = result.shortfalls
        assert shortfall.reason == REASON_PARTIAL_BLOCK_NOT_ALLOWED
        assert shortfall.shortfall_days == 7

    def test_partial_block_allowed(self):
        result = generate_schedule(self._block_snapshot(7, allow_partial=True), MON, NEXT_FRI)
        assert len(result.assignments) == 7


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

class TestMetrics:

    def test_metrics(self):
        snapshot = make_snapshot(
            students=students("s-1", "s-2"),
            preceptors=[preceptor("p-1", max_students_per_day=2)],
            clerkships=[clerkship("fm", days=3)],
            patterns=[weekly("p-1")],
        )
        result = generate_schedule(snapshot, MON, date(2025, 1, 7))
        metrics = calculate_schedule_metrics(result)
        assert metrics["total_assignments"] == 4
        assert metrics["requirements_total"] == 2
        assert metrics["requirements_satisfied"] == 0
        assert metrics["shortfall_days"] == 2
        assert metrics["students_complete"] == 0
        assert metrics["preceptor_load"] == {"p-1": 4}
