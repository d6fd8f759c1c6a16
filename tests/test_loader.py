"""
tests/test_loader.py — CSV tables → SchedulingSnapshot, plus input validation.
"""

import sys
from datetime import date, datetime
from pathlib import Path
from textwrap import dedent

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from clerkship_scheduler.loader import (
    DEFAULT_DATA_DIR,
    load_assignments,
    load_patterns,
    load_snapshot,
    validate_snapshot,
)
from clerkship_scheduler.exporter import export_assignments_csv
from clerkship_scheduler.models import (
    AssignmentStrategy,
    OverrideMode,
    PatternType,
    RequirementType,
)
from tests.builders import assignment


def _write(directory: Path, name: str, text: str) -> None:
    (directory / f"{name}.csv").write_text(dedent(text).lstrip())


@pytest.fixture
def data_dir(tmp_path):
    _write(tmp_path, "students", """
        id,name,email
        s-1,Avery,avery@example.edu
    """)
    _write(tmp_path, "preceptors", """
        id,name,specialty,health_system_id,site_ids,max_students_per_day,max_students_per_year,fallback_only
        p-1,Dr. One,family_medicine,hs-1,site-1;site-2,2,,no
        p-2,Dr. Two,family_medicine,hs-1,site-1,,,yes
    """)
    _write(tmp_path, "clerkships", """
        id,name,required_days,clerkship_type,specialty,site_ids
        fm,Family Medicine,10,outpatient,family_medicine,
    """)
    _write(tmp_path, "requirements", """
        id,clerkship_id,requirement_type,required_days,override_mode,override_max_students_per_day,override_allow_fallbacks
        r-1,fm,outpatient,10,override_fields,3,no
    """)
    _write(tmp_path, "patterns", """
        id,preceptor_id,site_id,pattern_type,config,date_range_start,date_range_end,is_available,specificity,enabled,created_at,reason
        pat-1,p-1,site-1,weekly,"{""days_of_week"": [0, 1]}",2025-01-01,2025-03-31,yes,,yes,2024-12-01T09:00:00,
        pat-2,p-1,site-1,individual,,2025-01-06,,no,,,,Out sick
    """)
    _write(tmp_path, "teams", """
        id,clerkship_id,name,require_same_health_system,require_same_site,require_same_specialty
        t-1,fm,Clinic Team,yes,no,no
    """)
    _write(tmp_path, "team_members", """
        team_id,preceptor_id,priority,is_fallback_only
        t-1,p-1,1,no
        t-1,p-2,2,yes
    """)
    _write(tmp_path, "fallbacks", """
        id,primary_preceptor_id,fallback_preceptor_id,priority,clerkship_id,requires_approval,approved,allow_different_health_system
        fb-1,p-1,p-2,1,fm,yes,yes,no
    """)
    _write(tmp_path, "blackout_dates", """
        date,reason
        2025-01-20,MLK Day
    """)
    return tmp_path


class TestLoadSnapshot:

    def test_core_tables(self, data_dir):
        snapshot = load_snapshot(data_dir)
        assert [s.id for s in snapshot.students] == ["s-1"]
        p1, p2 = snapshot.preceptors
        assert p1.site_ids == ("site-1", "site-2")
        assert p1.max_students_per_day == 2
        assert p1.max_students_per_year is None
        assert p2.fallback_only is True
        assert snapshot.clerkships[0].clerkship_type is RequirementType.OUTPATIENT

    def test_requirement_overrides(self, data_dir):
        [req] = load_snapshot(data_dir).requirements
        assert req.override_mode is OverrideMode.OVERRIDE_FIELDS
        assert req.override_max_students_per_day == 3
        assert req.override_allow_fallbacks is False
        assert req.override_assignment_strategy is None

    def test_patterns(self, data_dir):
        weekly, single = load_patterns(data_dir)
        assert weekly.pattern_type is PatternType.WEEKLY
        assert weekly.config == {"days_of_week": [0, 1]}
        assert weekly.created_at == datetime(2024, 12, 1, 9, 0)
        assert single.is_available is False
        assert single.date_range_end == date(2025, 1, 6)
        assert single.enabled is True
        assert single.reason == "Out sick"

    def test_teams_and_fallbacks(self, data_dir):
        snapshot = load_snapshot(data_dir)
        [team] = snapshot.teams
        assert [m.preceptor_id for m in team.members] == ["p-1", "p-2"]
        assert team.members[1].is_fallback_only
        [entry] = snapshot.fallbacks
        assert entry.clerkship_id == "fm"
        assert entry.requires_approval and entry.approved

    def test_missing_optional_tables_are_empty(self, data_dir):
        snapshot = load_snapshot(data_dir)
        assert snapshot.capacity_rules == ()
        assert snapshot.site_capacity_rules == ()
        assert snapshot.student_onboarding == ()
        assert snapshot.preceptor_associations == ()
        assert snapshot.assignments == ()
        assert [b.date for b in snapshot.blackout_dates] == [date(2025, 1, 20)]

    def test_eligibility_and_site_tables(self, data_dir):
        _write(data_dir, "student_onboarding", """
            id,student_id,health_system_id,is_completed,completed_date
            onb-1,s-1,hs-1,yes,2024-12-10
            onb-2,s-1,hs-2,no,
        """)
        _write(data_dir, "preceptor_clerkships", """
            preceptor_id,clerkship_id,site_id
            p-1,fm,
            p-2,fm,site-1
        """)
        _write(data_dir, "site_capacity_rules", """
            id,site_id,clerkship_id,requirement_type,max_students_per_day,max_students_per_year,max_students_per_block,max_blocks_per_year
            sc-1,site-1,,outpatient,3,,,
        """)
        snapshot = load_snapshot(data_dir)

        done, pending = snapshot.student_onboarding
        assert done.is_completed and done.completed_date == date(2024, 12, 10)
        assert not pending.is_completed and pending.completed_date is None
        assert [(a.preceptor_id, a.site_id) for a in snapshot.preceptor_associations] == [
            ("p-1", None), ("p-2", "site-1"),
        ]
        [rule] = snapshot.site_capacity_rules
        assert rule.site_id == "site-1"
        assert rule.clerkship_id is None
        assert rule.requirement_type is RequirementType.OUTPATIENT
        assert rule.max_students_per_day == 3
        assert rule.max_students_per_year is None

    def test_missing_required_table(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_snapshot(tmp_path)

    def test_missing_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_snapshot(tmp_path / "nope")

    def test_bad_pattern_json(self, data_dir):
        _write(data_dir, "patterns", """
            id,preceptor_id,site_id,pattern_type,config,date_range_start,date_range_end
            pat-1,p-1,site-1,weekly,{not json,2025-01-01,2025-03-31
        """)
        with pytest.raises(ValueError, match="pat-1"):
            load_patterns(data_dir)

    def test_exported_assignments_reload(self, tmp_path):
        items = [
            assignment("s-1", "p-1", date(2025, 1, 6), block_number=1),
            assignment("s-1", "p-2", date(2025, 1, 7), fallback_depth=1),
        ]
        export_assignments_csv(items, tmp_path / "assignments.csv")
        assert list(load_assignments(tmp_path)) == items


class TestValidateSnapshot:

    def test_clean(self, data_dir):
        errors, _ = validate_snapshot(load_snapshot(data_dir))
        assert errors == []

    def test_unknown_references(self, data_dir):
        _write(data_dir, "fallbacks", """
            id,primary_preceptor_id,fallback_preceptor_id
            fb-1,p-1,p-ghost
        """)
        _write(data_dir, "requirements", """
            id,clerkship_id,requirement_type,required_days
            r-1,surgery,inpatient,10
        """)
        errors, _ = validate_snapshot(load_snapshot(data_dir))
        assert any("p-ghost" in e for e in errors)
        assert any("surgery" in e for e in errors)

    def test_unknown_eligibility_references(self, data_dir):
        _write(data_dir, "student_onboarding", """
            id,student_id,health_system_id,is_completed,completed_date
            onb-1,s-ghost,hs-1,yes,
        """)
        _write(data_dir, "preceptor_clerkships", """
            preceptor_id,clerkship_id,site_id
            p-1,surgery,
        """)
        _write(data_dir, "site_capacity_rules", """
            id,site_id,max_students_per_day
            sc-1,site-9,2
        """)
        _write(data_dir, "sites", """
            id,name,health_system_id,site_type
            site-1,Clinic,hs-1,clinic
        """)
        errors, _ = validate_snapshot(load_snapshot(data_dir))
        assert any("s-ghost" in e for e in errors)
        assert any("surgery" in e for e in errors)
        assert any("site-9" in e for e in errors)

    def test_sample_data_is_valid(self):
        snapshot = load_snapshot(DEFAULT_DATA_DIR)
        errors, _ = validate_snapshot(snapshot)
        assert errors == []
        assert {c.id for c in snapshot.clerkships} == {"fm", "im"}
        im = next(r for r in snapshot.requirements if r.clerkship_id == "im")
        assert im.override_assignment_strategy is AssignmentStrategy.CONTINUOUS_TEAM
        assert snapshot.student_onboarding
        assert snapshot.preceptor_associations
        assert snapshot.site_capacity_rules
