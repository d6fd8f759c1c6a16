"""
loader.py — Load a SchedulingSnapshot from a directory of CSV tables

Expected files (required marked *):
  students.csv*      id, name, email
  preceptors.csv*    id, name, specialty, health_system_id, site_ids,
                     max_students_per_day, max_students_per_year, fallback_only
  clerkships.csv*    id, name, required_days, clerkship_type, specialty, site_ids
  sites.csv          id, name, health_system_id, site_type
  health_systems.csv id, name
  requirements.csv   id, clerkship_id, requirement_type, required_days,
                     override_mode, override_<field> ...
  global_defaults.csv requirement_type, <field> ...
  patterns.csv       id, preceptor_id, site_id, pattern_type, config (JSON),
                     date_range_start, date_range_end, is_available,
                     specificity, enabled, created_at, reason
  capacity_rules.csv id, preceptor_id, clerkship_id, requirement_type,
                     max_students_per_day, max_students_per_year,
                     max_students_per_block, max_blocks_per_year
  teams.csv          id, clerkship_id, name, require_same_health_system,
                     require_same_site, require_same_specialty
  team_members.csv   team_id, preceptor_id, priority, is_fallback_only
  fallbacks.csv      id, primary_preceptor_id, fallback_preceptor_id, priority,
                     clerkship_id, requires_approval, approved,
                     allow_different_health_system
  site_capacity_rules.csv
                     id, site_id, clerkship_id, requirement_type,
                     max_students_per_day, max_students_per_year,
                     max_students_per_block, max_blocks_per_year
  student_onboarding.csv
                     id, student_id, health_system_id, is_completed, completed_date
  preceptor_clerkships.csv
                     preceptor_id, clerkship_id, site_id
  blackout_dates.csv date, reason
  assignments.csv    student_id, preceptor_id, clerkship_id, requirement_type,
                     date, site_id, status, id, block_number, fallback_depth

List columns (site_ids) accept comma, semicolon or pipe separators.
Missing optional files load as empty collections with a warning.
"""

import json
import logging
import re
from collections import defaultdict
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from clerkship_scheduler.models import (
    AssignmentStatus,
    AssignmentStrategy,
    AvailabilityPattern,
    BlackoutDate,
    CapacityRule,
    Clerkship,
    ClerkshipRequirement,
    FallbackEntry,
    GlobalDefaults,
    HealthSystem,
    HealthSystemRule,
    OverrideMode,
    PatternType,
    Preceptor,
    PreceptorClerkshipAssociation,
    RequirementType,
    ScheduleAssignment,
    SchedulingSnapshot,
    SETTING_FIELDS,
    Site,
    SiteCapacityRule,
    SiteType,
    Student,
    StudentOnboarding,
    Team,
    TeamMember,
)

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = PROJECT_ROOT / "config"
DEFAULT_DATA_DIR = DEFAULT_CONFIG_DIR / "sample"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _blank(value: Any) -> bool:
    return value is None or str(value).strip() == "" or str(value).strip().lower() == "nan"


def _parse_yes_no(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("yes", "true", "1", "y")


def _parse_str(value: Any) -> Optional[str]:
    return None if _blank(value) else str(value).strip()


def _parse_int(value: Any) -> Optional[int]:
    if _blank(value):
        return None
    try:
        return int(float(str(value).strip()))
    except ValueError:
        raise ValueError(f"Expected an integer, got '{value}'")


def _parse_date(value: Any) -> Optional[date]:
    if _blank(value):
        return None
    return date.fromisoformat(str(value).strip()[:10])


def _parse_datetime(value: Any) -> Optional[datetime]:
    if _blank(value):
        return None
    return datetime.fromisoformat(str(value).strip())


def _parse_list(raw: Any) -> Tuple[str, ...]:
    """
    Parse a list column.
    Handles:
      - comma-separated:  "site-a,site-b"
      - semicolon-sep:    "site-a;site-b"
      - pipe-sep:         "site-a|site-b"
    """
    if _blank(raw):
        return ()
    s = str(raw).strip().strip('"').strip("'")
    s = re.sub(r"[;|]", ",", s)
    return tuple(p.strip() for p in s.split(",") if p.strip())


def _optional(parser: Callable[[Any], Any]) -> Callable[[Any], Any]:
    """Wrap a parser so blank cells become None."""
    def parse(value: Any) -> Any:
        return None if _blank(value) else parser(value)
    return parse


# Column parsers for each configurable field
SETTING_PARSERS: Dict[str, Callable[[Any], Any]] = {
    "assignment_strategy":             _optional(lambda v: AssignmentStrategy(str(v).strip())),
    "health_system_rule":              _optional(lambda v: HealthSystemRule(str(v).strip())),
    "max_students_per_day":            _parse_int,
    "max_students_per_year":           _parse_int,
    "max_students_per_block":          _parse_int,
    "max_blocks_per_year":             _parse_int,
    "block_size_days":                 _parse_int,
    "allow_partial_blocks":            _optional(_parse_yes_no),
    "prefer_continuous_blocks":        _optional(_parse_yes_no),
    "allow_teams":                     _optional(_parse_yes_no),
    "team_size_min":                   _parse_int,
    "team_size_max":                   _parse_int,
    "team_require_same_health_system": _optional(_parse_yes_no),
    "team_require_same_site":          _optional(_parse_yes_no),
    "team_require_same_specialty":     _optional(_parse_yes_no),
    "allow_fallbacks":                 _optional(_parse_yes_no),
    "fallback_requires_approval":      _optional(_parse_yes_no),
    "fallback_allow_cross_system":     _optional(_parse_yes_no),
}


def _read_table(data_dir: Path, name: str, required: bool = False) -> List[Dict[str, Any]]:
    """Rows of <data_dir>/<name>.csv as dicts of strings."""
    import pandas as pd

    path = data_dir / f"{name}.csv"
    if not path.exists():
        if required:
            raise FileNotFoundError(f"Required table not found: {path}")
        logger.warning(f"{path.name} not found in {data_dir}. Using empty table.")
        return []

    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.strip() for c in df.columns]
    rows = df.to_dict(orient="records")
    logger.debug(f"Read {len(rows)} rows from {path}")
    return rows


# ---------------------------------------------------------------------------
# Organizational tables
# ---------------------------------------------------------------------------

def load_students(data_dir: Path) -> Tuple[Student, ...]:
    return tuple(
        Student(id=str(r["id"]).strip(), name=r.get("name", "").strip(), email=r.get("email", "").strip())
        for r in _read_table(data_dir, "students", required=True)
    )


def load_health_systems(data_dir: Path) -> Tuple[HealthSystem, ...]:
    return tuple(
        HealthSystem(id=str(r["id"]).strip(), name=r.get("name", "").strip())
        for r in _read_table(data_dir, "health_systems")
    )


def load_sites(data_dir: Path) -> Tuple[Site, ...]:
    return tuple(
        Site(
            id=str(r["id"]).strip(),
            name=r.get("name", "").strip(),
            health_system_id=_parse_str(r.get("health_system_id")),
            site_type=SiteType(_parse_str(r.get("site_type")) or SiteType.CLINIC.value),
        )
        for r in _read_table(data_dir, "sites")
    )


def load_preceptors(data_dir: Path) -> Tuple[Preceptor, ...]:
    return tuple(
        Preceptor(
            id=str(r["id"]).strip(),
            name=r.get("name", "").strip(),
            specialty=_parse_str(r.get("specialty")),
            health_system_id=_parse_str(r.get("health_system_id")),
            site_ids=_parse_list(r.get("site_ids")),
            max_students_per_day=_parse_int(r.get("max_students_per_day")),
            max_students_per_year=_parse_int(r.get("max_students_per_year")),
            fallback_only=_parse_yes_no(r.get("fallback_only", "no")),
        )
        for r in _read_table(data_dir, "preceptors", required=True)
    )


def load_clerkships(data_dir: Path) -> Tuple[Clerkship, ...]:
    return tuple(
        Clerkship(
            id=str(r["id"]).strip(),
            name=r.get("name", "").strip(),
            required_days=_parse_int(r.get("required_days")) or 0,
            clerkship_type=RequirementType(_parse_str(r.get("clerkship_type")) or RequirementType.OUTPATIENT.value),
            specialty=_parse_str(r.get("specialty")),
            site_ids=_parse_list(r.get("site_ids")),
        )
        for r in _read_table(data_dir, "clerkships", required=True)
    )


# ---------------------------------------------------------------------------
# Configuration tables
# ---------------------------------------------------------------------------

def load_global_defaults(data_dir: Path) -> Tuple[GlobalDefaults, ...]:
    """Rows override the built-in defaults field by field; blank cells keep them."""
    from clerkship_scheduler.schedule_config import BUILTIN_GLOBAL_DEFAULTS

    out: List[GlobalDefaults] = []
    for r in _read_table(data_dir, "global_defaults"):
        requirement_type = RequirementType(str(r["requirement_type"]).strip())
        base = BUILTIN_GLOBAL_DEFAULTS[requirement_type]
        values = {}
        for name in SETTING_FIELDS:
            parsed = SETTING_PARSERS[name](r.get(name))
            values[name] = getattr(base, name) if parsed is None else parsed
        out.append(GlobalDefaults(requirement_type=requirement_type, **values))
    return tuple(out)


def load_requirements(data_dir: Path) -> Tuple[ClerkshipRequirement, ...]:
    out: List[ClerkshipRequirement] = []
    for r in _read_table(data_dir, "requirements"):
        overrides = {
            f"override_{name}": SETTING_PARSERS[name](r.get(f"override_{name}"))
            for name in SETTING_FIELDS
        }
        out.append(ClerkshipRequirement(
            id=_parse_str(r.get("id")),
            clerkship_id=str(r["clerkship_id"]).strip(),
            requirement_type=RequirementType(str(r["requirement_type"]).strip()),
            required_days=_parse_int(r.get("required_days")) or 0,
            override_mode=OverrideMode(_parse_str(r.get("override_mode")) or OverrideMode.INHERIT.value),
            **overrides,
        ))
    return tuple(out)


def load_patterns(data_dir: Path) -> Tuple[AvailabilityPattern, ...]:
    out: List[AvailabilityPattern] = []
    for r in _read_table(data_dir, "patterns"):
        raw_config = r.get("config", "")
        try:
            config = json.loads(raw_config) if not _blank(raw_config) else None
        except json.JSONDecodeError as e:
            raise ValueError(f"Pattern {r.get('id')}: config is not valid JSON ({e})")
        start = _parse_date(r.get("date_range_start"))
        if start is None:
            raise ValueError(f"Pattern {r.get('id')}: date_range_start is required")
        out.append(AvailabilityPattern(
            id=str(r["id"]).strip(),
            preceptor_id=str(r["preceptor_id"]).strip(),
            site_id=str(r["site_id"]).strip(),
            pattern_type=PatternType(str(r["pattern_type"]).strip()),
            date_range_start=start,
            date_range_end=_parse_date(r.get("date_range_end")) or start,
            is_available=_parse_yes_no(r.get("is_available", "yes")),
            config=config,
            specificity=_parse_int(r.get("specificity")),
            enabled=_parse_yes_no(r.get("enabled") or "yes"),
            created_at=_parse_datetime(r.get("created_at")),
            reason=r.get("reason", "").strip(),
        ))
    return tuple(out)


def load_capacity_rules(data_dir: Path) -> Tuple[CapacityRule, ...]:
    return tuple(
        CapacityRule(
            id=str(r["id"]).strip(),
            preceptor_id=str(r["preceptor_id"]).strip(),
            clerkship_id=_parse_str(r.get("clerkship_id")),
            requirement_type=_optional(lambda v: RequirementType(str(v).strip()))(r.get("requirement_type")),
            max_students_per_day=_parse_int(r.get("max_students_per_day")),
            max_students_per_year=_parse_int(r.get("max_students_per_year")),
            max_students_per_block=_parse_int(r.get("max_students_per_block")),
            max_blocks_per_year=_parse_int(r.get("max_blocks_per_year")),
        )
        for r in _read_table(data_dir, "capacity_rules")
    )


def load_site_capacity_rules(data_dir: Path) -> Tuple[SiteCapacityRule, ...]:
    return tuple(
        SiteCapacityRule(
            id=str(r["id"]).strip(),
            site_id=str(r["site_id"]).strip(),
            clerkship_id=_parse_str(r.get("clerkship_id")),
            requirement_type=_optional(lambda v: RequirementType(str(v).strip()))(r.get("requirement_type")),
            max_students_per_day=_parse_int(r.get("max_students_per_day")),
            max_students_per_year=_parse_int(r.get("max_students_per_year")),
            max_students_per_block=_parse_int(r.get("max_students_per_block")),
            max_blocks_per_year=_parse_int(r.get("max_blocks_per_year")),
        )
        for r in _read_table(data_dir, "site_capacity_rules")
    )


def load_student_onboarding(data_dir: Path) -> Tuple[StudentOnboarding, ...]:
    return tuple(
        StudentOnboarding(
            student_id=str(r["student_id"]).strip(),
            health_system_id=str(r["health_system_id"]).strip(),
            is_completed=_parse_yes_no(r.get("is_completed", "no")),
            completed_date=_parse_date(r.get("completed_date")),
            id=_parse_str(r.get("id")),
        )
        for r in _read_table(data_dir, "student_onboarding")
    )


def load_preceptor_associations(data_dir: Path) -> Tuple[PreceptorClerkshipAssociation, ...]:
    return tuple(
        PreceptorClerkshipAssociation(
            preceptor_id=str(r["preceptor_id"]).strip(),
            clerkship_id=str(r["clerkship_id"]).strip(),
            site_id=_parse_str(r.get("site_id")),
        )
        for r in _read_table(data_dir, "preceptor_clerkships")
    )


def load_teams(data_dir: Path) -> Tuple[Team, ...]:
    members: Dict[str, List[TeamMember]] = defaultdict(list)
    for r in _read_table(data_dir, "team_members"):
        members[str(r["team_id"]).strip()].append(TeamMember(
            preceptor_id=str(r["preceptor_id"]).strip(),
            priority=_parse_int(r.get("priority")) or 0,
            is_fallback_only=_parse_yes_no(r.get("is_fallback_only", "no")),
        ))

    teams: List[Team] = []
    for r in _read_table(data_dir, "teams"):
        team_id = str(r["id"]).strip()
        teams.append(Team(
            id=team_id,
            clerkship_id=str(r["clerkship_id"]).strip(),
            name=r.get("name", "").strip(),
            members=tuple(members.pop(team_id, [])),
            require_same_health_system=_parse_yes_no(r.get("require_same_health_system", "no")),
            require_same_site=_parse_yes_no(r.get("require_same_site", "no")),
            require_same_specialty=_parse_yes_no(r.get("require_same_specialty", "no")),
        ))
    for orphan in members:
        logger.warning(f"team_members.csv references unknown team {orphan}")
    return tuple(teams)


def load_fallbacks(data_dir: Path) -> Tuple[FallbackEntry, ...]:
    return tuple(
        FallbackEntry(
            id=str(r["id"]).strip(),
            primary_preceptor_id=str(r["primary_preceptor_id"]).strip(),
            fallback_preceptor_id=str(r["fallback_preceptor_id"]).strip(),
            priority=_parse_int(r.get("priority")) or 0,
            clerkship_id=_parse_str(r.get("clerkship_id")),
            requires_approval=_parse_yes_no(r.get("requires_approval", "no")),
            approved=_parse_yes_no(r.get("approved", "no")),
            allow_different_health_system=_parse_yes_no(r.get("allow_different_health_system", "no")),
        )
        for r in _read_table(data_dir, "fallbacks")
    )


def load_blackout_dates(data_dir: Path) -> Tuple[BlackoutDate, ...]:
    out = []
    for r in _read_table(data_dir, "blackout_dates"):
        day = _parse_date(r.get("date"))
        if day is None:
            logger.warning(f"Skipping blackout row without a date: {r}")
            continue
        out.append(BlackoutDate(date=day, reason=r.get("reason", "").strip(), id=_parse_str(r.get("id"))))
    return tuple(sorted(out, key=lambda b: b.date))


def load_assignments(data_dir: Path, filename: str = "assignments") -> Tuple[ScheduleAssignment, ...]:
    return tuple(
        ScheduleAssignment(
            student_id=str(r["student_id"]).strip(),
            preceptor_id=str(r["preceptor_id"]).strip(),
            clerkship_id=str(r["clerkship_id"]).strip(),
            requirement_type=RequirementType(str(r["requirement_type"]).strip()),
            date=_parse_date(r["date"]),
            site_id=_parse_str(r.get("site_id")),
            status=AssignmentStatus(_parse_str(r.get("status")) or AssignmentStatus.SCHEDULED.value),
            id=_parse_str(r.get("id")),
            block_number=_parse_int(r.get("block_number")),
            fallback_depth=_parse_int(r.get("fallback_depth")) or 0,
        )
        for r in _read_table(data_dir, filename)
    )


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

def load_snapshot(data_dir: Optional[Path] = None) -> SchedulingSnapshot:
    """Load every table under data_dir (default: config/sample)."""
    data_dir = Path(data_dir) if data_dir is not None else DEFAULT_DATA_DIR
    if not data_dir.is_dir():
        raise FileNotFoundError(f"Data directory not found: {data_dir}")

    snapshot = SchedulingSnapshot(
        students=load_students(data_dir),
        preceptors=load_preceptors(data_dir),
        sites=load_sites(data_dir),
        health_systems=load_health_systems(data_dir),
        clerkships=load_clerkships(data_dir),
        requirements=load_requirements(data_dir),
        global_defaults=load_global_defaults(data_dir),
        patterns=load_patterns(data_dir),
        capacity_rules=load_capacity_rules(data_dir),
        teams=load_teams(data_dir),
        fallbacks=load_fallbacks(data_dir),
        blackout_dates=load_blackout_dates(data_dir),
        site_capacity_rules=load_site_capacity_rules(data_dir),
        student_onboarding=load_student_onboarding(data_dir),
        preceptor_associations=load_preceptor_associations(data_dir),
        assignments=load_assignments(data_dir),
    )
    logger.info(
        f"Loaded snapshot from {data_dir}: {len(snapshot.students)} students, "
        f"{len(snapshot.preceptors)} preceptors, {len(snapshot.clerkships)} clerkships, "
        f"{len(snapshot.patterns)} patterns, {len(snapshot.assignments)} existing assignments"
    )
    return snapshot


def validate_snapshot(snapshot: SchedulingSnapshot) -> Tuple[List[str], List[str]]:
    """
    Referential checks before scheduling.

    Returns:
        (errors, warnings)
    """
    errors: List[str] = []
    warnings: List[str] = []

    preceptor_ids = {p.id for p in snapshot.preceptors}
    site_ids = {s.id for s in snapshot.sites}
    clerkship_ids = {c.id for c in snapshot.clerkships}
    system_ids = {h.id for h in snapshot.health_systems}

    for ids, label in (
        ([s.id for s in snapshot.students], "student"),
        ([p.id for p in snapshot.preceptors], "preceptor"),
        ([c.id for c in snapshot.clerkships], "clerkship"),
    ):
        dupes = sorted({i for i in ids if ids.count(i) > 1})
        if dupes:
            errors.append(f"Duplicate {label} ids: {', '.join(dupes)}")

    for req in snapshot.requirements:
        if req.clerkship_id not in clerkship_ids:
            errors.append(f"Requirement {req.id or req.clerkship_id} references unknown clerkship {req.clerkship_id}")
    for pattern in snapshot.patterns:
        if pattern.preceptor_id not in preceptor_ids:
            errors.append(f"Pattern {pattern.id} references unknown preceptor {pattern.preceptor_id}")
        if site_ids and pattern.site_id not in site_ids:
            warnings.append(f"Pattern {pattern.id} references unknown site {pattern.site_id}")
        if pattern.date_range_end < pattern.date_range_start:
            errors.append(f"Pattern {pattern.id} ends before it starts")
    for entry in snapshot.fallbacks:
        for pid in (entry.primary_preceptor_id, entry.fallback_preceptor_id):
            if pid not in preceptor_ids:
                errors.append(f"Fallback {entry.id} references unknown preceptor {pid}")
    student_ids = {s.id for s in snapshot.students}
    for record in snapshot.student_onboarding:
        if record.student_id not in student_ids:
            errors.append(f"Onboarding record {record.id or record.student_id} references unknown student {record.student_id}")
        if system_ids and record.health_system_id not in system_ids:
            warnings.append(f"Onboarding record for {record.student_id} references unknown health system {record.health_system_id}")
    for assoc in snapshot.preceptor_associations:
        if assoc.preceptor_id not in preceptor_ids:
            errors.append(f"Association references unknown preceptor {assoc.preceptor_id}")
        if assoc.clerkship_id not in clerkship_ids:
            errors.append(f"Association for {assoc.preceptor_id} references unknown clerkship {assoc.clerkship_id}")
        if site_ids and assoc.site_id and assoc.site_id not in site_ids:
            warnings.append(f"Association for {assoc.preceptor_id} references unknown site {assoc.site_id}")
    for rule in snapshot.site_capacity_rules:
        if site_ids and rule.site_id not in site_ids:
            errors.append(f"Site capacity rule {rule.id} references unknown site {rule.site_id}")
    for site in snapshot.sites:
        if system_ids and site.health_system_id and site.health_system_id not in system_ids:
            warnings.append(f"Site {site.id} references unknown health system {site.health_system_id}")
    for preceptor in snapshot.preceptors:
        if not preceptor.site_ids and not any(p.preceptor_id == preceptor.id for p in snapshot.patterns):
            warnings.append(f"Preceptor {preceptor.id} has no sites and no availability patterns")

    return errors, warnings
