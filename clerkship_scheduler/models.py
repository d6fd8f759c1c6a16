"""
models.py — Record types consumed and produced by the clerkship scheduler

Every input collection is a frozen dataclass so a SchedulingSnapshot can be
shared between the resolvers without copies. Closed vocabularies are Enums
with a str mixin, so values loaded from CSV compare equal to members.

Usage:
  snapshot = SchedulingSnapshot(students=(...), preceptors=(...), ...)
  result = generate_schedule(snapshot, date(2025, 1, 6), date(2025, 2, 28))
"""

import datetime as dt
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class RequirementType(str, Enum):
    INPATIENT = "inpatient"
    OUTPATIENT = "outpatient"
    ELECTIVE = "elective"


class AssignmentStrategy(str, Enum):
    CONTINUOUS_SINGLE = "continuous_single"
    CONTINUOUS_TEAM = "continuous_team"
    BLOCK_BASED = "block_based"
    DAILY_ROTATION = "daily_rotation"


class HealthSystemRule(str, Enum):
    ENFORCE_SAME_SYSTEM = "enforce_same_system"
    PREFER_SAME_SYSTEM = "prefer_same_system"
    NO_PREFERENCE = "no_preference"


class OverrideMode(str, Enum):
    INHERIT = "inherit"
    OVERRIDE_FIELDS = "override_fields"
    OVERRIDE_SECTION = "override_section"


class PatternType(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    BLOCK = "block"
    INDIVIDUAL = "individual"


class SiteType(str, Enum):
    CLINIC = "clinic"
    HOSPITAL = "hospital"
    MIXED = "mixed"


class AssignmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RequirementState(Enum):
    PENDING = "pending"
    SCHEDULING = "scheduling"
    SATISFIED = "satisfied"
    BLOCKED = "blocked"


# ---------------------------------------------------------------------------
# Organizational records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Student:
    id: str
    name: str = ""
    email: str = ""


@dataclass(frozen=True)
class HealthSystem:
    id: str
    name: str = ""


@dataclass(frozen=True)
class Site:
    id: str
    name: str = ""
    health_system_id: Optional[str] = None
    site_type: SiteType = SiteType.CLINIC


@dataclass(frozen=True)
class Preceptor:
    """
    A clinician who supervises students.

    max_students_per_day / max_students_per_year are absolute defaults, used
    only when no CapacityRule matches. fallback_only preceptors never appear
    in the ranked candidate list; they are reached through fallback chains.
    """
    id: str
    name: str = ""
    specialty: Optional[str] = None
    health_system_id: Optional[str] = None
    site_ids: Tuple[str, ...] = ()
    max_students_per_day: Optional[int] = None
    max_students_per_year: Optional[int] = None
    fallback_only: bool = False


@dataclass(frozen=True)
class Clerkship:
    id: str
    name: str = ""
    required_days: int = 0
    clerkship_type: RequirementType = RequirementType.OUTPATIENT
    specialty: Optional[str] = None
    site_ids: Tuple[str, ...] = ()


# ---------------------------------------------------------------------------
# Configuration records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GlobalDefaults:
    requirement_type: RequirementType
    assignment_strategy: AssignmentStrategy = AssignmentStrategy.CONTINUOUS_SINGLE
    health_system_rule: HealthSystemRule = HealthSystemRule.NO_PREFERENCE
    max_students_per_day: int = 1
    max_students_per_year: Optional[int] = None
    max_students_per_block: Optional[int] = None
    max_blocks_per_year: Optional[int] = None
    block_size_days: Optional[int] = None
    allow_partial_blocks: bool = True
    prefer_continuous_blocks: bool = True
    allow_teams: bool = False
    team_size_min: Optional[int] = None
    team_size_max: Optional[int] = None
    team_require_same_health_system: bool = False
    team_require_same_site: bool = False
    team_require_same_specialty: bool = False
    allow_fallbacks: bool = True
    fallback_requires_approval: bool = False
    fallback_allow_cross_system: bool = False


# Configurable fields, in declaration order.
SETTING_FIELDS: Tuple[str, ...] = tuple(
    f.name for f in fields(GlobalDefaults) if f.name != "requirement_type"
)

# Fields where None is a meaningful value ("not configured").
NULLABLE_SETTING_FIELDS = frozenset({
    "max_students_per_year",
    "max_students_per_block",
    "max_blocks_per_year",
    "block_size_days",
    "team_size_min",
    "team_size_max",
})


@dataclass(frozen=True)
class ClerkshipRequirement:
    """
    Per-(clerkship, requirement type) day requirement plus optional overrides.

    Each override_<name> mirrors a GlobalDefaults field; how they apply is
    decided by override_mode (see config_resolver.py).
    """
    clerkship_id: str
    requirement_type: RequirementType
    required_days: int
    override_mode: OverrideMode = OverrideMode.INHERIT
    id: Optional[str] = None
    override_assignment_strategy: Optional[AssignmentStrategy] = None
    override_health_system_rule: Optional[HealthSystemRule] = None
    override_max_students_per_day: Optional[int] = None
    override_max_students_per_year: Optional[int] = None
    override_max_students_per_block: Optional[int] = None
    override_max_blocks_per_year: Optional[int] = None
    override_block_size_days: Optional[int] = None
    override_allow_partial_blocks: Optional[bool] = None
    override_prefer_continuous_blocks: Optional[bool] = None
    override_allow_teams: Optional[bool] = None
    override_team_size_min: Optional[int] = None
    override_team_size_max: Optional[int] = None
    override_team_require_same_health_system: Optional[bool] = None
    override_team_require_same_site: Optional[bool] = None
    override_team_require_same_specialty: Optional[bool] = None
    override_allow_fallbacks: Optional[bool] = None
    override_fallback_requires_approval: Optional[bool] = None
    override_fallback_allow_cross_system: Optional[bool] = None

    def override_value(self, name: str) -> Any:
        return getattr(self, f"override_{name}")


@dataclass(frozen=True)
class EffectiveRequirementConfig:
    """Fully merged configuration for one (clerkship, requirement type)."""
    clerkship_id: str
    requirement_type: RequirementType
    required_days: int
    assignment_strategy: AssignmentStrategy
    health_system_rule: HealthSystemRule
    max_students_per_day: int
    max_students_per_year: Optional[int]
    max_students_per_block: Optional[int]
    max_blocks_per_year: Optional[int]
    block_size_days: Optional[int]
    allow_partial_blocks: bool
    prefer_continuous_blocks: bool
    allow_teams: bool
    team_size_min: Optional[int]
    team_size_max: Optional[int]
    team_require_same_health_system: bool
    team_require_same_site: bool
    team_require_same_specialty: bool
    allow_fallbacks: bool
    fallback_requires_approval: bool
    fallback_allow_cross_system: bool
    source: str = "global_defaults"
    overridden_fields: Tuple[str, ...] = ()

    def settings(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in SETTING_FIELDS}


# ---------------------------------------------------------------------------
# Availability, capacity, teams
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AvailabilityPattern:
    """
    A recurring or one-off availability statement for (preceptor, site).

    config depends on pattern_type:
      weekly:  {"days_mask": 0b0011111} or {"days_of_week": [0, 1, 2]}  (Monday = 0)
      monthly: {"monthly_type": "specific_days", "specific_days": [1, 15]}
               {"monthly_type": "first_week", "week_definition": "business"}
      block:   {"exclude_weekends": true}
      individual: ignored; the pattern covers date_range_start only.
    """
    id: str
    preceptor_id: str
    site_id: str
    pattern_type: PatternType
    date_range_start: dt.date
    date_range_end: dt.date
    is_available: bool = True
    config: Optional[Mapping[str, Any]] = None
    specificity: Optional[int] = None
    enabled: bool = True
    created_at: Optional[dt.datetime] = None
    reason: str = ""


@dataclass(frozen=True)
class CapacityRule:
    id: str
    preceptor_id: str
    clerkship_id: Optional[str] = None
    requirement_type: Optional[RequirementType] = None
    max_students_per_day: Optional[int] = None
    max_students_per_year: Optional[int] = None
    max_students_per_block: Optional[int] = None
    max_blocks_per_year: Optional[int] = None


@dataclass(frozen=True)
class TeamMember:
    preceptor_id: str
    priority: int = 0
    is_fallback_only: bool = False


@dataclass(frozen=True)
class Team:
    id: str
    clerkship_id: str
    name: str = ""
    members: Tuple[TeamMember, ...] = ()
    require_same_health_system: bool = False
    require_same_site: bool = False
    require_same_specialty: bool = False


@dataclass(frozen=True)
class FallbackEntry:
    """One link of a primary preceptor's fallback chain (lower priority first)."""
    id: str
    primary_preceptor_id: str
    fallback_preceptor_id: str
    priority: int = 0
    clerkship_id: Optional[str] = None
    requires_approval: bool = False
    approved: bool = False
    allow_different_health_system: bool = False


@dataclass(frozen=True)
class SiteCapacityRule:
    """Site-wide ceilings, counted over every preceptor booked at the site."""
    id: str
    site_id: str
    clerkship_id: Optional[str] = None
    requirement_type: Optional[RequirementType] = None
    max_students_per_day: Optional[int] = None
    max_students_per_year: Optional[int] = None
    max_students_per_block: Optional[int] = None
    max_blocks_per_year: Optional[int] = None


@dataclass(frozen=True)
class StudentOnboarding:
    student_id: str
    health_system_id: str
    is_completed: bool = False
    completed_date: Optional[dt.date] = None
    id: Optional[str] = None


@dataclass(frozen=True)
class PreceptorClerkshipAssociation:
    """Preceptor approved to teach a clerkship; site_id None means at any of their sites."""
    preceptor_id: str
    clerkship_id: str
    site_id: Optional[str] = None


@dataclass(frozen=True)
class BlackoutDate:
    date: dt.date
    reason: str = ""
    id: Optional[str] = None


# ---------------------------------------------------------------------------
# Assignments and snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ScheduleAssignment:
    student_id: str
    preceptor_id: str
    clerkship_id: str
    requirement_type: RequirementType
    date: dt.date
    site_id: Optional[str] = None
    status: AssignmentStatus = AssignmentStatus.SCHEDULED
    id: Optional[str] = None
    block_number: Optional[int] = None
    fallback_depth: int = 0

    @property
    def key(self) -> Tuple[str, dt.date]:
        return (self.student_id, self.date)

    @property
    def is_active(self) -> bool:
        """Cancelled assignments keep their record but book nothing."""
        return AssignmentStatus(self.status) is not AssignmentStatus.CANCELLED


@dataclass(frozen=True)
class SchedulingSnapshot:
    """Immutable bundle of every input collection the engine reads."""
    students: Tuple[Student, ...] = ()
    preceptors: Tuple[Preceptor, ...] = ()
    sites: Tuple[Site, ...] = ()
    health_systems: Tuple[HealthSystem, ...] = ()
    clerkships: Tuple[Clerkship, ...] = ()
    requirements: Tuple[ClerkshipRequirement, ...] = ()
    global_defaults: Tuple[GlobalDefaults, ...] = ()
    patterns: Tuple[AvailabilityPattern, ...] = ()
    capacity_rules: Tuple[CapacityRule, ...] = ()
    teams: Tuple[Team, ...] = ()
    fallbacks: Tuple[FallbackEntry, ...] = ()
    blackout_dates: Tuple[BlackoutDate, ...] = ()
    site_capacity_rules: Tuple[SiteCapacityRule, ...] = ()
    student_onboarding: Tuple[StudentOnboarding, ...] = ()
    preceptor_associations: Tuple[PreceptorClerkshipAssociation, ...] = ()
    assignments: Tuple[ScheduleAssignment, ...] = ()


# ---------------------------------------------------------------------------
# Output reports
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Shortfall:
    student_id: str
    clerkship_id: str
    requirement_type: RequirementType
    required_days: int
    assigned_days: int
    shortfall_days: int
    reason: str = ""


@dataclass(frozen=True)
class UnscheduledDay:
    student_id: str
    date: dt.date
    reason: str = ""


RequirementKey = Tuple[str, str, RequirementType]   # (student_id, clerkship_id, requirement_type)


@dataclass
class RequirementProgress:
    """Mutable per-(student, requirement) state for one generation request."""
    student_id: str
    clerkship_id: str
    requirement_type: RequirementType
    required_days: int
    credited_days: int = 0
    assigned_days: int = 0
    state: RequirementState = RequirementState.PENDING
    bound_preceptor_id: Optional[str] = None
    bound_block: Optional[int] = None
    last_assigned: Optional[dt.date] = None
    reason: str = ""

    @property
    def key(self) -> RequirementKey:
        return (self.student_id, self.clerkship_id, self.requirement_type)

    @property
    def remaining_days(self) -> int:
        return max(0, self.required_days - self.credited_days - self.assigned_days)

    @property
    def is_open(self) -> bool:
        return self.state in (RequirementState.PENDING, RequirementState.SCHEDULING)

    @property
    def completed_days(self) -> int:
        return self.credited_days + self.assigned_days


@dataclass
class GenerationResult:
    assignments: List[ScheduleAssignment] = field(default_factory=list)
    shortfalls: List[Shortfall] = field(default_factory=list)
    unscheduled: List[UnscheduledDay] = field(default_factory=list)
    progress: Dict[RequirementKey, RequirementProgress] = field(default_factory=dict)

    @property
    def assigned_count(self) -> int:
        return len(self.assignments)
