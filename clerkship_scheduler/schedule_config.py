"""
schedule_config.py — Engine constants and built-in global defaults

Single place for the tunables the resolvers and the generator share.
BUILTIN_GLOBAL_DEFAULTS is used for any requirement type that has no row
in global_defaults.csv.
"""

from typing import Dict, Tuple

from clerkship_scheduler.models import (
    AssignmentStrategy,
    GlobalDefaults,
    HealthSystemRule,
    PatternType,
    RequirementType,
)


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------

# Higher rank wins when patterns overlap on a date.
PATTERN_SPECIFICITY: Dict[PatternType, int] = {
    PatternType.WEEKLY: 1,
    PatternType.MONTHLY: 2,
    PatternType.BLOCK: 3,
    PatternType.INDIVIDUAL: 4,
}

MONTHLY_TYPES = (
    "specific_days",
    "first_week",
    "last_week",
    "first_business_week",
    "last_business_week",
)
WEEK_DEFINITIONS = ("seven_days", "calendar", "business")
DEFAULT_WEEK_DEFINITION = "seven_days"


# ---------------------------------------------------------------------------
# Capacity / fallbacks
# ---------------------------------------------------------------------------

DEFAULT_MAX_STUDENTS_PER_DAY = 1
FALLBACK_MAX_DEPTH = 5


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

# Order in which a student's open requirements are attempted on a day.
REQUIREMENT_TYPE_ORDER: Tuple[RequirementType, ...] = (
    RequirementType.INPATIENT,
    RequirementType.OUTPATIENT,
    RequirementType.ELECTIVE,
)

CONTINUITY_STRATEGIES = frozenset({
    AssignmentStrategy.CONTINUOUS_SINGLE,
    AssignmentStrategy.CONTINUOUS_TEAM,
})

# Reason codes for shortfalls and unscheduled days
REASON_NO_MATCHING_PRECEPTOR = "no_matching_preceptor"
REASON_NO_AVAILABLE_CAPACITY = "no_available_capacity"
REASON_PARTIAL_BLOCK_NOT_ALLOWED = "partial_block_not_allowed"
REASON_WINDOW_CLOSED = "window_closed"


BUILTIN_GLOBAL_DEFAULTS: Dict[RequirementType, GlobalDefaults] = {
    RequirementType.OUTPATIENT: GlobalDefaults(
        requirement_type=RequirementType.OUTPATIENT,
        assignment_strategy=AssignmentStrategy.CONTINUOUS_SINGLE,
        health_system_rule=HealthSystemRule.PREFER_SAME_SYSTEM,
        max_students_per_day=1,
        max_students_per_year=50,
        allow_teams=False,
        allow_fallbacks=True,
    ),
    RequirementType.INPATIENT: GlobalDefaults(
        requirement_type=RequirementType.INPATIENT,
        assignment_strategy=AssignmentStrategy.CONTINUOUS_SINGLE,
        health_system_rule=HealthSystemRule.ENFORCE_SAME_SYSTEM,
        max_students_per_day=2,
        max_students_per_year=60,
        max_students_per_block=2,
        block_size_days=14,
        allow_teams=True,
        team_size_min=2,
        team_size_max=4,
        team_require_same_health_system=True,
        team_require_same_specialty=True,
        allow_fallbacks=True,
    ),
    RequirementType.ELECTIVE: GlobalDefaults(
        requirement_type=RequirementType.ELECTIVE,
        assignment_strategy=AssignmentStrategy.DAILY_ROTATION,
        health_system_rule=HealthSystemRule.NO_PREFERENCE,
        max_students_per_day=3,
        max_students_per_year=100,
        allow_teams=False,
        allow_fallbacks=True,
        fallback_allow_cross_system=True,
    ),
}
