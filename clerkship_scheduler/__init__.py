"""
Clerkship Scheduling Engine

Modules:
- models: Snapshot, configuration and assignment record types
- availability: Per-date preceptor availability from overlapping patterns
- config_resolver: Global defaults → clerkship requirement overrides
- capacity: Preceptor and site capacity ceilings, the per-request capacity ledger
- eligibility: Student onboarding and preceptor–clerkship associations
- teams: Team continuity and fallback chains
- engine: Forward-pass assignment generator
- regeneration: Regenerate from a cutover date (full-reoptimize / minimal-change)
- constraints: Hard/soft constraint checks, blackout conflicts
- loader / exporter: CSV tables in, CSV + text reports out
"""

from .errors import (
    SchedulingError,
    ConfigurationError,
    InvariantViolationError,
)

from .models import (
    SchedulingSnapshot,
    ScheduleAssignment,
    GenerationResult,
    EffectiveRequirementConfig,
)

from .availability import AvailabilityResolver, build_availability_calendar
from .config_resolver import ConfigurationResolver, resolve_requirement_config
from .capacity import CapacityLedger, CapacityResolver, SiteCapacityResolver
from .eligibility import AssociationResolver, OnboardingTracker
from .teams import FallbackResolver, TeamResolver

from .engine import (
    AssignmentGenerator,
    generate_schedule,
    calculate_schedule_metrics,
)

from .regeneration import (
    RegenerationStrategy,
    regenerate,
    analyze_regeneration_impact,
)

from .loader import load_snapshot, validate_snapshot

__all__ = [
    "SchedulingError",
    "ConfigurationError",
    "InvariantViolationError",
    "SchedulingSnapshot",
    "ScheduleAssignment",
    "GenerationResult",
    "EffectiveRequirementConfig",
    "AvailabilityResolver",
    "build_availability_calendar",
    "ConfigurationResolver",
    "resolve_requirement_config",
    "CapacityLedger",
    "CapacityResolver",
    "SiteCapacityResolver",
    "AssociationResolver",
    "OnboardingTracker",
    "FallbackResolver",
    "TeamResolver",
    "AssignmentGenerator",
    "generate_schedule",
    "calculate_schedule_metrics",
    "RegenerationStrategy",
    "regenerate",
    "analyze_regeneration_impact",
    "load_snapshot",
    "validate_snapshot",
]
