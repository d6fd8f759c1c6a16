"""
config_resolver.py — Effective configuration per (clerkship, requirement type)

Cascade:
  GlobalDefaults[requirement_type]
    → ClerkshipRequirement overrides, applied by override_mode:
        inherit          defaults unchanged (source "global_defaults")
        override_section every non-nullable field supplied by the requirement
                         (source "full_override")
        override_fields  each non-null override replaces its default
                         (source "partial_override")

The merge is pure: same inputs, same EffectiveRequirementConfig.
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from clerkship_scheduler.errors import ConfigurationError
from clerkship_scheduler.models import (
    AssignmentStrategy,
    Clerkship,
    ClerkshipRequirement,
    EffectiveRequirementConfig,
    GlobalDefaults,
    NULLABLE_SETTING_FIELDS,
    OverrideMode,
    RequirementType,
    SETTING_FIELDS,
)
from clerkship_scheduler.schedule_config import BUILTIN_GLOBAL_DEFAULTS

logger = logging.getLogger(__name__)

SOURCE_GLOBAL_DEFAULTS = "global_defaults"
SOURCE_FULL_OVERRIDE = "full_override"
SOURCE_PARTIAL_OVERRIDE = "partial_override"


def resolve_requirement_config(
    requirement: ClerkshipRequirement,
    defaults: GlobalDefaults,
) -> EffectiveRequirementConfig:
    """Merge one requirement's overrides onto its requirement type's defaults."""
    requirement_type = RequirementType(requirement.requirement_type)
    if RequirementType(defaults.requirement_type) is not requirement_type:
        raise ConfigurationError(
            f"Defaults for {defaults.requirement_type} applied to {requirement_type.value} requirement",
            clerkship_id=requirement.clerkship_id,
            requirement_type=requirement_type.value,
        )

    try:
        mode = OverrideMode(requirement.override_mode)
    except ValueError:
        raise ConfigurationError(
            f"Unknown override_mode '{requirement.override_mode}' on "
            f"{requirement.clerkship_id}/{requirement_type.value}",
            clerkship_id=requirement.clerkship_id,
            requirement_type=requirement_type.value,
            fields=("override_mode",),
        )

    settings = {name: getattr(defaults, name) for name in SETTING_FIELDS}
    overridden: Tuple[str, ...] = ()
    source = SOURCE_GLOBAL_DEFAULTS

    if mode is OverrideMode.OVERRIDE_SECTION:
        missing = [
            name for name in SETTING_FIELDS
            if name not in NULLABLE_SETTING_FIELDS and requirement.override_value(name) is None
        ]
        if missing:
            raise ConfigurationError(
                f"override_section on {requirement.clerkship_id}/{requirement_type.value} "
                f"is missing: {', '.join(missing)}",
                clerkship_id=requirement.clerkship_id,
                requirement_type=requirement_type.value,
                fields=missing,
            )
        settings = {name: requirement.override_value(name) for name in SETTING_FIELDS}
        overridden = tuple(n for n in SETTING_FIELDS if requirement.override_value(n) is not None)
        source = SOURCE_FULL_OVERRIDE

    elif mode is OverrideMode.OVERRIDE_FIELDS:
        changed = []
        for name in SETTING_FIELDS:
            value = requirement.override_value(name)
            if value is not None:
                settings[name] = value
                changed.append(name)
        overridden = tuple(changed)
        source = SOURCE_PARTIAL_OVERRIDE

    return EffectiveRequirementConfig(
        clerkship_id=requirement.clerkship_id,
        requirement_type=requirement_type,
        required_days=requirement.required_days,
        source=source,
        overridden_fields=overridden,
        **settings,
    )


def validate_effective_config(config: EffectiveRequirementConfig) -> List[str]:
    """Return a list of problems; empty means the config is usable."""
    errors: List[str] = []
    label = f"{config.clerkship_id}/{RequirementType(config.requirement_type).value}"

    if config.required_days < 0:
        errors.append(f"{label}: required_days must not be negative")
    if AssignmentStrategy(config.assignment_strategy) is AssignmentStrategy.BLOCK_BASED:
        if not config.block_size_days or config.block_size_days <= 0:
            errors.append(f"{label}: block_based strategy requires a positive block_size_days")
    if (
        config.team_size_min is not None
        and config.team_size_max is not None
        and config.team_size_min > config.team_size_max
    ):
        errors.append(f"{label}: team_size_min ({config.team_size_min}) exceeds team_size_max ({config.team_size_max})")
    if (
        config.max_students_per_year
        and config.max_students_per_day
        and config.max_students_per_day > config.max_students_per_year
    ):
        errors.append(
            f"{label}: max_students_per_day ({config.max_students_per_day}) exceeds "
            f"max_students_per_year ({config.max_students_per_year})"
        )
    return errors


def synthesize_requirement(clerkship: Clerkship) -> ClerkshipRequirement:
    """Inherit-mode requirement for a clerkship that has no requirement rows."""
    return ClerkshipRequirement(
        clerkship_id=clerkship.id,
        requirement_type=RequirementType(clerkship.clerkship_type),
        required_days=clerkship.required_days,
    )


class ConfigurationResolver:
    """
    Resolve(clerkship_id, requirement_type) → EffectiveRequirementConfig.

    Results are cached; the resolver is built once per snapshot.
    """

    def __init__(
        self,
        requirements: Iterable[ClerkshipRequirement],
        global_defaults: Iterable[GlobalDefaults] = (),
        clerkships: Iterable[Clerkship] = (),
    ):
        self._defaults: Dict[RequirementType, GlobalDefaults] = dict(BUILTIN_GLOBAL_DEFAULTS)
        for defaults in global_defaults:
            self._defaults[RequirementType(defaults.requirement_type)] = defaults

        self._requirements: Dict[Tuple[str, RequirementType], ClerkshipRequirement] = {}
        for req in requirements:
            key = (req.clerkship_id, RequirementType(req.requirement_type))
            if key in self._requirements:
                logger.warning(f"Duplicate requirement for {key[0]}/{key[1].value}; keeping the first")
                continue
            self._requirements[key] = req

        covered = {cid for cid, _ in self._requirements}
        for clerkship in clerkships:
            if clerkship.id not in covered:
                req = synthesize_requirement(clerkship)
                self._requirements[(req.clerkship_id, req.requirement_type)] = req

        self._cache: Dict[Tuple[str, RequirementType], EffectiveRequirementConfig] = {}

    def requirement_keys(self, clerkship_ids: Optional[Iterable[str]] = None) -> List[Tuple[str, RequirementType]]:
        wanted = set(clerkship_ids) if clerkship_ids is not None else None
        return sorted(
            (k for k in self._requirements if wanted is None or k[0] in wanted),
            key=lambda k: (k[0], k[1].value),
        )

    def resolve(self, clerkship_id: str, requirement_type: RequirementType) -> EffectiveRequirementConfig:
        requirement_type = RequirementType(requirement_type)
        key = (clerkship_id, requirement_type)
        if key in self._cache:
            return self._cache[key]

        requirement = self._requirements.get(key)
        if requirement is None:
            raise ConfigurationError(
                f"No requirement defined for {clerkship_id}/{requirement_type.value}",
                clerkship_id=clerkship_id,
                requirement_type=requirement_type.value,
            )

        config = resolve_requirement_config(requirement, self._defaults[requirement_type])
        problems = validate_effective_config(config)
        if problems:
            raise ConfigurationError(
                "; ".join(problems),
                clerkship_id=clerkship_id,
                requirement_type=requirement_type.value,
            )

        logger.debug(f"Resolved {clerkship_id}/{requirement_type.value} from {config.source}")
        self._cache[key] = config
        return config
