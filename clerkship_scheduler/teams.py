"""
teams.py — Team continuity and fallback-chain resolution

Teams:
  A team is an ordered group of preceptors scoped to one clerkship. Under a
  continuity strategy a student who has already worked with a team member
  stays with that team. Members are tried primary first (lowest priority
  number), fallback-only members last.

Fallback chains:
  A primary preceptor's chain is walked in priority order when the primary is
  blocked for a slot. Entries scoped to the clerkship replace unscoped ones.
  If no direct fallback works, the walk cascades into each fallback's own
  chain, up to FALLBACK_MAX_DEPTH levels, never revisiting a preceptor.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from clerkship_scheduler.models import (
    AssignmentStrategy,
    EffectiveRequirementConfig,
    FallbackEntry,
    Preceptor,
    ScheduleAssignment,
    Team,
    TeamMember,
)
from clerkship_scheduler.schedule_config import CONTINUITY_STRATEGIES, FALLBACK_MAX_DEPTH

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TeamBinding:
    team: Team
    preceptor_id: str


@dataclass(frozen=True)
class FallbackChoice:
    entry: FallbackEntry
    depth: int

    @property
    def preceptor_id(self) -> str:
        return self.entry.fallback_preceptor_id


def ordered_members(team: Team) -> List[TeamMember]:
    return sorted(team.members, key=lambda m: (m.is_fallback_only, m.priority, m.preceptor_id))


# ---------------------------------------------------------------------------
# Team validation
# ---------------------------------------------------------------------------

def validate_team(
    team: Team,
    preceptors: Dict[str, Preceptor],
    config: Optional[EffectiveRequirementConfig] = None,
) -> List[str]:
    """
    Return a list of problems with a team; empty means valid.

    Checks member existence, unique priorities, the size bounds from config,
    and the team's (or config's) same-health-system / site / specialty flags.
    """
    errors: List[str] = []
    if not team.members:
        return [f"Team {team.id} has no members"]

    priorities = [m.priority for m in team.members]
    if len(set(priorities)) != len(priorities):
        errors.append(f"Team {team.id} has duplicate member priorities")

    missing = [m.preceptor_id for m in team.members if m.preceptor_id not in preceptors]
    if missing:
        errors.append(f"Team {team.id} references unknown preceptors: {', '.join(missing)}")
    members = [preceptors[m.preceptor_id] for m in team.members if m.preceptor_id in preceptors]

    if config is not None:
        size = len(team.members)
        if config.team_size_min is not None and size < config.team_size_min:
            errors.append(f"Team {team.id} has {size} members, minimum is {config.team_size_min}")
        if config.team_size_max is not None and size > config.team_size_max:
            errors.append(f"Team {team.id} has {size} members, maximum is {config.team_size_max}")

    same_system = team.require_same_health_system or (config is not None and config.team_require_same_health_system)
    same_site = team.require_same_site or (config is not None and config.team_require_same_site)
    same_specialty = team.require_same_specialty or (config is not None and config.team_require_same_specialty)

    if same_system and len({p.health_system_id for p in members}) > 1:
        errors.append(f"Team {team.id} spans multiple health systems")
    if same_specialty and len({(p.specialty or "").lower() for p in members}) > 1:
        errors.append(f"Team {team.id} spans multiple specialties")
    if same_site and members:
        shared = set(members[0].site_ids)
        for p in members[1:]:
            shared &= set(p.site_ids)
        if not shared:
            errors.append(f"Team {team.id} members share no common site")

    return errors


class TeamResolver:
    """Indexes valid teams per clerkship and binds students to teams."""

    def __init__(
        self,
        teams: Iterable[Team],
        preceptors: Iterable[Preceptor],
        config_for: Optional[Callable[[str], Optional[EffectiveRequirementConfig]]] = None,
    ):
        preceptor_map = {p.id: p for p in preceptors}
        self._by_clerkship: Dict[str, List[Team]] = defaultdict(list)
        self.invalid: Dict[str, List[str]] = {}

        for team in sorted(teams, key=lambda t: t.id):
            config = config_for(team.clerkship_id) if config_for else None
            problems = validate_team(team, preceptor_map, config)
            if problems:
                for problem in problems:
                    logger.warning(f"Skipping team: {problem}")
                self.invalid[team.id] = problems
                continue
            self._by_clerkship[team.clerkship_id].append(team)

    def teams_for(self, clerkship_id: str) -> List[Team]:
        return list(self._by_clerkship.get(clerkship_id, ()))

    def team_of(self, clerkship_id: str, preceptor_id: str) -> Optional[Team]:
        for team in self._by_clerkship.get(clerkship_id, ()):
            if any(m.preceptor_id == preceptor_id for m in team.members):
                return team
        return None

    def resolve_team_for(
        self,
        student_id: str,
        clerkship_id: str,
        config: EffectiveRequirementConfig,
        history: Sequence[ScheduleAssignment],
    ) -> Optional[TeamBinding]:
        """
        Team the student is already working with in this clerkship, if any.

        Only continuity strategies with teams allowed produce a binding; the
        most recent assignment in the clerkship decides the team.
        """
        if not config.allow_teams:
            return None
        if AssignmentStrategy(config.assignment_strategy) not in CONTINUITY_STRATEGIES:
            return None

        recent = sorted(
            (a for a in history if a.student_id == student_id and a.clerkship_id == clerkship_id),
            key=lambda a: a.date,
            reverse=True,
        )
        for assignment in recent:
            team = self.team_of(clerkship_id, assignment.preceptor_id)
            if team is not None:
                return TeamBinding(team=team, preceptor_id=assignment.preceptor_id)
        return None


# ---------------------------------------------------------------------------
# Fallback chains
# ---------------------------------------------------------------------------

class FallbackResolver:
    """Walks primary → fallback chains to find the next eligible preceptor."""

    def __init__(
        self,
        entries: Iterable[FallbackEntry],
        preceptors: Iterable[Preceptor],
        max_depth: int = FALLBACK_MAX_DEPTH,
    ):
        self._chains: Dict[str, List[FallbackEntry]] = defaultdict(list)
        for entry in entries:
            if entry.fallback_preceptor_id == entry.primary_preceptor_id:
                logger.warning(f"Fallback {entry.id} points a preceptor at itself; ignoring it")
                continue
            self._chains[entry.primary_preceptor_id].append(entry)
        for chain in self._chains.values():
            chain.sort(key=lambda e: (e.priority, e.id))
        self._preceptors: Dict[str, Preceptor] = {p.id: p for p in preceptors}
        self.max_depth = max_depth

    def chain_for(self, primary_id: str, clerkship_id: Optional[str] = None) -> List[FallbackEntry]:
        entries = self._chains.get(primary_id, [])
        if clerkship_id is not None:
            scoped = [e for e in entries if e.clerkship_id == clerkship_id]
            if scoped:
                return scoped
        return [e for e in entries if not e.clerkship_id]

    def has_chain(self, primary_id: str, clerkship_id: Optional[str] = None) -> bool:
        return bool(self.chain_for(primary_id, clerkship_id))

    def fallback_targets(self, primary_ids: Iterable[str], clerkship_id: Optional[str] = None) -> Set[str]:
        """Every preceptor reachable as a direct fallback of the given primaries."""
        targets: Set[str] = set()
        for pid in primary_ids:
            targets.update(e.fallback_preceptor_id for e in self.chain_for(pid, clerkship_id))
        return targets

    def _health_system_ok(
        self,
        entry: FallbackEntry,
        target_health_system_id: Optional[str],
        config: Optional[EffectiveRequirementConfig],
    ) -> bool:
        if target_health_system_id is None:
            return True
        fallback = self._preceptors.get(entry.fallback_preceptor_id)
        if fallback is None or fallback.health_system_id is None:
            return True
        if fallback.health_system_id == target_health_system_id:
            return True
        return entry.allow_different_health_system or bool(config and config.fallback_allow_cross_system)

    def _usable(
        self,
        entry: FallbackEntry,
        target_health_system_id: Optional[str],
        config: Optional[EffectiveRequirementConfig],
    ) -> bool:
        needs_approval = entry.requires_approval or bool(config and config.fallback_requires_approval)
        if needs_approval and not entry.approved:
            logger.debug(f"Fallback {entry.id} requires approval; skipping")
            return False
        if not self._health_system_ok(entry, target_health_system_id, config):
            logger.debug(f"Fallback {entry.id} crosses health systems; skipping")
            return False
        return True

    def next_fallback(
        self,
        primary_id: str,
        clerkship_id: Optional[str],
        excluded: Iterable[str],
        is_eligible: Callable[[str], bool],
        target_health_system_id: Optional[str] = None,
        config: Optional[EffectiveRequirementConfig] = None,
    ) -> Optional[FallbackChoice]:
        """
        First usable fallback whose preceptor passes is_eligible (available
        and under capacity for the slot), or None when the chain is exhausted.
        """
        visited = {primary_id} | set(excluded)
        return self._walk(primary_id, clerkship_id, visited, is_eligible, target_health_system_id, config, depth=1)

    def _walk(
        self,
        primary_id: str,
        clerkship_id: Optional[str],
        visited: Set[str],
        is_eligible: Callable[[str], bool],
        target_health_system_id: Optional[str],
        config: Optional[EffectiveRequirementConfig],
        depth: int,
    ) -> Optional[FallbackChoice]:
        usable = [
            e for e in self.chain_for(primary_id, clerkship_id)
            if e.fallback_preceptor_id not in visited and self._usable(e, target_health_system_id, config)
        ]
        for entry in usable:
            if is_eligible(entry.fallback_preceptor_id):
                return FallbackChoice(entry=entry, depth=depth)

        visited.update(e.fallback_preceptor_id for e in usable)
        if depth >= self.max_depth:
            return None

        for entry in usable:
            choice = self._walk(
                entry.fallback_preceptor_id, clerkship_id, visited,
                is_eligible, target_health_system_id, config, depth + 1,
            )
            if choice is not None:
                return choice
        return None
