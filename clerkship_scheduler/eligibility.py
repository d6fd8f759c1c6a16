"""
eligibility.py — Student onboarding and preceptor–clerkship associations

Two gates applied before capacity is checked:
  - Onboarding: a student may only be placed at a site whose health system
    they have completed onboarding for. Only completed records count.
  - Associations: a preceptor may only teach clerkships they are associated
    with, optionally restricted to specific sites.

Each gate is active only when the snapshot carries at least one record of
its kind; with no records everything passes.

See: clerkship_scheduler/engine.py (_matches, _eligible_site)
"""

from collections import defaultdict
from typing import Dict, Iterable, Optional, Set, Tuple

from clerkship_scheduler.models import PreceptorClerkshipAssociation, StudentOnboarding


class OnboardingTracker:
    """Completed (student, health system) onboarding pairs."""

    def __init__(self, records: Iterable[StudentOnboarding]):
        records = list(records)
        self.enabled = bool(records)
        self._completed: Dict[str, Set[str]] = defaultdict(set)
        for record in records:
            if record.is_completed:
                self._completed[record.student_id].add(record.health_system_id)

    def is_onboarded(self, student_id: str, health_system_id: Optional[str]) -> bool:
        """
        True if the student may be placed in this health system.

        A site with no health system needs no onboarding.
        """
        if not self.enabled or not health_system_id:
            return True
        return health_system_id in self._completed.get(student_id, set())

    def systems_for(self, student_id: str) -> Set[str]:
        return set(self._completed.get(student_id, set()))


class AssociationResolver:
    """
    Preceptor → clerkship associations.

    An association without a site covers every site of the preceptor.
    Site-scoped associations for the same (preceptor, clerkship) union.
    """

    def __init__(self, associations: Iterable[PreceptorClerkshipAssociation]):
        associations = list(associations)
        self.enabled = bool(associations)
        self._sites: Dict[Tuple[str, str], Optional[Set[str]]] = {}
        for assoc in associations:
            key = (assoc.preceptor_id, assoc.clerkship_id)
            if not assoc.site_id:
                self._sites[key] = None
            elif key not in self._sites:
                self._sites[key] = {assoc.site_id}
            elif self._sites[key] is not None:
                self._sites[key].add(assoc.site_id)

    def is_associated(self, preceptor_id: str, clerkship_id: str, site_id: Optional[str] = None) -> bool:
        if not self.enabled:
            return True
        key = (preceptor_id, clerkship_id)
        if key not in self._sites:
            return False
        sites = self._sites[key]
        return sites is None or site_id is None or site_id in sites
