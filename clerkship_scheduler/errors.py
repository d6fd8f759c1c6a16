"""
errors.py — Exception classes raised by the clerkship scheduler

Unsatisfiable-but-valid requests are not errors: they come back as
Shortfall / UnscheduledDay records on the result.
"""

from typing import Iterable, Optional, Tuple


class SchedulingError(Exception):
    """Base class for scheduler errors."""
    pass


class ConfigurationError(SchedulingError):
    """Raised before generation when a requirement's configuration cannot be resolved."""

    def __init__(
        self,
        message: str,
        clerkship_id: Optional[str] = None,
        requirement_type: Optional[str] = None,
        fields: Iterable[str] = (),
    ):
        self.clerkship_id = clerkship_id
        self.requirement_type = requirement_type
        self.fields: Tuple[str, ...] = tuple(fields)
        super().__init__(message)


class InvariantViolationError(SchedulingError):
    """Raised when an internal consistency check fails; the whole call is abandoned."""

    def __init__(self, message: str, violations: Iterable[object] = ()):
        self.violations = list(violations)
        super().__init__(message)
