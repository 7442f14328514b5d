"""
Domain errors for the convert lifecycle.

Callers can catch the builtin base classes (LookupError, ValueError) or the
specific types below.
"""

from __future__ import annotations


class LifecycleError(Exception):
    """Base class for convert lifecycle errors."""


class ConvertNotFoundError(LifecycleError, LookupError):
    """Raised when a convert id does not exist."""


class VisitNotFoundError(ConvertNotFoundError):
    """Raised when a visit number does not exist on a convert."""


class ValidationError(LifecycleError, ValueError):
    """Raised for invalid milestone tracks/values, visit numbers or statuses."""


class PermissionDeniedError(LifecycleError):
    """Raised when an actor may not perform a transition on a convert."""


class ConcurrentModificationError(LifecycleError):
    """Raised when a conditional write finds the stored version has moved on."""
