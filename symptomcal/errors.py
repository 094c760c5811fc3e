"""
Error types shared across the suggestion pipeline, the calendar store and the
chat layer.
"""

from typing import Optional


class SymptomCalError(Exception):
    """Base class for all SymptomCal errors."""


class ValidationError(SymptomCalError):
    """A suggested event field is malformed and could not be defaulted."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class PersistenceError(SymptomCalError):
    """The calendar store failed (network, auth or storage)."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RequestCancelledError(PersistenceError):
    """
    The store request was cancelled before completing.
    Callers treat this as a no-op rather than a user-visible failure.
    """

    def __init__(self, message: str = "Request cancelled - please try again"):
        super().__init__(message, status=0)


class UnauthorizedEventError(PersistenceError):
    """The event exists but belongs to a different user."""

    def __init__(self, event_id: str):
        super().__init__("Unauthorized: Event does not belong to current user", status=403)
        self.event_id = event_id


class AuthRequiredError(SymptomCalError):
    """No authenticated user; the operation is refused before any side effect."""

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class GenerationError(SymptomCalError):
    """The text-generation call failed (timeout, quota, bad response)."""


class GenerationParseError(GenerationError):
    """Model output did not contain well-formed structured data."""


class HealthModelError(SymptomCalError):
    """A symptom classifier call or predictor process failed."""
