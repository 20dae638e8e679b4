"""
Domain-specific exception hierarchy for the salon agenda scheduling core.
"""

from typing import Sequence


class SchedulingError(Exception):
    """Base class for all application-level errors."""


class ConflictDetected(SchedulingError):
    """A candidate interval overlaps an existing booking."""

    def __init__(self, appointment_id: str | None, conflicting_ids: Sequence[str] = ()):
        self.appointment_id = appointment_id
        self.conflicting_ids = list(conflicting_ids)
        super().__init__("This time slot is unavailable.")


class InvalidInterval(SchedulingError):
    """Raised when an appointment start or duration cannot be interpreted."""


class PersistenceRejected(SchedulingError):
    """Raised when the booking backend refuses or fails to apply a change."""

    def __init__(self, message: str, *, is_conflict: bool = False):
        super().__init__(message)
        self.is_conflict = is_conflict


class GestureInProgress(SchedulingError):
    """Raised when a new gesture starts while another one is still active."""


class NoActiveGesture(SchedulingError):
    """Raised when a gesture operation is invoked without a started gesture."""


class BackendAPIError(SchedulingError):
    """Raised when booking or tenant data cannot be fetched or parsed."""


class CredentialError(SchedulingError):
    """Raised when the backend API key cannot be stored or retrieved."""


class UnknownAppointment(SchedulingError, KeyError):
    """Raised when an appointment id is not part of the loaded bookings."""
