"""
Scheduling exceptions.

Every validation failure has its own class so callers can tell the reasons
apart; ``status_code`` is the HTTP status the API layer answers with.
"""

from fastapi import status


class SchedulingError(Exception):
    """Base class for client-visible scheduling failures."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error: str = "Bad Request"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def code(self) -> str:
        return self.__class__.__name__


class InvalidRequestError(SchedulingError):
    """Request is well-formed but cannot be applied."""


class ClinicAssociationError(SchedulingError):
    """Patient or practitioner is not registered with the clinic."""


# Not found

class NotFoundError(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"


class PatientNotFoundError(NotFoundError):
    pass


class ClinicNotFoundError(NotFoundError):
    pass


class PractitionerNotFoundError(NotFoundError):
    pass


class AppointmentNotFoundError(NotFoundError):
    pass


# Conflicts

class BookingConflictError(SchedulingError):
    status_code = status.HTTP_409_CONFLICT
    error = "Conflict"


class DuplicateAppointmentError(BookingConflictError):
    """Patient already holds an appointment at this clinic at that start."""


class SlotBlockedError(BookingConflictError):
    """Window overlaps an administrative block."""


class OutsideAvailabilityError(BookingConflictError):
    """No available rule or override covers the window."""


class PractitionerBookedError(BookingConflictError):
    """Window overlaps another live appointment of the practitioner."""


class PractitionerUnavailableError(BookingConflictError):
    """Window overlaps a row explicitly marked unavailable."""


class ConcurrencyConflictError(BookingConflictError):
    """Concurrent transactions kept colliding; the booking was not made."""
