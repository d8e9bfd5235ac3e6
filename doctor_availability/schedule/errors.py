"""Error kinds raised by the scheduling core.

Every error carries a stable ``code`` and the HTTP status the API layer
answers with, so callers can tell them apart without parsing messages.
"""

from fastapi import status


class ScheduleError(Exception):
    code = 'schedule_error'
    status_code = status.HTTP_400_BAD_REQUEST
    retryable = False

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {'error': self.code, 'message': self.message, 'retryable': self.retryable, **self.details}


class SlotValidationError(ScheduleError):
    """Malformed slot: bad time range, zero capacity, duration mismatch."""
    code = 'validation_error'


class ConflictError(ScheduleError):
    """Two slots of the same day overlap."""
    code = 'slot_conflict'
    status_code = status.HTTP_409_CONFLICT


class VersionConflict(ScheduleError):
    """A concurrent write changed the record since it was read."""
    code = 'version_conflict'
    status_code = status.HTTP_409_CONFLICT
    retryable = True


class CapacityExceeded(ScheduleError):
    code = 'capacity_exceeded'
    status_code = status.HTTP_409_CONFLICT


class TokenTaken(ScheduleError):
    """The requested token number is already booked."""
    code = 'token_taken'
    status_code = status.HTTP_409_CONFLICT


class HasActiveBookings(ScheduleError):
    """The change would revoke reserved tokens and was not forced."""
    code = 'has_active_bookings'
    status_code = status.HTTP_409_CONFLICT


class DayUnavailable(ScheduleError):
    code = 'day_unavailable'
    status_code = status.HTTP_409_CONFLICT


class Forbidden(ScheduleError):
    code = 'forbidden'
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(ScheduleError):
    code = 'not_found'
    status_code = status.HTTP_404_NOT_FOUND


class Contention(ScheduleError):
    """Token operation kept losing version races; safe to retry later."""
    code = 'contention'
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    retryable = True


class DeadlineExceeded(ScheduleError):
    """The caller's deadline passed before the operation committed."""
    code = 'deadline_exceeded'
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    retryable = True
