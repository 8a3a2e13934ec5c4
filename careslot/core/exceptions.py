"""Custom application exceptions.

Every scheduling failure carries a stable ``kind`` string so callers can
branch on it without parsing messages.
"""


class AppException(Exception):
    """Base application exception."""

    kind = "internal_error"
    retryable = False

    def __init__(self, message: str, status_code: int = 500):
        """Initialize exception with message and status code."""
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class NotFoundError(AppException):
    """Unknown appointment, provider or seeker id."""

    kind = "not_found"

    def __init__(self, message: str = "Resource not found"):
        """Initialize with 404 status code."""
        super().__init__(message, status_code=404)


class InvalidRoleError(AppException):
    """Party id does not resolve to the expected role."""

    kind = "invalid_role"

    def __init__(self, message: str = "Account does not have the required role"):
        """Initialize with 403 status code."""
        super().__init__(message, status_code=403)


class BadRequestError(AppException):
    """Bad request exception."""

    kind = "bad_request"

    def __init__(self, message: str = "Bad request"):
        """Initialize with 400 status code."""
        super().__init__(message, status_code=400)


class PastDateError(AppException):
    """Requested start is not in the future."""

    kind = "past_date"

    def __init__(self, message: str = "Appointment time must be in the future"):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422)


class SlotConflictError(AppException):
    """Requested interval overlaps an occupying appointment."""

    kind = "slot_conflict"

    def __init__(self, message: str = "This time is no longer available"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class InvalidTransitionError(AppException):
    """Status change not permitted from the current state or by the caller's role."""

    kind = "invalid_transition"

    def __init__(self, message: str = "Status transition not allowed"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class LockoutWindowError(AppException):
    """Cancel or reschedule attempted too close to the appointment time."""

    kind = "lockout_window"

    def __init__(self, message: str = "Appointment is too close to its start time"):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409)


class StorageUnavailableError(AppException):
    """Transient infrastructure failure. Safe to retry for re-entrant operations."""

    kind = "storage_unavailable"
    retryable = True

    def __init__(self, message: str = "Storage temporarily unavailable"):
        """Initialize with 503 status code."""
        super().__init__(message, status_code=503)
