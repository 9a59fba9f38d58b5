class AttendanceError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code = 500

    def __init__(self, message, details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(AttendanceError):
    status_code = 400


class InvalidDescriptor(ValidationError):
    pass


class NotFoundError(AttendanceError):
    status_code = 404


class DuplicateError(AttendanceError):
    """Second write for a natural key that already exists.

    The ledger treats this as a no-op; stores raise it so that the unique
    constraint, not a prior read, decides who wins a race.
    """

    status_code = 409


class ConflictError(AttendanceError):
    status_code = 409


class ExternalServiceError(AttendanceError):
    status_code = 502


class ServiceUnavailable(AttendanceError):
    status_code = 503


class AuthenticationError(AttendanceError):
    status_code = 401
