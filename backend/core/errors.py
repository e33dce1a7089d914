"""
Error kinds raised by the booking and consultation services.

Each error carries the HTTP status the API layer answers with and a short
``kind`` string so clients can tell a missing record from a forbidden one.
"""


class BookingError(Exception):
    status_code = 400
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {"detail": self.message, "error": self.kind}


class ValidationError(BookingError):
    status_code = 400
    kind = "validation_error"


class InvalidTransitionError(ValidationError):
    kind = "invalid_transition"


class ConflictError(BookingError):
    status_code = 409
    kind = "conflict"


class PermissionDeniedError(BookingError):
    status_code = 403
    kind = "permission_denied"


class NotFoundError(BookingError):
    status_code = 404
    kind = "not_found"


class ConfigurationError(BookingError):
    status_code = 500
    kind = "configuration_error"


class AuthenticationError(BookingError):
    status_code = 401
    kind = "authentication_error"
