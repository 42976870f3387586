"""
Error taxonomy for the Ride United API.

Every error carries the HTTP status it maps to; app.py renders them as
{"error": message}.
"""


class RideError(Exception):
    status_code = 500
    default_message = "Internal error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationError(RideError):
    """Missing or malformed required field."""
    status_code = 400
    default_message = "Missing required fields"


class AuthenticationError(RideError):
    """Missing or invalid bearer / admin token."""
    status_code = 401
    default_message = "Unauthorized"


class SessionExpired(AuthenticationError):
    default_message = "Invalid or expired session"


class AuthorizationError(RideError):
    """Authenticated, but not allowed to do this."""
    status_code = 403
    default_message = "Forbidden"


class NotFoundError(RideError):
    status_code = 404
    default_message = "Not found"


class StorageError(RideError):
    """Persistence or object-storage failure."""
    status_code = 500
    default_message = "Storage failure"
