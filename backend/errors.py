# errors.py — Error taxonomy for the lifecycle engines
# Engines raise these; main.py turns them into the failure envelope.
from typing import Any, Optional


class TrackerError(Exception):
    """Base class for categorised, user-visible failures"""

    status_code = 500
    default_type = "Unexpected failure"

    def __init__(self, message: str, error_type: Optional[str] = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.error_type = error_type or self.default_type
        self.details = details


class NotFoundError(TrackerError):
    status_code = 404
    default_type = "Not found"


class InvalidInputError(TrackerError):
    status_code = 400
    default_type = "Invalid input"


class ValidationError(TrackerError):
    """A state rule was violated (e.g. a second active sprint)"""
    status_code = 400
    default_type = "Validation Error"


class PermissionDeniedError(TrackerError):
    status_code = 403
    default_type = "Permission denied"


class ConflictError(TrackerError):
    status_code = 409
    default_type = "Conflict"


class UnexpectedFailure(TrackerError):
    status_code = 500
    default_type = "Unexpected failure"
