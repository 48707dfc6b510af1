"""
Domain Exceptions

Every business rule violation raised by the services is one of these.
The API layer maps them to HTTP responses through ``status_code``;
scripts and Celery tasks can catch them directly.
"""

from typing import Optional


class FoodyError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    error: str = "Internal Error"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_dict(self) -> dict:
        """Convert to the standard error payload."""
        return {
            "success": False,
            "error": self.error,
            "detail": self.message if self.detail is None else self.detail,
        }


class ValidationError(FoodyError):
    """Input rejected before reaching core logic."""
    status_code = 400
    error = "Validation Error"


class InvalidStatus(ValidationError):
    """Requested order status is not one of the enumerated values."""
    error = "Invalid Status"


class PermissionDenied(FoodyError):
    """Caller may not act on this resource."""
    status_code = 403
    error = "Forbidden"


class NotFound(FoodyError):
    """Unknown order, product, bill or review id."""
    status_code = 404
    error = "Not Found"


class Conflict(FoodyError):
    """Uniqueness violated (second bill for an order, paid twice)."""
    status_code = 409
    error = "Conflict"


class InvalidTransition(FoodyError):
    """Target state is not reachable from the persisted current state."""
    status_code = 409
    error = "Invalid Transition"


class TransientError(FoodyError):
    """Write gave up after repeated contention; safe to retry."""
    status_code = 503
    error = "Service Unavailable"
