"""Application error taxonomy.

Services raise these; the exception handlers registered in ``src.main`` turn
them into the JSON error body with the request's correlation ID.
"""

from typing import Any, Optional


class AppError(Exception):
    """Base class for errors that map onto an HTTP response.

    Attributes:
        status_code: HTTP status to return
        code: Stable machine-readable error code
        message: Human-readable message
        details: Optional structured details (e.g. validation issues)
        expose: Whether the message may be shown to the caller in production
    """

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    default_message: str = "Internal server error"
    expose: bool = False

    def __init__(self, message: Optional[str] = None, details: Optional[Any] = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class UnauthenticatedError(AppError):
    """Missing, invalid or expired credential, or a failed password check."""

    status_code = 401
    code = "UNAUTHENTICATED"
    default_message = "Authentication required"
    expose = True


class ForbiddenError(AppError):
    """Valid identity without the required role."""

    status_code = 403
    code = "FORBIDDEN"
    default_message = "Access denied"
    expose = True


class ValidationFailedError(AppError):
    """Malformed input, rejected before any state mutation."""

    status_code = 422
    code = "VALIDATION_ERROR"
    default_message = "Validation failed"
    expose = True


class ConflictError(AppError):
    """Duplicate unique identity."""

    status_code = 409
    code = "CONFLICT"
    default_message = "Conflict"
    expose = True


class InternalError(AppError):
    """Unexpected failure. The message is never shown in production."""
