"""
Custom Exceptions - Application-specific error classes.

Each exception carries an HTTP status code and a stable error code that the
API layer renders as a JSON body. The error codes mirror the kinds a client
is expected to branch on: UNAUTHORIZED, FORBIDDEN, NOT_FOUND, BAD_REQUEST.
"""
from typing import Optional


class CoachException(Exception):
    """
    Base exception for all application errors.

    Subclass this for specific error types.
    """
    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        """Convert to error response dict."""
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details
        }


class UnauthorizedError(CoachException):
    """Raised when a procedure needs a signed-in user and there is none."""
    status_code = 401
    error_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class ForbiddenError(CoachException):
    """Raised when the caller's role does not allow the operation."""
    status_code = 403
    error_code = "FORBIDDEN"

    def __init__(self, message: str = "Insufficient permissions"):
        super().__init__(message)


class NotFoundError(CoachException):
    """Raised when a looked-up record does not exist."""
    status_code = 404
    error_code = "NOT_FOUND"

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class BadRequestError(CoachException):
    """Raised when input is well-formed but not acceptable."""
    status_code = 400
    error_code = "BAD_REQUEST"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message, details=f"field={field}" if field else None)
        self.field = field


class QuotaFormatError(BadRequestError):
    """Raised when a stored quota descriptor cannot be parsed."""

    def __init__(self, message: str):
        super().__init__(f"Invalid quota: {message}", field="quota")


class UnknownProviderError(BadRequestError):
    """Raised when a model string names a provider that is not registered."""

    def __init__(self, provider: str):
        super().__init__(f"Unknown LLM provider: {provider}", field="model")
        self.provider = provider


class RateLimitExceeded(CoachException):
    """Raised when a client exceeds the rate limit."""
    status_code = 429
    error_code = "RATE_LIMITED"

    def __init__(self, retry_after: int = 60, message: Optional[str] = None):
        super().__init__(
            message=message or f"Rate limit exceeded. Please wait {retry_after} seconds.",
            details=f"retry_after={retry_after}"
        )
        self.retry_after = retry_after


class ConfigurationError(CoachException):
    """Raised when a subsystem is used without its required configuration."""
    status_code = 503
    error_code = "NOT_CONFIGURED"

    def __init__(self, message: str):
        super().__init__(message)


class DatabaseError(CoachException):
    """Raised when database operations fail."""
    status_code = 503
    error_code = "DATABASE_ERROR"

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message)
