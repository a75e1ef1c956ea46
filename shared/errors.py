"""
Shared error handling for the collection resource service.

Every per-request failure is an ``AccessLayerException`` carrying the HTTP
status it maps to. ``ConfigurationError`` is the exception to that rule: it
is raised while resources are being registered and is never turned into a
response.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: int
    error: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for per-request failures."""

    status_code: int = 400

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.status_code,
            error=self.code,
            message=self.message,
            details=self.details,
        )


class PermissionDenied(AccessLayerException):
    """The requesting identity may not perform the operation."""

    status_code = 403

    def __init__(self, message: str = "Permission denied.", details: Optional[Dict[str, Any]] = None):
        super().__init__("PERMISSION_DENIED", message, details)


class NotFound(AccessLayerException):
    """The addressed record does not exist."""

    status_code = 404

    def __init__(self, message: str = "Not found.", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class ValidationFailed(AccessLayerException):
    """The store rejected the attributes; message is the validator's, verbatim."""

    status_code = 422

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_FAILED", message, details)


class PersistenceFailure(AccessLayerException):
    """Store-level failure unrelated to validation."""

    status_code = 500

    def __init__(self, message: str = "Persistence failure", details: Optional[Dict[str, Any]] = None):
        super().__init__("PERSISTENCE_FAILURE", message, details)


class ConnectionLimitExceeded(AccessLayerException):
    """Too many live event-stream subscriptions."""

    status_code = 503

    def __init__(self, message: str = "Connection limit exceeded", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONNECTION_LIMIT_EXCEEDED", message, details)


class ConfigurationError(Exception):
    """Resource registration failed; fatal for the registration."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)
