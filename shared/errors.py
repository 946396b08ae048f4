"""
Shared error handling for the Runtime Metrics services.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class MetricsServiceException(Exception):
    """Base exception for Runtime Metrics services."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(MetricsServiceException):
    """Malformed body, empty id, bad numeric value or missing value field."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class AuthenticationError(MetricsServiceException):
    """Signature missing, not hex or not matching."""

    status_code = 400

    def __init__(self, message: str = "unknown or bad hash value", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class NotFoundError(MetricsServiceException):
    """Unknown metric name, or kind mismatch on query."""

    status_code = 404

    def __init__(self, message: str = "metric not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class UnsupportedKindError(MetricsServiceException):
    """Metric kind is neither gauge nor counter."""

    status_code = 501

    def __init__(self, message: str = "unknown data type", details: Optional[Dict[str, Any]] = None):
        super().__init__("UNSUPPORTED_KIND", message, details)


class StorageError(MetricsServiceException):
    """Backend operation failed."""

    status_code = 500

    def __init__(self, message: str = "Storage error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_ERROR", message, details)


class StorageConnectionError(StorageError):
    """Backend has no live connection."""

    def __init__(self, message: str = "no database connection", details: Optional[Dict[str, Any]] = None):
        MetricsServiceException.__init__(self, "NO_CONNECTION", message, details)
