"""
Shared error handling for the Splitledger Console.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class ConsoleException(Exception):
    """Base exception for console services."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(ConsoleException):
    """Caller supplied an unusable value; raised before any I/O."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NotFoundError(ConsoleException):
    """Backend answered with an authoritative client error (4xx)."""

    def __init__(self, message: str = "Resource not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class TransientError(ConsoleException):
    """Server-side (5xx) or network failure; last-good data may be kept."""

    def __init__(self, message: str = "Service temporarily unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("TRANSIENT_ERROR", message, details)


class ExternalServiceError(ConsoleException):
    """External service errors."""

    def __init__(self, service: str, message: str = "External service error", details: Optional[Dict[str, Any]] = None):
        super().__init__("EXTERNAL_SERVICE_ERROR", f"{service}: {message}", details)


class HttpStatusError(ExternalServiceError):
    """Backend responded with a non-2xx status."""

    def __init__(self, status_code: int, body: Any = None, reason: str = "", url: str = ""):
        self.status_code = status_code
        self.body = body
        self.reason = reason
        self.url = url
        super().__init__(
            "backend",
            f"HTTP {status_code}" + (f" {reason}" if reason else ""),
            details={"status_code": status_code, "url": url}
        )


class BackendServerError(HttpStatusError):
    """Backend responded with a 5xx status."""
    pass


class NetworkError(ExternalServiceError):
    """Backend could not be reached at all (connection, DNS, timeout)."""

    status_code = 0

    def __init__(self, message: str = "Network failure", url: str = ""):
        self.url = url
        super().__init__("backend", message, details={"url": url})
