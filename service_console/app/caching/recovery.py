"""
Failure classification for keyed cache loads.

Three kinds of failure are distinguished:

- validation: the caller passed an unusable key; nothing was fetched.
- not found: the backend gave an authoritative 4xx answer (or a transport
  raised NotFoundError); cached data for the key is stale and gets cleared.
- transient: 5xx, network trouble or anything unexpected; the last good
  data stays visible and the user sees a fixed fallback message instead of
  raw server output.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from shared.errors import (
    ConsoleException,
    HttpStatusError,
    NotFoundError,
    TransientError,
    ValidationError,
)


class ErrorKind(str, Enum):
    """Classified failure kinds."""
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    TRANSIENT = "transient"


@dataclass(frozen=True)
class ClassifiedError:
    """A failure together with the message that may be shown to users."""
    kind: ErrorKind
    message: str
    original: BaseException
    status_code: Optional[int] = None

    @property
    def retains_data(self) -> bool:
        """Whether last-good data may survive this failure."""
        return self.kind == ErrorKind.TRANSIENT

    def to_exception(self) -> ConsoleException:
        """Build the matching console exception (useful for API responses)."""
        details = {"status_code": self.status_code} if self.status_code is not None else {}
        if self.kind == ErrorKind.VALIDATION:
            return ValidationError(self.message, details)
        if self.kind == ErrorKind.NOT_FOUND:
            return NotFoundError(self.message, details)
        return TransientError(self.message, details)


def _trimmed(value: Any) -> Optional[str]:
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            return stripped
    return None


def extract_payload_message(body: Any) -> Optional[str]:
    """Pull a human readable message out of an error response body.

    Plain-text bodies are used as-is; JSON bodies are checked for ``error``
    then ``message``. Blank values are ignored.
    """
    text = _trimmed(body)
    if text:
        return text

    if isinstance(body, dict):
        for field_name in ("error", "message"):
            text = _trimmed(body.get(field_name))
            if text:
                return text

    return None


class ErrorRecoveryPolicy:
    """Classifies load failures for one cache operation."""

    def __init__(self, fallback_message: str, not_found_message: Optional[str] = None):
        self.fallback_message = fallback_message
        self.not_found_message = not_found_message or fallback_message

    def classify(self, error: BaseException) -> ClassifiedError:
        """Map an exception raised while loading onto an ErrorKind."""
        if isinstance(error, ValidationError):
            return ClassifiedError(ErrorKind.VALIDATION, error.message, error)

        if isinstance(error, NotFoundError):
            return ClassifiedError(ErrorKind.NOT_FOUND, error.message or self.not_found_message, error, status_code=404)

        status_code = getattr(error, "status_code", None)
        if isinstance(error, HttpStatusError) and 400 <= error.status_code < 500:
            message = extract_payload_message(error.body)
            if message is None and error.reason and error.reason != "OK":
                message = error.reason
            return ClassifiedError(
                ErrorKind.NOT_FOUND,
                message or self.not_found_message,
                error,
                status_code=error.status_code,
            )

        # 5xx, status 0, connection errors, open circuit, or a bug in a transform
        return ClassifiedError(
            ErrorKind.TRANSIENT,
            self.fallback_message,
            error,
            status_code=status_code if isinstance(status_code, int) else None,
        )
