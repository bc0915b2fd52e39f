"""
Error reporter shared by the console caches.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector


@dataclass
class ApplicationError:
    """Last error surfaced to the console."""
    message: str
    code: Optional[str] = None
    status: Optional[int] = None
    details: Any = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "message": self.message,
            "code": self.code,
            "status": self.status,
            "details": str(self.details) if self.details is not None else None,
            "timestamp": self.timestamp.isoformat(),
        }


class ErrorReporter:
    """Keeps the most recent error and forwards every report to logs and metrics."""

    def __init__(self, metrics: Optional[MetricsCollector] = None, history_size: int = 20):
        self.logger = get_logger("console.errors")
        self.metrics = metrics
        self.history_size = history_size
        self._last_error: Optional[ApplicationError] = None
        self._history: List[ApplicationError] = []

    @property
    def last_error(self) -> Optional[ApplicationError]:
        return self._last_error

    @property
    def history(self) -> List[ApplicationError]:
        return list(self._history)

    def report_error(self, message: str, details: Any = None) -> ApplicationError:
        """Record ``message``; ``details`` carries the unredacted original error."""
        error = ApplicationError(
            message=message,
            code=getattr(details, "code", None),
            status=getattr(details, "status_code", None),
            details=details,
        )
        self._last_error = error
        self._history.append(error)
        del self._history[:-self.history_size]

        self.logger.error(
            "Console error reported",
            message=message,
            status=error.status,
            error_type=type(details).__name__ if details is not None else None,
            details=str(details) if details is not None else None,
        )
        if self.metrics:
            self.metrics.record_error(type(details).__name__ if details is not None else "validation")
        return error

    def clear_error(self) -> None:
        self._last_error = None
