"""
Infrastructure exceptions for the Pelangi gamification core.

Two hierarchies share one shape (`StructuredError`):

- `PelangiInfrastructureException` (here): the database, configuration and
  event bus failing. These need an engineer.
- `PelangiDomainException` (`pelangi.modules.shared.exceptions`): a caller
  asking for something the rules forbid. These need a better request.

Every error carries a stable `error_code`, a `details` dict for structured
logs, an `ErrorSeverity` and an `is_retryable` hint. `DatabaseError` is
always retryable: an XP grant that hit a dropped connection must be retried,
never silently lost.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    """How loudly an error should be logged and whether it pages anyone."""

    DEBUG = "debug"
    INFO = "info"  # caller mistakes: unknown student, bad limit
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"  # service cannot run as configured


class StructuredError(Exception):
    """
    Mixin-style base holding the fields both hierarchies expose.

    Subclasses set `DEFAULT_SEVERITY` / `DEFAULT_RETRYABLE` and pass an
    `error_code`; without one the class name is used.
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})
        self.severity = severity if severity is not None else self.DEFAULT_SEVERITY
        self.is_retryable = (
            self.DEFAULT_RETRYABLE if is_retryable is None else is_retryable
        )
        self.error_code = error_code or type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        """Flat form for structured logs and API error bodies."""
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        if not self.details:
            return f"[{self.error_code}] {self.message}"
        return f"[{self.error_code}] {self.message} | Details: {self.details}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(error_code={self.error_code!r}, "
            f"message={self.message!r}, severity={self.severity.value!r}, "
            f"is_retryable={self.is_retryable!r})"
        )


class PelangiInfrastructureException(StructuredError):
    """Base for failures of the infrastructure under the gamification core."""


def _describe(error: Exception) -> Dict[str, str]:
    return {"error": str(error), "error_type": type(error).__name__}


class ConfigurationError(PelangiInfrastructureException):
    """
    A configuration key is missing or holds an unusable value.

    Raised at startup for a malformed level table, so a deployment never
    serves grants against inconsistent thresholds.
    """

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details={"config_key": config_key, "message": message},
            error_code="CONFIG_ERROR",
        )


class DatabaseError(PelangiInfrastructureException):
    """A database operation failed; the caller should retry it."""

    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, original_error: Exception) -> None:
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"Database error during {operation}: {original_error}",
            details={"operation": operation, **_describe(original_error)},
            error_code="DATABASE_ERROR",
        )


class EventBusError(PelangiInfrastructureException):
    """The event bus refused or failed to deliver an event."""

    DEFAULT_RETRYABLE = True

    def __init__(
        self, operation: str, event_type: str, original_error: Exception
    ) -> None:
        self.operation = operation
        self.event_type = event_type
        self.original_error = original_error
        super().__init__(
            f"Event bus error during {operation} for '{event_type}': {original_error}",
            details={
                "operation": operation,
                "event_type": event_type,
                **_describe(original_error),
            },
            error_code="EVENT_BUS_ERROR",
        )


# ============================================================================
# Handling helpers
# ============================================================================


def is_transient_error(exc: Exception) -> bool:
    """True when retrying the failed operation can succeed."""
    return isinstance(exc, PelangiInfrastructureException) and exc.is_retryable


def get_error_severity(exc: Exception) -> ErrorSeverity:
    """Severity of a Pelangi error; anything foreign counts as ERROR."""
    if isinstance(exc, StructuredError):
        return exc.severity
    return ErrorSeverity.ERROR


def should_alert(exc: Exception) -> bool:
    return get_error_severity(exc) in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
