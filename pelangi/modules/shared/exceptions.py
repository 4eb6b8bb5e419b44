"""
Domain exceptions for the gamification modules.

Raised by services when a request breaks a rule: an unknown student, an
out-of-range XP amount or leaderboard limit, a once-only achievement granted
twice. They share `StructuredError` with the infrastructure errors, so the
presentation layer renders both the same way.

An unranked student is a normal outcome (`rank` is None), not an error.
"""

from __future__ import annotations

from typing import Any, Optional

from pelangi.core.exceptions import ErrorSeverity, StructuredError


class PelangiDomainException(StructuredError):
    """Base for rule violations and caller-facing errors."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO


class NotFoundError(PelangiDomainException):
    """
    A referenced record does not exist.

    `error_code` is derived from the resource: "Student" gives
    STUDENT_NOT_FOUND, "Class" gives CLASS_NOT_FOUND.
    """

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        message = f"{resource_type} not found"
        if identifier is not None:
            message = f"{message}: {identifier}"
        super().__init__(
            message,
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class ValidationError(PelangiDomainException):
    """Caller input failed validation; `field` names the offending input."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Validation error for {field}: {message}",
            details={"field": field, "validation_message": message},
            error_code=f"VALIDATION_{field.upper()}",
        )


class InvalidOperationError(PelangiDomainException):
    """The operation is valid in general but not for this student's state."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(
            f"Cannot {operation}: {reason}",
            details={"operation": operation, "reason": reason},
            error_code="INVALID_OPERATION",
        )
