"""
Checks for values handed to the gamification services by callers.

Each helper returns the cleaned value (ints as int, strings stripped) or
raises `ValidationError` naming the field. Rules about a student's state
(already holds this achievement, no XP row yet) belong to the services, not
here.
"""

from __future__ import annotations

from typing import Any, NoReturn, Optional, Sequence

from pelangi.core.logging.logger import get_logger
from pelangi.modules.shared.exceptions import ValidationError

logger = get_logger(__name__)

# ids and XP totals are Postgres INTEGER columns
MAX_ID = 2**31 - 1
MAX_XP = 2**31 - 1


def _reject(field_name: str, value: Any, message: str) -> NoReturn:
    logger.debug(
        "Rejected %s", field_name, extra={"field_name": field_name, "raw_value": repr(value)}
    )
    raise ValidationError(field_name, message)


def _to_float(value: Any, field_name: str) -> float:
    if isinstance(value, bool):
        _reject(field_name, value, "Must be a number, got a boolean")
    try:
        return float(value)
    except (TypeError, ValueError):
        _reject(field_name, value, f"Must be a number, got {value!r}")


class InputValidator:
    """Namespace of static validators."""

    @staticmethod
    def validate_integer(
        value: Any,
        field_name: str,
        min_value: Optional[int] = None,
        max_value: Optional[int] = None,
        allow_zero: bool = True,
    ) -> int:
        """
        Whole number from an int, an integral float or a numeric string.

        `True`, `2.5` and `"abc"` are rejected rather than coerced.
        """
        if value is None:
            _reject(field_name, value, "Value is required")
        if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
            _reject(field_name, value, f"Must be a whole number, got {value!r}")
        try:
            number = int(value)
        except (TypeError, ValueError):
            _reject(field_name, value, f"Must be a whole number, got {value!r}")

        if number == 0 and not allow_zero:
            _reject(field_name, number, "Cannot be zero")
        if min_value is not None and number < min_value:
            _reject(field_name, number, f"Must be at least {min_value}, got {number}")
        if max_value is not None and number > max_value:
            _reject(field_name, number, f"Cannot exceed {max_value}, got {number}")
        return number

    @staticmethod
    def validate_positive_integer(
        value: Any, field_name: str, max_value: Optional[int] = None
    ) -> int:
        return InputValidator.validate_integer(value, field_name, 1, max_value, allow_zero=False)

    @staticmethod
    def validate_non_negative_integer(
        value: Any, field_name: str, max_value: Optional[int] = None
    ) -> int:
        return InputValidator.validate_integer(value, field_name, 0, max_value)

    @staticmethod
    def validate_student_id(value: Any, field_name: str = "student_id") -> int:
        return InputValidator.validate_positive_integer(value, field_name, MAX_ID)

    @staticmethod
    def validate_class_id(value: Any, field_name: str = "class_id") -> int:
        return InputValidator.validate_positive_integer(value, field_name, MAX_ID)

    @staticmethod
    def validate_xp_amount(
        value: Any, field_name: str = "amount", max_abs: Optional[int] = None
    ) -> int:
        """
        Signed XP delta. Zero is refused; a negative amount is a penalty.

        The magnitude is capped at `max_abs`, or at MAX_XP when no cap is
        configured.
        """
        amount = InputValidator.validate_integer(value, field_name, allow_zero=False)
        if max_abs is None or max_abs > MAX_XP:
            max_abs = MAX_XP
        if abs(amount) > max_abs:
            _reject(field_name, amount, f"Magnitude cannot exceed {max_abs}, got {amount}")
        return amount

    @staticmethod
    def validate_score(score: Any, max_score: Any) -> tuple[float, float]:
        """`(score, max_score)` as floats with 0 <= score <= max_score and max_score > 0."""
        score_value = _to_float(score, "score")
        max_value = _to_float(max_score, "max_score")
        if max_value <= 0:
            _reject("max_score", max_value, "Must be greater than zero")
        if not 0 <= score_value <= max_value:
            _reject("score", score_value, f"Must be between 0 and {max_value}, got {score_value}")
        return score_value, max_value

    @staticmethod
    def validate_string(
        value: Any,
        field_name: str,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None,
    ) -> str:
        if value is None:
            _reject(field_name, value, "Value is required")
        text = str(value).strip()
        if min_length is not None and len(text) < min_length:
            _reject(field_name, text, f"Must be at least {min_length} characters")
        if max_length is not None and len(text) > max_length:
            _reject(field_name, text, f"Cannot exceed {max_length} characters")
        return text

    @staticmethod
    def validate_choice(value: Any, field_name: str, valid_choices: Sequence[str]) -> str:
        """Case-insensitive match; returns the spelling used in `valid_choices`."""
        wanted = "" if value is None else str(value).strip().lower()
        for choice in valid_choices:
            if choice.lower() == wanted:
                return choice
        _reject(field_name, value, f"Must be one of: {', '.join(valid_choices)}")
