"""
XP rules for grading and attendance events.

Purpose
-------
Turn classroom events into XP deltas, streak updates and achievement
candidates. Every function is pure; `StudentXpService` applies the results
inside one locked transaction.

Rules
-----
Grades:
- XP = floor(score * 100 / max_score * xp_per_grade)
- Assignment streak +1, `last_assignment` stamped
- PERFECT_SCORE (+50) on a 100% grade
- HIGH_ACHIEVER (+100) once 5 grades at >= 90% fall within 30 days

Attendance:
- PRESENT: +bonus, streak +1, `last_attendance` stamped
- LATE: +floor(bonus / 2), streak +1, `last_attendance` stamped
- ABSENT: -penalty, streak reset to 0
- EXCUSED: no XP, streak unchanged
- PERFECT_ATTENDANCE_30 (+200) at a streak of 30 or more
- WEEKLY_PERFECT_<n> (+50 * n) whenever the streak is a multiple of 7

Each achievement type is granted at most once per student; filtering out
already-held types is the caller's job.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from pelangi.core.exceptions import ConfigurationError
from pelangi.core.validation.input_validator import InputValidator
from pelangi.database.models.enums import AchievementType, AttendanceStatus

if TYPE_CHECKING:
    from pelangi.core.config.manager import ConfigManager

__all__ = [
    "AchievementGrant",
    "AttendanceOutcome",
    "AttendanceStatus",
    "GradeOutcome",
    "XpSettings",
    "attendance_achievements",
    "attendance_outcome",
    "grade_achievements",
    "grade_outcome",
    "is_once_only",
    "xp_for_grade",
]

HIGH_SCORE_PERCENTAGE = 90.0
HIGH_ACHIEVER_COUNT = 5
HIGH_ACHIEVER_WINDOW_DAYS = 30
PERFECT_ATTENDANCE_STREAK = 30
WEEKLY_STREAK = 7


# ============================================================================
# Settings
# ============================================================================


@dataclass(frozen=True)
class XpSettings:
    """
    Tunables for event-driven XP.

    Loaded from `gamification.xp` by `from_config`.
    """

    xp_per_grade: int = 1
    xp_attendance_bonus: int = 10
    xp_absent_penalty: int = 5

    def __post_init__(self) -> None:
        for name in ("xp_per_grade", "xp_attendance_bonus", "xp_absent_penalty"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ConfigurationError(
                    f"gamification.xp.{name}",
                    f"must be a non-negative integer, got {value!r}",
                )

    @classmethod
    def from_config(cls, config_manager: type[ConfigManager]) -> XpSettings:
        return cls(
            xp_per_grade=config_manager.get("gamification.xp.per_grade", 1),
            xp_attendance_bonus=config_manager.get("gamification.xp.attendance_bonus", 10),
            xp_absent_penalty=config_manager.get("gamification.xp.absent_penalty", 5),
        )


# ============================================================================
# Result types
# ============================================================================


@dataclass(frozen=True)
class AchievementGrant:
    """An achievement a student qualifies for, with the XP it carries."""

    type: str
    title: str
    description: str
    xp_reward: int
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GradeOutcome:
    xp: int
    percentage: float


@dataclass(frozen=True)
class AttendanceOutcome:
    """
    Effect of one attendance record on a student's XP row.

    `streak_action` is "increment", "reset" or "keep".
    """

    status: AttendanceStatus
    xp: int
    streak_action: str
    stamp_attendance: bool

    def apply_streak(self, current_streak: int) -> int:
        if self.streak_action == "increment":
            return current_streak + 1
        if self.streak_action == "reset":
            return 0
        return current_streak


# ============================================================================
# Grades
# ============================================================================


def grade_outcome(score: float, max_score: float, settings: XpSettings) -> GradeOutcome:
    score, max_score = InputValidator.validate_score(score, max_score)
    percentage = score * 100 / max_score
    return GradeOutcome(
        xp=math.floor(percentage * settings.xp_per_grade),
        percentage=percentage,
    )


def xp_for_grade(score: float, max_score: float, settings: XpSettings) -> int:
    """
    XP for one grade: floor(score / max_score * 100 * xp_per_grade).

    Raises:
        ValidationError: If max_score <= 0, score < 0 or score > max_score
    """
    return grade_outcome(score, max_score, settings).xp


def grade_achievements(
    score: float,
    max_score: float,
    recent_high_scores: int = 0,
) -> list[AchievementGrant]:
    """
    Achievements a grade qualifies for.

    Args:
        score: Points earned
        max_score: Points possible
        recent_high_scores: Grades at >= 90% in the trailing 30 days,
            including this one
    """
    score, max_score = InputValidator.validate_score(score, max_score)
    percentage = score * 100 / max_score
    grants: list[AchievementGrant] = []

    if percentage >= 100:
        grants.append(
            AchievementGrant(
                type=AchievementType.PERFECT_SCORE.value,
                title="Nilai Sempurna!",
                description="Mendapat nilai 100 untuk pertama kali",
                xp_reward=50,
                meta={"score": score, "max_score": max_score},
            )
        )

    if percentage >= HIGH_SCORE_PERCENTAGE and recent_high_scores >= HIGH_ACHIEVER_COUNT:
        grants.append(
            AchievementGrant(
                type=AchievementType.HIGH_ACHIEVER.value,
                title="Prestasi Tinggi!",
                description=(
                    f"Mendapat nilai 90+ sebanyak {HIGH_ACHIEVER_COUNT} kali "
                    f"dalam {HIGH_ACHIEVER_WINDOW_DAYS} hari"
                ),
                xp_reward=100,
                meta={"count": recent_high_scores},
            )
        )

    return grants


# ============================================================================
# Attendance
# ============================================================================


def attendance_outcome(
    status: AttendanceStatus | str,
    settings: XpSettings,
) -> AttendanceOutcome:
    """
    XP and streak effect of one attendance record.

    >>> attendance_outcome("LATE", XpSettings()).xp
    5
    """
    if not isinstance(status, AttendanceStatus):
        status = AttendanceStatus(
            InputValidator.validate_choice(
                status, "status", [s.value for s in AttendanceStatus]
            )
        )

    if status is AttendanceStatus.PRESENT:
        return AttendanceOutcome(status, settings.xp_attendance_bonus, "increment", True)
    if status is AttendanceStatus.LATE:
        return AttendanceOutcome(status, settings.xp_attendance_bonus // 2, "increment", True)
    if status is AttendanceStatus.ABSENT:
        return AttendanceOutcome(status, -settings.xp_absent_penalty, "reset", False)
    return AttendanceOutcome(status, 0, "keep", False)


def weekly_achievement_type(weeks: int) -> str:
    return f"{AchievementType.WEEKLY_PERFECT.value}_{weeks}"


def attendance_achievements(streak: int) -> list[AchievementGrant]:
    """Achievements an attendance streak qualifies for."""
    grants: list[AchievementGrant] = []

    if streak >= PERFECT_ATTENDANCE_STREAK:
        grants.append(
            AchievementGrant(
                type=AchievementType.PERFECT_ATTENDANCE_30.value,
                title="Kehadiran Sempurna!",
                description="Hadir berturut-turut selama 30 hari",
                xp_reward=200,
                meta={"streak": streak},
            )
        )

    if streak >= WEEKLY_STREAK and streak % WEEKLY_STREAK == 0:
        weeks = streak // WEEKLY_STREAK
        grants.append(
            AchievementGrant(
                type=weekly_achievement_type(weeks),
                title=f"Kehadiran Mingguan {weeks}!",
                description=f"Hadir sempurna selama {weeks} minggu berturut-turut",
                xp_reward=50 * weeks,
                meta={"weeks": weeks, "streak": streak},
            )
        )

    return grants


def filter_new(
    grants: list[AchievementGrant],
    held_types: set[str],
) -> list[AchievementGrant]:
    """Drop grants whose type the student already holds."""
    return [g for g in grants if g.type not in held_types]


def total_reward(grants: list[AchievementGrant], base: Optional[int] = 0) -> int:
    return (base or 0) + sum(g.xp_reward for g in grants)


def is_once_only(achievement_type: str) -> bool:
    """True for the automatically granted types, which a student holds at most once."""
    if achievement_type.startswith(f"{AchievementType.WEEKLY_PERFECT.value}_"):
        return True
    return achievement_type in {
        AchievementType.PERFECT_SCORE.value,
        AchievementType.HIGH_ACHIEVER.value,
        AchievementType.PERFECT_ATTENDANCE_30.value,
    }
