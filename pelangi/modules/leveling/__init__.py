"""
XP & leveling: threshold tables, the pure level engine and XP rules.
"""

from .engine import (
    LevelProgress,
    levels_crossed,
    progress_to_next_level,
    resolve_level,
    xp_to_next_level,
)
from .thresholds import (
    DEFAULT_LEVELS,
    LevelTable,
    LevelTableSource,
    LevelThreshold,
    load_level_table,
)
from .xp_rules import (
    AchievementGrant,
    AttendanceOutcome,
    XpSettings,
    attendance_achievements,
    attendance_outcome,
    grade_achievements,
    xp_for_grade,
)

__all__ = [
    "LevelProgress",
    "LevelTable",
    "LevelThreshold",
    "LevelTableSource",
    "DEFAULT_LEVELS",
    "load_level_table",
    "resolve_level",
    "progress_to_next_level",
    "xp_to_next_level",
    "levels_crossed",
    "XpSettings",
    "AchievementGrant",
    "AttendanceOutcome",
    "xp_for_grade",
    "attendance_outcome",
    "grade_achievements",
    "attendance_achievements",
]
