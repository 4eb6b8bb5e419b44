"""
XP & leveling engine.

Pure functions mapping a student's total XP onto a `LevelTable`:

- `resolve_level`          -> the threshold the XP total has reached
- `progress_to_next_level` -> progress block for badges and progress bars
- `xp_to_next_level`       -> remaining XP, or None at max level
- `levels_crossed`         -> thresholds newly reached by a grant

No function here touches the database, configuration or the clock. The
threshold table is always passed in explicitly.
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import Any, Optional

from pelangi.modules.leveling.thresholds import LevelTable, LevelThreshold


@dataclass(frozen=True)
class LevelProgress:
    """
    Progress of an XP total within its current level.

    At max level `next` and `required_xp` are None and `percentage` is 100.
    """

    total_xp: int
    current: LevelThreshold
    next: Optional[LevelThreshold]
    progress_xp: int
    required_xp: Optional[int]
    percentage: float
    is_max_level: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_xp": self.total_xp,
            "level": self.current.level,
            "level_name": self.current.name,
            "next_level": self.next.level if self.next else None,
            "next_level_name": self.next.name if self.next else None,
            "next_level_xp": self.next.min_xp if self.next else None,
            "progress_xp": self.progress_xp,
            "required_xp": self.required_xp,
            "percentage": round(self.percentage, 2),
            "is_max_level": self.is_max_level,
        }


def _index_for(total_xp: int, table: LevelTable) -> int:
    # Highest index whose min_xp <= total_xp; below the first threshold clamps to 0
    return max(bisect_right(table.min_xps, total_xp) - 1, 0)


def resolve_level(total_xp: int, table: LevelTable) -> LevelThreshold:
    """
    Return the threshold with the largest `min_xp` not exceeding `total_xp`.

    Negative totals clamp to the first level; totals past the last threshold
    stay at the last level.

    >>> resolve_level(250, table).name
    'Berkembang'
    """
    return table[_index_for(total_xp, table)]


def progress_to_next_level(total_xp: int, table: LevelTable) -> LevelProgress:
    """
    Compute progress from the current level's base XP toward the next level.

    `percentage = (total_xp - current.min_xp) / (next.min_xp - current.min_xp) * 100`,
    clamped to [0, 100]. At max level no division happens and the result
    reports 100% with no next level.
    """
    index = _index_for(total_xp, table)
    current = table[index]
    progress_xp = max(total_xp - current.min_xp, 0)

    if index == len(table) - 1:
        return LevelProgress(
            total_xp=total_xp,
            current=current,
            next=None,
            progress_xp=progress_xp,
            required_xp=None,
            percentage=100.0,
            is_max_level=True,
        )

    following = table[index + 1]
    required_xp = following.min_xp - current.min_xp
    percentage = min(max(progress_xp / required_xp * 100.0, 0.0), 100.0)

    return LevelProgress(
        total_xp=total_xp,
        current=current,
        next=following,
        progress_xp=progress_xp,
        required_xp=required_xp,
        percentage=percentage,
        is_max_level=False,
    )


def xp_to_next_level(total_xp: int, table: LevelTable) -> Optional[int]:
    index = _index_for(total_xp, table)
    if index == len(table) - 1:
        return None
    return table[index + 1].min_xp - max(total_xp, 0)


def levels_crossed(old_xp: int, new_xp: int, table: LevelTable) -> list[LevelThreshold]:
    """
    Thresholds reached by moving from `old_xp` to `new_xp`, in ascending order.

    Empty when the level does not rise (including penalties).
    """
    old_index = _index_for(old_xp, table)
    new_index = _index_for(new_xp, table)
    if new_index <= old_index:
        return []
    return list(table[old_index + 1 : new_index + 1])
