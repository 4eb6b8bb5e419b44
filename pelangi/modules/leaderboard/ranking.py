"""
Leaderboard ranking.

Pure ordering and rank assignment over an already-loaded snapshot of
students. Nothing here reads the database or caches a rank: every call ranks
the entries it is given.

Tie handling
------------
`RankingMode.SEQUENTIAL` (default) gives every entry its 1-based position in
a stable sort by XP descending, so equal XP still yields consecutive ranks
in input order: XP [500, 500, 300] -> ranks [1, 2, 3].

`RankingMode.COMPETITION` shares a rank between equal XP and skips after
the tie: XP [500, 500, 300] -> ranks [1, 1, 3].
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, replace
from typing import Any, Iterable, Optional

__all__ = ["LeaderboardEntry", "RankingMode", "find_rank", "rank"]


class RankingMode(str, enum.Enum):
    SEQUENTIAL = "sequential"
    COMPETITION = "competition"

    @classmethod
    def from_string(cls, value: str) -> RankingMode:
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(m.value for m in cls)
            raise ValueError(f"Unknown ranking mode '{value}'. Valid: {valid}") from None


@dataclass(frozen=True)
class LeaderboardEntry:
    """
    One student's row on a leaderboard.

    `rank` is 0 until the entry has been through `rank()`, then 1-based.
    """

    student_id: int
    full_name: str
    class_name: str
    total_xp: int
    level: int
    level_name: str
    badge_count: int = 0
    rank: int = 0
    student_number: Optional[str] = None
    attendance_streak: int = 0
    assignment_streak: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "rank": self.rank,
            "student_id": self.student_id,
            "student_number": self.student_number,
            "full_name": self.full_name,
            "class_name": self.class_name,
            "total_xp": self.total_xp,
            "level": self.level,
            "level_name": self.level_name,
            "badge_count": self.badge_count,
            "attendance_streak": self.attendance_streak,
            "assignment_streak": self.assignment_streak,
        }


def rank(
    entries: Iterable[LeaderboardEntry],
    class_name: Optional[str] = None,
    mode: RankingMode = RankingMode.SEQUENTIAL,
    limit: Optional[int] = None,
) -> list[LeaderboardEntry]:
    """
    Order entries by `total_xp` descending and assign ranks.

    Args:
        entries: Snapshot to rank; never mutated
        class_name: When given, only entries with this class label are ranked
        mode: Tie handling, see module docstring
        limit: Truncate the ranked list to the top `limit` entries

    Returns:
        New `LeaderboardEntry` objects with `rank` set.
    """
    scoped = [e for e in entries if class_name is None or e.class_name == class_name]
    # sorted() is stable, so equal XP keeps input order
    ordered = sorted(scoped, key=lambda e: e.total_xp, reverse=True)

    ranked: list[LeaderboardEntry] = []
    for position, entry in enumerate(ordered, start=1):
        if (
            mode is RankingMode.COMPETITION
            and ranked
            and ranked[-1].total_xp == entry.total_xp
        ):
            assigned = ranked[-1].rank
        else:
            assigned = position
        ranked.append(replace(entry, rank=assigned))

    if limit is not None:
        return ranked[:limit]
    return ranked


def find_rank(ranked: Iterable[LeaderboardEntry], student_id: int) -> Optional[int]:
    """Rank of `student_id` in a ranked sequence, or None when unranked."""
    for entry in ranked:
        if entry.student_id == student_id:
            return entry.rank
    return None
