"""
Leaderboard Service
===================

Purpose
-------
Load a consistent snapshot of active students with their XP state, class
label and achievement count, and rank it with the pure ranker.

Domain
------
- Global leaderboard (all active students)
- Class leaderboard (active students of one class)
- Rank lookup for one student, always recomputed from current XP

Design Notes
------------
- One SELECT per request inside `DatabaseService.get_session()`; no rank is
  ever stored
- Students without an XP row rank with 0 XP at the first level
- Level and level name are resolved from `total_xp` with the level table in
  force, not read from the stored columns
- Input order to the ranker is student id ascending, so ties under
  sequential ranking resolve by enrolment order
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, OperationalError

from pelangi.core.database.service import DatabaseService
from pelangi.core.exceptions import DatabaseError
from pelangi.core.validation.input_validator import InputValidator
from pelangi.database.models import (
    SchoolClass,
    Student,
    StudentAchievement,
    StudentStatus,
    StudentXp,
)
from pelangi.modules.leaderboard.ranking import (
    LeaderboardEntry,
    RankingMode,
    find_rank,
    rank,
)
from pelangi.modules.leveling.engine import resolve_level
from pelangi.modules.leveling.thresholds import LevelTable, LevelTableSource
from pelangi.modules.shared.base_service import BaseService
from pelangi.modules.shared.exceptions import NotFoundError

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from pelangi.core.config.manager import ConfigManager
    from pelangi.core.event.bus import EventBus

NO_CLASS_LABEL = "No Class"


class LeaderboardService(BaseService):
    """
    Ranked views of student XP.

    Public Methods
    --------------
    - get_global_leaderboard() -> Top active students across all classes
    - get_class_leaderboard() -> Top active students of one class
    - get_student_rank() -> Current rank of one student
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        level_table: Optional[LevelTable] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._level_source = LevelTableSource(config_manager, level_table)
        self._level_source.current()

    # ========================================================================
    # Config helpers
    # ========================================================================

    def _ranking_mode(self) -> RankingMode:
        return RankingMode.from_string(
            self.get_config("gamification.leaderboard.ranking_mode", "sequential")
        )

    def _validate_limit(self, limit: Any, max_key: str, max_default: int) -> int:
        return InputValidator.validate_positive_integer(
            limit,
            "limit",
            max_value=int(self.get_config(max_key, max_default)),
        )

    # ========================================================================
    # Snapshot loading
    # ========================================================================

    def _entry_from_row(self, row: Any, levels: LevelTable) -> LeaderboardEntry:
        if row.class_name is None:
            class_label = NO_CLASS_LABEL
        elif row.subject_name:
            class_label = f"{row.class_name} - {row.subject_name}"
        else:
            class_label = row.class_name

        total_xp = row.total_xp or 0
        # stored level columns may predate a level table change
        resolved = resolve_level(total_xp, levels)
        return LeaderboardEntry(
            student_id=row.student_id,
            student_number=row.student_number,
            full_name=row.full_name,
            class_name=class_label,
            total_xp=total_xp,
            level=resolved.level,
            level_name=resolved.name,
            badge_count=row.badge_count or 0,
            attendance_streak=row.attendance_streak or 0,
            assignment_streak=row.assignment_streak or 0,
        )

    async def _load_entries(
        self,
        session: AsyncSession,
        class_id: Optional[int] = None,
    ) -> List[LeaderboardEntry]:
        badge_count = (
            select(func.count(StudentAchievement.id))
            .where(StudentAchievement.student_id == Student.id)
            .correlate(Student)
            .scalar_subquery()
        )

        stmt = (
            select(
                Student.id.label("student_id"),
                Student.student_number,
                Student.full_name,
                SchoolClass.name.label("class_name"),
                SchoolClass.subject_name,
                StudentXp.total_xp,
                StudentXp.attendance_streak,
                StudentXp.assignment_streak,
                badge_count.label("badge_count"),
            )
            .outerjoin(StudentXp, StudentXp.student_id == Student.id)
            .outerjoin(SchoolClass, SchoolClass.id == Student.class_id)
            .where(Student.status == StudentStatus.ACTIVE)
            .order_by(Student.id)
        )
        if class_id is not None:
            stmt = stmt.where(Student.class_id == class_id)

        result = await session.execute(stmt)
        levels = self._level_source.current()
        return [self._entry_from_row(row, levels) for row in result.all()]

    async def _ranked_snapshot(
        self, class_id: Optional[int] = None
    ) -> List[LeaderboardEntry]:
        try:
            async with DatabaseService.get_session() as session:
                if class_id is not None and await session.get(SchoolClass, class_id) is None:
                    raise NotFoundError("Class", class_id)
                entries = await self._load_entries(session, class_id)
        except (OperationalError, DBAPIError) as e:
            self.log_error("load_leaderboard", e, class_id=class_id)
            raise DatabaseError("load_leaderboard", e) from e

        return rank(entries, mode=self._ranking_mode())

    # ========================================================================
    # PUBLIC API
    # ========================================================================

    async def get_global_leaderboard(
        self, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Top `limit` active students across all classes.

        Raises:
            ValidationError: If limit is outside 1..max_global_limit
            DatabaseError: If the snapshot cannot be loaded
        """
        if limit is None:
            limit = self.get_config("gamification.leaderboard.default_global_limit", 50)
        limit = self._validate_limit(
            limit, "gamification.leaderboard.max_global_limit", 500
        )
        self.log_operation("get_global_leaderboard", limit=limit)

        ranked = await self._ranked_snapshot()
        return [entry.to_dict() for entry in ranked[:limit]]

    async def get_class_leaderboard(
        self, class_id: int, limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Top `limit` active students of one class.

        Raises:
            ValidationError: If class_id or limit is invalid
            NotFoundError: If the class does not exist
            DatabaseError: If the snapshot cannot be loaded
        """
        class_id = InputValidator.validate_class_id(class_id)
        if limit is None:
            limit = self.get_config("gamification.leaderboard.default_class_limit", 20)
        limit = self._validate_limit(
            limit, "gamification.leaderboard.max_class_limit", 100
        )
        self.log_operation("get_class_leaderboard", class_id=class_id, limit=limit)

        ranked = await self._ranked_snapshot(class_id)
        return [entry.to_dict() for entry in ranked[:limit]]

    async def get_student_rank(
        self, student_id: int, class_id: Optional[int] = None
    ) -> Dict[str, Any]:
        """
        Current rank of a student, globally or within one class.

        `rank` is None when the student is not on the board (inactive, or
        outside the requested class). That is a normal outcome, not an error.
        """
        student_id = InputValidator.validate_student_id(student_id)
        if class_id is not None:
            class_id = InputValidator.validate_class_id(class_id)

        self.log_operation("get_student_rank", student_id=student_id, class_id=class_id)

        ranked = await self._ranked_snapshot(class_id)
        return {
            "student_id": student_id,
            "rank": find_rank(ranked, student_id),
            "scope": "global" if class_id is None else f"class:{class_id}",
            "total_ranked": len(ranked),
        }
