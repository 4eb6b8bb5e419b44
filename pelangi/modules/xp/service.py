"""
Student XP Service
==================

Purpose
-------
Grant XP to students and keep their level in step with their XP total.
Every write path is a single atomic transaction with the student's
`student_xp` row locked, so concurrent grants to one student serialise
instead of losing updates.

Domain
------
- Direct grants and penalties (`award_xp`)
- Grade entry: grade XP, assignment streak, score achievements
- Attendance: attendance XP, attendance streak, streak achievements
- Manual achievements (teacher rewards) carrying bonus XP
- Challenge completion and finalization
- Read model with level progress
- Level recalculation after the level table changes

Design Notes
------------
- `total_xp` is floored at 0; a penalty larger than the balance empties it
- `level` / `level_name` are rewritten from `total_xp` in the same
  transaction that changes `total_xp`
- The XP row is created on first grant. When two first grants race, the
  loser's insert fails on the unique `student_id` inside a savepoint and it
  re-reads the winner's row with the lock
- Events (`student.xp_awarded`, `student.level_changed`,
  `student.achievement_earned`, `challenge.completed`) are published only
  after commit
- Database failures surface as retryable `DatabaseError`; a grant is never
  dropped silently
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from pelangi.core.database.base import utc_now
from pelangi.core.database.service import DatabaseService
from pelangi.core.event.types import (
    ACHIEVEMENT_EARNED,
    CHALLENGE_COMPLETED,
    LEVEL_CHANGED,
    XP_AWARDED,
)
from pelangi.core.exceptions import DatabaseError
from pelangi.core.logging.logger import LogContext, get_logger
from pelangi.core.validation.input_validator import MAX_ID, MAX_XP, InputValidator
from pelangi.database.models import (
    Challenge,
    ChallengeParticipation,
    Student,
    StudentAchievement,
    StudentXp,
)
from pelangi.database.models.enums import (
    AttendanceStatus,
    ChallengeStatus,
    ParticipationStatus,
)
from pelangi.modules.leveling.engine import (
    levels_crossed,
    progress_to_next_level,
    resolve_level,
)
from pelangi.modules.leveling.thresholds import LevelTable, LevelTableSource
from pelangi.modules.leveling.xp_rules import (
    AchievementGrant,
    XpSettings,
    attendance_achievements,
    attendance_outcome,
    filter_new,
    grade_achievements,
    grade_outcome,
    is_once_only,
    total_reward,
)
from pelangi.modules.shared.base_repository import BaseRepository
from pelangi.modules.shared.base_service import BaseService
from pelangi.modules.shared.exceptions import (
    InvalidOperationError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy.ext.asyncio import AsyncSession

    from pelangi.core.config.manager import ConfigManager
    from pelangi.core.event.bus import EventBus


# ============================================================================
# Repositories
# ============================================================================


class StudentXpRepository(BaseRepository[StudentXp]):
    """Repository for StudentXp rows, keyed by student."""

    async def get_by_student(
        self,
        session: AsyncSession,
        student_id: int,
        *,
        for_update: bool = False,
    ) -> Optional[StudentXp]:
        return await self.find_one_where(
            session,
            StudentXp.student_id == student_id,
            for_update=for_update,
        )


class StudentAchievementRepository(BaseRepository[StudentAchievement]):
    async def held_types(self, session: AsyncSession, student_id: int) -> Set[str]:
        result = await session.execute(
            select(StudentAchievement.type).where(
                StudentAchievement.student_id == student_id
            )
        )
        return set(result.scalars().all())

    async def list_for_student(
        self, session: AsyncSession, student_id: int
    ) -> List[StudentAchievement]:
        """Newest first."""
        return await self.find_where(
            session,
            StudentAchievement.student_id == student_id,
            order_by=(StudentAchievement.earned_at.desc(), StudentAchievement.id.desc()),
        )


class ChallengeRepository(BaseRepository[Challenge]):
    async def get(
        self, session: AsyncSession, challenge_id: int, *, for_update: bool = False
    ) -> Optional[Challenge]:
        return await self.find_one_where(
            session, Challenge.id == challenge_id, for_update=for_update
        )


class ChallengeParticipationRepository(BaseRepository[ChallengeParticipation]):
    async def get(
        self, session: AsyncSession, participation_id: int, *, for_update: bool = False
    ) -> Optional[ChallengeParticipation]:
        return await self.find_one_where(
            session, ChallengeParticipation.id == participation_id, for_update=for_update
        )

    async def challenge_id_of(self, session: AsyncSession, participation_id: int) -> Optional[int]:
        # column read only: the participation row is locked after its challenge
        result = await session.execute(
            select(ChallengeParticipation.challenge_id).where(
                ChallengeParticipation.id == participation_id
            )
        )
        return result.scalar_one_or_none()

    async def for_challenge(
        self, session: AsyncSession, challenge_id: int, *, for_update: bool = False
    ) -> List[ChallengeParticipation]:
        return await self.find_where(
            session,
            ChallengeParticipation.challenge_id == challenge_id,
            order_by=(ChallengeParticipation.id,),
            for_update=for_update,
        )


# ============================================================================
# Internal result record
# ============================================================================


@dataclass
class _XpChange:
    student_id: int
    requested: int
    old_xp: int
    new_xp: int
    old_level: int
    new_level: int
    old_level_name: str
    new_level_name: str
    levels_gained: int
    achievements: List[AchievementGrant] = field(default_factory=list)

    @property
    def applied(self) -> int:
        return self.new_xp - self.old_xp

    @property
    def level_changed(self) -> bool:
        return self.new_level != self.old_level

    def to_dict(self) -> Dict[str, Any]:
        return {
            "student_id": self.student_id,
            "amount": self.requested,
            "applied_amount": self.applied,
            "old_xp": self.old_xp,
            "new_xp": self.new_xp,
            "old_level": self.old_level,
            "new_level": self.new_level,
            "level_name": self.new_level_name,
            "leveled_up": self.new_level > self.old_level,
            "levels_gained": self.levels_gained,
            "achievements": [
                {
                    "type": a.type,
                    "title": a.title,
                    "description": a.description,
                    "xp_reward": a.xp_reward,
                    "metadata": a.meta,
                }
                for a in self.achievements
            ],
        }


# ============================================================================
# StudentXpService
# ============================================================================


class StudentXpService(BaseService):
    """
    Atomic XP grants and level maintenance.

    Dependencies
    ------------
    - ConfigManager: level table, XP rule settings, grant cap
    - EventBus: post-commit XP, level and achievement events
    - DatabaseService: transactions (used statically)

    Public Methods
    --------------
    - award_xp() -> Grant or deduct XP
    - record_grade() -> Grade XP, assignment streak and achievements
    - record_attendance() -> Attendance XP, streak and achievements
    - grant_achievement() -> Manual achievement with bonus XP
    - get_student_xp() -> XP state with level progress
    - recalculate_level() -> Re-derive level from total XP
    - complete_challenge() -> Pay one participant the challenge reward
    - finalize_challenge() -> Close a challenge, failing open participants
    - get_student_achievements() -> Earned achievements, newest first
    """

    def __init__(
        self,
        config_manager: type[ConfigManager],
        event_bus: EventBus,
        logger: Logger,
        level_table: Optional[LevelTable] = None,
        xp_settings: Optional[XpSettings] = None,
    ) -> None:
        super().__init__(config_manager, event_bus, logger)
        self._level_source = LevelTableSource(config_manager, level_table)
        # a malformed configured table fails here rather than on the first grant
        self._level_source.current()
        self._settings = xp_settings or XpSettings.from_config(config_manager)

        self._xp_repo = StudentXpRepository(
            model_class=StudentXp,
            logger=get_logger(f"{__name__}.StudentXpRepository"),
        )
        self._achievement_repo = StudentAchievementRepository(
            model_class=StudentAchievement,
            logger=get_logger(f"{__name__}.StudentAchievementRepository"),
        )
        self._challenge_repo = ChallengeRepository(
            model_class=Challenge,
            logger=get_logger(f"{__name__}.ChallengeRepository"),
        )
        self._participation_repo = ChallengeParticipationRepository(
            model_class=ChallengeParticipation,
            logger=get_logger(f"{__name__}.ChallengeParticipationRepository"),
        )

    @property
    def level_table(self) -> LevelTable:
        return self._level_source.current()

    # ========================================================================
    # Transaction helpers
    # ========================================================================

    async def _lock_xp_row(
        self, session: AsyncSession, student_id: int, levels: LevelTable
    ) -> StudentXp:
        """Lock the student's XP row, creating it at 0 XP if missing."""
        if await session.get(Student, student_id) is None:
            raise NotFoundError("Student", student_id)

        row = await self._xp_repo.get_by_student(session, student_id, for_update=True)
        if row is not None:
            return row

        first = levels.first
        row = StudentXp(
            student_id=student_id,
            total_xp=0,
            level=first.level,
            level_name=first.name,
            attendance_streak=0,
            assignment_streak=0,
        )
        try:
            async with session.begin_nested():
                self._xp_repo.add(session, row)
                await self._xp_repo.flush(session)
        except IntegrityError:
            self.log.info(
                "Concurrent XP row creation; re-reading existing row",
                extra={"student_id": student_id},
            )
            row = await self._xp_repo.get_by_student(
                session, student_id, for_update=True
            )
            if row is None:
                raise

        return row

    def _apply_delta(self, row: StudentXp, requested: int, levels: LevelTable) -> _XpChange:
        old_xp = row.total_xp or 0
        old_level = row.level
        old_level_name = row.level_name
        if old_xp + requested > MAX_XP:
            raise ValidationError(
                "amount",
                f"Total XP cannot exceed {MAX_XP}: {old_xp} + {requested} = {old_xp + requested}",
            )
        new_xp = max(old_xp + requested, 0)

        resolved = resolve_level(new_xp, levels)
        row.total_xp = new_xp
        row.level = resolved.level
        row.level_name = resolved.name

        return _XpChange(
            student_id=row.student_id,
            requested=requested,
            old_xp=old_xp,
            new_xp=new_xp,
            old_level=old_level,
            new_level=resolved.level,
            old_level_name=old_level_name,
            new_level_name=resolved.name,
            levels_gained=len(levels_crossed(old_xp, new_xp, levels)),
        )

    async def _store_achievements(
        self,
        session: AsyncSession,
        student_id: int,
        candidates: List[AchievementGrant],
    ) -> List[AchievementGrant]:
        """Persist the candidates the student does not already hold."""
        if not candidates:
            return []

        held = await self._achievement_repo.held_types(session, student_id)
        granted = filter_new(candidates, held)
        for grant in granted:
            self._achievement_repo.add(
                session,
                StudentAchievement(
                    student_id=student_id,
                    type=grant.type,
                    title=grant.title,
                    description=grant.description,
                    xp_reward=grant.xp_reward,
                    meta=grant.meta,
                ),
            )
        return granted

    async def _publish(
        self,
        change: _XpChange,
        reason: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        if change.applied != 0:
            await self.emit_event(
                XP_AWARDED,
                {
                    "student_id": change.student_id,
                    "amount": change.requested,
                    "applied_amount": change.applied,
                    "old_xp": change.old_xp,
                    "new_xp": change.new_xp,
                    "reason": reason,
                },
                context,
            )

        if change.level_changed:
            await self.emit_event(
                LEVEL_CHANGED,
                {
                    "student_id": change.student_id,
                    "old_level": change.old_level,
                    "new_level": change.new_level,
                    "old_level_name": change.old_level_name,
                    "new_level_name": change.new_level_name,
                    "leveled_up": change.new_level > change.old_level,
                },
                context,
            )

        for achievement in change.achievements:
            await self.emit_event(
                ACHIEVEMENT_EARNED,
                {
                    "student_id": change.student_id,
                    "type": achievement.type,
                    "title": achievement.title,
                    "xp_reward": achievement.xp_reward,
                },
                context,
            )

    # ========================================================================
    # PUBLIC API - Write Operations
    # ========================================================================

    async def award_xp(
        self,
        student_id: int,
        amount: int,
        reason: str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Add `amount` XP to a student and refresh their level.

        This is a **write operation** using get_transaction() with the XP row
        locked. Negative amounts are penalties; the total never drops below 0.

        Args:
            student_id: Student primary key
            amount: Non-zero XP delta
            reason: Why the XP was granted ("manual_reward", "challenge", ...)
            context: Extra keys merged into the published events

        Returns:
            Dict with old/new XP, old/new level, level_name and leveled_up

        Raises:
            ValidationError: If student_id, amount or reason is invalid
            NotFoundError: If the student does not exist
            DatabaseError: If the transaction fails (retryable)

        Example:
            >>> result = await xp_service.award_xp(42, 150, "manual_reward")
            >>> result["leveled_up"]
            True
        """
        student_id = InputValidator.validate_student_id(student_id)
        amount = InputValidator.validate_xp_amount(
            amount, max_abs=self.get_config("gamification.xp.max_single_grant")
        )
        reason = InputValidator.validate_string(reason, "reason", min_length=1, max_length=255)

        async with LogContext(student_id=student_id, operation="award_xp"):
            self.log_operation("award_xp", student_id=student_id, amount=amount, reason=reason)

            try:
                levels = self._level_source.current()
                async with DatabaseService.get_transaction() as session:
                    row = await self._lock_xp_row(session, student_id, levels)
                    change = self._apply_delta(row, amount, levels)
            except (OperationalError, DBAPIError) as e:
                self.log_error("award_xp", e, student_id=student_id, amount=amount)
                raise DatabaseError("award_xp", e) from e

            self.log.info(
                f"XP awarded: {change.applied:+d} XP",
                extra={
                    "student_id": student_id,
                    "old_xp": change.old_xp,
                    "new_xp": change.new_xp,
                    "old_level": change.old_level,
                    "new_level": change.new_level,
                    "reason": reason,
                },
            )

            await self._publish(change, reason, context)

        result = change.to_dict()
        result["reason"] = reason
        return result

    async def record_grade(
        self,
        student_id: int,
        score: float,
        max_score: float,
        recent_high_scores: int = 0,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Apply one grade: grade XP, assignment streak and score achievements.

        Args:
            student_id: Student primary key
            score: Points earned
            max_score: Points possible
            recent_high_scores: Grades at >= 90% the student has in the
                trailing 30 days, including this one. Grades are stored
                outside the gamification tables, so the caller counts them.
        """
        student_id = InputValidator.validate_student_id(student_id)
        recent_high_scores = InputValidator.validate_non_negative_integer(
            recent_high_scores, "recent_high_scores"
        )
        outcome = grade_outcome(score, max_score, self._settings)
        candidates = grade_achievements(score, max_score, recent_high_scores)

        async with LogContext(student_id=student_id, operation="record_grade"):
            self.log_operation(
                "record_grade",
                student_id=student_id,
                percentage=outcome.percentage,
                grade_xp=outcome.xp,
            )

            try:
                levels = self._level_source.current()
                async with DatabaseService.get_transaction() as session:
                    row = await self._lock_xp_row(session, student_id, levels)
                    row.assignment_streak = (row.assignment_streak or 0) + 1
                    row.last_assignment = utc_now()

                    granted = await self._store_achievements(session, student_id, candidates)
                    change = self._apply_delta(row, total_reward(granted, outcome.xp), levels)
                    change.achievements = granted
                    streak = row.assignment_streak
            except (OperationalError, DBAPIError) as e:
                self.log_error("record_grade", e, student_id=student_id)
                raise DatabaseError("record_grade", e) from e

            await self._publish(change, "grade", context)

        result = change.to_dict()
        result.update(
            {
                "grade_xp": outcome.xp,
                "bonus_xp": total_reward(granted),
                "percentage": outcome.percentage,
                "assignment_streak": streak,
            }
        )
        return result

    async def record_attendance(
        self,
        student_id: int,
        status: AttendanceStatus | str,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Apply one attendance record: XP, attendance streak and streak
        achievements. Only PRESENT and LATE extend the streak and can earn
        streak achievements.
        """
        student_id = InputValidator.validate_student_id(student_id)
        outcome = attendance_outcome(status, self._settings)

        async with LogContext(student_id=student_id, operation="record_attendance"):
            self.log_operation(
                "record_attendance",
                student_id=student_id,
                status=outcome.status.value,
                attendance_xp=outcome.xp,
            )

            try:
                levels = self._level_source.current()
                async with DatabaseService.get_transaction() as session:
                    row = await self._lock_xp_row(session, student_id, levels)
                    row.attendance_streak = outcome.apply_streak(row.attendance_streak or 0)
                    if outcome.stamp_attendance:
                        row.last_attendance = utc_now()

                    candidates: List[AchievementGrant] = []
                    if outcome.streak_action == "increment":
                        candidates = attendance_achievements(row.attendance_streak)
                    granted = await self._store_achievements(session, student_id, candidates)

                    change = self._apply_delta(row, total_reward(granted, outcome.xp), levels)
                    change.achievements = granted
                    streak = row.attendance_streak
            except (OperationalError, DBAPIError) as e:
                self.log_error("record_attendance", e, student_id=student_id)
                raise DatabaseError("record_attendance", e) from e

            await self._publish(change, f"attendance_{outcome.status.value.lower()}", context)

        result = change.to_dict()
        result.update(
            {
                "status": outcome.status.value,
                "attendance_xp": outcome.xp,
                "bonus_xp": total_reward(granted),
                "attendance_streak": streak,
            }
        )
        return result

    async def grant_achievement(
        self,
        student_id: int,
        achievement_type: str,
        title: str,
        description: Optional[str] = None,
        xp_reward: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Record a manually awarded achievement and grant its XP.

        Free-form reward types are not deduplicated: a teacher may give the
        same reward more than once. The automatic types (PERFECT_SCORE,
        HIGH_ACHIEVER, PERFECT_ATTENDANCE_30, WEEKLY_PERFECT_<n>) stay
        once-only.

        Raises:
            InvalidOperationError: If an automatic type is already held
        """
        student_id = InputValidator.validate_student_id(student_id)
        achievement_type = InputValidator.validate_string(
            achievement_type, "achievement_type", min_length=1, max_length=50
        )
        title = InputValidator.validate_string(title, "title", min_length=1, max_length=200)
        xp_reward = InputValidator.validate_non_negative_integer(
            xp_reward, "xp_reward", max_value=MAX_XP
        )

        grant = AchievementGrant(
            type=achievement_type,
            title=title,
            description=description or "",
            xp_reward=xp_reward,
            meta=dict(metadata or {}),
        )

        async with LogContext(student_id=student_id, operation="grant_achievement"):
            self.log_operation(
                "grant_achievement",
                student_id=student_id,
                achievement_type=achievement_type,
                xp_reward=xp_reward,
            )

            try:
                levels = self._level_source.current()
                async with DatabaseService.get_transaction() as session:
                    row = await self._lock_xp_row(session, student_id, levels)
                    if is_once_only(achievement_type):
                        held = await self._achievement_repo.held_types(session, student_id)
                        if achievement_type in held:
                            raise InvalidOperationError(
                                "grant achievement",
                                f"student {student_id} already holds {achievement_type}",
                            )
                    self._achievement_repo.add(
                        session,
                        StudentAchievement(
                            student_id=student_id,
                            type=grant.type,
                            title=grant.title,
                            description=grant.description,
                            xp_reward=grant.xp_reward,
                            meta=grant.meta,
                        ),
                    )
                    change = self._apply_delta(row, xp_reward, levels)
                    change.achievements = [grant]
            except (OperationalError, DBAPIError) as e:
                self.log_error("grant_achievement", e, student_id=student_id)
                raise DatabaseError("grant_achievement", e) from e

            await self._publish(change, f"achievement:{achievement_type}", context)

        return change.to_dict()

    async def complete_challenge(
        self,
        participation_id: int,
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Mark one challenge participant COMPLETED and pay the challenge reward.

        The challenge row is locked before the participation, then the XP
        row, so concurrent completions of one challenge serialise. When no
        participant is left open the challenge is closed in the same
        transaction; nothing further is paid for that.

        Raises:
            NotFoundError: If the participation does not exist
            InvalidOperationError: If the participation is already COMPLETED,
                or the challenge has been finalized
            DatabaseError: If the transaction fails (retryable)
        """
        participation_id = InputValidator.validate_positive_integer(
            participation_id, "participation_id", MAX_ID
        )

        async with LogContext(operation="complete_challenge"):
            self.log_operation("complete_challenge", participation_id=participation_id)

            try:
                levels = self._level_source.current()
                async with DatabaseService.get_transaction() as session:
                    challenge_id = await self._participation_repo.challenge_id_of(
                        session, participation_id
                    )
                    if challenge_id is None:
                        raise NotFoundError("ChallengeParticipation", participation_id)
                    challenge = await self._challenge_repo.get(
                        session, challenge_id, for_update=True
                    )
                    participation = await self._participation_repo.get(
                        session, participation_id, for_update=True
                    )
                    if participation is None:
                        raise NotFoundError("ChallengeParticipation", participation_id)

                    if participation.status == ParticipationStatus.COMPLETED:
                        raise InvalidOperationError(
                            "complete challenge",
                            f"participation {participation_id} is already completed",
                        )
                    if challenge.status == ChallengeStatus.COMPLETED:
                        raise InvalidOperationError(
                            "complete challenge",
                            f"challenge {challenge_id} has already been finalized",
                        )

                    participation.status = ParticipationStatus.COMPLETED
                    participation.completed_at = utc_now()
                    participation.progress = 100

                    row = await self._lock_xp_row(session, participation.student_id, levels)
                    change = self._apply_delta(row, challenge.xp_reward, levels)

                    participants = await self._participation_repo.for_challenge(
                        session, challenge_id
                    )
                    closed = all(
                        p.status == ParticipationStatus.COMPLETED for p in participants
                    )
                    if closed:
                        challenge.status = ChallengeStatus.COMPLETED
                        challenge.ended_at = utc_now()
                    xp_reward = challenge.xp_reward
                    title = challenge.title
            except (OperationalError, DBAPIError) as e:
                self.log_error("complete_challenge", e, participation_id=participation_id)
                raise DatabaseError("complete_challenge", e) from e

            self.log.info(
                "Challenge participant completed",
                extra={
                    "student_id": change.student_id,
                    "challenge_id": challenge_id,
                    "xp_reward": xp_reward,
                    "challenge_closed": closed,
                },
            )

            await self._publish(change, f"challenge:{challenge_id}", context)
            if closed:
                await self.emit_event(
                    CHALLENGE_COMPLETED,
                    {
                        "challenge_id": challenge_id,
                        "title": title,
                        "reason": "ALL_COMPLETED",
                        "total_participants": len(participants),
                        "completed_count": len(participants),
                        "failed_count": 0,
                    },
                    context,
                )

        result = change.to_dict()
        result.update(
            {
                "participation_id": participation_id,
                "challenge_id": challenge_id,
                "xp_reward": xp_reward,
                "challenge_completed": closed,
            }
        )
        return result

    async def finalize_challenge(
        self,
        challenge_id: int,
        reason: str = "DEADLINE",
        context: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Close a challenge. Participants not yet COMPLETED become FAILED and
        earn nothing; completed ones were paid when they completed.

        Returns:
            Summary with participant counts, the XP paid out and the student
            ids on each side

        Raises:
            NotFoundError: If the challenge does not exist
            InvalidOperationError: If the challenge is already COMPLETED
            DatabaseError: If the transaction fails (retryable)
        """
        challenge_id = InputValidator.validate_positive_integer(
            challenge_id, "challenge_id", MAX_ID
        )
        reason = InputValidator.validate_string(reason, "reason", min_length=1, max_length=50)
        self.log_operation("finalize_challenge", challenge_id=challenge_id, reason=reason)

        try:
            async with DatabaseService.get_transaction() as session:
                challenge = await self._challenge_repo.get(session, challenge_id, for_update=True)
                if challenge is None:
                    raise NotFoundError("Challenge", challenge_id)
                if challenge.status == ChallengeStatus.COMPLETED:
                    raise InvalidOperationError(
                        "finalize challenge", f"challenge {challenge_id} is already completed"
                    )

                participants = await self._participation_repo.for_challenge(
                    session, challenge_id, for_update=True
                )
                now = utc_now()
                completed = [p for p in participants if p.status == ParticipationStatus.COMPLETED]
                failed = [p for p in participants if p.status != ParticipationStatus.COMPLETED]
                for participation in failed:
                    participation.status = ParticipationStatus.FAILED
                    participation.completed_at = now
                challenge.status = ChallengeStatus.COMPLETED
                challenge.ended_at = now

                summary = {
                    "challenge_id": challenge_id,
                    "title": challenge.title,
                    "reason": reason,
                    "total_participants": len(participants),
                    "completed_count": len(completed),
                    "failed_count": len(failed),
                    "total_xp_distributed": len(completed) * challenge.xp_reward,
                    "completed_student_ids": [p.student_id for p in completed],
                    "failed_student_ids": [p.student_id for p in failed],
                }
        except (OperationalError, DBAPIError) as e:
            self.log_error("finalize_challenge", e, challenge_id=challenge_id)
            raise DatabaseError("finalize_challenge", e) from e

        self.log.info(
            f"Challenge finalized: {summary['completed_count']}/"
            f"{summary['total_participants']} completed",
            extra={"challenge_id": challenge_id, "reason": reason},
        )
        await self.emit_event(CHALLENGE_COMPLETED, summary, context)
        return summary

    async def recalculate_level(self, student_id: int) -> Dict[str, Any]:
        """
        Re-derive level and level name from total XP with the active table.

        Raises:
            NotFoundError: If the student has no XP row yet
        """
        student_id = InputValidator.validate_student_id(student_id)
        self.log_operation("recalculate_level", student_id=student_id)

        try:
            levels = self._level_source.current()
            async with DatabaseService.get_transaction() as session:
                row = await self._xp_repo.get_by_student(session, student_id, for_update=True)
                if row is None:
                    raise NotFoundError("StudentXp", student_id)
                old_level, old_name = row.level, row.level_name
                resolved = resolve_level(row.total_xp, levels)
                row.level = resolved.level
                row.level_name = resolved.name
                total_xp = row.total_xp
        except (OperationalError, DBAPIError) as e:
            self.log_error("recalculate_level", e, student_id=student_id)
            raise DatabaseError("recalculate_level", e) from e

        changed = (old_level, old_name) != (resolved.level, resolved.name)
        if changed:
            await self.emit_event(
                LEVEL_CHANGED,
                {
                    "student_id": student_id,
                    "old_level": old_level,
                    "new_level": resolved.level,
                    "old_level_name": old_name,
                    "new_level_name": resolved.name,
                    "leveled_up": resolved.level > old_level,
                },
            )

        return {
            "student_id": student_id,
            "total_xp": total_xp,
            "old_level": old_level,
            "new_level": resolved.level,
            "level_name": resolved.name,
            "changed": changed,
        }

    # ========================================================================
    # PUBLIC API - Read Operations
    # ========================================================================

    async def get_student_xp(self, student_id: int) -> Dict[str, Any]:
        """
        XP state of one student with a freshly computed progress block.

        Students without an XP row report 0 XP at the first level. This is a
        **read-only** operation using get_session().

        Raises:
            NotFoundError: If the student does not exist
        """
        student_id = InputValidator.validate_student_id(student_id)

        try:
            async with DatabaseService.get_session() as session:
                if await session.get(Student, student_id) is None:
                    raise NotFoundError("Student", student_id)
                row = await self._xp_repo.get_by_student(session, student_id)
        except (OperationalError, DBAPIError) as e:
            self.log_error("get_student_xp", e, student_id=student_id)
            raise DatabaseError("get_student_xp", e) from e

        total_xp = row.total_xp if row is not None else 0
        progress = progress_to_next_level(total_xp, self._level_source.current())

        return {
            "student_id": student_id,
            "total_xp": total_xp,
            "level": progress.current.level,
            "level_name": progress.current.name,
            "attendance_streak": row.attendance_streak if row is not None else 0,
            "assignment_streak": row.assignment_streak if row is not None else 0,
            "last_attendance": row.last_attendance if row is not None else None,
            "last_assignment": row.last_assignment if row is not None else None,
            "progress": progress.to_dict(),
        }

    async def get_student_achievements(self, student_id: int) -> List[Dict[str, Any]]:
        """
        Achievements earned by one student, newest first.

        Raises:
            NotFoundError: If the student does not exist
        """
        student_id = InputValidator.validate_student_id(student_id)

        try:
            async with DatabaseService.get_session() as session:
                if await session.get(Student, student_id) is None:
                    raise NotFoundError("Student", student_id)
                achievements = await self._achievement_repo.list_for_student(session, student_id)
        except (OperationalError, DBAPIError) as e:
            self.log_error("get_student_achievements", e, student_id=student_id)
            raise DatabaseError("get_student_achievements", e) from e

        return [
            {
                "id": a.id,
                "type": a.type,
                "title": a.title,
                "description": a.description,
                "xp_reward": a.xp_reward,
                "metadata": a.meta,
                "earned_at": a.earned_at,
            }
            for a in achievements
        ]
