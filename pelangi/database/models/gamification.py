"""
Gamification tables: per-student XP state, earned achievements and
challenges with their participants.
Pure schema (no business logic).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pelangi.core.database.base import Base, IdMixin, TimestampMixin, utc_now
from pelangi.database.models.enums import ChallengeStatus, ParticipationStatus

if TYPE_CHECKING:
    from .school import Student


class StudentXp(Base, IdMixin, TimestampMixin):
    """
    Accumulated XP and derived level of one student.

    Schema-only:
    - student_id (unique FK to students)
    - total_xp (never negative), level (>= 1), level_name
    - attendance_streak, assignment_streak
    - last_attendance, last_assignment

    `level` and `level_name` are derived from `total_xp` and must be
    rewritten in the same transaction that changes `total_xp`.
    """

    __tablename__ = "student_xp"
    __table_args__ = (
        CheckConstraint("total_xp >= 0", name="total_xp_non_negative"),
        CheckConstraint("level >= 1", name="level_positive"),
        Index("ix_student_xp_total_xp", "total_xp"),
    )

    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    total_xp: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    level_name: Mapped[str] = mapped_column(String(50), nullable=False, default="Pemula")

    attendance_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    assignment_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attendance: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_assignment: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    student: Mapped["Student"] = relationship("Student", back_populates="xp")


class StudentAchievement(Base, IdMixin):
    """
    One earned achievement (badge).

    Schema-only:
    - student_id (FK to students)
    - type, title, description
    - xp_reward granted with the achievement
    - meta JSONB (e.g. the score or streak that triggered it)
    - earned_at
    """

    __tablename__ = "student_achievements"
    __table_args__ = (
        Index("ix_student_achievements_student_type", "student_id", "type"),
    )

    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata", JSONB, nullable=True, default=None
    )
    earned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    student: Mapped["Student"] = relationship("Student", back_populates="achievements")


class Challenge(Base, IdMixin, TimestampMixin):
    """
    A teacher-run challenge paying `xp_reward` to each student who completes it.

    Schema-only:
    - title, description
    - xp_reward (never negative)
    - status (ACTIVE until finalized), end_date, ended_at
    - created_by: free-text id of the teacher or "system"
    """

    __tablename__ = "challenges"
    __table_args__ = (
        CheckConstraint("xp_reward >= 0", name="challenge_xp_reward_non_negative"),
    )

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    xp_reward: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[ChallengeStatus] = mapped_column(
        SAEnum(ChallengeStatus, name="challenge_status"),
        nullable=False,
        default=ChallengeStatus.ACTIVE,
    )
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[str] = mapped_column(String(100), nullable=False, default="system")

    participations: Mapped[List["ChallengeParticipation"]] = relationship(
        "ChallengeParticipation",
        back_populates="challenge",
        cascade="all, delete-orphan",
    )


class ChallengeParticipation(Base, IdMixin):
    """
    One student enrolled in one challenge.

    Schema-only:
    - challenge_id, student_id (unique together)
    - status, progress (0-100)
    - joined_at, completed_at (also stamped when marked FAILED)
    """

    __tablename__ = "challenge_participations"
    __table_args__ = (
        UniqueConstraint("challenge_id", "student_id", name="uq_challenge_participant"),
        CheckConstraint("progress BETWEEN 0 AND 100", name="progress_percentage"),
    )

    challenge_id: Mapped[int] = mapped_column(
        ForeignKey("challenges.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    student_id: Mapped[int] = mapped_column(
        ForeignKey("students.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[ParticipationStatus] = mapped_column(
        SAEnum(ParticipationStatus, name="participation_status"),
        nullable=False,
        default=ParticipationStatus.ACTIVE,
    )
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    challenge: Mapped["Challenge"] = relationship("Challenge", back_populates="participations")
