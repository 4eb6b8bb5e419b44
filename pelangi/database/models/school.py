"""
School entities read by the gamification core.
Pure schema: only the columns leaderboards and XP grants need.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pelangi.core.database.base import Base, IdMixin, TimestampMixin
from pelangi.database.models.enums import StudentStatus

if TYPE_CHECKING:
    from .gamification import StudentAchievement, StudentXp


class SchoolClass(Base, IdMixin, TimestampMixin):
    """
    A class (rombongan belajar), optionally bound to one subject.

    Schema-only:
    - name, subject_name
    - students (one-to-many)
    """

    __tablename__ = "classes"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    subject_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    students: Mapped[List["Student"]] = relationship(
        "Student", back_populates="school_class"
    )


class Student(Base, IdMixin, TimestampMixin):
    """
    Enrolled student.

    Schema-only:
    - student_number (NIS), full_name
    - class_id (nullable FK to classes)
    - status (ACTIVE / INACTIVE / GRADUATED)
    - xp (one-to-one), achievements (one-to-many)
    """

    __tablename__ = "students"
    __table_args__ = (
        Index("ix_students_status_class", "status", "class_id"),
    )

    student_number: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True
    )
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    class_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("classes.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status: Mapped[StudentStatus] = mapped_column(
        SAEnum(StudentStatus, name="student_status"),
        nullable=False,
        default=StudentStatus.ACTIVE,
    )

    school_class: Mapped[Optional["SchoolClass"]] = relationship(
        "SchoolClass", back_populates="students"
    )
    xp: Mapped[Optional["StudentXp"]] = relationship(
        "StudentXp",
        back_populates="student",
        uselist=False,
        cascade="all, delete-orphan",
    )
    achievements: Mapped[List["StudentAchievement"]] = relationship(
        "StudentAchievement",
        back_populates="student",
        cascade="all, delete-orphan",
    )
