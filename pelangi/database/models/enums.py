"""
Database Model Enums
====================

Lightweight enumerations for the gamification tables.

These enums are declarative schema helpers shared by the models and the
service layer; they carry no business logic.
"""

from __future__ import annotations

import enum


class StudentStatus(str, enum.Enum):
    """
    Enrollment status of a student.

    Only ACTIVE students appear on leaderboards.
    """

    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    GRADUATED = "GRADUATED"


class AttendanceStatus(str, enum.Enum):
    """Attendance outcome recorded by a teacher for one session."""

    PRESENT = "PRESENT"
    LATE = "LATE"
    ABSENT = "ABSENT"
    EXCUSED = "EXCUSED"


class AchievementType(str, enum.Enum):
    """
    Automatically granted achievement kinds.

    Weekly attendance badges are stored as `WEEKLY_PERFECT_<n>` and manual
    teacher rewards carry free-form types, so the `type` column is a plain
    string rather than this enum.
    """

    PERFECT_SCORE = "PERFECT_SCORE"
    HIGH_ACHIEVER = "HIGH_ACHIEVER"
    PERFECT_ATTENDANCE_30 = "PERFECT_ATTENDANCE_30"
    WEEKLY_PERFECT = "WEEKLY_PERFECT"


class ChallengeStatus(str, enum.Enum):
    """A challenge stays ACTIVE until it is finalized."""

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class ParticipationStatus(str, enum.Enum):
    """
    Progress of one student in one challenge.

    FAILED is set when the challenge is finalized before the student
    completed it.
    """

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
