"""
Database Models Package
=======================

SQLAlchemy ORM models for the tables the gamification core reads and writes.

- school: SchoolClass, Student
- gamification: StudentXp, StudentAchievement, Challenge, ChallengeParticipation
- enums: shared enumerations
"""

from pelangi.core.database.base import Base

from .enums import (
    AchievementType,
    AttendanceStatus,
    ChallengeStatus,
    ParticipationStatus,
    StudentStatus,
)
from .gamification import Challenge, ChallengeParticipation, StudentAchievement, StudentXp
from .school import SchoolClass, Student

__all__ = [
    "Base",
    "SchoolClass",
    "Student",
    "StudentXp",
    "StudentAchievement",
    "Challenge",
    "ChallengeParticipation",
    "StudentStatus",
    "AttendanceStatus",
    "AchievementType",
    "ChallengeStatus",
    "ParticipationStatus",
]
