"""
Integration Tests for XP grants and leaderboards (PostgreSQL)
==============================================================

Purpose
-------
Run the services end to end against a real database: row creation on first
grant, row locking under concurrent grants, achievement persistence and
leaderboard queries. Challenge completion and runtime level table changes
are covered the same way.

Testing Strategy
----------------
- testcontainers PostgreSQL, tables truncated after each test
- Seeded school from the `school` fixture
- Seed level table from config/gamification.yaml
"""

import asyncio

import pytest
from sqlalchemy import select

from pelangi.core.database.service import DatabaseService
from pelangi.core.event.types import LEVEL_CHANGED
from pelangi.database.models import (
    Challenge,
    ChallengeParticipation,
    ChallengeStatus,
    ParticipationStatus,
    StudentAchievement,
    StudentXp,
)
from pelangi.modules.leveling.thresholds import LEVELS_CONFIG_KEY
from pelangi.modules.shared.exceptions import InvalidOperationError, NotFoundError


async def load_xp_row(student_id):
    async with DatabaseService.get_session() as session:
        result = await session.execute(
            select(StudentXp).where(StudentXp.student_id == student_id)
        )
        return result.scalar_one_or_none()


async def achievement_types(student_id):
    async with DatabaseService.get_session() as session:
        result = await session.execute(
            select(StudentAchievement.type)
            .where(StudentAchievement.student_id == student_id)
            .order_by(StudentAchievement.id)
        )
        return list(result.scalars())


@pytest.mark.integration
@pytest.mark.database
@pytest.mark.asyncio
class TestXpPersistence:
    async def test_database_is_reachable(self, database):
        assert await DatabaseService.health_check() is True

    async def test_first_grant_creates_row(self, xp_service, school):
        # Act
        result = await xp_service.award_xp(school["andi"], 150, "manual_reward")

        # Assert
        row = await load_xp_row(school["andi"])
        assert row.total_xp == 150
        assert (row.level, row.level_name) == (2, "Berkembang")
        assert result["leveled_up"] is True

    async def test_level_change_event_after_commit(self, xp_service, event_bus, school):
        seen = []

        async def on_level_changed(payload):
            row = await load_xp_row(payload["student_id"])
            seen.append((payload["new_level_name"], row.level_name))

        event_bus.subscribe(LEVEL_CHANGED, on_level_changed)

        await xp_service.award_xp(school["budi"], 300, "manual_reward")

        assert seen == [("Mahir", "Mahir")]

    async def test_penalty_never_goes_below_zero(self, xp_service, school):
        await xp_service.award_xp(school["andi"], 20, "bonus")

        result = await xp_service.award_xp(school["andi"], -50, "penalty")

        assert result["new_xp"] == 0
        assert (await load_xp_row(school["andi"])).total_xp == 0

    async def test_concurrent_grants_are_not_lost(self, xp_service, school):
        # Arrange
        student_id = school["citra"]
        await xp_service.award_xp(student_id, 1, "seed")

        # Act
        await asyncio.gather(
            *[xp_service.award_xp(student_id, 10, f"grant_{i}") for i in range(10)]
        )

        # Assert
        row = await load_xp_row(student_id)
        assert row.total_xp == 101
        assert (row.level, row.level_name) == (2, "Berkembang")

    async def test_unknown_student(self, xp_service, database):
        with pytest.raises(NotFoundError):
            await xp_service.award_xp(9999, 10, "grade")


@pytest.mark.integration
@pytest.mark.database
@pytest.mark.asyncio
class TestAchievementsPersistence:
    async def test_perfect_score_awarded_once(self, xp_service, school):
        first = await xp_service.record_grade(school["andi"], 100, 100)
        second = await xp_service.record_grade(school["andi"], 100, 100)

        assert first["bonus_xp"] == 50
        assert second["bonus_xp"] == 0
        assert await achievement_types(school["andi"]) == ["PERFECT_SCORE"]
        assert (await load_xp_row(school["andi"])).total_xp == 250

    async def test_week_of_attendance(self, xp_service, school):
        for _ in range(7):
            result = await xp_service.record_attendance(school["dewi"], "PRESENT")

        assert result["attendance_streak"] == 7
        assert await achievement_types(school["dewi"]) == ["WEEKLY_PERFECT_1"]
        assert (await load_xp_row(school["dewi"])).total_xp == 120

    async def test_absence_resets_streak(self, xp_service, school):
        await xp_service.record_attendance(school["dewi"], "PRESENT")
        await xp_service.award_xp(school["dewi"], 2, "bonus")

        result = await xp_service.record_attendance(school["dewi"], "ABSENT")

        assert result["attendance_streak"] == 0
        assert result["new_xp"] == 7

    async def test_manual_automatic_type_rejected_when_held(self, xp_service, school):
        await xp_service.record_grade(school["budi"], 50, 50)

        with pytest.raises(InvalidOperationError):
            await xp_service.grant_achievement(school["budi"], "PERFECT_SCORE", "Again")

        assert await achievement_types(school["budi"]) == ["PERFECT_SCORE"]


@pytest.mark.integration
@pytest.mark.database
@pytest.mark.asyncio
class TestLeaderboardQueries:
    async def test_global_board(self, xp_service, leaderboard_service, school):
        # Arrange
        await xp_service.award_xp(school["andi"], 500, "bonus")
        await xp_service.award_xp(school["dewi"], 900, "bonus")
        await xp_service.record_grade(school["budi"], 10, 10)

        # Act
        board = await leaderboard_service.get_global_leaderboard()

        # Assert
        assert [e["full_name"] for e in board] == ["Dewi", "Andi", "Budi", "Citra"]
        assert [e["rank"] for e in board] == [1, 2, 3, 4]
        assert board[0]["class_name"] == "7B"
        assert board[1]["class_name"] == "7A - Matematika"
        assert board[2]["badge_count"] == 1
        assert board[3]["total_xp"] == 0
        assert board[3]["level_name"] == "Pemula"

    async def test_class_board_and_rank(self, xp_service, leaderboard_service, school):
        await xp_service.award_xp(school["citra"], 40, "bonus")
        await xp_service.award_xp(school["dewi"], 900, "bonus")

        board = await leaderboard_service.get_class_leaderboard(school["class_a"])
        rank = await leaderboard_service.get_student_rank(school["citra"], school["class_a"])
        outside = await leaderboard_service.get_student_rank(school["dewi"], school["class_a"])
        inactive = await leaderboard_service.get_student_rank(school["eko"])

        assert [e["full_name"] for e in board] == ["Citra", "Andi", "Budi"]
        assert rank["rank"] == 1
        assert outside["rank"] is None
        assert inactive["rank"] is None

    async def test_unknown_class(self, leaderboard_service, school):
        with pytest.raises(NotFoundError):
            await leaderboard_service.get_class_leaderboard(9999)


async def seed_challenge(student_ids, xp_reward=100):
    """ACTIVE challenge with one participation per student: (challenge_id, participation_ids)."""
    async with DatabaseService.get_transaction() as session:
        challenge = Challenge(title="Baca 5 Buku", xp_reward=xp_reward)
        session.add(challenge)
        await session.flush()
        participations = [
            ChallengeParticipation(challenge_id=challenge.id, student_id=student_id)
            for student_id in student_ids
        ]
        session.add_all(participations)
        await session.flush()
        return challenge.id, [p.id for p in participations]


async def load_challenge(challenge_id):
    async with DatabaseService.get_session() as session:
        return await session.get(Challenge, challenge_id)


async def participation_statuses(challenge_id):
    async with DatabaseService.get_session() as session:
        result = await session.execute(
            select(ChallengeParticipation.status)
            .where(ChallengeParticipation.challenge_id == challenge_id)
            .order_by(ChallengeParticipation.id)
        )
        return list(result.scalars())


@pytest.mark.integration
@pytest.mark.database
@pytest.mark.asyncio
class TestChallenges:
    async def test_completion_pays_once_and_closes(self, xp_service, school):
        # Arrange
        challenge_id, (first, second) = await seed_challenge([school["andi"], school["budi"]])

        # Act
        await xp_service.complete_challenge(first)
        with pytest.raises(InvalidOperationError):
            await xp_service.complete_challenge(first)
        last = await xp_service.complete_challenge(second)

        # Assert
        assert (await load_xp_row(school["andi"])).total_xp == 100
        assert (await load_xp_row(school["budi"])).total_xp == 100
        assert last["challenge_completed"] is True
        challenge = await load_challenge(challenge_id)
        assert challenge.status == ChallengeStatus.COMPLETED
        assert challenge.ended_at is not None

    async def test_finalize_fails_open_participants(self, xp_service, school):
        challenge_id, (first, _, _) = await seed_challenge(
            [school["andi"], school["budi"], school["citra"]], xp_reward=40
        )
        await xp_service.complete_challenge(first)

        summary = await xp_service.finalize_challenge(challenge_id)

        assert summary["completed_count"] == 1
        assert summary["failed_count"] == 2
        assert summary["total_xp_distributed"] == 40
        assert await participation_statuses(challenge_id) == [
            ParticipationStatus.COMPLETED,
            ParticipationStatus.FAILED,
            ParticipationStatus.FAILED,
        ]
        assert await load_xp_row(school["budi"]) is None
        with pytest.raises(InvalidOperationError):
            await xp_service.complete_challenge(first + 1)

    async def test_concurrent_last_completions_close_once(self, xp_service, event_bus, school):
        closed = []
        event_bus.subscribe("challenge.completed", closed.append)
        challenge_id, ids = await seed_challenge([school["andi"], school["budi"]])

        await asyncio.gather(*(xp_service.complete_challenge(pid) for pid in ids))

        assert (await load_challenge(challenge_id)).status == ChallengeStatus.COMPLETED
        assert len(closed) == 1

    async def test_achievements_newest_first(self, xp_service, school):
        await xp_service.record_grade(school["andi"], 100, 100)
        await xp_service.grant_achievement(school["andi"], "TEACHER_REWARD", "Rajin", xp_reward=5)

        achievements = await xp_service.get_student_achievements(school["andi"])

        assert [a["type"] for a in achievements] == ["TEACHER_REWARD", "PERFECT_SCORE"]


@pytest.mark.integration
@pytest.mark.database
@pytest.mark.asyncio
class TestLevelTableChanges:
    async def test_override_applies_without_new_services(
        self, xp_service, leaderboard_service, config_manager, school
    ):
        # Arrange
        await xp_service.award_xp(school["andi"], 60, "bonus")

        # Act
        config_manager.set_override(
            LEVELS_CONFIG_KEY,
            [
                {"level": 1, "name": "Pemula", "min_xp": 0},
                {"level": 2, "name": "Berkembang", "min_xp": 50},
            ],
        )
        result = await xp_service.recalculate_level(school["andi"])
        board = await leaderboard_service.get_global_leaderboard()

        # Assert
        assert result["new_level"] == 2
        assert (await load_xp_row(school["andi"])).level_name == "Berkembang"
        assert board[0]["level_name"] == "Berkembang"
