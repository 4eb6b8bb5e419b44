"""
Integration fixtures: PostgreSQL via testcontainers
====================================================

Architecture Notes
------------------
- One container per test session
- `DatabaseService` is initialized against the container per test and the
  gamification tables are truncated afterwards (clean slate)
- Tests are skipped when no Docker daemon is reachable
"""

from __future__ import annotations

from typing import AsyncGenerator, Generator

import docker.errors
import pytest
import pytest_asyncio
from sqlalchemy import text
from testcontainers.postgres import PostgresContainer

from pelangi.core.config.config import Config
from pelangi.core.database.service import DatabaseService
from pelangi.core.event.bus import EventBus
from pelangi.core.logging.logger import get_logger
from pelangi.database.models import SchoolClass, Student, StudentStatus
from pelangi.modules.leaderboard.service import LeaderboardService
from pelangi.modules.xp.service import StudentXpService

logger = get_logger(__name__)


@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL testcontainer for integration tests.

    Scope: session (container persists across all tests)
    """
    logger.info("Starting PostgreSQL testcontainer...")
    container = PostgresContainer(image="postgres:17-alpine", driver="asyncpg")
    try:
        container.start()
    except docker.errors.DockerException as exc:
        pytest.skip(f"Docker unavailable: {exc}")

    yield container

    logger.info("Stopping PostgreSQL testcontainer...")
    container.stop()


@pytest_asyncio.fixture
async def database(postgres_container: PostgresContainer) -> AsyncGenerator[None, None]:
    """
    Initialized DatabaseService with empty gamification tables.

    Scope: function
    """
    await DatabaseService.initialize(postgres_container.get_connection_url())
    await DatabaseService.create_all()

    yield

    async with DatabaseService.get_transaction() as session:
        await session.execute(
            text(
                "TRUNCATE challenge_participations, challenges, student_achievements, "
                "student_xp, students, classes "
                "RESTART IDENTITY CASCADE"
            )
        )
    await DatabaseService.shutdown()


@pytest.fixture
def config_manager(clean_config_manager):
    """Real ConfigManager loaded from the repository config directory."""
    clean_config_manager.initialize(Config.CONFIG_DIR)
    return clean_config_manager


@pytest.fixture
def event_bus(config_manager) -> EventBus:
    return EventBus(config_manager)


@pytest.fixture
def xp_service(config_manager, event_bus, test_logger) -> StudentXpService:
    return StudentXpService(config_manager, event_bus, test_logger)


@pytest.fixture
def leaderboard_service(config_manager, event_bus, test_logger) -> LeaderboardService:
    return LeaderboardService(config_manager, event_bus, test_logger)


@pytest_asyncio.fixture
async def school(database):
    """
    Seed two classes and five students; returns ids by key.

    7A (Matematika): andi, budi, citra
    7B:              dewi
    no class:        eko (INACTIVE)
    """
    async with DatabaseService.get_transaction() as session:
        class_a = SchoolClass(name="7A", subject_name="Matematika")
        class_b = SchoolClass(name="7B")
        session.add_all([class_a, class_b])
        await session.flush()

        students = {
            "andi": Student(student_number="NIS001", full_name="Andi", class_id=class_a.id),
            "budi": Student(student_number="NIS002", full_name="Budi", class_id=class_a.id),
            "citra": Student(student_number="NIS003", full_name="Citra", class_id=class_a.id),
            "dewi": Student(student_number="NIS004", full_name="Dewi", class_id=class_b.id),
            "eko": Student(
                student_number="NIS005",
                full_name="Eko",
                status=StudentStatus.INACTIVE,
            ),
        }
        session.add_all(students.values())
        await session.flush()

        ids = {key: student.id for key, student in students.items()}
        ids["class_a"] = class_a.id
        ids["class_b"] = class_b.id

    return ids
