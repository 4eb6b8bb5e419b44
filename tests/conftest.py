"""
Pytest Configuration and Fixtures for the Pelangi test suite
=============================================================

Purpose
-------
Shared fixtures for unit and domain tests: level tables, a dict-backed
ConfigManager stand-in, a mocked EventBus, and a helper that turns a fake
session into `DatabaseService`-style context managers.

Architecture Notes
------------------
- Unit tests mock infrastructure (fast, isolated)
- Integration tests (tests/integration) run against PostgreSQL via
  testcontainers and bring their own fixtures
- The environment is forced to "testing" before any pelangi import so the
  database layer uses NullPool and logs stay out of the repository
"""

from __future__ import annotations

import os
import tempfile

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOGS_DIR", os.path.join(tempfile.gettempdir(), "pelangi-test-logs"))

from contextlib import asynccontextmanager
from typing import Any, Dict

import pytest

from pelangi.core.config.manager import ConfigManager
from pelangi.core.logging.logger import get_logger
from pelangi.modules.leveling.thresholds import DEFAULT_LEVELS, LevelTable, LevelThreshold
from pelangi.modules.leveling.xp_rules import XpSettings


# ============================================================================
# LEVEL TABLES
# ============================================================================


@pytest.fixture
def basic_levels() -> LevelTable:
    """Three-level table: Pemula 0, Berkembang 100, Mahir 300."""
    return LevelTable(
        [
            LevelThreshold(1, "Pemula", 0),
            LevelThreshold(2, "Berkembang", 100),
            LevelThreshold(3, "Mahir", 300),
        ]
    )


@pytest.fixture
def seed_levels() -> LevelTable:
    """Ten seed levels, Pemula at 0 XP up to Divine at 4000 XP."""
    return DEFAULT_LEVELS


@pytest.fixture
def xp_settings() -> XpSettings:
    return XpSettings()


# ============================================================================
# MOCK FIXTURES (Unit Tests)
# ============================================================================


@pytest.fixture
def config_values() -> Dict[str, Any]:
    """Backing dict for `mock_config_manager`; tests mutate it freely."""
    return {}


@pytest.fixture
def mock_config_manager(mocker, config_values):
    """
    ConfigManager stand-in answering `get` from `config_values`.

    Scope: function
    """
    mock_config = mocker.MagicMock()
    mock_config.get = mocker.MagicMock(
        side_effect=lambda key, default=None: config_values.get(key, default)
    )
    mock_config.register_validator = mocker.MagicMock()
    return mock_config


@pytest.fixture
def mock_event_bus(mocker):
    """
    Mock EventBus for unit tests.

    Scope: function
    """
    mock_bus = mocker.MagicMock()
    mock_bus.publish = mocker.AsyncMock(return_value=[])
    mock_bus.subscribe = mocker.MagicMock()
    return mock_bus


@pytest.fixture
def test_logger():
    return get_logger("tests")


@pytest.fixture
def fake_session(mocker):
    """
    Fake AsyncSession: awaitable get/execute/flush, sync add.

    `begin_nested()` returns a MagicMock, which supports `async with`.
    """
    session = mocker.MagicMock()
    session.get = mocker.AsyncMock(return_value=None)
    session.execute = mocker.AsyncMock()
    session.flush = mocker.AsyncMock()
    session.add = mocker.MagicMock()
    return session


@pytest.fixture
def session_scope():
    """
    Factory: `session_scope(session)` returns a zero-argument callable usable
    in place of `DatabaseService.get_session` / `get_transaction`.
    """

    def _build(session):
        @asynccontextmanager
        async def _scope():
            yield session

        return _scope

    return _build


@pytest.fixture
def clean_config_manager():
    """Real ConfigManager with state cleared before and after the test."""
    ConfigManager.reset()
    yield ConfigManager
    ConfigManager.reset()
