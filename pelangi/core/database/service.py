"""
Async engine and session handling for the gamification tables.

One engine per process, held on the class. Services never build sessions
themselves; they ask for one of two scopes:

- `get_session()`: reads. Nothing is committed.
- `get_transaction()`: writes. Commits when the block exits cleanly, rolls
  back and re-raises otherwise. Service code never calls `commit()`.

A write that reads a row and then changes it locks the row first
(`get_locked_entity`, or a repository call with `for_update=True`), so two
grants to the same student cannot both read the old total.

    async with DatabaseService.get_transaction() as session:
        row = await DatabaseService.get_locked_entity(session, StudentXp, xp_id)
        row.total_xp += 10

Under `ENVIRONMENT=testing` the engine uses NullPool, so every test's event
loop gets fresh connections.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional, Type, TypeVar

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from pelangi.core.config.config import Config
from pelangi.core.logging.logger import get_logger

logger = get_logger(__name__)

ModelT = TypeVar("ModelT")


class DatabaseInitializationError(RuntimeError):
    """The engine could not be created from the configured URL."""


class DatabaseNotInitializedError(RuntimeError):
    """A session was requested before `DatabaseService.initialize()`."""


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000.0, 2)


def _engine_options() -> Dict[str, Any]:
    if Config.is_testing():
        return {"echo": Config.DATABASE_ECHO, "poolclass": NullPool}
    return {
        "echo": Config.DATABASE_ECHO,
        "pool_size": Config.DATABASE_POOL_SIZE,
        "max_overflow": Config.DATABASE_MAX_OVERFLOW,
        "pool_recycle": Config.DATABASE_POOL_RECYCLE,
        "pool_timeout": Config.DATABASE_POOL_TIMEOUT,
        "pool_pre_ping": True,
    }


class DatabaseService:
    """Class-level owner of the engine and session factory."""

    _engine: Optional[AsyncEngine] = None
    _session_factory: Optional[async_sessionmaker[AsyncSession]] = None
    _lock: Optional[asyncio.Lock] = None

    @classmethod
    def _state_lock(cls) -> asyncio.Lock:
        if cls._lock is None:
            cls._lock = asyncio.Lock()
        return cls._lock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @classmethod
    async def initialize(cls, url: Optional[str] = None) -> None:
        """
        Create the engine. A second call is a no-op.

        `url` overrides `Config.DATABASE_URL`; integration tests pass the
        container's DSN here.
        """
        async with cls._state_lock():
            if cls._engine is not None:
                return

            dsn = url or Config.DATABASE_URL
            if not dsn:
                raise DatabaseInitializationError("no database URL configured")

            options = _engine_options()
            try:
                engine = create_async_engine(dsn, **options)
            except (ValueError, TypeError, ImportError) as exc:
                logger.error(
                    "Could not create database engine",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                )
                raise DatabaseInitializationError(str(exc)) from exc

            cls._engine = engine
            cls._session_factory = async_sessionmaker(engine, expire_on_commit=False)
            logger.info(
                "Database engine ready",
                extra={
                    "driver": engine.url.drivername,
                    "pooled": "poolclass" not in options,
                },
            )

    @classmethod
    async def shutdown(cls) -> None:
        async with cls._state_lock():
            engine, cls._engine, cls._session_factory = cls._engine, None, None
            if engine is not None:
                await engine.dispose()
                logger.info("Database engine disposed")

    @classmethod
    async def create_all(cls) -> None:
        """Create any missing gamification tables."""
        from pelangi.core.database.base import Base
        import pelangi.database.models  # noqa: F401

        async with cls._require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Schema ensured", extra={"tables": sorted(Base.metadata.tables)})

    @classmethod
    async def health_check(cls) -> bool:
        """True when `SELECT 1` succeeds. Connection failures return False."""
        if cls._engine is None:
            return False
        start = time.perf_counter()
        try:
            async with cls._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (DBAPIError, OSError) as exc:
            logger.warning(
                "Database health check failed",
                extra={"error": str(exc), "duration_ms": _elapsed_ms(start)},
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @classmethod
    def _require_engine(cls) -> AsyncEngine:
        if cls._engine is None or cls._session_factory is None:
            raise DatabaseNotInitializedError(
                "call DatabaseService.initialize() before using the database"
            )
        return cls._engine

    @classmethod
    @asynccontextmanager
    async def get_session(cls) -> AsyncGenerator[AsyncSession, None]:
        cls._require_engine()
        async with cls._session_factory() as session:
            yield session

    @classmethod
    @asynccontextmanager
    async def get_transaction(cls) -> AsyncGenerator[AsyncSession, None]:
        """Session inside one transaction: commit on clean exit, else rollback."""
        cls._require_engine()
        start = time.perf_counter()
        async with cls._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception as exc:
                await session.rollback()
                # driver failures are ours to look at; anything else is the caller's
                log = logger.error if isinstance(exc, DBAPIError) else logger.debug
                log(
                    "Transaction rolled back",
                    extra={
                        "error_type": type(exc).__name__,
                        "duration_ms": _elapsed_ms(start),
                    },
                )
                raise
            logger.debug("Transaction committed", extra={"duration_ms": _elapsed_ms(start)})

    @classmethod
    async def get_locked_entity(
        cls, session: AsyncSession, model: Type[ModelT], primary_key: Any
    ) -> Optional[ModelT]:
        """Load a row by primary key under FOR UPDATE; the lock lasts until commit."""
        return await session.get(model, primary_key, with_for_update=True)
