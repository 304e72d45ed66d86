"""Async engine and session management.

The pipeline opens one session per validator per tick, so the PostgreSQL
pool is sized from ``PIPELINE_WORKER_CONCURRENCY``. SQLite (local runs and
tests) goes through aiosqlite with a busy timeout, since it serializes
writers.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from validator_rug_tracker.storage.models import Base

if TYPE_CHECKING:
    from validator_rug_tracker.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_POOL_SIZE = 10
POOL_HEADROOM = 2
SQLITE_BUSY_TIMEOUT_SECONDS = 30


def to_async_url(database_url: str) -> str:
    """Use the asyncpg driver for plain ``postgresql://`` URLs."""
    if database_url.startswith("postgresql://"):
        logger.warning("Database URL uses sync driver 'postgresql://'; using 'postgresql+asyncpg://'")
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def engine_options(url: str, *, pool_size: int, max_overflow: int, echo: bool) -> dict[str, Any]:
    if url.startswith("sqlite"):
        return {"echo": echo, "connect_args": {"timeout": SQLITE_BUSY_TIMEOUT_SECONDS}}
    return {
        "echo": echo,
        "pool_size": pool_size,
        "max_overflow": max_overflow,
        "pool_pre_ping": True,
    }


class DatabaseManager:
    """Owns the async engine and hands out transactional sessions.

    Example:
        ```python
        db = DatabaseManager.from_settings(get_settings())
        async with db.get_async_session() as session:
            await SnapshotRepository(session).latest_epoch()
        await db.dispose_async()
        ```
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = DEFAULT_POOL_SIZE,
        max_overflow: int = DEFAULT_POOL_SIZE,
        echo: bool = False,
    ) -> None:
        self.database_url = to_async_url(database_url)
        self._engine_options = engine_options(
            self.database_url, pool_size=pool_size, max_overflow=max_overflow, echo=echo
        )
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> DatabaseManager:
        pool_size = max(DEFAULT_POOL_SIZE, settings.pipeline.worker_concurrency + POOL_HEADROOM)
        return cls(settings.database.url, pool_size=pool_size)

    @classmethod
    def from_engine(cls, engine: AsyncEngine) -> DatabaseManager:
        """Wrap an existing engine (used by tests)."""
        manager = cls(engine.url.render_as_string(hide_password=False))
        manager._engine = engine
        return manager

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.database_url, **self._engine_options)
        return self._engine

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """One transaction: commits on success, rolls back on any exception."""
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(bind=self.engine, expire_on_commit=False)

        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def init_schema_async(self) -> None:
        """Create all tables. Managed deployments use ``alembic upgrade head``."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema initialized")

    async def dispose_async(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
        logger.info("Database connections disposed")
