"""Shared database fixtures.

Every test gets a fresh in-memory SQLite database with the full schema.
StaticPool keeps a single connection, so all sessions of one test see the
same data.
"""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from validator_rug_tracker.storage.database import DatabaseManager
from validator_rug_tracker.storage.models import Base


@pytest.fixture
async def async_engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """A session left open for the test; repositories flush but never commit."""
    factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest.fixture
def db_manager(async_engine) -> DatabaseManager:
    """Transactional sessions over the same in-memory database."""
    return DatabaseManager.from_engine(async_engine)
