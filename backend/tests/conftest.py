"""
Shared pytest configuration for backend tests.

Database tests run against an in-memory SQLite database (aiosqlite), one
fresh database per test, so no server is needed.
"""

import os

# Must be set before the app or routes are imported
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

import random  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker  # noqa: E402

from backend.database.db import Base  # noqa: E402
from backend.database.models import Player  # noqa: E402


@pytest_asyncio.fixture
async def db_session():
    """Create a test database session."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_maker() as session:
        yield session

    # Cleanup
    await engine.dispose()


@pytest_asyncio.fixture
async def player_ids(db_session):
    """Create 16 players and return their IDs in creation order."""
    players = [Player(full_name=f"Player {i}", rating=3.5) for i in range(1, 17)]
    db_session.add_all(players)
    await db_session.commit()
    return [player.id for player in players]


@pytest.fixture
def rng():
    """Seeded random source so generated rounds are reproducible."""
    return random.Random(1234)
