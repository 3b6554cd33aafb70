"""Pytest fixtures for PostgreSQL integration tests.

Connection parameters come from the same ``POSTGRES_*`` environment
variables the service reads. Tests are skipped when the database cannot be
reached.
"""

import os
from typing import AsyncGenerator

import pytest

from voting_api.config import Settings
from voting_api.database import Database
from voting_api.service import VotingService


@pytest.fixture
def pg_settings() -> Settings:
    return Settings(
        POSTGRES_HOST=os.getenv("POSTGRES_HOST", "localhost"),
        POSTGRES_PORT=int(os.getenv("POSTGRES_PORT", "5432")),
        POSTGRES_DB=os.getenv("POSTGRES_DB", "voting_db"),
        POSTGRES_USER=os.getenv("POSTGRES_USER", "voting_user"),
        POSTGRES_PASSWORD=os.getenv("POSTGRES_PASSWORD", "voting_pass"),
        POSTGRES_POOL_MIN_SIZE=1,
        POSTGRES_POOL_MAX_SIZE=5,
        SECRET_KEY="integration-secret",
        BCRYPT_ROUNDS=4,
        RATE_LIMIT_ENABLED=False,
    )


@pytest.fixture
async def pg_database(pg_settings: Settings) -> AsyncGenerator[Database, None]:
    """Initialized database with empty tables.

    Yields a connected ``Database`` and closes the pool afterwards.
    """
    database = Database(pg_settings)
    try:
        await database.initialize()
    except Exception as e:
        pytest.skip(f"PostgreSQL not available: {e}")

    async with database.acquire() as conn:
        await conn.execute("TRUNCATE votes, voters, candidates RESTART IDENTITY CASCADE")

    yield database

    await database.close()


@pytest.fixture
def pg_service(pg_database: Database, pg_settings: Settings) -> VotingService:
    return VotingService(
        pg_database.voters, pg_database.candidates, pg_database.ballots, pg_settings
    )
