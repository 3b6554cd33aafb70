"""PostgreSQL connection pool and repository implementations."""
import logging
from typing import List, Optional, Tuple

import asyncpg

from .config import Settings
from .entities import Candidate, Vote, Voter
from .errors import (
    CandidateNotFoundError,
    ConflictError,
    NotEligibleError,
    ValidationError,
    VotingError,
)
from .repositories import BallotRepository, CandidateRepository, VoterRepository

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS voters (
    id SERIAL PRIMARY KEY,
    name VARCHAR(255) NOT NULL,
    email VARCHAR(255) NOT NULL UNIQUE,
    password VARCHAR(255) NOT NULL,
    has_voted BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS candidates (
    id SERIAL PRIMARY KEY,
    name VARCHAR(255) NOT NULL UNIQUE,
    party VARCHAR(255),
    votes INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS votes (
    id SERIAL PRIMARY KEY,
    voter_id INTEGER REFERENCES voters(id) ON DELETE SET NULL,
    candidate_id INTEGER REFERENCES candidates(id) ON DELETE SET NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_voters_name ON voters (name);
CREATE INDEX IF NOT EXISTS idx_votes_candidate_id ON votes (candidate_id);
"""

# Serializes registrations of the same name across the voters and candidates tables
NAME_LOCK_SQL = "SELECT pg_advisory_xact_lock(hashtext($1))"

VOTER_COLUMNS = "id, name, email, password, has_voted, created_at, updated_at"
CANDIDATE_COLUMNS = "id, name, party, votes, created_at, updated_at"
VOTE_COLUMNS = "id, voter_id, candidate_id, created_at"


def _row_to_voter(row) -> Voter:
    return Voter(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        password_hash=row["password"],
        has_voted=row["has_voted"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_candidate(row) -> Candidate:
    return Candidate(
        id=row["id"],
        name=row["name"],
        party=row["party"],
        votes=row["votes"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_vote(row) -> Vote:
    return Vote(
        id=row["id"],
        voter_id=row["voter_id"],
        candidate_id=row["candidate_id"],
        created_at=row["created_at"],
    )


class Database:
    """Async PostgreSQL database manager.

    Owns the connection pool and hands out the repositories built on it.
    Open with ``initialize()`` at startup and release with ``close()``.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.pool: Optional[asyncpg.Pool] = None
        self.voters = PostgresVoterRepository(self)
        self.candidates = PostgresCandidateRepository(self)
        self.ballots = PostgresBallotRepository(self)

    async def initialize(self, create_schema: bool = True):
        """Initialize database connection pool."""
        try:
            self.pool = await asyncpg.create_pool(
                self.settings.postgres_dsn,
                min_size=self.settings.POSTGRES_POOL_MIN_SIZE,
                max_size=self.settings.POSTGRES_POOL_MAX_SIZE,
                command_timeout=self.settings.POSTGRES_COMMAND_TIMEOUT
            )
            logger.info("PostgreSQL connection pool initialized successfully")

            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                logger.info("PostgreSQL connection verified")
                if create_schema:
                    await conn.execute(SCHEMA_SQL)
                    logger.info("Database schema ensured")

        except Exception as e:
            logger.error(f"Failed to initialize PostgreSQL connection pool: {e}")
            raise

    def _require_pool(self) -> asyncpg.Pool:
        if self.pool is None:
            raise RuntimeError("Database is not initialized")
        return self.pool

    def acquire(self):
        """Acquire a pooled connection."""
        return self._require_pool().acquire()

    async def check_health(self) -> bool:
        """
        Check PostgreSQL connection health.

        Returns:
            bool: True if healthy, False otherwise
        """
        try:
            if not self.pool:
                return False
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except Exception as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return False

    async def close(self):
        """Close database connection pool."""
        try:
            if self.pool:
                await self.pool.close()
                self.pool = None
                logger.info("PostgreSQL connection pool closed successfully")
        except Exception as e:
            logger.error(f"Error closing PostgreSQL connection pool: {e}")


class PostgresVoterRepository(VoterRepository):
    """Voter storage in the ``voters`` table."""

    def __init__(self, database: Database):
        self.database = database

    async def create(self, name: str, email: str, password_hash: str) -> Voter:
        async with self.database.acquire() as conn:
            async with conn.transaction():
                await conn.execute(NAME_LOCK_SQL, name)

                is_candidate = await conn.fetchval(
                    "SELECT 1 FROM candidates WHERE name = $1", name
                )
                if is_candidate:
                    raise ConflictError(
                        "This person is already registered as a candidate "
                        "and cannot be registered as voter"
                    )

                try:
                    row = await conn.fetchrow(
                        f"""
                        INSERT INTO voters (name, email, password)
                        VALUES ($1, $2, $3)
                        RETURNING {VOTER_COLUMNS}
                        """,
                        name, email, password_hash
                    )
                except asyncpg.UniqueViolationError:
                    raise ValidationError("Email is already registered")

        return _row_to_voter(row)

    async def get_by_id(self, voter_id: int) -> Optional[Voter]:
        async with self.database.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {VOTER_COLUMNS} FROM voters WHERE id = $1", voter_id
            )
        return _row_to_voter(row) if row else None

    async def get_by_email(self, email: str) -> Optional[Voter]:
        async with self.database.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {VOTER_COLUMNS} FROM voters WHERE email = $1", email
            )
        return _row_to_voter(row) if row else None

    async def list(self, limit: int, offset: int) -> Tuple[List[Voter], int]:
        async with self.database.acquire() as conn:
            total = await conn.fetchval("SELECT COUNT(*) FROM voters")
            rows = await conn.fetch(
                f"SELECT {VOTER_COLUMNS} FROM voters ORDER BY id LIMIT $1 OFFSET $2",
                limit, offset
            )
        return [_row_to_voter(row) for row in rows], total

    async def delete(self, voter_id: int) -> bool:
        async with self.database.acquire() as conn:
            deleted = await conn.fetchval(
                "DELETE FROM voters WHERE id = $1 RETURNING id", voter_id
            )
        return deleted is not None


class PostgresCandidateRepository(CandidateRepository):
    """Candidate storage in the ``candidates`` table."""

    def __init__(self, database: Database):
        self.database = database

    async def create(self, name: str, party: Optional[str]) -> Candidate:
        async with self.database.acquire() as conn:
            async with conn.transaction():
                await conn.execute(NAME_LOCK_SQL, name)

                is_voter = await conn.fetchval(
                    "SELECT 1 FROM voters WHERE name = $1 LIMIT 1", name
                )
                if is_voter:
                    raise ConflictError(
                        "This person is already registered as a voter "
                        "and cannot be registered as candidate"
                    )

                exists = await conn.fetchval(
                    "SELECT 1 FROM candidates WHERE name = $1", name
                )
                if exists:
                    raise ConflictError("Candidate with this name already exists")

                row = await conn.fetchrow(
                    f"""
                    INSERT INTO candidates (name, party)
                    VALUES ($1, $2)
                    RETURNING {CANDIDATE_COLUMNS}
                    """,
                    name, party
                )

        return _row_to_candidate(row)

    async def get_by_id(self, candidate_id: int) -> Optional[Candidate]:
        async with self.database.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {CANDIDATE_COLUMNS} FROM candidates WHERE id = $1",
                candidate_id
            )
        return _row_to_candidate(row) if row else None

    async def list(self, limit: int, offset: int) -> Tuple[List[Candidate], int]:
        async with self.database.acquire() as conn:
            total = await conn.fetchval("SELECT COUNT(*) FROM candidates")
            rows = await conn.fetch(
                f"SELECT {CANDIDATE_COLUMNS} FROM candidates ORDER BY id LIMIT $1 OFFSET $2",
                limit, offset
            )
        return [_row_to_candidate(row) for row in rows], total

    async def list_all(self) -> List[Candidate]:
        async with self.database.acquire() as conn:
            rows = await conn.fetch(
                f"SELECT {CANDIDATE_COLUMNS} FROM candidates ORDER BY id"
            )
        return [_row_to_candidate(row) for row in rows]

    async def delete(self, candidate_id: int) -> bool:
        async with self.database.acquire() as conn:
            deleted = await conn.fetchval(
                "DELETE FROM candidates WHERE id = $1 RETURNING id", candidate_id
            )
        return deleted is not None


class PostgresBallotRepository(BallotRepository):
    """Ballot ledger in the ``votes`` table."""

    def __init__(self, database: Database):
        self.database = database

    async def cast(self, voter_id: int, candidate_id: int) -> Vote:
        try:
            async with self.database.acquire() as conn:
                async with conn.transaction():
                    # Conditional update is the eligibility gate; only one
                    # concurrent caller can flip the flag.
                    marked = await conn.fetchval(
                        """
                        UPDATE voters
                        SET has_voted = TRUE, updated_at = NOW()
                        WHERE id = $1 AND has_voted = FALSE
                        RETURNING id
                        """,
                        voter_id
                    )
                    if marked is None:
                        raise NotEligibleError("Voter not eligible")

                    tallied = await conn.fetchval(
                        """
                        UPDATE candidates
                        SET votes = votes + 1, updated_at = NOW()
                        WHERE id = $1
                        RETURNING id
                        """,
                        candidate_id
                    )
                    if tallied is None:
                        raise CandidateNotFoundError("Candidate not found")

                    row = await conn.fetchrow(
                        f"""
                        INSERT INTO votes (voter_id, candidate_id)
                        VALUES ($1, $2)
                        RETURNING {VOTE_COLUMNS}
                        """,
                        voter_id, candidate_id
                    )

            return _row_to_vote(row)

        except VotingError:
            raise
        except Exception as e:
            logger.error(f"Error casting vote for voter {voter_id}: {e}")
            raise

    async def list(self, limit: int, offset: int) -> Tuple[List[Vote], int]:
        async with self.database.acquire() as conn:
            total = await conn.fetchval("SELECT COUNT(*) FROM votes")
            rows = await conn.fetch(
                f"SELECT {VOTE_COLUMNS} FROM votes ORDER BY id LIMIT $1 OFFSET $2",
                limit, offset
            )
        return [_row_to_vote(row) for row in rows], total
