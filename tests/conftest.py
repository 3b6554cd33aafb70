"""Pytest fixtures for unit and API tests.

The repositories here keep everything in dictionaries so the service and the
HTTP layer can be exercised without PostgreSQL. They honour the same
contracts as the PostgreSQL implementations. Registration collision checks
happen without yielding between the check and the write, as the advisory lock
does. Casting a vote flips the voter flag in one step like the conditional
update, then yields between the remaining statements of the transaction and
undoes the flag when the candidate is missing. Row locking itself is only
covered by the `docker` tests in `tests/integration`.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import AsyncGenerator, Dict, List, Optional, Tuple

import asyncpg
import httpx
import pytest

from voting_api.config import Settings
from voting_api.entities import Candidate, Vote, Voter
from voting_api.errors import (
    CandidateNotFoundError,
    ConflictError,
    NotEligibleError,
    ValidationError,
)
from voting_api.main import create_app
from voting_api.repositories import (
    BallotRepository,
    CandidateRepository,
    VoterRepository,
)
from voting_api.service import VotingService


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _check_int4(*values: int) -> None:
    """Reject parameters PostgreSQL INTEGER columns cannot hold, as asyncpg does."""
    for value in values:
        if not -2**31 <= value < 2**31:
            raise asyncpg.DataError(f"value out of int32 range: {value}")


class InMemoryVoterRepository(VoterRepository):

    def __init__(self, database: "InMemoryDatabase"):
        self.database = database

    async def create(self, name: str, email: str, password_hash: str) -> Voter:
        await asyncio.sleep(0)
        db = self.database
        if any(c.name == name for c in db.candidate_rows.values()):
            raise ConflictError(
                "This person is already registered as a candidate "
                "and cannot be registered as voter"
            )
        if any(v.email == email for v in db.voter_rows.values()):
            raise ValidationError("Email is already registered")

        voter = Voter(
            id=db.next_id("voters"),
            name=name,
            email=email,
            password_hash=password_hash,
            created_at=_now(),
            updated_at=_now(),
        )
        db.voter_rows[voter.id] = voter
        return voter

    async def get_by_id(self, voter_id: int) -> Optional[Voter]:
        _check_int4(voter_id)
        return self.database.voter_rows.get(voter_id)

    async def get_by_email(self, email: str) -> Optional[Voter]:
        for voter in self.database.voter_rows.values():
            if voter.email == email:
                return voter
        return None

    async def list(self, limit: int, offset: int) -> Tuple[List[Voter], int]:
        rows = sorted(self.database.voter_rows.values(), key=lambda v: v.id)
        return rows[offset:offset + limit], len(rows)

    async def delete(self, voter_id: int) -> bool:
        _check_int4(voter_id)
        db = self.database
        if db.voter_rows.pop(voter_id, None) is None:
            return False
        for vote in db.vote_rows.values():
            if vote.voter_id == voter_id:
                vote.voter_id = None
        return True


class InMemoryCandidateRepository(CandidateRepository):

    def __init__(self, database: "InMemoryDatabase"):
        self.database = database

    async def create(self, name: str, party: Optional[str]) -> Candidate:
        await asyncio.sleep(0)
        db = self.database
        if any(v.name == name for v in db.voter_rows.values()):
            raise ConflictError(
                "This person is already registered as a voter "
                "and cannot be registered as candidate"
            )
        if any(c.name == name for c in db.candidate_rows.values()):
            raise ConflictError("Candidate with this name already exists")

        candidate = Candidate(
            id=db.next_id("candidates"),
            name=name,
            party=party,
            created_at=_now(),
            updated_at=_now(),
        )
        db.candidate_rows[candidate.id] = candidate
        return candidate

    async def get_by_id(self, candidate_id: int) -> Optional[Candidate]:
        _check_int4(candidate_id)
        return self.database.candidate_rows.get(candidate_id)

    async def list(self, limit: int, offset: int) -> Tuple[List[Candidate], int]:
        rows = await self.list_all()
        return rows[offset:offset + limit], len(rows)

    async def list_all(self) -> List[Candidate]:
        rows = sorted(self.database.candidate_rows.values(), key=lambda c: c.id)
        return [replace(candidate) for candidate in rows]

    async def delete(self, candidate_id: int) -> bool:
        _check_int4(candidate_id)
        db = self.database
        if db.candidate_rows.pop(candidate_id, None) is None:
            return False
        for vote in db.vote_rows.values():
            if vote.candidate_id == candidate_id:
                vote.candidate_id = None
        return True


class InMemoryBallotRepository(BallotRepository):

    def __init__(self, database: "InMemoryDatabase"):
        self.database = database

    async def cast(self, voter_id: int, candidate_id: int) -> Vote:
        _check_int4(voter_id, candidate_id)
        await asyncio.sleep(0)
        db = self.database
        voter = db.voter_rows.get(voter_id)
        if voter is None or voter.has_voted:
            raise NotEligibleError("Voter not eligible")
        voter.has_voted = True
        voter.updated_at = _now()
        await asyncio.sleep(0)

        candidate = db.candidate_rows.get(candidate_id)
        if candidate is None:
            voter.has_voted = False
            raise CandidateNotFoundError("Candidate not found")
        candidate.votes += 1
        candidate.updated_at = _now()
        await asyncio.sleep(0)

        vote = Vote(
            id=db.next_id("votes"),
            voter_id=voter_id,
            candidate_id=candidate_id,
            created_at=_now(),
        )
        db.vote_rows[vote.id] = vote
        return vote

    async def list(self, limit: int, offset: int) -> Tuple[List[Vote], int]:
        rows = sorted(self.database.vote_rows.values(), key=lambda v: v.id)
        return rows[offset:offset + limit], len(rows)


class InMemoryDatabase:
    """Stand-in for ``voting_api.database.Database``."""

    def __init__(self):
        self.voter_rows: Dict[int, Voter] = {}
        self.candidate_rows: Dict[int, Candidate] = {}
        self.vote_rows: Dict[int, Vote] = {}
        self._sequences: Dict[str, int] = {}
        self.healthy = True
        self.initialized = False
        self.voters = InMemoryVoterRepository(self)
        self.candidates = InMemoryCandidateRepository(self)
        self.ballots = InMemoryBallotRepository(self)

    def next_id(self, table: str) -> int:
        self._sequences[table] = self._sequences.get(table, 0) + 1
        return self._sequences[table]

    async def initialize(self):
        self.initialized = True

    async def check_health(self) -> bool:
        return self.healthy

    async def close(self):
        self.initialized = False


@pytest.fixture
def settings() -> Settings:
    """Settings with a fixed secret and the cheapest bcrypt work factor."""
    return Settings(
        SECRET_KEY="test-secret",
        BCRYPT_ROUNDS=4,
        RATE_LIMIT_ENABLED=False,
    )


@pytest.fixture
def database() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def service(database: InMemoryDatabase, settings: Settings) -> VotingService:
    return VotingService(
        database.voters, database.candidates, database.ballots, settings
    )


@pytest.fixture
def app(settings: Settings, database: InMemoryDatabase):
    return create_app(settings, database)


@pytest.fixture
async def api_client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    """HTTP client bound directly to the ASGI app."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def sample_voter() -> Dict[str, str]:
    return {"name": "Alice", "email": "alice@example.com", "password": "wonderland"}


@pytest.fixture
def sample_candidates() -> List[Dict[str, str]]:
    return [
        {"name": "Bob", "party": "Blue"},
        {"name": "Carol", "party": "Green"},
        {"name": "Dave", "party": None},
    ]


@pytest.fixture
def auth_headers(api_client: httpx.AsyncClient, sample_voter: Dict[str, str]):
    """Register and log in a voter, returning its Authorization header.

    Returns an async function so tests can create several voters.
    """
    async def _login(voter: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        voter = voter or sample_voter
        response = await api_client.post("/register", json=voter)
        assert response.status_code == 201
        response = await api_client.post(
            "/login", json={"email": voter["email"], "password": voter["password"]}
        )
        assert response.status_code == 200
        return {"Authorization": f"Bearer {response.json()['token']}"}

    return _login
