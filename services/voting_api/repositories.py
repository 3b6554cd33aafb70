"""Data-access interfaces for voters, candidates and the ballot ledger.

The service layer only talks to these interfaces; ``database.py`` provides
the PostgreSQL implementations. Implementations must make ``create`` and
``cast`` atomic with respect to the invariants documented on each method.
"""
from abc import ABC, abstractmethod
from typing import List, Optional, Tuple

from .entities import Candidate, Vote, Voter


class VoterRepository(ABC):
    """Credential store."""

    @abstractmethod
    async def create(self, name: str, email: str, password_hash: str) -> Voter:
        """Persist a new voter.

        Raises:
            ConflictError: A candidate already has this name
            ValidationError: The email is already registered
        """

    @abstractmethod
    async def get_by_id(self, voter_id: int) -> Optional[Voter]:
        """Get voter by ID."""

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[Voter]:
        """Get voter by login email."""

    @abstractmethod
    async def list(self, limit: int, offset: int) -> Tuple[List[Voter], int]:
        """Return one page of voters in insertion order and the total count."""

    @abstractmethod
    async def delete(self, voter_id: int) -> bool:
        """Delete a voter, returning False when it did not exist."""


class CandidateRepository(ABC):
    """Candidate registry."""

    @abstractmethod
    async def create(self, name: str, party: Optional[str]) -> Candidate:
        """Persist a new candidate with a zero tally.

        Raises:
            ConflictError: A voter or another candidate already has this name
        """

    @abstractmethod
    async def get_by_id(self, candidate_id: int) -> Optional[Candidate]:
        """Get candidate by ID."""

    @abstractmethod
    async def list(self, limit: int, offset: int) -> Tuple[List[Candidate], int]:
        """Return one page of candidates in insertion order and the total count."""

    @abstractmethod
    async def list_all(self) -> List[Candidate]:
        """Return every candidate in insertion order."""

    @abstractmethod
    async def delete(self, candidate_id: int) -> bool:
        """Delete a candidate, returning False when it did not exist."""


class BallotRepository(ABC):
    """Append-only ballot ledger."""

    @abstractmethod
    async def cast(self, voter_id: int, candidate_id: int) -> Vote:
        """Record one vote in a single transaction.

        Marks the voter as having voted only if it had not already, bumps the
        candidate tally by one and appends the ledger row. Nothing is written
        when any step fails.

        Raises:
            NotEligibleError: Voter is unknown or has already voted
            CandidateNotFoundError: Candidate is unknown
        """

    @abstractmethod
    async def list(self, limit: int, offset: int) -> Tuple[List[Vote], int]:
        """Return one page of ledger rows in insertion order and the total count."""
