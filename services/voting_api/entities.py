"""
Records held by the credential store, candidate registry and ballot ledger.

These are plain dataclasses handed between the repositories and the service
layer; the API layer converts them to response models.
"""

from dataclasses import dataclass, asdict, field
from datetime import datetime
from typing import Optional, Dict, Any, Generic, List, TypeVar


T = TypeVar("T")


@dataclass
class Voter:
    """
    A registered voter.

    Attributes:
        id: Generated identifier
        name: Display name, never shared with a candidate
        email: Unique login email
        password_hash: bcrypt hash of the password
        has_voted: Flips to True exactly once, when the vote is recorded
    """
    id: int
    name: str
    email: str
    password_hash: str
    has_voted: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_public_dict(self) -> Dict[str, Any]:
        """Serialize without the password hash."""
        data = asdict(self)
        data.pop("password_hash")
        return data


@dataclass
class Candidate:
    """A registered candidate and its running tally."""
    id: int
    name: str
    party: Optional[str] = None
    votes: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Vote:
    """Immutable ledger row linking a voter to a candidate."""
    id: int
    voter_id: Optional[int]
    candidate_id: Optional[int]
    created_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class VoterIdentity:
    """Identity carried by a verified bearer token."""
    voter_id: int


@dataclass
class Page(Generic[T]):
    """One page of records plus the unpaged total."""
    total: int
    page: int
    items: List[T] = field(default_factory=list)


@dataclass
class CandidateShare:
    """A candidate's share of the counted votes."""
    name: str
    party: Optional[str]
    votes: int
    percentage: float


@dataclass
class Statistics:
    """Vote totals across all candidates."""
    total_votes: int
    per_candidate: List[CandidateShare] = field(default_factory=list)


def compute_percentage(votes: int, total_votes: int) -> float:
    """
    Percentage of the total, rounded to two decimals.

    Args:
        votes: Votes received by one candidate
        total_votes: Votes counted across all candidates

    Returns:
        float: 0 when no votes were counted
    """
    if not total_votes:
        return 0
    return round(votes / total_votes * 100, 2)


def page_offset(page: int, limit: int) -> int:
    """Row offset of the first record on a 1-based page."""
    return (page - 1) * limit
