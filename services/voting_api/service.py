"""Voting operations: registration, login, candidates, ballots and tallies."""
import asyncio
import logging
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from .config import Settings
from .entities import (
    Candidate,
    CandidateShare,
    Page,
    Statistics,
    Vote,
    Voter,
    VoterIdentity,
    compute_percentage,
    page_offset,
)
from .errors import (
    CandidateNotFoundError,
    InvalidCredentialsError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
)
from .repositories import BallotRepository, CandidateRepository, VoterRepository
from .security import (
    authenticate,
    create_access_token,
    hash_password,
    verify_password,
)

logger = logging.getLogger(__name__)

# bcrypt only reads the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72

# ids are PostgreSQL INTEGER columns
MAX_ID = 2**31 - 1


class VotingService:
    """Orchestrates the credential store, candidate registry and ballot ledger."""

    def __init__(
        self,
        voters: VoterRepository,
        candidates: CandidateRepository,
        ballots: BallotRepository,
        settings: Settings,
    ):
        self.voters = voters
        self.candidates = candidates
        self.ballots = ballots
        self.settings = settings

    # Authentication

    async def register(self, name: str, email: str, password: str) -> Voter:
        """
        Register a new voter.

        Raises:
            ConflictError: A candidate already has this name
            ValidationError: Blank name/password or email already registered
        """
        name = _require_text(name, "Name")
        email = _normalize_email(email)
        if not password:
            raise ValidationError("Password cannot be empty")
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError(f"Password cannot exceed {MAX_PASSWORD_BYTES} bytes")

        password_hash = await asyncio.to_thread(
            hash_password, password, self.settings.BCRYPT_ROUNDS
        )
        voter = await self.voters.create(name, email, password_hash)
        logger.info(f"Voter registered: id={voter.id}")
        return voter

    async def login(self, email: str, password: str) -> str:
        """
        Exchange credentials for a bearer token.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password
        """
        try:
            email = _normalize_email(email)
        except ValidationError:
            raise InvalidCredentialsError("Invalid credentials")

        voter = await self.voters.get_by_email(email)
        if voter is None or not await asyncio.to_thread(
            verify_password, password, voter.password_hash
        ):
            logger.info("Rejected login attempt")
            raise InvalidCredentialsError("Invalid credentials")

        logger.info(f"Voter logged in: id={voter.id}")
        return create_access_token(
            voter.id,
            self.settings.SECRET_KEY,
            algorithm=self.settings.JWT_ALGORITHM,
            expires_minutes=self.settings.ACCESS_TOKEN_EXPIRE_MINUTES,
        )

    def authenticate(self, authorization: Optional[str]) -> VoterIdentity:
        """Resolve an Authorization header to the calling voter."""
        return authenticate(
            authorization, self.settings.SECRET_KEY, self.settings.JWT_ALGORITHM
        )

    # Voters

    async def list_voters(self, page: int, limit: int) -> Page[Voter]:
        items, total = await self.voters.list(limit, page_offset(page, limit))
        return Page(total=total, page=page, items=items)

    async def get_voter(self, voter_id: int) -> Voter:
        voter = await self.voters.get_by_id(voter_id) if _storable_id(voter_id) else None
        if voter is None:
            raise NotFoundError("Voter not found")
        return voter

    async def delete_voter(self, voter_id: int) -> None:
        if not _storable_id(voter_id) or not await self.voters.delete(voter_id):
            raise NotFoundError("Voter not found")
        logger.info(f"Voter deleted: id={voter_id}")

    # Candidates

    async def register_candidate(self, name: str, party: Optional[str] = None) -> Candidate:
        """
        Register a new candidate with an empty tally.

        Raises:
            ConflictError: Name is taken by a voter or another candidate
            ValidationError: Blank name
        """
        name = _require_text(name, "Name")
        if party is not None:
            party = party.strip() or None

        candidate = await self.candidates.create(name, party)
        logger.info(f"Candidate registered: id={candidate.id}")
        return candidate

    async def list_candidates(self, page: int, limit: int) -> Page[Candidate]:
        items, total = await self.candidates.list(limit, page_offset(page, limit))
        return Page(total=total, page=page, items=items)

    async def get_candidate(self, candidate_id: int) -> Candidate:
        candidate = (
            await self.candidates.get_by_id(candidate_id)
            if _storable_id(candidate_id) else None
        )
        if candidate is None:
            raise NotFoundError("Candidate not found")
        return candidate

    async def delete_candidate(self, candidate_id: int) -> None:
        if not _storable_id(candidate_id) or not await self.candidates.delete(candidate_id):
            raise NotFoundError("Candidate not found")
        logger.info(f"Candidate deleted: id={candidate_id}")

    # Ballots

    async def cast_vote(self, identity: VoterIdentity, candidate_id: int) -> Vote:
        """
        Record the caller's vote.

        Raises:
            NotEligibleError: Voter is unknown or has already voted
            CandidateNotFoundError: Candidate is unknown
        """
        if not _storable_id(identity.voter_id):
            raise NotEligibleError("Voter not eligible")
        if not _storable_id(candidate_id):
            raise CandidateNotFoundError("Candidate not found")
        vote = await self.ballots.cast(identity.voter_id, candidate_id)
        logger.info(f"Vote cast: voter={identity.voter_id}, candidate={candidate_id}")
        return vote

    async def list_votes(self, page: int, limit: int) -> Page[Vote]:
        items, total = await self.ballots.list(limit, page_offset(page, limit))
        return Page(total=total, page=page, items=items)

    async def statistics(self) -> Statistics:
        """
        Per-candidate tallies and their share of the counted votes.

        The total is summed from the same rows as the shares. Tallies move with
        the ledger in one transaction, so the sum equals the ledger rows that
        still reference a candidate.
        """
        candidates = await self.candidates.list_all()
        total_votes = sum(candidate.votes for candidate in candidates)
        return Statistics(
            total_votes=total_votes,
            per_candidate=[
                CandidateShare(
                    name=candidate.name,
                    party=candidate.party,
                    votes=candidate.votes,
                    percentage=compute_percentage(candidate.votes, total_votes),
                )
                for candidate in candidates
            ],
        )


def _require_text(value: Optional[str], label: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{label} cannot be empty")
    return value.strip()


def _normalize_email(email: Optional[str]) -> str:
    try:
        return validate_email(email or "", check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}")


def _storable_id(value: int) -> bool:
    return 1 <= value <= MAX_ID
