"""Pydantic models for request/response validation."""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class RegisterRequest(BaseModel):
    """Voter registration request model."""

    name: str = Field(..., description="Voter name")
    email: str = Field(..., description="Login email, unique per voter")
    password: str = Field(..., description="Plain-text password, stored hashed")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        """Validate name is not empty."""
        if not v or not v.strip():
            raise ValueError("Name cannot be empty")
        return v.strip()

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Alice",
                "email": "alice@example.com",
                "password": "s3cret-pass"
            }
        }
    }


class LoginRequest(BaseModel):
    """Login request model."""

    email: str = Field(..., description="Registered email")
    password: str = Field(..., description="Password")


class CandidateRequest(BaseModel):
    """Candidate registration request model."""

    name: str = Field(..., description="Candidate name, unique across voters and candidates")
    party: Optional[str] = Field(default=None, description="Party affiliation")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        """Validate name is not empty."""
        if not v or not v.strip():
            raise ValueError("Name cannot be empty")
        return v.strip()

    model_config = {
        "json_schema_extra": {
            "example": {"name": "Bob Builder", "party": "Construction Party"}
        }
    }


class VoteRequest(BaseModel):
    """Vote submission request model."""

    candidate_id: int = Field(..., description="Candidate ID")

    model_config = {
        "json_schema_extra": {"example": {"candidate_id": 1}}
    }


class VoterResponse(BaseModel):
    """Public view of a voter; the password hash is never exposed."""

    id: int
    name: str
    email: str
    has_voted: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CandidateResponse(BaseModel):
    """Candidate with its running tally."""

    id: int
    name: str
    party: Optional[str] = None
    votes: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class VoteResponse(BaseModel):
    """Ledger row."""

    id: int
    voter_id: Optional[int] = None
    candidate_id: Optional[int] = None
    created_at: Optional[datetime] = None


class VoterListResponse(BaseModel):
    total: int
    page: int
    voters: list[VoterResponse]


class CandidateListResponse(BaseModel):
    total: int
    page: int
    candidates: list[CandidateResponse]


class VoteListResponse(BaseModel):
    total: int
    page: int
    votes: list[VoteResponse]


class TokenResponse(BaseModel):
    """Bearer token issued at login."""

    token: str = Field(..., description="Signed bearer token, valid for one hour")


class MessageResponse(BaseModel):
    """Acknowledgement."""

    message: str


class CandidateStatistics(BaseModel):
    """One candidate's share of the vote."""

    name: str
    party: Optional[str] = None
    votes: int
    percentage: float = Field(..., description="Share of counted votes, two decimals")


class StatisticsResponse(BaseModel):
    """Vote statistics response model."""

    total_votes: int = Field(..., alias="totalVotes")
    statistics: list[CandidateStatistics]

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "example": {
                "totalVotes": 3,
                "statistics": [
                    {"name": "Bob", "party": "Blue", "votes": 2, "percentage": 66.67},
                    {"name": "Carol", "party": None, "votes": 1, "percentage": 33.33}
                ]
            }
        }
    }


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual services")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Health check timestamp")


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error message")
    type: str = Field(..., description="Error type")

    model_config = {
        "json_schema_extra": {
            "example": {
                "error": "Voter not eligible",
                "type": "NotEligibleError"
            }
        }
    }
