"""
FastAPI application for the voting API.

Registers voters and candidates, issues bearer tokens, records one vote per
voter and reports tallies.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, get_settings
from .database import Database
from .entities import VoterIdentity
from .errors import ValidationError, VotingError
from .models import (
    CandidateListResponse,
    CandidateRequest,
    CandidateResponse,
    CandidateStatistics,
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    StatisticsResponse,
    TokenResponse,
    VoteListResponse,
    VoteRequest,
    VoteResponse,
    VoterListResponse,
    VoterResponse,
)
from .service import VotingService

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Prometheus metrics
votes_cast = Counter(
    "votes_cast_total",
    "Total number of votes recorded",
    ["candidate_id"]
)
vote_errors = Counter(
    "vote_errors_total",
    "Total number of rejected vote submissions",
    ["error_type"]
)
request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"]
)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
}
NOT_FOUND_RESPONSES = {
    404: {"model": ErrorResponse, "description": "Record not found"},
}

router = APIRouter()


# Dependencies

def get_service(request: Request) -> VotingService:
    return request.app.state.service


def current_voter(
    request: Request, service: VotingService = Depends(get_service)
) -> VoterIdentity:
    """Resolve the bearer token on the request to a voter identity."""
    return service.authenticate(request.headers.get("Authorization"))


def pagination(
    request: Request,
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: Optional[int] = Query(None, ge=1, description="Page size"),
) -> Tuple[int, int]:
    """Validated (page, limit) query parameters."""
    app_settings: Settings = request.app.state.settings
    if limit is None:
        limit = app_settings.DEFAULT_PAGE_SIZE
    if limit > app_settings.MAX_PAGE_SIZE:
        raise ValidationError(f"limit cannot exceed {app_settings.MAX_PAGE_SIZE}")
    return page, limit


# Authentication

@router.post(
    "/register",
    response_model=VoterResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES
)
async def register(
    data: RegisterRequest, service: VotingService = Depends(get_service)
) -> VoterResponse:
    """Register a voter. A name already used by a candidate is rejected."""
    voter = await service.register(data.name, data.email, data.password)
    return VoterResponse(**voter.to_public_dict())


async def login(
    request: Request, data: LoginRequest, service: VotingService = Depends(get_service)
) -> TokenResponse:
    """Exchange email and password for a one-hour bearer token."""
    token = await service.login(data.email, data.password)
    return TokenResponse(token=token)


# Voters

@router.get("/voters", response_model=VoterListResponse, responses=ERROR_RESPONSES)
async def list_voters(
    paging: Tuple[int, int] = Depends(pagination),
    service: VotingService = Depends(get_service)
) -> VoterListResponse:
    page = await service.list_voters(*paging)
    return VoterListResponse(
        total=page.total,
        page=page.page,
        voters=[VoterResponse(**voter.to_public_dict()) for voter in page.items]
    )


@router.get("/voters/{voter_id}", response_model=VoterResponse, responses=NOT_FOUND_RESPONSES)
async def get_voter(
    voter_id: int, service: VotingService = Depends(get_service)
) -> VoterResponse:
    voter = await service.get_voter(voter_id)
    return VoterResponse(**voter.to_public_dict())


@router.delete("/voters/{voter_id}", response_model=MessageResponse, responses=NOT_FOUND_RESPONSES)
async def delete_voter(
    voter_id: int, service: VotingService = Depends(get_service)
) -> MessageResponse:
    await service.delete_voter(voter_id)
    return MessageResponse(message="Voter deleted successfully")


# Candidates

@router.post(
    "/candidates",
    response_model=CandidateResponse,
    status_code=status.HTTP_201_CREATED,
    responses=ERROR_RESPONSES
)
async def register_candidate(
    data: CandidateRequest, service: VotingService = Depends(get_service)
) -> CandidateResponse:
    """Register a candidate. A name already used by a voter or candidate is rejected."""
    candidate = await service.register_candidate(data.name, data.party)
    return CandidateResponse(**candidate.to_dict())


@router.get("/candidates", response_model=CandidateListResponse, responses=ERROR_RESPONSES)
async def list_candidates(
    paging: Tuple[int, int] = Depends(pagination),
    service: VotingService = Depends(get_service)
) -> CandidateListResponse:
    page = await service.list_candidates(*paging)
    return CandidateListResponse(
        total=page.total,
        page=page.page,
        candidates=[CandidateResponse(**candidate.to_dict()) for candidate in page.items]
    )


@router.get(
    "/candidates/{candidate_id}",
    response_model=CandidateResponse,
    responses=NOT_FOUND_RESPONSES
)
async def get_candidate(
    candidate_id: int, service: VotingService = Depends(get_service)
) -> CandidateResponse:
    candidate = await service.get_candidate(candidate_id)
    return CandidateResponse(**candidate.to_dict())


@router.delete(
    "/candidates/{candidate_id}",
    response_model=MessageResponse,
    responses=NOT_FOUND_RESPONSES
)
async def delete_candidate(
    candidate_id: int, service: VotingService = Depends(get_service)
) -> MessageResponse:
    await service.delete_candidate(candidate_id)
    return MessageResponse(message="Candidate deleted successfully")


# Votes

async def cast_vote(
    request: Request,
    vote: VoteRequest,
    identity: VoterIdentity = Depends(current_voter),
    service: VotingService = Depends(get_service)
) -> MessageResponse:
    """
    Cast the authenticated voter's single vote.

    - **candidate_id**: Candidate ID

    Requires `Authorization: Bearer <token>`.
    """
    try:
        await service.cast_vote(identity, vote.candidate_id)
    except VotingError as e:
        vote_errors.labels(error_type=type(e).__name__).inc()
        raise

    votes_cast.labels(candidate_id=str(vote.candidate_id)).inc()
    return MessageResponse(message="Vote cast successfully")


@router.get("/votes", response_model=VoteListResponse, responses=ERROR_RESPONSES)
async def list_votes(
    paging: Tuple[int, int] = Depends(pagination),
    service: VotingService = Depends(get_service)
) -> VoteListResponse:
    page = await service.list_votes(*paging)
    return VoteListResponse(
        total=page.total,
        page=page.page,
        votes=[VoteResponse(**vote.to_dict()) for vote in page.items]
    )


@router.get("/votes/statistics", response_model=StatisticsResponse)
async def vote_statistics(
    service: VotingService = Depends(get_service)
) -> StatisticsResponse:
    """Per-candidate vote counts and percentages."""
    stats = await service.statistics()
    return StatisticsResponse(
        total_votes=stats.total_votes,
        statistics=[
            CandidateStatistics(
                name=share.name,
                party=share.party,
                votes=share.votes,
                percentage=share.percentage
            )
            for share in stats.per_candidate
        ]
    )


# Operations

@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        503: {"model": HealthResponse, "description": "Service unhealthy"}
    }
)
async def health_check(request: Request) -> HealthResponse:
    """Check health of the service and its database."""
    database = request.app.state.database
    postgres_healthy = await database.check_health()
    services = {"postgresql": "connected" if postgres_healthy else "disconnected"}

    response = HealthResponse(
        status="healthy" if postgres_healthy else "unhealthy",
        services=services,
        timestamp=datetime.utcnow()
    )

    return JSONResponse(
        status_code=status.HTTP_200_OK if postgres_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(mode="json")
    )


@router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


@router.get("/")
async def root(request: Request):
    """Root endpoint with API information."""
    app_settings: Settings = request.app.state.settings
    return {
        "service": app_settings.SERVICE_NAME,
        "version": app_settings.API_VERSION,
        "status": "running",
        "endpoints": {
            "register": "/register",
            "login": "/login",
            "voters": "/voters",
            "candidates": "/candidates",
            "votes": "/votes",
            "statistics": "/votes/statistics",
            "health": "/health",
            "metrics": "/metrics"
        }
    }


# Error handling

def _error_body(message: str, error_type: str) -> dict:
    return {"error": message, "type": error_type}


async def voting_error_handler(request: Request, exc: VotingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.message, type(exc).__name__)
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else first.get("msg")
    else:
        message = "Invalid request"
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body(message, "ValidationError")
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(str(exc.detail), "HTTPError"),
        headers=getattr(exc, "headers", None)
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("Internal server error", "InternalError")
    )


async def prometheus_middleware(request: Request, call_next):
    """Middleware to track request duration."""
    started = time.perf_counter()
    response = await call_next(request)
    route = request.scope.get("route")
    request_duration.labels(
        method=request.method,
        endpoint=getattr(route, "path", request.url.path),
        status=response.status_code
    ).observe(time.perf_counter() - started)
    return response


def rate_limited_router(limiter: Limiter, rate: str) -> APIRouter:
    """Routes throttled per client address at the given rate."""
    limited = APIRouter()
    limited.add_api_route(
        "/login",
        limiter.limit(rate)(login),
        methods=["POST"],
        response_model=TokenResponse,
        responses={**ERROR_RESPONSES, 429: {"description": "Rate limit exceeded"}}
    )
    limited.add_api_route(
        "/votes",
        limiter.limit(rate)(cast_vote),
        methods=["POST"],
        response_model=MessageResponse,
        status_code=status.HTTP_201_CREATED,
        responses={
            **ERROR_RESPONSES,
            401: {"model": ErrorResponse, "description": "Missing bearer token"},
            429: {"description": "Rate limit exceeded"},
        }
    )
    return limited


def create_app(
    app_settings: Optional[Settings] = None, database: Optional[Database] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        app_settings: Settings to use (defaults to the environment)
        database: Persistence handle; a PostgreSQL ``Database`` is built
            from the settings when omitted

    The database is opened in the lifespan startup and closed at shutdown.
    """
    app_settings = app_settings or get_settings()
    database = database or Database(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events."""
        logger.info(f"Starting {app_settings.SERVICE_NAME} service...")

        try:
            await database.initialize()
            logger.info(f"{app_settings.SERVICE_NAME} started successfully")
        except Exception as e:
            logger.error(f"Failed to start {app_settings.SERVICE_NAME}: {e}")
            raise

        yield

        logger.info(f"Shutting down {app_settings.SERVICE_NAME} service...")
        await database.close()
        logger.info(f"{app_settings.SERVICE_NAME} shut down successfully")

    app = FastAPI(
        title="Voting API",
        description="Register voters and candidates, cast votes and read tallies",
        version=app_settings.API_VERSION,
        lifespan=lifespan
    )

    app.state.settings = app_settings
    app.state.database = database
    app.state.service = VotingService(
        database.voters, database.candidates, database.ballots, app_settings
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=app_settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=app_settings.CORS_ALLOW_METHODS,
        allow_headers=app_settings.CORS_ALLOW_HEADERS,
    )
    app.middleware("http")(prometheus_middleware)

    # Add rate limiter
    limiter = Limiter(
        key_func=get_remote_address, enabled=app_settings.RATE_LIMIT_ENABLED
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(VotingError, voting_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(rate_limited_router(limiter, app_settings.RATE_LIMIT))
    app.include_router(router)
    return app


app = create_app(settings)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "voting_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
