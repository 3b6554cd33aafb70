"""Domain errors raised by the voting service.

Every error carries the HTTP status it maps to; the API layer turns them into
``{"error": message, "type": name}`` bodies.
"""


class VotingError(Exception):
    """Base class for all domain errors."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(VotingError):
    """Malformed or missing input, or a uniqueness violation."""


class ConflictError(VotingError):
    """Identity collision between voters and candidates, or duplicate candidate."""


class AuthError(VotingError):
    """Caller could not be authenticated."""

    status_code = 401


class InvalidCredentialsError(AuthError):
    """Unknown email or wrong password at login."""

    status_code = 400


class InvalidTokenError(AuthError):
    """Bearer token is malformed, badly signed or expired."""

    status_code = 400


class NotFoundError(VotingError):
    """Requested record does not exist."""

    status_code = 404


class NotEligibleError(VotingError):
    """Voter does not exist or has already voted."""


class CandidateNotFoundError(NotFoundError):
    """Vote names a candidate that does not exist; rejected as a bad request."""

    status_code = 400
