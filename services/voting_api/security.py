"""Password hashing and bearer token handling."""
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from .entities import VoterIdentity
from .errors import AuthError, InvalidTokenError


TOKEN_CLAIM = "voterId"


def hash_password(password: str, rounds: int = 10) -> str:
    """Hash a password with a fresh bcrypt salt."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Check a password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def create_access_token(
    voter_id: int,
    secret_key: str,
    algorithm: str = "HS256",
    expires_minutes: int = 60,
    now: Optional[datetime] = None,
) -> str:
    """
    Issue a signed bearer token for a voter.

    Args:
        voter_id: Identifier embedded in the token
        secret_key: HMAC signing secret
        algorithm: JWT signing algorithm
        expires_minutes: Token lifetime
        now: Issue time (defaults to current UTC time)

    Returns:
        str: Encoded JWT
    """
    issued_at = now or datetime.now(timezone.utc)
    payload = {
        TOKEN_CLAIM: voter_id,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, secret_key, algorithm=algorithm)


def decode_access_token(token: str, secret_key: str, algorithm: str = "HS256") -> VoterIdentity:
    """
    Verify a bearer token and return the identity it carries.

    Raises:
        InvalidTokenError: Signature, expiry or payload is invalid
    """
    try:
        payload = jwt.decode(token, secret_key, algorithms=[algorithm])
    except ExpiredSignatureError:
        raise InvalidTokenError("Token expired")
    except JWTError:
        raise InvalidTokenError("Invalid token")

    voter_id = payload.get(TOKEN_CLAIM)
    if not isinstance(voter_id, int) or isinstance(voter_id, bool):
        raise InvalidTokenError("Invalid token")
    return VoterIdentity(voter_id=voter_id)


def extract_bearer_token(authorization: Optional[str]) -> str:
    """
    Pull the token out of an ``Authorization: Bearer <token>`` header.

    Raises:
        AuthError: Header is absent
        InvalidTokenError: Header is not a bearer credential
    """
    if not authorization or not authorization.strip():
        raise AuthError("Access denied")
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise InvalidTokenError("Invalid token")
    return token.strip()


def authenticate(
    authorization: Optional[str], secret_key: str, algorithm: str = "HS256"
) -> VoterIdentity:
    """Resolve an Authorization header value to a voter identity."""
    token = extract_bearer_token(authorization)
    return decode_access_token(token, secret_key, algorithm)
