"""Security utilities for authentication and internal service access.

Principals are identified by short-lived JWT access tokens whose subject is the
account id. Privileged capabilities (admin review) are never read from token
claims; they are re-derived from the stored account on every use.
"""

import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from core.config import settings

# Token issuer and audience for validation
TOKEN_ISSUER = "trustgate-api"
TOKEN_AUDIENCE = "trustgate-client"


def _create_token_base(
    data: dict[str, Any],
    token_type: str,
    expires_delta: timedelta,
) -> str:
    """Create a JWT token with standard claims."""
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + expires_delta
    to_encode.update(
        {
            "exp": expire,
            "iat": now,
            "type": token_type,
            "iss": TOKEN_ISSUER,
            "aud": TOKEN_AUDIENCE,
            "jti": secrets.token_urlsafe(16),
        }
    )
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def create_access_token(
    account_id: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token for an account."""
    delta = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    return _create_token_base({"sub": account_id}, "access", delta)


def decode_token(token: str, expected_type: str | None = None) -> dict[str, Any] | None:
    """
    Decode and validate a JWT token.

    Args:
        token: The JWT token to decode
        expected_type: If provided, validates the token type matches

    Returns:
        The decoded payload or None if invalid
    """
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            issuer=TOKEN_ISSUER,
            audience=TOKEN_AUDIENCE,
        )
        if expected_type and payload.get("type") != expected_type:
            return None
        return payload
    except JWTError:
        return None


def verify_internal_secret(provided: str | None) -> bool:
    """Constant-time check of the service-to-service shared secret."""
    if not provided or settings.INTERNAL_API_SECRET == "not-set":
        return False
    return hmac.compare_digest(provided.encode(), settings.INTERNAL_API_SECRET.encode())
