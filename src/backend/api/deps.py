"""
Shared dependencies for API endpoints.

Includes:
- Account JWT authentication for the consumer API
- Admin capability check (re-read from the stored account, never the token)
- Shared-secret authentication for internal service calls
"""

from typing import Annotated, Callable

import structlog
from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.security import decode_token, verify_internal_secret
from db.session import get_db, get_session_maker
from models.account import Account
from repositories.account_repository import AccountRepository

logger = structlog.get_logger(__name__)

# Security schemes
security = HTTPBearer()


# =============================================================================
# Account Authentication (JWT-based)
# =============================================================================


async def get_current_principal(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
    db: AsyncSession = Depends(get_db),
) -> Account:
    """
    Extract and validate the calling account from the JWT token.

    Raises:
        HTTPException: If token is invalid or the account is unknown.
    """
    payload = decode_token(credentials.credentials, expected_type="access")

    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    account_id = payload.get("sub")
    if account_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"},
        )

    account = await AccountRepository(db).get_by_id(account_id)
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return account


async def get_current_active_principal(
    principal: Annotated[Account, Depends(get_current_principal)],
) -> Account:
    """Ensure the calling account is active."""
    if not principal.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive account",
        )
    return principal


async def require_admin(
    principal: Annotated[Account, Depends(get_current_active_principal)],
) -> Account:
    """
    Ensure the caller holds the admin capability.

    Used for read-only admin surfaces. Review decisions re-check the
    capability inside the workflow so that denials are audited.
    """
    if not principal.is_admin:
        logger.warning("non_admin_access_attempt", account_id=principal.id)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return principal


# =============================================================================
# Internal Service Authentication
# =============================================================================


async def require_internal_service(
    x_internal_secret: Annotated[str | None, Header()] = None,
) -> None:
    """Reject internal calls without the shared service secret."""
    if not verify_internal_secret(x_internal_secret):
        logger.warning("internal_auth_failed")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid internal credentials",
        )


def get_session_factory() -> Callable[[], AsyncSession]:
    """Session factory for work that outlives the request (background tasks)."""
    return get_session_maker()
