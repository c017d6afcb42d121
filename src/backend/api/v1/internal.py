"""
Service-to-service endpoints.

Called by the identity, profile, messaging and discovery services. Every
route requires the shared ``X-Internal-Secret`` header.
"""

import structlog
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import require_internal_service
from core.exceptions import AccountNotFound
from db.session import get_db
from repositories.account_repository import AccountRepository
from schemas.account import AccountCreate, AccountState, ContactVerified, ProfileSignals
from schemas.activity import ActivityEvaluation, ActivityEventIn
from schemas.visibility import VisibilityResponse
from services.behavior_detector import BehaviorDetector
from services.verification_state_machine import VerificationStateMachine
from services.visibility import VisibilityService

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_internal_service)])


@router.post("/accounts", response_model=AccountState, status_code=status.HTTP_201_CREATED)
async def create_account(
    request: AccountCreate,
    db: AsyncSession = Depends(get_db),
) -> AccountState:
    """Register a new account in the unverified state."""
    try:
        account = await AccountRepository(db).create(account_id=request.account_id, is_admin=request.is_admin)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("account_registered", account_id=account.id, is_admin=account.is_admin)
    return AccountState.model_validate(account)


@router.post("/accounts/{account_id}/contact-verified", response_model=AccountState)
async def contact_verified(
    account_id: str,
    request: ContactVerified,
    db: AsyncSession = Depends(get_db),
) -> AccountState:
    """Record a passed email or phone OTP check."""
    account = await VerificationStateMachine(db).record_contact_verified(account_id, request.channel)
    return AccountState.model_validate(account)


@router.put("/accounts/{account_id}/profile-signals", response_model=AccountState)
async def update_profile_signals(
    account_id: str,
    request: ProfileSignals,
    db: AsyncSession = Depends(get_db),
) -> AccountState:
    """Replace the profile completeness counters."""
    account = await VerificationStateMachine(db).update_profile_signals(
        account_id,
        photo_count=request.photo_count,
        bio_length=request.bio_length,
        prompt_count=request.prompt_count,
    )
    return AccountState.model_validate(account)


@router.post("/activity", response_model=ActivityEvaluation)
async def record_activity(
    event: ActivityEventIn,
    db: AsyncSession = Depends(get_db),
) -> ActivityEvaluation:
    """Ingest one behavior event and evaluate thresholds."""
    return await BehaviorDetector(db).record_activity(
        event.account_id,
        event.kind,
        counterpart_id=event.counterpart_id,
    )


@router.get("/visibility/{account_id}", response_model=VisibilityResponse)
async def get_visibility(
    account_id: str,
    db: AsyncSession = Depends(get_db),
) -> VisibilityResponse:
    """Visibility weight and contact permission for discovery and messaging."""
    return await VisibilityService(db).describe(account_id)


@router.get("/accounts/{account_id}", response_model=AccountState)
async def get_account_state(
    account_id: str,
    db: AsyncSession = Depends(get_db),
) -> AccountState:
    """Stored verification state and trust score."""
    account = await AccountRepository(db).get_by_id(account_id)
    if account is None:
        raise AccountNotFound(f"Account {account_id} not found", account_id=account_id)
    return AccountState.model_validate(account)
