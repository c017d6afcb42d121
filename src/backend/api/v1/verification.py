"""
Liveness verification endpoints.

The caller is always the authenticated account; a client can never submit on
behalf of another account or move its own state directly.
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_active_principal
from db.session import get_db
from models.account import Account
from repositories.verification_repository import VerificationSessionRepository
from schemas.verification import (
    LivenessResult,
    LivenessSubmission,
    LivenessSubmissionResult,
    VerificationStatusResponse,
)
from services.verification_state_machine import VerificationStateMachine
from services.visibility import can_interact_in_state, visibility_weight

router = APIRouter()


@router.post("/liveness", response_model=LivenessSubmissionResult)
async def submit_liveness(
    submission: LivenessSubmission,
    principal: Annotated[Account, Depends(get_current_active_principal)],
    db: AsyncSession = Depends(get_db),
) -> LivenessSubmissionResult:
    """
    Submit the on-device liveness summary for the current account.

    Responds 429 with ``Retry-After`` when the attempt limiter denies the
    submission and 409 when a session is already pending or the account's
    state does not accept liveness.
    """
    liveness = LivenessResult(
        check_type=submission.check_type,
        consistency_score=submission.consistency_score,
        pose_metrics=submission.pose_metrics,
        eye_metrics=submission.eye_metrics,
    )
    return await VerificationStateMachine(db).submit_liveness_result(
        account_id=principal.id,
        device_id=submission.device_id,
        liveness=liveness,
        evidence_ref=submission.evidence_ref,
    )


@router.get("/status", response_model=VerificationStatusResponse)
async def get_verification_status(
    principal: Annotated[Account, Depends(get_current_active_principal)],
    db: AsyncSession = Depends(get_db),
) -> VerificationStatusResponse:
    """Current verification state, trust score and visibility of the caller."""
    pending = await VerificationSessionRepository(db).get_pending(principal.id)
    state = principal.verification_state
    return VerificationStatusResponse(
        account_id=principal.id,
        verification_state=state,
        trust_score=principal.trust_score,
        enforcement_level=principal.enforcement_level,
        visibility_weight=visibility_weight(state),
        can_interact=can_interact_in_state(state),
        has_pending_session=pending is not None,
    )
