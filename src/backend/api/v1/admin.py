"""
Admin endpoints for trust & safety review.

These endpoints require admin authentication and are used for:
- The manual review queue
- Review decisions (approve, reject, request re-verification)
- The admin audit log
- Background sweep status
"""

from datetime import datetime
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_principal, require_admin
from db.session import get_db
from models.account import Account
from models.audit import AdminAction
from schemas.audit import AuditLogFilters, AuditLogPage
from schemas.review import ReviewOutcome, ReviewQueueResponse, ReviewRequest
from services.audit_log_service import MAX_PAGE_SIZE, MIN_PAGE_SIZE, AuditLogService
from services.review_workflow import ReviewWorkflow

router = APIRouter()


class SchedulerStatus(BaseModel):
    """Status of the background scheduler."""

    running: bool
    jobs: list[dict]


@router.get("/review-queue", response_model=ReviewQueueResponse)
async def get_review_queue(
    _admin: Annotated[Account, Depends(require_admin)],
    db: AsyncSession = Depends(get_db),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> ReviewQueueResponse:
    """Accounts awaiting manual review, soonest SLA deadline first."""
    return await ReviewWorkflow(db).get_review_queue(limit=limit, offset=offset)


@router.post("/reviews/{account_id}", response_model=ReviewOutcome)
async def review_account(
    account_id: str,
    request: ReviewRequest,
    principal: Annotated[Account, Depends(get_current_principal)],
    db: AsyncSession = Depends(get_db),
) -> ReviewOutcome:
    """
    Decide a manual review.

    The acting admin is the token subject. Capability is checked (and any
    denial audited) by the review workflow, so this route only requires a
    valid principal.
    """
    return await ReviewWorkflow(db).review_account(
        admin_id=principal.id,
        account_id=account_id,
        decision=request.decision,
        reason=request.reason,
        expected_version=request.expected_version,
        claimed_admin_id=request.admin_id,
    )


@router.get("/audit-log", response_model=AuditLogPage)
async def get_audit_log(
    _admin: Annotated[Account, Depends(require_admin)],
    db: AsyncSession = Depends(get_db),
    actor_id: Optional[str] = None,
    target_account_id: Optional[str] = None,
    action: Optional[AdminAction] = None,
    created_after: Optional[datetime] = None,
    created_before: Optional[datetime] = None,
    limit: int = Query(50, ge=MIN_PAGE_SIZE, le=MAX_PAGE_SIZE),
    cursor: Optional[int] = Query(None, ge=1),
) -> AuditLogPage:
    """Newest-first admin audit entries."""
    filters = AuditLogFilters(
        actor_id=actor_id,
        target_account_id=target_account_id,
        action=action,
        created_after=created_after,
        created_before=created_before,
    )
    return await AuditLogService(db).query(filters=filters, limit=limit, cursor=cursor)


@router.get("/scheduler-status", response_model=SchedulerStatus)
async def get_scheduler_status(
    _admin: Annotated[Account, Depends(require_admin)],
) -> SchedulerStatus:
    """Retention and SLA sweep jobs with their next run times."""
    from services.background_scheduler import get_scheduler_status as scheduler_status

    return SchedulerStatus(**scheduler_status())
