"""
Admin audit log.

Writes validate ``details`` against the per-action schema union before
insert; reads validate again on the way out. There is no update or delete.
"""

from datetime import datetime
from typing import Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from db.types import utcnow
from models.audit import AdminAction, AdminAuditLogEntry
from repositories.audit_repository import AuditRepository
from schemas.audit import (
    AuditLogEntryResponse,
    AuditLogFilters,
    AuditLogPage,
    CapabilityDeniedDetails,
    ReviewDecisionDetails,
    audit_details_adapter,
)

logger = structlog.get_logger(__name__)

MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 100

# Which details variant each action must carry
DETAILS_KIND: dict[AdminAction, str] = {
    AdminAction.REVIEW_APPROVE: "review_decision",
    AdminAction.REVIEW_REJECT: "review_decision",
    AdminAction.REVIEW_REQUEST_REVERIFICATION: "review_decision",
    AdminAction.CAPABILITY_DENIED: "capability_denied",
}


class AuditLogService:
    """Append and query admin audit entries."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.repository = AuditRepository(db)

    async def record(
        self,
        actor_id: str,
        action: AdminAction,
        details: Union[ReviewDecisionDetails, CapabilityDeniedDetails],
        target_account_id: Optional[str] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AdminAuditLogEntry:
        """
        Append one entry inside the caller's transaction.

        Raises:
            ValueError: if the details variant does not match the action.
        """
        if details.kind != DETAILS_KIND[action]:
            raise ValueError(f"Action {action.value} requires {DETAILS_KIND[action]} details, got {details.kind}")

        payload = audit_details_adapter.dump_python(details, mode="json")
        entry = await self.repository.add(
            actor_id=actor_id,
            action=action,
            details=payload,
            created_at=now or utcnow(),
            target_account_id=target_account_id,
            reason=reason,
        )
        logger.info(
            "admin_action_audited",
            entry_id=entry.id,
            actor_id=actor_id,
            action=action.value,
            target_account_id=target_account_id,
        )
        return entry

    async def query(
        self,
        filters: Optional[AuditLogFilters] = None,
        limit: int = 50,
        cursor: Optional[int] = None,
    ) -> AuditLogPage:
        """
        Newest-first page of entries.

        ``next_cursor`` is set when more entries may follow; pass it back as
        ``cursor`` to continue.
        """
        if not MIN_PAGE_SIZE <= limit <= MAX_PAGE_SIZE:
            raise ValueError(f"limit must be between {MIN_PAGE_SIZE} and {MAX_PAGE_SIZE}")
        filters = filters or AuditLogFilters()

        # One extra row tells us whether another page exists
        rows = await self.repository.query(
            limit=limit + 1,
            cursor=cursor,
            actor_id=filters.actor_id,
            target_account_id=filters.target_account_id,
            action=filters.action,
            created_after=filters.created_after,
            created_before=filters.created_before,
        )
        has_more = len(rows) > limit
        rows = rows[:limit]

        return AuditLogPage(
            items=[AuditLogEntryResponse.model_validate(row) for row in rows],
            next_cursor=rows[-1].id if has_more and rows else None,
        )
