"""
Admin audit log repository.

Insert and read only; audit entries are never updated or deleted.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.audit import AdminAction, AdminAuditLogEntry


class AuditRepository:
    """Repository for the admin audit log."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(
        self,
        actor_id: str,
        action: AdminAction,
        details: dict[str, Any],
        created_at: datetime,
        target_account_id: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> AdminAuditLogEntry:
        entry = AdminAuditLogEntry(
            actor_id=actor_id,
            action=action,
            target_account_id=target_account_id,
            reason=reason,
            details=details,
            created_at=created_at,
        )
        self.db.add(entry)
        await self.db.flush()
        return entry

    async def query(
        self,
        limit: int,
        cursor: Optional[int] = None,
        actor_id: Optional[str] = None,
        target_account_id: Optional[str] = None,
        action: Optional[AdminAction] = None,
        created_after: Optional[datetime] = None,
        created_before: Optional[datetime] = None,
    ) -> list[AdminAuditLogEntry]:
        """
        Newest-first page of entries.

        ``cursor`` is the id of the last entry of the previous page; the page
        holds entries with smaller ids. Fetches ``limit`` rows exactly.
        """
        query = select(AdminAuditLogEntry)
        if cursor is not None:
            query = query.where(AdminAuditLogEntry.id < cursor)
        if actor_id is not None:
            query = query.where(AdminAuditLogEntry.actor_id == actor_id)
        if target_account_id is not None:
            query = query.where(AdminAuditLogEntry.target_account_id == target_account_id)
        if action is not None:
            query = query.where(AdminAuditLogEntry.action == action)
        if created_after is not None:
            query = query.where(AdminAuditLogEntry.created_at >= created_after)
        if created_before is not None:
            query = query.where(AdminAuditLogEntry.created_at < created_before)

        result = await self.db.execute(query.order_by(AdminAuditLogEntry.id.desc()).limit(limit))
        return list(result.scalars().all())

    async def count_for_target(self, target_account_id: str) -> int:
        result = await self.db.execute(
            select(func.count(AdminAuditLogEntry.id)).where(
                AdminAuditLogEntry.target_account_id == target_account_id
            )
        )
        return result.scalar() or 0
