"""
Activity event repository.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.activity import ActivityEvent, ActivityKind


class ActivityRepository:
    """Append and window-count activity events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(
        self,
        account_id: str,
        kind: ActivityKind,
        created_at: datetime,
        counterpart_id: Optional[str] = None,
    ) -> ActivityEvent:
        event = ActivityEvent(
            account_id=account_id,
            kind=kind,
            counterpart_id=counterpart_id,
            created_at=created_at,
        )
        self.db.add(event)
        await self.db.flush()
        return event

    async def count_since(self, account_id: str, kind: ActivityKind, since: datetime) -> int:
        result = await self.db.execute(
            select(func.count(ActivityEvent.id)).where(
                ActivityEvent.account_id == account_id,
                ActivityEvent.kind == kind,
                ActivityEvent.created_at > since,
            )
        )
        return result.scalar() or 0

    async def count_distinct_counterparts_since(self, account_id: str, kind: ActivityKind, since: datetime) -> int:
        """Distinct counterparts (e.g. reporters) inside the window."""
        result = await self.db.execute(
            select(func.count(distinct(ActivityEvent.counterpart_id))).where(
                ActivityEvent.account_id == account_id,
                ActivityEvent.kind == kind,
                ActivityEvent.created_at > since,
                ActivityEvent.counterpart_id.is_not(None),
            )
        )
        return result.scalar() or 0
