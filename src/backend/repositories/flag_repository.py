"""
Behavior flag repository. Insert and read only.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.behavior_flag import BehaviorFlag, FlagSeverity, FlagType


class FlagRepository:
    """Repository for behavior flags."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(
        self,
        account_id: str,
        flag_type: FlagType,
        severity: FlagSeverity,
        raised_at: datetime,
        description: Optional[str] = None,
        correlated_account_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> BehaviorFlag:
        flag = BehaviorFlag(
            account_id=account_id,
            flag_type=flag_type,
            severity=severity,
            description=description,
            correlated_account_id=correlated_account_id,
            details=details,
            raised_at=raised_at,
        )
        self.db.add(flag)
        await self.db.flush()
        return flag

    async def list_for_account(self, account_id: str, since: Optional[datetime] = None) -> list[BehaviorFlag]:
        """Flags for an account in the order they were raised."""
        query = select(BehaviorFlag).where(BehaviorFlag.account_id == account_id)
        if since is not None:
            query = query.where(BehaviorFlag.raised_at > since)
        result = await self.db.execute(query.order_by(BehaviorFlag.raised_at, BehaviorFlag.id))
        return list(result.scalars().all())

    async def exists_since(self, account_id: str, flag_type: FlagType, since: datetime) -> bool:
        """Whether a flag of this type was raised after ``since`` (cooldown check)."""
        result = await self.db.execute(
            select(func.count(BehaviorFlag.id)).where(
                BehaviorFlag.account_id == account_id,
                BehaviorFlag.flag_type == flag_type,
                BehaviorFlag.raised_at > since,
            )
        )
        return (result.scalar() or 0) > 0
