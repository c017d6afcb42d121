"""
Account repository for database operations.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from db.types import utcnow
from models.account import CURRENT_STATE_SCHEMA_VERSION, Account, VerificationState


class AccountRepository:
    """Repository for account database operations."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _get_rowcount(self, result: Any) -> int:
        """Safely get rowcount from result."""
        return getattr(result, "rowcount", 0) or 0

    async def get_by_id(self, account_id: str) -> Optional[Account]:
        """Get an account by ID."""
        result = await self.db.execute(
            select(Account).where(Account.id == account_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(
        self,
        account_id: Optional[str] = None,
        is_admin: bool = False,
        created_at: Optional[datetime] = None,
    ) -> Account:
        """Create a new, unverified account."""
        now = created_at or utcnow()
        account = Account(
            id=account_id or str(uuid4()),
            verification_state=VerificationState.UNVERIFIED,
            state_schema_version=CURRENT_STATE_SCHEMA_VERSION,
            is_admin=is_admin,
            is_active=True,
            created_at=now,
            updated_at=now,
            version=1,
        )

        self.db.add(account)
        await self.db.flush()
        await self.db.refresh(account)

        return account

    async def compare_and_set(self, account: Account, now: datetime, **values: Any) -> bool:
        """
        Write ``values`` only if the account is still at the version we read.

        Bumps ``version`` on success. Returns False when another writer got
        there first; the caller must roll back and surface the conflict.
        """
        result = await self.db.execute(
            update(Account)
            .where(Account.id == account.id, Account.version == account.version)
            .values(**values, version=account.version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if self._get_rowcount(result) != 1:
            return False

        await self.db.refresh(account)
        return True
