"""
Device fingerprint and binding repository.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from models.account import Account
from models.device import DeviceBinding, DeviceFingerprint


class DeviceRepository:
    """Repository for device fingerprints and their account bindings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def find_fingerprint(self, device_id: str, install_id: str) -> Optional[DeviceFingerprint]:
        """Look up by device id, falling back to install id."""
        result = await self.db.execute(select(DeviceFingerprint).where(DeviceFingerprint.device_id == device_id))
        fingerprint = result.scalar_one_or_none()
        if fingerprint is not None:
            return fingerprint

        result = await self.db.execute(
            select(DeviceFingerprint)
            .where(DeviceFingerprint.install_id == install_id)
            .order_by(DeviceFingerprint.last_seen_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_fingerprint(
        self,
        device_id: str,
        install_id: str,
        platform: str,
        now: datetime,
        os_version: Optional[str] = None,
        app_version: Optional[str] = None,
    ) -> DeviceFingerprint:
        fingerprint = DeviceFingerprint(
            device_id=device_id,
            install_id=install_id,
            platform=platform,
            os_version=os_version,
            app_version=app_version,
            first_seen_at=now,
            last_seen_at=now,
        )
        self.db.add(fingerprint)
        await self.db.flush()
        return fingerprint

    async def get_binding(self, fingerprint_id: int, account_id: str) -> Optional[DeviceBinding]:
        result = await self.db.execute(
            select(DeviceBinding).where(
                DeviceBinding.fingerprint_id == fingerprint_id,
                DeviceBinding.account_id == account_id,
            )
        )
        return result.scalar_one_or_none()

    async def create_binding(
        self, fingerprint_id: int, account_id: str, install_id: str, now: datetime
    ) -> DeviceBinding:
        binding = DeviceBinding(
            fingerprint_id=fingerprint_id,
            account_id=account_id,
            install_id=install_id,
            first_bound_at=now,
            last_seen_at=now,
        )
        self.db.add(binding)
        await self.db.flush()
        return binding

    async def list_recent_device_ids(self, account_id: str, since: datetime) -> list[int]:
        """Fingerprints the account was seen on after ``since``."""
        result = await self.db.execute(
            select(DeviceBinding.fingerprint_id).where(
                DeviceBinding.account_id == account_id,
                DeviceBinding.last_seen_at > since,
            )
        )
        return list(result.scalars().all())

    async def list_co_bound_accounts(
        self, fingerprint_ids: list[int], exclude_account_id: str, since: datetime
    ) -> list[tuple[int, Account]]:
        """
        Other active accounts bound to any of the given devices after ``since``.

        Returns one ``(fingerprint_id, account)`` pair per shared device.
        """
        if not fingerprint_ids:
            return []
        result = await self.db.execute(
            select(DeviceBinding.fingerprint_id, Account)
            .join(Account, Account.id == DeviceBinding.account_id)
            .where(
                DeviceBinding.fingerprint_id.in_(fingerprint_ids),
                DeviceBinding.account_id != exclude_account_id,
                DeviceBinding.last_seen_at > since,
                Account.is_active.is_(True),
            )
            .order_by(DeviceBinding.fingerprint_id, Account.id)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def count_bindings_since(self, fingerprint_id: int, since: datetime) -> int:
        """Accounts first bound to this device after ``since``."""
        result = await self.db.execute(
            select(func.count(DeviceBinding.id)).where(
                DeviceBinding.fingerprint_id == fingerprint_id,
                DeviceBinding.first_bound_at > since,
            )
        )
        return result.scalar() or 0
