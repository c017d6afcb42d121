"""
Device/Account Correlator.

Maintains the device binding list and looks for accounts sharing hardware:

1. Multi-account - on a new binding, count shared-device links of the
   account inside the lookback: one link per (device, other active account)
   pair bound to both. Two or more links flag every correlated account and
   the new one, since multi-accounting is symmetric abuse.
2. Rapid account creation - a device that gained more than the threshold of
   account bindings inside the window flags its newest account.

Registration is best-effort. The HTTP layer acknowledges immediately and
calls ``register_fingerprint_in_background``, which logs and absorbs
failures so a correlator problem never affects the account itself.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import AccountNotFound, StaleStateConflict
from db.types import utcnow
from models.account import VerificationState
from models.behavior_flag import FLAG_SEVERITY, FlagType
from repositories.account_repository import AccountRepository
from repositories.device_repository import DeviceRepository
from schemas.device import CorrelationResult
from schemas.trust import FlagDraft
from services.verification_state_machine import VerificationStateMachine

logger = structlog.get_logger(__name__)


class CorrelatorConfig:
    """Device correlation configuration."""

    LOOKBACK = timedelta(hours=settings.CORRELATION_LOOKBACK_HOURS)
    MULTI_ACCOUNT_LINK_THRESHOLD = settings.MULTI_ACCOUNT_LINK_THRESHOLD
    RAPID_BINDING_WINDOW = timedelta(hours=settings.RAPID_BINDING_WINDOW_HOURS)
    RAPID_BINDING_THRESHOLD = settings.RAPID_BINDING_THRESHOLD  # strictly more than
    MAX_RETRIES = 3


class DeviceCorrelator:
    """Fingerprint registration and multi-account correlation."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.accounts = AccountRepository(db)
        self.devices = DeviceRepository(db)
        self.state_machine = VerificationStateMachine(db)

    async def register_fingerprint(
        self,
        account_id: str,
        device_id: str,
        install_id: str,
        platform: str,
        os_version: Optional[str] = None,
        app_version: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> CorrelationResult:
        """
        Create or refresh the fingerprint and binding, then correlate.

        Correlation only runs when the binding is new; refreshing a known
        binding just moves its ``last_seen_at``.
        """
        now = now or utcnow()
        try:
            account = await self.accounts.get_by_id(account_id)
            if account is None:
                raise AccountNotFound(f"Account {account_id} not found", account_id=account_id)

            fingerprint = await self.devices.find_fingerprint(device_id, install_id)
            if fingerprint is None:
                fingerprint = await self.devices.create_fingerprint(
                    device_id=device_id,
                    install_id=install_id,
                    platform=platform,
                    now=now,
                    os_version=os_version,
                    app_version=app_version,
                )
            else:
                fingerprint.last_seen_at = now
                fingerprint.install_id = install_id
                fingerprint.os_version = os_version or fingerprint.os_version
                fingerprint.app_version = app_version or fingerprint.app_version

            binding = await self.devices.get_binding(fingerprint.id, account_id)
            result = CorrelationResult(fingerprint_id=fingerprint.id, new_binding=binding is None)
            if binding is not None:
                binding.last_seen_at = now
                binding.install_id = install_id
                await self.db.commit()
                return result

            await self.devices.create_binding(fingerprint.id, account_id, install_id, now)
            await self._correlate(account_id, now, result)
            await self._check_rapid_creation(fingerprint.id, account_id, now, result)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        return result

    async def _correlate(self, account_id: str, now: datetime, result: CorrelationResult) -> None:
        since = now - CorrelatorConfig.LOOKBACK
        device_ids = await self.devices.list_recent_device_ids(account_id, since)
        links = await self.devices.list_co_bound_accounts(device_ids, account_id, since)

        linked = {}
        for _, other in links:
            linked[other.id] = other
        result.link_count = len(links)
        result.linked_account_ids = sorted(linked)

        if len(links) < CorrelatorConfig.MULTI_ACCOUNT_LINK_THRESHOLD:
            return

        ban_evasion = any(other.verification_state == VerificationState.BLOCKED for other in linked.values())
        details = {
            "link_count": len(links),
            "linked_accounts": result.linked_account_ids,
            "ban_evasion": ban_evasion,
        }
        logger.warning(
            "multi_account_detected",
            account_id=account_id,
            link_count=len(links),
            linked_accounts=result.linked_account_ids,
            ban_evasion=ban_evasion,
        )

        await self.state_machine.apply_flags(
            account_id,
            [self._multi_account_draft(correlated_with=None, details=details)],
            now=now,
            commit=False,
        )
        for other_id in linked:
            await self.state_machine.apply_flags(
                other_id,
                [self._multi_account_draft(correlated_with=account_id, details=details)],
                now=now,
                commit=False,
            )

        result.multi_account_flagged = True
        result.ban_evasion = ban_evasion

    def _multi_account_draft(self, correlated_with: Optional[str], details: dict) -> FlagDraft:
        return FlagDraft(
            flag_type=FlagType.MULTI_ACCOUNT,
            severity=FLAG_SEVERITY[FlagType.MULTI_ACCOUNT],
            description="Account shares devices with other active accounts",
            correlated_account_id=correlated_with,
            details=details,
        )

    async def _check_rapid_creation(
        self, fingerprint_id: int, account_id: str, now: datetime, result: CorrelationResult
    ) -> None:
        bindings = await self.devices.count_bindings_since(
            fingerprint_id, now - CorrelatorConfig.RAPID_BINDING_WINDOW
        )
        if bindings <= CorrelatorConfig.RAPID_BINDING_THRESHOLD:
            return

        logger.warning(
            "rapid_account_creation_detected",
            account_id=account_id,
            fingerprint_id=fingerprint_id,
            bindings=bindings,
        )
        await self.state_machine.apply_flags(
            account_id,
            [
                FlagDraft(
                    flag_type=FlagType.RAPID_ACCOUNT_CREATION,
                    severity=FLAG_SEVERITY[FlagType.RAPID_ACCOUNT_CREATION],
                    description=f"{bindings} accounts bound to one device in {settings.RAPID_BINDING_WINDOW_HOURS}h",
                    details={"bindings": bindings, "fingerprint_id": fingerprint_id},
                )
            ],
            now=now,
            commit=False,
        )
        result.rapid_creation_flagged = True


async def register_fingerprint_in_background(
    session_factory: Callable[[], AsyncSession],
    account_id: str,
    device_id: str,
    install_id: str,
    platform: str,
    os_version: Optional[str] = None,
    app_version: Optional[str] = None,
) -> Optional[CorrelationResult]:
    """
    Best-effort registration with retries on concurrent account updates.

    Never raises: the caller has already acknowledged the client.
    """
    for attempt in range(1, CorrelatorConfig.MAX_RETRIES + 1):
        async with session_factory() as db:
            try:
                return await DeviceCorrelator(db).register_fingerprint(
                    account_id=account_id,
                    device_id=device_id,
                    install_id=install_id,
                    platform=platform,
                    os_version=os_version,
                    app_version=app_version,
                )
            except StaleStateConflict:
                logger.info("fingerprint_registration_retry", account_id=account_id, attempt=attempt)
                await asyncio.sleep(0.05 * attempt)
            except Exception as e:
                logger.error(
                    "fingerprint_registration_failed",
                    account_id=account_id,
                    device_id=device_id,
                    error=str(e),
                    exc_info=True,
                )
                return None

    logger.error("fingerprint_registration_gave_up", account_id=account_id, attempts=CorrelatorConfig.MAX_RETRIES)
    return None
