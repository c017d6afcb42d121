"""
Behavior Detector.

Independent threshold checks over recent activity windows:

- Rapid swiping: more than 100 swipes in 10 minutes (medium)
- Mass messaging: more than 50 messages in 60 minutes (high)
- Multi-reporter: reports from 3+ distinct reporters in 30 days (high)

Each check is a pure function of its window count and yields at most one
draft per evaluation. Flags of a type raised within the cooldown are not
raised again while the same behavior continues.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import AccountNotFound
from db.types import utcnow
from models.activity import ActivityKind
from models.behavior_flag import FLAG_SEVERITY, FlagType
from repositories.account_repository import AccountRepository
from repositories.activity_repository import ActivityRepository
from repositories.flag_repository import FlagRepository
from schemas.activity import ActivityEvaluation
from schemas.trust import FlagDraft
from services.verification_state_machine import VerificationStateMachine

logger = structlog.get_logger(__name__)


class DetectorConfig:
    """Behavior threshold configuration."""

    RAPID_SWIPE_WINDOW = timedelta(minutes=settings.RAPID_SWIPE_WINDOW_MINUTES)
    RAPID_SWIPE_THRESHOLD = settings.RAPID_SWIPE_THRESHOLD  # strictly more than
    MASS_MESSAGE_WINDOW = timedelta(minutes=settings.MASS_MESSAGE_WINDOW_MINUTES)
    MASS_MESSAGE_THRESHOLD = settings.MASS_MESSAGE_THRESHOLD  # strictly more than
    MULTI_REPORTER_WINDOW = timedelta(days=settings.MULTI_REPORTER_WINDOW_DAYS)
    MULTI_REPORTER_THRESHOLD = settings.MULTI_REPORTER_THRESHOLD  # at least
    COOLDOWN = timedelta(hours=settings.FLAG_COOLDOWN_HOURS)


# =============================================================================
# Pure checks
# =============================================================================


def check_rapid_swiping(swipe_count: int) -> Optional[FlagDraft]:
    if swipe_count <= DetectorConfig.RAPID_SWIPE_THRESHOLD:
        return None
    return FlagDraft(
        flag_type=FlagType.RAPID_SWIPING,
        severity=FLAG_SEVERITY[FlagType.RAPID_SWIPING],
        description=f"{swipe_count} swipes in {settings.RAPID_SWIPE_WINDOW_MINUTES} minutes",
        details={"count": swipe_count, "window_minutes": settings.RAPID_SWIPE_WINDOW_MINUTES},
    )


def check_mass_messaging(message_count: int) -> Optional[FlagDraft]:
    if message_count <= DetectorConfig.MASS_MESSAGE_THRESHOLD:
        return None
    return FlagDraft(
        flag_type=FlagType.MASS_MESSAGING,
        severity=FLAG_SEVERITY[FlagType.MASS_MESSAGING],
        description=f"{message_count} messages in {settings.MASS_MESSAGE_WINDOW_MINUTES} minutes",
        details={"count": message_count, "window_minutes": settings.MASS_MESSAGE_WINDOW_MINUTES},
    )


def check_multi_reporter(distinct_reporters: int) -> Optional[FlagDraft]:
    if distinct_reporters < DetectorConfig.MULTI_REPORTER_THRESHOLD:
        return None
    return FlagDraft(
        flag_type=FlagType.MULTI_REPORTER,
        severity=FLAG_SEVERITY[FlagType.MULTI_REPORTER],
        description=f"Reported by {distinct_reporters} distinct accounts",
        details={"distinct_reporters": distinct_reporters, "window_days": settings.MULTI_REPORTER_WINDOW_DAYS},
    )


# =============================================================================
# Service
# =============================================================================


class BehaviorDetector:
    """Records activity and turns threshold crossings into flags."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.accounts = AccountRepository(db)
        self.activity = ActivityRepository(db)
        self.flags = FlagRepository(db)
        self.state_machine = VerificationStateMachine(db)

    async def evaluate(self, account_id: str, now: Optional[datetime] = None) -> list[FlagDraft]:
        """Run every check for the account against current window counts."""
        now = now or utcnow()
        swipes = await self.activity.count_since(
            account_id, ActivityKind.SWIPE, now - DetectorConfig.RAPID_SWIPE_WINDOW
        )
        messages = await self.activity.count_since(
            account_id, ActivityKind.MESSAGE_SENT, now - DetectorConfig.MASS_MESSAGE_WINDOW
        )
        reporters = await self.activity.count_distinct_counterparts_since(
            account_id, ActivityKind.REPORT_RECEIVED, now - DetectorConfig.MULTI_REPORTER_WINDOW
        )

        drafts = []
        for draft in (check_rapid_swiping(swipes), check_mass_messaging(messages), check_multi_reporter(reporters)):
            if draft is None:
                continue
            if await self.flags.exists_since(account_id, draft.flag_type, now - DetectorConfig.COOLDOWN):
                continue
            drafts.append(draft)
        return drafts

    async def record_activity(
        self,
        account_id: str,
        kind: ActivityKind,
        counterpart_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ActivityEvaluation:
        """Append one event and raise whatever flags it tips over."""
        now = now or utcnow()
        account = await self.accounts.get_by_id(account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found", account_id=account_id)

        try:
            await self.activity.add(account_id, kind, created_at=now, counterpart_id=counterpart_id)
            drafts = await self.evaluate(account_id, now=now)
            if not drafts:
                await self.db.commit()
                return ActivityEvaluation(
                    account_id=account_id,
                    verification_state=account.verification_state,
                    trust_score=account.trust_score,
                )

            application = await self.state_machine.apply_flags(account_id, drafts, now=now, commit=False)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        for flag in application.raised:
            logger.warning(
                "behavior_threshold_crossed",
                account_id=account_id,
                flag_type=flag.flag_type.value,
                severity=flag.severity.value,
            )
        return ActivityEvaluation(
            account_id=account_id,
            flags_raised=[flag.flag_type for flag in application.raised],
            verification_state=application.account.verification_state,
            trust_score=application.account.trust_score,
        )
