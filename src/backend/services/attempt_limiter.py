"""
Verification Attempt Limiter.

Server-authoritative sliding-window limits on liveness submissions, keyed by
account and by device. Counters are derived from the append-only attempt log
so there is no client-held or in-memory state to tamper with or lose.

A single breach is treated as a flaky camera and only recorded. Breaches in
several distinct windows inside the lookback look scripted and produce a
``suspicious_profile`` flag draft for the state machine to raise.
"""

import math
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from db.types import utcnow
from models.behavior_flag import FlagSeverity, FlagType
from models.verification import AttemptResult
from repositories.verification_repository import VerificationAttemptRepository
from schemas.trust import FlagDraft
from schemas.verification import RateLimitDecision

logger = structlog.get_logger(__name__)


class LimiterConfig:
    """Attempt limiter configuration."""

    WINDOW = timedelta(minutes=settings.VERIFICATION_ATTEMPT_WINDOW_MINUTES)
    CEILING = settings.VERIFICATION_ATTEMPT_CEILING
    BREACH_LOOKBACK = timedelta(hours=settings.VERIFICATION_BREACH_LOOKBACK_HOURS)
    BREACH_WINDOWS_FOR_FLAG = settings.VERIFICATION_BREACH_WINDOWS_FOR_FLAG


REASON_ACCOUNT_LIMIT = "account_limit"
REASON_DEVICE_LIMIT = "device_limit"
FLAG_SOURCE = "verification_rate_limit"


def count_breach_episodes(breach_times: list[datetime]) -> int:
    """Number of limiter windows the sorted breach times span, anchored at each episode start."""
    episodes = 0
    episode_start: Optional[datetime] = None
    for t in breach_times:
        if episode_start is None or t - episode_start >= LimiterConfig.WINDOW:
            episodes += 1
            episode_start = t
    return episodes


class AttemptLimiter:
    """Rolling-window gate in front of liveness submissions."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.attempts = VerificationAttemptRepository(db)

    async def _retry_after(
        self, now: datetime, since: datetime, account_id: Optional[str] = None, device_id: Optional[str] = None
    ) -> int:
        oldest = await self.attempts.oldest_since(since, account_id=account_id, device_id=device_id)
        if oldest is None:
            return 0
        return max(1, math.ceil((oldest + LimiterConfig.WINDOW - now).total_seconds()))

    async def check_rate_limit(
        self, account_id: str, device_id: str, now: Optional[datetime] = None
    ) -> RateLimitDecision:
        """
        Allow or deny one more attempt.

        Denied once either the account or the device already has
        ``CEILING`` counted attempts inside the window.
        """
        now = now or utcnow()
        since = now - LimiterConfig.WINDOW

        account_count = await self.attempts.count_since(since, account_id=account_id)
        device_count = await self.attempts.count_since(since, device_id=device_id)

        if account_count >= LimiterConfig.CEILING:
            return RateLimitDecision(
                allowed=False,
                reason=REASON_ACCOUNT_LIMIT,
                retry_after_seconds=await self._retry_after(now, since, account_id=account_id),
                account_attempts=account_count,
                device_attempts=device_count,
            )
        if device_count >= LimiterConfig.CEILING:
            return RateLimitDecision(
                allowed=False,
                reason=REASON_DEVICE_LIMIT,
                retry_after_seconds=await self._retry_after(now, since, device_id=device_id),
                account_attempts=account_count,
                device_attempts=device_count,
            )

        return RateLimitDecision(allowed=True, account_attempts=account_count, device_attempts=device_count)

    async def record_attempt(
        self,
        account_id: str,
        device_id: str,
        result: AttemptResult,
        now: Optional[datetime] = None,
        failure_reason: Optional[str] = None,
    ) -> None:
        await self.attempts.add(
            account_id=account_id,
            device_id=device_id,
            result=result,
            created_at=now or utcnow(),
            failure_reason=failure_reason,
        )

    async def record_breach(
        self, account_id: str, device_id: str, reason: str, now: Optional[datetime] = None
    ) -> Optional[FlagDraft]:
        """
        Record a denied attempt; return a flag draft when breaches repeat.

        Breaches are grouped into episodes: a breach starts a new episode
        once it is at least one limiter window after the start of the
        current one. Only ``BREACH_WINDOWS_FOR_FLAG`` episodes within the
        lookback produce a draft.
        """
        now = now or utcnow()
        await self.attempts.add(
            account_id=account_id,
            device_id=device_id,
            result=AttemptResult.RATE_LIMITED,
            created_at=now,
            failure_reason=reason,
        )

        breach_times = await self.attempts.list_breach_times(account_id, now - LimiterConfig.BREACH_LOOKBACK)
        episodes = count_breach_episodes(breach_times)

        logger.warning(
            "rate_limit_exceeded",
            account_id=account_id,
            device_id=device_id,
            reason=reason,
            breaches=len(breach_times),
            breach_windows=episodes,
        )

        if episodes < LimiterConfig.BREACH_WINDOWS_FOR_FLAG:
            return None

        return FlagDraft(
            flag_type=FlagType.SUSPICIOUS_PROFILE,
            severity=FlagSeverity.MEDIUM,
            description="Repeated verification rate limit breaches",
            details={
                "source": FLAG_SOURCE,
                "breaches": len(breach_times),
                "breach_windows": episodes,
                "last_reason": reason,
            },
        )
