"""
Verification session and attempt repositories.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import ConflictingPendingSession
from models.account import Account, VerificationState
from models.verification import (
    AttemptResult,
    SessionPurpose,
    SessionStatus,
    VerificationAttempt,
    VerificationSession,
)


class VerificationSessionRepository:
    """Repository for verification sessions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def _get_rowcount(self, result: Any) -> int:
        """Safely get rowcount from result."""
        return getattr(result, "rowcount", 0) or 0

    async def get_by_id(self, session_id: str) -> Optional[VerificationSession]:
        result = await self.db.execute(select(VerificationSession).where(VerificationSession.id == session_id))
        return result.scalar_one_or_none()

    async def get_pending(self, account_id: str) -> Optional[VerificationSession]:
        """Get the account's pending session, if any."""
        result = await self.db.execute(
            select(VerificationSession).where(
                VerificationSession.account_id == account_id,
                VerificationSession.status == SessionStatus.PENDING,
            )
        )
        return result.scalar_one_or_none()

    async def get_latest_liveness(self, account_id: str) -> Optional[VerificationSession]:
        """Most recent session that carries a liveness summary."""
        result = await self.db.execute(
            select(VerificationSession)
            .where(
                VerificationSession.account_id == account_id,
                VerificationSession.liveness_consistency_score.is_not(None),
            )
            .order_by(VerificationSession.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def add(self, session: VerificationSession) -> VerificationSession:
        """
        Insert a session.

        Raises:
            ConflictingPendingSession: another pending session for the same
                account won the race to the partial unique index.
        """
        self.db.add(session)
        try:
            await self.db.flush()
        except IntegrityError as e:
            raise ConflictingPendingSession(
                f"Pending session already exists for account {session.account_id}",
                account_id=session.account_id,
            ) from e
        return session

    async def resolve(
        self,
        session: VerificationSession,
        status: SessionStatus,
        reviewed_at: datetime,
        reviewed_by: Optional[str] = None,
        rejection_reason: Optional[str] = None,
    ) -> None:
        """Close a pending session and clear its SLA clock."""
        session.status = status
        session.reviewed_at = reviewed_at
        session.reviewed_by = reviewed_by
        session.rejection_reason = rejection_reason
        session.sla_deadline = None
        await self.db.flush()

    async def list_review_queue(
        self, limit: int = 50, offset: int = 0
    ) -> tuple[list[tuple[Account, Optional[VerificationSession]]], int]:
        """
        Accounts in manual review with their pending review session.

        Ordered by SLA deadline, most urgent first; accounts without a
        deadline (migrated rows) sort last.
        """
        join_on = and_(
            VerificationSession.account_id == Account.id,
            VerificationSession.status == SessionStatus.PENDING,
            VerificationSession.purpose == SessionPurpose.MANUAL_REVIEW,
        )
        base = select(Account, VerificationSession).outerjoin(VerificationSession, join_on).where(
            Account.verification_state == VerificationState.MANUAL_REVIEW
        )

        total_result = await self.db.execute(
            select(func.count(Account.id)).where(Account.verification_state == VerificationState.MANUAL_REVIEW)
        )
        total = total_result.scalar() or 0

        result = await self.db.execute(
            base.order_by(
                VerificationSession.sla_deadline.is_(None),
                VerificationSession.sla_deadline.asc(),
                Account.id,
            )
            .limit(limit)
            .offset(offset)
        )
        return [(row[0], row[1]) for row in result.all()], total

    async def purge_expired_evidence(self, now: datetime) -> int:
        """Clear evidence pointers past their retention deadline."""
        result = await self.db.execute(
            update(VerificationSession)
            .where(
                VerificationSession.expires_at <= now,
                VerificationSession.evidence_ref.is_not(None),
            )
            .values(evidence_ref=None, evidence_purged_at=now)
            .execution_options(synchronize_session=False)
        )
        return self._get_rowcount(result)

    async def list_newly_overdue(self, now: datetime) -> list[VerificationSession]:
        """Pending review sessions past their SLA not yet marked overdue."""
        result = await self.db.execute(
            select(VerificationSession).where(
                VerificationSession.status == SessionStatus.PENDING,
                VerificationSession.purpose == SessionPurpose.MANUAL_REVIEW,
                VerificationSession.sla_deadline.is_not(None),
                VerificationSession.sla_deadline < now,
                VerificationSession.sla_overdue_at.is_(None),
            )
        )
        return list(result.scalars().all())

    async def mark_overdue(self, session_ids: list[str], now: datetime) -> int:
        if not session_ids:
            return 0
        result = await self.db.execute(
            update(VerificationSession)
            .where(
                VerificationSession.id.in_(session_ids),
                VerificationSession.sla_overdue_at.is_(None),
            )
            .values(sla_overdue_at=now)
            .execution_options(synchronize_session=False)
        )
        return self._get_rowcount(result)


class VerificationAttemptRepository:
    """Repository for the append-only attempt log."""

    COUNTED_RESULTS = (AttemptResult.SUCCESS, AttemptResult.FAILURE)

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(
        self,
        account_id: str,
        device_id: str,
        result: AttemptResult,
        created_at: datetime,
        failure_reason: Optional[str] = None,
    ) -> VerificationAttempt:
        attempt = VerificationAttempt(
            account_id=account_id,
            device_id=device_id,
            result=result,
            failure_reason=failure_reason,
            created_at=created_at,
        )
        self.db.add(attempt)
        await self.db.flush()
        return attempt

    def _counted_filter(self, since: datetime, account_id: Optional[str], device_id: Optional[str]) -> list:
        conditions = [
            VerificationAttempt.created_at > since,
            VerificationAttempt.result.in_(self.COUNTED_RESULTS),
        ]
        if account_id is not None:
            conditions.append(VerificationAttempt.account_id == account_id)
        if device_id is not None:
            conditions.append(VerificationAttempt.device_id == device_id)
        return conditions

    async def count_since(
        self,
        since: datetime,
        account_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> int:
        """Count success and failure attempts after ``since``."""
        result = await self.db.execute(
            select(func.count(VerificationAttempt.id)).where(*self._counted_filter(since, account_id, device_id))
        )
        return result.scalar() or 0

    async def oldest_since(
        self,
        since: datetime,
        account_id: Optional[str] = None,
        device_id: Optional[str] = None,
    ) -> Optional[datetime]:
        """Timestamp of the oldest counted attempt still inside the window."""
        result = await self.db.execute(
            select(func.min(VerificationAttempt.created_at)).where(
                *self._counted_filter(since, account_id, device_id)
            )
        )
        return result.scalar()

    async def list_breach_times(self, account_id: str, since: datetime) -> list[datetime]:
        """Times of limiter breaches recorded for the account after ``since``."""
        result = await self.db.execute(
            select(VerificationAttempt.created_at)
            .where(
                VerificationAttempt.account_id == account_id,
                VerificationAttempt.result == AttemptResult.RATE_LIMITED,
                VerificationAttempt.created_at > since,
            )
            .order_by(VerificationAttempt.created_at)
        )
        return list(result.scalars().all())
