"""
Retention and SLA sweeps.

- Evidence purge: clears the evidence pointer on every session past its
  retention deadline, whatever its status. Pending reviews stay resolvable
  from the retained liveness summary.
- SLA sweep: marks pending review sessions past their deadline as overdue.
  It never changes verification state and never resolves a review.

Both are idempotent and run from the background scheduler under a
distributed lock.
"""

from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from db.types import utcnow
from repositories.verification_repository import VerificationSessionRepository

logger = structlog.get_logger(__name__)


class RetentionService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.sessions = VerificationSessionRepository(db)

    async def purge_expired_evidence(self, now: Optional[datetime] = None) -> int:
        """Clear expired evidence pointers. Returns the number of sessions purged."""
        now = now or utcnow()
        try:
            purged = await self.sessions.purge_expired_evidence(now)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info("evidence_purged", sessions=purged)
        return purged

    async def mark_overdue_reviews(self, now: Optional[datetime] = None) -> list[str]:
        """Mark newly overdue review sessions. Returns their account ids."""
        now = now or utcnow()
        try:
            overdue = await self.sessions.list_newly_overdue(now)
            await self.sessions.mark_overdue([s.id for s in overdue], now)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        for session in overdue:
            logger.warning(
                "review_sla_overdue",
                account_id=session.account_id,
                session_id=session.id,
                sla_deadline=session.sla_deadline.isoformat() if session.sla_deadline else None,
            )
        return [s.account_id for s in overdue]
