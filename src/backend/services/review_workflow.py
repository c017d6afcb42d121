"""
Manual Review Workflow.

Queue view over accounts in manual review, most urgent SLA first, and the
single transactional review action:

1. Re-derive admin capability from the stored account (never from a
   client-supplied claim); a denial is itself audited and logged
2. Check the account is still at the version the admin looked at
3. Perform the state machine transition
4. Write exactly one audit entry
5. Clear the SLA deadline (done by the transition's session resolution)

SLA breaches never auto-resolve anything; the sweep only marks sessions
overdue so they surface at the top of the queue.
"""

from datetime import datetime
from typing import NoReturn, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import CapabilityDenied
from db.types import utcnow
from models.audit import AdminAction
from repositories.account_repository import AccountRepository
from repositories.flag_repository import FlagRepository
from repositories.verification_repository import VerificationSessionRepository
from schemas.audit import CapabilityDeniedDetails, ReviewDecisionDetails
from schemas.review import (
    FlagSummary,
    LivenessSummary,
    ReviewDecision,
    ReviewOutcome,
    ReviewQueueItem,
    ReviewQueueResponse,
)
from services.audit_log_service import AuditLogService
from services.verification_state_machine import VerificationStateMachine

logger = structlog.get_logger(__name__)


DECISION_ACTIONS: dict[ReviewDecision, AdminAction] = {
    ReviewDecision.APPROVE: AdminAction.REVIEW_APPROVE,
    ReviewDecision.REJECT: AdminAction.REVIEW_REJECT,
    ReviewDecision.REQUEST_REVERIFICATION: AdminAction.REVIEW_REQUEST_REVERIFICATION,
}


class ReviewWorkflow:
    """Admin review queue and decisions."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.accounts = AccountRepository(db)
        self.sessions = VerificationSessionRepository(db)
        self.flags = FlagRepository(db)
        self.audit = AuditLogService(db)
        self.state_machine = VerificationStateMachine(db)

    async def get_review_queue(
        self, limit: int = 50, offset: int = 0, now: Optional[datetime] = None
    ) -> ReviewQueueResponse:
        """Accounts awaiting review, ordered by SLA deadline ascending."""
        now = now or utcnow()
        rows, total = await self.sessions.list_review_queue(limit=limit, offset=offset)

        items = []
        for account, session in rows:
            flags = await self.flags.list_for_account(account.id, since=account.flags_reviewed_at)
            item = ReviewQueueItem(
                account_id=account.id,
                version=account.version,
                trust_score=account.trust_score,
                flags=[FlagSummary.model_validate(flag) for flag in flags],
            )
            if session is not None:
                item.session_id = session.id
                item.escalation_trigger = session.escalation_trigger
                item.sla_deadline = session.sla_deadline
                item.overdue = session.sla_overdue_at is not None or (
                    session.sla_deadline is not None and session.sla_deadline < now
                )
                if session.has_liveness_summary:
                    item.liveness = LivenessSummary(
                        check_type=session.liveness_check_type,
                        consistency_score=session.liveness_consistency_score,
                        pose_metrics=session.liveness_pose_metrics,
                        eye_metrics=session.liveness_eye_metrics,
                        evidence_available=session.evidence_ref is not None,
                    )
            items.append(item)

        return ReviewQueueResponse(items=items, total=total, limit=limit, offset=offset)

    async def _deny(
        self,
        admin_id: str,
        account_id: str,
        decision: ReviewDecision,
        cause: str,
        now: datetime,
        claimed_admin_id: Optional[str] = None,
    ) -> NoReturn:
        """Audit and log a denied review attempt, then refuse it."""
        logger.warning(
            "capability_denied",
            actor_id=admin_id,
            target_account_id=account_id,
            decision=decision.value,
            cause=cause,
        )
        await self.audit.record(
            actor_id=admin_id,
            action=AdminAction.CAPABILITY_DENIED,
            target_account_id=account_id,
            details=CapabilityDeniedDetails(
                attempted_action=DECISION_ACTIONS[decision].value,
                claimed_admin_id=claimed_admin_id,
                cause=cause,
            ),
            now=now,
        )
        await self.db.commit()
        raise CapabilityDenied(f"{admin_id} may not review accounts ({cause})", actor_id=admin_id)

    async def review_account(
        self,
        admin_id: str,
        account_id: str,
        decision: ReviewDecision,
        reason: str,
        expected_version: int,
        now: Optional[datetime] = None,
        claimed_admin_id: Optional[str] = None,
    ) -> ReviewOutcome:
        """
        Apply one admin decision.

        ``admin_id`` must be the authenticated principal. ``claimed_admin_id``
        is whatever identity the client sent, if any; a mismatch is denied.
        ``expected_version`` is the account version the admin looked at; a
        decision against any other version is refused as stale.

        Raises:
            CapabilityDenied, AccountNotFound, InvalidTransition,
            StaleStateConflict
        """
        now = now or utcnow()
        try:
            if claimed_admin_id is not None and claimed_admin_id != admin_id:
                await self._deny(admin_id, account_id, decision, "identity_mismatch", now, claimed_admin_id)

            admin = await self.accounts.get_by_id(admin_id)
            if admin is None or not admin.is_admin:
                await self._deny(admin_id, account_id, decision, "not_admin", now, claimed_admin_id)
            if not admin.is_active:
                await self._deny(admin_id, account_id, decision, "inactive", now, claimed_admin_id)
            if admin_id == account_id:
                await self._deny(admin_id, account_id, decision, "self_review", now, claimed_admin_id)

            application = await self.state_machine.apply_review_decision(
                account_id,
                decision,
                admin_id=admin_id,
                reason=reason,
                expected_version=expected_version,
                now=now,
                commit=False,
            )
            account = application.account
            session = application.session

            entry = await self.audit.record(
                actor_id=admin_id,
                action=DECISION_ACTIONS[decision],
                target_account_id=account_id,
                reason=reason,
                details=ReviewDecisionDetails(
                    decision=decision.value,
                    from_state=application.previous_state,
                    to_state=account.verification_state,
                    session_id=session.id if session is not None else None,
                    trust_score_after=account.trust_score,
                    account_version=account.version,
                    sla_overdue=session is not None and session.sla_overdue_at is not None,
                ),
                now=now,
            )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "review_decision_applied",
            admin_id=admin_id,
            account_id=account_id,
            decision=decision.value,
            new_state=account.verification_state.value,
        )
        return ReviewOutcome(
            account_id=account_id,
            previous_state=application.previous_state,
            new_state=account.verification_state,
            trust_score=account.trust_score,
            enforcement_level=account.enforcement_level,
            audit_entry_id=entry.id,
            version=account.version,
        )
