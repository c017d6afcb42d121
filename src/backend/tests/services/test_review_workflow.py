"""
Tests for the manual review workflow.
"""

from datetime import datetime, timedelta
from typing import Optional

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import CapabilityDenied, InvalidTransition, StaleStateConflict
from models.account import VerificationState
from models.audit import AdminAction
from models.behavior_flag import FlagType
from models.verification import SessionPurpose, SessionStatus, VerificationSession
from repositories.audit_repository import AuditRepository
from schemas.review import ReviewDecision
from schemas.trust import FlagDraft
from services.review_workflow import ReviewWorkflow
from services.verification_state_machine import VerificationStateMachine
from services.visibility import visibility_weight

S = VerificationState


async def open_review(
    session_factory: async_sessionmaker[AsyncSession],
    account_id: str,
    sla_deadline: Optional[datetime],
    created_at: datetime,
    consistency_score: Optional[float] = None,
) -> str:
    async with session_factory() as session:
        review = VerificationSession(
            account_id=account_id,
            purpose=SessionPurpose.MANUAL_REVIEW,
            status=SessionStatus.PENDING,
            escalation_trigger="flag_escalation",
            sla_deadline=sla_deadline,
            liveness_check_type="blink" if consistency_score is not None else None,
            liveness_consistency_score=consistency_score,
            liveness_pose_metrics={"yaw": 1.0} if consistency_score is not None else None,
            liveness_eye_metrics={"blink_count": 2.0} if consistency_score is not None else None,
            created_at=created_at,
            expires_at=created_at + timedelta(days=30),
        )
        session.add(review)
        await session.commit()
        return review.id


async def audit_entries(session_factory: async_sessionmaker[AsyncSession], target_id: str):
    async with session_factory() as session:
        return await AuditRepository(session).query(limit=100, target_account_id=target_id)


@pytest.mark.integration
class TestReviewQueue:
    async def test_ordered_by_sla_deadline(
        self, make_account, session_factory, db_session: AsyncSession, now: datetime
    ) -> None:
        later = await make_account(S.MANUAL_REVIEW)
        sooner = await make_account(S.MANUAL_REVIEW)
        migrated = await make_account(S.MANUAL_REVIEW)
        await make_account(S.SOFT_VERIFIED)
        await open_review(session_factory, later.id, now + timedelta(hours=40), now, consistency_score=0.85)
        await open_review(session_factory, sooner.id, now + timedelta(hours=2), now)

        queue = await ReviewWorkflow(db_session).get_review_queue(now=now)

        assert queue.total == 3
        assert [item.account_id for item in queue.items] == [sooner.id, later.id, migrated.id]
        assert queue.items[1].liveness.consistency_score == 0.85
        assert queue.items[1].liveness.evidence_available is False
        assert queue.items[0].liveness is None
        assert queue.items[2].session_id is None

    async def test_overdue_marker(self, make_account, session_factory, db_session: AsyncSession, now: datetime) -> None:
        account = await make_account(S.MANUAL_REVIEW)
        await open_review(session_factory, account.id, now - timedelta(minutes=1), now - timedelta(hours=49))

        queue = await ReviewWorkflow(db_session).get_review_queue(now=now)

        assert queue.items[0].overdue is True

    async def test_pagination(self, make_account, session_factory, db_session: AsyncSession, now: datetime) -> None:
        for hours in (1, 2, 3):
            account = await make_account(S.MANUAL_REVIEW)
            await open_review(session_factory, account.id, now + timedelta(hours=hours), now)

        page = await ReviewWorkflow(db_session).get_review_queue(limit=2, offset=2, now=now)

        assert page.total == 3
        assert len(page.items) == 1

    async def test_only_unreviewed_flags_are_listed(
        self, make_account, db_session: AsyncSession, now: datetime
    ) -> None:
        account = await make_account(S.SOFT_VERIFIED, flags_reviewed_at=now - timedelta(days=1))
        machine = VerificationStateMachine(db_session)
        await machine.apply_flags(account.id, [FlagDraft(flag_type=FlagType.MULTI_ACCOUNT)], now=now)

        queue = await ReviewWorkflow(db_session).get_review_queue(now=now)

        assert [flag.flag_type for flag in queue.items[0].flags] == [FlagType.MULTI_ACCOUNT]


@pytest.mark.integration
class TestReviewAccount:
    async def test_approve_writes_one_audit_entry(
        self, make_account, session_factory, db_session: AsyncSession, now: datetime
    ) -> None:
        admin = await make_account(S.SOFT_VERIFIED, is_admin=True)
        account = await make_account(S.MANUAL_REVIEW)
        session_id = await open_review(session_factory, account.id, now + timedelta(hours=10), now)

        outcome = await ReviewWorkflow(db_session).review_account(
            admin.id, account.id, ReviewDecision.APPROVE, "Liveness matches photos", expected_version=1, now=now
        )

        assert outcome.previous_state == S.MANUAL_REVIEW
        assert outcome.new_state == S.SOFT_VERIFIED
        assert outcome.version == 2

        entries = await audit_entries(session_factory, account.id)
        assert len(entries) == 1
        assert entries[0].id == outcome.audit_entry_id
        assert entries[0].action == AdminAction.REVIEW_APPROVE
        assert entries[0].actor_id == admin.id
        assert entries[0].reason == "Liveness matches photos"
        assert entries[0].details["session_id"] == session_id
        assert entries[0].details["to_state"] == "soft_verified"

    async def test_reject_blocks_account(
        self, make_account, session_factory, load_account, db_session: AsyncSession, now: datetime
    ) -> None:
        admin = await make_account(S.SOFT_VERIFIED, is_admin=True)
        account = await make_account(S.MANUAL_REVIEW)
        await open_review(session_factory, account.id, now + timedelta(hours=10), now)

        outcome = await ReviewWorkflow(db_session).review_account(
            admin.id, account.id, ReviewDecision.REJECT, "Catfish", expected_version=1, now=now
        )

        assert outcome.new_state == S.BLOCKED
        stored = await load_account(account.id)
        assert stored.verification_state == S.BLOCKED
        assert visibility_weight(stored.verification_state) == 0.0

        entries = await audit_entries(session_factory, account.id)
        assert len(entries) == 1
        assert entries[0].id == outcome.audit_entry_id
        assert entries[0].action == AdminAction.REVIEW_REJECT
        assert entries[0].actor_id == admin.id
        assert entries[0].reason == "Catfish"
        assert entries[0].details["to_state"] == "blocked"

    async def test_non_admin_is_denied_and_audited(
        self, make_account, session_factory, load_account, db_session: AsyncSession, now: datetime
    ) -> None:
        impostor = await make_account(S.SOFT_VERIFIED)
        account = await make_account(S.MANUAL_REVIEW)

        with pytest.raises(CapabilityDenied):
            await ReviewWorkflow(db_session).review_account(
                impostor.id, account.id, ReviewDecision.APPROVE, "trust me", expected_version=1, now=now
            )

        assert (await load_account(account.id)).verification_state == S.MANUAL_REVIEW
        entries = await audit_entries(session_factory, account.id)
        assert [entry.action for entry in entries] == [AdminAction.CAPABILITY_DENIED]
        assert entries[0].details["cause"] == "not_admin"
        assert entries[0].details["attempted_action"] == "review_approve"

    async def test_identity_mismatch_is_denied(
        self, make_account, session_factory, db_session: AsyncSession, now: datetime
    ) -> None:
        admin = await make_account(S.SOFT_VERIFIED, is_admin=True)
        caller = await make_account(S.SOFT_VERIFIED)
        account = await make_account(S.MANUAL_REVIEW)

        with pytest.raises(CapabilityDenied):
            await ReviewWorkflow(db_session).review_account(
                caller.id,
                account.id,
                ReviewDecision.APPROVE,
                "ok",
                expected_version=1,
                now=now,
                claimed_admin_id=admin.id,
            )

        entries = await audit_entries(session_factory, account.id)
        assert entries[0].details["cause"] == "identity_mismatch"
        assert entries[0].details["claimed_admin_id"] == admin.id

    async def test_inactive_admin_is_denied(self, make_account, db_session: AsyncSession, now: datetime) -> None:
        admin = await make_account(S.SOFT_VERIFIED, is_admin=True, is_active=False)
        account = await make_account(S.MANUAL_REVIEW)

        with pytest.raises(CapabilityDenied):
            await ReviewWorkflow(db_session).review_account(
                admin.id, account.id, ReviewDecision.APPROVE, "ok", expected_version=1, now=now
            )

    async def test_self_review_is_denied(self, make_account, db_session: AsyncSession, now: datetime) -> None:
        admin = await make_account(S.MANUAL_REVIEW, is_admin=True)

        with pytest.raises(CapabilityDenied):
            await ReviewWorkflow(db_session).review_account(
                admin.id, admin.id, ReviewDecision.APPROVE, "me", expected_version=1, now=now
            )

    async def test_invalid_transition_writes_no_audit(
        self, make_account, session_factory, db_session: AsyncSession, now: datetime
    ) -> None:
        admin = await make_account(S.SOFT_VERIFIED, is_admin=True)
        account = await make_account(S.SOFT_VERIFIED)

        with pytest.raises(InvalidTransition):
            await ReviewWorkflow(db_session).review_account(
                admin.id, account.id, ReviewDecision.REJECT, "no", expected_version=1, now=now
            )

        assert await audit_entries(session_factory, account.id) == []

    async def test_second_reviewer_on_same_version_conflicts(
        self, make_account, session_factory, load_account, now: datetime
    ) -> None:
        first_admin = await make_account(S.SOFT_VERIFIED, is_admin=True)
        second_admin = await make_account(S.SOFT_VERIFIED, is_admin=True)
        account = await make_account(S.MANUAL_REVIEW)
        await open_review(session_factory, account.id, now + timedelta(hours=10), now)

        async with session_factory() as session:
            await ReviewWorkflow(session).review_account(
                first_admin.id, account.id, ReviewDecision.APPROVE, "fine", expected_version=1, now=now
            )

        async with session_factory() as session:
            with pytest.raises(StaleStateConflict):
                await ReviewWorkflow(session).review_account(
                    second_admin.id, account.id, ReviewDecision.REJECT, "not fine", expected_version=1, now=now
                )

        assert (await load_account(account.id)).verification_state == S.SOFT_VERIFIED
        entries = await audit_entries(session_factory, account.id)
        assert [entry.actor_id for entry in entries] == [first_admin.id]
