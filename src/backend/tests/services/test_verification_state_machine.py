"""
Tests for the verification state machine.

Covers the transition table itself plus the end-to-end flows that drive it:
liveness submission, flag escalation, trust floor breaches and admin
review decisions.
"""

import itertools
from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.exceptions import (
    AccountNotFound,
    ConflictingPendingSession,
    InvalidTransition,
    RateLimitExceeded,
    StaleStateConflict,
)
from models.account import Account, EnforcementLevel, VerificationState
from models.behavior_flag import FlagSeverity, FlagType
from models.state_transition import TransitionTrigger
from models.verification import AttemptResult, SessionPurpose, SessionStatus, VerificationSession
from repositories.account_repository import AccountRepository
from repositories.flag_repository import FlagRepository
from repositories.transition_repository import TransitionRepository
from repositories.verification_repository import VerificationAttemptRepository, VerificationSessionRepository
from schemas.account import ContactChannel
from schemas.review import ReviewDecision
from schemas.trust import FlagDraft
from schemas.verification import LivenessResult
from services.verification_state_machine import (
    TRANSITIONS,
    ScoringSnapshot,
    VerificationStateMachine,
    _PendingAccount,
    is_allowed,
    validate_transition,
)

S = VerificationState


def liveness(score: float) -> LivenessResult:
    return LivenessResult(
        check_type="blink",
        consistency_score=score,
        pose_metrics={"yaw": 2.5, "pitch": -1.0},
        eye_metrics={"blink_count": 2.0},
    )


async def add_pending_review(session_factory: async_sessionmaker[AsyncSession], account_id: str, now: datetime) -> str:
    async with session_factory() as session:
        review = VerificationSession(
            account_id=account_id,
            purpose=SessionPurpose.MANUAL_REVIEW,
            status=SessionStatus.PENDING,
            sla_deadline=now + timedelta(hours=48),
            created_at=now,
            expires_at=now + timedelta(days=30),
        )
        session.add(review)
        await session.commit()
        return review.id


async def add_attempts(
    session_factory: async_sessionmaker[AsyncSession],
    account_id: str,
    device_id: str,
    times: list[datetime],
    result: AttemptResult = AttemptResult.FAILURE,
) -> None:
    async with session_factory() as session:
        repository = VerificationAttemptRepository(session)
        for created_at in times:
            await repository.add(account_id, device_id, result, created_at=created_at)
        await session.commit()


@pytest.mark.unit
class TestTransitionTable:
    """The table is the only source of legal edges."""

    def test_only_tabled_edges_are_allowed(self) -> None:
        for from_state, to_state, trigger in itertools.product(S, S, TransitionTrigger):
            sources, target = TRANSITIONS[trigger]
            expected = from_state in sources and to_state == target
            assert is_allowed(from_state, to_state, trigger) is expected

    def test_blocked_is_terminal(self) -> None:
        for to_state, trigger in itertools.product(S, TransitionTrigger):
            assert not is_allowed(S.BLOCKED, to_state, trigger)

    def test_admin_edges_leave_manual_review_only(self) -> None:
        for trigger in (
            TransitionTrigger.ADMIN_APPROVE,
            TransitionTrigger.ADMIN_REJECT,
            TransitionTrigger.ADMIN_REQUEST_REVERIFICATION,
        ):
            assert TRANSITIONS[trigger][0] == frozenset({S.MANUAL_REVIEW})

    def test_every_trigger_has_an_edge(self) -> None:
        assert set(TRANSITIONS) == set(TransitionTrigger)

    def test_validate_rejects_disallowed_edge(self) -> None:
        with pytest.raises(InvalidTransition) as exc_info:
            validate_transition(S.UNVERIFIED, S.FLAGGED, TransitionTrigger.BEHAVIOR_FLAG)
        assert exc_info.value.from_state == S.UNVERIFIED
        assert exc_info.value.trigger == TransitionTrigger.BEHAVIOR_FLAG


@pytest.mark.unit
class TestPendingAccount:
    def stored_account(self, now: datetime) -> Account:
        return Account(
            id="acct-1",
            verification_state=S.UNVERIFIED,
            email_verified=False,
            phone_verified=False,
            created_at=now - timedelta(days=2),
            profile_photo_count=1,
            bio_length=10,
            profile_prompt_count=0,
            flags_reviewed_at=None,
            trust_score=50,
            version=4,
        )

    def test_snapshot_applies_pending_writes(self, now: datetime) -> None:
        work = _PendingAccount(self.stored_account(now), now)
        work.set(verification_state=S.SOFT_VERIFIED, phone_verified=True, trust_score=75)

        snapshot = work.snapshot()

        assert snapshot == ScoringSnapshot(
            verification_state=S.SOFT_VERIFIED,
            email_verified=False,
            phone_verified=True,
            created_at=now - timedelta(days=2),
            profile_photo_count=1,
            bio_length=10,
            profile_prompt_count=0,
            flags_reviewed_at=None,
        )
        assert work.state == S.SOFT_VERIFIED
        # The stored row is untouched until compare-and-set
        assert work.account.verification_state == S.UNVERIFIED
        assert work.account.trust_score == 50

    def test_unscored_columns_are_not_proxied(self, now: datetime) -> None:
        work = _PendingAccount(self.stored_account(now), now)

        with pytest.raises(AttributeError):
            work.trust_score  # noqa: B018
        assert not hasattr(work.snapshot(), "version")


@pytest.mark.integration
class TestLivenessSubmission:
    """Liveness gate, pending-session guard and attempt limiter."""

    async def test_passing_liveness_soft_verifies(self, make_account, db_session: AsyncSession, now: datetime) -> None:
        account = await make_account()

        result = await VerificationStateMachine(db_session).submit_liveness_result(
            account.id, "device-1", liveness(0.93), evidence_ref="evidence/abc", now=now
        )

        assert result.accepted is True
        assert result.verification_state == S.SOFT_VERIFIED
        assert result.trust_score == 70

        stored = await AccountRepository(db_session).get_by_id(account.id)
        assert stored.verification_state == S.SOFT_VERIFIED
        assert stored.version == 2
        assert stored.enforcement_level == EnforcementLevel.NONE

        session = await VerificationSessionRepository(db_session).get_by_id(result.session_id)
        assert session.status == SessionStatus.APPROVED
        assert session.evidence_ref == "evidence/abc"
        assert session.expires_at == now + timedelta(days=30)

        transitions = await TransitionRepository(db_session).list_for_account(account.id)
        assert [(t.from_state, t.to_state, t.trigger) for t in transitions] == [
            (S.UNVERIFIED, S.SOFT_VERIFIED, TransitionTrigger.LIVENESS_PASSED)
        ]
        assert transitions[0].trust_score_after == 70

    async def test_threshold_is_inclusive(self, make_account, db_session: AsyncSession, now: datetime) -> None:
        account = await make_account()
        result = await VerificationStateMachine(db_session).submit_liveness_result(
            account.id, "device-1", liveness(0.80), now=now
        )
        assert result.accepted is True

    async def test_failing_liveness_keeps_state(self, make_account, db_session: AsyncSession, now: datetime) -> None:
        account = await make_account()

        result = await VerificationStateMachine(db_session).submit_liveness_result(
            account.id, "device-1", liveness(0.42), now=now
        )

        assert result.accepted is False
        assert result.denied_reason == "consistency_below_threshold"
        assert result.verification_state == S.UNVERIFIED

        session = await VerificationSessionRepository(db_session).get_by_id(result.session_id)
        assert session.status == SessionStatus.REJECTED
        assert await VerificationSessionRepository(db_session).get_pending(account.id) is None

    async def test_reverify_required_can_pass_again(self, make_account, db_session: AsyncSession, now: datetime) -> None:
        account = await make_account(S.REVERIFY_REQUIRED)
        result = await VerificationStateMachine(db_session).submit_liveness_result(
            account.id, "device-1", liveness(0.9), now=now
        )
        assert result.verification_state == S.SOFT_VERIFIED

    @pytest.mark.parametrize("state", [S.SOFT_VERIFIED, S.FLAGGED, S.BLOCKED])
    async def test_state_gate(self, state: VerificationState, make_account, db_session: AsyncSession, now) -> None:
        account = await make_account(state)

        with pytest.raises(InvalidTransition):
            await VerificationStateMachine(db_session).submit_liveness_result(
                account.id, "device-1", liveness(0.9), now=now
            )

        assert await VerificationAttemptRepository(db_session).count_since(now - timedelta(hours=1), account.id) == 0

    async def test_pending_session_conflict(
        self, make_account, session_factory, db_session: AsyncSession, now: datetime
    ) -> None:
        account = await make_account()
        await add_pending_review(session_factory, account.id, now)

        with pytest.raises(ConflictingPendingSession):
            await VerificationStateMachine(db_session).submit_liveness_result(
                account.id, "device-1", liveness(0.9), now=now
            )

    async def test_rate_limit_denies_and_records_breach(
        self, make_account, session_factory, db_session: AsyncSession, now: datetime
    ) -> None:
        account = await make_account()
        first = now - timedelta(minutes=50)
        await add_attempts(session_factory, account.id, "device-1", [first, now - timedelta(minutes=20), now])

        with pytest.raises(RateLimitExceeded) as exc_info:
            await VerificationStateMachine(db_session).submit_liveness_result(
                account.id, "device-1", liveness(0.95), now=now + timedelta(minutes=1)
            )

        assert exc_info.value.reason == "account_limit"
        # Oldest counted attempt leaves the 60 minute window 9 minutes later
        assert exc_info.value.retry_after_seconds == 9 * 60

        async with session_factory() as session:
            breaches = await VerificationAttemptRepository(session).list_breach_times(account.id, now - timedelta(hours=1))
            stored = await AccountRepository(session).get_by_id(account.id)
        assert len(breaches) == 1
        assert stored.verification_state == S.UNVERIFIED

    async def test_device_limit_applies_across_accounts(
        self, make_account, session_factory, db_session: AsyncSession, now: datetime
    ) -> None:
        other = await make_account()
        account = await make_account()
        await add_attempts(session_factory, other.id, "shared-device", [now - timedelta(minutes=m) for m in (30, 20, 10)])

        with pytest.raises(RateLimitExceeded) as exc_info:
            await VerificationStateMachine(db_session).submit_liveness_result(
                account.id, "shared-device", liveness(0.95), now=now
            )
        assert exc_info.value.reason == "device_limit"

    async def test_breaches_in_two_windows_raise_flag(
        self, make_account, session_factory, db_session: AsyncSession, now: datetime
    ) -> None:
        account = await make_account()
        earlier = now - timedelta(hours=3)
        await add_attempts(session_factory, account.id, "device-1", [earlier - timedelta(minutes=m) for m in (3, 2, 1)])
        await add_attempts(session_factory, account.id, "device-1", [earlier], result=AttemptResult.RATE_LIMITED)
        await add_attempts(session_factory, account.id, "device-1", [now - timedelta(minutes=m) for m in (3, 2, 1)])

        with pytest.raises(RateLimitExceeded):
            await VerificationStateMachine(db_session).submit_liveness_result(
                account.id, "device-1", liveness(0.95), now=now
            )

        async with session_factory() as session:
            flags = await FlagRepository(session).list_for_account(account.id)
        assert [f.flag_type for f in flags] == [FlagType.SUSPICIOUS_PROFILE]
        assert flags[0].details["source"] == "verification_rate_limit"

    async def test_unknown_account(self, db_session: AsyncSession, now: datetime) -> None:
        with pytest.raises(AccountNotFound):
            await VerificationStateMachine(db_session).submit_liveness_result(
                "missing", "device-1", liveness(0.9), now=now
            )


@pytest.mark.integration
class TestFlagEscalation:
    """Flags drive soft_verified -> flagged -> manual_review."""

    async def test_medium_flag_does_not_change_state(
        self, make_account, db_session: AsyncSession, now: datetime
    ) -> None:
        account = await make_account(S.SOFT_VERIFIED)

        application = await VerificationStateMachine(db_session).apply_flags(
            account.id, [FlagDraft(flag_type=FlagType.RAPID_SWIPING)], now=now
        )

        assert application.account.verification_state == S.SOFT_VERIFIED
        assert application.account.trust_score == 65
        assert [f.severity for f in application.raised] == [FlagSeverity.MEDIUM]

    async def test_high_flag_then_second_flag_escalates(
        self, make_account, db_session: AsyncSession, now: datetime
    ) -> None:
        account = await make_account(S.SOFT_VERIFIED)
        machine = VerificationStateMachine(db_session)

        first = await machine.apply_flags(account.id, [FlagDraft(flag_type=FlagType.MASS_MESSAGING)], now=now)
        assert first.account.verification_state == S.FLAGGED

        second = await machine.apply_flags(
            account.id, [FlagDraft(flag_type=FlagType.RAPID_SWIPING)], now=now + timedelta(minutes=5)
        )
        assert second.account.verification_state == S.MANUAL_REVIEW

        review = await VerificationSessionRepository(db_session).get_pending(account.id)
        assert review.purpose == SessionPurpose.MANUAL_REVIEW
        assert review.escalation_trigger == TransitionTrigger.FLAG_ESCALATION.value
        assert review.sla_deadline == now + timedelta(minutes=5) + timedelta(hours=48)

    async def test_multi_reporter_escalates_immediately(
        self, make_account, session_factory, db_session: AsyncSession, now: datetime
    ) -> None:
        account = await make_account(S.UNVERIFIED)
        machine = VerificationStateMachine(db_session)
        await machine.submit_liveness_result(account.id, "device-1", liveness(0.9), evidence_ref="ev/1", now=now)

        later = now + timedelta(days=2)
        application = await machine.apply_flags(account.id, [FlagDraft(flag_type=FlagType.MULTI_REPORTER)], now=later)

        assert application.account.verification_state == S.MANUAL_REVIEW
        transitions = await TransitionRepository(db_session).list_for_account(account.id)
        assert [(t.from_state, t.to_state) for t in transitions] == [
            (S.UNVERIFIED, S.SOFT_VERIFIED),
            (S.SOFT_VERIFIED, S.FLAGGED),
            (S.FLAGGED, S.MANUAL_REVIEW),
        ]

        # The review carries the liveness summary and keeps the evidence deadline
        review = await VerificationSessionRepository(db_session).get_pending(account.id)
        assert review.liveness_consistency_score == 0.9
        assert review.evidence_ref == "ev/1"
        assert review.expires_at == now + timedelta(days=30)

    async def test_flag_cooldown_suppresses_repeat(
        self, make_account, db_session: AsyncSession, now: datetime
    ) -> None:
        account = await make_account(S.SOFT_VERIFIED)
        machine = VerificationStateMachine(db_session)

        await machine.apply_flags(account.id, [FlagDraft(flag_type=FlagType.RAPID_SWIPING)], now=now)
        repeat = await machine.apply_flags(
            account.id, [FlagDraft(flag_type=FlagType.RAPID_SWIPING)], now=now + timedelta(hours=2)
        )

        assert repeat.raised == []
        assert len(await FlagRepository(db_session).list_for_account(account.id)) == 1

    async def test_flags_on_blocked_account_do_not_transition(
        self, make_account, db_session: AsyncSession, now: datetime
    ) -> None:
        account = await make_account(S.BLOCKED)

        application = await VerificationStateMachine(db_session).apply_flags(
            account.id, [FlagDraft(flag_type=FlagType.MULTI_ACCOUNT)], now=now
        )

        assert application.account.verification_state == S.BLOCKED
        assert len(application.raised) == 1


@pytest.mark.integration
class TestTrustFloor:
    async def test_score_below_hard_minimum_forces_review(
        self, make_account, db_session: AsyncSession, now: datetime
    ) -> None:
        account = await make_account(S.UNVERIFIED)
        drafts = [
            FlagDraft(flag_type=FlagType.MASS_MESSAGING),
            FlagDraft(flag_type=FlagType.MULTI_ACCOUNT),
            FlagDraft(flag_type=FlagType.MULTI_REPORTER),
            FlagDraft(flag_type=FlagType.RAPID_SWIPING),
        ]

        application = await VerificationStateMachine(db_session).apply_flags(account.id, drafts, now=now)

        # 50 - 30 (three high) - 5 (medium) = 15, then the suspicious floor adds a medium flag
        assert application.account.trust_score == 10
        assert application.account.verification_state == S.MANUAL_REVIEW
        assert application.account.enforcement_level == EnforcementLevel.SECURITY_ONLY
        assert FlagType.SUSPICIOUS_PROFILE in {f.flag_type for f in application.raised}

        transitions = await TransitionRepository(db_session).list_for_account(account.id)
        assert transitions[-1].trigger == TransitionTrigger.TRUST_FLOOR_BREACH


@pytest.mark.integration
class TestReviewDecisions:
    async def test_approve_clears_flag_penalties(
        self, make_account, session_factory, db_session: AsyncSession, now: datetime
    ) -> None:
        admin = await make_account(S.SOFT_VERIFIED, is_admin=True)
        account = await make_account(S.SOFT_VERIFIED)
        machine = VerificationStateMachine(db_session)
        await machine.apply_flags(account.id, [FlagDraft(flag_type=FlagType.MULTI_ACCOUNT)], now=now)

        later = now + timedelta(hours=1)
        application = await machine.apply_review_decision(
            account.id,
            ReviewDecision.APPROVE,
            admin_id=admin.id,
            reason="Looks legitimate",
            expected_version=2,
            now=later,
        )

        assert application.previous_state == S.MANUAL_REVIEW
        assert application.account.verification_state == S.SOFT_VERIFIED
        assert application.account.flags_reviewed_at == later
        assert application.account.trust_score == 70
        assert application.session.status == SessionStatus.APPROVED
        assert application.session.reviewed_by == admin.id

    async def test_reject_blocks(self, make_account, session_factory, db_session: AsyncSession, now: datetime) -> None:
        admin = await make_account(S.SOFT_VERIFIED, is_admin=True)
        account = await make_account(S.MANUAL_REVIEW)
        session_id = await add_pending_review(session_factory, account.id, now)

        application = await VerificationStateMachine(db_session).apply_review_decision(
            account.id, ReviewDecision.REJECT, admin_id=admin.id, reason="Fake profile", expected_version=1, now=now
        )

        assert application.account.verification_state == S.BLOCKED
        assert application.account.flags_reviewed_at is None
        session = await VerificationSessionRepository(db_session).get_by_id(session_id)
        assert session.status == SessionStatus.REJECTED
        assert session.rejection_reason == "Fake profile"
        assert session.sla_deadline is None

    async def test_request_reverification(self, make_account, db_session: AsyncSession, now: datetime) -> None:
        admin = await make_account(S.SOFT_VERIFIED, is_admin=True)
        account = await make_account(S.MANUAL_REVIEW)

        application = await VerificationStateMachine(db_session).apply_review_decision(
            account.id,
            ReviewDecision.REQUEST_REVERIFICATION,
            admin_id=admin.id,
            reason="Blurry",
            expected_version=1,
            now=now,
        )

        assert application.account.verification_state == S.REVERIFY_REQUIRED
        assert application.account.flags_reviewed_at == now

    async def test_decision_outside_review_is_invalid(
        self, make_account, db_session: AsyncSession, now: datetime
    ) -> None:
        admin = await make_account(S.SOFT_VERIFIED, is_admin=True)
        account = await make_account(S.SOFT_VERIFIED)

        with pytest.raises(InvalidTransition):
            await VerificationStateMachine(db_session).apply_review_decision(
                account.id, ReviewDecision.APPROVE, admin_id=admin.id, reason="ok", expected_version=1, now=now
            )

    async def test_stale_expected_version(self, make_account, db_session: AsyncSession, now: datetime) -> None:
        admin = await make_account(S.SOFT_VERIFIED, is_admin=True)
        account = await make_account(S.MANUAL_REVIEW, version=3)

        with pytest.raises(StaleStateConflict):
            await VerificationStateMachine(db_session).apply_review_decision(
                account.id, ReviewDecision.APPROVE, admin_id=admin.id, reason="ok", expected_version=2, now=now
            )


@pytest.mark.integration
class TestSignals:
    async def test_contact_verification_raises_score(
        self, make_account, db_session: AsyncSession, now: datetime
    ) -> None:
        account = await make_account()
        machine = VerificationStateMachine(db_session)

        await machine.record_contact_verified(account.id, ContactChannel.EMAIL, now=now)
        updated = await machine.record_contact_verified(account.id, ContactChannel.PHONE, now=now)

        assert updated.email_verified is True
        assert updated.phone_verified is True
        assert updated.trust_score == 60
        assert updated.enforcement_level == EnforcementLevel.NONE
        assert updated.version == 3

    async def test_profile_signals(self, make_account, db_session: AsyncSession, now: datetime) -> None:
        account = await make_account()

        updated = await VerificationStateMachine(db_session).update_profile_signals(
            account.id, photo_count=4, bio_length=250, prompt_count=3, now=now
        )

        assert updated.profile_photo_count == 4
        assert updated.trust_score == 65

    async def test_recompute_reflects_account_age(
        self, make_account, db_session: AsyncSession, now: datetime
    ) -> None:
        account = await make_account(created_at=now - timedelta(days=45))

        result = await VerificationStateMachine(db_session).recompute_trust_score(account.id, now=now)

        assert result.score == 55
        assert "account_age" in [item.factor for item in result.breakdown]


@pytest.mark.integration
class TestCompareAndSet:
    async def test_concurrent_writer_loses(self, make_account, session_factory, now: datetime) -> None:
        account = await make_account()

        async with session_factory() as first, session_factory() as second:
            first_copy = await AccountRepository(first).get_by_id(account.id)
            second_copy = await AccountRepository(second).get_by_id(account.id)

            assert await AccountRepository(first).compare_and_set(first_copy, now, trust_score=60) is True
            await first.commit()

            assert await AccountRepository(second).compare_and_set(second_copy, now, trust_score=40) is False
            await second.rollback()

        async with session_factory() as session:
            stored = await AccountRepository(session).get_by_id(account.id)
        assert stored.trust_score == 60
        assert stored.version == 2
