"""
Verification State Machine.

The only component allowed to change an account's verification state, trust
score or enforcement level. Every public operation is one transaction:

1. Load the account and remember the version that was read
2. Apply the operation (sessions, flags, transitions) inside the transaction
3. Settle - recompute the trust score, raise the low-score flag, force
   manual review below the hard minimum
4. Compare-and-set the account row on the version read in step 1

If step 4 finds the row changed underneath us, everything from steps 2-3 is
rolled back and ``StaleStateConflict`` is raised; a transition and its side
effects never commit separately.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass, fields
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, NamedTuple, Optional, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from core.exceptions import (
    AccountNotFound,
    ConflictingPendingSession,
    InvalidTransition,
    RateLimitExceeded,
    StaleStateConflict,
)
from db.types import utcnow
from models.account import Account, VerificationState
from models.behavior_flag import BehaviorFlag, FlagSeverity, FlagType
from models.state_transition import TransitionTrigger
from models.verification import AttemptResult, SessionPurpose, SessionStatus, VerificationSession
from repositories.account_repository import AccountRepository
from repositories.flag_repository import FlagRepository
from repositories.transition_repository import TransitionRepository
from repositories.verification_repository import VerificationSessionRepository
from schemas.account import ContactChannel
from schemas.review import ReviewDecision
from schemas.trust import FlagDraft, TrustScoreResult
from schemas.verification import LivenessResult, LivenessSubmissionResult
from services.attempt_limiter import AttemptLimiter
from services.trust_score import compute_trust_score

logger = structlog.get_logger(__name__)


# =============================================================================
# Transition table
# =============================================================================

S = VerificationState

# trigger -> (allowed source states, target state)
TRANSITIONS: dict[TransitionTrigger, tuple[frozenset[VerificationState], VerificationState]] = {
    TransitionTrigger.LIVENESS_PASSED: (
        frozenset({S.UNVERIFIED, S.REVERIFY_REQUIRED}),
        S.SOFT_VERIFIED,
    ),
    TransitionTrigger.BEHAVIOR_FLAG: (frozenset({S.SOFT_VERIFIED}), S.FLAGGED),
    TransitionTrigger.FLAG_ESCALATION: (frozenset({S.FLAGGED}), S.MANUAL_REVIEW),
    TransitionTrigger.TRUST_FLOOR_BREACH: (
        frozenset({S.UNVERIFIED, S.SOFT_VERIFIED, S.FLAGGED, S.REVERIFY_REQUIRED}),
        S.MANUAL_REVIEW,
    ),
    TransitionTrigger.ADMIN_APPROVE: (frozenset({S.MANUAL_REVIEW}), S.SOFT_VERIFIED),
    TransitionTrigger.ADMIN_REJECT: (frozenset({S.MANUAL_REVIEW}), S.BLOCKED),
    TransitionTrigger.ADMIN_REQUEST_REVERIFICATION: (frozenset({S.MANUAL_REVIEW}), S.REVERIFY_REQUIRED),
}

REVIEW_DECISIONS: dict[ReviewDecision, TransitionTrigger] = {
    ReviewDecision.APPROVE: TransitionTrigger.ADMIN_APPROVE,
    ReviewDecision.REJECT: TransitionTrigger.ADMIN_REJECT,
    ReviewDecision.REQUEST_REVERIFICATION: TransitionTrigger.ADMIN_REQUEST_REVERIFICATION,
}

# States from which a liveness submission is accepted
LIVENESS_GATE_STATES = TRANSITIONS[TransitionTrigger.LIVENESS_PASSED][0]

# Flag types that skip the "second flag" rule and escalate straight to review
IMMEDIATE_ESCALATION_TYPES = frozenset({FlagType.MULTI_ACCOUNT, FlagType.MULTI_REPORTER})

LIVENESS_REJECTION_REASON = "consistency_below_threshold"


def is_allowed(from_state: VerificationState, to_state: VerificationState, trigger: TransitionTrigger) -> bool:
    sources, target = TRANSITIONS[trigger]
    return from_state in sources and to_state == target


def validate_transition(
    from_state: VerificationState,
    to_state: VerificationState,
    trigger: TransitionTrigger,
    account_id: Optional[str] = None,
) -> None:
    """
    Raise ``InvalidTransition`` unless the edge is in the transition table.

    Rejections are logged; they are never silent no-ops.
    """
    if is_allowed(from_state, to_state, trigger):
        return
    logger.warning(
        "invalid_transition",
        account_id=account_id,
        from_state=from_state.value,
        to_state=to_state.value,
        trigger=trigger.value,
    )
    raise InvalidTransition(from_state, to_state, trigger)


# =============================================================================
# Unit of work
# =============================================================================


@dataclass(frozen=True)
class ScoringSnapshot:
    """The scored columns of an account as they will be committed."""

    verification_state: VerificationState
    email_verified: bool
    phone_verified: bool
    created_at: datetime
    profile_photo_count: int
    bio_length: int
    profile_prompt_count: int
    flags_reviewed_at: Optional[datetime]


SCORED_FIELDS = tuple(f.name for f in fields(ScoringSnapshot))


class _PendingAccount:
    """An account as read, plus the column writes the current operation wants."""

    def __init__(self, account: Account, now: datetime):
        self.account = account
        self.now = now
        self.values: dict[str, Any] = {}
        self.transitions: list[tuple[VerificationState, VerificationState, TransitionTrigger, Optional[str]]] = []
        self.raised_flags: list[BehaviorFlag] = []
        self.review_session: Optional[VerificationSession] = None

    def pending(self, name: str) -> Any:
        """Column value with this operation's pending write applied."""
        if name in self.values:
            return self.values[name]
        return getattr(self.account, name)

    @property
    def state(self) -> VerificationState:
        return self.pending("verification_state")

    def set(self, **values: Any) -> None:
        self.values.update(values)

    def snapshot(self) -> ScoringSnapshot:
        return ScoringSnapshot(**{name: self.pending(name) for name in SCORED_FIELDS})


class FlagApplication(NamedTuple):
    account: Account
    raised: list[BehaviorFlag]


class ReviewApplication(NamedTuple):
    account: Account
    previous_state: VerificationState
    session: Optional[VerificationSession]


# =============================================================================
# State machine
# =============================================================================


class VerificationStateMachine:
    """Transactional owner of verification state and trust score."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.accounts = AccountRepository(db)
        self.sessions = VerificationSessionRepository(db)
        self.flags = FlagRepository(db)
        self.transitions = TransitionRepository(db)
        self.limiter = AttemptLimiter(db)

    # -------------------------------------------------------------------------
    # Transaction plumbing
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _unit_of_work(self, commit: bool = True) -> AsyncIterator[None]:
        """Commit on success when we own the transaction; roll back on any error."""
        try:
            yield
            if commit:
                await self.db.commit()
        except Exception:
            if commit:
                await self.db.rollback()
            raise

    async def _load(
        self, account_id: str, now: datetime, expected_version: Optional[int] = None
    ) -> _PendingAccount:
        account = await self.accounts.get_by_id(account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found", account_id=account_id)
        if expected_version is not None and account.version != expected_version:
            logger.warning(
                "stale_state_conflict",
                account_id=account_id,
                expected_version=expected_version,
                current_version=account.version,
            )
            raise StaleStateConflict(account_id, expected_version)
        return _PendingAccount(account, now)

    async def _commit_account(self, work: _PendingAccount) -> None:
        """Compare-and-set the account row, then append transition history."""
        read_version = work.account.version
        if not await self.accounts.compare_and_set(work.account, work.now, **work.values):
            logger.warning("stale_state_conflict", account_id=work.account.id, expected_version=read_version)
            raise StaleStateConflict(work.account.id, read_version)

        for from_state, to_state, trigger, actor_id in work.transitions:
            await self.transitions.add(
                account_id=work.account.id,
                from_state=from_state,
                to_state=to_state,
                trigger=trigger,
                actor_id=actor_id,
                trust_score_after=work.account.trust_score,
                created_at=work.now,
            )

    # -------------------------------------------------------------------------
    # Transitions and their side effects
    # -------------------------------------------------------------------------

    async def _apply_transition(
        self,
        work: _PendingAccount,
        to_state: VerificationState,
        trigger: TransitionTrigger,
        actor_id: Optional[str] = None,
    ) -> None:
        from_state = work.state
        validate_transition(from_state, to_state, trigger, account_id=work.account.id)

        work.set(verification_state=to_state)
        work.transitions.append((from_state, to_state, trigger, actor_id))
        if to_state == VerificationState.MANUAL_REVIEW:
            await self._open_review(work, trigger)

        logger.info(
            "verification_state_changed",
            account_id=work.account.id,
            from_state=from_state.value,
            to_state=to_state.value,
            trigger=trigger.value,
            actor_id=actor_id,
        )

    async def _open_review(self, work: _PendingAccount, trigger: TransitionTrigger) -> None:
        """Open (or re-arm) the review session and start the SLA clock."""
        sla_deadline = work.now + timedelta(hours=settings.REVIEW_SLA_HOURS)
        pending = await self.sessions.get_pending(work.account.id)
        if pending is not None:
            pending.sla_deadline = sla_deadline
            pending.escalation_trigger = trigger.value
            work.review_session = pending
            return

        latest = await self.sessions.get_latest_liveness(work.account.id)
        session = VerificationSession(
            account_id=work.account.id,
            purpose=SessionPurpose.MANUAL_REVIEW,
            status=SessionStatus.PENDING,
            escalation_trigger=trigger.value,
            sla_deadline=sla_deadline,
            created_at=work.now,
            expires_at=work.now + timedelta(days=settings.EVIDENCE_RETENTION_DAYS),
        )
        if latest is not None:
            # Reviews are decided on the retained summary; evidence keeps its own deadline
            session.liveness_check_type = latest.liveness_check_type
            session.liveness_consistency_score = latest.liveness_consistency_score
            session.liveness_pose_metrics = latest.liveness_pose_metrics
            session.liveness_eye_metrics = latest.liveness_eye_metrics
            session.evidence_ref = latest.evidence_ref
            session.expires_at = latest.expires_at
        await self.sessions.add(session)
        work.review_session = session

    async def _escalate_for_flag(self, work: _PendingAccount, flag: BehaviorFlag) -> None:
        state = work.state
        if state == VerificationState.FLAGGED:
            await self._apply_transition(work, VerificationState.MANUAL_REVIEW, TransitionTrigger.FLAG_ESCALATION)
            return
        if state != VerificationState.SOFT_VERIFIED:
            return
        if flag.severity != FlagSeverity.HIGH and flag.flag_type != FlagType.MULTI_REPORTER:
            return

        await self._apply_transition(work, VerificationState.FLAGGED, TransitionTrigger.BEHAVIOR_FLAG)
        if await self._is_immediate(work, flag):
            await self._apply_transition(work, VerificationState.MANUAL_REVIEW, TransitionTrigger.FLAG_ESCALATION)

    async def _is_immediate(self, work: _PendingAccount, flag: BehaviorFlag) -> bool:
        if flag.flag_type in IMMEDIATE_ESCALATION_TYPES:
            return True
        if flag.flag_type == FlagType.SUSPICIOUS_PROFILE:
            return (await self._score(work)).score < settings.TRUST_SCORE_SUSPICIOUS_FLOOR
        return False

    async def _raise_flags(self, work: _PendingAccount, drafts: Sequence[FlagDraft]) -> list[BehaviorFlag]:
        """Append flags (skipping types still in cooldown) and escalate."""
        cooldown_start = work.now - timedelta(hours=settings.FLAG_COOLDOWN_HOURS)
        raised = []
        for draft in drafts:
            if await self.flags.exists_since(work.account.id, draft.flag_type, cooldown_start):
                logger.debug("flag_suppressed_cooldown", account_id=work.account.id, flag_type=draft.flag_type.value)
                continue
            flag = await self.flags.add(
                account_id=work.account.id,
                flag_type=draft.flag_type,
                severity=draft.effective_severity,
                raised_at=work.now,
                description=draft.description,
                correlated_account_id=draft.correlated_account_id,
                details=draft.details or None,
            )
            raised.append(flag)
            work.raised_flags.append(flag)
            logger.info(
                "behavior_flag_raised",
                account_id=work.account.id,
                flag_type=flag.flag_type.value,
                severity=flag.severity.value,
            )
            await self._escalate_for_flag(work, flag)
        return raised

    async def _score(self, work: _PendingAccount) -> TrustScoreResult:
        flags = await self.flags.list_for_account(work.account.id)
        return compute_trust_score(work.snapshot(), flags, as_of=work.now)

    async def _settle(self, work: _PendingAccount) -> TrustScoreResult:
        """Recompute the score and act on the floors it crosses."""
        result = await self._score(work)

        if result.score < settings.TRUST_SCORE_SUSPICIOUS_FLOOR:
            raised = await self._raise_flags(
                work,
                [
                    FlagDraft(
                        flag_type=FlagType.SUSPICIOUS_PROFILE,
                        severity=FlagSeverity.MEDIUM,
                        description="Trust score fell below the suspicious floor",
                        details={"source": "trust_score", "score": result.score},
                    )
                ],
            )
            if raised:
                result = await self._score(work)

        if result.score < settings.TRUST_SCORE_HARD_MINIMUM and work.state not in (
            VerificationState.BLOCKED,
            VerificationState.MANUAL_REVIEW,
        ):
            await self._apply_transition(work, VerificationState.MANUAL_REVIEW, TransitionTrigger.TRUST_FLOOR_BREACH)
            result = await self._score(work)

        if result.score != work.account.trust_score or result.enforcement_level != work.account.enforcement_level:
            logger.info(
                "trust_score_updated",
                account_id=work.account.id,
                previous=work.account.trust_score,
                score=result.score,
                enforcement_level=result.enforcement_level.value,
            )
        work.set(
            trust_score=result.score,
            enforcement_level=result.enforcement_level,
            trust_score_updated_at=work.now,
        )
        return result

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def submit_liveness_result(
        self,
        account_id: str,
        device_id: str,
        liveness: LivenessResult,
        evidence_ref: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LivenessSubmissionResult:
        """
        Gate, record and resolve one liveness submission.

        Raises:
            AccountNotFound, ConflictingPendingSession, InvalidTransition,
            RateLimitExceeded, StaleStateConflict
        """
        now = now or utcnow()
        async with self._unit_of_work():
            work = await self._load(account_id, now)

            if await self.sessions.get_pending(account_id) is not None:
                raise ConflictingPendingSession(
                    f"Pending session already exists for account {account_id}", account_id=account_id
                )

            if work.state not in LIVENESS_GATE_STATES:
                validate_transition(
                    work.state, VerificationState.SOFT_VERIFIED, TransitionTrigger.LIVENESS_PASSED, account_id
                )

            decision = await self.limiter.check_rate_limit(account_id, device_id, now=now)
            if not decision.allowed:
                draft = await self.limiter.record_breach(account_id, device_id, decision.reason, now=now)
                if draft is not None:
                    await self._raise_flags(work, [draft])
                await self._settle(work)
                await self._commit_account(work)
                # The breach is evidence; it must survive the denial
                await self.db.commit()
                raise RateLimitExceeded(decision.reason, decision.retry_after_seconds)

            session = VerificationSession(
                account_id=account_id,
                purpose=SessionPurpose.LIVENESS,
                status=SessionStatus.PENDING,
                evidence_ref=evidence_ref,
                liveness_check_type=liveness.check_type,
                liveness_consistency_score=liveness.consistency_score,
                liveness_pose_metrics=liveness.pose_metrics,
                liveness_eye_metrics=liveness.eye_metrics,
                created_at=now,
                expires_at=now + timedelta(days=settings.EVIDENCE_RETENTION_DAYS),
            )
            await self.sessions.add(session)

            accepted = liveness.consistency_score >= settings.LIVENESS_CONSISTENCY_THRESHOLD
            if accepted:
                await self.sessions.resolve(session, SessionStatus.APPROVED, reviewed_at=now)
                await self.limiter.record_attempt(account_id, device_id, AttemptResult.SUCCESS, now=now)
                await self._apply_transition(work, VerificationState.SOFT_VERIFIED, TransitionTrigger.LIVENESS_PASSED)
            else:
                await self.sessions.resolve(
                    session, SessionStatus.REJECTED, reviewed_at=now, rejection_reason=LIVENESS_REJECTION_REASON
                )
                await self.limiter.record_attempt(
                    account_id, device_id, AttemptResult.FAILURE, now=now, failure_reason=LIVENESS_REJECTION_REASON
                )

            await self._settle(work)
            await self._commit_account(work)

        logger.info(
            "liveness_submitted",
            account_id=account_id,
            accepted=accepted,
            consistency_score=liveness.consistency_score,
            state=work.account.verification_state.value,
        )
        return LivenessSubmissionResult(
            accepted=accepted,
            session_id=session.id,
            verification_state=work.account.verification_state,
            trust_score=work.account.trust_score,
            denied_reason=None if accepted else LIVENESS_REJECTION_REASON,
        )

    async def apply_flags(
        self,
        account_id: str,
        drafts: Sequence[FlagDraft],
        now: Optional[datetime] = None,
        commit: bool = True,
    ) -> FlagApplication:
        """
        Append flags and drive the automatic transitions they trigger.

        ``raised`` also lists flags added by score settlement.
        """
        now = now or utcnow()
        async with self._unit_of_work(commit):
            work = await self._load(account_id, now)
            await self._raise_flags(work, drafts)
            await self._settle(work)
            await self._commit_account(work)
        return FlagApplication(account=work.account, raised=work.raised_flags)

    async def apply_review_decision(
        self,
        account_id: str,
        decision: ReviewDecision,
        admin_id: str,
        reason: str,
        expected_version: int,
        now: Optional[datetime] = None,
        commit: bool = True,
    ) -> ReviewApplication:
        """
        Perform an admin transition out of manual review.

        Capability checks and auditing belong to the caller; this only
        enforces the transition table and the version the admin looked at.
        """
        now = now or utcnow()
        trigger = REVIEW_DECISIONS[decision]
        to_state = TRANSITIONS[trigger][1]

        async with self._unit_of_work(commit):
            work = await self._load(account_id, now, expected_version)
            previous_state = work.state
            await self._apply_transition(work, to_state, trigger, actor_id=admin_id)

            session = await self.sessions.get_pending(account_id)
            if session is not None:
                if decision == ReviewDecision.APPROVE:
                    await self.sessions.resolve(session, SessionStatus.APPROVED, reviewed_at=now, reviewed_by=admin_id)
                else:
                    await self.sessions.resolve(
                        session, SessionStatus.REJECTED, reviewed_at=now, reviewed_by=admin_id, rejection_reason=reason
                    )

            if decision != ReviewDecision.REJECT:
                # The admin has adjudicated every flag raised so far
                work.set(flags_reviewed_at=now)

            await self._settle(work)
            await self._commit_account(work)

        return ReviewApplication(account=work.account, previous_state=previous_state, session=session)

    async def record_contact_verified(
        self, account_id: str, channel: ContactChannel, now: Optional[datetime] = None
    ) -> Account:
        """Record a successful OTP outcome for a contact channel."""
        now = now or utcnow()
        async with self._unit_of_work():
            work = await self._load(account_id, now)
            if channel == ContactChannel.EMAIL:
                work.set(email_verified=True)
            else:
                work.set(phone_verified=True)
            await self._settle(work)
            await self._commit_account(work)
        return work.account

    async def update_profile_signals(
        self,
        account_id: str,
        photo_count: int,
        bio_length: int,
        prompt_count: int,
        now: Optional[datetime] = None,
    ) -> Account:
        """Store profile completeness counters and rescore."""
        now = now or utcnow()
        async with self._unit_of_work():
            work = await self._load(account_id, now)
            work.set(profile_photo_count=photo_count, bio_length=bio_length, profile_prompt_count=prompt_count)
            await self._settle(work)
            await self._commit_account(work)
        return work.account

    async def recompute_trust_score(
        self, account_id: str, now: Optional[datetime] = None, commit: bool = True
    ) -> TrustScoreResult:
        """Explicit recompute, with the same settlement as any other mutation."""
        now = now or utcnow()
        async with self._unit_of_work(commit):
            work = await self._load(account_id, now)
            result = await self._settle(work)
            await self._commit_account(work)
        return result
