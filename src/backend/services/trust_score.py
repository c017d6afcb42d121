"""
Trust Score Engine.

Pure scoring over an account's stored fields and its flag history:

1. Baseline score
2. Positive signals - verified state, verified contact channels, account age,
   profile completeness
3. Penalties - every active flag, weighted by severity and by how many flags
   of the same type are active, so repeats compound
4. Recommended enforcement level derived from the final score

Nothing here reads the clock or the database; ``as_of`` is explicit so the
same inputs always produce the same result. Only the verification state
machine persists the output.
"""

from collections import Counter
from datetime import datetime, timedelta
from typing import Iterable, Optional, Protocol

from core.config import settings
from models.account import EnforcementLevel, VerificationState
from models.behavior_flag import FlagSeverity, FlagType
from schemas.trust import ScoreAdjustment, TrustScoreResult

# =============================================================================
# Configuration
# =============================================================================


class TrustScoreConfig:
    """Trust score weights."""

    BASELINE = settings.TRUST_SCORE_BASELINE
    MIN_SCORE = 0
    MAX_SCORE = 100

    # Positive signals
    VERIFIED_INCREMENT = 20
    EMAIL_VERIFIED_INCREMENT = 5
    PHONE_VERIFIED_INCREMENT = 5
    ACCOUNT_AGE_INCREMENT = 5
    ACCOUNT_AGE_DAYS = 30
    PHOTOS_INCREMENT = 5
    MIN_PHOTOS = 3
    BIO_INCREMENT = 5
    MIN_BIO_LENGTH = 100  # strictly longer than this
    PROMPTS_INCREMENT = 5
    MIN_PROMPTS = 2

    # Penalties
    SEVERITY_WEIGHTS = {
        FlagSeverity.HIGH: 10,
        FlagSeverity.MEDIUM: 5,
        FlagSeverity.LOW: 2,
    }
    FLAG_ACTIVE_DAYS = settings.FLAG_ACTIVE_DAYS

    # Enforcement floors (score >= floor)
    NO_ENFORCEMENT_FLOOR = 60
    GENTLE_REMINDER_FLOOR = 40
    REDUCED_REACH_FLOOR = 15


# States that carry the verified increment
VERIFIED_STATES = frozenset({VerificationState.SOFT_VERIFIED, VerificationState.FLAGGED})


class ScorableAccount(Protocol):
    verification_state: VerificationState
    email_verified: bool
    phone_verified: bool
    created_at: datetime
    profile_photo_count: int
    bio_length: int
    profile_prompt_count: int
    flags_reviewed_at: Optional[datetime]


class ScorableFlag(Protocol):
    flag_type: FlagType
    severity: FlagSeverity
    raised_at: datetime


# =============================================================================
# Engine
# =============================================================================


def enforcement_for_score(score: int) -> EnforcementLevel:
    """Map a score to the recommended enforcement level."""
    if score >= TrustScoreConfig.NO_ENFORCEMENT_FLOOR:
        return EnforcementLevel.NONE
    if score >= TrustScoreConfig.GENTLE_REMINDER_FLOOR:
        return EnforcementLevel.GENTLE_REMINDER
    if score >= TrustScoreConfig.REDUCED_REACH_FLOOR:
        return EnforcementLevel.REDUCED_REACH
    return EnforcementLevel.SECURITY_ONLY


def active_flags(
    flags: Iterable[ScorableFlag],
    *,
    as_of: datetime,
    reviewed_at: Optional[datetime] = None,
) -> list[ScorableFlag]:
    """
    Flags that still carry a penalty at ``as_of``.

    A flag is active when it was raised after the last admin review, within
    the active window, and not after ``as_of``.
    """
    window_start = as_of - timedelta(days=TrustScoreConfig.FLAG_ACTIVE_DAYS)
    result = []
    for flag in flags:
        if flag.raised_at > as_of or flag.raised_at <= window_start:
            continue
        if reviewed_at is not None and flag.raised_at <= reviewed_at:
            continue
        result.append(flag)
    return result


def compute_trust_score(
    account: ScorableAccount,
    flags: Iterable[ScorableFlag],
    *,
    as_of: datetime,
) -> TrustScoreResult:
    """
    Compute an account's trust score and recommended enforcement.

    Returns the clamped score with a line-by-line breakdown.
    """
    breakdown = [ScoreAdjustment(factor="baseline", points=TrustScoreConfig.BASELINE)]

    def add(factor: str, points: int) -> None:
        breakdown.append(ScoreAdjustment(factor=factor, points=points))

    if account.verification_state in VERIFIED_STATES:
        add("verified", TrustScoreConfig.VERIFIED_INCREMENT)
    if account.email_verified:
        add("email_verified", TrustScoreConfig.EMAIL_VERIFIED_INCREMENT)
    if account.phone_verified:
        add("phone_verified", TrustScoreConfig.PHONE_VERIFIED_INCREMENT)
    if as_of - account.created_at >= timedelta(days=TrustScoreConfig.ACCOUNT_AGE_DAYS):
        add("account_age", TrustScoreConfig.ACCOUNT_AGE_INCREMENT)
    if account.profile_photo_count >= TrustScoreConfig.MIN_PHOTOS:
        add("photos", TrustScoreConfig.PHOTOS_INCREMENT)
    if account.bio_length > TrustScoreConfig.MIN_BIO_LENGTH:
        add("bio", TrustScoreConfig.BIO_INCREMENT)
    if account.profile_prompt_count >= TrustScoreConfig.MIN_PROMPTS:
        add("prompts", TrustScoreConfig.PROMPTS_INCREMENT)

    current = active_flags(flags, as_of=as_of, reviewed_at=account.flags_reviewed_at)

    # The k-th active flag of a type costs k * its severity weight
    seen: Counter = Counter()
    penalties: dict[FlagType, int] = {}
    for flag in sorted(current, key=lambda f: f.raised_at):
        seen[flag.flag_type] += 1
        cost = seen[flag.flag_type] * TrustScoreConfig.SEVERITY_WEIGHTS[flag.severity]
        penalties[flag.flag_type] = penalties.get(flag.flag_type, 0) + cost
    for flag_type in sorted(penalties, key=lambda t: t.value):
        add(f"flag:{flag_type.value}x{seen[flag_type]}", -penalties[flag_type])

    raw = sum(item.points for item in breakdown)
    score = max(TrustScoreConfig.MIN_SCORE, min(raw, TrustScoreConfig.MAX_SCORE))

    return TrustScoreResult(
        score=score,
        enforcement_level=enforcement_for_score(score),
        breakdown=breakdown,
        active_flag_count=len(current),
    )
