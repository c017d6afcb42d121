"""
Liveness verification schemas.

The core never receives imagery: a liveness submission is a structured
numeric summary produced on device by the capture flow.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from models.account import EnforcementLevel, VerificationState


class LivenessResult(BaseModel):
    """Structured outcome of an on-device liveness check."""

    check_type: str = Field(..., min_length=1, max_length=50, description="e.g. blink, head_turn, smile")
    consistency_score: float = Field(..., ge=0.0, le=1.0, description="Liveness consistency, 0-1")
    pose_metrics: dict[str, float] = Field(default_factory=dict, description="Head pose angles and deltas")
    eye_metrics: dict[str, float] = Field(default_factory=dict, description="Eye openness / blink signals")

    @field_validator("pose_metrics", "eye_metrics")
    @classmethod
    def limit_metric_count(cls, v: dict[str, float]) -> dict[str, float]:
        """Keep summaries small; they are stored on every session."""
        if len(v) > 20:
            raise ValueError("At most 20 metrics per group")
        return v


class LivenessSubmission(LivenessResult):
    """Request body for ``POST /verification/liveness``."""

    device_id: str = Field(..., min_length=1, max_length=255)
    evidence_ref: Optional[str] = Field(None, max_length=500, description="Opaque storage key for captured evidence")


class LivenessSubmissionResult(BaseModel):
    """Outcome of a liveness submission."""

    accepted: bool
    session_id: str
    verification_state: VerificationState
    trust_score: int
    denied_reason: Optional[str] = None


class RateLimitDecision(BaseModel):
    """Attempt limiter verdict."""

    allowed: bool
    reason: Optional[str] = None  # account_limit | device_limit
    retry_after_seconds: int = 0
    account_attempts: int = 0
    device_attempts: int = 0


class VerificationStatusResponse(BaseModel):
    """Caller's own verification status."""

    account_id: str
    verification_state: VerificationState
    trust_score: int
    enforcement_level: EnforcementLevel
    visibility_weight: float
    can_interact: bool
    has_pending_session: bool
