"""
Manual review schemas.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from models.account import EnforcementLevel, VerificationState
from models.behavior_flag import FlagSeverity, FlagType


class ReviewDecision(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REQUEST_REVERIFICATION = "request_reverification"


class ReviewRequest(BaseModel):
    """Body for ``POST /admin/reviews/{account_id}``."""

    decision: ReviewDecision
    reason: str = Field(..., min_length=1, max_length=1000)
    # Optional echo of the caller's identity; must match the token subject
    admin_id: Optional[str] = None
    expected_version: int = Field(..., ge=1, description="Account version the reviewer looked at")


class ReviewOutcome(BaseModel):
    account_id: str
    previous_state: VerificationState
    new_state: VerificationState
    trust_score: int
    enforcement_level: EnforcementLevel
    audit_entry_id: int
    version: int


class LivenessSummary(BaseModel):
    check_type: Optional[str] = None
    consistency_score: Optional[float] = None
    pose_metrics: Optional[dict[str, Any]] = None
    eye_metrics: Optional[dict[str, Any]] = None
    evidence_available: bool = False


class FlagSummary(BaseModel):
    flag_type: FlagType
    severity: FlagSeverity
    description: Optional[str] = None
    correlated_account_id: Optional[str] = None
    raised_at: datetime

    model_config = {"from_attributes": True}


class ReviewQueueItem(BaseModel):
    account_id: str
    version: int
    trust_score: int
    session_id: Optional[str] = None
    escalation_trigger: Optional[str] = None
    sla_deadline: Optional[datetime] = None
    overdue: bool = False
    flags: list[FlagSummary] = Field(default_factory=list)
    liveness: Optional[LivenessSummary] = None


class ReviewQueueResponse(BaseModel):
    items: list[ReviewQueueItem]
    total: int
    limit: int
    offset: int
