"""
Behavior event ingestion schemas.
"""

from typing import Optional

from pydantic import BaseModel, Field

from models.account import VerificationState
from models.activity import ActivityKind
from models.behavior_flag import FlagType


class ActivityEventIn(BaseModel):
    """
    One observed action.

    ``account_id`` is the account whose behavior is measured; for
    ``report_received`` that is the reported account and ``counterpart_id``
    is the reporter.
    """

    account_id: str = Field(..., min_length=1, max_length=36)
    kind: ActivityKind
    counterpart_id: Optional[str] = Field(None, max_length=36)


class ActivityEvaluation(BaseModel):
    account_id: str
    flags_raised: list[FlagType] = Field(default_factory=list)
    verification_state: VerificationState
    trust_score: int
