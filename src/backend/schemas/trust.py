"""
Flag drafts and trust score results.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from models.account import EnforcementLevel
from models.behavior_flag import FLAG_SEVERITY, FlagSeverity, FlagType


class FlagDraft(BaseModel):
    """A flag some detector wants raised; persisted by the state machine."""

    flag_type: FlagType
    severity: Optional[FlagSeverity] = Field(None, description="Defaults to the static severity of the type")
    description: Optional[str] = None
    correlated_account_id: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)

    @property
    def effective_severity(self) -> FlagSeverity:
        return self.severity or FLAG_SEVERITY[self.flag_type]


class ScoreAdjustment(BaseModel):
    """One line of the score breakdown."""

    factor: str
    points: int


class TrustScoreResult(BaseModel):
    """Output of the trust score engine."""

    score: int = Field(..., ge=0, le=100)
    enforcement_level: EnforcementLevel
    breakdown: list[ScoreAdjustment] = Field(default_factory=list)
    active_flag_count: int = 0
