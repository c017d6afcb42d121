"""
Audit log schemas.

``details`` on an audit entry is a discriminated union keyed by ``kind``;
entries are validated against it when written and when read back, so the
audit query surface never hands out an untyped blob.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from models.account import VerificationState
from models.audit import AdminAction


class ReviewDecisionDetails(BaseModel):
    kind: Literal["review_decision"] = "review_decision"
    decision: str
    from_state: VerificationState
    to_state: VerificationState
    session_id: Optional[str] = None
    trust_score_after: int
    account_version: int
    sla_overdue: bool = False


class CapabilityDeniedDetails(BaseModel):
    kind: Literal["capability_denied"] = "capability_denied"
    attempted_action: str
    claimed_admin_id: Optional[str] = None
    cause: str = Field(..., description="not_admin | identity_mismatch | inactive | self_review")


AuditDetails = Annotated[
    Union[ReviewDecisionDetails, CapabilityDeniedDetails],
    Field(discriminator="kind"),
]

audit_details_adapter: TypeAdapter = TypeAdapter(AuditDetails)


class AuditLogFilters(BaseModel):
    """Audit query filters; all optional."""

    actor_id: Optional[str] = None
    target_account_id: Optional[str] = None
    action: Optional[AdminAction] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None


class AuditLogEntryResponse(BaseModel):
    id: int
    actor_id: str
    action: AdminAction
    target_account_id: Optional[str] = None
    reason: Optional[str] = None
    details: AuditDetails
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditLogPage(BaseModel):
    items: list[AuditLogEntryResponse]
    next_cursor: Optional[int] = None
