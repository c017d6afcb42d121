"""
State transition history.

One append-only row per committed verification state change, written in the
same transaction as the change itself.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base
from db.types import UTCDateTime, enum_type, utcnow
from models.account import VerificationState


class TransitionTrigger(str, Enum):
    LIVENESS_PASSED = "liveness_passed"
    BEHAVIOR_FLAG = "behavior_flag"
    FLAG_ESCALATION = "flag_escalation"
    TRUST_FLOOR_BREACH = "trust_floor_breach"
    ADMIN_APPROVE = "admin_approve"
    ADMIN_REJECT = "admin_reject"
    ADMIN_REQUEST_REVERIFICATION = "admin_request_reverification"


class StateTransition(Base):
    __tablename__ = "state_transitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    from_state: Mapped[VerificationState] = mapped_column(enum_type(VerificationState), nullable=False)
    to_state: Mapped[VerificationState] = mapped_column(enum_type(VerificationState), nullable=False)
    trigger: Mapped[TransitionTrigger] = mapped_column(enum_type(TransitionTrigger, length=40), nullable=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    trust_score_after: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_state_transitions_account_time", "account_id", "created_at"),)
