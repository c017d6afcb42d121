"""
Verification session and attempt models.

Sessions hold the structured liveness summary (never raw imagery) plus an
opaque pointer to captured evidence that the retention sweep clears after a
fixed window. Attempts are append-only rows read only through rolling-window
aggregates by the attempt limiter.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import JSON, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base
from db.types import UTCDateTime, enum_type, utcnow


class SessionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class SessionPurpose(str, Enum):
    """Why the session exists."""

    LIVENESS = "liveness"  # automated liveness submission, resolved immediately
    MANUAL_REVIEW = "manual_review"  # escalation awaiting an admin decision


class AttemptResult(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    RATE_LIMITED = "rate_limited"  # limiter breach, not counted as an attempt


class VerificationSession(Base):
    """
    One attempt at identity verification, or one escalated review.

    Invariant: at most one ``pending`` session per account, enforced by a
    partial unique index so concurrent submissions cannot both insert.
    """

    __tablename__ = "verification_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    account_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    purpose: Mapped[SessionPurpose] = mapped_column(enum_type(SessionPurpose), nullable=False)
    status: Mapped[SessionStatus] = mapped_column(
        enum_type(SessionStatus), default=SessionStatus.PENDING, nullable=False
    )

    # Evidence pointer (opaque storage key); cleared by the retention sweep
    evidence_ref: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    evidence_purged_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Structured liveness summary - numeric signals only
    liveness_check_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    liveness_consistency_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    liveness_pose_metrics: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    liveness_eye_metrics: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Review bookkeeping
    escalation_trigger: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    sla_deadline: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    sla_overdue_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    __table_args__ = (
        Index(
            "uq_verification_sessions_one_pending",
            "account_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_verification_sessions_expires", "expires_at"),
        Index("ix_verification_sessions_sla", "status", "sla_deadline"),
    )

    @property
    def has_liveness_summary(self) -> bool:
        return self.liveness_consistency_score is not None

    def __repr__(self) -> str:
        return f"<VerificationSession(id={self.id}, account={self.account_id}, status={self.status})>"


class VerificationAttempt(Base):
    """Append-only audit row for the verification attempt limiter."""

    __tablename__ = "verification_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(String(36), nullable=False)
    device_id: Mapped[str] = mapped_column(String(255), nullable=False)
    result: Mapped[AttemptResult] = mapped_column(enum_type(AttemptResult), nullable=False)
    failure_reason: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_verification_attempts_account_time", "account_id", "created_at"),
        Index("ix_verification_attempts_device_time", "device_id", "created_at"),
    )
