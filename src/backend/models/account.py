"""
Account model.

The account is the identity under evaluation. Its verification state, trust
score and enforcement level are owned by the backend and change only through
the verification state machine; client requests never write them directly.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base
from db.types import UTCDateTime, enum_type, utcnow


class VerificationState(str, Enum):
    """Verification lifecycle states."""

    UNVERIFIED = "unverified"
    SOFT_VERIFIED = "soft_verified"
    FLAGGED = "flagged"
    MANUAL_REVIEW = "manual_review"
    BLOCKED = "blocked"
    REVERIFY_REQUIRED = "reverify_required"


class EnforcementLevel(str, Enum):
    """Feature restrictions recommended by the trust score engine."""

    NONE = "none"
    GENTLE_REMINDER = "gentle_reminder"
    REDUCED_REACH = "reduced_reach"
    SECURITY_ONLY = "security_only"


# Bumped whenever stored state literals change meaning; see db.state_migrations
CURRENT_STATE_SCHEMA_VERSION = 2


class Account(Base):
    """
    Account under verification.

    Concurrency:
    - ``version`` is incremented by every committed mutation. Writers update
      with ``WHERE version = <read version>`` so two concurrent mutations can
      never both commit.
    """

    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))

    # Verification lifecycle
    verification_state: Mapped[VerificationState] = mapped_column(
        enum_type(VerificationState),
        default=VerificationState.UNVERIFIED,
        nullable=False,
    )
    state_schema_version: Mapped[int] = mapped_column(
        Integer, default=CURRENT_STATE_SCHEMA_VERSION, nullable=False
    )

    # Reputation
    trust_score: Mapped[int] = mapped_column(Integer, default=50, nullable=False)
    trust_score_updated_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    enforcement_level: Mapped[EnforcementLevel] = mapped_column(
        enum_type(EnforcementLevel),
        default=EnforcementLevel.GENTLE_REMINDER,
        nullable=False,
    )
    # Flags raised at or before this instant were adjudicated by an admin
    flags_reviewed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    # Contact channel outcomes (OTP transport lives elsewhere)
    phone_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    email_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Profile completeness signals, pushed by the profile service
    profile_photo_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bio_length: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    profile_prompt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Access
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_accounts_state", "verification_state"),)

    def __repr__(self) -> str:
        return f"<Account(id={self.id}, state={self.verification_state}, score={self.trust_score})>"
