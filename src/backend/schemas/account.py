"""
Account schemas for the internal service surface.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from models.account import EnforcementLevel, VerificationState


class ContactChannel(str, Enum):
    EMAIL = "email"
    PHONE = "phone"


class AccountCreate(BaseModel):
    """Registration hand-off from the identity service."""

    account_id: Optional[str] = Field(None, min_length=1, max_length=36)
    is_admin: bool = False


class ContactVerified(BaseModel):
    channel: ContactChannel


class ProfileSignals(BaseModel):
    """Profile completeness counters pushed by the profile service."""

    photo_count: int = Field(..., ge=0, le=50)
    bio_length: int = Field(..., ge=0, le=10000)
    prompt_count: int = Field(..., ge=0, le=50)


class AccountState(BaseModel):
    id: str
    verification_state: VerificationState
    trust_score: int
    enforcement_level: EnforcementLevel
    phone_verified: bool
    email_verified: bool
    version: int

    model_config = {"from_attributes": True}
