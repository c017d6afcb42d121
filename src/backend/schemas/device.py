"""
Device fingerprint schemas.
"""

from typing import Optional

from pydantic import BaseModel, Field


class FingerprintRegistration(BaseModel):
    device_id: str = Field(..., min_length=1, max_length=255)
    install_id: str = Field(..., min_length=1, max_length=255)
    platform: str = Field(..., pattern="^(ios|android|web)$")
    os_version: Optional[str] = Field(None, max_length=50)
    app_version: Optional[str] = Field(None, max_length=50)


class FingerprintAck(BaseModel):
    """Immediate acknowledgement; correlation runs after the response."""

    accepted: bool = True
    device_id: str


class CorrelationResult(BaseModel):
    """What a fingerprint registration found."""

    fingerprint_id: int
    new_binding: bool
    linked_account_ids: list[str] = Field(default_factory=list)
    link_count: int = 0
    multi_account_flagged: bool = False
    rapid_creation_flagged: bool = False
    ban_evasion: bool = False
