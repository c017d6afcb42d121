"""
Visibility schemas consumed by discovery, matching and messaging.
"""

from pydantic import BaseModel

from models.account import VerificationState


class VisibilityResponse(BaseModel):
    """A weight of 0.0 means exclude, not deprioritize."""

    account_id: str
    verification_state: VerificationState
    visibility_weight: float
    can_interact: bool
