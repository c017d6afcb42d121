"""
Visibility Weight Translator.

Discovery multiplies its own ranking score by the weight. A weight of 0.0
means the account is excluded from discovery entirely, not merely pushed
down. Manual-review accounts stay browsable at the lowest non-zero tier but
may not initiate new contact.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import AccountNotFound
from models.account import VerificationState
from repositories.account_repository import AccountRepository
from schemas.visibility import VisibilityResponse

VISIBILITY_WEIGHTS: dict[VerificationState, float] = {
    VerificationState.UNVERIFIED: 0.0,
    VerificationState.BLOCKED: 0.0,
    VerificationState.REVERIFY_REQUIRED: 0.0,
    VerificationState.MANUAL_REVIEW: 0.25,
    VerificationState.FLAGGED: 0.5,
    VerificationState.SOFT_VERIFIED: 1.0,
}


def visibility_weight(state: VerificationState) -> float:
    """Fixed weight for a verification state."""
    return VISIBILITY_WEIGHTS[state]


def can_interact_in_state(state: VerificationState) -> bool:
    """Whether an account in ``state`` may initiate new contact."""
    if state == VerificationState.MANUAL_REVIEW:
        return False
    return visibility_weight(state) > 0.0


class VisibilityService:
    """Read-side lookups for discovery, matching and messaging."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.accounts = AccountRepository(db)

    async def _get_state(self, account_id: str) -> VerificationState:
        account = await self.accounts.get_by_id(account_id)
        if account is None:
            raise AccountNotFound(f"Account {account_id} not found", account_id=account_id)
        return account.verification_state

    async def get_visibility_weight(self, account_id: str) -> float:
        return visibility_weight(await self._get_state(account_id))

    async def can_interact(self, account_id: str) -> bool:
        return can_interact_in_state(await self._get_state(account_id))

    async def describe(self, account_id: str) -> VisibilityResponse:
        state = await self._get_state(account_id)
        return VisibilityResponse(
            account_id=account_id,
            verification_state=state,
            visibility_weight=visibility_weight(state),
            can_interact=can_interact_in_state(state),
        )
