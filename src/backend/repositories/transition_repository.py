"""
State transition history repository.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.account import VerificationState
from models.state_transition import StateTransition, TransitionTrigger


class TransitionRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(
        self,
        account_id: str,
        from_state: VerificationState,
        to_state: VerificationState,
        trigger: TransitionTrigger,
        trust_score_after: int,
        created_at: datetime,
        actor_id: Optional[str] = None,
    ) -> StateTransition:
        transition = StateTransition(
            account_id=account_id,
            from_state=from_state,
            to_state=to_state,
            trigger=trigger,
            actor_id=actor_id,
            trust_score_after=trust_score_after,
            created_at=created_at,
        )
        self.db.add(transition)
        await self.db.flush()
        return transition

    async def list_for_account(self, account_id: str) -> list[StateTransition]:
        result = await self.db.execute(
            select(StateTransition)
            .where(StateTransition.account_id == account_id)
            .order_by(StateTransition.id)
        )
        return list(result.scalars().all())
