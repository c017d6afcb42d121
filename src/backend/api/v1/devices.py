"""
Device fingerprint endpoints.

Registration is acknowledged immediately; binding and multi-account
correlation run after the response is sent.
"""

from typing import Annotated, Callable

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_active_principal, get_session_factory
from models.account import Account
from schemas.device import FingerprintAck, FingerprintRegistration
from services.device_correlator import register_fingerprint_in_background

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.post("/fingerprint", response_model=FingerprintAck, status_code=status.HTTP_202_ACCEPTED)
async def register_fingerprint(
    registration: FingerprintRegistration,
    background_tasks: BackgroundTasks,
    principal: Annotated[Account, Depends(get_current_active_principal)],
    session_factory: Annotated[Callable[[], AsyncSession], Depends(get_session_factory)],
) -> FingerprintAck:
    """Record a device fingerprint for the current account."""
    background_tasks.add_task(
        register_fingerprint_in_background,
        session_factory,
        account_id=principal.id,
        device_id=registration.device_id,
        install_id=registration.install_id,
        platform=registration.platform,
        os_version=registration.os_version,
        app_version=registration.app_version,
    )
    logger.info("fingerprint_queued", account_id=principal.id, platform=registration.platform)
    return FingerprintAck(device_id=registration.device_id)
