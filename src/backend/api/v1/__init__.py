"""
API v1 router aggregating all endpoints.
"""

from fastapi import APIRouter

from api.v1.admin import router as admin_router
from api.v1.devices import router as devices_router
from api.v1.internal import router as internal_router
from api.v1.verification import router as verification_router

router = APIRouter()

router.include_router(verification_router, prefix="/verification", tags=["Verification"])
router.include_router(devices_router, prefix="/devices", tags=["Devices"])
router.include_router(admin_router, prefix="/admin", tags=["Admin Review"])
router.include_router(internal_router, prefix="/internal", tags=["Internal Services"])
