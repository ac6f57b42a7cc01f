"""
API Routes
"""
from fastapi import APIRouter

from whatsapp_guard.api.routes.permissions import router as permissions_router
from whatsapp_guard.api.routes.rate_limits import router as rate_limits_router
from whatsapp_guard.api.routes.security import router as security_router

router = APIRouter()

router.include_router(permissions_router, prefix="/integrations", tags=["permissions"])
router.include_router(rate_limits_router, prefix="/integrations", tags=["rate-limits"])
router.include_router(security_router, prefix="/integrations", tags=["security"])
