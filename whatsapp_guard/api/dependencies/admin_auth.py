"""
אימות מפתח API עבור endpoints אדמיניים (דוחות אבטחה, מכסות, הרשאות).

שימוש:
    @router.get("/security/events")
    async def security_events(
        _: None = Depends(require_admin_api_key),
    ):
        ...
"""
import secrets

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from whatsapp_guard.core.config import settings
from whatsapp_guard.core.logging import get_logger
from whatsapp_guard.core.middleware import mask_path_pii
from whatsapp_guard.db.database import get_db
from whatsapp_guard.db.models.security_event import SecurityEventType, SecuritySeverity
from whatsapp_guard.domain.services.security_audit_service import SecurityAuditService

logger = get_logger(__name__)

_api_key_header = APIKeyHeader(name="X-Admin-API-Key", auto_error=False)


async def require_admin_api_key(
    request: Request,
    api_key: str | None = Depends(_api_key_header),
    db: AsyncSession = Depends(get_db),
) -> None:
    """
    ולידציה של מפתח API לגישת אדמין.

    זורק 401 אם המפתח חסר, 403 אם לא תואם (ונרשם אירוע INVALID_API_KEY).
    אם ADMIN_API_KEY לא מוגדר בסביבה — הגישה חסומה לחלוטין.
    """
    if not settings.ADMIN_API_KEY:
        logger.warning("גישה ל-admin endpoint נדחתה — ADMIN_API_KEY לא מוגדר")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="ADMIN_API_KEY לא מוגדר בסביבה",
        )

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="חסר מפתח API — נדרש header: X-Admin-API-Key",
        )

    if not secrets.compare_digest(api_key, settings.ADMIN_API_KEY):
        logger.warning("גישה ל-admin endpoint נדחתה — מפתח API שגוי")
        await SecurityAuditService(db).log_security_event(
            SecurityEventType.INVALID_API_KEY,
            {
                "integration_id": request.path_params.get("integration_id"),
                "ip_address": request.client.host if request.client else None,
                "user_agent": request.headers.get("user-agent"),
                "action": f"{request.method} {mask_path_pii(request.url.path)}",
            },
            SecuritySeverity.HIGH,
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="מפתח API לא תקין",
        )
