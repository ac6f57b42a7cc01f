"""
Rate Limit API Routes — מצב מכסות והיסטוריית התראות
"""
from datetime import datetime
from typing import Any, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from whatsapp_guard.api.dependencies.admin_auth import require_admin_api_key
from whatsapp_guard.api.dependencies.integrations import get_integration_or_404
from whatsapp_guard.core.config import settings
from whatsapp_guard.db.database import get_db
from whatsapp_guard.db.models.integration import Integration
from whatsapp_guard.domain.services.alert_service import get_alert_history
from whatsapp_guard.domain.services.rate_limit_service import RateLimitService

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class RateLimitWindowResponse(BaseModel):
    """חלון מכסה פעיל"""
    endpoint: str
    window_type: str
    limit_value: int
    current_usage: int
    remaining_quota: int
    usage_percent: float
    window_start: datetime
    resets_at: datetime


@router.get("/{integration_id}/rate-limits", response_model=List[RateLimitWindowResponse])
async def get_rate_limit_status(
    integration: Integration = Depends(get_integration_or_404),
    db: AsyncSession = Depends(get_db),
) -> List[RateLimitWindowResponse]:
    """Active quota windows, ordered by endpoint and window type"""
    windows = await RateLimitService(db).get_rate_limit_status(integration.id)
    return [
        RateLimitWindowResponse(
            endpoint=w.endpoint,
            window_type=w.window_type.value,
            limit_value=w.limit_value,
            current_usage=w.current_usage,
            remaining_quota=w.remaining_quota,
            usage_percent=round(w.usage_fraction * 100, 2),
            window_start=w.window_start,
            resets_at=w.resets_at,
        )
        for w in windows
    ]


@router.get("/{integration_id}/alerts")
async def get_alerts(
    limit: int = Query(50, ge=1, le=settings.ALERT_HISTORY_SIZE),
    integration: Integration = Depends(get_integration_or_404),
) -> List[dict[str, Any]]:
    """התראות אחרונות (מכסה + אבטחה), מהחדשה לישנה"""
    return await get_alert_history(integration.id, limit=limit)
