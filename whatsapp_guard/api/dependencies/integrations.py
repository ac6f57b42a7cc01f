"""
Dependency לשליפת אינטגרציה מה-path — 404 אם לא קיימת.
"""
from fastapi import Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from whatsapp_guard.core.exceptions import ErrorCode, NotFoundException
from whatsapp_guard.db.database import get_db
from whatsapp_guard.db.models.integration import Integration
from whatsapp_guard.domain.services.integration_scope import IntegrationScopeResolver


async def get_integration_or_404(
    integration_id: str = Path(..., max_length=36),
    db: AsyncSession = Depends(get_db),
) -> Integration:
    integration = await IntegrationScopeResolver(db).get_integration(integration_id)
    if integration is None:
        raise NotFoundException("Integration", integration_id, ErrorCode.INTEGRATION_NOT_FOUND)
    return integration
