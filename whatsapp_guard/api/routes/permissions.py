"""
Permission API Routes — תצוגת הרשאות ומשתמשים ניתנים למיפוי
"""
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from whatsapp_guard.api.dependencies.admin_auth import require_admin_api_key
from whatsapp_guard.api.dependencies.integrations import get_integration_or_404
from whatsapp_guard.db.database import get_db
from whatsapp_guard.db.models.integration import Integration
from whatsapp_guard.domain.services.permission_service import PermissionService

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class UserPermissionsResponse(BaseModel):
    """תפקיד והרשאות של משתמש באינטגרציה"""
    integration_id: str
    user_id: str
    role: Optional[str]
    permissions: List[str]


class MappableUserResponse(BaseModel):
    id: str
    name: Optional[str]
    email: Optional[str]
    role: Optional[str]

    class Config:
        from_attributes = True


@router.get("/{integration_id}/permissions", response_model=UserPermissionsResponse)
async def get_user_permissions(
    user_id: str = Query(..., max_length=36),
    integration: Integration = Depends(get_integration_or_404),
    db: AsyncSession = Depends(get_db),
) -> UserPermissionsResponse:
    """Role and capability set of a user on an integration"""
    service = PermissionService(db)
    role = await service.get_user_role(user_id, integration.id)
    permissions = await service.get_user_permissions(user_id, integration.id)
    return UserPermissionsResponse(
        integration_id=integration.id,
        user_id=user_id,
        role=role.value if role else None,
        permissions=sorted(p.value for p in permissions),
    )


@router.get("/{integration_id}/mappable-users", response_model=List[MappableUserResponse])
async def get_mappable_users(
    integration: Integration = Depends(get_integration_or_404),
    db: AsyncSession = Depends(get_db),
) -> List[MappableUserResponse]:
    """Users that phone numbers can be mapped to"""
    users = await PermissionService(db).get_mappable_users(integration.id)
    return [MappableUserResponse.model_validate(u) for u in users]
