"""
WhatsApp Permission Service — מודל ההרשאות של אינטגרציית WhatsApp

עונה על שאלות "האם מותר" בלי תופעות לוואי:
- אינטגרציה אישית: הבעלים מקבל את כל ההרשאות, כל השאר — כלום
- אינטגרציה של צוות: ההרשאות נגזרות מתפקיד החברות בצוות
- היעדר אינטגרציה/חברות → False / רשימה ריקה, לעולם לא חריגה

שגיאת תשתית (DB לא זמין) עוברת לקורא כ-AuthorizationStoreError:
החלטת אבטחה לא מקורבת בשקט.
"""
import enum
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Sequence, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

from whatsapp_guard.core.logging import get_logger
from whatsapp_guard.db.models.integration import Integration
from whatsapp_guard.db.models.team import TeamRole
from whatsapp_guard.domain.services.integration_scope import (
    IntegrationScopeResolver,
    PersonalScope,
    TeamScope,
    scope_of,
)

logger = get_logger(__name__)

C = TypeVar("C")


class WhatsAppPermission(str, enum.Enum):
    """Capabilities that can be granted to a role"""
    # Basic
    SEND_MESSAGES = "whatsapp:send_messages"
    RECEIVE_MESSAGES = "whatsapp:receive_messages"

    # Admin
    MANAGE_PHONE_MAPPINGS = "whatsapp:manage_phone_mappings"
    VIEW_ALL_CONVERSATIONS = "whatsapp:view_all_conversations"
    MANAGE_TEMPLATES = "whatsapp:manage_templates"

    # Team
    VIEW_TEAM_CONVERSATIONS = "whatsapp:view_team_conversations"
    MANAGE_TEAM_MAPPINGS = "whatsapp:manage_team_mappings"


_MEMBER_PERMISSIONS = frozenset({
    WhatsAppPermission.SEND_MESSAGES,
    WhatsAppPermission.RECEIVE_MESSAGES,
    WhatsAppPermission.VIEW_TEAM_CONVERSATIONS,
})

_ADMIN_PERMISSIONS = _MEMBER_PERMISSIONS | {
    WhatsAppPermission.MANAGE_PHONE_MAPPINGS,
    WhatsAppPermission.MANAGE_TEAM_MAPPINGS,
}

# טבלת יכולות סטטית: owner ⊇ admin ⊇ member
ROLE_PERMISSIONS: dict[TeamRole, frozenset[WhatsAppPermission]] = {
    TeamRole.OWNER: frozenset(WhatsAppPermission),
    TeamRole.ADMIN: _ADMIN_PERMISSIONS,
    TeamRole.MEMBER: _MEMBER_PERMISSIONS,
}

_NO_PERMISSIONS: frozenset[WhatsAppPermission] = frozenset()


@dataclass(frozen=True)
class MappableUser:
    """User that a phone number can be mapped to"""
    id: str
    name: Optional[str]
    email: Optional[str]
    role: Optional[str] = None


def _conversation_owner(conversation: Any) -> Optional[str]:
    """שיחה יכולה להגיע כ-dict (JSON) או כאובייקט ORM עם user_id"""
    if isinstance(conversation, Mapping):
        return conversation.get("user_id")
    return getattr(conversation, "user_id", None)


class PermissionService:
    """Authorization model for WhatsApp integrations.

    כל הפעולות הן קריאות טהורות של מצב החברויות — בטוחות לקריאה מקבילית
    ללא נעילות.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.scopes = IntegrationScopeResolver(db)

    # ==================== תפקיד והרשאות ====================

    async def _role_for(self, user_id: str, integration: Integration) -> Optional[TeamRole]:
        match scope_of(integration):
            case PersonalScope(owner_id=owner_id):
                return TeamRole.OWNER if owner_id == user_id else None
            case TeamScope(team_id=team_id):
                membership = await self.scopes.get_membership(team_id, user_id)
                return membership.role if membership else None

    async def get_user_role(self, user_id: str, integration_id: str) -> Optional[TeamRole]:
        """תפקיד המשתמש באינטגרציה, או None כשאין לו גישה כלל"""
        integration = await self.scopes.get_integration(integration_id)
        if integration is None:
            return None
        return await self._role_for(user_id, integration)

    async def get_user_permissions(
        self,
        user_id: str,
        integration_id: str,
    ) -> frozenset[WhatsAppPermission]:
        """Get all permissions for a user on an integration"""
        role = await self.get_user_role(user_id, integration_id)
        if role is None:
            return _NO_PERMISSIONS
        return ROLE_PERMISSIONS[role]

    async def check_permission(
        self,
        user_id: str,
        integration_id: str,
        permission: WhatsAppPermission,
    ) -> bool:
        """Check if user has a permission for a WhatsApp integration"""
        granted = permission in await self.get_user_permissions(user_id, integration_id)
        if not granted:
            logger.debug(
                "Permission denied",
                extra_data={
                    "user_id": user_id,
                    "integration_id": integration_id,
                    "permission": permission.value,
                },
            )
        return granted

    # ==================== מיפוי טלפונים ושליחה בשם אחר ====================

    async def _team_members_among(self, integration: Integration, user_ids: Iterable[str]) -> set[str]:
        """מזהי החברים בצוות האינטגרציה מתוך user_ids; אינטגרציה אישית → קבוצה ריקה"""
        match scope_of(integration):
            case TeamScope(team_id=team_id):
                members = await self.scopes.get_members(team_id, user_ids)
                return {m.user_id for m in members}
            case _:
                return set()

    async def can_manage_phone_mappings(
        self,
        actor_id: str,
        integration_id: str,
        target_user_id: Optional[str] = None,
    ) -> bool:
        """
        ניהול מיפוי טלפון.

        ניהול המיפוי של עצמך תמיד מותר. ניהול מיפוי של משתמש אחר דורש
        MANAGE_PHONE_MAPPINGS וששני המשתמשים חברים בצוות של האינטגרציה.
        """
        if target_user_id is None or target_user_id == actor_id:
            return True

        integration = await self.scopes.get_integration(integration_id)
        if integration is None:
            return False

        role = await self._role_for(actor_id, integration)
        if role is None or WhatsAppPermission.MANAGE_PHONE_MAPPINGS not in ROLE_PERMISSIONS[role]:
            return False

        members = await self._team_members_among(integration, [actor_id, target_user_id])
        return actor_id in members and target_user_id in members

    async def can_send_as_user(
        self,
        sender_id: str,
        target_user_id: str,
        integration_id: str,
    ) -> bool:
        """
        Check if a user can send messages on behalf of another user.

        מעבר לבדיקת ההרשאה, שאילתת החברות חייבת להחזיר בדיוק את שני
        המשתמשים — לא פחות ולא יותר.
        """
        if sender_id == target_user_id:
            return True

        integration = await self.scopes.get_integration(integration_id)
        if integration is None:
            return False

        role = await self._role_for(sender_id, integration)
        if role is None or WhatsAppPermission.MANAGE_PHONE_MAPPINGS not in ROLE_PERMISSIONS[role]:
            return False

        members = await self._team_members_among(integration, [sender_id, target_user_id])
        return members == {sender_id, target_user_id}

    async def get_mappable_users(self, integration_id: str) -> list[MappableUser]:
        """Users that phone numbers can be mapped to on this integration"""
        integration = await self.scopes.get_integration(integration_id)
        if integration is None:
            return []

        match scope_of(integration):
            case PersonalScope(owner_id=owner_id):
                users = await self.scopes.get_users([owner_id])
                owner = users.get(owner_id)
                return [MappableUser(
                    id=owner_id,
                    name=owner.name if owner else None,
                    email=owner.email if owner else None,
                )]
            case TeamScope(team_id=team_id):
                members = await self.scopes.get_members(team_id)
                users = await self.scopes.get_users(m.user_id for m in members)
                result = []
                for member in members:
                    user = users.get(member.user_id)
                    result.append(MappableUser(
                        id=member.user_id,
                        name=user.name if user else None,
                        email=user.email if user else None,
                        role=member.role.value,
                    ))
                return result

    # ==================== סינון שיחות ====================

    async def filter_conversations(
        self,
        user_id: str,
        integration_id: str,
        conversations: Sequence[C],
    ) -> list[C]:
        """
        Filter conversations by visibility.

        סדר עדיפויות: VIEW_ALL_CONVERSATIONS (ללא סינון) >
        VIEW_TEAM_CONVERSATIONS (שיחות של חברי הצוות) > השיחות של המשתמש בלבד.
        """
        integration = await self.scopes.get_integration(integration_id)
        role = await self._role_for(user_id, integration) if integration else None
        permissions = ROLE_PERMISSIONS[role] if role else _NO_PERMISSIONS

        if WhatsAppPermission.VIEW_ALL_CONVERSATIONS in permissions:
            return list(conversations)

        if WhatsAppPermission.VIEW_TEAM_CONVERSATIONS in permissions:
            match scope_of(integration):
                case TeamScope(team_id=team_id):
                    team_user_ids = {m.user_id for m in await self.scopes.get_members(team_id)}
                    return [
                        conv for conv in conversations
                        if _conversation_owner(conv) in team_user_ids
                    ]
                case _:
                    pass

        return [conv for conv in conversations if _conversation_owner(conv) == user_id]
