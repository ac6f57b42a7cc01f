"""
Integration Scope — אינטגרציה אישית מול אינטגרציה של צוות

קורא בלבד: האינטגרציות והחברויות בצוותים שייכות למערכת ניהול המשתמשים.
ה-scope מיוצג כ-variant מתויג (PersonalScope | TeamScope) ונפתר ב-match,
כך שמצב "גם וגם" / "אף אחד" לא יכול לזלוג הלאה.
"""
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from whatsapp_guard.core.exceptions import AuthorizationStoreError, InvalidIntegrationScopeError
from whatsapp_guard.core.logging import get_logger
from whatsapp_guard.db.models.integration import Integration
from whatsapp_guard.db.models.team import TeamMembership
from whatsapp_guard.db.models.user import User

logger = get_logger(__name__)


@dataclass(frozen=True)
class PersonalScope:
    """Integration owned by a single user"""
    owner_id: str


@dataclass(frozen=True)
class TeamScope:
    """Integration shared by every member of a team"""
    team_id: str


IntegrationScope = Union[PersonalScope, TeamScope]


def scope_of(integration: Integration) -> IntegrationScope:
    """Resolve the tagged scope of an integration row.

    Raises:
        InvalidIntegrationScopeError: both or neither of owner_id/team_id are set
    """
    has_owner = integration.owner_id is not None
    has_team = integration.team_id is not None
    if has_owner == has_team:
        raise InvalidIntegrationScopeError(integration.id)
    if has_team:
        return TeamScope(team_id=integration.team_id)
    return PersonalScope(owner_id=integration.owner_id)


class IntegrationScopeResolver:
    """Read-only access to integrations and team memberships"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_integration(self, integration_id: str) -> Optional[Integration]:
        try:
            result = await self.db.execute(
                select(Integration).where(Integration.id == integration_id)
            )
        except SQLAlchemyError as e:
            raise self._store_error("get_integration", e, integration_id=integration_id) from e
        return result.scalar_one_or_none()

    async def get_membership(self, team_id: str, user_id: str) -> Optional[TeamMembership]:
        try:
            result = await self.db.execute(
                select(TeamMembership).where(
                    TeamMembership.team_id == team_id,
                    TeamMembership.user_id == user_id,
                )
            )
        except SQLAlchemyError as e:
            raise self._store_error("get_membership", e, team_id=team_id) from e
        return result.scalar_one_or_none()

    async def get_members(
        self,
        team_id: str,
        user_ids: Optional[Iterable[str]] = None,
    ) -> list[TeamMembership]:
        """חברי הצוות; עם user_ids — רק החברים מתוך הרשימה"""
        query = select(TeamMembership).where(TeamMembership.team_id == team_id)
        if user_ids is not None:
            query = query.where(TeamMembership.user_id.in_(list(user_ids)))
        try:
            result = await self.db.execute(query.order_by(TeamMembership.joined_at))
        except SQLAlchemyError as e:
            raise self._store_error("get_members", e, team_id=team_id) from e
        return list(result.scalars().all())

    async def get_users(self, user_ids: Iterable[str]) -> dict[str, User]:
        ids = list(user_ids)
        if not ids:
            return {}
        try:
            result = await self.db.execute(select(User).where(User.id.in_(ids)))
        except SQLAlchemyError as e:
            raise self._store_error("get_users", e) from e
        return {user.id: user for user in result.scalars().all()}

    @staticmethod
    def _store_error(operation: str, error: Exception, **context) -> AuthorizationStoreError:
        logger.error(
            "Authorization store query failed",
            extra_data={"operation": operation, "error": str(error), **context},
            exc_info=True,
        )
        return AuthorizationStoreError(operation, details=context)
