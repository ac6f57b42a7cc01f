"""
Shared pytest fixtures:
- Database sessions (async, SQLite in memory)
- Fake Redis for the alert channel
- A controllable clock for window / lookback tests
- Test data factories (users, teams, integrations)
"""
# מפתח אדמין לפני ייבוא האפליקציה — ה-Settings נטען בזמן import
import os
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key-for-testing-only")

import itertools
from datetime import datetime, timedelta
from typing import Any, AsyncGenerator, Optional
from unittest.mock import patch

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from whatsapp_guard.core.config import settings
from whatsapp_guard.db.database import Base, get_db
from whatsapp_guard.db.models.integration import Integration
from whatsapp_guard.db.models.team import Team, TeamMembership, TeamRole
from whatsapp_guard.db.models.user import User
from whatsapp_guard.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ADMIN_API_KEY = "test-admin-key-for-testing-only"

# נקודת זמן קבועה באמצע שנייה — מאפשרת חישוב מדויק של reset_in
FROZEN_NOW = datetime(2026, 3, 10, 12, 30, 15, 500000)

_email_counter = itertools.count(1)


@pytest.fixture(scope="function")
async def async_engine():
    """SQLite בזיכרון עם StaticPool — חיבור אחד משותף לכל ה-sessions"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Session יחיד לבדיקה; rollback בסוף"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """httpx client מול האפליקציה, עם get_db שמחזיר את session הבדיקה"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-API-Key": ADMIN_API_KEY}


@pytest.fixture(autouse=True)
def set_admin_api_key():
    """ה-Settings עשוי להיטען מ-.env מקומי — מקבעים את המפתח לבדיקות"""
    with patch.object(settings, "ADMIN_API_KEY", ADMIN_API_KEY):
        yield


# ============================================================================
# Clock
# ============================================================================

class FrozenClock:
    """שעון שזז רק כשהבדיקה מזיזה אותו"""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


@pytest.fixture
def frozen_clock():
    """מקבע את whatsapp_guard.core.clock.utcnow ל-FROZEN_NOW"""
    clock = FrozenClock(FROZEN_NOW)
    with patch("whatsapp_guard.core.clock.utcnow", clock):
        yield clock


# ============================================================================
# Redis / alerts
# ============================================================================

class FakeRedis:
    """תחליף ל-Redis לבדיקות — in-memory, עם pub/sub ורשימות."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._lists: dict[str, list[str]] = {}
        self.published: list[tuple[str, str]] = []

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def set(self, key: str, value: str) -> bool:
        self._store[key] = value
        return True

    async def publish(self, channel: str, message: str) -> int:
        self.published.append((channel, message))
        return 1

    async def lpush(self, key: str, *values: str) -> int:
        items = self._lists.setdefault(key, [])
        for value in values:
            items.insert(0, value)
        return len(items)

    async def ltrim(self, key: str, start: int, end: int) -> bool:
        items = self._lists.get(key, [])
        self._lists[key] = items[start:end + 1]
        return True

    async def lrange(self, key: str, start: int, end: int) -> list[str]:
        items = self._lists.get(key, [])
        return items[start:end + 1] if end >= 0 else items[start:]

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._lists.pop(key, None)

    async def aclose(self) -> None:
        self._store.clear()
        self._lists.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """מחליף את get_redis ב-FakeRedis לכל הבדיקות."""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("whatsapp_guard.core.redis_client.get_redis", _get_fake_redis), \
         patch("whatsapp_guard.domain.services.alert_service.get_redis", _get_fake_redis):
        yield _fake


class AlertRecorder:
    """alert publisher שרושם קריאות במקום לפרסם"""

    def __init__(self) -> None:
        self.calls: list[tuple[Optional[str], Any, dict[str, Any]]] = []

    async def __call__(self, integration_id, alert_type, data, title=None) -> None:
        self.calls.append((integration_id, alert_type, data))

    def of_type(self, alert_type) -> list[tuple[Optional[str], Any, dict[str, Any]]]:
        return [c for c in self.calls if c[1] == alert_type]


@pytest.fixture
def alert_recorder() -> AlertRecorder:
    return AlertRecorder()


# ============================================================================
# Test Data Factories
# ============================================================================

@pytest.fixture
def user_factory(db_session: AsyncSession):
    """יוצר User עם email ייחודי"""
    async def _create_user(name: str = "Test User", email: str | None = None) -> User:
        user = User(
            name=name,
            email=email or f"user{next(_email_counter)}@example.com",
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def team_factory(db_session: AsyncSession):
    """Factory for creating a team with members: [(user, role), ...]"""
    async def _create_team(
        members: list[tuple[User, TeamRole]] = (),
        name: str = "Test Team",
    ) -> Team:
        team = Team(name=name)
        db_session.add(team)
        await db_session.flush()
        for offset, (user, role) in enumerate(members):
            db_session.add(TeamMembership(
                team_id=team.id,
                user_id=user.id,
                role=role,
                joined_at=FROZEN_NOW + timedelta(seconds=offset),
            ))
        await db_session.commit()
        await db_session.refresh(team)
        return team

    return _create_team


@pytest.fixture
def integration_factory(db_session: AsyncSession):
    """Factory for personal (owner) or team integrations"""
    async def _create_integration(
        owner: User | None = None,
        team: Team | None = None,
        name: str = "WhatsApp Business",
    ) -> Integration:
        integration = Integration(
            name=name,
            owner_id=owner.id if owner else None,
            team_id=team.id if team else None,
        )
        db_session.add(integration)
        await db_session.commit()
        await db_session.refresh(integration)
        return integration

    return _create_integration


# ============================================================================
# Sample Test Data
# ============================================================================

@pytest.fixture
async def team_setup(user_factory, team_factory, integration_factory) -> dict[str, Any]:
    """צוות עם owner / admin / member + משתמש חיצוני, ואינטגרציה של הצוות"""
    owner = await user_factory(name="Owner")
    admin = await user_factory(name="Admin")
    member = await user_factory(name="Member")
    outsider = await user_factory(name="Outsider")
    team = await team_factory([
        (owner, TeamRole.OWNER),
        (admin, TeamRole.ADMIN),
        (member, TeamRole.MEMBER),
    ])
    integration = await integration_factory(team=team)
    return {
        "owner": owner,
        "admin": admin,
        "member": member,
        "outsider": outsider,
        "team": team,
        "integration": integration,
    }


@pytest.fixture
async def personal_setup(user_factory, integration_factory) -> dict[str, Any]:
    """אינטגרציה אישית + משתמש אחר"""
    owner = await user_factory(name="Solo Owner")
    other = await user_factory(name="Someone Else")
    integration = await integration_factory(owner=owner)
    return {"owner": owner, "other": other, "integration": integration}
