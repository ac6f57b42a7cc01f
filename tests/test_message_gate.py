"""
בדיקות ל-MessageGate — הזרימה המשולבת של הרשאות, מכסות ו-audit.
"""
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from whatsapp_guard.db.models.rate_limit_window import RateLimitWindow, WindowType
from whatsapp_guard.db.models.security_event import SecurityEvent, SecurityEventType
from whatsapp_guard.domain.services.message_gate import GateDecision, MessageGate
from whatsapp_guard.domain.services.rate_limit_service import window_bounds

MESSAGES_ENDPOINT = "/v18.0/1234567890/messages"
TEMPLATES_ENDPOINT = "/v18.0/1234567890/message_templates"
PHONE = "+15551230000"


async def _event_types(db_session) -> list[SecurityEventType]:
    result = await db_session.execute(select(SecurityEvent).order_by(SecurityEvent.created_at))
    return [SecurityEventType(e.event_type) for e in result.scalars().all()]


class TestOutbound:

    @pytest.mark.unit
    async def test_member_allowed_and_counted(self, db_session, team_setup, frozen_clock, alert_recorder):
        gate = MessageGate(db_session, alert_publisher=alert_recorder)
        integration_id = team_setup["integration"].id

        result = await gate.authorize_outbound(team_setup["member"].id, integration_id, MESSAGES_ENDPOINT)
        assert result.allowed is True
        assert result.reset_in_ms is None

        snapshots = await gate.record_outbound(integration_id, MESSAGES_ENDPOINT)
        assert len(snapshots) == 4
        assert all(s.current_usage == 1 for s in snapshots)
        assert await _event_types(db_session) == []

    @pytest.mark.unit
    async def test_outsider_denied_and_audited(self, db_session, team_setup, frozen_clock):
        gate = MessageGate(db_session)

        result = await gate.authorize_outbound(
            team_setup["outsider"].id, team_setup["integration"].id, MESSAGES_ENDPOINT
        )

        assert result.decision == GateDecision.PERMISSION_DENIED
        assert await _event_types(db_session) == [SecurityEventType.PERMISSION_DENIED]

    @pytest.mark.unit
    async def test_send_on_behalf_of_non_member_denied(self, db_session, team_setup, frozen_clock):
        gate = MessageGate(db_session)
        integration_id = team_setup["integration"].id

        allowed = await gate.authorize_outbound(
            team_setup["admin"].id, integration_id, MESSAGES_ENDPOINT,
            on_behalf_of=team_setup["member"].id,
        )
        denied = await gate.authorize_outbound(
            team_setup["admin"].id, integration_id, MESSAGES_ENDPOINT,
            on_behalf_of=team_setup["outsider"].id,
        )

        assert allowed.allowed is True
        assert denied.decision == GateDecision.PERMISSION_DENIED

    @pytest.mark.unit
    async def test_exhausted_quota_rate_limited(self, db_session, team_setup, frozen_clock):
        gate = MessageGate(db_session)
        integration_id = team_setup["integration"].id
        start, resets = window_bounds(frozen_clock.now, WindowType.PER_HOUR)
        db_session.add(RateLimitWindow(
            integration_id=integration_id,
            endpoint=TEMPLATES_ENDPOINT,
            window_type=WindowType.PER_HOUR,
            limit_value=100,
            current_usage=100,
            remaining_quota=0,
            window_start=start,
            resets_at=resets,
        ))
        await db_session.commit()

        result = await gate.authorize_outbound(team_setup["owner"].id, integration_id, TEMPLATES_ENDPOINT)

        assert result.decision == GateDecision.RATE_LIMITED
        # 12:30:15.5 → 13:00:00
        assert result.reset_in_ms == 1_784_500
        assert await _event_types(db_session) == [SecurityEventType.RATE_LIMIT_EXCEEDED]

    @pytest.mark.unit
    async def test_record_outbound_swallows_store_failure(self, db_session, team_setup, frozen_clock):
        gate = MessageGate(db_session)
        integration_id = team_setup["integration"].id

        with patch.object(
            db_session,
            "execute",
            AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("db down"))),
        ):
            snapshots = await gate.record_outbound(integration_id, MESSAGES_ENDPOINT)

        assert snapshots == []


class TestInbound:

    @pytest.mark.unit
    async def test_clean_message_allowed(self, db_session, team_setup, frozen_clock):
        gate = MessageGate(db_session)

        result = await gate.screen_inbound(
            PHONE, team_setup["integration"].id, "Hi, is my order ready?", user_id=team_setup["member"].id
        )

        assert result.allowed is True

    @pytest.mark.unit
    async def test_blocked_number_ignored(self, db_session, team_setup, frozen_clock):
        gate = MessageGate(db_session)
        integration_id = team_setup["integration"].id
        await gate.audit.block_phone_number(PHONE, integration_id)

        result = await gate.screen_inbound(PHONE, integration_id, "your password, send it")

        assert result.decision == GateDecision.BLOCKED
        # חסום — התוכן לא נסרק ולא נרשם אירוע נוסף
        assert await _event_types(db_session) == [SecurityEventType.UNAUTHORIZED_ACCESS]

    @pytest.mark.unit
    async def test_receiver_without_permission(self, db_session, team_setup, frozen_clock):
        gate = MessageGate(db_session)

        result = await gate.screen_inbound(
            PHONE, team_setup["integration"].id, "hello", user_id=team_setup["outsider"].id
        )

        assert result.decision == GateDecision.PERMISSION_DENIED
        assert await _event_types(db_session) == [SecurityEventType.PERMISSION_DENIED]

    @pytest.mark.unit
    async def test_suspicious_message_flagged(self, db_session, team_setup, frozen_clock):
        gate = MessageGate(db_session)

        result = await gate.screen_inbound(
            "15551230000", team_setup["integration"].id, "ssn 123-45-6789 please"
        )

        assert result.decision == GateDecision.SUSPICIOUS
        assert await _event_types(db_session) == [SecurityEventType.SUSPICIOUS_MESSAGE_PATTERN]

    @pytest.mark.unit
    async def test_suspicious_message_does_not_touch_quota(
        self, db_session, team_setup, frozen_clock, alert_recorder
    ):
        gate = MessageGate(db_session, alert_publisher=alert_recorder)
        integration_id = team_setup["integration"].id

        result = await gate.screen_inbound(PHONE, integration_id, "your password, please share it with me")

        assert result.decision == GateDecision.SUSPICIOUS
        windows = (await db_session.execute(select(RateLimitWindow))).scalars().all()
        assert windows == []
