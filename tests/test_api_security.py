"""
בדיקות ל-Security API — אימות API key, אירועים, דוחות, חסימה וטיפול.
"""
from unittest.mock import patch

import httpx
import pytest
from sqlalchemy import select

from whatsapp_guard.core.config import settings
from whatsapp_guard.db.models.security_event import (
    SecurityEvent,
    SecurityEventType,
    SecuritySeverity,
)
from whatsapp_guard.domain.services.security_audit_service import SecurityAuditService

PHONE = "+15551230000"


# ============================================================================
# אימות API Key
# ============================================================================


class TestAdminAuth:
    """API key נדרש לכל endpoint תחת /api"""

    @pytest.mark.unit
    async def test_no_api_key_returns_401(self, test_client: httpx.AsyncClient, personal_setup) -> None:
        response = await test_client.get(
            f"/api/integrations/{personal_setup['integration'].id}/security/events"
        )
        assert response.status_code == 401

    @pytest.mark.unit
    async def test_wrong_api_key_returns_403_and_is_audited(
        self, test_client: httpx.AsyncClient, db_session, personal_setup, frozen_clock
    ) -> None:
        """מפתח שגוי — 403 ואירוע INVALID_API_KEY בחומרה high"""
        integration_id = personal_setup["integration"].id

        response = await test_client.get(
            f"/api/integrations/{integration_id}/security/blocked/{PHONE}",
            headers={"X-Admin-API-Key": "wrong-key", "User-Agent": "pytest-agent"},
        )

        assert response.status_code == 403
        result = await db_session.execute(select(SecurityEvent))
        events = result.scalars().all()
        assert len(events) == 1
        event = events[0]
        assert event.event_type == SecurityEventType.INVALID_API_KEY
        assert event.severity == SecuritySeverity.HIGH
        assert event.integration_id == integration_id
        assert event.details["user_agent"] == "pytest-agent"
        # הנתיב נשמר עם מספר טלפון מוסתר
        assert PHONE not in event.details["action"]
        assert event.details["action"].startswith("GET /api/integrations/")

    @pytest.mark.unit
    async def test_empty_admin_api_key_setting_returns_403(
        self, test_client: httpx.AsyncClient, admin_headers, personal_setup
    ) -> None:
        """כש-ADMIN_API_KEY ריק בסביבה — הגישה חסומה לחלוטין"""
        with patch.object(settings, "ADMIN_API_KEY", ""):
            response = await test_client.get(
                f"/api/integrations/{personal_setup['integration'].id}/security/events",
                headers=admin_headers,
            )
        assert response.status_code == 403

    @pytest.mark.unit
    async def test_unknown_integration_returns_404(self, test_client: httpx.AsyncClient, admin_headers) -> None:
        response = await test_client.get(
            "/api/integrations/no-such-integration/security/events",
            headers=admin_headers,
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_2001"


# ============================================================================
# אירועים ודוחות
# ============================================================================


class TestSecurityEventsAPI:

    @pytest.mark.integration
    async def test_list_events_with_filters(
        self, test_client: httpx.AsyncClient, admin_headers, db_session, personal_setup, frozen_clock
    ) -> None:
        integration_id = personal_setup["integration"].id
        service = SecurityAuditService(db_session)
        await service.log_security_event(
            SecurityEventType.PERMISSION_DENIED, {"integration_id": integration_id}
        )
        frozen_clock.advance(minutes=1)
        await service.log_security_event(
            SecurityEventType.INVALID_SIGNATURE, {"integration_id": integration_id}, SecuritySeverity.HIGH
        )

        response = await test_client.get(
            f"/api/integrations/{integration_id}/security/events", headers=admin_headers
        )
        assert response.status_code == 200
        assert [e["event_type"] for e in response.json()] == ["INVALID_SIGNATURE", "PERMISSION_DENIED"]

        response = await test_client.get(
            f"/api/integrations/{integration_id}/security/events",
            params={"severity": "high"},
            headers=admin_headers,
        )
        assert [e["event_type"] for e in response.json()] == ["INVALID_SIGNATURE"]

        response = await test_client.get(
            f"/api/integrations/{integration_id}/security/events",
            params={"event_type": ["PERMISSION_DENIED", "INVALID_SIGNATURE"], "limit": 1},
            headers=admin_headers,
        )
        assert len(response.json()) == 1

    @pytest.mark.integration
    async def test_invalid_limit_rejected(
        self, test_client: httpx.AsyncClient, admin_headers, personal_setup
    ) -> None:
        response = await test_client.get(
            f"/api/integrations/{personal_setup['integration'].id}/security/events",
            params={"limit": 0},
            headers=admin_headers,
        )
        assert response.status_code == 422

    @pytest.mark.integration
    async def test_security_report(
        self, test_client: httpx.AsyncClient, admin_headers, db_session, personal_setup, frozen_clock
    ) -> None:
        integration_id = personal_setup["integration"].id
        service = SecurityAuditService(db_session)
        for attempt in range(1, 11):
            await service.track_failed_verification(PHONE, integration_id, "wrong code", attempt)

        response = await test_client.get(
            f"/api/integrations/{integration_id}/security/report",
            params={"date_from": "2026-03-10T00:00:00", "date_to": "2026-03-10T23:59:59"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["summary"] == {"VERIFICATION_FAILED": 10, "UNAUTHORIZED_ACCESS": 1}
        assert len(data["critical_events"]) == 1
        assert data["top_phone_numbers"] == [{"phone_number": PHONE, "count": 11}]
        assert data["recommendations"] == ["Review and address critical security events immediately"]

    @pytest.mark.integration
    async def test_report_with_timezone_aware_bounds(
        self, test_client: httpx.AsyncClient, admin_headers, db_session, personal_setup, frozen_clock
    ) -> None:
        """12:30 UTC == 10:30-02:00 — הגבולות מומרים ל-UTC"""
        integration_id = personal_setup["integration"].id
        await SecurityAuditService(db_session).log_security_event(
            SecurityEventType.SUSPICIOUS_URL, {"integration_id": integration_id}
        )

        response = await test_client.get(
            f"/api/integrations/{integration_id}/security/report",
            params={"date_from": "2026-03-10T10:00:00-02:00", "date_to": "2026-03-10T11:00:00-02:00"},
            headers=admin_headers,
        )

        assert response.json()["summary"] == {"SUSPICIOUS_URL": 1}

    @pytest.mark.integration
    async def test_report_rejects_inverted_range(
        self, test_client: httpx.AsyncClient, admin_headers, personal_setup
    ) -> None:
        response = await test_client.get(
            f"/api/integrations/{personal_setup['integration'].id}/security/report",
            params={"date_from": "2026-03-11T00:00:00", "date_to": "2026-03-10T00:00:00"},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "date_from"


class TestBlockStatusAPI:

    @pytest.mark.integration
    async def test_blocked_number(
        self, test_client: httpx.AsyncClient, admin_headers, db_session, personal_setup, frozen_clock
    ) -> None:
        integration_id = personal_setup["integration"].id
        await SecurityAuditService(db_session).block_phone_number(PHONE, integration_id)

        response = await test_client.get(
            f"/api/integrations/{integration_id}/security/blocked/15551230000",
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json() == {"phone_number": PHONE, "blocked": True}

    @pytest.mark.integration
    async def test_not_blocked_number(
        self, test_client: httpx.AsyncClient, admin_headers, personal_setup, frozen_clock
    ) -> None:
        response = await test_client.get(
            f"/api/integrations/{personal_setup['integration'].id}/security/blocked/{PHONE}",
            headers=admin_headers,
        )

        assert response.json()["blocked"] is False

    @pytest.mark.integration
    async def test_invalid_phone_number(
        self, test_client: httpx.AsyncClient, admin_headers, personal_setup
    ) -> None:
        response = await test_client.get(
            f"/api/integrations/{personal_setup['integration'].id}/security/blocked/12ab",
            headers=admin_headers,
        )

        assert response.status_code == 400


class TestResolveEventAPI:

    @pytest.mark.integration
    async def test_resolve(
        self, test_client: httpx.AsyncClient, admin_headers, db_session, personal_setup, frozen_clock
    ) -> None:
        integration_id = personal_setup["integration"].id
        event = await SecurityAuditService(db_session).log_security_event(
            SecurityEventType.SUSPICIOUS_URL, {"integration_id": integration_id}
        )

        response = await test_client.post(
            f"/api/integrations/{integration_id}/security/events/{event.id}/resolve",
            json={"resolved_by": "admin-1", "notes": "known campaign link"},
            headers=admin_headers,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["resolved"] is True
        assert data["resolved_by"] == "admin-1"
        assert data["notes"] == "known campaign link"

    @pytest.mark.integration
    async def test_resolve_event_of_other_integration(
        self, test_client: httpx.AsyncClient, admin_headers, db_session, personal_setup, team_setup, frozen_clock
    ) -> None:
        event = await SecurityAuditService(db_session).log_security_event(
            SecurityEventType.SUSPICIOUS_URL, {"integration_id": team_setup["integration"].id}
        )

        response = await test_client.post(
            f"/api/integrations/{personal_setup['integration'].id}/security/events/{event.id}/resolve",
            json={"resolved_by": "admin-1"},
            headers=admin_headers,
        )

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ERR_4001"
