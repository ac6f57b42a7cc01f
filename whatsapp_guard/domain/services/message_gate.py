"""
Message Gate — הזרימה המלאה לכל הודעה נכנסת / יוצאת

יוצאת: הרשאה → בדיקת מכסה → (קריאה חיצונית אצל הקורא) → ספירת הקריאה.
נכנסת: מספר חסום → הרשאת קבלה → סריקת תוכן חשוד.

ה-gate לא שולח ולא מקבל הודעות בעצמו; הוא מחזיר החלטה והקורא פועל לפיה.
"""
import enum
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from whatsapp_guard.core.exceptions import QuotaStoreUnavailableError
from whatsapp_guard.core.logging import get_logger
from whatsapp_guard.core.validation import PhoneNumberValidator
from whatsapp_guard.db.models.security_event import SecurityEventType, SecuritySeverity
from whatsapp_guard.domain.services.alert_service import AlertPublisher, publish_alert
from whatsapp_guard.domain.services.permission_service import PermissionService, WhatsAppPermission
from whatsapp_guard.domain.services.rate_limit_service import RateLimitInfo, RateLimitService
from whatsapp_guard.domain.services.security_audit_service import SecurityAuditService

logger = get_logger(__name__)


class GateDecision(str, enum.Enum):
    ALLOWED = "allowed"
    PERMISSION_DENIED = "permission_denied"
    RATE_LIMITED = "rate_limited"
    BLOCKED = "blocked"
    SUSPICIOUS = "suspicious"


@dataclass(frozen=True)
class GateResult:
    decision: GateDecision
    reset_in_ms: Optional[int] = None

    @property
    def allowed(self) -> bool:
        return self.decision == GateDecision.ALLOWED


class MessageGate:
    """Runs the per-message authorization, quota and audit flow"""

    def __init__(self, db: AsyncSession, alert_publisher: AlertPublisher = publish_alert):
        self.permissions = PermissionService(db)
        self.rate_limits = RateLimitService(db, alert_publisher=alert_publisher)
        self.audit = SecurityAuditService(db, alert_publisher=alert_publisher)

    async def authorize_outbound(
        self,
        user_id: str,
        integration_id: str,
        endpoint: str,
        on_behalf_of: Optional[str] = None,
    ) -> GateResult:
        """בדיקה לפני שליחה: הרשאת שליחה (ושליחה בשם משתמש אחר) ואז מכסה"""
        allowed = await self.permissions.check_permission(
            user_id, integration_id, WhatsAppPermission.SEND_MESSAGES
        )
        if allowed and on_behalf_of is not None:
            allowed = await self.permissions.can_send_as_user(user_id, on_behalf_of, integration_id)

        if not allowed:
            await self.audit.log_security_event(
                SecurityEventType.PERMISSION_DENIED,
                {
                    "user_id": user_id,
                    "integration_id": integration_id,
                    "target_user_id": on_behalf_of,
                    "action": "send_message",
                },
                SecuritySeverity.MEDIUM,
            )
            return GateResult(GateDecision.PERMISSION_DENIED)

        check = await self.rate_limits.check_rate_limit(integration_id, endpoint)
        if not check.allowed:
            await self.audit.log_security_event(
                SecurityEventType.RATE_LIMIT_EXCEEDED,
                {
                    "user_id": user_id,
                    "integration_id": integration_id,
                    "action": endpoint,
                    "reason": f"Quota exhausted, resets in {check.reset_in_ms}ms",
                },
                SecuritySeverity.MEDIUM,
            )
            return GateResult(GateDecision.RATE_LIMITED, reset_in_ms=check.reset_in_ms)

        return GateResult(GateDecision.ALLOWED)

    async def record_outbound(
        self,
        integration_id: str,
        endpoint: str,
        response_headers: Optional[Mapping[str, str]] = None,
    ) -> list[RateLimitInfo]:
        """
        ספירת קריאה שכבר בוצעה.

        הקריאה החיצונית כבר קרתה — כשלון במאגר המכסות נרשם ללוג ולא נזרק.
        """
        try:
            return await self.rate_limits.track_api_call(integration_id, endpoint, response_headers)
        except QuotaStoreUnavailableError as e:
            logger.error(
                "API call was sent but could not be counted",
                extra_data={
                    "integration_id": integration_id,
                    "endpoint": endpoint,
                    "error_code": e.error_code.value,
                },
            )
            return []

    async def screen_inbound(
        self,
        phone_number: str,
        integration_id: str,
        text: Optional[str],
        user_id: Optional[str] = None,
    ) -> GateResult:
        """
        סינון הודעה נכנסת.

        BLOCKED — הקורא מתעלם בשקט. SUSPICIOUS — זיהוי בלבד, הקורא מחליט.
        """
        if await self.audit.is_phone_number_blocked(phone_number, integration_id):
            logger.info(
                "Ignoring message from blocked phone number",
                extra_data={
                    "integration_id": integration_id,
                    "phone_number": PhoneNumberValidator.mask(phone_number),
                },
            )
            return GateResult(GateDecision.BLOCKED)

        if user_id is not None and not await self.permissions.check_permission(
            user_id, integration_id, WhatsAppPermission.RECEIVE_MESSAGES
        ):
            await self.audit.log_security_event(
                SecurityEventType.PERMISSION_DENIED,
                {
                    "phone_number": phone_number,
                    "user_id": user_id,
                    "integration_id": integration_id,
                    "action": "receive_message",
                },
                SecuritySeverity.MEDIUM,
            )
            return GateResult(GateDecision.PERMISSION_DENIED)

        if text and await self.audit.check_suspicious_patterns(phone_number, text, integration_id):
            return GateResult(GateDecision.SUSPICIOUS)

        return GateResult(GateDecision.ALLOWED)
