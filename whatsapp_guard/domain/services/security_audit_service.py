"""
WhatsApp Security Audit Service — לוג אבטחה, זיהוי חריגות וחסימה מדורגת

- כל אירוע נשמר כשורה בלתי-הפיכה ב-security_events
- רישום אירוע לעולם לא זורק: כשלון נרשם ללוג והפעולה העסקית ממשיכה
- אירוע critical מפעיל fan-out של התראה
- "חסימה" היא פרדיקט נגזר: אירוע UNAUTHORIZED_ACCESS קריטי עם reason
  שמכיל "blocked" ב-24 השעות האחרונות. אין טבלת חסימות.
"""
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, TypedDict

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from whatsapp_guard.core import clock
from whatsapp_guard.core.config import settings
from whatsapp_guard.core.exceptions import ErrorCode, NotFoundException
from whatsapp_guard.core.logging import get_logger, log_async_operation
from whatsapp_guard.core.validation import PhoneNumberValidator
from whatsapp_guard.db.models.security_event import (
    SecurityEvent,
    SecurityEventType,
    SecuritySeverity,
)
from whatsapp_guard.domain.services.alert_service import (
    AlertPublisher,
    publish_alert,
    publish_security_alert,
)
from whatsapp_guard.domain.services.suspicious_patterns import first_match

logger = get_logger(__name__)

BLOCK_REASON = "Phone number blocked due to excessive failed attempts"
_TOP_PHONE_NUMBERS = 10

_LOG_METHOD = {
    SecuritySeverity.LOW: "info",
    SecuritySeverity.MEDIUM: "info",
    SecuritySeverity.HIGH: "warning",
    SecuritySeverity.CRITICAL: "critical",
}


class SecurityEventMetadata(TypedDict, total=False):
    """שדות metadata מוכרים של אירוע אבטחה"""
    phone_number: str
    user_id: str
    integration_id: str
    config_id: str
    ip_address: str
    user_agent: str
    attempt_count: int
    reason: str
    target_user_id: str
    action: str
    old_value: Any
    new_value: Any


@dataclass(frozen=True)
class PhoneNumberCount:
    phone_number: str
    count: int


@dataclass
class SecurityReport:
    """סיכום אירועי אבטחה לטווח תאריכים"""
    summary: dict[str, int]
    critical_events: list[SecurityEvent]
    top_phone_numbers: list[PhoneNumberCount]
    recommendations: list[str] = field(default_factory=list)


def _masked(details: dict[str, Any]) -> dict[str, Any]:
    """עותק של ה-metadata עם מספר טלפון מוסתר — ללוגים ולהתראות"""
    if details.get("phone_number"):
        return {**details, "phone_number": PhoneNumberValidator.mask(details["phone_number"])}
    return dict(details)


def _recommendations(summary: dict[str, int], critical_count: int) -> list[str]:
    recommendations = []
    if summary.get(SecurityEventType.UNAUTHORIZED_ACCESS.value, 0) > 5:
        recommendations.append("Consider implementing stricter phone number verification")
    if summary.get(SecurityEventType.RATE_LIMIT_EXCEEDED.value, 0) > 10:
        recommendations.append("Review rate limiting thresholds")
    if summary.get(SecurityEventType.SUSPICIOUS_MESSAGE_PATTERN.value, 0) > 0:
        recommendations.append("Enable automated message filtering for sensitive data")
    if critical_count > 0:
        recommendations.append("Review and address critical security events immediately")
    return recommendations


class SecurityAuditService:
    """Append-only security log with pattern detection and escalating lockout"""

    def __init__(self, db: AsyncSession, alert_publisher: AlertPublisher = publish_alert):
        self.db = db
        self.alert_publisher = alert_publisher

    # ==================== רישום ====================

    async def log_security_event(
        self,
        event_type: SecurityEventType,
        metadata: SecurityEventMetadata,
        severity: SecuritySeverity = SecuritySeverity.MEDIUM,
    ) -> Optional[SecurityEvent]:
        """
        רישום אירוע אבטחה.

        Returns:
            האירוע שנשמר, או None אם השמירה נכשלה (הכשלון נרשם ללוג)
        """
        details = dict(metadata)
        if details.get("phone_number"):
            details["phone_number"] = PhoneNumberValidator.normalize(details["phone_number"])

        getattr(logger, _LOG_METHOD[severity])(
            f"[SECURITY AUDIT] {event_type.value}",
            extra_data={
                "event_type": event_type.value,
                "severity": severity.value,
                **_masked(details),
            },
        )

        try:
            event = SecurityEvent(
                event_type=event_type,
                severity=severity,
                integration_id=details.get("integration_id"),
                phone_number=details.get("phone_number"),
                details=details,
                created_at=clock.utcnow(),
            )
            self.db.add(event)
            await self.db.commit()
            await self.db.refresh(event)
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "Failed to log security event",
                extra_data={
                    "event_type": event_type.value,
                    "severity": severity.value,
                    "error": str(e),
                },
                exc_info=True,
            )
            return None

        if severity == SecuritySeverity.CRITICAL:
            await publish_security_alert(
                integration_id=event.integration_id,
                event_id=event.id,
                event_type=event_type.value,
                details=_masked(details),
                publisher=self.alert_publisher,
            )

        return event

    async def check_suspicious_patterns(
        self,
        phone_number: str,
        message: str,
        integration_id: str,
    ) -> bool:
        """בדיקת הודעה מול טבלת החוקים; התאמה ראשונה נרשמת ומחזירה True"""
        rule = first_match(message)
        if rule is None:
            return False

        await self.log_security_event(
            SecurityEventType.SUSPICIOUS_MESSAGE_PATTERN,
            {
                "phone_number": phone_number,
                "integration_id": integration_id,
                "reason": f"Message matched pattern: {rule.pattern.pattern}",
                "action": rule.name,
            },
            rule.severity,
        )
        return True

    async def track_failed_verification(
        self,
        phone_number: str,
        integration_id: str,
        reason: str,
        attempt_count: int,
    ) -> None:
        """
        רישום ניסיון אימות כושל.

        מ-VERIFICATION_HIGH_SEVERITY_ATTEMPTS והלאה החומרה high;
        ב-VERIFICATION_BLOCK_ATTEMPTS המספר נחסם.
        """
        severity = (
            SecuritySeverity.HIGH
            if attempt_count >= settings.VERIFICATION_HIGH_SEVERITY_ATTEMPTS
            else SecuritySeverity.MEDIUM
        )
        await self.log_security_event(
            SecurityEventType.VERIFICATION_FAILED,
            {
                "phone_number": phone_number,
                "integration_id": integration_id,
                "reason": reason,
                "attempt_count": attempt_count,
            },
            severity,
        )

        if attempt_count >= settings.VERIFICATION_BLOCK_ATTEMPTS:
            await self.block_phone_number(phone_number, integration_id)

    async def block_phone_number(self, phone_number: str, integration_id: str) -> None:
        await self.log_security_event(
            SecurityEventType.UNAUTHORIZED_ACCESS,
            {
                "phone_number": phone_number,
                "integration_id": integration_id,
                "reason": BLOCK_REASON,
            },
            SecuritySeverity.CRITICAL,
        )

    async def is_phone_number_blocked(self, phone_number: str, integration_id: str) -> bool:
        """חסום אם יש אירוע חסימה קריטי ב-PHONE_BLOCK_LOOKBACK_HOURS האחרונות"""
        since = clock.utcnow() - timedelta(hours=settings.PHONE_BLOCK_LOOKBACK_HOURS)
        result = await self.db.execute(
            select(SecurityEvent).where(
                SecurityEvent.integration_id == integration_id,
                SecurityEvent.phone_number == PhoneNumberValidator.normalize(phone_number),
                SecurityEvent.event_type == SecurityEventType.UNAUTHORIZED_ACCESS,
                SecurityEvent.severity == SecuritySeverity.CRITICAL,
                SecurityEvent.created_at >= since,
            )
        )
        return any(
            event.reason and "blocked" in event.reason
            for event in result.scalars().all()
        )

    # ==================== שליפה ודוחות ====================

    async def get_security_events(
        self,
        integration_id: str,
        event_types: Optional[Iterable[SecurityEventType]] = None,
        severities: Optional[Iterable[SecuritySeverity]] = None,
        resolved: Optional[bool] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        limit: Optional[int] = settings.SECURITY_EVENTS_DEFAULT_LIMIT,
    ) -> list[SecurityEvent]:
        """אירועי האינטגרציה מהחדש לישן; limit=None — ללא הגבלה"""
        query = select(SecurityEvent).where(SecurityEvent.integration_id == integration_id)
        if event_types is not None:
            query = query.where(SecurityEvent.event_type.in_(list(event_types)))
        if severities is not None:
            query = query.where(SecurityEvent.severity.in_(list(severities)))
        if resolved is not None:
            query = query.where(SecurityEvent.resolved == resolved)
        if start_date is not None:
            query = query.where(SecurityEvent.created_at >= start_date)
        if end_date is not None:
            query = query.where(SecurityEvent.created_at <= end_date)

        query = query.order_by(SecurityEvent.created_at.desc())
        if limit is not None:
            query = query.limit(limit)

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def generate_security_report(
        self,
        integration_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> SecurityReport:
        """דוח אבטחה לטווח [start_date, end_date] כולל"""
        events = await self.get_security_events(
            integration_id,
            start_date=start_date,
            end_date=end_date,
            limit=None,
        )

        summary = dict(Counter(SecurityEventType(e.event_type).value for e in events))
        critical_events = [e for e in events if e.severity == SecuritySeverity.CRITICAL]

        phone_counts = Counter(e.phone_number for e in events if e.phone_number)
        top_phone_numbers = [
            PhoneNumberCount(phone_number=phone, count=count)
            for phone, count in sorted(phone_counts.items(), key=lambda item: (-item[1], item[0]))
        ][:_TOP_PHONE_NUMBERS]

        return SecurityReport(
            summary=summary,
            critical_events=critical_events,
            top_phone_numbers=top_phone_numbers,
            recommendations=_recommendations(summary, len(critical_events)),
        )

    # ==================== טיפול ושמירה ====================

    async def resolve_security_event(
        self,
        event_id: str,
        resolved_by: str,
        notes: Optional[str] = None,
        integration_id: Optional[str] = None,
    ) -> SecurityEvent:
        """
        סימון אירוע כמטופל. עובדות האירוע לא משתנות — רק שדות הטיפול.

        Raises:
            NotFoundException: האירוע לא קיים (או שייך לאינטגרציה אחרת)
        """
        event = await self.db.get(SecurityEvent, event_id)
        if event is None or (integration_id is not None and event.integration_id != integration_id):
            raise NotFoundException("SecurityEvent", event_id, ErrorCode.SECURITY_EVENT_NOT_FOUND)

        event.resolved = True
        event.resolved_at = clock.utcnow()
        event.resolved_by = resolved_by
        event.notes = notes
        await self.db.commit()
        await self.db.refresh(event)

        logger.info(
            "Security event resolved",
            extra_data={
                "event_id": event_id,
                "event_type": SecurityEventType(event.event_type).value,
                "resolved_by": resolved_by,
            },
        )
        return event

    @log_async_operation("security_event_cleanup")
    async def cleanup_old_events(self, retention_days: Optional[int] = None) -> int:
        """מחיקת אירועים ישנים מ-retention_days; מחזיר כמות שנמחקה"""
        days = retention_days if retention_days is not None else settings.SECURITY_EVENT_RETENTION_DAYS
        horizon = clock.utcnow() - timedelta(days=days)
        result = await self.db.execute(
            delete(SecurityEvent)
            .where(SecurityEvent.created_at < horizon)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0
