"""
Security Event Model — לוג אבטחה בלתי-הפיך

כל קריאת audit מוסיפה שורה. העובדות (סוג, חומרה, metadata) לא משתנות לעולם;
רק שדות הטיפול (resolved/notes) מתעדכנים, ושורות ישנות נמחקות ע"י job שמירה.
"""
import enum
import uuid
from sqlalchemy import (
    Column, String, DateTime, Boolean, Text, ForeignKey, Index, Enum as SQLEnum,
)
from sqlalchemy.types import JSON

from whatsapp_guard.core.clock import utcnow
from whatsapp_guard.db.database import Base


class SecurityEventType(str, enum.Enum):
    """סוגי אירועי אבטחה"""
    # Authentication / authorization
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    INVALID_PHONE_NUMBER = "INVALID_PHONE_NUMBER"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    INVALID_API_KEY = "INVALID_API_KEY"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"

    # Verification abuse
    VERIFICATION_FAILED = "VERIFICATION_FAILED"
    VERIFICATION_RATE_LIMITED = "VERIFICATION_RATE_LIMITED"
    VERIFICATION_EXPIRED = "VERIFICATION_EXPIRED"

    # Suspicious content
    SUSPICIOUS_MESSAGE_PATTERN = "SUSPICIOUS_MESSAGE_PATTERN"
    SUSPICIOUS_URL = "SUSPICIOUS_URL"

    # Rate limiting
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    RATE_LIMIT_WARNING = "RATE_LIMIT_WARNING"

    # Admin mutations
    PHONE_MAPPING_CREATED = "PHONE_MAPPING_CREATED"
    PHONE_MAPPING_REMOVED = "PHONE_MAPPING_REMOVED"
    INTEGRATION_MODIFIED = "INTEGRATION_MODIFIED"
    PERMISSION_CHANGED = "PERMISSION_CHANGED"


class SecuritySeverity(str, enum.Enum):
    """חומרה סדורה — critical מפעילה fan-out של התראות"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SecurityEvent(Base):
    """Append-only security audit record"""

    __tablename__ = "security_events"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    event_type = Column(
        SQLEnum(SecurityEventType, name="security_event_type"),
        nullable=False,
        index=True,
    )
    severity = Column(
        SQLEnum(
            SecuritySeverity,
            name="security_severity",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )
    # nullable — יש אירועים שקורים לפני שזוהה integration (למשל חתימת webhook חסרה)
    integration_id = Column(String(36), ForeignKey("integrations.id"), nullable=True, index=True)
    # משוכפל מתוך details לצורך סריקת חסימות ודירוג מספרים בלי לפרסר JSON
    phone_number = Column(String(32), nullable=True, index=True)
    # phone_number, user_id, integration_id, ip_address, attempt_count, reason, ...
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    resolved = Column(Boolean, nullable=False, default=False)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String(36), nullable=True)
    notes = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_security_events_integration_created", "integration_id", "created_at"),
    )

    @property
    def reason(self) -> str | None:
        return (self.details or {}).get("reason")
