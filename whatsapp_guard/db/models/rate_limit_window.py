"""
RateLimitWindow Model — מונה שימוש לחלון זמן אחד

מפתח ייחודי: (integration_id, endpoint, window_type). חלון פעיל כל עוד
now < resets_at; חלון שפג מוחלף (מאופס) ולא מוגדל.
"""
import enum
import uuid
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, ForeignKey, UniqueConstraint, Enum as SQLEnum,
)

from whatsapp_guard.core.clock import utcnow
from whatsapp_guard.db.database import Base


class WindowType(str, enum.Enum):
    """Time granularity of a quota window"""
    PER_SECOND = "per_second"
    PER_MINUTE = "per_minute"
    PER_HOUR = "per_hour"
    PER_DAY = "per_day"


class AlertLevel(str, enum.Enum):
    """רמת ההתראה האחרונה שנשלחה בחלון — warning < critical"""
    WARNING = "warning"
    CRITICAL = "critical"


class RateLimitWindow(Base):
    """Usage counter for one (integration, endpoint, window type) triple"""

    __tablename__ = "rate_limit_windows"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    integration_id = Column(String(36), ForeignKey("integrations.id"), nullable=False, index=True)
    endpoint = Column(String(100), nullable=False)
    window_type = Column(
        SQLEnum(
            WindowType,
            name="rate_limit_window_type",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=False,
    )

    limit_value = Column(Integer, nullable=False)
    current_usage = Column(Integer, nullable=False, default=0)
    remaining_quota = Column(Integer, nullable=False)

    window_start = Column(DateTime, nullable=False)
    resets_at = Column(DateTime, nullable=False, index=True)

    warning_threshold = Column(Float, nullable=False, default=0.8)
    critical_threshold = Column(Float, nullable=False, default=0.95)
    last_alert_at = Column(DateTime, nullable=True)
    last_alert_level = Column(
        SQLEnum(
            AlertLevel,
            name="rate_limit_alert_level",
            values_callable=lambda x: [e.value for e in x],
        ),
        nullable=True,
    )

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # יעד ה-ON CONFLICT של הספירה האטומית
    __table_args__ = (
        UniqueConstraint(
            "integration_id", "endpoint", "window_type",
            name="uq_rate_limit_window",
        ),
    )
