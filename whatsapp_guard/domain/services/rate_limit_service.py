"""
WhatsApp Rate Limit Service — מעקב מכסות מול WhatsApp Cloud API

כל קריאה יוצאת נספרת בכל חלונות הזמן של הקטגוריה שלה (שנייה / דקה / שעה / יום).
הספירה היא INSERT ... ON CONFLICT DO UPDATE יחיד לכל חלון, כך ששתי קריאות
מקבילות לעולם לא "מאבדות" עדכון.

התראות: כל חלון מתריע פעם אחת לכל חציית סף (warning, ואז critical).
הרמה נתפסת ב-UPDATE מותנה אטומי — רק מי שתפס אותה מפרסם.
"""
import enum
import math
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case, delete, null, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from whatsapp_guard.core import clock
from whatsapp_guard.core.config import settings
from whatsapp_guard.core.exceptions import QuotaStoreUnavailableError
from whatsapp_guard.core.logging import get_logger, log_async_operation
from whatsapp_guard.db.compat import upsert_insert
from whatsapp_guard.db.models.rate_limit_window import AlertLevel, RateLimitWindow, WindowType
from whatsapp_guard.domain.services.alert_service import (
    AlertPublisher,
    publish_alert,
    publish_rate_limit_alert,
)

logger = get_logger(__name__)


class EndpointCategory(str, enum.Enum):
    """קטגוריית endpoint — קובעת את טבלת המגבלות"""
    MESSAGES = "messages"
    MEDIA = "media"
    TEMPLATES = "templates"


# מגבלות WhatsApp Cloud API לכל קטגוריה; חלון שלא מופיע — לא נספר
LIMITS: dict[EndpointCategory, dict[WindowType, int]] = {
    EndpointCategory.MESSAGES: {
        WindowType.PER_SECOND: 80,
        WindowType.PER_MINUTE: 1000,
        WindowType.PER_HOUR: 36000,
        WindowType.PER_DAY: 500000,
    },
    EndpointCategory.MEDIA: {
        WindowType.PER_SECOND: 50,
        WindowType.PER_MINUTE: 500,
        WindowType.PER_HOUR: 18000,
        WindowType.PER_DAY: 250000,
    },
    EndpointCategory.TEMPLATES: {
        WindowType.PER_HOUR: 100,
        WindowType.PER_DAY: 1000,
    },
}

_WINDOW_LENGTH: dict[WindowType, timedelta] = {
    WindowType.PER_SECOND: timedelta(seconds=1),
    WindowType.PER_MINUTE: timedelta(minutes=1),
    WindowType.PER_HOUR: timedelta(hours=1),
    WindowType.PER_DAY: timedelta(days=1),
}


def endpoint_category(endpoint: str) -> EndpointCategory:
    """Map a Graph API path to its limit category (default: messages)"""
    if "/messages" in endpoint:
        return EndpointCategory.MESSAGES
    if "/media" in endpoint:
        return EndpointCategory.MEDIA
    if "/message_templates" in endpoint:
        return EndpointCategory.TEMPLATES
    return EndpointCategory.MESSAGES


def window_bounds(now: datetime, window_type: WindowType) -> tuple[datetime, datetime]:
    """(window_start, resets_at) of the window containing ``now`` (UTC)"""
    if window_type == WindowType.PER_SECOND:
        start = now.replace(microsecond=0)
    elif window_type == WindowType.PER_MINUTE:
        start = now.replace(second=0, microsecond=0)
    elif window_type == WindowType.PER_HOUR:
        start = now.replace(minute=0, second=0, microsecond=0)
    else:
        start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + _WINDOW_LENGTH[window_type]


@dataclass(frozen=True)
class RateLimitCheck:
    """Result of a pre-send quota check"""
    allowed: bool
    reset_in_ms: Optional[int] = None


@dataclass(frozen=True)
class RateLimitInfo:
    """Snapshot of one quota window"""
    endpoint: str
    window_type: WindowType
    limit_value: int
    current_usage: int
    remaining_quota: int
    window_start: datetime
    resets_at: datetime

    @property
    def usage_fraction(self) -> float:
        return self.current_usage / self.limit_value if self.limit_value else 1.0


@dataclass(frozen=True)
class UpstreamRateLimit:
    """X-RateLimit-* headers as reported by the Graph API"""
    limit: Optional[int]
    remaining: Optional[int]
    reset: Optional[int]


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_rate_limit_headers(headers: Optional[Mapping[str, str]]) -> Optional[UpstreamRateLimit]:
    """קריאת X-RateLimit-Limit/Remaining/Reset (case-insensitive); None אם אין כאלה"""
    if not headers:
        return None
    lowered = {str(k).lower(): v for k, v in headers.items()}
    parsed = UpstreamRateLimit(
        limit=_to_int(lowered.get("x-ratelimit-limit")),
        remaining=_to_int(lowered.get("x-ratelimit-remaining")),
        reset=_to_int(lowered.get("x-ratelimit-reset")),
    )
    if parsed.limit is None and parsed.remaining is None and parsed.reset is None:
        return None
    return parsed


def _info_from(endpoint: str, row) -> RateLimitInfo:
    return RateLimitInfo(
        endpoint=endpoint,
        window_type=WindowType(row.window_type),
        limit_value=row.limit_value,
        current_usage=row.current_usage,
        remaining_quota=row.remaining_quota,
        window_start=row.window_start,
        resets_at=row.resets_at,
    )


class RateLimitService:
    """Multi-window quota enforcement for WhatsApp integrations"""

    def __init__(self, db: AsyncSession, alert_publisher: AlertPublisher = publish_alert):
        self.db = db
        self.alert_publisher = alert_publisher

    # ==================== בדיקה לפני שליחה ====================

    async def check_rate_limit(self, integration_id: str, endpoint: str) -> RateLimitCheck:
        """
        בדיקה אם מותר לשלוח עכשיו.

        רק חלונות פעילים נבדקים. אם יותר מחלון אחד מוצה — reset_in הוא של
        החלון שמתאפס אחרון. תקלה במאגר → חסימה (fail closed), אלא אם
        RATE_LIMIT_FAIL_OPEN מופעל.
        """
        now = clock.utcnow()
        try:
            result = await self.db.execute(
                select(RateLimitWindow).where(
                    RateLimitWindow.integration_id == integration_id,
                    RateLimitWindow.endpoint == endpoint,
                    RateLimitWindow.resets_at > now,
                )
                # השורות משתנות ב-upsert ברמת Core — לא לסמוך על ה-identity map
                .execution_options(populate_existing=True)
            )
            windows = result.scalars().all()
        except (SQLAlchemyError, OSError) as e:
            await self.db.rollback()
            logger.error(
                "Quota store unavailable during rate limit check",
                extra_data={
                    "integration_id": integration_id,
                    "endpoint": endpoint,
                    "fail_open": settings.RATE_LIMIT_FAIL_OPEN,
                    "error": str(e),
                },
                exc_info=True,
            )
            if settings.RATE_LIMIT_FAIL_OPEN:
                return RateLimitCheck(allowed=True)
            return RateLimitCheck(allowed=False, reset_in_ms=settings.RATE_LIMIT_STORE_RETRY_MS)

        exhausted = [w for w in windows if w.remaining_quota <= 0]
        if not exhausted:
            return RateLimitCheck(allowed=True)

        latest_reset = max(w.resets_at for w in exhausted)
        reset_in_ms = max(0, math.ceil((latest_reset - now).total_seconds() * 1000))
        logger.info(
            "Rate limit exhausted",
            extra_data={
                "integration_id": integration_id,
                "endpoint": endpoint,
                "windows": sorted(WindowType(w.window_type).value for w in exhausted),
                "reset_in_ms": reset_in_ms,
            },
        )
        return RateLimitCheck(allowed=False, reset_in_ms=reset_in_ms)

    # ==================== ספירה אחרי שליחה ====================

    async def track_api_call(
        self,
        integration_id: str,
        endpoint: str,
        response_headers: Optional[Mapping[str, str]] = None,
    ) -> list[RateLimitInfo]:
        """
        ספירת קריאה אחת שבוצעה בכל חלונות הקטגוריה.

        Raises:
            QuotaStoreUnavailableError: המאגר לא זמין — הקורא מחליט מה לעשות
        """
        upstream = parse_rate_limit_headers(response_headers)
        if upstream is not None and upstream.remaining == 0:
            logger.warning(
                "WhatsApp API reports exhausted quota",
                extra_data={
                    "integration_id": integration_id,
                    "endpoint": endpoint,
                    "upstream_limit": upstream.limit,
                    "upstream_reset": upstream.reset,
                },
            )

        now = clock.utcnow()
        limits = LIMITS[endpoint_category(endpoint)]
        snapshots: list[RateLimitInfo] = []
        claimed_alerts: list[tuple[RateLimitInfo, AlertLevel]] = []

        try:
            for window_type, limit_value in limits.items():
                row = await self._increment_window(integration_id, endpoint, window_type, limit_value, now)
                info = _info_from(endpoint, row)
                snapshots.append(info)

                level = await self._claim_alert_level(row, info, now)
                if level is not None:
                    claimed_alerts.append((info, level))

            await self.db.commit()
        except (SQLAlchemyError, OSError) as e:
            await self.db.rollback()
            logger.error(
                "Failed to update rate limit tracking",
                extra_data={
                    "integration_id": integration_id,
                    "endpoint": endpoint,
                    "error": str(e),
                },
                exc_info=True,
            )
            raise QuotaStoreUnavailableError(integration_id, endpoint) from e

        # פרסום רק אחרי commit — התראה לא יוצאת על ספירה שבוטלה
        for info, level in claimed_alerts:
            await self._send_alert(integration_id, info, level)

        return snapshots

    async def _increment_window(
        self,
        integration_id: str,
        endpoint: str,
        window_type: WindowType,
        limit_value: int,
        now: datetime,
    ):
        """Upsert אטומי של חלון אחד; מחזיר את השורה אחרי העדכון"""
        table = RateLimitWindow.__table__
        window_start, resets_at = window_bounds(now, window_type)

        stmt = upsert_insert(self.db, table).values(
            id=str(uuid.uuid4()),
            integration_id=integration_id,
            endpoint=endpoint,
            window_type=window_type,
            limit_value=limit_value,
            current_usage=1,
            remaining_quota=max(0, limit_value - 1),
            window_start=window_start,
            resets_at=resets_at,
            warning_threshold=settings.RATE_LIMIT_WARNING_THRESHOLD,
            critical_threshold=settings.RATE_LIMIT_CRITICAL_THRESHOLD,
            last_alert_at=None,
            last_alert_level=None,
            updated_at=now,
        )

        # חלון פעיל → הגדלה; חלון שפג → החלפה בערכים החדשים
        live = table.c.resets_at > now
        stmt = stmt.on_conflict_do_update(
            index_elements=["integration_id", "endpoint", "window_type"],
            set_={
                "current_usage": case(
                    (live, table.c.current_usage + 1),
                    else_=stmt.excluded.current_usage,
                ),
                "remaining_quota": case(
                    (live, case(
                        (table.c.remaining_quota > 0, table.c.remaining_quota - 1),
                        else_=0,
                    )),
                    else_=stmt.excluded.remaining_quota,
                ),
                "limit_value": case((live, table.c.limit_value), else_=stmt.excluded.limit_value),
                "window_start": case((live, table.c.window_start), else_=stmt.excluded.window_start),
                "resets_at": case((live, table.c.resets_at), else_=stmt.excluded.resets_at),
                "last_alert_at": case((live, table.c.last_alert_at), else_=null()),
                "last_alert_level": case((live, table.c.last_alert_level), else_=null()),
                "updated_at": now,
            },
        ).returning(
            table.c.id,
            table.c.window_type,
            table.c.limit_value,
            table.c.current_usage,
            table.c.remaining_quota,
            table.c.window_start,
            table.c.resets_at,
            table.c.warning_threshold,
            table.c.critical_threshold,
            table.c.last_alert_level,
        )

        result = await self.db.execute(stmt)
        return result.one()

    async def _claim_alert_level(self, row, info: RateLimitInfo, now: datetime) -> Optional[AlertLevel]:
        """
        תפיסה אטומית של רמת ההתראה לחלון.

        warning נתפס רק מ-NULL; critical נתפס מ-NULL או מ-warning.
        קפיצה ישירה מעל הסף הקריטי → critical בלבד.
        """
        fraction = info.usage_fraction
        if fraction >= row.critical_threshold:
            level = AlertLevel.CRITICAL
            claimable = or_(
                RateLimitWindow.last_alert_level.is_(None),
                RateLimitWindow.last_alert_level == AlertLevel.WARNING,
            )
        elif fraction >= row.warning_threshold:
            level = AlertLevel.WARNING
            claimable = RateLimitWindow.last_alert_level.is_(None)
        else:
            return None

        result = await self.db.execute(
            update(RateLimitWindow)
            .where(
                RateLimitWindow.id == row.id,
                RateLimitWindow.resets_at == row.resets_at,
                claimable,
            )
            .values(last_alert_level=level, last_alert_at=now)
            .execution_options(synchronize_session=False)
        )
        return level if result.rowcount == 1 else None

    async def _send_alert(self, integration_id: str, info: RateLimitInfo, level: AlertLevel) -> None:
        logger.warning(
            f"Rate limit {level.value} for {info.endpoint} ({info.window_type.value}): "
            f"{round(info.usage_fraction * 100)}% used",
            extra_data={
                "integration_id": integration_id,
                "endpoint": info.endpoint,
                "window_type": info.window_type.value,
                "current_usage": info.current_usage,
                "limit_value": info.limit_value,
                "alert_level": level.value,
            },
        )
        await publish_rate_limit_alert(
            integration_id=integration_id,
            endpoint=info.endpoint,
            window_type=info.window_type.value,
            usage_fraction=info.usage_fraction,
            critical=level == AlertLevel.CRITICAL,
            publisher=self.alert_publisher,
        )

    # ==================== סטטוס וניקוי ====================

    async def get_rate_limit_status(self, integration_id: str) -> list[RateLimitInfo]:
        """כל החלונות הפעילים של האינטגרציה, לפי endpoint ואז סוג חלון"""
        now = clock.utcnow()
        try:
            result = await self.db.execute(
                select(RateLimitWindow)
                .where(
                    RateLimitWindow.integration_id == integration_id,
                    RateLimitWindow.resets_at > now,
                )
                .order_by(RateLimitWindow.endpoint)
                .execution_options(populate_existing=True)
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise QuotaStoreUnavailableError(integration_id, "*") from e
        windows = [_info_from(w.endpoint, w) for w in result.scalars().all()]
        # סדר סוג החלון לפי אורכו — לא לפי מחרוזת / enum של ה-DB
        return sorted(windows, key=lambda w: (w.endpoint, _WINDOW_LENGTH[w.window_type]))

    @log_async_operation("rate_limit_cleanup")
    async def cleanup_old_records(self, retention_hours: Optional[int] = None) -> int:
        """מחיקת חלונות שהתאפסו לפני יותר מ-retention_hours; מחזיר כמות שנמחקה"""
        hours = retention_hours if retention_hours is not None else settings.RATE_LIMIT_RETENTION_HOURS
        horizon = clock.utcnow() - timedelta(hours=hours)
        result = await self.db.execute(
            delete(RateLimitWindow)
            .where(RateLimitWindow.resets_at < horizon)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount or 0
