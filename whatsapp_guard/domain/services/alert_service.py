"""
Alert Service — fan-out של התראות מכסה ואבטחה

מפרסם אירועים ל-Redis Pub/Sub ושומר היסטוריית התראות ב-Redis לכל אינטגרציה.
ערוצי המסירה עצמם (מייל / Slack / pager) מאזינים לערוץ מחוץ לשירות הזה.

סוגי התראות:
- rate_limit_warning: חלון מכסה חצה את סף האזהרה
- rate_limit_critical: חלון מכסה חצה את הסף הקריטי
- security_critical: נרשם אירוע אבטחה בחומרה critical
"""
import enum
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from whatsapp_guard.core.config import settings
from whatsapp_guard.core.logging import get_logger
from whatsapp_guard.core.redis_client import get_redis

logger = get_logger(__name__)

# ערוץ Redis Pub/Sub לכל אינטגרציה
_CHANNEL_PREFIX = "integration_alerts"
# מפתח Redis להיסטוריית התראות — רשימה מוגבלת
_HISTORY_PREFIX = "integration_alert_history"
# אירועים שקרו לפני שזוהתה אינטגרציה
_GLOBAL_SCOPE = "global"


class AlertType(str, enum.Enum):
    """סוגי התראות"""
    RATE_LIMIT_WARNING = "rate_limit_warning"
    RATE_LIMIT_CRITICAL = "rate_limit_critical"
    SECURITY_CRITICAL = "security_critical"


_ALERT_DESCRIPTIONS: dict[AlertType, str] = {
    AlertType.RATE_LIMIT_WARNING: "שימוש במכסת WhatsApp מתקרב לגבול",
    AlertType.RATE_LIMIT_CRITICAL: "מכסת WhatsApp כמעט נוצלה במלואה",
    AlertType.SECURITY_CRITICAL: "אירוע אבטחה קריטי",
}

# החתימה של publish_alert — שירותים מקבלים אותה בהזרקה
AlertPublisher = Callable[[Optional[str], AlertType, dict[str, Any]], Awaitable[None]]


def channel_name(integration_id: Optional[str]) -> str:
    """שם ערוץ Pub/Sub לאינטגרציה"""
    return f"{_CHANNEL_PREFIX}:{integration_id or _GLOBAL_SCOPE}"


def _history_key(integration_id: Optional[str]) -> str:
    return f"{_HISTORY_PREFIX}:{integration_id or _GLOBAL_SCOPE}"


async def publish_alert(
    integration_id: Optional[str],
    alert_type: AlertType,
    data: dict[str, Any],
    title: Optional[str] = None,
) -> None:
    """פרסום התראה ל-Redis Pub/Sub + שמירה בהיסטוריה.

    כשלון בפרסום נרשם ללוג ולא נזרק — ההתראה היא תופעת לוואי של פעולה
    שכבר בוצעה (ספירת קריאה / רישום אירוע).

    Args:
        integration_id: מזהה האינטגרציה (None — אירוע גלובלי)
        alert_type: סוג ההתראה
        data: נתוני ההתראה (משתנים לפי סוג)
        title: כותרת מותאמת (ברירת מחדל מתוך _ALERT_DESCRIPTIONS)
    """
    try:
        payload = {
            "type": alert_type.value,
            "title": title or _ALERT_DESCRIPTIONS.get(alert_type, alert_type.value),
            "data": data,
            "integration_id": integration_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        message = json.dumps(payload, ensure_ascii=False, default=str)

        redis = await get_redis()
        await redis.publish(channel_name(integration_id), message)
        history_key = _history_key(integration_id)
        await redis.lpush(history_key, message)
        await redis.ltrim(history_key, 0, settings.ALERT_HISTORY_SIZE - 1)

        logger.info(
            "התראה פורסמה",
            extra_data={
                "integration_id": integration_id,
                "alert_type": alert_type.value,
            },
        )
    except Exception as e:
        logger.error(
            "כשלון בפרסום התראה",
            extra_data={
                "integration_id": integration_id,
                "alert_type": alert_type.value,
                "error": str(e),
            },
            exc_info=True,
        )


async def get_alert_history(
    integration_id: str,
    limit: int = 50,
) -> list[dict[str, Any]]:
    """שליפת היסטוריית התראות אחרונות לאינטגרציה, מהחדשה לישנה."""
    try:
        redis = await get_redis()
        raw_items = await redis.lrange(_history_key(integration_id), 0, limit - 1)
        return [json.loads(item) for item in raw_items]
    except Exception as e:
        logger.error(
            "כשלון בשליפת היסטוריית התראות",
            extra_data={"integration_id": integration_id, "error": str(e)},
            exc_info=True,
        )
        return []


# ==================== פונקציות עזר לפרסום התראות ספציפיות ====================


async def publish_rate_limit_alert(
    integration_id: str,
    endpoint: str,
    window_type: str,
    usage_fraction: float,
    critical: bool,
    publisher: AlertPublisher = publish_alert,
) -> None:
    """פרסום התראת מכסה (warning / critical)"""
    await publisher(
        integration_id,
        AlertType.RATE_LIMIT_CRITICAL if critical else AlertType.RATE_LIMIT_WARNING,
        {
            "endpoint": endpoint,
            "window_type": window_type,
            "usage_percent": round(usage_fraction * 100, 1),
        },
    )


async def publish_security_alert(
    integration_id: Optional[str],
    event_id: str,
    event_type: str,
    details: dict[str, Any],
    publisher: AlertPublisher = publish_alert,
) -> None:
    """פרסום התראה על אירוע אבטחה קריטי"""
    await publisher(
        integration_id,
        AlertType.SECURITY_CRITICAL,
        {
            "event_id": event_id,
            "event_type": event_type,
            "details": details,
        },
    )
