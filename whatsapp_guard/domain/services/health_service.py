"""
שירות בדיקת בריאות — בדיקות תלויות (DB, Redis, Celery broker).

- liveness: האם התהליך חי (ללא בדיקת תלויות)
- readiness: מאגר המכסות והלוג (DB), ערוץ ההתראות (Redis) ו-broker של jobs הניקוי
"""
import asyncio
from typing import Any

import redis.asyncio as aioredis
from sqlalchemy import text

from whatsapp_guard.core.config import settings
from whatsapp_guard.core.logging import get_logger
from whatsapp_guard.core.redis_client import ping_redis
from whatsapp_guard.db.database import AsyncSessionLocal

logger = get_logger(__name__)

_STATUS_HEALTHY = "healthy"
_STATUS_DEGRADED = "degraded"

_CHECK_OK = "ok"

# הודעות שגיאה מסוננות — ללא חשיפת פרטי תשתית
_ERROR_DB = "error: db_unavailable"
_ERROR_REDIS = "error: redis_unavailable"
_ERROR_CELERY = "error: celery_unavailable"


async def _check_db() -> str:
    """בדיקת חיבור למסד הנתונים באמצעות שאילתה קלה."""
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
        return _CHECK_OK
    except Exception as e:
        logger.warning("בדיקת בריאות DB נכשלה", extra_data={"error": str(e)})
        return _ERROR_DB


async def _check_redis() -> str:
    return _CHECK_OK if await ping_redis() else _ERROR_REDIS


async def _check_celery() -> str:
    """בדיקת זמינות ה-broker של Celery (Redis)."""
    try:
        client = aioredis.from_url(settings.CELERY_BROKER_URL, decode_responses=True)
        try:
            await client.ping()
            return _CHECK_OK
        finally:
            await client.aclose()
    except Exception as e:
        logger.warning("בדיקת בריאות Celery נכשלה", extra_data={"error": str(e)})
        return _ERROR_CELERY


async def check_readiness() -> dict[str, Any]:
    """
    בדיקת מוכנות מקיפה.

    - status: "healthy" אם הכל תקין, "degraded" אם יש בעיה באחת התלויות
    - db / redis / celery: "ok" או "error: ..."

    מאגר המכסות נכשל סגור — DB לא זמין פירושו שכל השליחות נחסמות.
    """
    db, redis, celery = await asyncio.gather(_check_db(), _check_redis(), _check_celery())
    checks = {"db": db, "redis": redis, "celery": celery}

    all_ok = all(v == _CHECK_OK for v in checks.values())
    if not all_ok:
        logger.warning("בדיקת מוכנות — המערכת במצב degraded", extra_data=checks)

    return {"status": _STATUS_HEALTHY if all_ok else _STATUS_DEGRADED, **checks}
