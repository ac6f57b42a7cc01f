"""
Celery Tasks — ניקוי תקופתי של מאגר המכסות ולוג האבטחה

השירותים עצמם לא מתזמנים דבר; beat הוא הקורא החיצוני.
"""
import asyncio
from contextlib import contextmanager
from typing import Optional

from whatsapp_guard.workers.celery_app import celery_app
from whatsapp_guard.db.database import get_task_session
from whatsapp_guard.domain.services.rate_limit_service import RateLimitService
from whatsapp_guard.domain.services.security_audit_service import SecurityAuditService
from whatsapp_guard.core.logging import get_logger, set_correlation_id
from whatsapp_guard.core.redis_client import close_redis

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # סגירת Redis singleton לפני סגירת ה-loop — ה-client קשור ל-loop הזה
            loop.run_until_complete(close_redis())
        except Exception as e:
            logger.warning(
                "כשלון בסגירת Redis בסיום task",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


async def _cleanup_rate_limit_windows(retention_hours: Optional[int] = None) -> dict:
    async with get_task_session() as db:
        deleted = await RateLimitService(db).cleanup_old_records(retention_hours)
    logger.info(
        "Cleaned up expired rate limit windows",
        extra_data={"deleted": deleted, "retention_hours": retention_hours},
    )
    return {"deleted": deleted}


async def _cleanup_security_events(retention_days: Optional[int] = None) -> dict:
    async with get_task_session() as db:
        deleted = await SecurityAuditService(db).cleanup_old_events(retention_days)
    logger.info(
        "Cleaned up old security events",
        extra_data={"deleted": deleted, "retention_days": retention_days},
    )
    return {"deleted": deleted}


@celery_app.task(name="whatsapp_guard.workers.tasks.cleanup_rate_limit_windows")
def cleanup_rate_limit_windows(retention_hours: Optional[int] = None):
    """מחיקת חלונות מכסה שפגו (ברירת מחדל: RATE_LIMIT_RETENTION_HOURS)"""
    return run_async(_cleanup_rate_limit_windows(retention_hours))


@celery_app.task(name="whatsapp_guard.workers.tasks.cleanup_security_events")
def cleanup_security_events(retention_days: Optional[int] = None):
    """מחיקת אירועי אבטחה ישנים (ברירת מחדל: SECURITY_EVENT_RETENTION_DAYS)"""
    return run_async(_cleanup_security_events(retention_days))
