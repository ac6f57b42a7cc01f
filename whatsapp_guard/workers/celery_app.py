"""
Celery Application Configuration

jobs הניקוי התקופתיים של מאגר המכסות ולוג האבטחה.
"""
from celery import Celery
from celery.schedules import crontab

from whatsapp_guard.core.config import settings

celery_app = Celery(
    "whatsapp_guard",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["whatsapp_guard.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # חלונות מכסה שהתאפסו לפני יותר מ-RATE_LIMIT_RETENTION_HOURS
    "cleanup-rate-limit-windows-hourly": {
        "task": "whatsapp_guard.workers.tasks.cleanup_rate_limit_windows",
        "schedule": 3600.0,  # שעה
    },
    # אירועי אבטחה ישנים מ-SECURITY_EVENT_RETENTION_DAYS — כל לילה ב-03:15 UTC
    "cleanup-security-events-daily": {
        "task": "whatsapp_guard.workers.tasks.cleanup_security_events",
        "schedule": crontab(hour="3", minute="15"),
    },
}
