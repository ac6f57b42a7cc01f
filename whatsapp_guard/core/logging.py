"""
Structured Logging Infrastructure

JSON logs with correlation IDs so that a single inbound webhook can be followed
through the permission check, quota accounting and security audit.
מספרי טלפון בשדות extra מוסתרים לפני הכתיבה ללוג.
"""
import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from typing import Any

from whatsapp_guard.core.validation import PhoneNumberValidator

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")

# שם השירות — נקבע ב-setup_logging ומוזרק לכל רשומה
_service_name = "whatsapp-guard"

# שדות extra שמכילים מספר טלפון — מוסתרים תמיד
_PHONE_FIELDS = frozenset({"phone_number", "target_phone_number", "from_phone_number"})


def _redact(extra: dict[str, Any]) -> dict[str, Any]:
    return {
        key: PhoneNumberValidator.mask(value) if key in _PHONE_FIELDS else value
        for key, value in extra.items()
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per line: service, level, logger, correlation id, extra"""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "service": _service_name,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        cid = correlation_id_var.get()
        if cid:
            entry["correlation_id"] = cid
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            entry["extra"] = _redact(extra_data)

        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger(logging.Logger):
    """
    Logger whose level methods accept ``extra_data``.

        logger.warning("Quota exhausted", extra_data={"integration_id": ...})
    """

    def _log(
        self,
        level: int,
        msg: object,
        args: Any,
        exc_info: Any = None,
        extra: dict[str, Any] | None = None,
        stack_info: bool = False,
        stacklevel: int = 1,
        extra_data: dict[str, Any] | None = None,
    ) -> None:
        if extra_data:
            extra = {**(extra or {}), "extra_data": extra_data}
        # +1: המסגרת הזו לא תיחשב כמקור הקריאה
        super()._log(
            level, msg, args,
            exc_info=exc_info, extra=extra, stack_info=stack_info, stacklevel=stacklevel + 1,
        )


logging.setLoggerClass(StructuredLogger)


class CorrelationIdFilter(logging.Filter):
    """Injects correlation_id for the plain-text development format"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    app_name: str = "whatsapp-guard"
) -> None:
    """
    Configure application logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: JSON lines for production, plain text for local runs
        app_name: Service name written into every JSON record
    """
    global _service_name
    _service_name = app_name
    numeric_level = getattr(logging, level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | [%(correlation_id)s] | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        handler.addFilter(CorrelationIdFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)

    # ספריות צד שלישי רועשות
    for noisy, noisy_level in (
        ("sqlalchemy.engine", logging.WARNING),
        ("httpx", logging.WARNING),
        ("celery", logging.INFO),
    ):
        logging.getLogger(noisy).setLevel(noisy_level)


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for current context (generated if not given)"""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    """Current correlation ID; generated and stored on first use"""
    return correlation_id_var.get() or set_correlation_id()


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore


def log_async_operation(operation_name: str):
    """
    Decorator: log start / completion / failure of an async operation with
    its duration. Failures are re-raised.
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            started = time.monotonic()
            logger.debug(
                f"Starting {operation_name}",
                extra_data={"operation": operation_name, "status": "started"}
            )

            try:
                result = await func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {operation_name}: {e}",
                    extra_data={
                        "operation": operation_name,
                        "status": "failed",
                        "duration_seconds": round(time.monotonic() - started, 4),
                        "error": str(e),
                    },
                    exc_info=True
                )
                raise

            logger.info(
                f"Completed {operation_name}",
                extra_data={
                    "operation": operation_name,
                    "status": "completed",
                    "duration_seconds": round(time.monotonic() - started, 4),
                }
            )
            return result

        return wrapper
    return decorator
