"""
FastAPI middleware and exception handlers.

כל בקשה מקבלת correlation id (מה-header או חדש), נרשמת בלוג עם path ממוסך,
וכל חריגה הופכת למעטפת {"error": {...}} אחידה.
"""
import re
import time
from typing import Any, Callable

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from whatsapp_guard.core.exceptions import AppException, ErrorCode
from whatsapp_guard.core.logging import get_correlation_id, get_logger, set_correlation_id

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"

# probes של orchestrator — רק ב-debug כדי לא להציף את הלוג
_QUIET_PATHS = frozenset({"/health", "/health/ready"})

# מספרי טלפון ב-path (למשל /security/blocked/+15551230000) — מסתירים 4 ספרות אחרונות
_PHONE_IN_PATH_RE = re.compile(r"(%2B|\+)?(\d{3,11})\d{4}(?=/|$)")


def mask_path_pii(path: str) -> str:
    """מיסוך מספרי טלפון ב-URL path לפרטיות"""
    return _PHONE_IN_PATH_RE.sub(lambda m: f"{m.group(1) or ''}{m.group(2)}****", path)


def _request_context(request: Request) -> dict[str, Any]:
    context: dict[str, Any] = {
        "method": request.method,
        "path": mask_path_pii(request.url.path),
    }
    integration_id = request.path_params.get("integration_id")
    if integration_id is not None:
        context["integration_id"] = str(integration_id)
    return context


def _elapsed(started: float) -> float:
    return round(time.monotonic() - started, 4)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reuses the caller's X-Correlation-ID or generates one, and echoes it back"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = set_correlation_id(request.headers.get(CORRELATION_HEADER))
        request.state.correlation_id = correlation_id

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request: method, masked path, status and duration"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.monotonic()
        context = _request_context(request)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                f"Request failed: {context['method']} {context['path']}",
                extra_data={**context, "duration_seconds": _elapsed(started), "error": str(e)},
                exc_info=True
            )
            raise

        if request.url.path in _QUIET_PATHS and response.status_code < 400:
            log = logger.debug
        elif response.status_code < 400:
            log = logger.info
        else:
            log = logger.warning
        log(
            f"{context['method']} {context['path']} -> {response.status_code}",
            extra_data={
                **context,
                "status_code": response.status_code,
                "duration_seconds": _elapsed(started),
            }
        )
        return response


def _error_response(status_code: int, body: dict[str, Any]) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body,
        headers={CORRELATION_HEADER: get_correlation_id()}
    )


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Domain errors: logged at warning, returned with their own status and code"""
    logger.warning(
        f"{exc.error_code.value}: {exc.message}",
        extra_data={
            **_request_context(request),
            "error_code": exc.error_code.value,
            "details": exc.details,
        }
    )
    return _error_response(exc.status_code, exc.to_dict())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected: full traceback in the log, opaque ERR_1000 to the caller"""
    logger.error(
        f"Unhandled {type(exc).__name__}",
        extra_data={**_request_context(request), "message": str(exc)},
        exc_info=exc
    )
    return _error_response(500, {
        "error": {
            "code": ErrorCode.INTERNAL_ERROR.value,
            "message": "An unexpected error occurred",
            "details": {},
        }
    })


def setup_middleware(app: FastAPI) -> None:
    # האחרון שנוסף הוא ה-outermost: CorrelationId → RequestLogging → app
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)


def setup_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
