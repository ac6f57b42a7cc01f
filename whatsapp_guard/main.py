"""
WhatsApp Guard - Main FastAPI Application

שכבת הרשאות, מכסות ולוג אבטחה לאינטגרציות WhatsApp Business.
ה-API כאן הוא אדמיני בלבד; זרימת ההודעות עצמה רצה דרך MessageGate.
"""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from whatsapp_guard.core.config import settings
from whatsapp_guard.core.logging import setup_logging, get_logger
from whatsapp_guard.core.middleware import setup_middleware, setup_exception_handlers
from whatsapp_guard.core.redis_client import close_redis
from whatsapp_guard.api.routes import router as api_router
from whatsapp_guard.db.database import engine, Base
from whatsapp_guard.domain.services.health_service import check_readiness

# לוגים לפני כל import שיוצר logger
setup_logging(
    level="DEBUG" if settings.DEBUG else "INFO",
    json_format=not settings.DEBUG,
    app_name=settings.APP_NAME
)

logger = get_logger(__name__)


def _parse_allowed_origins(raw: str) -> list[str]:
    """ALLOWED_ORIGINS מופרד בפסיקים -> רשימה בלי ריקים"""
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """יצירת טבלאות בעלייה; סגירת Redis וה-engine בירידה"""
    logger.info("Starting application", extra_data={"app_name": settings.APP_NAME})
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    logger.info("Shutting down application")
    await close_redis()
    await engine.dispose()


_OPENAPI_TAGS = [
    {"name": "permissions", "description": "תפקידים, הרשאות ומשתמשים ניתנים למיפוי לכל אינטגרציה."},
    {"name": "rate-limits", "description": "חלונות מכסה פעילים מול WhatsApp Cloud API והיסטוריית התראות."},
    {"name": "security", "description": "לוג אירועי אבטחה, דוחות, בדיקת חסימה וטיפול באירועים."},
    {"name": "Health", "description": "Liveness / readiness probes."},
]


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description=(
        "הרשאות, מכסות וביקורת אבטחה לאינטגרציות WhatsApp Business. "
        "כל ה-endpoints תחת /api דורשים header: X-Admin-API-Key."
    ),
    openapi_tags=_OPENAPI_TAGS,
    lifespan=lifespan,
)

setup_middleware(app)
setup_exception_handlers(app)

allowed_origins = _parse_allowed_origins(settings.ALLOWED_ORIGINS)

if not allowed_origins and settings.DEBUG:
    allowed_origins = [
        "http://localhost",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

if allowed_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "X-Admin-API-Key", "X-Correlation-ID"],
    )

app.include_router(api_router, prefix="/api")


@app.get(
    "/health",
    summary="Liveness",
    description="בדיקה קלה שהתהליך חי ומגיב. לא בודק תלויות חיצוניות.",
    tags=["Health"],
)
async def health_check() -> dict[str, str]:
    """התהליך עונה; תלויות לא נבדקות"""
    return {"status": "healthy"}


@app.get(
    "/health/ready",
    summary="Readiness",
    description=(
        "בדיקה של DB, Redis ו-Celery broker. "
        "מחזיר status=healthy אם הכל תקין, או status=degraded (503) עם פירוט."
    ),
    tags=["Health"],
)
async def readiness_check() -> JSONResponse:
    """DB, Redis ו-broker; 503 כשאחד מהם לא זמין"""
    result = await check_readiness()
    return JSONResponse(content=result, status_code=200 if result["status"] == "healthy" else 503)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "whatsapp_guard.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
