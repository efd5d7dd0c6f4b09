"""
FastAPI entrypoint: SMS webhook, TeleBirr callback, admin and health routes.

Run with ``uvicorn sms_bot.main:app``. Celery workers import the domain
services directly and never load this module.
"""
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text

from sms_bot.core.config import settings
from sms_bot.core.logging import setup_logging, get_logger
from sms_bot.core.middleware import setup_middleware, setup_exception_handlers
from sms_bot.core.redis_client import close_redis, get_redis
from sms_bot.api.routes import router as api_router
from sms_bot.db.database import engine, init_models

setup_logging(level="DEBUG" if settings.DEBUG else "INFO", json_format=not settings.DEBUG)

logger = get_logger(__name__)

app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Bus ticket booking over SMS in English and Amharic.",
    openapi_tags=[
        {"name": "Webhooks", "description": "Inbound SMS from the gateway."},
        {"name": "Payments", "description": "TeleBirr payment callbacks."},
        {"name": "SMS Admin", "description": "Manual sends, statistics and circuit breaker status."},
        {"name": "Health", "description": "Liveness and readiness probes."},
    ],
)

setup_middleware(app)
setup_exception_handlers(app)
app.include_router(api_router, prefix="/api")


@app.on_event("startup")
async def on_startup() -> None:
    logger.info("SMS bot starting", extra_data={"app_name": settings.APP_NAME})
    await init_models()
    if settings.sms_gateway_demo_mode:
        logger.warning("SMS gateway not configured, replies are logged instead of sent")
    if settings.telebirr_demo_mode:
        logger.warning("TeleBirr in demo mode, payments are simulated")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    logger.info("SMS bot stopping")
    await close_redis()
    await engine.dispose()


@app.get("/health", summary="Liveness probe", tags=["Health"])
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


@app.get("/health/ready", summary="Readiness probe (database and Redis)", tags=["Health"])
async def readiness_check():
    """503 with per-dependency detail when the database or Redis is unreachable"""
    checks = {"db": "ok", "redis": "ok"}
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        checks["db"] = f"error: {type(e).__name__}"

    try:
        await (await get_redis()).ping()
    except Exception as e:
        checks["redis"] = f"error: {type(e).__name__}"

    healthy = all(value == "ok" for value in checks.values())
    return JSONResponse(
        content={"status": "healthy" if healthy else "degraded", **checks},
        status_code=200 if healthy else 503,
    )
