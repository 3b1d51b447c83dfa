"""FastAPI application entrypoint: lifespan, routers, middleware."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy import text

from soilwatch.config import get_settings
from soilwatch.database import async_session_factory, engine
from soilwatch.middleware.logging import RequestLoggingMiddleware, configure_structured_logging
from soilwatch.middleware.rate_limit import RateLimitMiddleware
from soilwatch.routes import alerts, readings
from soilwatch.services.alert_service import build_alert_pipeline
from soilwatch.services.reading_listener import ReadingSubscriber
from soilwatch.services.sms_gateway import SemaphoreSmsGateway

logger = structlog.get_logger("soilwatch")

SERVICE_NAME = "soilwatch"
SERVICE_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application startup / shutdown lifecycle.

    Startup:
      1. Initialize structured logging
      2. Verify the database connection
      3. Connect to Redis
      4. Build the alert pipeline and start the reading subscription

    Shutdown:
      1. Stop the reading subscription
      2. Close the SMS gateway client and the Redis connection pool
      3. Dispose SQLAlchemy engine
    """
    configure_structured_logging()
    settings = get_settings()
    logger.info(
        "soilwatch_starting",
        log_level=settings.log_level,
        suppression_window_minutes=settings.alert_suppression_window_minutes,
    )

    redis: Redis | None = None
    subscriber: ReadingSubscriber | None = None
    gateway = SemaphoreSmsGateway(
        settings.sms_api_key,
        settings.sms_api_url,
        sender_name=settings.sms_sender_name,
        timeout_seconds=settings.sms_timeout_seconds,
    )
    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))

        redis = Redis.from_url(settings.redis_url, decode_responses=True)
        await redis.ping()
        app.state.redis = redis

        pipeline = build_alert_pipeline(
            settings,
            async_session_factory,
            redis_client=redis,
            gateway=gateway,
        )
        app.state.alert_pipeline = pipeline

        if settings.reading_subscription_enabled:
            subscriber = ReadingSubscriber(redis, settings.reading_subscription_channel, pipeline)
            subscriber.start()
        app.state.reading_subscriber = subscriber
    except Exception as exc:
        logger.exception("startup_failure", error=str(exc))
        raise

    yield

    logger.info("soilwatch_shutting_down")
    if subscriber is not None:
        await subscriber.stop()
    await gateway.aclose()
    if redis is not None:
        await redis.aclose()
    await engine.dispose()


app = FastAPI(
    title="SoilWatch API",
    description=(
        "Soil sensor threshold alerting: evaluates readings against the "
        "growth-stage requirements of the bound plant, suppresses repeats "
        "and notifies farm staff by SMS."
    ),
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# ── Middleware ──────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RateLimitMiddleware)
app.add_middleware(RequestLoggingMiddleware)


async def _run_readiness_checks(app: FastAPI) -> dict[str, Any]:
    checks: dict[str, Any] = {}

    try:
        async with engine.connect() as connection:
            await connection.execute(text("SELECT 1"))
        checks["database"] = {"ok": True}
    except Exception as exc:
        checks["database"] = {"ok": False, "error": str(exc)}

    redis_client = getattr(app.state, "redis", None)
    if redis_client is None:
        checks["redis"] = {"ok": False, "error": "not connected"}
    else:
        try:
            await redis_client.ping()
            checks["redis"] = {"ok": True}
        except Exception as exc:
            checks["redis"] = {"ok": False, "error": str(exc)}

    checks["alert_pipeline"] = {"ok": getattr(app.state, "alert_pipeline", None) is not None}
    return checks


# ── Health check ────────────────────────────────────────────────────────────
@app.get("/health", tags=["system"])
async def health_check() -> dict[str, str]:
    """Liveness only; does not touch dependencies."""
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
    }


@app.get("/health/ready", tags=["system"])
async def readiness_check() -> JSONResponse:
    checks = await _run_readiness_checks(app)
    ready = all(check["ok"] for check in checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "degraded", "checks": checks},
    )


# ── Router registration ────────────────────────────────────────────────────
app.include_router(readings.router, prefix="/api/v1")
app.include_router(alerts.router, prefix="/api/v1")
