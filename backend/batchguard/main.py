"""
batchguard API - FastAPI Backend

Runs the daily prompt batch exactly once per business day and keeps it
alive through guardian checks, manual recovery and cron secret sync.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import structlog

from batchguard.routers import scheduler
from batchguard.infrastructure.config import get_settings
from batchguard.infrastructure.exceptions import register_exception_handlers

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.dev.ConsoleRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting batchguard API")
    settings = get_settings()
    logger.info("Configuration loaded", timezone=settings.business_timezone)

    from batchguard.infrastructure.database import close_database, create_tables, init_database
    await init_database(settings.database_url)
    if settings.auto_create_tables:
        await create_tables()

    from batchguard.infrastructure.startup import run_startup_checks
    checks_passed = await run_startup_checks()
    if not checks_passed:
        logger.error("CRITICAL: Startup checks failed, scheduler will not start")

    if settings.sync_cron_secret_on_startup and settings.cron_secret:
        try:
            from batchguard.services.cron_secret_service import get_cron_secret_service
            await get_cron_secret_service().sync()
        except Exception as e:
            logger.warning("Failed to sync cron secret", error=str(e))

    from batchguard.services.scheduler_service import start_scheduler, stop_scheduler
    if settings.scheduler_enabled and checks_passed:
        try:
            await start_scheduler()
            logger.info("Batch scheduler started")
        except Exception as e:
            logger.warning("Failed to start scheduler", error=str(e))

    yield

    try:
        await stop_scheduler()
        logger.info("Scheduler stopped")
    except Exception as e:
        logger.warning("Failed to stop scheduler", error=str(e))

    from batchguard.infrastructure.llm_providers import get_provider_registry
    for provider in get_provider_registry().values():
        await provider.aclose()

    await close_database()
    logger.info("Shutting down batchguard API")


app = FastAPI(
    title="batchguard API",
    description="Daily batch scheduling, idempotency and recovery for prompt fan-outs",
    version="1.0.0",
    lifespan=lifespan,
)

# Register global exception handlers
register_exception_handlers(app)

# CORS: browser dashboards and preflight for every endpoint
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["authorization", "content-type", "x-cron-secret"],
)

# Include routers
app.include_router(scheduler.router, prefix="/api/scheduler", tags=["Scheduler"])


@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "ok",
        "service": "batchguard API",
        "version": "1.0.0"
    }


@app.get("/health")
async def health():
    """Detailed health check."""
    from batchguard.services.scheduler_service import get_scheduler_service
    scheduler_status = get_scheduler_service().get_status()

    return {
        "status": "healthy",
        "components": {
            "api": "ok",
            "scheduler": "ok" if scheduler_status["running"] else "stopped",
            "jobs": scheduler_status["job_count"],
        }
    }


@app.get("/health/live")
async def health_live():
    """Liveness probe - process is running."""
    return {"alive": True}


@app.get("/health/ready")
async def health_ready():
    """
    Readiness probe - checks critical dependencies.
    Returns 503 if the store is unreachable.
    """
    from sqlalchemy import text
    from batchguard.infrastructure.database import get_session
    from batchguard.services.scheduler_service import get_scheduler_service

    checks = {}
    is_ready = True

    try:
        async with get_session() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception:
        checks["database"] = "unavailable"
        is_ready = False

    scheduler_service = get_scheduler_service()
    checks["scheduler"] = "ok" if scheduler_service.get_status()["running"] else "stopped"

    return JSONResponse(
        status_code=200 if is_ready else 503,
        content={
            "ready": is_ready,
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )
