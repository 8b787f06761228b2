"""
Performance Dashboard - Main Application Entry Point

FastAPI application serving chart-ready aggregations of SDK benchmark runs.
"""

from contextlib import asynccontextmanager
from typing import Any, Optional, cast

import asyncio
import logging

import asyncpg
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from perfdash.config import settings

# Configure logging
# Use uvicorn's colored "LEVEL:" format for ALL loggers so app and server
# output line up.
from uvicorn.logging import DefaultFormatter

console_handler = logging.StreamHandler()
console_handler.setFormatter(DefaultFormatter(fmt=settings.LOG_FORMAT, use_colors=True))

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    handlers=[console_handler],
)

# asyncpg logs every connection reset at INFO.
logging.getLogger("asyncpg").setLevel(logging.WARNING)


class EndpointFilter(logging.Filter):
    """Filter out high-frequency endpoints from access logs."""

    def filter(self, record: logging.LogRecord) -> bool:
        msg = record.getMessage()
        if "/health" in msg:
            return False
        return True


logging.getLogger("uvicorn.access").addFilter(EndpointFilter())

logger = logging.getLogger(__name__)


async def _log_pool_stats_forever() -> None:
    """Periodically log pool size and idle counts."""
    from perfdash.connectors import postgres_pool

    while True:
        await asyncio.sleep(settings.POOL_STATS_INTERVAL_SECONDS)
        stats = await postgres_pool.get_default_pool().get_pool_stats()
        logger.info("📊 Postgres pool stats: %s", stats)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager - handles startup and shutdown events.
    """
    # Startup
    logger.info("🚀 Performance dashboard starting up...")
    logger.info(
        f"🔧 Environment: {'Development' if settings.APP_DEBUG else 'Production'} "
        f"(pool max {settings.pool_max_size})"
    )

    if settings.POSTGRES_CONNECT_ON_STARTUP:
        try:
            from perfdash.core.service_provider import get_dashboard_service

            logger.info("🐘 Initializing Postgres connection pool...")
            await get_dashboard_service()
            logger.info("✅ Postgres pool initialized")
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"❌ Failed to initialize Postgres pool: {e}")
            logger.warning("⚠️  Application starting without database connections")
    else:
        logger.info(
            "🐘 Not connecting on startup "
            "(set POSTGRES_CONNECT_ON_STARTUP=true to initialize at boot)"
        )

    stats_task: Optional[asyncio.Task] = None
    if settings.LOG_POOL_STATS:
        stats_task = asyncio.create_task(_log_pool_stats_forever())

    yield

    # Shutdown
    logger.info("🛑 Performance dashboard shutting down...")

    if stats_task is not None:
        stats_task.cancel()

    from perfdash.connectors import postgres_pool
    from perfdash.core.service_provider import close_dashboard_service

    logger.info("Closing database connection pools...")
    await close_dashboard_service()
    await postgres_pool.close_all_pools()
    logger.info("✅ All connection pools closed")


# Initialize FastAPI application
app = FastAPI(
    title="Performance Dashboard",
    description="Query service for SDK performance runs: chart-ready aggregations over Postgres",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
)

# Configure CORS for local development
if settings.APP_DEBUG:
    app.add_middleware(
        cast(Any, CORSMiddleware),
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.info(f"🔓 CORS enabled for origins: {settings.CORS_ORIGINS}")


# ============================================================================
# Health Check
# ============================================================================


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancers.

    Returns:
        dict: Service health status and version information
    """
    from perfdash.connectors import postgres_pool

    health_status: dict[str, Any] = {
        "status": "healthy",
        "service": "perfdash",
        "version": "0.1.0",
        "environment": "development" if settings.APP_DEBUG else "production",
        "checks": {},
    }

    pg_pool = postgres_pool.get_default_pool()
    stats = await pg_pool.get_pool_stats()
    if stats["initialized"]:
        is_healthy = await pg_pool.is_healthy()
        health_status["checks"]["postgres"] = {
            "status": "healthy" if is_healthy else "unhealthy",
            "pool": stats,
        }
        if not is_healthy:
            health_status["status"] = "degraded"
    else:
        health_status["checks"]["postgres"] = {"status": "not_initialized", "pool": stats}

    return health_status


# ============================================================================
# API Routes
# ============================================================================

from perfdash.api.error_handling import register_exception_handlers  # noqa: E402
from perfdash.api.routes import dashboard  # noqa: E402
from perfdash.api.routes import performance  # noqa: E402
from perfdash.api.routes import runs  # noqa: E402
from perfdash.api.routes import situational  # noqa: E402

register_exception_handlers(app)

app.include_router(dashboard.router, prefix="/api/dashboard", tags=["dashboard"])
app.include_router(situational.router, prefix="/api/situational", tags=["situational"])
app.include_router(runs.router, prefix="/api/runs", tags=["runs"])
app.include_router(performance.router, prefix="/api/performance", tags=["performance"])


if __name__ == "__main__":
    import uvicorn

    # log_config=None keeps uvicorn from replacing the logging setup above.
    uvicorn.run(
        "perfdash.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        reload=settings.APP_RELOAD,
        log_level=settings.LOG_LEVEL.lower(),
        log_config=None,
    )
