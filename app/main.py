"""
FastAPI application with database pool, Redis and warranty scheduler
lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.features.warranty_notifications.api.router import router as warranty_router
from app.features.warranty_notifications.jobs import build_warranty_scheduler
from app.infrastructure.observability.logging import get_logger, log_request, setup_logging
from app.routes import health
from app.services.infrastructure.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.LOG_JSON)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        if settings.REDIS_URL:
            logger.info("Initializing Redis connection")
            await fast_redis.initialize()
            startup_tasks.append("redis")

        components = build_warranty_scheduler(settings)
        app.state.warranty_scheduler = components.scheduler
        app.state.warranty_channel = components.channel

        if settings.WARRANTY_SCHEDULER_ENABLED:
            components.scheduler.start()
            startup_tasks.append("warranty_scheduler")
        else:
            logger.info("Warranty scheduler disabled by configuration")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    # Stop the scheduler first so no cycle touches a closed pool
    await app.state.warranty_scheduler.stop()

    try:
        await app.state.warranty_channel.close()
    except Exception as e:
        logger.error("Error closing notification channel", error=str(e))
        shutdown_errors.append(f"Channel: {e}")

    if settings.REDIS_URL:
        try:
            logger.info("Closing Redis connection")
            await fast_redis.close()
        except Exception as e:
            logger.error("Error closing Redis", error=str(e))
            shutdown_errors.append(f"Redis: {e}")

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Warranty Notifier",
    description="Warranty expiration monitoring and notification scheduler",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health.router)
app.include_router(warranty_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    log_request(
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
