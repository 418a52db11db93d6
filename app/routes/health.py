"""
Health check endpoints: liveness, readiness and database pool detail.
"""

import time

from fastapi import APIRouter, Request

from app.config import settings
from app.db.pool import db_health_check
from app.services.infrastructure.redis_client import fast_redis

router = APIRouter()


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "warranty-notifier"}


@router.get("/readyz")
async def readyz(request: Request):
    """
    Readiness check covering the database pool, Redis, the notification
    channel (SMTP / Twilio) and the warranty scheduler loop.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)
        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        if "pool_stats" in db_health:
            checks["database"]["pool_stats"] = db_health["pool_stats"]
        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")
        overall_ok = overall_ok and is_healthy
    except Exception as e:
        checks["database"] = {"ok": False, "error": f"{type(e).__name__}: {e}"}
        overall_ok = False

    # 2) Redis (only when the shared notification cache is configured)
    if settings.REDIS_URL:
        t0 = time.time()
        redis_ok = await fast_redis.ping()
        checks["redis"] = {"ok": redis_ok, "latency_ms": round((time.time() - t0) * 1000, 1)}
        overall_ok = overall_ok and redis_ok
    else:
        checks["redis"] = {"ok": True, "mode": "in_memory_cache"}

    # 3) Notification channel
    channel = getattr(request.app.state, "warranty_channel", None)
    if channel is not None:
        try:
            channel_health = await channel.health_check()
        except Exception as e:
            channel_health = {"healthy": False, "error": f"{type(e).__name__}: {e}"}
        checks["notification_channel"] = {"ok": channel_health.get("healthy", False), **channel_health}
        overall_ok = overall_ok and checks["notification_channel"]["ok"]
    else:
        checks["notification_channel"] = {"ok": False, "error": "Channel not initialized"}
        overall_ok = False

    # 4) Scheduler
    scheduler = getattr(request.app.state, "warranty_scheduler", None)
    if not settings.WARRANTY_SCHEDULER_ENABLED:
        checks["warranty_scheduler"] = {"ok": True, "enabled": False}
    elif scheduler is None:
        checks["warranty_scheduler"] = {"ok": False, "error": "Scheduler not initialized"}
        overall_ok = False
    else:
        scheduler_health = scheduler.health_check()
        checks["warranty_scheduler"] = {"ok": scheduler_health["healthy"], **scheduler_health}
        overall_ok = overall_ok and scheduler_health["healthy"]

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}


@router.get("/health/database")
async def database_health():
    """Detailed database pool health information."""
    return await db_health_check()
