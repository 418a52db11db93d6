"""
Warranty expiration worker entrypoints.

``start_warranty_expiration_scheduler`` runs the scheduler as a standalone
process until SIGTERM/SIGINT; ``run_warranty_expiration_once`` runs a single
scan (cron style) and exits.
"""

import asyncio
import signal
from dataclasses import dataclass

from app.config import Settings, settings
from app.db.pool import db_pool
from app.features.warranty_notifications.cache import NotificationCache, create_notification_cache
from app.features.warranty_notifications.channels import (
    NotificationChannel,
    create_notification_channel,
)
from app.features.warranty_notifications.domain import ScanResult
from app.features.warranty_notifications.repository import PostgresDeadlineRepository
from app.features.warranty_notifications.services.scheduler import WarrantyExpirationScheduler
from app.infrastructure.observability.logging import get_logger
from app.services.infrastructure.redis_client import fast_redis

logger = get_logger(__name__)


@dataclass
class WarrantyComponents:
    scheduler: WarrantyExpirationScheduler
    cache: NotificationCache
    channel: NotificationChannel


def build_warranty_scheduler(app_settings: Settings = settings) -> WarrantyComponents:
    """Wire store, cache and channel into a scheduler (resources must already be initialized)."""
    cache = create_notification_cache(app_settings, fast_redis)
    channel = create_notification_channel(app_settings)
    store = PostgresDeadlineRepository(horizon_days=app_settings.WARRANTY_HORIZON_DAYS)
    scheduler = WarrantyExpirationScheduler.from_settings(store, cache, channel, app_settings)
    return WarrantyComponents(scheduler=scheduler, cache=cache, channel=channel)


async def _initialize_resources() -> None:
    await db_pool.initialize()
    if settings.REDIS_URL:
        await fast_redis.initialize()


async def _close_resources(channel: NotificationChannel | None) -> None:
    if channel is not None:
        try:
            await channel.close()
        except Exception as e:
            logger.error("Error closing notification channel", error=str(e))
    if settings.REDIS_URL:
        await fast_redis.close()
    await db_pool.close()


async def start_warranty_expiration_scheduler() -> None:
    """Run the scheduler loop until the process receives SIGTERM or SIGINT."""
    channel: NotificationChannel | None = None
    stop_requested = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            logger.warning("Signal handlers not supported on this platform", signal=sig.name)

    try:
        await _initialize_resources()
        components = build_warranty_scheduler()
        channel = components.channel

        components.scheduler.start()
        await stop_requested.wait()

        logger.info("Shutdown requested, stopping warranty scheduler")
        await components.scheduler.stop()
    finally:
        await _close_resources(channel)


async def run_warranty_expiration_once() -> ScanResult:
    """Run one scan pass and exit."""
    channel: NotificationChannel | None = None
    try:
        await _initialize_resources()
        components = build_warranty_scheduler()
        channel = components.channel

        result = await components.scheduler.run_once()
        logger.info("Warranty expiration single run finished", **result.to_dict())
        return result
    finally:
        await _close_resources(channel)


if __name__ == "__main__":
    asyncio.run(start_warranty_expiration_scheduler())
