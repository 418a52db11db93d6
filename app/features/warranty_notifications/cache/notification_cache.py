"""
Time-bounded notification cache.

Holds two kinds of entries:
- dedupe keys: "(record, recipient) was already notified", TTL ~30 days
- scan snapshots: per-owner list of approaching deadlines for the read API,
  TTL slightly longer than the scan interval

``InMemoryNotificationCache`` is enough for a single scheduler instance.
Running more than one instance requires ``RedisNotificationCache``,
otherwise each instance sends its own copy of every notification.
"""

import asyncio
import json
import time
from collections.abc import Callable, Mapping, Sequence
from typing import Protocol

import redis.asyncio as redis

from app.config import Settings
from app.features.warranty_notifications.domain import DedupeKey, PendingNotification
from app.infrastructure.observability.logging import get_logger
from app.services.infrastructure.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

NOTIFIED_KEY_PREFIX = "warranty:notified:"
SNAPSHOT_KEY_PREFIX = "warranty:expiring:"
SNAPSHOT_OWNERS_KEY = "warranty:expiring:owners"


class NotificationCacheError(Exception):
    """Raised when the backing store cannot answer a cache operation."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class NotificationCache(Protocol):
    """Cache interface used by the scheduler and the read API."""

    async def contains(self, key: DedupeKey) -> bool: ...
    async def insert(self, key: DedupeKey, ttl_seconds: float) -> None: ...
    async def get_scan_snapshot(self, owner_id: str) -> list[PendingNotification]: ...
    async def set_scan_snapshot(
        self, owner_id: str, items: Sequence[PendingNotification], ttl_seconds: float
    ) -> None: ...
    async def replace_scan_snapshots(
        self, snapshots: Mapping[str, Sequence[PendingNotification]], ttl_seconds: float
    ) -> None: ...


class InMemoryNotificationCache:
    """Process-local cache guarded by an asyncio lock."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._lock = asyncio.Lock()
        self._notified: dict[str, float] = {}
        self._snapshots: dict[str, tuple[list[PendingNotification], float]] = {}

    def _purge_expired(self, now: float) -> None:
        for key in [k for k, expires_at in self._notified.items() if expires_at <= now]:
            del self._notified[key]
        for owner in [o for o, (_, expires_at) in self._snapshots.items() if expires_at <= now]:
            del self._snapshots[owner]

    async def contains(self, key: DedupeKey) -> bool:
        async with self._lock:
            expires_at = self._notified.get(key.cache_key())
            if expires_at is None:
                return False
            if expires_at <= self._clock():
                del self._notified[key.cache_key()]
                return False
            return True

    async def insert(self, key: DedupeKey, ttl_seconds: float) -> None:
        async with self._lock:
            now = self._clock()
            self._purge_expired(now)
            self._notified[key.cache_key()] = now + ttl_seconds

    async def get_scan_snapshot(self, owner_id: str) -> list[PendingNotification]:
        async with self._lock:
            entry = self._snapshots.get(owner_id)
            if entry is None:
                return []
            items, expires_at = entry
            if expires_at <= self._clock():
                del self._snapshots[owner_id]
                return []
            return list(items)

    async def set_scan_snapshot(
        self, owner_id: str, items: Sequence[PendingNotification], ttl_seconds: float
    ) -> None:
        async with self._lock:
            self._snapshots[owner_id] = (list(items), self._clock() + ttl_seconds)

    async def replace_scan_snapshots(
        self, snapshots: Mapping[str, Sequence[PendingNotification]], ttl_seconds: float
    ) -> None:
        async with self._lock:
            expires_at = self._clock() + ttl_seconds
            self._snapshots = {owner: (list(items), expires_at) for owner, items in snapshots.items()}

    def __len__(self) -> int:
        return len(self._notified)


class RedisNotificationCache:
    """Redis-backed cache shared by every scheduler instance."""

    def __init__(self, redis_client: FastRedisClient):
        self._redis = redis_client

    async def _client(self, operation: str) -> redis.Redis:
        try:
            return await self._redis.get_client()
        except Exception as e:
            raise NotificationCacheError(f"Redis unavailable: {e}", operation=operation) from e

    async def contains(self, key: DedupeKey) -> bool:
        client = await self._client("contains")
        try:
            return await client.exists(NOTIFIED_KEY_PREFIX + key.cache_key()) > 0
        except redis.RedisError as e:
            logger.error("Redis EXISTS failed", key=key.cache_key(), error=str(e))
            raise NotificationCacheError(f"Dedupe lookup failed: {e}", operation="contains") from e

    async def insert(self, key: DedupeKey, ttl_seconds: float) -> None:
        client = await self._client("insert")
        try:
            await client.set(NOTIFIED_KEY_PREFIX + key.cache_key(), "1", ex=max(1, int(ttl_seconds)))
        except redis.RedisError as e:
            logger.error("Redis SET failed", key=key.cache_key(), error=str(e))
            raise NotificationCacheError(f"Dedupe insert failed: {e}", operation="insert") from e

    async def get_scan_snapshot(self, owner_id: str) -> list[PendingNotification]:
        client = await self._client("get_scan_snapshot")
        try:
            raw = await client.get(SNAPSHOT_KEY_PREFIX + owner_id)
        except redis.RedisError as e:
            logger.error("Redis GET failed", owner_id=owner_id, error=str(e))
            raise NotificationCacheError(f"Snapshot read failed: {e}", operation="get_scan_snapshot") from e

        if not raw:
            return []
        try:
            return [PendingNotification.from_dict(item) for item in json.loads(raw)]
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable scan snapshot", owner_id=owner_id, error=str(e))
            return []

    async def set_scan_snapshot(
        self, owner_id: str, items: Sequence[PendingNotification], ttl_seconds: float
    ) -> None:
        client = await self._client("set_scan_snapshot")
        payload = json.dumps([item.to_dict() for item in items])
        try:
            await client.set(SNAPSHOT_KEY_PREFIX + owner_id, payload, ex=max(1, int(ttl_seconds)))
        except redis.RedisError as e:
            logger.error("Redis SET failed", owner_id=owner_id, error=str(e))
            raise NotificationCacheError(f"Snapshot write failed: {e}", operation="set_scan_snapshot") from e

    async def replace_scan_snapshots(
        self, snapshots: Mapping[str, Sequence[PendingNotification]], ttl_seconds: float
    ) -> None:
        client = await self._client("replace_scan_snapshots")
        ttl = max(1, int(ttl_seconds))
        try:
            previous_raw = await client.get(SNAPSHOT_OWNERS_KEY)
            previous = set(json.loads(previous_raw)) if previous_raw else set()
            stale = previous - set(snapshots)

            async with client.pipeline(transaction=True) as pipe:
                for owner_id, items in snapshots.items():
                    pipe.set(
                        SNAPSHOT_KEY_PREFIX + owner_id,
                        json.dumps([item.to_dict() for item in items]),
                        ex=ttl,
                    )
                for owner_id in stale:
                    pipe.delete(SNAPSHOT_KEY_PREFIX + owner_id)
                pipe.set(SNAPSHOT_OWNERS_KEY, json.dumps(sorted(snapshots)), ex=ttl)
                await pipe.execute()
        except redis.RedisError as e:
            logger.error("Redis snapshot replace failed", owners=len(snapshots), error=str(e))
            raise NotificationCacheError(
                f"Snapshot replace failed: {e}", operation="replace_scan_snapshots"
            ) from e


def create_notification_cache(
    settings: Settings, redis_client: FastRedisClient | None = None
) -> NotificationCache:
    """Redis when REDIS_URL is configured, otherwise the in-process cache."""
    if settings.REDIS_URL:
        logger.info("Using Redis notification cache")
        return RedisNotificationCache(redis_client or fast_redis)

    if settings.environment != "development":
        logger.warning(
            "Using in-memory notification cache; run a single scheduler instance "
            "or set REDIS_URL",
            environment=settings.environment,
        )
    else:
        logger.info("Using in-memory notification cache")
    return InMemoryNotificationCache()
