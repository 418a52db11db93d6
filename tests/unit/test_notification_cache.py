import json
from unittest.mock import AsyncMock

import pytest
from conftest import TODAY, FakeRedisClient
from redis.exceptions import ConnectionError as RedisConnectionError

from app.config import Settings
from app.features.warranty_notifications.cache import (
    InMemoryNotificationCache,
    NotificationCacheError,
    RedisNotificationCache,
    create_notification_cache,
)
from app.features.warranty_notifications.cache.notification_cache import (
    NOTIFIED_KEY_PREFIX,
    SNAPSHOT_KEY_PREFIX,
    SNAPSHOT_OWNERS_KEY,
)
from app.features.warranty_notifications.domain import DedupeKey, PendingNotification


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _item(record_id: str, owner_id: str = "u1", days: int = 3) -> PendingNotification:
    return PendingNotification(
        record_id=record_id,
        recipient_id=owner_id,
        owner_id=owner_id,
        deadline=TODAY,
        days_remaining=days,
        label=f"Item {record_id}",
    )


@pytest.mark.asyncio
async def test_in_memory_dedupe_key_expires_after_ttl():
    clock = FakeClock()
    cache = InMemoryNotificationCache(clock=clock)
    key = DedupeKey("r1", "u1")

    await cache.insert(key, ttl_seconds=10)
    assert await cache.contains(key)

    clock.now += 9.9
    assert await cache.contains(key)

    clock.now += 0.1
    assert not await cache.contains(key)


@pytest.mark.asyncio
async def test_in_memory_insert_refreshes_ttl():
    clock = FakeClock()
    cache = InMemoryNotificationCache(clock=clock)
    key = DedupeKey("r1", "u1")

    await cache.insert(key, ttl_seconds=10)
    clock.now += 8
    await cache.insert(key, ttl_seconds=10)
    clock.now += 8

    assert await cache.contains(key)


@pytest.mark.asyncio
async def test_in_memory_snapshot_replace_clears_absent_owners():
    cache = InMemoryNotificationCache(clock=FakeClock())

    await cache.replace_scan_snapshots({"u1": [_item("r1")], "u2": [_item("r2", "u2")]}, 60)
    await cache.replace_scan_snapshots({"u1": [_item("r3")]}, 60)

    assert [item.record_id for item in await cache.get_scan_snapshot("u1")] == ["r3"]
    assert await cache.get_scan_snapshot("u2") == []


@pytest.mark.asyncio
async def test_in_memory_snapshot_expires():
    clock = FakeClock()
    cache = InMemoryNotificationCache(clock=clock)

    await cache.set_scan_snapshot("u1", [_item("r1")], ttl_seconds=5)
    clock.now += 5

    assert await cache.get_scan_snapshot("u1") == []


@pytest.mark.asyncio
async def test_redis_dedupe_uses_prefixed_key_and_ttl(fake_redis):
    cache = RedisNotificationCache(FakeRedisClient(fake_redis))
    key = DedupeKey("r1", "u1")

    assert not await cache.contains(key)
    await cache.insert(key, ttl_seconds=30 * 86400)

    assert await cache.contains(key)
    assert fake_redis.ttls[f"{NOTIFIED_KEY_PREFIX}r1:u1"] == 30 * 86400


@pytest.mark.asyncio
async def test_redis_snapshot_replace_round_trip_and_cleanup(fake_redis):
    cache = RedisNotificationCache(FakeRedisClient(fake_redis))

    await cache.replace_scan_snapshots({"u1": [_item("r1")], "u2": [_item("r2", "u2")]}, 90000)
    assert json.loads(fake_redis.store[SNAPSHOT_OWNERS_KEY]) == ["u1", "u2"]
    assert fake_redis.ttls[f"{SNAPSHOT_KEY_PREFIX}u1"] == 90000

    await cache.replace_scan_snapshots({"u1": [_item("r3", days=1)]}, 90000)

    snapshot = await cache.get_scan_snapshot("u1")
    assert snapshot == [_item("r3", days=1)]
    assert await cache.get_scan_snapshot("u2") == []
    assert f"{SNAPSHOT_KEY_PREFIX}u2" not in fake_redis.store


@pytest.mark.asyncio
async def test_redis_unreadable_snapshot_is_treated_as_empty(fake_redis):
    fake_redis.store[f"{SNAPSHOT_KEY_PREFIX}u1"] = "not json"
    cache = RedisNotificationCache(FakeRedisClient(fake_redis))

    assert await cache.get_scan_snapshot("u1") == []


@pytest.mark.asyncio
async def test_redis_errors_raise_cache_error(fake_redis):
    fake_redis.exists = AsyncMock(side_effect=RedisConnectionError("down"))
    cache = RedisNotificationCache(FakeRedisClient(fake_redis))

    with pytest.raises(NotificationCacheError) as exc_info:
        await cache.contains(DedupeKey("r1", "u1"))

    assert exc_info.value.operation == "contains"


@pytest.mark.asyncio
async def test_redis_unavailable_client_raises_cache_error():
    client = AsyncMock()
    client.get_client.side_effect = RuntimeError("Redis initialization failed")
    cache = RedisNotificationCache(client)

    with pytest.raises(NotificationCacheError):
        await cache.get_scan_snapshot("u1")


def test_cache_factory_selects_backend():
    assert isinstance(create_notification_cache(Settings(REDIS_URL=None)), InMemoryNotificationCache)
    assert isinstance(
        create_notification_cache(Settings(REDIS_URL="redis://localhost:6379/0")),
        RedisNotificationCache,
    )
