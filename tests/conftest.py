import asyncio
from datetime import date, timedelta

import pytest

from app.features.warranty_notifications.cache import InMemoryNotificationCache
from app.features.warranty_notifications.channels import NotificationChannel
from app.features.warranty_notifications.domain import (
    ChannelLeg,
    ChannelResult,
    DeadlineCandidate,
    MessageContext,
    RecipientContact,
)
from app.features.warranty_notifications.services.scheduler import WarrantyExpirationScheduler

TODAY = date(2026, 3, 2)


def make_candidate(
    record_id: str = "r1",
    recipient_id: str = "u1",
    *,
    owner_id: str | None = None,
    days: int | None = 7,
    label: str = "Laptop",
    **preference,
) -> DeadlineCandidate:
    pref = {"email": f"{recipient_id}@example.com", "threshold_days": 7}
    pref.update(preference)
    return DeadlineCandidate(
        record_id=record_id,
        owner_id=owner_id or recipient_id,
        recipient_id=recipient_id,
        label=label,
        deadline=TODAY + timedelta(days=days) if days is not None else None,
        preference=pref,
    )


class FakeDeadlineStore:
    def __init__(self, candidates: list[DeadlineCandidate] | None = None):
        self.candidates = list(candidates or [])
        self.error: Exception | None = None
        self.calls: list[date] = []

    async def find_approaching_deadlines(self, as_of: date) -> list[DeadlineCandidate]:
        self.calls.append(as_of)
        if self.error is not None:
            raise self.error
        return list(self.candidates)


class RecordingChannel(NotificationChannel):
    """Channel that records sends; per-leg outcomes are configurable."""

    name = "recording"

    def __init__(self, legs=(ChannelLeg.EMAIL, ChannelLeg.SMS), fail_legs=(), delay: float = 0):
        self.supported_legs = frozenset(legs)
        self.fail_legs = set(fail_legs)
        self.delay = delay
        self.sent: list[tuple[RecipientContact, MessageContext]] = []
        self.closed = False

    async def send(self, contact: RecipientContact, context: MessageContext) -> ChannelResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.sent.append((contact, context))

        result = ChannelResult(succeeded=False)
        attempted = []
        if contact.email:
            attempted.append(ChannelLeg.EMAIL)
        if contact.phone:
            attempted.append(ChannelLeg.SMS)
        for leg in attempted:
            if leg in self.fail_legs:
                result.failed_legs.append(leg)
            else:
                result.sent_legs.append(leg)
        result.succeeded = bool(result.sent_legs)
        if result.failed_legs:
            result.error = "; ".join(f"{leg.value}: boom" for leg in result.failed_legs)
        return result

    async def close(self) -> None:
        self.closed = True


class FakeRedis:
    """Subset of redis.asyncio.Redis used by the notification cache."""

    def __init__(self):
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def exists(self, *keys: str) -> int:
        return sum(1 for key in keys if key in self.store)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self)


class FakePipeline:
    def __init__(self, redis: FakeRedis):
        self.redis = redis
        self.ops: list[tuple] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc) -> None:
        return None

    def set(self, key: str, value: str, ex: int | None = None) -> "FakePipeline":
        self.ops.append(("set", key, value, ex))
        return self

    def delete(self, *keys: str) -> "FakePipeline":
        self.ops.append(("delete", *keys))
        return self

    async def execute(self) -> list:
        results = []
        for op in self.ops:
            if op[0] == "set":
                results.append(await self.redis.set(op[1], op[2], ex=op[3]))
            else:
                results.append(await self.redis.delete(*op[1:]))
        self.ops = []
        return results


class FakeRedisClient:
    """Stands in for FastRedisClient."""

    def __init__(self, redis: FakeRedis):
        self.redis = redis

    async def get_client(self) -> FakeRedis:
        return self.redis


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store():
    return FakeDeadlineStore()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def cache():
    return InMemoryNotificationCache()


@pytest.fixture
def make_scheduler(store, cache, channel):
    def _make(**overrides) -> WarrantyExpirationScheduler:
        kwargs = {
            "interval_seconds": 86400,
            "startup_delay_seconds": 0,
            "dedupe_ttl_seconds": 30 * 86400,
            "today": lambda: TODAY,
        }
        kwargs.update(overrides)
        return WarrantyExpirationScheduler(
            kwargs.pop("store", store),
            kwargs.pop("cache", cache),
            kwargs.pop("channel", channel),
            **kwargs,
        )

    return _make
