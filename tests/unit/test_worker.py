from unittest.mock import AsyncMock, MagicMock

import pytest

from app.config import Settings
from app.features.warranty_notifications.cache import InMemoryNotificationCache
from app.features.warranty_notifications.channels import LogNotificationChannel
from app.features.warranty_notifications.domain import ScanResult
from app.features.warranty_notifications.jobs import expiration_job
from app.jobs import worker


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    assert called["ok"] is True


@pytest.mark.asyncio
async def test_run_worker_unknown_job():
    with pytest.raises(ValueError):
        await worker.run_worker("missing")


def test_registry_exposes_warranty_jobs():
    assert set(worker.JOB_REGISTRY) == {"warranty_expiration", "warranty_expiration_once"}


def test_build_warranty_scheduler_wires_components():
    components = expiration_job.build_warranty_scheduler(
        Settings(REDIS_URL=None, NOTIFICATION_CHANNEL="log", WARRANTY_HORIZON_DAYS=120)
    )

    assert isinstance(components.cache, InMemoryNotificationCache)
    assert isinstance(components.channel, LogNotificationChannel)
    assert components.scheduler.store.horizon_days == 120
    assert components.scheduler.cache is components.cache


@pytest.mark.asyncio
async def test_run_once_job_initializes_and_closes_resources(monkeypatch):
    pool = MagicMock()
    pool.initialize = AsyncMock()
    pool.close = AsyncMock()
    monkeypatch.setattr(expiration_job, "db_pool", pool)
    monkeypatch.setattr(expiration_job.settings, "REDIS_URL", None)
    monkeypatch.setattr(expiration_job.settings, "NOTIFICATION_CHANNEL", "log")
    monkeypatch.setattr(
        expiration_job.PostgresDeadlineRepository,
        "find_approaching_deadlines",
        AsyncMock(return_value=[]),
    )

    result = await expiration_job.run_warranty_expiration_once()

    assert isinstance(result, ScanResult)
    assert result.found == 0
    pool.initialize.assert_awaited_once()
    pool.close.assert_awaited_once()
