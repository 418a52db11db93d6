import asyncio

import pytest
from conftest import RecordingChannel, make_candidate

from app.config import Settings
from app.features.warranty_notifications.services.scheduler import (
    SchedulerState,
    WarrantyExpirationScheduler,
)


@pytest.mark.asyncio
async def test_start_is_idempotent(make_scheduler):
    scheduler = make_scheduler(startup_delay_seconds=60)

    scheduler.start()
    task = scheduler._task
    scheduler.start()

    assert scheduler._task is task
    assert scheduler.is_running

    await scheduler.stop()
    assert scheduler.state == SchedulerState.STOPPED
    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_startup_delay_postpones_first_scan(store, make_scheduler):
    scheduler = make_scheduler()

    scheduler.start(startup_delay=60)
    await asyncio.sleep(0.05)

    assert store.calls == []
    assert scheduler.state == SchedulerState.IDLE

    await scheduler.stop(grace_period=1)
    assert store.calls == []


@pytest.mark.asyncio
async def test_loop_scans_immediately_without_delay(store, channel, make_scheduler):
    store.candidates = [make_candidate("r1", "u1", days=1)]
    scheduler = make_scheduler()

    scheduler.start(interval=3600, startup_delay=0)
    await asyncio.sleep(0.05)

    assert len(store.calls) == 1
    assert scheduler.last_result is not None
    assert scheduler.last_result.notified == 1

    await scheduler.stop()


@pytest.mark.asyncio
async def test_loop_survives_store_failure(store, make_scheduler):
    store.error = RuntimeError("db down")
    scheduler = make_scheduler()

    scheduler.start(interval=3600, startup_delay=0)
    await asyncio.sleep(0.05)

    assert len(store.calls) == 1
    assert scheduler.is_running
    assert scheduler.last_result is None

    await scheduler.stop()


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_cycle_and_abandons_unstarted(store, make_scheduler):
    channel = RecordingChannel(delay=0.1)
    store.candidates = [make_candidate(f"r{i}", "u1", days=2) for i in range(3)]
    scheduler = make_scheduler(channel=channel, max_concurrent_dispatches=1)

    scheduler.start(startup_delay=0)
    await asyncio.sleep(0.02)
    await scheduler.stop(grace_period=5)

    assert scheduler.state == SchedulerState.STOPPED
    assert len(channel.sent) == 1
    assert scheduler.last_result.notified == 1
    assert scheduler.last_result.abandoned == 2


@pytest.mark.asyncio
async def test_stop_cancels_cycle_after_grace_period(store, make_scheduler):
    channel = RecordingChannel(delay=5)
    store.candidates = [make_candidate("r1", "u1", days=2)]
    scheduler = make_scheduler(channel=channel)

    scheduler.start(startup_delay=0)
    await asyncio.sleep(0.02)
    await scheduler.stop(grace_period=0.05)

    assert scheduler.state == SchedulerState.STOPPED
    assert not scheduler.is_running
    assert channel.sent == []
    assert scheduler.last_result is None


@pytest.mark.asyncio
async def test_stop_without_start_is_noop(make_scheduler):
    scheduler = make_scheduler()

    await scheduler.stop()

    assert scheduler.state == SchedulerState.STOPPED


@pytest.mark.asyncio
async def test_health_reflects_loop_state(make_scheduler):
    scheduler = make_scheduler(startup_delay_seconds=60)
    assert scheduler.health_check()["healthy"] is False

    scheduler.start()
    assert scheduler.health_check()["healthy"] is True

    await scheduler.stop()
    assert scheduler.health_check()["healthy"] is False


def test_from_settings_uses_configured_values(store, cache, channel):
    settings = Settings(
        WARRANTY_SCAN_INTERVAL_SECONDS=3600,
        WARRANTY_STARTUP_DELAY_SECONDS=5,
        WARRANTY_DEDUPE_TTL_DAYS=2,
        WARRANTY_SNAPSHOT_TTL_MARGIN_SECONDS=600,
        WARRANTY_STOP_GRACE_SECONDS=12,
        WARRANTY_MAX_CONCURRENT_DISPATCHES=4,
    )

    scheduler = WarrantyExpirationScheduler.from_settings(store, cache, channel, settings)

    assert scheduler.interval_seconds == 3600
    assert scheduler.startup_delay_seconds == 5
    assert scheduler.dedupe_ttl_seconds == 2 * 86400
    assert scheduler.snapshot_ttl_seconds == 4200
    assert scheduler.stop_grace_seconds == 12
    assert scheduler.max_concurrent_dispatches == 4


@pytest.mark.asyncio
async def test_run_once_after_stop_dispatches_normally(store, channel, make_scheduler):
    store.candidates = [make_candidate("r1", "u1", days=2)]
    scheduler = make_scheduler(startup_delay_seconds=60)

    scheduler.start()
    await scheduler.stop(grace_period=1)
    result = await scheduler.run_once()

    assert result.notified == 1
    assert result.abandoned == 0
    assert len(channel.sent) == 1
    assert scheduler.state == SchedulerState.STOPPED
