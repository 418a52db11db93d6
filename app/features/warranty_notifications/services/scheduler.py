"""
Warranty expiration scheduler.

Periodically scans stored receipts for warranty deadlines that fall within
each recipient's notification threshold, notifies every recipient at most
once per dedupe TTL and refreshes the per-owner "expiring soon" snapshot
served by the read API.

One scheduler instance owns its record store, cache and channel. Cycles
never overlap; dispatch inside a cycle is concurrent and bounded.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, date, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import ValidationError

from app.config import Settings
from app.features.warranty_notifications.cache import NotificationCache, NotificationCacheError
from app.features.warranty_notifications.channels import NotificationChannel
from app.features.warranty_notifications.domain import (
    DEFAULT_THRESHOLD_DAYS,
    DeadlineCandidate,
    MessageContext,
    NotificationKind,
    PendingNotification,
    RecipientPreference,
    ScanResult,
)
from app.features.warranty_notifications.repository import DeadlineRecordStore
from app.features.warranty_notifications.services.preferences import (
    build_contact,
    coerce_preference,
    deadline_date,
    is_within_threshold,
    resolve_channel_legs,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class WarrantySchedulerError(Exception):
    """Custom exception for scheduler operations."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class ScanAbortedError(WarrantySchedulerError):
    """The record store could not be read; nothing was dispatched or cached."""


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    IDLE = "idle"
    SCANNING = "scanning"
    STOPPING = "stopping"


def _utc_today() -> date:
    return datetime.now(UTC).date()


class ScanMetrics:
    """Counters for one scan cycle."""

    def __init__(self, as_of: date):
        self.as_of = as_of
        self.started = time.monotonic()
        self.found = 0
        self.notified = 0
        self.skipped_dedupe = 0
        self.skipped_optout = 0
        self.failed = 0
        self.abandoned = 0
        self.total = 0
        self.processed = 0

    def record_failure(self, item: PendingNotification | DeadlineCandidate, error: str) -> None:
        self.failed += 1
        logger.error(
            "Warranty notification item failed",
            record_id=item.record_id,
            recipient_id=item.recipient_id,
            error=error,
        )

    def to_result(self) -> ScanResult:
        return ScanResult(
            as_of=self.as_of,
            found=self.found,
            notified=self.notified,
            skipped_dedupe=self.skipped_dedupe,
            skipped_optout=self.skipped_optout,
            failed=self.failed,
            abandoned=self.abandoned,
            duration_seconds=round(time.monotonic() - self.started, 3),
        )


class WarrantyExpirationScheduler:
    """
    Background scan/notify loop for approaching warranty deadlines.

    Lifecycle: STOPPED -> STARTING -> IDLE <-> SCANNING -> STOPPING -> STOPPED.
    """

    def __init__(
        self,
        store: DeadlineRecordStore,
        cache: NotificationCache,
        channel: NotificationChannel,
        *,
        interval_seconds: float = 86400,
        startup_delay_seconds: float = 60,
        dedupe_ttl_seconds: float = 30 * 86400,
        snapshot_ttl_seconds: float | None = None,
        stop_grace_seconds: float = 30.0,
        max_concurrent_dispatches: int = 10,
        today: Callable[[], date] = _utc_today,
    ):
        if max_concurrent_dispatches < 1:
            raise ValueError("max_concurrent_dispatches must be at least 1")

        self.store = store
        self.cache = cache
        self.channel = channel
        self.interval_seconds = interval_seconds
        self.startup_delay_seconds = startup_delay_seconds
        self.dedupe_ttl_seconds = dedupe_ttl_seconds
        self.snapshot_ttl_seconds = (
            snapshot_ttl_seconds if snapshot_ttl_seconds is not None else interval_seconds + 3600
        )
        self.stop_grace_seconds = stop_grace_seconds
        self.max_concurrent_dispatches = max_concurrent_dispatches
        self._today = today

        self._state = SchedulerState.STOPPED
        self._task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._scan_lock = asyncio.Lock()
        self._current: ScanMetrics | None = None
        self.last_run_time: datetime | None = None
        self.last_result: ScanResult | None = None
        self.last_error: str | None = None

    @classmethod
    def from_settings(
        cls,
        store: DeadlineRecordStore,
        cache: NotificationCache,
        channel: NotificationChannel,
        settings: Settings,
    ) -> "WarrantyExpirationScheduler":
        return cls(
            store,
            cache,
            channel,
            interval_seconds=settings.WARRANTY_SCAN_INTERVAL_SECONDS,
            startup_delay_seconds=settings.WARRANTY_STARTUP_DELAY_SECONDS,
            dedupe_ttl_seconds=settings.dedupe_ttl_seconds(),
            snapshot_ttl_seconds=settings.snapshot_ttl_seconds(),
            stop_grace_seconds=settings.WARRANTY_STOP_GRACE_SECONDS,
            max_concurrent_dispatches=settings.WARRANTY_MAX_CONCURRENT_DISPATCHES,
        )

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, interval: float | None = None, startup_delay: float | None = None) -> None:
        """Spawn the scan loop; calling it while running does nothing."""
        if self.is_running:
            logger.debug("Warranty scheduler already running")
            return

        interval = self.interval_seconds if interval is None else interval
        startup_delay = self.startup_delay_seconds if startup_delay is None else startup_delay

        self._state = SchedulerState.STARTING
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self._run_loop(interval, startup_delay), name="warranty-expiration-scheduler"
        )
        logger.info(
            "Warranty expiration scheduler started",
            interval_seconds=interval,
            startup_delay_seconds=startup_delay,
            channel=self.channel.name,
        )

    async def stop(self, grace_period: float | None = None) -> None:
        """Stop the loop, letting an in-flight cycle finish within the grace period."""
        task = self._task
        if task is None or task.done():
            self._state = SchedulerState.STOPPED
            self._task = None
            self._stop_event = asyncio.Event()
            return

        grace = self.stop_grace_seconds if grace_period is None else grace_period
        self._state = SchedulerState.STOPPING
        self._stop_event.set()

        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=grace)
        except TimeoutError:
            current = self._current
            logger.warning(
                "cycle abandoned",
                processed=current.processed if current else 0,
                total=current.total if current else 0,
                grace_period_seconds=grace,
            )
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        except Exception as e:
            logger.error("Warranty scheduler stopped with error", error=str(e))
        finally:
            self._task = None
            self._current = None
            self._stop_event = asyncio.Event()
            self._state = SchedulerState.STOPPED

        logger.info("Warranty expiration scheduler stopped")

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; True when a stop was requested."""
        if self._stop_event.is_set():
            return True
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=timeout)
            return True
        except TimeoutError:
            return False

    async def _run_loop(self, interval: float, startup_delay: float) -> None:
        self._state = SchedulerState.IDLE
        try:
            if startup_delay > 0 and await self._wait_for_stop(startup_delay):
                return

            while not self._stop_event.is_set():
                started = time.monotonic()
                try:
                    await self.run_once()
                except ScanAbortedError as e:
                    logger.warning("Warranty scan aborted, retrying next interval", error=str(e))
                except Exception as e:
                    logger.error(
                        "Unexpected error in warranty scan",
                        error=str(e),
                        error_type=type(e).__name__,
                    )

                elapsed = time.monotonic() - started
                if await self._wait_for_stop(max(0.0, interval - elapsed)):
                    break
        finally:
            if self._state != SchedulerState.STOPPING:
                self._state = SchedulerState.STOPPED

    # ------------------------------------------------------------------
    # Scan cycle
    # ------------------------------------------------------------------

    async def run_once(self, as_of: date | None = None) -> ScanResult:
        """
        Run exactly one scan pass.

        Raises:
            ScanAbortedError: the record store query failed
        """
        async with self._scan_lock:
            previous_state = self._state
            if previous_state in (SchedulerState.IDLE, SchedulerState.STOPPED):
                self._state = SchedulerState.SCANNING
            try:
                return await self._scan(as_of or self._today())
            finally:
                self._current = None
                if self._state == SchedulerState.SCANNING:
                    self._state = previous_state

    async def _scan(self, as_of: date) -> ScanResult:
        metrics = ScanMetrics(as_of)
        self._current = metrics
        logger.info("Starting warranty expiration scan", as_of=as_of.isoformat())

        try:
            candidates = await self.store.find_approaching_deadlines(as_of)
        except Exception as e:
            self.last_error = str(e)
            logger.warning(
                "Warranty scan aborted: record store unavailable",
                as_of=as_of.isoformat(),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise ScanAbortedError(
                f"Record store query failed: {e}", operation="find_approaching_deadlines"
            ) from e

        pending, snapshots = self._evaluate(candidates, as_of, metrics)
        await self._refresh_snapshots(snapshots)
        await self._dispatch_all(pending, metrics)

        result = metrics.to_result()
        self.last_run_time = datetime.now(UTC)
        self.last_result = result
        self.last_error = None
        logger.info("Warranty expiration scan completed", **result.to_dict())
        return result

    def _evaluate(
        self, candidates: list[DeadlineCandidate], as_of: date, metrics: ScanMetrics
    ) -> tuple[
        list[tuple[PendingNotification, RecipientPreference]],
        dict[str, list[PendingNotification]],
    ]:
        """
        Keep in-window triples; build the owner snapshots alongside.

        An owner whose preference row fails validation still sees the record,
        judged against the default threshold.
        """
        pending: list[tuple[PendingNotification, RecipientPreference]] = []
        snapshots: dict[str, list[PendingNotification]] = {}

        for candidate in candidates:
            try:
                deadline = deadline_date(candidate.deadline)
            except ValueError as e:
                metrics.record_failure(candidate, f"invalid record data: {e}")
                continue

            item = PendingNotification(
                record_id=candidate.record_id,
                recipient_id=candidate.recipient_id,
                owner_id=candidate.owner_id,
                deadline=deadline,
                days_remaining=(deadline - as_of).days,
                label=candidate.label,
            )

            preference: RecipientPreference | None = None
            invalid: ValidationError | None = None
            try:
                preference = coerce_preference(candidate.preference)
            except ValidationError as e:
                invalid = e

            if item.recipient_id == item.owner_id:
                owner_threshold = (
                    preference.threshold_days if preference else DEFAULT_THRESHOLD_DAYS
                )
                if is_within_threshold(item.days_remaining, owner_threshold):
                    snapshots.setdefault(item.owner_id, []).append(item)

            if preference is None:
                metrics.record_failure(candidate, f"invalid record data: {invalid}")
                continue
            if not is_within_threshold(item.days_remaining, preference.threshold_days):
                continue

            metrics.found += 1
            pending.append((item, preference))

        for items in snapshots.values():
            items.sort(key=lambda item: (item.deadline, item.label, item.record_id))

        return pending, snapshots

    async def _refresh_snapshots(self, snapshots: dict[str, list[PendingNotification]]) -> None:
        try:
            await self.cache.replace_scan_snapshots(snapshots, self.snapshot_ttl_seconds)
        except NotificationCacheError as e:
            logger.error("Failed to refresh expiring snapshots", owners=len(snapshots), error=str(e))

    async def _dispatch_all(
        self,
        pending: list[tuple[PendingNotification, RecipientPreference]],
        metrics: ScanMetrics,
    ) -> None:
        work: list[tuple[PendingNotification, RecipientPreference]] = []
        seen: set[str] = set()

        for item, preference in pending:
            if preference.opted_out:
                metrics.skipped_optout += 1
                logger.debug(
                    "Recipient opted out", record_id=item.record_id, recipient_id=item.recipient_id
                )
                continue
            key = item.dedupe_key.cache_key()
            if key in seen:
                metrics.skipped_dedupe += 1
                continue
            seen.add(key)
            work.append((item, preference))

        metrics.total = len(work)
        if not work:
            return

        semaphore = asyncio.Semaphore(self.max_concurrent_dispatches)
        await asyncio.gather(
            *(self._dispatch_with_semaphore(semaphore, item, pref, metrics) for item, pref in work)
        )

    async def _dispatch_with_semaphore(
        self,
        semaphore: asyncio.Semaphore,
        item: PendingNotification,
        preference: RecipientPreference,
        metrics: ScanMetrics,
    ) -> None:
        async with semaphore:
            if self._stop_event.is_set():
                metrics.abandoned += 1
                return
            try:
                await self._dispatch_one(item, preference, metrics)
            except Exception as e:
                metrics.record_failure(item, f"{type(e).__name__}: {e}")
            finally:
                metrics.processed += 1

    async def _dispatch_one(
        self,
        item: PendingNotification,
        preference: RecipientPreference,
        metrics: ScanMetrics,
    ) -> None:
        key = item.dedupe_key
        try:
            if await self.cache.contains(key):
                metrics.skipped_dedupe += 1
                logger.debug(
                    "Already notified", record_id=item.record_id, recipient_id=item.recipient_id
                )
                return
        except NotificationCacheError as e:
            metrics.record_failure(item, f"dedupe lookup failed: {e}")
            return

        legs = resolve_channel_legs(preference, self.channel.supported_legs)
        if not legs:
            metrics.skipped_optout += 1
            logger.debug(
                "No usable notification channel",
                record_id=item.record_id,
                recipient_id=item.recipient_id,
                channel=self.channel.name,
            )
            return

        contact = build_contact(item.recipient_id, preference, legs)
        context = MessageContext(
            kind=NotificationKind.WARRANTY_EXPIRING,
            record_id=item.record_id,
            label=item.label,
            days_remaining=item.days_remaining,
            deadline=item.deadline,
        )
        result = await self.channel.send(contact, context)

        if not result.succeeded:
            metrics.failed += 1
            logger.warning(
                "Warranty notification failed on every leg",
                record_id=item.record_id,
                recipient_id=item.recipient_id,
                error=result.error,
            )
            return

        if result.failed_legs:
            logger.warning(
                "Warranty notification partially delivered",
                record_id=item.record_id,
                recipient_id=item.recipient_id,
                sent_legs=[leg.value for leg in result.sent_legs],
                failed_legs=[leg.value for leg in result.failed_legs],
                error=result.error,
            )

        metrics.notified += 1
        try:
            await self.cache.insert(key, self.dedupe_ttl_seconds)
        except NotificationCacheError as e:
            logger.error(
                "Notification sent but dedupe key not stored",
                record_id=item.record_id,
                recipient_id=item.recipient_id,
                error=str(e),
            )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def get_approaching_deadlines(self, owner_id: str) -> list[PendingNotification]:
        items = await self.cache.get_scan_snapshot(owner_id)
        return sorted(items, key=lambda item: (item.deadline, item.label, item.record_id))

    async def get_approaching_deadline_count(self, owner_id: str) -> int:
        return len(await self.cache.get_scan_snapshot(owner_id))

    def get_status(self) -> dict[str, Any]:
        current = self._current
        return {
            "job_name": "warranty_expiration",
            "state": self._state.value,
            "is_running": self.is_running,
            "channel": self.channel.name,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "last_result": self.last_result.to_dict() if self.last_result else None,
            "last_error": self.last_error,
            "in_progress": (
                {"processed": current.processed, "total": current.total} if current else None
            ),
            "configuration": {
                "interval_seconds": self.interval_seconds,
                "startup_delay_seconds": self.startup_delay_seconds,
                "dedupe_ttl_seconds": self.dedupe_ttl_seconds,
                "snapshot_ttl_seconds": self.snapshot_ttl_seconds,
                "max_concurrent_dispatches": self.max_concurrent_dispatches,
            },
        }

    def health_check(self) -> dict[str, Any]:
        """Healthy while the loop runs and has not missed two intervals in a row."""
        now = datetime.now(UTC)
        overdue_threshold = timedelta(
            seconds=self.startup_delay_seconds + self.interval_seconds * 2
        )
        is_overdue = (
            self.last_run_time is not None and (now - self.last_run_time) > overdue_threshold
        )

        health = {
            "healthy": self.is_running and not is_overdue,
            "service": "warranty_expiration_scheduler",
            "state": self._state.value,
            "last_run_time": self.last_run_time.isoformat() if self.last_run_time else None,
            "is_overdue": is_overdue,
        }
        if is_overdue:
            health["warning"] = (
                f"Scan overdue by {(now - self.last_run_time).total_seconds() / 3600:.1f} hours"
            )
        return health
