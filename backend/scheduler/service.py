"""
Sync scheduler for the referee marketplace.

Drives three independent asyncio loops:
  - sync: league catalogue sync followed by match reconciliation, every 15 min
  - health: store reachability probe, every 5 min
  - maintenance: daily store housekeeping and identity cache reset

Runs are single-flight; a trigger arriving while a run is in flight is dropped.
"""
from __future__ import annotations

import asyncio
import signal
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from shared.config import Settings, get_settings
from shared.models.domain import RunReport, SyncStatus
from shared.models.enums import NotificationReason, SyncState
from shared.store import SyncStore
from shared.utils.database import DatabaseManager, StoreError
from shared.utils.health_server import start_health_server
from shared.utils.logging import bind_run_context, clear_run_context, get_logger, setup_logging
from shared.utils.metrics import (
    CONSECUTIVE_FAILURES,
    NOTIFICATIONS,
    SCHEDULER_STATE,
    SYNC_DURATION,
    SYNC_RUNS,
    start_metrics_server,
)

from ingest.clubs.resolver import IdentityResolver
from ingest.leagues import LeagueCatalogSynchronizer
from ingest.notifications import messages
from ingest.notifications.engine import NotificationEngine
from ingest.notifications.notifier import Notifier, build_notifier
from ingest.providers.basketball_bund import BasketballBundProvider
from ingest.reconciler import MatchReconciler

logger = get_logger(__name__)

JOB_SYNC = "sync"
JOB_HEALTH = "health"
JOB_MAINTENANCE = "maintenance"


def seconds_until_daily(hour: int, tz_name: str, now: Optional[datetime] = None) -> float:
    """Seconds from now until the next occurrence of hour:00 in the given zone."""
    tz = ZoneInfo(tz_name)
    local_now = (now or datetime.now(timezone.utc)).astimezone(tz)
    target = local_now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= local_now:
        target = target + timedelta(days=1)
    delta = target.astimezone(timezone.utc) - local_now.astimezone(timezone.utc)
    return max(0.0, delta.total_seconds())


class SyncScheduler:
    """
    Owns the run state machine: IDLE -> RUNNING -> IDLE, or RUNNING -> FAILED.
    A FAILED scheduler stays FAILED in status() until the next trigger.
    """

    def __init__(
        self,
        store: SyncStore,
        leagues: LeagueCatalogSynchronizer,
        reconciler: MatchReconciler,
        resolver: IdentityResolver,
        notifier: Notifier,
        settings: Settings | None = None,
    ) -> None:
        self._store = store
        self._leagues = leagues
        self._reconciler = reconciler
        self._resolver = resolver
        self._notifier = notifier
        self._settings = settings or get_settings()

        self._state = SyncState.IDLE
        self._run_task: Optional[asyncio.Task[Optional[RunReport]]] = None
        self._loops: dict[str, asyncio.Task[None]] = {}
        self._shutdown = asyncio.Event()

        self._last_run_at: Optional[datetime] = None
        self._last_error: Optional[str] = None
        self._last_report: Optional[RunReport] = None
        self._last_run_id: Optional[str] = None
        self._run_count = 0
        self._error_count = 0
        self._consecutive_failures = 0
        self._set_state(SyncState.IDLE)

    # ── State ───────────────────────────────────────────────────────────

    def _set_state(self, state: SyncState) -> None:
        self._state = state
        for s in SyncState:
            SCHEDULER_STATE.labels(state=s.value).set(1 if s == state else 0)

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._run_task is not None and not self._run_task.done()

    def status(self) -> SyncStatus:
        return SyncStatus(
            last_run_at=self._last_run_at,
            last_error=self._last_error,
            run_count=self._run_count,
            error_count=self._error_count,
            consecutive_failures=self._consecutive_failures,
            state=self._state,
            jobs=sorted(name for name, task in self._loops.items() if not task.done()),
        )

    def status_document(self) -> dict[str, Any]:
        doc = self.status().model_dump(mode="json")
        doc["last_run_id"] = self._last_run_id
        if self._last_report is not None:
            doc["last_report"] = self._last_report.model_dump()
        return doc

    # ── Runs ────────────────────────────────────────────────────────────

    def trigger(self) -> Optional[asyncio.Task[Optional[RunReport]]]:
        """Start a run unless one is in flight. Returns the run task or None when dropped."""
        if self.is_running:
            logger.warning("sync_trigger_dropped", reason="run_in_progress")
            SYNC_RUNS.labels(outcome="dropped").inc()
            return None
        self._run_task = asyncio.create_task(self._execute(), name="sync-run")
        return self._run_task

    async def run_now(self) -> Optional[RunReport]:
        """Run immediately and wait for the outcome; None when dropped, failed or cancelled."""
        task = self.trigger()
        if task is None:
            return None
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    async def _execute(self) -> Optional[RunReport]:
        self._set_state(SyncState.RUNNING)
        self._run_count += 1
        self._last_run_id = bind_run_context(self._run_count)
        start = time.perf_counter()
        logger.info("sync_run_started")
        try:
            if not await self._store.ping():
                raise StoreError("store unreachable")
            await self._leagues.sync()
            report = await self._reconciler.reconcile()
        except asyncio.CancelledError:
            self._record_failure("run cancelled")
            raise
        except Exception as exc:
            self._record_failure(str(exc) or exc.__class__.__name__)
            logger.error("sync_run_failed", error=str(exc), exc_info=True)
            await self._maybe_alert(JOB_SYNC)
            return None
        finally:
            self._last_run_at = datetime.now(timezone.utc)
            SYNC_DURATION.observe(time.perf_counter() - start)
            clear_run_context()

        self._last_report = report
        self._last_error = None
        self._consecutive_failures = 0
        CONSECUTIVE_FAILURES.set(0)
        SYNC_RUNS.labels(outcome="success").inc()
        self._set_state(SyncState.IDLE)
        logger.info(
            "sync_run_finished",
            run=self._run_count,
            run_id=self._last_run_id,
            duration_s=report.duration_s,
        )
        return report

    def _record_failure(self, error: str) -> None:
        self._error_count += 1
        self._consecutive_failures += 1
        self._last_error = error
        CONSECUTIVE_FAILURES.set(self._consecutive_failures)
        SYNC_RUNS.labels(outcome="failure").inc()
        self._set_state(SyncState.FAILED)

    async def _maybe_alert(self, job: str) -> None:
        if self._consecutive_failures < self._settings.failure_alert_threshold:
            return
        await self._alert(job, self._consecutive_failures, self._last_error)

    async def _alert(self, job: str, failures: int, error: Optional[str]) -> None:
        subject = messages.subject(self._settings.subject_prefix, messages.SUBJECT_OPERATOR_ALERT)
        try:
            ok = await self._notifier.send(
                [self._settings.admin_email], subject, messages.operator_alert(job, failures, error)
            )
        except Exception as exc:
            logger.error("operator_alert_failed", job=job, error=str(exc))
            NOTIFICATIONS.labels(reason=NotificationReason.OPERATOR_ALERT.value, outcome="error").inc()
            return
        NOTIFICATIONS.labels(
            reason=NotificationReason.OPERATOR_ALERT.value, outcome="sent" if ok else "failed"
        ).inc()
        logger.warning("operator_alert_sent", job=job, failures=failures, delivered=ok)

    async def cancel_run(self, reason: str) -> None:
        task = self._run_task
        if task is None or task.done():
            return
        logger.warning("sync_run_cancelling", reason=reason)
        task.cancel()
        await asyncio.wait({task})
        self._last_error = reason
        await self._maybe_alert(JOB_SYNC)

    # ── Health & maintenance ────────────────────────────────────────────

    async def health_check(self) -> bool:
        healthy = await self._store.ping()
        if healthy:
            logger.debug("health_check_ok")
            return True
        logger.error("health_check_failed", running=self.is_running)
        if self.is_running:
            await self.cancel_run("store unreachable")
        return False

    async def maintenance(self) -> None:
        try:
            await self._store.housekeeping()
            self._resolver.clear_all()
            if self._settings.maintenance_refresh_clubs:
                await self._resolver.refresh_all()
        except Exception as exc:
            logger.error("maintenance_failed", error=str(exc), exc_info=True)
            await self._alert(JOB_MAINTENANCE, 1, str(exc))
            return
        logger.info("maintenance_done")

    # ── Loops ───────────────────────────────────────────────────────────

    async def _sleep(self, seconds: float) -> bool:
        """Sleep unless shutdown is requested first. Returns False on shutdown."""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return True
        return False

    async def _sync_loop(self) -> None:
        if not self._settings.sync_run_on_start:
            if not await self._sleep(self._settings.sync_interval_s):
                return
        while not self._shutdown.is_set():
            self.trigger()
            if not await self._sleep(self._settings.sync_interval_s):
                return

    async def _health_loop(self) -> None:
        while await self._sleep(self._settings.health_interval_s):
            try:
                await self.health_check()
            except Exception as exc:
                logger.error("health_loop_error", error=str(exc), exc_info=True)

    async def _maintenance_loop(self) -> None:
        while True:
            delay = seconds_until_daily(self._settings.maintenance_hour, self._settings.maintenance_timezone)
            logger.debug("maintenance_scheduled", in_s=round(delay))
            if not await self._sleep(delay):
                return
            await self.maintenance()

    async def start(self) -> None:
        if self._loops:
            logger.warning("scheduler_already_started")
            return
        self._shutdown.clear()
        self._loops = {
            JOB_SYNC: asyncio.create_task(self._sync_loop(), name="sync-loop"),
            JOB_HEALTH: asyncio.create_task(self._health_loop(), name="health-loop"),
            JOB_MAINTENANCE: asyncio.create_task(self._maintenance_loop(), name="maintenance-loop"),
        }
        logger.info("scheduler_started", jobs=sorted(self._loops))

    async def stop(self) -> None:
        self._shutdown.set()
        tasks = list(self._loops.values())
        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()
            tasks.append(self._run_task)
        for task in self._loops.values():
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._loops = {}
        if self._state == SyncState.RUNNING:
            self._set_state(SyncState.IDLE)
        logger.info("scheduler_stopped")

    async def wait_closed(self) -> None:
        await self._shutdown.wait()

    def request_shutdown(self) -> None:
        self._shutdown.set()


async def main() -> None:
    """Sync worker entrypoint."""
    settings = get_settings()
    setup_logging("sync")
    start_metrics_server()

    db = DatabaseManager(settings)
    await db.connect()
    await db.create_all()
    store = SyncStore(db)

    provider = BasketballBundProvider(settings)
    await provider.start()

    notifier = build_notifier(settings)
    resolver = IdentityResolver(provider, store, settings)
    leagues = LeagueCatalogSynchronizer(provider, store, settings)
    engine = NotificationEngine(store, notifier)
    reconciler = MatchReconciler(provider, store, resolver, engine, settings)
    scheduler = SyncScheduler(store, leagues, reconciler, resolver, notifier, settings)

    start_health_server("sync", scheduler.status_document)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, scheduler.request_shutdown)

    logger.info("sync_service_started", instance_id=settings.instance_id)

    try:
        await scheduler.start()
        await scheduler.wait_closed()
    finally:
        await scheduler.stop()
        await resolver.close()
        await provider.close()
        await db.disconnect()
        logger.info("sync_service_stopped")


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
