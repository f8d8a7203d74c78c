"""
Unit tests for the sync scheduler state machine.

Run: pytest backend/tests/test_scheduler.py -v
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog

from shared.config import Settings
from shared.models.domain import RunReport
from shared.models.enums import SyncState
from shared.utils.database import StoreError
from scheduler.service import SyncScheduler, seconds_until_daily


@pytest.fixture
def mock_store() -> MagicMock:
    s = MagicMock()
    s.ping = AsyncMock(return_value=True)
    s.housekeeping = AsyncMock()
    return s


@pytest.fixture
def mock_leagues() -> MagicMock:
    m = MagicMock()
    m.sync = AsyncMock()
    return m


@pytest.fixture
def mock_reconciler() -> MagicMock:
    m = MagicMock()
    m.reconcile = AsyncMock(return_value=RunReport(created=2))
    return m


@pytest.fixture
def mock_resolver() -> MagicMock:
    m = MagicMock()
    m.refresh_all = AsyncMock(return_value=0)
    return m


@pytest.fixture
def mock_notifier() -> MagicMock:
    n = MagicMock()
    n.send = AsyncMock(return_value=True)
    return n


@pytest.fixture
def scheduler(
    mock_store: MagicMock,
    mock_leagues: MagicMock,
    mock_reconciler: MagicMock,
    mock_resolver: MagicMock,
    mock_notifier: MagicMock,
    settings: Settings,
) -> SyncScheduler:
    return SyncScheduler(mock_store, mock_leagues, mock_reconciler, mock_resolver, mock_notifier, settings)


# ── Runs ────────────────────────────────────────────────────────────────

class TestRuns:
    @pytest.mark.asyncio
    async def test_successful_run(
        self, scheduler: SyncScheduler, mock_leagues: MagicMock, mock_reconciler: MagicMock
    ) -> None:
        report = await scheduler.run_now()

        assert report is not None and report.created == 2
        mock_leagues.sync.assert_awaited_once()
        mock_reconciler.reconcile.assert_awaited_once()
        status = scheduler.status()
        assert status.state == SyncState.IDLE
        assert status.run_count == 1
        assert status.error_count == 0
        assert status.last_run_at is not None

    @pytest.mark.asyncio
    async def test_trigger_while_running_is_dropped(
        self, scheduler: SyncScheduler, mock_reconciler: MagicMock
    ) -> None:
        release = asyncio.Event()

        async def slow_reconcile() -> RunReport:
            await release.wait()
            return RunReport()

        mock_reconciler.reconcile.side_effect = slow_reconcile
        first = scheduler.trigger()
        await asyncio.sleep(0)

        assert scheduler.state == SyncState.RUNNING
        assert scheduler.trigger() is None
        assert await scheduler.run_now() is None

        release.set()
        await first
        assert scheduler.status().run_count == 1
        assert mock_reconciler.reconcile.await_count == 1
        assert scheduler.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_unreachable_store_fails_run_before_sync(
        self, scheduler: SyncScheduler, mock_store: MagicMock, mock_leagues: MagicMock
    ) -> None:
        mock_store.ping.return_value = False
        assert await scheduler.run_now() is None
        mock_leagues.sync.assert_not_awaited()
        status = scheduler.status()
        assert status.state == SyncState.FAILED
        assert status.last_error == "store unreachable"

    @pytest.mark.asyncio
    async def test_alert_after_consecutive_failures(
        self,
        scheduler: SyncScheduler,
        mock_reconciler: MagicMock,
        mock_notifier: MagicMock,
        settings: Settings,
    ) -> None:
        mock_reconciler.reconcile.side_effect = StoreError("connection refused")

        await scheduler.run_now()
        await scheduler.run_now()
        mock_notifier.send.assert_not_awaited()

        await scheduler.run_now()
        mock_notifier.send.assert_awaited_once()
        recipients, subject, body = mock_notifier.send.await_args.args
        assert recipients == [settings.admin_email]
        assert subject.startswith("[SPIELEBASAR]")
        assert "connection refused" in body

        status = scheduler.status()
        assert (status.error_count, status.consecutive_failures) == (3, 3)
        assert status.state == SyncState.FAILED

    @pytest.mark.asyncio
    async def test_success_resets_consecutive_failures(
        self, scheduler: SyncScheduler, mock_reconciler: MagicMock
    ) -> None:
        mock_reconciler.reconcile.side_effect = StoreError("boom")
        await scheduler.run_now()
        mock_reconciler.reconcile.side_effect = None
        await scheduler.run_now()

        status = scheduler.status()
        assert (status.error_count, status.consecutive_failures) == (1, 0)
        assert status.last_error is None
        assert status.state == SyncState.IDLE

    @pytest.mark.asyncio
    async def test_run_binds_log_context_for_its_duration(
        self, scheduler: SyncScheduler, mock_reconciler: MagicMock
    ) -> None:
        seen: dict = {}

        async def capture() -> RunReport:
            seen.update(structlog.contextvars.get_contextvars())
            return RunReport()

        mock_reconciler.reconcile.side_effect = capture
        await scheduler.run_now()
        await scheduler.run_now()

        assert seen["run"] == 2
        assert seen["run_id"] == scheduler.status_document()["last_run_id"]
        assert "run_id" not in structlog.contextvars.get_contextvars()


# ── Health & maintenance ────────────────────────────────────────────────

class TestHealth:
    @pytest.mark.asyncio
    async def test_unreachable_store_cancels_running_run(
        self, scheduler: SyncScheduler, mock_store: MagicMock, mock_reconciler: MagicMock
    ) -> None:
        async def hang() -> RunReport:
            await asyncio.Event().wait()
            return RunReport()

        mock_reconciler.reconcile.side_effect = hang
        task = scheduler.trigger()
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        mock_store.ping.return_value = False
        assert await scheduler.health_check() is False

        assert task.cancelled()
        status = scheduler.status()
        assert status.state == SyncState.FAILED
        assert status.last_error == "store unreachable"

    @pytest.mark.asyncio
    async def test_healthy_store_leaves_run_alone(self, scheduler: SyncScheduler) -> None:
        assert await scheduler.health_check() is True

    @pytest.mark.asyncio
    async def test_maintenance_clears_identity_cache(
        self, scheduler: SyncScheduler, mock_store: MagicMock, mock_resolver: MagicMock
    ) -> None:
        await scheduler.maintenance()
        mock_store.housekeeping.assert_awaited_once()
        mock_resolver.clear_all.assert_called_once()
        mock_resolver.refresh_all.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_maintenance_failure_alerts_operator(
        self, scheduler: SyncScheduler, mock_store: MagicMock, mock_notifier: MagicMock
    ) -> None:
        mock_store.housekeeping.side_effect = StoreError("disk full")
        await scheduler.maintenance()
        mock_notifier.send.assert_awaited_once()


# ── Lifecycle ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_start_and_stop(
    mock_store: MagicMock,
    mock_leagues: MagicMock,
    mock_reconciler: MagicMock,
    mock_resolver: MagicMock,
    mock_notifier: MagicMock,
    settings: Settings,
) -> None:
    quiet = settings.model_copy(update={"sync_run_on_start": False})
    scheduler = SyncScheduler(mock_store, mock_leagues, mock_reconciler, mock_resolver, mock_notifier, quiet)
    await scheduler.start()
    await asyncio.sleep(0)
    assert scheduler.status().jobs == ["health", "maintenance", "sync"]

    await scheduler.stop()
    assert scheduler.status().jobs == []
    assert scheduler.status().run_count == 0


def test_status_shape(scheduler: SyncScheduler) -> None:
    doc = scheduler.status_document()
    assert set(doc) >= {"last_run_at", "run_count", "error_count", "state", "consecutive_failures"}
    assert doc["state"] == "idle"


# ── Maintenance clock ───────────────────────────────────────────────────

def test_seconds_until_maintenance_same_day() -> None:
    # 01:00 UTC is 02:00 in Berlin during winter time
    now = datetime(2025, 1, 10, 1, 0, tzinfo=timezone.utc)
    assert seconds_until_daily(3, "Europe/Berlin", now) == 3600


def test_seconds_until_maintenance_next_day() -> None:
    now = datetime(2025, 1, 10, 2, 30, tzinfo=timezone.utc)
    assert seconds_until_daily(3, "Europe/Berlin", now) == 23.5 * 3600
