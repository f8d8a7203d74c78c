"""
Lightweight metrics collection for the sync services.
Counters, histograms and gauges exported via prometheus_client.
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
UPSTREAM_REQUESTS = Counter(
    "sb_upstream_requests_total",
    "Total upstream HTTP requests",
    ["endpoint", "status"],
)
SYNC_RUNS = Counter(
    "sb_sync_runs_total",
    "Reconciliation runs by outcome",
    ["outcome"],
)
FIXTURE_CHANGES = Counter(
    "sb_fixture_changes_total",
    "Fixture upsert decisions by change class",
    ["change"],
)
NOTIFICATIONS = Counter(
    "sb_notifications_total",
    "Notification dispatch attempts",
    ["reason", "outcome"],
)
CLUB_RESOLUTIONS = Counter(
    "sb_club_resolutions_total",
    "Club identity resolutions by source",
    ["source"],
)

# ── Histograms ──────────────────────────────────────────────────────────
UPSTREAM_LATENCY = Histogram(
    "sb_upstream_latency_seconds",
    "Upstream request latency in seconds",
    ["endpoint"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
)
SYNC_DURATION = Histogram(
    "sb_sync_duration_seconds",
    "Duration of a full reconciliation run",
    buckets=(10, 30, 60, 120, 300, 600, 900, 1800),
)

# ── Gauges ──────────────────────────────────────────────────────────────
SCHEDULER_STATE = Gauge(
    "sb_scheduler_state",
    "1 for the scheduler's current state, 0 otherwise",
    ["state"],
)
CONSECUTIVE_FAILURES = Gauge(
    "sb_sync_consecutive_failures",
    "Consecutive failed reconciliation runs",
)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
