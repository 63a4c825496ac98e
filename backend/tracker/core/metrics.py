"""Prometheus metrics for the portfolio tracker.

Scheduler metrics: runs, per-user outcomes, run duration
Market data metrics: provider requests, latency, failovers
"""

from prometheus_client import Counter, Histogram, Info

# ── Scheduler Metrics ────────────────────────────────────────

SCHEDULER_RUNS_TOTAL = Counter(
    "tracker_scheduler_runs_total",
    "Daily update runs",
    ["trigger", "status"],
)

SCHEDULER_USER_UPDATES = Counter(
    "tracker_scheduler_user_updates_total",
    "Per-user daily update outcomes",
    ["outcome"],
)

SCHEDULER_RUN_DURATION = Histogram(
    "tracker_scheduler_run_duration_seconds",
    "Duration of a full daily update run",
    buckets=[1, 5, 15, 30, 60, 120, 300, 600, 1800],
)

# ── Market Data Metrics ──────────────────────────────────────

MARKET_DATA_REQUESTS = Counter(
    "tracker_market_data_requests_total",
    "Upstream market data HTTP requests",
    ["provider", "operation", "status"],
)

MARKET_DATA_LATENCY = Histogram(
    "tracker_market_data_latency_seconds",
    "Upstream market data request latency",
    ["provider", "operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

MARKET_DATA_FAILOVERS = Counter(
    "tracker_market_data_failovers_total",
    "Operations that fell back to the secondary provider",
    ["operation"],
)

# ── HTTP Metrics ─────────────────────────────────────────────

HTTP_REQUESTS = Counter(
    "tracker_http_requests_total",
    "Total HTTP requests to the API",
    ["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "tracker_http_request_duration_seconds",
    "HTTP request duration",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

APP_INFO = Info("tracker_app", "Portfolio tracker application info")
