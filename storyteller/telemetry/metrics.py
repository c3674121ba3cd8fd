"""Prometheus metrics definitions and helpers."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests processed",
    ("method", "route", "status"),
)

REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ("method", "route"),
    buckets=(
        0.005,
        0.01,
        0.025,
        0.05,
        0.1,
        0.25,
        0.5,
        1.0,
        2.5,
        5.0,
        10.0,
    ),
)

ERROR_COUNTER = Counter(
    "app_internal_errors_total",
    "Number of requests ending in internal server error responses",
    ("method", "route"),
)

GENERATION_RUNS = Counter(
    "narration_runs_total",
    "Narration generation runs by terminal outcome",
    ("outcome",),
)

GENERATION_DURATION = Histogram(
    "narration_run_duration_seconds",
    "Wall-clock duration of narration runs",
    ("outcome",),
    buckets=(1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 90.0, 120.0),
)

STORE_RETRIES = Counter(
    "catalog_store_retries_total",
    "Retried calls against remote backends",
    ("operation",),
)

SYNC_FAILURES = Counter(
    "catalog_sync_failures_total",
    "Catalog load/save failures absorbed by the synchronization layer",
    ("operation",),
)

REPAIR_ITEMS = Counter(
    "publish_repair_items_total",
    "Segments processed by the publish repair batch",
    ("result",),
)


def observe_request(
    method: str,
    route: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record metrics for a completed HTTP request."""

    safe_route = route or "unknown"
    safe_method = method or "UNKNOWN"
    status_label = str(status_code)
    observed_duration = duration_seconds if duration_seconds >= 0 else 0

    REQUEST_COUNT.labels(
        method=safe_method,
        route=safe_route,
        status=status_label,
    ).inc()
    REQUEST_LATENCY.labels(
        method=safe_method,
        route=safe_route,
    ).observe(observed_duration)

    if status_code >= 500:
        ERROR_COUNTER.labels(
            method=safe_method,
            route=safe_route,
        ).inc()


def observe_generation(outcome: str, duration_seconds: float) -> None:
    """Record the terminal outcome of a narration run."""

    GENERATION_RUNS.labels(outcome=outcome).inc()
    GENERATION_DURATION.labels(outcome=outcome).observe(max(0.0, duration_seconds))


def record_retry(operation: str) -> None:
    STORE_RETRIES.labels(operation=operation).inc()


def record_sync_failure(operation: str) -> None:
    SYNC_FAILURES.labels(operation=operation).inc()


def record_repair(repaired: int, failed: int) -> None:
    if repaired:
        REPAIR_ITEMS.labels(result="repaired").inc(repaired)
    if failed:
        REPAIR_ITEMS.labels(result="failed").inc(failed)
