"""Telemetry helpers and metrics."""

from .metrics import (
    ERROR_COUNTER,
    GENERATION_DURATION,
    GENERATION_RUNS,
    REPAIR_ITEMS,
    REQUEST_COUNT,
    REQUEST_LATENCY,
    STORE_RETRIES,
    SYNC_FAILURES,
    observe_generation,
    observe_request,
    record_repair,
    record_retry,
    record_sync_failure,
)

__all__ = [
    "ERROR_COUNTER",
    "GENERATION_DURATION",
    "GENERATION_RUNS",
    "REPAIR_ITEMS",
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "STORE_RETRIES",
    "SYNC_FAILURES",
    "observe_generation",
    "observe_request",
    "record_repair",
    "record_retry",
    "record_sync_failure",
]
