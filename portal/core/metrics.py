"""Prometheus metrics for the cache and the maintenance routine.

Labels are low-cardinality on purpose: operation/outcome names only, never
cache keys or article ids.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ----------------------------
# Cache metrics
# ----------------------------

CACHE_OPERATIONS_TOTAL = Counter(
    "portal_cache_operations_total",
    "In-process cache operations by operation and outcome.",
    labelnames=("operation", "outcome"),
)

CACHE_ENTRIES = Gauge(
    "portal_cache_entries",
    "Number of entries currently held by the in-process cache.",
)

# ----------------------------
# Analytics metrics
# ----------------------------

ANALYTICS_EVENTS_TOTAL = Counter(
    "portal_analytics_events_total",
    "Tracked analytics events by kind and outcome.",
    labelnames=("kind", "outcome"),
)

# ----------------------------
# Maintenance metrics
# ----------------------------

MAINTENANCE_STEPS_TOTAL = Counter(
    "portal_maintenance_steps_total",
    "Maintenance steps executed, by stage and outcome.",
    labelnames=("stage", "outcome"),
)

MAINTENANCE_STEP_DURATION_SECONDS = Histogram(
    "portal_maintenance_step_duration_seconds",
    "Duration of individual maintenance steps in seconds.",
    labelnames=("stage",),
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

MAINTENANCE_LAST_RUN_TIMESTAMP = Gauge(
    "portal_maintenance_last_run_timestamp_seconds",
    "Unix time of the last completed maintenance run.",
)


def observe_cache(operation: str, outcome: str) -> None:
    CACHE_OPERATIONS_TOTAL.labels(operation=operation, outcome=outcome).inc()


def observe_step(stage: str, outcome: str, duration_seconds: float) -> None:
    MAINTENANCE_STEPS_TOTAL.labels(stage=stage, outcome=outcome).inc()
    MAINTENANCE_STEP_DURATION_SECONDS.labels(stage=stage).observe(max(duration_seconds, 0.0))


__all__ = [
    "ANALYTICS_EVENTS_TOTAL",
    "CACHE_ENTRIES",
    "CACHE_OPERATIONS_TOTAL",
    "MAINTENANCE_LAST_RUN_TIMESTAMP",
    "MAINTENANCE_STEPS_TOTAL",
    "MAINTENANCE_STEP_DURATION_SECONDS",
    "observe_cache",
    "observe_step",
]
