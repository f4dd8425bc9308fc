"""Prometheus metrics for the fscrape engine.

Defines counters, gauges, and histograms for monitoring:
- Session lifecycle transitions and active sessions
- Items processed per source
- Batch operation outcomes and latency
- Persistence failures

Usage:
    from fscrape.observability.metrics import BATCH_OPERATIONS

    BATCH_OPERATIONS.labels(kind="scrape", status="success").inc()
"""

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Custom registry to avoid conflicts with the default registry
REGISTRY = CollectorRegistry(auto_describe=True)

# =============================================================================
# COUNTERS
# =============================================================================

SESSION_TRANSITIONS = Counter(
    name="fscrape_session_transitions_total",
    documentation="Session state transitions by target status",
    labelnames=["status"],  # running, paused, completed, failed, cancelled
    registry=REGISTRY,
)

ITEMS_PROCESSED = Counter(
    name="fscrape_items_processed_total",
    documentation="Items upserted by scrape sessions",
    labelnames=["source"],  # reddit, hackernews
    registry=REGISTRY,
)

BATCH_OPERATIONS = Counter(
    name="fscrape_batch_operations_total",
    documentation="Batch operations by kind and outcome",
    labelnames=["kind", "status"],  # scrape/export/purge/admin, success/failed/skipped
    registry=REGISTRY,
)

PERSISTENCE_FAILURES = Counter(
    name="fscrape_persistence_failures_total",
    documentation="Session store writes that raised",
    registry=REGISTRY,
)

# =============================================================================
# GAUGES
# =============================================================================

ACTIVE_SESSIONS = Gauge(
    name="fscrape_active_sessions",
    documentation="Sessions currently running",
    registry=REGISTRY,
)

# =============================================================================
# HISTOGRAMS
# =============================================================================

BATCH_OPERATION_DURATION = Histogram(
    name="fscrape_batch_operation_duration_seconds",
    documentation="Batch operation duration in seconds",
    labelnames=["kind"],
    buckets=(0.01, 0.1, 0.5, 1, 5, 10, 30, 60, 300, float("inf")),
    registry=REGISTRY,
)


def get_metrics_text() -> bytes:
    """Prometheus exposition text for the fscrape registry."""
    return generate_latest(REGISTRY)


def reset_metrics() -> None:
    """Zero the gauges.

    prometheus_client has no public reset for counters; tests compare
    deltas against `REGISTRY.get_sample_value` instead.
    """
    ACTIVE_SESSIONS.set(0)
