"""Observability for the fscrape engine.

Provides:
- Correlation ID context management for batch tracing
- Structured logging with context propagation
- Prometheus metrics for sessions and batch operations

Usage:
    from fscrape.observability import (
        configure_logging,
        correlation_id_context,
        get_logger,
        BATCH_OPERATIONS,
    )

    configure_logging(level="INFO", json_output=False)

    with correlation_id_context() as corr_id:
        logger = get_logger("batch")
        logger.info("batch_started", correlation_id=corr_id)

    BATCH_OPERATIONS.labels(kind="scrape", status="success").inc()
"""

from fscrape.observability.context import (
    set_correlation_id,
    get_correlation_id,
    clear_correlation_id,
    correlation_id_context,
)
from fscrape.observability.logging import (
    get_logger,
    configure_logging,
    add_correlation_id_processor,
    bind_context,
    clear_context,
)
from fscrape.observability.metrics import (
    # Counters
    SESSION_TRANSITIONS,
    ITEMS_PROCESSED,
    BATCH_OPERATIONS,
    PERSISTENCE_FAILURES,
    # Gauges
    ACTIVE_SESSIONS,
    # Histograms
    BATCH_OPERATION_DURATION,
    # Helpers
    REGISTRY,
    get_metrics_text,
    reset_metrics,
)

__all__ = [
    # Context
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "correlation_id_context",
    # Logging
    "get_logger",
    "configure_logging",
    "add_correlation_id_processor",
    "bind_context",
    "clear_context",
    # Metrics
    "SESSION_TRANSITIONS",
    "ITEMS_PROCESSED",
    "BATCH_OPERATIONS",
    "PERSISTENCE_FAILURES",
    "ACTIVE_SESSIONS",
    "BATCH_OPERATION_DURATION",
    "REGISTRY",
    "get_metrics_text",
    "reset_metrics",
]
