"""Correlation ID context management.

ContextVar-based storage so a correlation id set at a batch or CLI boundary
follows every coroutine spawned beneath it.

Usage:
    from fscrape.observability.context import correlation_id_context

    with correlation_id_context("batch-20250203"):
        await processor.execute()
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

_correlation_id_var: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)


def set_correlation_id(corr_id: Optional[str] = None) -> str:
    """Set the correlation ID for the current context.

    Args:
        corr_id: Optional correlation ID. If None, generates a UUID4.

    Returns:
        The correlation ID that was set.
    """
    if corr_id is None:
        corr_id = str(uuid.uuid4())

    _correlation_id_var.set(corr_id)
    return corr_id


def get_correlation_id() -> Optional[str]:
    """Current correlation ID, or None if unset."""
    return _correlation_id_var.get()


def clear_correlation_id() -> None:
    _correlation_id_var.set(None)


@contextmanager
def correlation_id_context(
    corr_id: Optional[str] = None,
) -> Generator[str, None, None]:
    """Scope a correlation ID; the previous value is restored on exit.

    Args:
        corr_id: Optional correlation ID. If None, generates a UUID4.

    Yields:
        The correlation ID in effect inside the block.
    """
    if corr_id is None:
        corr_id = str(uuid.uuid4())

    token = _correlation_id_var.set(corr_id)
    try:
        yield corr_id
    finally:
        _correlation_id_var.reset(token)
