"""Custom exceptions for the session and batch orchestration engine

This module defines the exception hierarchy for fscrape:
- Base exception for all engine errors
- Session lifecycle errors (not found, invalid transition, bad progress)
- Persistence integrity errors
- Batch operation and export errors
- Source adapter errors

All exceptions inherit from FscrapeError to allow catching all engine-related
errors in a single except block when needed.
"""

from typing import Optional


class FscrapeError(Exception):
    """Base exception for all fscrape errors

    Use this to catch any error raised by the engine:
    ```python
    try:
        manager.pause(session_id)
    except FscrapeError as e:
        logger.error("pause_failed", error=str(e))
    ```
    """

    pass


class SessionNotFoundError(FscrapeError):
    """No session is tracked under the given id

    Raised by every SessionManager / SessionStateManager operation that
    receives an unknown session id.
    """

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id} not found")
        self.session_id = session_id


class InvalidTransitionError(FscrapeError):
    """Session state machine rule violated

    Raised when:
    - The requested status is not reachable from the current one
    - An operation requires a specific prior status (e.g. pausing a
      session that is not running)
    - A failed session without a resume token is resumed

    The session status is left unchanged.
    """

    def __init__(
        self,
        session_id: str,
        current: str,
        requested: str,
        reason: Optional[str] = None,
    ) -> None:
        message = (
            f"Invalid transition for session {session_id}: {current} -> {requested}"
        )
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.session_id = session_id
        self.current = current
        self.requested = requested


class InvalidProgressError(FscrapeError):
    """Progress update would move a counter backwards

    Processed counts are monotonic within a tracking interval; a lower value
    is only accepted with an explicit reset.
    """

    pass


class DataIntegrityError(FscrapeError):
    """A persisted session record failed validation

    Raised when:
    - Required fields are missing or malformed
    - Counters are negative or move backwards relative to known state
    - Terminal status and completion timestamp disagree

    Callers recovering state log and drop the record instead of crashing.
    """

    def __init__(self, message: str, session_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.session_id = session_id


class OperationError(FscrapeError):
    """A batch operation handler failed

    BatchProcessor converts this (and any other handler exception) into a
    failed BatchResult; it never propagates past the processor.
    """

    pass


class UnsupportedOperationError(FscrapeError):
    """Unknown batch operation kind or admin action"""

    pass


class UnsupportedFormatError(UnsupportedOperationError):
    """Export format has no renderer"""

    def __init__(self, fmt: str) -> None:
        super().__init__(f"Unsupported export format: {fmt}")
        self.format = fmt


class SourceError(FscrapeError):
    """Source adapter request failed

    Raised when:
    - Remote API returns a non-retryable error status
    - Response payload cannot be parsed
    - Request times out
    """

    pass


class RateLimitError(SourceError):
    """Rate limit exceeded with optional retry-after metadata.

    Raised when:
    - API returns 429 status
    """

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class OperationCancelledError(FscrapeError):
    """Work observed its session's cancellation token

    Raised cooperatively by long-running work (e.g. a scrape job between
    pages) after the owning session was paused or cancelled.
    """

    def __init__(self, session_id: str, reason: Optional[str] = None) -> None:
        message = f"Session {session_id} was cancelled"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.session_id = session_id
        self.reason = reason
