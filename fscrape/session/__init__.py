"""Session engine: state machine, progress tracking and coordination.

Usage:
    from fscrape.session import SessionManager

    manager = SessionManager(store=store, settings=config.sessions)
    session = manager.create(SessionConfig(source_kind=SourceKind.HACKERNEWS))
    manager.start(session.id)
"""

from fscrape.session.cancellation import CancellationToken
from fscrape.session.manager import SessionEvent, SessionManager
from fscrape.session.progress_tracker import ProgressTracker, TrackingNotFoundError
from fscrape.session.state import ALLOWED_TRANSITIONS, SessionStateManager

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CancellationToken",
    "ProgressTracker",
    "SessionEvent",
    "SessionManager",
    "SessionStateManager",
    "TrackingNotFoundError",
]
