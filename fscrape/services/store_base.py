"""Abstract persistence interface consumed by the session engine.

Sessions cross this boundary in transport form (JSON-compatible dicts
produced by SessionStateManager.to_transport_form). Every upsert is keyed by
id and must be atomic and idempotent.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, Dict, List, Optional

from fscrape.models.post import ForumPost
from fscrape.models.session import SourceKind

SessionRecord = Dict[str, Any]


class SessionStore(ABC):
    """Store for session records and scraped posts"""

    @abstractmethod
    def upsert_session(self, record: SessionRecord) -> None:
        """Insert or replace a session record by its `id`"""
        pass

    @abstractmethod
    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        pass

    @abstractmethod
    def list_sessions(self) -> List[SessionRecord]:
        pass

    @abstractmethod
    def list_active_sessions(self) -> List[SessionRecord]:
        """Records whose status is running or pending"""
        pass

    @abstractmethod
    def list_resumable_sessions(
        self, source_kind: Optional[SourceKind] = None
    ) -> List[SessionRecord]:
        """Paused records, plus failed records carrying a resume token"""
        pass

    @abstractmethod
    def delete_sessions_older_than(self, age: timedelta) -> int:
        """Delete terminal records completed before now - age.

        Returns:
            Number of records deleted
        """
        pass

    @abstractmethod
    def upsert_posts(self, posts: List[ForumPost]) -> int:
        """Insert or replace posts by (source_kind, id).

        Returns:
            Number of posts written
        """
        pass

    @abstractmethod
    def list_posts(
        self, source_kind: Optional[SourceKind] = None, limit: Optional[int] = None
    ) -> List[ForumPost]:
        pass

    @abstractmethod
    def delete_posts_older_than(
        self, age: timedelta, source_kind: Optional[SourceKind] = None
    ) -> int:
        """Delete posts scraped before now - age"""
        pass
