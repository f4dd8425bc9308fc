"""JSON file implementation of SessionStore.

Layout under the data directory:

    sessions/<session_id>.json   one record per session
    posts/<source_kind>.json     {post_id: post} per source

Writes go to a temp file first and are renamed into place so a crash never
leaves a half-written record.
"""

import json
import os
import re
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import structlog
from pydantic import ValidationError

from fscrape.models.post import ForumPost
from fscrape.models.session import SessionStatus, SourceKind
from fscrape.services.store_base import SessionRecord, SessionStore

logger = structlog.get_logger()

_SAFE_ID = re.compile(r"^[A-Za-z0-9._-]+$")

_ACTIVE = {SessionStatus.RUNNING.value, SessionStatus.PENDING.value}
_TERMINAL = {
    SessionStatus.COMPLETED.value,
    SessionStatus.FAILED.value,
    SessionStatus.CANCELLED.value,
}


class JsonFileStore(SessionStore):
    """File-backed store; one process owns a data directory at a time"""

    def __init__(
        self,
        data_dir: str | Path,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """
        Initialize JSON store.

        Args:
            data_dir: Root directory for sessions and posts
            clock: Time source for age-based deletes
        """
        self.data_dir = Path(data_dir)
        self.sessions_dir = self.data_dir / "sessions"
        self.posts_dir = self.data_dir / "posts"
        self._clock = clock

        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.posts_dir.mkdir(parents=True, exist_ok=True)

        logger.info("json_store_initialized", data_dir=str(self.data_dir))

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def upsert_session(self, record: SessionRecord) -> None:
        session_id = record.get("id")
        if not isinstance(session_id, str) or not session_id:
            raise ValueError("Session record has no id")

        self._write_json(self._session_path(session_id), record)
        logger.debug(
            "session_record_saved", session_id=session_id, status=record.get("status")
        )

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        path = self._session_path(session_id)
        if not path.exists():
            return None
        return self._read_json(path)

    def list_sessions(self) -> List[SessionRecord]:
        records = []
        for path in sorted(self.sessions_dir.glob("*.json")):
            record = self._read_json(path)
            if record is not None:
                records.append(record)
        return records

    def list_active_sessions(self) -> List[SessionRecord]:
        return [r for r in self.list_sessions() if r.get("status") in _ACTIVE]

    def list_resumable_sessions(
        self, source_kind: Optional[SourceKind] = None
    ) -> List[SessionRecord]:
        resumable = []
        for record in self.list_sessions():
            if source_kind is not None and record.get("source_kind") != source_kind.value:
                continue

            status = record.get("status")
            resume_data = record.get("resume_data") or {}
            if status == SessionStatus.PAUSED.value or (
                status == SessionStatus.FAILED.value and resume_data.get("token")
            ):
                resumable.append(record)
        return resumable

    def delete_sessions_older_than(self, age: timedelta) -> int:
        cutoff = self._clock() - age
        deleted = 0

        for path in self.sessions_dir.glob("*.json"):
            record = self._read_json(path)
            if record is None or record.get("status") not in _TERMINAL:
                continue

            completed_at = _parse_datetime(record.get("completed_at"))
            if completed_at is not None and completed_at < cutoff:
                path.unlink()
                deleted += 1

        logger.info("session_records_deleted", count=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Posts
    # ------------------------------------------------------------------

    def upsert_posts(self, posts: List[ForumPost]) -> int:
        by_source: Dict[SourceKind, List[ForumPost]] = {}
        for post in posts:
            by_source.setdefault(post.source_kind, []).append(post)

        for source_kind, source_posts in by_source.items():
            path = self._posts_path(source_kind)
            existing = self._read_json(path) or {}
            for post in source_posts:
                existing[post.id] = post.model_dump(mode="json")
            self._write_json(path, existing)

        return len(posts)

    def list_posts(
        self, source_kind: Optional[SourceKind] = None, limit: Optional[int] = None
    ) -> List[ForumPost]:
        sources = [source_kind] if source_kind else list(SourceKind)
        posts: List[ForumPost] = []

        for source in sources:
            raw = self._read_json(self._posts_path(source)) or {}
            for post_id, data in raw.items():
                try:
                    posts.append(ForumPost.model_validate(data))
                except ValidationError as e:
                    logger.warning(
                        "post_record_invalid", post_id=post_id, error=str(e)
                    )

        posts.sort(key=lambda p: p.scraped_at, reverse=True)
        return posts[:limit] if limit is not None else posts

    def delete_posts_older_than(
        self, age: timedelta, source_kind: Optional[SourceKind] = None
    ) -> int:
        cutoff = self._clock() - age
        sources = [source_kind] if source_kind else list(SourceKind)
        deleted = 0

        for source in sources:
            path = self._posts_path(source)
            raw = self._read_json(path)
            if not raw:
                continue

            kept = {
                post_id: data
                for post_id, data in raw.items()
                if (_parse_datetime(data.get("scraped_at")) or cutoff) >= cutoff
            }
            deleted += len(raw) - len(kept)
            self._write_json(path, kept)

        logger.info("posts_deleted", count=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _session_path(self, session_id: str) -> Path:
        if not _SAFE_ID.match(session_id):
            raise ValueError(f"Unsafe session id: {session_id!r}")
        return self.sessions_dir / f"{session_id}.json"

    def _posts_path(self, source_kind: SourceKind) -> Path:
        return self.posts_dir / f"{source_kind.value}.json"

    def _write_json(self, path: Path, data: Any) -> None:
        """Atomic write: temp file, then rename"""
        temp_file = path.with_suffix(".tmp")
        with open(temp_file, "w") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(temp_file, path)

    def _read_json(self, path: Path) -> Optional[Any]:
        if not path.exists():
            return None
        try:
            with open(path) as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("store_read_failed", path=str(path), error=str(e))
            return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
