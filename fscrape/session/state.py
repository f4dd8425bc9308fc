"""Session state machine and persistence-friendly conversion.

SessionStateManager is the only writer of Session records. It enforces the
transition table, merges progress patches, keeps derived metrics current and
converts sessions to and from the store's transport form.

Transition table:

    pending  -> running
    running  -> paused | completed | failed | cancelled
    paused   -> running | cancelled
    failed   -> running            (only with resume_data.token set)
"""

import json
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Union

import structlog
from pydantic import ValidationError

from fscrape.models.session import (
    MetricsPatch,
    ProgressPatch,
    ResumeData,
    ResumeDataPatch,
    Session,
    SessionErrorEntry,
    SessionParameters,
    SessionStatus,
    SourceKind,
)
from fscrape.observability.metrics import ACTIVE_SESSIONS, SESSION_TRANSITIONS
from fscrape.utils.exceptions import (
    DataIntegrityError,
    InvalidProgressError,
    InvalidTransitionError,
    SessionNotFoundError,
)

logger = structlog.get_logger()

BACKUP_VERSION = "1.0.0"

ALLOWED_TRANSITIONS: Dict[SessionStatus, FrozenSet[SessionStatus]] = {
    SessionStatus.PENDING: frozenset({SessionStatus.RUNNING}),
    SessionStatus.RUNNING: frozenset(
        {
            SessionStatus.PAUSED,
            SessionStatus.COMPLETED,
            SessionStatus.FAILED,
            SessionStatus.CANCELLED,
        }
    ),
    SessionStatus.PAUSED: frozenset({SessionStatus.RUNNING, SessionStatus.CANCELLED}),
    SessionStatus.FAILED: frozenset({SessionStatus.RUNNING}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.CANCELLED: frozenset(),
}

TransportForm = Dict[str, Any]


class SessionStateManager:
    """Owns the session index (id -> Session).

    Getters hand out deep copies; mutations only happen through the
    methods below.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.utcnow):
        self._states: Dict[str, Session] = {}
        self._clock = clock

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    def create(
        self,
        session_id: str,
        source_kind: SourceKind,
        config: Optional[SessionParameters] = None,
    ) -> Session:
        """Create a new pending session.

        Raises:
            DataIntegrityError: If the id is already tracked
        """
        if session_id in self._states:
            raise DataIntegrityError(
                f"Session {session_id} already exists", session_id=session_id
            )

        now = self._clock()
        session = Session(
            id=session_id,
            source_kind=source_kind,
            status=SessionStatus.PENDING,
            started_at=now,
            updated_at=now,
            config=config or SessionParameters(),
        )
        self._states[session_id] = session

        logger.debug(
            "session_state_created", session_id=session_id, source=source_kind.value
        )
        return session.model_copy(deep=True)

    def get(self, session_id: str) -> Optional[Session]:
        session = self._states.get(session_id)
        return session.model_copy(deep=True) if session else None

    def require(self, session_id: str) -> Session:
        """Copy of the session, raising SessionNotFoundError if unknown"""
        return self._get_live(session_id).model_copy(deep=True)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._states

    def __len__(self) -> int:
        return len(self._states)

    def get_all_sessions(self) -> List[Session]:
        return [s.model_copy(deep=True) for s in self._states.values()]

    def get_active_sessions(self) -> List[Session]:
        """Running and paused sessions"""
        return [
            s.model_copy(deep=True)
            for s in self._states.values()
            if s.status in (SessionStatus.RUNNING, SessionStatus.PAUSED)
        ]

    def get_sessions_by_status(self, status: SessionStatus) -> List[Session]:
        return [
            s.model_copy(deep=True)
            for s in self._states.values()
            if s.status == status
        ]

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def can_transition(self, session_id: str, new_status: SessionStatus) -> bool:
        session = self._get_live(session_id)
        return self._transition_allowed(session, new_status)

    def transition(self, session_id: str, new_status: SessionStatus) -> Session:
        """Move a session to a new status.

        Raises:
            SessionNotFoundError: Unknown id
            InvalidTransitionError: Edge not in the transition table; the
                status is left unchanged
        """
        session = self._get_live(session_id)
        current = session.status

        if not self._transition_allowed(session, new_status):
            reason = None
            if current == SessionStatus.FAILED and new_status == SessionStatus.RUNNING:
                reason = "failed session has no resume token"
            raise InvalidTransitionError(
                session_id, current.value, new_status.value, reason
            )

        self._touch(session)
        session.status = new_status

        if new_status.is_terminal:
            session.completed_at = session.updated_at
        else:
            session.completed_at = None

        if new_status == SessionStatus.COMPLETED:
            session.resume_data = None

        SESSION_TRANSITIONS.labels(status=new_status.value).inc()
        self._refresh_active_gauge()

        logger.debug(
            "session_transition",
            session_id=session_id,
            from_status=current.value,
            to_status=new_status.value,
        )
        return session.model_copy(deep=True)

    def can_resume(self, session_id: str) -> bool:
        """Paused, or failed with a resume token"""
        session = self._states.get(session_id)
        if session is None:
            return False
        return self._is_resumable(session)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_progress(
        self, session_id: str, patch: ProgressPatch, reset: bool = False
    ) -> Session:
        """Merge a partial progress update.

        Counters may only grow unless `reset` is set. A smaller total replaces
        the previous total; the latest reported value wins, as long as it
        still covers the processed and failed items.

        Raises:
            InvalidProgressError: processed/failed count would decrease, or
                processed + failed would exceed a known total
        """
        session = self._get_live(session_id)
        progress = session.progress

        if not reset:
            if (
                patch.processed_items is not None
                and patch.processed_items < progress.processed_items
            ):
                raise InvalidProgressError(
                    f"Session {session_id}: processed_items cannot decrease "
                    f"({progress.processed_items} -> {patch.processed_items})"
                )
            if (
                patch.failed_items is not None
                and patch.failed_items < progress.failed_items
            ):
                raise InvalidProgressError(
                    f"Session {session_id}: failed_items cannot decrease "
                    f"({progress.failed_items} -> {patch.failed_items})"
                )

        if (
            patch.total_items is not None
            and progress.total_items
            and patch.total_items < progress.total_items
        ):
            logger.warning(
                "progress_total_decreased",
                session_id=session_id,
                previous=progress.total_items,
                latest=patch.total_items,
            )

        changes = patch.model_dump(exclude_none=True)
        merged = progress.model_copy(update=changes)
        self._check_within_total(
            session_id,
            processed=merged.processed_items,
            failed=merged.failed_items,
            total=merged.total_items,
        )

        for field_name, value in changes.items():
            setattr(progress, field_name, value)

        self._touch(session)
        self._recompute_average(session)
        return session.model_copy(deep=True)

    def append_error(
        self,
        session_id: str,
        error: Union[BaseException, str],
        item_id: Optional[str] = None,
        count_failed_item: bool = True,
    ) -> Session:
        """Record an error; does not change status.

        Args:
            session_id: Session to update
            error: Exception or message
            item_id: Item that failed, if any
            count_failed_item: Increment progress.failed_items
        """
        session = self._get_live(session_id)
        message = error if isinstance(error, str) else str(error) or type(error).__name__
        if count_failed_item:
            self._check_within_total(
                session_id,
                processed=session.progress.processed_items,
                failed=session.progress.failed_items + 1,
                total=session.progress.total_items,
            )

        self._touch(session)
        session.errors.append(
            SessionErrorEntry(
                timestamp=session.updated_at, message=message, item_id=item_id
            )
        )
        if count_failed_item:
            session.progress.failed_items += 1

        return session.model_copy(deep=True)

    def update_resume_data(self, session_id: str, patch: ResumeDataPatch) -> Session:
        session = self._get_live(session_id)
        current = session.resume_data or ResumeData()
        merged = current.model_copy(update=patch.model_dump(exclude_none=True))
        session.resume_data = merged
        self._touch(session)
        return session.model_copy(deep=True)

    def update_metrics(self, session_id: str, patch: MetricsPatch) -> Session:
        session = self._get_live(session_id)
        for field_name, value in patch.model_dump(exclude_none=True).items():
            setattr(session.metrics, field_name, value)
        self._touch(session)
        self._recompute_average(session)
        return session.model_copy(deep=True)

    def clear_old_sessions(self, older_than: timedelta) -> int:
        """Drop terminal, non-resumable sessions completed before the cutoff.

        Returns:
            Number of sessions removed
        """
        cutoff = self._clock() - older_than
        stale = [
            session_id
            for session_id, s in self._states.items()
            if s.status.is_terminal
            and not self._is_resumable(s)
            and s.completed_at is not None
            and s.completed_at < cutoff
        ]
        for session_id in stale:
            del self._states[session_id]

        if stale:
            logger.info("old_sessions_cleared", count=len(stale))
        return len(stale)

    def remove(self, session_id: str) -> bool:
        removed = self._states.pop(session_id, None) is not None
        if removed:
            self._refresh_active_gauge()
        return removed

    # ------------------------------------------------------------------
    # Transport form
    # ------------------------------------------------------------------

    def to_transport_form(self, session: Union[Session, str]) -> TransportForm:
        """JSON-compatible dict handed to the store"""
        if isinstance(session, str):
            session = self._get_live(session)
        return session.model_dump(mode="json")

    def from_transport_form(
        self,
        data: TransportForm,
        status_override: Optional[SessionStatus] = None,
        allow_regression: bool = False,
    ) -> Session:
        """Validate a store record and upsert it into the index.

        Args:
            data: Record produced by to_transport_form
            status_override: Replace the persisted status (crash recovery
                re-hydrates active sessions as paused)
            allow_regression: Accept a record whose progress is behind the
                tracked copy (backup restore overwrites in place)

        Raises:
            DataIntegrityError: Record fails validation; nothing is stored
        """
        session = self.validate_record(data, allow_regression=allow_regression)

        if status_override is not None and status_override != session.status:
            session.status = status_override
            session.completed_at = (
                session.updated_at if status_override.is_terminal else None
            )

        self._states[session.id] = session
        self._refresh_active_gauge()
        return session.model_copy(deep=True)

    def validate_record(self, data: Any, allow_regression: bool = False) -> Session:
        """Parse a transport-form record and check its integrity.

        Raises:
            DataIntegrityError: Missing fields, bad types, inconsistent
                timestamps, or progress behind the tracked copy
        """
        session_id = data.get("id") if isinstance(data, dict) else None

        if not isinstance(data, dict):
            raise DataIntegrityError("Session record is not a mapping")

        try:
            session = Session.model_validate(data)
        except ValidationError as e:
            raise DataIntegrityError(
                f"Invalid session record: {e.error_count()} validation error(s)",
                session_id=session_id,
            ) from e

        if not self.validate_state(session):
            raise DataIntegrityError(
                f"Session {session.id} failed integrity checks",
                session_id=session.id,
            )

        existing = self._states.get(session.id)
        if (
            not allow_regression
            and existing is not None
            and session.progress.processed_items < existing.progress.processed_items
        ):
            raise DataIntegrityError(
                f"Session {session.id} progress regressed "
                f"({existing.progress.processed_items} -> "
                f"{session.progress.processed_items})",
                session_id=session.id,
            )

        return session

    def validate_state(self, session: Session) -> bool:
        """Cross-field checks that the schema alone cannot express"""
        if session.updated_at < session.started_at:
            return False
        if session.status.is_terminal != (session.completed_at is not None):
            return False
        progress = session.progress
        if (
            progress.total_items
            and progress.processed_items + progress.failed_items > progress.total_items
        ):
            return False
        if (
            session.status == SessionStatus.COMPLETED
            and session.resume_data is not None
            and session.resume_data.checkpoint is not None
        ):
            return False
        return True

    def cleanup_corrupted_states(self) -> int:
        """Drop tracked sessions that no longer pass validate_state"""
        corrupted = [
            session_id
            for session_id, s in self._states.items()
            if not self.validate_state(s)
        ]
        for session_id in corrupted:
            del self._states[session_id]
            logger.warning("corrupted_session_removed", session_id=session_id)
        return len(corrupted)

    # ------------------------------------------------------------------
    # Serialization, checkpoints, backup
    # ------------------------------------------------------------------

    def serialize(self, session_id: str) -> Optional[str]:
        session = self._states.get(session_id)
        if session is None:
            return None
        return session.model_dump_json(indent=2)

    def deserialize(self, text: str) -> Optional[Session]:
        """Parse and import one serialized session; None if corrupted"""
        try:
            data = json.loads(text)
            return self.from_transport_form(data)
        except (json.JSONDecodeError, DataIntegrityError) as e:
            logger.error("session_deserialize_failed", error=str(e))
            return None

    def export_sessions(self) -> List[TransportForm]:
        """All tracked sessions, in insertion order"""
        return [s.model_dump(mode="json") for s in self._states.values()]

    def import_sessions(self, records: List[TransportForm]) -> int:
        """Upsert records by id; corrupted records are logged and skipped.

        Returns:
            Number of sessions imported
        """
        imported = 0
        for record in records:
            try:
                self.from_transport_form(record, allow_regression=True)
                imported += 1
            except DataIntegrityError as e:
                logger.error(
                    "session_import_skipped",
                    session_id=e.session_id,
                    error=str(e),
                )
        return imported

    def serialize_all(self) -> str:
        return json.dumps(self.export_sessions(), indent=2)

    def deserialize_all(self, text: str) -> List[Session]:
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error("sessions_deserialize_failed", error=str(e))
            return []

        if not isinstance(parsed, list):
            logger.error("sessions_deserialize_failed", error="expected a list")
            return []

        sessions: List[Session] = []
        for record in parsed:
            try:
                sessions.append(self.from_transport_form(record))
            except DataIntegrityError as e:
                logger.error(
                    "session_import_skipped", session_id=e.session_id, error=str(e)
                )
        return sessions

    def create_checkpoint(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Versioned recovery envelope for one session"""
        session = self._states.get(session_id)
        if session is None:
            return None
        return {
            "timestamp": self._clock().isoformat(),
            "version": BACKUP_VERSION,
            "state": session.model_dump(mode="json"),
        }

    def restore_from_checkpoint(self, checkpoint: Any) -> Optional[Session]:
        if not isinstance(checkpoint, dict) or not isinstance(
            checkpoint.get("state"), dict
        ):
            logger.error("checkpoint_restore_failed", error="invalid checkpoint format")
            return None
        try:
            return self.from_transport_form(checkpoint["state"])
        except DataIntegrityError as e:
            logger.error(
                "checkpoint_restore_failed", session_id=e.session_id, error=str(e)
            )
            return None

    def create_backup(self, backup_path: Union[str, Path]) -> bool:
        """Write every tracked session to a versioned JSON backup atomically"""
        path = Path(backup_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            backup = {
                "version": BACKUP_VERSION,
                "timestamp": self._clock().isoformat(),
                "session_count": len(self._states),
                "sessions": self.export_sessions(),
            }

            temp_file = path.with_suffix(path.suffix + ".tmp")
            with open(temp_file, "w") as f:
                json.dump(backup, f, indent=2)
            os.replace(temp_file, path)

            logger.info(
                "sessions_backup_created",
                path=str(path),
                session_count=backup["session_count"],
            )
            return True

        except OSError as e:
            logger.error("sessions_backup_failed", path=str(path), error=str(e))
            return False

    def restore_from_backup(self, backup_path: Union[str, Path]) -> int:
        """Import sessions from a backup file, overwriting by id.

        Returns:
            Number of sessions restored (0 if the file is unreadable)
        """
        path = Path(backup_path)
        try:
            with open(path) as f:
                backup = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("sessions_restore_failed", path=str(path), error=str(e))
            return 0

        records = backup.get("sessions") if isinstance(backup, dict) else None
        if not isinstance(records, list):
            logger.error(
                "sessions_restore_failed", path=str(path), error="invalid backup format"
            )
            return 0

        restored = self.import_sessions(records)
        logger.info("sessions_restored", path=str(path), count=restored)
        return restored

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_live(self, session_id: str) -> Session:
        session = self._states.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    @staticmethod
    def _is_resumable(session: Session) -> bool:
        if session.status == SessionStatus.PAUSED:
            return True
        return (
            session.status == SessionStatus.FAILED
            and session.resume_data is not None
            and session.resume_data.token is not None
        )

    def _transition_allowed(self, session: Session, new_status: SessionStatus) -> bool:
        if new_status not in ALLOWED_TRANSITIONS[session.status]:
            return False
        if session.status == SessionStatus.FAILED:
            return self._is_resumable(session)
        return True

    def _touch(self, session: Session) -> None:
        """Bump updated_at, accruing running time into metrics"""
        now = self._clock()
        if session.status == SessionStatus.RUNNING and now > session.updated_at:
            elapsed_ms = (now - session.updated_at).total_seconds() * 1000
            session.metrics.total_time_ms += elapsed_ms
        session.updated_at = max(now, session.updated_at)

    @staticmethod
    def _check_within_total(
        session_id: str, processed: int, failed: int, total: int
    ) -> None:
        # total 0 means not yet known
        if total and processed + failed > total:
            raise InvalidProgressError(
                f"Session {session_id}: {processed} processed + {failed} failed "
                f"exceeds total {total}"
            )

    @staticmethod
    def _recompute_average(session: Session) -> None:
        session.metrics.average_item_time_ms = session.metrics.total_time_ms / max(
            session.progress.processed_items, 1
        )

    def _refresh_active_gauge(self) -> None:
        ACTIVE_SESSIONS.set(
            sum(1 for s in self._states.values() if s.status == SessionStatus.RUNNING)
        )
