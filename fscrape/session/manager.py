"""Session coordinator.

SessionManager sequences the state machine and the progress tracker
together, owns one cancellation token per running session and drives
persistence through an optional SessionStore.

Usage:
    manager = SessionManager(store=JsonFileStore("./data"))
    session = manager.create(SessionConfig(source_kind=SourceKind.REDDIT, max_items=100))
    manager.start(session.id)
    manager.update_progress(session.id, 60, 100)
    manager.pause(session.id)
"""

import time
import uuid
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import structlog

from fscrape.models.config import SessionSettings
from fscrape.models.progress import MilestoneEvent, ProgressEventType, ProgressSnapshot
from fscrape.models.session import (
    MetricsPatch,
    ProgressPatch,
    ResumeDataPatch,
    Session,
    SessionConfig,
    SessionMetrics,
    SessionStatus,
    SourceKind,
)
from fscrape.observability.metrics import ITEMS_PROCESSED, PERSISTENCE_FAILURES
from fscrape.scheduling.scheduler import EngineScheduler
from fscrape.services.store_base import SessionStore
from fscrape.session.cancellation import CancellationToken
from fscrape.session.progress_tracker import ProgressTracker
from fscrape.session.state import SessionStateManager, TransportForm
from fscrape.utils.events import EventEmitter
from fscrape.utils.exceptions import (
    DataIntegrityError,
    InvalidTransitionError,
    SessionNotFoundError,
)

logger = structlog.get_logger()

AUTO_PERSIST_JOB_ID = "session_auto_persist"


class SessionEvent(str, Enum):
    CREATED = "created"
    STARTED = "started"
    PAUSED = "paused"
    RESUMED = "resumed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PROGRESS = "progress"
    MILESTONE = "milestone"


def _default_session_id(source_kind: SourceKind) -> str:
    return f"{source_kind.value}_{uuid.uuid4().hex[:12]}"


class SessionManager(EventEmitter):
    """Coordinates session lifecycle, progress and persistence.

    Events (SessionEvent) and their payload:
        CREATED .. CANCELLED   Session (copy after the change)
        PROGRESS               Session, ProgressSnapshot
        MILESTONE              MilestoneEvent

    Persistence failures are logged and counted; the in-memory change that
    triggered them is kept.
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        settings: Optional[SessionSettings] = None,
        scheduler: Optional[EngineScheduler] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        id_factory: Callable[[SourceKind], str] = _default_session_id,
    ):
        """Initialize session manager.

        Crash recovery runs here, once, when a store is given.

        Args:
            store: Persistence collaborator (None keeps everything in memory)
            settings: Engine tunables (intervals, milestones, retention)
            scheduler: Scheduler for auto-persist and heartbeat timers
            clock: Wall clock for session timestamps
            monotonic: Monotonic clock for progress rates
            id_factory: Allocates ids for new sessions
        """
        super().__init__()
        self.store = store
        self.settings = settings or SessionSettings()
        self.scheduler = scheduler
        self._owns_scheduler = False
        self._id_factory = id_factory

        self.state = SessionStateManager(clock=clock)
        self.tracker = ProgressTracker(
            milestones=self.settings.milestones,
            history_size=self.settings.history_size,
            update_interval_seconds=self.settings.progress_interval_seconds,
            clock=monotonic,
            wall_clock=clock,
        )
        self.tracker.on(ProgressEventType.MILESTONE, self._forward_milestone)

        self._tokens: Dict[str, CancellationToken] = {}

        if self.store is not None:
            self.recover_sessions()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, config: SessionConfig) -> Session:
        """Create a pending session, or resume `config.resume_from_session`.

        Raises:
            InvalidTransitionError: resume_from_session names a known
                session that cannot be resumed
            SessionNotFoundError: resume_from_session is unknown here and
                in the store
        """
        if config.resume_from_session:
            resume_id = config.resume_from_session
            if resume_id in self.state and not self.state.can_resume(resume_id):
                current = self.state.require(resume_id).status
                raise InvalidTransitionError(
                    resume_id,
                    current.value,
                    SessionStatus.RUNNING.value,
                    "session cannot be resumed",
                )
            return self.resume(resume_id)

        session_id = self._id_factory(config.source_kind)
        session = self.state.create(
            session_id, config.source_kind, config.parameters()
        )
        self.tracker.start_tracking(session_id, config.max_items)
        self._persist(session_id)

        logger.info(
            "session_created",
            session_id=session_id,
            source=config.source_kind.value,
            query=config.query_value,
            max_items=config.max_items,
        )
        self.emit(SessionEvent.CREATED, session)
        return session

    def start(self, session_id: str) -> Session:
        """pending -> running"""
        current = self.state.require(session_id)
        if current.status != SessionStatus.PENDING:
            raise InvalidTransitionError(
                session_id,
                current.status.value,
                SessionStatus.RUNNING.value,
                "only pending sessions can be started",
            )

        session = self.state.transition(session_id, SessionStatus.RUNNING)
        self._tokens[session_id] = CancellationToken(session_id)
        # Restart the clock so time spent pending does not dilute the rate
        self.tracker.start_tracking(session_id, session.config.max_items)
        self._persist(session_id)

        logger.info("session_started", session_id=session_id)
        self.emit(SessionEvent.STARTED, session)
        return session

    def pause(self, session_id: str) -> Session:
        """running -> paused; signals in-flight work to stop"""
        current = self.state.require(session_id)
        if current.status != SessionStatus.RUNNING:
            raise InvalidTransitionError(
                session_id,
                current.status.value,
                SessionStatus.PAUSED.value,
                "only running sessions can be paused",
            )

        self._release_token(session_id, reason="paused")
        self._sync_from_tracker(current)

        session = self.state.transition(session_id, SessionStatus.PAUSED)
        self.tracker.stop_tracking(session_id)
        self._persist(session_id)

        logger.info(
            "session_paused",
            session_id=session_id,
            processed=session.progress.processed_items,
            total=session.progress.total_items,
        )
        self.emit(SessionEvent.PAUSED, session)
        return session

    def resume(self, session_id: str) -> Session:
        """paused (or resumable failed) -> running.

        A session unknown in memory is loaded from the store first.

        Raises:
            SessionNotFoundError: Unknown in memory and in the store
            DataIntegrityError: Stored record fails validation
            InvalidTransitionError: Session is not resumable
        """
        if session_id not in self.state:
            self._load_from_store(session_id)

        if not self.state.can_resume(session_id):
            current = self.state.require(session_id)
            raise InvalidTransitionError(
                session_id,
                current.status.value,
                SessionStatus.RUNNING.value,
                "session is not resumable",
            )

        session = self.state.transition(session_id, SessionStatus.RUNNING)
        self._tokens[session_id] = CancellationToken(session_id)
        self.tracker.start_tracking(
            session_id,
            session.config.max_items or session.progress.total_items or None,
            initial_processed=session.progress.processed_items,
        )
        self._persist(session_id)

        logger.info(
            "session_resumed",
            session_id=session_id,
            processed=session.progress.processed_items,
            cursor=session.resume_data.next_cursor if session.resume_data else None,
        )
        self.emit(SessionEvent.RESUMED, session)
        return session

    def complete(self, session_id: str) -> Session:
        return self._finish(session_id, SessionStatus.COMPLETED, SessionEvent.COMPLETED)

    def fail(
        self,
        session_id: str,
        error: Union[BaseException, str],
        resume_token: Optional[str] = None,
    ) -> Session:
        """Fail a session, recording the error.

        Args:
            session_id: Session to fail
            error: Cause, appended to the error log (not counted as a failed item)
            resume_token: Makes the failure resumable
        """
        current = self.state.require(session_id)
        if not self.state.can_transition(session_id, SessionStatus.FAILED):
            raise InvalidTransitionError(
                session_id, current.status.value, SessionStatus.FAILED.value
            )

        self.state.append_error(session_id, error, count_failed_item=False)
        if resume_token is not None:
            self.state.update_resume_data(
                session_id, ResumeDataPatch(token=resume_token)
            )

        return self._finish(
            session_id, SessionStatus.FAILED, SessionEvent.FAILED, error=str(error)
        )

    def cancel(self, session_id: str) -> Session:
        return self._finish(session_id, SessionStatus.CANCELLED, SessionEvent.CANCELLED)

    # ------------------------------------------------------------------
    # Progress and auxiliary updates
    # ------------------------------------------------------------------

    def update_progress(
        self,
        session_id: str,
        processed: int,
        total: Optional[int] = None,
        last_item_id: Optional[str] = None,
    ) -> Session:
        """Apply a cumulative progress reading to the session and the tracker.

        Raises:
            SessionNotFoundError: Unknown id
            InvalidTransitionError: Session is not running
            InvalidProgressError: processed went backwards
        """
        current = self.state.require(session_id)
        if current.status != SessionStatus.RUNNING:
            raise InvalidTransitionError(
                session_id,
                current.status.value,
                SessionStatus.RUNNING.value,
                "progress updates require a running session",
            )

        session = self.state.update_progress(
            session_id,
            ProgressPatch(
                processed_items=processed,
                total_items=total,
                last_item_id=last_item_id,
            ),
        )

        if not self.tracker.is_tracking(session_id):
            self.tracker.start_tracking(
                session_id,
                total,
                initial_processed=current.progress.processed_items,
            )
        snapshot = self.tracker.update(session_id, processed, total)

        delta = processed - current.progress.processed_items
        if delta > 0:
            ITEMS_PROCESSED.labels(source=session.source_kind.value).inc(delta)

        self.emit(SessionEvent.PROGRESS, session, snapshot)
        return session

    def record_item_error(
        self,
        session_id: str,
        error: Union[BaseException, str],
        item_id: Optional[str] = None,
    ) -> Session:
        """Log a per-item failure; counts toward progress.failed_items"""
        session = self.state.append_error(session_id, error, item_id=item_id)
        logger.warning(
            "session_item_failed",
            session_id=session_id,
            item_id=item_id,
            error=str(error),
        )
        return session

    def update_resume_data(self, session_id: str, **fields: Any) -> Session:
        return self.state.update_resume_data(session_id, ResumeDataPatch(**fields))

    def update_metrics(self, session_id: str, **fields: Any) -> Session:
        return self.state.update_metrics(session_id, MetricsPatch(**fields))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.state.get(session_id)

    def get_all_sessions(self) -> List[Session]:
        return self.state.get_all_sessions()

    def get_active_sessions(self) -> List[Session]:
        return self.state.get_active_sessions()

    def get_resumable_sessions(
        self, source_kind: Optional[SourceKind] = None
    ) -> List[Session]:
        return [
            s
            for s in self.get_all_sessions()
            if self.state.can_resume(s.id)
            and (source_kind is None or s.source_kind == source_kind)
        ]

    def can_resume(self, session_id: str) -> bool:
        return self.state.can_resume(session_id)

    def get_cancellation_token(self, session_id: str) -> Optional[CancellationToken]:
        """Token for the current running interval, None otherwise"""
        return self._tokens.get(session_id)

    def get_progress(self, session_id: str) -> Optional[ProgressSnapshot]:
        return self.tracker.get_progress(session_id)

    def get_progress_text(self, session_id: str) -> str:
        return self.tracker.format_progress(session_id)

    def get_estimated_completion(self, session_id: str) -> Optional[datetime]:
        return self.tracker.estimated_completion(session_id)

    def get_session_metrics(self, session_id: str) -> Optional[SessionMetrics]:
        session = self.state.get(session_id)
        return session.metrics if session else None

    # ------------------------------------------------------------------
    # Persistence and recovery
    # ------------------------------------------------------------------

    def recover_sessions(self) -> int:
        """Re-hydrate sessions the store considers active as paused.

        Invalid records are logged and skipped. Sessions this process
        already tracks are left alone. Nothing is resumed automatically.

        Returns:
            Number of sessions recovered
        """
        if self.store is None:
            return 0

        try:
            records = self.store.list_active_sessions()
        except Exception as e:
            logger.error("session_recovery_failed", error=str(e))
            return 0

        recovered = 0
        for record in records:
            if isinstance(record, dict) and record.get("id") in self.state:
                logger.debug("session_recovery_live_skipped", session_id=record["id"])
                continue

            try:
                session = self.state.from_transport_form(
                    record, status_override=SessionStatus.PAUSED
                )
            except DataIntegrityError as e:
                logger.error(
                    "session_recovery_skipped",
                    session_id=e.session_id,
                    error=str(e),
                )
                continue

            self._persist(session.id)
            recovered += 1
            logger.info(
                "session_recovered",
                session_id=session.id,
                processed=session.progress.processed_items,
            )

        if recovered:
            logger.info("sessions_recovered", count=recovered)
        return recovered

    def persist_active_sessions(self) -> int:
        """Flush running and paused sessions to the store.

        Returns:
            Number of sessions written successfully
        """
        if self.store is None:
            return 0
        return sum(
            1 for session in self.state.get_active_sessions() if self._persist(session.id)
        )

    def export_sessions(self) -> List[TransportForm]:
        return self.state.export_sessions()

    def import_sessions(self, records: List[TransportForm]) -> int:
        return self.state.import_sessions(records)

    def create_backup(self, path: Union[str, Path]) -> bool:
        return self.state.create_backup(path)

    def restore_from_backup(self, path: Union[str, Path]) -> int:
        """Import a backup (overwriting by id) and write every session to the store"""
        restored = self.state.restore_from_backup(path)
        if restored and self.store is not None:
            for session in self.state.get_all_sessions():
                self._persist(session.id)
        return restored

    def cleanup(self, older_than: Optional[timedelta] = None) -> int:
        """Drop terminal sessions from memory; the store is not touched"""
        age = (
            older_than
            if older_than is not None
            else timedelta(hours=self.settings.retention_hours)
        )
        return self.state.clear_old_sessions(age)

    # ------------------------------------------------------------------
    # Background timers
    # ------------------------------------------------------------------

    def start_background_tasks(self) -> None:
        """Register auto-persist and heartbeat jobs and start the scheduler.

        Must be called from a running event loop.
        """
        if self.scheduler is None:
            self.scheduler = EngineScheduler()
            self._owns_scheduler = True

        if self.settings.auto_persist_seconds and self.store is not None:
            self.scheduler.add_interval_job(
                self._auto_persist_tick,
                job_id=AUTO_PERSIST_JOB_ID,
                seconds=self.settings.auto_persist_seconds,
            )
        self.tracker.start_periodic_updates(self.scheduler)
        self.scheduler.start()

    def shutdown(self) -> None:
        """Stop timers, signal running work and flush active sessions"""
        if self.scheduler is not None:
            self.scheduler.remove_job(AUTO_PERSIST_JOB_ID)
            self.tracker.stop_periodic_updates()
            if self._owns_scheduler:
                self.scheduler.shutdown()

        for session_id in list(self._tokens):
            self._tokens[session_id].cancel("shutdown")

        persisted = self.persist_active_sessions()
        logger.info("session_manager_shutdown", persisted=persisted)

    async def _auto_persist_tick(self) -> None:
        persisted = self.persist_active_sessions()
        logger.debug("sessions_auto_persisted", count=persisted)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _finish(
        self,
        session_id: str,
        status: SessionStatus,
        event: SessionEvent,
        **log_fields: Any,
    ) -> Session:
        session = self.state.transition(session_id, status)
        self._release_token(session_id, reason=status.value)
        self.tracker.stop_tracking(session_id)
        self._persist(session_id)

        logger.info(
            f"session_{status.value}",
            session_id=session_id,
            processed=session.progress.processed_items,
            failed=session.progress.failed_items,
            **log_fields,
        )
        self.emit(event, session)
        return session

    def _release_token(self, session_id: str, reason: str) -> None:
        token = self._tokens.pop(session_id, None)
        if token is not None:
            token.cancel(reason)

    def _sync_from_tracker(self, session: Session) -> None:
        """Copy the tracker's latest reading into the session record"""
        snapshot = self.tracker.get_progress(session.id)
        if snapshot is None or snapshot.current < session.progress.processed_items:
            return
        self.state.update_progress(
            session.id,
            ProgressPatch(processed_items=snapshot.current, total_items=snapshot.total),
        )

    def _load_from_store(self, session_id: str) -> None:
        record = self.store.get_session(session_id) if self.store else None
        if record is None:
            raise SessionNotFoundError(session_id)
        self.state.from_transport_form(record)
        logger.info("session_loaded_from_store", session_id=session_id)

    def _persist(self, session_id: str) -> bool:
        if self.store is None:
            return True
        try:
            self.store.upsert_session(self.state.to_transport_form(session_id))
            return True
        except Exception as e:
            PERSISTENCE_FAILURES.inc()
            logger.error("session_persist_failed", session_id=session_id, error=str(e))
            return False

    def _forward_milestone(self, event: MilestoneEvent) -> None:
        if event.tracking_id in self.state:
            self.emit(SessionEvent.MILESTONE, event)
