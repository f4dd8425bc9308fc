"""Progress tracking with rate, ETA and milestone notifications.

Independent of the session state machine: any string id can be tracked.
Rates are a simple average since tracking started, not a sliding window.
"""

import math
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Deque, Dict, List, Optional

import structlog

from fscrape.models.progress import (
    DEFAULT_MILESTONES,
    Milestone,
    MilestoneEvent,
    ProgressEventType,
    ProgressSnapshot,
)
from fscrape.scheduling.scheduler import EngineScheduler
from fscrape.utils.events import EventEmitter

logger = structlog.get_logger()

HEARTBEAT_JOB_ID = "progress_heartbeat"


class TrackingNotFoundError(KeyError):
    """Id is not currently tracked"""


@dataclass
class _TrackingState:
    start_time: float
    started_at: datetime
    last_update: datetime
    processed: int
    initial_processed: int
    total: Optional[int]
    milestones: List[Milestone]
    history: Deque[ProgressSnapshot] = field(default_factory=deque)


class ProgressTracker(EventEmitter):
    """Tracks any number of ids concurrently.

    Events (ProgressEventType) and their payload:
        STARTED    ProgressSnapshot
        UPDATE     ProgressSnapshot
        MESSAGE    ProgressSnapshot
        BATCH      ProgressSnapshot
        MILESTONE  MilestoneEvent
        PERIODIC   ProgressSnapshot
        STOPPED    ProgressSnapshot (final reading)
    """

    def __init__(
        self,
        milestones: Optional[List[float]] = None,
        history_size: int = 100,
        update_interval_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = datetime.utcnow,
    ):
        """Initialize progress tracker.

        Args:
            milestones: Percentage thresholds, fired once each per id
            history_size: Ring buffer capacity per id (0 disables history)
            update_interval_seconds: Heartbeat interval for PERIODIC events
            clock: Monotonic clock used for rates
            wall_clock: Timestamp source for snapshots
        """
        super().__init__()
        self.milestones = list(milestones if milestones is not None else DEFAULT_MILESTONES)
        self.history_size = history_size
        self.update_interval_seconds = update_interval_seconds
        self._clock = clock
        self._wall_clock = wall_clock
        self._tracked: Dict[str, _TrackingState] = {}
        self._scheduler: Optional[EngineScheduler] = None

    # ------------------------------------------------------------------
    # Tracking lifecycle
    # ------------------------------------------------------------------

    def start_tracking(
        self,
        tracking_id: str,
        total: Optional[int] = None,
        initial_processed: int = 0,
    ) -> ProgressSnapshot:
        """Start (or restart) tracking an id.

        Calling again for a tracked id resets its clock, which is what a
        resumed session needs. `initial_processed` seeds the counter so the
        rate only reflects work done in this interval; milestones already
        passed at that point are marked reached without firing.
        """
        now = self._wall_clock()
        milestones = [Milestone(threshold_percent=t) for t in self.milestones]

        if total and initial_processed:
            seeded_pct = initial_processed / total * 100
            for milestone in milestones:
                if milestone.threshold_percent <= seeded_pct:
                    milestone.reached = True
                    milestone.reached_at = now

        self._tracked[tracking_id] = _TrackingState(
            start_time=self._clock(),
            started_at=now,
            last_update=now,
            processed=initial_processed,
            initial_processed=initial_processed,
            total=total,
            milestones=milestones,
            history=deque(maxlen=self.history_size or None),
        )

        snapshot = self._snapshot(tracking_id)
        logger.debug(
            "tracking_started",
            tracking_id=tracking_id,
            total=total,
            initial_processed=initial_processed,
        )
        self.emit(ProgressEventType.STARTED, snapshot)
        return snapshot

    def update(
        self,
        tracking_id: str,
        processed: int,
        total: Optional[int] = None,
    ) -> ProgressSnapshot:
        """Record the cumulative processed count and return a fresh snapshot.

        Raises:
            TrackingNotFoundError: Id is not tracked
        """
        state = self._require(tracking_id)

        state.processed = processed
        if total is not None:
            state.total = total
        state.last_update = self._wall_clock()

        snapshot = self._snapshot(tracking_id)
        self._record(state, snapshot)

        if snapshot.percentage is not None:
            self._check_milestones(tracking_id, snapshot.percentage)

        self.emit(ProgressEventType.UPDATE, snapshot)
        return snapshot

    def complete_batch(
        self, tracking_id: str, batch_size: int, details: Any = None
    ) -> ProgressSnapshot:
        """Add a batch of items to the running count"""
        state = self._require(tracking_id)
        state.processed += batch_size
        state.last_update = self._wall_clock()

        snapshot = self._snapshot(tracking_id, details=details)
        self._record(state, snapshot)

        if snapshot.percentage is not None:
            self._check_milestones(tracking_id, snapshot.percentage)

        self.emit(ProgressEventType.BATCH, snapshot)
        return snapshot

    def update_message(
        self, tracking_id: str, message: str, details: Any = None
    ) -> Optional[ProgressSnapshot]:
        """Attach a free-form message to the current reading"""
        state = self._tracked.get(tracking_id)
        if state is None:
            return None

        snapshot = self._snapshot(tracking_id, message=message, details=details)
        self._record(state, snapshot)
        self.emit(ProgressEventType.MESSAGE, snapshot)
        return snapshot

    def stop_tracking(self, tracking_id: str) -> Optional[ProgressSnapshot]:
        """Emit a final snapshot and discard all state (history included)"""
        if tracking_id not in self._tracked:
            return None

        final = self._snapshot(tracking_id)
        del self._tracked[tracking_id]

        logger.debug(
            "tracking_stopped",
            tracking_id=tracking_id,
            current=final.current,
            total=final.total,
        )
        self.emit(ProgressEventType.STOPPED, final)
        return final

    def is_tracking(self, tracking_id: str) -> bool:
        return tracking_id in self._tracked

    # ------------------------------------------------------------------
    # Readings
    # ------------------------------------------------------------------

    def get_progress(self, tracking_id: str) -> Optional[ProgressSnapshot]:
        """Fresh snapshot without mutating state; None if not tracked"""
        if tracking_id not in self._tracked:
            return None
        return self._snapshot(tracking_id)

    def get_all_progress(self) -> Dict[str, ProgressSnapshot]:
        return {tid: self._snapshot(tid) for tid in self._tracked}

    def get_history(self, tracking_id: str) -> List[ProgressSnapshot]:
        state = self._tracked.get(tracking_id)
        return list(state.history) if state else []

    def get_milestones(self, tracking_id: str) -> List[Milestone]:
        state = self._tracked.get(tracking_id)
        return [m.model_copy() for m in state.milestones] if state else []

    def estimated_completion(self, tracking_id: str) -> Optional[datetime]:
        """now + ETA, or None when the rate is zero or total unknown"""
        snapshot = self.get_progress(tracking_id)
        if snapshot is None or snapshot.eta_seconds is None:
            return None
        return snapshot.timestamp + timedelta(seconds=snapshot.eta_seconds)

    def format_progress(self, tracking_id: str) -> str:
        snapshot = self.get_progress(tracking_id)
        if snapshot is None:
            return "No progress data"

        parts = [f"{snapshot.current} items processed"]
        if snapshot.total:
            parts.append(f"of {snapshot.total}")
        if snapshot.display_percentage is not None:
            parts.append(f"({snapshot.display_percentage:.1f}%)")
        if snapshot.items_per_second:
            parts.append(f"- {snapshot.items_per_second:.1f} items/sec")
        if snapshot.eta_seconds:
            minutes = math.ceil(snapshot.eta_seconds / 60)
            parts.append(f"- ~{minutes} min remaining")
        return " ".join(parts)

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def emit_periodic(self) -> List[ProgressSnapshot]:
        """Emit a PERIODIC snapshot for every tracked id"""
        snapshots = []
        for tracking_id in list(self._tracked):
            snapshot = self._snapshot(tracking_id)
            snapshots.append(snapshot)
            self.emit(ProgressEventType.PERIODIC, snapshot)
        return snapshots

    def start_periodic_updates(self, scheduler: EngineScheduler) -> bool:
        """Register the heartbeat on a scheduler; no-op without an interval"""
        if not self.update_interval_seconds:
            return False

        async def heartbeat() -> None:
            self.emit_periodic()

        scheduler.add_interval_job(
            heartbeat, job_id=HEARTBEAT_JOB_ID, seconds=self.update_interval_seconds
        )
        self._scheduler = scheduler
        return True

    def stop_periodic_updates(self) -> None:
        if self._scheduler is not None:
            self._scheduler.remove_job(HEARTBEAT_JOB_ID)
            self._scheduler = None

    def destroy(self) -> None:
        self.stop_periodic_updates()
        self.remove_all_listeners()
        self._tracked.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require(self, tracking_id: str) -> _TrackingState:
        state = self._tracked.get(tracking_id)
        if state is None:
            raise TrackingNotFoundError(f"{tracking_id} is not being tracked")
        return state

    def _snapshot(
        self,
        tracking_id: str,
        message: Optional[str] = None,
        details: Any = None,
    ) -> ProgressSnapshot:
        state = self._tracked[tracking_id]
        elapsed = self._clock() - state.start_time
        done = state.processed - state.initial_processed
        items_per_second = done / elapsed if elapsed > 0 else 0.0

        percentage: Optional[float] = None
        eta_seconds: Optional[float] = None
        if state.total:
            percentage = state.processed / state.total * 100
            if items_per_second > 0:
                eta_seconds = max(state.total - state.processed, 0) / items_per_second

        return ProgressSnapshot(
            tracking_id=tracking_id,
            timestamp=self._wall_clock(),
            current=state.processed,
            total=state.total,
            percentage=percentage,
            items_per_second=items_per_second,
            eta_seconds=eta_seconds,
            message=message,
            details=details,
        )

    def _record(self, state: _TrackingState, snapshot: ProgressSnapshot) -> None:
        if self.history_size:
            state.history.append(snapshot)

    def _check_milestones(self, tracking_id: str, percentage: float) -> None:
        state = self._tracked[tracking_id]
        for milestone in state.milestones:
            if milestone.reached or percentage < milestone.threshold_percent:
                continue

            milestone.reached = True
            milestone.reached_at = self._wall_clock()

            logger.info(
                "progress_milestone",
                tracking_id=tracking_id,
                milestone=milestone.threshold_percent,
                current=state.processed,
                total=state.total,
            )
            self.emit(
                ProgressEventType.MILESTONE,
                MilestoneEvent(
                    tracking_id=tracking_id,
                    threshold_percent=milestone.threshold_percent,
                    reached_at=milestone.reached_at,
                    current=state.processed,
                    total=state.total,
                ),
            )
