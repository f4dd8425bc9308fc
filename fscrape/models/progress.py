"""Progress tracking models.

Snapshots are ephemeral: recomputed on demand from a (current, total) pair
and the tracking start time. They are never persisted.
"""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field

DEFAULT_MILESTONES: List[float] = [25, 50, 75, 90, 100]


class ProgressEventType(str, Enum):
    STARTED = "started"
    UPDATE = "update"
    MESSAGE = "message"
    BATCH = "batch"
    MILESTONE = "milestone"
    PERIODIC = "periodic"
    STOPPED = "stopped"


class ProgressSnapshot(BaseModel):
    """Point-in-time progress reading for one tracked id"""

    tracking_id: str
    timestamp: datetime
    current: int
    total: Optional[int] = None
    percentage: Optional[float] = None
    items_per_second: float = 0.0
    eta_seconds: Optional[float] = None
    message: Optional[str] = None
    details: Optional[Any] = None

    @property
    def display_percentage(self) -> Optional[float]:
        """Percentage clamped to [0, 100] for display only"""
        if self.percentage is None:
            return None
        return max(0.0, min(100.0, self.percentage))


class Milestone(BaseModel):
    threshold_percent: float = Field(..., gt=0, le=100)
    reached: bool = False
    reached_at: Optional[datetime] = None


class MilestoneEvent(BaseModel):
    tracking_id: str
    threshold_percent: float
    reached_at: datetime
    current: int
    total: Optional[int] = None
