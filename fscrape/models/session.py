"""Data models for scraping sessions.

A session is one long-running, interruptible unit of work. The models here
are plain records; every status change goes through SessionStateManager.
"""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SourceKind(str, Enum):
    """External source a session targets"""

    REDDIT = "reddit"
    HACKERNEWS = "hackernews"


class SessionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Completed, failed and cancelled carry a completion timestamp"""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.CANCELLED}
)


class SessionParameters(BaseModel):
    """Immutable snapshot of what the session was created to do"""

    model_config = ConfigDict(frozen=True)

    query_type: Optional[str] = None
    query_value: Optional[str] = None
    max_items: Optional[int] = Field(default=None, ge=1)
    include_comments: bool = False
    include_users: bool = False


class SessionConfig(BaseModel):
    """Request to create (or resume) a session"""

    model_config = ConfigDict(frozen=True)

    source_kind: SourceKind
    query_type: Optional[str] = None
    query_value: Optional[str] = None
    max_items: Optional[int] = Field(default=None, ge=1)
    include_comments: bool = False
    include_users: bool = False
    resume_from_session: Optional[str] = None

    def parameters(self) -> SessionParameters:
        return SessionParameters(
            query_type=self.query_type,
            query_value=self.query_value,
            max_items=self.max_items,
            include_comments=self.include_comments,
            include_users=self.include_users,
        )


class SessionProgress(BaseModel):
    total_items: int = Field(default=0, ge=0)
    processed_items: int = Field(default=0, ge=0)
    failed_items: int = Field(default=0, ge=0)
    last_item_id: Optional[str] = None


class ResumeData(BaseModel):
    """Everything needed to continue without reprocessing items"""

    token: Optional[str] = None
    checkpoint: Optional[Any] = None
    last_successful_item: Optional[str] = None
    next_cursor: Optional[str] = None


class SessionErrorEntry(BaseModel):
    timestamp: datetime
    message: str
    item_id: Optional[str] = None


class SessionMetrics(BaseModel):
    average_item_time_ms: float = Field(default=0.0, ge=0)
    total_time_ms: float = Field(default=0.0, ge=0)
    request_count: int = Field(default=0, ge=0)
    rate_limit_hits: int = Field(default=0, ge=0)


class Session(BaseModel):
    """Authoritative record of one unit of long-running work"""

    id: str = Field(..., min_length=1)
    source_kind: SourceKind
    status: SessionStatus = SessionStatus.PENDING
    started_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    progress: SessionProgress = Field(default_factory=SessionProgress)
    resume_data: Optional[ResumeData] = None
    errors: List[SessionErrorEntry] = Field(default_factory=list)
    metrics: SessionMetrics = Field(default_factory=SessionMetrics)
    config: SessionParameters = Field(default_factory=SessionParameters)


# Patch structs: a field left as None means "leave unchanged".


class ProgressPatch(BaseModel):
    total_items: Optional[int] = Field(default=None, ge=0)
    processed_items: Optional[int] = Field(default=None, ge=0)
    failed_items: Optional[int] = Field(default=None, ge=0)
    last_item_id: Optional[str] = None


class ResumeDataPatch(BaseModel):
    token: Optional[str] = None
    checkpoint: Optional[Any] = None
    last_successful_item: Optional[str] = None
    next_cursor: Optional[str] = None


class MetricsPatch(BaseModel):
    request_count: Optional[int] = Field(default=None, ge=0)
    rate_limit_hits: Optional[int] = Field(default=None, ge=0)
