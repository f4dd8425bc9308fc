"""Batch operation models.

Operations are declarative and frozen once submitted; the processor never
mutates its input list.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OperationKind(str, Enum):
    SCRAPE = "scrape"
    EXPORT = "export"
    PURGE = "purge"
    ADMIN = "admin"


class BatchStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class BatchOperation(BaseModel):
    """One independently dispatched unit of work.

    `kind` is kept as a plain string so that an unknown kind surfaces as a
    failed result at dispatch time rather than a validation error at load time.
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    target: Optional[str] = None
    items: List[str] = Field(default_factory=list)
    options: Dict[str, Any] = Field(default_factory=dict)

    @property
    def label(self) -> str:
        return f"{self.kind} {self.target or ''}".strip()


class BatchConfig(BaseModel):
    """Operations plus execution flags"""

    operations: List[BatchOperation] = Field(default_factory=list)
    parallel: bool = False
    max_concurrency: int = Field(default=5, ge=1, le=100)
    continue_on_error: bool = True
    dry_run: bool = False


class BatchResult(BaseModel):
    operation: BatchOperation
    status: BatchStatus
    message: Optional[str] = None
    payload: Optional[Any] = None
    duration_ms: float = 0.0


class BatchSummary(BaseModel):
    total: int = 0
    success: int = 0
    failed: int = 0
    skipped: int = 0

    @classmethod
    def from_results(cls, results: List[BatchResult]) -> "BatchSummary":
        return cls(
            total=len(results),
            success=sum(1 for r in results if r.status == BatchStatus.SUCCESS),
            failed=sum(1 for r in results if r.status == BatchStatus.FAILED),
            skipped=sum(1 for r in results if r.status == BatchStatus.SKIPPED),
        )


class BatchReport(BaseModel):
    """Saved JSON report of one batch run"""

    timestamp: datetime
    config: BatchConfig
    results: List[BatchResult]
    summary: BatchSummary
