from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from fscrape.models.progress import DEFAULT_MILESTONES


class StoreSettings(BaseModel):
    """Where sessions and posts are persisted"""

    data_dir: str = "./data"


class SessionSettings(BaseModel):
    """Session engine tunables"""

    auto_persist_seconds: Optional[float] = Field(default=None, gt=0)
    progress_interval_seconds: Optional[float] = Field(default=None, gt=0)
    milestones: List[float] = Field(default_factory=lambda: list(DEFAULT_MILESTONES))
    history_size: int = Field(default=100, ge=0, le=10000)
    retention_hours: float = Field(default=24.0, gt=0)
    page_size: int = Field(default=25, ge=1, le=100)

    @field_validator("milestones")
    @classmethod
    def validate_milestones(cls, v: List[float]) -> List[float]:
        for threshold in v:
            if threshold <= 0 or threshold > 100:
                raise ValueError("Milestone thresholds must be in (0, 100]")
        if any(b <= a for a, b in zip(v, v[1:])):
            raise ValueError("Milestone thresholds must be strictly increasing")
        return v


class BatchSettings(BaseModel):
    """Defaults applied to batch files that omit execution flags"""

    parallel: bool = False
    max_concurrency: int = Field(default=5, ge=1, le=100)
    continue_on_error: bool = True
    dry_run: bool = False


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_output: bool = False


class EngineConfig(BaseModel):
    """Root configuration model"""

    store: StoreSettings = Field(default_factory=StoreSettings)
    sessions: SessionSettings = Field(default_factory=SessionSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
