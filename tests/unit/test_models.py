from datetime import datetime

import pytest
from pydantic import ValidationError

from fscrape.models.batch import (
    BatchConfig,
    BatchOperation,
    BatchResult,
    BatchStatus,
    BatchSummary,
)
from fscrape.models.config import EngineConfig, SessionSettings
from fscrape.models.progress import Milestone, ProgressSnapshot
from fscrape.models.session import (
    SessionConfig,
    SessionStatus,
    SourceKind,
)


def test_terminal_statuses():
    assert [s for s in SessionStatus if s.is_terminal] == [
        SessionStatus.COMPLETED,
        SessionStatus.FAILED,
        SessionStatus.CANCELLED,
    ]


def test_session_config_parameters():
    config = SessionConfig(
        source_kind=SourceKind.REDDIT,
        query_type="target",
        query_value="python/hot",
        max_items=10,
        resume_from_session="ignored",
    )

    params = config.parameters()

    assert params.query_value == "python/hot"
    assert params.max_items == 10
    assert not hasattr(params, "resume_from_session")
    with pytest.raises(ValidationError):
        params.max_items = 20


def test_session_config_rejects_zero_cap():
    with pytest.raises(ValidationError):
        SessionConfig(source_kind=SourceKind.HACKERNEWS, max_items=0)


def test_display_percentage_clamped():
    snapshot = ProgressSnapshot(
        tracking_id="x", timestamp=datetime(2025, 1, 1), current=5, percentage=-3.0
    )
    unknown = snapshot.model_copy(update={"percentage": None})

    assert snapshot.display_percentage == 0.0
    assert unknown.display_percentage is None


@pytest.mark.parametrize("threshold", [0, 101])
def test_milestone_bounds(threshold):
    with pytest.raises(ValidationError):
        Milestone(threshold_percent=threshold)


def test_batch_operation_label_and_frozen():
    operation = BatchOperation(kind="scrape", target="reddit", items=["python"])

    assert operation.label == "scrape reddit"
    assert BatchOperation(kind="purge").label == "purge"
    with pytest.raises(ValidationError):
        operation.kind = "export"


def test_batch_summary():
    op = BatchOperation(kind="purge")
    results = [
        BatchResult(operation=op, status=BatchStatus.SUCCESS),
        BatchResult(operation=op, status=BatchStatus.FAILED),
        BatchResult(operation=op, status=BatchStatus.SKIPPED),
        BatchResult(operation=op, status=BatchStatus.SUCCESS),
    ]

    summary = BatchSummary.from_results(results)

    assert (summary.total, summary.success, summary.failed, summary.skipped) == (4, 2, 1, 1)


def test_batch_config_concurrency_bounds():
    with pytest.raises(ValidationError):
        BatchConfig(max_concurrency=0)


def test_session_settings_milestones():
    assert SessionSettings(milestones=[10, 20]).milestones == [10, 20]
    with pytest.raises(ValidationError):
        SessionSettings(milestones=[50, 50])


def test_engine_config_defaults():
    config = EngineConfig()

    assert config.store.data_dir == "./data"
    assert config.sessions.retention_hours == 24.0
    assert config.batch.continue_on_error is True
    assert config.logging.level == "INFO"
