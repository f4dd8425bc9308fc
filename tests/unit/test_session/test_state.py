"""Tests for SessionStateManager"""

import json
from datetime import datetime, timedelta
from itertools import product

import pytest

from fscrape.models.session import (
    MetricsPatch,
    ProgressPatch,
    ResumeDataPatch,
    SessionParameters,
    SessionStatus,
    SourceKind,
)
from fscrape.session.state import ALLOWED_TRANSITIONS, BACKUP_VERSION, SessionStateManager
from fscrape.utils.exceptions import (
    DataIntegrityError,
    InvalidProgressError,
    InvalidTransitionError,
    SessionNotFoundError,
)


class FakeClock:
    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# Shortest path from pending to each status
PATHS = {
    SessionStatus.PENDING: [],
    SessionStatus.RUNNING: [SessionStatus.RUNNING],
    SessionStatus.PAUSED: [SessionStatus.RUNNING, SessionStatus.PAUSED],
    SessionStatus.COMPLETED: [SessionStatus.RUNNING, SessionStatus.COMPLETED],
    SessionStatus.FAILED: [SessionStatus.RUNNING, SessionStatus.FAILED],
    SessionStatus.CANCELLED: [SessionStatus.RUNNING, SessionStatus.CANCELLED],
}


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(clock):
    return SessionStateManager(clock=clock)


@pytest.fixture
def running(manager):
    manager.create("s1", SourceKind.REDDIT, SessionParameters(max_items=100))
    manager.transition("s1", SessionStatus.RUNNING)
    return "s1"


def drive_to(manager, session_id, status):
    manager.create(session_id, SourceKind.HACKERNEWS)
    for step in PATHS[status]:
        manager.transition(session_id, step)


class TestCreate:
    def test_create_starts_pending(self, manager, clock):
        session = manager.create(
            "s1", SourceKind.REDDIT, SessionParameters(query_value="python")
        )

        assert session.status == SessionStatus.PENDING
        assert session.started_at == clock.now
        assert session.updated_at == clock.now
        assert session.completed_at is None
        assert session.config.query_value == "python"
        assert "s1" in manager
        assert len(manager) == 1

    def test_duplicate_id_rejected(self, manager):
        manager.create("s1", SourceKind.REDDIT)

        with pytest.raises(DataIntegrityError):
            manager.create("s1", SourceKind.HACKERNEWS)

    def test_getters_return_copies(self, manager):
        manager.create("s1", SourceKind.REDDIT)

        copy = manager.get("s1")
        copy.progress.processed_items = 99

        assert manager.get("s1").progress.processed_items == 0

    def test_unknown_session(self, manager):
        assert manager.get("missing") is None
        with pytest.raises(SessionNotFoundError):
            manager.require("missing")
        with pytest.raises(SessionNotFoundError):
            manager.transition("missing", SessionStatus.RUNNING)


class TestTransitions:
    @pytest.mark.parametrize("current,requested", list(product(SessionStatus, repeat=2)))
    def test_only_table_edges_allowed(self, manager, current, requested):
        """Every (from, to) pair either follows the table or leaves status unchanged"""
        drive_to(manager, "s1", current)

        # failed -> running additionally needs a resume token, absent here
        allowed = requested in ALLOWED_TRANSITIONS[current] and current != SessionStatus.FAILED

        if allowed:
            assert manager.transition("s1", requested).status == requested
        else:
            with pytest.raises(InvalidTransitionError):
                manager.transition("s1", requested)
            assert manager.get("s1").status == current

    def test_pending_cannot_pause(self, manager):
        manager.create("s1", SourceKind.REDDIT)

        with pytest.raises(InvalidTransitionError) as exc_info:
            manager.transition("s1", SessionStatus.PAUSED)

        assert exc_info.value.current == "pending"
        assert exc_info.value.requested == "paused"

    def test_terminal_status_sets_completed_at(self, manager, running, clock):
        clock.advance(seconds=5)
        paused = manager.transition(running, SessionStatus.PAUSED)
        assert paused.completed_at is None

        manager.transition(running, SessionStatus.RUNNING)
        clock.advance(seconds=5)
        done = manager.transition(running, SessionStatus.COMPLETED)
        assert done.completed_at == clock.now

    def test_completed_clears_resume_data(self, manager, running):
        manager.update_resume_data(running, ResumeDataPatch(checkpoint={"page": 3}))

        done = manager.transition(running, SessionStatus.COMPLETED)

        assert done.resume_data is None

    def test_failed_with_token_is_resumable(self, manager, running):
        manager.update_resume_data(running, ResumeDataPatch(token="tok1"))
        manager.transition(running, SessionStatus.FAILED)

        assert manager.can_resume(running) is True
        resumed = manager.transition(running, SessionStatus.RUNNING)
        assert resumed.status == SessionStatus.RUNNING
        assert resumed.completed_at is None

    def test_failed_without_token_is_terminal(self, manager, running):
        manager.transition(running, SessionStatus.FAILED)

        assert manager.can_resume(running) is False
        with pytest.raises(InvalidTransitionError, match="no resume token"):
            manager.transition(running, SessionStatus.RUNNING)

    def test_can_resume(self, manager, running):
        assert manager.can_resume(running) is False
        manager.transition(running, SessionStatus.PAUSED)
        assert manager.can_resume(running) is True
        assert manager.can_resume("missing") is False


class TestProgress:
    def test_merge_and_average(self, manager, running, clock):
        clock.advance(seconds=10)
        session = manager.update_progress(
            running, ProgressPatch(processed_items=50, total_items=100)
        )

        assert session.progress.processed_items == 50
        assert session.progress.total_items == 100
        assert session.metrics.total_time_ms == pytest.approx(10_000)
        assert session.metrics.average_item_time_ms == pytest.approx(200)

        # Unset fields are left alone
        session = manager.update_progress(running, ProgressPatch(last_item_id="p9"))
        assert session.progress.processed_items == 50
        assert session.progress.last_item_id == "p9"

    def test_processed_cannot_decrease(self, manager, running):
        manager.update_progress(running, ProgressPatch(processed_items=10))

        with pytest.raises(InvalidProgressError):
            manager.update_progress(running, ProgressPatch(processed_items=5))
        assert manager.get(running).progress.processed_items == 10

    def test_reset_allows_decrease(self, manager, running):
        manager.update_progress(running, ProgressPatch(processed_items=10))

        session = manager.update_progress(
            running, ProgressPatch(processed_items=0), reset=True
        )

        assert session.progress.processed_items == 0

    def test_smaller_total_replaces_previous(self, manager, running):
        manager.update_progress(running, ProgressPatch(total_items=100))

        session = manager.update_progress(running, ProgressPatch(total_items=80))

        assert session.progress.total_items == 80

    def test_counts_cannot_exceed_total(self, manager, running):
        with pytest.raises(InvalidProgressError):
            manager.update_progress(
                running, ProgressPatch(processed_items=150, total_items=100)
            )
        assert manager.get(running).progress.processed_items == 0

        manager.update_progress(running, ProgressPatch(processed_items=99, total_items=100))
        manager.append_error(running, "last item broke")

        with pytest.raises(InvalidProgressError):
            manager.append_error(running, "one too many")
        session = manager.get(running)
        assert session.progress.failed_items == 1
        assert len(session.errors) == 1

    def test_smaller_total_below_counts_rejected(self, manager, running):
        manager.update_progress(running, ProgressPatch(processed_items=90, total_items=100))

        with pytest.raises(InvalidProgressError):
            manager.update_progress(running, ProgressPatch(total_items=80))
        assert manager.get(running).progress.total_items == 100

    def test_unknown_total_is_not_checked(self, manager, running):
        manager.update_progress(running, ProgressPatch(processed_items=500))
        session = manager.append_error(running, "boom")

        assert session.progress.failed_items == 1

    def test_paused_time_not_accrued(self, manager, running, clock):
        clock.advance(seconds=2)
        manager.transition(running, SessionStatus.PAUSED)
        clock.advance(hours=1)
        session = manager.transition(running, SessionStatus.RUNNING)

        assert session.metrics.total_time_ms == pytest.approx(2_000)


class TestErrorsAndPatches:
    def test_append_error_counts_failed_item(self, manager, running):
        session = manager.append_error(running, ValueError("bad item"), item_id="p1")

        assert session.status == SessionStatus.RUNNING
        assert session.progress.failed_items == 1
        assert session.errors[0].message == "bad item"
        assert session.errors[0].item_id == "p1"

    def test_append_error_without_count(self, manager, running):
        session = manager.append_error(running, "boom", count_failed_item=False)

        assert session.progress.failed_items == 0
        assert len(session.errors) == 1

    def test_errors_keep_order(self, manager, running):
        for i in range(3):
            manager.append_error(running, f"error {i}")

        messages = [e.message for e in manager.get(running).errors]
        assert messages == ["error 0", "error 1", "error 2"]

    def test_resume_data_merges(self, manager, running):
        manager.update_resume_data(running, ResumeDataPatch(token="t1"))
        session = manager.update_resume_data(running, ResumeDataPatch(next_cursor="c2"))

        assert session.resume_data.token == "t1"
        assert session.resume_data.next_cursor == "c2"

    def test_update_metrics(self, manager, running):
        session = manager.update_metrics(
            running, MetricsPatch(request_count=4, rate_limit_hits=1)
        )

        assert session.metrics.request_count == 4
        assert session.metrics.rate_limit_hits == 1


class TestQueries:
    def test_active_and_by_status(self, manager):
        drive_to(manager, "run", SessionStatus.RUNNING)
        drive_to(manager, "pause", SessionStatus.PAUSED)
        drive_to(manager, "done", SessionStatus.COMPLETED)

        active = {s.id for s in manager.get_active_sessions()}
        assert active == {"run", "pause"}
        assert [s.id for s in manager.get_sessions_by_status(SessionStatus.COMPLETED)] == ["done"]
        assert len(manager.get_all_sessions()) == 3

    def test_clear_old_sessions(self, manager, clock):
        drive_to(manager, "done", SessionStatus.COMPLETED)
        drive_to(manager, "running", SessionStatus.RUNNING)
        manager.create("failed", SourceKind.REDDIT)
        manager.transition("failed", SessionStatus.RUNNING)
        manager.update_resume_data("failed", ResumeDataPatch(token="tok"))
        manager.transition("failed", SessionStatus.FAILED)

        clock.advance(hours=25)
        removed = manager.clear_old_sessions(timedelta(hours=24))

        assert removed == 1
        assert "done" not in manager
        assert "running" in manager
        assert "failed" in manager  # resumable failures are kept

    def test_clear_keeps_recent(self, manager, clock):
        drive_to(manager, "done", SessionStatus.COMPLETED)
        clock.advance(hours=1)

        assert manager.clear_old_sessions(timedelta(hours=24)) == 0


class TestTransportForm:
    def test_round_trip(self, manager, running, clock):
        clock.advance(seconds=3)
        manager.update_progress(
            running, ProgressPatch(processed_items=40, total_items=100, last_item_id="p40")
        )
        manager.append_error(running, "timeout", item_id="p41")
        manager.update_resume_data(
            running,
            ResumeDataPatch(token="tok", checkpoint={"page": 2}, next_cursor="t3_abc"),
        )
        manager.update_metrics(running, MetricsPatch(request_count=7))
        manager.transition(running, SessionStatus.PAUSED)
        original = manager.get(running)

        data = manager.to_transport_form(running)
        json.dumps(data)  # must be JSON-compatible

        other = SessionStateManager(clock=clock)
        restored = other.from_transport_form(data)

        assert restored == original

    def test_missing_fields_rejected(self, manager):
        with pytest.raises(DataIntegrityError):
            manager.from_transport_form({"id": "x", "status": "running"})
        assert "x" not in manager

    def test_non_mapping_rejected(self, manager):
        with pytest.raises(DataIntegrityError):
            manager.from_transport_form(["not", "a", "record"])

    def test_terminal_without_completed_at_rejected(self, manager, running):
        manager.transition(running, SessionStatus.COMPLETED)
        data = manager.to_transport_form(running)
        data["completed_at"] = None

        with pytest.raises(DataIntegrityError) as exc_info:
            SessionStateManager().from_transport_form(data)
        assert exc_info.value.session_id == running

    def test_progress_regression_rejected(self, manager, running):
        stale = manager.to_transport_form(running)
        manager.update_progress(running, ProgressPatch(processed_items=30))

        with pytest.raises(DataIntegrityError, match="regressed"):
            manager.from_transport_form(stale)
        assert manager.get(running).progress.processed_items == 30

    def test_status_override(self, manager, running):
        data = manager.to_transport_form(running)

        other = SessionStateManager()
        session = other.from_transport_form(data, status_override=SessionStatus.PAUSED)

        assert session.status == SessionStatus.PAUSED
        assert other.can_resume(running)


class TestSerialization:
    def test_serialize_single(self, manager, running):
        text = manager.serialize(running)
        assert manager.serialize("missing") is None

        other = SessionStateManager()
        assert other.deserialize(text).id == running
        assert other.deserialize("{not json") is None

    def test_serialize_all_skips_corrupted(self, manager, running):
        drive_to(manager, "s2", SessionStatus.PAUSED)
        records = json.loads(manager.serialize_all())
        records.append({"id": "broken"})

        other = SessionStateManager()
        sessions = other.deserialize_all(json.dumps(records))

        assert [s.id for s in sessions] == [running, "s2"]
        assert other.deserialize_all("[oops") == []
        assert other.deserialize_all('{"id": "s1"}') == []

    def test_checkpoint_envelope(self, manager, running, clock):
        checkpoint = manager.create_checkpoint(running)

        assert checkpoint["version"] == BACKUP_VERSION
        assert checkpoint["timestamp"] == clock.now.isoformat()
        assert checkpoint["state"]["id"] == running
        assert manager.create_checkpoint("missing") is None

        other = SessionStateManager()
        assert other.restore_from_checkpoint(checkpoint).id == running
        assert other.restore_from_checkpoint({"state": "garbage"}) is None
        assert other.restore_from_checkpoint({"state": {"id": "x"}}) is None


class TestBackup:
    def test_backup_and_restore(self, manager, running, tmp_path):
        drive_to(manager, "s2", SessionStatus.COMPLETED)
        backup_path = tmp_path / "backups" / "sessions.json"

        assert manager.create_backup(backup_path) is True

        with open(backup_path) as f:
            backup = json.load(f)
        assert backup["version"] == BACKUP_VERSION
        assert backup["session_count"] == 2
        assert [s["id"] for s in backup["sessions"]] == [running, "s2"]
        assert not backup_path.with_suffix(".json.tmp").exists()

        other = SessionStateManager()
        assert other.restore_from_backup(backup_path) == 2
        assert other.get("s2").status == SessionStatus.COMPLETED

    def test_restore_overwrites_in_place(self, manager, running, tmp_path):
        backup_path = tmp_path / "sessions.json"
        manager.create_backup(backup_path)
        manager.update_progress(running, ProgressPatch(processed_items=50))

        assert manager.restore_from_backup(backup_path) == 1
        assert manager.get(running).progress.processed_items == 0

    def test_restore_unreadable(self, manager, tmp_path):
        bad = tmp_path / "bad.json"
        bad.write_text("not json")

        assert manager.restore_from_backup(bad) == 0
        assert manager.restore_from_backup(tmp_path / "missing.json") == 0

        wrong_shape = tmp_path / "shape.json"
        wrong_shape.write_text(json.dumps({"sessions": "nope"}))
        assert manager.restore_from_backup(wrong_shape) == 0


class TestIntegrity:
    def test_validate_state(self, manager, running):
        session = manager.get(running)
        assert manager.validate_state(session) is True

        session.completed_at = session.updated_at
        assert manager.validate_state(session) is False

    def test_validate_state_rejects_overcounted_progress(self, manager, running):
        session = manager.get(running)
        session.progress.total_items = 100
        session.progress.processed_items = 95
        session.progress.failed_items = 10

        assert manager.validate_state(session) is False

        record = manager.to_transport_form(session)
        with pytest.raises(DataIntegrityError):
            manager.validate_record(record, allow_regression=True)

    def test_cleanup_corrupted_states(self, manager, running):
        drive_to(manager, "ok", SessionStatus.PAUSED)
        manager._states[running].updated_at = datetime(2000, 1, 1)

        assert manager.cleanup_corrupted_states() == 1
        assert running not in manager
        assert "ok" in manager
