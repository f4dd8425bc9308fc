"""Tests for JsonFileStore"""

from datetime import datetime, timedelta

import pytest

from fscrape.models.post import ForumPost
from fscrape.models.session import SourceKind
from fscrape.services.json_store import JsonFileStore

NOW = datetime(2025, 3, 1, 12, 0, 0)


@pytest.fixture
def store(tmp_path):
    return JsonFileStore(tmp_path / "data", clock=lambda: NOW)


def record(session_id, status="running", completed_at=None, **extra):
    data = {
        "id": session_id,
        "source_kind": "reddit",
        "status": status,
        "completed_at": completed_at,
        "resume_data": None,
    }
    data.update(extra)
    return data


def post(post_id, source=SourceKind.REDDIT, scraped_at=NOW):
    return ForumPost(id=post_id, source_kind=source, title=post_id, scraped_at=scraped_at)


class TestSessions:
    def test_upsert_and_get(self, store):
        store.upsert_session(record("s1"))
        store.upsert_session(record("s1", status="paused"))

        assert store.get_session("s1")["status"] == "paused"
        assert len(store.list_sessions()) == 1
        assert store.get_session("missing") is None

    def test_no_temp_files_left(self, store):
        store.upsert_session(record("s1"))

        assert [p.name for p in store.sessions_dir.iterdir()] == ["s1.json"]

    def test_rejects_unsafe_ids(self, store):
        with pytest.raises(ValueError):
            store.upsert_session(record("../escape"))
        with pytest.raises(ValueError):
            store.upsert_session({"status": "running"})

    def test_active_sessions(self, store):
        store.upsert_session(record("a", status="running"))
        store.upsert_session(record("b", status="pending"))
        store.upsert_session(record("c", status="paused"))

        assert {r["id"] for r in store.list_active_sessions()} == {"a", "b"}

    def test_resumable_sessions(self, store):
        store.upsert_session(record("paused", status="paused"))
        store.upsert_session(
            record("failed_tok", status="failed", resume_data={"token": "t"})
        )
        store.upsert_session(record("failed", status="failed"))
        store.upsert_session(
            record("hn", status="paused", source_kind="hackernews")
        )

        ids = {r["id"] for r in store.list_resumable_sessions()}
        assert ids == {"paused", "failed_tok", "hn"}
        reddit_only = store.list_resumable_sessions(SourceKind.REDDIT)
        assert {r["id"] for r in reddit_only} == {"paused", "failed_tok"}

    def test_corrupted_file_is_skipped(self, store):
        store.upsert_session(record("good"))
        (store.sessions_dir / "bad.json").write_text("{not json")

        assert [r["id"] for r in store.list_sessions()] == ["good"]

    def test_delete_old_terminal_sessions(self, store):
        old = (NOW - timedelta(days=10)).isoformat()
        recent = (NOW - timedelta(hours=1)).isoformat()
        store.upsert_session(record("old", status="completed", completed_at=old))
        store.upsert_session(record("recent", status="completed", completed_at=recent))
        store.upsert_session(record("running", status="running"))

        assert store.delete_sessions_older_than(timedelta(days=1)) == 1
        assert {r["id"] for r in store.list_sessions()} == {"recent", "running"}


class TestPosts:
    def test_upsert_is_keyed_by_id(self, store):
        store.upsert_posts([post("p1"), post("p2")])
        store.upsert_posts([post("p1")])

        assert len(store.list_posts(SourceKind.REDDIT)) == 2
        assert store.list_posts(SourceKind.HACKERNEWS) == []

    def test_list_newest_first_with_limit(self, store):
        store.upsert_posts(
            [
                post("old", scraped_at=NOW - timedelta(hours=2)),
                post("new", scraped_at=NOW),
                post("hn", source=SourceKind.HACKERNEWS, scraped_at=NOW - timedelta(hours=1)),
            ]
        )

        assert [p.id for p in store.list_posts()] == ["new", "hn", "old"]
        assert [p.id for p in store.list_posts(limit=1)] == ["new"]

    def test_delete_old_posts(self, store):
        store.upsert_posts(
            [
                post("old", scraped_at=NOW - timedelta(days=40)),
                post("new", scraped_at=NOW - timedelta(days=1)),
                post("hn_old", source=SourceKind.HACKERNEWS, scraped_at=NOW - timedelta(days=40)),
            ]
        )

        assert store.delete_posts_older_than(timedelta(days=30), SourceKind.REDDIT) == 1
        assert {p.id for p in store.list_posts()} == {"new", "hn_old"}

        assert store.delete_posts_older_than(timedelta(days=30)) == 1
        assert [p.id for p in store.list_posts()] == ["new"]
