"""Tests for the disk-backed session store."""
import os
import time
from contextlib import contextmanager

import pytest

from framecast.errors import ValidationError
from framecast.staging import SessionStore


def test_write_and_read_frame(store):
    store.ensure("abc123")
    store.write_frame("abc123", 0, b"\x01\x02\x03\x04")

    assert store.read_frame("abc123", 0) == b"\x01\x02\x03\x04"
    assert store.frame_path("abc123", 0).name == "frame-000000.raw"
    assert store.staged_indices("abc123") == [0]


def test_rewrite_overwrites_instead_of_appending(store):
    store.ensure("abc123")
    store.write_frame("abc123", 5, b"old-bytes")
    store.write_frame("abc123", 5, b"new")

    assert store.read_frame("abc123", 5) == b"new"
    assert store.frame_count("abc123") == 1
    # No temp files left behind
    assert [p.name for p in store.partition("abc123").iterdir()] == ["frame-000005.raw"]


def test_ensure_is_idempotent(store):
    first = store.ensure("abc123")
    store.write_frame("abc123", 0, b"x")
    second = store.ensure("abc123")

    assert first == second
    assert store.frame_count("abc123") == 1


@pytest.mark.parametrize("bad_id", ["", "../escape", "a/b", "with space", "x" * 200, None])
def test_invalid_session_ids_are_rejected(store, bad_id):
    with pytest.raises(ValidationError):
        store.partition(bad_id)


def test_first_missing_reports_lowest_gap(store):
    store.ensure("s1")
    for index in (0, 1, 2, 4, 5):
        store.write_frame("s1", index, b"f")

    assert store.first_missing("s1", 6) == 3
    assert store.first_missing("s1", 3) is None
    assert store.first_missing("unknown", 2) == 0


def test_lease_destroys_partition_on_error(store):
    store.ensure("s1")
    store.write_frame("s1", 0, b"f")

    with pytest.raises(RuntimeError):
        with store.lease("s1"):
            raise RuntimeError("boom")

    assert not store.exists("s1")


def test_lease_destroys_partition_on_success(store):
    store.ensure("s1")
    with store.lease("s1") as path:
        assert path.is_dir()
    assert not store.exists("s1")


def test_destroy_missing_partition_is_fine(store):
    assert store.destroy("never-created") is True


def test_list_sessions_ignores_other_directories(store):
    store.ensure("one")
    store.ensure("two")
    (store.root / "_renders").mkdir()
    (store.root / "session-bad name").mkdir()

    assert store.list_sessions() == ["one", "two"]


def _age(store: SessionStore, session_id: str, seconds: float) -> None:
    old = time.time() - seconds
    partition = store.partition(session_id)
    for entry in partition.iterdir():
        os.utime(entry, (old, old))
    os.utime(partition, (old, old))


def test_reap_orphans_removes_only_idle_sessions(store):
    for session_id in ("stale", "fresh", "busy"):
        store.ensure(session_id)
        store.write_frame(session_id, 0, b"f")
    _age(store, "stale", 7200)
    _age(store, "busy", 7200)

    reaped = store.reap_orphans(3600, skip={"busy"})

    assert reaped == ["stale"]
    assert not store.exists("stale")
    assert store.exists("fresh")
    assert store.exists("busy")


def test_reap_skips_sessions_it_cannot_hold(store):
    for session_id in ("held", "free"):
        store.ensure(session_id)
        store.write_frame(session_id, 0, b"f")
        _age(store, session_id, 7200)
    forgotten = []

    @contextmanager
    def hold(session_id):
        yield session_id != "held"

    reaped = store.reap_orphans(3600, hold=hold, on_reaped=forgotten.append)

    assert reaped == ["free"]
    assert forgotten == ["free"]
    assert store.exists("held")


def test_reap_rechecks_activity_under_hold(store):
    store.ensure("s1")
    store.write_frame("s1", 0, b"f")
    _age(store, "s1", 7200)

    @contextmanager
    def hold(session_id):
        # A batch lands between the idle scan and taking the lock
        store.write_frame(session_id, 1, b"g")
        yield True

    assert store.reap_orphans(3600, hold=hold) == []
    assert store.frame_count("s1") == 2
