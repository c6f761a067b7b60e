"""Tests for the combined partition and registry cleanup pass."""
import threading
import time

from framecast.errors import MissingFrame
from framecast.renderer import FinalizeRequest, Finalizer
from framecast.staging import FrameBatch, reap_sessions

from conftest import FakeEncoder, make_frames

W, H = 4, 4


def test_sessions_without_partitions_do_not_accumulate(stager, store, registry, tmp_path):
    finalizer = Finalizer(store, registry, output_dir=tmp_path / "renders", runner=FakeEncoder())
    for n in range(50):
        stager.stage_batch(FrameBatch(f"empty-{n}", 0, 0, 0, W, H, b""))
        try:
            finalizer.finalize(FinalizeRequest(f"ghost-{n}", 3, 30, W, H))
        except MissingFrame:
            pass

    reap_sessions(store, registry, ttl_s=0, now=time.time() + 1)

    assert registry.active_ids() == set()


def test_idle_entry_without_partition_expires(store, registry):
    registry.get_or_create("stale")
    registry.get_or_create("fresh")
    registry.get("stale").updated_at -= 7200

    reaped, expired = reap_sessions(store, registry, ttl_s=3600)

    assert reaped == []
    assert expired == ["stale"]
    assert registry.active_ids() == {"fresh"}


def test_reaped_partition_drops_registry_entry(stager, store, registry):
    stager.stage_batch(FrameBatch("s1", 0, 0, 2, W, H, make_frames(2, W, H)))

    reaped, _ = reap_sessions(store, registry, ttl_s=0, now=time.time() + 10)

    assert reaped == ["s1"]
    assert not store.exists("s1")
    assert registry.get("s1") is None


def test_session_being_written_is_not_reaped(stager, store, registry):
    stager.stage_batch(FrameBatch("s1", 0, 0, 2, W, H, make_frames(2, W, H)))
    entered = threading.Event()
    release = threading.Event()

    def hold_session():
        with registry.acquire("s1"):
            entered.set()
            release.wait(5)

    writer = threading.Thread(target=hold_session)
    writer.start()
    entered.wait(5)
    try:
        reaped, expired = reap_sessions(store, registry, ttl_s=0, now=time.time() + 10)
    finally:
        release.set()
        writer.join()

    assert reaped == []
    assert expired == []
    assert store.exists("s1")
    assert registry.get("s1").last_start_frame == 0


def test_staged_session_entry_is_kept(stager, store, registry):
    stager.stage_batch(FrameBatch("s1", 0, 0, 1, W, H, make_frames(1, W, H)))
    registry.get("s1").updated_at -= 7200

    # Partition is fresh on disk, so neither it nor its entry go
    reaped, expired = reap_sessions(store, registry, ttl_s=3600)

    assert (reaped, expired) == ([], [])
    assert registry.get("s1") is not None
