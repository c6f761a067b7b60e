"""
Orphan cleanup for the staging area.

A session that is never finalized leaves a partition on disk and an
entry in the registry. One reaper pass removes both once they have been
idle for longer than the TTL:

    partitions  → destroyed while the session lock is held, entry dropped
    entries     → dropped when nothing is staged for them on disk
"""
from typing import Optional

from ..log import get_logger
from .session_store import SessionStore
from .sessions import SessionRegistry

log = get_logger("staging.reaper")


def reap_sessions(
    store: SessionStore,
    registry: SessionRegistry,
    ttl_s: float,
    now: Optional[float] = None,
) -> tuple[list[str], list[str]]:
    """Run one pass. Returns (reaped partitions, expired registry entries)."""
    reaped = store.reap_orphans(
        ttl_s,
        now,
        hold=registry.try_hold,
        on_reaped=registry.forget,
    )
    expired = registry.expire_idle(ttl_s, keep=store.list_sessions(), now=now)
    if expired:
        log.info(f"🧹 Expired {len(expired)} idle session(s): {', '.join(expired)}")
    return reaped, expired
