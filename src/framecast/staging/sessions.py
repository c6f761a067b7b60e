"""
Session state tracking for capture sessions on the server.

One CaptureSession per session id, created on the first batch (or on
finalize for sessions staged by an earlier process). Each session has
its own lock: batch writes and finalize for the same id never overlap.

States:
    collecting → finalizing → complete | failed

Complete and failed are terminal. Terminal sessions are remembered as
tombstones so a repeated finalize is rejected instead of re-encoding.
"""
from collections import OrderedDict
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, Optional
import threading
import time

from ..errors import SessionStateError


class SessionState(str, Enum):
    COLLECTING = "collecting"
    FINALIZING = "finalizing"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETE, SessionState.FAILED)


_TRANSITIONS = {
    SessionState.COLLECTING: {SessionState.FINALIZING, SessionState.FAILED},
    SessionState.FINALIZING: {SessionState.FINALIZING, SessionState.COMPLETE, SessionState.FAILED},
    SessionState.COMPLETE: set(),
    SessionState.FAILED: set(),
}


@dataclass
class CaptureSession:
    """Server-side view of one capture run."""
    session_id: str
    width: Optional[int] = None
    height: Optional[int] = None
    fps: Optional[float] = None
    total_frames: Optional[int] = None
    state: SessionState = SessionState.COLLECTING

    # Batch ordering
    last_start_frame: Optional[int] = None
    batches_received: int = 0

    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise SessionStateError(
                f"Session {self.session_id} cannot go from {self.state.value} to {new_state.value}"
            )
        self.state = new_state
        self.updated_at = time.time()

    def get_summary(self) -> dict:
        return {
            "sessionId": self.session_id,
            "state": self.state.value,
            "width": self.width,
            "height": self.height,
            "fps": self.fps,
            "totalFrames": self.total_frames,
            "batchesReceived": self.batches_received,
        }


class SessionRegistry:
    """In-process registry of active sessions plus terminal tombstones."""

    def __init__(self, max_tombstones: int = 10_000):
        self._sessions: dict[str, CaptureSession] = {}
        self._tombstones: "OrderedDict[str, CaptureSession]" = OrderedDict()
        self._max_tombstones = max_tombstones
        self._lock = threading.Lock()

    def get(self, session_id: str) -> Optional[CaptureSession]:
        with self._lock:
            return self._sessions.get(session_id) or self._tombstones.get(session_id)

    def get_or_create(self, session_id: str) -> CaptureSession:
        with self._lock:
            session = self._sessions.get(session_id) or self._tombstones.get(session_id)
            if session is None:
                session = CaptureSession(session_id=session_id)
                self._sessions[session_id] = session
            return session

    def active_ids(self) -> set[str]:
        with self._lock:
            return set(self._sessions)

    def retire(self, session: CaptureSession) -> None:
        """Move a terminal session from the active table to the tombstones."""
        with self._lock:
            self._sessions.pop(session.session_id, None)
            self._tombstones[session.session_id] = session
            self._tombstones.move_to_end(session.session_id)
            while len(self._tombstones) > self._max_tombstones:
                self._tombstones.popitem(last=False)

    def forget(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def expire_idle(self, ttl_s: float, keep: Iterable[str] = (), now: Optional[float] = None) -> list[str]:
        """
        Drop active entries untouched for longer than ``ttl_s``.

        Sessions in ``keep`` (those still staged on disk) and sessions
        whose lock is held are left alone. Returns the dropped ids.
        """
        now = time.time() if now is None else now
        keep = set(keep)
        expired = []
        with self._lock:
            for session_id, session in list(self._sessions.items()):
                if session_id in keep or session.lock.locked():
                    continue
                if now - session.updated_at > ttl_s:
                    del self._sessions[session_id]
                    expired.append(session_id)
        return expired

    @contextmanager
    def try_hold(self, session_id: str) -> Iterator[bool]:
        """
        Take a session's lock without waiting.

        Yields True while the lock is held, False if someone else has it.
        """
        session = self.get_or_create(session_id)
        if not session.lock.acquire(blocking=False):
            yield False
            return
        try:
            yield True
        finally:
            session.lock.release()

    @contextmanager
    def acquire(self, session_id: str) -> Iterator[CaptureSession]:
        """
        Hold a session's lock for the duration of the block.

        Raises SessionStateError if the session is already terminal,
        including when it became terminal while we were waiting.
        """
        session = self.get_or_create(session_id)
        with session.lock:
            if session.state.is_terminal:
                raise SessionStateError(
                    f"Session {session_id} is already {session.state.value}"
                )
            yield session
