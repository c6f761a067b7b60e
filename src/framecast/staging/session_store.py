"""
Disk-backed staging of raw frames, partitioned by session id.

Layout under the injected root:

    <root>/session-<id>/frame-000000.raw
    <root>/session-<id>/frame-000001.raw
    ...

Every frame is written to a temp file and renamed into place, so a
re-delivered frame overwrites the old one atomically.
"""
import os
import re
import shutil
import time
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Callable, ContextManager, Iterator, Optional

from ..errors import ValidationError
from ..log import get_logger

log = get_logger("staging.store")

SESSION_PREFIX = "session-"
FRAME_NAME = "frame-{index:06d}.raw"

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")
_FRAME_FILE_RE = re.compile(r"^frame-(\d{6,})\.raw$")


def frame_filename(index: int) -> str:
    return FRAME_NAME.format(index=index)


class SessionStore:
    """Keyed storage of raw frame artifacts for many sessions."""

    def __init__(self, root, fsync: bool = True):
        self.root = Path(root)
        self.fsync = fsync

    # ─────────────────────────────────────────────────────────────
    # Partitions
    # ─────────────────────────────────────────────────────────────

    def partition(self, session_id: str) -> Path:
        """Path of a session's partition. Session ids must be filename-safe."""
        if not isinstance(session_id, str) or not _SESSION_ID_RE.match(session_id):
            raise ValidationError(f"Invalid session id: {session_id!r}")
        return self.root / f"{SESSION_PREFIX}{session_id}"

    def ensure(self, session_id: str) -> Path:
        """Create the partition if absent. Idempotent."""
        path = self.partition(session_id)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def exists(self, session_id: str) -> bool:
        return self.partition(session_id).is_dir()

    def list_sessions(self) -> list[str]:
        if not self.root.is_dir():
            return []
        ids = []
        for p in self.root.iterdir():
            if not (p.is_dir() and p.name.startswith(SESSION_PREFIX)):
                continue
            session_id = p.name[len(SESSION_PREFIX):]
            if _SESSION_ID_RE.match(session_id):
                ids.append(session_id)
        return sorted(ids)

    def last_activity(self, session_id: str) -> Optional[float]:
        """Newest mtime of the partition or any file in it."""
        path = self.partition(session_id)
        try:
            newest = path.stat().st_mtime
        except FileNotFoundError:
            return None
        for entry in path.iterdir():
            try:
                newest = max(newest, entry.stat().st_mtime)
            except FileNotFoundError:
                continue
        return newest

    def destroy(self, session_id: str) -> bool:
        """
        Remove a partition and everything in it.

        Never raises: failures are logged and reported as False.
        """
        path = self.partition(session_id)
        if not path.exists():
            return True
        try:
            shutil.rmtree(path)
            log.debug(f"🧹 Removed staging partition {path}")
            return True
        except OSError as e:
            log.warning(f"Failed to remove staging partition {path}: {e}")
            return False

    @contextmanager
    def lease(self, session_id: str) -> Iterator[Path]:
        """
        Scoped ownership of a session's partition.

        The partition is destroyed when the block exits, whether it
        returns or raises.
        """
        path = self.partition(session_id)
        try:
            yield path
        finally:
            self.destroy(session_id)

    # ─────────────────────────────────────────────────────────────
    # Frames
    # ─────────────────────────────────────────────────────────────

    def frame_path(self, session_id: str, index: int) -> Path:
        if index < 0:
            raise ValidationError(f"Frame index must be >= 0, got {index}")
        return self.partition(session_id) / frame_filename(index)

    def write_frame(self, session_id: str, index: int, data) -> Path:
        """Persist one frame, replacing any earlier copy of the same index."""
        target = self.frame_path(session_id, index)
        tmp = target.with_name(f".{target.name}.{os.getpid()}.tmp")
        with open(tmp, "wb") as f:
            f.write(data)
            if self.fsync:
                f.flush()
                os.fsync(f.fileno())
        os.replace(tmp, target)
        return target

    def read_frame(self, session_id: str, index: int) -> bytes:
        return self.frame_path(session_id, index).read_bytes()

    def has_frame(self, session_id: str, index: int) -> bool:
        return self.frame_path(session_id, index).is_file()

    def delete_frame(self, session_id: str, index: int) -> None:
        self.frame_path(session_id, index).unlink(missing_ok=True)

    def staged_indices(self, session_id: str) -> list[int]:
        path = self.partition(session_id)
        if not path.is_dir():
            return []
        indices = []
        for entry in path.iterdir():
            m = _FRAME_FILE_RE.match(entry.name)
            if m:
                indices.append(int(m.group(1)))
        return sorted(indices)

    def frame_count(self, session_id: str) -> int:
        return len(self.staged_indices(session_id))

    def first_missing(self, session_id: str, total_frames: int) -> Optional[int]:
        """Lowest index in [0, total_frames) with no staged frame, or None."""
        staged = set(self.staged_indices(session_id))
        for index in range(total_frames):
            if index not in staged:
                return index
        return None

    # ─────────────────────────────────────────────────────────────
    # Orphans
    # ─────────────────────────────────────────────────────────────

    def _is_idle(self, session_id: str, ttl_s: float, now: float) -> bool:
        last = self.last_activity(session_id)
        return last is not None and now - last > ttl_s

    def reap_orphans(
        self,
        ttl_s: float,
        now: Optional[float] = None,
        skip: Optional[set] = None,
        hold: Optional[Callable[[str], ContextManager[bool]]] = None,
        on_reaped: Optional[Callable[[str], None]] = None,
    ) -> list[str]:
        """
        Destroy partitions idle for longer than ``ttl_s`` seconds.

        Sessions named in ``skip`` are left alone. ``hold(session_id)``,
        when given, must yield True while it keeps writers out of the
        session; idleness is checked again under it and ``on_reaped``
        runs before it is released. Returns the reaped session ids.
        """
        now = time.time() if now is None else now
        skip = skip or set()
        reaped = []
        for session_id in self.list_sessions():
            if session_id in skip or not self._is_idle(session_id, ttl_s, now):
                continue
            with (hold(session_id) if hold else nullcontext(True)) as held:
                if not held or not self._is_idle(session_id, ttl_s, now):
                    continue
                if self.destroy(session_id):
                    reaped.append(session_id)
                    if on_reaped:
                        on_reaped(session_id)
        if reaped:
            log.info(f"🧹 Reaped {len(reaped)} orphaned session(s): {', '.join(reaped)}")
        return reaped
