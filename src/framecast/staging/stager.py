"""
Session Stager

Receives frame batches, validates their shape and persists every frame
into the SessionStore at its global index (startFrame + offset).

Batches are idempotent per frame: re-delivering a batch overwrites the
same files. No cross-batch completeness check happens here; that is the
finalizer's job.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional
import time

from ..config import Config
from ..errors import SessionStateError, StagingError, ValidationError
from ..log import get_logger
from .session_store import SessionStore
from .sessions import SessionRegistry, SessionState

log = get_logger("staging.stager")

BYTES_PER_PIXEL = 4  # RGBA
MAX_DIMENSION = 16384


@dataclass
class FrameBatch:
    """One upload request worth of frames. Lives only for the request."""
    session_id: str
    batch_number: int
    start_frame: int
    frame_count: int
    width: int
    height: int
    payload: bytes

    @property
    def frame_size(self) -> int:
        return self.width * self.height * BYTES_PER_PIXEL

    def frame(self, offset: int) -> memoryview:
        """Bytes of the offset-th frame in this batch, without copying."""
        start = offset * self.frame_size
        return memoryview(self.payload)[start:start + self.frame_size]


def validate_batch(batch: FrameBatch) -> None:
    """Reject malformed batches before anything touches disk."""
    for name in ("batch_number", "start_frame", "frame_count"):
        value = getattr(batch, name)
        if not isinstance(value, int) or value < 0:
            raise ValidationError(f"{name} must be a non-negative integer, got {value!r}")

    for name in ("width", "height"):
        value = getattr(batch, name)
        if not isinstance(value, int) or not 0 < value <= MAX_DIMENSION:
            raise ValidationError(f"{name} must be in 1..{MAX_DIMENSION}, got {value!r}")

    expected = batch.frame_count * batch.frame_size
    if len(batch.payload) != expected:
        raise ValidationError(
            f"Payload is {len(batch.payload)} bytes, expected {expected} "
            f"({batch.frame_count} frames of {batch.width}x{batch.height} RGBA)"
        )


class SessionStager:
    """Writes validated batches into the store, one session at a time."""

    def __init__(
        self,
        store: SessionStore,
        registry: SessionRegistry,
        write_workers: Optional[int] = None,
    ):
        self.store = store
        self.registry = registry
        self.write_workers = max(1, write_workers or Config.STAGE_WRITE_WORKERS)

    def stage_batch(self, batch: FrameBatch) -> int:
        """
        Persist every frame of a batch.

        Returns the number of frames written, after all of them are on
        disk. An empty batch is accepted without touching the session.

        Raises:
            ValidationError: bad shape, size mismatch or bad session id
            SessionStateError: terminal session or startFrame going backwards
            StagingError: a frame could not be written
        """
        self.store.partition(batch.session_id)
        validate_batch(batch)

        if batch.frame_count == 0:
            log.info(f"📦 Batch {batch.batch_number} for {batch.session_id}: empty, nothing to stage")
            return 0

        with self.registry.acquire(batch.session_id) as session:
            if session.width is not None and (session.width, session.height) != (batch.width, batch.height):
                raise ValidationError(
                    f"Batch is {batch.width}x{batch.height} but session "
                    f"{batch.session_id} is {session.width}x{session.height}"
                )

            # A finalize that hit a gap leaves the session finalizing; gap refills may go backwards
            if (
                session.state == SessionState.COLLECTING
                and session.last_start_frame is not None
                and batch.start_frame < session.last_start_frame
            ):
                raise SessionStateError(
                    f"Batch {batch.batch_number} starts at frame {batch.start_frame}, "
                    f"before the previous batch at {session.last_start_frame}"
                )

            started = time.monotonic()
            try:
                self.store.ensure(batch.session_id)
                self._write_frames(batch)
            except OSError as e:
                raise StagingError(
                    f"Writing batch {batch.batch_number} for {batch.session_id} failed: {e}"
                ) from e

            session.width = batch.width
            session.height = batch.height
            session.last_start_frame = max(batch.start_frame, session.last_start_frame or 0)
            session.batches_received += 1
            session.updated_at = time.time()

        log.info(
            f"✅ Batch {batch.batch_number} for {batch.session_id}: "
            f"{batch.frame_count} frames from {batch.start_frame} "
            f"({time.monotonic() - started:.2f}s)"
        )
        return batch.frame_count

    def _write_frames(self, batch: FrameBatch) -> None:
        if self.write_workers == 1 or batch.frame_count == 1:
            for offset in range(batch.frame_count):
                self.store.write_frame(batch.session_id, batch.start_frame + offset, batch.frame(offset))
            return

        with ThreadPoolExecutor(max_workers=min(self.write_workers, batch.frame_count)) as pool:
            futures = [
                pool.submit(
                    self.store.write_frame,
                    batch.session_id,
                    batch.start_frame + offset,
                    batch.frame(offset),
                )
                for offset in range(batch.frame_count)
            ]
            for future in futures:
                future.result()
