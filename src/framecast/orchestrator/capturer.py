"""
Capture Orchestrator

Samples exactly ceil(duration * fps) frames from a FrameSource and ships
them to the server in batches:

    for each frame i:
        seek source to i / fps        (wait for seek)
        refresh content
        wait two render ticks         (frame committed before readback)
        read back RGBA, reverse rows  (GL readback is bottom-up)
    every `batch_size` frames → send batch, wait for the reply
    after the last batch → finalize, receive MP4 bytes

Only one batch of frames is held in memory at a time. Any upload
failure aborts the whole capture; there is no partial video.
"""
from dataclasses import dataclass
from typing import Callable, Optional
import math
import uuid

import numpy as np

from ..config import Config
from ..errors import ConfigError, FramecastError
from ..log import get_logger
from ..staging.stager import BYTES_PER_PIXEL, FrameBatch
from .sources import FrameSource
from .transport import BatchTransport

log = get_logger("orchestrator.capturer")

ProgressCallback = Callable[[float, str], None]


@dataclass
class CaptureResult:
    session_id: str
    total_frames: int
    batches: int
    fps: float
    width: int
    height: int
    video: bytes


def flip_rows(pixels: bytes, width: int, height: int) -> bytes:
    """Row y of the result is row (height - 1 - y) of the input."""
    rows = np.frombuffer(pixels, dtype=np.uint8).reshape(height, width * BYTES_PER_PIXEL)
    return rows[::-1].tobytes()


def count_frames(duration: float, fps: float) -> int:
    # Round first so 2.0 * 30 stays 60 despite float noise
    return math.ceil(round(duration * fps, 6))


class CaptureOrchestrator:
    """Drives one capture run from source to encoded video."""

    def __init__(
        self,
        source: Optional[FrameSource],
        transport: Optional[BatchTransport],
        fps: Optional[float] = None,
        batch_size: Optional[int] = None,
        session_id: Optional[str] = None,
        progress: Optional[ProgressCallback] = None,
    ):
        self.source = source
        self.transport = transport
        self.fps = fps or Config.CAPTURE_FPS
        self.batch_size = batch_size or Config.CAPTURE_BATCH_SIZE
        self.session_id = session_id or uuid.uuid4().hex
        self.progress = progress

    def _report(self, percent: float, message: str) -> None:
        if self.progress:
            self.progress(percent, message)

    def _check_bindings(self) -> None:
        if self.source is None:
            raise ConfigError("No frame source bound to the capture")
        if self.transport is None:
            raise ConfigError("No transport bound to the capture")
        if self.source.width <= 0 or self.source.height <= 0:
            raise ConfigError(f"Source has no size ({self.source.width}x{self.source.height})")
        if not self.source.duration or self.source.duration <= 0:
            raise ConfigError("Source has no duration")
        if self.batch_size < 1:
            raise ConfigError(f"Batch size must be >= 1, got {self.batch_size}")

    async def sample_frame(self, index: int) -> bytes:
        """Seek, wait for the renderer, read back and fix row order."""
        source = self.source
        await source.seek(index / self.fps)
        source.refresh()
        await source.next_tick()
        await source.next_tick()

        pixels = source.read_pixels()
        expected = source.width * source.height * BYTES_PER_PIXEL
        if len(pixels) != expected:
            raise ConfigError(
                f"Readback returned {len(pixels)} bytes, expected {expected}"
            )
        return flip_rows(pixels, source.width, source.height)

    async def capture(self) -> CaptureResult:
        self._check_bindings()

        width, height = self.source.width, self.source.height
        total_frames = count_frames(self.source.duration, self.fps)
        total_batches = math.ceil(total_frames / self.batch_size)

        log.info(
            f"📹 Capturing {total_frames} frames at {width}x{height} "
            f"in batches of {self.batch_size} (session {self.session_id})"
        )
        self._report(0, "Starting capture...")

        batch_number = 0
        try:
            for start_frame in range(0, total_frames, self.batch_size):
                end_frame = min(start_frame + self.batch_size, total_frames)

                frames = []
                for index in range(start_frame, end_frame):
                    frames.append(await self.sample_frame(index))
                    self._report(
                        index / total_frames * 70,
                        f"Capturing frame {index + 1}/{total_frames}",
                    )

                self._report(
                    70 + batch_number / total_batches * 20,
                    f"Uploading batch {batch_number + 1}...",
                )
                await self.transport.send_batch(FrameBatch(
                    session_id=self.session_id,
                    batch_number=batch_number,
                    start_frame=start_frame,
                    frame_count=len(frames),
                    width=width,
                    height=height,
                    payload=b"".join(frames),
                ))
                batch_number += 1

            self._report(95, "Encoding video...")
            video = await self.transport.finalize(
                self.session_id, total_frames, self.fps, width, height
            )
        except FramecastError as e:
            log.error(f"❌ Capture failed: {e}")
            raise

        log.info(f"📊 Final video: {len(video) / 1024 / 1024:.2f} MB")
        self._report(100, "Complete!")
        return CaptureResult(
            session_id=self.session_id,
            total_frames=total_frames,
            batches=batch_number,
            fps=self.fps,
            width=width,
            height=height,
            video=video,
        )
