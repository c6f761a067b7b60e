"""
Time-seekable frame sources for the capture orchestrator.

A source behaves like a GPU-rendered scene driven by a clock:

    await source.seek(t)      # returns once the clock reached t
    source.refresh()          # mark content dirty (texture needs update)
    await source.next_tick()  # one render-loop tick; dirty content is
                              # committed to the surface on a tick
    source.read_pixels()      # width*height*4 RGBA bytes, bottom row first

Readback follows the GL convention (origin bottom-left), so rows come
back vertically inverted relative to a top-down image.
"""
from pathlib import Path
from typing import Callable, Optional, Protocol
import asyncio

import cv2
import numpy as np

from ..errors import ConfigError
from ..log import get_logger

log = get_logger("orchestrator.sources")


class FrameSource(Protocol):
    width: int
    height: int
    duration: float

    async def seek(self, t: float) -> None: ...

    def refresh(self) -> None: ...

    async def next_tick(self) -> None: ...

    def read_pixels(self) -> bytes: ...


class _TickedSurface:
    """Shared tick/commit behaviour: content becomes readable one tick after refresh."""

    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height
        self._surface = np.zeros((height, width, 4), dtype=np.uint8)
        self._dirty = False
        self.ticks = 0

    def refresh(self) -> None:
        self._dirty = True

    async def next_tick(self) -> None:
        await asyncio.sleep(0)
        self.ticks += 1
        if self._dirty:
            # Surface is stored bottom-up, like a GL framebuffer
            self._surface = np.ascontiguousarray(np.flipud(self.render()))
            self._dirty = False

    def read_pixels(self) -> bytes:
        return self._surface.tobytes()

    def render(self) -> np.ndarray:
        """Top-down (height, width, 4) RGBA image for the current time."""
        raise NotImplementedError


def default_color(t: float) -> tuple[int, int, int]:
    return (int(t * 97) % 256, int(t * 53 + 64) % 256, int(t * 29 + 128) % 256)


class SyntheticSource(_TickedSurface):
    """
    Deterministic scene: a solid colour chosen by ``color_fn(t)`` with a
    white band across the top rows, so row order is visible in output.
    """

    def __init__(
        self,
        width: int,
        height: int,
        duration: float,
        color_fn: Optional[Callable[[float], tuple]] = None,
        marker_rows: int = 1,
    ):
        super().__init__(width, height)
        self.duration = duration
        self.color_fn = color_fn or default_color
        self.marker_rows = marker_rows
        self.current_time = 0.0
        self.seeks: list[float] = []

    async def seek(self, t: float) -> None:
        await asyncio.sleep(0)
        self.current_time = t
        self.seeks.append(t)

    def render(self) -> np.ndarray:
        r, g, b = self.color_fn(self.current_time)[:3]
        image = np.empty((self.height, self.width, 4), dtype=np.uint8)
        image[:, :] = (r, g, b, 255)
        if self.marker_rows:
            image[: self.marker_rows, :] = (255, 255, 255, 255)
        return image


class VideoFileSource(_TickedSurface):
    """
    Decodes a video file with OpenCV and presents it as a seekable scene.

    ``width``/``height`` default to the video's own size; other sizes
    are resized on commit.
    """

    def __init__(self, path, width: Optional[int] = None, height: Optional[int] = None):
        self.path = Path(path)
        self._cap = cv2.VideoCapture(str(self.path))
        if not self._cap.isOpened():
            raise ConfigError(f"Cannot open video: {self.path}")

        native_w = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        native_h = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        frame_count = self._cap.get(cv2.CAP_PROP_FRAME_COUNT)
        fps = self._cap.get(cv2.CAP_PROP_FPS)
        self.duration = frame_count / fps if fps > 0 else 0.0

        super().__init__(width or native_w, height or native_h)
        self._frame: Optional[np.ndarray] = None
        log.info(
            f"🎞️  Opened {self.path.name}: {native_w}x{native_h}, "
            f"{self.duration:.2f}s @ {fps:.2f}fps"
        )

    def _read_at(self, t: float) -> Optional[np.ndarray]:
        self._cap.set(cv2.CAP_PROP_POS_MSEC, t * 1000.0)
        ok, frame = self._cap.read()
        return frame if ok else None

    async def seek(self, t: float) -> None:
        frame = await asyncio.to_thread(self._read_at, t)
        if frame is not None:
            self._frame = frame
        # Past the last decodable frame the previous one stays on screen

    def render(self) -> np.ndarray:
        if self._frame is None:
            return np.zeros((self.height, self.width, 4), dtype=np.uint8)
        frame = self._frame
        if frame.shape[1] != self.width or frame.shape[0] != self.height:
            frame = cv2.resize(frame, (self.width, self.height), interpolation=cv2.INTER_AREA)
        return cv2.cvtColor(frame, cv2.COLOR_BGR2RGBA)

    def close(self) -> None:
        self._cap.release()
