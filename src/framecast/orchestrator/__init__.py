"""
Orchestrator package (capture client).

Architecture:
    FrameSource → CaptureOrchestrator (sample, flip, batch)
                → BatchTransport (HTTP, sequential)
                → server

Single source = sequential execution; one batch in flight at a time.
"""
from .capturer import CaptureOrchestrator, CaptureResult, count_frames, flip_rows
from .sources import FrameSource, SyntheticSource, VideoFileSource
from .transport import BatchTransport

__all__ = [
    "CaptureOrchestrator",
    "CaptureResult",
    "count_frames",
    "flip_rows",
    "FrameSource",
    "SyntheticSource",
    "VideoFileSource",
    "BatchTransport",
]
