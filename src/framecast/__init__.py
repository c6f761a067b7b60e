"""
Framecast

Batched frame capture and encode pipeline: a client samples frames from
a time-driven rendered source, streams them to a server in batches, and
the server encodes them into one H.264 MP4 with ffmpeg.

Usage:
    # Server
    framecast serve --port 8000

    # Client
    framecast capture input.mp4 --owner user-42

    # Programmatic
    from framecast.orchestrator import CaptureOrchestrator, BatchTransport
"""
from .errors import (
    ConfigError,
    EncodingFailed,
    FramecastError,
    MissingFrame,
    SessionStateError,
    StagingError,
    StorageError,
    TransportError,
    ValidationError,
)

__version__ = "1.0.0"

__all__ = [
    "ConfigError",
    "EncodingFailed",
    "FramecastError",
    "MissingFrame",
    "SessionStateError",
    "StagingError",
    "StorageError",
    "TransportError",
    "ValidationError",
    "__version__",
]
