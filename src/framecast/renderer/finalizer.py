"""
Finalizer

Turns the staged frames of one session into a single MP4:

    check every index in [0, totalFrames) is staged
    → prepare encoder input (image sequence or concat manifest)
    → run ffmpeg once
    → read the output into memory

The session's staging partition is leased for the whole encode and is
released on every exit path. A missing frame fails before ffmpeg is
touched and leaves the staged frames in place so the client can
re-send the gap and finalize again.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
import time

from PIL import Image

from ..config import Config
from ..errors import EncodingFailed, MissingFrame, SessionStateError, ValidationError
from ..log import get_logger
from ..staging.session_store import SessionStore
from ..staging.sessions import SessionRegistry, SessionState
from ..staging.stager import BYTES_PER_PIXEL, MAX_DIMENSION
from .encoder import (
    CONCAT_MANIFEST,
    IMAGE_SEQUENCE,
    PNG_PATTERN,
    STRATEGIES,
    EncoderSettings,
    build_concat_manifest_command,
    build_image_sequence_command,
    run_encoder,
    write_concat_manifest,
)

log = get_logger("renderer.finalizer")

MANIFEST_NAME = "frames.txt"
CONVERT_LOG_EVERY = 30  # frames between conversion progress lines


@dataclass
class FinalizeRequest:
    session_id: str
    total_frames: int
    fps: float
    width: int
    height: int

    def validate(self) -> None:
        if not isinstance(self.total_frames, int) or self.total_frames < 1:
            raise ValidationError(f"totalFrames must be >= 1, got {self.total_frames!r}")
        if not self.fps or self.fps <= 0:
            raise ValidationError(f"fps must be > 0, got {self.fps!r}")
        for name in ("width", "height"):
            value = getattr(self, name)
            if not isinstance(value, int) or not 0 < value <= MAX_DIMENSION:
                raise ValidationError(f"{name} must be in 1..{MAX_DIMENSION}, got {value!r}")


@dataclass
class EncodedArtifact:
    """Compressed video returned by finalize, before publish."""
    data: bytes
    session_id: str
    width: int
    height: int
    fps: float
    frame_count: int
    container: str = "mp4"
    codec: str = "h264"
    pix_fmt: str = "yuv420p"
    content_type: str = "video/mp4"

    @property
    def size(self) -> int:
        return len(self.data)


# ─────────────────────────────────────────────────────────────
# Input strategies
# ─────────────────────────────────────────────────────────────

def prepare_image_sequence(
    store: SessionStore,
    request: FinalizeRequest,
    settings: EncoderSettings,
    output_path: Path,
) -> list[str]:
    """
    Convert each raw frame to a PNG next to it, deleting the raw file
    right after, so the partition never holds both copies of every frame.
    """
    partition = store.partition(request.session_id)
    size = (request.width, request.height)

    for index in range(request.total_frames):
        raw = store.read_frame(request.session_id, index)
        image = Image.frombytes("RGBA", size, raw)
        image.save(partition / (PNG_PATTERN % index), format="PNG", compress_level=1)
        store.delete_frame(request.session_id, index)

        if index % CONVERT_LOG_EVERY == 0:
            log.debug(f"   Converted {index + 1}/{request.total_frames} frames")

    log.info(f"🖼️  Converted {request.total_frames} frames to PNG")
    return build_image_sequence_command(settings, partition, request.fps, output_path)


def prepare_concat_manifest(
    store: SessionStore,
    request: FinalizeRequest,
    settings: EncoderSettings,
    output_path: Path,
) -> list[str]:
    """List every raw frame in playback order; ffmpeg reads them directly."""
    frame_size = request.width * request.height * BYTES_PER_PIXEL
    paths = []
    for index in range(request.total_frames):
        path = store.frame_path(request.session_id, index)
        actual = path.stat().st_size
        if actual != frame_size:
            raise EncodingFailed(
                f"Frame {index} has {actual} bytes, expected {frame_size} "
                f"for {request.width}x{request.height}"
            )
        paths.append(path)

    manifest = write_concat_manifest(
        paths, store.partition(request.session_id) / MANIFEST_NAME
    )
    log.info(f"📝 Wrote concat manifest with {len(paths)} frames")
    return build_concat_manifest_command(
        settings, manifest, request.width, request.height, request.fps, output_path
    )


_PREPARERS = {
    IMAGE_SEQUENCE: prepare_image_sequence,
    CONCAT_MANIFEST: prepare_concat_manifest,
}


# ─────────────────────────────────────────────────────────────
# Finalizer
# ─────────────────────────────────────────────────────────────

class Finalizer:
    """Validates completeness, encodes, and releases the session."""

    def __init__(
        self,
        store: SessionStore,
        registry: SessionRegistry,
        output_dir=None,
        strategy: Optional[str] = None,
        settings: Optional[EncoderSettings] = None,
        runner: Callable = run_encoder,
    ):
        strategy = strategy or Config.ENCODE_STRATEGY
        if strategy not in STRATEGIES:
            raise ValueError(f"Unknown encode strategy {strategy!r}, expected one of {STRATEGIES}")

        self.store = store
        self.registry = registry
        self.output_dir = Path(output_dir) if output_dir else Config.OUTPUT_DIR
        self.strategy = strategy
        self.settings = settings or EncoderSettings.from_config()
        self.runner = runner

    def output_path(self, session_id: str) -> Path:
        return self.output_dir / f"output-{session_id}.mp4"

    def finalize(self, request: FinalizeRequest) -> EncodedArtifact:
        """
        Encode all staged frames of a session.

        Raises:
            ValidationError: bad parameters or size mismatch with the batches
            SessionStateError: session already complete or failed
            MissingFrame: a frame index is not staged (encoder not run)
            EncodingFailed: conversion, ffmpeg or output failure
        """
        self.store.partition(request.session_id)
        request.validate()

        if self.registry.get(request.session_id) is None and not self.store.exists(request.session_id):
            raise MissingFrame(0, request.session_id)

        with self.registry.acquire(request.session_id) as session:
            if session.width is not None and (session.width, session.height) != (request.width, request.height):
                raise ValidationError(
                    f"Finalize is {request.width}x{request.height} but frames were "
                    f"staged as {session.width}x{session.height}"
                )

            session.transition(SessionState.FINALIZING)
            session.fps = request.fps
            session.total_frames = request.total_frames

            missing = self.store.first_missing(request.session_id, request.total_frames)
            if missing is not None:
                raise MissingFrame(missing, request.session_id)

            log.info(
                f"🎬 Encoding {request.total_frames} frames from session "
                f"{request.session_id} ({self.strategy})"
            )
            started = time.monotonic()

            try:
                data = self._encode(request)
            except Exception:
                session.transition(SessionState.FAILED)
                self.registry.retire(session)
                raise

            session.transition(SessionState.COMPLETE)
            self.registry.retire(session)

        log.info(
            f"✅ Encoded session {request.session_id}: "
            f"{len(data) / 1024 / 1024:.2f} MB in {time.monotonic() - started:.1f}s"
        )
        return EncodedArtifact(
            data=data,
            session_id=request.session_id,
            width=request.width,
            height=request.height,
            fps=request.fps,
            frame_count=request.total_frames,
        )

    def _encode(self, request: FinalizeRequest) -> bytes:
        output_path = self.output_path(request.session_id)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        prepare = _PREPARERS[self.strategy]

        with self.store.lease(request.session_id):
            try:
                argv = prepare(self.store, request, self.settings, output_path)
                self.runner(argv, self.settings.timeout_s)

                if not output_path.is_file() or output_path.stat().st_size == 0:
                    raise EncodingFailed(f"Encoder produced no output at {output_path}")
                return output_path.read_bytes()
            except EncodingFailed:
                log.error(f"❌ Encoding failed for session {request.session_id}")
                raise
            except Exception as e:
                log.error(f"❌ Encoding failed for session {request.session_id}: {e}")
                raise EncodingFailed(str(e)) from e
            finally:
                _remove_quietly(output_path)


def _remove_quietly(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        log.warning(f"Failed to remove {path}: {e}")
