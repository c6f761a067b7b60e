"""
FFmpeg Encoder Client

Builds ffmpeg argument vectors and runs them. Commands are always lists
handed straight to subprocess, never shell strings.

Both input strategies end in the same output arguments:

    -vf scale=trunc(iw/2)*2:trunc(ih/2)*2    (libx264 rejects odd sizes)
    -c:v libx264 -preset medium -crf 23
    -b:v 5M -maxrate 5M -bufsize 10M
    -pix_fmt yuv420p -movflags +faststart
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence
import re
import shutil
import subprocess

from ..config import Config
from ..errors import EncodingFailed
from ..log import get_logger

log = get_logger("renderer.encoder")


# ─────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────

IMAGE_SEQUENCE = "image-sequence"
CONCAT_MANIFEST = "concat-manifest"
STRATEGIES = (IMAGE_SEQUENCE, CONCAT_MANIFEST)

PNG_PATTERN = "frame-%06d.png"
EVEN_SCALE_FILTER = "scale=trunc(iw/2)*2:trunc(ih/2)*2"

# Only the tail of ffmpeg's log is carried in errors
DIAGNOSTIC_TAIL_CHARS = 4000


@dataclass
class EncoderSettings:
    ffmpeg_path: str = "ffmpeg"
    codec: str = "libx264"
    preset: str = "medium"
    crf: int = 23
    max_bitrate: str = "5M"
    pix_fmt: str = "yuv420p"
    timeout_s: Optional[float] = 600

    @classmethod
    def from_config(cls) -> "EncoderSettings":
        return cls(
            ffmpeg_path=Config.FFMPEG_PATH,
            preset=Config.ENCODER_PRESET,
            crf=Config.ENCODER_CRF,
            max_bitrate=Config.ENCODER_MAX_BITRATE,
            timeout_s=Config.ENCODER_TIMEOUT_S,
        )

    @property
    def bufsize(self) -> str:
        """Rate-control buffer: twice the bitrate ceiling."""
        m = re.fullmatch(r"(\d+(?:\.\d+)?)([kKmMgG]?)", self.max_bitrate)
        if not m:
            return self.max_bitrate
        return f"{_fmt_number(float(m.group(1)) * 2)}{m.group(2)}"


@dataclass
class EncoderResult:
    returncode: int
    output: str


def _fmt_number(value) -> str:
    """30.0 -> '30', 29.97 -> '29.97'."""
    value = float(value)
    return str(int(value)) if value.is_integer() else repr(value)


# ─────────────────────────────────────────────────────────────
# Argument builders
# ─────────────────────────────────────────────────────────────

def build_output_args(settings: EncoderSettings, output_path) -> list[str]:
    """Codec, quality and container arguments shared by every strategy."""
    return [
        "-vf", EVEN_SCALE_FILTER,
        "-c:v", settings.codec,
        "-preset", settings.preset,
        "-crf", str(settings.crf),
        "-b:v", settings.max_bitrate,
        "-maxrate", settings.max_bitrate,
        "-bufsize", settings.bufsize,
        "-pix_fmt", settings.pix_fmt,
        "-movflags", "+faststart",
        str(output_path),
    ]


def build_image_sequence_command(
    settings: EncoderSettings,
    frames_dir,
    fps: float,
    output_path,
) -> list[str]:
    """Encode frame-000000.png, frame-000001.png, ... from frames_dir."""
    return [
        settings.ffmpeg_path,
        "-hide_banner",
        "-y",
        "-framerate", _fmt_number(fps),
        "-start_number", "0",
        "-i", str(Path(frames_dir) / PNG_PATTERN),
        *build_output_args(settings, output_path),
    ]


def build_concat_manifest_command(
    settings: EncoderSettings,
    manifest_path,
    width: int,
    height: int,
    fps: float,
    output_path,
) -> list[str]:
    """
    Encode raw RGBA frames listed in a manifest.

    The concatf protocol joins the listed files byte for byte, and the
    rawvideo demuxer splits the stream back into width x height frames.
    """
    return [
        settings.ffmpeg_path,
        "-hide_banner",
        "-y",
        "-f", "rawvideo",
        "-pixel_format", "rgba",
        "-video_size", f"{width}x{height}",
        "-framerate", _fmt_number(fps),
        "-i", f"concatf:{manifest_path}",
        *build_output_args(settings, output_path),
    ]


def write_concat_manifest(frame_paths: Sequence, manifest_path) -> Path:
    """One absolute path per line, in playback order."""
    manifest_path = Path(manifest_path)
    lines = []
    for path in frame_paths:
        resolved = str(Path(path).resolve())
        if "\n" in resolved or "\r" in resolved:
            raise ValueError(f"Frame path contains a line break: {resolved!r}")
        lines.append(resolved)
    manifest_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return manifest_path


# ─────────────────────────────────────────────────────────────
# Execution
# ─────────────────────────────────────────────────────────────

def _tail(text: str) -> str:
    if len(text) <= DIAGNOSTIC_TAIL_CHARS:
        return text
    return "…" + text[-DIAGNOSTIC_TAIL_CHARS:]


def run_encoder(argv: Sequence[str], timeout_s: Optional[float] = None) -> EncoderResult:
    """
    Run ffmpeg synchronously with stdout and stderr merged.

    Raises:
        EncodingFailed: missing binary, timeout or non-zero exit. The
            tail of ffmpeg's output is in ``details``.
    """
    log.info(f"🎬 Executing: {subprocess.list2cmdline(list(argv))}")
    try:
        result = subprocess.run(
            list(argv),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL,
            timeout=timeout_s,
        )
    except FileNotFoundError:
        raise EncodingFailed(f"Encoder not found: {argv[0]}. Install ffmpeg or set FFMPEG_PATH.")
    except subprocess.TimeoutExpired as e:
        output = (e.output or b"").decode("utf-8", errors="replace")
        raise EncodingFailed(f"Encoder timed out after {timeout_s}s\n{_tail(output)}")

    output = result.stdout.decode("utf-8", errors="replace")
    if result.returncode != 0:
        raise EncodingFailed(
            f"ffmpeg exited with code {result.returncode}\n{_tail(output)}",
            returncode=result.returncode,
        )

    log.debug(f"ffmpeg output:\n{_tail(output)}")
    return EncoderResult(returncode=result.returncode, output=output)


def probe_encoder(ffmpeg_path: Optional[str] = None) -> tuple[bool, str]:
    """
    Check if ffmpeg is available.

    Returns:
        (is_available, message)
    """
    ffmpeg_path = ffmpeg_path or Config.FFMPEG_PATH
    resolved = shutil.which(ffmpeg_path)
    if not resolved:
        return (False, f"ffmpeg not found at {ffmpeg_path}")

    try:
        result = subprocess.run(
            [resolved, "-hide_banner", "-version"],
            capture_output=True,
            text=True,
            timeout=15,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        return (False, str(e))

    if result.returncode != 0:
        return (False, result.stderr.strip() or "ffmpeg -version failed")

    first_line = result.stdout.splitlines()[0] if result.stdout else "ffmpeg"
    return (True, first_line)


def supports_protocol(name: str, ffmpeg_path: Optional[str] = None) -> bool:
    """True if the ffmpeg build lists ``name`` among its input protocols."""
    ffmpeg_path = ffmpeg_path or Config.FFMPEG_PATH
    try:
        result = subprocess.run(
            [ffmpeg_path, "-hide_banner", "-protocols"],
            capture_output=True,
            text=True,
            timeout=15,
        )
    except (OSError, subprocess.TimeoutExpired):
        return False

    in_inputs = False
    for line in result.stdout.splitlines():
        line = line.strip()
        if line.startswith("Input:"):
            in_inputs = True
            continue
        if line.startswith("Output:"):
            break
        if in_inputs and line == name:
            return True
    return False
