"""
Publish & Delivery

A finished video goes two places, independently:
    1. durable object storage (through the server's publish endpoint)
    2. a local file for the user

Either may fail without stopping the other; the report says which did.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional
import os

from ..log import get_logger

log = get_logger("tools.publish")


def video_filename(session_id: str) -> str:
    return f"enhanced-video-{session_id}.mp4"


@dataclass
class DeliveryReport:
    published: Optional[dict] = None
    publish_error: Optional[str] = None
    download_path: Optional[Path] = None
    download_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.publish_error is None and self.download_error is None

    @property
    def any_succeeded(self) -> bool:
        return self.published is not None or self.download_path is not None


def deliver_locally(video: bytes, download_dir, filename: str) -> Path:
    """Write the video into download_dir, replacing any file of the same name."""
    download_dir = Path(download_dir)
    download_dir.mkdir(parents=True, exist_ok=True)
    target = download_dir / filename
    tmp = target.with_name(f".{filename}.part")
    tmp.write_bytes(video)
    os.replace(tmp, target)
    return target


async def publish_and_deliver(
    video: bytes,
    filename: str,
    publish: Optional[Callable[[], Awaitable[dict]]] = None,
    download_dir=None,
) -> DeliveryReport:
    """
    Attempt remote publish and local delivery; neither blocks the other.

    Args:
        video: MP4 bytes from finalize
        filename: name used for the local copy
        publish: coroutine factory doing the upload, or None to skip
        download_dir: where to write the local copy, or None to skip
    """
    report = DeliveryReport()

    if publish is not None:
        try:
            report.published = await publish()
            log.info(f"☁️  Published: {report.published.get('publicUrl')}")
        except Exception as e:
            report.publish_error = str(e)
            log.error(f"❌ Publish failed: {e}")

    if download_dir is not None:
        try:
            report.download_path = deliver_locally(video, download_dir, filename)
            log.info(f"📁 Saved locally: {report.download_path}")
        except OSError as e:
            report.download_error = str(e)
            log.error(f"❌ Local delivery failed: {e}")

    return report
