"""
Shared fixtures. Run with: pytest tests/
"""
import os
from pathlib import Path

import pytest

# Keep test runs from writing log files into the working tree
os.environ.setdefault("LOG_DIR", "")

from framecast.renderer.encoder import EncoderResult, EncoderSettings  # noqa: E402
from framecast.staging import SessionRegistry, SessionStager, SessionStore  # noqa: E402

FAKE_MP4 = b"\x00\x00\x00\x18ftypisom\x00\x00\x02\x00isomiso2fake-video-payload"


def make_frames(count: int, width: int, height: int, start: int = 0) -> bytes:
    """Concatenated RGBA frames; frame i is filled with byte (i % 256)."""
    size = width * height * 4
    return b"".join(bytes([(start + i) % 256]) * size for i in range(count))


class FakeEncoder:
    """Stands in for ffmpeg: records each call and writes a tiny output file."""

    def __init__(self, output: bytes = FAKE_MP4, fail_with=None, write_output: bool = True, inspect=None):
        self.output = output
        self.fail_with = fail_with
        self.write_output = write_output
        self.inspect = inspect
        self.calls = []

    def __call__(self, argv, timeout_s=None):
        self.calls.append(list(argv))
        if self.inspect:
            self.inspect(argv)
        if self.fail_with:
            raise self.fail_with
        if self.write_output:
            Path(argv[-1]).write_bytes(self.output)
        return EncoderResult(returncode=0, output="fake encode ok")


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "staging", fsync=False)


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def stager(store, registry):
    return SessionStager(store, registry, write_workers=4)


@pytest.fixture
def fake_encoder():
    return FakeEncoder()


@pytest.fixture
def settings():
    return EncoderSettings(timeout_s=30)
