"""
Renderer Module

Encodes staged frames into an H.264/yuv420p MP4 with ffmpeg.

## Usage

```python
from framecast.renderer import Finalizer, FinalizeRequest, probe_encoder

available, msg = probe_encoder()

artifact = finalizer.finalize(
    FinalizeRequest(session_id="abc123", total_frames=60, fps=30, width=640, height=480)
)
```
"""

from .encoder import (
    CONCAT_MANIFEST,
    IMAGE_SEQUENCE,
    STRATEGIES,
    EncoderResult,
    EncoderSettings,
    build_concat_manifest_command,
    build_image_sequence_command,
    probe_encoder,
    run_encoder,
    supports_protocol,
)
from .finalizer import EncodedArtifact, FinalizeRequest, Finalizer

__all__ = [
    "CONCAT_MANIFEST",
    "IMAGE_SEQUENCE",
    "STRATEGIES",
    "EncoderResult",
    "EncoderSettings",
    "build_concat_manifest_command",
    "build_image_sequence_command",
    "probe_encoder",
    "run_encoder",
    "supports_protocol",
    "EncodedArtifact",
    "FinalizeRequest",
    "Finalizer",
]
