"""
Error taxonomy for capture, staging, encoding and publishing.

Every error carries a short ``error`` title and free-form ``details``;
the server renders both as ``{"error": ..., "details": ...}``.
"""
from typing import Optional


class FramecastError(Exception):
    """Base class for all pipeline errors."""

    title = "Pipeline error"
    status_code = 500

    def __init__(self, details: str = ""):
        super().__init__(details or self.title)
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.title, "details": self.details}


class ConfigError(FramecastError):
    """Capture source or renderer binding is missing. Fatal, no retry."""

    title = "Configuration error"


class ValidationError(FramecastError):
    """Batch shape does not match its declared frame count and size."""

    title = "Batch validation failed"
    status_code = 400


class SessionStateError(FramecastError):
    """Operation not allowed in the session's current state."""

    title = "Invalid session state"
    status_code = 409


class StagingError(FramecastError):
    """Writing staged frames to disk failed."""

    title = "Staging failed"


class TransportError(FramecastError):
    """Delivering a batch or finalize request to the server failed."""

    title = "Transport failed"

    def __init__(self, details: str = "", status_code: Optional[int] = None):
        super().__init__(details)
        self.http_status = status_code


class MissingFrame(FramecastError):
    """Finalize found a gap in the staged frames."""

    title = "Missing frame"
    status_code = 422

    def __init__(self, index: int, session_id: str = ""):
        details = f"Frame {index} is not staged"
        if session_id:
            details += f" for session {session_id}"
        super().__init__(details)
        self.index = index

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["missingFrame"] = self.index
        return data


class EncodingFailed(FramecastError):
    """The external encoder failed or produced no output."""

    title = "Encoding failed"

    def __init__(self, details: str = "", returncode: Optional[int] = None):
        super().__init__(details)
        self.returncode = returncode


class StorageError(FramecastError):
    """Publishing to durable object storage failed."""

    title = "Storage failed"
    status_code = 502
