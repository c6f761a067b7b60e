"""
Staging package.

Architecture:
    upload batch → SessionStager (validate, slice) → SessionStore (disk)

Each session id owns one partition under the staging root and one
CaptureSession entry in the registry.
"""
from .session_store import SessionStore, frame_filename
from .reaper import reap_sessions
from .sessions import CaptureSession, SessionRegistry, SessionState
from .stager import FrameBatch, SessionStager, validate_batch

__all__ = [
    "SessionStore",
    "frame_filename",
    "CaptureSession",
    "SessionRegistry",
    "SessionState",
    "reap_sessions",
    "FrameBatch",
    "SessionStager",
    "validate_batch",
]
