"""
HTTP layer for the capture pipeline.

Usage:
    framecast serve --port 8000

    # Or with uvicorn directly
    python -m uvicorn framecast.backend.server:app --port 8000
"""

from .server import EncodeRequest, create_app

__all__ = [
    "EncodeRequest",
    "create_app",
]
