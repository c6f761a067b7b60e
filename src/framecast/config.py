"""
Centralized configuration. Load once, use everywhere.

Values here are defaults: components take their roots, stores and
runners as constructor arguments so nothing depends on ambient paths.
"""
import os
from pathlib import Path
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class Config:
    # ─────────────────────────────────────────────────────────────
    # Staging (server side)
    # ─────────────────────────────────────────────────────────────
    STAGING_ROOT = Path(os.getenv("FRAMECAST_STAGING_ROOT", "/tmp/framecast_staging"))

    # Encoder output; defaults to a sibling of the session partitions
    _output_env = os.getenv("FRAMECAST_OUTPUT_DIR")
    OUTPUT_DIR = Path(_output_env) if _output_env else STAGING_ROOT / "_renders"

    # Bounded parallel writes of the frames inside one batch
    STAGE_WRITE_WORKERS = int(os.getenv("STAGE_WRITE_WORKERS", "4"))
    STAGE_FSYNC = _env_bool("STAGE_FSYNC", "true")

    # Orphan sessions: partitions idle longer than this are reaped
    SESSION_TTL_S = float(os.getenv("SESSION_TTL_S", "3600"))
    REAPER_INTERVAL_S = float(os.getenv("REAPER_INTERVAL_S", "300"))

    # ─────────────────────────────────────────────────────────────
    # Encoder
    # ─────────────────────────────────────────────────────────────
    FFMPEG_PATH = os.getenv("FFMPEG_PATH", "ffmpeg")
    # "image-sequence" or "concat-manifest"
    ENCODE_STRATEGY = os.getenv("ENCODE_STRATEGY", "image-sequence")
    ENCODER_TIMEOUT_S = float(os.getenv("ENCODER_TIMEOUT_S", "600"))
    ENCODER_CRF = int(os.getenv("ENCODER_CRF", "23"))
    ENCODER_PRESET = os.getenv("ENCODER_PRESET", "medium")
    ENCODER_MAX_BITRATE = os.getenv("ENCODER_MAX_BITRATE", "5M")

    # ─────────────────────────────────────────────────────────────
    # Publish (durable object storage)
    # ─────────────────────────────────────────────────────────────
    # "supabase" or "local"
    OBJECT_STORE = os.getenv("OBJECT_STORE", "local")
    LOCAL_OBJECT_STORE_DIR = Path(
        os.getenv("LOCAL_OBJECT_STORE_DIR", "/tmp/framecast_objects")
    )

    SUPABASE_URL = os.getenv("SUPABASE_URL")
    SUPABASE_SECRET_KEY = os.getenv("SUPABASE_SECRET_KEY")
    # Legacy key name, still accepted
    SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
    SUPABASE_STORAGE_BUCKET = os.getenv("SUPABASE_STORAGE_BUCKET", "videos")
    SUPABASE_CONTENT_TABLE = os.getenv("SUPABASE_CONTENT_TABLE", "content")

    # ─────────────────────────────────────────────────────────────
    # Capture client
    # ─────────────────────────────────────────────────────────────
    SERVER_URL = os.getenv("FRAMECAST_SERVER_URL", "http://127.0.0.1:8000")
    CAPTURE_BATCH_SIZE = int(os.getenv("CAPTURE_BATCH_SIZE", "30"))
    CAPTURE_FPS = int(os.getenv("CAPTURE_FPS", "30"))
    HTTP_TIMEOUT_S = float(os.getenv("HTTP_TIMEOUT_S", "120"))

    # ─────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR = os.getenv("LOG_DIR", "logs")

    # Debug mode - set DEBUG=1 in env to enable verbose logging
    DEBUG = _env_bool("DEBUG", "")

    @classmethod
    def get_supabase_key(cls) -> str:
        """
        Get the server-side Supabase key.

        Prefers the new secret key format, falls back to the legacy
        service_role key.
        """
        if cls.SUPABASE_SECRET_KEY:
            return cls.SUPABASE_SECRET_KEY
        if cls.SUPABASE_SERVICE_ROLE_KEY:
            return cls.SUPABASE_SERVICE_ROLE_KEY

        raise ValueError(
            "No Supabase API key found. Set SUPABASE_SECRET_KEY "
            "in your .env file."
        )
