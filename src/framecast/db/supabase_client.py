"""
Supabase client for content metadata.

Only one operation is used by the pipeline: recording a published video
so it shows up in the owner's library. The table layout belongs to the
rest of the product; records here are opaque dicts.
"""
from datetime import datetime, timezone
from typing import Optional

from supabase import Client, create_client

from ..config import Config
from ..tools.storage import StoredObject


def get_supabase() -> Client:
    """Get Supabase client with the server-side key."""
    return create_client(Config.SUPABASE_URL, Config.get_supabase_key())


def create_content_record(record: dict, client: Optional[Client] = None) -> str:
    """Insert a content record. Returns its id."""
    db = client or get_supabase()
    result = db.table(Config.SUPABASE_CONTENT_TABLE).insert(record).execute()
    return result.data[0]["id"]


def build_video_record(owner_id: str, stored: StoredObject, title: str) -> dict:
    now = datetime.now(timezone.utc).isoformat()
    return {
        "user_id": owner_id,
        "type": "video",
        "title": title,
        "storage_path": stored.storage_path,
        "public_url": stored.public_ref,
        "file_size": stored.size,
        "format": "mp4",
        "status": "ready",
        "tags": ["enhanced"],
        "created_at": now,
        "updated_at": now,
    }
