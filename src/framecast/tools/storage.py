"""
Durable object storage for finished videos.

Two backends share one small contract:

    store(path, data, content_type) -> StoredObject(public_ref, storage_path, size)
    delete(storage_path)            -> None, best-effort

Usage:
    from framecast.tools.storage import get_object_store, build_owner_path

    store = get_object_store()
    path = build_owner_path("user-42", "enhanced-video-abc.mp4")
    stored = store.store(path, video_bytes, "video/mp4")
    # -> users/user-42/videos/enhanced-video-abc.mp4
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
import re

from supabase import Client, create_client

from ..config import Config
from ..errors import StorageError, ValidationError
from ..log import get_logger

log = get_logger("tools.storage")

_SEGMENT_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


@dataclass
class StoredObject:
    public_ref: str
    storage_path: str
    size: int


def build_owner_path(owner_id: str, filename: str, folder: str = "videos") -> str:
    """users/<owner>/<folder>/<filename>, with every segment checked."""
    for label, segment in (("owner id", owner_id), ("folder", folder), ("filename", filename)):
        if not segment or not _SEGMENT_RE.match(segment) or ".." in segment:
            raise ValidationError(f"Invalid {label}: {segment!r}")
    return f"users/{owner_id}/{folder}/{filename}"


class ObjectStore:
    def store(self, path: str, data: bytes, content_type: str) -> StoredObject:
        raise NotImplementedError

    def delete(self, storage_path: str) -> None:
        raise NotImplementedError


class SupabaseObjectStore(ObjectStore):
    """Supabase Storage bucket; public URLs come from the bucket."""

    def __init__(self, client: Optional[Client] = None, bucket: Optional[str] = None):
        self._client = client
        self.bucket = bucket or Config.SUPABASE_STORAGE_BUCKET

    @property
    def client(self) -> Client:
        if self._client is None:
            if not Config.SUPABASE_URL:
                raise StorageError("SUPABASE_URL is not set")
            self._client = create_client(Config.SUPABASE_URL, Config.get_supabase_key())
        return self._client

    def store(self, path: str, data: bytes, content_type: str) -> StoredObject:
        try:
            bucket = self.client.storage.from_(self.bucket)
            bucket.upload(
                path,
                data,
                file_options={
                    "content-type": content_type,
                    "cache-control": "31536000",
                    "upsert": "true",
                },
            )
            public_url = bucket.get_public_url(path)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Upload to {self.bucket}/{path} failed: {e}") from e

        log.info(f"☁️  Uploaded {len(data)} bytes to {self.bucket}/{path}")
        return StoredObject(public_ref=public_url, storage_path=path, size=len(data))

    def delete(self, storage_path: str) -> None:
        try:
            self.client.storage.from_(self.bucket).remove([storage_path])
        except Exception as e:
            log.warning(f"Error deleting {self.bucket}/{storage_path}: {e}")


class LocalObjectStore(ObjectStore):
    """Files under a directory; for development and single-host setups."""

    def __init__(self, root=None):
        self.root = Path(root or Config.LOCAL_OBJECT_STORE_DIR)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if not target.is_relative_to(self.root.resolve()):
            raise ValidationError(f"Storage path escapes the store: {path!r}")
        return target

    def store(self, path: str, data: bytes, content_type: str) -> StoredObject:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Writing {target} failed: {e}") from e

        log.info(f"💾 Stored {len(data)} bytes at {target}")
        return StoredObject(public_ref=target.as_uri(), storage_path=path, size=len(data))

    def delete(self, storage_path: str) -> None:
        try:
            self._resolve(storage_path).unlink(missing_ok=True)
        except (OSError, ValidationError) as e:
            log.warning(f"Error deleting {storage_path}: {e}")


def get_object_store(kind: Optional[str] = None) -> ObjectStore:
    kind = kind or Config.OBJECT_STORE
    if kind == "supabase":
        return SupabaseObjectStore()
    if kind == "local":
        return LocalObjectStore()
    raise ValueError(f"Unknown object store {kind!r}, expected 'supabase' or 'local'")
