"""
Publishing tools: object storage backends and the publish/deliver step.
"""
from .publish import DeliveryReport, deliver_locally, publish_and_deliver, video_filename
from .storage import (
    LocalObjectStore,
    ObjectStore,
    StoredObject,
    SupabaseObjectStore,
    build_owner_path,
    get_object_store,
)

__all__ = [
    "DeliveryReport",
    "deliver_locally",
    "publish_and_deliver",
    "video_filename",
    "LocalObjectStore",
    "ObjectStore",
    "StoredObject",
    "SupabaseObjectStore",
    "build_owner_path",
    "get_object_store",
]
