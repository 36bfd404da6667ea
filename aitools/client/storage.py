"""Asset storage used by the client before a job is created.

Images go to the public Supabase storage bucket under
``<tool>/<user_id>/<name>``; the returned public URL is what the gateway
later transfers into the provider.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Dict

from supabase import Client

from aitools.errors import UpstreamUnavailable

logger = logging.getLogger(__name__)

_EXTENSIONS = {"image/jpeg": "jpg", "image/png": "png", "image/webp": "webp"}


def object_path(folder: str, user_id: str, slot: str, mime_type: str) -> str:
    ext = _EXTENSIONS.get(mime_type, "png")
    return f"{folder}/{user_id}/{slot}-{uuid.uuid4().hex}.{ext}"


class StorageUploader(ABC):
    @abstractmethod
    async def upload(self, folder: str, user_id: str, slot: str, data: bytes, mime_type: str) -> str:
        """Store ``data`` and return its public URL."""
        ...


class SupabaseStorageUploader(StorageUploader):
    def __init__(self, client: Client, bucket: str = "artes-cloudinary"):
        self._client = client
        self._bucket = bucket

    async def upload(self, folder: str, user_id: str, slot: str, data: bytes, mime_type: str) -> str:
        path = object_path(folder, user_id, slot, mime_type)
        bucket = self._client.storage.from_(self._bucket)
        try:
            bucket.upload(path, data, {"content-type": mime_type, "upsert": "false"})
        except Exception as exc:
            logger.error("Storage upload failed path=%s error=%s", path, exc)
            raise UpstreamUnavailable(f"Storage upload failed: {exc}") from exc
        return bucket.get_public_url(path)


class InMemoryStorageUploader(StorageUploader):
    """Keeps uploads in a dict and hands out URLs on a storage-looking host."""

    def __init__(self, base_url: str = "https://local.supabase.co/storage/v1/object/public/artes-cloudinary"):
        self.base_url = base_url.rstrip("/")
        self.objects: Dict[str, bytes] = {}

    async def upload(self, folder: str, user_id: str, slot: str, data: bytes, mime_type: str) -> str:
        path = object_path(folder, user_id, slot, mime_type)
        self.objects[path] = data
        return f"{self.base_url}/{path}"
