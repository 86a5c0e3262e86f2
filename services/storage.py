import io
import logging
import re

import cloudinary
import cloudinary.uploader
from cloudinary.exceptions import Error as CloudinaryError

from core.config import settings

logger = logging.getLogger(__name__)

# .../raw/upload/v1712345678/<key>
_VERSION_SEGMENT = re.compile(r"^v\d+/")


class StorageError(Exception):
    """Raised when the binary store rejects a put or delete."""


class CloudinaryBinaryStore:
    """Key/value blob store on top of Cloudinary raw uploads.

    Objects are uploaded as ``raw`` resources so the stored bytes are exactly
    what we send (thumbnails are produced before upload) and the public id
    is the full object key, extension included.
    """

    resource_type = "raw"

    def __init__(self):
        # Configure Cloudinary with environment variables
        cloudinary.config(
            cloud_name=settings.CLOUDINARY_CLOUD_NAME,
            api_key=settings.CLOUDINARY_API_KEY,
            api_secret=settings.CLOUDINARY_API_SECRET,
            secure=True,
        )

    def put(self, data: bytes, content_type: str, key: str) -> str:
        try:
            result = cloudinary.uploader.upload(
                io.BytesIO(data),
                public_id=key,
                resource_type=self.resource_type,
                overwrite=False,
                unique_filename=False,
                context={"content_type": content_type},
            )
        except CloudinaryError as e:
            raise StorageError(str(e)) from e
        url = result.get("secure_url")
        if not url:
            raise StorageError(f"Upload of {key} returned no URL")
        logger.debug("Stored %s (%d bytes)", key, len(data))
        return url

    def delete(self, key: str) -> None:
        try:
            result = cloudinary.uploader.destroy(key, resource_type=self.resource_type, invalidate=True)
        except CloudinaryError as e:
            raise StorageError(str(e)) from e
        # Cloudinary returns {"result": "ok"} or {"result": "not found"}; both leave the key absent
        if result.get("result") not in ("ok", "not found"):
            raise StorageError(f"Failed to delete {key}: {result.get('result')}")

    def key_for(self, url: str) -> str:
        _, sep, tail = url.partition("/upload/")
        if not sep:
            raise StorageError(f"Not a Cloudinary delivery URL: {url}")
        return _VERSION_SEGMENT.sub("", tail)
