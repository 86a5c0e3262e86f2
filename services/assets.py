"""Asset lifecycle: uploaded image -> stored original + thumbnail pair, and back.

Storing is all-or-nothing for the caller: any resize or upload failure raises
``AssetProcessingFailed`` after removing whatever this call already stored.
Deleting is best-effort: failures are logged and collected in a
``DeletionReport`` so the owning record can still be removed.
"""
import io
import logging
import re
import secrets
import time
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from PIL import Image, ImageOps, UnidentifiedImageError

from core.config import settings
from core.errors import AssetProcessingFailed, ValidationFailed
from services.storage import CloudinaryBinaryStore, StorageError

logger = logging.getLogger(__name__)


class BinaryStore(Protocol):
    def put(self, data: bytes, content_type: str, key: str) -> str: ...

    def delete(self, key: str) -> None: ...

    def key_for(self, url: str) -> str: ...


@dataclass(frozen=True)
class ResizePreset:
    name: str
    width: int
    height: int
    fit: str  # "inside" (shrink only), "contain" (pad), "cover" (crop)


CATALOG_IMAGE = ResizePreset("catalog", 400, 400, "inside")
STORE_LOGO = ResizePreset("logo", 200, 200, "contain")
STORE_BANNER = ResizePreset("banner", 1200, 400, "cover")


@dataclass(frozen=True)
class Upload:
    filename: str
    content_type: str
    data: bytes


@dataclass(frozen=True)
class AssetPair:
    original: str
    thumbnail: str

    def as_dict(self) -> dict:
        return {"original": self.original, "thumbnail": self.thumbnail}


@dataclass
class DeletionReport:
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: "DeletionReport") -> "DeletionReport":
        self.succeeded.extend(other.succeeded)
        self.failed.extend(other.failed)
        return self


_WHITESPACE = re.compile(r"\s+")

# Formats Pillow can write back without surprises
_OUTPUT_FORMATS = {"JPEG", "PNG", "WEBP", "GIF"}


def validate_upload(upload: Upload) -> None:
    if not upload.filename:
        raise ValidationFailed("Uploaded file must have a filename")
    if not upload.content_type or not upload.content_type.startswith("image/"):
        raise ValidationFailed(f"File {upload.filename} must be an image")
    if not upload.data:
        raise ValidationFailed(f"File {upload.filename} is empty")
    if len(upload.data) > settings.ASSET_MAX_BYTES:
        raise ValidationFailed(
            f"File {upload.filename} is larger than {settings.ASSET_MAX_BYTES // (1024 * 1024)}MB"
        )


def make_thumbnail(data: bytes, preset: ResizePreset) -> bytes:
    with Image.open(io.BytesIO(data)) as source:
        fmt = source.format if source.format in _OUTPUT_FORMATS else "PNG"
        img = ImageOps.exif_transpose(source)
        size = (preset.width, preset.height)
        if preset.fit == "inside":
            img = img.copy()
            img.thumbnail(size, Image.LANCZOS)  # never enlarges
        elif preset.fit == "contain":
            if img.mode not in ("RGB", "RGBA"):
                img = img.convert("RGBA")
            fill = (255, 255, 255, 0) if img.mode == "RGBA" else (255, 255, 255)
            img = ImageOps.pad(img, size, method=Image.LANCZOS, color=fill)
        elif preset.fit == "cover":
            img = ImageOps.fit(img, size, method=Image.LANCZOS)
        else:
            raise ValueError(f"Unknown fit mode {preset.fit}")

        if fmt == "JPEG" and img.mode != "RGB":
            img = img.convert("RGB")
        out = io.BytesIO()
        img.save(out, format=fmt)
        return out.getvalue()


def object_keys(filename: str, path_prefix: str) -> tuple[str, str]:
    name = _WHITESPACE.sub("", filename)
    stamp = f"{int(time.time() * 1000)}_{secrets.token_hex(4)}"
    return f"{path_prefix}/{stamp}_{name}", f"{path_prefix}/thumbnails/{stamp}_thumb_{name}"


class AssetLifecycleManager:
    def __init__(self, blobs: BinaryStore):
        self.blobs = blobs

    def store(self, upload: Upload, path_prefix: str, preset: ResizePreset = CATALOG_IMAGE) -> AssetPair:
        validate_upload(upload)
        try:
            thumbnail = make_thumbnail(upload.data, preset)
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            logger.error("Could not resize %s with preset %s: %s", upload.filename, preset.name, e)
            raise AssetProcessingFailed("Error processing image", error=str(e))

        original_key, thumbnail_key = object_keys(upload.filename, path_prefix)
        try:
            original_url = self.blobs.put(upload.data, upload.content_type, original_key)
        except StorageError as e:
            logger.error("Upload of %s failed: %s", original_key, e)
            raise AssetProcessingFailed("Error uploading image", error=str(e))

        try:
            thumbnail_url = self.blobs.put(thumbnail, upload.content_type, thumbnail_key)
        except StorageError as e:
            logger.error("Upload of %s failed: %s", thumbnail_key, e)
            self._delete_key(original_key)
            raise AssetProcessingFailed("Error uploading image thumbnail", error=str(e))

        return AssetPair(original=original_url, thumbnail=thumbnail_url)

    def store_many(
        self, uploads: Iterable[Upload], path_prefix: str, preset: ResizePreset = CATALOG_IMAGE
    ) -> list[AssetPair]:
        """Store uploads one after another; on failure undo the ones already stored."""
        stored: list[AssetPair] = []
        try:
            for upload in uploads:
                stored.append(self.store(upload, path_prefix, preset))
        except Exception:
            self.delete_many(stored)
            raise
        return stored

    def delete(self, pair: Optional[AssetPair]) -> DeletionReport:
        report = DeletionReport()
        if pair is None:
            return report
        for url in (pair.original, pair.thumbnail):
            if not url:
                continue
            try:
                key = self.blobs.key_for(url)
            except StorageError as e:
                logger.warning("Cannot derive object key from %s: %s", url, e)
                report.failed.append(url)
                continue
            if self._delete_key(key):
                report.succeeded.append(url)
            else:
                report.failed.append(url)
        return report

    def delete_many(self, pairs: Iterable[Optional[AssetPair]]) -> DeletionReport:
        report = DeletionReport()
        for pair in pairs:
            report.merge(self.delete(pair))
        return report

    def _delete_key(self, key: str) -> bool:
        try:
            self.blobs.delete(key)
            return True
        except StorageError as e:
            logger.warning("Could not delete object %s: %s", key, e)
            return False


def pair_or_none(original: Optional[str], thumbnail: Optional[str]) -> Optional[AssetPair]:
    if not original and not thumbnail:
        return None
    return AssetPair(original=original or "", thumbnail=thumbnail or "")


# Global instance
asset_manager = AssetLifecycleManager(CloudinaryBinaryStore())


def get_asset_manager() -> AssetLifecycleManager:
    return asset_manager
