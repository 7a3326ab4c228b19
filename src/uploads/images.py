"""
Single-shot image uploads.

Handles ``POST /images/upload/``: validates purpose, MIME type and size,
deduplicates by content hash, writes the blob and records where it came from
in ``stored_images``.
"""
import hashlib
import logging
import os
import re
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from config import DEFAULT_MAX_UPLOAD_BYTES
from gateway.errors import InternalError, PayloadTooLarge, UnsupportedMediaType, ValidationFailed
from storage.blobs import LocalBlobStore
from storage.database import Database, to_iso, utcnow

logger = logging.getLogger(__name__)

UPLOAD_PURPOSES = ("image", "profile_image", "icon")

IMAGE_CONTENT_TYPES = {
    "image/webp": "webp",
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/svg+xml": "svg",
}
ICON_CONTENT_TYPES = {
    "image/x-icon": "ico",
    "image/vnd.microsoft.icon": "ico",
}

SOURCE_GHOST_UPLOAD = "GHOST_UPLOAD"
SOURCE_CHUNKED_UPLOAD = "GHOST_CHUNKED_UPLOAD"

_UNSAFE_STEM_CHARS = re.compile(r'[^A-Za-z0-9._-]+')
MAX_STEM_LENGTH = 80


@dataclass(frozen=True)
class UploadedImage:
    url: str
    ref: Optional[str]


def format_megabytes(size: int, digits: int = 2) -> str:
    return f"{size / 1024 / 1024:.{digits}f}MB"


def ensure_within_limit(size: int, max_bytes: int) -> None:
    """Raise PayloadTooLarge stating the measured size when ``size`` exceeds ``max_bytes``."""
    if size > max_bytes:
        raise PayloadTooLarge(
            f"File size {format_megabytes(size)} exceeds the maximum upload size "
            f"of {format_megabytes(max_bytes, 1)}"
        )


def extension_for(content_type: str, purpose: str = "image") -> str:
    """
    Map an allowed MIME type to a file extension.

    Raises:
        UnsupportedMediaType: The type is not allowed for this purpose
    """
    content_type = (content_type or "").split(";")[0].strip().lower()
    if content_type in IMAGE_CONTENT_TYPES:
        return IMAGE_CONTENT_TYPES[content_type]
    if purpose == "icon" and content_type in ICON_CONTENT_TYPES:
        return ICON_CONTENT_TYPES[content_type]
    raise UnsupportedMediaType(f"Unsupported file type: {content_type or 'unknown'}")


def safe_stem(filename: Optional[str]) -> str:
    """File name without extension, reduced to characters blob names allow."""
    stem = os.path.splitext(os.path.basename(filename or ""))[0]
    stem = _UNSAFE_STEM_CHARS.sub("-", stem).strip("-._")
    return stem[:MAX_STEM_LENGTH] or "image"


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()[:16]


class ImageRecords:
    """Provenance rows for stored images, used for deduplication."""

    def __init__(self, database: Database, clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.clock = clock

    def find(self, digest: str, size: int) -> Optional[str]:
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT url FROM stored_images WHERE content_hash = ? AND size = ? "
                "ORDER BY created_at LIMIT 1",
                (digest, size),
            ).fetchone()
        return row["url"] if row else None

    def record(self, digest: str, filename: str, url: str, content_type: str, size: int,
               source: str, original_filename: Optional[str], decision_reason: str) -> None:
        with self.database.connect() as conn:
            conn.execute(
                """
                INSERT INTO stored_images (content_hash, filename, url, content_type, size, source,
                                           original_filename, decision_reason, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (digest, filename, url, content_type, size, source,
                 original_filename, decision_reason, to_iso(self.clock())),
            )


class ImageUploader:
    """Validate and store whole-file image uploads."""

    def __init__(self, blob_store: LocalBlobStore, records: ImageRecords,
                 max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES):
        self.blob_store = blob_store
        self.records = records
        self.max_upload_bytes = max_upload_bytes

    def upload(self, data: bytes, content_type: str, purpose: str = "image",
               ref: Optional[str] = None, filename: Optional[str] = None) -> UploadedImage:
        """
        Store an uploaded image, reusing an identical earlier upload if there is one.

        Args:
            data: Complete file contents
            content_type: MIME type reported by the client
            purpose: Ghost upload purpose (image, profile_image or icon)
            ref: Client reference echoed back in the response
            filename: Original file name, used for the blob name and as fallback ref

        Returns:
            UploadedImage with the public URL and the echoed ref

        Raises:
            ValidationFailed: Unknown purpose or empty file
            UnsupportedMediaType: MIME type not allowed for the purpose
            PayloadTooLarge: File larger than max_upload_bytes
            InternalError: Blob or provenance storage failed
        """
        purpose = purpose or "image"
        if purpose not in UPLOAD_PURPOSES:
            raise ValidationFailed(f"Invalid upload purpose: {purpose}")
        extension = extension_for(content_type, purpose)
        ensure_within_limit(len(data), self.max_upload_bytes)
        if not data:
            raise ValidationFailed("Please select a file to upload.")

        digest = content_hash(data)
        ref = ref or filename
        blob_name = f"ghost-upload_{safe_stem(filename)}_{digest}.{extension}"

        try:
            existing_url = self.records.find(digest, len(data))
            if existing_url:
                logger.info(f"Reusing stored image {existing_url} for identical upload ({digest})")
                return UploadedImage(url=existing_url, ref=ref)

            existing = self.blob_store.head(blob_name)
            if existing is not None and existing.size == len(data):
                logger.info(f"Blob {blob_name} already exists with matching size, reusing")
                return UploadedImage(url=existing.url, ref=ref)

            blob = self.blob_store.put(blob_name, data, content_type)
            self.records.record(
                digest, blob.name, blob.url, content_type, len(data), SOURCE_GHOST_UPLOAD,
                filename, f"Ghost Admin API upload ({purpose})",
            )
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Failed to store upload {blob_name}: {e}", exc_info=True)
            raise InternalError("Failed to upload image") from e

        logger.info(f"Uploaded image {blob.name} ({format_megabytes(len(data))})")
        return UploadedImage(url=blob.url, ref=ref)
