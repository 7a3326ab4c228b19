"""
Filesystem blob storage for uploaded images.

Blobs are written under a single directory and exposed at
``<public_base_url>/content/images/<name>``, the path Ghost itself uses for
uploaded images. The gateway serves that path directly (see ghost.ghost).
"""
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Blob names are generated by the uploaders; anything else is refused.
BLOB_NAME_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9._-]{0,254}$')

PUBLIC_PATH_PREFIX = "/content/images"


@dataclass(frozen=True)
class BlobInfo:
    name: str
    url: str
    size: int


def is_safe_path(base_path: str, file_path: str) -> bool:
    """
    Verify that a file path is safely contained within a base directory.

    Args:
        base_path: The base directory that should contain the file
        file_path: The full file path to validate

    Returns:
        True if the path is safe, False if it escapes the base directory
    """
    try:
        base = Path(base_path).resolve()
        target = Path(file_path).resolve()
        return target.is_relative_to(base)
    except (ValueError, RuntimeError):
        return False


class LocalBlobStore:
    """Blob store backed by a local (or mounted) directory."""

    def __init__(self, directory: str, public_base_url: str):
        self.directory = directory
        self.public_base_url = public_base_url.rstrip("/")
        os.makedirs(self.directory, mode=0o755, exist_ok=True)

    def _path(self, name: str) -> str:
        if not BLOB_NAME_PATTERN.match(name or ""):
            raise ValueError(f"Invalid blob name: {name[:50]!r}")
        path = os.path.join(self.directory, name)
        if not is_safe_path(self.directory, path):
            raise ValueError(f"Blob name escapes storage directory: {name[:50]!r}")
        return path

    def url_for(self, name: str) -> str:
        return f"{self.public_base_url}{PUBLIC_PATH_PREFIX}/{name}"

    def head(self, name: str) -> Optional[BlobInfo]:
        """Return metadata for an existing blob, or None when it does not exist."""
        path = self._path(name)
        try:
            size = os.path.getsize(path)
        except FileNotFoundError:
            return None
        return BlobInfo(name=name, url=self.url_for(name), size=size)

    def put(self, name: str, data: bytes, content_type: str) -> BlobInfo:
        """Write a blob atomically (temp file + rename) and return its public info.

        Raises:
            OSError: If the blob cannot be written
        """
        path = self._path(name)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.info(f"Stored blob {name} ({len(data)} bytes, {content_type})")
        return BlobInfo(name=name, url=self.url_for(name), size=len(data))

    def path_for(self, name: str) -> Optional[str]:
        """Return the on-disk path of a blob for serving, or None if the name is invalid."""
        try:
            return self._path(name)
        except ValueError:
            return None
