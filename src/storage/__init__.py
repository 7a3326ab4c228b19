"""Storage Package - SQLite persistence and blob storage.

Exports:
    Database: SQLite wrapper that bootstraps the gateway schema
    LocalBlobStore: Filesystem blob store with public URLs
"""
from .database import Database, utcnow, to_iso, from_iso
from .blobs import BlobInfo, LocalBlobStore

__all__ = ["Database", "utcnow", "to_iso", "from_iso", "BlobInfo", "LocalBlobStore"]
