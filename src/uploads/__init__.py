"""Uploads Package - single-shot and chunked Ghost image uploads."""
from .images import ImageRecords, ImageUploader, UploadedImage
from .chunks import (
    ChunkAssembler,
    ChunkStatus,
    InMemoryChunkSessionStore,
    SQLiteChunkSessionStore,
    create_chunk_store,
)

__all__ = [
    "ChunkAssembler",
    "ChunkStatus",
    "ImageRecords",
    "ImageUploader",
    "InMemoryChunkSessionStore",
    "SQLiteChunkSessionStore",
    "UploadedImage",
    "create_chunk_store",
]
