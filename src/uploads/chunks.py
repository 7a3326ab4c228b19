"""
Chunked image uploads.

Clients that cannot send a large file in one request split it into numbered
chunks and POST each one to ``/images/upload-chunk/`` with the same
``uploadId``. Chunks may arrive in any order and may be re-sent; each index
is stored once (last write wins). When the number of distinct indices
received equals ``totalChunks`` exactly one request claims the session,
concatenates the chunks in index order and stores the result as a blob.

Sessions live in a ChunkSessionStore. The SQLite store is the default: any
worker process that shares the database can receive any chunk of an upload.
Sessions idle for longer than the configured TTL are swept on every chunk.
"""
import logging
import re
import secrets
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Union

from config import DEFAULT_MAX_UPLOAD_BYTES
from gateway.errors import InternalError, ValidationFailed
from storage.blobs import LocalBlobStore
from storage.database import Database, to_iso, utcnow
from uploads.images import (
    SOURCE_CHUNKED_UPLOAD,
    ImageRecords,
    UploadedImage,
    content_hash,
    ensure_within_limit,
    extension_for,
    format_megabytes,
    safe_stem,
)

logger = logging.getLogger(__name__)

UPLOAD_ID_PATTERN = re.compile(r'^[A-Za-z0-9_.-]{1,128}$')

DEFAULT_MAX_CHUNKS = 1000
DEFAULT_SESSION_TTL_SECONDS = 3600


@dataclass(frozen=True)
class ChunkStatus:
    """Progress of an upload that still has chunks outstanding."""

    upload_id: str
    chunk_index: int
    total_chunks: int
    uploaded_chunks: int
    complete: bool = False


@dataclass
class UploadSession:
    """A claimed upload, with its chunks in index order."""

    upload_id: str
    filename: str
    content_type: str
    total_size: int
    total_chunks: int
    chunks: List[bytes] = field(default_factory=list)


class ChunkSessionStore(ABC):
    """Storage for in-flight chunked uploads."""

    @abstractmethod
    def save_chunk(self, upload_id: str, chunk_index: int, data: bytes, filename: str,
                   content_type: str, total_size: int, total_chunks: int, now: datetime) -> int:
        """Store one chunk, creating the session if needed.

        Returns:
            Number of distinct chunk indices now held for the upload

        Raises:
            ValidationFailed: The session exists with a different total_chunks
        """

    @abstractmethod
    def claim_if_complete(self, upload_id: str) -> Optional[UploadSession]:
        """Atomically claim a complete, unclaimed session. Only one caller ever wins."""

    @abstractmethod
    def release(self, upload_id: str) -> None:
        """Delete a session and its chunks."""

    @abstractmethod
    def unclaim(self, upload_id: str) -> None:
        """Return a claimed session to the open state after a failed assembly."""

    @abstractmethod
    def sweep(self, cutoff: datetime) -> int:
        """Delete sessions not touched since ``cutoff``. Returns the number removed."""


def _mismatch(upload_id: str, existing: int, received: int) -> ValidationFailed:
    return ValidationFailed(
        f"totalChunks {received} does not match upload {upload_id} ({existing} chunks)"
    )


class SQLiteChunkSessionStore(ChunkSessionStore):
    """Chunk sessions persisted in the gateway database."""

    def __init__(self, database: Database):
        self.database = database

    def save_chunk(self, upload_id, chunk_index, data, filename, content_type,
                   total_size, total_chunks, now):
        stamp = to_iso(now)
        with self.database.connect(immediate=True) as conn:
            row = conn.execute(
                "SELECT total_chunks FROM upload_sessions WHERE upload_id = ?",
                (upload_id,),
            ).fetchone()
            if row is not None and row["total_chunks"] != total_chunks:
                raise _mismatch(upload_id, row["total_chunks"], total_chunks)

            conn.execute(
                """
                INSERT INTO upload_sessions (upload_id, filename, content_type, total_size,
                                             total_chunks, claimed, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?)
                ON CONFLICT(upload_id) DO UPDATE SET updated_at = excluded.updated_at
                """,
                (upload_id, filename, content_type, total_size, total_chunks, stamp, stamp),
            )
            conn.execute(
                "INSERT OR REPLACE INTO upload_chunks (upload_id, chunk_index, data) VALUES (?, ?, ?)",
                (upload_id, chunk_index, sqlite3.Binary(data)),
            )
            return conn.execute(
                "SELECT COUNT(*) FROM upload_chunks WHERE upload_id = ?",
                (upload_id,),
            ).fetchone()[0]

    def claim_if_complete(self, upload_id):
        with self.database.connect(immediate=True) as conn:
            claimed = conn.execute(
                """
                UPDATE upload_sessions SET claimed = 1
                WHERE upload_id = ? AND claimed = 0
                  AND total_chunks = (SELECT COUNT(*) FROM upload_chunks WHERE upload_id = ?)
                """,
                (upload_id, upload_id),
            ).rowcount
            if claimed != 1:
                return None

            row = conn.execute(
                "SELECT filename, content_type, total_size, total_chunks FROM upload_sessions "
                "WHERE upload_id = ?",
                (upload_id,),
            ).fetchone()
            chunks = [
                bytes(chunk["data"]) for chunk in conn.execute(
                    "SELECT data FROM upload_chunks WHERE upload_id = ? ORDER BY chunk_index",
                    (upload_id,),
                )
            ]
        return UploadSession(
            upload_id=upload_id,
            filename=row["filename"],
            content_type=row["content_type"],
            total_size=row["total_size"],
            total_chunks=row["total_chunks"],
            chunks=chunks,
        )

    def release(self, upload_id):
        with self.database.connect() as conn:
            conn.execute("DELETE FROM upload_chunks WHERE upload_id = ?", (upload_id,))
            conn.execute("DELETE FROM upload_sessions WHERE upload_id = ?", (upload_id,))

    def unclaim(self, upload_id):
        with self.database.connect() as conn:
            conn.execute("UPDATE upload_sessions SET claimed = 0 WHERE upload_id = ?", (upload_id,))

    def sweep(self, cutoff):
        stamp = to_iso(cutoff)
        with self.database.connect(immediate=True) as conn:
            conn.execute(
                "DELETE FROM upload_chunks WHERE upload_id IN "
                "(SELECT upload_id FROM upload_sessions WHERE updated_at < ?)",
                (stamp,),
            )
            return conn.execute(
                "DELETE FROM upload_sessions WHERE updated_at < ?",
                (stamp,),
            ).rowcount


@dataclass
class _MemorySession:
    filename: str
    content_type: str
    total_size: int
    total_chunks: int
    updated_at: datetime
    chunks: Dict[int, bytes] = field(default_factory=dict)
    claimed: bool = False


class InMemoryChunkSessionStore(ChunkSessionStore):
    """Process-local chunk sessions. Only correct when one process receives every chunk."""

    def __init__(self):
        self._sessions: Dict[str, _MemorySession] = {}
        self._lock = threading.Lock()

    def save_chunk(self, upload_id, chunk_index, data, filename, content_type,
                   total_size, total_chunks, now):
        with self._lock:
            session = self._sessions.get(upload_id)
            if session is None:
                session = _MemorySession(filename, content_type, total_size, total_chunks, now)
                self._sessions[upload_id] = session
            elif session.total_chunks != total_chunks:
                raise _mismatch(upload_id, session.total_chunks, total_chunks)
            session.chunks[chunk_index] = data
            session.updated_at = now
            return len(session.chunks)

    def claim_if_complete(self, upload_id):
        with self._lock:
            session = self._sessions.get(upload_id)
            if session is None or session.claimed or len(session.chunks) != session.total_chunks:
                return None
            session.claimed = True
            return UploadSession(
                upload_id=upload_id,
                filename=session.filename,
                content_type=session.content_type,
                total_size=session.total_size,
                total_chunks=session.total_chunks,
                chunks=[session.chunks[index] for index in sorted(session.chunks)],
            )

    def release(self, upload_id):
        with self._lock:
            self._sessions.pop(upload_id, None)

    def unclaim(self, upload_id):
        with self._lock:
            session = self._sessions.get(upload_id)
            if session is not None:
                session.claimed = False

    def sweep(self, cutoff):
        with self._lock:
            stale = [upload_id for upload_id, s in self._sessions.items() if s.updated_at < cutoff]
            for upload_id in stale:
                del self._sessions[upload_id]
            return len(stale)


def create_chunk_store(kind: str, database: Optional[Database] = None) -> ChunkSessionStore:
    """Build the chunk session store named by ``uploads.chunk_store`` ("sqlite" or "memory")."""
    if kind == "memory":
        return InMemoryChunkSessionStore()
    if kind == "sqlite":
        if database is None:
            raise ValueError("The sqlite chunk store needs a database")
        return SQLiteChunkSessionStore(database)
    raise ValueError(f"Unknown chunk store: {kind}")


class ChunkAssembler:
    """Receive chunks and assemble completed uploads into blobs."""

    def __init__(self, store: ChunkSessionStore, blob_store: LocalBlobStore, records: ImageRecords,
                 max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES,
                 max_chunks: int = DEFAULT_MAX_CHUNKS,
                 session_ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
                 clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.blob_store = blob_store
        self.records = records
        self.max_upload_bytes = max_upload_bytes
        self.max_chunks = max_chunks
        self.session_ttl = timedelta(seconds=session_ttl_seconds)
        self.clock = clock

    def receive_chunk(self, upload_id: str, chunk_index: int, total_chunks: int, data: bytes,
                      filename: str, content_type: str,
                      total_size: int) -> Union[ChunkStatus, UploadedImage]:
        """
        Store one chunk and assemble the upload if it was the last one missing.

        Args:
            upload_id: Client-chosen identifier shared by all chunks of a file
            chunk_index: Zero-based position of this chunk
            total_chunks: Number of chunks the file was split into
            data: Chunk bytes
            filename: Original file name
            content_type: MIME type of the whole file
            total_size: Declared size of the whole file in bytes

        Returns:
            ChunkStatus while chunks are outstanding, UploadedImage once assembled

        Raises:
            ValidationFailed: Missing or out-of-range parameters
            UnsupportedMediaType: content_type is not an allowed image type
            PayloadTooLarge: The chunk is larger than max_upload_bytes
            InternalError: Session or blob storage failed
        """
        self._validate(upload_id, chunk_index, total_chunks, data)
        extension_for(content_type)
        ensure_within_limit(len(data), self.max_upload_bytes)

        now = self.clock()
        try:
            swept = self.store.sweep(now - self.session_ttl)
            if swept:
                logger.info(f"Swept {swept} abandoned chunked upload session(s)")

            received = self.store.save_chunk(
                upload_id, chunk_index, data, filename or "upload", content_type,
                total_size or 0, total_chunks, now,
            )
            logger.info(f"Stored chunk {chunk_index + 1}/{total_chunks} for upload {upload_id} "
                        f"({len(data)} bytes, {received} received)")

            session = self.store.claim_if_complete(upload_id)
        except sqlite3.Error as e:
            logger.error(f"Failed to store chunk {chunk_index} of upload {upload_id}: {e}", exc_info=True)
            raise InternalError("Failed to process chunk") from e

        if session is None:
            return ChunkStatus(
                upload_id=upload_id,
                chunk_index=chunk_index,
                total_chunks=total_chunks,
                uploaded_chunks=received,
            )

        return self._assemble(session)

    def _validate(self, upload_id, chunk_index, total_chunks, data) -> None:
        if not upload_id or data is None or chunk_index is None or total_chunks is None:
            raise ValidationFailed("Missing required chunk parameters")
        if not UPLOAD_ID_PATTERN.match(upload_id):
            raise ValidationFailed("Invalid uploadId")
        if not 0 < total_chunks <= self.max_chunks:
            raise ValidationFailed(f"totalChunks must be between 1 and {self.max_chunks}")
        if not 0 <= chunk_index < total_chunks:
            raise ValidationFailed(f"chunkIndex must be between 0 and {total_chunks - 1}")

    def _assemble(self, session: UploadSession) -> UploadedImage:
        logger.info(f"All {session.total_chunks} chunks received for upload {session.upload_id}, assembling")
        data = b"".join(session.chunks)
        if session.total_size and session.total_size != len(data):
            logger.warning(f"Upload {session.upload_id} declared {session.total_size} bytes "
                           f"but assembled {len(data)}")

        digest = content_hash(data)
        timestamp = int(self.clock().timestamp() * 1000)
        blob_name = (
            f"ghost-upload-chunked_{safe_stem(session.filename)}_{digest[:8]}_"
            f"{timestamp}_{secrets.token_hex(3)}.{extension_for(session.content_type)}"
        )

        try:
            blob = self.blob_store.put(blob_name, data, session.content_type)
            self.records.record(
                digest, blob.name, blob.url, session.content_type, len(data),
                SOURCE_CHUNKED_UPLOAD, session.filename,
                f"Chunked upload of large file ({format_megabytes(len(data))})",
            )
            self.store.release(session.upload_id)
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Failed to assemble upload {session.upload_id}: {e}", exc_info=True)
            self.store.unclaim(session.upload_id)
            raise InternalError("Failed to process chunk") from e

        logger.info(f"Chunked upload {session.upload_id} stored as {blob.name}")
        return UploadedImage(url=blob.url, ref=session.filename)
