"""SQLite-backed persistence shared by the gateway components."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        display_name TEXT,
        slug TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS blogs (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL REFERENCES users(id),
        title TEXT NOT NULL,
        description TEXT,
        slug TEXT NOT NULL,
        user_slug TEXT,
        subdomain TEXT UNIQUE,
        custom_domain TEXT UNIQUE,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(user_slug, slug)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS admin_api_keys (
        key_id TEXT PRIMARY KEY,
        secret TEXT NOT NULL,
        blog_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        description TEXT,
        created_at TEXT NOT NULL,
        last_used_at TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_admin_api_keys_blog ON admin_api_keys(blog_id)",
    """
    CREATE TABLE IF NOT EXISTS ghost_tokens (
        token TEXT PRIMARY KEY,
        blog_id TEXT NOT NULL,
        user_id TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_ghost_tokens_blog ON ghost_tokens(blog_id)",
    """
    CREATE TABLE IF NOT EXISTS stored_images (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        content_hash TEXT NOT NULL,
        filename TEXT NOT NULL,
        url TEXT NOT NULL,
        content_type TEXT NOT NULL,
        size INTEGER NOT NULL,
        source TEXT NOT NULL,
        original_filename TEXT,
        decision_reason TEXT,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_stored_images_hash ON stored_images(content_hash, size)",
    """
    CREATE TABLE IF NOT EXISTS upload_sessions (
        upload_id TEXT PRIMARY KEY,
        filename TEXT NOT NULL,
        content_type TEXT NOT NULL,
        total_size INTEGER NOT NULL,
        total_chunks INTEGER NOT NULL,
        claimed INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_upload_sessions_updated_at ON upload_sessions(updated_at)",
    """
    CREATE TABLE IF NOT EXISTS upload_chunks (
        upload_id TEXT NOT NULL,
        chunk_index INTEGER NOT NULL,
        data BLOB NOT NULL,
        PRIMARY KEY (upload_id, chunk_index)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS posts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        blog_id TEXT NOT NULL,
        ghost_id TEXT NOT NULL,
        title TEXT NOT NULL,
        slug TEXT NOT NULL,
        content TEXT NOT NULL,
        content_format TEXT NOT NULL,
        excerpt TEXT,
        status TEXT NOT NULL,
        published_at TEXT,
        feature_image TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(blog_id, ghost_id),
        UNIQUE(blog_id, slug)
    )
    """,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize an aware datetime as an ISO-8601 UTC string (Ghost uses millisecond precision)."""
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class Database:
    """Thin wrapper around a SQLite database file.

    Each operation opens its own short-lived connection so the object can be
    shared between gunicorn worker threads; SQLite serializes the writes.
    """

    def __init__(self, db_path: str, timeout: float = 30.0):
        self.db_path = db_path
        self.timeout = timeout
        directory = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(directory, mode=0o755, exist_ok=True)
        self.ensure_schema()

    @contextmanager
    def connect(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """Yield a connection inside a transaction; commit on success, roll back on error.

        Args:
            immediate: Take the write lock up front (BEGIN IMMEDIATE). Needed by
                read-then-write transactions that race other writers, which
                would otherwise fail with "database is locked" on lock upgrade.
        """
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                if immediate:
                    conn.execute("BEGIN IMMEDIATE")
                yield conn
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self.connect() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
        logger.debug(f"Database schema ready at {self.db_path}")
