"""
Post persistence for the Admin API posts endpoints.

Posts are stored with the content chosen by the negotiator and its
ContentFormat. Ghost addresses posts by a 24-hex-character id; clients that
only know the uuid form (the id split into 8-4-4-4-4 groups followed by
twelve zeros) are accepted as well.
"""
import html
import logging
import re
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from content.negotiator import ContentFormat, negotiate, render_markdown
from gateway.errors import Conflict, InternalError, ResourceNotFound, ValidationFailed
from storage.database import Database, from_iso, to_iso, utcnow
from tenants.resolver import Blog

logger = logging.getLogger(__name__)

GHOST_POST_ID_PATTERN = re.compile(r'^[a-f0-9]{24}$')
MAX_EXCERPT_LENGTH = 500
STATUS_PUBLISHED = "published"
STATUS_DRAFT = "draft"


@dataclass(frozen=True)
class Post:
    id: int
    blog_id: str
    ghost_id: str
    title: str
    slug: str
    content: str
    content_format: ContentFormat
    status: str
    excerpt: Optional[str] = None
    published_at: Optional[datetime] = None
    feature_image: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def html(self) -> str:
        if self.content_format == ContentFormat.MARKDOWN:
            return render_markdown(self.content)
        return self.content

    @property
    def markdown(self) -> Optional[str]:
        return self.content if self.content_format == ContentFormat.MARKDOWN else None


def generate_slug(name: str) -> str:
    """
    Generate a URL-friendly slug the way Ghost clients expect.

    Example:
        >>> generate_slug("Hello, World!  Again")
        'hello-world-again'
    """
    slug = (name or "").lower()
    slug = re.sub(r'[^a-z0-9\s-]', '', slug)
    slug = re.sub(r'\s+', '-', slug)
    slug = re.sub(r'-+', '-', slug)
    return slug.strip("-")


def parse_published_at(value: Optional[str]) -> Optional[datetime]:
    """Parse a client-supplied ``published_at``; naive times are taken as UTC.

    Raises:
        ValidationFailed: The value is not an ISO-8601 date-time
    """
    if not value:
        return None
    try:
        parsed = from_iso(value)
    except ValueError as e:
        raise ValidationFailed(f"Invalid published_at: {value!r} is not an ISO-8601 date-time") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_post_id(post_id: str) -> str:
    """Accept a Ghost post id in either its 24-hex or its uuid form."""
    if "-" in post_id:
        return post_id.replace("-", "")[:24]
    return post_id


def strip_html(html_content: str) -> str:
    text = re.sub(r'<[^>]+>', ' ', html_content or "")
    text = html.unescape(text)
    return re.sub(r'\s+', ' ', text).strip()


def generate_excerpt(html_content: str, limit: int = MAX_EXCERPT_LENGTH) -> str:
    return strip_html(html_content)[:limit]


def _row_to_post(row: sqlite3.Row) -> Post:
    return Post(
        id=row["id"],
        blog_id=row["blog_id"],
        ghost_id=row["ghost_id"],
        title=row["title"],
        slug=row["slug"],
        content=row["content"],
        content_format=ContentFormat(row["content_format"]),
        status=row["status"],
        excerpt=row["excerpt"],
        published_at=from_iso(row["published_at"]),
        feature_image=row["feature_image"],
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )


class PostRepository:
    """Create, read and update posts of a blog."""

    def __init__(self, database: Database, clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.clock = clock

    def get(self, blog_id: str, post_id: str) -> Post:
        """
        Raises:
            ResourceNotFound: No post with this id exists on the blog
        """
        ghost_id = normalize_post_id(post_id)
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT * FROM posts WHERE blog_id = ? AND ghost_id = ?",
                (blog_id, ghost_id),
            ).fetchone()
        if row is None:
            raise ResourceNotFound("Post not found")
        return _row_to_post(row)

    def list(self, blog_id: str, page: int = 1, limit: int = 15,
             status: Optional[str] = None) -> Tuple[List[Post], int]:
        """Return one page of posts, newest first, and the total number of matching posts."""
        where = "WHERE blog_id = ?"
        params: List[Any] = [blog_id]
        if status:
            where += " AND status = ?"
            params.append(status)
        with self.database.connect() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM posts {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM posts {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                params + [limit, (page - 1) * limit],
            ).fetchall()
        return [_row_to_post(row) for row in rows], total

    def ensure_unique_slug(self, base_slug: str, blog_id: str, exclude_ghost_id: Optional[str] = None) -> str:
        base_slug = base_slug or "untitled"
        slug = base_slug
        counter = 1
        with self.database.connect() as conn:
            while True:
                row = conn.execute(
                    "SELECT ghost_id FROM posts WHERE blog_id = ? AND slug = ?",
                    (blog_id, slug),
                ).fetchone()
                if row is None or row["ghost_id"] == exclude_ghost_id:
                    return slug
                slug = f"{base_slug}-{counter}"
                counter += 1

    def create(self, blog: Blog, payload: Dict[str, Any], source: Optional[str] = None) -> Post:
        """
        Create a post from a Ghost post object.

        Args:
            blog: Blog the post belongs to
            payload: One entry of the request's ``posts`` array (already schema-validated)
            source: ``source`` query parameter, passed to the negotiator

        Raises:
            ValidationFailed: ``published_at`` is not an ISO-8601 date-time
            Conflict: A post with the supplied Ghost id already exists
            InternalError: The post could not be written
        """
        requested_published_at = parse_published_at(payload.get("published_at"))
        negotiated = negotiate(payload, source)
        now = self.clock()
        ghost_id = payload.get("id") or secrets.token_hex(12)
        status = STATUS_PUBLISHED if payload.get("status") == STATUS_PUBLISHED else STATUS_DRAFT
        published_at = None
        if status == STATUS_PUBLISHED:
            published_at = requested_published_at or now

        slug = self.ensure_unique_slug(payload.get("slug") or generate_slug(payload["title"]), blog.id)
        excerpt = self._excerpt(payload, negotiated.content, negotiated.format)

        try:
            with self.database.connect() as conn:
                conn.execute(
                    """
                    INSERT INTO posts (blog_id, ghost_id, title, slug, content, content_format, excerpt,
                                       status, published_at, feature_image, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (blog.id, ghost_id, payload["title"], slug, negotiated.content, negotiated.format.value,
                     excerpt, status, to_iso(published_at), payload.get("feature_image"),
                     to_iso(now), to_iso(now)),
                )
        except sqlite3.IntegrityError as e:
            logger.warning(f"Post {ghost_id} already exists on blog {blog.id}")
            raise Conflict(f"Post with ID {ghost_id} already exists") from e
        except sqlite3.Error as e:
            logger.error(f"Failed to create post on blog {blog.id}: {e}", exc_info=True)
            raise InternalError() from e

        logger.info(f"Created {status} post {ghost_id} ({negotiated.format.value}) on blog {blog.id}")
        return self.get(blog.id, ghost_id)

    def update(self, blog: Blog, post_id: str, payload: Dict[str, Any], source: Optional[str] = None) -> Post:
        """
        Update title, content, status and feature image of an existing post.

        Content negotiation is re-applied; when the payload carries no content
        field the stored content is kept. Unpublishing keeps the original
        ``published_at``.
        """
        existing = self.get(blog.id, post_id)
        now = self.clock()

        requested_published_at = parse_published_at(payload.get("published_at"))
        negotiated = negotiate(payload, source)
        content, content_format = negotiated.content, negotiated.format
        if not content:
            content, content_format = existing.content, existing.content_format

        title = payload.get("title") or existing.title
        slug = existing.slug
        if payload.get("slug") and payload["slug"] != existing.slug:
            slug = self.ensure_unique_slug(payload["slug"], blog.id, existing.ghost_id)
        elif title != existing.title:
            slug = self.ensure_unique_slug(generate_slug(title), blog.id, existing.ghost_id)

        status = payload.get("status") or existing.status
        status = STATUS_PUBLISHED if status == STATUS_PUBLISHED else STATUS_DRAFT
        published_at = existing.published_at
        if status == STATUS_PUBLISHED:
            published_at = requested_published_at or existing.published_at or now

        excerpt = self._excerpt(payload, content, content_format)
        feature_image = payload.get("feature_image", existing.feature_image)

        try:
            with self.database.connect() as conn:
                conn.execute(
                    """
                    UPDATE posts SET title = ?, slug = ?, content = ?, content_format = ?, excerpt = ?,
                                     status = ?, published_at = ?, feature_image = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (title, slug, content, content_format.value, excerpt, status,
                     to_iso(published_at), feature_image, to_iso(now), existing.id),
                )
        except sqlite3.Error as e:
            logger.error(f"Failed to update post {existing.ghost_id}: {e}", exc_info=True)
            raise InternalError() from e

        if existing.status != status:
            logger.info(f"Post {existing.ghost_id} changed from {existing.status} to {status}")
        logger.info(f"Updated post {existing.ghost_id} on blog {blog.id}")
        return self.get(blog.id, existing.ghost_id)

    @staticmethod
    def _excerpt(payload: Dict[str, Any], content: str, content_format: ContentFormat) -> str:
        excerpt = payload.get("custom_excerpt") or payload.get("excerpt")
        if excerpt:
            return excerpt[:MAX_EXCERPT_LENGTH]
        if content_format == ContentFormat.MARKDOWN:
            content = render_markdown(content)
        elif content.lstrip().startswith("{"):
            # Lexical or Mobiledoc JSON, nothing readable to excerpt
            return ""
        return generate_excerpt(content)
