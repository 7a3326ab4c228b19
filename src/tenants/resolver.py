"""
Tenant resolution.

Maps the identifiers an upstream router extracted from the request host
(custom domain, subdomain, or path slug) to exactly one blog. The lookup is
exact and case-sensitive against the unique columns of the blogs table;
callers must strip port numbers before calling.
"""
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from gateway.errors import BlogNotFound, InternalError
from storage.database import Database, from_iso, to_iso, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class User:
    id: str
    email: str
    display_name: Optional[str] = None
    slug: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Blog:
    id: str
    user_id: str
    title: str
    slug: str
    description: Optional[str] = None
    user_slug: Optional[str] = None
    subdomain: Optional[str] = None
    custom_domain: Optional[str] = None

    def url(self, base_domain: str) -> str:
        """Public URL of the blog, following its most specific addressing mode."""
        if self.custom_domain:
            return f"https://{self.custom_domain}"
        if self.subdomain:
            return f"https://{self.subdomain}.{base_domain}"
        return f"https://{base_domain}/{self.user_slug or 'blog'}/{self.slug}"


def _row_to_blog(row: sqlite3.Row) -> Blog:
    return Blog(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        slug=row["slug"],
        description=row["description"],
        user_slug=row["user_slug"],
        subdomain=row["subdomain"],
        custom_domain=row["custom_domain"],
    )


class BlogRepository:
    """Read access to blogs and users.

    Blogs and users are written by the dashboard's CRUD layer; add_user and
    add_blog exist for seeding and tests.
    """

    def __init__(self, database: Database):
        self.database = database

    def add_user(self, email: str, display_name: Optional[str] = None,
                 slug: Optional[str] = None, user_id: Optional[str] = None) -> User:
        now = to_iso(utcnow())
        user = User(id=user_id or uuid.uuid4().hex, email=email, display_name=display_name, slug=slug)
        with self.database.connect() as conn:
            conn.execute(
                "INSERT INTO users (id, email, display_name, slug, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (user.id, user.email, user.display_name, user.slug, now, now),
            )
        return user

    def add_blog(self, user: User, title: str, slug: str, description: Optional[str] = None,
                 subdomain: Optional[str] = None, custom_domain: Optional[str] = None,
                 blog_id: Optional[str] = None) -> Blog:
        now = to_iso(utcnow())
        blog = Blog(
            id=blog_id or uuid.uuid4().hex,
            user_id=user.id,
            title=title,
            slug=slug,
            description=description,
            user_slug=user.slug,
            subdomain=subdomain,
            custom_domain=custom_domain,
        )
        with self.database.connect() as conn:
            conn.execute(
                """
                INSERT INTO blogs (id, user_id, title, description, slug, user_slug,
                                   subdomain, custom_domain, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (blog.id, blog.user_id, blog.title, blog.description, blog.slug,
                 blog.user_slug, blog.subdomain, blog.custom_domain, now, now),
            )
        return blog

    def get_user(self, user_id: str) -> Optional[User]:
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT id, email, display_name, slug, created_at, updated_at FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return User(
            id=row["id"],
            email=row["email"],
            display_name=row["display_name"],
            slug=row["slug"],
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
        )

    def find_one(self, column: str, value: str, user_slug: Optional[str] = None) -> Optional[Blog]:
        if column not in ("custom_domain", "subdomain", "slug"):
            raise ValueError(f"Unsupported blog lookup column: {column}")
        query = f"SELECT * FROM blogs WHERE {column} = ?"
        params = [value]
        if user_slug:
            query += " AND user_slug = ?"
            params.append(user_slug)
        query += " ORDER BY created_at LIMIT 1"
        with self.database.connect() as conn:
            row = conn.execute(query, params).fetchone()
        return _row_to_blog(row) if row else None


class TenantResolver:
    """Resolve a request's addressing information to a single blog."""

    def __init__(self, blogs: BlogRepository):
        self.blogs = blogs

    def resolve(self, domain: Optional[str] = None, subdomain: Optional[str] = None,
                blog_slug: Optional[str] = None, user_slug: Optional[str] = None) -> Blog:
        """
        Find the blog addressed by a request.

        Priority when several identifiers are supplied: custom domain, then
        subdomain, then path slug. The first non-empty identifier is the only
        one consulted; a miss on it is a miss, with no fallback to the others.

        Args:
            domain: Custom domain (port already stripped)
            subdomain: Subdomain label under the platform's base domain
            blog_slug: Path slug of a path-addressed blog
            user_slug: Optional owner slug narrowing a path-slug lookup

        Returns:
            The matching Blog

        Raises:
            BlogNotFound: No identifier supplied or no blog matches it
            InternalError: The database could not be queried
        """
        if domain:
            column, value = "custom_domain", domain
        elif subdomain:
            column, value = "subdomain", subdomain
        elif blog_slug:
            column, value = "slug", blog_slug
        else:
            logger.warning("Tenant resolution attempted without domain, subdomain or blogSlug")
            raise BlogNotFound()

        try:
            blog = self.blogs.find_one(column, value, user_slug if column == "slug" else None)
        except sqlite3.Error as e:
            logger.error(f"Failed to resolve blog by {column}={value!r}: {e}", exc_info=True)
            raise InternalError() from e

        if blog is None:
            logger.warning(f"No blog found for {column}={value!r}")
            raise BlogNotFound()

        logger.debug(f"Resolved {column}={value!r} to blog {blog.id}")
        return blog
