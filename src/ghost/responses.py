"""
Ghost Admin API v5 response shapes.

Pure functions turning gateway records into the JSON bodies real Ghost
returns. Clients probe specific keys to decide which features to offer
(``labs.lexicalEditor``, ``allow_external_signup``, ``imageOptimization``,
...), so every such key is present even where its value means nothing here.
"""
import hashlib
import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from auth.verifier import Principal
from content.posts import Post, generate_excerpt
from storage.database import to_iso
from tenants.resolver import Blog, User
from uploads.chunks import ChunkStatus
from uploads.images import UploadedImage

DEFAULT_GHOST_VERSION = "5.120.3"
ACCENT_COLOR = "#15171A"
DEFAULT_LOCALE = "en"

# Serialized the way Ghost stores a fresh user's accessibility settings
USER_ACCESSIBILITY = '{"nightShift":false,"whatsNew":{"lastSeenDate":"2025-07-10T06:00:00.000+00:00"}}'

WORDS_PER_MINUTE = 265


def short_version(version: str) -> str:
    """'5.120.3' -> '5.120'"""
    return ".".join(version.split(".")[:2])


def content_version(version: str) -> str:
    """Value of the Content-Version header, e.g. 'v5.120'."""
    return f"v{short_version(version)}"


def error_payload(message: str) -> Dict[str, Any]:
    return {"errors": [{"message": message}]}


def site_payload(blog: Blog, base_domain: str, version: str = DEFAULT_GHOST_VERSION) -> Dict[str, Any]:
    return {
        "site": {
            "title": blog.title,
            "description": blog.description or "",
            "logo": None,
            "icon": None,
            "cover_image": None,
            "accent_color": ACCENT_COLOR,
            "locale": DEFAULT_LOCALE,
            "url": blog.url(base_domain),
            "version": short_version(version),
            "allow_external_signup": True,
        }
    }


def config_payload(blog: Blog, base_domain: str, version: str = DEFAULT_GHOST_VERSION,
                   timezone: str = "UTC") -> Dict[str, Any]:
    """Server capabilities. ``imageUpload`` and ``labs.lexicalEditor`` gate editor features in clients."""
    blog_url = blog.url(base_domain)
    return {
        "config": {
            "version": short_version(version),
            "environment": "production",
            "database": "mysql8",
            "mail": {"transport": "SMTP"},
            "labs": {
                "members": True,
                "stripeConnected": False,
                "ghostPayments": False,
                "oauthLogin": False,
                "emailAnalytics": True,
                "audienceFeedback": True,
                "websitePreview": True,
                "lexicalEditor": True,
                "emailClicks": True,
                "newsletterAnalytics": True,
                "sourceAttribution": True,
                "improvedOnboarding": False,
            },
            "enableDeveloperExperiments": False,
            "stripePlans": [],
            "useGravatar": True,
            "isPrivate": False,
            "passwordProtected": False,
            "emailVerification": False,
            "publicHash": hashlib.sha256(blog.id.encode("utf-8")).hexdigest()[:12],
            "blogUrl": blog_url,
            "blogTitle": blog.title,
            "imageOptimization": {"responsive": True, "srcsets": True},
            "fileStorage": True,
            "imageUpload": True,
            "editor": {"url": blog_url, "version": short_version(version)},
            "timezone": timezone,
            "locale": DEFAULT_LOCALE,
        }
    }


def _user_fields(user: User, now: datetime) -> Dict[str, Any]:
    # Real Ghost does not include roles in /users/me/
    return {
        "id": user.id,
        "name": user.display_name or user.email or "User",
        "slug": user.slug or "user",
        "email": user.email,
        "profile_image": None,
        "cover_image": None,
        "bio": None,
        "website": None,
        "location": None,
        "facebook": None,
        "twitter": None,
        "accessibility": USER_ACCESSIBILITY,
        "status": "active",
        "meta_title": None,
        "meta_description": None,
        "tour": None,
        "last_seen": to_iso(now),
        "comment_notifications": True,
        "free_member_signup_notification": True,
        "paid_subscription_started_notification": True,
        "paid_subscription_canceled_notification": False,
        "mention_notifications": True,
        "milestone_notifications": True,
        "created_at": to_iso(user.created_at or now),
        "updated_at": to_iso(user.updated_at or now),
        "donation_notifications": True,
        "recommendation_notifications": True,
        "threads": None,
        "bluesky": None,
        "mastodon": None,
        "tiktok": None,
        "youtube": None,
        "instagram": None,
        "linkedin": None,
        "url": None,
    }


def user_payload(user: User, now: datetime) -> Dict[str, Any]:
    return {"users": [_user_fields(user, now)]}


def token_payload(principal: Principal) -> Dict[str, Any]:
    return {"valid": True, "user_id": principal.user_id, "blog_id": principal.blog_id}


def images_payload(images: Iterable[UploadedImage]) -> Dict[str, Any]:
    return {"images": [{"url": image.url, "ref": image.ref} for image in images]}


def chunk_status_payload(status: ChunkStatus) -> Dict[str, Any]:
    return {
        "message": "Chunk received",
        "uploadId": status.upload_id,
        "chunkIndex": status.chunk_index,
        "totalChunks": status.total_chunks,
        "uploadedChunks": status.uploaded_chunks,
        "complete": status.complete,
    }


def ghost_uuid(ghost_id: str) -> str:
    """Ghost-style uuid derived from a 24-hex post id."""
    return f"{ghost_id[:8]}-{ghost_id[8:12]}-{ghost_id[12:16]}-{ghost_id[16:20]}-{ghost_id[20:24]}000000000000"


def post_payload(post: Post, blog: Blog, author: Optional[User], base_domain: str,
                 now: datetime) -> Dict[str, Any]:
    """Ghost post object for a stored post."""
    blog_url = blog.url(base_domain)
    post_html = post.html
    excerpt = post.excerpt or ""
    authors: List[Dict[str, Any]] = []
    primary_author = None
    if author is not None:
        authors = [_user_fields(author, now)]
        primary_author = {"id": author.id, "name": authors[0]["name"], "slug": authors[0]["slug"]}

    if post.status == "published":
        url = f"{blog_url}/{post.slug}/"
    else:
        url = f"{blog_url}/p/{ghost_uuid(post.ghost_id)}/"

    words = len(generate_excerpt(post_html, limit=len(post_html)).split())
    return {
        "id": post.ghost_id,
        "uuid": ghost_uuid(post.ghost_id),
        "title": post.title,
        "slug": post.slug,
        "html": post_html,
        "lexical": None,
        "markdown": post.markdown,
        "comment_id": post.ghost_id,
        "plaintext": excerpt,
        "feature_image": post.feature_image,
        "featured": False,
        "visibility": "public",
        "email_recipient_filter": "none",
        "created_at": to_iso(post.created_at),
        "updated_at": to_iso(post.updated_at),
        "published_at": to_iso(post.published_at),
        "custom_excerpt": excerpt,
        "codeinjection_head": None,
        "codeinjection_foot": None,
        "custom_template": None,
        "canonical_url": None,
        "tags": [],
        "authors": authors,
        "primary_author": primary_author,
        "primary_tag": None,
        "url": url,
        "excerpt": excerpt,
        "reading_time": max(1, round(words / WORDS_PER_MINUTE)),
        "access": True,
        "email_segment": "all",
        "status": post.status,
    }


def pagination_meta(page: int, limit: int, total: int) -> Dict[str, Any]:
    pages = max(1, math.ceil(total / limit)) if limit else 1
    return {
        "pagination": {
            "page": page,
            "limit": limit,
            "pages": pages,
            "total": total,
            "next": page + 1 if page < pages else None,
            "prev": page - 1 if page > 1 else None,
        }
    }


def collection_payload(resource: str, items: List[Dict[str, Any]], page: int = 1,
                       limit: Optional[int] = None, total: Optional[int] = None) -> Dict[str, Any]:
    """Wrap a Ghost resource list with pagination meta. A single write echoes as page 1 of 1."""
    total = len(items) if total is None else total
    limit = limit or max(total, 1)
    return {resource: items, "meta": pagination_meta(page, limit, total)}


def posts_payload(posts: List[Dict[str, Any]], page: int = 1, limit: Optional[int] = None,
                  total: Optional[int] = None) -> Dict[str, Any]:
    return collection_payload("posts", posts, page, limit, total)


def members_payload(limit: int) -> Dict[str, Any]:
    """Blogs here have no members; clients only check that the endpoint answers."""
    return collection_payload("members", [], limit=limit, total=0)


def tags_payload(limit: int) -> Dict[str, Any]:
    # Posts carry no tags, so every blog's tag list is empty
    return collection_payload("tags", [], limit=limit, total=0)


def slug_payload(slug: str) -> Dict[str, Any]:
    return {"slugs": [{"slug": slug}]}
