"""Content Package - post content negotiation and persistence."""
from .negotiator import ContentFormat, NegotiatedContent, negotiate, render_markdown
from .posts import Post, PostRepository, generate_slug

__all__ = [
    "ContentFormat",
    "NegotiatedContent",
    "Post",
    "PostRepository",
    "generate_slug",
    "negotiate",
    "render_markdown",
]
