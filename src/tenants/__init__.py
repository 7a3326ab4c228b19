"""Tenant Package - maps request addressing (domain, subdomain, path slug) to a blog."""
from .resolver import Blog, BlogRepository, TenantResolver, User

__all__ = ["Blog", "BlogRepository", "TenantResolver", "User"]
