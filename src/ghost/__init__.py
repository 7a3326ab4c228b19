"""Ghost Admin API Gateway Package.

This package provides the Flask application that answers Ghost Admin API
v5 requests for many blogs, plus a client for talking to any Ghost Admin
API compatible server.

Key Components:
    create_app: Flask application factory (routes, headers, error rendering)
    GhostAdminAPIClient: Signs Admin API JWTs and calls a Ghost-compatible server

Endpoints (under /ghost/api/admin and /ghost/api/<version>/admin):
    GET  /site/                 Public site information
    GET  /config/               Server capabilities
    GET  /users/me/             Authenticated user
    GET  /users/me/token/       Token introspection
    POST /images/upload/        Whole-file image upload
    POST /images/upload-chunk/  Chunked image upload
    GET|POST /posts/, GET|PUT /posts/{id}/, GET /slugs/{type}/{name}/
    GET  /members/, GET /tags/  Empty lists for client capability checks

Usage:
    Start the gateway:
        $ ghost-gateway

    Or use Flask directly:
        $ flask --app "ghost.ghost:create_app()" run

    Check a blog's site endpoint:
        $ curl "http://localhost:5000/ghost/api/admin/site/?subdomain=alice"
"""
from .ghost import create_app
from .admin_client import GhostAdminAPIClient

__all__ = ["create_app", "GhostAdminAPIClient"]
