"""
Ghost Admin API Gateway - Flask Application.

This module implements the HTTP surface of the gateway: a Flask app that
answers Ghost Admin API v5 requests on behalf of many blogs, so desktop and
mobile Ghost clients (Ulysses, iA Writer, ...) can publish to any of them.

Architecture:
    Every authenticated route follows the same resolve-verify-operate pattern:
    1. Resolve the tenant from the domain/subdomain/blogSlug query
       parameters supplied by the upstream router (404 on failure)
    2. Verify the ``Authorization: Ghost <token>`` header against that
       tenant (401 for bad credentials, 403 for another blog's credential)
    3. Operate: shape a response, negotiate post content, or store an upload

    Tenant and authentication failures are terminal for the request; there
    is never a fallback to unauthenticated behavior.

Mount Points:
    Routes answer under both ``/ghost/api/admin`` and
    ``/ghost/api/<version>/admin`` (``v5.0``, ``v4``, ``canary``, ...).
    The version segment is accepted and ignored.

Components:
    The app factory builds the tenant resolver, token verifier, post
    repository and upload assemblers from configuration unless a database or
    blob store is injected, and keeps them in app.config for the route
    handlers.

Response Headers:
    - X-Ghost-Version / Content-Version on every response
    - Permissive CORS (flask-cors) on every response
    - OPTIONS on any path is answered directly: 200, empty body, Allow and
      Access-Control-Allow-* headers

Error Handling:
    Components raise gateway.errors.GatewayError subclasses; a single error
    handler renders them as Ghost error bodies:

        {"errors": [{"message": "..."}]}

    Flask's own 404/405/413 and unexpected exceptions (logged with traceback,
    rendered as 500) use the same JSON shape. Clients are automated, so no
    HTML error page is ever returned.
"""
import logging
import os
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Tuple

from flask import Flask, current_app, jsonify, request, send_from_directory
from flask_cors import CORS
from jsonschema import Draft7Validator
from jsonschema.exceptions import best_match
from werkzeug.exceptions import HTTPException, MethodNotAllowed, RequestEntityTooLarge

from auth.keys import AdminKeyStore
from auth.verifier import Principal, TokenVerifier
from config import DEFAULT_MAX_UPLOAD_BYTES, get_public_base_url, load_config
from content.posts import PostRepository, generate_slug
from gateway.errors import GatewayError, ResourceNotFound, ValidationFailed
from schema import GHOST_POST_REQUEST_SCHEMA, GHOST_POST_UPDATE_SCHEMA
from storage.blobs import PUBLIC_PATH_PREFIX, LocalBlobStore
from storage.database import Database, utcnow
from tenants.resolver import Blog, BlogRepository, TenantResolver
from uploads.chunks import ChunkAssembler, ChunkStatus, create_chunk_store
from uploads.images import ImageRecords, ImageUploader, format_megabytes

from ghost.responses import (
    DEFAULT_GHOST_VERSION,
    chunk_status_payload,
    config_payload,
    content_version,
    error_payload,
    images_payload,
    members_payload,
    post_payload,
    posts_payload,
    site_payload,
    slug_payload,
    tags_payload,
    token_payload,
    user_payload,
)

# Logging is configured in gateway.main() - this module uses the configured logger
logger = logging.getLogger(__name__)

ADMIN_API_PREFIX = "/ghost/api/admin"
VERSIONED_ADMIN_API_PREFIX = "/ghost/api/<api_version>/admin"

DEFAULT_ALLOWED_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_ALLOWED_HEADERS = "Content-Type, Authorization, Accept-Version, X-Ghost-Version"

DEFAULT_PAGE_LIMIT = 15
MAX_PAGE_LIMIT = 100

HTTP_ERROR_MESSAGES = {
    404: "Resource not found",
    405: "Method not allowed",
}


def validate_request_body(payload: Any, schema: Dict[str, Any]) -> None:
    """Validate a JSON request body against a Draft 7 schema.

    Raises:
        ValidationFailed: With the first violation and the path where it occurred
    """
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid request format. Expected posts array.")
    error = best_match(Draft7Validator(schema).iter_errors(payload))
    if error is not None:
        path_str = ".".join(str(p) for p in error.path)
        raise ValidationFailed(f"Validation error: {error.message} at path: {path_str}")


def _int_arg(value: Optional[str], default: int) -> int:
    try:
        return int(value) if value is not None else default
    except ValueError as e:
        raise ValidationFailed(f"Invalid integer value: {value!r}") from e


def _limit_arg(value: Optional[str]) -> int:
    """Parse Ghost's ``limit`` query parameter; ``all`` is served as MAX_PAGE_LIMIT."""
    if value == "all":
        return MAX_PAGE_LIMIT
    return min(max(1, _int_arg(value, DEFAULT_PAGE_LIMIT)), MAX_PAGE_LIMIT)


def _int_field(name: str) -> Optional[int]:
    value = request.form.get(name)
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ValidationFailed(f"Invalid value for {name}") from e


def create_app(config: Optional[Dict[str, Any]] = None, database: Optional[Database] = None,
               blob_store: Optional[LocalBlobStore] = None,
               clock: Callable[[], datetime] = utcnow) -> Flask:
    """Factory function to create and configure the Flask application.

    Args:
        config: Optional configuration dictionary (if None, loaded from config.yml)
        database: Optional Database (if None, opened at storage.database_path)
        blob_store: Optional blob store (if None, a LocalBlobStore at storage.blob_directory)
        clock: Source of the current time, injected so tests control expiry

    Returns:
        Configured Flask application instance

    Example:
        >>> app = create_app()
        >>> # Use app with test client or run with Gunicorn
    """
    app = Flask(__name__)

    if config is None:
        config = load_config()

    ghost_config = config.get("ghost", {})
    storage_config = config.get("storage", {})
    uploads_config = config.get("uploads", {})
    auth_config = config.get("auth", {})

    # Configure CORS from config.yml; Ghost clients and browser editors call cross-origin
    cors_config = config.get("cors", {})
    cors_origins = []
    if cors_config.get("enabled", False):
        cors_origins = cors_config.get("origins", [])
        if cors_origins:
            CORS(app, origins=cors_origins)
            logger.info(f"CORS enabled for origins: {cors_origins}")
        else:
            logger.warning("CORS enabled but no origins configured")
    else:
        logger.info("CORS is disabled in configuration")

    if database is None:
        database = Database(storage_config["database_path"])
    if blob_store is None:
        blob_store = LocalBlobStore(storage_config["blob_directory"], get_public_base_url(config))

    blogs = BlogRepository(database)
    key_store = AdminKeyStore(database, clock=clock)
    records = ImageRecords(database, clock=clock)
    max_upload_bytes = uploads_config.get("max_upload_bytes", DEFAULT_MAX_UPLOAD_BYTES)

    app.config["MAX_CONTENT_LENGTH"] = uploads_config.get("max_request_bytes")
    app.config["GHOST_VERSION"] = ghost_config.get("version", DEFAULT_GHOST_VERSION)
    app.config["BASE_DOMAIN"] = ghost_config.get("base_domain", "from.cafe")
    app.config["TIMEZONE"] = config.get("timezone", "UTC")
    app.config["CORS_WILDCARD"] = "*" in cors_origins
    app.config["CLOCK"] = clock
    app.config["DATABASE"] = database
    app.config["BLOB_STORE"] = blob_store
    app.config["BLOG_REPOSITORY"] = blogs
    app.config["KEY_STORE"] = key_store
    app.config["TENANT_RESOLVER"] = TenantResolver(blogs)
    app.config["TOKEN_VERIFIER"] = TokenVerifier(
        key_store, clock=clock, leeway_seconds=auth_config.get("jwt_leeway_seconds", 30)
    )
    app.config["POST_REPOSITORY"] = PostRepository(database, clock=clock)
    app.config["IMAGE_UPLOADER"] = ImageUploader(blob_store, records, max_upload_bytes=max_upload_bytes)
    app.config["CHUNK_ASSEMBLER"] = ChunkAssembler(
        create_chunk_store(uploads_config.get("chunk_store", "sqlite"), database),
        blob_store,
        records,
        max_upload_bytes=max_upload_bytes,
        max_chunks=uploads_config.get("max_chunks", 1000),
        session_ttl_seconds=uploads_config.get("session_ttl_seconds", 3600),
        clock=clock,
    )

    def admin_route(rule: str, **options):
        """Register a view under both the unversioned and the versioned Admin API root."""
        def decorator(view):
            app.add_url_rule(f"{ADMIN_API_PREFIX}{rule}", view_func=view, **options)
            app.add_url_rule(f"{VERSIONED_ADMIN_API_PREFIX}{rule}", view_func=view, **options)
            return view
        return decorator

    @app.url_value_preprocessor
    def drop_api_version(endpoint, values):
        if values:
            values.pop("api_version", None)

    @app.before_request
    def answer_preflight():
        """Answer OPTIONS on any path before routing, including unknown paths."""
        if request.method != "OPTIONS":
            return None
        try:
            adapter = current_app.url_map.bind_to_environ(request.environ)
            methods = sorted(set(adapter.allowed_methods()) | {"OPTIONS"})
        except HTTPException:
            methods = []
        allow = ", ".join(methods) if len(methods) > 1 else DEFAULT_ALLOWED_METHODS

        response = current_app.response_class(status=200)
        response.headers["Allow"] = allow
        response.headers["Access-Control-Allow-Methods"] = allow
        response.headers["Access-Control-Allow-Headers"] = CORS_ALLOWED_HEADERS
        return response

    @app.after_request
    def add_ghost_headers(response):
        version = current_app.config["GHOST_VERSION"]
        response.headers["X-Ghost-Version"] = version
        response.headers["Content-Version"] = content_version(version)
        if current_app.config["CORS_WILDCARD"] and "Access-Control-Allow-Origin" not in response.headers:
            response.headers["Access-Control-Allow-Origin"] = "*"
        return response

    @app.errorhandler(GatewayError)
    def handle_gateway_error(e: GatewayError):
        return jsonify(error_payload(e.message)), e.status_code

    @app.errorhandler(RequestEntityTooLarge)
    def handle_request_too_large(e: RequestEntityTooLarge):
        size = request.content_length or 0
        limit = current_app.config["MAX_CONTENT_LENGTH"] or 0
        logger.warning(f"Rejected request body of {format_megabytes(size)} on {request.path}")
        message = (f"Request size {format_megabytes(size)} exceeds the maximum request size "
                   f"of {format_megabytes(limit, 1)}")
        return jsonify(error_payload(message)), 413

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        response = jsonify(error_payload(HTTP_ERROR_MESSAGES.get(e.code, e.name)))
        if isinstance(e, MethodNotAllowed) and e.valid_methods:
            response.headers["Allow"] = ", ".join(e.valid_methods)
        return response, e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        logger.error(f"Unexpected error handling {request.method} {request.path}: {e}", exc_info=True)
        return jsonify(error_payload("Internal server error")), 500

    def resolve_blog() -> Blog:
        return current_app.config["TENANT_RESOLVER"].resolve(
            domain=request.args.get("domain"),
            subdomain=request.args.get("subdomain"),
            blog_slug=request.args.get("blogSlug"),
            user_slug=request.args.get("userSlug"),
        )

    def authenticate() -> Tuple[Blog, Principal]:
        blog = resolve_blog()
        principal = current_app.config["TOKEN_VERIFIER"].verify(request.headers.get("Authorization"), blog)
        return blog, principal

    def shape_post(post, blog: Blog, principal: Principal) -> Dict[str, Any]:
        author = current_app.config["BLOG_REPOSITORY"].get_user(principal.user_id)
        return post_payload(post, blog, author, current_app.config["BASE_DOMAIN"], current_app.config["CLOCK"]())

    @admin_route("/site/", methods=["GET"])
    def get_site():
        """Public site information; needs only the tenant, no token."""
        blog = resolve_blog()
        return jsonify(site_payload(blog, current_app.config["BASE_DOMAIN"], current_app.config["GHOST_VERSION"]))

    @admin_route("/config/", methods=["GET"])
    def get_config():
        blog, _ = authenticate()
        return jsonify(config_payload(
            blog,
            current_app.config["BASE_DOMAIN"],
            current_app.config["GHOST_VERSION"],
            current_app.config["TIMEZONE"],
        ))

    @admin_route("/users/me/", methods=["GET"])
    def get_current_user():
        _, principal = authenticate()
        user = current_app.config["BLOG_REPOSITORY"].get_user(principal.user_id)
        if user is None:
            logger.warning(f"Credential {principal.key_id} refers to missing user {principal.user_id}")
            raise ResourceNotFound("User not found")
        return jsonify(user_payload(user, current_app.config["CLOCK"]()))

    @admin_route("/users/me/token/", methods=["GET"])
    def get_current_token():
        _, principal = authenticate()
        return jsonify(token_payload(principal))

    @admin_route("/images/upload/", methods=["POST"])
    def upload_image():
        """Whole-file upload: multipart fields ``file`` (required), ``purpose``, ``ref``."""
        authenticate()
        upload = request.files.get("file")
        if upload is None:
            raise ValidationFailed("Please select a file to upload.")

        image = current_app.config["IMAGE_UPLOADER"].upload(
            upload.read(),
            upload.mimetype,
            purpose=request.form.get("purpose") or "image",
            ref=request.form.get("ref"),
            filename=upload.filename,
        )
        return jsonify(images_payload([image])), 201

    @admin_route("/images/upload-chunk/", methods=["POST"])
    def upload_image_chunk():
        """One chunk of a large upload; the request carrying the last missing chunk gets the image."""
        authenticate()
        chunk = request.files.get("chunk")
        upload_id = request.form.get("uploadId")
        chunk_index = _int_field("chunkIndex")
        total_chunks = _int_field("totalChunks")
        if chunk is None or not upload_id or chunk_index is None or total_chunks is None:
            raise ValidationFailed("Missing required chunk parameters")

        result = current_app.config["CHUNK_ASSEMBLER"].receive_chunk(
            upload_id,
            chunk_index,
            total_chunks,
            chunk.read(),
            filename=request.form.get("filename") or chunk.filename,
            content_type=request.form.get("contentType") or chunk.mimetype,
            total_size=_int_field("totalSize") or 0,
        )
        if isinstance(result, ChunkStatus):
            return jsonify(chunk_status_payload(result)), 200
        return jsonify(images_payload([result])), 201

    @admin_route("/posts/", methods=["GET"])
    def list_posts():
        blog, principal = authenticate()
        page = max(1, _int_arg(request.args.get("page"), 1))
        limit = _limit_arg(request.args.get("limit"))

        status = None
        post_filter = request.args.get("filter") or ""
        if "status:published" in post_filter:
            status = "published"
        elif "status:draft" in post_filter:
            status = "draft"

        posts, total = current_app.config["POST_REPOSITORY"].list(blog.id, page=page, limit=limit, status=status)
        shaped = [shape_post(post, blog, principal) for post in posts]
        return jsonify(posts_payload(shaped, page=page, limit=limit, total=total))

    @admin_route("/posts/", methods=["POST"])
    def create_posts():
        blog, principal = authenticate()
        body = request.get_json(silent=True)
        validate_request_body(body, GHOST_POST_REQUEST_SCHEMA)

        source = request.args.get("source")
        repository = current_app.config["POST_REPOSITORY"]
        created = [repository.create(blog, entry, source) for entry in body["posts"]]
        return jsonify(posts_payload([shape_post(post, blog, principal) for post in created])), 201

    @admin_route("/posts/<post_id>/", methods=["GET"])
    def get_post(post_id: str):
        blog, principal = authenticate()
        post = current_app.config["POST_REPOSITORY"].get(blog.id, post_id)
        return jsonify(posts_payload([shape_post(post, blog, principal)]))

    @admin_route("/posts/<post_id>/", methods=["PUT"])
    def update_post(post_id: str):
        blog, principal = authenticate()
        body = request.get_json(silent=True)
        validate_request_body(body, GHOST_POST_UPDATE_SCHEMA)

        post = current_app.config["POST_REPOSITORY"].update(
            blog, post_id, body["posts"][0], request.args.get("source")
        )
        return jsonify(posts_payload([shape_post(post, blog, principal)]))

    @admin_route("/members/", methods=["GET"])
    def list_members():
        authenticate()
        return jsonify(members_payload(_limit_arg(request.args.get("limit"))))

    @admin_route("/tags/", methods=["GET"])
    def list_tags():
        """Tag list for editors' tag pickers; like /site/ it needs only the tenant."""
        resolve_blog()
        return jsonify(tags_payload(_limit_arg(request.args.get("limit"))))

    @admin_route("/slugs/<slug_type>/<name>/", methods=["GET"])
    def get_slug(slug_type: str, name: str):
        blog, _ = authenticate()
        slug = generate_slug(name)
        if slug_type == "post":
            slug = current_app.config["POST_REPOSITORY"].ensure_unique_slug(slug, blog.id)
        return jsonify(slug_payload(slug))

    @admin_route("/slugs/", methods=["POST"])
    def create_slug():
        """Older clients POST ``{"name": ..., "type": ...}`` instead of using the GET form."""
        blog, _ = authenticate()
        body = request.get_json(silent=True) or {}
        name = body.get("name")
        if not name:
            raise ValidationFailed("Name is required for slug generation")
        slug = generate_slug(name)
        if body.get("type", "post") == "post":
            slug = current_app.config["POST_REPOSITORY"].ensure_unique_slug(slug, blog.id)
        return jsonify(slug_payload(slug))

    @app.route(f"{PUBLIC_PATH_PREFIX}/<name>", methods=["GET"])
    def serve_image(name: str):
        """Serve a stored upload at the URL returned by the upload endpoints."""
        store = current_app.config["BLOB_STORE"]
        path = store.path_for(name)
        if path is None or not os.path.isfile(path):
            raise ResourceNotFound("Image not found")
        return send_from_directory(os.path.abspath(store.directory), name)

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint for monitoring and load balancers.

        Returns:
            tuple: (JSON response, 200 status code)

        Example:
            $ curl http://localhost:5000/health
            {"status": "healthy"}
        """
        return jsonify({"status": "healthy"}), 200

    return app
