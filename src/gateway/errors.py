"""
Gateway error taxonomy.

Every failure the Admin API surface can report is a GatewayError subclass
carrying the HTTP status Ghost clients expect. Components raise these; the
Flask app renders them as Ghost-shaped bodies:

    {"errors": [{"message": "..."}]}

Ghost clients treat 404 (wrong site) and 401 (bad credential) differently,
so tenant and authentication failures must never share a status code.
"""


class GatewayError(Exception):
    """Base class for errors rendered as Ghost Admin API error responses."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class BlogNotFound(GatewayError):
    """Tenant resolution failed for the request's domain/subdomain/slug."""

    status_code = 404
    default_message = "Blog not found for this URL"


class MissingAuth(GatewayError):
    status_code = 401
    default_message = "Authorization header is required"


class InvalidToken(GatewayError):
    status_code = 401
    default_message = "Invalid authorization token. Please generate a new token."


class TokenExpired(GatewayError):
    status_code = 401
    default_message = "Authorization token has expired. Please generate a new token."


class ForbiddenForBlog(GatewayError):
    """The credential is genuine but was issued for a different blog."""

    status_code = 403
    default_message = "Authorization token not valid for this blog"


class ValidationFailed(GatewayError):
    status_code = 400
    default_message = "Invalid request"


class UnsupportedMediaType(GatewayError):
    status_code = 400
    default_message = "Unsupported file type"


class PayloadTooLarge(GatewayError):
    status_code = 413
    default_message = "File is too large"


class ResourceNotFound(GatewayError):
    status_code = 404
    default_message = "Resource not found"


class Conflict(GatewayError):
    status_code = 409
    default_message = "Resource already exists"


class InternalError(GatewayError):
    status_code = 500
    default_message = "Internal server error"
