"""
Ghost Admin API token verification.

Ghost Admin API clients authenticate with ``Authorization: Ghost <token>``
where the token is a short-lived HS256 JWT whose header ``kid`` names the
Admin API Key and whose signature uses the key's secret. A raw ``id:secret``
pair in the same slot is also accepted for tokens issued by the dashboard.

Clients disagree about how the shared secret is encoded before signing
(Ghost's own SDK hex-decodes it, others sign with the literal string), so
verification tries a closed list of secret encodings in a fixed order:

    raw string -> hex-decoded bytes -> base64-decoded bytes -> UTF-8 bytes

The first encoding whose signature verifies wins. Only a signature mismatch
moves on to the next encoding; a matching signature with an expired ``exp`` or
a non-Admin audience is rejected outright.

Secrets and full tokens are never logged; key ids and token lengths are.
"""
import base64
import binascii
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Sequence, Tuple

import jwt

from auth.keys import ADMIN_KEY_PATTERN, AdminKeyStore, StoredCredential
from gateway.errors import ForbiddenForBlog, InvalidToken, MissingAuth, TokenExpired
from storage.database import utcnow
from tenants.resolver import Blog

logger = logging.getLogger(__name__)

AUTH_SCHEME_PREFIX = "Ghost "

# /admin/, /v3/admin/, /v5.0/admin/, /canary/admin/
ADMIN_AUDIENCE_PATTERN = re.compile(r'^/(?:(?:v\d+(?:\.\d+)?|canary)/)?admin/$')


def _raw(secret: str) -> Any:
    return secret


def _hex(secret: str) -> Any:
    return bytes.fromhex(secret)


def _base64(secret: str) -> Any:
    return base64.b64decode(secret, validate=True)


def _utf8(secret: str) -> Any:
    return secret.encode("utf-8")


SECRET_ENCODINGS: Tuple[Tuple[str, Callable[[str], Any]], ...] = (
    ("raw", _raw),
    ("hex", _hex),
    ("base64", _base64),
    ("utf8", _utf8),
)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of an Admin API request."""

    blog_id: str
    user_id: str
    key_id: str
    source: str


def is_admin_audience(audience: Any) -> bool:
    """Return True if a JWT ``aud`` claim (string or list) names an Admin API namespace."""
    if isinstance(audience, str):
        audience = [audience]
    if not isinstance(audience, (list, tuple)):
        return False
    return any(isinstance(aud, str) and ADMIN_AUDIENCE_PATTERN.match(aud) for aud in audience)


class TokenVerifier:
    """Authenticate ``Authorization: Ghost ...`` headers against the key store."""

    def __init__(self, key_store: AdminKeyStore, clock: Callable[[], datetime] = utcnow,
                 leeway_seconds: int = 30,
                 encodings: Sequence[Tuple[str, Callable[[str], Any]]] = SECRET_ENCODINGS):
        self.key_store = key_store
        self.clock = clock
        self.leeway_seconds = leeway_seconds
        self.encodings = tuple(encodings)

    def verify(self, authorization_header: Optional[str], blog: Blog) -> Principal:
        """
        Authenticate a request for a resolved blog.

        Args:
            authorization_header: Raw value of the Authorization header (may be None)
            blog: Blog resolved for this request by the TenantResolver

        Returns:
            Principal bound to the blog

        Raises:
            MissingAuth: Header absent or not using the Ghost scheme
            InvalidToken: Unknown key, malformed token, or no encoding verifies
            TokenExpired: Stored credential expired (it is deleted first)
            ForbiddenForBlog: Credential is valid but issued for another blog
        """
        if not authorization_header or not authorization_header.startswith(AUTH_SCHEME_PREFIX):
            logger.warning("Request without Ghost authorization header")
            raise MissingAuth()

        token = authorization_header[len(AUTH_SCHEME_PREFIX):].strip()
        logger.debug(f"Received Ghost token of length {len(token)}")

        if ADMIN_KEY_PATTERN.match(token):
            principal = self._verify_raw_key(token)
        else:
            principal = self._verify_jwt(token)

        if principal.blog_id != blog.id:
            logger.warning(f"Credential {principal.key_id} belongs to blog {principal.blog_id}, not {blog.id}")
            raise ForbiddenForBlog()

        logger.info(f"Authenticated key {principal.key_id} for blog {blog.id}")
        return principal

    def _verify_raw_key(self, token: str) -> Principal:
        credential = self.key_store.find_raw_token(token)
        if credential is None:
            logger.warning("Raw Admin API key not found")
            raise InvalidToken()
        self._reject_if_expired(credential)
        return self._principal(credential)

    def _verify_jwt(self, token: str) -> Principal:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as e:
            logger.warning(f"Malformed JWT in Ghost authorization header: {e}")
            raise InvalidToken() from e

        key_id = header.get("kid")
        if not key_id or not isinstance(key_id, str):
            logger.warning("JWT header has no kid")
            raise InvalidToken()

        credential = self.key_store.find_by_key_id(key_id)
        if credential is None:
            logger.warning(f"No credential found for kid {key_id}")
            raise InvalidToken()

        self._reject_if_expired(credential)

        encoding = self._verify_signature(token, credential)
        logger.debug(f"JWT for kid {key_id} verified with {encoding} secret encoding")
        return self._principal(credential)

    def _verify_signature(self, token: str, credential: StoredCredential) -> str:
        """Try each secret encoding in order and return the name of the one that verified."""
        for name, encode in self.encodings:
            try:
                key = encode(credential.secret)
            except (ValueError, binascii.Error):
                continue

            try:
                payload = jwt.decode(
                    token,
                    key,
                    algorithms=["HS256"],
                    options={"verify_aud": False},
                    leeway=self.leeway_seconds,
                )
            except jwt.InvalidSignatureError:
                continue
            except jwt.ExpiredSignatureError as e:
                logger.warning(f"JWT for kid {credential.key_id} has expired")
                raise InvalidToken("Authorization token has expired. Please sign a new token.") from e
            except jwt.InvalidTokenError as e:
                logger.warning(f"JWT for kid {credential.key_id} rejected: {e}")
                raise InvalidToken() from e

            if "aud" in payload and not is_admin_audience(payload["aud"]):
                logger.warning(f"JWT for kid {credential.key_id} has non-admin audience {payload['aud']!r}")
                raise InvalidToken()
            return name

        logger.warning(f"JWT signature for kid {credential.key_id} did not verify with any secret encoding")
        raise InvalidToken()

    def _reject_if_expired(self, credential: StoredCredential) -> None:
        if credential.is_expired(self.clock()):
            if credential.token:
                self.key_store.delete_token(credential.token)
            logger.warning(f"Credential {credential.key_id} expired at {credential.expires_at}")
            raise TokenExpired()

    @staticmethod
    def _principal(credential: StoredCredential) -> Principal:
        return Principal(
            blog_id=credential.blog_id,
            user_id=credential.user_id,
            key_id=credential.key_id,
            source=credential.source,
        )
