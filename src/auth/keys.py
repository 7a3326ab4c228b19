"""
Admin API Key store.

Two kinds of credential share the Ghost ``id:secret`` format:

* AdminApiKey - created from the dashboard, never expires, deleted explicitly.
* GhostToken  - a time-boxed pair with an ``expires_at``, stored as the single
  string ``"id:secret"``. Expired tokens are deleted the first time the
  verifier observes them.

The secret half is returned exactly once, at issuance. No read method of this
store exposes it to callers other than the token verifier.
"""
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from storage.database import Database, from_iso, to_iso, utcnow

logger = logging.getLogger(__name__)

# 24 hex chars, colon, 64 hex chars (Ghost Admin API Key format)
ADMIN_KEY_PATTERN = re.compile(r'^[a-f0-9]{24}:[a-f0-9]{64}$')

EXPIRY_PRESETS = {
    "1h": timedelta(hours=1),
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "1y": timedelta(days=365),
    "never": timedelta(days=365 * 100),
}
DEFAULT_EXPIRY = "1y"

SOURCE_ADMIN_API_KEY = "admin_api_key"
SOURCE_GHOST_TOKEN = "ghost_token"


def parse_expiry(preset: Optional[str]) -> timedelta:
    """Translate an expiry preset ('24h', '7d', ...) into a timedelta; unknown values mean one year."""
    return EXPIRY_PRESETS.get(preset or DEFAULT_EXPIRY, EXPIRY_PRESETS[DEFAULT_EXPIRY])


def split_key(token: str) -> tuple[str, str]:
    """Split a stored ``id:secret`` string at the first colon."""
    key_id, _, secret = token.partition(":")
    return key_id, secret


@dataclass(frozen=True)
class IssuedKey:
    key_id: str
    secret: str
    expires_at: Optional[datetime]

    @property
    def token(self) -> str:
        return f"{self.key_id}:{self.secret}"


@dataclass(frozen=True)
class StoredCredential:
    """A credential as the verifier sees it."""

    key_id: str
    secret: str
    blog_id: str
    user_id: str
    source: str
    expires_at: Optional[datetime] = None
    token: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


@dataclass(frozen=True)
class KeySummary:
    key_id: str
    blog_id: str
    source: str
    name: Optional[str]
    created_at: Optional[datetime]
    expires_at: Optional[datetime]
    last_used_at: Optional[datetime]


class AdminKeyStore:
    """Persisted registry of Admin API credentials."""

    def __init__(self, database: Database, clock: Callable[[], datetime] = utcnow):
        self.database = database
        self.clock = clock

    def issue(self, blog_id: str, user_id: str, ttl: timedelta) -> IssuedKey:
        """
        Issue a time-boxed ``id:secret`` pair bound to a blog and user.

        Args:
            blog_id: Blog the credential grants access to
            user_id: User the credential acts as
            ttl: Lifetime of the credential

        Returns:
            IssuedKey holding the plaintext secret. It cannot be retrieved again.
        """
        now = self.clock()
        issued = IssuedKey(
            key_id=secrets.token_hex(12),
            secret=secrets.token_hex(32),
            expires_at=now + ttl,
        )
        with self.database.connect() as conn:
            conn.execute(
                "INSERT INTO ghost_tokens (token, blog_id, user_id, expires_at, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (issued.token, blog_id, user_id, to_iso(issued.expires_at), to_iso(now)),
            )
        logger.info(f"Issued Ghost token {issued.key_id} for blog {blog_id} (expires {to_iso(issued.expires_at)})")
        return issued

    def create_admin_key(self, blog_id: str, user_id: str, name: str = "Admin API Key",
                         description: Optional[str] = None) -> IssuedKey:
        """Create a non-expiring Admin API Key. The secret is returned only here."""
        issued = IssuedKey(key_id=secrets.token_hex(12), secret=secrets.token_hex(32), expires_at=None)
        with self.database.connect() as conn:
            conn.execute(
                "INSERT INTO admin_api_keys (key_id, secret, blog_id, user_id, name, description, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (issued.key_id, issued.secret, blog_id, user_id, name, description, to_iso(self.clock())),
            )
        logger.info(f"Created Admin API Key {issued.key_id} for blog {blog_id}")
        return issued

    def revoke(self, key_id: str) -> bool:
        """Delete every credential with this key id. Returns True if anything was deleted."""
        with self.database.connect() as conn:
            deleted = conn.execute("DELETE FROM admin_api_keys WHERE key_id = ?", (key_id,)).rowcount
            deleted += conn.execute(
                "DELETE FROM ghost_tokens WHERE substr(token, 1, instr(token, ':') - 1) = ?",
                (key_id,),
            ).rowcount
        if deleted:
            logger.info(f"Revoked credential {key_id}")
        else:
            logger.warning(f"Revoke requested for unknown credential {key_id}")
        return deleted > 0

    def list_keys(self, blog_id: str) -> List[KeySummary]:
        """List credentials for a blog without their secrets."""
        summaries: List[KeySummary] = []
        with self.database.connect() as conn:
            for row in conn.execute(
                "SELECT key_id, blog_id, name, created_at, last_used_at FROM admin_api_keys "
                "WHERE blog_id = ? ORDER BY created_at DESC",
                (blog_id,),
            ):
                summaries.append(KeySummary(
                    key_id=row["key_id"],
                    blog_id=row["blog_id"],
                    source=SOURCE_ADMIN_API_KEY,
                    name=row["name"],
                    created_at=from_iso(row["created_at"]),
                    expires_at=None,
                    last_used_at=from_iso(row["last_used_at"]),
                ))
            for row in conn.execute(
                "SELECT token, blog_id, expires_at, created_at FROM ghost_tokens "
                "WHERE blog_id = ? ORDER BY created_at DESC",
                (blog_id,),
            ):
                summaries.append(KeySummary(
                    key_id=split_key(row["token"])[0],
                    blog_id=row["blog_id"],
                    source=SOURCE_GHOST_TOKEN,
                    name=None,
                    created_at=from_iso(row["created_at"]),
                    expires_at=from_iso(row["expires_at"]),
                    last_used_at=None,
                ))
        return summaries

    def find_raw_token(self, token: str) -> Optional[StoredCredential]:
        """Exact lookup of a raw ``id:secret`` token among time-boxed tokens."""
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT token, blog_id, user_id, expires_at FROM ghost_tokens WHERE token = ?",
                (token,),
            ).fetchone()
        return self._token_row(row) if row else None

    def find_by_key_id(self, key_id: str) -> Optional[StoredCredential]:
        """
        Find the credential a JWT ``kid`` refers to.

        Admin API Keys are consulted first, then time-boxed tokens whose
        identifier half (the text before the first colon) equals the key id.
        """
        with self.database.connect() as conn:
            row = conn.execute(
                "SELECT key_id, secret, blog_id, user_id FROM admin_api_keys WHERE key_id = ?",
                (key_id,),
            ).fetchone()
            if row:
                return StoredCredential(
                    key_id=row["key_id"],
                    secret=row["secret"],
                    blog_id=row["blog_id"],
                    user_id=row["user_id"],
                    source=SOURCE_ADMIN_API_KEY,
                )
            row = conn.execute(
                "SELECT token, blog_id, user_id, expires_at FROM ghost_tokens "
                "WHERE substr(token, 1, instr(token, ':') - 1) = ? "
                "ORDER BY created_at DESC LIMIT 1",
                (key_id,),
            ).fetchone()
        return self._token_row(row) if row else None

    def delete_token(self, token: str) -> None:
        with self.database.connect() as conn:
            conn.execute("DELETE FROM ghost_tokens WHERE token = ?", (token,))
        logger.info(f"Deleted expired Ghost token {split_key(token)[0]}")

    def purge_expired(self) -> int:
        """Delete every time-boxed token whose expiry has passed. Returns the count deleted."""
        with self.database.connect() as conn:
            deleted = conn.execute(
                "DELETE FROM ghost_tokens WHERE expires_at <= ?",
                (to_iso(self.clock()),),
            ).rowcount
        if deleted:
            logger.info(f"Cleaned up {deleted} expired Ghost token(s)")
        return deleted

    @staticmethod
    def _token_row(row) -> StoredCredential:
        key_id, secret = split_key(row["token"])
        return StoredCredential(
            key_id=key_id,
            secret=secret,
            blog_id=row["blog_id"],
            user_id=row["user_id"],
            source=SOURCE_GHOST_TOKEN,
            expires_at=from_iso(row["expires_at"]),
            token=row["token"],
        )
