"""
Pytest configuration and shared fixtures for all tests.

This module provides shared fixtures for the test suite:
- A controllable clock so expiry behavior is deterministic
- A temporary sqlite database and blob directory per test
- Seeded users and blogs addressed by subdomain, custom domain and path
- A Flask test client wired to the temporary storage
- A JWT signing helper that mimics the different Ghost clients
"""
import base64
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from auth.keys import AdminKeyStore
from config import get_default_config
from ghost.ghost import create_app
from storage.blobs import LocalBlobStore
from storage.database import Database
from tenants.resolver import BlogRepository

class FakeClock:
    """Callable clock that only moves when a test advances it.

    PyJWT checks ``exp`` against the wall clock, so the clock starts at the
    real current time.
    """

    def __init__(self, now: datetime = None):
        self.now = now or datetime.now(timezone.utc).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def database(tmp_path):
    return Database(str(tmp_path / "gateway.db"))


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(str(tmp_path / "blobs"), "https://cdn.example.com")


@pytest.fixture
def blogs(database):
    return BlogRepository(database)


@pytest.fixture
def owner(blogs):
    return blogs.add_user("alice@example.com", display_name="Alice", slug="alice", user_id="user-alice")


@pytest.fixture
def blog(blogs, owner):
    """Blog addressed by the subdomain ``alice``."""
    return blogs.add_blog(owner, "Alice Writes", "writes", description="Notes and essays",
                          subdomain="alice", blog_id="blog-alice")


@pytest.fixture
def other_blog(blogs):
    bob = blogs.add_user("bob@example.com", display_name="Bob", slug="bob", user_id="user-bob")
    return blogs.add_blog(bob, "Bob's Blog", "journal", custom_domain="bob.example.org", blog_id="blog-bob")


@pytest.fixture
def key_store(database, clock):
    return AdminKeyStore(database, clock=clock)


@pytest.fixture
def gateway_config(tmp_path):
    config = get_default_config()
    config["storage"]["database_path"] = str(tmp_path / "gateway.db")
    config["storage"]["blob_directory"] = str(tmp_path / "blobs")
    config["storage"]["public_base_url"] = "https://cdn.example.com"
    return config


@pytest.fixture
def app(gateway_config, database, blob_store, clock):
    app = create_app(config=gateway_config, database=database, blob_store=blob_store, clock=clock)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


def _encode_secret(secret: str, encoding: str):
    if encoding == "raw":
        return secret
    if encoding == "hex":
        return bytes.fromhex(secret)
    if encoding == "base64":
        return base64.b64decode(secret)
    if encoding == "utf8":
        return secret.encode("utf-8")
    raise ValueError(encoding)


@pytest.fixture
def make_token(clock):
    """Return a function signing an Admin API JWT the way a given client would.

    Example:
        token = make_token(issued.key_id, issued.secret, encoding="raw")
    """
    def _make_token(key_id, secret, encoding="hex", audience="/admin/", lifetime=timedelta(minutes=5),
                    issued_at=None, extra_headers=None):
        issued_at = issued_at or clock()
        payload = {"iat": int(issued_at.timestamp()), "exp": int((issued_at + lifetime).timestamp())}
        if audience is not None:
            payload["aud"] = audience
        headers = {"kid": key_id}
        headers.update(extra_headers or {})
        return jwt.encode(payload, _encode_secret(secret, encoding), algorithm="HS256", headers=headers)

    return _make_token


@pytest.fixture
def admin_key(key_store, blog, owner):
    """A non-expiring Admin API Key for ``blog``."""
    return key_store.create_admin_key(blog.id, owner.id, name="Test client")


@pytest.fixture
def auth_headers(admin_key, make_token):
    return {"Authorization": f"Ghost {make_token(admin_key.key_id, admin_key.secret)}"}
