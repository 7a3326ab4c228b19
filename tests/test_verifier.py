"""
Tests for Ghost Admin API token verification.

Covers:
- JWTs signed with each of the secret encodings clients use
- Raw id:secret tokens issued by the dashboard
- Expiry of stored tokens (deleted on first sight) and of the JWT itself
- Audience checks and credentials presented to the wrong blog
"""
from datetime import timedelta

import jwt
import pytest

from auth.keys import SOURCE_ADMIN_API_KEY, SOURCE_GHOST_TOKEN
from auth.verifier import TokenVerifier, is_admin_audience
from gateway.errors import ForbiddenForBlog, InvalidToken, MissingAuth, TokenExpired


@pytest.fixture
def verifier(key_store, clock):
    return TokenVerifier(key_store, clock=clock)


@pytest.mark.parametrize("encoding", ["raw", "hex", "base64", "utf8"])
def test_jwt_signed_with_any_encoding_verifies(verifier, admin_key, make_token, blog, owner, encoding):
    """Ghost's SDK hex-decodes the secret, other clients sign the literal string."""
    token = make_token(admin_key.key_id, admin_key.secret, encoding=encoding)

    principal = verifier.verify(f"Ghost {token}", blog)

    assert principal.blog_id == blog.id
    assert principal.user_id == owner.id
    assert principal.key_id == admin_key.key_id
    assert principal.source == SOURCE_ADMIN_API_KEY


def test_jwt_for_time_boxed_token(verifier, key_store, make_token, blog, owner):
    issued = key_store.issue(blog.id, owner.id, timedelta(hours=24))
    token = make_token(issued.key_id, issued.secret)

    principal = verifier.verify(f"Ghost {token}", blog)

    assert principal.source == SOURCE_GHOST_TOKEN


def test_raw_token_verifies(verifier, key_store, blog, owner):
    issued = key_store.issue(blog.id, owner.id, timedelta(hours=24))

    principal = verifier.verify(f"Ghost {issued.token}", blog)

    assert principal.key_id == issued.key_id
    assert principal.user_id == owner.id


def test_unknown_raw_token_is_invalid(verifier, blog):
    with pytest.raises(InvalidToken):
        verifier.verify(f"Ghost {'a' * 24}:{'b' * 64}", blog)


@pytest.mark.parametrize("header", [None, "", "Bearer abc", "ghost abc", "Basic dXNlcjpwYXNz"])
def test_missing_or_foreign_scheme(verifier, blog, header):
    with pytest.raises(MissingAuth) as exc_info:
        verifier.verify(header, blog)
    assert exc_info.value.status_code == 401


def test_malformed_jwt(verifier, blog):
    with pytest.raises(InvalidToken):
        verifier.verify("Ghost not-a-jwt", blog)


def test_jwt_without_kid(verifier, admin_key, blog, clock):
    token = jwt.encode({"iat": int(clock().timestamp())}, admin_key.secret, algorithm="HS256")
    with pytest.raises(InvalidToken):
        verifier.verify(f"Ghost {token}", blog)


def test_unknown_kid(verifier, make_token, blog):
    token = make_token("f" * 24, "0" * 64)
    with pytest.raises(InvalidToken):
        verifier.verify(f"Ghost {token}", blog)


def test_wrong_secret(verifier, admin_key, make_token, blog):
    token = make_token(admin_key.key_id, "0" * 64)
    with pytest.raises(InvalidToken):
        verifier.verify(f"Ghost {token}", blog)


def test_expired_stored_token_is_deleted_once(verifier, key_store, make_token, blog, owner, clock):
    """The first request after expiry deletes the token; later ones see an unknown key."""
    issued = key_store.issue(blog.id, owner.id, timedelta(hours=1))
    clock.advance(hours=2)

    with pytest.raises(TokenExpired):
        verifier.verify(f"Ghost {issued.token}", blog)
    assert key_store.find_raw_token(issued.token) is None, "Expired token should be deleted"

    with pytest.raises(InvalidToken):
        verifier.verify(f"Ghost {issued.token}", blog)


def test_expired_stored_token_via_jwt(verifier, key_store, make_token, blog, owner, clock):
    issued = key_store.issue(blog.id, owner.id, timedelta(hours=1))
    clock.advance(hours=1)
    token = make_token(issued.key_id, issued.secret)

    with pytest.raises(TokenExpired):
        verifier.verify(f"Ghost {token}", blog)
    assert key_store.find_by_key_id(issued.key_id) is None


def test_expired_jwt_is_invalid(verifier, admin_key, make_token, blog, clock):
    token = make_token(admin_key.key_id, admin_key.secret, issued_at=clock() - timedelta(minutes=10))

    with pytest.raises(InvalidToken) as exc_info:
        verifier.verify(f"Ghost {token}", blog)
    assert "expired" in exc_info.value.message


def test_credential_for_another_blog_is_forbidden(verifier, admin_key, make_token, other_blog):
    token = make_token(admin_key.key_id, admin_key.secret)

    with pytest.raises(ForbiddenForBlog) as exc_info:
        verifier.verify(f"Ghost {token}", other_blog)
    assert exc_info.value.status_code == 403


def test_revoked_key_is_rejected(verifier, key_store, admin_key, make_token, blog):
    token = make_token(admin_key.key_id, admin_key.secret)
    key_store.revoke(admin_key.key_id)

    with pytest.raises(InvalidToken):
        verifier.verify(f"Ghost {token}", blog)


@pytest.mark.parametrize("audience", ["/admin/", "/v5.0/admin/", "/v3/admin/", "/canary/admin/", None])
def test_admin_audiences_accepted(verifier, admin_key, make_token, blog, audience):
    token = make_token(admin_key.key_id, admin_key.secret, audience=audience)
    assert verifier.verify(f"Ghost {token}", blog).blog_id == blog.id


def test_content_api_audience_rejected(verifier, admin_key, make_token, blog):
    token = make_token(admin_key.key_id, admin_key.secret, audience="/content/")
    with pytest.raises(InvalidToken):
        verifier.verify(f"Ghost {token}", blog)


def test_is_admin_audience():
    assert is_admin_audience(["/content/", "/v5/admin/"])
    assert not is_admin_audience("/admin")
    assert not is_admin_audience(42)
