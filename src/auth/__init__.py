"""Auth Package - Ghost Admin API Key storage and token verification.

Exports:
    AdminKeyStore: Issues, looks up and revokes ``id:secret`` credentials
    TokenVerifier: Authenticates ``Authorization: Ghost <token>`` headers
    Principal: Authenticated (blog, user) identity of a request
"""
from .keys import AdminKeyStore, IssuedKey, parse_expiry
from .verifier import Principal, TokenVerifier

__all__ = ["AdminKeyStore", "IssuedKey", "parse_expiry", "Principal", "TokenVerifier"]
