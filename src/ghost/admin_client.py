"""
Ghost Admin API Client.

A small client for any Ghost Admin API compatible server: a real Ghost
install or this gateway. It signs a fresh short-lived JWT per request from an
Admin API Key (``id:secret``), the way Ghost's own SDK does, and is used by
the response comparison tooling.

Authenticated calls always send the token. A rejected call is reported as
such; it is never retried without credentials.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

import jwt
import requests

from config import read_secret_file
from storage.database import utcnow

logger = logging.getLogger(__name__)

TOKEN_LIFETIME = timedelta(minutes=5)
ADMIN_AUDIENCE = "/admin/"


@dataclass
class AdminResponse:
    status_code: int
    headers: Dict[str, str]
    body: Optional[Any] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def sign_admin_token(admin_key: str, now: Optional[datetime] = None,
                     audience: str = ADMIN_AUDIENCE) -> str:
    """
    Sign a Ghost Admin API JWT from an ``id:secret`` Admin API Key.

    The secret is hex-decoded before signing, matching Ghost's SDK.

    Raises:
        ValueError: The key is not in ``id:secret`` form or the secret is not hex
    """
    key_id, sep, secret = admin_key.partition(":")
    if not sep or not key_id or not secret:
        raise ValueError("Admin API key must be in id:secret format")
    now = now or utcnow()
    issued_at = int(now.timestamp())
    payload = {
        "iat": issued_at,
        "exp": issued_at + int(TOKEN_LIFETIME.total_seconds()),
        "aud": audience,
    }
    return jwt.encode(payload, bytes.fromhex(secret), algorithm="HS256", headers={"kid": key_id})


class GhostAdminAPIClient:
    """
    Client for the Ghost Admin API.

    Attributes:
        api_url: Base URL of the server (e.g., https://blog.example.com)
        admin_key: Admin API Key in ``id:secret`` form
        api_version: Version segment of the Admin API path (default: v5.0)
        params: Query parameters added to every request (tenant addressing
            when talking to the gateway directly)
    """

    def __init__(
        self,
        api_url: str,
        admin_key: Optional[str],
        api_version: Optional[str] = "v5.0",
        timeout: int = 30,
        params: Optional[Dict[str, str]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.api_url = api_url.rstrip('/')
        self.admin_key = admin_key
        self.api_version = api_version
        self.timeout = timeout
        self.params = params or {}
        self.clock = clock
        self.enabled = bool(api_url and admin_key)

        if self.enabled:
            logger.info(f"GhostAdminAPIClient initialized for {self.api_url}")
        else:
            logger.warning("GhostAdminAPIClient disabled - missing api_url or admin_key")

    @classmethod
    def from_config(cls, config: Dict[str, Any], section: str = "admin_api") -> "GhostAdminAPIClient":
        """
        Create a client from the ``ghost.<section>`` configuration block.

        Supported keys: url, key, key_file (Docker secret), version, timeout, params.
        """
        client_config = config.get("ghost", {}).get(section, {})
        admin_key = client_config.get("key")
        key_file = client_config.get("key_file")
        if key_file:
            admin_key = read_secret_file(key_file) or admin_key

        return cls(
            api_url=client_config.get("url", ""),
            admin_key=admin_key,
            api_version=client_config.get("version", "v5.0"),
            timeout=client_config.get("timeout", 30),
            params=client_config.get("params"),
        )

    def _build_url(self, endpoint: str) -> str:
        """Build full Admin API URL for an endpoint."""
        if self.api_version:
            return f"{self.api_url}/ghost/api/{self.api_version}/admin/{endpoint}"
        return f"{self.api_url}/ghost/api/admin/{endpoint}"

    def _headers(self, authenticated: bool) -> Dict[str, str]:
        headers = {"Accept-Version": self.api_version or "v5.0"}
        if authenticated:
            headers["Authorization"] = f"Ghost {sign_admin_token(self.admin_key, self.clock())}"
        return headers

    def request(self, method: str, endpoint: str, authenticated: bool = True,
                params: Optional[Dict[str, Any]] = None, **kwargs) -> Optional[AdminResponse]:
        """
        Make a request to the Admin API.

        Args:
            method: HTTP method
            endpoint: Path below the Admin API root (e.g., "site/")
            authenticated: Whether to send a signed token
            params: Extra query parameters
            **kwargs: Passed to requests (json, files, data)

        Returns:
            AdminResponse (also for 4xx/5xx answers) or None if the server
            could not be reached
        """
        if not self.enabled:
            logger.warning("Ghost Admin API client is not enabled")
            return None

        url = self._build_url(endpoint)
        request_params = dict(self.params)
        request_params.update(params or {})

        try:
            response = requests.request(
                method,
                url,
                params=request_params,
                headers=self._headers(authenticated),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.exceptions.Timeout:
            logger.error(f"Timeout requesting Ghost Admin API: {url}")
            return None
        except requests.exceptions.RequestException as e:
            logger.error(f"Request error from Ghost Admin API: {e}")
            return None

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code >= 400:
            logger.warning(f"Ghost Admin API {method} {endpoint} returned {response.status_code}")
        return AdminResponse(status_code=response.status_code, headers=dict(response.headers), body=body)

    def get_site(self) -> Optional[AdminResponse]:
        return self.request("GET", "site/", authenticated=False)

    def get_config(self) -> Optional[AdminResponse]:
        return self.request("GET", "config/")

    def get_current_user(self) -> Optional[AdminResponse]:
        return self.request("GET", "users/me/")

    def get_token_info(self) -> Optional[AdminResponse]:
        return self.request("GET", "users/me/token/")

    def upload_image(self, data: bytes, filename: str, content_type: str,
                     purpose: str = "image", ref: Optional[str] = None) -> Optional[AdminResponse]:
        form = {"purpose": purpose}
        if ref:
            form["ref"] = ref
        return self.request(
            "POST", "images/upload/", files={"file": (filename, data, content_type)}, data=form
        )

    def create_post(self, title: str, markdown: Optional[str] = None, html: Optional[str] = None,
                    status: str = "draft", source: Optional[str] = None) -> Optional[AdminResponse]:
        post: Dict[str, Any] = {"title": title, "status": status}
        if markdown is not None:
            post["markdown"] = markdown
        if html is not None:
            post["html"] = html
        params = {"source": source} if source else None
        return self.request("POST", "posts/", json={"posts": [post]}, params=params)

    def get_posts(self, limit: int = 15, page: int = 1) -> List[Dict[str, Any]]:
        response = self.request("GET", "posts/", params={"limit": limit, "page": page})
        if response and response.ok and isinstance(response.body, dict):
            return response.body.get("posts", [])
        return []

    def check_health(self) -> bool:
        """Return True if the server answers /site/ successfully."""
        response = self.get_site()
        return bool(response and response.ok)
