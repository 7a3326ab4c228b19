"""
Tests for the operator scripts in scripts/.

The scripts import the gateway packages from src/, so they are loaded from
their file paths and their main() is called directly.
"""
import importlib.util
import io
from pathlib import Path
from unittest.mock import patch

import pytest

from auth.keys import AdminKeyStore
from ghost.admin_client import AdminResponse
from storage.database import Database

SCRIPTS_DIR = Path(__file__).parent.parent / "scripts"


def load_script(name):
    spec = importlib.util.spec_from_file_location(name, SCRIPTS_DIR / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def issue_admin_key():
    return load_script("issue_admin_key")


@pytest.fixture
def compare_ghost_responses():
    return load_script("compare_ghost_responses")


def test_issue_prints_secret_once(issue_admin_key, tmp_path, capsys):
    db_path = str(tmp_path / "keys.db")

    assert issue_admin_key.main(["--database", db_path, "issue", "--blog-id", "b1",
                                 "--user-id", "u1", "--expires-in", "7d"]) == 0

    output = capsys.readouterr().out
    token = output.split("Admin API key: ")[1].split()[0]
    assert AdminKeyStore(Database(db_path)).find_raw_token(token) is not None

    assert issue_admin_key.main(["--database", db_path, "list", "--blog-id", "b1"]) == 0
    listing = capsys.readouterr().out
    key_id, secret = token.split(":")
    assert key_id in listing
    assert secret not in listing, "Listing must never show secrets"


def test_create_and_revoke(issue_admin_key, tmp_path, capsys):
    db_path = str(tmp_path / "keys.db")
    issue_admin_key.main(["--database", db_path, "create", "--blog-id", "b1", "--user-id", "u1",
                          "--name", "Ulysses"])
    key_id = capsys.readouterr().out.split("Admin API key: ")[1].split(":")[0]

    assert issue_admin_key.main(["--database", db_path, "revoke", key_id]) == 0
    assert issue_admin_key.main(["--database", db_path, "revoke", key_id]) == 1
    assert "No credential" in capsys.readouterr().out


def test_purge(issue_admin_key, tmp_path, capsys):
    assert issue_admin_key.main(["--database", str(tmp_path / "keys.db"), "purge"]) == 0
    assert "Removed 0 expired token(s)" in capsys.readouterr().out


def test_diff_shapes(compare_ghost_responses):
    reference = {"site": {"title": "A", "logo": None, "labs": {"x": True}}, "list": [{"a": 1}]}
    candidate = {"site": {"title": "B", "logo": "u", "extra": 1, "labs": {"x": "yes"}}, "list": [{}]}

    issues = compare_ghost_responses.diff_shapes(reference, candidate)

    assert issues == [
        "missing key: list[0].a",
        "extra key: site.extra",
        "type mismatch at site.labs.x: bool vs str",
    ]


def test_compare_reports_matching_shapes(compare_ghost_responses, capsys):
    body = {"site": {"title": "A"}}
    response = AdminResponse(200, {"X-Ghost-Version": "5.120.3"}, body)

    with patch.object(compare_ghost_responses.GhostAdminAPIClient, "request", return_value=response):
        result = compare_ghost_responses.main([
            "--ghost-url", "https://demo.ghost.io", "--ghost-key", f"{'a' * 24}:{'b' * 64}",
            "--gateway-url", "http://localhost:5000", "--gateway-key", f"{'c' * 24}:{'d' * 64}",
            "--gateway-param", "subdomain=alice",
        ])

    assert result == 0
    assert capsys.readouterr().out.count("shapes match") == 3


def test_compare_reports_unreachable_gateway(compare_ghost_responses, capsys):
    responses = [AdminResponse(200, {}, {}), None] * 3

    with patch.object(compare_ghost_responses.GhostAdminAPIClient, "request", side_effect=responses):
        result = compare_ghost_responses.main([
            "--ghost-url", "https://demo.ghost.io", "--ghost-key", "k:s",
            "--gateway-url", "http://localhost:5000", "--gateway-key", "k:s",
        ])

    assert result == 1
    assert "could not reach gateway" in capsys.readouterr().out


@pytest.fixture
def smoke_test_gateway():
    return load_script("smoke_test_gateway")


class FlaskBackedResponse:
    """Just enough of requests.Response for GhostAdminAPIClient."""

    def __init__(self, response):
        self.status_code = response.status_code
        self.headers = dict(response.headers)
        self._body = response.get_json(silent=True)

    def json(self):
        if self._body is None:
            raise ValueError("No JSON")
        return self._body


def route_requests_to(flask_client, base_url):
    def fake_request(method, url, params=None, headers=None, timeout=None, json=None, files=None, data=None):
        form = dict(data or {})
        for field, (filename, content, content_type) in (files or {}).items():
            form[field] = (io.BytesIO(content), filename, content_type)
        response = flask_client.open(
            url[len(base_url):], method=method, headers=headers, json=json,
            query_string={key: str(value) for key, value in (params or {}).items()},
            data=form or None,
        )
        return FlaskBackedResponse(response)

    return fake_request


def test_smoke_test_against_gateway(smoke_test_gateway, client, blog, admin_key, capsys):
    base_url = "http://gateway.test"

    with patch("ghost.admin_client.requests.request", side_effect=route_requests_to(client, base_url)):
        result = smoke_test_gateway.main(["--url", base_url, "--key", admin_key.token,
                                          "--param", "subdomain=alice", "--title", "Smoke"])

    output = capsys.readouterr().out
    assert result == 0, output
    assert "upload: https://cdn.example.com/content/images/" in output
    assert "posts: draft listed" in output


def test_smoke_test_stops_on_rejected_key(smoke_test_gateway, client, blog, capsys):
    base_url = "http://gateway.test"

    with patch("ghost.admin_client.requests.request", side_effect=route_requests_to(client, base_url)):
        result = smoke_test_gateway.main(["--url", base_url, "--key", f"{'a' * 24}:{'b' * 64}",
                                          "--param", "subdomain=alice"])

    assert result == 1
    output = capsys.readouterr().out
    assert "site: ok" in output
    assert "token: rejected (401)" in output
