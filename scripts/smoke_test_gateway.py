#!/usr/bin/env python3
"""Walk a running gateway through the calls a publishing client makes.

Checks /site/, introspects the key with /users/me/token/, uploads a 1x1 PNG,
creates a draft post that embeds it (Markdown rendered with ?source=html) and
finds the draft again in /posts/. Leaves the draft behind for inspection.

Usage:
    python scripts/smoke_test_gateway.py \\
        --url http://localhost:5000 --key ID:SECRET --param subdomain=alice
"""

import argparse
import base64
from typing import Dict, Optional, Sequence

from ghost.admin_client import GhostAdminAPIClient

PIXEL_PNG = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR42mNkYAAAAAYAAjCB0C8AAAAASUVORK5CYII="
)


def _parse_params(values: Optional[Sequence[str]]) -> Dict[str, str]:
    params = {}
    for value in values or []:
        key, _, param = value.partition("=")
        params[key] = param
    return params


def run(client: GhostAdminAPIClient, title: str) -> bool:
    if not client.check_health():
        print("site: gateway did not answer /site/")
        return False
    print("site: ok")

    token = client.get_token_info()
    if token is None or not token.ok:
        print(f"token: rejected ({token.status_code if token else 'unreachable'})")
        return False
    print(f"token: user {token.body.get('user_id')} on blog {token.body.get('blog_id')}")

    upload = client.upload_image(PIXEL_PNG, "smoke-test.png", "image/png", ref="smoke-test.png")
    if upload is None or not upload.ok:
        print(f"upload: failed ({upload.status_code if upload else 'unreachable'})")
        return False
    image_url = upload.body["images"][0]["url"]
    print(f"upload: {image_url}")

    created = client.create_post(title, markdown=f"![Smoke test]({image_url})", source="html")
    if created is None or not created.ok:
        print(f"post: failed ({created.status_code if created else 'unreachable'})")
        return False
    post = created.body["posts"][0]
    if image_url not in (post.get("html") or ""):
        print("post: rendered html does not reference the uploaded image")
        return False
    print(f"post: created draft {post['id']}")

    if post["id"] not in {listed.get("id") for listed in client.get_posts(limit=15)}:
        print("posts: new draft missing from the first page")
        return False
    print("posts: draft listed")
    return True


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--url", required=True)
    parser.add_argument("--key", required=True, help="Admin API key as ID:SECRET")
    parser.add_argument("--param", action="append", help="Query parameter as key=value")
    parser.add_argument("--api-version", default="v5.0")
    parser.add_argument("--title", default="Gateway smoke test")
    args = parser.parse_args(argv)

    client = GhostAdminAPIClient(args.url, args.key, api_version=args.api_version,
                                 params=_parse_params(args.param))
    return 0 if run(client, args.title) else 1


if __name__ == "__main__":
    raise SystemExit(main())
