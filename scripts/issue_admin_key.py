#!/usr/bin/env python3
"""Issue, list and revoke Ghost Admin API credentials for a blog.

The secret half of a credential is printed exactly once, when it is issued.

Usage:
    python scripts/issue_admin_key.py issue --blog-id BLOG --user-id USER --expires-in 30d
    python scripts/issue_admin_key.py create --blog-id BLOG --user-id USER --name "Ulysses"
    python scripts/issue_admin_key.py list --blog-id BLOG
    python scripts/issue_admin_key.py revoke KEY_ID
    python scripts/issue_admin_key.py purge
"""

import argparse
from typing import Optional, Sequence

from auth.keys import DEFAULT_EXPIRY, EXPIRY_PRESETS, AdminKeyStore, parse_expiry
from config import load_config
from storage.database import Database, to_iso


def _store(args: argparse.Namespace) -> AdminKeyStore:
    database_path = args.database or load_config(args.config)["storage"]["database_path"]
    return AdminKeyStore(Database(database_path))


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Manage Ghost Admin API credentials")
    parser.add_argument("--config", default=None, help="Path to config.yml")
    parser.add_argument("--database", default=None, help="Override storage.database_path")
    commands = parser.add_subparsers(dest="command", required=True)

    issue = commands.add_parser("issue", help="Issue a time-boxed id:secret token")
    issue.add_argument("--blog-id", required=True)
    issue.add_argument("--user-id", required=True)
    issue.add_argument("--expires-in", default=DEFAULT_EXPIRY, choices=sorted(EXPIRY_PRESETS))

    create = commands.add_parser("create", help="Create a non-expiring Admin API Key")
    create.add_argument("--blog-id", required=True)
    create.add_argument("--user-id", required=True)
    create.add_argument("--name", default="Admin API Key")
    create.add_argument("--description", default=None)

    listing = commands.add_parser("list", help="List credentials of a blog (without secrets)")
    listing.add_argument("--blog-id", required=True)

    revoke = commands.add_parser("revoke", help="Revoke a credential by key id")
    revoke.add_argument("key_id")

    commands.add_parser("purge", help="Delete expired time-boxed tokens")

    args = parser.parse_args(argv)
    store = _store(args)

    if args.command == "issue":
        issued = store.issue(args.blog_id, args.user_id, parse_expiry(args.expires_in))
        print(f"Admin API key: {issued.token}")
        print(f"Expires at:    {to_iso(issued.expires_at)}")
        print("Store this key now; the secret cannot be shown again.")
        return 0

    if args.command == "create":
        issued = store.create_admin_key(args.blog_id, args.user_id, args.name, args.description)
        print(f"Admin API key: {issued.token}")
        print("Store this key now; the secret cannot be shown again.")
        return 0

    if args.command == "list":
        keys = store.list_keys(args.blog_id)
        if not keys:
            print(f"No credentials for blog {args.blog_id}")
        for key in keys:
            expires = to_iso(key.expires_at) if key.expires_at else "never"
            print(f"{key.key_id}  {key.source:<14} {key.name or '-':<20} expires {expires}")
        return 0

    if args.command == "revoke":
        if store.revoke(args.key_id):
            print(f"Revoked {args.key_id}")
            return 0
        print(f"No credential with key id {args.key_id}")
        return 1

    purged = store.purge_expired()
    print(f"Removed {purged} expired token(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
