#!/usr/bin/env python3
"""Compare Admin API responses of a real Ghost site and of this gateway.

Fetches /site/, /config/ and /users/me/ from both servers with an Admin API
key each and reports keys that one side returns and the other does not,
plus value type mismatches. Clients probe keys, so missing keys matter most.

Usage:
    python scripts/compare_ghost_responses.py \\
        --ghost-url https://demo.ghost.io --ghost-key ID:SECRET \\
        --gateway-url http://localhost:5000 --gateway-key ID:SECRET \\
        --gateway-param subdomain=alice
"""

import argparse
from typing import Any, Dict, List, Optional, Sequence

from ghost.admin_client import GhostAdminAPIClient

ENDPOINTS = {
    "site": GhostAdminAPIClient.get_site,
    "config": GhostAdminAPIClient.get_config,
    "users/me": GhostAdminAPIClient.get_current_user,
}


def diff_shapes(reference: Any, candidate: Any, path: str = "") -> List[str]:
    """List structural differences between two decoded JSON documents."""
    issues: List[str] = []
    if isinstance(reference, dict) and isinstance(candidate, dict):
        for key in sorted(set(reference) | set(candidate)):
            child = f"{path}.{key}" if path else key
            if key not in candidate:
                issues.append(f"missing key: {child}")
            elif key not in reference:
                issues.append(f"extra key: {child}")
            else:
                issues.extend(diff_shapes(reference[key], candidate[key], child))
    elif isinstance(reference, list) and isinstance(candidate, list):
        if reference and candidate:
            issues.extend(diff_shapes(reference[0], candidate[0], f"{path}[0]"))
    elif reference is not None and candidate is not None and type(reference) is not type(candidate):
        issues.append(f"type mismatch at {path}: {type(reference).__name__} vs {type(candidate).__name__}")
    return issues


def _parse_params(values: Optional[Sequence[str]]) -> Dict[str, str]:
    params = {}
    for value in values or []:
        key, _, param = value.partition("=")
        params[key] = param
    return params


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--ghost-url", required=True)
    parser.add_argument("--ghost-key", required=True)
    parser.add_argument("--gateway-url", required=True)
    parser.add_argument("--gateway-key", required=True)
    parser.add_argument("--gateway-param", action="append", help="Query parameter as key=value")
    parser.add_argument("--api-version", default="v5.0")
    args = parser.parse_args(argv)

    ghost = GhostAdminAPIClient(args.ghost_url, args.ghost_key, api_version=args.api_version)
    gateway = GhostAdminAPIClient(
        args.gateway_url, args.gateway_key, api_version=args.api_version,
        params=_parse_params(args.gateway_param),
    )

    failed = False
    for name, fetch in ENDPOINTS.items():
        reference = fetch(ghost)
        candidate = fetch(gateway)
        if reference is None or candidate is None:
            print(f"{name}: could not reach {'Ghost' if reference is None else 'gateway'}")
            failed = True
            continue
        if not reference.ok or not candidate.ok:
            print(f"{name}: status {reference.status_code} (Ghost) vs {candidate.status_code} (gateway)")
            failed = True
            continue

        issues = diff_shapes(reference.body, candidate.body)
        for header in ("X-Ghost-Version", "Content-Version"):
            if header in reference.headers and header not in candidate.headers:
                issues.append(f"missing header: {header}")

        if issues:
            failed = True
            print(f"{name}: {len(issues)} difference(s)")
            for issue in issues:
                print(f"  - {issue}")
        else:
            print(f"{name}: shapes match")

    return 1 if failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
