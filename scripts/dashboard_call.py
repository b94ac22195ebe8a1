"""dashboard_call.py

Helper to authenticate against the fleet dashboard API and call a protected
endpoint with the resulting access token.

Key features
------------
* Computes the challenge digest locally from ``FLEET_SECRET`` so the secret
  itself never crosses the wire
* Exchanges the digest for an access token via ``POST /api/{kind}/auth``
* Optionally calls a protected endpoint with the token in the
  ``X-Principal-Email`` / ``Authorization: Bearer`` headers
* Reads ``KEY=VALUE`` pairs from an optional env file
* Logs **header names only** – values remain hidden

Example
-------
    FLEET_EMAIL=a@b.com FLEET_SECRET=s3cret \\
        python scripts/dashboard_call.py --kind admin --call GET /api/admin/users
"""
from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

import requests

from fleet_dashboard.credentials.codec import canonical_timestamp, challenge_digest
from fleet_dashboard.credentials.models import normalize_identifier

# --------------------------------------------------------------------------- #
# Constants
# --------------------------------------------------------------------------- #
DEFAULT_BASE_URL = os.getenv("FLEET_URL", "http://localhost:4000")
DEFAULT_ENV_FILE = Path("scripts/.env.script-helpers")


# --------------------------------------------------------------------------- #
# Environment helpers
# --------------------------------------------------------------------------- #
def _load_env_file(env_path: Path | None) -> None:
    """Load KEY=VALUE pairs from a .env style file into *os.environ*."""
    if env_path is None or not env_path.exists():
        return

    for raw in env_path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip()
        if key and key not in os.environ:
            os.environ[key] = val


def _fail(resp: requests.Response) -> None:
    try:
        err_str = json.dumps(resp.json(), ensure_ascii=False)
    except ValueError:
        err_str = resp.text.strip()
    sys.exit(f"Server returned HTTP {resp.status_code}: {err_str or 'No response body'}")


# --------------------------------------------------------------------------- #
# Auth flow
# --------------------------------------------------------------------------- #
def build_auth_payload(email: str, secret: str, moment: datetime) -> Dict[str, str]:
    """Return the ``/auth`` body for *email* signed at *moment*."""
    identifier = normalize_identifier(email)
    return {
        "email": identifier,
        "date": canonical_timestamp(moment),
        "auth_token": challenge_digest(secret, identifier, moment),
    }


def obtain_access_token(base_url: str, kind: str, email: str, secret: str, timeout: int = 30) -> str:
    payload = build_auth_payload(email, secret, datetime.now(timezone.utc))
    try:
        resp = requests.post(f"{base_url}/api/{kind}/auth", json=payload, timeout=timeout)
    except requests.RequestException as exc:
        sys.exit(f"HTTP error communicating with dashboard server: {exc}")
    if not resp.ok:
        _fail(resp)
    return resp.json()["access_token"]


def main() -> None:  # noqa: D401
    parser = argparse.ArgumentParser(description="Call the fleet dashboard API")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL)
    parser.add_argument("--kind", choices=("admin", "user"), default="admin")
    parser.add_argument("--env-file", type=Path, default=None)
    parser.add_argument(
        "--call",
        nargs=2,
        metavar=("METHOD", "PATH"),
        help="protected endpoint to call after authenticating",
    )
    parser.add_argument("--body", default=None, help="JSON body for --call")
    args = parser.parse_args()

    env_file = (
        args.env_file
        if args.env_file
        else (DEFAULT_ENV_FILE if DEFAULT_ENV_FILE.exists() else None)
    )
    _load_env_file(env_file)

    email = os.getenv("FLEET_EMAIL")
    secret = os.getenv("FLEET_SECRET")
    if not email or not secret:
        sys.exit("FLEET_EMAIL and FLEET_SECRET must be set")

    base_url = args.base_url.rstrip("/")
    token = obtain_access_token(base_url, args.kind, email, secret)

    if not args.call:
        print(json.dumps({"access_token": token}, indent=2))
        return

    body: Any = None
    if args.body:
        try:
            body = json.loads(args.body)
        except json.JSONDecodeError as exc:
            sys.exit(f"Invalid JSON in --body: {exc}")

    headers = {
        "X-Principal-Email": normalize_identifier(email),
        "Authorization": f"Bearer {token}",
    }
    # Safe debug: names only
    print(f"Using headers: {', '.join(sorted(headers.keys()))}", file=sys.stderr)

    method, path = args.call
    try:
        resp = requests.request(
            method.upper(), f"{base_url}{path}", json=body, headers=headers, timeout=30
        )
    except requests.RequestException as exc:
        sys.exit(f"HTTP error communicating with dashboard server: {exc}")

    if not resp.ok:
        _fail(resp)
    if resp.status_code == 204 or not resp.content:
        return
    print(json.dumps(resp.json(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
