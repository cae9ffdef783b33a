"""
Command line liveness probe for a running coordinator.

Example::

    rendezvous-probe --url http://127.0.0.1:3001
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Optional

import httpx

DEFAULT_URL = "http://127.0.0.1:3001"


class ProbeError(RuntimeError):
    """Raised when the coordinator cannot be reached or answers unexpectedly."""


def fetch_health(base_url: str = DEFAULT_URL, *, timeout: float = 5.0, client: Optional[httpx.Client] = None) -> dict:
    url = base_url.rstrip("/") + "/health"
    owns_client = client is None
    http = client or httpx.Client(timeout=httpx.Timeout(timeout, connect=min(timeout, 2.0)))
    try:
        response = http.get(url)
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPError as exc:
        raise ProbeError(f"health check failed: {exc}") from exc
    except ValueError as exc:
        raise ProbeError("health endpoint returned invalid JSON") from exc
    finally:
        if owns_client:
            http.close()
    if not isinstance(payload, dict) or payload.get("status") != "ok":
        raise ProbeError(f"unexpected health payload: {payload!r}")
    return payload


def run(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Query a rendezvous coordinator's health endpoint")
    parser.add_argument("--url", default=DEFAULT_URL, help="base URL of the coordinator")
    parser.add_argument("--timeout", type=float, default=5.0, help="request timeout in seconds")
    args = parser.parse_args(argv)

    try:
        payload = fetch_health(args.url, timeout=args.timeout)
    except ProbeError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    print(json.dumps(payload, sort_keys=True))
    return 0


if __name__ == "__main__":
    sys.exit(run())
