"""
Client side of the remote sync endpoint (a PostgREST-style `/rest/v1/{table}`
API). Every call is an upsert keyed by the record id, so replaying a push is
harmless.
"""

import json
import urllib.error
import urllib.request
from typing import Tuple


def rest_url(base_url: str, table: str) -> str:
    return f"{(base_url or '').rstrip('/')}/rest/v1/{table}"


def upsert_headers(api_key: str) -> dict:
    return {
        "apikey": api_key,
        "Authorization": f"Bearer {api_key}",
        # merge-duplicates turns the POST into insert-or-update on the primary key.
        "Prefer": "resolution=merge-duplicates",
    }


def http_post_json(url: str, payload, headers: dict, timeout_s: float = 15.0) -> Tuple[int, str]:
    """
    POST `payload` as JSON. Returns (status, body) for any HTTP answer,
    including non-2xx; transport errors (URLError, timeouts) propagate.
    """
    data = json.dumps(payload, default=str).encode("utf-8")
    req = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json", **(headers or {})},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=max(0.5, float(timeout_s or 15.0))) as resp:
            body = resp.read().decode("utf-8", errors="replace") if resp else ""
            return int(resp.status), body
    except urllib.error.HTTPError as ex:
        # Remote answered with a non-2xx status. Capture the body for the log.
        try:
            body = ex.read().decode("utf-8", errors="replace")
        except OSError:
            body = ""
        return int(ex.code), body
