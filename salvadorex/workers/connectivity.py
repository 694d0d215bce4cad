import urllib.request

DEFAULT_PROBE_URL = "https://www.google.com/generate_204"


def check_internet(url: str = DEFAULT_PROBE_URL, timeout_s: float = 5.0) -> bool:
    """
    True when `url` answers 2xx within the timeout. Body content is ignored.

    Never raises: DNS failures, refused connections, timeouts, TLS errors and
    non-2xx answers (urllib raises HTTPError for those) all mean offline.
    """
    req = urllib.request.Request(url, headers={"User-Agent": "salvadorex-pos/connectivity"}, method="GET")
    try:
        with urllib.request.urlopen(req, timeout=max(0.2, float(timeout_s or 5.0))) as resp:
            status = getattr(resp, "status", None) or resp.getcode()
            return 200 <= int(status) < 300
    except Exception:
        return False
