from __future__ import annotations

import json
import urllib.parse
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

MAX_BODY_BYTES = 1_000_000


class HttpClientError(Exception):
    pass


def _build_request(url: str, method: str = "GET") -> Request:
    return Request(url, headers={"User-Agent": "cdp-proxy-smoke/1.0"}, method=method)


def http_get(url: str, timeout: float, *, method: str = "GET") -> dict[str, Any]:
    """Fetch a URL and return status, headers and decoded body.

    Non-2xx responses are returned (not raised) so callers decide what
    counts as success; transport failures raise HttpClientError.
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise HttpClientError("Only http/https are supported")
    req = _build_request(url, method)
    try:
        with urlopen(req, timeout=timeout) as resp:
            body = resp.read(MAX_BODY_BYTES)
            return {
                "status": resp.status,
                "headers": dict(resp.headers),
                "body": body.decode(errors="replace"),
            }
    except HTTPError as exc:
        try:
            body = exc.read(MAX_BODY_BYTES)
        except (OSError, ValueError):
            body = b""
        finally:
            exc.close()
        return {"status": exc.code, "headers": dict(exc.headers or {}), "body": body.decode(errors="replace")}
    except (TimeoutError, URLError, OSError) as exc:
        raise HttpClientError(str(exc)) from exc


def is_success(response: dict[str, Any]) -> bool:
    status = response.get("status")
    return isinstance(status, int) and 200 <= status < 300


def parse_json_body(response: dict[str, Any]) -> Any:
    try:
        return json.loads(response.get("body") or "")
    except json.JSONDecodeError as exc:
        raise HttpClientError(f"Invalid JSON body: {exc}") from exc
