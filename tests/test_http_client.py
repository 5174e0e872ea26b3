from __future__ import annotations

import json
import threading
from collections.abc import Generator
from contextlib import contextmanager
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path

import pytest


class _Handler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802
        if self.path == "/health":
            self._reply(200, b"healthy\n", "text/plain")
        elif self.path == "/json/version":
            self._reply(200, json.dumps({"Browser": "HeadlessChrome/120.0"}).encode(), "application/json")
        else:
            self._reply(503, b"upstream down", "text/plain")

    def do_PUT(self) -> None:  # noqa: N802
        self._reply(200, json.dumps({"method": "PUT", "path": self.path}).encode(), "application/json")

    def _reply(self, status: int, body: bytes, ctype: str) -> None:
        self.send_response(status)
        self.send_header("Content-Type", ctype)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, *args) -> None:  # noqa: ANN002
        return


@contextmanager
def _server() -> Generator[str, None, None]:
    httpd = HTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{httpd.server_address[1]}"
    finally:
        httpd.shutdown()
        httpd.server_close()


def test_http_get_success_and_json() -> None:
    from cdp_proxy_smoke.http_client import http_get, is_success, parse_json_body

    with _server() as base:
        resp = http_get(f"{base}/json/version", 2.0)
    assert resp["status"] == 200
    assert is_success(resp)
    assert parse_json_body(resp) == {"Browser": "HeadlessChrome/120.0"}


def test_http_get_returns_error_status() -> None:
    from cdp_proxy_smoke.http_client import http_get, is_success

    with _server() as base:
        resp = http_get(f"{base}/missing", 2.0)
    assert resp["status"] == 503
    assert resp["body"] == "upstream down"
    assert not is_success(resp)


def test_http_get_put_method() -> None:
    from cdp_proxy_smoke.http_client import http_get, parse_json_body

    with _server() as base:
        resp = http_get(f"{base}/json/new?about:blank", 2.0, method="PUT")
    assert parse_json_body(resp) == {"method": "PUT", "path": "/json/new?about:blank"}


def test_http_get_connection_refused() -> None:
    import socket

    from cdp_proxy_smoke.http_client import HttpClientError, http_get

    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    with pytest.raises(HttpClientError):
        http_get(f"http://127.0.0.1:{port}/health", 1.0)


def test_http_get_rejects_other_schemes() -> None:
    from cdp_proxy_smoke.http_client import HttpClientError, http_get

    with pytest.raises(HttpClientError):
        http_get("file:///etc/hosts", 1.0)


def test_parse_json_body_error() -> None:
    from cdp_proxy_smoke.http_client import HttpClientError, parse_json_body

    with pytest.raises(HttpClientError):
        parse_json_body({"status": 200, "body": "<html>"})


def test_save_screenshot_and_sniff(tmp_path: Path) -> None:
    from cdp_proxy_smoke.artifacts import save_screenshot, sniff_image_format

    png = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
    jpeg = b"\xff\xd8\xff\xe0" + b"\x00" * 32
    webp = b"RIFF\x24\x00\x00\x00WEBPVP8 " + b"\x00" * 32

    assert sniff_image_format(png) == "png"
    assert sniff_image_format(jpeg) == "jpeg"
    assert sniff_image_format(webp) == "webp"
    assert sniff_image_format(b"GIF89a") is None

    path = save_screenshot(jpeg, "jpeg", tmp_path / "out")
    assert path == tmp_path / "out" / "screenshot.jpeg"
    assert path.read_bytes() == jpeg
