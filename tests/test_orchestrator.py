from __future__ import annotations

import asyncio
import base64
import json
from pathlib import Path
from typing import Any

import pytest

from cdp_proxy_smoke.config import ConnectionOptions, DetectorTimings, LoadDetectionConfig, SmokeConfig

PNG_SIGNATURE = bytes([0x89, 0x50, 0x4E, 0x47, 0x0D, 0x0A, 0x1A, 0x0A])
PNG_BYTES = PNG_SIGNATURE + b"\x00\x00\x00\rIHDR" + b"\x00" * 4096

FAST = DetectorTimings(dom_grace=2, idle_start=5, idle_poll=2, content_delay=8, fallback_delay=15)
CFG = LoadDetectionConfig(load_timeout=60, dom_timeout=15, network_idle_timeout=20, max_network_idle_time=2)

URLS = ["https://www.example.com", "https://example.com", "data:text/html,<h1>hi</h1>"]


class DummyConn:
    """Duck-typed CdpConnection driven by a small script."""

    def __init__(
        self,
        *,
        events: tuple[str, ...] = ("Page.loadEventFired", "Page.domContentEventFired"),
        busy: bool = False,
        content: bool = True,
        failing_urls: tuple[str, ...] = (),
        capture_error: str | None = None,
        close_error: Exception | None = None,
    ) -> None:
        self.events = set(events)
        self.busy = busy
        self.content = content
        self.failing_urls = set(failing_urls)
        self.capture_error = capture_error
        self.close_error = close_error
        self.calls: list[tuple[str, dict[str, Any] | None]] = []
        self.handlers: dict[str, list] = {}
        self.close_calls = 0

    def on(self, event_name: str, handler) -> Any:
        self.handlers.setdefault(event_name, []).append(handler)
        if self.busy and event_name == "Network.requestWillBeSent":
            handler({"requestId": "ws-stream"})
        return lambda: self.handlers[event_name].remove(handler)

    def discard_events(self, *event_names: str) -> None:
        pass

    async def wait_for_event(self, event_name: str, timeout: float | None = 10.0) -> dict[str, Any] | None:
        if event_name in self.events:
            return {}
        await asyncio.sleep(timeout or 0)
        return None

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        from cdp_proxy_smoke.session_cdp import CdpError

        self.calls.append((method, params))
        if method == "Page.navigate":
            url = (params or {}).get("url")
            if url in self.failing_urls:
                return {"frameId": "F", "errorText": "net::ERR_CONNECTION_REFUSED"}
            return {"frameId": "F", "loaderId": "L"}
        if method == "Runtime.evaluate":
            return {"result": {"type": "boolean", "value": self.content}}
        if method == "Page.captureScreenshot":
            if self.capture_error:
                raise CdpError(self.capture_error)
            return {"data": base64.b64encode(PNG_BYTES).decode("ascii")}
        return {}

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error

    def methods(self) -> list[str]:
        return [m for m, _ in self.calls]

    def navigated(self) -> list[str]:
        return [p["url"] for m, p in self.calls if m == "Page.navigate" and p]


class ScriptedEndpoints:
    def __init__(self, *, health_status: int = 200, version_status: int = 200) -> None:
        self.health_status = health_status
        self.version_status = version_status
        self.urls: list[str] = []

    def __call__(self, url: str, timeout: float, **_kwargs: Any) -> dict[str, Any]:
        self.urls.append(url)
        if url.endswith("/health"):
            return {"status": self.health_status, "body": "ok"}
        if url.endswith("/json/version"):
            return {"status": self.version_status, "body": json.dumps({"Browser": "HeadlessChrome/120.0"})}
        raise AssertionError(f"unexpected probe {url}")


def _config(tmp_path: Path, **overrides: Any) -> SmokeConfig:
    values: dict[str, Any] = {
        "connection": ConnectionOptions("proxy", 48333),
        "health_url": "http://proxy/health",
        "urls": list(URLS),
        "load": CFG,
        "timings": FAST,
        "render_settle": 0,
        "output_dir": str(tmp_path),
        "ready_timeout": 2000,
        "connect_attempts": 1,
    }
    values.update(overrides)
    return SmokeConfig(**values)


def _orchestrator(config: SmokeConfig, conn: DummyConn | None = None, probe: Any = None, opener: Any = None):
    from cdp_proxy_smoke.orchestrator import NavigationOrchestrator

    async def default_opener(_options: ConnectionOptions) -> DummyConn:
        assert conn is not None
        return conn

    async def no_sleep(_seconds: float) -> None:
        return None

    return NavigationOrchestrator(
        config,
        probe=probe or ScriptedEndpoints(),
        opener=opener or default_opener,
        sleep=no_sleep,
    )


def _run(config: SmokeConfig, conn: DummyConn | None = None, probe: Any = None, opener: Any = None):
    return asyncio.run(_orchestrator(config, conn, probe, opener).run())


def test_happy_path_writes_png(tmp_path: Path) -> None:
    from cdp_proxy_smoke.load_detector import LoadMethod, LoadResult
    from cdp_proxy_smoke.orchestrator import Stage

    conn = DummyConn()
    report = _run(_config(tmp_path), conn)

    assert report.load == LoadResult(True, LoadMethod.LOAD_EVENT)
    assert report.url == URLS[0]
    assert report.version["Browser"] == "HeadlessChrome/120.0"

    shot = tmp_path / "screenshot.png"
    assert report.screenshot == shot
    data = shot.read_bytes()
    assert data[:8] == PNG_SIGNATURE
    assert len(data) > 1024

    assert conn.methods()[:3] == ["Network.enable", "Page.enable", "Runtime.enable"]
    assert conn.navigated() == [URLS[0]]
    assert conn.close_calls == 1
    assert sum(len(v) for v in conn.handlers.values()) == 0
    assert report.stages == [
        Stage.HEALTH_CHECK,
        Stage.READINESS_WAIT,
        Stage.CONNECT,
        Stage.ENABLE_DOMAINS,
        Stage.NAVIGATE,
        Stage.DETECT,
        Stage.RENDER_SETTLE,
        Stage.CAPTURE,
        Stage.CLOSED,
    ]


def test_health_failure_stops_before_connect(tmp_path: Path) -> None:
    from cdp_proxy_smoke.errors import HealthCheckFailure
    from cdp_proxy_smoke.orchestrator import Stage

    probe = ScriptedEndpoints(health_status=503)
    opened: list[ConnectionOptions] = []

    async def opener(options: ConnectionOptions) -> DummyConn:
        opened.append(options)
        return DummyConn()

    orchestrator = _orchestrator(_config(tmp_path), probe=probe, opener=opener)
    with pytest.raises(HealthCheckFailure):
        asyncio.run(orchestrator.run())

    assert probe.urls == ["http://proxy/health"]
    assert opened == []
    assert not (tmp_path / "screenshot.png").exists()
    assert orchestrator.report.stages == [Stage.HEALTH_CHECK, Stage.FAILED]


def test_dry_run_stops_after_enabling_domains(tmp_path: Path) -> None:
    from cdp_proxy_smoke.orchestrator import Stage

    conn = DummyConn()
    report = _run(_config(tmp_path, dry_run=True), conn)

    assert report.dry_run
    assert report.load is None
    assert conn.methods() == ["Network.enable", "Page.enable", "Runtime.enable"]
    assert conn.close_calls == 1
    assert list(tmp_path.iterdir()) == []
    assert report.stages[-2:] == [Stage.ENABLE_DOMAINS, Stage.CLOSED]


def test_fixed_delay_is_good_enough(tmp_path: Path) -> None:
    from cdp_proxy_smoke.load_detector import LoadMethod, LoadResult

    conn = DummyConn(events=(), busy=True, content=False)
    report = _run(_config(tmp_path), conn)

    assert report.load == LoadResult(False, LoadMethod.FIXED_DELAY)
    assert conn.navigated() == [URLS[0]]
    assert (tmp_path / "screenshot.png").read_bytes()[:8] == PNG_SIGNATURE


def test_navigation_error_advances_to_next_candidate(tmp_path: Path) -> None:
    conn = DummyConn(failing_urls=(URLS[0],))
    report = _run(_config(tmp_path), conn)

    assert conn.navigated() == URLS[:2]
    assert report.url == URLS[1]
    assert (tmp_path / "screenshot.png").exists()


def test_navigation_error_on_last_candidate_is_fatal(tmp_path: Path) -> None:
    from cdp_proxy_smoke.errors import NavigationError
    from cdp_proxy_smoke.orchestrator import Stage

    conn = DummyConn(failing_urls=tuple(URLS))
    orchestrator = _orchestrator(_config(tmp_path), conn)
    with pytest.raises(NavigationError) as info:
        asyncio.run(orchestrator.run())

    assert conn.navigated() == URLS
    assert info.value.details["url"] == URLS[-1]
    assert conn.close_calls == 1
    assert not (tmp_path / "screenshot.png").exists()
    assert orchestrator.report.stage is Stage.FAILED


def test_capture_failure_is_fatal(tmp_path: Path) -> None:
    from cdp_proxy_smoke.errors import CaptureError

    conn = DummyConn(capture_error="Unable to capture screenshot")
    with pytest.raises(CaptureError):
        _run(_config(tmp_path), conn)
    assert conn.close_calls == 1
    assert not (tmp_path / "screenshot.png").exists()


def test_close_failure_does_not_fail_the_run(tmp_path: Path) -> None:
    conn = DummyConn(close_error=RuntimeError("socket already gone"))
    report = _run(_config(tmp_path), conn)
    assert report.screenshot is not None
    assert conn.close_calls == 1


def test_connection_exhausted_runs_diagnostic_probes(tmp_path: Path) -> None:
    from cdp_proxy_smoke.errors import ConnectionExhaustedError

    probe = ScriptedEndpoints()

    async def opener(_options: ConnectionOptions) -> DummyConn:
        raise ConnectionRefusedError("proxy refused upgrade")

    with pytest.raises(ConnectionExhaustedError):
        _run(_config(tmp_path, connect_attempts=2), probe=probe, opener=opener)

    # health + readiness, then one diagnostic pass over both endpoints
    assert probe.urls == [
        "http://proxy/health",
        "http://proxy:48333/json/version",
        "http://proxy/health",
        "http://proxy:48333/json/version",
    ]


def test_diagnostic_probe_failures_are_swallowed(tmp_path: Path) -> None:
    from cdp_proxy_smoke.errors import ReadinessTimeoutError

    calls: list[str] = []

    def probe(url: str, timeout: float, **_kwargs: Any) -> dict[str, Any]:  # noqa: ARG001
        calls.append(url)
        if url.endswith("/health") and len(calls) == 1:
            return {"status": 200, "body": "ok"}
        raise OSError("connection reset")

    with pytest.raises(ReadinessTimeoutError):
        _run(_config(tmp_path, ready_timeout=0), probe=probe)

    assert calls == ["http://proxy/health", "http://proxy/health", "http://proxy:48333/json/version"]
