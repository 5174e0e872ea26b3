from __future__ import annotations

import base64
import binascii
from collections.abc import Callable
from typing import Any

from .session_cdp import CdpConnection, CdpError

LOAD_EVENT = "Page.loadEventFired"
DOM_CONTENT_EVENT = "Page.domContentEventFired"
REQUEST_STARTED_EVENT = "Network.requestWillBeSent"
RESPONSE_RECEIVED_EVENT = "Network.responseReceived"


class PageSession:
    """
    High-level handle for the page target under test.

    Wraps CdpConnection with the handful of domain calls the smoke test needs.
    """

    def __init__(self, connection: CdpConnection) -> None:
        self.conn = connection
        self._enabled: set[str] = set()

    async def enable_domains(self, *, network: bool = False, page: bool = False, runtime: bool = False) -> None:
        """Enable CDP domains once each, in Network, Page, Runtime order."""
        for name, wanted in (("Network", network), ("Page", page), ("Runtime", runtime)):
            if wanted and name not in self._enabled:
                await self.conn.send(f"{name}.enable")
                self._enabled.add(name)

    @property
    def enabled_domains(self) -> frozenset[str]:
        return frozenset(self._enabled)

    def on(self, event_name: str, handler: Callable[[dict[str, Any]], None]) -> Callable[[], None]:
        return self.conn.on(event_name, handler)

    async def wait_for_event(self, event_name: str, timeout_ms: int | None) -> dict[str, Any] | None:
        timeout = None if timeout_ms is None else timeout_ms / 1000.0
        return await self.conn.wait_for_event(event_name, timeout)

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    async def navigate(self, url: str) -> dict[str, Any]:
        """Start navigation; raises CdpError when the browser reports a failure."""
        # Lifecycle events from an earlier page must not satisfy waits for this one.
        self.conn.discard_events(LOAD_EVENT, DOM_CONTENT_EVENT)
        result = await self.conn.send("Page.navigate", {"url": url})
        error_text = result.get("errorText")
        if error_text:
            raise CdpError(f"Navigation to {url} failed: {error_text}")
        return result

    # ─────────────────────────────────────────────────────────────────────────
    # JavaScript
    # ─────────────────────────────────────────────────────────────────────────

    async def eval_js(self, expression: str) -> Any:
        result = await self.conn.send(
            "Runtime.evaluate",
            {"expression": expression, "returnByValue": True, "awaitPromise": True},
        )
        if "exceptionDetails" in result:
            details = result["exceptionDetails"]
            text = details.get("text") if isinstance(details, dict) else details
            raise CdpError(f"JS error: {text}")
        value = result.get("result", {})
        if value.get("type") == "undefined" or value.get("subtype") == "null":
            return None
        return value.get("value")

    # ─────────────────────────────────────────────────────────────────────────
    # Capture
    # ─────────────────────────────────────────────────────────────────────────

    async def capture_screenshot(self, fmt: str = "png", quality: int | None = None) -> bytes:
        params: dict[str, Any] = {"format": fmt}
        # quality only applies to lossy formats.
        if quality is not None and fmt != "png":
            params["quality"] = int(quality)
        result = await self.conn.send("Page.captureScreenshot", params)
        data = result.get("data")
        if not isinstance(data, str) or not data:
            raise CdpError("Page.captureScreenshot returned no data")
        try:
            return base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise CdpError(f"Screenshot payload is not valid base64: {exc}") from exc
