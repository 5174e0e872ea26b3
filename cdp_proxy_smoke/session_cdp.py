"""Asyncio CDP connection over the `websockets` client.

One reader task owns the socket and routes every frame:
- command responses resolve the future registered by `send()`
- events go to `on()` subscribers, then to pending `wait_for_event()` calls,
  and are buffered per method (bounded) when nobody has consumed them yet
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import websockets

from .config import ConnectionOptions
from .http_client import http_get, is_success, parse_json_body

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict[str, Any]], None]

EVENT_BUFFER_SIZE = 100


class CdpError(Exception):
    pass


class CdpConnection:
    """Low-level CDP WebSocket connection."""

    def __init__(self, ws: Any, ws_url: str = "", timeout: float = 30.0) -> None:
        self.ws = ws
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1
        self._pending: dict[int, asyncio.Future] = {}
        self._handlers: dict[str, list[EventHandler]] = {}
        self._waiters: dict[str, list[asyncio.Future]] = {}
        self._buffered: dict[str, deque[dict[str, Any]]] = {}
        self._closed = False
        self._close_called = False
        self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    @classmethod
    async def open(cls, ws_url: str, timeout: float = 30.0) -> CdpConnection:
        # Screenshots arrive as one large base64 frame.
        ws = await websockets.connect(ws_url, max_size=None, ping_interval=None, open_timeout=timeout)
        return cls(ws, ws_url, timeout)

    @property
    def closed(self) -> bool:
        return self._closed

    async def _read_loop(self) -> None:
        error: Exception | None = None
        try:
            async for raw in self.ws:
                try:
                    data = json.loads(raw)
                except (TypeError, json.JSONDecodeError):
                    continue
                if not isinstance(data, dict):
                    continue
                if "id" in data:
                    fut = self._pending.pop(data["id"], None)
                    if fut is not None and not fut.done():
                        fut.set_result(data)
                elif isinstance(data.get("method"), str):
                    self._dispatch(data)
        except Exception as exc:  # noqa: BLE001
            error = exc
        finally:
            self._closed = True
            reason = CdpError(f"Connection closed: {error}" if error else "Connection closed")
            for fut in list(self._pending.values()):
                if not fut.done():
                    fut.set_exception(reason)
            self._pending.clear()
            for waiters in self._waiters.values():
                for fut in waiters:
                    if not fut.done():
                        fut.set_exception(reason)

    def _dispatch(self, event: dict[str, Any]) -> None:
        method = event["method"]
        params = event.get("params")
        params = params if isinstance(params, dict) else {}

        handled = False
        for handler in list(self._handlers.get(method, ())):
            try:
                handler(params)
                handled = True
            except Exception:  # noqa: BLE001
                logger.debug("CDP handler for %s failed", method, exc_info=True)

        waiters = [fut for fut in self._waiters.get(method, ()) if not fut.done()]
        if waiters:
            for fut in waiters:
                fut.set_result(params)
            return
        if handled:
            return
        # One bounded buffer per method: request bursts never evict lifecycle events.
        buffer = self._buffered.get(method)
        if buffer is None:
            buffer = self._buffered[method] = deque(maxlen=EVENT_BUFFER_SIZE)
        buffer.append(params)

    def on(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to an event; returns a callable that removes the subscription."""
        self._handlers.setdefault(event_name, []).append(handler)

        def off() -> None:
            handlers = self._handlers.get(event_name)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return off

    def handler_count(self, event_name: str) -> int:
        return len(self._handlers.get(event_name, ()))

    def pop_event(self, event_name: str) -> dict[str, Any] | None:
        """Pop the oldest buffered params for the given event name."""
        buffer = self._buffered.get(event_name)
        if not buffer:
            return None
        return buffer.popleft()

    def buffered_count(self, event_name: str) -> int:
        return len(self._buffered.get(event_name, ()))

    def discard_events(self, *event_names: str) -> None:
        for name in event_names:
            self._buffered.pop(name, None)

    async def wait_for_event(self, event_name: str, timeout: float | None = 10.0) -> dict[str, Any] | None:
        """Wait for an event; None on timeout."""
        queued = self.pop_event(event_name)
        if queued is not None:
            return queued
        if self._closed:
            raise CdpError("Connection is closed")

        fut = asyncio.get_running_loop().create_future()
        waiters = self._waiters.setdefault(event_name, [])
        waiters.append(fut)
        try:
            return await asyncio.wait_for(fut, timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            if fut in waiters:
                waiters.remove(fut)

    async def send(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Send CDP command and wait for response."""
        if self._closed:
            raise CdpError("Connection is closed")
        msg_id = self._next_id
        self._next_id += 1

        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params

        fut = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = fut
        try:
            await self.ws.send(json.dumps(msg))
            data = await asyncio.wait_for(fut, self.timeout)
        except asyncio.TimeoutError as exc:
            raise CdpError(f"{method} timed out after {self.timeout}s") from exc
        except CdpError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise CdpError(f"{method} failed: {exc}") from exc
        finally:
            self._pending.pop(msg_id, None)

        if "error" in data:
            err = data["error"]
            message = err.get("message") if isinstance(err, dict) else err
            raise CdpError(f"{method} failed: {message}")
        result = data.get("result")
        return result if isinstance(result, dict) else {}

    async def close(self) -> None:
        """Close the WebSocket connection (idempotent)."""
        if self._close_called:
            return
        self._close_called = True
        self._closed = True
        try:
            await self.ws.close()
        finally:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass


def rewrite_ws_netloc(ws_url: str, options: ConnectionOptions) -> str:
    """Point a browser-reported WebSocket URL at the proxy address.

    The browser reports its own listen address, which is not reachable from
    outside the proxy.
    """
    parts = urlsplit(ws_url)
    return urlunsplit((parts.scheme, options.netloc, parts.path, parts.query, parts.fragment))


def resolve_page_ws_url(options: ConnectionOptions, *, timeout: float = 5.0, probe: Callable = http_get) -> str:
    """Find the first page target, creating a blank one when none exists."""
    resp = probe(f"{options.http_base}/json/list", timeout)
    if not is_success(resp):
        raise CdpError(f"/json/list returned HTTP {resp.get('status')}")
    targets = parse_json_body(resp)
    for target in targets if isinstance(targets, list) else []:
        if isinstance(target, dict) and target.get("type") == "page" and target.get("webSocketDebuggerUrl"):
            return rewrite_ws_netloc(str(target["webSocketDebuggerUrl"]), options)

    logger.info("No page target found; opening a blank tab")
    resp = probe(f"{options.http_base}/json/new?about:blank", timeout, method="PUT")
    if not is_success(resp):
        raise CdpError(f"/json/new returned HTTP {resp.get('status')}")
    target = parse_json_body(resp)
    ws_url = target.get("webSocketDebuggerUrl") if isinstance(target, dict) else None
    if not ws_url:
        raise CdpError("New target has no webSocketDebuggerUrl")
    return rewrite_ws_netloc(str(ws_url), options)


async def open_page_connection(options: ConnectionOptions, timeout: float = 30.0) -> CdpConnection:
    ws_url = await asyncio.to_thread(resolve_page_ws_url, options)
    logger.debug("Connecting to %s", ws_url)
    return await CdpConnection.open(ws_url, timeout)


__all__ = [
    "CdpConnection",
    "CdpError",
    "open_page_connection",
    "resolve_page_ws_url",
    "rewrite_ws_netloc",
]
