"""
Multi-strategy page load detection.

No single "page loaded" signal holds across sites: some never fire a clean
load event, some keep background requests open forever, and data: pages have
no network at all. Four strategies run concurrently and each settles into an
independent Outcome:

- load event:           Page.loadEventFired within load_timeout
- DOM ready:            Page.domContentEventFired after a grace delay
- network idle:         no pending requests for max_network_idle_time
- content verification: readyState complete and a non-empty <body>

All four are awaited. Among positive outcomes the reported method follows
METHOD_PRIORITY; with none positive the detector sleeps the fallback delay
and reports fixedDelay. detect_load() never raises.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Generator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .browser_session import DOM_CONTENT_EVENT, LOAD_EVENT, REQUEST_STARTED_EVENT, RESPONSE_RECEIVED_EVENT
from .config import DetectorTimings, LoadDetectionConfig

logger = logging.getLogger(__name__)

CONTENT_CHECK_JS = (
    "document.readyState === 'complete' && !!document.body && document.body.children.length > 0"
)


class LoadMethod(str, Enum):
    LOAD_EVENT = "loadEventFired"
    DOM_CONTENT = "domContentLoaded"
    NETWORK_IDLE = "networkIdle"
    CONTENT = "contentVerification"
    FIXED_DELAY = "fixedDelay"


METHOD_PRIORITY: tuple[LoadMethod, ...] = (
    LoadMethod.LOAD_EVENT,
    LoadMethod.DOM_CONTENT,
    LoadMethod.NETWORK_IDLE,
    LoadMethod.CONTENT,
)


@dataclass(frozen=True)
class Outcome:
    strategy: str
    method: LoadMethod | None = None
    detail: str = ""

    @property
    def positive(self) -> bool:
        return self.method is not None


@dataclass(frozen=True)
class LoadResult:
    success: bool
    method: LoadMethod
    outcomes: tuple[Outcome, ...] = field(default=(), compare=False)
    elapsed_ms: float = field(default=0.0, compare=False)

    @property
    def accepted(self) -> bool:
        """Good enough to screenshot: a confirmed load or the fixed-delay fallback."""
        return self.success or self.method is LoadMethod.FIXED_DELAY


class NetworkActivityTracker:
    """Pending request count and last activity time, fed by CDP network events."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self.pending_request_count = 0
        self.last_activity = clock()

    def on_request_started(self, _params: dict[str, Any]) -> None:
        self.pending_request_count += 1
        self.last_activity = self._clock()

    def on_response_received(self, _params: dict[str, Any]) -> None:
        # Cached responses can arrive without a matching request event.
        self.pending_request_count = max(0, self.pending_request_count - 1)
        self.last_activity = self._clock()

    def is_idle(self, quiet_ms: int) -> bool:
        return self.pending_request_count == 0 and (self._clock() - self.last_activity) * 1000 > quiet_ms


@contextmanager
def track_network(page: Any, clock: Callable[[], float] = time.monotonic) -> Generator[NetworkActivityTracker, None, None]:
    """Register the tracker's callbacks for the duration of the block."""
    tracker = NetworkActivityTracker(clock)
    offs: list[Callable[[], None]] = []
    for event_name, handler in (
        (REQUEST_STARTED_EVENT, tracker.on_request_started),
        (RESPONSE_RECEIVED_EVENT, tracker.on_response_received),
    ):
        try:
            offs.append(page.on(event_name, handler))
        except Exception:  # noqa: BLE001
            logger.warning("Could not subscribe to %s; network idle detection is blind", event_name, exc_info=True)
    try:
        yield tracker
    finally:
        for off in offs:
            try:
                off()
            except Exception:  # noqa: BLE001
                logger.warning("Failed to remove network listener", exc_info=True)


async def _wait_load_event(page: Any, config: LoadDetectionConfig) -> Outcome:
    if await page.wait_for_event(LOAD_EVENT, config.load_timeout) is None:
        return Outcome("loadEvent", detail=f"no load event within {config.load_timeout}ms")
    return Outcome("loadEvent", LoadMethod.LOAD_EVENT)


async def _wait_dom_ready(page: Any, config: LoadDetectionConfig, timings: DetectorTimings) -> Outcome:
    await asyncio.sleep(timings.dom_grace / 1000.0)
    if await page.wait_for_event(DOM_CONTENT_EVENT, config.dom_timeout) is None:
        return Outcome("domReady", detail=f"no DOMContentLoaded within {config.dom_timeout}ms")
    return Outcome("domReady", LoadMethod.DOM_CONTENT)


async def _wait_network_idle(
    tracker: NetworkActivityTracker,
    config: LoadDetectionConfig,
    timings: DetectorTimings,
    started: float,
    clock: Callable[[], float],
) -> Outcome:
    await asyncio.sleep(timings.idle_start / 1000.0)
    deadline = started + config.network_idle_timeout / 1000.0
    while True:
        if tracker.is_idle(config.max_network_idle_time):
            return Outcome("networkIdle", LoadMethod.NETWORK_IDLE)
        remaining = deadline - clock()
        if remaining <= 0:
            return Outcome(
                "networkIdle",
                detail=f"{tracker.pending_request_count} request(s) pending after {config.network_idle_timeout}ms",
            )
        await asyncio.sleep(min(timings.idle_poll / 1000.0, remaining))


async def _verify_content(page: Any, timings: DetectorTimings) -> Outcome:
    await asyncio.sleep(timings.content_delay / 1000.0)
    if await page.eval_js(CONTENT_CHECK_JS) is True:
        return Outcome("content", LoadMethod.CONTENT)
    return Outcome("content", detail="document incomplete or body empty")


async def _settle(name: str, start: Callable[[], Awaitable[Outcome]]) -> Outcome:
    """Run one strategy; any failure becomes a negative vote."""
    try:
        return await start()
    except Exception as exc:  # noqa: BLE001
        return Outcome(name, detail=f"{type(exc).__name__}: {exc}")


def pick_method(outcomes: list[Outcome] | tuple[Outcome, ...]) -> LoadMethod | None:
    positives = {o.method for o in outcomes if o.positive}
    for method in METHOD_PRIORITY:
        if method in positives:
            return method
    return None


async def detect_load(
    page: Any,
    target_url: str,
    config: LoadDetectionConfig,
    timings: DetectorTimings | None = None,
    *,
    clock: Callable[[], float] = time.monotonic,
) -> LoadResult:
    """Decide whether the navigated page is ready enough to capture."""
    timings = timings or DetectorTimings()
    log = logger.info if config.verbose_logging else logger.debug
    started = clock()

    with track_network(page, clock) as tracker:
        outcomes = await asyncio.gather(
            _settle("loadEvent", lambda: _wait_load_event(page, config)),
            _settle("domReady", lambda: _wait_dom_ready(page, config, timings)),
            _settle("networkIdle", lambda: _wait_network_idle(tracker, config, timings, started, clock)),
            _settle("content", lambda: _verify_content(page, timings)),
        )

    for outcome in outcomes:
        log("%s: %s %s", outcome.strategy, "positive" if outcome.positive else "negative", outcome.detail)

    method = pick_method(outcomes)
    if method is not None:
        elapsed = (clock() - started) * 1000
        log("Page %s considered loaded via %s after %.0fms", target_url, method.value, elapsed)
        return LoadResult(True, method, tuple(outcomes), elapsed)

    logger.warning("No load signal for %s; waiting %dms before continuing", target_url, timings.fallback_delay)
    await asyncio.sleep(timings.fallback_delay / 1000.0)
    return LoadResult(False, LoadMethod.FIXED_DELAY, tuple(outcomes), (clock() - started) * 1000)
