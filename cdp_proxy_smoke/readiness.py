"""Liveness check for the proxy and readiness polling for the debugging endpoint."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from .config import ConnectionOptions
from .errors import HealthCheckFailure, ReadinessTimeoutError
from .http_client import HttpClientError, http_get, is_success, parse_json_body

logger = logging.getLogger(__name__)

# Shorter than the poll interval so a hung endpoint costs at most one interval.
PROBE_TIMEOUT_MS = 800
POLL_INTERVAL_MS = 1000
HEALTH_TIMEOUT_MS = 5000

Probe = Callable[..., dict[str, Any]]


async def _probe(probe: Probe, url: str, timeout_ms: int) -> dict[str, Any]:
    timeout = timeout_ms / 1000.0
    return await asyncio.wait_for(asyncio.to_thread(probe, url, timeout), timeout)


async def check_health(url: str, *, probe: Probe = http_get, timeout_ms: int = HEALTH_TIMEOUT_MS) -> dict[str, Any]:
    """Single liveness probe; any non-2xx answer is fatal."""
    try:
        resp = await _probe(probe, url, timeout_ms)
    except (HttpClientError, asyncio.TimeoutError, OSError) as exc:
        raise HealthCheckFailure(
            stage="health",
            reason=f"Health check request to {url} failed: {exc}",
            suggestion="Is the reverse proxy running?",
            details={"url": url},
        ) from exc

    logger.info("Health check response status: %s", resp.get("status"))
    if not is_success(resp):
        raise HealthCheckFailure(
            stage="health",
            reason=f"Health check failed with HTTP {resp.get('status')}",
            suggestion="Check the proxy configuration and its upstream",
            details={"url": url, "status": resp.get("status")},
        )
    logger.info("Health check passed.")
    return resp


async def wait_until_ready(
    options: ConnectionOptions,
    max_wait_time: int = 30000,
    *,
    probe: Probe = http_get,
    poll_interval: int = POLL_INTERVAL_MS,
    probe_timeout: int = PROBE_TIMEOUT_MS,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
) -> dict[str, Any]:
    """Poll /json/version until it answers 2xx; returns the parsed version info."""
    url = f"{options.http_base}/json/version"
    start = clock()
    attempts = 0
    last_error: str | None = None

    while (clock() - start) * 1000 < max_wait_time:
        attempts += 1
        try:
            resp = await _probe(probe, url, probe_timeout)
        except asyncio.TimeoutError:
            last_error = f"probe timed out after {probe_timeout}ms"
        except Exception as exc:  # noqa: BLE001
            last_error = str(exc) or type(exc).__name__
        else:
            if is_success(resp):
                try:
                    info = parse_json_body(resp)
                except HttpClientError as exc:
                    logger.warning("Version endpoint answered with an unreadable body: %s", exc)
                    info = {}
                if not isinstance(info, dict):
                    info = {}
                logger.info("Debugging endpoint ready after %d probe(s): %s", attempts, info.get("Browser", "unknown"))
                return info
            last_error = f"HTTP {resp.get('status')}"

        logger.debug("Readiness probe %d failed: %s", attempts, last_error)
        await sleep(poll_interval / 1000.0)

    raise ReadinessTimeoutError(
        stage="readiness",
        reason=f"Debugging endpoint {url} not ready after {max_wait_time}ms: {last_error}",
        suggestion="Check that the browser started with remote debugging enabled",
        details={"url": url, "attempts": attempts, "lastError": last_error},
    )
