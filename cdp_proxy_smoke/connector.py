"""Retry-with-backoff wrapper around opening the debugging connection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .config import ConnectionOptions
from .errors import ConnectionExhaustedError
from .session_cdp import CdpConnection, open_page_connection

logger = logging.getLogger(__name__)

BASE_DELAY_MS = 1000
MAX_DELAY_MS = 10000

Opener = Callable[[ConnectionOptions], Awaitable[CdpConnection]]
Sleeper = Callable[[float], Awaitable[object]]


def backoff_delay(attempt: int) -> int:
    """Delay in ms after failed attempt `attempt` (1-indexed)."""
    return min(BASE_DELAY_MS * 2 ** (attempt - 1), MAX_DELAY_MS)


@dataclass
class RetryState:
    attempt: int = 1
    last_error: BaseException | None = None


async def connect(
    options: ConnectionOptions,
    max_attempts: int = 5,
    *,
    opener: Opener = open_page_connection,
    sleep: Sleeper = asyncio.sleep,
) -> CdpConnection:
    """Open a connection, retrying with exponential backoff.

    Raises ConnectionExhaustedError with the last underlying error once
    `max_attempts` attempts have failed.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    state = RetryState()
    while True:
        logger.info("Connection attempt %d/%d to %s", state.attempt, max_attempts, options.netloc)
        try:
            conn = await opener(options)
        except Exception as exc:  # noqa: BLE001
            state.last_error = exc
            logger.warning("Connection attempt %d/%d failed: %s", state.attempt, max_attempts, exc)
        else:
            logger.info("Connection attempt %d/%d succeeded", state.attempt, max_attempts)
            return conn

        if state.attempt >= max_attempts:
            break
        delay = backoff_delay(state.attempt)
        logger.info("Retrying in %dms", delay)
        await sleep(delay / 1000.0)
        state.attempt += 1

    raise ConnectionExhaustedError(
        stage="connect",
        reason=f"Could not connect to {options.netloc} after {max_attempts} attempts: {state.last_error}",
        suggestion="Check that the proxy forwards the debugging port and the browser is running",
        details={"attempts": max_attempts},
        attempts=max_attempts,
        last_error=state.last_error,
    ) from state.last_error
