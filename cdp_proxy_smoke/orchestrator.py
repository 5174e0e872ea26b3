"""
Drives one smoke-test run:

HealthCheck -> ReadinessWait -> Connect -> EnableDomains
  -> {Navigate -> Detect}* -> RenderSettle -> Capture -> Closed

Any stage may end the run in Failed by raising a SmokeTestError. The
connection is closed exactly once on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from .artifacts import save_screenshot
from .browser_session import PageSession
from .config import ConnectionOptions, SmokeConfig
from .connector import connect
from .diagnostics import probe_endpoints
from .errors import CONNECTION_ERRORS, CaptureError, NavigationError, SmokeTestError
from .http_client import http_get
from .load_detector import LoadResult, detect_load
from .readiness import check_health, wait_until_ready
from .session_cdp import CdpConnection, CdpError, open_page_connection

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    HEALTH_CHECK = "HealthCheck"
    READINESS_WAIT = "ReadinessWait"
    CONNECT = "Connect"
    ENABLE_DOMAINS = "EnableDomains"
    NAVIGATE = "Navigate"
    DETECT = "Detect"
    RENDER_SETTLE = "RenderSettle"
    CAPTURE = "Capture"
    CLOSED = "Closed"
    FAILED = "Failed"


@dataclass
class RunReport:
    stages: list[Stage] = field(default_factory=list)
    version: dict[str, Any] = field(default_factory=dict)
    url: str | None = None
    load: LoadResult | None = None
    screenshot: Path | None = None
    dry_run: bool = False

    @property
    def stage(self) -> Stage | None:
        return self.stages[-1] if self.stages else None


class NavigationOrchestrator:
    def __init__(
        self,
        config: SmokeConfig,
        *,
        probe: Callable[..., dict[str, Any]] | None = None,
        opener: Callable[[ConnectionOptions], Awaitable[CdpConnection]] | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.probe = probe or http_get
        self.opener = opener or self._open
        self.sleep = sleep
        self.report = RunReport()

    async def _open(self, options: ConnectionOptions) -> CdpConnection:
        return await open_page_connection(options, self.config.cdp_timeout)

    def _enter(self, stage: Stage) -> None:
        logger.debug("Stage: %s", stage.value)
        self.report.stages.append(stage)

    async def run(self) -> RunReport:
        config = self.config
        config.load.check()
        conn: CdpConnection | None = None
        try:
            self._enter(Stage.HEALTH_CHECK)
            await check_health(config.health_url, probe=self.probe)

            self._enter(Stage.READINESS_WAIT)
            self.report.version = await wait_until_ready(
                config.connection, config.ready_timeout, probe=self.probe, sleep=self.sleep
            )

            self._enter(Stage.CONNECT)
            logger.info("Connecting to Chrome via proxy at %s...", config.connection.netloc)
            conn = await connect(config.connection, config.connect_attempts, opener=self.opener, sleep=self.sleep)
            session = PageSession(conn)

            self._enter(Stage.ENABLE_DOMAINS)
            try:
                await session.enable_domains(network=True, page=True, runtime=True)
            except CdpError as exc:
                raise SmokeTestError(
                    stage="enableDomains",
                    reason=f"Could not enable Network/Page/Runtime domains: {exc}",
                    suggestion="Check that the proxy forwards WebSocket traffic unchanged",
                ) from exc
            logger.info("Connected successfully.")

            if config.dry_run:
                logger.info("Running in dry-run mode")
                logger.info("Connection test completed successfully")
                self.report.dry_run = True
                return self.report

            self.report.url, self.report.load = await self._navigate_candidates(session)

            self._enter(Stage.RENDER_SETTLE)
            await self.sleep(config.render_settle / 1000.0)

            self._enter(Stage.CAPTURE)
            self.report.screenshot = await self._capture(session)
            return self.report
        except SmokeTestError as exc:
            self._enter(Stage.FAILED)
            if isinstance(exc, CONNECTION_ERRORS):
                await self._diagnose()
            raise
        except Exception:
            self._enter(Stage.FAILED)
            raise
        finally:
            if conn is not None:
                await self._close(conn)
            if self.report.stage is not Stage.FAILED:
                self._enter(Stage.CLOSED)

    async def _navigate_candidates(self, session: PageSession) -> tuple[str, LoadResult]:
        urls = self.config.urls
        for index, url in enumerate(urls):
            last = index == len(urls) - 1
            self._enter(Stage.NAVIGATE)
            logger.info("Navigating to %s...", url)
            try:
                await session.navigate(url)
            except CdpError as exc:
                if last:
                    raise NavigationError(
                        stage="navigate",
                        reason=f"Navigation to {url} failed: {exc}",
                        suggestion="Check that the browser can reach the target URLs",
                        details={"url": url, "candidates": list(urls)},
                    ) from exc
                logger.warning("Navigation to %s failed: %s. Trying next candidate.", url, exc)
                continue

            self._enter(Stage.DETECT)
            result = await detect_load(session, url, self.config.load, self.config.timings)
            logger.info("Load detection for %s: success=%s method=%s", url, result.success, result.method.value)
            if result.accepted:
                return url, result

        raise NavigationError(
            stage="navigate",
            reason="No candidate URL produced an acceptable page load",
            details={"candidates": list(urls)},
        )

    async def _capture(self, session: PageSession) -> Path:
        config = self.config
        logger.info("Taking screenshot...")
        try:
            data = await session.capture_screenshot(config.screenshot_format, config.quality)
        except CdpError as exc:
            raise CaptureError(
                stage="capture",
                reason=f"Screenshot capture failed: {exc}",
                details={"format": config.screenshot_format, "quality": config.quality},
            ) from exc
        try:
            return save_screenshot(data, config.screenshot_format, config.output_dir)
        except OSError as exc:
            raise CaptureError(
                stage="capture",
                reason=f"Could not write screenshot: {exc}",
                suggestion="Check that the output directory is writable",
                details={"outputDir": config.output_dir},
            ) from exc

    async def _diagnose(self) -> None:
        logger.info("Running diagnostic probes...")
        try:
            await asyncio.to_thread(probe_endpoints, self.config, probe=self.probe)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Diagnostic probes failed: %s", exc)

    async def _close(self, conn: CdpConnection) -> None:
        try:
            await conn.close()
            logger.debug("Connection closed")
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to close connection: %s", exc)


async def run_smoke_test(config: SmokeConfig, **kwargs: Any) -> RunReport:
    return await NavigationOrchestrator(config, **kwargs).run()
