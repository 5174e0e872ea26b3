from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 48333
PORT_RANGE = (48000, 49000)
DEFAULT_HEALTH_URL = "http://localhost:80/health"
DEFAULT_TEST_URL = "https://www.example.com"
FALLBACK_URLS: tuple[str, ...] = (
    "https://example.com",
    "data:text/html,<html><head><title>cdp-proxy-smoke</title></head>"
    "<body><h1>Connection test</h1><p>Rendered by the debugging endpoint.</p></body></html>",
)
SCREENSHOT_FORMATS = ("png", "jpeg", "webp")


def resolve_debug_port(raw: str | None) -> int:
    """Parse a debug port, falling back to the default outside the allowed range."""
    if raw is None or not str(raw).strip():
        return DEFAULT_PORT
    try:
        port = int(str(raw).strip())
    except ValueError:
        logger.warning("Invalid debug port %r. Using default port %d.", raw, DEFAULT_PORT)
        return DEFAULT_PORT
    lo, hi = PORT_RANGE
    if port < lo or port > hi:
        logger.warning(
            "Port %d is outside the allowed range (%d-%d). Using default port %d.", port, lo, hi, DEFAULT_PORT
        )
        return DEFAULT_PORT
    return port


def env_int(name: str, default: int, minimum: int = 0) -> int:
    """Read an integer env var, warning and falling back to the default when malformed."""
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("Invalid %s %r. Using default %d.", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s must be at least %d, got %d. Using default %d.", name, minimum, value, default)
        return default
    return value


def candidate_urls(primary: str | None) -> list[str]:
    """Primary URL first, then the built-in fallbacks, without duplicates."""
    out: list[str] = []
    for url in (primary or DEFAULT_TEST_URL, *FALLBACK_URLS):
        if url and url not in out:
            out.append(url)
    return out


@dataclass(frozen=True)
class ConnectionOptions:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @property
    def http_base(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def netloc(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class LoadDetectionConfig:
    """Load detection budgets, all in milliseconds."""

    load_timeout: int = 30000
    dom_timeout: int = 10000
    network_idle_timeout: int = 15000
    max_network_idle_time: int = 1000
    verbose_logging: bool = False

    def check(self) -> None:
        if self.load_timeout <= max(self.dom_timeout, self.network_idle_timeout):
            logger.warning(
                "load_timeout (%dms) should exceed dom_timeout (%dms) and network_idle_timeout (%dms)",
                self.load_timeout,
                self.dom_timeout,
                self.network_idle_timeout,
            )


@dataclass(frozen=True)
class DetectorTimings:
    """Fixed delays of the load detection strategies, in milliseconds."""

    dom_grace: int = 1000
    idle_start: int = 2000
    idle_poll: int = 500
    content_delay: int = 3000
    fallback_delay: int = 3000


@dataclass
class SmokeConfig:
    connection: ConnectionOptions = field(default_factory=ConnectionOptions)
    health_url: str = DEFAULT_HEALTH_URL
    urls: list[str] = field(default_factory=lambda: candidate_urls(None))
    load: LoadDetectionConfig = field(default_factory=LoadDetectionConfig)
    timings: DetectorTimings = field(default_factory=DetectorTimings)
    screenshot_format: str = "png"
    quality: int = 80
    dry_run: bool = False
    verbose: bool = False
    output_dir: str = "."
    ready_timeout: int = 30000
    connect_attempts: int = 5
    render_settle: int = 2000
    cdp_timeout: float = 30.0

    @classmethod
    def from_env(cls) -> SmokeConfig:
        host = (os.environ.get("CDP_PROXY_HOST") or DEFAULT_HOST).strip()
        port = resolve_debug_port(os.environ.get("CHROME_DEBUG_PORT"))
        return cls(
            connection=ConnectionOptions(host=host, port=port),
            health_url=os.environ.get("CDP_PROXY_HEALTH_URL") or DEFAULT_HEALTH_URL,
            output_dir=os.environ.get("CDP_PROXY_OUTPUT_DIR") or ".",
            ready_timeout=env_int("CDP_PROXY_READY_TIMEOUT", 30000),
            connect_attempts=env_int("CDP_PROXY_CONNECT_ATTEMPTS", 5, minimum=1),
        )

    def summary(self) -> dict[str, object]:
        return {
            "host": self.connection.host,
            "port": self.connection.port,
            "healthUrl": self.health_url,
            "testUrl": self.urls[0] if self.urls else None,
            "timeout": self.load.load_timeout,
            "format": self.screenshot_format,
            "quality": self.quality,
            "dryRun": self.dry_run,
            "verbose": self.verbose,
        }
