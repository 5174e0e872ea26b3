"""
Command-line entry point: one smoke-test run per invocation.

Exit codes: 0 on success, 1 on any failure (2 for usage errors, from argparse).
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections.abc import Sequence
from dataclasses import replace

from .config import SCREENSHOT_FORMATS, SmokeConfig, candidate_urls
from .errors import SmokeTestError
from .orchestrator import RunReport, run_smoke_test

logger = logging.getLogger("cdp_proxy_smoke")

__all__ = ["build_parser", "config_from_args", "main"]


def _quality(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"quality must be an integer, got {raw!r}") from exc
    if not 1 <= value <= 100:
        raise argparse.ArgumentTypeError(f"quality must be between 1 and 100, got {value}")
    return value


def _positive_ms(raw: str) -> int:
    try:
        value = int(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"timeout must be an integer number of ms, got {raw!r}") from exc
    if value <= 0:
        raise argparse.ArgumentTypeError("timeout must be positive")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cdp-proxy-smoke",
        description="Chrome Connection Test Tool: checks the debugging endpoint behind the proxy "
        "and saves a screenshot of a loaded page.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("--url", metavar="<url>", help="URL to navigate to (built-in fallbacks are tried after it)")
    parser.add_argument("--timeout", metavar="<ms>", type=_positive_ms, help="Page load timeout in milliseconds")
    parser.add_argument(
        "--format",
        metavar="<format>",
        choices=SCREENSHOT_FORMATS,
        default="png",
        help="Screenshot format: png, jpeg or webp (default: png)",
    )
    parser.add_argument(
        "--quality", metavar="<quality>", type=_quality, default=80, help="Image quality 1-100 for jpeg/webp"
    )
    parser.add_argument(
        "--dry-run", action="store_true", help="Only check connectivity; skip navigation and screenshot"
    )
    return parser


def config_from_args(args: argparse.Namespace, base: SmokeConfig | None = None) -> SmokeConfig:
    config = base or SmokeConfig.from_env()
    load = replace(config.load, verbose_logging=bool(args.verbose))
    if args.timeout is not None:
        load = replace(load, load_timeout=int(args.timeout))
    return replace(
        config,
        urls=candidate_urls(args.url) if args.url else config.urls,
        load=load,
        screenshot_format=args.format,
        quality=args.quality,
        dry_run=bool(args.dry_run),
        verbose=bool(args.verbose),
    )


def run(config: SmokeConfig) -> RunReport:
    return asyncio.run(run_smoke_test(config))


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point for the connection test."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
    )
    # Frame-level transport logs stay out of --verbose output.
    logging.getLogger("websockets").setLevel(logging.INFO)

    config = config_from_args(args)
    if config.verbose:
        logger.info("Configuration: %s", config.summary())

    try:
        report = run(config)
    except SmokeTestError as exc:
        logger.error("%s: %s", type(exc).__name__, exc, exc_info=True)
        logger.error("Test failed: %s", exc.to_dict())
        return 1
    except Exception as exc:  # noqa: BLE001
        logger.error("Test failed: %s: %s", type(exc).__name__, exc, exc_info=True)
        return 1

    if report.screenshot is not None:
        logger.info("Screenshot saved as %s", report.screenshot)
    logger.info("Test completed successfully")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
