"""Screenshot persistence."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

_SIGNATURES: tuple[tuple[str, bytes], ...] = (
    ("png", b"\x89PNG\r\n\x1a\n"),
    ("jpeg", b"\xff\xd8\xff"),
)


def sniff_image_format(data: bytes) -> str | None:
    for fmt, magic in _SIGNATURES:
        if data.startswith(magic):
            return fmt
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    return None


def screenshot_path(fmt: str, output_dir: str | Path = ".") -> Path:
    return Path(output_dir) / f"screenshot.{fmt}"


def save_screenshot(data: bytes, fmt: str, output_dir: str | Path = ".") -> Path:
    """Write `screenshot.<fmt>` and return its path."""
    detected = sniff_image_format(data)
    if detected != fmt:
        logger.warning("Captured image looks like %s, expected %s", detected or "unknown data", fmt)
    path = screenshot_path(fmt, output_dir)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    logger.info("Screenshot saved as %s (%d bytes)", path, len(data))
    return path
