"""Best-effort probes that enrich the report of a connection-class failure.

Nothing in here may raise: a failing probe is recorded and logged, never
escalated.
"""

from __future__ import annotations

import logging
from typing import Any

from .config import SmokeConfig
from .http_client import http_get

logger = logging.getLogger(__name__)

DIAGNOSTIC_TIMEOUT = 2.0


def _probe_one(url: str, probe: Any) -> dict[str, Any]:
    try:
        resp = probe(url, DIAGNOSTIC_TIMEOUT)
    except Exception as exc:  # noqa: BLE001
        return {"url": url, "ok": False, "error": str(exc) or type(exc).__name__}
    body = str(resp.get("body") or "")
    return {"url": url, "ok": True, "status": resp.get("status"), "body": body[:500]}


def probe_endpoints(config: SmokeConfig, *, probe: Any = http_get) -> list[dict[str, Any]]:
    """Re-check the liveness and version endpoints and log what they say."""
    results: list[dict[str, Any]] = []
    for url in (config.health_url, f"{config.connection.http_base}/json/version"):
        result = _probe_one(url, probe)
        if result["ok"]:
            logger.info("Diagnostic probe %s -> HTTP %s %s", url, result["status"], result["body"])
        else:
            logger.info("Diagnostic probe %s failed: %s", url, result["error"])
        results.append(result)
    return results
