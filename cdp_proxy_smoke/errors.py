"""Failure taxonomy for a smoke-test run.

Every fatal outcome is a SmokeTestError subclass so the top-level entry point
can map it to an exit code and a structured log record:

- HealthCheckFailure: liveness probe did not return 2xx (no retry)
- ReadinessTimeoutError: debugging endpoint never answered within the deadline
- ConnectionExhaustedError: every connect attempt failed
- NavigationError: a candidate URL failed to navigate (recoverable per candidate)
- CaptureError: the screenshot could not be captured or stored
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class SmokeTestError(Exception):
    """Structured error with enough context to diagnose a failed run."""

    stage: str
    reason: str
    suggestion: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        msg = f"[{self.stage}] {self.reason}"
        if self.suggestion:
            msg += f". Suggestion: {self.suggestion}"
        return msg

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": type(self).__name__,
            "stage": self.stage,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "details": self.details,
        }


class HealthCheckFailure(SmokeTestError):
    pass


class ReadinessTimeoutError(SmokeTestError):
    pass


@dataclass
class ConnectionExhaustedError(SmokeTestError):
    attempts: int = 0
    last_error: BaseException | None = None


class NavigationError(SmokeTestError):
    pass


class CaptureError(SmokeTestError):
    pass


CONNECTION_ERRORS = (ReadinessTimeoutError, ConnectionExhaustedError)
