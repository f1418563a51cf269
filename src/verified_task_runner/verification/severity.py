"""Severity classification of failed verification results."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from ..constants import TEST_FAILURES_CRITICAL
from .base import Severity, VerificationResult

CRITICAL_SCORE = 0.3
MODERATE_SCORE = 0.6


def _gate_failed(result: VerificationResult, name: str) -> bool:
    step = result.step(name)
    return bool(step and step.gate_failed)


def _test_failures(result: VerificationResult) -> int:
    step = result.step("tests")
    if step is None:
        return 0
    try:
        return int(step.details.get("failures") or 0)
    except (TypeError, ValueError):
        return 0


def classify_severity(result: VerificationResult) -> Severity:
    """Classify how bad a verification result is.

    Critical when there are critical failures, the build, runtime or security
    gate failed, any issue reports a failed build, the score is below 0.3, or
    more than five tests fail.  Otherwise moderate below 0.6 and minor above.
    """
    if result.critical_failures:
        return Severity.CRITICAL
    if _gate_failed(result, "build") or any("build failed" in i.lower() for i in result.issues):
        return Severity.CRITICAL
    if _gate_failed(result, "runtime") or _gate_failed(result, "security"):
        return Severity.CRITICAL
    if result.score < CRITICAL_SCORE or _test_failures(result) > TEST_FAILURES_CRITICAL:
        return Severity.CRITICAL
    if result.score < MODERATE_SCORE:
        return Severity.MODERATE
    return Severity.MINOR


@dataclass(frozen=True)
class RequiredAction:
    action: str
    auto_retry: bool
    estimated_time: str
    priority: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "auto_retry": self.auto_retry,
            "estimated_time": self.estimated_time,
            "priority": self.priority,
        }


_ACTIONS = {
    Severity.CRITICAL: RequiredAction("immediate_intervention", False, "2-4 hours", "urgent"),
    Severity.MODERATE: RequiredAction("guided_rework", True, "30-60 minutes", "high"),
    Severity.MINOR: RequiredAction("auto_retry", True, "10-15 minutes", "medium"),
}


def required_action(severity: Severity) -> RequiredAction:
    return _ACTIONS[Severity(severity)]
