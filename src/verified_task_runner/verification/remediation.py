"""Turn a failed verification result into a remediation plan and retry prompt."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from ..task_engine.model import Task
from .base import Severity, VerificationResult
from .severity import classify_severity, required_action

PRIORITY_ORDER = ("critical", "high", "medium", "low")

# Checked in order; the first bucket whose keywords match wins.
_CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("build", ("build", "compile", "npm install", "syntax")),
    ("tests", ("test", "pytest", "jest", "cypress")),
    ("linting", ("lint", "style", "error", "warning")),
    ("security", ("security", "vulnerability", "audit", "secret", "eval(")),
    ("runtime", ("runtime", "server", "start", "entry point")),
    ("dependencies", ("dependency", "dependencies", "package", "module", "lock file")),
    ("configuration", ("config", "env", "setup")),
)
CATEGORIES = tuple(name for name, _ in _CATEGORY_KEYWORDS) + ("other",)


def categorize_issues(issues: list[str] | tuple[str, ...]) -> dict[str, list[str]]:
    """Bucket issues by keyword; every category key is present."""
    buckets: dict[str, list[str]] = {name: [] for name in CATEGORIES}
    for issue in issues:
        lowered = issue.lower()
        for name, keywords in _CATEGORY_KEYWORDS:
            if any(k in lowered for k in keywords):
                buckets[name].append(issue)
                break
        else:
            buckets["other"].append(issue)
    return buckets


@dataclass(frozen=True)
class FixGroup:
    category: str
    priority: str
    issues: tuple[str, ...]
    fixes: tuple[str, ...]
    verification: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "priority": self.priority,
            "issues": list(self.issues),
            "fixes": list(self.fixes),
            "verification": self.verification,
        }


_FIX_TEMPLATES: dict[str, tuple[str, str, tuple[str, ...], str]] = {
    "build": (
        "Build Issues",
        "critical",
        (
            "Reinstall dependencies from a clean environment",
            "Check that every import path resolves to an existing module",
            "Fix syntax errors reported by the build output",
            "Look for circular imports that break compilation",
        ),
        "Run the build commands and ensure they complete without errors",
    ),
    "tests": (
        "Test Issues",
        "high",
        (
            "Read the first failing assertion and fix the code or the expectation",
            "Mock external services and network calls in tests",
            "Add cases for edge conditions and error paths",
            "Keep test files discoverable (test_*.py, *.test.js)",
        ),
        "Run the test commands and ensure every test passes",
    ),
    "linting": (
        "Linting & Code Quality",
        "medium",
        (
            "Configure a linter and formatter and run them over the project",
            "Remove unused imports and undefined names",
            "Use one indentation style and keep lines short",
            "Remove debug print statements",
        ),
        "Run the linter and ensure it reports no errors",
    ),
    "security": (
        "Security Issues",
        "critical",
        (
            "Move secrets out of source into environment variables",
            "Never pass request data to eval() or exec()",
            "Validate and sanitize all user input",
            "Upgrade dependencies with known vulnerabilities",
        ),
        "Re-run the security scan and confirm no hard-coded secrets remain",
    ),
    "runtime": (
        "Runtime Issues",
        "critical",
        (
            "Provide a clear entry point for the application",
            "Add a start command (package.json script or console script)",
            "Document required environment variables",
            "Handle startup errors with a clear message",
        ),
        "Start the application and verify it responds to a basic request",
    ),
    "dependencies": (
        "Dependency Issues",
        "high",
        (
            "Declare every runtime dependency in the manifest",
            "Pin versions and commit a lock file",
            "Resolve version conflicts between packages",
            "Remove unused dependencies",
        ),
        "Install from a clean environment and ensure no resolution warnings",
    ),
}

_GENERAL_FIXES = (
    "General Issues",
    "medium",
    (
        "Review error messages and logs for specific guidance",
        "Verify the file structure matches the project requirements",
        "Ensure all configuration files are present and correct",
    ),
    "Perform a manual check of the deliverable",
)


def category_fixes(category: str, issues: list[str]) -> list[FixGroup]:
    """Fix instructions for one issue category."""
    if not issues:
        return []
    label, priority, fixes, verification = _FIX_TEMPLATES.get(category, _GENERAL_FIXES)
    return [FixGroup(label, priority, tuple(issues), fixes, verification)]


def prioritize_issues(result: VerificationResult) -> dict[str, list[str]]:
    prioritized: dict[str, list[str]] = {p: [] for p in PRIORITY_ORDER}
    prioritized["critical"].extend(result.critical_failures)
    for issue in result.issues:
        if issue in result.critical_failures:
            continue
        lowered = issue.lower()
        if any(k in lowered for k in ("build", "security", "secret", "critical")):
            prioritized["critical"].append(issue)
        elif any(k in lowered for k in ("test", "runtime", "error")):
            prioritized["high"].append(issue)
        elif any(k in lowered for k in ("warning", "dependency")):
            prioritized["medium"].append(issue)
        else:
            prioritized["low"].append(issue)
    return prioritized


@dataclass(frozen=True)
class FixEstimate:
    minutes: int
    range: str
    confidence: str

    def to_dict(self) -> dict[str, Any]:
        return {"minutes": self.minutes, "range": self.range, "confidence": self.confidence}


def estimate_fix_time(result: VerificationResult) -> FixEstimate:
    minutes = 15 + 30 * len(result.critical_failures) + 5 * len(result.issues)
    if result.score < 0.3:
        minutes += 120
    elif result.score < 0.6:
        minutes += 60
    elif result.score < 0.8:
        minutes += 30
    return FixEstimate(
        minutes=minutes,
        range=f"{max(minutes - 15, 5)}-{minutes + 30} minutes",
        confidence="high" if result.score > 0.5 else "medium",
    )


VERIFICATION_STEPS = (
    "Run the build commands and confirm they succeed",
    "Run the full test suite and confirm every test passes",
    "Run the linter and fix all errors",
    "Scan for hard-coded secrets and unsafe eval",
    "Start the application and check basic behaviour",
)

PREVENTION_MEASURES = (
    "Add pre-commit hooks for linting and tests",
    "Run the quality gates in continuous integration",
    "Keep secrets in environment variables",
    "Keep the README's install and usage sections current",
)


@dataclass
class RemediationPlan:
    task_id: str
    task_title: str
    failure_analysis: dict[str, Any]
    fixes: list[FixGroup] = field(default_factory=list)
    prioritized_issues: dict[str, list[str]] = field(default_factory=dict)
    estimate: FixEstimate | None = None
    verification_steps: list[str] = field(default_factory=list)
    prevention_measures: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "task_title": self.task_title,
            "failure_analysis": dict(self.failure_analysis),
            "fixes": [f.to_dict() for f in self.fixes],
            "prioritized_issues": {k: list(v) for k, v in self.prioritized_issues.items()},
            "estimate": self.estimate.to_dict() if self.estimate else None,
            "verification_steps": list(self.verification_steps),
            "prevention_measures": list(self.prevention_measures),
        }


def build_remediation_plan(task: Task, result: VerificationResult) -> RemediationPlan:
    """Assemble an ordered fix plan (critical first) for a failed result."""
    severity = result.severity or classify_severity(result)
    groups: list[FixGroup] = []
    for category, issues in categorize_issues(result.issues).items():
        groups.extend(category_fixes(category, issues))
    groups.sort(key=lambda g: PRIORITY_ORDER.index(g.priority))
    return RemediationPlan(
        task_id=task.id,
        task_title=task.title,
        failure_analysis={
            "score": round(result.score, 4),
            "severity": severity.value,
            "critical_failures": list(result.critical_failures),
            "gate_failures": result.gate_failures,
            "deployment_ready": result.deployment_ready,
            "required_action": required_action(severity).to_dict(),
        },
        fixes=groups,
        prioritized_issues=prioritize_issues(result),
        estimate=estimate_fix_time(result),
        verification_steps=list(VERIFICATION_STEPS),
        prevention_measures=list(PREVENTION_MEASURES),
    )


_EXECUTION_FIXES = (
    "Execution Issues",
    "critical",
    (
        "Check that the worker executable is installed and on PATH",
        "Run the worker by hand in the project directory and read its output",
        "Fix the reported error, then resume or rerun the task",
    ),
    "Re-run the task and confirm the worker exits with code 0",
)


def execution_recommendations(error: str) -> list[str]:
    """Recommendations for a task whose worker never produced a result."""
    lowered = error.lower()
    if "not available" in lowered or "not found" in lowered or "no such file" in lowered:
        return ["Install the worker and confirm `verified-task-runner check-worker` succeeds"]
    if "timed out" in lowered:
        return ["Split the task or raise orchestrator.task_timeout_seconds"]
    return ["Retry the task after fixing the worker error"]


def build_execution_plan(task: Task, error: str) -> RemediationPlan:
    """Remediation plan for a task that failed before verification could run."""
    label, priority, fixes, verification = _EXECUTION_FIXES
    prioritized: dict[str, list[str]] = {p: [] for p in PRIORITY_ORDER}
    prioritized["critical"].append(error)
    return RemediationPlan(
        task_id=task.id,
        task_title=task.title,
        failure_analysis={
            "stage": "execution",
            "error": error,
            "score": None,
            "severity": None,
            "required_action": required_action(Severity.CRITICAL).to_dict(),
        },
        fixes=[FixGroup(label, priority, (error,), fixes, verification)],
        prioritized_issues=prioritized,
        estimate=FixEstimate(minutes=15, range="5-45 minutes", confidence="medium"),
        verification_steps=[verification],
        prevention_measures=["Run `verified-task-runner check-worker` before starting a project"],
    )


def build_improvement_prompt(task: Task, result: VerificationResult, plan: RemediationPlan) -> str:
    """Instruction text handed to the worker for a retry attempt."""
    lines = [
        "TASK IMPROVEMENT REQUIRED",
        "",
        f"Original Task: {task.title}",
        f"Description: {task.description}",
        f"Current Quality Score: {result.score:.2f}/1.0",
        f"Estimated Fix Time: {plan.estimate.range if plan.estimate else 'unknown'}",
        "",
    ]
    if result.critical_failures:
        lines.append("CRITICAL FAILURES (fix these first):")
        lines += [f"- {item}" for item in result.critical_failures]
        lines.append("")
    if result.issues:
        lines.append("Issues to resolve:")
        lines += [f"- {item}" for item in result.issues]
        lines.append("")
    for group in plan.fixes:
        lines.append(f"## {group.category} (priority: {group.priority})")
        lines += [f"- {fix}" for fix in group.fixes]
        lines.append(f"Verify: {group.verification}")
        lines.append("")
    if result.recommendations:
        lines.append("Recommendations:")
        lines += [f"- {item}" for item in result.recommendations]
        lines.append("")
    lines += [
        "Work in the existing files; do not start over.",
        "Do not start long-running servers or test watchers.",
        "Complete your changes and exit cleanly.",
    ]
    return "\n".join(lines)
