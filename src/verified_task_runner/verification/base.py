"""Base class, results, and registry for verification steps.

Each step inspects a project directory (optionally running commands through
the injected command runner) and returns a :class:`StepResult` with an
achieved/maximum score pair.  Gate steps additionally report whether the gate
failed; one failed gate fails the whole verification regardless of score.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import FrozenInstanceError, dataclass, field, replace
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Optional

from ..config import VerificationConfig
from ..runtime.commands import CommandRunner
from ..utils import _now_iso
from .strategies import Strategy


# ---------------------------------------------------------------------------
# Step result
# ---------------------------------------------------------------------------

@dataclass
class StepResult:
    """Outcome of executing a single verification step."""
    name: str
    score: float = 0.0
    max_score: float = 0.0
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    blocking: bool = False
    gate_failed: bool = False
    critical_failures: list[str] = field(default_factory=list)
    error: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    duration_seconds: float = 0.0

    def __setattr__(self, key: str, value: Any) -> None:
        if self.__dict__.get("_sealed"):
            raise FrozenInstanceError(f"cannot assign to field {key!r}")
        super().__setattr__(key, value)

    def sealed(self) -> "StepResult":
        """Return a read-only copy: tuples for the lists, a mapping proxy for details."""
        copy = replace(
            self,
            issues=tuple(self.issues),
            recommendations=tuple(self.recommendations),
            critical_failures=tuple(self.critical_failures),
            details=MappingProxyType(dict(self.details)),
        )
        object.__setattr__(copy, "_sealed", True)
        return copy

    @property
    def ratio(self) -> float:
        return self.score / self.max_score if self.max_score > 0 else 0.0

    @property
    def passed(self) -> bool:
        return not self.gate_failed and self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "score": round(self.score, 4),
            "max_score": round(self.max_score, 4),
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "blocking": self.blocking,
            "gate_failed": self.gate_failed,
            "critical_failures": list(self.critical_failures),
            "error": self.error,
            "details": dict(self.details),
            "duration_seconds": round(self.duration_seconds, 3),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StepResult":
        return cls(
            name=str(data.get("name") or ""),
            score=float(data.get("score") or 0.0),
            max_score=float(data.get("max_score") or 0.0),
            issues=[str(i) for i in data.get("issues") or []],
            recommendations=[str(r) for r in data.get("recommendations") or []],
            blocking=bool(data.get("blocking")),
            gate_failed=bool(data.get("gate_failed")),
            critical_failures=[str(c) for c in data.get("critical_failures") or []],
            error=data.get("error"),
            details=dict(data.get("details") or {}),
            duration_seconds=float(data.get("duration_seconds") or 0.0),
        )


class Severity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    CRITICAL = "critical"


@dataclass(frozen=True)
class VerificationResult:
    """Immutable outcome of one verification attempt for one task."""
    task_id: str
    attempt: int
    passed: bool
    score: float
    steps: tuple[StepResult, ...] = ()
    issues: tuple[str, ...] = ()
    recommendations: tuple[str, ...] = ()
    critical_failures: tuple[str, ...] = ()
    severity: Optional[Severity] = None
    deployment_ready: bool = False
    project_type: str = ""
    created_at: str = field(default_factory=_now_iso)

    def __post_init__(self) -> None:
        # steps are built mutably by the pipeline; the result keeps sealed copies
        object.__setattr__(self, "steps", tuple(s.sealed() for s in self.steps))
        for name in ("issues", "recommendations", "critical_failures"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    def step(self, name: str) -> Optional[StepResult]:
        for step in self.steps:
            if step.name == name:
                return step
        return None

    @property
    def gate_failures(self) -> list[str]:
        return [s.name for s in self.steps if s.blocking and s.gate_failed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "attempt": self.attempt,
            "passed": self.passed,
            "score": round(self.score, 4),
            "severity": self.severity.value if self.severity else None,
            "deployment_ready": self.deployment_ready,
            "project_type": self.project_type,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "critical_failures": list(self.critical_failures),
            "gate_failures": self.gate_failures,
            "steps": [s.to_dict() for s in self.steps],
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VerificationResult":
        severity = data.get("severity")
        return cls(
            task_id=str(data.get("task_id") or ""),
            attempt=int(data.get("attempt") or 1),
            passed=bool(data.get("passed")),
            score=float(data.get("score") or 0.0),
            steps=tuple(StepResult.from_dict(s) for s in data.get("steps") or [] if isinstance(s, dict)),
            issues=tuple(str(i) for i in data.get("issues") or []),
            recommendations=tuple(str(r) for r in data.get("recommendations") or []),
            critical_failures=tuple(str(c) for c in data.get("critical_failures") or []),
            severity=Severity(severity) if severity in {s.value for s in Severity} else None,
            deployment_ready=bool(data.get("deployment_ready")),
            project_type=str(data.get("project_type") or ""),
            created_at=str(data.get("created_at") or _now_iso()),
        )


# ---------------------------------------------------------------------------
# Step context
# ---------------------------------------------------------------------------

@dataclass
class StepContext:
    """Everything a step needs to execute."""
    task_id: str
    task_type: str
    project_dir: Path
    strategy: Strategy
    config: VerificationConfig = field(default_factory=VerificationConfig)
    runner: CommandRunner = field(default_factory=CommandRunner)
    has_dependencies: bool = False

    # Populated by the pipeline before each step
    previous_results: dict[str, StepResult] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Base step class
# ---------------------------------------------------------------------------

class VerificationStep(ABC):
    """Abstract base for verification step implementations."""

    #: Gate steps fail the whole verification when ``gate_failed`` is set.
    blocking: bool = False
    #: Maximum score assigned when the step errors before producing a result.
    weight: float = 10.0

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique step identifier."""
        ...

    @property
    def display_name(self) -> str:
        return self.name.replace("_", " ").title()

    @abstractmethod
    async def execute(self, ctx: StepContext) -> StepResult:
        """Run the step. Returns a StepResult."""
        ...

    def can_skip(self, ctx: StepContext) -> bool:
        """Override to define conditions under which this step should be skipped."""
        return False

    def result(self, **kwargs: Any) -> StepResult:
        return StepResult(name=self.name, blocking=self.blocking, **kwargs)


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class StepRegistry:
    """Registry of step implementations.

    Steps register themselves on import via ``register()``.  The pipeline
    looks up steps by name.
    """

    def __init__(self) -> None:
        self._steps: dict[str, type[VerificationStep]] = {}

    def register(self, step_cls: type[VerificationStep]) -> type[VerificationStep]:
        """Register a step class. Can be used as a decorator."""
        instance = step_cls()
        self._steps[instance.name] = step_cls
        return step_cls

    def get(self, name: str) -> VerificationStep:
        if name not in self._steps:
            available = ", ".join(sorted(self._steps.keys()))
            raise KeyError(f"Unknown step '{name}' (registered: {available})")
        return self._steps[name]()

    def has(self, name: str) -> bool:
        return name in self._steps

    def list_steps(self) -> list[str]:
        return sorted(self._steps.keys())


# Singleton registry; steps register here on import
step_registry = StepRegistry()
