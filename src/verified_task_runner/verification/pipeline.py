"""Verification pipeline: runs the strategy's steps against a project directory.

The pipeline:
1. Resolves the strategy for the task type (detecting it from disk if needed)
2. Runs the gate steps, short-circuiting on the first failed gate
3. Runs the strategy's weighted checks
4. Aggregates ``sum(score) / sum(max_score)`` into a clamped [0, 1] score
5. Decides pass/fail, deployment readiness and severity
6. Records the outcome in the quality history

A step that raises is turned into a failing ``StepResult`` with its error
message; verification itself never raises.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from pathlib import Path
from typing import Optional, Sequence

from ..config import RunnerConfig
from ..errors import VerificationError
from ..events import EventBus, EventType
from ..runtime.commands import CommandRunner
from ..task_engine.model import Task
from .base import (
    StepContext,
    StepRegistry,
    StepResult,
    VerificationResult,
    VerificationStep,
    step_registry,
)
from .history import QualityHistory
from .severity import classify_severity
from .strategies import resolve_strategy

# Ensure built-in steps are registered on import
from . import steps as _steps  # noqa: F401

logger = logging.getLogger(__name__)


def _unique(items: list[str]) -> tuple[str, ...]:
    seen: set[str] = set()
    out: list[str] = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return tuple(out)


class VerificationPipeline:
    """Scores a task's deliverable and decides whether it passes."""

    def __init__(
        self,
        config: Optional[RunnerConfig] = None,
        runner: Optional[CommandRunner] = None,
        events: Optional[EventBus] = None,
        history: Optional[QualityHistory] = None,
        registry: Optional[StepRegistry] = None,
        step_names: Optional[Sequence[str]] = None,
    ) -> None:
        self.config = config or RunnerConfig()
        vconf = self.config.verification
        self.runner = runner or CommandRunner(
            timeout_seconds=vconf.command_timeout_seconds,
            max_output_chars=vconf.max_output_chars,
        )
        self.events = events or EventBus()
        self.history = history if history is not None else QualityHistory()
        self.steps = registry or step_registry
        self.step_names = tuple(step_names) if step_names is not None else None

    async def _run_step(self, step: VerificationStep, ctx: StepContext) -> StepResult:
        started = time.monotonic()
        try:
            result = await step.execute(ctx)
        except Exception as exc:
            error = VerificationError(step.name, f"{exc.__class__.__name__}: {exc}")
            logger.exception("%s", error)
            result = StepResult(
                name=step.name,
                score=0.0,
                max_score=step.weight,
                blocking=step.blocking,
                gate_failed=step.blocking,
                error=str(error),
                issues=[str(error)],
            )
        result.duration_seconds = time.monotonic() - started
        return result

    async def verify(
        self,
        task: Task,
        project_dir: Path,
        attempt: int = 1,
        events: Optional[EventBus] = None,
    ) -> VerificationResult:
        """Run verification for *task* against *project_dir*."""
        bus = events or self.events
        vconf = self.config.verification
        strategy = resolve_strategy(task.task_type, project_dir, vconf.strategies)
        names = self.step_names or strategy.step_names
        ctx = StepContext(
            task_id=task.id,
            task_type=task.task_type,
            project_dir=project_dir,
            strategy=strategy,
            config=vconf,
            runner=self.runner,
            has_dependencies=bool(task.dependencies),
        )

        bus.emit(
            EventType.VERIFICATION_STARTED,
            task_id=task.id,
            attempt=attempt,
            project_type=strategy.project_type,
            steps=list(names),
        )
        logger.info("Verifying %s (%s strategy, attempt %d)", task.id, strategy.project_type, attempt)

        results: list[StepResult] = []
        for name in names:
            if not self.steps.has(name):
                logger.warning("Step '%s' not registered, skipping", name)
                continue
            step = self.steps.get(name)
            if step.can_skip(ctx):
                logger.debug("Step '%s' skipped for %s", name, task.id)
                continue

            bus.emit(EventType.VERIFICATION_STEP_STARTED, task_id=task.id, step=name)
            result = await self._run_step(step, ctx)
            results.append(result)
            ctx.previous_results[name] = result
            bus.emit(
                EventType.VERIFICATION_STEP_COMPLETED,
                task_id=task.id,
                step=name,
                score=round(result.ratio, 4),
                passed=result.passed,
                gate_failed=result.gate_failed,
            )
            if result.blocking and result.gate_failed:
                logger.info("Gate '%s' failed for %s; skipping remaining steps", name, task.id)
                break

        total = sum(r.score for r in results)
        maximum = sum(r.max_score for r in results)
        score = min(max(total / maximum, 0.0), 1.0) if maximum > 0 else 0.0
        gate_failed = any(r.blocking and r.gate_failed for r in results)
        quality = self.config.quality
        passed = score >= quality.minimum and not gate_failed

        result = VerificationResult(
            task_id=task.id,
            attempt=attempt,
            passed=passed,
            score=score,
            steps=tuple(results),
            issues=_unique([i for r in results for i in r.issues]),
            recommendations=_unique([i for r in results for i in r.recommendations]),
            critical_failures=_unique([i for r in results for i in r.critical_failures]),
            deployment_ready=passed and score >= quality.good,
            project_type=strategy.project_type,
        )
        if not passed:
            result = replace(result, severity=classify_severity(result))

        self.history.record(task.task_type, result)
        bus.emit(
            EventType.VERIFICATION_COMPLETED,
            task_id=task.id,
            attempt=attempt,
            passed=result.passed,
            score=round(result.score, 4),
            severity=result.severity.value if result.severity else None,
            deployment_ready=result.deployment_ready,
        )
        logger.info(
            "Verification %s for %s: score=%.2f%s",
            "passed" if passed else "failed",
            task.id,
            score,
            f" severity={result.severity.value}" if result.severity else "",
        )
        return result
