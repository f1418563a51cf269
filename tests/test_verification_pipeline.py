"""Tests for the verification pipeline: aggregation, gates, and events."""

import asyncio
from pathlib import Path

import pytest

from verified_task_runner.config import RunnerConfig, VerificationConfig
from verified_task_runner.events import CollectingSink, EventBus, EventType
from verified_task_runner.runtime.commands import CommandResult
from verified_task_runner.task_engine.model import Task
from verified_task_runner.verification.base import (
    Severity,
    StepContext,
    StepRegistry,
    StepResult,
    VerificationResult,
    VerificationStep,
)
from verified_task_runner.verification.history import QualityHistory
from verified_task_runner.verification.pipeline import VerificationPipeline


class FakeRunner:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls: list[str] = []

    async def run(self, command: str, cwd: Path) -> CommandResult:
        self.calls.append(command)
        if command in self.failing:
            return CommandResult(command=command, success=False, exit_code=1, stderr=f"{command} failed")
        return CommandResult(command=command, success=True, exit_code=0)


def _python_project(root: Path) -> Path:
    files = {
        "pyproject.toml": "[project]\nname = 'demo'\n\n[project.scripts]\ndemo = 'main:run'\n",
        "README.md": "# Demo\n\n## Install\npip install .\n\n## Usage\nstart with `demo`\n",
        "main.py": "# Entry point\n\ndef run():\n    return 0\n",
        ".gitignore": ".env\n__pycache__/\n",
        ".env.example": "DEMO_MODE=\n",
    }
    for rel, content in files.items():
        (root / rel).write_text(content)
    return root


def _verify(pipeline: VerificationPipeline, project_dir: Path, task_type: str = "python", **task_kwargs):
    task = Task(id="t1", title="Demo", task_type=task_type, **task_kwargs)
    return asyncio.run(pipeline.verify(task, project_dir))


class TestAggregation:
    def test_good_project_passes(self, tmp_path: Path):
        pipeline = VerificationPipeline(runner=FakeRunner())
        result = _verify(pipeline, _python_project(tmp_path))
        assert result.passed
        assert 0.9 < result.score <= 1.0
        assert result.deployment_ready
        assert result.severity is None
        assert result.project_type == "python"
        assert [s.name for s in result.steps] == [
            "file_structure", "build", "tests", "runtime", "security", "lint", "dependencies", "documentation",
        ]

    def test_score_is_ratio_of_sums(self, tmp_path: Path):
        pipeline = VerificationPipeline(runner=FakeRunner(), step_names=("documentation", "dependencies"))
        result = _verify(pipeline, _python_project(tmp_path))
        total = sum(s.score for s in result.steps)
        maximum = sum(s.max_score for s in result.steps)
        assert result.score == total / maximum

    def test_empty_directory_scores_within_bounds(self, tmp_path: Path):
        pipeline = VerificationPipeline(runner=FakeRunner())
        result = _verify(pipeline, tmp_path)
        assert 0.0 <= result.score <= 1.0
        assert not result.passed
        assert result.gate_failures == ["file_structure"]
        assert len(result.steps) == 1

    def test_failing_build_with_perfect_lint_fails(self, tmp_path: Path):
        build = ("step one", "step two", "step three", "step four")
        config = RunnerConfig(verification=VerificationConfig(strategies={"python": {"build_commands": list(build)}}))
        pipeline = VerificationPipeline(config, runner=FakeRunner(failing={"step four"}), step_names=("lint", "build"))
        result = _verify(pipeline, tmp_path)

        lint = result.step("lint")
        assert lint.score == lint.max_score
        assert result.score >= config.quality.minimum
        assert not result.passed
        assert result.severity == Severity.CRITICAL
        assert result.gate_failures == ["build"]

    def test_unknown_step_names_are_skipped(self, tmp_path: Path):
        pipeline = VerificationPipeline(runner=FakeRunner(), step_names=("documentation", "no_such_step"))
        result = _verify(pipeline, _python_project(tmp_path))
        assert [s.name for s in result.steps] == ["documentation"]

    def test_issues_are_deduplicated(self, tmp_path: Path):
        pipeline = VerificationPipeline(runner=FakeRunner(), step_names=("documentation", "runtime"))
        result = _verify(pipeline, tmp_path)
        assert len(result.issues) == len(set(result.issues))


class _ExplodingStep(VerificationStep):
    blocking = True
    weight = 5.0

    @property
    def name(self) -> str:
        return "exploding"

    async def execute(self, ctx: StepContext) -> StepResult:
        raise OSError("disk went away")


class _FixedStep(VerificationStep):
    @property
    def name(self) -> str:
        return "fixed"

    async def execute(self, ctx: StepContext) -> StepResult:
        return self.result(score=1.0, max_score=1.0)


class TestStepErrors:
    def setup_method(self):
        self.registry = StepRegistry()
        self.registry.register(_ExplodingStep)
        self.registry.register(_FixedStep)

    def test_raising_step_becomes_failed_result(self, tmp_path: Path):
        pipeline = VerificationPipeline(registry=self.registry, step_names=("fixed", "exploding"))
        result = _verify(pipeline, tmp_path)
        step = result.step("exploding")
        assert step.score == 0.0
        assert step.max_score == 5.0
        assert step.gate_failed
        assert "disk went away" in step.error
        assert not result.passed
        assert result.score == 1.0 / 6.0


class TestEventsAndHistory:
    def test_events_emitted_in_order(self, tmp_path: Path):
        sink = CollectingSink()
        pipeline = VerificationPipeline(runner=FakeRunner(), events=EventBus([sink]), step_names=("documentation",))
        _verify(pipeline, _python_project(tmp_path))
        assert sink.types() == [
            "verification_started",
            "verification_step_started",
            "verification_step_completed",
            "verification_completed",
        ]
        completed = sink.of_type(EventType.VERIFICATION_COMPLETED)[0]
        assert completed.task_id == "t1"
        assert completed.payload["passed"] is True

    def test_events_argument_overrides_default_bus(self, tmp_path: Path):
        default, override = CollectingSink(), CollectingSink()
        pipeline = VerificationPipeline(runner=FakeRunner(), events=EventBus([default]), step_names=("documentation",))
        task = Task(id="t1", task_type="python")
        asyncio.run(pipeline.verify(task, tmp_path, events=EventBus([override])))
        assert default.events == []
        assert override.events

    def test_history_records_each_verification(self, tmp_path: Path):
        history = QualityHistory()
        pipeline = VerificationPipeline(runner=FakeRunner(), history=history)
        _verify(pipeline, _python_project(tmp_path))
        _verify(pipeline, tmp_path / "missing")
        analytics = history.analytics()
        assert analytics["total"] == 2
        assert analytics["pass_rate"] == 50.0
        assert analytics["by_type"]["python"]["trend"] == "stable"


class TestResultSerialization:
    def test_round_trip(self, tmp_path: Path):
        pipeline = VerificationPipeline(runner=FakeRunner(failing={"python -m pytest -q"}))
        result = _verify(pipeline, _python_project(tmp_path))
        restored = VerificationResult.from_dict(result.to_dict())
        assert restored.passed == result.passed
        assert restored.severity == result.severity
        assert [s.name for s in restored.steps] == [s.name for s in result.steps]
        assert restored.gate_failures == ["tests"]


class TestResultImmutability:
    def test_steps_inside_result_are_read_only(self, tmp_path: Path):
        pipeline = VerificationPipeline(runner=FakeRunner(), step_names=("documentation", "runtime"))
        result = _verify(pipeline, tmp_path)
        step = result.steps[0]
        assert isinstance(step.issues, tuple)
        with pytest.raises(AttributeError):
            step.issues.append("sneaked in")
        with pytest.raises(TypeError):
            step.details["extra"] = True
        with pytest.raises(AttributeError):
            step.score = 99.0

    def test_later_mutation_of_builder_does_not_leak(self):
        step = StepResult(name="lint", score=1.0, max_score=1.0, issues=["one"], details={"n": 1})
        result = VerificationResult(task_id="t1", attempt=1, passed=True, score=1.0, steps=(step,))
        step.issues.append("two")
        step.details["n"] = 2
        assert result.steps[0].issues == ("one",)
        assert result.steps[0].details["n"] == 1
        assert result.to_dict()["steps"][0]["issues"] == ["one"]
