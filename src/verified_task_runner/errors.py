"""Exception hierarchy for graph construction, execution, and verification.

Only :class:`GraphError` is fatal to a project; it is raised while the task
graph is being built, before any worker runs.  Every other error is caught at
the task level by the orchestration engine and turned into task state.
"""

from __future__ import annotations

from typing import Any, Optional


class TaskRunnerError(Exception):
    """Base class for all runner errors."""


class ConfigError(TaskRunnerError):
    """Invalid value in the runner configuration."""


# ---------------------------------------------------------------------------
# Graph construction
# ---------------------------------------------------------------------------

class GraphError(TaskRunnerError):
    """The task graph cannot be built as requested."""


class InvalidDependency(GraphError):
    def __init__(self, task_id: str, dependency_id: str) -> None:
        self.task_id = task_id
        self.dependency_id = dependency_id
        super().__init__(f"Task '{task_id}' depends on unknown task '{dependency_id}'")


class DuplicateTask(GraphError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task '{task_id}' already exists in the graph")


class CycleDetected(GraphError):
    def __init__(self, cycle: list[str]) -> None:
        self.cycle = list(cycle)
        super().__init__("Dependency cycle detected: " + " -> ".join(self.cycle))


# ---------------------------------------------------------------------------
# Assignment / execution
# ---------------------------------------------------------------------------

class AssignmentError(TaskRunnerError):
    """No registered agent type covers any of the task's skills."""

    def __init__(self, task_id: str, skills: Optional[list[str]] = None) -> None:
        self.task_id = task_id
        self.skills = list(skills or [])
        super().__init__(f"No eligible agent for task '{task_id}' (skills: {', '.join(self.skills) or '-'})")


class ExecutionError(TaskRunnerError):
    """The external worker failed to execute a task."""

    def __init__(self, task_id: str, message: str) -> None:
        self.task_id = task_id
        self.message = message
        super().__init__(f"[{task_id}] {message}")


class WorkerTimeout(ExecutionError):
    pass


class WorkerUnavailable(ExecutionError):
    pass


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------

class VerificationError(TaskRunnerError):
    """A verification step raised instead of returning a result."""

    def __init__(self, step: str, message: str) -> None:
        self.step = step
        self.message = message
        super().__init__(f"Verification step '{step}' errored: {message}")


class CriticalQAFailure(TaskRunnerError):
    """Verification failed with critical severity; manual review is required."""

    def __init__(self, task_id: str, result: Any = None) -> None:
        self.task_id = task_id
        self.result = result
        score = getattr(result, "score", None)
        detail = f" (score {score:.2f})" if isinstance(score, float) else ""
        super().__init__(f"Task '{task_id}' failed verification critically{detail}")
