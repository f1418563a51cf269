"""Project state owned by one orchestration engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from ..agents.pool import AgentPool
from ..agents.scheduler import AssignmentPlan
from ..task_engine.board import KanbanBoard
from ..task_engine.graph import TaskGraph
from ..task_engine.model import TaskStatus
from ..utils import _elapsed_seconds, _now_iso
from ..verification.base import VerificationResult
from ..verification.history import QualityHistory


class ProjectStatus(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    COMPLETED = "completed"
    STALLED = "stalled"


@dataclass
class Project:
    id: str
    name: str
    project_dir: Path
    graph: TaskGraph
    board: KanbanBoard
    pool: AgentPool
    plan: AssignmentPlan = field(default_factory=AssignmentPlan)
    status: ProjectStatus = ProjectStatus.CREATED
    verification_history: dict[str, list[VerificationResult]] = field(default_factory=dict)
    created_at: str = field(default_factory=_now_iso)
    completed_at: Optional[str] = None

    @property
    def assignments(self) -> dict[str, str]:
        """task id -> agent id"""
        return {tid: a.agent_id for tid, a in self.plan.assignments.items()}

    @property
    def work_queues(self) -> dict[str, list[str]]:
        return self.plan.work_queues

    def record_verification(self, task_id: str, result: VerificationResult) -> None:
        self.verification_history.setdefault(task_id, []).append(result)

    def latest_verification(self, task_id: str) -> Optional[VerificationResult]:
        history = self.verification_history.get(task_id)
        return history[-1] if history else None

    def quality(self) -> QualityHistory:
        """Quality history rebuilt from this project's verification results."""
        history = QualityHistory()
        for task_id, results in self.verification_history.items():
            task_type = self.graph.get(task_id).task_type if task_id in self.graph else "unknown"
            for result in results:
                history.record(task_type, result)
        return history

    def summary(self) -> dict[str, Any]:
        stats = self.graph.statistics()
        agents = {a.id: a for a in self.pool.list_agents()}
        workloads = self.plan.workloads()
        for agent_id, load in workloads.items():
            agent = agents.get(agent_id)
            if agent:
                load.update(
                    status=agent.status.value,
                    completed=agent.completed_count,
                    failed=agent.failed_count,
                )

        tasks = []
        problems = []
        for task in self.graph:
            latest = self.latest_verification(task.id)
            tasks.append({
                "id": task.id,
                "title": task.title,
                "status": task.completion_label or task.status.value,
                "agent_id": task.assigned_agent_id,
                "score": task.verification_score,
                "retries": task.retry_count,
                "duration_seconds": _elapsed_seconds(task.started_at, task.completed_at),
            })
            if task.status in (TaskStatus.FAILED, TaskStatus.BLOCKED):
                problems.append({
                    "id": task.id,
                    "title": task.title,
                    "status": task.status.value,
                    "error": task.error,
                    "severity": latest.severity.value if latest and latest.severity else None,
                    "issues": list(task.issues),
                    "remediation_plan": task.remediation_plan,
                })

        return {
            "id": self.id,
            "name": self.name,
            "status": self.status.value,
            "project_dir": str(self.project_dir),
            "created_at": self.created_at,
            "completed_at": self.completed_at,
            "counts": self.board.counts(),
            "completion_pct": stats["completion_pct"],
            "tasks": tasks,
            "workloads": workloads,
            "quality": self.quality().analytics(),
            "problems": problems,
            "unreachable": [t.id for t in self.graph.unreachable_tasks()],
        }


class ProjectStore:
    """Projects keyed by id."""

    def __init__(self) -> None:
        self._projects: dict[str, Project] = {}

    def add(self, project: Project) -> None:
        self._projects[project.id] = project

    def get(self, project_id: str) -> Project:
        if project_id not in self._projects:
            raise KeyError(f"Project not found: {project_id}")
        return self._projects[project_id]

    def remove(self, project_id: str) -> Optional[Project]:
        return self._projects.pop(project_id, None)

    def list(self) -> list[Project]:
        return list(self._projects.values())

    def __contains__(self, project_id: object) -> bool:
        return project_id in self._projects
