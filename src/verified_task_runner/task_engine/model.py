"""Task model shared by the graph, the kanban board, and the engine.

Tasks arrive already decomposed: each one carries its required skills and the
ids of the tasks it depends on.  All fields are defaulted at construction time
so the rest of the code never has to guess at missing attributes.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..utils import _now_iso


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TaskPriority(str, Enum):
    """Priority level; P0 is most urgent."""

    P0 = "P0"  # Critical
    P1 = "P1"  # High
    P2 = "P2"  # Medium (default)
    P3 = "P3"  # Low

    @property
    def sort_key(self) -> int:
        return {"P0": 0, "P1": 1, "P2": 2, "P3": 3}[self.value]


_PRIORITY_ALIASES = {
    "critical": TaskPriority.P0,
    "urgent": TaskPriority.P0,
    "high": TaskPriority.P1,
    "medium": TaskPriority.P2,
    "normal": TaskPriority.P2,
    "low": TaskPriority.P3,
}


class TaskStatus(str, Enum):
    """Lifecycle status; each value is also the name of a kanban column."""

    TODO = "todo"
    IN_PROGRESS = "inProgress"
    REVISION = "revision"
    REVIEW = "review"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})


class CompletionMode(str, Enum):
    """How a completed task got there."""

    VERIFIED = "verified"
    TIMEOUT = "timeout"
    MANUAL = "manual"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _generate_id() -> str:
    """Short human-friendly task ID: ``task-<8hex>``."""
    return f"task-{uuid.uuid4().hex[:8]}"


def coerce_priority(value: Any) -> TaskPriority:
    if isinstance(value, TaskPriority):
        return value
    text = str(value or "").strip()
    if text.upper() in TaskPriority.__members__:
        return TaskPriority(text.upper())
    return _PRIORITY_ALIASES.get(text.lower(), TaskPriority.P2)


def _enum(cls: type[Enum], value: Any, default: Enum) -> Any:
    if isinstance(value, cls):
        return value
    try:
        return cls(value)
    except ValueError:
        return default


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


# ---------------------------------------------------------------------------
# Task dataclass
# ---------------------------------------------------------------------------

@dataclass
class Task:
    """A unit of work with dependencies, executed by one agent at a time."""

    # Identity
    id: str = field(default_factory=_generate_id)
    title: str = ""
    description: str = ""

    # Classification
    task_type: str = "fullstack"
    priority: TaskPriority = TaskPriority.P2
    estimated_hours: float = 1.0

    # Work definition
    skills: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    deliverables: list[str] = field(default_factory=list)

    # Lifecycle
    status: TaskStatus = TaskStatus.TODO
    completion_mode: Optional[CompletionMode] = None
    assigned_agent_id: Optional[str] = None

    # Verification outcome
    verification_score: Optional[float] = None
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    retry_count: int = 0
    remediation_plan: Optional[dict[str, Any]] = None
    error: Optional[str] = None

    # Timestamps
    created_at: str = field(default_factory=_now_iso)
    updated_at: str = field(default_factory=_now_iso)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    # Extensible metadata
    metadata: dict[str, Any] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def touch(self) -> None:
        self.updated_at = _now_iso()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def completion_label(self) -> Optional[str]:
        """Human label for how the task completed, e.g. ``completed-via-timeout``."""
        if self.status != TaskStatus.COMPLETED:
            return None
        if self.completion_mode == CompletionMode.TIMEOUT:
            return "completed-via-timeout"
        return "completed"

    def add_issues(self, issues: list[str]) -> None:
        for issue in issues:
            if issue and issue not in self.issues:
                self.issues.append(issue)

    def add_recommendations(self, recommendations: list[str]) -> None:
        for rec in recommendations:
            if rec and rec not in self.recommendations:
                self.recommendations.append(rec)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "task_type": self.task_type,
            "priority": self.priority.value,
            "estimated_hours": self.estimated_hours,
            "skills": list(self.skills),
            "dependencies": list(self.dependencies),
            "deliverables": list(self.deliverables),
            "status": self.status.value,
            "completion_mode": self.completion_mode.value if self.completion_mode else None,
            "assigned_agent_id": self.assigned_agent_id,
            "verification_score": self.verification_score,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "retry_count": self.retry_count,
            "remediation_plan": self.remediation_plan,
            "error": self.error,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Task":
        """Build a task from a loosely-shaped mapping (YAML task list or snapshot).

        Unknown enum values fall back to defaults; ``type`` and ``deps`` are
        accepted as aliases for ``task_type`` and ``dependencies``.
        """
        completion = data.get("completion_mode")
        score = data.get("verification_score")
        try:
            hours = float(data.get("estimated_hours", data.get("estimatedHours", 1.0)) or 1.0)
        except (TypeError, ValueError):
            hours = 1.0
        task = cls(
            id=str(data.get("id") or _generate_id()),
            title=str(data.get("title") or ""),
            description=str(data.get("description") or ""),
            task_type=str(data.get("task_type") or data.get("type") or "fullstack"),
            priority=coerce_priority(data.get("priority")),
            estimated_hours=hours,
            skills=_str_list(data.get("skills")),
            dependencies=_str_list(data.get("dependencies", data.get("deps"))),
            deliverables=_str_list(data.get("deliverables")),
            status=_enum(TaskStatus, data.get("status"), TaskStatus.TODO),
            completion_mode=_enum(CompletionMode, completion, None) if completion else None,
            assigned_agent_id=data.get("assigned_agent_id"),
            verification_score=float(score) if isinstance(score, (int, float)) else None,
            issues=_str_list(data.get("issues")),
            recommendations=_str_list(data.get("recommendations")),
            retry_count=int(data.get("retry_count") or 0),
            remediation_plan=data.get("remediation_plan") if isinstance(data.get("remediation_plan"), dict) else None,
            error=data.get("error"),
            metadata=dict(data.get("metadata") or {}),
        )
        for ts in ("created_at", "updated_at", "started_at", "completed_at"):
            if data.get(ts):
                setattr(task, ts, str(data[ts]))
        return task
