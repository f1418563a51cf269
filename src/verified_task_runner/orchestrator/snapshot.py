"""Serialize projects to plain dicts and YAML snapshot files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional

from ..agents.pool import AgentPool
from ..agents.registry import AgentRegistry
from ..agents.scheduler import AssignmentPlan, find_best_agent_type
from ..errors import TaskRunnerError
from ..io_utils import _load_data_with_error, _save_data
from ..task_engine.board import INTERRUPTED_COLUMNS, KanbanBoard
from ..task_engine.graph import TaskGraph
from ..verification.base import VerificationResult
from .project import Project, ProjectStatus

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def project_to_dict(project: Project) -> dict[str, Any]:
    return {
        "version": SNAPSHOT_VERSION,
        "id": project.id,
        "name": project.name,
        "project_dir": str(project.project_dir),
        "status": project.status.value,
        "created_at": project.created_at,
        "completed_at": project.completed_at,
        "graph": project.graph.to_dict(),
        "board": project.board.to_dict(),
        "pool": project.pool.to_dict(),
        "assignments": project.plan.to_dict(),
        "verification_history": {
            task_id: [r.to_dict() for r in results]
            for task_id, results in project.verification_history.items()
        },
    }


def project_from_dict(
    data: dict[str, Any],
    registry: AgentRegistry,
    on_agent_event: Optional[Callable[[str, str, dict[str, Any]], None]] = None,
) -> Project:
    """Rebuild a project; interrupted tasks go back to ``todo``.

    Raises:
        GraphError: If the saved graph is inconsistent.
    """
    graph = TaskGraph.from_dict(data.get("graph") or {})
    board_data = data.get("board")
    board = KanbanBoard.from_dict(graph, board_data if isinstance(board_data, dict) else {})
    for task in graph:
        column = board.column_of(task.id)
        if column in INTERRUPTED_COLUMNS:
            logger.warning("Task %s was %s when the snapshot was taken; resetting to todo", task.id, column)
            board.requeue_interrupted(task.id)
            task.started_at = None

    pool_data = data.get("pool")
    pool = AgentPool.from_dict(pool_data if isinstance(pool_data, dict) else {}, registry, on_agent_event)
    pool.release_all()
    for task in graph:
        if task.assigned_agent_id and pool.get(task.assigned_agent_id):
            continue
        agent_type, _ = find_best_agent_type(task, registry)
        agent = pool.ensure_agent(agent_type)
        task.assigned_agent_id = agent.id
        board.assign_agent(task.id, agent.id)
        pool.assign(agent.id, task.id)

    plan_data = data.get("assignments")
    plan = AssignmentPlan.from_dict(plan_data if isinstance(plan_data, dict) else {})

    history: dict[str, list[VerificationResult]] = {}
    raw_history = data.get("verification_history")
    if isinstance(raw_history, dict):
        for task_id, items in raw_history.items():
            if isinstance(items, list):
                history[str(task_id)] = [VerificationResult.from_dict(i) for i in items if isinstance(i, dict)]

    try:
        status = ProjectStatus(data.get("status") or "created")
    except ValueError:
        status = ProjectStatus.CREATED
    if status == ProjectStatus.RUNNING:
        status = ProjectStatus.CREATED

    project = Project(
        id=str(data.get("id") or "project"),
        name=str(data.get("name") or data.get("id") or "project"),
        project_dir=Path(str(data.get("project_dir") or ".")),
        graph=graph,
        board=board,
        pool=pool,
        plan=plan,
        status=status,
        verification_history=history,
        completed_at=data.get("completed_at"),
    )
    if data.get("created_at"):
        project.created_at = str(data["created_at"])
    return project


def save_snapshot(path: Path, snapshot: dict[str, Any]) -> None:
    _save_data(path, snapshot)


def load_snapshot(path: Path) -> dict[str, Any]:
    """Read a snapshot file.

    Raises:
        TaskRunnerError: If the file is missing or unreadable.
    """
    if not path.exists():
        raise TaskRunnerError(f"Snapshot not found: {path}")
    data, err = _load_data_with_error(path, {})
    if err:
        raise TaskRunnerError(f"Unreadable snapshot: {err}")
    return data
