"""Kanban board: a partition of task ids into lifecycle columns.

Column membership changes only through :meth:`KanbanBoard.move`, which
updates the board and the task's ``status`` in the same call and only along
the lifecycle in ``TRANSITIONS``.  Bookkeeping mistakes (task not in the
expected column, unknown column, disallowed move) are logged and ignored;
they must never abort task execution.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Optional

from ..constants import BOARD_HISTORY_LIMIT
from ..utils import _now_iso
from .graph import TaskGraph
from .model import TaskStatus

logger = logging.getLogger(__name__)


COLUMNS: tuple[str, ...] = tuple(status.value for status in TaskStatus)
# Column names are the status values.
KanbanColumn = TaskStatus

# Allowed lifecycle moves. completed and failed are terminal; review is only
# used when verification is deferred.
TRANSITIONS: dict[str, frozenset[str]] = {
    "todo": frozenset({"inProgress"}),
    "inProgress": frozenset({"completed", "revision", "failed", "blocked", "review"}),
    "revision": frozenset({"inProgress", "failed", "blocked"}),
    "review": frozenset({"completed", "revision"}),
    "blocked": frozenset({"todo"}),
    "completed": frozenset(),
    "failed": frozenset(),
}
# Columns of interrupted work that a restored board puts back in todo.
INTERRUPTED_COLUMNS = frozenset({"inProgress", "revision"})


@dataclass(frozen=True)
class KanbanMove:
    task_id: str
    from_column: str
    to_column: str
    agent_id: Optional[str]
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "from": self.from_column,
            "to": self.to_column,
            "agent_id": self.agent_id,
            "timestamp": self.timestamp,
        }


def _column_name(column: Any) -> str:
    return column.value if isinstance(column, TaskStatus) else str(column)


class KanbanBoard:
    """Columns of task ids kept in lockstep with the task graph."""

    def __init__(self, graph: TaskGraph) -> None:
        self._graph = graph
        self._columns: dict[str, list[str]] = {name: [] for name in COLUMNS}
        self._location: dict[str, str] = {}
        self._agent_of: dict[str, str] = {}
        self._history: deque[KanbanMove] = deque(maxlen=BOARD_HISTORY_LIMIT)

    @classmethod
    def for_graph(cls, graph: TaskGraph) -> "KanbanBoard":
        """Create a board placing every task in the column matching its status."""
        board = cls(graph)
        for task in graph:
            board.add(task.id, task.status.value, agent_id=task.assigned_agent_id)
        return board

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def add(self, task_id: str, column: str = "todo", agent_id: Optional[str] = None) -> None:
        column = _column_name(column)
        if column not in self._columns:
            raise ValueError(f"Unknown kanban column: {column}")
        if task_id in self._location:
            raise ValueError(f"Task {task_id} is already on the board in '{self._location[task_id]}'")
        self._columns[column].append(task_id)
        self._location[task_id] = column
        if agent_id:
            self._agent_of[task_id] = agent_id
        if task_id in self._graph:
            self._graph.get(task_id).status = TaskStatus(column)

    def assign_agent(self, task_id: str, agent_id: str) -> None:
        self._agent_of[task_id] = agent_id

    def move(
        self,
        task_id: str,
        from_column: Any,
        to_column: Any,
        agent_id: Optional[str] = None,
    ) -> bool:
        """Move a task between columns.

        Returns:
            True if the move happened. False (with a warning logged) when the
            task is not in ``from_column``, a column name is unknown, or the
            lifecycle does not allow ``from_column -> to_column``.
        """
        source = _column_name(from_column)
        target = _column_name(to_column)
        if source not in self._columns or target not in self._columns:
            logger.warning("Kanban move of %s ignored: unknown column %s -> %s", task_id, source, target)
            return False
        if self._location.get(task_id) != source:
            logger.warning(
                "Kanban move of %s ignored: expected in '%s' but found in '%s'",
                task_id,
                source,
                self._location.get(task_id),
            )
            return False
        if target not in TRANSITIONS[source]:
            logger.warning("Kanban move of %s ignored: %s -> %s is not allowed", task_id, source, target)
            return False
        self._apply(task_id, source, target, agent_id)
        return True

    def requeue_interrupted(self, task_id: str) -> bool:
        """Put a task that was mid-run back in ``todo`` (snapshot restore)."""
        source = self._location.get(task_id)
        if source not in INTERRUPTED_COLUMNS:
            return False
        self._apply(task_id, source, "todo", None)
        return True

    def _apply(self, task_id: str, source: str, target: str, agent_id: Optional[str]) -> None:
        self._columns[source].remove(task_id)
        self._columns[target].append(task_id)
        self._location[task_id] = target
        if agent_id:
            self._agent_of[task_id] = agent_id
        if task_id in self._graph:
            task = self._graph.get(task_id)
            task.status = TaskStatus(target)
            task.touch()
        self._history.append(KanbanMove(task_id, source, target, agent_id, _now_iso()))
        logger.debug("Kanban: %s %s -> %s", task_id, source, target)

    def unblock(self, task_id: str, agent_id: Optional[str] = None) -> bool:
        """Requeue a blocked task to ``todo``."""
        return self.move(task_id, TaskStatus.BLOCKED, TaskStatus.TODO, agent_id=agent_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def column_of(self, task_id: str) -> Optional[str]:
        return self._location.get(task_id)

    def columns(self) -> dict[str, list[str]]:
        return {name: list(ids) for name, ids in self._columns.items()}

    def counts(self) -> dict[str, int]:
        return {name: len(ids) for name, ids in self._columns.items()}

    @property
    def history(self) -> list[KanbanMove]:
        return list(self._history)

    def agent_board(self, agent_id: str) -> dict[str, list[str]]:
        """Columns restricted to the tasks assigned to one agent."""
        return {
            name: [tid for tid in ids if self._agent_of.get(tid) == agent_id]
            for name, ids in self._columns.items()
        }

    def agent_boards(self) -> dict[str, dict[str, list[str]]]:
        return {agent_id: self.agent_board(agent_id) for agent_id in sorted(set(self._agent_of.values()))}

    def is_partition(self) -> bool:
        """True when every graph task sits in exactly one column."""
        seen: list[str] = [tid for ids in self._columns.values() for tid in ids]
        return len(seen) == len(set(seen)) and set(seen) == {t.id for t in self._graph}

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "columns": self.columns(),
            "agents": dict(self._agent_of),
            "history": [move.to_dict() for move in self._history],
        }

    @classmethod
    def from_dict(cls, graph: TaskGraph, data: dict[str, Any]) -> "KanbanBoard":
        """Restore a board; tasks missing from the saved columns go by status."""
        board = cls(graph)
        agents = data.get("agents") if isinstance(data.get("agents"), dict) else {}
        columns = data.get("columns") if isinstance(data.get("columns"), dict) else {}
        for name, ids in columns.items():
            if name not in board._columns or not isinstance(ids, list):
                continue
            for task_id in ids:
                if task_id in graph and task_id not in board._location:
                    board.add(str(task_id), name, agent_id=agents.get(task_id))
        for task in graph:
            if task.id not in board._location:
                board.add(task.id, task.status.value, agent_id=task.assigned_agent_id)
        for item in data.get("history") or []:
            if isinstance(item, dict):
                board._history.append(KanbanMove(
                    task_id=str(item.get("task_id")),
                    from_column=str(item.get("from")),
                    to_column=str(item.get("to")),
                    agent_id=item.get("agent_id"),
                    timestamp=str(item.get("timestamp") or ""),
                ))
        return board
