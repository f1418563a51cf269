"""Dependency graph of tasks.

Edges point from a dependency to its dependent (``source -> dependent``).  A
task is *ready* when it is still ``todo`` and every incoming source is
``completed``.  Readiness is recomputed by a full scan on every call rather
than maintained incrementally, so it stays correct no matter how task status
was mutated in between.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Iterable, Iterator, Optional

from ..errors import CycleDetected, DuplicateTask, InvalidDependency
from .model import Task, TaskStatus

logger = logging.getLogger(__name__)


class TaskGraph:
    """Ordered task nodes plus ``source -> dependent`` edges."""

    def __init__(self) -> None:
        self._tasks: dict[str, Task] = {}
        self._edges: list[tuple[str, str]] = []
        self._incoming: dict[str, list[str]] = defaultdict(list)
        self._outgoing: dict[str, list[str]] = defaultdict(list)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def build(cls, tasks: Iterable[Task]) -> "TaskGraph":
        """Build and validate a graph from a decomposed task list.

        Dependencies may reference tasks that appear later in the list.

        Raises:
            DuplicateTask: Two tasks share an id.
            InvalidDependency: A dependency id is not in the list.
            CycleDetected: The dependencies form a cycle.
        """
        graph = cls()
        task_list = list(tasks)
        for task in task_list:
            graph._insert(task)
        for task in task_list:
            for dep_id in task.dependencies:
                if dep_id not in graph._tasks:
                    raise InvalidDependency(task.id, dep_id)
                graph._link(dep_id, task.id)
        graph.validate()
        logger.debug("Built task graph with %d tasks and %d edges", len(graph), len(graph._edges))
        return graph

    def add_task(self, task: Task, dependencies: Optional[list[str]] = None) -> Task:
        """Insert a task node and the edges from its dependencies.

        Args:
            task: The task to add.
            dependencies: Dependency ids; defaults to ``task.dependencies``.

        Raises:
            DuplicateTask: A task with the same id already exists.
            InvalidDependency: A dependency id is not in the graph.
        """
        deps = list(task.dependencies if dependencies is None else dependencies)
        if task.id in self._tasks:
            raise DuplicateTask(task.id)
        for dep_id in deps:
            if dep_id not in self._tasks:
                raise InvalidDependency(task.id, dep_id)
        task.dependencies = deps
        self._insert(task)
        for dep_id in deps:
            self._link(dep_id, task.id)
        return task

    def add_dependency(self, task_id: str, dependency_id: str) -> None:
        """Add an edge ``dependency_id -> task_id`` after both tasks exist.

        Raises:
            InvalidDependency: Either id is unknown.
            CycleDetected: The new edge would close a cycle.
        """
        if task_id not in self._tasks:
            raise InvalidDependency(dependency_id, task_id)
        if dependency_id not in self._tasks:
            raise InvalidDependency(task_id, dependency_id)
        if dependency_id in self._incoming[task_id]:
            return
        path = self._path(task_id, dependency_id)
        if path is not None:
            raise CycleDetected(path + [task_id])
        self._link(dependency_id, task_id)
        self._tasks[task_id].dependencies.append(dependency_id)

    def _insert(self, task: Task) -> None:
        if task.id in self._tasks:
            raise DuplicateTask(task.id)
        self._tasks[task.id] = task

    def _link(self, source: str, dependent: str) -> None:
        if source in self._incoming[dependent]:
            return
        self._edges.append((source, dependent))
        self._incoming[dependent].append(source)
        self._outgoing[source].append(dependent)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __iter__(self) -> Iterator[Task]:
        return iter(list(self._tasks.values()))

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks.values())

    @property
    def edges(self) -> list[tuple[str, str]]:
        return list(self._edges)

    def get(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise KeyError(f"Unknown task: {task_id}") from None

    def dependencies_of(self, task_id: str) -> list[str]:
        return list(self._incoming.get(task_id, []))

    def dependents_of(self, task_id: str) -> list[str]:
        return list(self._outgoing.get(task_id, []))

    def is_ready(self, task_id: str) -> bool:
        task = self.get(task_id)
        if task.status != TaskStatus.TODO:
            return False
        return all(self._tasks[dep].status == TaskStatus.COMPLETED for dep in self._incoming.get(task_id, []))

    def ready_tasks(self) -> list[Task]:
        """Return every ``todo`` task whose dependencies are all completed.

        Order is stable insertion order.
        """
        return [task for task in self._tasks.values() if self.is_ready(task.id)]

    def is_complete(self) -> bool:
        return all(task.status == TaskStatus.COMPLETED for task in self._tasks.values())

    def unreachable_tasks(self) -> list[Task]:
        """Tasks that can never become ready because an ancestor is failed or blocked."""
        stuck = {t.id for t in self._tasks.values() if t.status in (TaskStatus.FAILED, TaskStatus.BLOCKED)}
        result: list[Task] = []
        for task in self._tasks.values():
            if task.status != TaskStatus.TODO:
                continue
            if self._ancestors(task.id) & stuck:
                result.append(task)
        return result

    def _ancestors(self, task_id: str) -> set[str]:
        seen: set[str] = set()
        stack = list(self._incoming.get(task_id, []))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._incoming.get(current, []))
        return seen

    # ------------------------------------------------------------------
    # Cycle detection / ordering
    # ------------------------------------------------------------------

    def _path(self, start: str, goal: str) -> Optional[list[str]]:
        """Return a ``start -> ... -> goal`` path along edges, or None."""
        parents: dict[str, Optional[str]] = {start: None}
        stack = [start]
        while stack:
            current = stack.pop()
            if current == goal:
                path = [current]
                while parents[path[-1]] is not None:
                    path.append(parents[path[-1]])  # type: ignore[arg-type]
                return list(reversed(path))
            for nxt in self._outgoing.get(current, []):
                if nxt not in parents:
                    parents[nxt] = current
                    stack.append(nxt)
        return None

    def find_cycle(self) -> Optional[list[str]]:
        """Return the task ids along one cycle (first id repeated at the end), or None."""
        white, grey, black = 0, 1, 2
        color = {tid: white for tid in self._tasks}
        for root in self._tasks:
            if color[root] != white:
                continue
            stack: list[tuple[str, Iterator[str]]] = [(root, iter(self._outgoing.get(root, [])))]
            trail = [root]
            color[root] = grey
            while stack:
                node, children = stack[-1]
                nxt = next(children, None)
                if nxt is None:
                    color[node] = black
                    stack.pop()
                    trail.pop()
                    continue
                if color[nxt] == grey:
                    return trail[trail.index(nxt):] + [nxt]
                if color[nxt] == white:
                    color[nxt] = grey
                    stack.append((nxt, iter(self._outgoing.get(nxt, []))))
                    trail.append(nxt)
        return None

    def validate(self) -> None:
        """Raise if edges reference unknown ids or form a cycle."""
        for source, dependent in self._edges:
            if source not in self._tasks:
                raise InvalidDependency(dependent, source)
        cycle = self.find_cycle()
        if cycle:
            raise CycleDetected(cycle)

    def execution_levels(self) -> list[list[str]]:
        """Topological sort into batches of independent tasks (Kahn's algorithm).

        Level 0 holds tasks with no dependencies; each following level holds
        tasks whose dependencies all sit in earlier levels.
        """
        in_degree = {tid: len(self._incoming.get(tid, [])) for tid in self._tasks}
        queue = [tid for tid, deg in in_degree.items() if deg == 0]
        levels: list[list[str]] = []
        while queue:
            levels.append(list(queue))
            next_queue: list[str] = []
            for tid in queue:
                for neighbor in self._outgoing.get(tid, []):
                    in_degree[neighbor] -= 1
                    if in_degree[neighbor] == 0:
                        next_queue.append(neighbor)
            queue = next_queue

        remaining = [tid for tid, deg in in_degree.items() if deg > 0]
        if remaining:
            logger.warning("Dependency cycle detected among tasks: %s", remaining)
        return levels

    def statistics(self) -> dict[str, Any]:
        counts: dict[str, int] = {status.value: 0 for status in TaskStatus}
        for task in self._tasks.values():
            counts[task.status.value] += 1
        total = len(self._tasks)
        return {
            "total": total,
            "by_status": counts,
            "completion_pct": round(100.0 * counts[TaskStatus.COMPLETED.value] / total, 1) if total else 100.0,
            "estimated_hours": round(sum(t.estimated_hours for t in self._tasks.values()), 2),
            "levels": len(self.execution_levels()),
            "edges": len(self._edges),
        }

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [task.to_dict() for task in self._tasks.values()],
            "edges": [[source, dependent] for source, dependent in self._edges],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskGraph":
        """Restore a graph from :meth:`to_dict` output.

        Edges are restored from the explicit edge list when present, otherwise
        from each task's ``dependencies``.
        """
        graph = cls()
        tasks = [Task.from_dict(item) for item in data.get("tasks") or [] if isinstance(item, dict)]
        for task in tasks:
            graph._insert(task)
        raw_edges = data.get("edges")
        if isinstance(raw_edges, list):
            pairs = [(str(e[0]), str(e[1])) for e in raw_edges if isinstance(e, (list, tuple)) and len(e) == 2]
        else:
            pairs = [(dep, task.id) for task in tasks for dep in task.dependencies]
        for source, dependent in pairs:
            if source not in graph._tasks:
                raise InvalidDependency(dependent, source)
            if dependent not in graph._tasks:
                raise InvalidDependency(source, dependent)
            graph._link(source, dependent)
        graph.validate()
        return graph
