"""Task model, dependency graph, and kanban board.

The graph owns the tasks; the board partitions their ids into lifecycle
columns and is the only path through which a task's status changes during a
run.
"""

from .board import KanbanBoard, KanbanColumn
from .graph import TaskGraph
from .model import CompletionMode, Task, TaskPriority, TaskStatus

__all__ = ["CompletionMode", "KanbanBoard", "KanbanColumn", "Task", "TaskGraph", "TaskPriority", "TaskStatus"]
