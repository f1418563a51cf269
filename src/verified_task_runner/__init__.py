"""Run dependency-ordered tasks through an external coding worker and gate each
result on automated quality verification."""

from .config import RunnerConfig, load_config
from .orchestrator import OrchestrationEngine, Project, ProjectStatus
from .task_engine import KanbanBoard, Task, TaskGraph, TaskStatus
from .verification import VerificationPipeline, VerificationResult

__version__ = "0.1.0"

__all__ = [
    "KanbanBoard",
    "OrchestrationEngine",
    "Project",
    "ProjectStatus",
    "RunnerConfig",
    "Task",
    "TaskGraph",
    "TaskStatus",
    "VerificationPipeline",
    "VerificationResult",
    "__version__",
    "load_config",
]
