"""Project orchestration: execution loop, retry policy, snapshots."""

from .engine import OrchestrationEngine, build_worker
from .project import Project, ProjectStatus, ProjectStore
from .snapshot import load_snapshot, project_from_dict, project_to_dict, save_snapshot

__all__ = [
    "OrchestrationEngine",
    "Project",
    "ProjectStatus",
    "ProjectStore",
    "build_worker",
    "load_snapshot",
    "project_from_dict",
    "project_to_dict",
    "save_snapshot",
]
