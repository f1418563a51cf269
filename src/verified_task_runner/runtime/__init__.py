"""Subprocess-facing code: the command runner and the external worker adapters."""

from .commands import CommandResult, CommandRunner, run_command, run_command_sync, split_command
from .worker import GooseWorkerAdapter, ScriptedWorkerAdapter, WorkerAdapter, WorkerResult

__all__ = [
    "CommandResult",
    "CommandRunner",
    "GooseWorkerAdapter",
    "ScriptedWorkerAdapter",
    "WorkerAdapter",
    "WorkerResult",
    "run_command",
    "run_command_sync",
    "split_command",
]
