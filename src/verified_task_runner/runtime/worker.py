"""External worker boundary.

The engine hands a worker a task description, a session id, and a working
directory, and gets back a :class:`WorkerResult` or an ``ExecutionError``.
The default worker shells out to the ``goose`` CLI; its prose output is
reduced to a short summary here so nothing else depends on its shape.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Protocol

from loguru import logger

from ..constants import DEFAULT_PROBE_TIMEOUT_SECONDS
from ..errors import ExecutionError, WorkerTimeout
from ..logging_utils import tail_text
from ..task_engine.model import Task
from .commands import run_command

_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")


@dataclass(frozen=True)
class WorkerResult:
    session_id: str
    exit_code: int = 0
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "exit_code": self.exit_code,
            "duration_seconds": round(self.duration_seconds, 3),
            "summary": self.summary,
        }


class WorkerAdapter(Protocol):
    async def run(
        self,
        *,
        task: Task,
        description: str,
        session_id: str,
        working_dir: Path,
        timeout_seconds: float,
    ) -> WorkerResult:
        ...

    async def is_available(self) -> bool:
        ...


# ---------------------------------------------------------------------------
# Prompt / session helpers
# ---------------------------------------------------------------------------

def session_id_for(agent_type_id: str, title: str, suffix: Optional[str] = None) -> str:
    """Short session name: ``{agent_type}-{alnum title[:20]}[-suffix]``."""
    base = f"{agent_type_id}-{_NON_ALNUM_RE.sub('', title)[:20]}"
    return f"{base}-{suffix}" if suffix else base


def build_task_description(task: Task, agent_type: Any, project_dir: Path) -> str:
    """Render the instruction text handed to the worker for a first attempt."""
    lines = [
        f"You are a {agent_type.specialization} specialist working on: {task.title}",
        "",
        f"Task Description: {task.description}",
        "",
        f"Priority: {task.priority.value}",
        f"Estimated Hours: {task.estimated_hours}",
        "",
    ]
    if task.skills:
        lines += [f"Required Skills: {', '.join(task.skills)}", ""]
    if task.deliverables:
        lines.append("Expected Deliverables:")
        lines += [f"- {item}" for item in task.deliverables]
        lines.append("")
    lines += [
        "Project Context:",
        f"- Task Type: {task.task_type}",
        f"- Working Directory: {project_dir}",
        f"- Your Role: {agent_type.name}",
        f"- Your Capabilities: {', '.join(agent_type.capabilities)}",
        "",
    ]
    if agent_type.instructions:
        lines.append(f"{agent_type.specialization} Instructions:")
        lines += [f"- {item}" for item in agent_type.instructions]
        lines.append("")
    lines += [
        "Important Notes:",
        "- Create any necessary files and directories",
        "- Do not start long-running servers or test watchers; verification runs separately",
        "- Follow the conventions already present in the working directory",
        "- If you encounter issues, explain them clearly",
        "- Complete your task and exit cleanly",
    ]
    return "\n".join(lines)


def _summarize_output(stdout: str, max_lines: int = 5) -> str:
    """Last few non-empty lines of worker output."""
    lines = [line.strip() for line in (stdout or "").splitlines() if line.strip()]
    return "\n".join(lines[-max_lines:])


# ---------------------------------------------------------------------------
# Goose CLI adapter
# ---------------------------------------------------------------------------

class GooseWorkerAdapter:
    """Runs ``goose run --text <description> --name <session>`` in the working dir."""

    def __init__(self, executable: str = "goose") -> None:
        self.executable = executable

    async def is_available(self) -> bool:
        result = await run_command(
            self.executable,
            ["--version"],
            timeout_seconds=DEFAULT_PROBE_TIMEOUT_SECONDS,
        )
        if result.success:
            logger.debug("Worker available: {}", result.stdout.strip() or self.executable)
        else:
            logger.warning("Worker probe failed: {}", result.error)
        return result.success

    async def run(
        self,
        *,
        task: Task,
        description: str,
        session_id: str,
        working_dir: Path,
        timeout_seconds: float,
    ) -> WorkerResult:
        working_dir.mkdir(parents=True, exist_ok=True)
        logger.info("[{}] Starting worker for task {} in {}", session_id, task.id, working_dir)
        result = await run_command(
            self.executable,
            ["run", "--text", description, "--name", session_id],
            working_dir,
            timeout_seconds=timeout_seconds,
        )
        if result.timed_out:
            raise WorkerTimeout(task.id, f"worker timed out after {timeout_seconds}s")
        if not result.success:
            raise ExecutionError(
                task.id,
                f"worker exited with code {result.exit_code}: {tail_text(result.error or '', 500)}",
            )
        logger.info("[{}] Worker finished in {:.1f}s", session_id, result.duration_seconds)
        return WorkerResult(
            session_id=session_id,
            exit_code=result.exit_code,
            stdout=result.stdout,
            stderr=result.stderr,
            duration_seconds=result.duration_seconds,
            summary=_summarize_output(result.stdout),
        )


# ---------------------------------------------------------------------------
# Scripted adapter (deterministic; tests and dry runs)
# ---------------------------------------------------------------------------

class ScriptedWorkerAdapter:
    """Deterministic worker driven by ``task.metadata['scripted_worker']``.

    The entry is a dict, or a list of dicts indexed by attempt (``retry_count``;
    the last entry repeats).  Recognised keys:

    - ``files``: mapping of relative path to text content written into the working dir
    - ``raise``: message; raises ``ExecutionError``
    - ``exit_code``: non-zero raises ``ExecutionError``
    - ``sleep``: seconds to wait before returning
    - ``output``: text returned as stdout
    """

    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.calls: list[dict[str, Any]] = []

    async def is_available(self) -> bool:
        return self.available

    @staticmethod
    def _script_for(task: Task) -> dict[str, Any]:
        script = task.metadata.get("scripted_worker") if isinstance(task.metadata, dict) else None
        if isinstance(script, list) and script:
            entry = script[min(task.retry_count, len(script) - 1)]
            return entry if isinstance(entry, dict) else {}
        return script if isinstance(script, dict) else {}

    async def run(
        self,
        *,
        task: Task,
        description: str,
        session_id: str,
        working_dir: Path,
        timeout_seconds: float,
    ) -> WorkerResult:
        started = time.monotonic()
        self.calls.append({"task_id": task.id, "session_id": session_id, "description": description})
        script = self._script_for(task)

        delay = float(script.get("sleep") or 0)
        if delay:
            await asyncio.sleep(delay)
        if script.get("raise"):
            raise ExecutionError(task.id, str(script["raise"]))
        exit_code = int(script.get("exit_code") or 0)
        if exit_code:
            raise ExecutionError(task.id, f"worker exited with code {exit_code}")

        working_dir.mkdir(parents=True, exist_ok=True)
        files = script.get("files")
        if isinstance(files, dict):
            for rel, content in files.items():
                path = working_dir / str(rel)
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(str(content), encoding="utf-8")

        output = str(script.get("output") or f"completed {task.title}")
        return WorkerResult(
            session_id=session_id,
            stdout=output,
            duration_seconds=time.monotonic() - started,
            summary=_summarize_output(output),
        )
