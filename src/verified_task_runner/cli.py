from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Optional

import yaml
from loguru import logger

from .config import RunnerConfig, load_config
from .constants import DEFAULT_PROBE_TIMEOUT_SECONDS, ENV_LOG_LEVEL, EVENTS_FILE, STATE_DIR_NAME
from .errors import GraphError, TaskRunnerError
from .events import JsonlFileSink
from .logging_utils import configure_logging, pretty
from .orchestrator import OrchestrationEngine, ProjectStatus, load_snapshot, save_snapshot
from .runtime.commands import run_command_sync
from .task_engine.model import Task
from .verification import VerificationPipeline


def _resolve_project_dir(project_dir: Optional[str]) -> Path:
    return Path(project_dir).expanduser().resolve() if project_dir else Path.cwd().resolve()


def _write_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, default=str) + "\n")


def _load_config(args: argparse.Namespace) -> RunnerConfig:
    config = load_config(_resolve_project_dir(args.project_dir))
    worker = getattr(args, "worker", None)
    if worker:
        config = replace(config, orchestrator=replace(config.orchestrator, worker=worker))
    return config


def _load_tasks(path: Path) -> tuple[list[dict[str, Any]], Optional[str]]:
    """Read a task list file: a YAML list, or a mapping with ``tasks`` (and optional ``name``)."""
    with open(path, "r") as handle:
        data = yaml.safe_load(handle)
    if isinstance(data, list):
        return [t for t in data if isinstance(t, dict)], None
    if isinstance(data, dict) and isinstance(data.get("tasks"), list):
        return [t for t in data["tasks"] if isinstance(t, dict)], data.get("name")
    raise TaskRunnerError(f"{path.name}: expected a list of tasks or a mapping with 'tasks'")


def _run(args: argparse.Namespace) -> int:
    project_dir = _resolve_project_dir(args.project_dir)
    try:
        config = _load_config(args)
        tasks, name = _load_tasks(Path(args.tasks).expanduser().resolve())
    except (OSError, yaml.YAMLError, TaskRunnerError) as exc:
        sys.stderr.write(f"{exc}\n")
        return 2

    events_path = Path(args.events) if args.events else project_dir / STATE_DIR_NAME / EVENTS_FILE
    engine = OrchestrationEngine(config, event_sink=JsonlFileSink(events_path))
    try:
        project = engine.create_project(tasks, project_dir, name=args.name or name)
    except GraphError as exc:
        sys.stderr.write(f"Invalid task graph: {exc}\n")
        return 2

    asyncio.run(engine.run_project(project.id))
    summary = engine.project_summary(project.id)
    if args.snapshot:
        save_snapshot(Path(args.snapshot).expanduser().resolve(), engine.snapshot(project.id))
        logger.info("Snapshot written to {}", args.snapshot)
    _write_json(summary)
    return 0 if project.status == ProjectStatus.COMPLETED else 1


def _verify(args: argparse.Namespace) -> int:
    project_dir = _resolve_project_dir(args.project_dir)
    try:
        config = _load_config(args)
    except TaskRunnerError as exc:
        sys.stderr.write(f"{exc}\n")
        return 2
    task = Task(
        id="verify",
        title=f"Verify {project_dir.name}",
        task_type=args.type or "auto",
    )
    pipeline = VerificationPipeline(config)
    result = asyncio.run(pipeline.verify(task, project_dir))
    _write_json(result.to_dict())
    return 0 if result.passed else 1


def _status(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
        snapshot = load_snapshot(Path(args.snapshot).expanduser().resolve())
        engine = OrchestrationEngine(config)
        project = engine.restore(snapshot)
    except TaskRunnerError as exc:
        sys.stderr.write(f"{exc}\n")
        return 2
    _write_json(engine.project_summary(project.id))
    return 0


def _check_worker(args: argparse.Namespace) -> int:
    try:
        config = _load_config(args)
    except TaskRunnerError as exc:
        sys.stderr.write(f"{exc}\n")
        return 2
    orch = config.orchestrator
    if orch.worker == "scripted":
        _write_json({"worker": "scripted", "available": True})
        return 0
    result = run_command_sync(orch.goose_executable, ["--version"], timeout_seconds=DEFAULT_PROBE_TIMEOUT_SECONDS)
    payload = {
        "worker": orch.worker,
        "executable": orch.goose_executable,
        "available": result.success,
        "version": result.stdout.strip() or None,
        "error": result.error,
    }
    logger.debug("Worker probe: {}", pretty(payload))
    _write_json(payload)
    return 0 if result.success else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run dependency-ordered tasks through workers and verify the results")
    parser.add_argument("--project-dir", default=None, help="Target project directory (default: current working directory)")
    parser.add_argument(
        "--log-level",
        default=os.environ.get(ENV_LOG_LEVEL, "INFO"),
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
    )
    # --project-dir is also accepted after the subcommand.
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--project-dir", default=argparse.SUPPRESS)
    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", parents=[common], help="Build a project from a task file and run it")
    run.add_argument("tasks", help="YAML task list")
    run.add_argument("--name", default=None)
    run.add_argument("--snapshot", default=None, help="Write a YAML snapshot here after the run")
    run.add_argument("--events", default=None, help="JSONL event log path")
    run.add_argument("--worker", default=None, choices=["goose", "scripted"])
    run.set_defaults(func=_run)

    verify = subparsers.add_parser("verify", parents=[common], help="Verify the project directory without running a worker")
    verify.add_argument("--type", default=None, help="Strategy (frontend, backend, database, fullstack, python)")
    verify.set_defaults(func=_verify)

    status = subparsers.add_parser("status", parents=[common], help="Summarize a saved snapshot")
    status.add_argument("snapshot")
    status.set_defaults(func=_status)

    check = subparsers.add_parser("check-worker", parents=[common], help="Check that the worker executable is available")
    check.add_argument("--worker", default=None, choices=["goose", "scripted"])
    check.set_defaults(func=_check_worker)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    return int(handler(args) or 0)
