"""Tests for project snapshots."""

import asyncio
from pathlib import Path

import pytest

from verified_task_runner.agents.registry import AgentRegistry
from verified_task_runner.config import OrchestratorConfig, RunnerConfig
from verified_task_runner.errors import TaskRunnerError
from verified_task_runner.orchestrator import (
    OrchestrationEngine,
    ProjectStatus,
    load_snapshot,
    project_from_dict,
    save_snapshot,
)
from verified_task_runner.runtime.worker import ScriptedWorkerAdapter
from verified_task_runner.task_engine.model import TaskStatus
from verified_task_runner.verification.pipeline import VerificationPipeline


def _engine() -> OrchestrationEngine:
    config = RunnerConfig(orchestrator=OrchestratorConfig(worker="scripted"))
    return OrchestrationEngine(
        config,
        worker=ScriptedWorkerAdapter(),
        pipeline=VerificationPipeline(config, step_names=("documentation",)),
    )


def _tasks() -> list[dict]:
    readme = {"files": {"README.md": "# Demo\nInstall with pip, then start it.\n", "main.py": "# hi\nx = 1\n"}}
    return [
        {"id": "a", "title": "Docs", "task_type": "python", "metadata": {"scripted_worker": readme}},
        {"id": "b", "title": "More docs", "task_type": "python", "dependencies": ["a"],
         "metadata": {"scripted_worker": readme}},
    ]


class TestSnapshot:
    def test_round_trip_after_run(self, tmp_path: Path):
        engine = _engine()
        project = engine.create_project(_tasks(), tmp_path, name="docs")
        asyncio.run(engine.run_project(project.id))
        assert project.status == ProjectStatus.COMPLETED

        path = tmp_path / ".task_runner" / "snapshot.yaml"
        save_snapshot(path, engine.snapshot(project.id))

        other = _engine()
        restored = other.restore(load_snapshot(path))
        assert restored.id == project.id
        assert restored.status == ProjectStatus.COMPLETED
        assert [t.status for t in restored.graph] == [TaskStatus.COMPLETED, TaskStatus.COMPLETED]
        assert restored.board.columns() == project.board.columns()
        assert restored.assignments == project.assignments
        assert len(restored.verification_history["a"]) == 1
        assert other.project_summary(project.id)["quality"]["total"] == 2

    def test_interrupted_tasks_reset_to_todo(self, tmp_path: Path):
        engine = _engine()
        project = engine.create_project(_tasks(), tmp_path)
        engine.move_task(project.id, "a", "todo", "inProgress")
        project.pool.start_task(project.graph.get("a").assigned_agent_id, "a")
        project.status = ProjectStatus.RUNNING

        restored = project_from_dict(engine.snapshot(project.id), AgentRegistry())
        assert restored.graph.get("a").status == TaskStatus.TODO
        assert restored.board.column_of("a") == "todo"
        assert restored.status == ProjectStatus.CREATED
        assert all(not agent.active_task_ids for agent in restored.pool.list_agents())

    def test_restored_project_can_run(self, tmp_path: Path):
        engine = _engine()
        project = engine.create_project(_tasks(), tmp_path)
        snapshot = engine.snapshot(project.id)

        other = _engine()
        restored = other.restore(snapshot)
        asyncio.run(other.run_project(restored.id))
        assert restored.status == ProjectStatus.COMPLETED

    def test_missing_agents_are_reassigned(self, tmp_path: Path):
        engine = _engine()
        project = engine.create_project(_tasks(), tmp_path)
        snapshot = engine.snapshot(project.id)
        snapshot["pool"] = {"agents": []}
        restored = project_from_dict(snapshot, AgentRegistry())
        agent_id = restored.graph.get("a").assigned_agent_id
        assert restored.pool.get(agent_id) is not None
        assert "a" in restored.pool.get(agent_id).assigned_task_ids

    def test_load_missing(self, tmp_path: Path):
        with pytest.raises(TaskRunnerError, match="not found"):
            load_snapshot(tmp_path / "nope.yaml")

    def test_load_unreadable(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(TaskRunnerError, match="Unreadable"):
            load_snapshot(path)
