"""Drive a project's task graph to completion through workers and verification.

Every graph, board and pool mutation happens on the event loop thread with no
await in between, so the loop below is the single writer.  Task-level errors
never escape ``run_project``; they become task state (failed, blocked, or
completed via timeout) and execution continues with the remaining tasks.
"""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from loguru import logger

from ..agents.pool import AgentPool
from ..agents.registry import AgentRegistry, AgentType
from ..agents.scheduler import assign_tasks, find_best_agent_type
from ..config import RunnerConfig
from ..errors import CriticalQAFailure, ExecutionError, WorkerTimeout, WorkerUnavailable
from ..events import EventBus, EventSink, EventType
from ..runtime.worker import (
    GooseWorkerAdapter,
    ScriptedWorkerAdapter,
    WorkerAdapter,
    build_task_description,
    session_id_for,
)
from ..task_engine.board import KanbanBoard
from ..task_engine.graph import TaskGraph
from ..task_engine.model import CompletionMode, Task, TaskStatus
from ..utils import _now_iso
from ..verification.base import Severity, VerificationResult
from ..verification.pipeline import VerificationPipeline
from ..verification.remediation import (
    build_execution_plan,
    build_improvement_prompt,
    build_remediation_plan,
    execution_recommendations,
)
from ..verification.severity import classify_severity
from .project import Project, ProjectStatus, ProjectStore
from .snapshot import project_from_dict, project_to_dict


def build_worker(config: RunnerConfig) -> WorkerAdapter:
    orch = config.orchestrator
    if orch.worker == "scripted":
        return ScriptedWorkerAdapter()
    return GooseWorkerAdapter(executable=orch.goose_executable)


class OrchestrationEngine:
    """Owns projects and runs their tasks.

    Args:
        config: Validated runner configuration.
        worker: External worker adapter; built from ``config`` when omitted.
        pipeline: Verification pipeline; built from ``config`` when omitted.
        event_sink: Optional sink receiving every lifecycle event.
        registry: Agent type registry; config ``agents.types`` entries are merged in.
    """

    def __init__(
        self,
        config: Optional[RunnerConfig] = None,
        worker: Optional[WorkerAdapter] = None,
        pipeline: Optional[VerificationPipeline] = None,
        event_sink: Optional[EventSink] = None,
        registry: Optional[AgentRegistry] = None,
    ) -> None:
        self.config = config or RunnerConfig()
        self.registry = registry or AgentRegistry()
        if self.config.agent_types:
            self.registry.load_entries(self.config.agent_types)
        self.worker = worker or build_worker(self.config)
        self.events = EventBus([event_sink] if event_sink is not None else [])
        self.pipeline = pipeline or VerificationPipeline(self.config, events=self.events)
        self.projects = ProjectStore()
        self._buses: dict[str, EventBus] = {}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _bus(self, project_id: str) -> EventBus:
        bus = self._buses.get(project_id)
        if bus is None:
            bus = self.events.for_project(project_id)
            self._buses[project_id] = bus
        return bus

    def _agent_callback(self, project_id: str):
        def on_agent_event(agent_id: str, change: str, data: dict[str, Any]) -> None:
            self._bus(project_id).emit(EventType.AGENT_STATUS_CHANGED, agent_id=agent_id, change=change, **data)

        return on_agent_event

    def _move(
        self,
        project: Project,
        task: Task,
        to_column: TaskStatus,
        from_column: Optional[str] = None,
    ) -> bool:
        source = from_column or project.board.column_of(task.id)
        if source is None:
            logger.warning("Task {} is not on the board", task.id)
            return False
        moved = project.board.move(task.id, source, to_column, agent_id=task.assigned_agent_id)
        if moved:
            self._bus(project.id).emit(
                EventType.KANBAN_MOVED,
                task_id=task.id,
                agent_id=task.assigned_agent_id,
                from_column=source,
                to_column=to_column.value,
            )
        return moved

    # ------------------------------------------------------------------
    # Project lifecycle
    # ------------------------------------------------------------------

    def create_project(
        self,
        tasks: Iterable[Union[Task, dict[str, Any]]],
        project_dir: Path,
        name: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> Project:
        """Build, validate and assign a project.

        Raises:
            GraphError: If a dependency is unknown, a task id repeats, or the
                dependencies form a cycle.
        """
        items = [t if isinstance(t, Task) else Task.from_dict(t) for t in tasks]
        for task in items:
            task.status = TaskStatus.TODO
        graph = TaskGraph.build(items)

        project_id = project_id or f"project-{uuid.uuid4().hex[:8]}"
        if project_id in self.projects:
            raise ValueError(f"Project already exists: {project_id}")
        bus = self._bus(project_id)

        pool = AgentPool(self.registry, on_agent_event=self._agent_callback(project_id))
        plan = assign_tasks(graph.tasks, pool)
        board = KanbanBoard.for_graph(graph)
        project = Project(
            id=project_id,
            name=name or project_id,
            project_dir=project_dir,
            graph=graph,
            board=board,
            pool=pool,
            plan=plan,
        )
        self.projects.add(project)

        for assignment in plan.assignments.values():
            bus.emit(
                EventType.TASK_ASSIGNED,
                task_id=assignment.task_id,
                agent_id=assignment.agent_id,
                score=round(assignment.score, 4),
                reason=assignment.reason,
            )
        bus.emit(EventType.PROJECT_CREATED, name=project.name, tasks=len(graph), agents=len(pool.list_agents()))
        logger.info(
            "Created project {} with {} tasks across {} agents",
            project_id,
            len(graph),
            len(pool.list_agents()),
        )
        return project

    async def run_project(self, project_id: str) -> Project:
        """Execute ready tasks until the graph completes or nothing can progress."""
        project = self.projects.get(project_id)
        bus = self._bus(project_id)
        max_parallel = self.config.orchestrator.max_parallel_tasks
        project.status = ProjectStatus.RUNNING
        project.completed_at = None
        running: dict[asyncio.Task, str] = {}

        logger.info("Running project {} ({} tasks)", project_id, len(project.graph))
        try:
            while True:
                for task in project.graph.ready_tasks():
                    if len(running) >= max_parallel:
                        break
                    if task.id in running.values():
                        continue
                    agent_id = task.assigned_agent_id or self._assign_late(project, task)
                    if not project.pool.has_slot(agent_id):
                        continue
                    self._start_task(project, task)
                    running[asyncio.create_task(self._execute_task(project, task))] = task.id

                if not running:
                    break

                done, _ = await asyncio.wait(set(running), return_when=asyncio.FIRST_COMPLETED)
                for finished in done:
                    task_id = running.pop(finished)
                    exc = finished.exception()
                    if exc is not None:
                        logger.opt(exception=exc).error("Execution of {} crashed", task_id)
                        self._fail_execution(project, project.graph.get(task_id), f"{exc.__class__.__name__}: {exc}")
                if project.graph.is_complete():
                    break
        except asyncio.CancelledError:
            for pending in running:
                pending.cancel()
            await asyncio.gather(*running, return_exceptions=True)
            raise

        if project.graph.is_complete():
            project.status = ProjectStatus.COMPLETED
            project.completed_at = _now_iso()
            bus.emit(EventType.PROJECT_COMPLETED, counts=project.board.counts())
            logger.info("Project {} completed", project_id)
        else:
            project.status = ProjectStatus.STALLED
            unreachable = [t.id for t in project.graph.unreachable_tasks()]
            bus.emit(EventType.PROJECT_STALLED, counts=project.board.counts(), unreachable=unreachable)
            logger.warning(
                "Project {} stalled: {} task(s) cannot proceed ({})",
                project_id,
                len(unreachable),
                ", ".join(unreachable) or "none ready",
            )
        return project

    def _assign_late(self, project: Project, task: Task) -> str:
        agent_type, _ = find_best_agent_type(task, project.pool.registry)
        agent = project.pool.ensure_agent(agent_type)
        project.pool.assign(agent.id, task.id)
        project.board.assign_agent(task.id, agent.id)
        task.assigned_agent_id = agent.id
        return agent.id

    def _start_task(self, project: Project, task: Task) -> None:
        project.pool.start_task(task.assigned_agent_id, task.id)
        self._move(project, task, TaskStatus.IN_PROGRESS, TaskStatus.TODO.value)
        task.started_at = _now_iso()
        task.error = None
        self._bus(project.id).emit(EventType.TASK_STARTED, task_id=task.id, agent_id=task.assigned_agent_id)

    # ------------------------------------------------------------------
    # Task execution
    # ------------------------------------------------------------------

    async def _execute_task(self, project: Project, task: Task) -> None:
        agent_id = task.assigned_agent_id
        agent_type = project.pool.agent_type_of(agent_id)
        try:
            if self.config.orchestrator.check_worker_available and not await self.worker.is_available():
                raise WorkerUnavailable(task.id, "worker is not available")
            description = build_task_description(task, agent_type, project.project_dir)
            result = await self._attempt(project, task, description, session_id_for(agent_type.id, task.title))
            await self._handle_result(project, task, agent_type, result)
        except WorkerTimeout as exc:
            self._complete_via_timeout(project, task, exc)
        except CriticalQAFailure as exc:
            self._block(project, task, exc)
        except ExecutionError as exc:
            logger.error("[{}] {}", task.id, exc.message)
            self._fail_execution(project, task, exc.message)
        except Exception as exc:
            logger.exception("Unexpected error executing {}", task.id)
            self._fail_execution(project, task, f"{exc.__class__.__name__}: {exc}")
        finally:
            project.pool.finish_task(agent_id, task.id, success=task.status == TaskStatus.COMPLETED)

    async def _attempt(
        self,
        project: Project,
        task: Task,
        description: str,
        session_id: str,
    ) -> VerificationResult:
        """One worker run plus verification, bounded by the task timeout."""
        timeout = self.config.orchestrator.task_timeout_seconds
        try:
            return await asyncio.wait_for(
                self._work_and_verify(project, task, description, session_id, timeout),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            raise WorkerTimeout(task.id, f"attempt exceeded {timeout}s") from None

    async def _work_and_verify(
        self,
        project: Project,
        task: Task,
        description: str,
        session_id: str,
        timeout: float,
    ) -> VerificationResult:
        worker_result = await self.worker.run(
            task=task,
            description=description,
            session_id=session_id,
            working_dir=project.project_dir,
            timeout_seconds=timeout,
        )
        task.metadata["last_worker_summary"] = worker_result.summary
        result = await self.pipeline.verify(
            task,
            project.project_dir,
            attempt=task.retry_count + 1,
            events=self._bus(project.id),
        )
        project.record_verification(task.id, result)
        return result

    async def _handle_result(
        self,
        project: Project,
        task: Task,
        agent_type: AgentType,
        result: VerificationResult,
    ) -> None:
        """Apply the bounded retry policy until the task passes or settles."""
        policy = self.config.retry
        bus = self._bus(project.id)
        while True:
            task.verification_score = result.score
            task.add_issues(list(result.issues))
            task.add_recommendations(list(result.recommendations))
            if result.passed:
                self._complete(project, task, CompletionMode.VERIFIED, result)
                return

            severity = result.severity or classify_severity(result)
            plan = build_remediation_plan(task, result)
            task.remediation_plan = plan.to_dict()
            if severity == Severity.CRITICAL:
                raise CriticalQAFailure(task.id, result)

            if result.score < policy.retry_floor or task.retry_count >= policy.max_auto_retries:
                self._fail(
                    project,
                    task,
                    f"Verification failed with score {result.score:.2f} ({severity.value}) "
                    f"after {task.retry_count} retr{'y' if task.retry_count == 1 else 'ies'}",
                )
                return

            self._move(project, task, TaskStatus.REVISION)
            bus.emit(
                EventType.TASK_NEEDS_REVISION,
                task_id=task.id,
                agent_id=task.assigned_agent_id,
                score=round(result.score, 4),
                severity=severity.value,
                estimate=plan.estimate.to_dict() if plan.estimate else None,
            )
            task.retry_count += 1
            prompt = build_improvement_prompt(task, result, plan)
            self._move(project, task, TaskStatus.IN_PROGRESS, TaskStatus.REVISION.value)
            bus.emit(
                EventType.TASK_RETRY_STARTED,
                task_id=task.id,
                agent_id=task.assigned_agent_id,
                attempt=task.retry_count,
            )
            logger.info("Retrying {} (attempt {}) after score {:.2f}", task.id, task.retry_count + 1, result.score)
            session_id = session_id_for(agent_type.id, task.title, f"retry{task.retry_count}")
            result = await self._attempt(project, task, prompt, session_id)

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    def _complete(
        self,
        project: Project,
        task: Task,
        mode: CompletionMode,
        result: Optional[VerificationResult] = None,
    ) -> None:
        if not self._move(project, task, TaskStatus.COMPLETED):
            return
        task.completion_mode = mode
        task.completed_at = _now_iso()
        task.error = None
        if mode == CompletionMode.VERIFIED:
            task.remediation_plan = None
        self._bus(project.id).emit(
            EventType.TASK_COMPLETED,
            task_id=task.id,
            agent_id=task.assigned_agent_id,
            via=mode.value,
            score=round(result.score, 4) if result else None,
        )
        logger.info("Task {} {}", task.id, task.completion_label)

    def _complete_via_timeout(self, project: Project, task: Task, exc: WorkerTimeout) -> None:
        logger.warning("[{}] {}; completing via timeout", task.id, exc.message)
        task.add_issues([f"Completed via timeout: {exc.message}; verification did not finish"])
        task.add_recommendations(["Re-run verification for this task before relying on its output"])
        self._complete(project, task, CompletionMode.TIMEOUT)

    def _fail_execution(self, project: Project, task: Task, message: str) -> None:
        """Fail a task whose worker never produced a verifiable result."""
        if task.status == TaskStatus.FAILED:
            return
        task.add_issues([f"Execution failed: {message}"])
        task.add_recommendations(execution_recommendations(message))
        if task.remediation_plan is None:
            task.remediation_plan = build_execution_plan(task, message).to_dict()
        self._fail(project, task, message)

    def _fail(self, project: Project, task: Task, message: str) -> None:
        if task.status == TaskStatus.FAILED:
            return
        if not self._move(project, task, TaskStatus.FAILED):
            return
        task.error = message
        task.completed_at = _now_iso()
        self._bus(project.id).emit(
            EventType.TASK_FAILED,
            task_id=task.id,
            agent_id=task.assigned_agent_id,
            error=message,
        )
        logger.warning("Task {} failed: {}", task.id, message)

    def _block(self, project: Project, task: Task, exc: CriticalQAFailure) -> None:
        bus = self._bus(project.id)
        if project.board.column_of(task.id) == TaskStatus.IN_PROGRESS.value:
            self._move(project, task, TaskStatus.REVISION)
        self._move(project, task, TaskStatus.BLOCKED)
        task.error = str(exc)
        bus.emit(EventType.TASK_BLOCKED, task_id=task.id, agent_id=task.assigned_agent_id, error=task.error)
        bus.emit(
            EventType.MANUAL_REVIEW_REQUIRED,
            task_id=task.id,
            agent_id=task.assigned_agent_id,
            score=round(exc.result.score, 4) if exc.result is not None else None,
            critical_failures=list(exc.result.critical_failures) if exc.result is not None else [],
            remediation_plan=task.remediation_plan,
        )
        logger.warning("Task {} blocked for manual review: {}", task.id, exc)

    # ------------------------------------------------------------------
    # Manual controls
    # ------------------------------------------------------------------

    def resume_task(self, project_id: str, task_id: str) -> bool:
        """Requeue a blocked task so the next ``run_project`` retries it."""
        project = self.projects.get(project_id)
        task = project.graph.get(task_id)
        if task.status != TaskStatus.BLOCKED:
            logger.warning("Task {} is {}; only blocked tasks can be resumed", task_id, task.status.value)
            return False
        moved = self._move(project, task, TaskStatus.TODO, TaskStatus.BLOCKED.value)
        if moved:
            task.retry_count = 0
            task.error = None
            task.started_at = None
            task.completed_at = None
            logger.info("Task {} requeued", task_id)
        return moved

    def move_task(
        self,
        project_id: str,
        task_id: str,
        from_column: str,
        to_column: str,
        agent_id: Optional[str] = None,
    ) -> bool:
        project = self.projects.get(project_id)
        moved = project.board.move(task_id, from_column, to_column, agent_id=agent_id)
        if moved:
            self._bus(project_id).emit(
                EventType.KANBAN_MOVED,
                task_id=task_id,
                agent_id=agent_id,
                from_column=str(getattr(from_column, "value", from_column)),
                to_column=str(getattr(to_column, "value", to_column)),
            )
        return moved

    # ------------------------------------------------------------------
    # Persistence / reporting
    # ------------------------------------------------------------------

    def snapshot(self, project_id: str) -> dict[str, Any]:
        return project_to_dict(self.projects.get(project_id))

    def restore(self, snapshot: dict[str, Any]) -> Project:
        """Load a project from :meth:`snapshot` output into this engine."""
        project_id = str(snapshot.get("id") or f"project-{uuid.uuid4().hex[:8]}")
        project = project_from_dict(
            {**snapshot, "id": project_id},
            self.registry,
            on_agent_event=self._agent_callback(project_id),
        )
        if project_id in self.projects:
            logger.warning("Replacing loaded project {} with restored snapshot", project_id)
        self.projects.add(project)
        return project

    def project_summary(self, project_id: str) -> dict[str, Any]:
        return self.projects.get(project_id).summary()
