"""Skill-based assignment of tasks to agent types.

Scoring (per agent type, over the task's required skills):

    score = 0.6 * mean(efficiency over matched skills) + 0.4 * matched / required

An agent type that matches none of the required skills is ineligible.  When
no type is eligible the registry's generalist fallback is used; that path is
an ``AssignmentError`` recovered right here and never surfaces to callers.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ..errors import AssignmentError
from ..task_engine.model import Task
from .pool import AgentPool
from .registry import AgentRegistry, AgentType

logger = logging.getLogger(__name__)


EFFICIENCY_WEIGHT = 0.6
COVERAGE_WEIGHT = 0.4


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MatchScore:
    score: float
    efficiency: float
    coverage: float
    matched_skills: tuple[str, ...] = ()

    @property
    def eligible(self) -> bool:
        return bool(self.matched_skills)


NO_MATCH = MatchScore(score=0.0, efficiency=0.0, coverage=0.0)


def skill_match(task: Task, agent_type: AgentType) -> MatchScore:
    """Score how well *agent_type* covers the skills *task* requires."""
    required = [s.lower() for s in task.skills]
    if not required:
        return NO_MATCH
    available = agent_type.skill_set()
    matched = tuple(s for s in required if s in available)
    if not matched:
        return NO_MATCH
    efficiency = sum(agent_type.efficiency_for(s) for s in matched) / len(matched)
    coverage = len(matched) / len(required)
    return MatchScore(
        score=EFFICIENCY_WEIGHT * efficiency + COVERAGE_WEIGHT * coverage,
        efficiency=efficiency,
        coverage=coverage,
        matched_skills=matched,
    )


def _best_specialist(task: Task, registry: AgentRegistry) -> tuple[AgentType, MatchScore]:
    best: Optional[AgentType] = None
    best_score = NO_MATCH
    for agent_type in registry.list_types():
        match = skill_match(task, agent_type)
        # strict ">" keeps the earliest-registered type on ties
        if match.eligible and match.score > best_score.score:
            best, best_score = agent_type, match
    if best is None:
        raise AssignmentError(task.id, task.skills)
    return best, best_score


def find_best_agent_type(task: Task, registry: AgentRegistry) -> tuple[AgentType, MatchScore]:
    """Return the best agent type for *task*, falling back to the generalist."""
    try:
        return _best_specialist(task, registry)
    except AssignmentError as exc:
        logger.warning("%s; using %s", exc, registry.fallback.id)
        fallback = registry.fallback
        return fallback, skill_match(task, fallback)


def calculate_task_effort(task: Task, agent_type: AgentType) -> float:
    """Estimated hours adjusted by the agent's efficiency on the task's skills.

    Higher efficiency means less time.  Skills the agent has no weight for
    count as 0.5.
    """
    base = task.estimated_hours if task.estimated_hours > 0 else agent_type.estimated_task_minutes / 60.0
    skills = task.skills or []
    multiplier = sum(agent_type.efficiency_for(s) for s in skills) / max(len(skills), 1) if skills else 0.5
    return round(base / max(multiplier, 0.05), 2)


def workload_level(total_hours: float) -> str:
    if total_hours < 10:
        return "light"
    if total_hours < 25:
        return "moderate"
    if total_hours < 40:
        return "heavy"
    return "overloaded"


# ---------------------------------------------------------------------------
# Assignment plan
# ---------------------------------------------------------------------------

@dataclass
class Assignment:
    """A scheduling decision: assign task X to agent Y."""
    task_id: str
    agent_id: str
    agent_type_id: str
    score: float
    coverage: float
    effort_hours: float
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "agent_id": self.agent_id,
            "agent_type_id": self.agent_type_id,
            "score": round(self.score, 4),
            "coverage": round(self.coverage, 4),
            "effort_hours": self.effort_hours,
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Assignment":
        return cls(
            task_id=str(data["task_id"]),
            agent_id=str(data["agent_id"]),
            agent_type_id=str(data.get("agent_type_id") or ""),
            score=float(data.get("score") or 0.0),
            coverage=float(data.get("coverage") or 0.0),
            effort_hours=float(data.get("effort_hours") or 0.0),
            reason=str(data.get("reason") or ""),
        )


@dataclass
class AssignmentPlan:
    assignments: dict[str, Assignment] = field(default_factory=dict)
    # agent_id -> task ids in graph order
    work_queues: dict[str, list[str]] = field(default_factory=dict)

    def agent_for(self, task_id: str) -> Optional[str]:
        assignment = self.assignments.get(task_id)
        return assignment.agent_id if assignment else None

    def workloads(self) -> dict[str, dict[str, Any]]:
        """Total adjusted effort and workload level per agent."""
        out: dict[str, dict[str, Any]] = {}
        for agent_id, task_ids in self.work_queues.items():
            hours = round(sum(self.assignments[t].effort_hours for t in task_ids if t in self.assignments), 2)
            out[agent_id] = {"tasks": len(task_ids), "effort_hours": hours, "level": workload_level(hours)}
        return out

    def to_dict(self) -> dict[str, Any]:
        return {
            "assignments": [a.to_dict() for a in self.assignments.values()],
            "work_queues": {k: list(v) for k, v in self.work_queues.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AssignmentPlan":
        plan = cls()
        for item in data.get("assignments") or []:
            if isinstance(item, dict) and item.get("task_id") and item.get("agent_id"):
                assignment = Assignment.from_dict(item)
                plan.assignments[assignment.task_id] = assignment
        queues = data.get("work_queues")
        if isinstance(queues, dict):
            plan.work_queues = {str(k): [str(t) for t in v] for k, v in queues.items() if isinstance(v, list)}
        return plan


def assign_tasks(tasks: Iterable[Task], pool: AgentPool) -> AssignmentPlan:
    """Assign every task to its best-fit agent and group them into per-agent queues.

    Sets ``task.assigned_agent_id`` and registers the task with the pool agent.
    """
    plan = AssignmentPlan()
    queues: dict[str, list[str]] = defaultdict(list)
    for task in tasks:
        agent_type, match = find_best_agent_type(task, pool.registry)
        agent = pool.ensure_agent(agent_type)
        pool.assign(agent.id, task.id)
        task.assigned_agent_id = agent.id
        if match.eligible:
            reason = f"matched {', '.join(match.matched_skills)} ({match.coverage:.0%} coverage)"
        else:
            reason = "no specialist matched; generalist fallback"
        plan.assignments[task.id] = Assignment(
            task_id=task.id,
            agent_id=agent.id,
            agent_type_id=agent_type.id,
            score=match.score,
            coverage=match.coverage,
            effort_hours=calculate_task_effort(task, agent_type),
            reason=reason,
        )
        queues[agent.id].append(task.id)
        logger.debug("Assigned %s to %s (score=%.3f)", task.id, agent.id, match.score)
    plan.work_queues = dict(queues)
    return plan
