"""Agent types, per-project agent pool, and skill-based assignment."""

from .pool import Agent, AgentPool, AgentStatus
from .registry import AgentRegistry, AgentType, GENERALIST_TYPE_ID
from .scheduler import Assignment, AssignmentPlan, assign_tasks, find_best_agent_type, skill_match

__all__ = [
    "Agent",
    "AgentPool",
    "AgentRegistry",
    "AgentStatus",
    "AgentType",
    "Assignment",
    "AssignmentPlan",
    "GENERALIST_TYPE_ID",
    "assign_tasks",
    "find_best_agent_type",
    "skill_match",
]
