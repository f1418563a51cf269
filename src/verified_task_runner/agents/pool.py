"""Agent pool: one runtime agent per agent type used by a project.

The pool tracks which tasks each agent owns, how many are running right now,
and enforces the per-agent concurrency limit from the agent type.  Status
changes are reported through an optional callback; a failing callback is
logged and never propagates into the execution loop.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional

from ..utils import _now_iso
from .registry import AgentRegistry, AgentType

logger = logging.getLogger(__name__)


class AgentStatus(str, Enum):
    IDLE = "idle"
    WORKING = "working"
    OFFLINE = "offline"


def agent_id_for(type_id: str) -> str:
    return f"agent-{type_id}"


@dataclass
class Agent:
    """Mutable runtime state of one agent."""
    id: str
    type_id: str
    name: str
    max_concurrent_tasks: int = 1
    status: AgentStatus = AgentStatus.IDLE

    assigned_task_ids: list[str] = field(default_factory=list)
    active_task_ids: list[str] = field(default_factory=list)
    completed_count: int = 0
    failed_count: int = 0
    last_active_at: Optional[str] = None

    @property
    def free_slots(self) -> int:
        return max(0, self.max_concurrent_tasks - len(self.active_task_ids))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type_id": self.type_id,
            "name": self.name,
            "max_concurrent_tasks": self.max_concurrent_tasks,
            "status": self.status.value,
            "assigned_task_ids": list(self.assigned_task_ids),
            "active_task_ids": list(self.active_task_ids),
            "completed_count": self.completed_count,
            "failed_count": self.failed_count,
            "last_active_at": self.last_active_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Agent":
        try:
            status = AgentStatus(data.get("status", "idle"))
        except ValueError:
            status = AgentStatus.IDLE
        return cls(
            id=str(data["id"]),
            type_id=str(data.get("type_id") or ""),
            name=str(data.get("name") or data["id"]),
            max_concurrent_tasks=max(1, int(data.get("max_concurrent_tasks") or 1)),
            status=status,
            assigned_task_ids=[str(t) for t in data.get("assigned_task_ids") or []],
            active_task_ids=[str(t) for t in data.get("active_task_ids") or []],
            completed_count=int(data.get("completed_count") or 0),
            failed_count=int(data.get("failed_count") or 0),
            last_active_at=data.get("last_active_at"),
        )


class AgentPool:
    """Runtime agents for a single project, keyed by agent id."""

    def __init__(
        self,
        registry: Optional[AgentRegistry] = None,
        on_agent_event: Optional[Callable[[str, str, dict[str, Any]], None]] = None,
    ) -> None:
        self._registry = registry or AgentRegistry()
        self._agents: dict[str, Agent] = {}
        self._on_event = on_agent_event  # callback(agent_id, event_type, data)

    @property
    def registry(self) -> AgentRegistry:
        return self._registry

    # -- lifecycle -----------------------------------------------------------

    def ensure_agent(self, agent_type: AgentType) -> Agent:
        """Return the project's agent for *agent_type*, creating it on first use."""
        agent_id = agent_id_for(agent_type.id)
        agent = self._agents.get(agent_id)
        if agent is None:
            agent = Agent(
                id=agent_id,
                type_id=agent_type.id,
                name=agent_type.name,
                max_concurrent_tasks=max(1, agent_type.max_concurrent_tasks),
            )
            self._agents[agent_id] = agent
            self._emit(agent_id, "spawned", {"type_id": agent_type.id})
        return agent

    def assign(self, agent_id: str, task_id: str) -> None:
        agent = self._get(agent_id)
        if task_id not in agent.assigned_task_ids:
            agent.assigned_task_ids.append(task_id)

    def slots_available(self, agent_id: str) -> int:
        return self._get(agent_id).free_slots

    def has_slot(self, agent_id: str) -> bool:
        return self.slots_available(agent_id) > 0

    def start_task(self, agent_id: str, task_id: str) -> None:
        """Occupy one concurrency slot of *agent_id* for *task_id*.

        Raises ``RuntimeError`` if the agent has no free slot.
        """
        agent = self._get(agent_id)
        if task_id in agent.active_task_ids:
            return
        if agent.free_slots <= 0:
            raise RuntimeError(
                f"Agent {agent_id} is at its concurrency limit ({agent.max_concurrent_tasks})"
            )
        agent.active_task_ids.append(task_id)
        agent.last_active_at = _now_iso()
        self._set_status(agent, AgentStatus.WORKING, task_id=task_id)

    def finish_task(self, agent_id: str, task_id: str, *, success: bool) -> None:
        agent = self._get(agent_id)
        if task_id in agent.active_task_ids:
            agent.active_task_ids.remove(task_id)
        if success:
            agent.completed_count += 1
        else:
            agent.failed_count += 1
        agent.last_active_at = _now_iso()
        if not agent.active_task_ids:
            self._set_status(agent, AgentStatus.IDLE, task_id=task_id)

    def release_all(self) -> None:
        """Free every slot; used when restoring a snapshot mid-run."""
        for agent in self._agents.values():
            agent.active_task_ids.clear()
            agent.status = AgentStatus.IDLE

    # -- queries -------------------------------------------------------------

    def get(self, agent_id: str) -> Optional[Agent]:
        return self._agents.get(agent_id)

    def list_agents(self) -> list[Agent]:
        return list(self._agents.values())

    def agent_type_of(self, agent_id: str) -> AgentType:
        return self._registry.get_type(self._get(agent_id).type_id)

    # -- serialization -------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {"agents": [agent.to_dict() for agent in self._agents.values()]}

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        registry: Optional[AgentRegistry] = None,
        on_agent_event: Optional[Callable[[str, str, dict[str, Any]], None]] = None,
    ) -> "AgentPool":
        pool = cls(registry=registry, on_agent_event=on_agent_event)
        for item in data.get("agents") or []:
            if isinstance(item, dict) and item.get("id"):
                agent = Agent.from_dict(item)
                pool._agents[agent.id] = agent
        return pool

    # -- internal ------------------------------------------------------------

    def _get(self, agent_id: str) -> Agent:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise KeyError(f"Agent not found: {agent_id}")
        return agent

    def _set_status(self, agent: Agent, status: AgentStatus, **data: Any) -> None:
        if agent.status == status:
            return
        agent.status = status
        self._emit(agent.id, "status_changed", {"status": status.value, **data})

    def _emit(self, agent_id: str, event_type: str, data: dict[str, Any]) -> None:
        if self._on_event:
            try:
                self._on_event(agent_id, event_type, data)
            except Exception:
                logger.exception("Error in agent event callback")
