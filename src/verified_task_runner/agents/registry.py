"""Agent type registry: capabilities, efficiency weights, and concurrency limits.

Each *AgentType* is a blueprint describing what kind of work an agent is good
at.  The actual work is delegated to an external worker process; the agent
only decides who gets which task and how many run at once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional

import yaml

logger = logging.getLogger(__name__)


GENERALIST_TYPE_ID = "generalist"
DEFAULT_SKILL_EFFICIENCY = 0.5


# ---------------------------------------------------------------------------
# Agent Type (blueprint)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AgentType:
    """Immutable blueprint for creating agent instances."""
    id: str
    name: str
    specialization: str
    capabilities: tuple[str, ...] = ()

    # skill -> weight in [0, 1]; capabilities without an entry score DEFAULT_SKILL_EFFICIENCY
    efficiency: dict[str, float] = field(default_factory=dict)

    max_concurrent_tasks: int = 2
    estimated_task_minutes: int = 15

    # Extra guidance appended to the worker prompt
    instructions: tuple[str, ...] = ()

    metadata: dict[str, Any] = field(default_factory=dict)

    def skill_set(self) -> set[str]:
        return {s.lower() for s in self.capabilities} | {s.lower() for s in self.efficiency}

    def efficiency_for(self, skill: str) -> float:
        skill = skill.lower()
        for key, value in self.efficiency.items():
            if key.lower() == skill:
                return float(value)
        return DEFAULT_SKILL_EFFICIENCY

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "specialization": self.specialization,
            "capabilities": list(self.capabilities),
            "efficiency": dict(self.efficiency),
            "max_concurrent_tasks": self.max_concurrent_tasks,
            "estimated_task_minutes": self.estimated_task_minutes,
        }


# ---------------------------------------------------------------------------
# Built-in types
# ---------------------------------------------------------------------------

_BUILTIN_TYPES: tuple[AgentType, ...] = (
    AgentType(
        id="frontend_specialist",
        name="Frontend Specialist",
        specialization="Frontend Development",
        capabilities=("react", "vue", "angular", "html", "css", "javascript", "typescript",
                      "ui_design", "responsive_design", "state_management"),
        efficiency={"react": 0.95, "vue": 0.85, "angular": 0.80, "html": 0.90, "css": 0.88,
                    "javascript": 0.92, "typescript": 0.87, "ui_design": 0.83},
        max_concurrent_tasks=3,
        estimated_task_minutes=15,
        instructions=(
            "Create responsive and modern user interfaces",
            "Ensure cross-browser compatibility",
            "Implement proper state management",
            "Follow accessibility guidelines",
        ),
    ),
    AgentType(
        id="backend_specialist",
        name="Backend Specialist",
        specialization="Backend Development",
        capabilities=("nodejs", "python", "java", "api_design", "database", "authentication",
                      "microservices", "rest_api", "graphql"),
        efficiency={"nodejs": 0.92, "python": 0.88, "api_design": 0.90, "database": 0.85,
                    "authentication": 0.87, "microservices": 0.83},
        max_concurrent_tasks=3,
        estimated_task_minutes=20,
        instructions=(
            "Build scalable and secure APIs",
            "Implement proper error handling",
            "Ensure data validation and security",
            "Follow RESTful principles",
        ),
    ),
    AgentType(
        id="python_specialist",
        name="Python Backend Specialist",
        specialization="Python Backend Development",
        capabilities=("python", "fastapi", "django", "flask", "sqlalchemy", "pytest", "asyncio",
                      "celery", "redis", "postgresql", "mongodb", "api_design", "authentication",
                      "microservices"),
        efficiency={"python": 0.96, "fastapi": 0.94, "django": 0.92, "flask": 0.90,
                    "sqlalchemy": 0.88, "pytest": 0.93, "asyncio": 0.87, "celery": 0.85,
                    "redis": 0.84, "postgresql": 0.89, "mongodb": 0.86, "api_design": 0.91,
                    "authentication": 0.89, "microservices": 0.87},
        max_concurrent_tasks=3,
        estimated_task_minutes=18,
        instructions=(
            "Use type hints and keep modules importable without side effects",
            "Declare dependencies in requirements.txt or pyproject.toml",
        ),
    ),
    AgentType(
        id="database_architect",
        name="Database Architect",
        specialization="Database Design",
        capabilities=("sql", "nosql", "schema_design", "migrations", "optimization",
                      "data_modeling", "indexing", "performance_tuning"),
        efficiency={"sql": 0.94, "nosql": 0.87, "schema_design": 0.91, "migrations": 0.89,
                    "optimization": 0.85},
        max_concurrent_tasks=2,
        estimated_task_minutes=12,
        instructions=(
            "Design efficient and normalized schemas",
            "Implement proper indexing strategies",
            "Consider data integrity and constraints",
            "Document the database design",
        ),
    ),
    AgentType(
        id="test_engineer",
        name="Test Engineer",
        specialization="Quality Assurance",
        capabilities=("unit_testing", "integration_testing", "e2e_testing", "test_automation",
                      "performance_testing", "load_testing", "security_testing"),
        efficiency={"unit_testing": 0.93, "integration_testing": 0.88, "e2e_testing": 0.85,
                    "test_automation": 0.90, "performance_testing": 0.82},
        max_concurrent_tasks=4,
        estimated_task_minutes=10,
    ),
    AgentType(
        id="devops_engineer",
        name="DevOps Engineer",
        specialization="Deployment & Operations",
        capabilities=("deployment", "ci_cd", "docker", "kubernetes", "monitoring",
                      "infrastructure", "cloud_services", "automation"),
        efficiency={"deployment": 0.91, "ci_cd": 0.88, "docker": 0.92, "kubernetes": 0.84,
                    "monitoring": 0.86, "infrastructure": 0.87},
        max_concurrent_tasks=2,
        estimated_task_minutes=18,
    ),
    AgentType(
        id="documentation_specialist",
        name="Documentation Specialist",
        specialization="Documentation",
        capabilities=("technical_writing", "api_docs", "user_guides", "readme", "tutorials",
                      "code_documentation", "architecture_docs"),
        efficiency={"technical_writing": 0.95, "api_docs": 0.92, "user_guides": 0.89,
                    "readme": 0.94, "tutorials": 0.87},
        max_concurrent_tasks=5,
        estimated_task_minutes=8,
    ),
    AgentType(
        id="security_specialist",
        name="Security Specialist",
        specialization="Security",
        capabilities=("security_audit", "authentication", "authorization", "encryption",
                      "vulnerability_assessment", "penetration_testing", "compliance"),
        efficiency={"security_audit": 0.89, "authentication": 0.91, "authorization": 0.88,
                    "encryption": 0.86, "vulnerability_assessment": 0.84},
        max_concurrent_tasks=2,
        estimated_task_minutes=25,
    ),
)

GENERALIST_TYPE = AgentType(
    id=GENERALIST_TYPE_ID,
    name="Generalist Developer",
    specialization="General Software Development",
    capabilities=("javascript", "python", "html", "css", "api_design", "documentation", "testing"),
    efficiency={},
    max_concurrent_tasks=3,
    estimated_task_minutes=20,
)

BUILTIN_AGENT_TYPES: dict[str, AgentType] = {t.id: t for t in _BUILTIN_TYPES}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class AgentRegistry:
    """Registry of known agent types.

    Starts with the built-in specialists plus the generalist fallback and
    allows runtime registration of custom types.  Registration order is the
    tie-break order used by the scheduler.
    """

    def __init__(self, include_builtins: bool = True) -> None:
        self._types: dict[str, AgentType] = dict(BUILTIN_AGENT_TYPES) if include_builtins else {}
        self._fallback: AgentType = GENERALIST_TYPE

    # -- query ---------------------------------------------------------------

    def get_type(self, type_id: str) -> AgentType:
        if type_id == self._fallback.id:
            return self._fallback
        if type_id not in self._types:
            available = ", ".join(sorted(self._types.keys()))
            raise KeyError(f"Unknown agent type '{type_id}' (available: {available})")
        return self._types[type_id]

    def list_types(self) -> list[AgentType]:
        """Specialist types in registration order (fallback excluded)."""
        return list(self._types.values())

    def has_type(self, type_id: str) -> bool:
        return type_id in self._types or type_id == self._fallback.id

    @property
    def fallback(self) -> AgentType:
        return self._fallback

    # -- mutation ------------------------------------------------------------

    def register(self, agent_type: AgentType) -> None:
        if agent_type.id == self._fallback.id:
            self._fallback = agent_type
            return
        self._types[agent_type.id] = agent_type

    def unregister(self, type_id: str) -> None:
        self._types.pop(type_id, None)

    # -- loading -------------------------------------------------------------

    def load_entries(self, entries: Iterable[dict[str, Any]]) -> None:
        """Create or merge agent types from plain dicts (config or YAML).

        Each entry needs an ``id``.  If it matches an existing type the given
        values are merged on top of it.
        """
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("id"):
                logger.warning("Skipping agent entry without 'id': %s", entry)
                continue
            self.register(self._merge_entry(entry))

    def load_from_yaml(self, path: Path) -> None:
        """Load agent type definitions/overrides from a YAML file.

        The file should contain an ``agents`` key with a list of agent
        definitions.
        """
        if not path.exists():
            logger.debug("Agent YAML file does not exist: %s", path)
            return

        with open(path, "r") as fh:
            data = yaml.safe_load(fh)

        if not isinstance(data, dict) or not isinstance(data.get("agents"), list):
            logger.warning("Agent YAML missing 'agents' list: %s", path)
            return
        self.load_entries(data["agents"])

    def _merge_entry(self, entry: dict[str, Any]) -> AgentType:
        type_id = str(entry["id"])
        base: Optional[AgentType] = self._types.get(type_id)
        if base is None and type_id == self._fallback.id:
            base = self._fallback

        efficiency = dict(base.efficiency) if base else {}
        raw_eff = entry.get("efficiency")
        if isinstance(raw_eff, dict):
            for skill, weight in raw_eff.items():
                efficiency[str(skill)] = min(1.0, max(0.0, float(weight)))

        capabilities = entry.get("capabilities")
        caps = tuple(str(c) for c in capabilities) if isinstance(capabilities, list) else (
            base.capabilities if base else tuple(efficiency)
        )
        known = {"id", "name", "specialization", "capabilities", "efficiency",
                 "max_concurrent_tasks", "estimated_task_minutes", "instructions"}
        metadata = dict(base.metadata) if base else {}
        metadata.update({k: v for k, v in entry.items() if k not in known})
        instructions = entry.get("instructions")

        return AgentType(
            id=type_id,
            name=str(entry.get("name") or (base.name if base else type_id)),
            specialization=str(entry.get("specialization") or (base.specialization if base else type_id)),
            capabilities=caps,
            efficiency=efficiency,
            max_concurrent_tasks=max(1, int(entry.get("max_concurrent_tasks")
                                            or (base.max_concurrent_tasks if base else 2))),
            estimated_task_minutes=int(entry.get("estimated_task_minutes")
                                       or (base.estimated_task_minutes if base else 15)),
            instructions=tuple(str(i) for i in instructions) if isinstance(instructions, list)
            else (base.instructions if base else ()),
            metadata=metadata,
        )
