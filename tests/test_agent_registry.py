"""Tests for agent types, the agent registry, and the agent pool."""

from pathlib import Path

import pytest

from verified_task_runner.agents.pool import AgentPool, AgentStatus
from verified_task_runner.agents.registry import GENERALIST_TYPE_ID, AgentRegistry, AgentType


class TestAgentRegistry:
    def test_builtins_loaded(self):
        registry = AgentRegistry()
        ids = [t.id for t in registry.list_types()]
        assert ids[0] == "frontend_specialist"
        assert "python_specialist" in ids
        assert GENERALIST_TYPE_ID not in ids
        assert registry.has_type(GENERALIST_TYPE_ID)

    def test_empty_registry(self):
        registry = AgentRegistry(include_builtins=False)
        assert registry.list_types() == []
        assert registry.fallback.id == GENERALIST_TYPE_ID

    def test_get_unknown(self):
        with pytest.raises(KeyError, match="Unknown agent type"):
            AgentRegistry().get_type("wizard")

    def test_efficiency_defaults_to_half(self):
        frontend = AgentRegistry().get_type("frontend_specialist")
        assert frontend.efficiency_for("React") == 0.95
        assert frontend.efficiency_for("responsive_design") == 0.5

    def test_load_entries_merges_existing(self):
        registry = AgentRegistry()
        registry.load_entries([{"id": "frontend_specialist", "efficiency": {"svelte": 1.5}, "max_concurrent_tasks": 1}])
        merged = registry.get_type("frontend_specialist")
        assert merged.efficiency["svelte"] == 1.0
        assert merged.efficiency["react"] == 0.95
        assert merged.max_concurrent_tasks == 1
        assert "react" in merged.capabilities

    def test_load_entries_creates_new_type(self):
        registry = AgentRegistry(include_builtins=False)
        registry.load_entries([
            {"id": "data_engineer", "efficiency": {"spark": 0.9}, "team": "platform"},
            {"name": "no id"},
        ])
        created = registry.get_type("data_engineer")
        assert created.capabilities == ("spark",)
        assert created.metadata == {"team": "platform"}
        assert len(registry.list_types()) == 1

    def test_register_generalist_replaces_fallback(self):
        registry = AgentRegistry()
        registry.register(AgentType(id=GENERALIST_TYPE_ID, name="Custom", specialization="Everything"))
        assert registry.fallback.name == "Custom"

    def test_load_from_yaml(self, tmp_path: Path):
        path = tmp_path / "agents.yaml"
        path.write_text("agents:\n  - id: ml_engineer\n    capabilities: [pytorch]\n    efficiency:\n      pytorch: 0.8\n")
        registry = AgentRegistry(include_builtins=False)
        registry.load_from_yaml(path)
        assert registry.get_type("ml_engineer").efficiency_for("pytorch") == 0.8

    def test_load_from_missing_yaml_is_noop(self, tmp_path: Path):
        registry = AgentRegistry(include_builtins=False)
        registry.load_from_yaml(tmp_path / "missing.yaml")
        assert registry.list_types() == []


class TestAgentPool:
    def setup_method(self):
        self.events: list[tuple[str, str, dict]] = []
        self.registry = AgentRegistry()
        self.pool = AgentPool(self.registry, on_agent_event=lambda *e: self.events.append(e))
        self.agent_type = self.registry.get_type("database_architect")  # max 2 concurrent

    def test_ensure_agent_is_idempotent(self):
        first = self.pool.ensure_agent(self.agent_type)
        second = self.pool.ensure_agent(self.agent_type)
        assert first is second
        assert first.id == "agent-database_architect"
        assert [e[1] for e in self.events] == ["spawned"]

    def test_concurrency_limit(self):
        agent = self.pool.ensure_agent(self.agent_type)
        assert self.pool.slots_available(agent.id) == 2
        self.pool.start_task(agent.id, "t1")
        assert self.pool.slots_available(agent.id) == 1
        self.pool.start_task(agent.id, "t2")
        assert not self.pool.has_slot(agent.id)
        with pytest.raises(RuntimeError, match="concurrency limit"):
            self.pool.start_task(agent.id, "t3")

    def test_status_transitions(self):
        agent = self.pool.ensure_agent(self.agent_type)
        self.pool.start_task(agent.id, "t1")
        assert agent.status == AgentStatus.WORKING
        self.pool.finish_task(agent.id, "t1", success=True)
        assert agent.status == AgentStatus.IDLE
        assert agent.completed_count == 1
        changes = [e[2]["status"] for e in self.events if e[1] == "status_changed"]
        assert changes == ["working", "idle"]

    def test_failed_count(self):
        agent = self.pool.ensure_agent(self.agent_type)
        self.pool.start_task(agent.id, "t1")
        self.pool.finish_task(agent.id, "t1", success=False)
        assert agent.failed_count == 1
        assert agent.free_slots == 2

    def test_callback_errors_are_swallowed(self):
        def boom(*_):
            raise RuntimeError("observer broke")

        pool = AgentPool(self.registry, on_agent_event=boom)
        agent = pool.ensure_agent(self.agent_type)
        pool.start_task(agent.id, "t1")
        assert agent.status == AgentStatus.WORKING

    def test_unknown_agent(self):
        with pytest.raises(KeyError, match="Agent not found"):
            self.pool.has_slot("agent-ghost")

    def test_round_trip_and_release(self):
        agent = self.pool.ensure_agent(self.agent_type)
        self.pool.assign(agent.id, "t1")
        self.pool.start_task(agent.id, "t1")
        restored = AgentPool.from_dict(self.pool.to_dict(), self.registry)
        copy = restored.get(agent.id)
        assert copy.assigned_task_ids == ["t1"]
        assert copy.active_task_ids == ["t1"]
        restored.release_all()
        assert copy.active_task_ids == []
        assert copy.status == AgentStatus.IDLE
        assert restored.agent_type_of(agent.id).id == "database_architect"
