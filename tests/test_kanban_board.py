"""Tests for the kanban board."""

import logging

import pytest

from verified_task_runner.constants import BOARD_HISTORY_LIMIT
from verified_task_runner.task_engine.board import COLUMNS, TRANSITIONS, KanbanBoard
from verified_task_runner.task_engine.graph import TaskGraph
from verified_task_runner.task_engine.model import Task, TaskStatus


def _graph() -> TaskGraph:
    return TaskGraph.build([
        Task(id="a", title="A", assigned_agent_id="agent-x"),
        Task(id="b", title="B", assigned_agent_id="agent-y"),
        Task(id="c", title="C", dependencies=["a"], assigned_agent_id="agent-x"),
    ])


class TestKanbanBoard:
    def setup_method(self):
        self.graph = _graph()
        self.board = KanbanBoard.for_graph(self.graph)

    def test_columns_match_statuses(self):
        assert COLUMNS == ("todo", "inProgress", "revision", "review", "completed", "blocked", "failed")

    def test_initial_partition(self):
        assert self.board.columns()["todo"] == ["a", "b", "c"]
        assert self.board.is_partition()

    def test_move_updates_task_status(self):
        assert self.board.move("a", "todo", TaskStatus.IN_PROGRESS, agent_id="agent-x")
        assert self.board.column_of("a") == "inProgress"
        assert self.graph.get("a").status == TaskStatus.IN_PROGRESS
        assert self.board.is_partition()

    def test_move_from_wrong_column_is_ignored(self, caplog):
        with caplog.at_level(logging.WARNING):
            moved = self.board.move("a", "inProgress", "completed")
        assert moved is False
        assert self.board.column_of("a") == "todo"
        assert self.graph.get("a").status == TaskStatus.TODO
        assert "expected in 'inProgress'" in caplog.text

    def test_move_unknown_column_is_ignored(self):
        assert self.board.move("a", "todo", "archived") is False
        assert self.board.column_of("a") == "todo"

    def test_unblock_requeues_blocked_task(self):
        self.board.move("a", "todo", "inProgress")
        assert self.board.unblock("a") is False
        self.board.move("a", "inProgress", "blocked")
        assert self.board.unblock("a") is True
        assert self.graph.get("a").status == TaskStatus.TODO

    def test_move_unknown_task_is_ignored(self):
        assert self.board.move("ghost", "todo", "completed") is False
        assert self.board.is_partition()

    def test_partition_holds_across_moves(self):
        self.board.move("a", "todo", "inProgress")
        self.board.move("a", "inProgress", "revision")
        self.board.move("a", "revision", "inProgress")
        self.board.move("a", "inProgress", "completed")
        self.board.move("b", "todo", "inProgress")
        self.board.move("b", "inProgress", "failed")
        assert self.board.is_partition()
        counts = self.board.counts()
        assert sum(counts.values()) == 3
        assert counts["completed"] == 1 and counts["failed"] == 1 and counts["todo"] == 1

    def test_history_records_moves(self):
        self.board.move("a", "todo", "inProgress", agent_id="agent-x")
        move = self.board.history[-1]
        assert (move.task_id, move.from_column, move.to_column) == ("a", "todo", "inProgress")
        assert move.to_dict()["from"] == "todo"

    def test_finished_task_cannot_return_to_todo(self, caplog):
        self.board.move("a", "todo", "inProgress")
        self.board.move("a", "inProgress", "completed")
        with caplog.at_level(logging.WARNING):
            assert self.board.move("a", "completed", "todo") is False
        assert self.board.column_of("a") == "completed"
        assert self.graph.get("a").status == TaskStatus.COMPLETED
        assert "not allowed" in caplog.text

    def test_todo_cannot_skip_to_completed(self, caplog):
        with caplog.at_level(logging.WARNING):
            assert self.board.move("a", "todo", "completed") is False
        assert self.board.column_of("a") == "todo"
        assert self.graph.get("a").status == TaskStatus.TODO
        assert self.board.history == []
        assert "todo -> completed is not allowed" in caplog.text

    def test_terminal_columns_have_no_exits(self):
        assert set(TRANSITIONS) == set(COLUMNS)
        assert TRANSITIONS["completed"] == frozenset()
        assert TRANSITIONS["failed"] == frozenset()

    def test_requeue_interrupted_only_touches_running_tasks(self):
        self.board.move("a", "todo", "inProgress")
        self.board.move("a", "inProgress", "revision")
        self.board.move("b", "todo", "inProgress")
        self.board.move("b", "inProgress", "completed")
        assert self.board.requeue_interrupted("a") is True
        assert self.board.requeue_interrupted("b") is False
        assert self.board.column_of("a") == "todo"
        assert self.board.column_of("b") == "completed"
        assert self.graph.get("a").status == TaskStatus.TODO

    def test_history_is_bounded(self):
        for _ in range(BOARD_HISTORY_LIMIT):
            self.board.move("a", "todo", "inProgress")
            self.board.move("a", "inProgress", "blocked")
            self.board.move("a", "blocked", "todo")
        history = self.board.history
        assert len(history) == BOARD_HISTORY_LIMIT
        assert (history[-1].from_column, history[-1].to_column) == ("blocked", "todo")
        assert len(self.board.to_dict()["history"]) == BOARD_HISTORY_LIMIT

    def test_add_duplicate_raises(self):
        with pytest.raises(ValueError, match="already on the board"):
            self.board.add("a")

    def test_agent_boards(self):
        boards = self.board.agent_boards()
        assert set(boards) == {"agent-x", "agent-y"}
        assert boards["agent-x"]["todo"] == ["a", "c"]
        assert boards["agent-y"]["todo"] == ["b"]

    def test_round_trip(self):
        self.board.move("a", "todo", "inProgress")
        self.board.move("a", "inProgress", "completed")
        restored_graph = TaskGraph.from_dict(self.graph.to_dict())
        restored = KanbanBoard.from_dict(restored_graph, self.board.to_dict())
        assert restored.columns() == self.board.columns()
        assert len(restored.history) == 2
        assert restored.is_partition()

    def test_from_dict_places_missing_tasks_by_status(self):
        restored = KanbanBoard.from_dict(self.graph, {"columns": {"todo": ["a"]}})
        assert restored.column_of("b") == "todo"
        assert restored.is_partition()
