"""
Tests for mutation request builders and their cache-aware execution.
"""
from unittest.mock import MagicMock

import pytest

from worklog.client import MoveResult
from worklog.errors import DataClientError, ValidationError
from worklog.mutations import (
    KanbanMutations,
    build_create_column,
    build_create_task,
    build_delete_task,
    build_move_task,
    build_update_task,
)
from worklog.schema import TaskStatus

from conftest import PROJECT, TEAM


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Builders
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_create_task_defaults_and_cleanup():
    payload = build_create_task(
        {"title": "  Write report ", "column_id": "c1", "due_date": "", "bogus": 1},
        PROJECT, TEAM, created_by="alice@example.com",
    )
    assert payload["table"] == "kanban_tasks"
    assert payload["action"] == "insert"
    data = payload["data"]
    assert data["title"] == "Write report"
    assert data["due_date"] is None
    assert "bogus" not in data
    assert data["status"] == "active"
    assert data["scope"] == "project"
    assert data["priority"] == "medium"
    assert data["project_id"] == PROJECT
    assert data["team_id"] == TEAM
    assert data["created_by"] == "alice@example.com"


def test_create_task_requires_title_and_column():
    with pytest.raises(ValidationError):
        build_create_task({"title": " ", "column_id": "c1"}, PROJECT)
    with pytest.raises(ValidationError):
        build_create_task({"title": "x"}, PROJECT)


def test_invalid_priority_rejected():
    with pytest.raises(ValidationError):
        build_create_task({"title": "x", "column_id": "c1", "priority": "whenever"}, PROJECT)


def test_update_task_cannot_move():
    payload = build_update_task("t1", {"title": "x", "column_id": "c9", "sort_order": 4})
    assert payload["data"] == {"title": "x"}
    assert payload["filters"] == {"id": "t1"}
    with pytest.raises(ValidationError):
        build_update_task("t1", {"column_id": "c9"})


def test_delete_task_archives():
    payload = build_delete_task("t1")
    assert payload["action"] == "update"
    assert payload["data"] == {"status": TaskStatus.ARCHIVED.value}


def test_move_rejects_negative_index():
    with pytest.raises(ValidationError):
        build_move_task("t1", "c1", -1, PROJECT, TEAM)


def test_create_column_requires_name():
    with pytest.raises(ValidationError):
        build_create_column({"name": ""}, PROJECT)
    assert build_create_column({"name": "Review"}, PROJECT, TEAM)["data"]["color"] == "#3B82F6"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Execution against the server
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestKanbanMutations:

    @pytest.fixture(autouse=True)
    def _setup(self, client, board, store, server):
        self.client = client
        self.board = board
        self.store = store
        self.server = server
        self.mutations = KanbanMutations(client)

    def _prime_cache(self):
        self.client.get_kanban_board_with_cache(PROJECT, TEAM)
        assert self.server.board_cache.get_board(PROJECT, TEAM) is not None

    def test_create_task_appends_to_column(self):
        task = self.mutations.create_task({"title": "T3", "column_id": self.board["todo"]}, PROJECT, TEAM)
        assert task.sort_order == 2
        assert task.created_by == "alice@example.com"

    def test_create_task_with_cache_invalidates(self):
        self._prime_cache()
        self.mutations.create_task_with_cache({"title": "T3", "column_id": self.board["todo"]}, PROJECT, TEAM)
        assert self.server.board_cache.get_board(PROJECT, TEAM) is None

    def test_update_task(self):
        task = self.mutations.update_task_with_cache(self.board["t1"], {"priority": "high"}, PROJECT, TEAM)
        assert task.priority == "high"
        assert task.version == 2

    def test_delete_task_is_soft(self):
        task = self.mutations.delete_task_with_cache(self.board["t1"], PROJECT, TEAM)
        assert task.status == TaskStatus.ARCHIVED
        rows, _ = self.store.select("kanban_tasks", filters={"id": self.board["t1"]})
        assert rows[0]["status"] == "archived"

    def test_permanent_delete(self):
        assert self.mutations.permanently_delete_task_with_cache(self.board["t2"], PROJECT, TEAM)
        _, count = self.store.select("kanban_tasks", filters={"id": self.board["t2"]})
        assert count == 0

    def test_move_with_cache_invalidates_only_on_success(self):
        self._prime_cache()
        failed = self.mutations.move_task_with_cache(self.board["t1"], "missing", 0, PROJECT, TEAM)
        assert not failed.success
        assert self.server.board_cache.get_board(PROJECT, TEAM) is not None

        moved = self.mutations.move_task_with_cache(self.board["t1"], self.board["done"], 1, PROJECT, TEAM)
        assert moved.success
        assert self.server.board_cache.get_board(PROJECT, TEAM) is None

    def test_create_column_goes_last(self):
        column = self.mutations.create_column_with_cache({"name": "Review"}, PROJECT, TEAM)
        assert column.sort_order == 3
        assert column.name == "Review"

    def test_update_column(self):
        column = self.mutations.update_column_with_cache(self.board["doing"], {"color": "#000000"}, PROJECT, TEAM)
        assert column.color == "#000000"

    def test_delete_non_empty_column_refused(self):
        with pytest.raises(DataClientError, match="active task"):
            self.mutations.delete_column_with_cache(self.board["todo"], PROJECT, TEAM)

    def test_delete_empty_column(self):
        assert self.mutations.delete_column_with_cache(self.board["doing"], PROJECT, TEAM)


def test_invalidation_failure_does_not_fail_write():
    client = MagicMock()
    client.actor_email = "alice@example.com"
    client.move_task.return_value = MoveResult(success=True)
    client.invalidate_kanban_cache.side_effect = DataClientError("cache down", 500)
    result = KanbanMutations(client).move_task_with_cache("t1", "c2", 0, PROJECT, TEAM)
    assert result.success
    client.invalidate_kanban_cache.assert_called_once_with(PROJECT, TEAM)
