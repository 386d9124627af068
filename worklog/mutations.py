"""
Task and column mutations.

Request builders turn form data into proxy payloads. KanbanMutations
runs them against a RemoteDataClient. Every operation has a raw variant
and a *_with_cache variant that also invalidates the (project, team)
board cache key once the write has succeeded.
"""
import logging
from typing import Any, Dict, Optional

from .client import MoveResult, RemoteDataClient
from .errors import NotFoundError, ValidationError, WorklogError
from .schema import Column, PRIORITIES, Task, TaskScope, TaskStatus

logger = logging.getLogger(__name__)

TASK_FIELDS = {
    "title", "description", "column_id", "sort_order", "priority", "assigned_to",
    "due_date", "status", "scope", "created_by", "jira_ticket_key", "team_id",
}
COLUMN_FIELDS = {"name", "description", "color", "sort_order", "is_active", "team_id"}


def _clean(data: Dict[str, Any], allowed) -> Dict[str, Any]:
    """Keep known fields; empty due dates become None."""
    cleaned = {k: v for k, v in (data or {}).items() if k in allowed}
    if cleaned.get("due_date") == "":
        cleaned["due_date"] = None
    if "priority" in cleaned and cleaned["priority"] not in PRIORITIES:
        raise ValidationError(f"Invalid priority: {cleaned['priority']}")
    return cleaned


# ── Request builders ─────────────────────────────────────────────────────────

def build_create_task(task_data: Dict[str, Any], project_id: str, team_id: Optional[str] = None,
                      created_by: Optional[str] = None) -> Dict[str, Any]:
    data = _clean(task_data, TASK_FIELDS)
    if not (data.get("title") or "").strip():
        raise ValidationError("Task title is required")
    if not data.get("column_id"):
        raise ValidationError("Task column is required")
    data["title"] = data["title"].strip()
    data["project_id"] = project_id
    data.setdefault("team_id", team_id)
    data.setdefault("status", TaskStatus.ACTIVE.value)
    data.setdefault("scope", TaskScope.PROJECT.value)
    data.setdefault("priority", "medium")
    if created_by:
        data["created_by"] = created_by
    return {"table": "kanban_tasks", "action": "insert", "data": data}


def build_update_task(task_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    data = _clean(updates, TASK_FIELDS - {"column_id", "sort_order"})
    if not data:
        raise ValidationError("Nothing to update")
    if "title" in data and not (data["title"] or "").strip():
        raise ValidationError("Task title is required")
    return {"table": "kanban_tasks", "action": "update", "data": data, "filters": {"id": task_id}}


def build_move_task(task_id: str, destination_column_id: str, destination_index: int,
                    project_id: str, team_id: str, actor_email: Optional[str] = None,
                    expected_version: Optional[int] = None) -> Dict[str, Any]:
    if destination_index < 0:
        raise ValidationError("Destination index must be >= 0")
    return {
        "task_id": task_id,
        "destination_column_id": destination_column_id,
        "destination_index": destination_index,
        "project_id": project_id,
        "team_id": team_id,
        "actor_email": actor_email,
        "expected_version": expected_version,
    }


def build_delete_task(task_id: str) -> Dict[str, Any]:
    """Soft delete: the task is archived, not removed."""
    return {"table": "kanban_tasks", "action": "update",
            "data": {"status": TaskStatus.ARCHIVED.value}, "filters": {"id": task_id}}


def build_permanent_delete_task(task_id: str) -> Dict[str, Any]:
    return {"table": "kanban_tasks", "action": "delete", "filters": {"id": task_id}}


def build_create_column(column_data: Dict[str, Any], project_id: str,
                        team_id: Optional[str] = None) -> Dict[str, Any]:
    data = _clean(column_data, COLUMN_FIELDS)
    if not (data.get("name") or "").strip():
        raise ValidationError("Column name is required")
    data["name"] = data["name"].strip()
    data["project_id"] = project_id
    data.setdefault("team_id", team_id)
    data.setdefault("color", "#3B82F6")
    return {"table": "kanban_columns", "action": "insert", "data": data}


def build_update_column(column_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
    data = _clean(updates, COLUMN_FIELDS)
    if not data:
        raise ValidationError("Nothing to update")
    if "name" in data and not (data["name"] or "").strip():
        raise ValidationError("Column name is required")
    return {"table": "kanban_columns", "action": "update", "data": data, "filters": {"id": column_id}}


def build_delete_column(column_id: str) -> Dict[str, Any]:
    return {"table": "kanban_columns", "action": "delete", "filters": {"id": column_id}}


# ── Execution ────────────────────────────────────────────────────────────────

class KanbanMutations:
    """Runs request builders against the remote client."""

    def __init__(self, client: RemoteDataClient):
        self.client = client

    def _first(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        rows = self.client.proxy(payload).data or []
        if not rows:
            raise NotFoundError(f"{payload['table']} row not found")
        return rows[0]

    def _invalidate(self, project_id: str, team_id: Optional[str]):
        try:
            self.client.invalidate_kanban_cache(project_id, team_id)
        except WorklogError as e:
            # The write stands even when invalidation fails
            logger.warning(f"Cache invalidation failed for {project_id}:{team_id}: {e}")

    # Tasks
    def create_task(self, task_data: Dict[str, Any], project_id: str, team_id: Optional[str] = None,
                    created_by: Optional[str] = None) -> Task:
        payload = build_create_task(task_data, project_id, team_id, created_by or self.client.actor_email)
        if "sort_order" not in payload["data"]:
            count = self.client.select(
                "kanban_tasks", filters={"column_id": payload["data"]["column_id"], "status": "active"},
                select="id", limit=1,
            ).count
            payload["data"]["sort_order"] = count or 0
        return Task.from_dict(self._first(payload))

    def update_task(self, task_id: str, updates: Dict[str, Any]) -> Task:
        return Task.from_dict(self._first(build_update_task(task_id, updates)))

    def move_task(self, task_id: str, destination_column_id: str, destination_index: int,
                  project_id: str, team_id: str, actor_email: Optional[str] = None,
                  expected_version: Optional[int] = None) -> MoveResult:
        request = build_move_task(task_id, destination_column_id, destination_index,
                                  project_id, team_id, actor_email, expected_version)
        return self.client.move_task(**request)

    def delete_task(self, task_id: str) -> Task:
        return Task.from_dict(self._first(build_delete_task(task_id)))

    def permanently_delete_task(self, task_id: str) -> bool:
        self._first(build_permanent_delete_task(task_id))
        return True

    # Columns
    def create_column(self, column_data: Dict[str, Any], project_id: str,
                      team_id: Optional[str] = None) -> Column:
        payload = build_create_column(column_data, project_id, team_id)
        if "sort_order" not in payload["data"]:
            count = self.client.select(
                "kanban_columns", filters={"project_id": project_id, "is_active": True},
                select="id", limit=1,
            ).count
            payload["data"]["sort_order"] = count or 0
        return Column.from_dict(self._first(payload))

    def update_column(self, column_id: str, updates: Dict[str, Any]) -> Column:
        return Column.from_dict(self._first(build_update_column(column_id, updates)))

    def delete_column(self, column_id: str) -> bool:
        self._first(build_delete_column(column_id))
        return True

    # Cache-aware variants
    def create_task_with_cache(self, task_data: Dict[str, Any], project_id: str, team_id: str,
                               created_by: Optional[str] = None) -> Task:
        task = self.create_task(task_data, project_id, team_id, created_by)
        self._invalidate(project_id, team_id)
        return task

    def update_task_with_cache(self, task_id: str, updates: Dict[str, Any],
                               project_id: str, team_id: str) -> Task:
        task = self.update_task(task_id, updates)
        self._invalidate(project_id, team_id)
        return task

    def move_task_with_cache(self, task_id: str, destination_column_id: str, destination_index: int,
                             project_id: str, team_id: str, actor_email: Optional[str] = None,
                             expected_version: Optional[int] = None) -> MoveResult:
        result = self.move_task(task_id, destination_column_id, destination_index,
                                project_id, team_id, actor_email, expected_version)
        if result.success:
            self._invalidate(project_id, team_id)
        return result

    def delete_task_with_cache(self, task_id: str, project_id: str, team_id: str) -> Task:
        task = self.delete_task(task_id)
        self._invalidate(project_id, team_id)
        return task

    def permanently_delete_task_with_cache(self, task_id: str, project_id: str, team_id: str) -> bool:
        self.permanently_delete_task(task_id)
        self._invalidate(project_id, team_id)
        return True

    def create_column_with_cache(self, column_data: Dict[str, Any], project_id: str, team_id: str) -> Column:
        column = self.create_column(column_data, project_id, team_id)
        self._invalidate(project_id, team_id)
        return column

    def update_column_with_cache(self, column_id: str, updates: Dict[str, Any],
                                 project_id: str, team_id: str) -> Column:
        column = self.update_column(column_id, updates)
        self._invalidate(project_id, team_id)
        return column

    def delete_column_with_cache(self, column_id: str, project_id: str, team_id: str) -> bool:
        self.delete_column(column_id)
        self._invalidate(project_id, team_id)
        return True
