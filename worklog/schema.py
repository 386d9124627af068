"""
Board, column and task schema.

A Board is the ordered list of columns for one (project, team) pair.
It is derived on every load and never stored as its own row.

Task position is (column_id, sort_order). Every successful move bumps
the task's version so concurrent moves can be detected.
"""
import copy
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any
import json


def utc_now() -> str:
    """ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


class TaskStatus(Enum):
    """Lifecycle flag on a task row."""
    ACTIVE = "active"          # Visible on the board
    COMPLETED = "completed"    # Done, hidden from the board
    ARCHIVED = "archived"      # Soft-deleted

    @classmethod
    def from_str(cls, value: str) -> "TaskStatus":
        try:
            return cls[(value or "").upper()]
        except KeyError:
            return cls.ACTIVE


class TaskScope(Enum):
    """Who a task is visible to."""
    PERSONAL = "personal"
    PROJECT = "project"

    @classmethod
    def from_str(cls, value: str) -> "TaskScope":
        try:
            return cls[(value or "").upper()]
        except KeyError:
            return cls.PROJECT


PRIORITIES = ("low", "medium", "high", "urgent")


@dataclass
class Task:
    """One card on the board."""

    id: str
    title: str
    column_id: str
    project_id: str = ""
    team_id: Optional[str] = None
    description: str = ""
    sort_order: int = 0
    priority: str = "medium"
    assigned_to: Optional[str] = None
    due_date: Optional[str] = None        # YYYY-MM-DD
    status: TaskStatus = TaskStatus.ACTIVE
    scope: TaskScope = TaskScope.PROJECT
    created_by: str = ""
    jira_ticket_key: Optional[str] = None
    version: int = 1
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "column_id": self.column_id,
            "project_id": self.project_id,
            "team_id": self.team_id,
            "description": self.description,
            "sort_order": self.sort_order,
            "priority": self.priority,
            "assigned_to": self.assigned_to,
            "due_date": self.due_date,
            "status": self.status.value,
            "scope": self.scope.value,
            "created_by": self.created_by,
            "jira_ticket_key": self.jira_ticket_key,
            "version": self.version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        return cls(
            id=str(data.get("id", "")),
            title=data.get("title", ""),
            column_id=str(data.get("column_id", "")),
            project_id=data.get("project_id") or "",
            team_id=data.get("team_id"),
            description=data.get("description") or "",
            sort_order=int(data.get("sort_order") or 0),
            priority=data.get("priority") or "medium",
            assigned_to=data.get("assigned_to"),
            due_date=data.get("due_date") or None,
            status=TaskStatus.from_str(data.get("status", "active")),
            scope=TaskScope.from_str(data.get("scope", "project")),
            created_by=data.get("created_by") or "",
            jira_ticket_key=data.get("jira_ticket_key"),
            version=int(data.get("version") or 1),
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass
class Column:
    """A board column holding an ordered list of tasks."""

    id: str
    name: str
    project_id: str = ""
    team_id: Optional[str] = None
    description: str = ""
    color: str = "#3B82F6"
    sort_order: int = 0
    is_active: bool = True
    tasks: List[Task] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "project_id": self.project_id,
            "team_id": self.team_id,
            "description": self.description,
            "color": self.color,
            "sort_order": self.sort_order,
            "is_active": self.is_active,
            "tasks": [t.to_dict() for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Column":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            project_id=data.get("project_id") or "",
            team_id=data.get("team_id"),
            description=data.get("description") or "",
            color=data.get("color") or "#3B82F6",
            sort_order=int(data.get("sort_order") or 0),
            is_active=bool(data.get("is_active", True)),
            tasks=[Task.from_dict(t) for t in data.get("tasks") or []],
        )


@dataclass
class Board:
    """Ordered columns for one (project, team) pair."""

    project_id: str = ""
    team_id: str = ""
    columns: List[Column] = field(default_factory=list)

    def find_column(self, column_id: str) -> Optional[Column]:
        for column in self.columns:
            if column.id == column_id:
                return column
        return None

    def find_task(self, task_id: str) -> Optional[Task]:
        for column in self.columns:
            for task in column.tasks:
                if task.id == task_id:
                    return task
        return None

    def column_of(self, task_id: str) -> Optional[Column]:
        for column in self.columns:
            if any(t.id == task_id for t in column.tasks):
                return column
        return None

    def task_ids(self, column_id: str) -> List[str]:
        column = self.find_column(column_id)
        return [t.id for t in column.tasks] if column else []

    def copy(self) -> "Board":
        """Deep copy; snapshots must not share task objects with the live board."""
        return copy.deepcopy(self)

    def to_list(self) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in self.columns]

    @classmethod
    def from_list(cls, data: List[Dict[str, Any]], project_id: str = "", team_id: str = "") -> "Board":
        columns = [Column.from_dict(c) for c in data or []]
        columns.sort(key=lambda c: c.sort_order)
        for column in columns:
            column.tasks.sort(key=lambda t: t.sort_order)
        return cls(project_id=project_id, team_id=team_id, columns=columns)


@dataclass
class ShiftEnum:
    """A project/team scoped shift code (e.g. M, A, N)."""

    shift_identifier: str
    shift_name: str
    start_time: str = "09:00"
    end_time: str = "18:00"
    color: str = "#10B981"
    is_default: bool = False
    id: Optional[str] = None
    project_id: Optional[str] = None
    team_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "team_id": self.team_id,
            "shift_identifier": self.shift_identifier,
            "shift_name": self.shift_name,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "color": self.color,
            "is_default": self.is_default,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ShiftEnum":
        return cls(
            id=data.get("id"),
            project_id=data.get("project_id"),
            team_id=data.get("team_id"),
            shift_identifier=(data.get("shift_identifier") or "").upper(),
            shift_name=data.get("shift_name", ""),
            start_time=data.get("start_time") or "09:00",
            end_time=data.get("end_time") or "18:00",
            color=data.get("color") or "#10B981",
            is_default=bool(data.get("is_default", False)),
        )


class AuditEventType(Enum):
    """Kinds of audited actions."""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    ACCESS_DENIED = "ACCESS_DENIED"
    SECURITY_ALERT = "SECURITY_ALERT"
    API_CALL = "API_CALL"
    DATA_EXPORT = "DATA_EXPORT"
    DATA_IMPORT = "DATA_IMPORT"
    CONFIGURATION_CHANGE = "CONFIGURATION_CHANGE"

    @classmethod
    def from_str(cls, value: str) -> "AuditEventType":
        try:
            return cls[(value or "").upper()]
        except KeyError:
            return cls.API_CALL


@dataclass
class AuditEvent:
    """One row of the audit trail."""

    user_email: str
    event_type: AuditEventType
    table_name: Optional[str] = None
    record_id: Optional[str] = None
    old_values: Optional[Dict[str, Any]] = None
    new_values: Optional[Dict[str, Any]] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None
    success: bool = True
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    created_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_email": self.user_email,
            "event_type": self.event_type.value,
            "table_name": self.table_name,
            "record_id": self.record_id,
            "old_values": self.old_values,
            "new_values": self.new_values,
            "endpoint": self.endpoint,
            "method": self.method,
            "success": self.success,
            "error_message": self.error_message,
            "metadata": self.metadata,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEvent":
        def _json(value):
            if isinstance(value, str):
                try:
                    return json.loads(value)
                except (json.JSONDecodeError, TypeError):
                    return None
            return value

        return cls(
            id=data.get("id"),
            user_email=data.get("user_email", ""),
            event_type=AuditEventType.from_str(data.get("event_type", "")),
            table_name=data.get("table_name"),
            record_id=data.get("record_id"),
            old_values=_json(data.get("old_values")),
            new_values=_json(data.get("new_values")),
            endpoint=data.get("endpoint"),
            method=data.get("method"),
            success=bool(data.get("success", True)),
            error_message=data.get("error_message"),
            metadata=_json(data.get("metadata")) or {},
            created_at=data.get("created_at") or utc_now(),
        )
