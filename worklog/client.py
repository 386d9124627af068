from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from .errors import DataClientError, TransportError
from .schema import Board, Task

logger = logging.getLogger(__name__)


@dataclass
class ProxyResult:
    data: Any
    count: Optional[int] = None


@dataclass
class MoveResult:
    success: bool
    error: Optional[str] = None
    task: Optional[Task] = None


class RemoteDataClient:
    """HTTP client for the table proxy, the move-task endpoint and the board cache."""

    def __init__(self, base_url: str, api_key: Optional[str] = None, actor_email: Optional[str] = None,
                 timeout: float = 10, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key or ""
        self.actor_email = actor_email or ""
        self.timeout = timeout
        self.session = session or requests.Session()
        if self.api_key:
            self.session.headers.update({"X-API-Key": self.api_key})
        if self.actor_email:
            self.session.headers.update({"X-User-Email": self.actor_email})

    def _request(self, method: str, path: str, json: Any = None,
                 params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            r = self.session.request(method, url, json=json, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise TransportError(f"{method} {path} failed: {e}") from e
        try:
            body = r.json() or {}
        except ValueError:
            body = {}
        if not r.ok:
            message = body.get("error") if isinstance(body, dict) else None
            raise DataClientError(message or f"{r.status_code} {r.text}", r.status_code)
        return body

    # ---------- table proxy ----------
    def proxy(self, payload: Dict[str, Any]) -> ProxyResult:
        body = self._request("POST", "/api/proxy", json=payload)
        return ProxyResult(data=body.get("data"), count=body.get("count"))

    def select(self, table: str, filters: Optional[Dict[str, Any]] = None, select: str = "*",
               order: Optional[Dict[str, Any]] = None, limit: Optional[int] = None,
               offset: Optional[int] = None) -> ProxyResult:
        payload: Dict[str, Any] = {"table": table, "action": "select", "select": select}
        if filters:
            payload["filters"] = filters
        if order:
            payload["order"] = order
        if limit is not None:
            payload["limit"] = limit
        if offset:
            payload["offset"] = offset
        return self.proxy(payload)

    def insert(self, table: str, data) -> ProxyResult:
        return self.proxy({"table": table, "action": "insert", "data": data})

    def update(self, table: str, record_id: str, data: Dict[str, Any]) -> ProxyResult:
        return self.proxy({"table": table, "action": "update", "data": data, "filters": {"id": record_id}})

    def delete(self, table: str, record_id: str) -> ProxyResult:
        return self.proxy({"table": table, "action": "delete", "filters": {"id": record_id}})

    def upsert(self, table: str, data) -> ProxyResult:
        return self.proxy({"table": table, "action": "upsert", "data": data})

    def rpc(self, function: str, params: Optional[Dict[str, Any]] = None) -> ProxyResult:
        return self.proxy({"action": "rpc", "function": function, "data": params or {}})

    # ---------- kanban ----------
    def move_task(self, task_id: str, destination_column_id: str, destination_index: int,
                  project_id: str, team_id: str, actor_email: Optional[str] = None,
                  expected_version: Optional[int] = None) -> MoveResult:
        """Move a task. Server-reported failures come back as MoveResult(success=False)."""
        payload = {
            "taskId": task_id,
            "destinationColumnId": destination_column_id,
            "destinationIndex": destination_index,
            "projectId": project_id,
            "teamId": team_id,
            "actorEmail": actor_email or self.actor_email,
        }
        if expected_version is not None:
            payload["expectedVersion"] = expected_version
        try:
            body = self._request("POST", "/api/kanban/move-task", json=payload)
        except DataClientError as e:
            return MoveResult(success=False, error=str(e))
        if not body.get("success"):
            return MoveResult(success=False, error=body.get("error") or "Unknown error")
        task = Task.from_dict(body["data"]) if body.get("data") else None
        return MoveResult(success=True, task=task)

    def get_kanban_board_with_cache(self, project_id: str, team_id: str) -> Board:
        body = self._request("GET", "/api/kanban/board-with-cache",
                             params={"projectId": project_id, "teamId": team_id})
        return Board.from_list(body.get("data") or [], project_id=project_id, team_id=team_id)

    def invalidate_kanban_cache(self, project_id: str, team_id: Optional[str] = None) -> bool:
        params = {"projectId": project_id}
        if team_id:
            params["teamId"] = team_id
        body = self._request("POST", "/api/kanban/invalidate-cache", params=params)
        return bool(body.get("success"))

    def get_task_timeline(self, task_id: str) -> List[Dict[str, Any]]:
        body = self._request("GET", f"/api/kanban/tasks/{task_id}/timeline")
        return body.get("data") or []

    def cache_stats(self) -> Dict[str, Any]:
        return self._request("GET", "/api/cache-stats").get("data") or {}
