#!/usr/bin/env python3
"""
Work-log Server
---------------
JSON API over the work-log SQLite store: a generic table proxy, the
kanban move endpoint and the board cache.

Usage:
    python worklog_server.py --port 3000 --db ~/.local/share/worklog/worklog.db

API:
    POST /api/proxy                     → { table, action, data, filters, select, order, limit, offset }
                                          Returns: { data, count } or { error }
    GET  /api/proxy?table=&order=col.desc&limit=&offset=&<filter>=
    POST /api/kanban/move-task          → { taskId, destinationColumnId, destinationIndex,
                                            projectId, teamId, actorEmail, expectedVersion? }
                                          Returns: { success, data } or { success: false, error }
    GET  /api/kanban/board-with-cache?projectId=&teamId=
                                          Returns: { success, data, source: cache|database }
    POST /api/kanban/invalidate-cache?projectId=&teamId=
    GET  /api/kanban/tasks/<id>/timeline
    GET  /api/cache-stats
    GET  /health

Write calls require the X-API-Key header to match WORKLOG_API_SECRET.
"""

import hmac
import logging
import os
import sys
from functools import wraps
from pathlib import Path
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from worklog import __version__
from worklog.cache import KanbanCache
from worklog.config import Config
from worklog.errors import ConflictError, InvalidRequestError, NotFoundError, StoreError
from worklog.store import WorklogStore

logger = logging.getLogger("worklog.server")

app = Flask(__name__)

board_cache = KanbanCache()

ACTIONS = ("select", "insert", "update", "delete", "upsert", "rpc")
WRITE_ACTIONS = ("insert", "update", "delete", "upsert", "rpc")
KANBAN_TABLES = ("kanban_tasks", "kanban_columns")
AUDIT_EVENT_BY_ACTION = {
    "insert": "CREATE",
    "update": "UPDATE",
    "upsert": "UPDATE",
    "delete": "DELETE",
    "rpc": "API_CALL",
}


# ── Auth ─────────────────────────────────────────────────────────────────────

def _auth_failure():
    """None when the request carries a valid key, else an error response."""
    secret = os.environ.get("WORKLOG_API_SECRET", "")
    if not secret:
        return jsonify({"error": "WORKLOG_API_SECRET not set"}), 503
    provided = request.headers.get("X-API-Key", "").strip()
    if not hmac.compare_digest(provided, secret):
        code = 401 if not provided else 403
        return jsonify({"error": "Unauthorized"}), code
    return None


def require_api_key(f):
    """Decorator: reject requests without a valid X-API-Key header."""
    @wraps(f)
    def decorated(*args, **kwargs):
        failure = _auth_failure()
        if failure is not None:
            return failure
        return f(*args, **kwargs)
    return decorated


# ── Store ────────────────────────────────────────────────────────────────────

_stores: Dict[str, WorklogStore] = {}


def get_db_path() -> Path:
    env = os.environ.get("WORKLOG_DB")
    if env:
        return Path(env).expanduser()
    return Path(Config().db_path).expanduser()


def get_store() -> WorklogStore:
    path = str(get_db_path())
    if path not in _stores:
        _stores[path] = WorklogStore(path)
    return _stores[path]


def _error(e: Exception, **extra):
    """Map an exception onto a JSON error response; unexpected ones are a logged 500."""
    if isinstance(e, NotFoundError):
        code = 404
    elif isinstance(e, ConflictError):
        code = 409
    elif isinstance(e, InvalidRequestError):
        code = 400
    else:
        code = 500
        logger.error(f"{request.method} {request.path} failed: {e}", exc_info=not isinstance(e, StoreError))
    return jsonify(dict(extra, error=str(e))), code


def _json_body() -> Dict[str, Any]:
    """Request JSON object; an empty or missing body reads as {}."""
    body = request.get_json(force=True, silent=True)
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return body


def _actor(body: Optional[Dict[str, Any]] = None) -> str:
    body = body or {}
    return body.get("actorEmail") or request.headers.get("X-User-Email") or "system"


def _audit(store: WorklogStore, actor: str, event_type: str, table: Optional[str], record_id=None,
           old_values=None, new_values=None, success: bool = True, error_message: Optional[str] = None):
    if table == "audit_trail":
        return
    try:
        store.log_audit({
            "user_email": actor,
            "event_type": event_type,
            "table_name": table,
            "record_id": str(record_id) if record_id is not None else None,
            "old_values": old_values,
            "new_values": new_values,
            "endpoint": request.path,
            "method": request.method,
            "success": success,
            "error_message": error_message,
        })
    except StoreError as e:
        logger.warning(f"Audit write failed for {table}:{record_id}: {e}")


def _invalidate_project(project_id: Optional[str]):
    if project_id:
        board_cache.invalidate_project(project_id)


# ── Table proxy ──────────────────────────────────────────────────────────────

def _run_proxy(store: WorklogStore, payload: Dict[str, Any]):
    action = payload.get("action")
    if action not in ACTIONS:
        raise InvalidRequestError(f"Invalid action: {action}")
    table = payload.get("table")
    data = payload.get("data")
    filters = payload.get("filters") or {}

    if action == "select":
        if not table:
            raise InvalidRequestError("table is required")
        rows, count = store.select(
            table,
            filters=filters,
            select=payload.get("select") or "*",
            order=payload.get("order"),
            limit=payload.get("limit"),
            offset=payload.get("offset"),
        )
        return {"data": rows, "count": count}

    if action == "rpc":
        function = payload.get("function") or table
        if not function:
            raise InvalidRequestError("function is required")
        return {"data": store.rpc(function, data or payload.get("params") or {})}

    if not table:
        raise InvalidRequestError("table is required")
    if action == "insert":
        rows = store.insert(table, data)
    elif action == "update":
        rows = store.update(table, data, filters)
    elif action == "delete":
        rows = store.delete(table, filters)
    else:
        rows = store.upsert(table, data)
    return {"data": rows, "count": len(rows)}


def _project_touched(store: WorklogStore, payload: Dict[str, Any]) -> Optional[str]:
    """Project whose board a kanban write affects, resolved before the write."""
    action = payload.get("action")
    if action == "rpc":
        if (payload.get("function") or payload.get("table")) != "move_kanban_task":
            return None
        params = payload.get("data") or {}
        return store.project_of("kanban_tasks", params.get("p_task_id"))
    table = payload.get("table")
    if table not in KANBAN_TABLES:
        return None
    data = payload.get("data")
    if isinstance(data, dict) and data.get("project_id"):
        return data["project_id"]
    if isinstance(data, list) and data and isinstance(data[0], dict):
        return data[0].get("project_id")
    return store.project_of(table, (payload.get("filters") or {}).get("id"))


def _old_values(store: WorklogStore, payload: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    record_id = (payload.get("filters") or {}).get("id")
    if payload.get("action") not in ("update", "delete") or not record_id:
        return None
    try:
        rows, _ = store.select(payload["table"], filters={"id": record_id})
    except StoreError:
        return None
    return rows[0] if rows else None


@app.route("/api/proxy", methods=["POST"])
def api_proxy():
    """Generic table access. Reads are open; writes need the API key."""
    try:
        payload = _json_body()
        if not isinstance(payload.get("filters") or {}, dict):
            raise InvalidRequestError("filters must be an object")
    except InvalidRequestError as e:
        return _error(e)
    action = payload.get("action")
    if action in WRITE_ACTIONS:
        failure = _auth_failure()
        if failure is not None:
            return failure

    store = get_store()
    if action not in WRITE_ACTIONS:
        try:
            return jsonify(_run_proxy(store, payload))
        except Exception as e:
            return _error(e)

    table = payload.get("table")
    actor = _actor(payload)
    event_type = AUDIT_EVENT_BY_ACTION[action]
    try:
        project_id = _project_touched(store, payload)
        old = _old_values(store, payload)
        result = _run_proxy(store, payload)
    except Exception as e:
        _audit(store, actor, event_type, table, (payload.get("filters") or {}).get("id"),
               success=False, error_message=str(e))
        return _error(e)

    try:
        _record_write(store, payload, result, actor, event_type, old)
    except Exception as e:
        logger.warning(f"Audit/timeline after {action} on {table} failed: {e}")
    _invalidate_project(project_id)
    return jsonify(result)


def _record_write(store: WorklogStore, payload: Dict[str, Any], result: Dict[str, Any],
                  actor: str, event_type: str, old: Optional[Dict[str, Any]]):
    action = payload.get("action")
    table = payload.get("table")
    rows = result["data"] if isinstance(result["data"], list) else [result["data"]]
    first = rows[0] if rows and isinstance(rows[0], dict) else {}
    if action == "rpc":
        _audit(store, actor, event_type, payload.get("function") or table,
               new_values=payload.get("data") or {})
    else:
        _audit(store, actor, event_type, table, first.get("id"), old_values=old,
               new_values=None if action == "delete" else first)
    if table == "kanban_tasks" and action in ("insert", "update") and first.get("id"):
        store.add_timeline_entry(
            first["id"], "created" if action == "insert" else "updated", actor,
            to_column_id=first.get("column_id"),
        )


@app.route("/api/proxy", methods=["GET"])
def api_proxy_list():
    """Read-only listing: ?table=&select=&order=col.desc&limit=&offset=&<filter>=<value>"""
    args = request.args.to_dict()
    table = args.pop("table", None)
    payload: Dict[str, Any] = {"action": "select", "table": table, "select": args.pop("select", "*")}
    order = args.pop("order", None)
    if order:
        column, _, direction = order.partition(".")
        payload["order"] = {"column": column, "ascending": direction.lower() != "desc"}
    try:
        if "limit" in args:
            payload["limit"] = int(args.pop("limit"))
        if "offset" in args:
            payload["offset"] = int(args.pop("offset"))
    except ValueError:
        return jsonify({"error": "limit and offset must be integers"}), 400
    payload["filters"] = args
    try:
        return jsonify(_run_proxy(get_store(), payload))
    except Exception as e:
        return _error(e)


# ── Kanban ───────────────────────────────────────────────────────────────────

@app.route("/api/kanban/move-task", methods=["POST"])
@require_api_key
def api_move_task():
    """Move a task to an absolute (column, index) position."""
    try:
        data = _json_body()
    except InvalidRequestError as e:
        return _error(e, success=False)
    task_id = data.get("taskId")
    column_id = data.get("destinationColumnId")
    index = data.get("destinationIndex")
    if not task_id or not column_id or index is None:
        return jsonify({
            "success": False,
            "error": "taskId, destinationColumnId and destinationIndex are required",
        }), 400
    try:
        index = int(index)
    except (TypeError, ValueError):
        return jsonify({"success": False, "error": "destinationIndex must be an integer"}), 400
    if index < 0:
        return jsonify({"success": False, "error": "destinationIndex must be >= 0"}), 400

    store = get_store()
    actor = _actor(data)
    try:
        task = store.move_task(task_id, column_id, index, actor_email=actor,
                               expected_version=data.get("expectedVersion"))
    except StoreError as e:
        _audit(store, actor, "UPDATE", "kanban_tasks", task_id, success=False, error_message=str(e))
        if isinstance(e, ConflictError):
            # stale board on the client; its reload must reach the database
            _invalidate_project(data.get("projectId") or store.project_of("kanban_tasks", task_id))
        return _error(e, success=False)
    except Exception as e:
        return _error(e, success=False)

    _audit(store, actor, "UPDATE", "kanban_tasks", task_id,
           new_values={"column_id": column_id, "sort_order": task["sort_order"], "version": task["version"]})
    project_id = data.get("projectId") or task["project_id"]
    try:
        board_cache.invalidate_project(project_id)
    except Exception as e:
        logger.warning(f"Cache invalidation after move of {task_id} failed: {e}")
    return jsonify({"success": True, "data": task})


@app.route("/api/kanban/board-with-cache", methods=["GET"])
def api_board_with_cache():
    project_id = request.args.get("projectId")
    team_id = request.args.get("teamId") or ""
    if not project_id:
        return jsonify({"success": False, "error": "projectId is required"}), 400

    cached = board_cache.get_board(project_id, team_id)
    if cached is not None:
        return jsonify({"success": True, "data": cached, "source": "cache"})
    generation = board_cache.generation(project_id)
    try:
        board = get_store().get_board(project_id, team_id or None)
    except Exception as e:
        return _error(e, success=False)
    board_cache.set_board(project_id, team_id, board, generation=generation)
    return jsonify({"success": True, "data": board, "source": "database"})


@app.route("/api/kanban/invalidate-cache", methods=["POST"])
@require_api_key
def api_invalidate_cache():
    project_id = request.args.get("projectId")
    team_id = request.args.get("teamId")
    if not project_id:
        return jsonify({"success": False, "error": "projectId is required"}), 400
    if team_id:
        removed = int(board_cache.invalidate_board(project_id, team_id))
    else:
        removed = board_cache.invalidate_project(project_id)
    return jsonify({"success": True, "invalidated": removed})


@app.route("/api/kanban/tasks/<task_id>/timeline")
def api_task_timeline(task_id):
    try:
        entries = get_store().get_task_timeline(task_id)
    except Exception as e:
        return _error(e, success=False)
    return jsonify({"success": True, "data": entries})


@app.route("/api/cache-stats")
def api_cache_stats():
    return jsonify({"success": True, "data": board_cache.stats()})


@app.route("/health")
def health():
    return jsonify({"status": "ok", "db": str(get_db_path()), "version": __version__})


# ── Main ─────────────────────────────────────────────────────────────────────

def main(argv=None):
    import argparse

    parser = argparse.ArgumentParser(description="Work-log Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--db", help="Path to worklog.db (overrides WORKLOG_DB env var)")
    parser.add_argument("--config", help="Path to config.yaml")
    args = parser.parse_args(argv)

    cfg = Config.load(args.config)
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [worklog] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    os.environ["WORKLOG_DB"] = args.db or os.environ.get("WORKLOG_DB") or cfg.db_path
    board_cache.ttls.update(cfg.cache_ttls)
    if not os.environ.get("WORKLOG_API_SECRET"):
        logger.warning("WORKLOG_API_SECRET not set; write endpoints will answer 503")

    logger.info(f"Serving on http://{args.host}:{args.port} (db={get_db_path()})")
    app.run(host=args.host, port=args.port, debug=False, threaded=True)


if __name__ == "__main__":
    main()
