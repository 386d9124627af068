"""
Tests for the Flask API: auth, proxy, move endpoint, board cache.
"""
import pytest

from conftest import ACTOR, API_SECRET, PROJECT, TEAM

AUTH = {"X-API-Key": API_SECRET, "X-User-Email": ACTOR}


def test_health(http):
    resp = http.get("/health")
    assert resp.status_code == 200
    assert resp.get_json()["status"] == "ok"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Auth
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_write_without_secret_configured(http, monkeypatch):
    monkeypatch.delenv("WORKLOG_API_SECRET")
    resp = http.post("/api/proxy", json={"table": "projects", "action": "insert", "data": {"name": "x"}})
    assert resp.status_code == 503


def test_write_with_missing_or_wrong_key(http):
    payload = {"table": "projects", "action": "insert", "data": {"name": "x"}}
    assert http.post("/api/proxy", json=payload).status_code == 401
    assert http.post("/api/proxy", json=payload, headers={"X-API-Key": "wrong"}).status_code == 403
    assert http.post("/api/kanban/move-task", json={}).status_code == 401


def test_select_needs_no_key(http):
    resp = http.post("/api/proxy", json={"table": "projects", "action": "select"})
    assert resp.status_code == 200
    assert resp.get_json() == {"data": [], "count": 0}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Proxy
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_invalid_action_and_table(http):
    assert http.post("/api/proxy", json={"table": "projects", "action": "truncate"},
                     headers=AUTH).status_code == 400
    assert http.post("/api/proxy", json={"table": "users", "action": "select"}).status_code == 400


def test_get_listing(http, store):
    store.insert("projects", [{"name": "Apollo"}, {"name": "Gemini"}, {"name": "Mercury"}])
    resp = http.get("/api/proxy?table=projects&select=name&order=name.desc&limit=2")
    body = resp.get_json()
    assert [r["name"] for r in body["data"]] == ["Mercury", "Gemini"]
    assert body["count"] == 3

    resp = http.get("/api/proxy?table=projects&name_ilike=%25mini%25")
    assert [r["name"] for r in resp.get_json()["data"]] == ["Gemini"]


def test_get_listing_bad_limit(http):
    assert http.get("/api/proxy?table=projects&limit=ten").status_code == 400


def test_proxy_write_is_audited(http, store, board):
    resp = http.post("/api/proxy", headers=AUTH, json={
        "table": "kanban_tasks", "action": "update",
        "data": {"priority": "urgent"}, "filters": {"id": board["t1"]},
    })
    assert resp.status_code == 200
    rows, _ = store.select("audit_trail", filters={"record_id": board["t1"]})
    assert len(rows) == 1
    assert rows[0]["event_type"] == "UPDATE"
    assert rows[0]["user_email"] == ACTOR
    assert rows[0]["old_values"]["priority"] == "medium"
    assert rows[0]["new_values"]["priority"] == "urgent"


def test_failed_write_is_audited(http, store):
    resp = http.post("/api/proxy", headers=AUTH, json={
        "table": "projects", "action": "update", "data": {"name": "x"}, "filters": {"id": "missing"},
    })
    assert resp.status_code == 404
    rows, _ = store.select("audit_trail", filters={"success": False})
    assert rows[0]["error_message"].startswith("projects row not found")


def test_task_writes_recorded_in_timeline(http, store, board):
    resp = http.post("/api/proxy", headers=AUTH, json={
        "table": "kanban_tasks", "action": "insert",
        "data": {"project_id": PROJECT, "team_id": TEAM, "column_id": board["todo"], "title": "T3"},
    })
    task_id = resp.get_json()["data"][0]["id"]
    timeline = http.get(f"/api/kanban/tasks/{task_id}/timeline").get_json()["data"]
    assert [e["action"] for e in timeline] == ["created"]


def test_kanban_write_invalidates_project_boards(http, server, board):
    http.get(f"/api/kanban/board-with-cache?projectId={PROJECT}&teamId={TEAM}")
    assert server.board_cache.get_board(PROJECT, TEAM) is not None
    http.post("/api/proxy", headers=AUTH, json={
        "table": "kanban_tasks", "action": "update",
        "data": {"title": "Renamed"}, "filters": {"id": board["t1"]},
    })
    assert server.board_cache.get_board(PROJECT, TEAM) is None


def test_rpc_uses_function_name(http, board):
    resp = http.post("/api/proxy", headers=AUTH, json={
        "action": "rpc", "function": "get_kanban_board",
        "data": {"p_project_id": PROJECT, "p_team_id": TEAM},
    })
    assert [c["name"] for c in resp.get_json()["data"]] == ["To Do", "In Progress", "Done"]


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Kanban endpoints
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_board_with_cache_source(http, board):
    url = f"/api/kanban/board-with-cache?projectId={PROJECT}&teamId={TEAM}"
    first = http.get(url).get_json()
    second = http.get(url).get_json()
    assert first["source"] == "database"
    assert second["source"] == "cache"
    assert second["data"] == first["data"]


def test_board_requires_project(http):
    resp = http.get("/api/kanban/board-with-cache")
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_move_endpoint(http, board):
    resp = http.post("/api/kanban/move-task", headers=AUTH, json={
        "taskId": board["t1"], "destinationColumnId": board["done"], "destinationIndex": 1,
        "projectId": PROJECT, "teamId": TEAM, "actorEmail": ACTOR, "expectedVersion": 1,
    })
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["success"] is True
    assert body["data"]["column_id"] == board["done"]
    assert body["data"]["sort_order"] == 1


def test_move_endpoint_conflict(http, board):
    payload = {"taskId": board["t1"], "destinationColumnId": board["done"], "destinationIndex": 0,
               "projectId": PROJECT, "teamId": TEAM, "expectedVersion": 7}
    resp = http.post("/api/kanban/move-task", headers=AUTH, json=payload)
    assert resp.status_code == 409
    assert resp.get_json()["success"] is False


@pytest.mark.parametrize("payload", [
    {},
    {"taskId": "t", "destinationColumnId": "c"},
    {"taskId": "t", "destinationColumnId": "c", "destinationIndex": "first"},
    {"taskId": "t", "destinationColumnId": "c", "destinationIndex": -1},
])
def test_move_endpoint_validation(http, payload):
    resp = http.post("/api/kanban/move-task", headers=AUTH, json=payload)
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_move_invalidates_cache(http, server, board):
    http.get(f"/api/kanban/board-with-cache?projectId={PROJECT}&teamId={TEAM}")
    http.post("/api/kanban/move-task", headers=AUTH, json={
        "taskId": board["t1"], "destinationColumnId": board["done"], "destinationIndex": 0,
        "projectId": PROJECT, "teamId": TEAM,
    })
    assert server.board_cache.get_board(PROJECT, TEAM) is None


def test_invalidate_whole_project(http, server):
    server.board_cache.set_board(PROJECT, "t1", [])
    server.board_cache.set_board(PROJECT, "t2", [])
    resp = http.post(f"/api/kanban/invalidate-cache?projectId={PROJECT}", headers=AUTH)
    assert resp.get_json() == {"success": True, "invalidated": 2}


def test_cache_stats(http):
    body = http.get("/api/cache-stats").get_json()
    assert body["success"] is True
    assert body["data"]["ttls"]["kanban"] == 300


def test_board_read_racing_a_move_is_not_cached(http, server, store, board, monkeypatch):
    read_board = store.get_board

    def read_then_move(project_id, team_id=None):
        columns = read_board(project_id, team_id)
        store.move_task(board["t1"], board["done"], 0, actor_email=ACTOR)
        server.board_cache.invalidate_project(PROJECT)
        return columns

    monkeypatch.setattr(store, "get_board", read_then_move)
    url = f"/api/kanban/board-with-cache?projectId={PROJECT}&teamId={TEAM}"
    assert http.get(url).get_json()["source"] == "database"
    monkeypatch.undo()

    body = http.get(url).get_json()
    assert body["source"] == "database"
    done = next(c for c in body["data"] if c["id"] == board["done"])
    assert board["t1"] in [t["id"] for t in done["tasks"]]


def test_move_conflict_drops_cached_board(http, server, board):
    http.get(f"/api/kanban/board-with-cache?projectId={PROJECT}&teamId={TEAM}")
    resp = http.post("/api/kanban/move-task", headers=AUTH, json={
        "taskId": board["t1"], "destinationColumnId": board["done"], "destinationIndex": 0,
        "projectId": PROJECT, "teamId": TEAM, "expectedVersion": 7,
    })
    assert resp.status_code == 409
    assert server.board_cache.get_board(PROJECT, TEAM) is None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Malformed input
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


@pytest.mark.parametrize("extra", [{"limit": "ten"}, {"offset": "x"}, {"limit": -2}, {"order": "title.desc"}])
def test_select_with_bad_paging_is_400(http, extra):
    payload = dict({"table": "kanban_tasks", "action": "select"}, **extra)
    resp = http.post("/api/proxy", json=payload)
    assert resp.status_code == 400
    assert "error" in resp.get_json()


def test_non_object_bodies_are_400(http):
    resp = http.post("/api/proxy", json=[], headers=AUTH)
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Request body must be a JSON object"

    resp = http.post("/api/proxy", headers=AUTH, json={
        "table": "projects", "action": "delete", "filters": ["id"],
    })
    assert resp.status_code == 400

    resp = http.post("/api/kanban/move-task", json=["t1"], headers=AUTH)
    assert resp.status_code == 400
    assert resp.get_json()["success"] is False


def test_unexpected_failure_is_json_500(http, store, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(store, "select", broken)
    resp = http.post("/api/proxy", json={"table": "projects", "action": "select"})
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "disk on fire"}
