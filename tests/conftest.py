"""Shared fixtures: a temp SQLite store behind the Flask app, and a client wired to it."""

from urllib.parse import urlsplit

import pytest

import worklog_server
from worklog.client import RemoteDataClient

API_SECRET = "test-secret"
PROJECT = "proj-1"
TEAM = "team-1"
ACTOR = "alice@example.com"


class FlaskResponse:
    """The slice of requests.Response the client reads."""

    def __init__(self, resp):
        self._resp = resp
        self.status_code = resp.status_code
        self.ok = resp.status_code < 400
        self.text = resp.get_data(as_text=True)

    def json(self):
        return self._resp.get_json(silent=True)


class FlaskSession:
    """Stands in for requests.Session, routing calls into app.test_client()."""

    def __init__(self, test_client):
        self.test_client = test_client
        self.headers = {}
        self.calls = []

    def request(self, method, url, json=None, params=None, timeout=None):
        path = urlsplit(url).path
        self.calls.append((method, path))
        resp = self.test_client.open(path, method=method, json=json,
                                     query_string=params, headers=dict(self.headers))
        return FlaskResponse(resp)


@pytest.fixture
def server(tmp_path):
    # Own MonkeyPatch so a test's monkeypatch.undo() keeps the server env in place.
    with pytest.MonkeyPatch.context() as mp:
        mp.setenv("WORKLOG_DB", str(tmp_path / "worklog.db"))
        mp.setenv("WORKLOG_API_SECRET", API_SECRET)
        worklog_server.board_cache.clear()
        yield worklog_server
        worklog_server.board_cache.clear()


@pytest.fixture
def http(server):
    return server.app.test_client()


@pytest.fixture
def store(server):
    return server.get_store()


@pytest.fixture
def session(server):
    return FlaskSession(server.app.test_client())


@pytest.fixture
def client(session):
    return RemoteDataClient("http://testserver/", api_key=API_SECRET, actor_email=ACTOR, session=session)


def add_task(store, column_id, title, sort_order, project_id=PROJECT, team_id=TEAM, **extra):
    row = {"project_id": project_id, "team_id": team_id, "column_id": column_id,
           "title": title, "sort_order": sort_order}
    row.update(extra)
    return store.insert("kanban_tasks", row)[0]


@pytest.fixture
def board(store):
    """Default columns for PROJECT/TEAM: To Do = [T1, T2], Done = [existing0, existing1]."""
    columns = store.get_board(PROJECT, TEAM)
    todo, doing, done = (c["id"] for c in columns)
    t1 = add_task(store, todo, "T1", 0)
    t2 = add_task(store, todo, "T2", 1)
    d0 = add_task(store, done, "existing0", 0)
    d1 = add_task(store, done, "existing1", 1)
    return {"todo": todo, "doing": doing, "done": done,
            "t1": t1["id"], "t2": t2["id"], "d0": d0["id"], "d1": d1["id"]}
