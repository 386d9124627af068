"""
Work-log storage backend (SQLite).

Backs the generic table proxy (select/insert/update/delete/upsert/rpc)
and the board-level operations: board assembly, conditional task moves
and the task timeline.
"""
import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import ConflictError, InvalidRequestError, NotFoundError, StoreError
from .schema import utc_now

logger = logging.getLogger(__name__)


SCHEMA = {
    "projects": """
        CREATE TABLE IF NOT EXISTS projects (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "teams": """
        CREATE TABLE IF NOT EXISTS teams (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            description TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "team_members": """
        CREATE TABLE IF NOT EXISTS team_members (
            id TEXT PRIMARY KEY,
            team_id TEXT NOT NULL,
            user_email TEXT NOT NULL,
            full_name TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(team_id, user_email)
        )
    """,
    "kanban_columns": """
        CREATE TABLE IF NOT EXISTS kanban_columns (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL,
            team_id TEXT,
            name TEXT NOT NULL,
            description TEXT,
            color TEXT DEFAULT '#3B82F6',
            sort_order INTEGER DEFAULT 0,
            is_active INTEGER DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """,
    "kanban_tasks": """
        CREATE TABLE IF NOT EXISTS kanban_tasks (
            id TEXT PRIMARY KEY,
            project_id TEXT NOT NULL,
            team_id TEXT,
            column_id TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            sort_order INTEGER DEFAULT 0,
            priority TEXT DEFAULT 'medium',
            assigned_to TEXT,
            due_date TEXT,
            status TEXT DEFAULT 'active',
            scope TEXT DEFAULT 'project',
            created_by TEXT,
            jira_ticket_key TEXT,
            version INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (column_id) REFERENCES kanban_columns(id) ON DELETE CASCADE
        )
    """,
    "kanban_task_timeline": """
        CREATE TABLE IF NOT EXISTS kanban_task_timeline (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            task_id TEXT NOT NULL,
            action TEXT NOT NULL,
            from_column_id TEXT,
            to_column_id TEXT,
            user_email TEXT,
            details TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (task_id) REFERENCES kanban_tasks(id) ON DELETE CASCADE
        )
    """,
    "custom_shift_enums": """
        CREATE TABLE IF NOT EXISTS custom_shift_enums (
            id TEXT PRIMARY KEY,
            project_id TEXT,
            team_id TEXT,
            shift_identifier TEXT NOT NULL,
            shift_name TEXT NOT NULL,
            start_time TEXT,
            end_time TEXT,
            color TEXT,
            is_default INTEGER DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(project_id, team_id, shift_identifier)
        )
    """,
    "shift_schedules": """
        CREATE TABLE IF NOT EXISTS shift_schedules (
            id TEXT PRIMARY KEY,
            project_id TEXT,
            team_id TEXT,
            user_email TEXT NOT NULL,
            shift_date TEXT NOT NULL,
            shift_type TEXT NOT NULL DEFAULT 'G',
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE(project_id, team_id, user_email, shift_date)
        )
    """,
    "audit_trail": """
        CREATE TABLE IF NOT EXISTS audit_trail (
            id TEXT PRIMARY KEY,
            user_email TEXT,
            event_type TEXT NOT NULL,
            table_name TEXT,
            record_id TEXT,
            old_values TEXT,
            new_values TEXT,
            endpoint TEXT,
            method TEXT,
            success INTEGER DEFAULT 1,
            error_message TEXT,
            metadata TEXT,
            created_at TEXT NOT NULL
        )
    """,
}

INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_columns_project ON kanban_columns(project_id, sort_order)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_column ON kanban_tasks(column_id, sort_order)",
    "CREATE INDEX IF NOT EXISTS idx_tasks_project ON kanban_tasks(project_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_timeline_task ON kanban_task_timeline(task_id, id)",
    "CREATE INDEX IF NOT EXISTS idx_shifts_project_team_date ON shift_schedules(project_id, team_id, shift_date)",
    "CREATE INDEX IF NOT EXISTS idx_audit_created ON audit_trail(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_audit_user ON audit_trail(user_email)",
]

JSON_COLUMNS = {
    "audit_trail": {"old_values", "new_values", "metadata"},
}

BOOL_COLUMNS = {
    "kanban_columns": {"is_active"},
    "custom_shift_enums": {"is_default"},
    "audit_trail": {"success"},
}

# Conflict targets for upsert
CONFLICT_KEYS = {
    "shift_schedules": ("project_id", "team_id", "user_email", "shift_date"),
    "custom_shift_enums": ("project_id", "team_id", "shift_identifier"),
    "team_members": ("team_id", "user_email"),
}

# Suffix operators accepted in proxy filter keys, longest first
SUFFIX_OPS = [
    ("_gte", "gte"),
    ("_lte", "lte"),
    ("_neq", "neq"),
    ("_ilike", "ilike"),
    ("_like", "like"),
    ("_gt", "gt"),
    ("_lt", "lt"),
    ("_in", "in"),
]

COMPARISONS = {
    "eq": "=",
    "neq": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}

DEFAULT_COLUMNS = [
    {"name": "To Do", "description": "Tasks to be done", "color": "#3B82F6", "sort_order": 0},
    {"name": "In Progress", "description": "Tasks currently being worked on", "color": "#F59E0B", "sort_order": 1},
    {"name": "Done", "description": "Completed tasks", "color": "#10B981", "sort_order": 2},
]


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def new_id() -> str:
    return uuid.uuid4().hex


def _page_value(name: str, value, default: int) -> int:
    if value is None:
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"{name} must be an integer") from None
    if number < 0:
        raise InvalidRequestError(f"{name} must be >= 0")
    return number


class WorklogStore:
    """SQLite-backed store behind the table proxy."""

    def __init__(self, db_path: str = None):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "worklog" / "worklog.db")
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._columns: Dict[str, List[str]] = {}
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        with self._transaction() as conn:
            for ddl in SCHEMA.values():
                conn.execute(ddl)
            for ddl in INDEXES:
                conn.execute(ddl)
            for table in SCHEMA:
                rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
                self._columns[table] = [r["name"] for r in rows]

    @contextmanager
    def _transaction(self):
        """Yield a connection; commit on success, roll back and translate errors on failure."""
        conn = _connect(self.db_path)
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise InvalidRequestError(str(e)) from e
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"SQLite error on {self.db_path}: {e}")
            raise StoreError(str(e)) from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # ── Identifier and value handling ────────────────────────────────────────

    def _check_table(self, table: str) -> List[str]:
        if table not in self._columns:
            raise InvalidRequestError(f"Unknown table: {table}")
        return self._columns[table]

    def _check_column(self, table: str, column: str) -> str:
        if column not in self._check_table(table):
            raise InvalidRequestError(f"Unknown column {column} on {table}")
        return column

    def _encode(self, table: str, column: str, value: Any) -> Any:
        if column in JSON_COLUMNS.get(table, ()) and value is not None and not isinstance(value, str):
            return json.dumps(value)
        if isinstance(value, bool):
            return 1 if value else 0
        return value

    def _decode(self, table: str, row: sqlite3.Row) -> Dict[str, Any]:
        data = dict(row)
        for column in JSON_COLUMNS.get(table, ()):
            if isinstance(data.get(column), str):
                try:
                    data[column] = json.loads(data[column])
                except (json.JSONDecodeError, TypeError):
                    pass
        for column in BOOL_COLUMNS.get(table, ()):
            if column in data and data[column] is not None:
                data[column] = bool(data[column])
        return data

    def _prepare_row(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Validate columns, fill id and timestamps, encode values."""
        columns = self._check_table(table)
        row = {}
        for key, value in data.items():
            self._check_column(table, key)
            row[key] = self._encode(table, key, value)
        now = utc_now()
        if "id" in columns and table != "kanban_task_timeline" and not row.get("id"):
            row["id"] = new_id()
        if "created_at" in columns and not row.get("created_at"):
            row["created_at"] = now
        if "updated_at" in columns:
            row["updated_at"] = now
        return row

    def _where(self, table: str, filters: Optional[Dict[str, Any]]) -> Tuple[str, List[Any]]:
        """Translate proxy filters into a WHERE clause.

        Plain value -> equality, list -> IN, dict -> {operator: value},
        key suffixes (_gte, _lte, _gt, _lt, _neq, _like, _ilike, _in)
        select the operator. None values are ignored.
        """
        clauses: List[str] = []
        params: List[Any] = []
        columns = self._check_table(table)
        for key, value in (filters or {}).items():
            if value is None:
                continue
            column, op = key, None
            if key not in columns:
                for suffix, suffix_op in SUFFIX_OPS:
                    if key.endswith(suffix) and key[: -len(suffix)] in columns:
                        column, op = key[: -len(suffix)], suffix_op
                        break
                else:
                    raise InvalidRequestError(f"Unknown filter column {key} on {table}")

            if op is not None:
                pairs = [(op, value)]
            elif isinstance(value, dict):
                pairs = list(value.items())
            elif isinstance(value, (list, tuple)):
                pairs = [("in", value)]
            else:
                pairs = [("eq", value)]

            for operator, operand in pairs:
                clause, values = self._clause(table, column, operator, operand)
                clauses.append(clause)
                params.extend(values)

        if not clauses:
            return "", []
        return " WHERE " + " AND ".join(clauses), params

    def _clause(self, table: str, column: str, operator: str, operand: Any) -> Tuple[str, List[Any]]:
        if operator in COMPARISONS:
            return f"{column} {COMPARISONS[operator]} ?", [self._encode(table, column, operand)]
        if operator == "like":
            return f"{column} GLOB ?", [str(operand).replace("%", "*").replace("_", "?")]
        if operator == "ilike":
            return f"LOWER({column}) LIKE LOWER(?)", [str(operand)]
        if operator == "in":
            items = list(operand) if isinstance(operand, (list, tuple)) else [operand]
            if not items:
                return "0", []
            marks = ", ".join("?" for _ in items)
            return f"{column} IN ({marks})", [self._encode(table, column, v) for v in items]
        raise InvalidRequestError(f"Unknown filter operator: {operator}")

    # ── Generic table operations ─────────────────────────────────────────────

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        select: str = "*",
        order: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Return (rows, count). count ignores limit/offset."""
        self._check_table(table)
        if not select or select.strip() == "*":
            projection = "*"
        else:
            projection = ", ".join(
                self._check_column(table, c.strip()) for c in select.split(",") if c.strip()
            )
        where, params = self._where(table, filters)

        sql = f"SELECT {projection} FROM {table}{where}"
        if order:
            if not isinstance(order, dict):
                raise InvalidRequestError("order must be an object with column and ascending")
            column = self._check_column(table, order.get("column", ""))
            direction = "ASC" if order.get("ascending", True) is not False else "DESC"
            sql += f" ORDER BY {column} {direction}"
        if limit is not None or offset:
            sql += " LIMIT ? OFFSET ?"
            params_page = [_page_value("limit", limit, -1), _page_value("offset", offset, 0)]
        else:
            params_page = []

        with self._transaction() as conn:
            count = conn.execute(f"SELECT COUNT(*) FROM {table}{where}", params).fetchone()[0]
            rows = conn.execute(sql, params + params_page).fetchall()
        return [self._decode(table, r) for r in rows], count

    def insert(self, table: str, data) -> List[Dict[str, Any]]:
        """Insert one row (dict) or many (list). Returns the stored rows."""
        items = data if isinstance(data, list) else [data]
        if not items:
            raise InvalidRequestError("insert requires data")
        ids = []
        with self._transaction() as conn:
            for item in items:
                row = self._prepare_row(table, item)
                keys = list(row.keys())
                marks = ", ".join("?" for _ in keys)
                cur = conn.execute(
                    f"INSERT INTO {table} ({', '.join(keys)}) VALUES ({marks})",
                    [row[k] for k in keys],
                )
                ids.append(row.get("id", cur.lastrowid))
            rows = self._fetch_by_ids(conn, table, ids)
        logger.debug(f"Inserted {len(rows)} row(s) into {table}")
        return rows

    def update(self, table: str, data: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Update the row identified by filters["id"]. Task rows get a version bump."""
        record_id = (filters or {}).get("id")
        if not record_id:
            raise InvalidRequestError("update requires filters.id")
        if not data:
            raise InvalidRequestError("update requires data")
        changes = {k: v for k, v in data.items() if k not in ("id", "created_at", "version")}
        row = self._prepare_row(table, changes)
        row.pop("id", None)
        row.pop("created_at", None)

        assignments = [f"{k} = ?" for k in row]
        if table == "kanban_tasks":
            assignments.append("version = version + 1")
        with self._transaction() as conn:
            cur = conn.execute(
                f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ?",
                list(row.values()) + [record_id],
            )
            if cur.rowcount == 0:
                raise NotFoundError(f"{table} row not found: {record_id}")
            return self._fetch_by_ids(conn, table, [record_id])

    def delete(self, table: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        """Delete the row identified by filters["id"]. Returns the deleted row."""
        record_id = (filters or {}).get("id")
        if not record_id:
            raise InvalidRequestError("delete requires filters.id")
        self._check_table(table)
        with self._transaction() as conn:
            rows = self._fetch_by_ids(conn, table, [record_id])
            if not rows:
                raise NotFoundError(f"{table} row not found: {record_id}")
            if table == "kanban_columns":
                active = conn.execute(
                    "SELECT COUNT(*) FROM kanban_tasks WHERE column_id = ? AND status = 'active'",
                    (record_id,),
                ).fetchone()[0]
                if active:
                    raise InvalidRequestError(
                        f"Cannot delete column because it contains {active} active task(s). "
                        "Please move or delete all tasks first."
                    )
            conn.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
        return rows

    def upsert(self, table: str, data) -> List[Dict[str, Any]]:
        """Insert or update on the table's conflict key."""
        keys = CONFLICT_KEYS.get(table)
        if not keys:
            raise InvalidRequestError(f"upsert not supported on {table}")
        items = data if isinstance(data, list) else [data]
        if not items:
            raise InvalidRequestError("upsert requires data")
        results = []
        with self._transaction() as conn:
            for item in items:
                missing = [k for k in keys if k not in item]
                if missing:
                    raise InvalidRequestError(f"upsert on {table} requires {', '.join(missing)}")
                row = self._prepare_row(table, item)
                cols = list(row.keys())
                marks = ", ".join("?" for _ in cols)
                updates = [c for c in cols if c not in keys and c not in ("id", "created_at")]
                set_clause = ", ".join(f"{c} = excluded.{c}" for c in updates) or f"{keys[0]} = excluded.{keys[0]}"
                conn.execute(
                    f"INSERT INTO {table} ({', '.join(cols)}) VALUES ({marks}) "
                    f"ON CONFLICT({', '.join(keys)}) DO UPDATE SET {set_clause}",
                    [row[c] for c in cols],
                )
                where = " AND ".join(f"{k} IS ?" for k in keys)
                stored = conn.execute(
                    f"SELECT * FROM {table} WHERE {where}", [row[k] for k in keys]
                ).fetchone()
                results.append(self._decode(table, stored))
        return results

    def rpc(self, name: str, params: Optional[Dict[str, Any]] = None):
        """Call a named stored procedure."""
        params = params or {}
        procedures = {
            "move_kanban_task": lambda p: self.move_task(
                p.get("p_task_id"),
                p.get("p_column_id"),
                p.get("p_sort_order", 0),
                actor_email=p.get("p_user_email"),
                expected_version=p.get("p_expected_version"),
            ),
            "get_kanban_board": lambda p: self.get_board(p.get("p_project_id"), p.get("p_team_id")),
            "upsert_shift_schedules": lambda p: self.upsert("shift_schedules", {
                "project_id": p.get("p_project_id"),
                "team_id": p.get("p_team_id"),
                "user_email": p.get("p_user_email"),
                "shift_date": p.get("p_shift_date"),
                "shift_type": p.get("p_shift_type"),
            })[0],
            "get_custom_shift_enums": lambda p: self.select(
                "custom_shift_enums",
                filters={"project_id": p.get("p_project_id"), "team_id": p.get("p_team_id")},
                order={"column": "shift_identifier", "ascending": True},
            )[0],
        }
        if name not in procedures:
            raise InvalidRequestError(f"Unknown function: {name}")
        return procedures[name](params)

    def _fetch_by_ids(self, conn: sqlite3.Connection, table: str, ids: Iterable[Any]) -> List[Dict[str, Any]]:
        ids = list(ids)
        if not ids:
            return []
        marks = ", ".join("?" for _ in ids)
        rows = conn.execute(f"SELECT * FROM {table} WHERE id IN ({marks})", ids).fetchall()
        by_id = {r["id"]: self._decode(table, r) for r in rows}
        return [by_id[i] for i in ids if i in by_id]

    # ── Board ────────────────────────────────────────────────────────────────

    def get_board(self, project_id: str, team_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Columns (with their active tasks) for a project/team, in display order.

        Creates the default To Do / In Progress / Done columns when the
        project has none.
        """
        if not project_id:
            raise InvalidRequestError("project_id is required")
        with self._transaction() as conn:
            columns = self._board_columns(conn, project_id, team_id)
            if not columns:
                now = utc_now()
                for col in DEFAULT_COLUMNS:
                    conn.execute(
                        "INSERT INTO kanban_columns (id, project_id, team_id, name, description, color, "
                        "sort_order, is_active, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?)",
                        (new_id(), project_id, team_id, col["name"], col["description"],
                         col["color"], col["sort_order"], now, now),
                    )
                logger.info(f"Created default columns for project {project_id}")
                columns = self._board_columns(conn, project_id, team_id)

            tasks = conn.execute(
                "SELECT * FROM kanban_tasks WHERE project_id = ? AND status = 'active' "
                "ORDER BY sort_order ASC, created_at ASC",
                (project_id,),
            ).fetchall()

        by_column: Dict[str, List[Dict[str, Any]]] = {c["id"]: [] for c in columns}
        for task in tasks:
            if task["column_id"] in by_column:
                by_column[task["column_id"]].append(self._decode("kanban_tasks", task))
        for column in columns:
            column["tasks"] = by_column[column["id"]]
        return columns

    def _board_columns(self, conn: sqlite3.Connection, project_id: str, team_id: Optional[str]) -> List[Dict[str, Any]]:
        rows = conn.execute(
            "SELECT * FROM kanban_columns WHERE project_id = ? AND is_active = 1 "
            "AND (team_id IS NULL OR team_id = ? OR ? IS NULL) ORDER BY sort_order ASC, created_at ASC",
            (project_id, team_id, team_id),
        ).fetchall()
        return [self._decode("kanban_columns", r) for r in rows]

    def move_task(
        self,
        task_id: str,
        destination_column_id: str,
        destination_index: int,
        actor_email: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> Dict[str, Any]:
        """Move a task to an absolute position, renumbering both columns.

        When expected_version is given the move only succeeds if the task
        has not been modified since the caller read it.
        """
        with self._transaction() as conn:
            task = conn.execute("SELECT * FROM kanban_tasks WHERE id = ?", (task_id,)).fetchone()
            if not task:
                raise NotFoundError(f"Task not found: {task_id}")
            column = conn.execute(
                "SELECT * FROM kanban_columns WHERE id = ? AND is_active = 1", (destination_column_id,)
            ).fetchone()
            if not column:
                raise NotFoundError(f"Destination column not found: {destination_column_id}")
            if column["project_id"] != task["project_id"]:
                raise InvalidRequestError("Destination column belongs to another project")
            if expected_version is not None and int(expected_version) != task["version"]:
                raise ConflictError(
                    f"Task {task_id} was modified concurrently "
                    f"(version {task['version']}, expected {expected_version})"
                )

            source_column_id = task["column_id"]
            dest_ids = self._column_task_ids(conn, destination_column_id, exclude=task_id)
            index = max(0, min(int(destination_index), len(dest_ids)))
            dest_ids.insert(index, task_id)

            cur = conn.execute(
                "UPDATE kanban_tasks SET column_id = ?, sort_order = ?, version = version + 1, updated_at = ? "
                "WHERE id = ? AND version = ?",
                (destination_column_id, index, utc_now(), task_id, task["version"]),
            )
            if cur.rowcount == 0:
                raise ConflictError(f"Task {task_id} was modified concurrently")

            self._renumber(conn, dest_ids)
            if source_column_id != destination_column_id:
                self._renumber(conn, self._column_task_ids(conn, source_column_id))

            self._timeline(
                conn, task_id, "moved", actor_email,
                from_column_id=source_column_id, to_column_id=destination_column_id,
                details={"sort_order": index},
            )
            moved = self._fetch_by_ids(conn, "kanban_tasks", [task_id])[0]
        logger.info(f"Moved task {task_id} to {destination_column_id}[{index}] (v{moved['version']})")
        return moved

    def _column_task_ids(self, conn: sqlite3.Connection, column_id: str, exclude: str = None) -> List[str]:
        rows = conn.execute(
            "SELECT id FROM kanban_tasks WHERE column_id = ? AND status = 'active' "
            "ORDER BY sort_order ASC, created_at ASC",
            (column_id,),
        ).fetchall()
        return [r["id"] for r in rows if r["id"] != exclude]

    def _renumber(self, conn: sqlite3.Connection, task_ids: List[str]):
        for position, tid in enumerate(task_ids):
            conn.execute(
                "UPDATE kanban_tasks SET sort_order = ? WHERE id = ? AND sort_order != ?",
                (position, tid, position),
            )

    # ── Timeline ─────────────────────────────────────────────────────────────

    def _timeline(self, conn, task_id, action, user_email, from_column_id=None, to_column_id=None, details=None):
        conn.execute(
            "INSERT INTO kanban_task_timeline (task_id, action, from_column_id, to_column_id, "
            "user_email, details, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (task_id, action, from_column_id, to_column_id, user_email,
             json.dumps(details) if details is not None else None, utc_now()),
        )

    def add_timeline_entry(
        self,
        task_id: str,
        action: str,
        user_email: Optional[str] = None,
        from_column_id: Optional[str] = None,
        to_column_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        with self._transaction() as conn:
            self._timeline(conn, task_id, action, user_email, from_column_id, to_column_id, details)

    def get_task_timeline(self, task_id: str) -> List[Dict[str, Any]]:
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM kanban_task_timeline WHERE task_id = ? ORDER BY id ASC", (task_id,)
            ).fetchall()
        entries = []
        for row in rows:
            entry = dict(row)
            if entry.get("details"):
                try:
                    entry["details"] = json.loads(entry["details"])
                except (json.JSONDecodeError, TypeError):
                    pass
            entries.append(entry)
        return entries

    # ── Audit ────────────────────────────────────────────────────────────────

    def log_audit(self, event: Dict[str, Any]) -> Dict[str, Any]:
        """Append one audit row. Unknown keys are dropped."""
        columns = self._columns["audit_trail"]
        row = {k: v for k, v in event.items() if k in columns and v is not None}
        return self.insert("audit_trail", row)[0]

    # ── Helpers ──────────────────────────────────────────────────────────────

    def project_of(self, table: str, record_id: str) -> Optional[str]:
        """Project id owning a kanban row, if any."""
        if table not in ("kanban_tasks", "kanban_columns") or not record_id:
            return None
        with self._transaction() as conn:
            row = conn.execute(f"SELECT project_id FROM {table} WHERE id = ?", (record_id,)).fetchone()
        return row["project_id"] if row else None
