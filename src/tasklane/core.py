"""Core database operations for the task tracker.

Single source of truth for all SQLite operations. The CLI, dashboard and
MCP server all import from this module. No daemon, no sync, just direct
SQLite with WAL mode.

Convention-based discovery: each project has a `.tasklane/` directory containing
`tasklane.db` (SQLite) and `config.json` (id prefix, name, version).
"""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from tasklane.db_base import _now_iso
from tasklane.db_catalog import CatalogMixin
from tasklane.db_events import EventsMixin
from tasklane.db_schema import CURRENT_SCHEMA_VERSION, SCHEMA_SQL
from tasklane.db_tasks import TasksMixin
from tasklane.types.core import ISOTimestamp, ProjectConfig, TaskDict
from tasklane.validation import require_name
from tasklane.workflow import InvalidTransitionError, ProjectWorkflows

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------

TASKLANE_DIR_NAME = ".tasklane"
DB_FILENAME = "tasklane.db"
CONFIG_FILENAME = "config.json"
DEFAULT_PREFIX = "tl"


def find_tasklane_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) looking for .tasklane/ directory.

    Returns the .tasklane/ directory path (not the project root).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        candidate = parent / TASKLANE_DIR_NAME
        if candidate.is_dir():
            return candidate
    msg = f"No {TASKLANE_DIR_NAME}/ directory found in {current} or any parent"
    raise FileNotFoundError(msg)


def read_config(tasklane_dir: Path) -> ProjectConfig:
    """Read .tasklane/config.json. Returns defaults if missing or corrupt."""
    defaults = ProjectConfig(prefix=DEFAULT_PREFIX, version=1)
    config_path = tasklane_dir / CONFIG_FILENAME
    if not config_path.exists():
        return defaults
    try:
        result: ProjectConfig = json.loads(config_path.read_text())
        return result
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Failed to read %s, using defaults: %s", config_path, exc)
        return defaults


def write_config(tasklane_dir: Path, config: dict[str, Any] | ProjectConfig) -> None:
    """Write .tasklane/config.json."""
    config_path = tasklane_dir / CONFIG_FILENAME
    config_path.write_text(json.dumps(config, indent=2) + "\n")


# ---------------------------------------------------------------------------
# Task
# ---------------------------------------------------------------------------


@dataclass
class Task:
    id: str
    project_id: str
    name: str
    description: str = ""
    task_type_id: str | None = None
    state_id: str | None = None
    created_at: str = ""
    updated_at: str = ""
    # Computed (joined from project_states)
    state_name: str | None = None

    def to_dict(self) -> TaskDict:
        return TaskDict(
            id=self.id,
            project_id=self.project_id,
            name=self.name,
            description=self.description,
            task_type_id=self.task_type_id,
            state_id=self.state_id,
            state_name=self.state_name,
            created_at=ISOTimestamp(self.created_at),
            updated_at=ISOTimestamp(self.updated_at),
        )


_TASK_SELECT = "SELECT t.*, s.name AS state_name FROM tasks t LEFT JOIN project_states s ON s.id = t.state_id"


def _task_from_row(row: sqlite3.Row) -> Task:
    return Task(
        id=row["id"],
        project_id=row["project_id"],
        name=row["name"],
        description=row["description"] or "",
        task_type_id=row["task_type_id"],
        state_id=row["state_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        state_name=row["state_name"],
    )


# ---------------------------------------------------------------------------
# TasklaneDB
# ---------------------------------------------------------------------------


class TasklaneDB(EventsMixin, CatalogMixin, TasksMixin):
    """Direct SQLite operations. No daemon, no sync. Importable by CLI, dashboard and MCP."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        prefix: str = DEFAULT_PREFIX,
        check_same_thread: bool = True,
    ) -> None:
        self.db_path = Path(db_path)
        self.prefix = prefix
        self._conn: sqlite3.Connection | None = None
        self._check_same_thread = check_same_thread
        self._workflow_cache: dict[str, ProjectWorkflows] = {}
        self._workflow_cache_version: int | None = None

    @classmethod
    def from_project(cls, project_path: Path | None = None) -> TasklaneDB:
        """Create a TasklaneDB by discovering .tasklane/ from project_path (or cwd)."""
        tasklane_dir = find_tasklane_root(project_path)
        config = read_config(tasklane_dir)
        db = cls(tasklane_dir / DB_FILENAME, prefix=config.get("prefix", DEFAULT_PREFIX))
        db.initialize()
        return db

    def __enter__(self) -> TasklaneDB:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                isolation_level="DEFERRED",
                check_same_thread=self._check_same_thread,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.execute("PRAGMA foreign_keys=ON")
            self._conn.execute("PRAGMA busy_timeout=5000")
        return self._conn

    def initialize(self) -> None:
        """Create tables on a fresh database and stamp the schema version.

        Refuses to open a database written by a newer tasklane.
        """
        current_version = self.get_schema_version()
        if current_version == 0:
            self.conn.executescript(SCHEMA_SQL)
            self.conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION}")
        elif current_version > CURRENT_SCHEMA_VERSION:
            msg = (
                f"Database {self.db_path} has schema version {current_version}, "
                f"newer than this tasklane supports ({CURRENT_SCHEMA_VERSION}). Upgrade tasklane."
            )
            raise ValueError(msg)
        self.conn.commit()

    def get_schema_version(self) -> int:
        """Return the current schema version from PRAGMA user_version."""
        result: int = self.conn.execute("PRAGMA user_version").fetchone()[0]
        return result

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        self._workflow_cache.clear()
        self._workflow_cache_version = None

    def _generate_unique_id(self, table: str, infix: str = "") -> str:
        """Generate a unique ID using O(1) EXISTS checks against the PK index.

        *table* is always a hardcoded literal at the call site (never user input).
        """
        sep = f"-{infix}-" if infix else "-"
        for _ in range(10):
            candidate = f"{self.prefix}{sep}{uuid.uuid4().hex[:10]}"
            if self.conn.execute(f"SELECT 1 FROM {table} WHERE id = ?", (candidate,)).fetchone() is None:
                return candidate
        return f"{self.prefix}{sep}{uuid.uuid4().hex[:16]}"

    # -- Task CRUD -----------------------------------------------------------

    def create_task(
        self,
        project_id: str,
        name: str,
        *,
        task_type_id: str | None = None,
        state_id: str | None = None,
        description: str = "",
        assign_initial: bool = True,
        actor: str = "",
    ) -> Task:
        """Create a task, optionally typed and placed in a state.

        An explicit *state_id* must be a legal first move for the new task:
        the workflow's first state for typed tasks, any project state for
        untyped ones. Without one, *assign_initial* places a typed task at
        its workflow's first state.
        """
        self.get_project(project_id)
        name = require_name(name, "task name")
        if task_type_id is not None:
            task_type = self.get_task_type(task_type_id)
            if task_type.project_id != project_id:
                msg = f"Task type '{task_type_id}' belongs to project '{task_type.project_id}', not '{project_id}'"
                raise ValueError(msg)

        project = self.load_workflows(project_id)
        draft = Task(id="", project_id=project_id, name=name, task_type_id=task_type_id)
        if state_id is not None:
            resolution = project.resolve(draft)
            if not resolution.allows(state_id):
                raise InvalidTransitionError("(new task)", None, state_id, resolution.state_ids)
        elif assign_initial and task_type_id is not None:
            graph = project.workflow_for_task_type(task_type_id)
            first = graph.first_state if graph is not None else None
            state_id = first.id if first is not None else None

        task_id = self._generate_unique_id("tasks")
        now = _now_iso()
        try:
            self.conn.execute(
                "INSERT INTO tasks (id, project_id, name, description, task_type_id, state_id, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (task_id, project_id, name, description, task_type_id, state_id, now, now),
            )
            self._record_event(task_id, "created", actor=actor, new_value=state_id)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        logger.info("Created task %s in state %s", task_id, state_id, extra={"task_id": task_id})
        return self.get_task(task_id)

    def get_task(self, task_id: str) -> Task:
        row = self.conn.execute(f"{_TASK_SELECT} WHERE t.id = ?", (task_id,)).fetchone()
        if row is None:
            msg = f"Task not found: {task_id}"
            raise KeyError(msg)
        return _task_from_row(row)

    def list_tasks(
        self,
        project_id: str,
        *,
        state_id: str | None = None,
        task_type_id: str | None = None,
    ) -> list[Task]:
        conditions = ["t.project_id = ?"]
        params: list[Any] = [project_id]
        if state_id is not None:
            conditions.append("t.state_id = ?")
            params.append(state_id)
        if task_type_id is not None:
            conditions.append("t.task_type_id = ?")
            params.append(task_type_id)
        rows = self.conn.execute(
            f"{_TASK_SELECT} WHERE {' AND '.join(conditions)} ORDER BY t.created_at, t.id",
            params,
        ).fetchall()
        return [_task_from_row(r) for r in rows]
