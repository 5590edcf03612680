"""Shared utilities and Protocol for DB mixins."""

from __future__ import annotations

import sqlite3
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from tasklane.core import Task
    from tasklane.workflow import ProjectWorkflows


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


class DBMixinProtocol(Protocol):
    """Shared attributes and methods that DB mixins access via self.

    Mixins inherit this Protocol so mypy can type-check self.conn,
    self.get_task(), etc. without ``type: ignore`` on every call.
    Actual implementations are provided by TasklaneDB at composition time.
    """

    db_path: Path
    prefix: str
    _conn: sqlite3.Connection | None
    _workflow_cache: dict[str, ProjectWorkflows]
    _workflow_cache_version: int | None

    @property
    def conn(self) -> sqlite3.Connection: ...

    def _generate_unique_id(self, table: str, infix: str = "") -> str: ...

    def get_task(self, task_id: str) -> Task: ...

    def load_workflows(self, project_id: str) -> ProjectWorkflows: ...
