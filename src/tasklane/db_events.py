"""EventsMixin: audit trail for task state and type changes.

All methods access ``self.conn``, ``self.get_task()``, etc. via
Python's MRO when composed into ``TasklaneDB``.
"""

from __future__ import annotations

from typing import cast

from tasklane.db_base import DBMixinProtocol, _now_iso
from tasklane.types.core import EventRecord


class EventsMixin(DBMixinProtocol):
    """Event recording and retrieval methods.

    Inherits ``DBMixinProtocol`` for type-safe access to shared attributes
    (``self.conn``, ``self.get_task()``, etc.). Actual implementations
    provided by ``TasklaneDB`` at composition time via MRO.
    """

    # -- Events (private) ----------------------------------------------------

    def _record_event(
        self,
        task_id: str,
        event_type: str,
        *,
        actor: str = "",
        old_value: str | None = None,
        new_value: str | None = None,
        comment: str = "",
    ) -> None:
        # Caller owns the transaction: no commit here.
        self.conn.execute(
            "INSERT INTO events (task_id, event_type, actor, old_value, new_value, comment, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (task_id, event_type, actor, old_value, new_value, comment, _now_iso()),
        )

    def get_recent_events(self, limit: int = 20, *, project_id: str | None = None) -> list[EventRecord]:
        if project_id is None:
            rows = self.conn.execute(
                "SELECT * FROM events ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT e.* FROM events e JOIN tasks t ON e.task_id = t.id "
                "WHERE t.project_id = ? ORDER BY e.created_at DESC, e.id DESC LIMIT ?",
                (project_id, limit),
            ).fetchall()
        return cast(list[EventRecord], [dict(r) for r in rows])

    def get_task_events(self, task_id: str, *, limit: int = 50) -> list[EventRecord]:
        """Get events for a specific task, newest first."""
        self.get_task(task_id)  # raises KeyError if not found
        rows = self.conn.execute(
            "SELECT * FROM events WHERE task_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (task_id, limit),
        ).fetchall()
        return cast(list[EventRecord], [dict(r) for r in rows])
