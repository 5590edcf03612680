"""TasksMixin: the Transition Executor, board proposals, and board grouping.

The executor is the only writer of ``tasks.state_id``. Every write is a
compare-and-swap against the state the resolver saw, so two concurrent
moves on one task cannot both succeed.

All methods access ``self.conn``, ``self.get_task()``, etc. via
Python's MRO when composed into ``TasklaneDB``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from tasklane.db_base import DBMixinProtocol, _now_iso
from tasklane.types.workflow import BoardColumnDict, BoardDict
from tasklane.workflow import (
    InvalidTransitionError,
    Resolution,
    TransitionConflictError,
    TransitionProposal,
)

if TYPE_CHECKING:
    from tasklane.core import Task
    from tasklane.types.core import ProjectDict, TaskDict
    from tasklane.workflow import TaskType

logger = logging.getLogger(__name__)


class TasksMixin(DBMixinProtocol):
    """Transition execution and board methods.

    Inherits ``DBMixinProtocol`` for type-safe access to shared attributes
    (``self.conn``, ``self.get_task()``, etc.). Actual implementations
    provided by ``TasklaneDB`` at composition time via MRO.
    """

    if TYPE_CHECKING:

        def _record_event(
            self,
            task_id: str,
            event_type: str,
            *,
            actor: str = "",
            old_value: str | None = None,
            new_value: str | None = None,
            comment: str = "",
        ) -> None: ...

        def get_project(self, project_id: str) -> ProjectDict: ...

        def get_task_type(self, task_type_id: str) -> TaskType: ...

        def list_tasks(
            self, project_id: str, *, state_id: str | None = None, task_type_id: str | None = None
        ) -> list[Task]: ...

    # -- Resolution ----------------------------------------------------------

    def get_legal_next_states(self, task_id: str) -> Resolution:
        """Resolve the legal next states for a stored task."""
        task = self.get_task(task_id)
        return self.load_workflows(task.project_id).resolve(task)

    # -- Executor ------------------------------------------------------------

    def update_task_state(
        self,
        task_id: str,
        new_state_id: str,
        *,
        expected_state_id: str | None,
        actor: str = "",
    ) -> Task:
        """Compare-and-swap write of a task's state, with its audit event.

        Succeeds only if the stored state still equals *expected_state_id*.
        Raises KeyError if the task is gone, TransitionConflictError if the
        state moved underneath the caller. Performs no legality check; use
        ``apply_transition`` for that.
        """
        try:
            cur = self.conn.execute(
                "UPDATE tasks SET state_id = ?, updated_at = ? WHERE id = ? AND state_id IS ?",
                (new_state_id, _now_iso(), task_id, expected_state_id),
            )
            if cur.rowcount == 0:
                row = self.conn.execute("SELECT state_id FROM tasks WHERE id = ?", (task_id,)).fetchone()
                if row is None:
                    msg = f"Task not found: {task_id}"
                    raise KeyError(msg)
                raise TransitionConflictError(task_id, expected_state_id, row["state_id"])
            self._record_event(
                task_id,
                "state_changed",
                actor=actor,
                old_value=expected_state_id,
                new_value=new_state_id,
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        logger.info("Task %s: state %s -> %s", task_id, expected_state_id, new_state_id, extra={"task_id": task_id})
        return self.get_task(task_id)

    def _apply(self, task: Task, target_state_id: str, actor: str) -> Task:
        resolution = self.load_workflows(task.project_id).resolve(task)
        if not resolution.allows(target_state_id):
            raise InvalidTransitionError(task.id, task.state_id, target_state_id, resolution.state_ids)
        if target_state_id == task.state_id:
            return task
        return self.update_task_state(task.id, target_state_id, expected_state_id=task.state_id, actor=actor)

    def apply_transition(self, task_id: str, target_state_id: str, *, actor: str = "") -> Task:
        """Move a task to *target_state_id* if the resolver allows it.

        Raises:
            KeyError: the task does not exist.
            InvalidTransitionError: the target is not a legal next state.
            TransitionConflictError: the task changed state concurrently.
        """
        return self._apply(self.get_task(task_id), target_state_id, actor)

    def propose_transition(self, task_id: str, target_state_id: str, *, actor: str = "") -> TransitionProposal:
        """Board-move entry point: returns a settled proposal instead of raising.

        Illegal and conflicting moves come back ``rejected`` with the legal
        targets attached. A missing task still raises KeyError.
        """
        task = self.get_task(task_id)
        proposal = TransitionProposal.pending(task, target_state_id)
        try:
            self._apply(task, target_state_id, actor)
        except InvalidTransitionError as exc:
            logger.info("Task %s: rejected move to %s", task_id, target_state_id, extra={"task_id": task_id})
            return proposal.rejected("invalid_transition", str(exc), exc.legal_state_ids)
        except TransitionConflictError as exc:
            logger.warning("Task %s: move to %s lost a concurrent update", task_id, target_state_id, extra={"task_id": task_id})
            return proposal.rejected("conflict", str(exc), self.get_legal_next_states(task_id).state_ids)
        return proposal.applied()

    def change_task_type(self, task_id: str, task_type_id: str | None, *, actor: str = "") -> Task:
        """Rebind a task to another type (or none).

        A typed task is re-seated at the new workflow's first state, or left
        unassigned when that workflow has no steps. Clearing the type keeps
        the current state, which stays legal for untyped tasks.
        """
        task = self.get_task(task_id)
        if task_type_id == task.task_type_id:
            return task

        new_state_id = task.state_id
        if task_type_id is not None:
            task_type = self.get_task_type(task_type_id)
            if task_type.project_id != task.project_id:
                msg = f"Task type '{task_type_id}' belongs to project '{task_type.project_id}', not '{task.project_id}'"
                raise ValueError(msg)
            graph = self.load_workflows(task.project_id).workflow_for_task_type(task_type_id)
            first = graph.first_state if graph is not None else None
            new_state_id = first.id if first is not None else None

        try:
            cur = self.conn.execute(
                "UPDATE tasks SET task_type_id = ?, state_id = ?, updated_at = ? "
                "WHERE id = ? AND state_id IS ? AND task_type_id IS ?",
                (task_type_id, new_state_id, _now_iso(), task_id, task.state_id, task.task_type_id),
            )
            if cur.rowcount == 0:
                current = self.get_task(task_id)
                raise TransitionConflictError(task_id, task.state_id, current.state_id)
            self._record_event(task_id, "type_changed", actor=actor, old_value=task.task_type_id, new_value=task_type_id)
            if new_state_id != task.state_id:
                self._record_event(
                    task_id,
                    "state_changed",
                    actor=actor,
                    old_value=task.state_id,
                    new_value=new_state_id,
                    comment="task type changed",
                )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        return self.get_task(task_id)

    # -- Board ---------------------------------------------------------------

    def get_board(self, project_id: str) -> BoardDict:
        """Group a project's tasks into one column per state, in position order.

        Typed tasks with no state yet sit in their workflow's first-state
        column. Untyped stateless tasks (and tasks whose state is no longer
        in the catalog) go to ``unassigned``.
        """
        self.get_project(project_id)
        project = self.load_workflows(project_id)
        states = project.list_states()
        buckets: dict[str, list[TaskDict]] = {s.id: [] for s in states}
        unassigned: list[TaskDict] = []

        for task in self.list_tasks(project_id):
            column_id = task.state_id
            if column_id is None:
                graph = project.workflow_for_task_type(task.task_type_id)
                first = graph.first_state if graph is not None else None
                column_id = first.id if first is not None else None
            if column_id is not None and column_id in buckets:
                buckets[column_id].append(task.to_dict())
            else:
                unassigned.append(task.to_dict())

        columns = [BoardColumnDict(state=s.to_dict(), tasks=buckets[s.id]) for s in states]
        return BoardDict(project_id=project_id, columns=columns, unassigned=unassigned)
