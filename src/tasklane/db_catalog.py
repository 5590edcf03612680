"""CatalogMixin: state catalog, workflow definitions, and task-type bindings.

Covers project scoping, state CRUD, workflow step/transition authoring,
task-type binding, and the per-project ``ProjectWorkflows`` cache that
the resolver reads from.

All methods access ``self.conn`` etc. via Python's MRO when composed
into ``TasklaneDB``.
"""

from __future__ import annotations

import logging
import sqlite3
from typing import Literal, cast

from tasklane.db_base import DBMixinProtocol, _now_iso
from tasklane.types.core import ISOTimestamp, ProjectDict
from tasklane.validation import require_name
from tasklane.workflow import (
    ANY_STATE,
    AnyState,
    ProjectWorkflows,
    SpecificState,
    State,
    StateRef,
    TaskType,
    ValidationResult,
    Workflow,
    WorkflowGraph,
    WorkflowStep,
    WorkflowTransition,
    check_workflow_quality,
    parse_source,
    validate_workflow,
)

logger = logging.getLogger(__name__)

# State name that seed_linear_transitions() makes reachable from any state.
_CANCELLED_STATE_NAME = "cancelled"

MoveDirection = Literal["up", "down"]


def _check_direction(direction: str) -> None:
    if direction not in ("up", "down"):
        msg = f"direction must be 'up' or 'down', got {direction!r}"
        raise ValueError(msg)


def _state_from_row(row: sqlite3.Row) -> State:
    return State(id=row["id"], project_id=row["project_id"], name=row["name"], position=row["position"])


def _transition_from_row(row: sqlite3.Row) -> WorkflowTransition:
    source: StateRef = ANY_STATE if row["any_source"] else SpecificState(row["from_state"])
    return WorkflowTransition(workflow_id=row["workflow_id"], source=source, to_state=row["to_state"])


class CatalogMixin(DBMixinProtocol):
    """State catalog and workflow definition operations for TasklaneDB.

    Inherits ``DBMixinProtocol`` for type-safe access to shared attributes
    (``self.conn``, ``self.db_path``, etc.). Actual implementations
    provided by ``TasklaneDB`` at composition time via MRO.
    """

    # -- Cache ---------------------------------------------------------------

    def load_workflows(self, project_id: str) -> ProjectWorkflows:
        """Return the cached per-project index, building it on first access.

        Every authoring write below invalidates the owning project's entry.
        Commits from other connections (a CLI next to a running dashboard)
        bump ``PRAGMA data_version`` and drop every entry.
        """
        data_version: int = self.conn.execute("PRAGMA data_version").fetchone()[0]
        if data_version != self._workflow_cache_version:
            if self._workflow_cache:
                logger.debug("Database changed by another connection; dropping workflow cache")
            self._workflow_cache.clear()
            self._workflow_cache_version = data_version

        cached = self._workflow_cache.get(project_id)
        if cached is not None:
            return cached

        states = [_state_from_row(r) for r in self.conn.execute("SELECT * FROM project_states WHERE project_id = ?", (project_id,))]
        workflows = [
            Workflow(id=r["id"], project_id=r["project_id"], name=r["name"])
            for r in self.conn.execute("SELECT * FROM workflows WHERE project_id = ?", (project_id,))
        ]
        steps = [
            WorkflowStep(workflow_id=r["workflow_id"], state_id=r["state_id"], step_order=r["step_order"])
            for r in self.conn.execute(
                "SELECT ws.* FROM workflow_steps ws JOIN workflows w ON w.id = ws.workflow_id WHERE w.project_id = ?",
                (project_id,),
            )
        ]
        transitions = [
            _transition_from_row(r)
            for r in self.conn.execute(
                "SELECT wt.* FROM workflow_transitions wt JOIN workflows w ON w.id = wt.workflow_id WHERE w.project_id = ?",
                (project_id,),
            )
        ]
        task_types = [
            TaskType(id=r["id"], project_id=r["project_id"], name=r["name"], workflow_id=r["workflow_id"])
            for r in self.conn.execute("SELECT * FROM task_types WHERE project_id = ?", (project_id,))
        ]

        index = ProjectWorkflows(
            project_id,
            states=states,
            workflows=workflows,
            steps=steps,
            transitions=transitions,
            task_types=task_types,
        )
        self._workflow_cache[project_id] = index
        return index

    def reload_workflows(self, project_id: str | None = None) -> None:
        """Drop cached workflow indexes (one project, or all) so they reload on next access.

        Only needed after out-of-band writes on this same connection; other
        connections' commits are picked up by ``load_workflows`` itself.
        """
        if project_id is None:
            self._workflow_cache.clear()
        else:
            self._workflow_cache.pop(project_id, None)

    def _project_of(self, table: str, entity_id: str, label: str) -> str:
        """Return the owning project id of a row. *table* is always a literal at the call site."""
        row = self.conn.execute(f"SELECT project_id FROM {table} WHERE id = ?", (entity_id,)).fetchone()
        if row is None:
            msg = f"{label} not found: {entity_id}"
            raise KeyError(msg)
        project_id: str = row["project_id"]
        return project_id

    def _write(self, project_id: str, sql: str, params: tuple[object, ...]) -> None:
        try:
            self.conn.execute(sql, params)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        finally:
            self.reload_workflows(project_id)

    # -- Projects ------------------------------------------------------------

    def create_project(self, name: str) -> ProjectDict:
        name = require_name(name, "project name")
        project_id = self._generate_unique_id("projects", "prj")
        now = _now_iso()
        try:
            self.conn.execute("INSERT INTO projects (id, name, created_at) VALUES (?, ?, ?)", (project_id, name, now))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        logger.info("Created project %s (%s)", project_id, name)
        return ProjectDict(id=project_id, name=name, created_at=ISOTimestamp(now))

    def get_project(self, project_id: str) -> ProjectDict:
        row = self.conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        if row is None:
            msg = f"Project not found: {project_id}"
            raise KeyError(msg)
        return cast(ProjectDict, dict(row))

    def list_projects(self) -> list[ProjectDict]:
        rows = self.conn.execute("SELECT * FROM projects ORDER BY created_at, id").fetchall()
        return cast(list[ProjectDict], [dict(r) for r in rows])

    # -- State Catalog -------------------------------------------------------

    def list_states(self, project_id: str) -> list[State]:
        """Project states ordered by position. Empty for projects with none."""
        return self.load_workflows(project_id).list_states()

    def get_state(self, state_id: str) -> State:
        row = self.conn.execute("SELECT * FROM project_states WHERE id = ?", (state_id,)).fetchone()
        if row is None:
            msg = f"State not found: {state_id}"
            raise KeyError(msg)
        return _state_from_row(row)

    def create_state(self, project_id: str, name: str, *, position: int | None = None) -> State:
        """Add a state to the project catalog. *position* defaults to the end."""
        self.get_project(project_id)
        name = require_name(name, "state name")
        if position is None:
            row = self.conn.execute(
                "SELECT COALESCE(MAX(position), 0) AS p FROM project_states WHERE project_id = ?", (project_id,)
            ).fetchone()
            position = int(row["p"]) + 1
        elif isinstance(position, bool) or not isinstance(position, int):
            msg = f"position must be an integer, got {type(position).__name__}"
            raise ValueError(msg)

        state_id = self._generate_unique_id("project_states", "st")
        self._write(
            project_id,
            "INSERT INTO project_states (id, project_id, name, position) VALUES (?, ?, ?, ?)",
            (state_id, project_id, name, position),
        )
        return State(id=state_id, project_id=project_id, name=name, position=position)

    def delete_state(self, state_id: str) -> None:
        """Delete a state, cascading its steps and transitions.

        Raises ValueError while any task is still in the state.
        """
        project_id = self._project_of("project_states", state_id, "State")
        in_use = self.conn.execute("SELECT COUNT(*) FROM tasks WHERE state_id = ?", (state_id,)).fetchone()[0]
        if in_use:
            msg = f"Cannot delete state '{state_id}': referenced by {in_use} task(s)"
            raise ValueError(msg)
        self._write(project_id, "DELETE FROM project_states WHERE id = ?", (state_id,))

    def rename_state(self, state_id: str, name: str) -> State:
        project_id = self._project_of("project_states", state_id, "State")
        name = require_name(name, "state name")
        self._write(project_id, "UPDATE project_states SET name = ? WHERE id = ?", (name, state_id))
        return self.get_state(state_id)

    def move_state(self, state_id: str, direction: MoveDirection) -> list[State]:
        """Swap a state with its neighbour in catalog order and renumber positions 1..n.

        Moving the first state up (or the last down) changes nothing.
        Returns the catalog in its new order.
        """
        _check_direction(direction)
        project_id = self._project_of("project_states", state_id, "State")
        ordered = self.list_states(project_id)
        index = next(i for i, s in enumerate(ordered) if s.id == state_id)
        other = index - 1 if direction == "up" else index + 1
        if not 0 <= other < len(ordered):
            return ordered
        ordered[index], ordered[other] = ordered[other], ordered[index]
        try:
            for position, state in enumerate(ordered, start=1):
                self.conn.execute("UPDATE project_states SET position = ? WHERE id = ?", (position, state.id))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        finally:
            self.reload_workflows(project_id)
        return self.list_states(project_id)

    # -- Workflow Definition -------------------------------------------------

    def create_workflow(self, project_id: str, name: str, *, state_ids: list[str] | None = None) -> WorkflowGraph:
        """Create a workflow, optionally with member states in step order (1, 2, ...)."""
        self.get_project(project_id)
        name = require_name(name, "workflow name")
        state_ids = list(state_ids or [])
        if len(set(state_ids)) != len(state_ids):
            msg = "state_ids must not contain duplicates"
            raise ValueError(msg)
        catalog = {s.id for s in self.list_states(project_id)}
        missing = [sid for sid in state_ids if sid not in catalog]
        if missing:
            msg = f"States not in project {project_id}: {', '.join(missing)}"
            raise ValueError(msg)

        workflow_id = self._generate_unique_id("workflows", "wf")
        try:
            self.conn.execute(
                "INSERT INTO workflows (id, project_id, name) VALUES (?, ?, ?)",
                (workflow_id, project_id, name),
            )
            for order, sid in enumerate(state_ids, start=1):
                self.conn.execute(
                    "INSERT INTO workflow_steps (workflow_id, state_id, step_order) VALUES (?, ?, ?)",
                    (workflow_id, sid, order),
                )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        finally:
            self.reload_workflows(project_id)
        logger.info("Created workflow %s (%s) with %d steps", workflow_id, name, len(state_ids))
        return self.get_workflow(workflow_id)

    def get_workflow(self, workflow_id: str) -> WorkflowGraph:
        project_id = self._project_of("workflows", workflow_id, "Workflow")
        graph = self.load_workflows(project_id).get_workflow(workflow_id)
        if graph is None:  # pragma: no cover - row exists, so the index has it
            msg = f"Workflow not found: {workflow_id}"
            raise KeyError(msg)
        return graph

    def list_workflows(self, project_id: str) -> list[WorkflowGraph]:
        return self.load_workflows(project_id).list_workflows()

    def get_workflow_states(self, workflow_id: str) -> list[State]:
        """Member states ordered by step_order (dangling steps dropped)."""
        return list(self.get_workflow(workflow_id).states)

    def get_first_state(self, workflow_id: str) -> State | None:
        return self.get_workflow(workflow_id).first_state

    def get_transitions(self, workflow_id: str) -> frozenset[WorkflowTransition]:
        return self.get_workflow(workflow_id).transitions

    def delete_workflow(self, workflow_id: str) -> None:
        """Delete a workflow with its steps and transitions.

        Raises ValueError while a task type is still bound to it.
        """
        project_id = self._project_of("workflows", workflow_id, "Workflow")
        bound = [r["name"] for r in self.conn.execute("SELECT name FROM task_types WHERE workflow_id = ?", (workflow_id,))]
        if bound:
            msg = f"Cannot delete workflow '{workflow_id}': bound to task type(s) {', '.join(bound)}"
            raise ValueError(msg)
        self._write(project_id, "DELETE FROM workflows WHERE id = ?", (workflow_id,))

    def rename_workflow(self, workflow_id: str, name: str) -> WorkflowGraph:
        project_id = self._project_of("workflows", workflow_id, "Workflow")
        name = require_name(name, "workflow name")
        self._write(project_id, "UPDATE workflows SET name = ? WHERE id = ?", (name, workflow_id))
        return self.get_workflow(workflow_id)

    def add_step(self, workflow_id: str, state_id: str, *, step_order: int | None = None) -> WorkflowGraph:
        """Make *state_id* a member of the workflow. *step_order* defaults to the end."""
        project_id = self._project_of("workflows", workflow_id, "Workflow")
        state = self.get_state(state_id)
        if state.project_id != project_id:
            msg = f"State '{state_id}' belongs to project '{state.project_id}', not '{project_id}'"
            raise ValueError(msg)
        exists = self.conn.execute(
            "SELECT 1 FROM workflow_steps WHERE workflow_id = ? AND state_id = ?", (workflow_id, state_id)
        ).fetchone()
        if exists:
            msg = f"State '{state_id}' is already a step of workflow '{workflow_id}'"
            raise ValueError(msg)
        if step_order is None:
            row = self.conn.execute(
                "SELECT COALESCE(MAX(step_order), 0) AS o FROM workflow_steps WHERE workflow_id = ?", (workflow_id,)
            ).fetchone()
            step_order = int(row["o"]) + 1
        else:
            taken = self.conn.execute(
                "SELECT state_id FROM workflow_steps WHERE workflow_id = ? AND step_order = ?", (workflow_id, step_order)
            ).fetchone()
            if taken:
                msg = f"step_order {step_order} is already used by state '{taken['state_id']}' in workflow '{workflow_id}'"
                raise ValueError(msg)
        self._write(
            project_id,
            "INSERT INTO workflow_steps (workflow_id, state_id, step_order) VALUES (?, ?, ?)",
            (workflow_id, state_id, step_order),
        )
        return self.get_workflow(workflow_id)

    def remove_step(self, workflow_id: str, state_id: str) -> WorkflowGraph:
        """Remove a state from the workflow along with every transition touching it."""
        project_id = self._project_of("workflows", workflow_id, "Workflow")
        try:
            cur = self.conn.execute(
                "DELETE FROM workflow_steps WHERE workflow_id = ? AND state_id = ?", (workflow_id, state_id)
            )
            if cur.rowcount == 0:
                msg = f"State '{state_id}' is not a step of workflow '{workflow_id}'"
                raise KeyError(msg)
            self.conn.execute(
                "DELETE FROM workflow_transitions WHERE workflow_id = ? AND (from_state = ? OR to_state = ?)",
                (workflow_id, state_id, state_id),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        finally:
            self.reload_workflows(project_id)
        return self.get_workflow(workflow_id)

    def move_step(self, workflow_id: str, state_id: str, direction: MoveDirection) -> WorkflowGraph:
        """Swap a step's ``step_order`` with its neighbour's. Transitions are kept.

        Moving a step to the top makes it the workflow's first state.
        Moving the first step up (or the last down) changes nothing.
        """
        _check_direction(direction)
        project_id = self._project_of("workflows", workflow_id, "Workflow")
        rows = self.conn.execute(
            "SELECT state_id, step_order FROM workflow_steps WHERE workflow_id = ? ORDER BY step_order",
            (workflow_id,),
        ).fetchall()
        index = next((i for i, r in enumerate(rows) if r["state_id"] == state_id), None)
        if index is None:
            msg = f"State '{state_id}' is not a step of workflow '{workflow_id}'"
            raise KeyError(msg)
        other = index - 1 if direction == "up" else index + 1
        if not 0 <= other < len(rows):
            return self.get_workflow(workflow_id)

        mine, theirs = rows[index], rows[other]
        # step_order is unique per workflow: park one row while swapping.
        parked = int(rows[-1]["step_order"]) + 1
        try:
            self.conn.execute(
                "UPDATE workflow_steps SET step_order = ? WHERE workflow_id = ? AND state_id = ?",
                (parked, workflow_id, mine["state_id"]),
            )
            self.conn.execute(
                "UPDATE workflow_steps SET step_order = ? WHERE workflow_id = ? AND state_id = ?",
                (mine["step_order"], workflow_id, theirs["state_id"]),
            )
            self.conn.execute(
                "UPDATE workflow_steps SET step_order = ? WHERE workflow_id = ? AND state_id = ?",
                (theirs["step_order"], workflow_id, mine["state_id"]),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        finally:
            self.reload_workflows(project_id)
        logger.debug("Workflow %s: moved step %s %s", workflow_id, state_id, direction)
        return self.get_workflow(workflow_id)

    def add_transition(self, workflow_id: str, source: StateRef | str, to_state_id: str) -> WorkflowTransition:
        """Declare a legal move. *source* is a state id, ``"*"``, or a StateRef.

        Both ends must be step members of the workflow (a wildcard source has
        no membership requirement). Duplicates and self-loops are rejected:
        staying in the current state is always legal already.
        """
        project_id = self._project_of("workflows", workflow_id, "Workflow")
        ref = parse_source(source) if isinstance(source, str) else source
        graph = self.get_workflow(workflow_id)

        if not graph.is_member(to_state_id):
            msg = f"Target state '{to_state_id}' is not a step of workflow '{workflow_id}'"
            raise ValueError(msg)
        if isinstance(ref, SpecificState):
            if not graph.is_member(ref.state_id):
                msg = f"Source state '{ref.state_id}' is not a step of workflow '{workflow_id}'"
                raise ValueError(msg)
            if ref.state_id == to_state_id:
                msg = f"Transition '{ref.state_id}' -> '{to_state_id}' is redundant: the current state is always legal"
                raise ValueError(msg)

        transition = WorkflowTransition(workflow_id=workflow_id, source=ref, to_state=to_state_id)
        if transition in graph.transitions:
            msg = f"Transition {ref} -> {to_state_id} already exists in workflow '{workflow_id}'"
            raise ValueError(msg)

        self._write(
            project_id,
            "INSERT INTO workflow_transitions (workflow_id, from_state, any_source, to_state) VALUES (?, ?, ?, ?)",
            (workflow_id, transition.from_state, 1 if transition.is_wildcard else 0, to_state_id),
        )
        logger.debug("Workflow %s: added transition %s -> %s", workflow_id, ref, to_state_id)
        return transition

    def remove_transition(self, workflow_id: str, source: StateRef | str, to_state_id: str) -> bool:
        """Delete a declared transition. Returns False if it did not exist."""
        project_id = self._project_of("workflows", workflow_id, "Workflow")
        ref = parse_source(source) if isinstance(source, str) else source
        if isinstance(ref, AnyState):
            sql = "DELETE FROM workflow_transitions WHERE workflow_id = ? AND any_source = 1 AND to_state = ?"
            params: tuple[object, ...] = (workflow_id, to_state_id)
        else:
            sql = "DELETE FROM workflow_transitions WHERE workflow_id = ? AND any_source = 0 AND from_state = ? AND to_state = ?"
            params = (workflow_id, ref.state_id, to_state_id)
        try:
            cur = self.conn.execute(sql, params)
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        finally:
            self.reload_workflows(project_id)
        return cur.rowcount > 0

    def seed_linear_transitions(self, workflow_id: str) -> int:
        """Add step[n] -> step[n+1] edges, plus any-state -> "Cancelled".

        Existing transitions are left alone. Returns the number added.
        """
        project_id = self._project_of("workflows", workflow_id, "Workflow")
        graph = self.get_workflow(workflow_id)
        wanted: list[WorkflowTransition] = [
            WorkflowTransition(workflow_id=workflow_id, source=SpecificState(a.id), to_state=b.id)
            for a, b in zip(graph.states, graph.states[1:], strict=False)
        ]
        wanted.extend(
            WorkflowTransition(workflow_id=workflow_id, source=ANY_STATE, to_state=s.id)
            for s in graph.states
            if s.name.strip().casefold() == _CANCELLED_STATE_NAME
        )
        added = [t for t in wanted if t not in graph.transitions]
        if not added:
            return 0
        try:
            for t in added:
                self.conn.execute(
                    "INSERT INTO workflow_transitions (workflow_id, from_state, any_source, to_state) VALUES (?, ?, ?, ?)",
                    (workflow_id, t.from_state, 1 if t.is_wildcard else 0, t.to_state),
                )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise
        finally:
            self.reload_workflows(project_id)
        logger.info("Workflow %s: seeded %d transitions", workflow_id, len(added))
        return len(added)

    def validate_workflow(self, workflow_id: str) -> ValidationResult:
        """Check a workflow for consistency errors and authoring warnings."""
        graph = self.get_workflow(workflow_id)
        catalog = {s.id: s for s in self.list_states(graph.workflow.project_id)}
        errors = validate_workflow(graph, catalog)
        warnings = check_workflow_quality(graph)
        return ValidationResult(valid=not errors, warnings=tuple(warnings), errors=tuple(errors))

    # -- Task-Type Binding ---------------------------------------------------

    def create_task_type(self, project_id: str, name: str, workflow_id: str) -> TaskType:
        self.get_project(project_id)
        name = require_name(name, "task type name")
        wf_project = self._project_of("workflows", workflow_id, "Workflow")
        if wf_project != project_id:
            msg = f"Workflow '{workflow_id}' belongs to project '{wf_project}', not '{project_id}'"
            raise ValueError(msg)
        task_type_id = self._generate_unique_id("task_types", "tt")
        self._write(
            project_id,
            "INSERT INTO task_types (id, project_id, name, workflow_id) VALUES (?, ?, ?, ?)",
            (task_type_id, project_id, name, workflow_id),
        )
        return TaskType(id=task_type_id, project_id=project_id, name=name, workflow_id=workflow_id)

    def get_task_type(self, task_type_id: str) -> TaskType:
        row = self.conn.execute("SELECT * FROM task_types WHERE id = ?", (task_type_id,)).fetchone()
        if row is None:
            msg = f"Task type not found: {task_type_id}"
            raise KeyError(msg)
        return TaskType(id=row["id"], project_id=row["project_id"], name=row["name"], workflow_id=row["workflow_id"])

    def list_task_types(self, project_id: str) -> list[TaskType]:
        return self.load_workflows(project_id).list_task_types()

    def workflow_for_task_type(self, task_type_id: str) -> WorkflowGraph | None:
        task_type = self.get_task_type(task_type_id)
        return self.load_workflows(task_type.project_id).workflow_for_task_type(task_type_id)
