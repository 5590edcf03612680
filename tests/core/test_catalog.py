"""Tests for the state catalog, workflow authoring, and task-type bindings (CatalogMixin)."""

from __future__ import annotations

import sqlite3

import pytest

from tasklane.core import TasklaneDB
from tasklane.workflow import ANY_STATE, InvalidTransitionError, SpecificState, WorkflowTransition
from tests._db_factory import DevWorkflow


class TestProjects:
    def test_create_and_get(self, db: TasklaneDB) -> None:
        project = db.create_project("  Website ")
        assert project["name"] == "Website"
        assert project["id"].startswith("test-prj-")
        assert db.get_project(project["id"])["name"] == "Website"

    def test_get_missing(self, db: TasklaneDB) -> None:
        with pytest.raises(KeyError, match="Project not found"):
            db.get_project("nope")

    def test_list_projects(self, db: TasklaneDB) -> None:
        a = db.create_project("A")
        b = db.create_project("B")
        assert {p["id"] for p in db.list_projects()} == {a["id"], b["id"]}

    def test_blank_name_rejected(self, db: TasklaneDB) -> None:
        with pytest.raises(ValueError, match="project name cannot be empty"):
            db.create_project("   ")


class TestStateCatalog:
    def test_positions_default_to_end(self, db: TasklaneDB) -> None:
        pid = db.create_project("P")["id"]
        a = db.create_state(pid, "Todo")
        b = db.create_state(pid, "Done")
        assert (a.position, b.position) == (1, 2)
        assert [s.name for s in db.list_states(pid)] == ["Todo", "Done"]

    def test_explicit_position_orders_catalog(self, db: TasklaneDB) -> None:
        pid = db.create_project("P")["id"]
        db.create_state(pid, "Late", position=10)
        db.create_state(pid, "Early", position=0)
        assert [s.name for s in db.list_states(pid)] == ["Early", "Late"]

    def test_empty_project_has_no_states(self, db: TasklaneDB) -> None:
        pid = db.create_project("P")["id"]
        assert db.list_states(pid) == []

    def test_unknown_project(self, db: TasklaneDB) -> None:
        with pytest.raises(KeyError):
            db.create_state("nope", "Todo")

    def test_get_state_missing(self, db: TasklaneDB) -> None:
        with pytest.raises(KeyError, match="State not found"):
            db.get_state("nope")

    def test_delete_unreferenced_state_cascades_steps(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        db.delete_state(dev.states["cancelled"])
        graph = db.get_workflow(dev.workflow_id)
        assert [s.name for s in graph.states] == ["Backlog", "Doing", "Done"]
        assert all(t.to_state != dev.states["cancelled"] for t in graph.transitions)

    def test_delete_referenced_state_blocked(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        db.create_task(dev.project_id, "Fix", task_type_id=dev.task_type_id)
        with pytest.raises(ValueError, match="referenced by 1 task"):
            db.delete_state(dev.states["backlog"])
        assert db.get_state(dev.states["backlog"]).name == "Backlog"

    def test_trigger_blocks_direct_delete(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        db.create_task(dev.project_id, "Fix", task_type_id=dev.task_type_id)
        with pytest.raises(sqlite3.IntegrityError):
            db.conn.execute("DELETE FROM project_states WHERE id = ?", (dev.states["backlog"],))
        db.conn.rollback()

    def test_rename_state(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        task = db.create_task(dev.project_id, "Fix", task_type_id=dev.task_type_id)
        renamed = db.rename_state(dev.states["backlog"], "  Queued ")
        assert renamed.name == "Queued"
        assert db.get_workflow(dev.workflow_id).states[0].name == "Queued"
        assert db.get_task(task.id).state_name == "Queued"

    def test_rename_state_blank_or_missing(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        with pytest.raises(ValueError):
            db.rename_state(dev.states["backlog"], "   ")
        with pytest.raises(KeyError, match="State not found"):
            db.rename_state("nope", "X")

    def test_move_state_swaps_and_renumbers(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        states = db.move_state(dev.states["done"], "up")
        assert [s.name for s in states] == ["Backlog", "Done", "Doing", "Cancelled"]
        assert [s.position for s in states] == [1, 2, 3, 4]
        assert [s.name for s in db.list_states(dev.project_id)] == ["Backlog", "Done", "Doing", "Cancelled"]

    def test_move_state_leaves_workflow_order(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        db.move_state(dev.states["backlog"], "down")
        graph = db.get_workflow(dev.workflow_id)
        assert graph.first_state is not None and graph.first_state.name == "Backlog"

    def test_move_state_at_edge_is_noop(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        assert [s.name for s in db.move_state(dev.states["backlog"], "up")][0] == "Backlog"
        assert [s.name for s in db.move_state(dev.states["cancelled"], "down")][-1] == "Cancelled"

    def test_move_state_bad_direction(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        with pytest.raises(ValueError, match="direction"):
            db.move_state(dev.states["doing"], "left")  # type: ignore[arg-type]


class TestWorkflowDefinition:
    def test_create_with_steps(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        graph = db.get_workflow(dev.workflow_id)
        assert graph.workflow.name == "Dev"
        assert [s.name for s in db.get_workflow_states(dev.workflow_id)] == ["Backlog", "Doing", "Done", "Cancelled"]
        first = db.get_first_state(dev.workflow_id)
        assert first is not None and first.id == dev.states["backlog"]

    def test_create_rejects_foreign_states(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        other = db.create_project("Other")["id"]
        with pytest.raises(ValueError, match="States not in project"):
            db.create_workflow(other, "W", state_ids=[dev.states["backlog"]])

    def test_create_rejects_duplicate_states(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        with pytest.raises(ValueError, match="duplicates"):
            db.create_workflow(dev.project_id, "W", state_ids=[dev.states["done"], dev.states["done"]])

    def test_empty_workflow_has_no_first_state(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        graph = db.create_workflow(dev.project_id, "Empty")
        assert graph.states == ()
        assert db.get_first_state(graph.id) is None

    def test_get_missing_workflow(self, db: TasklaneDB) -> None:
        with pytest.raises(KeyError, match="Workflow not found"):
            db.get_workflow("nope")

    def test_list_workflows_sorted_by_name(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        db.create_workflow(dev.project_id, "Alpha")
        assert [g.workflow.name for g in db.list_workflows(dev.project_id)] == ["Alpha", "Dev"]

    def test_delete_bound_workflow_blocked(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        with pytest.raises(ValueError, match="bound to task type"):
            db.delete_workflow(dev.workflow_id)

    def test_delete_unbound_workflow(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        graph = db.create_workflow(dev.project_id, "Scratch", state_ids=[dev.states["backlog"]])
        db.delete_workflow(graph.id)
        with pytest.raises(KeyError):
            db.get_workflow(graph.id)


class TestSteps:
    def test_add_step_appends(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        graph = db.create_workflow(dev.project_id, "Short", state_ids=[dev.states["backlog"]])
        graph = db.add_step(graph.id, dev.states["done"])
        assert [s.name for s in graph.states] == ["Backlog", "Done"]

    def test_add_step_with_order_reorders_first_state(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        graph = db.create_workflow(dev.project_id, "Short", state_ids=[dev.states["backlog"]])
        graph = db.add_step(graph.id, dev.states["doing"], step_order=0)
        assert graph.first_state is not None and graph.first_state.name == "Doing"

    def test_add_step_duplicate(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        with pytest.raises(ValueError, match="already a step"):
            db.add_step(dev.workflow_id, dev.states["done"])

    def test_add_step_order_taken(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        extra = db.create_state(dev.project_id, "Review")
        with pytest.raises(ValueError, match="step_order 2 is already used"):
            db.add_step(dev.workflow_id, extra.id, step_order=2)

    def test_add_step_foreign_state(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        other = db.create_project("Other")["id"]
        foreign = db.create_state(other, "Elsewhere")
        with pytest.raises(ValueError, match="belongs to project"):
            db.add_step(dev.workflow_id, foreign.id)

    def test_remove_step_drops_touching_transitions(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        graph = db.remove_step(dev.workflow_id, dev.states["doing"])
        assert [s.name for s in graph.states] == ["Backlog", "Done", "Cancelled"]
        doing = dev.states["doing"]
        assert all(t.from_state != doing and t.to_state != doing for t in graph.transitions)

    def test_remove_non_step(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        graph = db.create_workflow(dev.project_id, "Empty")
        with pytest.raises(KeyError, match="not a step"):
            db.remove_step(graph.id, dev.states["done"])

    def test_move_step_changes_first_state_and_keeps_transitions(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        before = db.get_transitions(dev.workflow_id)
        graph = db.move_step(dev.workflow_id, dev.states["doing"], "up")
        assert [s.name for s in graph.states] == ["Doing", "Backlog", "Done", "Cancelled"]
        assert db.get_first_state(dev.workflow_id) == db.get_state(dev.states["doing"])
        assert graph.transitions == before

    def test_move_step_changes_initial_assignment(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        db.move_step(dev.workflow_id, dev.states["backlog"], "down")
        task = db.create_task(dev.project_id, "Fix", task_type_id=dev.task_type_id)
        assert task.state_id == dev.states["doing"]

    def test_move_step_at_edge_is_noop(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        graph = db.move_step(dev.workflow_id, dev.states["cancelled"], "down")
        assert [s.name for s in graph.states] == ["Backlog", "Doing", "Done", "Cancelled"]

    def test_move_non_step(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        extra = db.create_state(dev.project_id, "Review")
        with pytest.raises(KeyError, match="not a step"):
            db.move_step(dev.workflow_id, extra.id, "up")

    def test_rename_workflow(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        graph = db.rename_workflow(dev.workflow_id, "Delivery")
        assert graph.workflow.name == "Delivery"
        assert [g.workflow.name for g in db.list_workflows(dev.project_id)] == ["Delivery"]


class TestTransitions:
    def test_seeded_transitions(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        s = dev.states
        edges = {(t.from_state, t.to_state) for t in db.get_transitions(dev.workflow_id)}
        assert edges == {
            (s["backlog"], s["doing"]),
            (s["doing"], s["done"]),
            (s["done"], s["cancelled"]),
            (None, s["cancelled"]),
        }

    def test_seed_is_idempotent(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        assert db.seed_linear_transitions(dev.workflow_id) == 0

    def test_seed_matches_cancelled_case_insensitively(self, db: TasklaneDB) -> None:
        pid = db.create_project("P")["id"]
        todo = db.create_state(pid, "Todo")
        dropped = db.create_state(pid, "CANCELLED ")
        graph = db.create_workflow(pid, "W", state_ids=[todo.id, dropped.id])
        # Todo -> CANCELLED (linear) plus * -> CANCELLED
        assert db.seed_linear_transitions(graph.id) == 2

    def test_add_specific_and_wildcard(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        s = dev.states
        t = db.add_transition(dev.workflow_id, s["done"], s["doing"])
        assert t == WorkflowTransition(workflow_id=dev.workflow_id, source=SpecificState(s["done"]), to_state=s["doing"])
        w = db.add_transition(dev.workflow_id, "*", s["backlog"])
        assert w.source is ANY_STATE
        assert w in db.get_transitions(dev.workflow_id)

    def test_add_accepts_state_ref(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        t = db.add_transition(dev.workflow_id, ANY_STATE, dev.states["done"])
        assert t.is_wildcard

    def test_duplicate_rejected(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        with pytest.raises(ValueError, match="already exists"):
            db.add_transition(dev.workflow_id, dev.states["backlog"], dev.states["doing"])
        with pytest.raises(ValueError, match="already exists"):
            db.add_transition(dev.workflow_id, "*", dev.states["cancelled"])

    def test_self_loop_rejected(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        with pytest.raises(ValueError, match="redundant"):
            db.add_transition(dev.workflow_id, dev.states["doing"], dev.states["doing"])

    def test_non_member_endpoints_rejected(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        extra = db.create_state(dev.project_id, "Review")
        with pytest.raises(ValueError, match="Target state"):
            db.add_transition(dev.workflow_id, dev.states["doing"], extra.id)
        with pytest.raises(ValueError, match="Source state"):
            db.add_transition(dev.workflow_id, extra.id, dev.states["doing"])

    def test_blank_source_rejected(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        with pytest.raises(ValueError):
            db.add_transition(dev.workflow_id, "  ", dev.states["doing"])

    def test_remove(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        s = dev.states
        assert db.remove_transition(dev.workflow_id, "*", s["cancelled"]) is True
        assert db.remove_transition(dev.workflow_id, "*", s["cancelled"]) is False
        assert db.remove_transition(dev.workflow_id, s["backlog"], s["doing"]) is True
        assert {t.to_state for t in db.get_transitions(dev.workflow_id)} == {s["done"], s["cancelled"]}


class TestValidateWorkflow:
    def test_seeded_workflow_is_valid(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        result = db.validate_workflow(dev.workflow_id)
        assert result.valid
        assert result.errors == ()

    def test_warnings_do_not_invalidate(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        graph = db.create_workflow(dev.project_id, "Loose", state_ids=[dev.states["backlog"], dev.states["done"]])
        result = db.validate_workflow(graph.id)
        assert result.valid
        assert any("unreachable" in w for w in result.warnings)

    def test_missing_workflow(self, db: TasklaneDB) -> None:
        with pytest.raises(KeyError):
            db.validate_workflow("nope")


class TestTaskTypes:
    def test_binding(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        tt = db.get_task_type(dev.task_type_id)
        assert tt.name == "Bug"
        assert tt.workflow_id == dev.workflow_id
        graph = db.workflow_for_task_type(dev.task_type_id)
        assert graph is not None and graph.id == dev.workflow_id
        assert [t.name for t in db.list_task_types(dev.project_id)] == ["Bug"]

    def test_foreign_workflow_rejected(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        other = db.create_project("Other")["id"]
        with pytest.raises(ValueError, match="belongs to project"):
            db.create_task_type(other, "Bug", dev.workflow_id)

    def test_missing_type(self, db: TasklaneDB) -> None:
        with pytest.raises(KeyError, match="Task type not found"):
            db.get_task_type("nope")

    def test_missing_workflow(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        with pytest.raises(KeyError, match="Workflow not found"):
            db.create_task_type(dev.project_id, "Chore", "nope")


class TestWorkflowCache:
    def test_index_is_cached(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        assert db.load_workflows(dev.project_id) is db.load_workflows(dev.project_id)

    def test_authoring_write_invalidates(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        before = db.load_workflows(dev.project_id)
        db.create_state(dev.project_id, "Review")
        after = db.load_workflows(dev.project_id)
        assert after is not before
        assert [s.name for s in after.list_states()][-1] == "Review"

    def test_rejected_authoring_keeps_cache(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        before = db.load_workflows(dev.project_id)
        with pytest.raises(ValueError):
            db.add_transition(dev.workflow_id, dev.states["backlog"], dev.states["doing"])
        # Validation failed before any write: cache untouched.
        assert db.load_workflows(dev.project_id) is before

    def test_reload_all(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        before = db.load_workflows(dev.project_id)
        db.reload_workflows()
        assert db.load_workflows(dev.project_id) is not before

    def test_out_of_band_edit_visible_after_reload(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        db.load_workflows(dev.project_id)
        db.conn.execute("UPDATE project_states SET name = 'Queued' WHERE id = ?", (dev.states["backlog"],))
        db.conn.commit()
        assert db.list_states(dev.project_id)[0].name == "Backlog"
        db.reload_workflows(dev.project_id)
        assert db.list_states(dev.project_id)[0].name == "Queued"

    def test_commit_from_other_connection_invalidates(self, db: TasklaneDB, dev: DevWorkflow) -> None:
        """A long-lived instance (dashboard, MCP) sees workflows authored elsewhere."""
        db.load_workflows(dev.project_id)
        other = TasklaneDB(db.db_path, prefix="test")
        try:
            strict = other.create_workflow(dev.project_id, "Strict", state_ids=[dev.states["backlog"], dev.states["done"]])
            other.add_transition(strict.id, dev.states["backlog"], dev.states["done"])
            chore = other.create_task_type(dev.project_id, "Chore", strict.id)
            task = other.create_task(dev.project_id, "Tidy", task_type_id=chore.id)
        finally:
            other.close()

        res = db.get_legal_next_states(task.id)
        assert res.kind == "workflow"
        assert set(res.state_ids) == {dev.states["backlog"], dev.states["done"]}
        with pytest.raises(InvalidTransitionError):
            db.apply_transition(task.id, dev.states["cancelled"])
        assert db.get_task(task.id).state_id == dev.states["backlog"]
