"""CLI commands for workflow authoring: state, workflow, type."""

from __future__ import annotations

import json as json_mod
import sys

import click

from tasklane.cli_common import fail, get_db, not_found, project_option, resolve_project_id
from tasklane.db_catalog import MoveDirection
from tasklane.workflow import WorkflowGraph


def _print_workflow(graph: WorkflowGraph) -> None:
    click.echo(f"{graph.workflow.name} ({graph.id})")
    if not graph.states:
        click.echo("  (no steps)")
    for i, s in enumerate(graph.states, start=1):
        marker = " (first)" if i == 1 else ""
        click.echo(f"  {i}. {s.name} [{s.id}]{marker}")
    if graph.transitions:
        click.echo("  Transitions:")
        for t in graph.to_dict()["transitions"]:
            src = "*" if t["any_source"] else t["from"]
            click.echo(f"    {src} -> {t['to']}")


# ---------------------------------------------------------------------------
# state
# ---------------------------------------------------------------------------


@click.group("state")
def state() -> None:
    """Manage the project's state catalog."""


@state.command("add")
@click.argument("name")
@click.option("--position", default=None, type=int, help="Sort position (default: last)")
@project_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def state_add(name: str, position: int | None, project_id: str | None, as_json: bool) -> None:
    """Add a state to the catalog."""
    project_id = resolve_project_id(project_id)
    with get_db() as db:
        try:
            created = db.create_state(project_id, name, position=position)
        except KeyError as e:
            not_found(e, as_json=as_json)
        except ValueError as e:
            fail(str(e), as_json=as_json, code="validation_error")
        if as_json:
            click.echo(json_mod.dumps(created.to_dict(), indent=2))
        else:
            click.echo(f"Created state {created.id}: {created.name} (position {created.position})")


@state.command("list")
@project_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def state_list(project_id: str | None, as_json: bool) -> None:
    """List catalog states in position order."""
    project_id = resolve_project_id(project_id)
    with get_db() as db:
        states = db.list_states(project_id)
    if as_json:
        click.echo(json_mod.dumps([s.to_dict() for s in states], indent=2))
        return
    if not states:
        click.echo("No states.")
    for s in states:
        click.echo(f"  {s.position:>3}  {s.name:<20} {s.id}")


@state.command("delete")
@click.argument("state_id")
def state_delete(state_id: str) -> None:
    """Delete an unreferenced state."""
    with get_db() as db:
        try:
            db.delete_state(state_id)
        except KeyError as e:
            not_found(e)
        except ValueError as e:
            fail(str(e))
    click.echo(f"Deleted state {state_id}")


@state.command("rename")
@click.argument("state_id")
@click.argument("name")
def state_rename(state_id: str, name: str) -> None:
    """Rename a state."""
    with get_db() as db:
        try:
            renamed = db.rename_state(state_id, name)
        except KeyError as e:
            not_found(e)
        except ValueError as e:
            fail(str(e))
    click.echo(f"Renamed state {renamed.id}: {renamed.name}")


@state.command("move")
@click.argument("state_id")
@click.argument("direction", type=click.Choice(["up", "down"]))
def state_move(state_id: str, direction: MoveDirection) -> None:
    """Move a state one place up or down the catalog."""
    with get_db() as db:
        try:
            states = db.move_state(state_id, direction)
        except KeyError as e:
            not_found(e)
    for s in states:
        click.echo(f"  {s.position:>3}  {s.name:<20} {s.id}")


# ---------------------------------------------------------------------------
# workflow
# ---------------------------------------------------------------------------


@click.group("workflow")
def workflow() -> None:
    """Author workflows: steps and transitions."""


@workflow.command("create")
@click.argument("name")
@click.option("--state", "state_ids", multiple=True, help="Member state ID, in step order (repeatable)")
@click.option("--seed", is_flag=True, help="Also add linear transitions (and any -> Cancelled)")
@project_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def workflow_create(name: str, state_ids: tuple[str, ...], seed: bool, project_id: str | None, as_json: bool) -> None:
    """Create a workflow."""
    project_id = resolve_project_id(project_id)
    with get_db() as db:
        try:
            graph = db.create_workflow(project_id, name, state_ids=list(state_ids))
            if seed:
                db.seed_linear_transitions(graph.id)
                graph = db.get_workflow(graph.id)
        except KeyError as e:
            not_found(e, as_json=as_json)
        except ValueError as e:
            fail(str(e), as_json=as_json, code="validation_error")
        if as_json:
            click.echo(json_mod.dumps(graph.to_dict(), indent=2))
        else:
            click.echo(f"Created workflow {graph.id}: {graph.workflow.name}")


@workflow.command("list")
@project_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def workflow_list(project_id: str | None, as_json: bool) -> None:
    """List workflows."""
    project_id = resolve_project_id(project_id)
    with get_db() as db:
        graphs = db.list_workflows(project_id)
    if as_json:
        click.echo(json_mod.dumps([g.to_dict() for g in graphs], indent=2))
        return
    if not graphs:
        click.echo("No workflows.")
    for g in graphs:
        flow = " → ".join(s.name for s in g.states) or "(no steps)"
        click.echo(f"  {g.id}  {g.workflow.name:<16} {flow}")


@workflow.command("show")
@click.argument("workflow_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def workflow_show(workflow_id: str, as_json: bool) -> None:
    """Show a workflow's states and transitions."""
    with get_db() as db:
        try:
            graph = db.get_workflow(workflow_id)
        except KeyError as e:
            not_found(e, as_json=as_json)
    if as_json:
        click.echo(json_mod.dumps(graph.to_dict(), indent=2))
        return
    _print_workflow(graph)


@workflow.command("add-step")
@click.argument("workflow_id")
@click.argument("state_id")
@click.option("--order", "step_order", default=None, type=int, help="Step order (default: last)")
def workflow_add_step(workflow_id: str, state_id: str, step_order: int | None) -> None:
    """Add a state to a workflow."""
    with get_db() as db:
        try:
            graph = db.add_step(workflow_id, state_id, step_order=step_order)
        except KeyError as e:
            not_found(e)
        except ValueError as e:
            fail(str(e))
    _print_workflow(graph)


@workflow.command("remove-step")
@click.argument("workflow_id")
@click.argument("state_id")
def workflow_remove_step(workflow_id: str, state_id: str) -> None:
    """Remove a state (and its transitions) from a workflow."""
    with get_db() as db:
        try:
            graph = db.remove_step(workflow_id, state_id)
        except KeyError as e:
            not_found(e)
    _print_workflow(graph)


@workflow.command("rename")
@click.argument("workflow_id")
@click.argument("name")
def workflow_rename(workflow_id: str, name: str) -> None:
    """Rename a workflow."""
    with get_db() as db:
        try:
            graph = db.rename_workflow(workflow_id, name)
        except KeyError as e:
            not_found(e)
        except ValueError as e:
            fail(str(e))
    click.echo(f"Renamed workflow {graph.id}: {graph.workflow.name}")


@workflow.command("move-step")
@click.argument("workflow_id")
@click.argument("state_id")
@click.argument("direction", type=click.Choice(["up", "down"]))
def workflow_move_step(workflow_id: str, state_id: str, direction: MoveDirection) -> None:
    """Move a step one place up or down. Transitions are kept."""
    with get_db() as db:
        try:
            graph = db.move_step(workflow_id, state_id, direction)
        except KeyError as e:
            not_found(e)
    _print_workflow(graph)


@workflow.command("add-transition")
@click.argument("workflow_id")
@click.argument("from_state")
@click.argument("to_state")
def workflow_add_transition(workflow_id: str, from_state: str, to_state: str) -> None:
    """Allow FROM_STATE -> TO_STATE. Use '*' as FROM_STATE for any state."""
    with get_db() as db:
        try:
            t = db.add_transition(workflow_id, from_state, to_state)
        except KeyError as e:
            not_found(e)
        except ValueError as e:
            fail(str(e))
    click.echo(f"Added transition {t.source} -> {t.to_state}")


@workflow.command("remove-transition")
@click.argument("workflow_id")
@click.argument("from_state")
@click.argument("to_state")
def workflow_remove_transition(workflow_id: str, from_state: str, to_state: str) -> None:
    """Remove FROM_STATE -> TO_STATE. Use '*' as FROM_STATE for any state."""
    with get_db() as db:
        try:
            removed = db.remove_transition(workflow_id, from_state, to_state)
        except KeyError as e:
            not_found(e)
        except ValueError as e:
            fail(str(e))
    if not removed:
        fail(f"No transition {from_state} -> {to_state} in workflow {workflow_id}")
    click.echo(f"Removed transition {from_state} -> {to_state}")


@workflow.command("seed")
@click.argument("workflow_id")
def workflow_seed(workflow_id: str) -> None:
    """Add step-to-next-step transitions and any-state -> Cancelled."""
    with get_db() as db:
        try:
            added = db.seed_linear_transitions(workflow_id)
        except KeyError as e:
            not_found(e)
    click.echo(f"Added {added} transition(s)")


@workflow.command("validate")
@click.argument("workflow_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def workflow_validate(workflow_id: str, as_json: bool) -> None:
    """Check a workflow for errors and authoring warnings. Exits 1 on errors."""
    with get_db() as db:
        try:
            result = db.validate_workflow(workflow_id)
        except KeyError as e:
            not_found(e, as_json=as_json)
    if as_json:
        click.echo(
            json_mod.dumps(
                {"valid": result.valid, "errors": list(result.errors), "warnings": list(result.warnings)},
                indent=2,
            )
        )
    else:
        for err in result.errors:
            click.echo(f"  ERROR: {err}")
        for warning in result.warnings:
            click.echo(f"  WARNING: {warning}")
        if result.valid and not result.warnings:
            click.echo("Workflow is valid.")
    if not result.valid:
        sys.exit(1)


# ---------------------------------------------------------------------------
# type
# ---------------------------------------------------------------------------


@click.group("type")
def type_group() -> None:
    """Manage task types and their workflow bindings."""


@type_group.command("create")
@click.argument("name")
@click.option("--workflow", "workflow_id", required=True, help="Workflow ID to bind")
@project_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def type_create(name: str, workflow_id: str, project_id: str | None, as_json: bool) -> None:
    """Create a task type bound to a workflow."""
    project_id = resolve_project_id(project_id)
    with get_db() as db:
        try:
            tt = db.create_task_type(project_id, name, workflow_id)
        except KeyError as e:
            not_found(e, as_json=as_json)
        except ValueError as e:
            fail(str(e), as_json=as_json, code="validation_error")
    if as_json:
        click.echo(json_mod.dumps(tt.to_dict(), indent=2))
    else:
        click.echo(f"Created type {tt.id}: {tt.name} -> {tt.workflow_id}")


@type_group.command("list")
@project_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def type_list(project_id: str | None, as_json: bool) -> None:
    """List task types."""
    project_id = resolve_project_id(project_id)
    with get_db() as db:
        types = db.list_task_types(project_id)
    if as_json:
        click.echo(json_mod.dumps([tt.to_dict() for tt in types], indent=2))
        return
    if not types:
        click.echo("No task types.")
    for tt in types:
        click.echo(f"  {tt.id}  {tt.name:<16} workflow {tt.workflow_id}")


def register(cli: click.Group) -> None:
    """Register workflow authoring commands with the CLI group."""
    cli.add_command(state)
    cli.add_command(workflow)
    cli.add_command(type_group)
