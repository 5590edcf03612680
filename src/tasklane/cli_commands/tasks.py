"""CLI commands for tasks: task create|show|list|states|move|set-type|events, board."""

from __future__ import annotations

import json as json_mod

import click

from tasklane.cli_common import fail, get_db, not_found, project_option, resolve_project_id
from tasklane.workflow import InvalidTransitionError, TransitionConflictError


@click.group("task")
def task() -> None:
    """Create tasks and move them through their workflow."""


@task.command("create")
@click.argument("name")
@click.option("--type", "task_type_id", default=None, help="Task type ID (default: untyped)")
@click.option("--state", "state_id", default=None, help="Initial state ID (default: workflow's first state)")
@click.option("--no-initial", is_flag=True, help="Leave a typed task without a state")
@click.option("--description", "-d", default="", help="Description")
@project_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def task_create(
    ctx: click.Context,
    name: str,
    task_type_id: str | None,
    state_id: str | None,
    no_initial: bool,
    description: str,
    project_id: str | None,
    as_json: bool,
) -> None:
    """Create a task."""
    project_id = resolve_project_id(project_id)
    with get_db() as db:
        try:
            created = db.create_task(
                project_id,
                name,
                task_type_id=task_type_id,
                state_id=state_id,
                description=description,
                assign_initial=not no_initial,
                actor=ctx.obj["actor"],
            )
        except KeyError as e:
            not_found(e, as_json=as_json)
        except InvalidTransitionError as e:
            fail(str(e), as_json=as_json, code="invalid_transition", exc=e)
        except ValueError as e:
            fail(str(e), as_json=as_json, code="validation_error")
    if as_json:
        click.echo(json_mod.dumps(created.to_dict(), indent=2, default=str))
    else:
        click.echo(f"Created {created.id}: {created.name} [{created.state_name or 'no state'}]")


@task.command("show")
@click.argument("task_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def task_show(task_id: str, as_json: bool) -> None:
    """Show task details."""
    with get_db() as db:
        try:
            t = db.get_task(task_id)
        except KeyError as e:
            not_found(e, as_json=as_json)
    if as_json:
        click.echo(json_mod.dumps(t.to_dict(), indent=2, default=str))
        return
    click.echo(f"ID:       {t.id}")
    click.echo(f"Name:     {t.name}")
    click.echo(f"Project:  {t.project_id}")
    click.echo(f"Type:     {t.task_type_id or '(untyped)'}")
    click.echo(f"State:    {t.state_name or '(none)'}" + (f" [{t.state_id}]" if t.state_id else ""))
    click.echo(f"Created:  {t.created_at}")
    click.echo(f"Updated:  {t.updated_at}")
    if t.description:
        click.echo(f"\n--- Description ---\n{t.description}")


@task.command("list")
@click.option("--state", "state_id", default=None, help="Filter by state ID")
@click.option("--type", "task_type_id", default=None, help="Filter by task type ID")
@project_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def task_list(state_id: str | None, task_type_id: str | None, project_id: str | None, as_json: bool) -> None:
    """List tasks."""
    project_id = resolve_project_id(project_id)
    with get_db() as db:
        rows = db.list_tasks(project_id, state_id=state_id, task_type_id=task_type_id)
    if as_json:
        click.echo(json_mod.dumps([t.to_dict() for t in rows], indent=2, default=str))
        return
    if not rows:
        click.echo("No tasks.")
    for t in rows:
        click.echo(f"  {t.id}  [{t.state_name or '-':<12}] {t.name}")


@task.command("states")
@click.argument("task_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def task_states(task_id: str, as_json: bool) -> None:
    """Show the states a task may move to next."""
    with get_db() as db:
        try:
            t = db.get_task(task_id)
            resolution = db.get_legal_next_states(task_id)
        except KeyError as e:
            not_found(e, as_json=as_json)
    if as_json:
        click.echo(json_mod.dumps(resolution.to_dict(), indent=2))
        return
    if resolution.is_unconstrained:
        click.echo(f"{t.id} has no workflow ({resolution.fallback_reason}): any project state is allowed")
    if not resolution.states:
        click.echo("No legal next states.")
    for s in resolution.states:
        marker = " (current)" if s.id == t.state_id else ""
        click.echo(f"  {s.name:<20} {s.id}{marker}")


@task.command("move")
@click.argument("task_id")
@click.argument("state_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def task_move(ctx: click.Context, task_id: str, state_id: str, as_json: bool) -> None:
    """Move a task to STATE_ID if its workflow allows it."""
    with get_db() as db:
        try:
            moved = db.apply_transition(task_id, state_id, actor=ctx.obj["actor"])
        except KeyError as e:
            not_found(e, as_json=as_json)
        except InvalidTransitionError as e:
            fail(str(e), as_json=as_json, code="invalid_transition", exc=e)
        except TransitionConflictError as e:
            fail(str(e), as_json=as_json, code="conflict")
    if as_json:
        click.echo(json_mod.dumps(moved.to_dict(), indent=2, default=str))
    else:
        click.echo(f"Moved {moved.id}: {moved.name} [{moved.state_name}]")


@task.command("set-type")
@click.argument("task_id")
@click.argument("task_type_id", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def task_set_type(ctx: click.Context, task_id: str, task_type_id: str | None, as_json: bool) -> None:
    """Change a task's type (omit TASK_TYPE_ID to clear it)."""
    with get_db() as db:
        try:
            updated = db.change_task_type(task_id, task_type_id, actor=ctx.obj["actor"])
        except KeyError as e:
            not_found(e, as_json=as_json)
        except TransitionConflictError as e:
            fail(str(e), as_json=as_json, code="conflict")
        except ValueError as e:
            fail(str(e), as_json=as_json, code="validation_error")
    if as_json:
        click.echo(json_mod.dumps(updated.to_dict(), indent=2, default=str))
    else:
        click.echo(f"Updated {updated.id}: type {updated.task_type_id or '(untyped)'} [{updated.state_name or 'no state'}]")


@task.command("events")
@click.argument("task_id")
@click.option("--limit", default=50, type=int, help="Max events")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def task_events(task_id: str, limit: int, as_json: bool) -> None:
    """Show a task's audit trail, newest first."""
    with get_db() as db:
        try:
            events = db.get_task_events(task_id, limit=limit)
        except KeyError as e:
            not_found(e, as_json=as_json)
    if as_json:
        click.echo(json_mod.dumps(events, indent=2, default=str))
        return
    for ev in events:
        change = f"{ev['old_value'] or '-'} -> {ev['new_value'] or '-'}"
        actor = f" by {ev['actor']}" if ev["actor"] else ""
        click.echo(f"  {ev['created_at']}  {ev['event_type']:<14} {change}{actor}")


@click.command("board")
@project_option
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def board(project_id: str | None, as_json: bool) -> None:
    """Show tasks grouped by state."""
    project_id = resolve_project_id(project_id)
    with get_db() as db:
        try:
            data = db.get_board(project_id)
        except KeyError as e:
            not_found(e, as_json=as_json)
    if as_json:
        click.echo(json_mod.dumps(data, indent=2, default=str))
        return
    for column in data["columns"]:
        click.echo(f"{column['state']['name']} ({len(column['tasks'])})")
        for t in column["tasks"]:
            click.echo(f"  {t['id']}  {t['name']}")
    if data["unassigned"]:
        click.echo(f"Unassigned ({len(data['unassigned'])})")
        for t in data["unassigned"]:
            click.echo(f"  {t['id']}  {t['name']}")


def register(cli: click.Group) -> None:
    """Register task commands with the CLI group."""
    cli.add_command(task)
    cli.add_command(board)
