"""CLI commands for projects: project create, project list."""

from __future__ import annotations

import json as json_mod

import click

from tasklane.cli_common import fail, get_db


@click.group("project")
def project() -> None:
    """Manage projects."""


@project.command("create")
@click.argument("name")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def project_create(name: str, as_json: bool) -> None:
    """Create a project."""
    with get_db() as db:
        try:
            created = db.create_project(name)
        except ValueError as e:
            fail(str(e), as_json=as_json, code="validation_error")
        if as_json:
            click.echo(json_mod.dumps(created, indent=2))
        else:
            click.echo(f"Created {created['id']}: {created['name']}")


@project.command("list")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def project_list(as_json: bool) -> None:
    """List projects."""
    with get_db() as db:
        rows = db.list_projects()
    if as_json:
        click.echo(json_mod.dumps(rows, indent=2))
        return
    if not rows:
        click.echo("No projects.")
    for p in rows:
        click.echo(f"  {p['id']}  {p['name']}")


def register(cli: click.Group) -> None:
    """Register project commands with the CLI group."""
    cli.add_command(project)
