"""CLI commands for admin: init, dashboard."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from tasklane.core import (
    DB_FILENAME,
    TASKLANE_DIR_NAME,
    TasklaneDB,
    read_config,
    write_config,
)


@click.command()
@click.option("--prefix", default=None, help="ID prefix (default: directory name)")
@click.option("--name", "project_name", default=None, help="Default project name (default: directory name)")
def init(prefix: str | None, project_name: str | None) -> None:
    """Initialize .tasklane/ and a default project in the current directory."""
    cwd = Path.cwd()
    tasklane_dir = cwd / TASKLANE_DIR_NAME

    if tasklane_dir.exists():
        click.echo(f"{TASKLANE_DIR_NAME}/ already exists in {cwd}")
        # Still ensure DB is initialized
        config = read_config(tasklane_dir)
        with TasklaneDB(tasklane_dir / DB_FILENAME, prefix=config.get("prefix", cwd.name)) as db:
            db.initialize()
        return

    prefix = prefix or cwd.name
    project_name = project_name or cwd.name
    tasklane_dir.mkdir()

    with TasklaneDB(tasklane_dir / DB_FILENAME, prefix=prefix) as db:
        db.initialize()
        project = db.create_project(project_name)

    write_config(tasklane_dir, {"prefix": prefix, "name": project_name, "version": 1, "project_id": project["id"]})

    click.echo(f"Initialized {TASKLANE_DIR_NAME}/ in {cwd}")
    click.echo(f"  Prefix:   {prefix}")
    click.echo(f"  Project:  {project['id']} ({project_name})")
    click.echo(f"  Database: {tasklane_dir / DB_FILENAME}")
    click.echo("\nNext: tasklane state add <name>")


@click.command()
@click.option("--port", default=None, type=int, help="Server port (default: $TASKLANE_PORT or 8377)")
def dashboard(port: int | None) -> None:
    """Launch the HTTP API."""
    try:
        from tasklane.dashboard import main as dashboard_main
    except ImportError:
        click.echo("Dashboard requires fastapi and uvicorn. Install with: pip install tasklane", err=True)
        sys.exit(1)
    dashboard_main(port=port)


def register(cli: click.Group) -> None:
    """Register admin commands with the CLI group."""
    cli.add_command(init)
    cli.add_command(dashboard)
