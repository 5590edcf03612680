"""Shared CLI helpers.

Provides ``get_db()``, project resolution and error reporting so that
``cli.py`` and the ``cli_commands/*.py`` modules can share them without
circular imports.
"""

from __future__ import annotations

import json as json_mod
import sys
from typing import NoReturn

import click

from tasklane.core import (
    DB_FILENAME,
    DEFAULT_PREFIX,
    TASKLANE_DIR_NAME,
    TasklaneDB,
    find_tasklane_root,
    read_config,
)
from tasklane.types.core import ProjectConfig
from tasklane.workflow import InvalidTransitionError


def get_db() -> TasklaneDB:
    """Discover .tasklane/ and return an initialized TasklaneDB."""
    try:
        tasklane_dir = find_tasklane_root()
    except FileNotFoundError:
        click.echo(f"No {TASKLANE_DIR_NAME}/ found. Run 'tasklane init' first.", err=True)
        sys.exit(1)
    config = read_config(tasklane_dir)
    db = TasklaneDB(tasklane_dir / DB_FILENAME, prefix=config.get("prefix", DEFAULT_PREFIX))
    db.initialize()
    return db


def resolve_project_id(project_id: str | None) -> str:
    """Return *project_id*, or the default project recorded by ``tasklane init``."""
    if project_id:
        return project_id
    try:
        config = read_config(find_tasklane_root())
    except FileNotFoundError:
        config = ProjectConfig()
    default = config.get("project_id")
    if not default:
        click.echo("No project given and no default project configured. Pass --project.", err=True)
        sys.exit(1)
    return default


def fail(message: str, *, as_json: bool = False, code: str = "error", exc: Exception | None = None) -> NoReturn:
    """Report an error (stderr, or a JSON object on stdout) and exit 1."""
    if as_json:
        payload: dict[str, object] = {"error": message, "code": code}
        if isinstance(exc, InvalidTransitionError):
            payload["legal_state_ids"] = list(exc.legal_state_ids)
        click.echo(json_mod.dumps(payload))
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def not_found(exc: KeyError, *, as_json: bool = False) -> NoReturn:
    # KeyError str() wraps the message in quotes
    fail(str(exc.args[0]) if exc.args else "Not found", as_json=as_json, code="not_found")


project_option = click.option("--project", "project_id", default=None, help="Project ID (default: from config)")
