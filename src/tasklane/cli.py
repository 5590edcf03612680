"""CLI for the tasklane tracker.

Convention-based: discovers .tasklane/ by walking up from cwd.

Usage:
    tasklane init                                  # Initialize .tasklane/ and a default project
    tasklane state add "In Review"                 # Add a state to the project catalog
    tasklane workflow create Dev --state <id> ...  # Create a workflow from states, in order
    tasklane workflow add-transition <wf> '*' <id> # Allow a move into <id> from any state
    tasklane type create Bug --workflow <wf>       # Bind a task type to a workflow
    tasklane task create "Fix login" --type <tt>   # Create a task at its first state
    tasklane task states <id>                      # Show legal next states
    tasklane task move <id> <state>                # Apply a transition
    tasklane board                                 # Tasks grouped by state
    tasklane dashboard                             # Launch the HTTP API
"""

from __future__ import annotations

import click

from tasklane import __version__
from tasklane.cli_commands import admin, projects, tasks, workflow
from tasklane.validation import sanitize_actor


@click.group()
@click.version_option(version=__version__, prog_name="tasklane")
@click.option("--actor", default="cli", help="Actor identity for audit trail (default: cli)")
@click.pass_context
def cli(ctx: click.Context, actor: str) -> None:
    """Tasklane: task tracker with per-type workflow state machines."""
    cleaned, err = sanitize_actor(actor)
    if err:
        raise click.BadParameter(err, param_hint="--actor")
    ctx.ensure_object(dict)
    ctx.obj["actor"] = cleaned


admin.register(cli)
projects.register(cli)
workflow.register(cli)
tasks.register(cli)


if __name__ == "__main__":
    cli()
