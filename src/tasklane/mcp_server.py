"""MCP server for the tasklane tracker.

Lets agents inspect workflows and move tasks through them. Direct SQLite,
no daemon. Exposes the resolver and the transition executor as MCP tools.

Usage:
    tasklane-mcp                              # Auto-discover .tasklane/ from cwd
    tasklane-mcp --project /path/to/project   # Explicit project root
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from tasklane.core import (
    DB_FILENAME,
    DEFAULT_PREFIX,
    TASKLANE_DIR_NAME,
    TasklaneDB,
    find_tasklane_root,
    read_config,
)
from tasklane.types.api import ErrorResponse, TransitionError
from tasklane.validation import sanitize_actor
from tasklane.workflow import InvalidTransitionError, TransitionConflictError

# ---------------------------------------------------------------------------
# Server setup
# ---------------------------------------------------------------------------

server = Server("tasklane")
db: TasklaneDB | None = None
default_project_id: str | None = None
_logger: logging.Logger | None = None


def _get_db() -> TasklaneDB:
    if db is None:
        msg = "Database not initialized"
        raise RuntimeError(msg)
    return db


def _text(content: Any) -> list[TextContent]:
    if isinstance(content, str):
        return [TextContent(type="text", text=content)]
    return [TextContent(type="text", text=json.dumps(content, indent=2, default=str))]


def _error(message: str, code: str) -> list[TextContent]:
    return _text(ErrorResponse(error=message, code=code))


def _not_found(exc: KeyError) -> list[TextContent]:
    return _error(str(exc.args[0]) if exc.args else "Not found", "not_found")


def _project_arg(arguments: dict[str, Any]) -> str | None:
    project_id = arguments.get("project_id") or default_project_id
    return project_id if isinstance(project_id, str) else None


_PROJECT_PROP = {"type": "string", "description": "Project ID (defaults to the project created by 'tasklane init')"}
_ACTOR_PROP = {"type": "string", "description": "Actor identity for the audit trail", "default": "mcp"}


@server.list_tools()  # type: ignore[untyped-decorator,no-untyped-call]
async def list_tools() -> list[Tool]:
    return [
        Tool(
            name="list_states",
            description="List the project's states in board (position) order.",
            inputSchema={"type": "object", "properties": {"project_id": _PROJECT_PROP}},
        ),
        Tool(
            name="list_workflows",
            description="List the project's workflows with their states and transitions.",
            inputSchema={"type": "object", "properties": {"project_id": _PROJECT_PROP}},
        ),
        Tool(
            name="get_workflow",
            description="Get one workflow: member states in step order, first state, and transitions ('from': null means any state).",
            inputSchema={
                "type": "object",
                "properties": {"workflow_id": {"type": "string", "description": "Workflow ID"}},
                "required": ["workflow_id"],
            },
        ),
        Tool(
            name="get_task",
            description="Get a task's details, including its current state.",
            inputSchema={
                "type": "object",
                "properties": {"task_id": {"type": "string", "description": "Task ID"}},
                "required": ["task_id"],
            },
        ),
        Tool(
            name="get_legal_states",
            description="States a task may move to next. Call this before apply_transition.",
            inputSchema={
                "type": "object",
                "properties": {"task_id": {"type": "string", "description": "Task ID"}},
                "required": ["task_id"],
            },
        ),
        Tool(
            name="apply_transition",
            description="Move a task to a state. Fails with invalid_transition (legal targets listed) or conflict.",
            inputSchema={
                "type": "object",
                "properties": {
                    "task_id": {"type": "string", "description": "Task ID"},
                    "state_id": {"type": "string", "description": "Target state ID"},
                    "actor": _ACTOR_PROP,
                },
                "required": ["task_id", "state_id"],
            },
        ),
        Tool(
            name="propose_transition",
            description="Request a board move. Always returns a proposal with status 'applied' or 'rejected'.",
            inputSchema={
                "type": "object",
                "properties": {
                    "task_id": {"type": "string", "description": "Task ID"},
                    "state_id": {"type": "string", "description": "Target state ID"},
                    "actor": _ACTOR_PROP,
                },
                "required": ["task_id", "state_id"],
            },
        ),
        Tool(
            name="get_board",
            description="Tasks grouped into one column per state, plus unassigned tasks.",
            inputSchema={"type": "object", "properties": {"project_id": _PROJECT_PROP}},
        ),
    ]


@server.call_tool()  # type: ignore[untyped-decorator]
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    tracker = _get_db()
    t0 = time.monotonic()

    try:
        result = await _dispatch(name, arguments, tracker)
    except Exception:
        if _logger:
            _logger.error("tool_error", extra={"tool": name, "args_data": arguments}, exc_info=True)
        raise
    else:
        duration_ms = round((time.monotonic() - t0) * 1000, 1)
        if _logger:
            _logger.info("tool_call", extra={"tool": name, "args_data": arguments, "duration_ms": duration_ms})
        return result
    finally:
        # Roll back anything a failed mutation left uncommitted.
        if tracker.conn.in_transaction:
            tracker.conn.rollback()


async def _dispatch(name: str, arguments: dict[str, Any], tracker: TasklaneDB) -> list[TextContent]:
    match name:
        case "list_states" | "list_workflows" | "get_board":
            project_id = _project_arg(arguments)
            if project_id is None:
                return _error("project_id is required (no default project configured)", "validation_error")
            try:
                tracker.get_project(project_id)
                if name == "list_states":
                    return _text([s.to_dict() for s in tracker.list_states(project_id)])
                if name == "list_workflows":
                    return _text([g.to_dict() for g in tracker.list_workflows(project_id)])
                return _text(tracker.get_board(project_id))
            except KeyError as e:
                return _not_found(e)

        case "get_workflow":
            try:
                return _text(tracker.get_workflow(arguments.get("workflow_id", "")).to_dict())
            except KeyError as e:
                return _not_found(e)

        case "get_task":
            try:
                return _text(tracker.get_task(arguments.get("task_id", "")).to_dict())
            except KeyError as e:
                return _not_found(e)

        case "get_legal_states":
            try:
                return _text(tracker.get_legal_next_states(arguments.get("task_id", "")).to_dict())
            except KeyError as e:
                return _not_found(e)

        case "apply_transition" | "propose_transition":
            state_id = arguments.get("state_id")
            if not isinstance(state_id, str) or not state_id.strip():
                return _error("state_id must be a non-empty string", "validation_error")
            actor, err = sanitize_actor(arguments.get("actor", "mcp"))
            if err:
                return _error(err, "validation_error")
            try:
                if name == "propose_transition":
                    proposal = tracker.propose_transition(arguments.get("task_id", ""), state_id.strip(), actor=actor)
                    return _text(proposal.to_dict())
                task = tracker.apply_transition(arguments.get("task_id", ""), state_id.strip(), actor=actor)
                return _text(task.to_dict())
            except KeyError as e:
                return _not_found(e)
            except InvalidTransitionError as e:
                return _text(
                    TransitionError(
                        error=str(e),
                        code="invalid_transition",
                        legal_state_ids=list(e.legal_state_ids),
                        hint="Use get_legal_states to see allowed moves",
                    )
                )
            except TransitionConflictError as e:
                return _text(TransitionError(error=str(e), code="conflict", hint="Re-read the task and retry"))

        case _:
            return _error(f"Unknown tool: {name}", "unknown_tool")


async def _run(project_path: Path | None) -> None:
    global db, default_project_id, _logger

    if project_path:
        tasklane_dir = project_path / TASKLANE_DIR_NAME
        if not tasklane_dir.is_dir():
            print(f"Error: {tasklane_dir} not found. Run 'tasklane init' first.", file=sys.stderr)
            sys.exit(1)
    else:
        try:
            tasklane_dir = find_tasklane_root()
        except FileNotFoundError:
            print(f"Error: No {TASKLANE_DIR_NAME}/ found. Run 'tasklane init' first.", file=sys.stderr)
            sys.exit(1)

    config = read_config(tasklane_dir)
    db = TasklaneDB(tasklane_dir / DB_FILENAME, prefix=config.get("prefix", DEFAULT_PREFIX))
    db.initialize()
    default_project_id = config.get("project_id")

    from tasklane.logging import setup_logging

    _logger = setup_logging(tasklane_dir)
    _logger.info("mcp_server_start", extra={"tool": "server", "args_data": {"project": str(tasklane_dir.parent)}})

    async with stdio_server() as (read_stream, write_stream):
        await server.run(read_stream, write_stream, server.create_initialization_options())


def main() -> None:
    import asyncio

    parser = argparse.ArgumentParser(description="Tasklane MCP server")
    parser.add_argument("--project", type=Path, default=None, help="Project root (auto-discovers .tasklane/ if omitted)")
    args = parser.parse_args()

    asyncio.run(_run(args.project))


if __name__ == "__main__":
    main()
