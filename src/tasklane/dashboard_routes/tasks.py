"""Task detail, legal-state, and transition route handlers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi.responses import JSONResponse
from starlette.requests import Request

if TYPE_CHECKING:
    from fastapi import APIRouter

from tasklane.core import TasklaneDB
from tasklane.dashboard_routes.common import (
    _error_response,
    _not_found,
    _parse_json_body,
    _require_state_id,
    _validate_actor,
)
from tasklane.workflow import InvalidTransitionError, TransitionConflictError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------


def create_router() -> APIRouter:
    """Build the APIRouter for task and transition endpoints.

    NOTE: All handlers are intentionally async despite doing synchronous
    SQLite I/O. This serializes DB access on the event loop thread,
    avoiding concurrent multi-thread access to the shared DB connection.
    """
    from fastapi import APIRouter, Depends

    from tasklane.dashboard import _get_db

    router = APIRouter()

    @router.get("/tasks/{task_id}")
    async def api_task_detail(task_id: str, db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        try:
            task = db.get_task(task_id)
        except KeyError as e:
            return _not_found(e, "TASK_NOT_FOUND")
        return JSONResponse(task.to_dict())

    @router.get("/tasks/{task_id}/legal-states")
    async def api_legal_states(task_id: str, db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        """Legal next states for a task, tagged with the resolver branch."""
        try:
            resolution = db.get_legal_next_states(task_id)
        except KeyError as e:
            return _not_found(e, "TASK_NOT_FOUND")
        return JSONResponse(resolution.to_dict())

    @router.get("/tasks/{task_id}/events")
    async def api_task_events(task_id: str, limit: int = 50, db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        try:
            events = db.get_task_events(task_id, limit=max(1, limit))
        except KeyError as e:
            return _not_found(e, "TASK_NOT_FOUND")
        return JSONResponse(events)

    @router.patch("/tasks/{task_id}/state")
    async def api_update_state(task_id: str, request: Request, db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        """Apply a transition. 409 when the move is illegal or lost a race."""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        state_id = _require_state_id(body)
        if isinstance(state_id, JSONResponse):
            return state_id
        actor, actor_err = _validate_actor(body.get("actor", "dashboard"))
        if actor_err:
            return actor_err
        try:
            task = db.apply_transition(task_id, state_id, actor=actor)
        except KeyError as e:
            return _not_found(e, "TASK_NOT_FOUND")
        except InvalidTransitionError as e:
            return _error_response(
                str(e),
                "INVALID_TRANSITION",
                409,
                {"from_state_id": e.from_state_id, "to_state_id": e.to_state_id, "legal_state_ids": list(e.legal_state_ids)},
            )
        except TransitionConflictError as e:
            return _error_response(
                str(e),
                "TRANSITION_CONFLICT",
                409,
                {"expected_state_id": e.expected_state_id, "actual_state_id": e.actual_state_id},
            )
        return JSONResponse(task.to_dict())

    @router.post("/tasks/{task_id}/propose")
    async def api_propose(task_id: str, request: Request, db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        """Board-move entry point: always 200 with an applied or rejected proposal."""
        body = await _parse_json_body(request)
        if isinstance(body, JSONResponse):
            return body
        state_id = _require_state_id(body)
        if isinstance(state_id, JSONResponse):
            return state_id
        actor, actor_err = _validate_actor(body.get("actor", "dashboard"))
        if actor_err:
            return actor_err
        try:
            proposal = db.propose_transition(task_id, state_id, actor=actor)
        except KeyError as e:
            return _not_found(e, "TASK_NOT_FOUND")
        return JSONResponse(proposal.to_dict())

    return router
