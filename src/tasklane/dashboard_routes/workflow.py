"""State catalog, workflow, task-type, and board route handlers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from fastapi import APIRouter

from tasklane.core import TasklaneDB
from tasklane.dashboard_routes.common import _error_response, _not_found

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Router factory
# ---------------------------------------------------------------------------


def create_router() -> APIRouter:
    """Build the APIRouter for read-only catalog and workflow endpoints.

    NOTE: All handlers are intentionally async despite doing synchronous
    SQLite I/O. This serializes DB access on the event loop thread,
    avoiding concurrent multi-thread access to the shared DB connection.
    """
    from fastapi import APIRouter, Depends

    from tasklane.dashboard import _get_db

    router = APIRouter()

    @router.get("/projects")
    async def api_projects(db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        return JSONResponse(db.list_projects())

    @router.get("/projects/{project_id}/states")
    async def api_states(project_id: str, db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        """Project states in position order."""
        try:
            db.get_project(project_id)
        except KeyError as e:
            return _not_found(e, "PROJECT_NOT_FOUND")
        return JSONResponse([s.to_dict() for s in db.list_states(project_id)])

    @router.get("/projects/{project_id}/workflows")
    async def api_workflows(project_id: str, db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        try:
            db.get_project(project_id)
        except KeyError as e:
            return _not_found(e, "PROJECT_NOT_FOUND")
        return JSONResponse([g.to_dict() for g in db.list_workflows(project_id)])

    @router.get("/projects/{project_id}/task-types")
    async def api_task_types(project_id: str, db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        try:
            db.get_project(project_id)
        except KeyError as e:
            return _not_found(e, "PROJECT_NOT_FOUND")
        return JSONResponse([tt.to_dict() for tt in db.list_task_types(project_id)])

    @router.get("/projects/{project_id}/board")
    async def api_board(project_id: str, db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        """Tasks grouped into one column per state."""
        try:
            board = db.get_board(project_id)
        except KeyError as e:
            return _not_found(e, "PROJECT_NOT_FOUND")
        return JSONResponse(board)

    @router.get("/activity")
    async def api_activity(limit: int = 50, project_id: str = "", db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        """Recent events across all tasks, newest first, optionally for one project."""
        if project_id:
            try:
                db.get_project(project_id)
            except KeyError as e:
                return _not_found(e, "PROJECT_NOT_FOUND")
        events = db.get_recent_events(max(1, limit), project_id=project_id or None)
        return JSONResponse(events)

    @router.get("/workflows/{workflow_id}")
    async def api_workflow_detail(workflow_id: str, db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        """Member states in step order, first state, and transitions."""
        try:
            graph = db.get_workflow(workflow_id)
        except KeyError as e:
            return _not_found(e, "WORKFLOW_NOT_FOUND")
        return JSONResponse(graph.to_dict())

    @router.get("/workflows/{workflow_id}/validate")
    async def api_workflow_validate(workflow_id: str, db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        try:
            result = db.validate_workflow(workflow_id)
        except KeyError as e:
            return _not_found(e, "WORKFLOW_NOT_FOUND")
        if not result.valid:
            logger.info("Workflow %s failed validation: %s", workflow_id, "; ".join(result.errors))
        return JSONResponse({"valid": result.valid, "errors": list(result.errors), "warnings": list(result.warnings)})

    @router.get("/task-types/{task_type_id}")
    async def api_task_type_detail(task_type_id: str, db: TasklaneDB = Depends(_get_db)) -> JSONResponse:
        try:
            task_type = db.get_task_type(task_type_id)
        except KeyError as e:
            return _not_found(e, "TASK_TYPE_NOT_FOUND")
        graph = db.workflow_for_task_type(task_type_id)
        if graph is None:
            return _error_response(
                f"Task type {task_type_id} is bound to a missing workflow {task_type.workflow_id}",
                "WORKFLOW_NOT_FOUND",
                404,
            )
        return JSONResponse({**task_type.to_dict(), "workflow": graph.to_dict()})

    return router
