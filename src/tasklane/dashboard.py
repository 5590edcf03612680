"""HTTP API for tasklane.

Single-project local server exposing the state catalog, workflows, board,
and the transition executor as JSON. A module-level ``_db`` is set at
startup and injected via ``Depends(_get_db)``.

Usage:
    tasklane dashboard                    # Serves on localhost:8377
    tasklane dashboard --port 9000        # Custom port
    TASKLANE_PORT=9000 tasklane dashboard # Port from the environment
"""

from __future__ import annotations

import logging
import os
from time import perf_counter
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from fastapi.responses import JSONResponse
    from starlette.requests import Request
    from starlette.responses import Response

from tasklane import __version__
from tasklane.core import DB_FILENAME, DEFAULT_PREFIX, TasklaneDB, find_tasklane_root, read_config
from tasklane.logging import setup_logging

DEFAULT_PORT = 8377
PORT_ENV_VAR = "TASKLANE_PORT"

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level state, set by main() or test fixtures
# ---------------------------------------------------------------------------

_db: TasklaneDB | None = None


def _get_db() -> TasklaneDB:
    """Return the active database connection."""
    from fastapi import HTTPException

    if _db is None:
        raise HTTPException(status_code=500, detail="Database not initialized")
    return _db


def resolve_port(port: int | None = None) -> int:
    """Explicit *port*, else ``$TASKLANE_PORT``, else the default."""
    if port is not None:
        return port
    raw = os.environ.get(PORT_ENV_VAR, "").strip()
    if not raw:
        return DEFAULT_PORT
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r, using %d", PORT_ENV_VAR, raw, DEFAULT_PORT)
        return DEFAULT_PORT


def create_app() -> Any:
    """Create the FastAPI application with all API endpoints."""
    from fastapi import FastAPI
    from fastapi.responses import JSONResponse

    from tasklane.dashboard_routes import tasks as task_routes
    from tasklane.dashboard_routes import workflow as workflow_routes

    app = FastAPI(title="Tasklane", version=__version__, docs_url=None, redoc_url=None)

    @app.middleware("http")
    async def _log_requests(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        started = perf_counter()
        response = await call_next(request)
        duration_ms = round((perf_counter() - started) * 1000, 1)
        logger.info(
            "%s %s -> %d",
            request.method,
            request.url.path,
            response.status_code,
            extra={"route": request.url.path, "duration_ms": duration_ms},
        )
        return response

    app.include_router(workflow_routes.create_router(), prefix="/api")
    app.include_router(task_routes.create_router(), prefix="/api")

    @app.get("/api/health", response_model=None)
    async def api_health() -> JSONResponse:
        return JSONResponse({"status": "ok", "version": __version__})

    return app


def main(port: int | None = None) -> None:
    """Start the API server for the project discovered from cwd."""
    import uvicorn

    global _db

    tasklane_dir = find_tasklane_root()
    setup_logging(tasklane_dir)
    config = read_config(tasklane_dir)
    _db = TasklaneDB(
        tasklane_dir / DB_FILENAME,
        prefix=config.get("prefix", DEFAULT_PREFIX),
        check_same_thread=False,
    )
    _db.initialize()

    port = resolve_port(port)
    app = create_app()
    print(f"Tasklane API: http://localhost:{port}/api")
    logger.info("Starting API server on port %d", port)
    uvicorn.run(app, host="127.0.0.1", port=port, log_level="warning")
