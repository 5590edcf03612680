"""Fixtures for HTTP API tests (FastAPI)."""

from __future__ import annotations

from collections.abc import AsyncIterator, Generator
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

import tasklane.dashboard as dash_module
from tasklane.core import TasklaneDB
from tasklane.dashboard import create_app
from tests._db_factory import make_db


@pytest.fixture
def api_db(tmp_path: Path) -> Generator[TasklaneDB, None, None]:
    """TasklaneDB opened with check_same_thread=False, as the server does."""
    d = make_db(tmp_path, check_same_thread=False)
    yield d
    d.close()


@pytest.fixture
async def client(api_db: TasklaneDB) -> AsyncIterator[AsyncClient]:
    """Create a test client backed by ``api_db``."""
    dash_module._db = api_db
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    dash_module._db = None
