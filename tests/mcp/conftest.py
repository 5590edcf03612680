"""Fixtures for MCP server tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest

from tasklane.core import TasklaneDB
from tests._db_factory import DevWorkflow, make_db, seed_dev_workflow


@pytest.fixture
def mcp_db(tmp_path: Path) -> Generator[TasklaneDB, None, None]:
    """Set up a TasklaneDB and patch the MCP module globals."""
    d = make_db(tmp_path, prefix="mcp", with_config=True)

    import tasklane.mcp_server as mcp_mod

    original_db = mcp_mod.db
    original_project = mcp_mod.default_project_id
    mcp_mod.db = d

    yield d

    mcp_mod.db = original_db
    mcp_mod.default_project_id = original_project
    d.close()


@pytest.fixture
def mcp_dev(mcp_db: TasklaneDB) -> DevWorkflow:
    """``mcp_db`` with the Dev workflow, its project set as the server default."""
    import tasklane.mcp_server as mcp_mod

    dev = seed_dev_workflow(mcp_db)
    mcp_mod.default_project_id = dev.project_id
    return dev
