"""Shared pytest fixtures for tasklane tests."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from tasklane.core import TasklaneDB
from tests._db_factory import DevWorkflow, make_db, seed_dev_workflow


@pytest.fixture
def db(tmp_path: Path) -> Generator[TasklaneDB, None, None]:
    """Fresh TasklaneDB for each test."""
    d = make_db(tmp_path)
    yield d
    d.close()


@pytest.fixture
def dev(db: TasklaneDB) -> DevWorkflow:
    """``db`` populated with the Backlog/Doing/Done/Cancelled "Dev" workflow."""
    return seed_dev_workflow(db)


@pytest.fixture
def cli_runner() -> CliRunner:
    """Click CLI test runner."""
    return CliRunner()
