# IMPORT CONSTRAINT: types/ modules must only import from typing, stdlib, and each other.
# NEVER import from core.py, db_base.py, workflow.py, or any mixin; this prevents circular imports.
"""Typed return-value contracts for tasklane core and API layers."""

from __future__ import annotations

from tasklane.types.core import (
    EventRecord,
    ISOTimestamp,
    ProjectConfig,
    ProjectDict,
    TaskDict,
)
from tasklane.types.workflow import (
    BoardColumnDict,
    BoardDict,
    ProposalDict,
    ResolutionDict,
    StateDict,
    StepDict,
    TaskTypeDict,
    TransitionDict,
    WorkflowDict,
)

__all__ = [
    "BoardColumnDict",
    "BoardDict",
    "EventRecord",
    "ISOTimestamp",
    "ProjectConfig",
    "ProjectDict",
    "ProposalDict",
    "ResolutionDict",
    "StateDict",
    "StepDict",
    "TaskDict",
    "TaskTypeDict",
    "TransitionDict",
    "WorkflowDict",
]
