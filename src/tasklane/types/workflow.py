"""TypedDicts for workflow.py and db_catalog.py return types."""

from __future__ import annotations

from typing import Literal, TypedDict

from tasklane.types.core import TaskDict


class StateDict(TypedDict):
    id: str
    project_id: str
    name: str
    position: int


class StepDict(TypedDict):
    workflow_id: str
    state_id: str
    step_order: int


# TransitionDict uses "from" as a key at runtime (a Python keyword).
# TypedDict cannot express this with class syntax; we use functional form.
# "from" is None exactly when "any_source" is True.
TransitionDict = TypedDict(
    "TransitionDict",
    {"workflow_id": str, "from": str | None, "any_source": bool, "to": str},
)


class WorkflowDict(TypedDict):
    """Full workflow definition: member states in step order plus transitions."""

    id: str
    project_id: str
    name: str
    states: list[StateDict]
    first_state_id: str | None
    transitions: list[TransitionDict]


class TaskTypeDict(TypedDict):
    id: str
    project_id: str
    name: str
    workflow_id: str


class ResolutionDict(TypedDict):
    """Legal next states for a task, with the resolver branch that produced them."""

    kind: Literal["unconstrained_fallback", "initial_assignment", "workflow"]
    workflow_id: str | None
    fallback_reason: Literal["untyped", "no_workflow"] | None
    states: list[StateDict]


class ProposalDict(TypedDict):
    task_id: str
    from_state_id: str | None
    to_state_id: str
    status: Literal["pending", "applied", "rejected"]
    code: str | None
    reason: str
    legal_state_ids: list[str]


class BoardColumnDict(TypedDict):
    state: StateDict
    tasks: list[TaskDict]


class BoardDict(TypedDict):
    project_id: str
    columns: list[BoardColumnDict]
    unassigned: list[TaskDict]
