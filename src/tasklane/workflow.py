# src/tasklane/workflow.py
"""Workflow engine -- state graphs, transition resolution, and validation.

Pure in-memory layer: no SQLite, no HTTP. ``db_catalog`` loads the flat
collections (states, workflows, steps, transitions, task types) for one
project and hands them to ``ProjectWorkflows``, which builds an immutable
``WorkflowGraph`` per workflow. ``resolve_legal_next_states()`` answers
"where may this task go next?" from that index alone.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from dataclasses import replace as _dc_replace
from types import MappingProxyType
from typing import Literal, Protocol

from tasklane.types.workflow import (
    ProposalDict,
    ResolutionDict,
    StateDict,
    StepDict,
    TaskTypeDict,
    TransitionDict,
    WorkflowDict,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Type aliases
# ---------------------------------------------------------------------------

ResolutionKind = Literal["unconstrained_fallback", "initial_assignment", "workflow"]
FallbackReason = Literal["untyped", "no_workflow"]
ProposalStatus = Literal["pending", "applied", "rejected"]

# Token accepted by parse_source() for a wildcard transition source.
ANY_STATE_TOKEN = "*"

# ---------------------------------------------------------------------------
# Transition source: SpecificState(state_id) | AnyState
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SpecificState:
    """Transition source bound to one state."""

    state_id: str

    def __post_init__(self) -> None:
        if not isinstance(self.state_id, str) or not self.state_id.strip():
            msg = "SpecificState requires a non-empty state id"
            raise ValueError(msg)

    def matches(self, state_id: str | None) -> bool:
        return state_id is not None and state_id == self.state_id

    def __str__(self) -> str:
        return self.state_id


@dataclass(frozen=True)
class AnyState:
    """Transition source meaning "any state in the workflow"."""

    def matches(self, state_id: str | None) -> bool:
        return state_id is not None

    def __str__(self) -> str:
        return ANY_STATE_TOKEN


ANY_STATE = AnyState()

StateRef = SpecificState | AnyState


def parse_source(raw: str | None) -> StateRef:
    """Parse a user-supplied transition source.

    ``"*"`` selects ``AnyState``; any other non-empty string is a state id.
    ``None`` and blank strings are rejected rather than read as a wildcard.
    """
    if raw is None or not raw.strip():
        msg = f"Transition source must be a state id or '{ANY_STATE_TOKEN}' for any state"
        raise ValueError(msg)
    raw = raw.strip()
    if raw == ANY_STATE_TOKEN:
        return ANY_STATE
    return SpecificState(raw)


# ---------------------------------------------------------------------------
# Frozen dataclasses
# ---------------------------------------------------------------------------
# Catalog entities are loaded once per project and shared by every graph
# built from them, so they are immutable. The mutable Task entity lives in
# core.py.
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class State:
    """A named stage in a project's task lifecycle."""

    id: str
    project_id: str
    name: str
    position: int

    def to_dict(self) -> StateDict:
        return StateDict(id=self.id, project_id=self.project_id, name=self.name, position=self.position)


@dataclass(frozen=True)
class Workflow:
    id: str
    project_id: str
    name: str


@dataclass(frozen=True)
class WorkflowStep:
    """Membership of a state in a workflow, with its ordering."""

    workflow_id: str
    state_id: str
    step_order: int

    def to_dict(self) -> StepDict:
        return StepDict(workflow_id=self.workflow_id, state_id=self.state_id, step_order=self.step_order)


@dataclass(frozen=True)
class WorkflowTransition:
    """A declared legal move within one workflow."""

    workflow_id: str
    source: StateRef
    to_state: str

    @property
    def is_wildcard(self) -> bool:
        return isinstance(self.source, AnyState)

    @property
    def from_state(self) -> str | None:
        """Source state id, or None for a wildcard source."""
        if isinstance(self.source, SpecificState):
            return self.source.state_id
        return None

    def applies_from(self, state_id: str | None) -> bool:
        return self.source.matches(state_id)

    def to_dict(self) -> TransitionDict:
        return TransitionDict(
            **{
                "workflow_id": self.workflow_id,
                "from": self.from_state,
                "any_source": self.is_wildcard,
                "to": self.to_state,
            }
        )


@dataclass(frozen=True)
class TaskType:
    """A category of task bound to exactly one workflow."""

    id: str
    project_id: str
    name: str
    workflow_id: str

    def to_dict(self) -> TaskTypeDict:
        return TaskTypeDict(id=self.id, project_id=self.project_id, name=self.name, workflow_id=self.workflow_id)


class TaskLike(Protocol):
    """The slice of a task the resolver reads."""

    @property
    def id(self) -> str: ...

    @property
    def task_type_id(self) -> str | None: ...

    @property
    def state_id(self) -> str | None: ...


@dataclass(frozen=True)
class Resolution:
    """Legal next states for one task, tagged with the branch that produced them."""

    kind: ResolutionKind
    states: tuple[State, ...]
    workflow_id: str | None = None
    fallback_reason: FallbackReason | None = None

    @property
    def state_ids(self) -> frozenset[str]:
        return frozenset(s.id for s in self.states)

    @property
    def is_unconstrained(self) -> bool:
        return self.kind == "unconstrained_fallback"

    def allows(self, state_id: str | None) -> bool:
        if state_id is None:
            return False
        return any(s.id == state_id for s in self.states)

    def to_dict(self) -> ResolutionDict:
        return ResolutionDict(
            kind=self.kind,
            workflow_id=self.workflow_id,
            fallback_reason=self.fallback_reason,
            states=[s.to_dict() for s in self.states],
        )


@dataclass(frozen=True)
class TransitionProposal:
    """A requested board move and its outcome.

    Starts ``pending``; the executor settles it as ``applied`` or
    ``rejected``. Views render from this value instead of patching their
    own copy of the task list.
    """

    task_id: str
    from_state_id: str | None
    to_state_id: str
    status: ProposalStatus = "pending"
    code: str | None = None
    reason: str = ""
    legal_state_ids: tuple[str, ...] = ()

    @classmethod
    def pending(cls, task: TaskLike, to_state_id: str) -> TransitionProposal:
        return cls(task_id=task.id, from_state_id=task.state_id, to_state_id=to_state_id)

    @property
    def is_settled(self) -> bool:
        return self.status != "pending"

    def applied(self) -> TransitionProposal:
        return _dc_replace(self, status="applied", code=None, reason="")

    def rejected(self, code: str, reason: str, legal_state_ids: Iterable[str] = ()) -> TransitionProposal:
        return _dc_replace(
            self,
            status="rejected",
            code=code,
            reason=reason,
            legal_state_ids=tuple(sorted(legal_state_ids)),
        )

    def to_dict(self) -> ProposalDict:
        return ProposalDict(
            task_id=self.task_id,
            from_state_id=self.from_state_id,
            to_state_id=self.to_state_id,
            status=self.status,
            code=self.code,
            reason=self.reason,
            legal_state_ids=list(self.legal_state_ids),
        )


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating a workflow definition."""

    valid: bool
    warnings: tuple[str, ...]
    errors: tuple[str, ...]


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class InvalidTransitionError(ValueError):
    """Raised when the requested target is not among a task's legal next states."""

    def __init__(
        self,
        task_id: str,
        from_state_id: str | None,
        to_state_id: str,
        legal_state_ids: Iterable[str] = (),
    ) -> None:
        self.task_id = task_id
        self.from_state_id = from_state_id
        self.to_state_id = to_state_id
        self.legal_state_ids = tuple(sorted(legal_state_ids))
        legal = ", ".join(self.legal_state_ids) or "(none)"
        super().__init__(
            f"Transition '{from_state_id or '(unassigned)'}' -> '{to_state_id}' is not allowed for task "
            f"'{task_id}'. Legal targets: {legal}. Use get_legal_next_states() to see allowed states."
        )


class TransitionConflictError(ValueError):
    """Raised when a task's stored state changed between resolution and write."""

    def __init__(self, task_id: str, expected_state_id: str | None, actual_state_id: str | None) -> None:
        self.task_id = task_id
        self.expected_state_id = expected_state_id
        self.actual_state_id = actual_state_id
        super().__init__(
            f"Task '{task_id}' changed state concurrently: expected "
            f"'{expected_state_id or '(unassigned)'}', found '{actual_state_id or '(unassigned)'}'. "
            f"Re-fetch legal states and retry."
        )


# ---------------------------------------------------------------------------
# WorkflowGraph
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkflowGraph:
    """Immutable adjacency view of one workflow.

    Built once per load by ``WorkflowGraph.build()``. Member states are
    ordered by ``step_order``; transition targets are indexed by source
    state so ``legal_from()`` is a pair of dict lookups.
    """

    workflow: Workflow
    steps: tuple[WorkflowStep, ...]
    states: tuple[State, ...]
    transitions: frozenset[WorkflowTransition]
    _members: Mapping[str, State] = field(repr=False, compare=False)
    _step_index: Mapping[str, int] = field(repr=False, compare=False)
    _targets_from: Mapping[str, tuple[str, ...]] = field(repr=False, compare=False)
    _wildcard_targets: tuple[str, ...] = field(repr=False, compare=False)

    @classmethod
    def build(
        cls,
        workflow: Workflow,
        steps: Iterable[WorkflowStep],
        transitions: Iterable[WorkflowTransition],
        catalog: Mapping[str, State],
    ) -> WorkflowGraph:
        """Join steps and transitions against the project's state catalog.

        Steps pointing at states missing from the catalog (or owned by
        another project) are dropped with a warning; the graph stays usable.
        """
        own_steps = tuple(sorted((s for s in steps if s.workflow_id == workflow.id), key=lambda s: (s.step_order, s.state_id)))
        own_transitions = frozenset(t for t in transitions if t.workflow_id == workflow.id)

        members: dict[str, State] = {}
        ordered: list[State] = []
        for step in own_steps:
            state = catalog.get(step.state_id)
            if state is None or state.project_id != workflow.project_id:
                logger.warning(
                    "Workflow %s: step references unknown state %s -- skipping",
                    workflow.id,
                    step.state_id,
                )
                continue
            if state.id in members:
                continue
            members[state.id] = state
            ordered.append(state)
        step_index = {s.id: i for i, s in enumerate(ordered)}

        targets_from: dict[str, list[str]] = {}
        wildcard: list[str] = []
        for t in own_transitions:
            if t.to_state not in members:
                logger.warning(
                    "Workflow %s: transition %s -> %s targets a non-member state -- ignoring",
                    workflow.id,
                    t.source,
                    t.to_state,
                )
                continue
            if isinstance(t.source, AnyState):
                wildcard.append(t.to_state)
            else:
                targets_from.setdefault(t.source.state_id, []).append(t.to_state)

        def _ordered(ids: Iterable[str]) -> tuple[str, ...]:
            return tuple(sorted(set(ids), key=lambda sid: step_index[sid]))

        return cls(
            workflow=workflow,
            steps=own_steps,
            states=tuple(ordered),
            transitions=own_transitions,
            _members=MappingProxyType(members),
            _step_index=MappingProxyType(step_index),
            _targets_from=MappingProxyType({k: _ordered(v) for k, v in targets_from.items()}),
            _wildcard_targets=_ordered(wildcard),
        )

    @property
    def id(self) -> str:
        return self.workflow.id

    @property
    def first_state(self) -> State | None:
        return self.states[0] if self.states else None

    def member(self, state_id: str | None) -> State | None:
        if state_id is None:
            return None
        return self._members.get(state_id)

    def is_member(self, state_id: str | None) -> bool:
        return state_id is not None and state_id in self._members

    def explicit_targets(self, state_id: str) -> tuple[State, ...]:
        """Targets of transitions declared from exactly this state."""
        return tuple(self._members[sid] for sid in self._targets_from.get(state_id, ()))

    def wildcard_targets(self) -> tuple[State, ...]:
        return tuple(self._members[sid] for sid in self._wildcard_targets)

    def legal_from(self, state_id: str | None) -> tuple[State, ...]:
        """Legal next states for a task currently in *state_id*.

        Unassigned tasks may only take the first state. Otherwise: the
        current state (when it is a member), then every explicit or
        wildcard target, deduplicated, in step order.
        """
        if state_id is None:
            first = self.first_state
            return (first,) if first is not None else ()

        result: list[State] = []
        current = self._members.get(state_id)
        if current is not None:
            result.append(current)
        seen = {s.id for s in result}
        targets = set(self._targets_from.get(state_id, ())) | set(self._wildcard_targets)
        for sid in sorted(targets, key=lambda x: self._step_index[x]):
            if sid not in seen:
                seen.add(sid)
                result.append(self._members[sid])
        return tuple(result)

    def to_dict(self) -> WorkflowDict:
        first = self.first_state
        return WorkflowDict(
            id=self.workflow.id,
            project_id=self.workflow.project_id,
            name=self.workflow.name,
            states=[s.to_dict() for s in self.states],
            first_state_id=first.id if first is not None else None,
            transitions=[t.to_dict() for t in sorted(self.transitions, key=_transition_sort_key)],
        )


def _transition_sort_key(t: WorkflowTransition) -> tuple[int, str, str]:
    # Wildcards last; otherwise by source then target id
    return (1 if t.is_wildcard else 0, t.from_state or "", t.to_state)


# ---------------------------------------------------------------------------
# ProjectWorkflows
# ---------------------------------------------------------------------------


class ProjectWorkflows:
    """Immutable per-project index over states, workflows, and task types.

    Built from flat collections in one pass; every lookup afterwards is
    O(1). Safe to cache for the lifetime of a view or request.
    """

    def __init__(
        self,
        project_id: str,
        *,
        states: Iterable[State] = (),
        workflows: Iterable[Workflow] = (),
        steps: Iterable[WorkflowStep] = (),
        transitions: Iterable[WorkflowTransition] = (),
        task_types: Iterable[TaskType] = (),
    ) -> None:
        self.project_id = project_id
        own_states = [s for s in states if s.project_id == project_id]
        self._states: tuple[State, ...] = tuple(sorted(own_states, key=lambda s: (s.position, s.name, s.id)))
        self._catalog: Mapping[str, State] = MappingProxyType({s.id: s for s in self._states})

        step_list = list(steps)
        transition_list = list(transitions)
        graphs: dict[str, WorkflowGraph] = {}
        for wf in workflows:
            if wf.project_id != project_id:
                continue
            graphs[wf.id] = WorkflowGraph.build(wf, step_list, transition_list, self._catalog)
        self._graphs: Mapping[str, WorkflowGraph] = MappingProxyType(graphs)
        self._task_types: Mapping[str, TaskType] = MappingProxyType(
            {tt.id: tt for tt in task_types if tt.project_id == project_id}
        )
        logger.debug(
            "Indexed project %s: %d states, %d workflows, %d task types",
            project_id,
            len(self._states),
            len(self._graphs),
            len(self._task_types),
        )

    # -- State Catalog -------------------------------------------------------

    def list_states(self) -> list[State]:
        """Project states ordered by position."""
        return list(self._states)

    def get_state(self, state_id: str | None) -> State | None:
        if state_id is None:
            return None
        return self._catalog.get(state_id)

    # -- Workflow Definition -------------------------------------------------

    def get_workflow(self, workflow_id: str) -> WorkflowGraph | None:
        return self._graphs.get(workflow_id)

    def list_workflows(self) -> list[WorkflowGraph]:
        return sorted(self._graphs.values(), key=lambda g: (g.workflow.name, g.id))

    def _require_workflow(self, workflow_id: str) -> WorkflowGraph:
        graph = self._graphs.get(workflow_id)
        if graph is None:
            msg = f"Workflow not found: {workflow_id}"
            raise KeyError(msg)
        return graph

    def get_workflow_states(self, workflow_id: str) -> list[State]:
        """Member states ordered by step_order. Raises KeyError for unknown workflows."""
        return list(self._require_workflow(workflow_id).states)

    def get_first_state(self, workflow_id: str) -> State | None:
        return self._require_workflow(workflow_id).first_state

    def get_transitions(self, workflow_id: str) -> frozenset[WorkflowTransition]:
        return self._require_workflow(workflow_id).transitions

    # -- Task-Type Binding ---------------------------------------------------

    def get_task_type(self, task_type_id: str | None) -> TaskType | None:
        if task_type_id is None:
            return None
        return self._task_types.get(task_type_id)

    def list_task_types(self) -> list[TaskType]:
        return sorted(self._task_types.values(), key=lambda tt: (tt.name, tt.id))

    def workflow_for_task_type(self, task_type_id: str | None) -> WorkflowGraph | None:
        task_type = self.get_task_type(task_type_id)
        if task_type is None:
            return None
        return self._graphs.get(task_type.workflow_id)

    # -- Resolution ----------------------------------------------------------

    def resolve(self, task: TaskLike) -> Resolution:
        return resolve_legal_next_states(task, self)


# ---------------------------------------------------------------------------
# Transition Resolver
# ---------------------------------------------------------------------------


def _unconstrained_fallback(project: ProjectWorkflows, reason: FallbackReason) -> Resolution:
    """UnconstrainedFallback: every project state is legal.

    Applies to untyped tasks and to tasks whose type or workflow no longer
    resolves. Tasks created before task types existed depend on this branch.
    """
    return Resolution(
        kind="unconstrained_fallback",
        states=tuple(project.list_states()),
        fallback_reason=reason,
    )


def resolve_legal_next_states(task: TaskLike, project: ProjectWorkflows) -> Resolution:
    """Compute the legal next states for *task* within *project*.

    Never raises for an empty result: a workflow with no steps simply
    yields no legal moves.
    """
    if task.task_type_id is None:
        return _unconstrained_fallback(project, "untyped")

    graph = project.workflow_for_task_type(task.task_type_id)
    if graph is None:
        logger.debug("Task %s: type %s has no resolvable workflow", task.id, task.task_type_id)
        return _unconstrained_fallback(project, "no_workflow")

    if task.state_id is None:
        return Resolution(kind="initial_assignment", states=graph.legal_from(None), workflow_id=graph.id)

    return Resolution(kind="workflow", states=graph.legal_from(task.state_id), workflow_id=graph.id)


# ---------------------------------------------------------------------------
# Authoring validation
# ---------------------------------------------------------------------------


def validate_workflow(graph: WorkflowGraph, catalog: Mapping[str, State]) -> list[str]:
    """Check a workflow for internal consistency.

    Returns:
        List of error messages. Empty list means valid.
    """
    errors: list[str] = []

    seen_orders: dict[int, str] = {}
    for step in graph.steps:
        if step.step_order in seen_orders:
            errors.append(f"step_order {step.step_order} is used by both '{seen_orders[step.step_order]}' and '{step.state_id}'")
        else:
            seen_orders[step.step_order] = step.state_id
        state = catalog.get(step.state_id)
        if state is None or state.project_id != graph.workflow.project_id:
            errors.append(f"step references state '{step.state_id}' which is not in the project catalog")

    for t in sorted(graph.transitions, key=_transition_sort_key):
        if not graph.is_member(t.to_state):
            errors.append(f"transition {t.source} -> {t.to_state}: target is not a workflow member")
        if isinstance(t.source, SpecificState) and not graph.is_member(t.source.state_id):
            errors.append(f"transition {t.source} -> {t.to_state}: source is not a workflow member")

    return errors


def check_workflow_quality(graph: WorkflowGraph) -> list[str]:
    """Check a workflow for authoring smells (non-blocking warnings).

    Reports member states unreachable from the first state, and states a
    task cannot leave. Sinks are legitimate (e.g. "Done"), so these are
    warnings, never errors.
    """
    warnings: list[str] = []
    first = graph.first_state
    if first is None:
        warnings.append(f"workflow '{graph.workflow.name}' has no steps; typed tasks will have no legal moves")
        return warnings

    reachable: set[str] = set()
    queue: deque[str] = deque([first.id])
    while queue:
        current = queue.popleft()
        if current in reachable:
            continue
        reachable.add(current)
        for nxt in graph.legal_from(current):
            if nxt.id not in reachable:
                queue.append(nxt.id)

    for s in graph.states:
        if s.id not in reachable:
            warnings.append(f"state '{s.name}' ({s.id}) is unreachable from first state '{first.name}'")

    for s in graph.states:
        exits = [t for t in graph.legal_from(s.id) if t.id != s.id]
        if not exits:
            warnings.append(f"state '{s.name}' ({s.id}) has no outgoing transitions (dead end)")

    return warnings
