"""Pure resolver tests: ProjectWorkflows built from in-memory collections, no SQLite."""

from __future__ import annotations

from dataclasses import dataclass

import pytest

from tasklane.workflow import (
    ANY_STATE,
    ProjectWorkflows,
    Resolution,
    SpecificState,
    State,
    TaskType,
    Workflow,
    WorkflowStep,
    WorkflowTransition,
    resolve_legal_next_states,
)

PROJECT = "p1"


@dataclass
class FakeTask:
    id: str = "t1"
    task_type_id: str | None = None
    state_id: str | None = None


def _states(*names: str) -> list[State]:
    return [State(id=n.lower(), project_id=PROJECT, name=n, position=i) for i, n in enumerate(names, start=1)]


def _steps(workflow_id: str, *state_ids: str) -> list[WorkflowStep]:
    return [WorkflowStep(workflow_id=workflow_id, state_id=sid, step_order=i) for i, sid in enumerate(state_ids, start=1)]


def _edge(workflow_id: str, src: str | None, dst: str) -> WorkflowTransition:
    source = ANY_STATE if src is None else SpecificState(src)
    return WorkflowTransition(workflow_id=workflow_id, source=source, to_state=dst)


def _ids(resolution: Resolution) -> set[str]:
    return set(resolution.state_ids)


@pytest.fixture
def project() -> ProjectWorkflows:
    """Backlog/Doing/Done/Cancelled with Backlog -> Doing -> Done and * -> Cancelled."""
    return ProjectWorkflows(
        PROJECT,
        states=_states("Backlog", "Doing", "Done", "Cancelled"),
        workflows=[Workflow(id="w", project_id=PROJECT, name="Dev")],
        steps=_steps("w", "backlog", "doing", "done", "cancelled"),
        transitions=[_edge("w", "backlog", "doing"), _edge("w", "doing", "done"), _edge("w", None, "cancelled")],
        task_types=[TaskType(id="bug", project_id=PROJECT, name="Bug", workflow_id="w")],
    )


class TestUnconstrainedFallback:
    def test_untyped_task_gets_full_catalog(self) -> None:
        project = ProjectWorkflows(PROJECT, states=_states("A", "B", "C"))
        for state_id in (None, "a", "b", "c"):
            res = resolve_legal_next_states(FakeTask(state_id=state_id), project)
            assert res.kind == "unconstrained_fallback"
            assert res.fallback_reason == "untyped"
            assert [s.id for s in res.states] == ["a", "b", "c"]

    def test_unknown_task_type_falls_back(self, project: ProjectWorkflows) -> None:
        res = project.resolve(FakeTask(task_type_id="ghost", state_id="doing"))
        assert res.is_unconstrained
        assert res.fallback_reason == "no_workflow"
        assert _ids(res) == {"backlog", "doing", "done", "cancelled"}

    def test_type_bound_to_missing_workflow_falls_back(self) -> None:
        project = ProjectWorkflows(
            PROJECT,
            states=_states("A", "B"),
            task_types=[TaskType(id="orphan", project_id=PROJECT, name="Orphan", workflow_id="gone")],
        )
        res = project.resolve(FakeTask(task_type_id="orphan", state_id="a"))
        assert res.fallback_reason == "no_workflow"
        assert _ids(res) == {"a", "b"}

    def test_project_with_no_states(self) -> None:
        res = ProjectWorkflows(PROJECT).resolve(FakeTask())
        assert res.states == ()


class TestInitialAssignment:
    def test_stateless_typed_task_gets_first_state_only(self, project: ProjectWorkflows) -> None:
        res = project.resolve(FakeTask(task_type_id="bug"))
        assert res.kind == "initial_assignment"
        assert res.workflow_id == "w"
        assert [s.id for s in res.states] == ["backlog"]

    def test_first_state_follows_step_order_not_position(self) -> None:
        project = ProjectWorkflows(
            PROJECT,
            states=_states("A", "B", "C"),
            workflows=[Workflow(id="w", project_id=PROJECT, name="Rev")],
            steps=_steps("w", "c", "a"),
            task_types=[TaskType(id="tt", project_id=PROJECT, name="T", workflow_id="w")],
        )
        assert [s.id for s in project.resolve(FakeTask(task_type_id="tt")).states] == ["c"]
        assert project.get_first_state("w") == project.get_state("c")

    def test_workflow_without_steps_yields_nothing(self) -> None:
        project = ProjectWorkflows(
            PROJECT,
            states=_states("A"),
            workflows=[Workflow(id="w", project_id=PROJECT, name="Empty")],
            task_types=[TaskType(id="tt", project_id=PROJECT, name="T", workflow_id="w")],
        )
        res = project.resolve(FakeTask(task_type_id="tt"))
        assert res.kind == "initial_assignment"
        assert res.states == ()
        assert not res.allows("a")


class TestWorkflowResolution:
    def test_explicit_edge_plus_current(self) -> None:
        # Steps only, explicit Backlog -> Doing and Doing -> Done, no wildcard.
        project = ProjectWorkflows(
            PROJECT,
            states=_states("Backlog", "Doing", "Done"),
            workflows=[Workflow(id="w", project_id=PROJECT, name="Dev")],
            steps=_steps("w", "backlog", "doing", "done"),
            transitions=[_edge("w", "backlog", "doing"), _edge("w", "doing", "done")],
            task_types=[TaskType(id="bug", project_id=PROJECT, name="Bug", workflow_id="w")],
        )
        res = project.resolve(FakeTask(task_type_id="bug", state_id="doing"))
        assert res.kind == "workflow"
        assert [s.id for s in res.states] == ["doing", "done"]
        assert not res.allows("backlog")

    def test_wildcard_target_reachable_from_every_member(self, project: ProjectWorkflows) -> None:
        for state_id in ("backlog", "doing", "done", "cancelled"):
            res = project.resolve(FakeTask(task_type_id="bug", state_id=state_id))
            assert res.allows("cancelled")
            assert res.allows(state_id)

    def test_doing_with_wildcard(self, project: ProjectWorkflows) -> None:
        res = project.resolve(FakeTask(task_type_id="bug", state_id="doing"))
        assert _ids(res) == {"doing", "done", "cancelled"}

    def test_results_are_deduplicated_in_step_order(self) -> None:
        project = ProjectWorkflows(
            PROJECT,
            states=_states("A", "B"),
            workflows=[Workflow(id="w", project_id=PROJECT, name="W")],
            steps=_steps("w", "a", "b"),
            transitions=[_edge("w", "a", "b"), _edge("w", None, "b")],
            task_types=[TaskType(id="tt", project_id=PROJECT, name="T", workflow_id="w")],
        )
        res = project.resolve(FakeTask(task_type_id="tt", state_id="a"))
        assert [s.id for s in res.states] == ["a", "b"]

    def test_current_state_outside_workflow(self, project: ProjectWorkflows) -> None:
        # A stale state that is no longer a member only keeps wildcard moves.
        res = project.resolve(FakeTask(task_type_id="bug", state_id="elsewhere"))
        assert res.kind == "workflow"
        assert [s.id for s in res.states] == ["cancelled"]

    def test_dangling_step_is_ignored(self) -> None:
        project = ProjectWorkflows(
            PROJECT,
            states=_states("A", "B"),
            workflows=[Workflow(id="w", project_id=PROJECT, name="W")],
            steps=[*_steps("w", "a", "b"), WorkflowStep(workflow_id="w", state_id="deleted", step_order=0)],
            task_types=[TaskType(id="tt", project_id=PROJECT, name="T", workflow_id="w")],
        )
        graph = project.get_workflow("w")
        assert graph is not None
        assert [s.id for s in graph.states] == ["a", "b"]
        assert graph.first_state is not None and graph.first_state.id == "a"

    def test_transition_to_non_member_is_ignored(self) -> None:
        project = ProjectWorkflows(
            PROJECT,
            states=_states("A", "B", "C"),
            workflows=[Workflow(id="w", project_id=PROJECT, name="W")],
            steps=_steps("w", "a", "b"),
            transitions=[_edge("w", "a", "c")],
            task_types=[TaskType(id="tt", project_id=PROJECT, name="T", workflow_id="w")],
        )
        assert [s.id for s in project.resolve(FakeTask(task_type_id="tt", state_id="a")).states] == ["a"]

    def test_assigned_task_in_workflow_without_steps_has_no_moves(self) -> None:
        project = ProjectWorkflows(
            PROJECT,
            states=_states("A", "B"),
            workflows=[Workflow(id="w", project_id=PROJECT, name="Empty")],
            task_types=[TaskType(id="tt", project_id=PROJECT, name="T", workflow_id="w")],
        )
        res = project.resolve(FakeTask(task_type_id="tt", state_id="a"))
        assert res.kind == "workflow"
        assert res.workflow_id == "w"
        assert res.states == ()
        assert not res.allows("a")
        assert not res.allows("b")


class TestProjectScoping:
    def test_other_project_rows_are_ignored(self) -> None:
        foreign = State(id="x", project_id="p2", name="X", position=1)
        project = ProjectWorkflows(
            PROJECT,
            states=[*_states("A"), foreign],
            workflows=[Workflow(id="w2", project_id="p2", name="Other")],
            task_types=[TaskType(id="tt2", project_id="p2", name="T", workflow_id="w2")],
        )
        assert [s.id for s in project.list_states()] == ["a"]
        assert project.list_workflows() == []
        assert project.get_task_type("tt2") is None

    def test_unknown_workflow_raises_key_error(self, project: ProjectWorkflows) -> None:
        with pytest.raises(KeyError, match="Workflow not found"):
            project.get_workflow_states("nope")

    def test_states_sorted_by_position(self) -> None:
        states = [
            State(id="late", project_id=PROJECT, name="Late", position=9),
            State(id="early", project_id=PROJECT, name="Early", position=1),
        ]
        assert [s.id for s in ProjectWorkflows(PROJECT, states=states).list_states()] == ["early", "late"]
