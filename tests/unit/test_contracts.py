"""Tests for graph definitions and instance state."""

import json

import pytest
from pydantic import ValidationError

from payflow import InstanceStatus, NodeStatus, WorkflowGraph, WorkflowInstance
from payflow.contracts import (
    ApprovalNode,
    Branch,
    ConditionData,
    Edge,
    NodeState,
)
from payflow.errors import (
    InstanceTerminalError,
    InvalidGraphError,
    InvalidTransitionError,
    NoStartNodeError,
)

GRAPH_YAML = """
id: two-step
name: Two step approval
nodes:
  - id: start
    kind: start
  - id: manager
    kind: approval
    label: Manager approval
    data:
      approver: {type: ROLE, value: MANAGER}
      timeout_hours: 12
  - id: big
    kind: condition
    data:
      amountThreshold: 1000
  - id: finance
    kind: approval
    data:
      approver: {type: USER, value: u-fin1}
      auto_approve_on_timeout: true
      is_payment_trigger: true
  - id: pay
    kind: payment
  - id: end
    kind: end
edges:
  - {id: e1, source: start, target: manager}
  - {id: e2, source: manager, target: big}
  - {id: e3, source: big, target: finance, branch: true}
  - {id: e4, source: big, target: pay, branch: false}
  - {id: e5, source: finance, target: pay}
  - {id: e6, source: pay, target: end}
"""


def _problems(graph: WorkflowGraph):
    with pytest.raises(InvalidGraphError) as excinfo:
        graph.validate_structure()
    return excinfo.value.problems


def test_graph_loads_from_yaml(tmp_path):
    path = tmp_path / "graph.yaml"
    path.write_text(GRAPH_YAML)

    graph = WorkflowGraph.from_file(path)
    graph.validate_structure()

    manager = graph.node("manager")
    assert isinstance(manager, ApprovalNode)
    assert manager.display_name == "Manager approval"
    assert manager.data.timeout_hours == 12
    assert graph.node("finance").display_name == "finance"
    assert graph.node("finance").data.timeout_hours is None
    assert str(graph.node("finance").data.approver) == "USER:u-fin1"
    assert graph.node("big").data.predicate.threshold == 1000
    assert [e.branch for e in graph.outgoing("big")] == [Branch.MATCHED, Branch.UNMATCHED]
    assert [e.id for e in graph.incoming("pay")] == ["e4", "e5"]
    assert graph.start_node().id == "start"


def test_graph_loads_from_json(tmp_path, condition_graph):
    path = tmp_path / "graph.json"
    path.write_text(json.dumps(condition_graph().model_dump(mode="json")))

    assert WorkflowGraph.from_file(path) == condition_graph()


def test_unknown_node_kind_is_rejected():
    with pytest.raises(ValidationError):
        WorkflowGraph(nodes=[{"id": "x", "kind": "webhook"}])


def test_graph_is_immutable(condition_graph):
    with pytest.raises(ValidationError):
        condition_graph().name = "changed"


def test_missing_start_node():
    graph = WorkflowGraph(nodes=[{"id": "end", "kind": "end"}])
    with pytest.raises(NoStartNodeError):
        graph.validate_structure()


def test_structural_problems_are_reported_together():
    graph = WorkflowGraph(
        nodes=[
            {"id": "start", "kind": "start"},
            {"id": "start", "kind": "start"},
            {"id": "check", "kind": "condition", "data": {"amountThreshold": 10}},
            {"id": "notify", "kind": "notify"},
            {"id": "orphan", "kind": "payment"},
            {"id": "end", "kind": "end"},
        ],
        edges=[
            {"id": "e1", "source": "start", "target": "check"},
            {"id": "e2", "source": "check", "target": "notify", "branch": "matched"},
            {"id": "e3", "source": "notify", "target": "end", "branch": "matched"},
            {"id": "e4", "source": "end", "target": "ghost"},
            {"id": "e4", "source": "orphan", "target": "start"},
        ],
    )
    problems = _problems(graph)

    assert "duplicate node ids: start" in problems
    assert "duplicate edge ids: e4" in problems
    assert any("expected exactly one start node" in p for p in problems)
    assert "edge e4 references unknown target ghost" in problems
    assert "start node start has incoming edges" in problems
    assert "end node end has outgoing edges" in problems
    assert "condition node check has no unmatched edge" in problems
    assert "notify node notify has a branch-labelled edge" in problems
    assert "nodes unreachable from start: orphan" in problems


def test_dead_end_and_missing_end_are_reported():
    graph = WorkflowGraph(
        nodes=[{"id": "start", "kind": "start"}, {"id": "pay", "kind": "payment"}],
        edges=[{"id": "e1", "source": "start", "target": "pay"}],
    )
    problems = _problems(graph)
    assert "graph has no end node" in problems
    assert "payment node pay has no outgoing edges" in problems


def test_condition_edge_without_branch_is_reported():
    graph = WorkflowGraph(
        nodes=[
            {"id": "start", "kind": "start"},
            {"id": "check", "kind": "condition"},
            {"id": "end", "kind": "end"},
        ],
        edges=[
            {"id": "e1", "source": "start", "target": "check"},
            {"id": "e2", "source": "check", "target": "end"},
        ],
    )
    problems = _problems(graph)
    assert "condition node check has an edge without a branch" in problems
    assert "condition node check has no matched edge" in problems


def test_legacy_condition_shorthands():
    assert ConditionData.model_validate({"amountThreshold": 250}).predicate.threshold == 250
    category = ConditionData.model_validate({"conditions": {"category": "travel"}}).predicate
    assert (category.field, category.operator, category.threshold) == ("category", "eq", "travel")
    assert ConditionData.model_validate({}).predicate is None
    explicit = ConditionData.model_validate(
        {"predicate": {"field": "amount", "operator": "lt", "threshold": 5}}
    )
    assert explicit.predicate.operator == "lt"


@pytest.mark.parametrize(
    "value, expected",
    [(True, Branch.MATCHED), ("false", Branch.UNMATCHED), ("matched", Branch.MATCHED), (None, None)],
)
def test_edge_branch_coercion(value, expected):
    assert Edge(id="e", source="a", target="b", branch=value).branch == expected


def test_node_state_lifecycle_is_monotone():
    state = NodeState()
    state.transition("n", NodeStatus.RUNNING)
    assert state.started_at is not None
    state.transition("n", NodeStatus.COMPLETED)
    assert state.completed_at is not None
    assert state.is_terminal

    for target in NodeStatus:
        with pytest.raises(InvalidTransitionError):
            state.transition("n", target)

    with pytest.raises(InvalidTransitionError):
        NodeState().transition("n", NodeStatus.COMPLETED)
    skipped = NodeState()
    skipped.transition("n", NodeStatus.SKIPPED)
    assert skipped.is_terminal


def test_instance_resolution_is_compare_and_set(
    condition_graph, make_request, requester, organization
):
    instance = WorkflowInstance.create(condition_graph(), make_request(), requester, organization)
    assert instance.id.startswith("visual-workflow-")
    assert all(s.status == NodeStatus.PENDING for s in instance.node_states.values())
    assert instance.metadata.organization_name == "Acme"
    assert instance.metadata.requester_email == "req@example.com"

    assert instance.resolve_node("manager", NodeStatus.COMPLETED) is False
    instance.start_node("manager")
    assert instance.open_approvals() == ["manager"]
    assert instance.resolve_node("manager", NodeStatus.COMPLETED, decided_by="u-mgr") is True
    assert instance.resolve_node("manager", NodeStatus.FAILED, decided_by="u-x") is False
    assert instance.state("manager").decided_by == "u-mgr"
    assert instance.active_node_ids == []
    assert instance.decided_by_users() == ["u-mgr"]


def test_finished_instance_rejects_changes(
    condition_graph, make_request, requester, organization
):
    instance = WorkflowInstance.create(condition_graph(), make_request(), requester, organization)
    instance.finish(InstanceStatus.FAILED, "boom")

    assert instance.is_terminal
    assert instance.error == "boom"
    with pytest.raises(InstanceTerminalError):
        instance.finish(InstanceStatus.COMPLETED)
    with pytest.raises(InstanceTerminalError):
        instance.start_node("manager")
    with pytest.raises(ValueError):
        WorkflowInstance.create(
            condition_graph(), make_request(), requester, organization
        ).finish(InstanceStatus.RUNNING)
