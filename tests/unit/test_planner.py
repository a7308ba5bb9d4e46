"""Tests for execution order planning and edge selection."""

import pytest

from stepwright.contracts import WorkflowDefinition, WorkflowEdge
from stepwright.planner import follow_edge, plan


def _definition(node_ids, edges=()):
    return WorkflowDefinition(
        nodes=[{"id": node_id, "type": "noop"} for node_id in node_ids],
        edges=[dict(edge) for edge in edges],
    )


def test_linear_chain():
    definition = _definition(
        ["C", "B", "A"], [{"from": "A", "to": "B"}, {"from": "B", "to": "C"}]
    )
    assert plan(definition) == ["A", "B", "C"]


def test_only_first_outgoing_edge_is_walked():
    definition = _definition(
        ["A", "B", "C", "D"],
        [
            {"from": "A", "to": "B"},
            {"from": "B", "to": "C", "branch": "yes"},
            {"from": "B", "to": "D", "branch": "no"},
        ],
    )
    assert plan(definition) == ["A", "B", "C", "D"]


def test_disconnected_and_cyclic_nodes_are_appended():
    definition = _definition(
        ["A", "B", "X", "L1", "L2"],
        [
            {"from": "A", "to": "B"},
            {"from": "L1", "to": "L2"},
            {"from": "L2", "to": "L1"},
        ],
    )
    assert plan(definition) == ["A", "B", "X", "L1", "L2"]


def test_graph_without_entry_nodes():
    definition = _definition(
        ["A", "B"], [{"from": "A", "to": "B"}, {"from": "B", "to": "A"}]
    )
    assert plan(definition) == ["A", "B"]


def test_empty_definition():
    assert plan(WorkflowDefinition()) == []


@pytest.mark.parametrize(
    "node_ids, edges",
    [
        (["a"], []),
        (["a", "b", "c"], [{"from": "a", "to": "c"}, {"from": "c", "to": "a"}]),
        (
            ["s", "l", "body", "end"],
            [
                {"from": "s", "to": "l"},
                {"from": "l", "to": "body", "branch": "loop"},
                {"from": "body", "to": "l"},
                {"from": "l", "to": "end", "branch": "next"},
            ],
        ),
        (["p", "q", "r", "s"], [{"from": "r", "to": "p"}, {"from": "r", "to": "q"}]),
    ],
)
def test_plan_is_total_and_deterministic(node_ids, edges):
    definition = _definition(node_ids, edges)
    order = plan(definition)
    assert sorted(order) == sorted(node_ids)
    assert len(order) == len(set(order))
    assert plan(definition) == order


def test_follow_edge_by_branch():
    edges = [
        WorkflowEdge(**{"from": "B", "to": "C", "branch": "yes"}),
        WorkflowEdge(**{"from": "B", "to": "D", "branch": "no"}),
        WorkflowEdge(**{"from": "B", "to": "E"}),
    ]
    assert follow_edge("B", edges, "yes") == "C"
    assert follow_edge("B", edges, "no") == "D"
    assert follow_edge("B", edges, None) == "E"
    assert follow_edge("B", edges, "loop") is None
    assert follow_edge("Z", edges, None) is None


def test_follow_edge_without_unlabelled_edge():
    edges = [WorkflowEdge(**{"from": "B", "to": "C", "branch": "yes"})]
    assert follow_edge("B", edges, None) is None
