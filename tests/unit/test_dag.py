"""Tests for layered execution planning."""

import pytest

from blockflow.errors import CycleDetectedError
from blockflow.workflow.dag import plan_execution
from blockflow.workflow.definition import WorkflowDefinition


def _build(node_ids, edges):
    return WorkflowDefinition(
        nodes=[{"id": n, "type": "echo"} for n in node_ids],
        edges=[{"source": s, "target": t} for s, t in edges],
    )


class TestPlanExecution:
    def test_linear_chain(self):
        plan = plan_execution(_build(["a", "b", "c"], [("a", "b"), ("b", "c")]))
        assert plan.layers == [["a"], ["b"], ["c"]]
        assert plan.sources == ["a"]
        assert plan.sinks == ["c"]

    def test_diamond(self):
        plan = plan_execution(_build(["a", "b", "c", "d"], [("a", "b"), ("a", "c"), ("b", "d"), ("c", "d")]))
        assert plan.layers == [["a"], ["b", "c"], ["d"]]
        assert plan.dependencies["d"] == ["b", "c"]
        assert plan.layer_of("c") == 1

    def test_declaration_order_within_layer(self):
        plan = plan_execution(_build(["z", "y", "x"], []))
        assert plan.layers == [["z", "y", "x"]]

    def test_dependencies_precede_dependents(self):
        edges = [("a", "d"), ("b", "d"), ("d", "e"), ("c", "e"), ("a", "c")]
        plan = plan_execution(_build(["e", "d", "c", "b", "a"], edges))
        position = {n: i for i, n in enumerate(plan.order)}
        for source, target in edges:
            assert position[source] < position[target]
        for source, target in edges:
            assert plan.layer_of(source) < plan.layer_of(target)

    def test_parallel_edges_count_once(self):
        workflow = WorkflowDefinition(
            nodes=[{"id": "a", "type": "echo"}, {"id": "b", "type": "echo"}],
            edges=[
                {"id": "e1", "source": "a", "target": "b"},
                {"id": "e2", "source": "a", "target": "b", "sourcePort": "x"},
            ],
        )
        plan = plan_execution(workflow)
        assert plan.layers == [["a"], ["b"]]
        assert plan.dependencies["b"] == ["a"]

    def test_cycle_raises(self):
        workflow = _build(["a", "b", "c"], [("a", "b"), ("b", "c"), ("c", "a")])
        with pytest.raises(CycleDetectedError) as exc_info:
            plan_execution(workflow)
        assert exc_info.value.node_ids == ["a", "b", "c"]

    def test_empty_workflow(self):
        plan = plan_execution(WorkflowDefinition())
        assert plan.layers == []
        assert plan.order == []
