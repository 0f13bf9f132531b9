"""Tests for workflow definition models and loading."""

import json

import pytest
import yaml

from blockflow.errors import ConfigurationError, CycleDetectedError, WorkflowValidationError
from blockflow.workflow.definition import (
    EdgeDefinition,
    NodeDefinition,
    WorkflowDefinition,
    load_workflow,
)


def _workflow(nodes, edges=(), **extra):
    return {"id": "wf", "nodes": list(nodes), "edges": list(edges), **extra}


class TestNodeDefinition:
    def test_defaults(self):
        node = NodeDefinition(id="n1", type="echo")
        assert node.config == {}
        assert node.timeout is None
        assert node.display_name == "n1"

    def test_null_config_becomes_empty(self):
        assert NodeDefinition(id="n1", type="echo", config=None).config == {}

    def test_blank_type_rejected(self):
        with pytest.raises(ValueError):
            NodeDefinition(id="n1", type="  ")

    def test_non_positive_timeout_rejected(self):
        with pytest.raises(ValueError):
            NodeDefinition(id="n1", type="echo", timeout=0)

    def test_definitions_are_immutable(self):
        node = NodeDefinition(id="n1", type="echo")
        with pytest.raises(Exception):
            node.type = "other"


class TestEdgeDefinition:
    def test_default_id_and_port(self):
        edge = EdgeDefinition(source="a", target="b")
        assert edge.id == "a->b"
        assert edge.source_port == "out"

    def test_camel_case_port(self):
        edge = EdgeDefinition.model_validate({"source": "a", "target": "b", "sourcePort": "true"})
        assert edge.source_port == "true"

    def test_select_port(self):
        output = {"true": [1], "false": [2]}
        assert EdgeDefinition(source="a", target="b").select_port(output) == output
        assert EdgeDefinition(source="a", target="b", source_port="true").select_port(output) == [1]
        assert EdgeDefinition(source="a", target="b", source_port="missing").select_port(output) == output


class TestWorkflowValidation:
    def test_valid_workflow(self):
        workflow = WorkflowDefinition.from_dict(
            _workflow(
                [{"id": "a", "type": "echo"}, {"id": "b", "type": "echo"}],
                [{"source": "a", "target": "b"}],
            )
        )
        assert [n.id for n in workflow.nodes] == ["a", "b"]
        assert workflow.incoming_edges("b")[0].id == "a->b"
        assert workflow.outgoing_edges("a")[0].target == "b"

    def test_duplicate_node_id(self):
        with pytest.raises(WorkflowValidationError, match="Duplicate node id: 'a'"):
            WorkflowDefinition.from_dict(_workflow([{"id": "a", "type": "echo"}, {"id": "a", "type": "echo"}]))

    def test_dangling_edge(self):
        with pytest.raises(WorkflowValidationError) as exc_info:
            WorkflowDefinition.from_dict(
                _workflow([{"id": "a", "type": "echo"}], [{"source": "a", "target": "ghost"}])
            )
        assert any("non-existent target node 'ghost'" in e for e in exc_info.value.errors)

    def test_self_loop(self):
        with pytest.raises(WorkflowValidationError, match="self-loop"):
            WorkflowDefinition.from_dict(_workflow([{"id": "a", "type": "echo"}], [{"source": "a", "target": "a"}]))

    def test_duplicate_edge_id(self):
        with pytest.raises(WorkflowValidationError, match="Duplicate edge id"):
            WorkflowDefinition.from_dict(
                _workflow(
                    [{"id": "a", "type": "echo"}, {"id": "b", "type": "echo"}],
                    [{"id": "e", "source": "a", "target": "b"}, {"id": "e", "source": "b", "target": "a"}],
                )
            )

    def test_parallel_edges_get_distinct_ids(self):
        workflow = WorkflowDefinition.from_dict(
            _workflow(
                [{"id": "a", "type": "echo"}, {"id": "b", "type": "echo"}],
                [
                    {"source": "a", "target": "b", "sourcePort": "x"},
                    {"source": "a", "target": "b", "sourcePort": "y"},
                    {"source": "a", "target": "b"},
                    {"source": "a", "target": "b"},
                ],
            )
        )
        assert [e.id for e in workflow.edges] == ["a:x->b", "a:y->b", "a->b", "a->b#2"]

    def test_generated_id_avoids_explicit_id(self):
        workflow = WorkflowDefinition.from_dict(
            _workflow(
                [{"id": "a", "type": "echo"}, {"id": "b", "type": "echo"}],
                [{"source": "a", "target": "b"}, {"id": "a->b", "source": "a", "target": "b"}],
            )
        )
        assert [e.id for e in workflow.edges] == ["a->b#2", "a->b"]

    def test_cycle_detected(self):
        with pytest.raises(CycleDetectedError) as exc_info:
            WorkflowDefinition.from_dict(
                _workflow(
                    [{"id": "a", "type": "echo"}, {"id": "b", "type": "echo"}, {"id": "c", "type": "echo"}],
                    [
                        {"source": "a", "target": "b"},
                        {"source": "b", "target": "c"},
                        {"source": "c", "target": "b"},
                    ],
                )
            )
        assert exc_info.value.node_ids == ["b", "c"]

    def test_missing_fields_reported(self):
        with pytest.raises(WorkflowValidationError) as exc_info:
            WorkflowDefinition.from_dict(_workflow([{"id": "a"}]))
        assert any(e.startswith("nodes.0.type") for e in exc_info.value.errors)

    def test_non_mapping_rejected(self):
        with pytest.raises(WorkflowValidationError):
            WorkflowDefinition.from_dict(["not", "a", "workflow"])

    def test_settings_accept_globals_and_camel_case(self):
        workflow = WorkflowDefinition.from_dict(
            _workflow(
                [{"id": "a", "type": "echo"}],
                globals={"errorHandling": "stop", "retryOnAnyFailure": True, "timeout": 3},
            )
        )
        assert workflow.settings.error_handling == "stop"
        assert workflow.settings.retry_on_any_failure is True
        assert workflow.settings.timeout == 3

    def test_get_node_unknown(self):
        workflow = WorkflowDefinition.from_dict(_workflow([{"id": "a", "type": "echo"}]))
        with pytest.raises(KeyError):
            workflow.get_node("zzz")


class TestLoadWorkflow:
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "wf.yaml"
        path.write_text(yaml.safe_dump(_workflow([{"id": "a", "type": "echo"}], name="Demo")))
        workflow = load_workflow(path)
        assert workflow.display_name == "Demo"

    def test_load_json(self, tmp_path):
        path = tmp_path / "wf.json"
        path.write_text(json.dumps(_workflow([{"id": "a", "type": "echo"}])))
        assert load_workflow(path).nodes[0].type == "echo"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            load_workflow(tmp_path / "absent.yaml")
