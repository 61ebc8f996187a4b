"""Tests for the DAG document models."""

import json

import pytest

from agentflow.graph import DAGConfigurationError, DAGDefinition, DAGEdgeSpec, EdgeConditionSpec, FlowType, NodeType


DOCUMENT = {
    "id": "dag_research",
    "name": "Research",
    "description": "Research then write",
    "version": "1.0.0",
    "nodes": [
        {"id": "entry", "type": "entry", "agentName": "UserInput", "metadata": None},
        {"id": "research", "type": "sdk_agent", "agentName": "Researcher", "prompt": "Find sources"},
        {"id": "review", "type": "agent", "agentName": "Reviewer", "stepConfig": {"retries": 1}},
        {"id": "exit", "type": "exit", "agentName": "Output"},
    ],
    "edges": [
        {"id": "e1", "from": "entry", "to": "research", "flowType": "context_pass"},
        {"id": "e2", "from": "research", "to": "review", "flowType": "llm_call", "executionHint": "fast"},
        {
            "id": "e3",
            "from": "review",
            "to": "exit",
            "flowType": "autonomous_decision",
            "condition": json.dumps({"type": "result", "expression": "success===true"}),
            "priority": 2,
        },
    ],
    "entryNode": "entry",
    "exitNodes": ["exit"],
}


def test_parses_camel_case_document():
    definition = DAGDefinition.from_dict(DOCUMENT)

    assert definition.entry_node == "entry"
    assert definition.exit_nodes == ["exit"]
    assert definition.nodes[1].type is NodeType.SDK_AGENT
    assert definition.nodes[1].agent_name == "Researcher"
    assert definition.nodes[2].step_config == {"retries": 1}
    assert definition.nodes[0].metadata == {}
    assert definition.edges[1].flow_type is FlowType.LLM_CALL
    assert definition.edges[1].execution_hint == "fast"


def test_double_encoded_condition_is_decoded():
    edge = DAGDefinition.from_dict(DOCUMENT).edges[2]

    assert isinstance(edge.condition, EdgeConditionSpec)
    assert edge.condition.expression == "success===true"
    assert edge.is_conditional


def test_condition_is_written_back_double_encoded():
    data = DAGDefinition.from_dict(DOCUMENT).to_dict()

    condition = data["edges"][2]["condition"]
    assert isinstance(condition, str)
    assert json.loads(condition) == {"type": "result", "expression": "success===true"}
    assert data["entryNode"] == "entry"
    assert data["edges"][0]["from"] == "entry"
    assert "condition" not in data["edges"][0]


def test_decoded_condition_object_is_accepted():
    edge = DAGEdgeSpec.model_validate({
        "id": "e", "from": "a", "to": "b", "flowType": "autonomous_decision",
        "condition": {"type": "result", "expression": "failed"},
    })

    assert edge.condition.expression == "failed"


def test_undecodable_condition_is_kept_as_text():
    edge = DAGEdgeSpec.model_validate({"id": "e", "from": "a", "to": "b", "condition": "success is true"})

    assert edge.condition == "success is true"


def test_blank_condition_is_none():
    edge = DAGEdgeSpec.model_validate({"id": "e", "from": "a", "to": "b", "condition": "  "})

    assert edge.condition is None
    assert edge.flow_type is FlowType.CONTEXT_PASS


def test_snake_case_field_names_are_accepted():
    edge = DAGEdgeSpec(id="e", from_node="a", to_node="b", flow_type=FlowType.VALIDATION)

    assert edge.from_node == "a"
    assert not edge.is_conditional


def test_schema_errors_raise_configuration_error():
    with pytest.raises(DAGConfigurationError) as excinfo:
        DAGDefinition.from_dict({"id": "x", "name": "Broken", "nodes": [{"id": "a"}]})

    assert excinfo.value.dag_name == "Broken"
    assert any("entryNode" in error or "entry_node" in error for error in excinfo.value.errors)


def test_invalid_json_raises_configuration_error():
    with pytest.raises(DAGConfigurationError):
        DAGDefinition.from_json("{not json")


def test_unknown_flow_type_is_rejected():
    data = json.loads(json.dumps(DOCUMENT))
    data["edges"][0]["flowType"] = "teleport"

    with pytest.raises(DAGConfigurationError):
        DAGDefinition.from_dict(data)
