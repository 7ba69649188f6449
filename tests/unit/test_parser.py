import json
import logging

import pytest

from waypoint.contracts import ActionConfig, Flow, GuardConfig, WorkflowDefinition, WorkflowType
from waypoint.errors import WorkflowParseError
from waypoint.parser import WorkflowParser, validate_workflow_definition


def test_parse_yaml_state_machine(expense_definition):
    definition = expense_definition
    assert isinstance(definition, WorkflowDefinition)
    assert definition.id == "expense_approval"
    assert definition.version == "1.0.0"
    assert definition.type == WorkflowType.APPROVAL
    assert definition.initial_state == "draft"
    assert definition.states["draft"].transitions["submit"].target == "review"
    assert definition.states["review"].transitions["approve"].guards == ["is_manager"]
    assert sorted(definition.get_final_states()) == ["approved", "rejected"]


def test_parse_applies_defaults_and_explicit_id():
    content = """
name: Simple
states:
  start:
    initial: true
    on_enter: [log_start]
    on_exit:
      - type: notify
        params: {to: ops}
    transitions:
      finish:
        target: done
        guards:
          - type: greater_than
            params: {value: 10}
  done:
    final: true
"""
    definition = WorkflowParser.parse_string(content, id="custom_id")
    assert definition.id == "custom_id"
    assert definition.version == "1.0.0"
    assert definition.type == WorkflowType.SEQUENTIAL
    start = definition.states["start"]
    assert start.on_enter == ["log_start"]
    assert start.on_exit == [ActionConfig(type="notify", params={"to": "ops"})]
    assert start.transitions["finish"].guards == [
        GuardConfig(type="greater_than", params={"value": 10})
    ]


def test_parse_json_state_machine():
    content = json.dumps(
        {
            "name": "Json Flow",
            "version": 2,
            "states": {
                "a": {"initial": True, "transitions": {"go": "b"}},
                "b": {"final": True},
            },
        }
    )
    definition = WorkflowParser.parse_string(content, format="json")
    assert definition.version == "2"
    assert definition.states["a"].transitions["go"].target == "b"


@pytest.mark.parametrize(
    "content, message",
    [
        ("states: {a: {initial: true, final: true}}", "Workflow definition must have a name"),
        ("name: x\nstates: {}", "Workflow definition must have at least one state"),
        ("name: x\nstates: {a: {final: true}}", "Workflow definition must have an initial state"),
        (
            "name: x\nstates:\n  a: {initial: true, transitions: {go: nowhere}}\n  b: {final: true}",
            'Invalid transition "go" in state "a": target state "nowhere" does not exist',
        ),
        (
            "name: x\nstates:\n  a: {initial: true, transitions: {go: {guards: [g]}}}\n  b: {final: true}",
            'Transition "go" must have a target state',
        ),
        (
            "name: x\nstates:\n  a: {initial: true, transitions: {go: b}}\n  b: {}",
            "Workflow must have at least one final state",
        ),
    ],
)
def test_parse_errors(content, message):
    with pytest.raises(WorkflowParseError) as exc_info:
        WorkflowParser.parse_string(content)
    assert str(exc_info.value) == message


def test_parse_rejects_two_initial_states():
    content = "name: x\nstates:\n  a: {initial: true}\n  b: {initial: true, final: true}"
    with pytest.raises(WorkflowParseError, match="exactly one initial state"):
        WorkflowParser.parse_string(content)


def test_parse_invalid_yaml_and_non_mapping():
    with pytest.raises(WorkflowParseError):
        WorkflowParser.parse_string("name: [unclosed")
    with pytest.raises(WorkflowParseError):
        WorkflowParser.parse_string("- just\n- a list")
    with pytest.raises(WorkflowParseError, match="Unsupported format"):
        WorkflowParser.parse_string("{}", format="toml")


def test_validate_workflow_definition_collects_all_problems():
    definition = WorkflowDefinition(
        id="",
        name="",
        states={},
        initial_state="missing",
    )
    errors = validate_workflow_definition(definition)
    assert "Workflow must have an ID" in errors
    assert "Workflow must have a name" in errors
    assert "Workflow must have at least one state" in errors
    assert 'Initial state "missing" does not exist' in errors


def test_parse_flow_document(caplog):
    content = """
name: Routing
nodes:
  - {id: start, type: start}
  - {id: check, type: decision}
  - {id: orphan, type: wait}
  - {id: end, type: end}
edges:
  - {source: start, target: check}
  - {source: check, target: end, condition: "amount > 10"}
"""
    with caplog.at_level(logging.WARNING, logger="waypoint.parser"):
        flow = WorkflowParser.parse_string(content)
    assert isinstance(flow, Flow)
    assert flow.id == "routing"
    assert flow.outgoing("check")[0].condition == "amount > 10"
    assert "orphan" in caplog.text


def test_parse_flow_with_unknown_edge_target():
    content = """
name: Broken
nodes:
  - {id: start, type: start}
  - {id: end, type: end}
edges:
  - {source: start, target: ghost}
"""
    with pytest.raises(WorkflowParseError) as exc_info:
        WorkflowParser.parse_string(content)
    assert "unknown target node: ghost" in str(exc_info.value)


def test_parse_file_and_validate_file(tmp_path):
    path = tmp_path / "wf.yml"
    path.write_text("name: File WF\nstates:\n  a: {initial: true, final: true}\n")

    definition = WorkflowParser.parse_file(path)
    assert definition.id == "file_wf"

    ok, message = WorkflowParser.validate_file(path)
    assert ok
    assert message == "Valid workflow: File WF v1.0.0"

    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"name": "x", "states": {}}))
    ok, message = WorkflowParser.validate_file(bad)
    assert not ok
    assert "at least one state" in message

    ok, message = WorkflowParser.validate_file(tmp_path / "missing.yaml")
    assert not ok
    assert message.startswith("File not found")

    with pytest.raises(WorkflowParseError, match="Unsupported file format"):
        other = tmp_path / "wf.txt"
        other.write_text("name: x")
        WorkflowParser.parse_file(other)
