import pytest

import waypoint.persistence as persistence
from waypoint.contracts import Flow, FlowEdge, FlowNode, WorkflowDefinition
from waypoint.parser import WorkflowParser

EXPENSE_YAML = """
name: Expense Approval
version: 1.0.0
type: approval
states:
  draft:
    initial: true
    transitions:
      submit: review
  review:
    transitions:
      approve:
        target: approved
        guards: [is_manager]
      reject: rejected
  approved:
    final: true
  rejected:
    final: true
"""


@pytest.fixture
def expense_yaml() -> str:
    return EXPENSE_YAML


@pytest.fixture
def expense_definition() -> WorkflowDefinition:
    return WorkflowParser.parse_string(EXPENSE_YAML)


@pytest.fixture
def routing_flow() -> Flow:
    """start -> decision(amount > 1000 ? path_a : path_b) -> end"""
    return Flow(
        name="Order Routing",
        nodes=[
            FlowNode(id="start", type="start"),
            FlowNode(id="check", type="decision"),
            FlowNode(id="path_a", type="assignment", config={"route": "manual"}),
            FlowNode(id="path_b", type="assignment", config={"route": "auto"}),
            FlowNode(id="end", type="end"),
        ],
        edges=[
            FlowEdge(source="start", target="check"),
            FlowEdge(source="check", target="path_a", condition="amount > 1000"),
            FlowEdge(source="check", target="path_b"),
            FlowEdge(source="path_a", target="end"),
            FlowEdge(source="path_b", target="end"),
        ],
    )


@pytest.fixture(autouse=True)
def _reset_repository(monkeypatch):
    """Keep the process-wide repository and env config isolated per test."""
    monkeypatch.delenv("WAYPOINT_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr(persistence, "_repository_instance", None)
    yield
