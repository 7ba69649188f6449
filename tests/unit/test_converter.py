from waypoint.contracts import Flow, FlowEdge, FlowNode, WorkflowType
from waypoint.flow.converter import (
    flow_to_legacy,
    legacy_to_flow,
    unreachable_nodes,
    validate_flow,
)


def test_legacy_to_flow_maps_states_to_nodes(expense_definition):
    flow = legacy_to_flow(expense_definition)

    by_label = {node.label: node for node in flow.nodes}
    assert by_label["draft"].type == "start"
    assert by_label["review"].type == "assignment"
    assert by_label["approved"].type == "end"
    assert by_label["rejected"].type == "end"

    approve = next(e for e in flow.edges if e.label == "approve")
    assert approve.source == by_label["review"].id
    assert approve.target == by_label["approved"].id
    assert approve.condition == "is_manager"
    assert validate_flow(flow) == []


def test_flow_to_legacy_maps_nodes_to_states(routing_flow):
    definition = flow_to_legacy(routing_flow, workflow_type=WorkflowType.CONDITIONAL)

    assert definition.id == "order_routing"
    assert definition.type == WorkflowType.CONDITIONAL
    assert definition.initial_state == "start"
    assert sorted(definition.get_final_states()) == ["end"]
    check = definition.states["check"]
    assert check.transitions["to_path_a"].guards == ["amount > 1000"]
    assert check.transitions["to_path_b"].guards == []
    assert definition.states["path_a"].metadata == {"route": "manual"}


def test_round_trip_preserves_shape(expense_definition):
    restored = flow_to_legacy(legacy_to_flow(expense_definition))
    assert set(restored.states) == set(expense_definition.states)
    assert restored.initial_state == "draft"
    assert restored.states["draft"].transitions["submit"].target == "review"


def test_validate_flow_reports_structural_problems():
    flow = Flow(
        name="bad",
        nodes=[
            FlowNode(id="a", type="start"),
            FlowNode(id="b", type="start"),
            FlowNode(id="b", type="wait"),
        ],
        edges=[FlowEdge(id="e1", source="a", target="zzz")],
    )
    errors = validate_flow(flow)
    assert "Flow must have exactly one start node" in errors
    assert "Flow must have at least one end node" in errors
    assert "Duplicate node id: b" in errors
    assert "Edge e1 references unknown target node: zzz" in errors

    assert validate_flow(Flow(name="empty")) == ["Flow must have at least one node"]


def test_unreachable_nodes(routing_flow):
    assert unreachable_nodes(routing_flow) == []
    extra = routing_flow.model_copy(
        update={"nodes": [*routing_flow.nodes, FlowNode(id="island", type="wait")]}
    )
    assert unreachable_nodes(extra) == ["island"]
