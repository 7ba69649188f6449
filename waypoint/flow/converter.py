"""Conversion between state-machine definitions and flow graphs."""

from __future__ import annotations

from typing import Dict, List, Optional, Set

from ..contracts import (
    Flow,
    FlowEdge,
    FlowNode,
    FlowNodeType,
    StateConfig,
    TransitionConfig,
    WorkflowDefinition,
    WorkflowType,
    ref_name,
)


def legacy_to_flow(definition: WorkflowDefinition) -> Flow:
    """Convert a state-machine definition into a flow graph.

    Initial states become ``start`` nodes, final states ``end`` nodes and
    everything else ``assignment`` nodes. Guards collapse into an edge
    condition string joined with ``&&`` (informational only: the flow
    evaluator does not understand it).
    """
    nodes: List[FlowNode] = []
    edges: List[FlowEdge] = []
    node_ids: Dict[str, str] = {}

    for index, (state_name, state) in enumerate(definition.states.items()):
        node_id = f"node_{index}"
        node_ids[state_name] = node_id
        if state.initial:
            node_type = FlowNodeType.START.value
        elif state.final:
            node_type = FlowNodeType.END.value
        else:
            node_type = FlowNodeType.ASSIGNMENT.value
        config = {}
        if state.metadata:
            config["metadata"] = dict(state.metadata)
        if state.on_enter:
            config["on_enter"] = [ref_name(a) for a in state.on_enter]
        if state.on_exit:
            config["on_exit"] = [ref_name(a) for a in state.on_exit]
        nodes.append(FlowNode(id=node_id, type=node_type, label=state_name, config=config))

    edge_index = 0
    for state_name, state in definition.states.items():
        for transition_name, transition in state.transitions.items():
            target = node_ids.get(transition.target)
            if target is None:
                continue
            condition: Optional[str] = None
            if transition.guards:
                condition = " && ".join(ref_name(g) for g in transition.guards)
            edges.append(
                FlowEdge(
                    id=f"edge_{edge_index}",
                    source=node_ids[state_name],
                    target=target,
                    label=transition_name,
                    condition=condition,
                )
            )
            edge_index += 1

    return Flow(
        id=definition.id,
        name=definition.name,
        label=definition.name,
        description=definition.description,
        version=definition.version,
        nodes=nodes,
        edges=edges,
        metadata=dict(definition.metadata),
    )


def flow_to_legacy(
    flow: Flow,
    workflow_id: Optional[str] = None,
    workflow_type: WorkflowType = WorkflowType.SEQUENTIAL,
) -> WorkflowDefinition:
    """Convert a flow graph back into a state-machine definition.

    Node labels become state names; edge labels (or ``to_<target>``) become
    transition names and edge conditions become named guards.
    """
    names = {node.id: node.label or node.id for node in flow.nodes}
    transitions: Dict[str, Dict[str, TransitionConfig]] = {n.id: {} for n in flow.nodes}

    for edge in flow.edges:
        if edge.source not in names or edge.target not in names:
            continue
        target_name = names[edge.target]
        transitions[edge.source][edge.label or f"to_{target_name}"] = TransitionConfig(
            target=target_name,
            guards=[edge.condition] if edge.condition else [],
        )

    states: Dict[str, StateConfig] = {}
    initial_state = ""
    for node in flow.nodes:
        name = names[node.id]
        states[name] = StateConfig(
            name=name,
            initial=node.type == FlowNodeType.START,
            final=node.type == FlowNodeType.END,
            transitions=transitions[node.id],
            metadata=dict(node.config),
        )
        if node.type == FlowNodeType.START and not initial_state:
            initial_state = name

    return WorkflowDefinition(
        id=workflow_id or flow.id,
        name=flow.name,
        description=flow.description,
        type=workflow_type,
        version=flow.version,
        states=states,
        initial_state=initial_state or next(iter(states), ""),
    )


def validate_flow(flow: Flow) -> List[str]:
    """Return structural problems with ``flow``; empty when valid."""
    errors: List[str] = []

    if not flow.name:
        errors.append("Flow must have a name")
    if not flow.nodes:
        errors.append("Flow must have at least one node")

    starts = [n for n in flow.nodes if n.type == FlowNodeType.START]
    ends = [n for n in flow.nodes if n.type == FlowNodeType.END]
    if flow.nodes and not starts:
        errors.append("Flow must have a start node")
    if len(starts) > 1:
        errors.append("Flow must have exactly one start node")
    if flow.nodes and not ends:
        errors.append("Flow must have at least one end node")

    seen: Set[str] = set()
    for node in flow.nodes:
        if node.id in seen:
            errors.append(f"Duplicate node id: {node.id}")
        seen.add(node.id)

    for edge in flow.edges:
        ref = edge.id or f"{edge.source}->{edge.target}"
        if edge.source not in seen:
            errors.append(f"Edge {ref} references unknown source node: {edge.source}")
        if edge.target not in seen:
            errors.append(f"Edge {ref} references unknown target node: {edge.target}")

    return errors


def unreachable_nodes(flow: Flow) -> List[str]:
    """Ids of nodes that cannot be reached from the start node."""
    start = flow.start_node()
    if start is None:
        return []
    reachable = {start.id}
    frontier = [start.id]
    while frontier:
        node_id = frontier.pop()
        for edge in flow.outgoing(node_id):
            if edge.target not in reachable:
                reachable.add(edge.target)
                frontier.append(edge.target)
    return [n.id for n in flow.nodes if n.id not in reachable]
