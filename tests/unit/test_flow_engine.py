import pytest

from waypoint.contracts import Flow, FlowEdge, FlowNode, WorkflowStatus
from waypoint.errors import (
    HandlerFailedError,
    InvalidLifecycleError,
    NodeNotFoundError,
    TraversalLimitExceededError,
    UnregisteredHandlerError,
)
from waypoint.flow import FlowEngine, FlowNodeResult


def _linear(*nodes: FlowNode) -> Flow:
    edges = [FlowEdge(source=a.id, target=b.id) for a, b in zip(nodes, nodes[1:])]
    return Flow(name="linear", nodes=list(nodes), edges=edges)


@pytest.mark.asyncio
@pytest.mark.parametrize("amount, route, path", [(1500, "manual", "path_a"), (500, "auto", "path_b")])
async def test_decision_routes_on_amount(routing_flow, amount, route, path):
    engine = FlowEngine()
    instance = engine.create_instance(routing_flow, started_by="alice")
    assert instance.current_state == "start"

    result = await engine.execute(routing_flow, instance, {"amount": amount})

    assert result.success
    assert instance.status == WorkflowStatus.COMPLETED
    assert instance.current_state == "end"
    assert result.variables == {"amount": amount, "route": route}
    assert [h.to_state for h in instance.history] == ["check", path, "end"]
    assert instance.history[0].transition == "start->"
    assert instance.history[0].triggered_by == "alice"
    assert result.nodes_visited == 4


@pytest.mark.asyncio
async def test_flow_variables_are_defaults_under_initial_variables():
    flow = Flow(
        name="vars",
        variables={"region": "emea", "limit": 10},
        nodes=[FlowNode(id="s", type="start"), FlowNode(id="e", type="end")],
        edges=[FlowEdge(source="s", target="e")],
    )
    result = await FlowEngine().execute(flow, FlowEngine().create_instance(flow), {"limit": 99})
    assert result.variables == {"region": "emea", "limit": 99}


@pytest.mark.asyncio
async def test_cycle_without_exit_fails_with_traversal_limit():
    flow = Flow(
        name="loop",
        nodes=[FlowNode(id="a", type="start"), FlowNode(id="b", type="wait")],
        edges=[FlowEdge(source="a", target="b"), FlowEdge(source="b", target="a")],
    )
    engine = FlowEngine(max_nodes=25)
    instance = engine.create_instance(flow)

    result = await engine.execute(flow, instance)

    assert not result.success
    assert isinstance(result.exception, TraversalLimitExceededError)
    assert "max node limit exceeded" in result.error
    assert instance.status == WorkflowStatus.FAILED
    assert instance.failed_at is not None
    assert result.nodes_visited == 25
    assert len(instance.history) == 25


@pytest.mark.asyncio
async def test_handler_failure_marks_failed_and_ignores_output():
    engine = FlowEngine()
    engine.register_handler(
        "create_record",
        lambda node, ctx: FlowNodeResult(success=False, output={"id": 1}, error="db down"),
    )
    flow = _linear(
        FlowNode(id="s", type="start"),
        FlowNode(id="rec", type="create_record"),
        FlowNode(id="e", type="end"),
    )
    instance = engine.create_instance(flow)
    result = await engine.execute(flow, instance)

    assert not result.success
    assert isinstance(result.exception, HandlerFailedError)
    assert result.exception.node_id == "rec"
    assert instance.error == "db down"
    assert instance.current_state == "rec"
    assert "id" not in result.variables


@pytest.mark.asyncio
async def test_handler_exception_marks_failed():
    engine = FlowEngine()

    async def explode(node, ctx):
        raise RuntimeError("kaboom")

    engine.register_handler("script", explode)
    flow = _linear(FlowNode(id="s", type="start"), FlowNode(id="x", type="script"))
    instance = engine.create_instance(flow)
    result = await engine.execute(flow, instance)

    assert not result.success
    assert isinstance(result.exception, RuntimeError)
    assert instance.status == WorkflowStatus.FAILED
    assert instance.error == "kaboom"


@pytest.mark.asyncio
async def test_missing_node_fails_instance():
    flow = Flow(
        name="dangling",
        nodes=[FlowNode(id="s", type="start")],
        edges=[FlowEdge(source="s", target="ghost")],
    )
    engine = FlowEngine()
    instance = engine.create_instance(flow)
    result = await engine.execute(flow, instance)
    assert isinstance(result.exception, NodeNotFoundError)
    assert instance.status == WorkflowStatus.FAILED


@pytest.mark.asyncio
async def test_dead_end_completes():
    flow = _linear(FlowNode(id="s", type="start"), FlowNode(id="w", type="wait"))
    engine = FlowEngine()
    instance = engine.create_instance(flow)
    result = await engine.execute(flow, instance)
    assert result.success
    assert instance.status == WorkflowStatus.COMPLETED
    assert instance.current_state == "w"


@pytest.mark.asyncio
async def test_next_edge_label_overrides_conditions():
    flow = Flow(
        name="labels",
        nodes=[
            FlowNode(id="s", type="start"),
            FlowNode(id="pick", type="router"),
            FlowNode(id="left", type="end"),
            FlowNode(id="right", type="end"),
        ],
        edges=[
            FlowEdge(source="s", target="pick"),
            FlowEdge(source="pick", target="left", label="left"),
            FlowEdge(source="pick", target="right", label="right"),
        ],
    )
    engine = FlowEngine()
    engine.register_handler("router", lambda node, ctx: FlowNodeResult(next_edge="right"))
    result = await engine.execute(flow, engine.create_instance(flow))
    assert result.instance.current_state == "right"


@pytest.mark.asyncio
async def test_custom_handler_output_merges_and_none_means_success():
    engine = FlowEngine()

    async def lookup(node, ctx):
        return FlowNodeResult(output={"customer": {"name": "ACME"}})

    def touch(node, ctx):
        ctx.variables["touched"] = node.id

    engine.register_handler("get_record", lookup)
    engine.register_handler("update_record", touch)
    flow = _linear(
        FlowNode(id="s", type="start"),
        FlowNode(id="get", type="get_record"),
        FlowNode(id="upd", type="update_record"),
        FlowNode(id="e", type="end"),
    )
    result = await engine.execute(flow, engine.create_instance(flow))
    assert result.success
    assert result.variables == {"customer": {"name": "ACME"}, "touched": "upd"}


@pytest.mark.asyncio
async def test_unregistered_handler_is_noop_unless_required():
    flow = _linear(
        FlowNode(id="s", type="start"),
        FlowNode(id="call", type="http_request"),
        FlowNode(id="e", type="end"),
    )

    lenient = FlowEngine()
    assert lenient.missing_handlers(flow) == ["http_request"]
    result = await lenient.execute(flow, lenient.create_instance(flow))
    assert result.success

    strict = FlowEngine(required_handlers=["http_request"])
    instance = strict.create_instance(flow)
    result = await strict.execute(flow, instance)
    assert not result.success
    assert isinstance(result.exception, UnregisteredHandlerError)
    assert instance.current_state == "call"


@pytest.mark.asyncio
async def test_terminal_instance_cannot_be_executed_again(routing_flow):
    engine = FlowEngine()
    instance = engine.create_instance(routing_flow)
    await engine.execute(routing_flow, instance, {"amount": 1})
    history = list(instance.history)

    with pytest.raises(InvalidLifecycleError):
        await engine.execute(routing_flow, instance, {"amount": 1})
    assert instance.history == history


def test_decision_fallbacks(routing_flow):
    engine = FlowEngine()
    check = routing_flow.get_node("check")
    assert engine.resolve_next_node(routing_flow, check, {"amount": 5000}) == "path_a"
    assert engine.resolve_next_node(routing_flow, check, {}) == "path_b"

    only_conditional = Flow(
        name="f",
        nodes=[FlowNode(id="d", type="decision"), FlowNode(id="x", type="end")],
        edges=[FlowEdge(source="d", target="x", condition="flag")],
    )
    d = only_conditional.get_node("d")
    assert engine.resolve_next_node(only_conditional, d, {"flag": False}) == "x"
    assert engine.resolve_next_node(only_conditional, only_conditional.get_node("x"), {}) is None


def test_max_nodes_must_be_positive():
    with pytest.raises(ValueError):
        FlowEngine(max_nodes=0)
