"""End-to-end scenarios through the storage-backed WorkflowAPI."""

import pytest
import pytest_asyncio

from waypoint.api import WorkflowAPI
from waypoint.contracts import (
    ApprovalChain,
    ApprovalLevel,
    Flow,
    FlowNode,
    InstanceQuery,
    StateConfig,
    TaskStatus,
    WorkflowDefinition,
    WorkflowStatus,
)
from waypoint.errors import (
    DefinitionNotFoundError,
    GuardRejectedError,
    InstanceNotFoundError,
    InvalidLifecycleError,
    WorkflowParseError,
)
from waypoint.persistence import InMemoryWorkflowRepository


@pytest_asyncio.fixture
async def api(expense_definition) -> WorkflowAPI:
    api = WorkflowAPI(InMemoryWorkflowRepository())
    api.engine.register_guard("is_manager", lambda ctx, _: ctx.get_data("role") == "manager")
    await api.register_workflow(expense_definition)
    return api


@pytest.mark.asyncio
async def test_expense_happy_path(api):
    instance = await api.start_workflow("expense_approval", {"amount": 50, "role": "manager"}, "alice")
    assert instance.status == WorkflowStatus.RUNNING
    assert instance.current_state == "draft"

    await api.execute_transition(instance.id, "submit", triggered_by="alice")
    assert await api.get_available_transitions(instance.id) == ["approve", "reject"]
    assert await api.can_execute_transition(instance.id, "approve")

    done = await api.execute_transition(instance.id, "approve", triggered_by="bob")
    assert done.status == WorkflowStatus.COMPLETED

    stored = await api.get_workflow_status(instance.id)
    assert stored.status == WorkflowStatus.COMPLETED
    assert stored.current_state == "approved"
    assert stored.completed_by == "bob"
    assert [(h.from_state, h.to_state) for h in stored.history] == [
        ("draft", "review"),
        ("review", "approved"),
    ]

    with pytest.raises(InvalidLifecycleError):
        await api.execute_transition(instance.id, "reject")


@pytest.mark.asyncio
async def test_guard_rejection_leaves_stored_instance_untouched(api):
    instance = await api.start_workflow("expense_approval", {"role": "clerk"})
    await api.execute_transition(instance.id, "submit")
    assert not await api.can_execute_transition(instance.id, "approve")

    with pytest.raises(GuardRejectedError):
        await api.execute_transition(instance.id, "approve")

    stored = await api.get_workflow_status(instance.id)
    assert stored.current_state == "review"
    assert stored.status == WorkflowStatus.RUNNING
    assert len(stored.history) == 1


@pytest.mark.asyncio
async def test_failing_action_is_persisted_then_raised():
    definition = WorkflowDefinition(
        id="notify",
        name="Notify",
        version="1",
        initial_state="a",
        states={
            "a": StateConfig(name="a", initial=True, transitions={"go": {"target": "b"}}),
            "b": StateConfig(name="b", on_enter=["send_mail"], transitions={"done": {"target": "c"}}),
            "c": StateConfig(name="c", final=True),
        },
    )
    api = WorkflowAPI(InMemoryWorkflowRepository())

    def send_mail(ctx, _):
        raise RuntimeError("smtp down")

    api.engine.register_action("send_mail", send_mail)
    await api.register_workflow(definition)
    instance = await api.start_workflow("notify")

    with pytest.raises(RuntimeError, match="smtp down"):
        await api.execute_transition(instance.id, "go")

    stored = await api.get_workflow_status(instance.id)
    assert stored.current_state == "b"
    assert [h.transition for h in stored.history] == ["go"]


@pytest.mark.asyncio
async def test_abort_workflow(api):
    instance = await api.start_workflow("expense_approval")
    aborted = await api.abort_workflow(instance.id, aborted_by="admin")
    assert aborted.status == WorkflowStatus.ABORTED

    stored = await api.get_workflow_status(instance.id)
    assert stored.status == WorkflowStatus.ABORTED
    assert stored.aborted_at is not None

    with pytest.raises(InvalidLifecycleError):
        await api.abort_workflow(instance.id)


@pytest.mark.asyncio
async def test_query_workflows(api):
    first = await api.start_workflow("expense_approval", started_by="alice")
    second = await api.start_workflow("expense_approval", started_by="bob")
    await api.abort_workflow(second.id)

    running = await api.query_workflows(status=WorkflowStatus.RUNNING)
    assert [i.id for i in running] == [first.id]

    by_bob = await api.query_workflows(InstanceQuery(started_by="bob"))
    assert [i.id for i in by_bob] == [second.id]

    assert len(await api.query_workflows(workflow_id="expense_approval")) == 2


@pytest.mark.asyncio
async def test_missing_definition_and_instance(api, routing_flow):
    with pytest.raises(DefinitionNotFoundError):
        await api.start_workflow("unknown")
    with pytest.raises(DefinitionNotFoundError):
        await api.start_workflow("expense_approval", version="9.9.9")
    with pytest.raises(InstanceNotFoundError):
        await api.execute_transition("wf_missing", "submit")
    with pytest.raises(InstanceNotFoundError):
        await api.get_available_transitions("wf_missing")
    assert await api.get_workflow_status("wf_missing") is None

    # Flows are not startable as state machines, and vice versa.
    await api.register_workflow(routing_flow)
    with pytest.raises(DefinitionNotFoundError):
        await api.start_workflow("order_routing")
    with pytest.raises(DefinitionNotFoundError):
        await api.run_flow("expense_approval")


@pytest.mark.asyncio
async def test_register_workflow_validates(api, expense_definition):
    broken = expense_definition.model_copy(update={"initial_state": "nowhere"})
    with pytest.raises(WorkflowParseError) as exc_info:
        await api.register_workflow(broken)
    assert 'Initial state "nowhere" does not exist' in exc_info.value.errors

    assert (await api.get_workflow("expense_approval")).initial_state == "draft"
    assert [d.id for d in await api.list_workflows()] == ["expense_approval"]


@pytest.mark.asyncio
async def test_run_flow_persists_outcome(api, routing_flow):
    await api.register_workflow(routing_flow)

    result = await api.run_flow("order_routing", {"amount": 2500}, started_by="carol")
    assert result.success
    assert result.variables["route"] == "manual"

    stored = await api.get_workflow_status(result.instance.id)
    assert stored.status == WorkflowStatus.COMPLETED
    assert stored.current_state == "end"
    assert stored.started_by == "carol"


@pytest.mark.asyncio
async def test_failed_flow_is_persisted():
    api = WorkflowAPI(InMemoryWorkflowRepository())
    flow = Flow(
        name="Broken",
        nodes=[
            FlowNode(id="start", type="start"),
            FlowNode(id="call", type="http_request"),
            FlowNode(id="end", type="end"),
        ],
        edges=[
            {"source": "start", "target": "call"},
            {"source": "call", "target": "end"},
        ],
    )

    async def failing(node, context):
        raise RuntimeError("connection refused")

    api.flow_engine.register_handler("http_request", failing)
    await api.register_workflow(flow)

    result = await api.run_flow("broken")
    assert not result.success

    stored = await api.get_workflow_status(result.instance.id)
    assert stored.status == WorkflowStatus.FAILED
    assert "connection refused" in stored.error


@pytest.mark.asyncio
async def test_task_passthroughs(api):
    instance = await api.start_workflow("expense_approval")
    task = await api.create_task("approve", instance_id=instance.id, assigned_to="mgr")

    await api.delegate_task(task.id, "deputy", "mgr", "holiday")
    await api.escalate_task(task.id, "director", "overdue")
    completed = await api.complete_task(task.id, {"approved": True})

    assert completed.status == TaskStatus.COMPLETED
    assert completed.effective_assignee == "director"
    assert (await api.get_task(task.id)).result == {"approved": True}
    assert [t.id for t in await api.get_instance_tasks(instance.id)] == [task.id]

    other = await api.create_task("second", instance_id=instance.id)
    rejected = await api.reject_task(other.id)
    assert rejected.status == TaskStatus.REJECTED


@pytest.mark.asyncio
async def test_approval_chain_through_api(api):
    instance = await api.start_workflow("expense_approval")
    chain = ApprovalChain(
        levels=[ApprovalLevel(level=1, approver="mgr"), ApprovalLevel(level=2, approver="cfo")]
    )
    tasks = await api.approvals.create_approval_chain(instance.id, chain, "expense")
    for task in tasks:
        await api.complete_task(task.id)

    assert await api.approvals.is_approval_chain_complete(instance.id)
    assert len(await api.get_instance_tasks(instance.id)) == 2
