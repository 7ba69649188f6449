"""Storage-backed facade over the workflow engines and approval service.

Every operation reads the instance from the repository, lets an engine
mutate it and writes it back. Operations on one instance must be serialised
by the caller; the facade performs no locking.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .approval import ApprovalService
from .config import WaypointConfig, load_config
from .contracts import (
    Flow,
    FlowNodeType,
    InstanceQuery,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowTask,
)
from .engine import WorkflowEngine
from .errors import DefinitionNotFoundError, InstanceNotFoundError, WorkflowParseError
from .flow import FlowEngine, FlowExecutionResult, HttpRequestHandler, validate_flow
from .parser import validate_workflow_definition
from .persistence import StoredDefinition, WorkflowRepository, get_repository

logger = logging.getLogger(__name__)


class WorkflowAPI:
    """High level entry point for registering and running workflows.

    Example:
        ```python
        api = WorkflowAPI(InMemoryWorkflowRepository())
        await api.register_workflow(definition)
        instance = await api.start_workflow("expense_approval", {"amount": 50}, "alice")
        await api.execute_transition(instance.id, "submit", triggered_by="alice")
        ```
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        engine: Optional[WorkflowEngine] = None,
        flow_engine: Optional[FlowEngine] = None,
    ) -> None:
        self.repository = repository
        self.engine = engine or WorkflowEngine()
        self.flow_engine = flow_engine or FlowEngine()
        self.approvals = ApprovalService(repository)

    @classmethod
    def from_config(
        cls,
        config: Optional[WaypointConfig] = None,
        repository: Optional[WorkflowRepository] = None,
    ) -> "WorkflowAPI":
        """Build an API wired to the configured repository and flow settings."""
        config = config or load_config()
        repository = repository or get_repository(config=config)
        flow_engine = FlowEngine(
            max_nodes=config.flow.max_nodes,
            required_handlers=config.flow.required_handlers,
        )
        flow_engine.register_handler(
            FlowNodeType.HTTP_REQUEST.value,
            HttpRequestHandler(timeout=config.flow.http_timeout),
        )
        return cls(repository, flow_engine=flow_engine)

    # ------------------------------------------------------------------
    # Definitions
    async def register_workflow(self, definition: StoredDefinition) -> StoredDefinition:
        """Validate and store a definition.

        Raises:
            WorkflowParseError: The definition is structurally invalid.
        """
        if isinstance(definition, Flow):
            errors = validate_flow(definition)
        else:
            errors = validate_workflow_definition(definition)
        if errors:
            raise WorkflowParseError(errors[0], errors)

        await self.repository.save_definition(definition)
        logger.info(f"Registered {definition.kind} '{definition.id}' v{definition.version}")
        return definition

    async def get_workflow(
        self, workflow_id: str, version: Optional[str] = None
    ) -> StoredDefinition | None:
        return await self.repository.get_definition(workflow_id, version)

    async def list_workflows(self) -> List[StoredDefinition]:
        return await self.repository.list_definitions()

    # ------------------------------------------------------------------
    # State machine instances
    async def start_workflow(
        self,
        workflow_id: str,
        data: Optional[Dict[str, Any]] = None,
        started_by: Optional[str] = None,
        version: Optional[str] = None,
    ) -> WorkflowInstance:
        definition = await self._state_machine(workflow_id, version)
        instance = self.engine.create_instance(definition, data, started_by=started_by)
        await self.repository.save_instance(instance)
        try:
            await self.engine.start_instance(instance, definition)
        finally:
            await self.repository.update_instance(instance)
        return instance

    async def get_workflow_status(self, instance_id: str) -> WorkflowInstance | None:
        return await self.repository.get_instance(instance_id)

    async def execute_transition(
        self,
        instance_id: str,
        transition_name: str,
        triggered_by: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> WorkflowInstance:
        """Fire a transition and persist the result.

        When an action raises, the partially mutated instance is stored
        before the error propagates so a re-fetch shows where it stopped.
        """
        instance = await self._instance(instance_id)
        definition = await self._state_machine(instance.workflow_id, instance.version)
        try:
            await self.engine.execute_transition(
                instance, definition, transition_name, triggered_by=triggered_by, data=data
            )
        finally:
            await self.repository.update_instance(instance)
        return instance

    async def abort_workflow(
        self, instance_id: str, aborted_by: Optional[str] = None
    ) -> WorkflowInstance:
        instance = await self._instance(instance_id)
        definition = await self._state_machine(instance.workflow_id, instance.version)
        try:
            await self.engine.abort_instance(instance, definition, aborted_by=aborted_by)
        finally:
            await self.repository.update_instance(instance)
        return instance

    async def query_workflows(
        self,
        query: Optional[InstanceQuery] = None,
        **filters: Any,
    ) -> List[WorkflowInstance]:
        """Query instances with an ``InstanceQuery`` or its fields as keywords."""
        query = query or InstanceQuery(**filters)
        return await self.repository.query_instances(query)

    async def get_available_transitions(self, instance_id: str) -> List[str]:
        instance = await self._instance(instance_id)
        definition = await self._state_machine(instance.workflow_id, instance.version)
        return self.engine.get_available_transitions(instance, definition)

    async def can_execute_transition(self, instance_id: str, transition_name: str) -> bool:
        instance = await self._instance(instance_id)
        definition = await self._state_machine(instance.workflow_id, instance.version)
        return await self.engine.can_execute_transition(instance, definition, transition_name)

    # ------------------------------------------------------------------
    # Flows
    async def run_flow(
        self,
        flow_id: str,
        variables: Optional[Dict[str, Any]] = None,
        started_by: Optional[str] = None,
        version: Optional[str] = None,
    ) -> FlowExecutionResult:
        definition = await self.repository.get_definition(flow_id, version)
        if not isinstance(definition, Flow):
            raise DefinitionNotFoundError(f"Flow not found: {flow_id}")

        instance = self.flow_engine.create_instance(definition, variables, started_by=started_by)
        await self.repository.save_instance(instance)
        try:
            result = await self.flow_engine.execute(definition, instance, variables)
        finally:
            await self.repository.update_instance(instance)
        return result

    # ------------------------------------------------------------------
    # Tasks
    async def create_task(self, name: str, **kwargs: Any) -> WorkflowTask:
        return await self.approvals.create_task(name, **kwargs)

    async def get_task(self, task_id: str) -> WorkflowTask | None:
        return await self.repository.get_task(task_id)

    async def get_instance_tasks(self, instance_id: str) -> List[WorkflowTask]:
        return await self.repository.get_instance_tasks(instance_id)

    async def complete_task(
        self, task_id: str, result: Optional[Dict[str, Any]] = None
    ) -> WorkflowTask:
        return await self.approvals.complete_task(task_id, result)

    async def reject_task(
        self, task_id: str, result: Optional[Dict[str, Any]] = None
    ) -> WorkflowTask:
        return await self.approvals.reject_task(task_id, result)

    async def delegate_task(
        self,
        task_id: str,
        delegate_to: str,
        delegated_by: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> WorkflowTask:
        return await self.approvals.delegate_task(task_id, delegate_to, delegated_by, reason)

    async def escalate_task(
        self,
        task_id: str,
        escalate_to: str,
        reason: Optional[str] = None,
        escalated_by: Optional[str] = None,
    ) -> WorkflowTask:
        return await self.approvals.escalate_task(task_id, escalate_to, reason, escalated_by)

    # ------------------------------------------------------------------
    async def _instance(self, instance_id: str) -> WorkflowInstance:
        instance = await self.repository.get_instance(instance_id)
        if instance is None:
            raise InstanceNotFoundError(f"Workflow instance not found: {instance_id}")
        return instance

    async def _state_machine(
        self, workflow_id: str, version: Optional[str] = None
    ) -> WorkflowDefinition:
        definition = await self.repository.get_definition(workflow_id, version)
        if not isinstance(definition, WorkflowDefinition):
            label = f"{workflow_id} v{version}" if version else workflow_id
            raise DefinitionNotFoundError(f"Workflow definition not found: {label}")
        return definition
