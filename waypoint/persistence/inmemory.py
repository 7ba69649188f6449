"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict, Optional

from ..contracts import InstanceQuery, TaskStatus, WorkflowInstance, WorkflowTask
from ..errors import InstanceNotFoundError, TaskNotFoundError
from .repository import StoredDefinition, WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Instances and tasks are deep-copied
    on the way in and out so callers never alias stored objects.
    """

    def __init__(self) -> None:
        self._definitions: Dict[str, Dict[str, StoredDefinition]] = {}
        self._latest: Dict[str, str] = {}
        self._instances: Dict[str, WorkflowInstance] = {}
        self._tasks: Dict[str, WorkflowTask] = {}

    # ------------------------------------------------------------------
    # Definitions are frozen models and can be shared safely.
    async def save_definition(self, definition: StoredDefinition) -> None:
        self._definitions.setdefault(definition.id, {})[definition.version] = definition
        self._latest[definition.id] = definition.version

    async def get_definition(
        self, definition_id: str, version: Optional[str] = None
    ) -> StoredDefinition | None:
        versions = self._definitions.get(definition_id)
        if not versions:
            return None
        return versions.get(version or self._latest[definition_id])

    async def list_definitions(self) -> list[StoredDefinition]:
        return [
            self._definitions[definition_id][version]
            for definition_id, version in self._latest.items()
        ]

    # ------------------------------------------------------------------
    async def save_instance(self, instance: WorkflowInstance) -> None:
        self._instances[instance.id] = instance.model_copy(deep=True)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        instance = self._instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    async def update_instance(self, instance: WorkflowInstance) -> None:
        if instance.id not in self._instances:
            raise InstanceNotFoundError(f"Workflow instance not found: {instance.id}")
        self._instances[instance.id] = instance.model_copy(deep=True)

    async def query_instances(self, query: InstanceQuery) -> list[WorkflowInstance]:
        return [i.model_copy(deep=True) for i in query.apply(list(self._instances.values()))]

    # ------------------------------------------------------------------
    async def save_task(self, task: WorkflowTask) -> None:
        self._tasks[task.id] = task.model_copy(deep=True)

    async def get_task(self, task_id: str) -> WorkflowTask | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def update_task(self, task: WorkflowTask) -> None:
        if task.id not in self._tasks:
            raise TaskNotFoundError(task.id)
        self._tasks[task.id] = task.model_copy(deep=True)

    async def get_instance_tasks(self, instance_id: str) -> list[WorkflowTask]:
        return [
            t.model_copy(deep=True)
            for t in self._tasks.values()
            if t.instance_id == instance_id
        ]

    async def list_tasks(self, status: Optional[TaskStatus] = None) -> list[WorkflowTask]:
        return [
            t.model_copy(deep=True)
            for t in self._tasks.values()
            if status is None or t.status == status
        ]
