"""Repository abstraction for definitions, instances and tasks."""

from __future__ import annotations

from typing import Optional, Protocol, Union

from ..contracts import (
    Flow,
    InstanceQuery,
    TaskStatus,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowTask,
)

StoredDefinition = Union[WorkflowDefinition, Flow]


class WorkflowRepository(Protocol):
    """Protocol for workflow persistence backends.

    Backends hand out copies: mutating a returned object never changes what
    is stored until it is written back with ``update_*``.
    """

    async def save_definition(self, definition: StoredDefinition) -> None:
        """Store a definition under its ``(id, version)``."""

    async def get_definition(
        self, definition_id: str, version: Optional[str] = None
    ) -> StoredDefinition | None:
        """Fetch a definition; the most recently saved version when omitted."""

    async def list_definitions(self) -> list[StoredDefinition]:
        """Return the latest saved version of each definition."""

    async def save_instance(self, instance: WorkflowInstance) -> None:
        """Persist a new instance."""

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve an instance by id."""

    async def update_instance(self, instance: WorkflowInstance) -> None:
        """Overwrite a stored instance. Raises ``InstanceNotFoundError``."""

    async def query_instances(self, query: InstanceQuery) -> list[WorkflowInstance]:
        """Filter, sort and paginate stored instances."""

    async def save_task(self, task: WorkflowTask) -> None:
        """Persist a new task."""

    async def get_task(self, task_id: str) -> WorkflowTask | None:
        """Retrieve a task by id."""

    async def update_task(self, task: WorkflowTask) -> None:
        """Overwrite a stored task. Raises ``TaskNotFoundError``."""

    async def get_instance_tasks(self, instance_id: str) -> list[WorkflowTask]:
        """Return the tasks attached to an instance in creation order."""

    async def list_tasks(self, status: Optional[TaskStatus] = None) -> list[WorkflowTask]:
        """Return all tasks, optionally only those in ``status``."""
