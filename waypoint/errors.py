"""Exception taxonomy for waypoint engines and services."""

from __future__ import annotations

from typing import Optional


class WaypointError(Exception):
    """Base class for all waypoint errors."""


class InvalidLifecycleError(WaypointError):
    """Operation attempted against an instance in the wrong status."""

    def __init__(self, message: str, status: Optional[str] = None) -> None:
        super().__init__(message)
        self.status = status


class InvalidTaskStateError(InvalidLifecycleError):
    """Operation attempted against a task that is no longer pending."""


class UnknownTransitionError(WaypointError, LookupError):
    """The current state has no transition with the requested name."""

    def __init__(self, transition: str, state: str) -> None:
        super().__init__(
            f'Transition "{transition}" not available in state "{state}"'
        )
        self.transition = transition
        self.state = state


class NodeNotFoundError(WaypointError, LookupError):
    """A flow refers to a node id that does not exist."""

    def __init__(self, node_id: str) -> None:
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


class GuardRejectedError(WaypointError):
    """A guard evaluated false or could not be resolved."""

    def __init__(self, transition: str, guard: Optional[str] = None) -> None:
        message = f'Transition "{transition}" blocked by guard conditions'
        if guard:
            message += f" ({guard})"
        super().__init__(message)
        self.transition = transition
        self.guard = guard


class HandlerFailedError(WaypointError):
    """A flow node handler reported a failure."""

    def __init__(self, node_id: str, message: str) -> None:
        super().__init__(message)
        self.node_id = node_id


class UnregisteredHandlerError(WaypointError):
    """A node type configured as required has no registered handler."""

    def __init__(self, node_type: str, node_id: str) -> None:
        super().__init__(
            f'No handler registered for required node type "{node_type}" (node {node_id})'
        )
        self.node_type = node_type
        self.node_id = node_id


class TraversalLimitExceededError(WaypointError):
    """Flow traversal visited more nodes than the configured bound."""

    def __init__(self, max_nodes: int) -> None:
        super().__init__(
            f"max node limit exceeded ({max_nodes} nodes) - possible infinite loop"
        )
        self.max_nodes = max_nodes


class WorkflowParseError(WaypointError, ValueError):
    """A textual definition could not be parsed or failed validation."""

    def __init__(self, message: str, errors: Optional[list[str]] = None) -> None:
        super().__init__(message)
        self.errors = errors or [message]


class DefinitionNotFoundError(WaypointError, LookupError):
    """No definition stored under the requested id/version."""


class InstanceNotFoundError(WaypointError, LookupError):
    """No instance stored under the requested id."""


class TaskNotFoundError(WaypointError, LookupError):
    """No task stored under the requested id."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class UnknownStateError(WaypointError, LookupError):
    """An instance points at a state its definition does not declare."""

    def __init__(self, state: str, workflow_id: str) -> None:
        super().__init__(f'State "{state}" does not exist in workflow {workflow_id}')
        self.state = state
        self.workflow_id = workflow_id
