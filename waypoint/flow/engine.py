"""Flow execution engine.

Walks a flow graph from its start node, running the handler registered
for each node type and following outgoing edges until an ``end`` node, a
dead end, a failure or the traversal bound.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set, Union

from ..contracts import (
    Flow,
    FlowNode,
    FlowNodeType,
    StateHistoryEntry,
    WorkflowInstance,
    WorkflowStatus,
    utcnow,
)
from ..errors import (
    HandlerFailedError,
    InvalidLifecycleError,
    NodeNotFoundError,
    TraversalLimitExceededError,
    UnregisteredHandlerError,
)
from ..utils.calls import maybe_await
from .conditions import evaluate_condition
from .handlers import DEFAULT_HANDLERS, FlowNodeResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_NODES = 500


@dataclass
class FlowExecutionContext:
    """State shared by the node handlers of one ``execute`` call."""

    flow: Flow
    instance: WorkflowInstance
    variables: Dict[str, Any]
    logger: logging.Logger | logging.LoggerAdapter


NodeHandler = Callable[
    [FlowNode, FlowExecutionContext],
    Union[FlowNodeResult, None, Awaitable[Optional[FlowNodeResult]]],
]


@dataclass
class FlowExecutionResult:
    success: bool
    instance: WorkflowInstance
    variables: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    exception: Optional[BaseException] = None
    nodes_visited: int = 0


class FlowEngine:
    """Batch interpreter for flow graphs.

    Unlike the state machine engine, ``execute`` runs an instance to
    completion or failure in one call. Node types without a registered
    handler succeed as no-ops unless listed in ``required_handlers``.
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        max_nodes: int = DEFAULT_MAX_NODES,
        required_handlers: Optional[Iterable[str]] = None,
    ) -> None:
        if max_nodes < 1:
            raise ValueError("max_nodes must be at least 1")
        self.logger = logger or logging.getLogger(__name__)
        self.max_nodes = max_nodes
        self.required_handlers: Set[str] = set(required_handlers or ())
        self._handlers: Dict[str, NodeHandler] = dict(DEFAULT_HANDLERS)

    def register_handler(self, node_type: str, handler: NodeHandler) -> None:
        self._handlers[str(node_type)] = handler

    def has_handler(self, node_type: str) -> bool:
        return str(node_type) in self._handlers

    def missing_handlers(self, flow: Flow) -> List[str]:
        """Node types used by ``flow`` that have no registered handler."""
        missing: List[str] = []
        for node in flow.nodes:
            if node.type not in self._handlers and node.type not in missing:
                missing.append(node.type)
        return missing

    def create_instance(
        self,
        flow: Flow,
        data: Optional[Dict[str, Any]] = None,
        started_by: Optional[str] = None,
    ) -> WorkflowInstance:
        start = flow.start_node()
        return WorkflowInstance(
            workflow_id=flow.id,
            version=flow.version,
            current_state=start.id if start else "",
            data=dict(data or {}),
            started_by=started_by,
        )

    async def execute(
        self,
        flow: Flow,
        instance: WorkflowInstance,
        initial_variables: Optional[Dict[str, Any]] = None,
    ) -> FlowExecutionResult:
        """Run ``instance`` through ``flow`` until it finishes.

        Handler failures, missing nodes and the traversal bound mark the
        instance ``failed`` and are reported on the result rather than
        raised.

        Raises:
            InvalidLifecycleError: The instance is already terminal.
        """
        if instance.status.is_terminal:
            raise InvalidLifecycleError(
                f"Cannot execute flow on workflow in status: {instance.status.value}",
                status=instance.status.value,
            )

        instance.status = WorkflowStatus.RUNNING
        if instance.started_at is None:
            instance.started_at = utcnow()

        context = FlowExecutionContext(
            flow=flow,
            instance=instance,
            variables={**flow.variables, **(initial_variables or {})},
            logger=self.logger,
        )
        node_map = {node.id: node for node in flow.nodes}

        current_id: Optional[str] = instance.current_state
        visited = 0

        try:
            while current_id and visited < self.max_nodes:
                node = node_map.get(current_id)
                if node is None:
                    raise NodeNotFoundError(current_id)

                visited += 1
                result = await self._run_handler(node, context)

                if not result.success:
                    error = HandlerFailedError(
                        node.id, result.error or f"Node {node.id} failed"
                    )
                    return self._fail(instance, context, error, visited)

                if result.output:
                    context.variables.update(result.output)

                if node.type == FlowNodeType.END:
                    return self._complete(instance, context, node.id, visited)

                next_id = self.resolve_next_node(flow, node, context.variables, result.next_edge)
                if next_id is None:
                    self.logger.debug(f"Node {node.id} has no outgoing edges; completing")
                    return self._complete(instance, context, node.id, visited)

                instance.history.append(
                    StateHistoryEntry(
                        from_state=node.id,
                        to_state=next_id,
                        transition=f"{node.type}->",
                        triggered_by=instance.started_by,
                    )
                )
                instance.current_state = next_id
                current_id = next_id
        except Exception as exc:
            return self._fail(instance, context, exc, visited)

        if current_id:
            return self._fail(
                instance, context, TraversalLimitExceededError(self.max_nodes), visited
            )
        return self._complete(instance, context, instance.current_state, visited)

    def resolve_next_node(
        self,
        flow: Flow,
        node: FlowNode,
        variables: Dict[str, Any],
        preferred_edge: Optional[str] = None,
    ) -> Optional[str]:
        """Pick the target of the edge to follow out of ``node``."""
        outgoing = flow.outgoing(node.id)
        if not outgoing:
            return None

        if preferred_edge:
            for edge in outgoing:
                if edge.label == preferred_edge:
                    return edge.target

        if node.type == FlowNodeType.DECISION:
            for edge in outgoing:
                if edge.condition and evaluate_condition(edge.condition, variables):
                    return edge.target

        default = next((e for e in outgoing if not e.condition), outgoing[0])
        return default.target

    # ------------------------------------------------------------------
    async def _run_handler(
        self, node: FlowNode, context: FlowExecutionContext
    ) -> FlowNodeResult:
        handler = self._handlers.get(node.type)
        if handler is None:
            if node.type in self.required_handlers:
                raise UnregisteredHandlerError(node.type, node.id)
            self.logger.debug(f"No handler for node type '{node.type}'; skipping {node.id}")
            return FlowNodeResult()
        result = await maybe_await(handler, node, context)
        return result if result is not None else FlowNodeResult()

    def _complete(
        self,
        instance: WorkflowInstance,
        context: FlowExecutionContext,
        node_id: str,
        visited: int,
    ) -> FlowExecutionResult:
        instance.current_state = node_id
        instance.status = WorkflowStatus.COMPLETED
        instance.completed_at = utcnow()
        self.logger.info(
            f"Flow instance {instance.id} completed at node {node_id} "
            f"after {visited} node(s)"
        )
        return FlowExecutionResult(
            success=True,
            instance=instance,
            variables=context.variables,
            nodes_visited=visited,
        )

    def _fail(
        self,
        instance: WorkflowInstance,
        context: FlowExecutionContext,
        exc: BaseException,
        visited: int,
    ) -> FlowExecutionResult:
        instance.status = WorkflowStatus.FAILED
        instance.failed_at = utcnow()
        instance.error = str(exc)
        if isinstance(exc, HandlerFailedError):
            self.logger.warning(f"Flow instance {instance.id} failed at node {exc.node_id}: {exc}")
        else:
            self.logger.error(
                f"Flow instance {instance.id} failed: {exc}",
                exc_info=not isinstance(exc, TraversalLimitExceededError),
            )
        return FlowExecutionResult(
            success=False,
            instance=instance,
            variables=context.variables,
            error=instance.error,
            exception=exc,
            nodes_visited=visited,
        )
