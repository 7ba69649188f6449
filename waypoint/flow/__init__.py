"""Graph flow execution: engine, handlers, conditions and conversion."""

from .conditions import evaluate_condition
from .converter import flow_to_legacy, legacy_to_flow, unreachable_nodes, validate_flow
from .engine import (
    DEFAULT_MAX_NODES,
    FlowEngine,
    FlowExecutionContext,
    FlowExecutionResult,
    NodeHandler,
)
from .handlers import DEFAULT_HANDLERS, FlowNodeResult, HttpRequestHandler

__all__ = [
    "DEFAULT_HANDLERS",
    "DEFAULT_MAX_NODES",
    "FlowEngine",
    "FlowExecutionContext",
    "FlowExecutionResult",
    "FlowNodeResult",
    "HttpRequestHandler",
    "NodeHandler",
    "evaluate_condition",
    "flow_to_legacy",
    "legacy_to_flow",
    "unreachable_nodes",
    "validate_flow",
]
