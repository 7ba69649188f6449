"""Waypoint: state-machine and flow-graph workflow execution."""

from .api import WorkflowAPI
from .approval import ApprovalService
from .config import WaypointConfig, load_config
from .context import DataAccessor, WorkflowContext
from .contracts import (
    ApprovalChain,
    ApprovalLevel,
    Flow,
    FlowEdge,
    FlowNode,
    FlowNodeType,
    InstanceQuery,
    StateConfig,
    TransitionConfig,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStatus,
    WorkflowTask,
)
from .engine import WorkflowEngine
from .flow import FlowEngine, FlowExecutionResult, FlowNodeResult
from .parser import WorkflowParser
from .persistence import get_repository

__version__ = "0.1.0"
__all__ = [
    "ApprovalChain",
    "ApprovalLevel",
    "ApprovalService",
    "DataAccessor",
    "Flow",
    "FlowEdge",
    "FlowEngine",
    "FlowExecutionResult",
    "FlowNode",
    "FlowNodeResult",
    "FlowNodeType",
    "InstanceQuery",
    "StateConfig",
    "TransitionConfig",
    "WaypointConfig",
    "WorkflowAPI",
    "WorkflowContext",
    "WorkflowDefinition",
    "WorkflowEngine",
    "WorkflowInstance",
    "WorkflowParser",
    "WorkflowStatus",
    "WorkflowTask",
    "get_repository",
    "load_config",
]
