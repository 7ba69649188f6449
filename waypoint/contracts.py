"""Core data contracts for waypoint definitions, instances and tasks."""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id(prefix: str) -> str:
    """Return a unique identifier such as ``wf_3f2a...``."""
    return f"{prefix}_{uuid.uuid4().hex}"


def slugify(name: str) -> str:
    """Derive a definition id from a human readable name."""
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")


class WorkflowStatus(str, Enum):
    """Lifecycle of a workflow instance."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            WorkflowStatus.COMPLETED,
            WorkflowStatus.ABORTED,
            WorkflowStatus.FAILED,
        )


class TaskStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    REJECTED = "rejected"


class WorkflowType(str, Enum):
    APPROVAL = "approval"
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"


class FlowNodeType(str, Enum):
    """Built-in flow node types. Custom types are plain strings."""

    START = "start"
    END = "end"
    DECISION = "decision"
    ASSIGNMENT = "assignment"
    LOOP = "loop"
    CREATE_RECORD = "create_record"
    UPDATE_RECORD = "update_record"
    DELETE_RECORD = "delete_record"
    GET_RECORD = "get_record"
    HTTP_REQUEST = "http_request"
    SCRIPT = "script"
    WAIT = "wait"
    SUBFLOW = "subflow"
    CONNECTOR_ACTION = "connector_action"


# ---------------------------------------------------------------------------
# State machine definitions


class GuardConfig(BaseModel):
    """Inline guard reference: ``{type: greaterThan, params: {value: 10}}``."""

    model_config = ConfigDict(frozen=True)

    type: str
    params: Any = None


class ActionConfig(BaseModel):
    """Inline action reference: ``{type: notify, params: {to: mgr}}``."""

    model_config = ConfigDict(frozen=True)

    type: str
    params: Any = None


GuardRef = Union[str, GuardConfig]
ActionRef = Union[str, ActionConfig]


def ref_name(ref: Union[GuardRef, ActionRef]) -> str:
    """Return the registry name a guard/action reference points at."""
    return ref if isinstance(ref, str) else ref.type


def ref_params(ref: Union[GuardRef, ActionRef]) -> Any:
    return None if isinstance(ref, str) else ref.params


class TransitionConfig(BaseModel):
    """A named edge out of a state."""

    model_config = ConfigDict(frozen=True)

    target: str = Field(..., min_length=1)
    guards: List[GuardRef] = Field(default_factory=list)
    actions: List[ActionRef] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class StateConfig(BaseModel):
    """A state of a state-machine workflow."""

    model_config = ConfigDict(frozen=True)

    name: str
    initial: bool = False
    final: bool = False
    on_enter: List[ActionRef] = Field(default_factory=list)
    on_exit: List[ActionRef] = Field(default_factory=list)
    transitions: Dict[str, TransitionConfig] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class WorkflowDefinition(BaseModel):
    """Immutable state-machine workflow template."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["state_machine"] = "state_machine"
    id: str
    name: str
    version: str = "1.0.0"
    type: WorkflowType = WorkflowType.SEQUENTIAL
    description: Optional[str] = None
    states: Dict[str, StateConfig]
    initial_state: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def get_state(self, name: str) -> Optional[StateConfig]:
        return self.states.get(name)

    def get_final_states(self) -> List[str]:
        return [name for name, state in self.states.items() if state.final]


# ---------------------------------------------------------------------------
# Flow definitions


class FlowNode(BaseModel):
    """A typed node in a flow graph.

    ``config`` is interpreted by the handler registered for ``type``.
    ``position`` carries editor layout data and has no execution meaning.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    type: str
    label: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    position: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def _default_label(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("label") and data.get("id"):
            data = {**data, "label": data["id"]}
        return data


class FlowEdge(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    source: str
    target: str
    condition: Optional[str] = None
    label: Optional[str] = None


class Flow(BaseModel):
    """Immutable graph workflow template."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["flow"] = "flow"
    id: str = ""
    name: str
    label: Optional[str] = None
    description: Optional[str] = None
    type: str = "autolaunched"
    version: str = "1"
    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if not data.get("id") and data.get("name"):
            data["id"] = slugify(data["name"])
        if "version" in data and data["version"] is not None:
            data["version"] = str(data["version"])
        return data

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        return next((n for n in self.nodes if n.id == node_id), None)

    def outgoing(self, node_id: str) -> List[FlowEdge]:
        return [e for e in self.edges if e.source == node_id]

    def start_node(self) -> Optional[FlowNode]:
        """Return the ``start`` node, or the first node when none is tagged."""
        for node in self.nodes:
            if node.type == FlowNodeType.START:
                return node
        return self.nodes[0] if self.nodes else None


Definition = Annotated[Union[WorkflowDefinition, Flow], Field(discriminator="kind")]
DEFINITION_ADAPTER: TypeAdapter[Union[WorkflowDefinition, Flow]] = TypeAdapter(Definition)


# ---------------------------------------------------------------------------
# Runtime records


class StateHistoryEntry(BaseModel):
    """Immutable record of one state/node hop."""

    model_config = ConfigDict(frozen=True)

    from_state: str
    to_state: str
    transition: str
    timestamp: datetime = Field(default_factory=utcnow)
    triggered_by: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class WorkflowInstance(BaseModel):
    """One execution of a definition. Mutated in place by the engines."""

    id: str = Field(default_factory=lambda: new_id("wf"))
    workflow_id: str
    version: str
    current_state: str
    status: WorkflowStatus = WorkflowStatus.PENDING
    data: Dict[str, Any] = Field(default_factory=dict)
    history: List[StateHistoryEntry] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    aborted_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    started_by: Optional[str] = None
    completed_by: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class WorkflowTask(BaseModel):
    """Human work item attached to a workflow instance."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: new_id("task"))
    instance_id: Optional[str] = None
    name: str = ""
    description: Optional[str] = None
    assigned_to: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    data: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    due_date: Optional[datetime] = None
    auto_escalate: bool = False
    escalation_target: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    # Delegation audit trail
    original_assignee: Optional[str] = None
    delegated_to: Optional[str] = None
    delegated_by: Optional[str] = None
    delegated_at: Optional[datetime] = None
    delegation_reason: Optional[str] = None

    # Escalation audit trail
    escalated_to: Optional[str] = None
    escalated_by: Optional[str] = None
    escalated_at: Optional[datetime] = None
    escalation_reason: Optional[str] = None

    @field_validator("due_date")
    @classmethod
    def normalise_due_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None

    @property
    def effective_assignee(self) -> Optional[str]:
        return self.escalated_to or self.delegated_to or self.assigned_to


class ApprovalLevel(BaseModel):
    level: int
    approver: str
    description: Optional[str] = None
    required: bool = True
    escalation_target: Optional[str] = None
    escalation_timeout: Optional[float] = Field(
        default=None, ge=0, description="Seconds until the level is overdue"
    )


class ApprovalChain(BaseModel):
    levels: List[ApprovalLevel] = Field(default_factory=list)


class InstanceQuery(BaseModel):
    """Filter, sort and pagination options for instance queries."""

    workflow_id: Optional[str] = None
    status: Optional[Union[WorkflowStatus, List[WorkflowStatus]]] = None
    started_by: Optional[str] = None
    sort_by: Optional[Literal["created_at", "started_at", "completed_at"]] = None
    sort_order: Literal["asc", "desc"] = "desc"
    skip: int = Field(default=0, ge=0)
    limit: Optional[int] = Field(default=None, ge=0)

    def statuses(self) -> List[WorkflowStatus]:
        if self.status is None:
            return []
        return self.status if isinstance(self.status, list) else [self.status]

    def matches(self, instance: WorkflowInstance) -> bool:
        if self.workflow_id and instance.workflow_id != self.workflow_id:
            return False
        statuses = self.statuses()
        if statuses and instance.status not in statuses:
            return False
        if self.started_by and instance.started_by != self.started_by:
            return False
        return True

    def apply(self, instances: List[WorkflowInstance]) -> List[WorkflowInstance]:
        """Filter, sort and paginate ``instances``."""
        results = [i for i in instances if self.matches(i)]

        if self.sort_by:
            key = self.sort_by
            present = [i for i in results if getattr(i, key) is not None]
            missing = [i for i in results if getattr(i, key) is None]
            present.sort(key=lambda i: getattr(i, key), reverse=self.sort_order == "desc")
            # Instances lacking the sort field go first when descending.
            results = missing + present if self.sort_order == "desc" else present + missing

        results = results[self.skip :]
        if self.limit is not None:
            results = results[: self.limit]
        return results
