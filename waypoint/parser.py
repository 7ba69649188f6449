"""
Workflow definition parser.

Loads state-machine and flow definitions from YAML, JSON or plain dicts and
validates their structure before any instance can be created from them.

Example YAML (state machine):
```yaml
name: Expense Approval
version: 1.0.0
type: approval

states:
  draft:
    initial: true
    transitions:
      submit: review               # shorthand: bare target
  review:
    on_enter: [notify_reviewer]
    transitions:
      approve:
        target: approved
        guards: [is_manager]
        actions:
          - type: notify
            params: {to: requester}
      reject: rejected
  approved:
    final: true
  rejected:
    final: true
```

A document with a ``nodes`` list is parsed as a flow graph instead.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from .contracts import (
    Flow,
    StateConfig,
    TransitionConfig,
    WorkflowDefinition,
    slugify,
)
from .errors import WorkflowParseError
from .flow.converter import unreachable_nodes, validate_flow

logger = logging.getLogger(__name__)

DEFAULT_VERSION = "1.0.0"

ParsedDefinition = Union[WorkflowDefinition, Flow]


def validate_workflow_definition(definition: WorkflowDefinition) -> List[str]:
    """Return structural problems with ``definition``; empty when valid."""
    errors: List[str] = []

    if not definition.id:
        errors.append("Workflow must have an ID")
    if not definition.name:
        errors.append("Workflow must have a name")
    if not definition.version:
        errors.append("Workflow must have a version")
    if not definition.states:
        errors.append("Workflow must have at least one state")

    if not definition.initial_state:
        errors.append("Workflow must have an initial state")
    elif definition.initial_state not in definition.states:
        errors.append(f'Initial state "{definition.initial_state}" does not exist')

    initial = [name for name, s in definition.states.items() if s.initial]
    if len(initial) > 1:
        errors.append(
            f"Workflow must have exactly one initial state, found: {', '.join(initial)}"
        )

    if definition.states and not definition.get_final_states():
        errors.append("Workflow must have at least one final state")

    for state_name, state in definition.states.items():
        for transition_name, transition in state.transitions.items():
            if transition.target not in definition.states:
                errors.append(
                    f'Invalid transition "{transition_name}" in state "{state_name}": '
                    f'target state "{transition.target}" does not exist'
                )

    return errors


class WorkflowParser:
    """
    Parse and validate workflow definitions.

    Supports:
    - YAML files (.yaml, .yml)
    - JSON files (.json)
    - Direct string and dict parsing

    Every entry point raises ``WorkflowParseError`` on the first structural
    problem; the full list is available on ``error.errors``.
    """

    @staticmethod
    def parse_file(path: Union[str, Path], id: Optional[str] = None) -> ParsedDefinition:
        """
        Parse a definition from file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            WorkflowParseError: If the format is unsupported or the content invalid
        """
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Workflow file not found: {path}")

        content = path.read_text(encoding="utf-8")

        if path.suffix in (".yaml", ".yml"):
            return WorkflowParser.parse_string(content, format="yaml", id=id)
        elif path.suffix == ".json":
            return WorkflowParser.parse_string(content, format="json", id=id)
        else:
            raise WorkflowParseError(f"Unsupported file format: {path.suffix}")

    @staticmethod
    def parse_string(
        content: str, format: str = "yaml", id: Optional[str] = None
    ) -> ParsedDefinition:
        try:
            if format == "yaml":
                data = yaml.safe_load(content)
            elif format == "json":
                data = json.loads(content)
            else:
                raise WorkflowParseError(f"Unsupported format: {format}")
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise WorkflowParseError(f"Invalid {format.upper()} workflow definition: {exc}") from exc

        return WorkflowParser.parse_dict(data, id=id)

    @staticmethod
    def parse_dict(data: Any, id: Optional[str] = None) -> ParsedDefinition:
        if not isinstance(data, dict):
            raise WorkflowParseError("Invalid workflow definition: expected a mapping")
        if "nodes" in data:
            return WorkflowParser._parse_flow(data, id)
        return WorkflowParser._parse_state_machine(data, id)

    @staticmethod
    def validate_file(path: Union[str, Path]) -> tuple[bool, str]:
        """
        Validate a workflow file.

        Returns:
            Tuple of (is_valid, message)
        """
        try:
            definition = WorkflowParser.parse_file(path)
        except FileNotFoundError as e:
            return False, f"File not found: {e}"
        except WorkflowParseError as e:
            return False, f"Invalid workflow: {'; '.join(e.errors)}"
        kind = "flow" if isinstance(definition, Flow) else "workflow"
        return True, f"Valid {kind}: {definition.name} v{definition.version}"

    # ------------------------------------------------------------------
    @staticmethod
    def _parse_state_machine(data: Dict[str, Any], id: Optional[str]) -> WorkflowDefinition:
        name = data.get("name")
        if not name:
            raise WorkflowParseError("Workflow definition must have a name")

        raw_states = data.get("states")
        if not isinstance(raw_states, dict) or not raw_states:
            raise WorkflowParseError("Workflow definition must have at least one state")

        initial = [
            state_name
            for state_name, state in raw_states.items()
            if isinstance(state, dict) and state.get("initial") is True
        ]
        if not initial:
            raise WorkflowParseError("Workflow definition must have an initial state")

        states = {
            state_name: _parse_state(state_name, state or {})
            for state_name, state in raw_states.items()
        }

        try:
            definition = WorkflowDefinition(
                id=id or data.get("id") or slugify(name),
                name=name,
                description=data.get("description"),
                type=data.get("type") or "sequential",
                version=str(data.get("version") or DEFAULT_VERSION),
                states=states,
                initial_state=initial[0],
                metadata=data.get("metadata") or {},
            )
        except ValidationError as exc:
            raise WorkflowParseError(f"Invalid workflow definition: {exc}") from exc

        errors = validate_workflow_definition(definition)
        if errors:
            raise WorkflowParseError(errors[0], errors)

        logger.debug(
            f"Parsed workflow '{definition.name}' v{definition.version} "
            f"with {len(definition.states)} states"
        )
        return definition

    @staticmethod
    def _parse_flow(data: Dict[str, Any], id: Optional[str]) -> Flow:
        if not data.get("name"):
            raise WorkflowParseError("Flow definition must have a name")
        if id:
            data = {**data, "id": id}
        try:
            flow = Flow.model_validate(data)
        except ValidationError as exc:
            raise WorkflowParseError(f"Invalid flow definition: {exc}") from exc

        errors = validate_flow(flow)
        if errors:
            raise WorkflowParseError(errors[0], errors)

        for node_id in unreachable_nodes(flow):
            logger.warning(f"Flow '{flow.name}': node {node_id} is unreachable from start")
        return flow


def _parse_state(name: str, config: Dict[str, Any]) -> StateConfig:
    if not isinstance(config, dict):
        raise WorkflowParseError(f'State "{name}" must be a mapping')
    transitions = {
        transition_name: _parse_transition(transition_name, transition)
        for transition_name, transition in (config.get("transitions") or {}).items()
    }
    try:
        return StateConfig(
            name=name,
            initial=bool(config.get("initial", False)),
            final=bool(config.get("final", False)),
            on_enter=config.get("on_enter") or [],
            on_exit=config.get("on_exit") or [],
            transitions=transitions,
            metadata=config.get("metadata") or {},
        )
    except ValidationError as exc:
        raise WorkflowParseError(f'Invalid state "{name}": {exc}') from exc


def _parse_transition(name: str, config: Any) -> TransitionConfig:
    # Shorthand syntax: ``submit: review``
    if isinstance(config, str):
        return TransitionConfig(target=config)
    if not isinstance(config, dict) or not config.get("target"):
        raise WorkflowParseError(f'Transition "{name}" must have a target state')
    try:
        return TransitionConfig(
            target=config["target"],
            guards=config.get("guards") or [],
            actions=config.get("actions") or [],
            metadata=config.get("metadata") or {},
        )
    except ValidationError as exc:
        raise WorkflowParseError(f'Invalid transition "{name}": {exc}') from exc
