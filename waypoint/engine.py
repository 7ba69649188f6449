"""State machine execution engine for waypoint workflows."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from .context import DataAccessor, TransitionRef, WorkflowContext
from .contracts import (
    ActionRef,
    GuardRef,
    StateConfig,
    StateHistoryEntry,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStatus,
    ref_name,
    ref_params,
    utcnow,
)
from .errors import (
    GuardRejectedError,
    InvalidLifecycleError,
    UnknownStateError,
    UnknownTransitionError,
)
from .utils.calls import maybe_await

logger = logging.getLogger(__name__)

Guard = Callable[[WorkflowContext, Any], Union[bool, Awaitable[bool]]]
Action = Callable[[WorkflowContext, Any], Union[None, Awaitable[None]]]


class WorkflowEngine:
    """Advances state-machine instances through their definitions.

    Guards are fail-closed: an unknown guard blocks the transition.
    Actions are fail-open: an unknown action is logged and skipped, but an
    action that raises aborts the in-flight call.

    The engine keeps no per-instance state. Callers serialise operations on
    a given instance.

    Example:
        ```python
        engine = WorkflowEngine()
        engine.register_guard("is_manager", lambda ctx, _: ctx.get_data("role") == "manager")

        instance = engine.create_instance(definition, {"amount": 10}, started_by="alice")
        await engine.start_instance(instance, definition)
        await engine.execute_transition(instance, definition, "submit", triggered_by="alice")
        ```
    """

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._guards: Dict[str, Guard] = {}
        self._actions: Dict[str, Action] = {}
        self.logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Registry
    def register_guard(self, name: str, guard: Guard) -> None:
        self._guards[name] = guard

    def register_action(self, name: str, action: Action) -> None:
        self._actions[name] = action

    def has_guard(self, name: str) -> bool:
        return name in self._guards

    def has_action(self, name: str) -> bool:
        return name in self._actions

    def validate_definition(self, definition: WorkflowDefinition) -> List[str]:
        """Report guard and action references with no registered function."""
        problems: List[str] = []
        for state_name, state in definition.states.items():
            for ref in [*state.on_enter, *state.on_exit]:
                if not self.has_action(ref_name(ref)):
                    problems.append(
                        f'State "{state_name}" references unknown action "{ref_name(ref)}"'
                    )
            for transition_name, transition in state.transitions.items():
                for ref in transition.guards:
                    if not self.has_guard(ref_name(ref)):
                        problems.append(
                            f'Transition "{transition_name}" in state "{state_name}" '
                            f'references unknown guard "{ref_name(ref)}"'
                        )
                for ref in transition.actions:
                    if not self.has_action(ref_name(ref)):
                        problems.append(
                            f'Transition "{transition_name}" in state "{state_name}" '
                            f'references unknown action "{ref_name(ref)}"'
                        )
        return problems

    # ------------------------------------------------------------------
    # Lifecycle
    def create_instance(
        self,
        definition: WorkflowDefinition,
        data: Optional[Dict[str, Any]] = None,
        started_by: Optional[str] = None,
    ) -> WorkflowInstance:
        """Build a ``pending`` instance positioned at the initial state."""
        return WorkflowInstance(
            workflow_id=definition.id,
            version=definition.version,
            current_state=definition.initial_state,
            data=dict(data or {}),
            started_by=started_by,
        )

    async def start_instance(
        self, instance: WorkflowInstance, definition: WorkflowDefinition
    ) -> WorkflowInstance:
        if instance.status != WorkflowStatus.PENDING:
            raise InvalidLifecycleError(
                f"Cannot start workflow in status: {instance.status.value}",
                status=instance.status.value,
            )

        instance.status = WorkflowStatus.RUNNING
        instance.started_at = utcnow()

        initial = self._state(definition, instance.current_state)
        context = self._create_context(instance, definition, instance.current_state, initial)
        await self._execute_actions(initial.on_enter, context)

        if initial.final:
            instance.status = WorkflowStatus.COMPLETED
            instance.completed_at = utcnow()

        self.logger.info(
            f"Started workflow instance {instance.id} ({definition.id} v{definition.version}) "
            f"in state '{instance.current_state}'"
        )
        return instance

    async def execute_transition(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        transition_name: str,
        triggered_by: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> WorkflowInstance:
        """Fire ``transition_name`` from the instance's current state.

        Ordering is fixed: guards, current ``on_exit``, transition
        ``actions``, state mutation and history append, then target
        ``on_enter``. If an action raises, the error propagates and the
        instance is left as far as execution got.

        Raises:
            InvalidLifecycleError: The instance is not running.
            UnknownTransitionError: The current state has no such transition.
            UnknownStateError: The transition targets a state the definition
                does not declare. Raised before any guard or action runs.
            GuardRejectedError: A guard failed or could not be resolved.
        """
        if instance.status != WorkflowStatus.RUNNING:
            raise InvalidLifecycleError(
                f"Cannot execute transition on workflow in status: {instance.status.value}",
                status=instance.status.value,
            )

        from_state = instance.current_state
        current = self._state(definition, from_state)
        transition = current.transitions.get(transition_name)
        if transition is None:
            raise UnknownTransitionError(transition_name, from_state)

        to_state = transition.target
        target = self._state(definition, to_state)

        context = self._create_context(
            instance,
            definition,
            from_state,
            current,
            TransitionRef(name=transition_name, config=transition),
        )

        rejected_by = await self._check_guards(transition.guards, context)
        if rejected_by is not None:
            raise GuardRejectedError(transition_name, rejected_by)

        await self._execute_actions(current.on_exit, context)
        await self._execute_actions(transition.actions, context)

        instance.current_state = to_state
        instance.history.append(
            StateHistoryEntry(
                from_state=from_state,
                to_state=to_state,
                transition=transition_name,
                triggered_by=triggered_by,
                data=dict(data) if data is not None else None,
            )
        )
        self.logger.debug(
            f"Instance {instance.id}: '{from_state}' -> '{to_state}' via '{transition_name}'"
        )

        enter_context = self._create_context(instance, definition, to_state, target)
        await self._execute_actions(target.on_enter, enter_context)

        if target.final:
            instance.status = WorkflowStatus.COMPLETED
            instance.completed_at = utcnow()
            instance.completed_by = triggered_by
            self.logger.info(
                f"Workflow instance {instance.id} completed in state '{to_state}'"
            )

        return instance

    async def abort_instance(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        aborted_by: Optional[str] = None,
    ) -> WorkflowInstance:
        """Stop a running instance after running the current ``on_exit``."""
        if instance.status != WorkflowStatus.RUNNING:
            raise InvalidLifecycleError(
                f"Cannot abort workflow in status: {instance.status.value}",
                status=instance.status.value,
            )

        current = self._state(definition, instance.current_state)
        context = self._create_context(instance, definition, instance.current_state, current)
        await self._execute_actions(current.on_exit, context)

        instance.status = WorkflowStatus.ABORTED
        instance.aborted_at = utcnow()
        instance.completed_by = aborted_by
        self.logger.info(
            f"Workflow instance {instance.id} aborted in state '{instance.current_state}'"
        )
        return instance

    # ------------------------------------------------------------------
    # Introspection
    def get_available_transitions(
        self, instance: WorkflowInstance, definition: WorkflowDefinition
    ) -> List[str]:
        state = definition.states.get(instance.current_state)
        if state is None:
            return []
        return list(state.transitions)

    async def can_execute_transition(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        transition_name: str,
    ) -> bool:
        """Evaluate guards against a detached copy of the instance data.

        Never raises; any reason the transition could not fire yields False.
        """
        if instance.status != WorkflowStatus.RUNNING:
            return False
        state = definition.states.get(instance.current_state)
        if state is None:
            return False
        transition = state.transitions.get(transition_name)
        if transition is None or transition.target not in definition.states:
            return False
        if not transition.guards:
            return True

        context = WorkflowContext(
            instance=instance,
            definition=definition,
            state_name=instance.current_state,
            current_state=state,
            data=DataAccessor.detached(instance.data),
            logger=self.logger,
            transition=TransitionRef(name=transition_name, config=transition),
        )
        try:
            return await self._check_guards(transition.guards, context) is None
        except Exception as exc:
            self.logger.warning(
                f"Guard evaluation for '{transition_name}' raised: {exc}"
            )
            return False

    # ------------------------------------------------------------------
    # Internals
    def _state(self, definition: WorkflowDefinition, name: str) -> StateConfig:
        state = definition.states.get(name)
        if state is None:
            raise UnknownStateError(name, definition.id)
        return state

    def _create_context(
        self,
        instance: WorkflowInstance,
        definition: WorkflowDefinition,
        state_name: str,
        state: StateConfig,
        transition: Optional[TransitionRef] = None,
    ) -> WorkflowContext:
        return WorkflowContext(
            instance=instance,
            definition=definition,
            state_name=state_name,
            current_state=state,
            data=DataAccessor(instance.data),
            logger=self.logger,
            transition=transition,
        )

    async def _check_guards(
        self, guards: Sequence[GuardRef], context: WorkflowContext
    ) -> Optional[str]:
        """Return the name of the first guard that blocks, or None."""
        for ref in guards:
            name = ref_name(ref)
            guard = self._guards.get(name)
            if guard is None:
                self.logger.warning(f'Guard "{name}" not found; blocking transition')
                return name
            if not await maybe_await(guard, context, ref_params(ref)):
                return name
        return None

    async def _execute_actions(
        self, actions: Sequence[ActionRef], context: WorkflowContext
    ) -> None:
        for ref in actions:
            name = ref_name(ref)
            action = self._actions.get(name)
            if action is None:
                self.logger.warning(f'Action "{name}" not found; skipping')
                continue
            try:
                await maybe_await(action, context, ref_params(ref))
            except Exception:
                self.logger.error(
                    f'Action "{name}" failed for instance {context.instance.id}',
                    exc_info=True,
                )
                raise
