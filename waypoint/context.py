"""Execution context handed to guards and actions."""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

from .contracts import StateConfig, TransitionConfig, WorkflowDefinition, WorkflowInstance

_MISSING = object()


class DataAccessor:
    """Read/write view over an instance's working memory.

    Guards and actions go through this object instead of touching
    ``instance.data`` directly. ``get()`` without a key returns a copy.
    """

    def __init__(self, data: Dict[str, Any]) -> None:
        self._data = data

    def get(self, key: Optional[str] = None, default: Any = None) -> Any:
        if key is None:
            return dict(self._data)
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def update(self, values: Dict[str, Any]) -> None:
        self._data.update(values)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._data))

    def __getitem__(self, key: str) -> Any:
        value = self._data.get(key, _MISSING)
        if value is _MISSING:
            raise KeyError(key)
        return value

    @classmethod
    def detached(cls, data: Dict[str, Any]) -> "DataAccessor":
        """Accessor over a deep copy; writes never reach the instance."""
        return cls(copy.deepcopy(data))


@dataclass
class TransitionRef:
    name: str
    config: TransitionConfig


@dataclass
class WorkflowContext:
    """Everything a guard or action may look at for one invocation."""

    instance: WorkflowInstance
    definition: WorkflowDefinition
    state_name: str
    current_state: StateConfig
    data: DataAccessor
    logger: logging.Logger | logging.LoggerAdapter
    transition: Optional[TransitionRef] = None

    def get_data(self, key: Optional[str] = None, default: Any = None) -> Any:
        return self.data.get(key, default)

    def set_data(self, key: str, value: Any) -> None:
        self.data.set(key, value)
