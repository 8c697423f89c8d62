# statetree/core/config.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

"""
Machine-level configuration: runtime options, the frozen action/guard
registry, and the loader that turns a configuration literal into a state tree.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional

from statetree.core.errors import DefinitionError

if TYPE_CHECKING:
    from statetree.core.actions import Action
    from statetree.core.state_machine import Machine
    from statetree.core.states import StateNode

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 50


@dataclass(frozen=True)
class MachineOptions:
    """
    Runtime options shared by every instance of a machine.

    :param history_size: Capacity of each instance's history ring (>= 1).
    :param on_background_error: Receives ``(exception, action)`` for every
        failed fire-and-forget action. When unset failures are logged.
    """

    history_size: int = DEFAULT_HISTORY_SIZE
    on_background_error: Optional[Callable[[BaseException, "Action"], None]] = None

    def __post_init__(self) -> None:
        if not isinstance(self.history_size, int) or isinstance(self.history_size, bool) or self.history_size < 1:
            raise DefinitionError(f"history_size must be a positive integer, got {self.history_size!r}")
        if self.on_background_error is not None and not callable(self.on_background_error):
            raise DefinitionError("on_background_error must be callable")


class Registry:
    """
    Immutable view of the named actions and guards a machine may reference.
    Built once by ``create_machine``; later changes to the caller's dicts are
    not seen.
    """

    def __init__(self, actions: Optional[Mapping[str, Any]] = None, guards: Optional[Mapping[str, Any]] = None) -> None:
        self._actions = MappingProxyType(dict(actions or {}))
        self._guards = MappingProxyType(dict(guards or {}))
        for name, fn in self._guards.items():
            if not callable(fn):
                raise DefinitionError(f"Registry guard '{name}' is not callable")

    @property
    def actions(self) -> Mapping[str, Any]:
        return self._actions

    @property
    def guards(self) -> Mapping[str, Any]:
        return self._guards


_STATE_KEYS = frozenset({"initial", "states", "entry", "exit", "on"})
_TRANSITION_KEYS = frozenset({"target", "guards", "cond", "actions", "fire"})


def build_from_config(machine: "Machine", config: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Populate ``machine`` from a configuration literal.

    :param machine: A freshly created, empty machine.
    :param config: ``{"id", "initial", "states", "on"?, "context"?}``.
    :return: The literal's default context (empty when absent).
    :raises DefinitionError: If the literal is malformed.
    """
    if not isinstance(config, Mapping):
        raise DefinitionError("Machine config must be a mapping")
    if not config.get("initial"):
        raise DefinitionError("Machine config must have an initial state")
    states = config.get("states")
    if not isinstance(states, Mapping) or not states:
        raise DefinitionError("Machine config must have a non-empty 'states' mapping")
    if config["initial"] not in states:
        raise DefinitionError(f"Initial state '{config['initial']}' not found in states")

    for key, state_config in states.items():
        _build_state(machine.state(key), state_config)
    _build_handlers(machine.on, config.get("on"), owner=machine.id)
    machine.initial(config["initial"])

    context = config.get("context", {})
    if not isinstance(context, Mapping):
        raise DefinitionError("Machine config 'context' must be a mapping")
    logger.debug("Loaded machine '%s' from configuration literal", machine.id)
    return dict(context)


def _build_state(node: "StateNode", state_config: Any) -> None:
    if state_config is None:
        state_config = {}
    if not isinstance(state_config, Mapping):
        raise DefinitionError(f"State '{node.path}' config must be a mapping")
    unknown = set(state_config) - _STATE_KEYS
    if unknown:
        raise DefinitionError(f"State '{node.path}' has unknown keys: {sorted(unknown)}")

    for act in _as_list(state_config.get("entry")):
        node.enter(act)
    for act in _as_list(state_config.get("exit")):
        node.exit(act)

    children = state_config.get("states") or {}
    if not isinstance(children, Mapping):
        raise DefinitionError(f"State '{node.path}' 'states' must be a mapping")
    for key, child_config in children.items():
        _build_state(node.state(key), child_config)
    if children:
        initial = state_config.get("initial")
        if not initial:
            raise DefinitionError(f"Composite state '{node.path}' must declare an initial state")
        node.initial(initial)

    _build_handlers(node.on, state_config.get("on"), owner=node.path)


def _build_handlers(on: Callable[..., Any], handlers: Any, owner: str) -> None:
    if handlers is None:
        return
    if not isinstance(handlers, Mapping):
        raise DefinitionError(f"'on' of '{owner}' must be a mapping")
    for event, spec in handlers.items():
        for entry in (spec if isinstance(spec, list) else [spec]):
            if entry is None or isinstance(entry, str):
                on(event, entry or None)
                continue
            if not isinstance(entry, Mapping):
                raise DefinitionError(f"Transition for '{event}' in '{owner}' must be a string or mapping")
            unknown = set(entry) - _TRANSITION_KEYS
            if unknown:
                raise DefinitionError(f"Transition for '{event}' in '{owner}' has unknown keys: {sorted(unknown)}")
            descriptor = on(event, entry.get("target"))
            for guard in _as_list(entry.get("cond")) + _as_list(entry.get("guards")):
                descriptor.if_(guard)
            for act in _as_list(entry.get("actions")):
                descriptor.do(act)
            for act in _as_list(entry.get("fire")):
                descriptor.fire(act)


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]
