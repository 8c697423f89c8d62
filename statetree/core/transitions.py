# statetree/core/transitions.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from statetree.core.actions import Action, to_action
from statetree.core.errors import DefinitionError
from statetree.core.events import Event
from statetree.core.guards import Guard, GuardChain, to_guard

if TYPE_CHECKING:
    from statetree.core.states import StateNode

TargetSpec = Union[str, "StateNode", Callable[[Dict[str, Any], Event], Any], None]

WILDCARD = "*"


class TransitionDescriptor:
    """
    Declares what happens when an event is handled at one level of the tree:
    an optional target, a guard chain, blocking actions, and fire-and-forget
    actions. Returned by ``on()`` so it can be configured fluently::

        node.on("SUBMIT", "sending").if_("is_valid").do("save").fire(log)
    """

    def __init__(self, event: str, target: TargetSpec, source: "StateNode") -> None:
        """
        :param event: The event name (or ``"*"``) this descriptor handles.
        :param target: Target path, StateNode, callable, or None for internal.
        :param source: The node that declared the descriptor.
        :raises DefinitionError: If the target is neither a string, a node, a callable nor None.
        """
        from statetree.core.states import StateNode

        if target is not None and not isinstance(target, (str, StateNode)) and not callable(target):
            raise DefinitionError(
                f"Target for '{event}' on '{source.path or source.id}' must be a string, state, or callable"
            )
        if isinstance(target, str) and not target:
            raise DefinitionError(f"Target for '{event}' on '{source.path or source.id}' must not be empty")
        self._event = event
        self._target = target
        self._source = source
        self._guards = GuardChain()
        self._actions: List[Action] = []
        self._fire_actions: List[Action] = []

    def if_(self, guard: Any) -> "TransitionDescriptor":
        """Append a guard; all guards must pass for the transition to be taken."""
        self._source._check_mutable()
        self._guards.append(to_guard(guard, self._source.registry))
        return self

    def do(self, action: Any) -> "TransitionDescriptor":
        """Append a blocking action, awaited before the transition resolves."""
        self._source._check_mutable()
        self._actions.append(to_action(action, self._source.registry))
        return self

    def fire(self, action: Any) -> "TransitionDescriptor":
        """Append a fire-and-forget action, scheduled after the commit."""
        self._source._check_mutable()
        self._fire_actions.append(to_action(action, self._source.registry))
        return self

    def can_take(self, context: Dict[str, Any], event: Event) -> bool:
        """Evaluate the guard chain; raising guards count as failures."""
        return self._guards.evaluate(context, event)

    @property
    def event(self) -> str:
        return self._event

    @property
    def target(self) -> TargetSpec:
        return self._target

    @property
    def source(self) -> "StateNode":
        """The node that declared this descriptor (the root for global handlers)."""
        return self._source

    @property
    def internal(self) -> bool:
        """True when no target was given."""
        return self._target is None

    @property
    def guards(self) -> List[Guard]:
        return list(self._guards)

    @property
    def actions(self) -> List[Action]:
        return list(self._actions)

    @property
    def fire_actions(self) -> List[Action]:
        return list(self._fire_actions)

    def __repr__(self) -> str:
        target = self._target if isinstance(self._target, str) or self._target is None else getattr(
            self._target, "path", "<dynamic>"
        )
        return f"TransitionDescriptor({self._event!r} -> {target!r})"
