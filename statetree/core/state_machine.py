# statetree/core/state_machine.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from statetree.core.actions import Action, ActionPipeline
from statetree.core.config import MachineOptions, Registry, build_from_config
from statetree.core.errors import DefinitionError
from statetree.core.events import Event
from statetree.core.states import StateNode
from statetree.core.transitions import TargetSpec, TransitionDescriptor
from statetree.core.validation import Validator
from statetree.runtime.context import clone_context
from statetree.runtime.instance import INIT_EVENT, Instance

logger = logging.getLogger(__name__)


class Machine:
    """
    A hierarchical state machine definition.

    The machine owns an implicit root node whose id is the machine id. States
    declared with ``state()`` are top-level; handlers declared with ``on()``
    are global and consulted after every state-level handler. The definition
    can be changed freely until the first ``start()``, which validates it and
    freezes it for good.
    """

    def __init__(
        self,
        id: str,
        registry: Optional[Registry] = None,
        options: Optional[MachineOptions] = None,
        validator: Optional[Validator] = None,
    ) -> None:
        """
        :param id: Machine id, also the first segment of ``#id.path`` references.
        :param registry: Named actions and guards.
        :param options: Runtime options shared by all instances.
        :param validator: Checks the tree before the first start.
        """
        if not isinstance(id, str) or not id:
            raise DefinitionError("Machine id must be a non-empty string")
        self._registry = registry or Registry()
        self._root = StateNode(id, registry=self._registry)
        self._options = options or MachineOptions()
        self._validator = validator or Validator()
        self._pipeline = ActionPipeline()
        self._initial_node: Optional[StateNode] = None
        self._default_context: Dict[str, Any] = {}

    @property
    def id(self) -> str:
        return self._root.id

    @property
    def root(self) -> StateNode:
        return self._root

    @property
    def registry(self) -> Registry:
        return self._registry

    @property
    def options(self) -> MachineOptions:
        return self._options

    @property
    def started(self) -> bool:
        return self._root._frozen

    @property
    def default_context(self) -> Dict[str, Any]:
        return clone_context(self._default_context)

    @property
    def initial_state(self) -> Optional[StateNode]:
        return self._initial_node

    # -- definition ----------------------------------------------------------------

    def state(self, id: str) -> StateNode:
        """Create a top-level state."""
        return self._root.state(id)

    def on(self, event: str, target: TargetSpec = None) -> TransitionDescriptor:
        """Declare a global handler, checked after all state-level handlers."""
        return self._root.on(event, target)

    def initial(self, state: Union[str, StateNode]) -> "Machine":
        """
        Choose the state entered by ``start()``. A nested state may be given,
        in which case its top-level ancestor becomes the root's initial child.

        :param state: A StateNode of this machine or its path.
        :raises DefinitionError: If the state does not exist.
        """
        node = self._root.resolve_target(state)
        if node is None:
            raise DefinitionError(f"Initial state '{state}' not found in machine '{self.id}'")
        top = node
        while top.parent is not self._root:
            top = top.parent
        self._root.initial(top)
        self._initial_node = node
        return self

    def find_state(self, path: str) -> Optional[StateNode]:
        """
        Look a state up by its absolute path (``"a.b"``, ``"#a.b"`` or
        ``"#machine.a.b"``). Returns None when no such state exists.
        """
        if isinstance(path, StateNode):
            return self._root.resolve_target(path)
        if not isinstance(path, str) or not path or path.startswith("^"):
            return None
        return self._root.resolve_target(path if path.startswith("#") else "#" + path)

    def states(self) -> List[StateNode]:
        """All states, depth first, excluding the root."""
        return [node for node in self._root.walk() if not node.is_root]

    def validate(self) -> None:
        """
        Check the tree without freezing it.

        :raises DefinitionError: Listing every problem found.
        """
        self._validator.validate_tree(self._root)

    # -- instances -------------------------------------------------------------------

    def start(self, context: Optional[Mapping[str, Any]] = None) -> Instance:
        """
        Create a running instance. Initial entry actions run synchronously, so
        they must not return awaitables; use ``start_async`` for those.

        :param context: Initial context, deep-copied. Defaults to the machine's
            default context.
        :raises DefinitionError: If the tree is invalid.
        :raises TransitionError: If an initial entry action is asynchronous.
        """
        owned, leaf, entries = self._prepare(context)
        self._pipeline.run_sync(entries, owned, Event(INIT_EVENT))
        return self._spawn(owned, leaf)

    async def start_async(self, context: Optional[Mapping[str, Any]] = None) -> Instance:
        """Like ``start``, awaiting asynchronous initial entry actions."""
        owned, leaf, entries = self._prepare(context)
        await self._pipeline.run(entries, owned, Event(INIT_EVENT))
        return self._spawn(owned, leaf)

    def _prepare(self, context: Optional[Mapping[str, Any]]) -> Tuple[Dict[str, Any], StateNode, List[Action]]:
        self._freeze()
        if context is not None and not isinstance(context, Mapping):
            raise DefinitionError("Initial context must be a mapping")
        owned = clone_context(context if context is not None else self._default_context)
        path = self._initial_path()
        entries: List[Action] = []
        for node in path:
            entries.extend(node.entry_actions)
        return owned, path[-1], entries

    def _spawn(self, context: Dict[str, Any], leaf: StateNode) -> Instance:
        instance = Instance(self, context, leaf)
        logger.debug("Started instance of '%s' in '%s'", self.id, instance.state)
        return instance

    def _freeze(self) -> None:
        if self._root._frozen:
            return
        self._validator.validate_tree(self._root)
        self._root._frozen = True
        logger.debug("Machine '%s' validated and frozen", self.id)

    def _initial_path(self) -> List[StateNode]:
        """States entered on start, outermost first."""
        start = self._initial_node or self._root.children[self._root.initial_id]
        path = [start] + [node for node in start.ancestors() if not node.is_root]
        path.reverse()
        node = start
        while node.is_composite:
            node = node.children[node.initial_id]
            path.append(node)
        return path

    def __repr__(self) -> str:
        return f"Machine({self.id!r})"


def create_machine(
    definition: Union[str, Mapping[str, Any]],
    *,
    actions: Optional[Mapping[str, Any]] = None,
    guards: Optional[Mapping[str, Any]] = None,
    options: Optional[Union[MachineOptions, Mapping[str, Any]]] = None,
) -> Machine:
    """
    Create a machine, either empty for the builder API or fully populated
    from a configuration literal.

    :param definition: Machine id, or a ``{"id", "initial", "states", ...}`` literal.
    :param actions: Named actions referenced by string in the definition.
    :param guards: Named guards referenced by string in the definition.
    :param options: MachineOptions or a mapping of its fields.
    :raises DefinitionError: If the definition or options are malformed.
    """
    if isinstance(options, Mapping):
        options = MachineOptions(**options)
    registry = Registry(actions, guards)

    if isinstance(definition, str):
        return Machine(definition, registry, options)
    if isinstance(definition, Mapping):
        machine = Machine(definition.get("id"), registry, options)
        machine._default_context = build_from_config(machine, definition)
        machine.validate()
        return machine
    raise DefinitionError(f"Machine definition must be an id or a mapping, got {type(definition).__name__}")
