# statetree/core/states.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

import re
import weakref
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from statetree.core.actions import Action, to_action
from statetree.core.errors import DefinitionError
from statetree.core.transitions import WILDCARD, TargetSpec, TransitionDescriptor

if TYPE_CHECKING:
    from statetree.core.config import Registry

_CARETS = re.compile(r"^\^+$")


class StateNode:
    """
    One node of the state tree. Children are owned by their parent; the
    parent link is a weak back-reference. The machine owns an implicit root
    node whose children are the top-level states and whose handlers are the
    global handlers. The root is never a transition target.
    """

    def __init__(self, id: str, parent: Optional["StateNode"] = None, registry: Optional["Registry"] = None) -> None:
        """
        :param id: Identifier, unique among siblings.
        :param parent: Owning node, or None for the machine root.
        :param registry: Frozen registry; only the root stores one.
        """
        if not id or not isinstance(id, str):
            raise DefinitionError("State ID must be a non-empty string")
        if "." in id or id.startswith(("^", "#")) or id == WILDCARD:
            raise DefinitionError(f"State ID '{id}' may not contain '.' or start with '^' or '#'")
        self._id = id
        self._parent = weakref.ref(parent) if parent is not None else None
        self._registry = registry
        self._frozen = False
        self._children: Dict[str, StateNode] = {}
        self._initial_id: Optional[str] = None
        self._entry_actions: List[Action] = []
        self._exit_actions: List[Action] = []
        self._handlers: Dict[str, List[TransitionDescriptor]] = {}

        if parent is None or parent.is_root:
            self._path = "" if parent is None else id
        else:
            self._path = f"{parent.path}.{id}"

    # -- identity and hierarchy -------------------------------------------------

    @property
    def id(self) -> str:
        return self._id

    @property
    def path(self) -> str:
        """Dot-joined ids from the top-level state down to this node."""
        return self._path

    @property
    def parent(self) -> Optional["StateNode"]:
        return self._parent() if self._parent is not None else None

    @property
    def is_root(self) -> bool:
        return self._parent is None

    @property
    def root(self) -> "StateNode":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    @property
    def registry(self) -> "Registry":
        return self.root._registry

    @property
    def children(self) -> Dict[str, "StateNode"]:
        """A copy of the ordered child mapping."""
        return dict(self._children)

    @property
    def is_composite(self) -> bool:
        return bool(self._children)

    @property
    def initial_id(self) -> Optional[str]:
        return self._initial_id

    @property
    def entry_actions(self) -> List[Action]:
        return list(self._entry_actions)

    @property
    def exit_actions(self) -> List[Action]:
        return list(self._exit_actions)

    @property
    def handlers(self) -> Dict[str, List[TransitionDescriptor]]:
        """Event name to descriptor list, in declaration order."""
        return {event: list(descriptors) for event, descriptors in self._handlers.items()}

    def ancestors(self) -> List["StateNode"]:
        """Proper ancestors from the immediate parent up to and including the root."""
        result = []
        node = self.parent
        while node is not None:
            result.append(node)
            node = node.parent
        return result

    def is_descendant_of(self, other: "StateNode") -> bool:
        return any(a is other for a in self.ancestors())

    def active_ids(self) -> Tuple[str, ...]:
        """Ids from the top-level state down to this node (the root is excluded)."""
        return tuple(self._path.split(".")) if self._path else ()

    def walk(self) -> Iterator["StateNode"]:
        """Depth-first, declaration-ordered walk over this node and its descendants."""
        yield self
        for child in self._children.values():
            yield from child.walk()

    # -- definition ---------------------------------------------------------------

    def _check_mutable(self) -> None:
        if self.root._frozen:
            raise DefinitionError(f"Machine '{self.root.id}' has started; its state tree can no longer change")

    def state(self, id: str) -> "StateNode":
        """
        Create a child state.

        :param id: Child id, unique among this node's children.
        :raises DefinitionError: On duplicate ids or after the machine has started.
        """
        self._check_mutable()
        if id in self._children:
            owner = self._path or f"machine '{self._id}'"
            raise DefinitionError(f"State '{id}' already exists in {owner}")
        child = StateNode(id, parent=self)
        self._children[id] = child
        return child

    def initial(self, child: Union[str, "StateNode"]) -> "StateNode":
        """Designate the child entered when this node is entered."""
        self._check_mutable()
        if isinstance(child, StateNode):
            if child.parent is not self:
                raise DefinitionError(f"State '{child.path}' is not a child of '{self._path or self._id}'")
            child = child.id
        if not child or not isinstance(child, str):
            raise DefinitionError("Initial state is required")
        self._initial_id = child
        return self

    def enter(self, action: Any) -> "StateNode":
        """Append an entry action."""
        self._check_mutable()
        self._entry_actions.append(to_action(action, self.registry))
        return self

    def exit(self, action: Any) -> "StateNode":
        """Append an exit action."""
        self._check_mutable()
        self._exit_actions.append(to_action(action, self.registry))
        return self

    def on(self, event: str, target: TargetSpec = None) -> TransitionDescriptor:
        """
        Declare a handler. Without a target the transition is internal.

        :param event: Event name, or ``"*"`` for this level's wildcard.
        :param target: Target path, StateNode, or ``(context, event)`` callable.
        """
        self._check_mutable()
        if not event or not isinstance(event, str):
            raise DefinitionError("Event name must be a non-empty string")
        descriptor = TransitionDescriptor(event, target, self)
        self._handlers.setdefault(event, []).append(descriptor)
        return descriptor

    def get_transitions(self, event: str) -> List[TransitionDescriptor]:
        return list(self._handlers.get(event, ()))

    # -- resolution ---------------------------------------------------------------

    def child_path(self, names: Sequence[str]) -> Optional["StateNode"]:
        """Follow child names downward; None if any is missing."""
        node = self
        for name in names:
            node = node._children.get(name)
            if node is None:
                return None
        return node

    def descend_initial(self) -> "StateNode":
        """Follow designated initial children until a leaf is reached."""
        node = self
        while node._children:
            node = node._children[node._initial_id]
        return node

    def resolve_target(self, reference: Union[str, "StateNode"]) -> Optional["StateNode"]:
        """
        Resolve a target reference relative to this node.

        Accepts sibling names, dotted paths from any ancestor, ``#machine.path``
        or ``#path`` absolute references, and ``^``/``^^``/``^.name`` relative
        references. Returns None when the reference cannot be resolved; the
        machine root is never returned.
        """
        if isinstance(reference, StateNode):
            return reference if reference.root is self.root and not reference.is_root else None
        if not reference or not isinstance(reference, str):
            return None
        if reference.startswith("^"):
            found = self._resolve_relative(reference)
        elif reference.startswith("#"):
            found = self._resolve_absolute(reference[1:])
        else:
            names = reference.split(".")
            if not all(names):
                return None
            found = None
            for level in self.ancestors() + [self]:
                found = level.child_path(names)
                if found is not None:
                    break
        if found is None or found.is_root:
            return None
        return found

    def _resolve_relative(self, reference: str) -> Optional["StateNode"]:
        node: Optional[StateNode] = self
        tokens = reference.split(".")
        index = 0
        while index < len(tokens) and _CARETS.match(tokens[index]):
            for _ in range(len(tokens[index])):
                node = node.parent if node is not None else None
                if node is None:
                    return None
            index += 1
        names = tokens[index:]
        if not all(names) or any(name.startswith("^") for name in names):
            return None
        return node.child_path(names)

    def _resolve_absolute(self, reference: str) -> Optional["StateNode"]:
        names = reference.split(".")
        if not all(names):
            return None
        root = self.root
        if names[0] == root.id and len(names) > 1:
            found = root.child_path(names[1:])
            if found is not None:
                return found
        return root.child_path(names)

    def __repr__(self) -> str:
        return f"StateNode({self._path or '#' + self._id!r})"
