# statetree/visualizers/common.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Set

from statetree.core.states import StateNode
from statetree.core.transitions import WILDCARD, TransitionDescriptor

if TYPE_CHECKING:
    from statetree.core.state_machine import Machine
    from statetree.runtime.instance import Instance

_PLAIN = re.compile(r"[A-Za-z0-9]+")


@dataclass(frozen=True)
class Edge:
    """A drawable transition. ``source`` is None for a global handler."""

    source: Optional[StateNode]
    target: StateNode
    descriptor: TransitionDescriptor


def diagram_id(node: StateNode) -> str:
    """
    Identifier safe for both diagram languages, unique within one machine.

    Paths made only of alphanumeric ids keep their shape, so ``parent.A``
    becomes ``parent_A``. Any other path starts with ``_``, joins its ids with
    ``__`` and writes every other character as ``_<hex code>_``; plain ids never
    start with ``_``, so the two forms cannot meet.
    """
    segments = node.path.split(".")
    if all(_PLAIN.fullmatch(segment) for segment in segments):
        return "_".join(segments)
    return "_" + "__".join(_escape(segment) for segment in segments)


def _escape(segment: str) -> str:
    return "".join(char if char.isascii() and char.isalnum() else f"_{ord(char):x}_" for char in segment)


def collect_edges(machine: "Machine") -> List[Edge]:
    """
    Every transition with a target known before runtime. Internal transitions,
    wildcard handlers and dynamic targets cannot be drawn and are skipped.
    """
    edges: List[Edge] = []
    for node in machine.root.walk():
        for event, descriptors in node.handlers.items():
            if event == WILDCARD:
                continue
            for descriptor in descriptors:
                target = _static_target(descriptor)
                if target is not None:
                    edges.append(Edge(None if node.is_root else node, target, descriptor))
    return edges


def active_paths(instance: Optional["Instance"]) -> Set[str]:
    """Paths of the leaf and all of its ancestors, empty without an instance."""
    if instance is None:
        return set()
    leaf = instance.machine.find_state(instance.state)
    if leaf is None:
        return set()
    return {leaf.path} | {node.path for node in leaf.ancestors() if not node.is_root}


def edge_label(edge: Edge, show_guards: bool = True, show_actions: bool = False) -> str:
    label = edge.descriptor.event
    guards = edge.descriptor.guards
    if show_guards and guards:
        label += " [" + " && ".join(guard.label for guard in guards) + "]"
    actions = edge.descriptor.actions
    if show_actions and actions:
        label += " / " + ", ".join(act.label for act in actions)
    return label


def _static_target(descriptor: TransitionDescriptor) -> Optional[StateNode]:
    target = descriptor.target
    if target is None:
        return None
    if not isinstance(target, (str, StateNode)):
        return None
    return descriptor.source.resolve_target(target)
