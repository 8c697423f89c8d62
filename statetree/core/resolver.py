# statetree/core/resolver.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from statetree.core.actions import Action
from statetree.core.events import Event
from statetree.core.states import StateNode
from statetree.core.transitions import WILDCARD, TransitionDescriptor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionPlan:
    """
    The outcome of resolving one event: which descriptor matched, where the
    instance ends up, and which states are exited and entered on the way.
    Internal and self transitions carry no exits or entries.
    """

    descriptor: TransitionDescriptor
    source: StateNode
    target: StateNode
    exits: Tuple[StateNode, ...] = ()
    entries: Tuple[StateNode, ...] = ()
    internal: bool = False

    def blocking_actions(self) -> List[Action]:
        """Exit actions (leaf outward), then transition actions, then entry actions (outermost first)."""
        batch: List[Action] = []
        for node in self.exits:
            batch.extend(node.exit_actions)
        batch.extend(self.descriptor.actions)
        for node in self.entries:
            batch.extend(node.entry_actions)
        return batch


class TransitionResolver:
    """
    Finds the transition an event triggers from an active leaf.

    Search order is the leaf's own handlers, then each ancestor's, then the
    machine's global handlers on the root. At every level exact-event
    descriptors are tried in declaration order before that level's wildcard.
    The first descriptor whose guard chain passes wins.
    """

    def select(self, leaf: StateNode, event: Event, context: Dict[str, Any]) -> Optional[TransitionDescriptor]:
        """
        Return the winning descriptor or None.

        :param leaf: The active leaf.
        :param event: The event being processed.
        :param context: The instance context, read by guards.
        """
        keys = [event.type] if event.type == WILDCARD else [event.type, WILDCARD]
        for level in [leaf] + leaf.ancestors():
            for key in keys:
                for descriptor in level.get_transitions(key):
                    if descriptor.can_take(context, event):
                        logger.debug(
                            "Event %r matched %r at level '%s'", event.type, descriptor, level.path or level.id
                        )
                        return descriptor
        return None

    def resolve(self, leaf: StateNode, event: Event, context: Dict[str, Any]) -> Optional[TransitionPlan]:
        """
        Select a descriptor and plan the transition it describes.

        Dynamic targets are computed here with ``(context, event)``; an error
        raised by one propagates. An unresolvable target yields None.
        """
        descriptor = self.select(leaf, event, context)
        if descriptor is None:
            return None
        if descriptor.internal:
            return TransitionPlan(descriptor, leaf, leaf, internal=True)

        reference = descriptor.target
        if callable(reference) and not isinstance(reference, StateNode):
            reference = reference(context, event)
        target = descriptor.source.resolve_target(reference) if reference is not None else None
        if target is None:
            logger.warning(
                "Target %r for event %r from '%s' could not be resolved; no transition taken",
                reference,
                event.type,
                descriptor.source.path or descriptor.source.id,
            )
            return None

        if target is leaf:
            return TransitionPlan(descriptor, leaf, leaf, internal=True)

        target_leaf = target.descend_initial()
        domain = self._domain(leaf, target)
        exits = []
        node = leaf
        while node is not domain:
            exits.append(node)
            node = node.parent

        entries = []
        node = target
        while node is not domain:
            entries.append(node)
            node = node.parent
        entries.reverse()
        node = target
        while node.is_composite:
            node = node.children[node.initial_id]
            entries.append(node)

        return TransitionPlan(descriptor, leaf, target_leaf, tuple(exits), tuple(entries))

    @staticmethod
    def _domain(leaf: StateNode, target: StateNode) -> StateNode:
        """
        The deepest node that stays active across the transition. A target
        that contains the leaf is itself exited and re-entered.
        """
        if leaf is target or leaf.is_descendant_of(target):
            return target.parent
        target_line = {id(target)} | {id(node) for node in target.ancestors()}
        for node in leaf.ancestors():
            if id(node) in target_line:
                return node
        return leaf.root
