# statetree/core/validation.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

from typing import TYPE_CHECKING, List

from statetree.core.errors import DefinitionError

if TYPE_CHECKING:
    from statetree.core.states import StateNode


class Validator:
    """
    Checks a state tree before its machine starts. Every problem found is
    collected so a single DefinitionError reports all of them.
    """

    def __init__(self) -> None:
        self._rules = _DefaultValidationRules

    def validate_tree(self, root: "StateNode") -> None:
        """
        Validate the tree owned by ``root``.

        :param root: The machine root node.
        :raises DefinitionError: If any rule fails.
        """
        errors = self.collect_errors(root)
        if errors:
            raise DefinitionError("\n".join(errors))

    def collect_errors(self, root: "StateNode") -> List[str]:
        """Return every validation message without raising."""
        errors: List[str] = []
        self._rules.check_root(root, errors)
        for node in root.walk():
            if node is not root:
                self._rules.check_composite(node, errors)
        return errors


class _DefaultValidationRules:
    """
    Built-in rules: the machine has top-level states and an initial one, and
    every composite state designates one of its own children as initial.
    """

    @staticmethod
    def check_root(root: "StateNode", errors: List[str]) -> None:
        if not root.children:
            errors.append(f"Machine '{root.id}' has no states")
            return
        if root.initial_id is None:
            errors.append(f"Machine '{root.id}' has no initial state")
        elif root.initial_id not in root.children:
            errors.append(f"Initial state '{root.initial_id}' not found in machine '{root.id}'")

    @staticmethod
    def check_composite(node: "StateNode", errors: List[str]) -> None:
        if not node.is_composite:
            if node.initial_id is not None:
                errors.append(f"State '{node.path}' declares initial '{node.initial_id}' but has no children")
            return
        if node.initial_id is None:
            errors.append(f"Composite state '{node.path}' has no initial state")
        elif node.initial_id not in node.children:
            errors.append(f"Initial state '{node.initial_id}' not found in '{node.path}'")
