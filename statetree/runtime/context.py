"""
Context helpers. An instance owns exactly one context dictionary; these
functions are the only ways the runtime copies or merges it.
"""

import copy
from typing import Any, Dict, Mapping

from ..core.errors import TransitionError


def clone_context(context: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a structural deep copy so callers never alias live state."""
    return copy.deepcopy(dict(context))


def merge_context(target: Dict[str, Any], update: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Deep-merge ``update`` into ``target`` in place and return ``target``.

    Nested mappings merge key by key. Lists, scalars and any other values
    replace what was there (lists are copied, never aliased).
    """
    if update is None:
        return target
    if not isinstance(update, Mapping):
        raise TransitionError(f"Context update must be a mapping, got {type(update).__name__}")

    for key, value in update.items():
        current = target.get(key)
        if isinstance(value, Mapping) and isinstance(current, dict):
            merge_context(current, value)
        elif isinstance(value, list):
            target[key] = copy.deepcopy(value)
        elif isinstance(value, Mapping):
            target[key] = copy.deepcopy(dict(value))
        else:
            target[key] = value
    return target
