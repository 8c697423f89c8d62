# statetree/core/guards.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Sequence, Union

from statetree.core.errors import DefinitionError
from statetree.core.events import Event

if TYPE_CHECKING:
    from statetree.core.config import Registry

logger = logging.getLogger(__name__)

GuardFunction = Callable[[Dict[str, Any], Event], Any]
GuardSpec = Union[str, GuardFunction, "Guard"]


class Guard:
    """
    Capability interface for transition guards. Concrete guards are resolved
    once, when the transition is declared, so evaluation never has to look
    anything up by name.
    """

    def check(self, context: Dict[str, Any], event: Event) -> bool:
        """
        Evaluate the guard. May raise; callers decide what a raising guard means.

        :param context: The instance context.
        :param event: The triggering event.
        """
        raise NotImplementedError()

    @property
    def label(self) -> str:
        """Short human-readable name used by renderers."""
        return "guard"


class CallableGuard(Guard):
    """Wraps a plain ``(context, event)`` predicate."""

    def __init__(self, fn: GuardFunction) -> None:
        self._fn = fn

    def check(self, context: Dict[str, Any], event: Event) -> bool:
        return bool(self._fn(context, event))

    @property
    def label(self) -> str:
        name = getattr(self._fn, "__name__", "")
        return name if name and name != "<lambda>" else "guard"


class NamedGuard(Guard):
    """A registry guard, optionally negated with a leading ``!``."""

    def __init__(self, name: str, fn: GuardFunction, negated: bool = False) -> None:
        self._name = name
        self._fn = fn
        self._negated = negated

    def check(self, context: Dict[str, Any], event: Event) -> bool:
        result = bool(self._fn(context, event))
        return not result if self._negated else result

    @property
    def label(self) -> str:
        return f"!{self._name}" if self._negated else self._name


class AllGuard(Guard):
    def __init__(self, guards: Sequence[Guard]) -> None:
        self._guards = list(guards)

    def check(self, context: Dict[str, Any], event: Event) -> bool:
        return all(g.check(context, event) for g in self._guards)

    @property
    def label(self) -> str:
        return " && ".join(g.label for g in self._guards)


class AnyGuard(Guard):
    def __init__(self, guards: Sequence[Guard]) -> None:
        self._guards = list(guards)

    def check(self, context: Dict[str, Any], event: Event) -> bool:
        return any(g.check(context, event) for g in self._guards)

    @property
    def label(self) -> str:
        return " || ".join(g.label for g in self._guards)


class NotGuard(Guard):
    def __init__(self, guard: Guard) -> None:
        self._guard = guard

    def check(self, context: Dict[str, Any], event: Event) -> bool:
        return not self._guard.check(context, event)

    @property
    def label(self) -> str:
        return f"!({self._guard.label})"


class _PendingCombinator:
    """
    A combinator built before a registry is available. ``to_guard`` resolves
    its members against the machine registry when the transition is declared.
    """

    def __init__(self, kind: str, members: Sequence[GuardSpec]) -> None:
        self.kind = kind
        self.members = list(members)


def all_of(*guards: GuardSpec) -> _PendingCombinator:
    """Passes only when every member guard passes."""
    return _PendingCombinator("and", guards)


def any_of(*guards: GuardSpec) -> _PendingCombinator:
    """Passes when at least one member guard passes."""
    return _PendingCombinator("or", guards)


def not_(guard: GuardSpec) -> _PendingCombinator:
    """Inverts a single guard."""
    return _PendingCombinator("not", [guard])


def to_guard(spec: Any, registry: "Registry") -> Guard:
    """
    Resolve a guard specification into a Guard.

    :param spec: A callable, a registry name (``"!name"`` negates), a Guard,
        or a combinator from ``all_of``/``any_of``/``not_``.
    :param registry: The machine's frozen registry.
    :raises DefinitionError: If the name is unknown or the spec is not a guard.
    """
    if isinstance(spec, Guard):
        return spec
    if isinstance(spec, _PendingCombinator):
        members = [to_guard(m, registry) for m in spec.members]
        if spec.kind == "and":
            return AllGuard(members)
        if spec.kind == "or":
            return AnyGuard(members)
        return NotGuard(members[0])
    if isinstance(spec, str):
        negated = spec.startswith("!")
        name = spec[1:] if negated else spec
        fn = registry.guards.get(name)
        if fn is None:
            raise DefinitionError(f"Guard '{name}' not found in registry")
        return NamedGuard(name, fn, negated=negated)
    if isinstance(spec, Mapping) and spec.get("type") in ("and", "or", "not"):
        kind = spec["type"]
        if kind == "not":
            return NotGuard(to_guard(spec.get("guard"), registry))
        members = [to_guard(m, registry) for m in spec.get("guards", [])]
        return AllGuard(members) if kind == "and" else AnyGuard(members)
    if callable(spec):
        return CallableGuard(spec)
    raise DefinitionError(f"Invalid guard: {spec!r}")


class GuardChain:
    """
    Ordered guards that must all pass. A raising guard counts as a failure
    and is never propagated.
    """

    def __init__(self, guards: List[Guard] = None) -> None:
        self._guards: List[Guard] = guards or []

    def append(self, guard: Guard) -> None:
        self._guards.append(guard)

    def __len__(self) -> int:
        return len(self._guards)

    def __iter__(self):
        return iter(self._guards)

    def evaluate(self, context: Dict[str, Any], event: Event) -> bool:
        """
        Check guards left to right, stopping at the first failure.

        :param context: The instance context.
        :param event: The triggering event.
        :return: True if all guards pass (or there are none), otherwise False.
        """
        for guard in self._guards:
            try:
                if not guard.check(context, event):
                    return False
            except Exception:
                logger.debug("Guard %s raised while handling %r; treating as failed", guard.label, event.type, exc_info=True)
                return False
        return True
