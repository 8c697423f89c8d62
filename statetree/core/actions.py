# statetree/core/actions.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Union

from statetree.core.errors import DefinitionError, TransitionError
from statetree.core.events import Event
from statetree.runtime.context import merge_context

if TYPE_CHECKING:
    from statetree.core.config import Registry

logger = logging.getLogger(__name__)

ActionFunction = Callable[[Dict[str, Any], Event], Any]


@dataclass(frozen=True)
class ActionResult:
    """One entry in the results list of a pipeline run."""

    name: Optional[str]
    value: Any


class Action:
    """
    Capability interface for everything that can run inside a pipeline.
    ``run`` returns either a plain value or an awaitable; the pipeline
    awaits the latter.
    """

    name: Optional[str] = None
    is_assign: bool = False

    def run(self, context: Dict[str, Any], event: Event) -> Any:
        """
        Execute the action.

        :param context: The live instance context.
        :param event: The triggering event.
        """
        raise NotImplementedError()

    @property
    def label(self) -> str:
        return self.name or "action"


class InlineAction(Action):
    """Wraps a plain ``(context, event)`` callable."""

    def __init__(self, fn: ActionFunction) -> None:
        self._fn = fn

    def run(self, context: Dict[str, Any], event: Event) -> Any:
        return self._fn(context, event)

    @property
    def label(self) -> str:
        name = getattr(self._fn, "__name__", "")
        return name if name and name != "<lambda>" else "action"


class NamedAction(Action):
    """
    An action carrying a name, either looked up in the registry or created
    with :func:`action`. Its results are reported under that name.
    """

    def __init__(self, name: str, inner: Action) -> None:
        self.name = name
        self._inner = inner
        self.is_assign = inner.is_assign

    def run(self, context: Dict[str, Any], event: Event) -> Any:
        return self._inner.run(context, event)


class AssignAction(Action):
    """
    Applies a context update. The update is a mapping (values that are
    callables are evaluated with ``(context, event)``) or a callable, possibly
    async, returning such a mapping. Always reports ``None`` as its value.
    """

    is_assign = True

    def __init__(self, assigner: Union[Mapping[str, Any], ActionFunction]) -> None:
        if not callable(assigner) and not isinstance(assigner, Mapping):
            raise DefinitionError(f"assign() expects a mapping or a callable, got {type(assigner).__name__}")
        self._assigner = assigner

    def _compute(self, context: Dict[str, Any], event: Event) -> Any:
        if callable(self._assigner):
            return self._assigner(context, event)
        return {key: value(context, event) if callable(value) else value for key, value in self._assigner.items()}

    def run(self, context: Dict[str, Any], event: Event) -> Any:
        update = self._compute(context, event)
        if inspect.isawaitable(update):
            return _merge_when_ready(context, update)
        merge_context(context, update)
        return None

    @property
    def label(self) -> str:
        return "assign"


async def _merge_when_ready(context: Dict[str, Any], update: Awaitable[Any]) -> None:
    merge_context(context, await update)
    return None


def assign(assigner: Union[Mapping[str, Any], ActionFunction]) -> AssignAction:
    """Create an assign action that deep-merges an update into the context."""
    return AssignAction(assigner)


def action(name: str, fn: Union[ActionFunction, Action]) -> NamedAction:
    """
    Create a named action so its result is reported as ``ActionResult(name, value)``.

    :param name: Non-empty action name.
    :param fn: The callable (or Action) implementing it.
    """
    if not name or not isinstance(name, str):
        raise DefinitionError("Action name is required")
    if isinstance(fn, Action):
        return NamedAction(name, fn)
    if not callable(fn):
        raise DefinitionError("Action function is required")
    return NamedAction(name, InlineAction(fn))


def to_action(spec: Any, registry: "Registry") -> Action:
    """
    Resolve an action descriptor into an Action, once, at definition time.

    :param spec: An Action, a callable, or a registry name.
    :param registry: The machine's frozen registry.
    :raises DefinitionError: If the name is unknown or the spec is not an action.
    """
    if isinstance(spec, Action):
        return spec
    if isinstance(spec, str):
        if spec not in registry.actions:
            raise DefinitionError(f"Action '{spec}' not found in registry")
        entry = registry.actions[spec]
        if isinstance(entry, Action):
            return NamedAction(spec, entry)
        if callable(entry):
            return NamedAction(spec, InlineAction(entry))
        raise DefinitionError(f"Registry action '{spec}' is not callable")
    if callable(spec):
        return InlineAction(spec)
    raise DefinitionError(f"Invalid action: {spec!r}")


def to_actions(specs: Any, registry: "Registry") -> List[Action]:
    """Normalize ``None``, a single spec, or a list of specs into Actions."""
    if specs is None:
        return []
    if isinstance(specs, (list, tuple)):
        return [to_action(s, registry) for s in specs]
    return [to_action(specs, registry)]


class ActionPipeline:
    """
    Runs batches of actions strictly in order against one context. The first
    failure halts the batch and propagates unchanged; mutations made by the
    actions that already completed are kept.
    """

    async def run(self, actions: Iterable[Action], context: Dict[str, Any], event: Event) -> List[ActionResult]:
        """
        Execute a blocking batch, awaiting each awaitable result in turn.

        :param actions: Actions in execution order.
        :param context: The live context to mutate.
        :param event: The triggering event.
        :return: One ActionResult per executed action.
        """
        results: List[ActionResult] = []
        for act in actions:
            value = act.run(context, event)
            if inspect.isawaitable(value):
                value = await value
            results.append(ActionResult(act.name, None if act.is_assign else value))
        return results

    def run_sync(self, actions: Iterable[Action], context: Dict[str, Any], event: Event) -> List[ActionResult]:
        """
        Execute a batch without an event loop.

        :raises TransitionError: If an action returns an awaitable.
        """
        results: List[ActionResult] = []
        for act in actions:
            value = act.run(context, event)
            if inspect.isawaitable(value):
                if inspect.iscoroutine(value):
                    value.close()
                raise TransitionError(
                    f"Action '{act.label}' is asynchronous and cannot run synchronously; use start_async()"
                )
            results.append(ActionResult(act.name, None if act.is_assign else value))
        return results

    async def run_detached(
        self,
        actions: Iterable[Action],
        context: Dict[str, Any],
        event: Event,
        on_error: Optional[Callable[[BaseException, Action], None]] = None,
    ) -> None:
        """
        Execute fire-and-forget actions in order. Each failure is reported to
        ``on_error`` (or logged) and the remaining actions still run.
        """
        for act in actions:
            try:
                value = act.run(context, event)
                if inspect.isawaitable(value):
                    await value
            except Exception as exc:
                _report_background_error(exc, act, on_error)


def _report_background_error(
    exc: BaseException, act: Action, on_error: Optional[Callable[[BaseException, Action], None]]
) -> None:
    if on_error is None:
        logger.error("Fire-and-forget action '%s' failed", act.label, exc_info=exc)
        return
    try:
        on_error(exc, act)
    except Exception:
        logger.exception("Background error handler failed while reporting '%s'", act.label)
