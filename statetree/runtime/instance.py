# statetree/runtime/instance.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional, Set, Tuple, Union

from statetree.core.actions import Action, ActionPipeline, ActionResult
from statetree.core.errors import HistoryError, StateNotFoundError
from statetree.core.events import Event
from statetree.core.resolver import TransitionResolver
from statetree.runtime.context import clone_context
from statetree.runtime.event_queue import EventQueue, QueuedEvent
from statetree.runtime.history import HistoryManager, HistoryView, Snapshot
from statetree.runtime.subscriptions import StateChange, Subscriber, SubscriberSet

if TYPE_CHECKING:
    from statetree.core.state_machine import Machine
    from statetree.core.states import StateNode

logger = logging.getLogger(__name__)

INIT_EVENT = "init"
ROLLBACK_EVENT = "rollback"
RESTORE_EVENT = "restore"


@dataclass(frozen=True)
class SendResult:
    """What a ``send`` future resolves to."""

    state: str
    context: Dict[str, Any]
    results: List[ActionResult]


class Instance:
    """
    One running copy of a machine. Owns its active leaf, its context, its
    history, its event queue and its subscribers; nothing is shared with
    other instances of the same machine.

    Events are processed one at a time. ``send`` while idle starts processing
    right away; ``send`` while processing queues the event and returns a
    future settled when its turn comes. Call ``send`` from a running event
    loop.
    """

    def __init__(self, machine: "Machine", context: Dict[str, Any], leaf: "StateNode") -> None:
        """
        Instances are created by ``Machine.start``/``Machine.start_async``.

        :param machine: The started machine.
        :param context: The context this instance now owns.
        :param leaf: The initial active leaf, with entry actions already run.
        """
        self._machine = machine
        self._context = context
        self._leaf = leaf
        self._history = HistoryManager(machine.options.history_size)
        self._queue = EventQueue()
        self._subscribers = SubscriberSet()
        self._resolver = TransitionResolver()
        self._pipeline = ActionPipeline()
        self._processing = False
        self._background: Set[asyncio.Task] = set()
        self._history.record(self.state, self._context, trigger=INIT_EVENT)

    # -- inspection ------------------------------------------------------------

    @property
    def machine(self) -> "Machine":
        return self._machine

    @property
    def state(self) -> str:
        """The active path as a dot-joined string."""
        return self._leaf.path

    @property
    def active_path(self) -> Tuple[str, ...]:
        """Ids of the active states from the top-level state down to the leaf."""
        return self._leaf.active_ids()

    @property
    def context(self) -> Dict[str, Any]:
        """A deep copy of the current context."""
        return clone_context(self._context)

    @property
    def history(self) -> List[Snapshot]:
        """Snapshots from oldest to newest."""
        return self._history.entries()

    @property
    def history_view(self) -> HistoryView:
        """Read-only queries over this instance's history, including audit data."""
        return HistoryView(self._history)

    @property
    def snapshot(self) -> Snapshot:
        """The current (newest) snapshot."""
        return self._history.current

    @property
    def history_size(self) -> int:
        return len(self._history)

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    def matches(self, path: Union[str, Mapping[str, Any]]) -> bool:
        """
        True when the active path is ``path`` or lies inside it.

        ``path`` may also use nested-mapping notation: ``{"parent": "B"}`` is
        ``"parent.B"``, ``{"parent": {"B": "x"}}`` is ``"parent.B.x"``, and a
        key mapped to anything else (``{"other": None}``) must be the active
        leaf itself.
        """
        if isinstance(path, Mapping):
            return _matches_nested(self.active_path, path, 0)
        if not isinstance(path, str):
            return False
        state = self.state
        return state == path or state.startswith(path + ".")

    # -- events --------------------------------------------------------------------

    def send(self, event: Union[str, Event], payload: Optional[Mapping[str, Any]] = None) -> asyncio.Future:
        """
        Deliver an event.

        :param event: Event type, or a ready-made Event.
        :param payload: Event payload when ``event`` is a string.
        :return: A future resolving to a SendResult, or failing with the
            error of a blocking action or with QueueClearedError.
        :raises RuntimeError: If no event loop is running.
        """
        if not isinstance(event, Event):
            event = Event(event, payload)
        loop = asyncio.get_running_loop()
        item = QueuedEvent(event, loop.create_future())

        if self._processing:
            self._queue.enqueue(item)
            logger.debug("Queued %r behind the in-flight event (%d waiting)", event.type, len(self._queue))
            return item.future

        self._processing = True
        loop.create_task(self._drain(item))
        return item.future

    def send_priority(self, event: Union[str, Event], payload: Optional[Mapping[str, Any]] = None) -> asyncio.Future:
        """Clear the queue, then send ``event`` ahead of anything queued later."""
        self.clear_queue()
        return self.send(event, payload)

    def clear_queue(self) -> int:
        """
        Reject every queued, not yet started event with QueueClearedError.
        The in-flight event is unaffected.

        :return: The number of events discarded.
        """
        count = self._queue.clear()
        if count:
            logger.debug("Cleared %d queued event(s) on '%s'", count, self._machine.id)
        return count

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a StateChange callback; returns the unsubscribe function."""
        return self._subscribers.subscribe(callback)

    async def join_background(self) -> None:
        """Wait until every fire-and-forget task scheduled so far has finished."""
        while self._background:
            await asyncio.gather(*list(self._background))

    async def _drain(self, item: Optional[QueuedEvent]) -> None:
        try:
            while item is not None:
                await self._process(item)
                item = self._queue.dequeue()
        except asyncio.CancelledError:
            if item is not None:
                item.future.cancel()
            self._queue.clear()
            raise
        finally:
            self._processing = False

    async def _process(self, item: QueuedEvent) -> None:
        if item.future.done():
            return
        try:
            result = await self._step(item.event)
        except Exception as exc:
            logger.debug("Event %r failed on '%s': %r", item.event.type, self._machine.id, exc)
            if not item.future.done():
                item.future.set_exception(exc)
            return
        if not item.future.done():
            item.future.set_result(result)

    async def _step(self, event: Event) -> SendResult:
        leaf = self._leaf
        context = self._context
        plan = self._resolver.resolve(leaf, event, context)
        if plan is None:
            logger.debug("No transition for %r from '%s'", event.type, leaf.path)
            return SendResult(leaf.path, clone_context(context), [])

        results = await self._pipeline.run(plan.blocking_actions(), context, event)

        self._leaf = plan.target
        self._context = context
        self._history.record(self.state, context, from_state=leaf.path, trigger=event.type)
        logger.debug("Committed %r: '%s' -> '%s'", event.type, leaf.path, self.state)

        self._schedule_background(plan.descriptor.fire_actions, event)
        self._subscribers.notify(StateChange(leaf.path, self.state, event.type))
        return SendResult(self.state, clone_context(context), results)

    def _schedule_background(self, actions: List[Action], event: Event) -> None:
        if not actions:
            return
        task = asyncio.get_running_loop().create_task(
            self._pipeline.run_detached(actions, self._context, event, self._machine.options.on_background_error)
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # -- history -------------------------------------------------------------------

    def rollback(self) -> Snapshot:
        """
        Return to the previous snapshot without guards or actions, discarding
        queued events. With a single snapshot nothing changes.

        :return: The snapshot now current.
        """
        previous = self._history.step_back()
        if previous is None:
            return self._history.current
        self._jump_back(previous)
        return previous

    def rollback_to(self, entry: Union[Snapshot, int]) -> Snapshot:
        """
        Return to an earlier snapshot, given by itself or by its id, discarding
        every newer snapshot and all queued events. Rolling back to the current
        snapshot changes nothing.

        :raises HistoryError: If the entry is no longer in history.
        """
        steps = self._history.steps_back(entry)
        if steps < 0:
            raise HistoryError(f"History entry {getattr(entry, 'id', entry)!r} is not available for rollback")
        if steps == 0:
            return self._history.current
        target = self._history.rewind_to(entry)
        self._jump_back(target)
        return target

    def _jump_back(self, target: Snapshot) -> None:
        from_state = self.state
        self._leaf = self._machine.find_state(target.state)
        self._context = target.context
        self.clear_queue()
        logger.debug("Rolled back '%s' -> '%s' (entry %s)", from_state, self.state, target.id)
        self._subscribers.notify(StateChange(from_state, self.state, ROLLBACK_EVENT))

    def restore(self, snapshot: Union[Snapshot, Mapping[str, Any]]) -> Snapshot:
        """
        Jump directly to ``snapshot`` without guards or actions, discarding
        queued events, and record it in history. A composite path is
        completed through its initial children; ``#`` references are stored
        as plain paths.

        :param snapshot: A Snapshot or its plain ``{"state", "context"}`` form.
        :return: The newly recorded snapshot.
        :raises InvalidSnapshotError: If the snapshot is malformed.
        :raises StateNotFoundError: If the path is not part of this machine.
        """
        restored = Snapshot.from_dict(snapshot)
        node = self._machine.find_state(restored.state)
        if node is None:
            raise StateNotFoundError(f"Invalid state in snapshot: {restored.state}")
        leaf = node.descend_initial()

        from_state = self.state
        self._leaf = leaf
        self._context = restored.context
        self.clear_queue()
        recorded = self._history.record(leaf.path, self._context, from_state=from_state, trigger=RESTORE_EVENT)
        logger.debug("Restored '%s' -> '%s'", from_state, self.state)
        self._subscribers.notify(StateChange(from_state, self.state, RESTORE_EVENT))
        return recorded

    def __repr__(self) -> str:
        return f"Instance({self._machine.id!r}, state={self.state!r})"


def _matches_nested(parts: Tuple[str, ...], value: Mapping[str, Any], level: int) -> bool:
    if level >= len(parts) or parts[level] not in value:
        return False
    selected = value[parts[level]]
    if isinstance(selected, Mapping):
        return _matches_nested(parts, selected, level + 1)
    if isinstance(selected, str):
        rest = ".".join(parts[level + 1 :])
        return rest == selected or rest.startswith(selected + ".")
    return level == len(parts) - 1
