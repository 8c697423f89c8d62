# statetree/runtime/history.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

import copy
import itertools
import json
import logging
import time
from typing import Any, Callable, Dict, Generic, Iterator, List, Mapping, Optional, TypeVar, Union

from statetree.core.errors import InvalidSnapshotError, ValidationError
from statetree.runtime.context import clone_context

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Snapshot:
    """
    An immutable ``{state, context}`` pair. The context is deep-copied on the
    way in and on every read, so a snapshot never aliases live state.

    Snapshots recorded by a HistoryManager also carry audit data: a sequence
    ``id``, the ``from_state`` left, the ``trigger`` that caused the commit and
    a ``timestamp``. Audit data is not part of equality or of ``to_dict``.
    """

    __slots__ = ("_state", "_context", "_id", "_from_state", "_trigger", "_timestamp")

    def __init__(
        self,
        state: str,
        context: Mapping[str, Any],
        *,
        id: Optional[int] = None,
        from_state: Optional[str] = None,
        trigger: Optional[str] = None,
        timestamp: Optional[float] = None,
    ) -> None:
        self._state = state
        self._context = clone_context(context)
        self._id = id
        self._from_state = from_state
        self._trigger = trigger
        self._timestamp = timestamp

    @property
    def state(self) -> str:
        """Dot-joined active path."""
        return self._state

    @property
    def context(self) -> Dict[str, Any]:
        """A fresh deep copy of the captured context."""
        return copy.deepcopy(self._context)

    @property
    def id(self) -> Optional[int]:
        return self._id

    @property
    def from_state(self) -> Optional[str]:
        return self._from_state

    @property
    def trigger(self) -> Optional[str]:
        return self._trigger

    @property
    def timestamp(self) -> Optional[float]:
        """Seconds since the epoch, as returned by ``time.time()``."""
        return self._timestamp

    def to_dict(self) -> Dict[str, Any]:
        """Plain form suitable for external persistence."""
        return {"state": self._state, "context": copy.deepcopy(self._context)}

    def to_record(self) -> Dict[str, Any]:
        """The plain form plus audit data, for logs and inspection."""
        record = self.to_dict()
        record.update(
            id=self._id,
            from_state=self._from_state,
            trigger=self._trigger,
            timestamp=self._timestamp,
        )
        return record

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dict(), **kwargs)

    @classmethod
    def from_dict(cls, data: Any) -> "Snapshot":
        """
        Build a snapshot from its plain form.

        :raises InvalidSnapshotError: If ``state`` or ``context`` is missing or mistyped.
        """
        if isinstance(data, Snapshot):
            return data
        if not isinstance(data, Mapping):
            raise InvalidSnapshotError("Snapshot must be a mapping with 'state' and 'context'")
        if "state" not in data or "context" not in data:
            raise InvalidSnapshotError("Snapshot must have state and context properties")
        if not isinstance(data["state"], str) or not data["state"]:
            raise InvalidSnapshotError("Snapshot state must be a non-empty string")
        if not isinstance(data["context"], Mapping):
            raise InvalidSnapshotError("Snapshot context must be a mapping")
        return cls(data["state"], data["context"])

    @classmethod
    def from_json(cls, text: str) -> "Snapshot":
        try:
            data = json.loads(text)
        except ValueError as exc:
            raise InvalidSnapshotError(f"Snapshot is not valid JSON: {exc}") from exc
        return cls.from_dict(data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Snapshot):
            return NotImplemented
        return self._state == other._state and self._context == other._context

    __hash__ = None

    def __repr__(self) -> str:
        return f"Snapshot(state={self._state!r}, context={self._context!r})"


class RingBuffer(Generic[T]):
    """
    Fixed-capacity ring. Index 0 is the oldest item and ``len - 1`` the newest;
    appending to a full ring evicts the oldest.
    """

    def __init__(self, capacity: int) -> None:
        if not isinstance(capacity, int) or capacity < 1:
            raise ValidationError("RingBuffer capacity must be greater than 0")
        self._capacity = capacity
        self._items: List[Optional[T]] = [None] * capacity
        self._head = 0  # oldest
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, item: T) -> Optional[T]:
        """Add ``item`` at the tail and return the evicted item, if any."""
        evicted = None
        if self._size == self._capacity:
            evicted = self._items[self._head]
            self._items[self._head] = item
            self._head = (self._head + 1) % self._capacity
        else:
            self._items[(self._head + self._size) % self._capacity] = item
            self._size += 1
        return evicted

    def pop(self) -> T:
        """Remove and return the newest item."""
        if self._size == 0:
            raise IndexError("pop from empty RingBuffer")
        index = (self._head + self._size - 1) % self._capacity
        item = self._items[index]
        self._items[index] = None
        self._size -= 1
        return item

    def newest(self) -> Optional[T]:
        return self[self._size - 1] if self._size else None

    def oldest(self) -> Optional[T]:
        return self[0] if self._size else None

    def clear(self) -> None:
        self._items = [None] * self._capacity
        self._head = 0
        self._size = 0

    def __getitem__(self, index: int) -> T:
        if index < 0:
            index += self._size
        if index < 0 or index >= self._size:
            raise IndexError("RingBuffer index out of range")
        return self._items[(self._head + index) % self._capacity]

    def __len__(self) -> int:
        return self._size

    def __iter__(self) -> Iterator[T]:
        for index in range(self._size):
            yield self._items[(self._head + index) % self._capacity]


class HistoryManager:
    """
    Bounded history of an instance's committed states. The newest snapshot is
    always the current one; once something has been recorded the history is
    never empty again.
    """

    def __init__(self, capacity: int) -> None:
        self._buffer: RingBuffer[Snapshot] = RingBuffer(capacity)
        self._ids = itertools.count(1)

    @property
    def capacity(self) -> int:
        return self._buffer.capacity

    @property
    def current(self) -> Optional[Snapshot]:
        return self._buffer.newest()

    def record(
        self,
        state: str,
        context: Mapping[str, Any],
        from_state: Optional[str] = None,
        trigger: Optional[str] = None,
    ) -> Snapshot:
        """
        Capture and append a snapshot of ``state`` and ``context``.

        :param from_state: The path left by the commit, None for the first entry.
        :param trigger: What caused the commit, usually an event type.
        :return: The recorded snapshot, stamped with the next sequence id.
        """
        snapshot = Snapshot(
            state,
            context,
            id=next(self._ids),
            from_state=from_state,
            trigger=trigger,
            timestamp=time.time(),
        )
        evicted = self._buffer.append(snapshot)
        if evicted is not None:
            logger.debug("History full; evicted entry %s ('%s')", evicted.id, evicted.state)
        return snapshot

    def step_back(self) -> Optional[Snapshot]:
        """
        Discard the newest snapshot and return the one before it. Returns None
        (and changes nothing) when fewer than two snapshots exist.
        """
        if len(self._buffer) < 2:
            return None
        self._buffer.pop()
        return self._buffer.newest()

    def rewind_to(self, entry: Union[Snapshot, int]) -> Optional[Snapshot]:
        """
        Discard every snapshot newer than ``entry`` and return ``entry``.
        Returns None (and changes nothing) when it is no longer in history.
        """
        steps = self.steps_back(entry)
        if steps < 0:
            return None
        for _ in range(steps):
            self._buffer.pop()
        return self._buffer.newest()

    def entries(self) -> List[Snapshot]:
        """Snapshots from oldest to newest."""
        return list(self._buffer)

    def get(self, index: int) -> Optional[Snapshot]:
        try:
            return self._buffer[index]
        except IndexError:
            return None

    def get_by_id(self, id: int) -> Optional[Snapshot]:
        return self.find(lambda s: s.id == id)

    def get_range(self, start: Optional[int] = None, end: Optional[int] = None) -> List[Snapshot]:
        """Snapshots ``start`` (inclusive) to ``end`` (exclusive), oldest first, with slice semantics."""
        return self.entries()[start:end]

    def find(self, predicate: Callable[[Snapshot], bool]) -> Optional[Snapshot]:
        return next((s for s in self._buffer if predicate(s)), None)

    def filter(self, predicate: Callable[[Snapshot], bool]) -> List[Snapshot]:
        return [s for s in self._buffer if predicate(s)]

    def steps_back(self, entry: Union[Snapshot, int]) -> int:
        """
        How many rollbacks lead from the current snapshot to ``entry``.

        :param entry: A recorded snapshot or its id.
        :return: 0 for the current snapshot, -1 when ``entry`` is not in history.
        """
        target = entry.id if isinstance(entry, Snapshot) else entry
        if target is None:
            return -1
        for steps, snapshot in enumerate(reversed(self.entries())):
            if snapshot.id == target:
                return steps
        return -1

    def can_rollback(self, entry: Union[Snapshot, int]) -> bool:
        """True when ``entry`` is still in history and older than the current snapshot."""
        return self.steps_back(entry) > 0

    def clear(self) -> None:
        """Drop every snapshot except the current one."""
        current = self._buffer.newest()
        self._buffer.clear()
        if current is not None:
            self._buffer.append(current)

    def __len__(self) -> int:
        return len(self._buffer)


class HistoryView:
    """
    Read-only queries over a HistoryManager. Handed out by instances so that
    callers can inspect history without being able to reshape it.
    """

    __slots__ = ("_manager",)

    def __init__(self, manager: HistoryManager) -> None:
        self._manager = manager

    @property
    def capacity(self) -> int:
        return self._manager.capacity

    @property
    def current(self) -> Optional[Snapshot]:
        return self._manager.current

    def entries(self) -> List[Snapshot]:
        return self._manager.entries()

    def get(self, index: int) -> Optional[Snapshot]:
        return self._manager.get(index)

    def get_by_id(self, id: int) -> Optional[Snapshot]:
        return self._manager.get_by_id(id)

    def get_range(self, start: Optional[int] = None, end: Optional[int] = None) -> List[Snapshot]:
        return self._manager.get_range(start, end)

    def find(self, predicate: Callable[[Snapshot], bool]) -> Optional[Snapshot]:
        return self._manager.find(predicate)

    def filter(self, predicate: Callable[[Snapshot], bool]) -> List[Snapshot]:
        return self._manager.filter(predicate)

    def steps_back(self, entry: Union[Snapshot, int]) -> int:
        return self._manager.steps_back(entry)

    def can_rollback(self, entry: Union[Snapshot, int]) -> bool:
        return self._manager.can_rollback(entry)

    def __len__(self) -> int:
        return len(self._manager)

    def __iter__(self) -> Iterator[Snapshot]:
        return iter(self._manager.entries())
