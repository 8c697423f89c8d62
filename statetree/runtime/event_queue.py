# statetree/runtime/event_queue.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from statetree.core.errors import QueueClearedError
from statetree.core.events import Event


@dataclass
class QueuedEvent:
    """An event waiting for its turn, together with the future its sender holds."""

    event: Event
    future: asyncio.Future


class EventQueue:
    """
    FIFO of events that arrived while an instance was processing. Only events
    that have not started yet live here; the in-flight event never does.
    """

    def __init__(self) -> None:
        self._queue: Deque[QueuedEvent] = deque()

    def enqueue(self, item: QueuedEvent) -> None:
        """
        Add an item at the tail.

        :param item: The event and its pending future.
        """
        self._queue.append(item)

    def dequeue(self) -> Optional[QueuedEvent]:
        """
        Remove and return the next item, or None if the queue is empty.
        """
        if self._queue:
            return self._queue.popleft()
        return None

    def clear(self) -> int:
        """
        Remove every queued item, rejecting each one's future with
        QueueClearedError.

        :return: The number of items removed.
        """
        count = 0
        while self._queue:
            item = self._queue.popleft()
            count += 1
            if not item.future.done():
                item.future.set_exception(QueueClearedError())
        return count

    def __len__(self) -> int:
        return len(self._queue)

    def __bool__(self) -> bool:
        return bool(self._queue)
