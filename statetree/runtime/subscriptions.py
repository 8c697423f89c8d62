# statetree/runtime/subscriptions.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StateChange:
    """What subscribers receive after each committed transition."""

    from_state: Optional[str]
    to_state: str
    event: str


Subscriber = Callable[[StateChange], None]


class SubscriberSet:
    """
    Manages the callbacks registered on one instance. Users can attach
    logging, monitoring, or UI updates without touching the engine.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback and return a function that removes it again.

        :param callback: Called with a StateChange after each commit.
        """
        if not callable(callback):
            raise TypeError("Subscriber must be callable")
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def notify(self, change: StateChange) -> None:
        """
        Call every subscriber once. A subscriber that raises is logged and the
        rest are still notified.
        """
        _SubscriberInvoker(list(self._subscribers)).invoke(change)

    def __len__(self) -> int:
        return len(self._subscribers)


class _SubscriberInvoker:
    """
    Internal helper that calls a fixed list of subscribers, isolating each
    one's failure from the others and from the transition itself.
    """

    def __init__(self, subscribers: List[Subscriber]) -> None:
        self._subscribers = subscribers

    def invoke(self, change: StateChange) -> None:
        for callback in self._subscribers:
            try:
                callback(change)
            except Exception:
                logger.exception("Subscriber %r failed for %s -> %s", callback, change.from_state, change.to_state)
