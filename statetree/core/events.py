# statetree/core/events.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from statetree.core.errors import ValidationError


class Event:
    """
    Represents a signal sent to a running instance. Events carry a type that
    selects handlers and a structured payload that guards and actions read.
    """

    __slots__ = ("_type", "_payload")

    def __init__(self, type: str, payload: Optional[Mapping[str, Any]] = None) -> None:
        """
        Create an event identified by its type.

        :param type: A non-empty string naming the event.
        :param payload: Optional mapping of event data.
        """
        if not type or not isinstance(type, str):
            raise ValidationError("Event type must be a non-empty string")
        if payload is not None and not isinstance(payload, Mapping):
            raise ValidationError(f"Event payload for '{type}' must be a mapping")
        self._type = type
        self._payload: Dict[str, Any] = dict(payload or {})

    @property
    def type(self) -> str:
        """The name of the event."""
        return self._type

    @property
    def payload(self) -> Dict[str, Any]:
        """Structured event data."""
        return self._payload

    def get(self, key: str, default: Any = None) -> Any:
        """Shortcut for ``event.payload.get(key, default)``."""
        return self._payload.get(key, default)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Event):
            return NotImplemented
        return self._type == other._type and self._payload == other._payload

    def __repr__(self) -> str:
        return f"Event({self._type!r}, {self._payload!r})"
