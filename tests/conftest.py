# tests/conftest.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

import asyncio
from typing import List

import pytest

from statetree import assign, create_machine


class Recorder:
    """Collects labels in call order; its methods double as actions."""

    def __init__(self) -> None:
        self.calls: List[str] = []

    def __call__(self, label: str):
        def record(context, event):
            self.calls.append(label)

        record.__name__ = label
        return record

    def slow(self, label: str, delay: float = 0.01):
        async def record(context, event):
            await asyncio.sleep(delay)
            self.calls.append(label)

        record.__name__ = label
        return record


@pytest.fixture
def recorder():
    """A fresh call recorder."""
    return Recorder()


@pytest.fixture
def machine():
    """An empty builder-API machine."""
    return create_machine("test")


@pytest.fixture
def counter_machine():
    """idle --START--> active, where entering active increments count."""
    m = create_machine("counter")
    idle = m.state("idle")
    active = m.state("active")
    idle.on("START", active)
    active.on("STOP", "idle")
    active.enter(assign(lambda ctx, evt: {"count": ctx["count"] + 1}))
    m.initial(idle)
    return m


@pytest.fixture
def nested_machine():
    """
    parent(A, B) and other. A --NEXT--> B, parent-level LEAVE --> other,
    other --BACK--> parent.
    """
    m = create_machine("nested")
    parent = m.state("parent")
    a = parent.state("A")
    b = parent.state("B")
    other = m.state("other")
    parent.initial(a)
    a.on("NEXT", "B")
    parent.on("LEAVE", "other")
    other.on("BACK", "parent")
    m.initial(parent)
    return m
