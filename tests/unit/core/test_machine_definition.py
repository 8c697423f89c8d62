# tests/unit/core/test_machine_definition.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

import pytest

from statetree import MachineOptions, assign, create_machine
from statetree.core.errors import DefinitionError, TransitionError
from statetree.core.state_machine import Machine
from statetree.core.validation import Validator


def test_create_machine_with_id_returns_empty_builder():
    m = create_machine("m")
    assert isinstance(m, Machine)
    assert m.id == "m"
    assert m.states() == []
    assert not m.started


@pytest.mark.parametrize("bad", [None, 3, ["m"]])
def test_create_machine_rejects_bad_definitions(bad):
    with pytest.raises(DefinitionError):
        create_machine(bad)


def test_options_accept_mapping():
    m = create_machine("m", options={"history_size": 3})
    assert m.options == MachineOptions(history_size=3)


@pytest.mark.parametrize("size", [0, -1, 1.5, True])
def test_invalid_history_size(size):
    with pytest.raises(DefinitionError):
        MachineOptions(history_size=size)


def test_start_without_states_is_rejected(machine):
    with pytest.raises(DefinitionError, match="no states"):
        machine.start()


def test_start_without_initial_is_rejected(machine):
    machine.state("a")
    with pytest.raises(DefinitionError, match="no initial"):
        machine.start()


def test_initial_must_exist(machine):
    with pytest.raises(DefinitionError):
        machine.initial("ghost")


def test_composite_without_initial_is_rejected(machine):
    parent = machine.state("parent")
    parent.state("child")
    machine.initial(parent)
    with pytest.raises(DefinitionError, match="parent"):
        machine.start()


def test_validator_reports_every_problem(machine):
    one = machine.state("one")
    one.state("x")
    two = machine.state("two")
    two.state("y")
    two.initial("nope")
    errors = Validator().collect_errors(machine.root)
    assert len(errors) == 3


def test_tree_is_frozen_after_first_start(counter_machine):
    counter_machine.start({"count": 0})
    assert counter_machine.started
    idle = counter_machine.find_state("idle")
    with pytest.raises(DefinitionError):
        counter_machine.state("late")
    with pytest.raises(DefinitionError):
        idle.on("LATE", "active")
    with pytest.raises(DefinitionError):
        idle.enter(lambda c, e: None)
    with pytest.raises(DefinitionError):
        idle.get_transitions("START")[0].do(lambda c, e: None)


def test_start_runs_initial_entries_outermost_first(machine, recorder):
    outer = machine.state("outer")
    inner = outer.state("inner")
    leaf = inner.state("leaf")
    outer.initial(inner)
    inner.initial(leaf)
    outer.enter(recorder("outer"))
    inner.enter(recorder("inner"))
    leaf.enter(recorder("leaf"))
    machine.initial(outer)
    instance = machine.start()
    assert instance.state == "outer.inner.leaf"
    assert recorder.calls == ["outer", "inner", "leaf"]


def test_nested_initial_state(machine):
    outer = machine.state("outer")
    outer.state("first")
    second = outer.state("second")
    outer.initial("first")
    machine.initial("outer.second")
    assert machine.root.initial_id == "outer"
    assert machine.start().state == "outer.second"
    assert machine.initial_state is second


def test_start_clones_the_given_context(counter_machine):
    context = {"count": 0, "nested": {"list": [1]}}
    instance = counter_machine.start(context)
    context["nested"]["list"].append(2)
    assert instance.context == {"count": 0, "nested": {"list": [1]}}


def test_instances_do_not_share_context(counter_machine):
    first = counter_machine.start({"count": 0})
    second = counter_machine.start({"count": 5})
    assert first.context["count"] == 0
    assert second.context["count"] == 5


def test_start_rejects_async_initial_entry(machine, recorder):
    machine.initial(machine.state("only").enter(recorder.slow("load")))
    with pytest.raises(TransitionError):
        machine.start()


@pytest.mark.asyncio
async def test_start_async_awaits_initial_entries(machine):
    async def load(ctx, evt):
        return None

    only = machine.state("only")
    only.enter(assign({"ready": True}))
    only.enter(load)
    machine.initial(only)
    instance = await machine.start_async()
    assert instance.context == {"ready": True}


def test_find_state_forms(nested_machine):
    assert nested_machine.find_state("parent.B").path == "parent.B"
    assert nested_machine.find_state("#parent.B").path == "parent.B"
    assert nested_machine.find_state("#nested.parent.B").path == "parent.B"
    assert nested_machine.find_state("parent.C") is None
    assert nested_machine.find_state("^") is None
    assert nested_machine.find_state("") is None


def test_global_handlers_live_on_root(machine):
    descriptor = machine.on("RESET", "a")
    assert descriptor.source is machine.root
    assert machine.root.get_transitions("RESET") == [descriptor]


def test_invalid_target_type_is_rejected(machine):
    state = machine.state("a")
    with pytest.raises(DefinitionError):
        state.on("GO", 42)
    with pytest.raises(DefinitionError):
        state.on("GO", "")
    with pytest.raises(DefinitionError):
        state.on("", "a")


def test_registry_is_snapshotted_at_creation():
    actions = {"mark": lambda c, e: "marked"}
    m = create_machine("m", actions=actions)
    actions["late"] = lambda c, e: None
    state = m.state("a")
    with pytest.raises(DefinitionError):
        state.enter("late")
    state.enter("mark")
