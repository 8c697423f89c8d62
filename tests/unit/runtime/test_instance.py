# tests/unit/runtime/test_instance.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

import asyncio

import pytest

from statetree import Event, Snapshot, StateChange, create_machine
from statetree.core.actions import ActionResult
from statetree.core.errors import HistoryError, InvalidSnapshotError, QueueClearedError, StateNotFoundError


def build_slow_machine(delay=0.05, options=None):
    """idle --SLOW--> busy (slow entry) --NEXT--> done --RESET--> idle; PING is internal on idle."""
    m = create_machine("slow", options=options)
    idle = m.state("idle")
    busy = m.state("busy")
    done = m.state("done")

    async def slow_entry(ctx, evt):
        await asyncio.sleep(delay)

    busy.enter(slow_entry)
    idle.on("SLOW", busy)
    idle.on("PING")
    idle.on("NEXT", done)
    busy.on("NEXT", done)
    done.on("RESET", idle)
    m.initial(idle)
    return m


# -----------------------------------------------------------------------------
# SEND
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_send_resolves_with_state_context_and_results(counter_machine):
    instance = counter_machine.start({"count": 0})
    result = await instance.send("START")
    assert result.state == "active"
    assert result.context == {"count": 1}
    assert result.results == [ActionResult(None, None)]
    assert instance.history_size == 2


@pytest.mark.asyncio
async def test_send_accepts_event_objects(counter_machine):
    instance = counter_machine.start({"count": 0})
    result = await instance.send(Event("START"))
    assert result.state == "active"


def test_send_requires_running_loop(counter_machine):
    instance = counter_machine.start({"count": 0})
    with pytest.raises(RuntimeError):
        instance.send("START")


@pytest.mark.asyncio
async def test_unmatched_event_commits_nothing(counter_machine):
    instance = counter_machine.start({"count": 0})
    seen = []
    instance.subscribe(seen.append)
    result = await instance.send("UNKNOWN")
    assert result.state == "idle"
    assert result.results == []
    assert instance.history_size == 1
    assert seen == []


@pytest.mark.asyncio
async def test_result_context_is_a_copy(counter_machine):
    instance = counter_machine.start({"count": 0})
    result = await instance.send("START")
    result.context["count"] = 99
    instance.context["count"] = 98
    assert instance.context["count"] == 1


@pytest.mark.asyncio
async def test_action_failure_rejects_future_and_keeps_state(machine):
    a = machine.state("a")
    b = machine.state("b")

    def boom(ctx, evt):
        raise ValueError("action failed")

    a.on("FAIL", b).do(lambda ctx, evt: ctx.update(touched=True)).do(boom)
    a.on("OK", b)
    machine.initial(a)
    instance = machine.start()

    failing = instance.send("FAIL")
    following = instance.send("OK")
    with pytest.raises(ValueError, match="action failed"):
        await failing
    assert (await following).state == "b"
    assert instance.context == {"touched": True}
    assert instance.history_size == 2


@pytest.mark.asyncio
async def test_dynamic_target_error_rejects_future(machine):
    def route(ctx, evt):
        raise KeyError("route")

    a = machine.state("a")
    a.on("GO", route)
    machine.initial(a)
    instance = machine.start()
    with pytest.raises(KeyError):
        await instance.send("GO")
    assert instance.state == "a"


@pytest.mark.asyncio
async def test_processing_flags():
    instance = build_slow_machine().start()
    assert not instance.is_processing
    first = instance.send("SLOW")
    second = instance.send("NEXT")
    assert instance.is_processing
    assert instance.queue_size == 1
    await first
    assert (await second).state == "done"
    assert not instance.is_processing
    assert instance.queue_size == 0


@pytest.mark.asyncio
async def test_matches(nested_machine):
    instance = nested_machine.start()
    assert instance.matches("parent")
    assert instance.matches("parent.A")
    assert not instance.matches("parent.B")
    assert not instance.matches("par")
    assert instance.active_path == ("parent", "A")


@pytest.mark.asyncio
async def test_matches_nested_mapping(nested_machine):
    instance = nested_machine.start()
    assert instance.matches({"parent": "A"})
    assert not instance.matches({"parent": "B"})
    assert not instance.matches({"other": "A"})
    assert not instance.matches({"parent": None})
    assert instance.matches({"parent": {"A": None}})
    assert not instance.matches({"parent": {"A": "deeper"}})
    assert not instance.matches(42)

    await instance.send("NEXT")
    assert instance.matches({"parent": "B"})
    await instance.send("LEAVE")
    assert instance.matches({"other": None})
    assert not instance.matches({"parent": {"B": None}})


# -----------------------------------------------------------------------------
# QUEUE CONTROL
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_clear_queue_rejects_only_queued_events():
    instance = build_slow_machine().start()
    in_flight = instance.send("SLOW")
    queued = [instance.send("NEXT"), instance.send("RESET")]
    assert instance.clear_queue() == 2
    for future in queued:
        with pytest.raises(QueueClearedError):
            await future
    assert (await in_flight).state == "busy"


@pytest.mark.asyncio
async def test_send_priority_discards_queue_and_runs_next():
    instance = build_slow_machine().start()
    in_flight = instance.send("SLOW")
    stale = instance.send("RESET")
    urgent = instance.send_priority("NEXT")
    with pytest.raises(QueueClearedError):
        await stale
    assert (await in_flight).state == "busy"
    assert (await urgent).state == "done"


# -----------------------------------------------------------------------------
# SUBSCRIBERS
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_subscribers_receive_each_commit(counter_machine):
    instance = counter_machine.start({"count": 0})
    seen = []
    unsubscribe = instance.subscribe(seen.append)
    await instance.send("START")
    await instance.send("STOP")
    unsubscribe()
    await instance.send("START")
    assert seen == [StateChange("idle", "active", "START"), StateChange("active", "idle", "STOP")]


@pytest.mark.asyncio
async def test_subscriber_failure_does_not_affect_transition(counter_machine):
    instance = counter_machine.start({"count": 0})

    def broken(change):
        raise RuntimeError("subscriber failure")

    instance.subscribe(broken)
    assert (await instance.send("START")).state == "active"


@pytest.mark.asyncio
async def test_subscriber_can_send_follow_up_events(counter_machine):
    instance = counter_machine.start({"count": 0})
    follow_ups = []

    def on_change(change):
        if change.to_state == "active":
            follow_ups.append(instance.send("STOP"))

    instance.subscribe(on_change)
    await instance.send("START")
    assert (await follow_ups[0]).state == "idle"


# -----------------------------------------------------------------------------
# FIRE-AND-FORGET
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_fire_actions_run_after_commit_and_failures_are_isolated():
    reported = []
    seen = []
    m = create_machine("fire", options={"on_background_error": lambda exc, act: reported.append(str(exc))})
    a = m.state("a")
    b = m.state("b")

    def boom(ctx, evt):
        raise RuntimeError("sync background")

    async def async_boom(ctx, evt):
        await asyncio.sleep(0)
        raise RuntimeError("async background")

    a.on("GO", b).do(lambda ctx, evt: ctx.update(value=1)).fire(boom).fire(async_boom).fire(
        lambda ctx, evt: seen.append(ctx["value"])
    )
    m.initial(a)
    instance = m.start()

    result = await instance.send("GO")
    assert result.state == "b"
    assert len(result.results) == 1
    await instance.join_background()
    assert reported == ["sync background", "async background"]
    assert seen == [1]


@pytest.mark.asyncio
async def test_fire_actions_do_not_block_send():
    gate = asyncio.Event()
    m = create_machine("gate")
    a = m.state("a")
    b = m.state("b")

    async def wait_for_gate(ctx, evt):
        await gate.wait()

    a.on("GO", b).fire(wait_for_gate)
    m.initial(a)
    instance = m.start()
    assert (await instance.send("GO")).state == "b"
    gate.set()
    await instance.join_background()


# -----------------------------------------------------------------------------
# ROLLBACK / RESTORE
# -----------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_rollback_restores_previous_snapshot(counter_machine):
    instance = counter_machine.start({"count": 0})
    await instance.send("START")
    await instance.send("STOP")
    await instance.send("START")
    expected = instance.history[-2]
    seen = []
    instance.subscribe(seen.append)

    snapshot = instance.rollback()
    assert snapshot == expected
    assert instance.state == "idle"
    assert instance.context == {"count": 1}
    assert instance.history_size == 3
    assert seen == [StateChange("active", "idle", "rollback")]


def test_rollback_with_single_snapshot_changes_nothing(counter_machine):
    instance = counter_machine.start({"count": 0})
    snapshot = instance.rollback()
    assert snapshot == Snapshot("idle", {"count": 0})
    assert instance.history_size == 1


@pytest.mark.asyncio
async def test_rollback_clears_queue_but_not_in_flight():
    instance = build_slow_machine().start()
    await instance.send("PING")
    in_flight = instance.send("SLOW")
    queued = instance.send("NEXT")
    instance.rollback()
    with pytest.raises(QueueClearedError):
        await queued
    assert (await in_flight).state == "busy"


@pytest.mark.asyncio
async def test_restore_jumps_and_appends_to_history(counter_machine):
    instance = counter_machine.start({"count": 0})
    seen = []
    instance.subscribe(seen.append)
    restored = instance.restore({"state": "active", "context": {"count": 7}})
    assert restored == Snapshot("active", {"count": 7})
    assert instance.state == "active"
    assert instance.context == {"count": 7}
    assert instance.history_size == 2
    assert seen == [StateChange("idle", "active", "restore")]
    assert (await instance.send("STOP")).state == "idle"


def test_restore_composite_descends_to_initial_leaf(nested_machine):
    instance = nested_machine.start()
    restored = instance.restore(Snapshot("other", {}))
    assert restored.state == "other"
    assert instance.restore({"state": "parent", "context": {}}).state == "parent.A"
    assert instance.state == "parent.A"


def test_restore_accepts_machine_prefixed_path(nested_machine):
    instance = nested_machine.start()
    instance.restore({"state": "#nested.parent.B", "context": {}})
    assert instance.state == "parent.B"


@pytest.mark.parametrize("bad", [{"state": "parent.A"}, {"context": {}}, "parent", {"state": "", "context": {}}])
def test_restore_rejects_malformed_snapshot(nested_machine, bad):
    instance = nested_machine.start({"keep": 1})
    with pytest.raises(InvalidSnapshotError):
        instance.restore(bad)
    assert instance.state == "parent.A"
    assert instance.context == {"keep": 1}
    assert instance.history_size == 1


def test_restore_rejects_unknown_state(nested_machine):
    instance = nested_machine.start()
    with pytest.raises(StateNotFoundError):
        instance.restore({"state": "parent.Z", "context": {}})
    assert instance.state == "parent.A"


@pytest.mark.asyncio
async def test_history_respects_capacity():
    m = create_machine("small", options={"history_size": 3})
    a = m.state("a")
    a.on("TICK").do(lambda ctx, evt: ctx.update(n=ctx.get("n", 0) + 1))
    m.initial(a)
    instance = m.start()
    for _ in range(5):
        await instance.send("TICK")
    assert instance.history_size == 3
    assert [s.context["n"] for s in instance.history] == [3, 4, 5]
    assert instance.snapshot.context == {"n": 5}


@pytest.mark.asyncio
async def test_history_records_origin_and_trigger(counter_machine):
    instance = counter_machine.start({"count": 0})
    await instance.send("START")
    await instance.send("STOP")
    audit = [(s.from_state, s.state, s.trigger) for s in instance.history]
    assert audit == [(None, "idle", "init"), ("idle", "active", "START"), ("active", "idle", "STOP")]
    ids = [s.id for s in instance.history]
    assert ids == sorted(ids)
    assert all(s.timestamp is not None for s in instance.history)


def test_restore_is_recorded_with_restore_trigger(nested_machine):
    instance = nested_machine.start()
    recorded = instance.restore({"state": "other", "context": {"n": 1}})
    assert (recorded.from_state, recorded.trigger) == ("parent.A", "restore")
    assert instance.snapshot is recorded


@pytest.mark.asyncio
async def test_rollback_to_chosen_entry(counter_machine):
    instance = counter_machine.start({"count": 0})
    for event in ("START", "STOP", "START", "STOP"):
        await instance.send(event)
    target = instance.history_view.find(lambda s: s.trigger == "START")
    assert instance.history_view.steps_back(target) == 3
    seen = []
    instance.subscribe(seen.append)

    assert instance.rollback_to(target.id) == target
    assert instance.state == "active"
    assert instance.context == {"count": 1}
    assert instance.history_size == 2
    assert seen == [StateChange("idle", "active", "rollback")]


def test_rollback_to_current_entry_changes_nothing(counter_machine):
    instance = counter_machine.start({"count": 0})
    seen = []
    instance.subscribe(seen.append)
    assert instance.rollback_to(instance.snapshot) is instance.snapshot
    assert seen == []


@pytest.mark.asyncio
async def test_rollback_to_evicted_entry_raises():
    m = create_machine("tiny", options={"history_size": 2})
    a = m.state("a")
    a.on("TICK").do(lambda ctx, evt: None)
    m.initial(a)
    instance = m.start()
    first = instance.snapshot
    await instance.send("TICK")
    await instance.send("TICK")
    with pytest.raises(HistoryError):
        instance.rollback_to(first)
    assert instance.history_size == 2


@pytest.mark.asyncio
async def test_history_tail_is_always_current_snapshot(counter_machine):
    instance = counter_machine.start({"count": 0})
    await instance.send("START")
    view = instance.history_view
    assert not hasattr(instance, "history_manager")
    assert not hasattr(view, "clear")
    assert view.current is instance.snapshot
    assert instance.history[-1] is instance.snapshot
    assert instance.rollback().state == "idle"
    assert instance.rollback() == Snapshot("idle", {"count": 0})
    assert instance.snapshot is not None
