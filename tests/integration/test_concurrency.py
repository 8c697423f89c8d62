# tests/integration/test_concurrency.py
# Copyright (c) 2024 Brad Edwards
# Licensed under the MIT License - see LICENSE file for details

import asyncio
import random

import pytest

from statetree import create_machine


def build_ping_pong(trace, delay=0.001):
    m = create_machine("pingpong")
    ping = m.state("ping")
    pong = m.state("pong")

    def step(name):
        async def run(ctx, evt):
            trace.append(("start", evt.get("n")))
            await asyncio.sleep(random.uniform(0, delay))
            trace.append(("end", evt.get("n")))

        run.__name__ = name
        return run

    ping.on("HIT", pong).do(step("to_pong"))
    pong.on("HIT", ping).do(step("to_ping"))
    m.initial(ping)
    return m


@pytest.mark.asyncio
async def test_pipelines_never_interleave():
    trace = []
    instance = build_ping_pong(trace).start()
    futures = [instance.send("HIT", {"n": n}) for n in range(20)]
    results = await asyncio.gather(*futures)

    expected = []
    for n in range(20):
        expected += [("start", n), ("end", n)]
    assert trace == expected
    assert [r.state for r in results] == ["pong", "ping"] * 10
    assert instance.history_size == 21


@pytest.mark.asyncio
async def test_senders_from_many_tasks_are_serialized():
    trace = []
    instance = build_ping_pong(trace).start()

    async def sender(base):
        for offset in range(5):
            await instance.send("HIT", {"n": base + offset})

    await asyncio.gather(*(sender(base) for base in (0, 100, 200)))
    starts = [n for kind, n in trace if kind == "start"]
    ends = [n for kind, n in trace if kind == "end"]
    assert starts == ends
    assert len(starts) == 15
    for i in range(0, len(trace), 2):
        assert trace[i][0] == "start" and trace[i + 1] == ("end", trace[i][1])
    assert instance.state == "pong"


@pytest.mark.asyncio
async def test_instances_process_independently():
    trace_a, trace_b = [], []
    first = build_ping_pong(trace_a).start()
    second = build_ping_pong(trace_b).start()
    await asyncio.gather(first.send("HIT", {"n": 1}), second.send("HIT", {"n": 2}), first.send("HIT", {"n": 3}))
    assert first.state == "ping"
    assert second.state == "pong"
    assert trace_a == [("start", 1), ("end", 1), ("start", 3), ("end", 3)]
    assert trace_b == [("start", 2), ("end", 2)]
