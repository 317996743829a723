import asyncio

import pytest

from meshsync.sync.limiter import run_bounded


def test_run_bounded_never_exceeds_limit():
    active = 0
    peak = 0
    finished: list[int] = []

    async def op(i: int):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.001 * (i % 3 + 1))
        active -= 1
        finished.append(i)

    asyncio.run(run_bounded((op(i) for i in range(10)), 4))

    assert peak == 4
    assert sorted(finished) == list(range(10))


def test_run_bounded_pulls_operations_lazily():
    pulled: list[int] = []
    observed: list[int] = []

    async def op(i: int):
        if i == 0:
            observed.append(len(pulled))
        await asyncio.sleep(0)

    def ops():
        for i in range(6):
            pulled.append(i)
            yield op(i)

    asyncio.run(run_bounded(ops(), 2))

    assert observed == [2]
    assert pulled == list(range(6))


def test_run_bounded_stops_pulling_after_first_failure():
    started: list[int] = []
    created: list[int] = []

    async def op(i: int):
        started.append(i)
        if i == 1:
            raise RuntimeError("boom")
        await asyncio.sleep(0.05)

    def ops():
        for i in range(10):
            created.append(i)
            yield op(i)

    with pytest.raises(RuntimeError, match="boom"):
        asyncio.run(run_bounded(ops(), 4))

    assert sorted(started) == [0, 1, 2, 3]
    assert created == [0, 1, 2, 3]


def test_run_bounded_with_no_operations_returns():
    asyncio.run(run_bounded(iter(()), 4))


def test_run_bounded_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        asyncio.run(run_bounded(iter(()), 0))
