from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Iterable

logger = logging.getLogger("sync.limiter")

# Tasks left running after a failed call; referenced here until they finish.
_abandoned: set[asyncio.Future] = set()


def _forget_abandoned(task: asyncio.Future) -> None:
    _abandoned.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("abandoned_operation_failed error=%s", exc)


async def run_bounded(operations: Iterable[Awaitable[Any]], limit: int) -> None:
    """Drive a lazily produced sequence of awaitables with at most `limit` in flight.

    Operations are pulled from the iterable only when a slot frees up. The first
    failure stops pulling and is re-raised; operations already running are left
    to finish on their own and their outcomes are dropped.
    """
    if limit < 1:
        raise ValueError(f"limit_out_of_range: {limit}")

    pending = iter(operations)
    in_flight: set[asyncio.Future] = set()
    exhausted = False

    while True:
        while not exhausted and len(in_flight) < limit:
            try:
                operation = next(pending)
            except StopIteration:
                exhausted = True
                break
            in_flight.add(asyncio.ensure_future(operation))

        if not in_flight:
            return

        done, in_flight = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)

        failure: BaseException | None = None
        for task in done:
            if failure is None and (task.cancelled() or task.exception() is not None):
                failure = asyncio.CancelledError() if task.cancelled() else task.exception()
            elif not task.cancelled():
                task.exception()

        if failure is not None:
            for task in in_flight:
                _abandoned.add(task)
                task.add_done_callback(_forget_abandoned)
            raise failure
