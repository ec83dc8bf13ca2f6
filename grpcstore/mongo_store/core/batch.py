"""
Bounded concurrent processing of batch entries.

Write and delete batches fan out over the shared store handle with a fixed
ceiling on operations in flight. The first failure cancels entries that
have not finished and is raised to the caller; entries that already
completed stay written.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Hashable, Iterable
from typing import TypeVar

T = TypeVar("T")


def collapse_by(items: Iterable[T], key: Callable[[T], Hashable]) -> list[T]:
    """Keep only the last item for each key, at the position it last appeared.

    Two entries of one batch addressing the same coordinate would race
    once processed concurrently; keeping the last one in its own slot means
    no entry is moved ahead of the entries that preceded it.
    """
    latest: dict[Hashable, T] = {}
    for item in items:
        k = key(item)
        latest.pop(k, None)
        latest[k] = item
    return list(latest.values())


async def fan_out(
    items: list[T],
    operation: Callable[[T], Awaitable[None]],
    max_in_flight: int,
    key: Callable[[T], Hashable] | None = None,
) -> None:
    """Run ``operation`` over ``items`` with at most ``max_in_flight`` running.

    With ``max_in_flight <= 1`` every item runs in order, duplicates
    included. Concurrent runs first collapse items sharing ``key``.

    Raises:
        Exception: The first exception raised by ``operation``
    """
    if not items:
        return

    if max_in_flight <= 1 or len(items) == 1:
        for item in items:
            await operation(item)
        return

    if key is not None:
        items = collapse_by(items, key)

    semaphore = asyncio.Semaphore(max_in_flight)

    async def run(item: T) -> None:
        async with semaphore:
            await operation(item)

    tasks = [asyncio.create_task(run(item)) for item in items]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
