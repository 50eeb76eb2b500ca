"""Bounded-concurrency helpers shared by the source and article worker pools."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Sequence, TypeVar

from news_ingest.core.logging import get_logger

T = TypeVar("T")
R = TypeVar("R")

logger = get_logger(__name__)


async def bounded_map(
    items: Sequence[T],
    concurrency: int,
    worker: Callable[[T], Awaitable[R]],
) -> List[R]:
    """Run ``worker`` over ``items`` with at most ``concurrency`` calls in flight.

    A fixed pool of tasks claims indices from a shared cursor until the input
    is exhausted. Results are stored by input position, so the returned list
    lines up with ``items`` regardless of completion order. The first worker
    exception cancels the remaining workers and propagates.
    """

    if not items:
        return []

    results: List[R] = [None] * len(items)  # type: ignore[list-item]
    cursor = 0
    pool_size = max(1, min(concurrency, len(items)))

    async def _drain() -> None:
        nonlocal cursor
        while True:
            index = cursor
            cursor += 1
            if index >= len(items):
                return
            try:
                results[index] = await worker(items[index])
            except Exception as exc:
                logger.error(
                    "bounded_map_worker_failed",
                    item_index=index,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise

    tasks = [asyncio.create_task(_drain()) for _ in range(pool_size)]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    return results
