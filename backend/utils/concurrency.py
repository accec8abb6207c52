"""Bounded fan-out for large batches of independent upstream fetches.

A fixed pool of ``limit`` worker tasks pulls items lazily from the input
iterable, so at most ``limit`` fetches are ever in flight and memory does not
grow with the input size (a ``range`` of 50,000 ids is fine). Results are
yielded in completion order.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Iterable, TypeVar

from utils.logger import get_logger
from utils.retry import PermanentFetchError

logger = get_logger("concurrency")

DEFAULT_CONCURRENCY = 128

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")

_WORKER_DONE = object()


class _WorkerFailure:
    __slots__ = ("error",)

    def __init__(self, error: BaseException):
        self.error = error


async def bounded_fetch(
    items: Iterable[ItemT],
    fetch: Callable[[ItemT], Awaitable[ResultT]],
    limit: int = DEFAULT_CONCURRENCY,
    *,
    label: str = "item",
) -> AsyncIterator[tuple[ItemT, ResultT]]:
    """Yield ``(item, result)`` pairs as fetches complete.

    Items whose fetch raises ``PermanentFetchError`` are logged and skipped.
    Any other exception stops the remaining workers and is re-raised to the
    consumer.
    """
    limit = max(1, int(limit))
    source = iter(items)
    queue: asyncio.Queue = asyncio.Queue(maxsize=limit)
    dropped = 0

    async def worker() -> None:
        nonlocal dropped
        try:
            for item in source:
                try:
                    result = await fetch(item)
                except PermanentFetchError as e:
                    dropped += 1
                    logger.debug(
                        "Dropping item after permanent failure",
                        label=label,
                        item=item,
                        reason=e.reason,
                    )
                    continue
                await queue.put((item, result))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await queue.put(_WorkerFailure(e))
            return
        await queue.put(_WORKER_DONE)

    workers = [asyncio.create_task(worker()) for _ in range(limit)]
    remaining = len(workers)
    try:
        while remaining:
            entry = await queue.get()
            if entry is _WORKER_DONE:
                remaining -= 1
                continue
            if isinstance(entry, _WorkerFailure):
                raise entry.error
            yield entry
    finally:
        for task in workers:
            if not task.done():
                task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        if dropped:
            logger.info("Bounded fetch skipped items", label=label, dropped=dropped)


async def fetch_all(
    items: Iterable[ItemT],
    fetch: Callable[[ItemT], Awaitable[ResultT]],
    limit: int = DEFAULT_CONCURRENCY,
    *,
    label: str = "item",
) -> list[tuple[ItemT, ResultT]]:
    """Collect ``bounded_fetch`` into a list (completion order)."""
    return [pair async for pair in bounded_fetch(items, fetch, limit, label=label)]
