"""Rate-limit-aware batching of independent async calls."""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")


async def batched_requests(
    factories: Sequence[Callable[[], Awaitable[T]]],
    batch_size: int = 20,
    delay: float = 1.1,
) -> list[T | BaseException]:
    """Run call factories in bounded concurrent batches.

    Results keep input order. A failed call yields its exception in place of
    a result and never fails the batch. ``delay`` seconds separate batches.
    """
    results: list[T | BaseException] = []
    for start in range(0, len(factories), batch_size):
        batch = factories[start:start + batch_size]
        results.extend(await asyncio.gather(*(f() for f in batch), return_exceptions=True))
        if start + batch_size < len(factories):
            await asyncio.sleep(delay)
    return results
