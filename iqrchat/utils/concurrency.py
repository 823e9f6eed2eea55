"""Bounded-concurrency helpers for outbound service calls.

The embed stage fans chunks out to the embedding service; without a bound,
a 500-chunk document would open 500 simultaneous requests and trip the
provider's rate limit.  ``throttled_gather`` is a drop-in replacement for
``asyncio.gather`` that runs each awaitable under a semaphore.

``batched`` splits a sequence into fixed-size slices so batches can be
processed one after another.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterator, Sequence
from typing import TypeVar

_T = TypeVar("_T")

# Upper bound on concurrent embedding requests inside one batch.
DEFAULT_MAX_WORKERS = 5


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore | None = None,
    return_exceptions: bool = True,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``semaphore`` slots at a time.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Semaphore for concurrency control.  A fresh one sized
        :data:`DEFAULT_MAX_WORKERS` is created when omitted, so separate
        requests never share slots.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.
    """
    if semaphore is None:
        semaphore = asyncio.Semaphore(DEFAULT_MAX_WORKERS)

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [_wrapped(c) for c in coros]
    return await asyncio.gather(*tasks, return_exceptions=return_exceptions)


def batched(items: Sequence[_T], size: int) -> Iterator[Sequence[_T]]:
    """Yield consecutive slices of *items* holding at most *size* elements."""
    if size < 1:
        msg = f"Batch size must be positive, got {size}"
        raise ValueError(msg)
    for start in range(0, len(items), size):
        yield items[start : start + size]
