"""Bounded-concurrency fan-out with settled results.

One item's failure never prevents collection of the others' results.

Usage:
    outcomes = await batch_process_with_limit(
        member_ids,
        client.get_member,
        concurrency_limit=5,
    )
    found = [o.value for o in outcomes if o.ok]
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class BatchOutcome(Generic[R]):
    """Settled result of processing one item."""

    index: int
    value: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_settled(*aws: Awaitable[Any]) -> list[BatchOutcome[Any]]:
    """Await all awaitables and wrap every result or exception."""
    results = await asyncio.gather(*aws, return_exceptions=True)
    outcomes: list[BatchOutcome[Any]] = []
    for index, result in enumerate(results):
        if isinstance(result, BaseException):
            if isinstance(result, asyncio.CancelledError):
                raise result
            outcomes.append(BatchOutcome(index=index, error=result))
        else:
            outcomes.append(BatchOutcome(index=index, value=result))
    return outcomes


async def batch_process_with_limit(
    items: Sequence[T],
    processor: Callable[[T], Awaitable[R]],
    *,
    concurrency_limit: int = 5,
    delay_between_batches: float = 0.0,
) -> list[BatchOutcome[R]]:
    """Process items in chunks of `concurrency_limit`, preserving input order.

    Args:
        items: Items to process
        processor: Async function applied to each item
        concurrency_limit: Maximum number of in-flight calls
        delay_between_batches: Seconds to sleep between chunks

    Returns:
        One BatchOutcome per item, in input order
    """
    if concurrency_limit < 1:
        raise ValueError("concurrency_limit must be >= 1")

    outcomes: list[BatchOutcome[R]] = []

    for start in range(0, len(items), concurrency_limit):
        chunk = items[start : start + concurrency_limit]
        settled = await gather_settled(*(processor(item) for item in chunk))
        for outcome in settled:
            outcome.index += start
        outcomes.extend(settled)

        if delay_between_batches > 0 and start + concurrency_limit < len(items):
            await asyncio.sleep(delay_between_batches)

    return outcomes
