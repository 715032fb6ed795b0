# src/services/worker_pool.py

"""Bounded concurrent map over a list of work items."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

logger = logging.getLogger("price_refresh.pool")

T = TypeVar("T")


@dataclass
class PoolResult(Generic[T]):
    """Outcome of one pool run.

    ``errors`` pairs each failed item with the exception its worker
    raised; ``processed`` counts items whose worker was started.
    """

    errors: list[tuple[T, BaseException]] = field(
        default_factory=lambda: list[tuple[T, BaseException]]()
    )
    processed: int = 0


async def run_pool(
    items: Sequence[T],
    concurrency: int,
    worker: Callable[[T], Awaitable[None]],
    should_stop: Callable[[], bool] | None = None,
) -> PoolResult[T]:
    """Run *worker* over *items* with at most *concurrency* in flight.

    ``min(concurrency, len(items))`` runners claim items from a shared
    cursor, so each item is handed out exactly once.  A worker
    exception is recorded and the runner moves on; nothing is raised.
    When *should_stop* returns true no further items are claimed, and
    work already in flight finishes.
    """
    result: PoolResult[T] = PoolResult()
    if not items:
        return result

    runner_count = max(1, min(concurrency, len(items)))
    cursor = 0

    async def runner(runner_id: int) -> None:
        nonlocal cursor
        while True:
            # No await between check and claim, so the claim is atomic
            if cursor >= len(items):
                return
            if should_stop is not None and should_stop():
                logger.debug("Runner %d stopping: stop requested", runner_id)
                return
            index = cursor
            cursor += 1
            item = items[index]
            result.processed += 1
            try:
                await worker(item)
            except Exception as exc:
                logger.error(
                    "Worker failed on item %d: %s",
                    index,
                    exc,
                    exc_info=True,
                )
                result.errors.append((item, exc))

    await asyncio.gather(*(runner(i) for i in range(runner_count)))
    return result
