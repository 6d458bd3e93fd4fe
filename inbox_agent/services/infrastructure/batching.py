"""
Batched concurrent execution with per-item error collection.

Items are split into fixed-size batches. Every call in a batch is awaited
together before the next batch starts, and a failure on one item is recorded
on its outcome without cancelling its siblings.
"""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from inbox_agent.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

DEFAULT_BATCH_SIZE = 50


@dataclass(slots=True)
class BatchOutcome(Generic[T, R]):
    item: T
    result: R | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def chunked(items: Sequence[T], size: int) -> list[list[T]]:
    if size <= 0:
        raise ValueError("Batch size must be positive")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


async def gather_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    operation: str = "batch",
    should_continue: Callable[[], bool] | None = None,
) -> list[BatchOutcome[T, R]]:
    """
    Run worker over items in concurrent batches.

    Args:
        items: Work items
        worker: Coroutine function applied to each item
        batch_size: Maximum number of concurrent calls
        operation: Name used in log entries
        should_continue: Checked before each batch; returning False stops
            issuing new batches

    Returns:
        One outcome per item that was attempted, in input order.
    """
    outcomes: list[BatchOutcome[T, R]] = []
    batches = chunked(items, batch_size)

    for batch_num, batch in enumerate(batches, 1):
        if should_continue is not None and not should_continue():
            logger.info(
                "Stopping batch processing early",
                operation=operation,
                batches_done=batch_num - 1,
                batches_total=len(batches),
            )
            break

        results = await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)

        for item, result in zip(batch, results, strict=True):
            if isinstance(result, Exception):
                logger.warning(
                    "Batch item failed",
                    operation=operation,
                    error=str(result),
                    error_type=type(result).__name__,
                )
                outcomes.append(BatchOutcome(item=item, error=result))
            elif isinstance(result, BaseException):
                raise result
            else:
                outcomes.append(BatchOutcome(item=item, result=result))

    return outcomes
