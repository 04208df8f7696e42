"""Bounded fan-out/fan-in over fixed-size batches.

Every member of a batch runs concurrently and all of them are awaited before
the next batch starts, so at most ``batch_size`` calls are in flight at once.
A failure is captured on its own outcome and never cancels its siblings.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Generic, Iterator, Sequence, TypeVar

import structlog

log = structlog.stdlib.get_logger()

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class BatchOutcome(Generic[T, R]):
    """Result of running one item: either a value or the exception it raised."""

    item: T
    value: R | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """
    Split a sequence into consecutive lists of at most ``size`` items.

    Raises:
        ValueError: If size is less than 1
    """
    if size < 1:
        raise ValueError(f"batch size must be at least 1, got {size}")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def run_batch(items: Sequence[T], func: Callable[[T], R]) -> list[BatchOutcome[T, R]]:
    """
    Run ``func`` over every item concurrently and wait for all of them.

    Args:
        items: Members of one batch
        func: Callable applied to each item

    Returns:
        One BatchOutcome per item, in input order
    """
    if not items:
        return []

    with ThreadPoolExecutor(max_workers=len(items)) as executor:
        futures = [executor.submit(func, item) for item in items]
        outcomes: list[BatchOutcome[T, R]] = []
        for item, future in zip(items, futures):
            error = future.exception()
            if error is not None:
                outcomes.append(BatchOutcome(item=item, error=error))
            else:
                outcomes.append(BatchOutcome(item=item, value=future.result()))

    return outcomes


def run_batched(
    items: Sequence[T],
    func: Callable[[T], R],
    batch_size: int,
) -> list[BatchOutcome[T, R]]:
    """
    Run ``func`` over all items in sequential batches of concurrent calls.

    Args:
        items: Items to process
        func: Callable applied to each item
        batch_size: Maximum number of concurrent calls

    Returns:
        One BatchOutcome per item across all batches
    """
    outcomes: list[BatchOutcome[T, R]] = []
    for index, batch in enumerate(chunked(items, batch_size)):
        batch_outcomes = run_batch(batch, func)
        failures = sum(1 for outcome in batch_outcomes if not outcome.ok)
        log.debug(
            "batch_completed",
            batch_index=index,
            batch_size=len(batch),
            failures=failures,
        )
        outcomes.extend(batch_outcomes)
    return outcomes
