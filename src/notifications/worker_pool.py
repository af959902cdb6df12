import asyncio
from collections.abc import Awaitable, Callable, Iterator, Sequence
from typing import TypeVar

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


async def run_bounded(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[None]],
    concurrency: int,
) -> None:
    """Run ``worker`` over ``items`` with at most ``concurrency`` in flight.

    Workers handle their own per-item failures. Anything that escapes a worker
    is fatal: the remaining in-flight workers still finish, then the first
    such exception is raised.
    """
    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def guarded(item: T) -> None:
        async with semaphore:
            await worker(item)

    outcomes = await asyncio.gather(*(guarded(item) for item in items), return_exceptions=True)
    for outcome in outcomes:
        if isinstance(outcome, BaseException):
            raise outcome
