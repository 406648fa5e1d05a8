"""Bounded-concurrency execution of per-item async work.

Every bulk operation (hashing a directory, copying overrides, downloading
pack files and dependencies) funnels through :class:`BoundedExecutor` so
that at most ``max_concurrency`` items are in flight at once.

Each call builds its own worker pool, so a worker may itself use the
executor (e.g. a dependency download that resolves further files)
without exhausting a shared pool and deadlocking.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import structlog

from craftpack_tools.core.cancellation import CancellationToken
from craftpack_tools.core.errors import OperationCancelled

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class Completed(Generic[T, R]):
    """Outcome of one item.

    Attributes:
        index: Position of the item in the input
        item: The input item
        result: Worker return value, None on failure
        error: Exception raised by the worker, if any
    """

    index: int
    item: T
    result: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class BoundedExecutor:
    """Runs an async worker over many items with a concurrency ceiling.

    Args:
        max_concurrency: Upper bound on items in flight
    """

    def __init__(self, max_concurrency: int = 8):
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency

    async def iter_completed(
        self,
        items: Iterable[T],
        worker: Callable[[T], Awaitable[R]],
        token: CancellationToken | None = None,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> AsyncIterator[Completed[T, R]]:
        """Process items concurrently, yielding outcomes as they finish.

        Worker exceptions are yielded, never raised. Once ``token`` is
        cancelled no further item starts; items already running finish,
        then OperationCancelled is raised.

        Args:
            items: Inputs
            worker: Coroutine function applied to each item
            token: Cancellation token checked before each item starts
            progress_callback: Called with (completed, total)

        Yields:
            Completed for each item that ran

        Raises:
            OperationCancelled: If the token was cancelled
        """
        pending = list(enumerate(items))
        total = len(pending)
        if total == 0:
            return

        queue: asyncio.Queue[tuple[int, T]] = asyncio.Queue()
        for entry in pending:
            queue.put_nowait(entry)
        results: asyncio.Queue[Completed[T, R] | None] = asyncio.Queue()
        num_workers = min(self.max_concurrency, total)
        completed = 0

        async def run_worker() -> None:
            while True:
                if token is not None and token.cancelled:
                    break
                try:
                    index, item = queue.get_nowait()
                except asyncio.QueueEmpty:
                    break
                outcome: Completed[T, R] = Completed(index=index, item=item)
                try:
                    outcome.result = await worker(item)
                except Exception as e:
                    outcome.error = e
                await results.put(outcome)
            await results.put(None)

        tasks = [asyncio.create_task(run_worker()) for _ in range(num_workers)]
        workers_done = 0
        try:
            while workers_done < num_workers:
                outcome = await results.get()
                if outcome is None:
                    workers_done += 1
                    continue
                completed += 1
                if progress_callback:
                    progress_callback(completed, total)
                yield outcome
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        if token is not None and token.cancelled:
            logger.debug("executor_cancelled", completed=completed, total=total)
            raise OperationCancelled("Operation cancelled")

    async def map(
        self,
        items: Iterable[T],
        worker: Callable[[T], Awaitable[R]],
        token: CancellationToken | None = None,
        return_exceptions: bool = False,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> list[Any]:
        """Apply ``worker`` to every item, returning results in input order.

        All started items are awaited before anything is raised.

        Args:
            items: Inputs
            worker: Coroutine function applied to each item
            token: Cancellation token checked before each item starts
            return_exceptions: Place exceptions in the result list instead
                of raising the first one
            progress_callback: Called with (completed, total)

        Returns:
            One result (or exception) per item, in input order

        Raises:
            OperationCancelled: If the token was cancelled, or a worker
                raised it
            Exception: The first worker failure, in input order, unless
                return_exceptions is set
        """
        materialized = list(items)
        slots: list[Any] = [None] * len(materialized)
        errors: list[tuple[int, BaseException]] = []

        async for outcome in self.iter_completed(materialized, worker, token, progress_callback):
            if outcome.error is not None:
                slots[outcome.index] = outcome.error
                errors.append((outcome.index, outcome.error))
            else:
                slots[outcome.index] = outcome.result

        for _, error in errors:
            if isinstance(error, OperationCancelled):
                raise error
        if errors and not return_exceptions:
            raise min(errors, key=lambda e: e[0])[1]
        return slots

    async def map_threaded(
        self,
        items: Iterable[T],
        func: Callable[[T], R],
        token: CancellationToken | None = None,
        return_exceptions: bool = False,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> list[Any]:
        """Like :meth:`map` for blocking functions, run via asyncio.to_thread."""

        async def worker(item: T) -> R:
            return await asyncio.to_thread(func, item)

        return await self.map(items, worker, token, return_exceptions, progress_callback)
