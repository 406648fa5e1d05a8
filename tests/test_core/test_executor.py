"""Tests for craftpack_tools.core.executor module."""

import asyncio
import random

import pytest

from craftpack_tools.core.cancellation import CancellationToken
from craftpack_tools.core.errors import OperationCancelled, ResourceError
from craftpack_tools.core.executor import BoundedExecutor


class TestBoundedExecutor:
    """Test BoundedExecutor class."""

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            BoundedExecutor(0)

    def test_map_preserves_input_order(self):
        """Results come back in input order whatever the finish order."""

        async def worker(n: int) -> int:
            await asyncio.sleep(random.random() / 200)
            return n * n

        results = asyncio.run(BoundedExecutor(4).map(range(30), worker))
        assert results == [n * n for n in range(30)]

    def test_never_exceeds_bound(self):
        """Peak in-flight count stays at or under max_concurrency."""
        in_flight = 0
        peak = 0

        async def worker(n: int) -> int:
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(random.random() / 100)
            in_flight -= 1
            return n

        asyncio.run(BoundedExecutor(3).map(range(40), worker))
        assert 1 <= peak <= 3

    def test_empty_input(self):
        async def worker(n: int) -> int:
            return n

        assert asyncio.run(BoundedExecutor(2).map([], worker)) == []

    def test_first_error_by_index_is_raised(self):
        """Every item still runs; the lowest-index failure propagates."""
        seen: list[int] = []

        async def worker(n: int) -> int:
            seen.append(n)
            if n in (3, 7):
                raise ResourceError(f"bad {n}")
            return n

        with pytest.raises(ResourceError, match="bad 3"):
            asyncio.run(BoundedExecutor(2).map(range(10), worker))
        assert sorted(seen) == list(range(10))

    def test_return_exceptions(self):
        async def worker(n: int) -> int:
            if n == 1:
                raise ResourceError("boom")
            return n

        results = asyncio.run(BoundedExecutor(2).map(range(3), worker, return_exceptions=True))
        assert results[0] == 0
        assert isinstance(results[1], ResourceError)
        assert results[2] == 2

    def test_iter_completed_yields_errors(self):
        async def worker(n: int) -> int:
            if n % 2:
                raise ValueError(n)
            return n

        async def collect():
            return [c async for c in BoundedExecutor(2).iter_completed(range(6), worker)]

        outcomes = asyncio.run(collect())
        assert len(outcomes) == 6
        assert sorted(c.index for c in outcomes if c.ok) == [0, 2, 4]
        assert all(isinstance(c.error, ValueError) for c in outcomes if not c.ok)

    def test_cancellation_stops_new_items(self):
        """Cancelling mid-run starts no further items and raises."""
        token = CancellationToken()
        started: list[int] = []

        async def worker(n: int) -> int:
            started.append(n)
            if n == 4:
                token.cancel()
            await asyncio.sleep(0)
            return n

        with pytest.raises(OperationCancelled):
            asyncio.run(BoundedExecutor(1).map(range(100), worker, token=token))
        assert started == [0, 1, 2, 3, 4]

    def test_worker_raising_cancelled_propagates(self):
        async def worker(n: int) -> int:
            if n == 2:
                raise OperationCancelled("stop")
            return n

        with pytest.raises(OperationCancelled):
            asyncio.run(BoundedExecutor(2).map(range(5), worker, return_exceptions=True))

    def test_progress_callback(self):
        calls: list[tuple[int, int]] = []

        async def worker(n: int) -> int:
            return n

        asyncio.run(BoundedExecutor(2).map(range(5), worker, progress_callback=lambda c, t: calls.append((c, t))))
        assert calls == [(1, 5), (2, 5), (3, 5), (4, 5), (5, 5)]

    def test_nested_use_does_not_deadlock(self):
        """A worker may fan out through the same executor."""
        executor = BoundedExecutor(1)

        async def inner(n: int) -> int:
            return n + 1

        async def outer(n: int) -> int:
            results = await executor.map(range(n), inner)
            return sum(results)

        results = asyncio.run(asyncio.wait_for(executor.map([1, 2, 3], outer), timeout=5))
        assert results == [1, 3, 6]

    def test_map_threaded(self):
        results = asyncio.run(BoundedExecutor(4).map_threaded(["a", "bb", "ccc"], len))
        assert results == [1, 2, 3]
