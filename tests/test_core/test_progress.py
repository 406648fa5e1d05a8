"""Tests for progress reporting and cancellation."""

import threading

import pytest

from craftpack_tools.core.cancellation import CancellationToken
from craftpack_tools.core.errors import OperationCancelled
from craftpack_tools.core.progress import JobOutcome, ProgressChannel, ProgressEvent, ProgressTracker
from craftpack_tools.core.types import JobPhase


class TestProgressTracker:
    """Test ProgressTracker class."""

    def test_phase_events(self):
        channel = ProgressChannel()
        tracker = ProgressTracker("alpha", channel)
        tracker.start_phase(JobPhase.COPYING, 2)
        tracker.advance("a.jar")
        tracker.advance("b.jar")
        tracker.finish(True)

        events = channel.drain()
        assert [e.completed for e in events if isinstance(e, ProgressEvent)] == [0, 1, 2]
        assert events[-1] == JobOutcome("alpha", True)
        assert channel.drain() == []

    def test_advance_before_phase(self):
        with pytest.raises(RuntimeError):
            ProgressTracker("alpha").advance()

    def test_concurrent_advance_has_no_gaps(self):
        """Counts published from many threads are 1..N with no repeats."""
        channel = ProgressChannel()
        tracker = ProgressTracker("alpha", channel)
        tracker.start_phase(JobPhase.SCANNING, 400)

        def work() -> None:
            for _ in range(100):
                tracker.advance()

        threads = [threading.Thread(target=work) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        counts = sorted(e.completed for e in channel.drain() if isinstance(e, ProgressEvent))
        assert counts == list(range(401))

    def test_fraction(self):
        assert ProgressEvent("j", JobPhase.ARCHIVING, 1, 4).fraction == 0.25
        assert ProgressEvent("j", JobPhase.ARCHIVING, 0, 0).fraction == 1.0


class TestProgressChannel:
    """Test ProgressChannel class."""

    def test_subscribe_and_unsubscribe(self):
        channel = ProgressChannel(buffered=False)
        received = []
        unsubscribe = channel.subscribe(received.append)
        channel.publish(JobOutcome("a", True))
        unsubscribe()
        channel.publish(JobOutcome("b", True))

        assert [e.job for e in received] == ["a"]
        assert channel.drain() == []

    def test_failing_listener_does_not_break_publish(self):
        channel = ProgressChannel()

        def broken(event):
            raise RuntimeError("listener bug")

        channel.subscribe(broken)
        channel.publish(JobOutcome("a", False, cancelled=True))
        assert len(channel.drain()) == 1


class TestCancellationToken:
    """Test CancellationToken class."""

    def test_cancel(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        assert not token.cancelled

        token.cancel()
        token.cancel()
        assert token.cancelled
        with pytest.raises(OperationCancelled):
            token.raise_if_cancelled()
