"""Progress reporting for export and install jobs.

Jobs publish :class:`ProgressEvent` snapshots to a :class:`ProgressChannel`.
The channel fans events out to subscriber callbacks and also buffers them
in a thread-safe queue, so a UI running on another thread can drain it
at its own pace instead of being called from worker threads.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from craftpack_tools.core.types import JobPhase

logger = structlog.get_logger()


@dataclass(frozen=True)
class ProgressEvent:
    """Snapshot of a job's progress within one phase.

    Attributes:
        job: Job identifier (target name, archive name)
        phase: Current phase
        completed: Items finished in this phase
        total: Items in this phase
        current: Item most recently finished, if any
    """

    job: str
    phase: JobPhase
    completed: int
    total: int
    current: str | None = None

    @property
    def fraction(self) -> float:
        return self.completed / self.total if self.total else 1.0


@dataclass(frozen=True)
class JobOutcome:
    """Terminal event for a job."""

    job: str
    success: bool
    cancelled: bool = False
    error: str | None = None


Listener = Callable[[ProgressEvent | JobOutcome], None]


@dataclass
class ProgressChannel:
    """Thread-safe progress fan-out.

    Attributes:
        buffered: Also keep events in a queue for :meth:`drain`
    """

    buffered: bool = True
    _listeners: list[Listener] = field(default_factory=list)
    _queue: queue.SimpleQueue[ProgressEvent | JobOutcome] = field(default_factory=queue.SimpleQueue)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: ProgressEvent | JobOutcome) -> None:
        if self.buffered:
            self._queue.put(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning("progress_listener_failed", error=str(e))

    def drain(self) -> list[ProgressEvent | JobOutcome]:
        """Take every buffered event without blocking."""
        events: list[ProgressEvent | JobOutcome] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events


class ProgressTracker:
    """Counts completed items for one job and publishes each step.

    ``advance`` may be called from many tasks or threads at once; the
    counter increment and the event it produces are taken under a lock so
    ``completed`` values are published without gaps or repeats.

    Args:
        job: Job identifier
        channel: Destination for events, None to only count
    """

    def __init__(self, job: str, channel: ProgressChannel | None = None):
        self.job = job
        self.channel = channel
        self.phase: JobPhase | None = None
        self.completed = 0
        self.total = 0
        self._lock = threading.Lock()

    def start_phase(self, phase: JobPhase, total: int) -> None:
        """Reset counters for a new phase and publish a 0-of-N event."""
        with self._lock:
            self.phase = phase
            self.completed = 0
            self.total = total
            event = ProgressEvent(self.job, phase, 0, total)
        logger.debug("job_phase_started", job=self.job, phase=str(phase), total=total)
        self._publish(event)

    def advance(self, current: str | None = None, amount: int = 1) -> ProgressEvent:
        """Mark items of the current phase as done."""
        with self._lock:
            if self.phase is None:
                raise RuntimeError("advance() called before start_phase()")
            self.completed += amount
            event = ProgressEvent(self.job, self.phase, self.completed, self.total, current)
        self._publish(event)
        return event

    def finish(self, success: bool, *, cancelled: bool = False, error: str | None = None) -> None:
        """Publish the terminal outcome."""
        self._publish(JobOutcome(self.job, success, cancelled, error))

    def _publish(self, event: ProgressEvent | JobOutcome) -> None:
        if self.channel is not None:
            self.channel.publish(event)
