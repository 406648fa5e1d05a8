"""Cooperative cancellation shared by every phase of a job."""

from __future__ import annotations

import threading

from craftpack_tools.core.errors import OperationCancelled


class CancellationToken:
    """Thread-safe flag checked at item and file boundaries.

    Worker threads (hashing, copying) and asyncio tasks both read it, so
    it is backed by a ``threading.Event`` rather than an asyncio one.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelled if cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelled("Operation cancelled")
