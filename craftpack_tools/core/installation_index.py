"""Per-target membership index of installed resource digests.

Answers "is digest D installed in target T?" in O(1). Each
``(target, kind)`` entry is a set of digests that a full scan replaces
wholesale, so stale digests of deleted files disappear on the next scan.
Install and delete flows add or remove single digests.

The index is kept in memory and flushed to a JSON file using atomic
writes (temp file + os.replace). A missing or corrupt file simply means
no target has been scanned yet.
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Iterable
from pathlib import Path

import structlog

from craftpack_tools.core.types import ResourceKind
from craftpack_tools.core.utils import write_json_atomic

logger = structlog.get_logger()

_Key = tuple[str, ResourceKind]


class InstallationIndex:
    """Thread-safe digest membership per ``(target, kind)``.

    Writers on different targets never contend: each target has its own
    lock, and the map of locks is only held long enough to look one up.

    Args:
        state_path: JSON file the index persists to, None for memory only
    """

    SAVE_INTERVAL_COUNT = 50
    SAVE_INTERVAL_SECONDS = 10.0

    def __init__(self, state_path: Path | None = None) -> None:
        self.state_path = state_path
        self._entries: dict[_Key, set[str]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._loaded = state_path is None
        self._load_guard = threading.Lock()
        self._entries_guard = threading.Lock()
        self._save_guard = threading.Lock()
        self._unsaved_count = 0
        self._last_save_time = time.monotonic()

    def _lock_for(self, target: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(target)
            if lock is None:
                lock = threading.Lock()
                self._locks[target] = lock
            return lock

    def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        with self._load_guard:
            if self._loaded:
                return
            self._entries = self._read_state()
            self._loaded = True

    def _read_state(self) -> dict[_Key, set[str]]:
        assert self.state_path is not None
        if not self.state_path.exists():
            return {}
        try:
            raw = json.loads(self.state_path.read_text(encoding="utf-8"))
            entries: dict[_Key, set[str]] = {}
            for target, kinds in raw.get("targets", {}).items():
                for kind, digests in kinds.items():
                    entries[(target, ResourceKind(kind))] = set(digests)
            return entries
        except (json.JSONDecodeError, OSError, ValueError, AttributeError) as e:
            logger.warning("installation_index_load_failed", path=str(self.state_path), error=str(e))
            return {}

    def _touch(self) -> None:
        with self._save_guard:
            self._unsaved_count += 1
            due = self.state_path is not None and self.should_save()
        if due:
            self.flush()

    def has(self, target: str, digest: str, kind: ResourceKind = ResourceKind.MOD) -> bool:
        """Check membership of a digest in a target."""
        self._ensure_loaded()
        with self._lock_for(target):
            entry = self._entries.get((target, kind))
            return entry is not None and digest in entry

    def has_cache(self, target: str, kind: ResourceKind = ResourceKind.MOD) -> bool:
        """Whether the target has been scanned (entry exists, even if empty)."""
        self._ensure_loaded()
        with self._lock_for(target):
            return (target, kind) in self._entries

    def get_all(self, target: str, kind: ResourceKind = ResourceKind.MOD) -> set[str]:
        """Snapshot of a target's digests, empty if never scanned."""
        self._ensure_loaded()
        with self._lock_for(target):
            return set(self._entries.get((target, kind), ()))

    def add_all(self, target: str, digests: Iterable[str], kind: ResourceKind = ResourceKind.MOD) -> None:
        """Replace a target's entry with exactly ``digests``."""
        self._ensure_loaded()
        new_entry = set(digests)
        with self._lock_for(target), self._entries_guard:
            self._entries[(target, kind)] = new_entry
        logger.debug("installation_index_replaced", target=target, kind=str(kind), count=len(new_entry))
        self._touch()

    def add(self, target: str, digest: str, kind: ResourceKind = ResourceKind.MOD) -> None:
        """Record one newly installed digest."""
        self._ensure_loaded()
        with self._lock_for(target):
            with self._entries_guard:
                entry = self._entries.setdefault((target, kind), set())
            entry.add(digest)
        self._touch()

    def remove(self, target: str, digest: str, kind: ResourceKind = ResourceKind.MOD) -> None:
        """Forget one digest. No-op if absent."""
        self._ensure_loaded()
        with self._lock_for(target):
            entry = self._entries.get((target, kind))
            if entry is not None:
                entry.discard(digest)
        self._touch()

    def forget(self, target: str) -> None:
        """Drop every entry of a target, e.g. when the target is deleted."""
        self._ensure_loaded()
        with self._lock_for(target), self._entries_guard:
            for key in [k for k in self._entries if k[0] == target]:
                del self._entries[key]
        self._touch()

    def targets(self) -> list[str]:
        """Targets with at least one entry."""
        self._ensure_loaded()
        with self._entries_guard:
            keys = list(self._entries)
        return sorted({target for target, _ in keys})

    def should_save(self) -> bool:
        """Check if state should be persisted based on count/time thresholds."""
        if self._unsaved_count == 0:
            return False
        if self._unsaved_count >= self.SAVE_INTERVAL_COUNT:
            return True
        return time.monotonic() - self._last_save_time >= self.SAVE_INTERVAL_SECONDS

    def flush(self) -> None:
        """Persist the index if it has unsaved changes."""
        if self.state_path is None or not self._loaded:
            return
        with self._save_guard:
            if self._unsaved_count == 0:
                return
            with self._entries_guard:
                keys = list(self._entries)
            data: dict[str, dict[str, list[str]]] = {}
            for target, kind in keys:
                with self._lock_for(target):
                    digests = self._entries.get((target, kind))
                    if digests is not None:
                        data.setdefault(target, {})[str(kind)] = sorted(digests)
            try:
                write_json_atomic(self.state_path, {"version": 1, "targets": data})
            except OSError as e:
                logger.warning("installation_index_save_failed", path=str(self.state_path), error=str(e))
                return
            self._unsaved_count = 0
            self._last_save_time = time.monotonic()
