"""Registry of install targets (game instances)."""

from __future__ import annotations

import json
import threading
from datetime import UTC, datetime
from pathlib import Path

import pydantic
import structlog
from pydantic import BaseModel, Field

from craftpack_tools.core.errors import FileSystemError
from craftpack_tools.core.types import ResourceKind
from craftpack_tools.core.utils import write_json_atomic

logger = structlog.get_logger()


class TargetRecord(BaseModel):
    """What the launcher knows about one instance."""
    name: str = Field(..., description="Target name, also its directory name")
    game_version: str | None = Field(None, description="Game version")
    loader: str = Field("vanilla", description="Mod loader family")
    loader_version: str | None = Field(None, description="Mod loader version")
    source: str | None = Field(None, description="Pack the target was installed from")
    pack_version: str | None = Field(None, description="Version of that pack")
    resource_counts: dict[str, int] = Field(default_factory=dict, description="Digests per resource kind")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class TargetRepository:
    """JSON-file registry of :class:`TargetRecord`.

    Every mutation rewrites the file atomically.

    Args:
        path: Registry file, None for an in-memory registry
    """

    def __init__(self, path: Path | None = None):
        self.path = path
        self._lock = threading.Lock()
        self._records: dict[str, TargetRecord] = self._load()

    def _load(self) -> dict[str, TargetRecord]:
        if self.path is None or not self.path.exists():
            return {}
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            return {name: TargetRecord.model_validate(data) for name, data in raw.get("targets", {}).items()}
        except (json.JSONDecodeError, OSError, pydantic.ValidationError, AttributeError) as e:
            logger.warning("target_registry_load_failed", path=str(self.path), error=str(e))
            return {}

    def _save(self) -> None:
        if self.path is None:
            return
        data = {"targets": {name: r.model_dump(mode="json") for name, r in self._records.items()}}
        try:
            write_json_atomic(self.path, data)
        except OSError as e:
            raise FileSystemError(f"Cannot write target registry: {e}", path=str(self.path)) from e

    def register(self, record: TargetRecord) -> TargetRecord:
        """Insert or replace a target.

        Raises:
            FileSystemError: If the registry cannot be written
        """
        with self._lock:
            existing = self._records.get(record.name)
            if existing is not None:
                record.created_at = existing.created_at
                if not record.resource_counts:
                    record.resource_counts = dict(existing.resource_counts)
            record.updated_at = datetime.now(UTC)
            self._records[record.name] = record
            self._save()
        logger.info("target_registered", target=record.name, loader=record.loader)
        return record

    def update_hash_membership(self, target: str, kind: ResourceKind, digests: set[str]) -> None:
        """Record the digest count a full scan found for a known target.

        Unknown targets are ignored; registry write failures are logged.
        """
        with self._lock:
            record = self._records.get(target)
            if record is None:
                return
            record.resource_counts[str(kind)] = len(digests)
            record.updated_at = datetime.now(UTC)
            try:
                self._save()
            except FileSystemError as e:
                logger.warning("target_membership_save_failed", target=target, error=str(e))

    def get(self, name: str) -> TargetRecord | None:
        with self._lock:
            return self._records.get(name)

    def list_targets(self) -> list[TargetRecord]:
        with self._lock:
            return sorted(self._records.values(), key=lambda r: r.name)

    def unregister(self, name: str) -> bool:
        with self._lock:
            if self._records.pop(name, None) is None:
                return False
            self._save()
        return True
