"""Export an instance as a pack archive.

An export scans every resource directory of the instance, writes files
the catalog can serve as download entries in the manifest, copies every
other file (local resources, configs, saves) into ``overrides/`` and
zips the result. The job runs as an asyncio task with three states:

    IDLE -> EXPORTING -> COMPLETED
    EXPORTING -> IDLE (failure or cancellation)

Only one export runs per exporter. Failure and cancellation leave no
staging directory and no partial archive behind.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

import structlog

from craftpack_tools.core.cancellation import CancellationToken
from craftpack_tools.core.config import AppConfig
from craftpack_tools.core.errors import ConfigurationError, ExportError, OperationCancelled
from craftpack_tools.core.executor import BoundedExecutor
from craftpack_tools.core.hasher import ContentHasher
from craftpack_tools.core.layout import BOOKKEEPING_DIR, SAVES_DIR, InstanceLayout
from craftpack_tools.core.progress import ProgressChannel, ProgressTracker
from craftpack_tools.core.repository import TargetRepository
from craftpack_tools.core.scanner import DirectoryScanner, ScannedResource
from craftpack_tools.core.types import (
    DependencyType,
    JobPhase,
    ProjectDependency,
    ResourceKind,
    SideSupport,
)
from craftpack_tools.core.utils import is_disabled, slugify
from craftpack_tools.formats.archive import write_pack
from craftpack_tools.formats.manifest import (
    MANIFEST_NAME,
    FileEnv,
    ManifestDependencies,
    ManifestFile,
    PackManifest,
)

logger = structlog.get_logger()

OVERRIDES_DIR = "overrides"

_LOADER_FIELDS = {
    "fabric": "fabric_loader",
    "quilt": "quilt_loader",
    "forge": "forge",
    "neoforge": "neoforge",
}


class ExportState(StrEnum):
    IDLE = "idle"
    EXPORTING = "exporting"
    COMPLETED = "completed"


@dataclass
class ExportPlan:
    """Classification of an instance's files.

    Attributes:
        entries: Manifest entries for catalog-served resources
        overrides: (source, relative path) pairs copied into overrides
        project_ids: Catalog projects shipped as entries
        dependencies: Project dependencies declared by shipped resources
    """

    entries: list[ManifestFile]
    overrides: list[tuple[Path, str]]
    project_ids: set[str]
    dependencies: list[ProjectDependency]


def _env_side(side: SideSupport) -> SideSupport:
    return SideSupport.UNSUPPORTED if side == SideSupport.UNSUPPORTED else SideSupport.REQUIRED


class PackageExporter:
    """Builds pack archives from instances.

    Args:
        config: Application configuration (export policy, directories)
        scanner: Scanner used to list and resolve resources
        executor: Bounds concurrent resolution and copying
        repository: Source of the instance's game version and loader
        hasher: Used for SHA-512 when the catalog did not provide one
        channel: Receives progress events
    """

    def __init__(
        self,
        config: AppConfig,
        scanner: DirectoryScanner,
        executor: BoundedExecutor,
        repository: TargetRepository,
        hasher: ContentHasher | None = None,
        channel: ProgressChannel | None = None,
    ):
        self.config = config
        self.scanner = scanner
        self.executor = executor
        self.repository = repository
        self.hasher = hasher or ContentHasher()
        self.channel = channel

        self.state = ExportState.IDLE
        self.output_path: Path | None = None
        self.last_error: ExportError | None = None
        self._token: CancellationToken | None = None
        self._task: asyncio.Task[Path] | None = None

    @property
    def work_dir(self) -> Path:
        return self.config.temp_dir or Path(tempfile.gettempdir())

    def _begin(self) -> CancellationToken:
        if self.state == ExportState.COMPLETED:
            self.discard()
        self.state = ExportState.EXPORTING
        self.last_error = None
        self.output_path = None
        self._token = CancellationToken()
        return self._token

    def start_export(self, target: str, name: str, version: str, summary: str | None = None) -> asyncio.Task[Path] | None:
        """Launch an export in the background.

        Must be called from a running event loop. While an export is
        running this is a no-op.

        Returns:
            The export task, or None if an export is already running
        """
        if self.state == ExportState.EXPORTING:
            logger.warning("export_already_running", target=target)
            return None
        token = self._begin()
        task = asyncio.get_running_loop().create_task(self._run(target, name, version, summary, token))
        task.add_done_callback(self._on_task_done)
        self._task = task
        return task

    @staticmethod
    def _on_task_done(task: asyncio.Task[Path]) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.debug("export_task_finished_with_error", error=str(task.exception()))

    async def export(self, target: str, name: str, version: str, summary: str | None = None) -> Path:
        """Run an export to completion.

        Returns:
            Path of the finished archive in the work directory

        Raises:
            ExportError: If the export failed or one is already running
            OperationCancelled: If the export was cancelled
        """
        if self.state == ExportState.EXPORTING:
            raise ExportError("An export is already running", phase="idle")
        token = self._begin()
        return await self._run(target, name, version, summary, token)

    def cancel_export(self) -> bool:
        """Cancel the running export, or discard a completed one.

        Returns:
            True if there was something to cancel
        """
        if self.state == ExportState.EXPORTING and self._token is not None:
            logger.info("export_cancel_requested")
            self._token.cancel()
            return True
        if self.state == ExportState.COMPLETED:
            self.discard()
            return True
        return False

    def mark_saved(self) -> None:
        """The caller moved the archive elsewhere; forget it."""
        if self.state == ExportState.COMPLETED:
            self.state = ExportState.IDLE
            self.output_path = None

    def discard(self) -> None:
        """Delete a completed archive and return to idle."""
        if self.output_path is not None:
            self.output_path.unlink(missing_ok=True)
        self.output_path = None
        if self.state == ExportState.COMPLETED:
            self.state = ExportState.IDLE

    async def _run(
        self,
        target: str,
        name: str,
        version: str,
        summary: str | None,
        token: CancellationToken,
    ) -> Path:
        tracker = ProgressTracker(name, self.channel)
        phase = JobPhase.SCANNING
        staging: Path | None = None
        output = self.work_dir / "exports" / f"{slugify(name)}-{slugify(version)}.mrpack"
        log = logger.bind(target=target, pack=name, version=version)

        try:
            layout = InstanceLayout(self.config.instances_dir, target)
            if not layout.root.is_dir():
                raise ConfigurationError(f"Instance directory not found: {layout.root}", path=str(layout.root))
            record = self.repository.get(layout.name)
            if record is None:
                raise ConfigurationError(f"Target is not registered: {layout.name}")

            self.work_dir.mkdir(parents=True, exist_ok=True)
            staging = Path(tempfile.mkdtemp(prefix="craftpack-export-", dir=self.work_dir))
            log.info("export_started", staging=str(staging))

            resources = await self._scan(layout, tracker, token)

            phase = JobPhase.COPYING
            plan = await asyncio.to_thread(self._plan, layout, resources)
            await self._copy_overrides(plan.overrides, staging / OVERRIDES_DIR, tracker, token)

            phase = JobPhase.ARCHIVING
            dependencies = ManifestDependencies(minecraft=record.game_version, projects=plan.dependencies)
            loader_field = _LOADER_FIELDS.get(record.loader)
            if loader_field is not None and record.loader_version:
                setattr(dependencies, loader_field, record.loader_version)
            manifest = PackManifest(
                version_id=version,
                name=name,
                summary=summary,
                files=plan.entries,
                dependencies=dependencies,
            )
            (staging / MANIFEST_NAME).write_text(manifest.to_json(), encoding="utf-8")

            archived_total = sum(1 for p in staging.rglob("*") if p.is_file())
            tracker.start_phase(JobPhase.ARCHIVING, archived_total)
            await asyncio.to_thread(write_pack, staging, output, token, tracker.advance)
        except (OperationCancelled, asyncio.CancelledError):
            output.unlink(missing_ok=True)
            self.state = ExportState.IDLE
            tracker.finish(False, cancelled=True)
            log.info("export_cancelled", phase=str(phase))
            raise
        except Exception as e:
            output.unlink(missing_ok=True)
            self.state = ExportState.IDLE
            self.last_error = ExportError(f"Export failed during {phase}: {e}", phase=str(phase), cause=e)
            tracker.finish(False, error=str(e))
            log.error("export_failed", phase=str(phase), error=str(e))
            raise self.last_error from e
        finally:
            if staging is not None:
                shutil.rmtree(staging, ignore_errors=True)

        self.output_path = output
        self.state = ExportState.COMPLETED
        tracker.finish(True)
        log.info(
            "export_complete",
            path=str(output),
            entries=len(plan.entries),
            overrides=len(plan.overrides),
        )
        return output

    async def _scan(
        self,
        layout: InstanceLayout,
        tracker: ProgressTracker,
        token: CancellationToken,
    ) -> list[tuple[ResourceKind, ScannedResource]]:
        files: list[tuple[ResourceKind, Path]] = []
        for kind in ResourceKind:
            for path in await asyncio.to_thread(self.scanner.list_files, layout.kind_dir(kind)):
                if is_disabled(path.name) and not self.config.export.include_disabled:
                    continue
                files.append((kind, path))

        tracker.start_phase(JobPhase.SCANNING, len(files))

        async def resolve(item: tuple[ResourceKind, Path]) -> tuple[ResourceKind, ScannedResource]:
            kind, path = item
            resource = await self.scanner.resolve_file(path, kind)
            tracker.advance(path.name)
            return kind, resource

        return await self.executor.map(files, resolve, token=token)

    def _plan(
        self,
        layout: InstanceLayout,
        resources: list[tuple[ResourceKind, ScannedResource]],
    ) -> ExportPlan:
        entries: list[ManifestFile] = []
        overrides: list[tuple[Path, str]] = []
        project_ids: set[str] = set()
        declared: list[ProjectDependency] = []

        for kind, resource in resources:
            relative = f"{kind.directory}/{resource.file_name}"
            metadata = resource.metadata
            remote = metadata.remote_file
            if remote is None or remote.hashes.get("sha1") != resource.digest or not remote.url:
                overrides.append((resource.path, relative))
                continue
            hashes = dict(remote.hashes)
            if "sha512" not in hashes:
                hashes.update(self.hasher.digests(resource.path, ("sha512",)))
            entries.append(
                ManifestFile(
                    path=relative,
                    hashes=hashes,
                    downloads=[remote.url],
                    file_size=remote.size or resource.path.stat().st_size,
                    env=FileEnv(client=_env_side(metadata.client_side), server=_env_side(metadata.server_side)),
                )
            )
            project_ids.add(remote.project_id or metadata.id)
            declared.extend(metadata.dependencies)

        excluded = {kind.directory for kind in ResourceKind}
        excluded.update(self.config.export.excluded_directories)
        excluded.add(BOOKKEEPING_DIR)
        if not self.config.export.include_saves:
            excluded.add(SAVES_DIR)
        for top in sorted(layout.root.iterdir(), key=lambda p: p.name):
            if top.name in excluded or top.name.startswith("."):
                continue
            if top.is_file():
                overrides.append((top, top.name))
                continue
            for path in sorted(top.rglob("*")):
                hidden = any(part.startswith(".") for part in path.relative_to(top).parts)
                if path.is_file() and not hidden:
                    overrides.append((path, path.relative_to(layout.root).as_posix()))

        return ExportPlan(entries, overrides, project_ids, _pack_dependencies(declared, project_ids))

    async def _copy_overrides(
        self,
        files: list[tuple[Path, str]],
        overrides_dir: Path,
        tracker: ProgressTracker,
        token: CancellationToken,
    ) -> None:
        tracker.start_phase(JobPhase.COPYING, len(files))
        overrides_dir.mkdir(parents=True, exist_ok=True)

        def copy_one(item: tuple[Path, str]) -> None:
            token.raise_if_cancelled()
            source, relative = item
            destination = overrides_dir / relative
            destination.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, destination)
            tracker.advance(relative)

        await self.executor.map_threaded(files, copy_one, token=token)


def _pack_dependencies(declared: list[ProjectDependency], shipped: set[str]) -> list[ProjectDependency]:
    """Required and optional dependencies not already shipped, one per project.

    A project declared both required and optional is kept as required.
    """
    chosen: dict[str, ProjectDependency] = {}
    for dep in declared:
        if dep.project_id is None or dep.project_id in shipped:
            continue
        if dep.dependency_type not in (DependencyType.REQUIRED, DependencyType.OPTIONAL):
            continue
        current = chosen.get(dep.project_id)
        if current is None or (
            current.dependency_type == DependencyType.OPTIONAL and dep.dependency_type == DependencyType.REQUIRED
        ):
            chosen[dep.project_id] = ProjectDependency(
                project_id=dep.project_id,
                version_id=dep.version_id,
                dependency_type=dep.dependency_type,
            )
    return [chosen[pid] for pid in sorted(chosen)]
