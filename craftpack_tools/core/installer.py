"""Install a pack archive into a new or existing instance.

Phases, in order:

1. Download the archive (skipped for local files)
2. Extract it into a temporary workspace
3. Parse and validate ``modrinth.index.json``
4. Create the instance directory layout
5. Copy ``overrides/`` into the instance
6. Download the manifest's files for the configured side
7. Install required project dependencies not already present
8. Register the instance

A failure or cancellation during phases 4-8 rolls the instance back:
files written by the install and directories created in phase 4 are
removed, and digests it added to the installation index are dropped.
The temporary workspace is always removed.
"""

from __future__ import annotations

import asyncio
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

import structlog

from craftpack_tools.core.cache import ResourceCache
from craftpack_tools.core.cancellation import CancellationToken
from craftpack_tools.core.catalog import CatalogClient, CatalogVersion
from craftpack_tools.core.config import AppConfig
from craftpack_tools.core.download import Downloader
from craftpack_tools.core.errors import (
    FileSystemError,
    InstallError,
    OperationCancelled,
    ResourceError,
    ValidationError,
)
from craftpack_tools.core.executor import BoundedExecutor
from craftpack_tools.core.hasher import ContentHasher
from craftpack_tools.core.installation_index import InstallationIndex
from craftpack_tools.core.layout import InstanceLayout
from craftpack_tools.core.progress import ProgressChannel, ProgressTracker
from craftpack_tools.core.repository import TargetRecord, TargetRepository
from craftpack_tools.core.resolver import MetadataResolver
from craftpack_tools.core.types import DependencyType, JobPhase, ProjectDependency, ResourceKind
from craftpack_tools.formats.archive import extract_pack
from craftpack_tools.formats.manifest import MANIFEST_NAME, ManifestFile, PackManifest

logger = structlog.get_logger()

OVERRIDE_DIR_NAMES = ("overrides", "Override", "override")


@dataclass
class InstallResult:
    """Summary of a finished install.

    Attributes:
        target: Instance name
        root: Instance directory
        manifest: Parsed pack manifest
        files_installed: Manifest files downloaded (or already present)
        overrides_copied: Files copied from override directories
        dependencies_installed: Required dependencies downloaded
        dependencies_skipped: Required dependencies already present
        skipped_optional: Optional dependencies left for the caller to offer
    """

    target: str
    root: Path
    manifest: PackManifest
    files_installed: int = 0
    overrides_copied: int = 0
    dependencies_installed: int = 0
    dependencies_skipped: int = 0
    skipped_optional: list[ProjectDependency] = field(default_factory=list)


@dataclass
class _Rollback:
    """What an install has changed so far."""

    created_dirs: list[Path] = field(default_factory=list)
    written_files: list[Path] = field(default_factory=list)
    index_entries: list[tuple[str, str, ResourceKind]] = field(default_factory=list)

    def track_file(self, path: Path) -> None:
        if not path.exists():
            self.written_files.append(path)


def _is_url(source: str | Path) -> bool:
    return isinstance(source, str) and source.startswith(("http://", "https://"))


def _resource_kind(relative: str) -> ResourceKind | None:
    parts = PurePosixPath(relative).parts
    return ResourceKind.from_directory(parts[0]) if len(parts) > 1 else None


class PackageInstaller:
    """Runs the install pipeline.

    Args:
        config: Application configuration
        executor: Bounds concurrent copies and downloads
        downloader: Fetches archives, files and dependencies
        catalog: Resolves project dependencies to downloadable versions
        resolver: Describes installed files, filling the cache
        cache: Metadata cache, used to find already-installed projects
        index: Installation index updated with installed digests
        repository: Registry the finished instance is added to
        hasher: Hashes dependency files the catalog gave no digest for
        channel: Receives progress events
    """

    def __init__(
        self,
        config: AppConfig,
        executor: BoundedExecutor,
        downloader: Downloader,
        catalog: CatalogClient,
        resolver: MetadataResolver,
        cache: ResourceCache,
        index: InstallationIndex,
        repository: TargetRepository,
        hasher: ContentHasher | None = None,
        channel: ProgressChannel | None = None,
    ):
        self.config = config
        self.executor = executor
        self.downloader = downloader
        self.catalog = catalog
        self.resolver = resolver
        self.cache = cache
        self.index = index
        self.repository = repository
        self.hasher = hasher or ContentHasher()
        self.channel = channel

    @property
    def work_dir(self) -> Path:
        return self.config.temp_dir or Path(tempfile.gettempdir())

    async def install(
        self,
        source: str | Path,
        target: str,
        token: CancellationToken | None = None,
        expected_sha1: str | None = None,
    ) -> InstallResult:
        """Install a pack into ``target``.

        Args:
            source: Archive URL or local path
            target: Instance name
            token: Cancellation token shared by every phase
            expected_sha1: Digest of the archive, checked after download

        Returns:
            Install summary

        Raises:
            InstallError: If any phase failed (the instance is rolled back)
            OperationCancelled: If cancelled (the instance is rolled back)
        """
        token = token or CancellationToken()
        tracker = ProgressTracker(target, self.channel)
        phase = JobPhase.DOWNLOADING_PACK
        rollback: _Rollback | None = None
        log = logger.bind(target=target, source=str(source))

        workspace: Path | None = None
        try:
            self.work_dir.mkdir(parents=True, exist_ok=True)
            workspace = Path(tempfile.mkdtemp(prefix="craftpack-install-", dir=self.work_dir))
            archive = await self._fetch_archive(source, workspace, expected_sha1, tracker, token)

            phase = JobPhase.EXTRACTING
            manifest = await self._extract(archive, workspace / "pack", tracker, token)
            layout = InstanceLayout(self.config.instances_dir, target)
            log.info("install_started", pack=manifest.name, version=manifest.version_id)

            rollback = _Rollback()
            rollback.created_dirs = await asyncio.to_thread(layout.create)
            result = InstallResult(target=layout.name, root=layout.root, manifest=manifest)

            phase = JobPhase.COPYING
            result.overrides_copied = await self._copy_overrides(workspace / "pack", layout, rollback, tracker, token)

            phase = JobPhase.DOWNLOADING_FILES
            result.files_installed = await self._download_files(manifest, layout, rollback, tracker, token)

            phase = JobPhase.INSTALLING_DEPENDENCIES
            await self._install_dependencies(manifest, layout, rollback, result, tracker, token)

            token.raise_if_cancelled()
            loader, loader_version = manifest.loader
            self.repository.register(
                TargetRecord(
                    name=layout.name,
                    game_version=manifest.dependencies.minecraft,
                    loader=loader,
                    loader_version=loader_version,
                    source=manifest.name,
                    pack_version=manifest.version_id,
                )
            )
            self.index.flush()
        except (OperationCancelled, asyncio.CancelledError):
            if rollback is not None:
                await asyncio.to_thread(self._rollback, rollback)
            tracker.finish(False, cancelled=True)
            log.info("install_cancelled", phase=str(phase))
            raise
        except Exception as e:
            if rollback is not None:
                await asyncio.to_thread(self._rollback, rollback)
            tracker.finish(False, error=str(e))
            log.error("install_failed", phase=str(phase), error=str(e))
            raise InstallError(f"Install failed during {phase}: {e}", phase=str(phase), cause=e) from e
        finally:
            if workspace is not None:
                shutil.rmtree(workspace, ignore_errors=True)

        tracker.finish(True)
        log.info(
            "install_complete",
            files=result.files_installed,
            overrides=result.overrides_copied,
            dependencies=result.dependencies_installed,
            optional_skipped=len(result.skipped_optional),
        )
        return result

    async def _fetch_archive(
        self,
        source: str | Path,
        workspace: Path,
        expected_sha1: str | None,
        tracker: ProgressTracker,
        token: CancellationToken,
    ) -> Path:
        tracker.start_phase(JobPhase.DOWNLOADING_PACK, 1)
        if _is_url(source):
            name = PurePosixPath(str(source).split("?", 1)[0]).name or "pack.mrpack"
            archive = await self.downloader.download(str(source), workspace / name, expected_sha1, token)
        else:
            archive = Path(source)
            if not archive.is_file():
                raise FileSystemError(f"Pack archive not found: {archive}", path=str(archive))
        tracker.advance(archive.name)
        return archive

    async def _extract(
        self,
        archive: Path,
        destination: Path,
        tracker: ProgressTracker,
        token: CancellationToken,
    ) -> PackManifest:
        tracker.start_phase(JobPhase.EXTRACTING, 1)
        await asyncio.to_thread(extract_pack, archive, destination, token)
        manifest_path = destination / MANIFEST_NAME
        if not manifest_path.is_file():
            raise ValidationError(f"Pack has no {MANIFEST_NAME}", path=str(archive))
        manifest = PackManifest.parse(manifest_path.read_bytes())
        tracker.advance(MANIFEST_NAME)
        return manifest

    def _override_dirs(self, extracted: Path) -> list[Path]:
        names = [*OVERRIDE_DIR_NAMES, f"{self.config.scan.environment}-overrides"]
        return [extracted / name for name in names if (extracted / name).is_dir()]

    async def _copy_overrides(
        self,
        extracted: Path,
        layout: InstanceLayout,
        rollback: _Rollback,
        tracker: ProgressTracker,
        token: CancellationToken,
    ) -> int:
        items: list[tuple[Path, Path]] = []
        for override_dir in self._override_dirs(extracted):
            for path in sorted(override_dir.rglob("*")):
                if path.is_file():
                    items.append((path, layout.root / path.relative_to(override_dir)))
        tracker.start_phase(JobPhase.COPYING, len(items))

        def copy_one(item: tuple[Path, Path]) -> None:
            token.raise_if_cancelled()
            source, destination = item
            destination.parent.mkdir(parents=True, exist_ok=True)
            rollback.track_file(destination)
            shutil.copy2(source, destination)
            tracker.advance(destination.name)

        # Later override directories win, so copy them in order.
        for override_dir in self._override_dirs(extracted):
            batch = [item for item in items if item[0].is_relative_to(override_dir)]
            await self.executor.map_threaded(batch, copy_one, token=token)
        return len(items)

    def _destination(self, layout: InstanceLayout, entry: ManifestFile) -> Path:
        root = layout.root.resolve()
        destination = (root / entry.path).resolve()
        if not destination.is_relative_to(root) or destination == root:
            raise ValidationError(f"Manifest path escapes the instance: {entry.path}")
        return destination

    async def _download_files(
        self,
        manifest: PackManifest,
        layout: InstanceLayout,
        rollback: _Rollback,
        tracker: ProgressTracker,
        token: CancellationToken,
    ) -> int:
        files = manifest.files_for(self.config.scan.environment)
        tracker.start_phase(JobPhase.DOWNLOADING_FILES, len(files))

        async def fetch(entry: ManifestFile) -> None:
            if not entry.downloads:
                raise ResourceError(f"No download URL for {entry.path}")
            destination = self._destination(layout, entry)
            rollback.track_file(destination)
            await self.downloader.download(entry.downloads[0], destination, entry.sha1, token)
            kind = _resource_kind(entry.path)
            if kind is not None:
                self._index_add(layout.name, entry.sha1, kind, rollback)
                await self.resolver.resolve(destination, entry.sha1, kind)
            tracker.advance(entry.path)

        await self.executor.map(files, fetch, token=token)
        return len(files)

    def _index_add(self, target: str, digest: str, kind: ResourceKind, rollback: _Rollback) -> None:
        if not self.index.has(target, digest, kind):
            rollback.index_entries.append((target, digest, kind))
        self.index.add(target, digest, kind)

    def _installed_projects(self, target: str) -> set[str]:
        projects: set[str] = set()
        for digest in self.index.get_all(target, ResourceKind.MOD):
            metadata = self.cache.get(ResourceKind.MOD, digest)
            if metadata is None:
                continue
            projects.add(metadata.id)
            if metadata.remote_file is not None and metadata.remote_file.project_id:
                projects.add(metadata.remote_file.project_id)
        return projects

    async def _pick_version(self, dep: ProjectDependency, manifest: PackManifest) -> CatalogVersion | None:
        if dep.version_id:
            return await self.catalog.get_version(dep.version_id)
        if dep.project_id is None:
            return None
        loader, _ = manifest.loader
        versions = await self.catalog.list_project_versions(
            dep.project_id,
            game_versions=[manifest.dependencies.minecraft] if manifest.dependencies.minecraft else None,
            loaders=[loader] if loader != "vanilla" else None,
        )
        return versions[0] if versions else None

    async def _install_dependencies(
        self,
        manifest: PackManifest,
        layout: InstanceLayout,
        rollback: _Rollback,
        result: InstallResult,
        tracker: ProgressTracker,
        token: CancellationToken,
    ) -> None:
        projects = manifest.dependencies.projects
        required = [d for d in projects if d.dependency_type == DependencyType.REQUIRED]
        result.skipped_optional = [d for d in projects if d.dependency_type == DependencyType.OPTIONAL]
        if result.skipped_optional:
            logger.info(
                "optional_dependencies_not_installed",
                target=layout.name,
                projects=[d.project_id for d in result.skipped_optional],
            )
        tracker.start_phase(JobPhase.INSTALLING_DEPENDENCIES, len(required))
        if not required:
            return

        installed = await asyncio.to_thread(self._installed_projects, layout.name)

        async def install_one(dep: ProjectDependency) -> bool:
            if dep.project_id is not None and dep.project_id in installed:
                tracker.advance(dep.project_id)
                return False
            version = await self._pick_version(dep, manifest)
            catalog_file = version.file_for() if version is not None else None
            if version is None or catalog_file is None:
                raise ResourceError(f"Required dependency unavailable: {dep.project_id or dep.version_id}")
            destination = layout.kind_dir(ResourceKind.MOD) / catalog_file.filename
            sha1 = catalog_file.hashes.get("sha1")
            rollback.track_file(destination)
            await self.downloader.download(catalog_file.url, destination, sha1, token)
            digest = sha1 or await asyncio.to_thread(self.hasher.digest, destination)
            self._index_add(layout.name, digest, ResourceKind.MOD, rollback)
            await self.resolver.resolve(destination, digest, ResourceKind.MOD)
            tracker.advance(dep.project_id or version.id)
            return True

        outcomes = await self.executor.map(required, install_one, token=token)
        result.dependencies_installed = sum(1 for o in outcomes if o)
        result.dependencies_skipped = len(required) - result.dependencies_installed

    def _rollback(self, rollback: _Rollback) -> None:
        """Undo an install's changes. Best effort; failures are logged."""
        for path in reversed(rollback.written_files):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning("rollback_file_failed", path=str(path), error=str(e))
        for directory in sorted(rollback.created_dirs, key=lambda p: len(p.parts), reverse=True):
            shutil.rmtree(directory, ignore_errors=True)
        for target, digest, kind in rollback.index_entries:
            self.index.remove(target, digest, kind)
        logger.info(
            "install_rolled_back",
            files=len(rollback.written_files),
            directories=len(rollback.created_dirs),
        )

