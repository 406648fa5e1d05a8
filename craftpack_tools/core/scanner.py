"""Directory scanning: listing, hashing and describing resource files."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import structlog

from craftpack_tools.core.cancellation import CancellationToken
from craftpack_tools.core.errors import FileSystemError
from craftpack_tools.core.executor import BoundedExecutor
from craftpack_tools.core.hasher import ContentHasher
from craftpack_tools.core.installation_index import InstallationIndex
from craftpack_tools.core.resolver import MetadataResolver
from craftpack_tools.core.types import RESOURCE_EXTENSIONS, ResourceKind, ResourceMetadata
from craftpack_tools.core.utils import strip_disabled_suffix

logger = structlog.get_logger()


class MembershipListener(Protocol):
    """Notified after a full scan replaced a target's digests."""

    def update_hash_membership(self, target: str, kind: ResourceKind, digests: set[str]) -> None: ...


@dataclass
class ScannedResource:
    """A file with its digest and resolved metadata."""

    path: Path
    digest: str
    metadata: ResourceMetadata

    @property
    def file_name(self) -> str:
        return self.path.name


@dataclass
class ScanPage:
    """One page of resolved resources.

    Attributes:
        items: Resources on this page, in file order
        has_more: Whether a later page has items
        total: Number of files in the directory
    """

    items: list[ScannedResource]
    has_more: bool
    total: int


def page_bounds(total: int, page: int, page_size: int) -> tuple[int, int] | None:
    """Slice bounds of a 1-based page, None when past the end.

    Page and page size below 1 are treated as 1.

    Example:
        >>> page_bounds(25, 3, 10)
        (20, 25)
        >>> page_bounds(25, 4, 10) is None
        True
    """
    page = max(page, 1)
    page_size = max(page_size, 1)
    start = (page - 1) * page_size
    if start >= total:
        return None
    return start, min(start + page_size, total)


def is_resource_file(path: Path) -> bool:
    """Recognised extension (ignoring a disabled suffix) and not hidden."""
    if path.name.startswith("."):
        return False
    return Path(strip_disabled_suffix(path.name)).suffix.lower() in RESOURCE_EXTENSIONS


class DirectoryScanner:
    """Lists, hashes and resolves resource files in a directory.

    Args:
        hasher: Content hasher
        resolver: Metadata resolver
        index: Installation index replaced by full scans
        executor: Bounds concurrent hashing/resolution
        listener: Told about membership after each full scan
    """

    def __init__(
        self,
        hasher: ContentHasher,
        resolver: MetadataResolver,
        index: InstallationIndex,
        executor: BoundedExecutor,
        listener: MembershipListener | None = None,
    ):
        self.hasher = hasher
        self.resolver = resolver
        self.index = index
        self.executor = executor
        self.listener = listener

    def list_files(self, directory: Path) -> list[Path]:
        """Resource files in ``directory``, sorted by name.

        Disabled files are included; hidden files and subdirectories are
        not. A missing directory has no files.

        Raises:
            FileSystemError: If the path is not a directory or cannot be read
        """
        if not directory.exists():
            return []
        if not directory.is_dir():
            raise FileSystemError(f"Not a directory: {directory}", path=str(directory))
        try:
            entries = list(directory.iterdir())
        except OSError as e:
            raise FileSystemError(f"Cannot list {directory}: {e}", path=str(directory)) from e
        return sorted(
            (p for p in entries if p.is_file() and is_resource_file(p)),
            key=lambda p: p.name,
        )

    def _digest_or_none(self, path: Path) -> str | None:
        try:
            return self.hasher.digest(path)
        except FileSystemError as e:
            logger.warning("scan_file_skipped", path=str(path), error=str(e))
            return None

    async def scan_all(
        self,
        directory: Path,
        target: str | None = None,
        kind: ResourceKind = ResourceKind.MOD,
        force: bool = False,
        token: CancellationToken | None = None,
    ) -> set[str]:
        """Digests of every resource file in ``directory``.

        With a ``target`` that was scanned before, the index answers
        without touching the disk unless ``force`` is set. Otherwise every
        file is hashed and, once all hashing has finished, the target's
        index entry is replaced with exactly the digests found. Files that
        disappear or fail to read mid-scan are skipped.

        Raises:
            FileSystemError: If the directory cannot be listed
            OperationCancelled: If cancelled; the index is left untouched
        """
        if target is not None and not force and self.index.has_cache(target, kind):
            return self.index.get_all(target, kind)

        files = await asyncio.to_thread(self.list_files, directory)
        results = await self.executor.map_threaded(files, self._digest_or_none, token=token)
        digests = {d for d in results if d is not None}

        if target is not None:
            self.index.add_all(target, digests, kind)
            if self.listener is not None:
                self.listener.update_hash_membership(target, kind, digests)

        logger.info(
            "scan_complete",
            directory=str(directory),
            target=target,
            kind=str(kind),
            files=len(files),
            digests=len(digests),
        )
        return digests

    async def resolve_file(self, path: Path, kind: ResourceKind = ResourceKind.MOD) -> ScannedResource:
        """Hash and describe one file.

        Raises:
            FileSystemError: If the file cannot be read
        """
        digest = await asyncio.to_thread(self.hasher.digest, path)
        metadata = await self.resolver.resolve(path, digest, kind)
        return ScannedResource(path=path, digest=digest, metadata=metadata)

    async def _resolve_many(
        self,
        files: list[Path],
        kind: ResourceKind,
        token: CancellationToken | None,
    ) -> list[ScannedResource]:
        async def worker(path: Path) -> ScannedResource:
            return await self.resolve_file(path, kind)

        outcomes = await self.executor.map(files, worker, token=token, return_exceptions=True)
        resources: list[ScannedResource] = []
        for path, outcome in zip(files, outcomes, strict=True):
            if isinstance(outcome, FileSystemError):
                logger.warning("scan_file_skipped", path=str(path), error=str(outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                resources.append(outcome)
        return resources

    async def scan_details(
        self,
        directory: Path,
        kind: ResourceKind = ResourceKind.MOD,
        token: CancellationToken | None = None,
    ) -> list[ScannedResource]:
        """Resolve every file in ``directory``, in file order."""
        files = await asyncio.to_thread(self.list_files, directory)
        return await self._resolve_many(files, kind, token)

    async def scan_page(
        self,
        directory: Path,
        page: int,
        page_size: int,
        kind: ResourceKind = ResourceKind.MOD,
    ) -> ScanPage:
        """Resolve one 1-based page of ``directory``.

        Only the files on the requested page are hashed and resolved.
        """
        files = await asyncio.to_thread(self.list_files, directory)
        bounds = page_bounds(len(files), page, page_size)
        if bounds is None:
            return ScanPage(items=[], has_more=False, total=len(files))
        start, end = bounds
        items = await self._resolve_many(files[start:end], kind, None)
        return ScanPage(items=items, has_more=end < len(files), total=len(files))
