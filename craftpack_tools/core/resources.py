"""Single-resource operations on an instance: enable/disable, add, remove."""

from __future__ import annotations

import asyncio
import shutil
from pathlib import Path

import structlog

from craftpack_tools.core.cache import ResourceCache
from craftpack_tools.core.errors import FileSystemError, ValidationError
from craftpack_tools.core.hasher import ContentHasher
from craftpack_tools.core.installation_index import InstallationIndex
from craftpack_tools.core.resolver import MetadataResolver
from craftpack_tools.core.scanner import ScannedResource, is_resource_file
from craftpack_tools.core.types import DISABLED_SUFFIXES, ResourceKind
from craftpack_tools.core.utils import is_disabled, strip_disabled_suffix

logger = structlog.get_logger()


class LocalResourceManager:
    """Mutates resource files and keeps the index and cache in step.

    Args:
        hasher: Content hasher
        cache: Metadata cache
        index: Installation index
        resolver: Resolver used for newly added files
    """

    def __init__(
        self,
        hasher: ContentHasher,
        cache: ResourceCache,
        index: InstallationIndex,
        resolver: MetadataResolver,
    ):
        self.hasher = hasher
        self.cache = cache
        self.index = index
        self.resolver = resolver

    def toggle_disabled(self, path: Path, kind: ResourceKind = ResourceKind.MOD) -> Path:
        """Flip a file between enabled and disabled by renaming it.

        The digest does not change; the cached record is pointed at the
        new file name.

        Returns:
            The file's new path

        Raises:
            FileSystemError: If the file is missing or the rename fails
        """
        if is_disabled(path.name):
            new_path = path.with_name(strip_disabled_suffix(path.name))
        else:
            new_path = path.with_name(path.name + DISABLED_SUFFIXES[0])
        if new_path.exists():
            raise FileSystemError(f"Cannot rename {path.name}: {new_path.name} exists", path=str(path))
        try:
            digest = self.hasher.digest(path)
            path.rename(new_path)
        except OSError as e:
            raise FileSystemError(f"Cannot rename {path}: {e}", path=str(path)) from e
        self.cache.update_file_name(kind, digest, new_path.name)
        logger.info("resource_toggled", file=new_path.name, disabled=is_disabled(new_path.name))
        return new_path

    async def add_local_file(
        self,
        source: Path,
        directory: Path,
        target: str,
        kind: ResourceKind = ResourceKind.MOD,
    ) -> ScannedResource:
        """Copy a file into an instance directory and register it.

        Raises:
            ValidationError: If the file type is not a recognised resource
            FileSystemError: If copying fails
        """
        if not is_resource_file(source):
            raise ValidationError(f"Unsupported resource file: {source.name}", path=str(source))
        destination = directory / source.name
        try:
            directory.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copy2, source, destination)
        except OSError as e:
            raise FileSystemError(f"Cannot copy {source} to {directory}: {e}", path=str(source)) from e
        digest = await asyncio.to_thread(self.hasher.digest, destination)
        metadata = await self.resolver.resolve(destination, digest, kind)
        self.index.add(target, digest, kind)
        logger.info("resource_added", target=target, file=destination.name, digest=digest)
        return ScannedResource(path=destination, digest=digest, metadata=metadata)

    def remove(self, path: Path, target: str, kind: ResourceKind = ResourceKind.MOD) -> str:
        """Delete a resource file and forget its digest.

        Returns:
            Digest of the deleted file

        Raises:
            FileSystemError: If the file cannot be read or deleted
        """
        digest = self.hasher.digest(path)
        try:
            path.unlink()
        except OSError as e:
            raise FileSystemError(f"Cannot delete {path}: {e}", path=str(path)) from e
        self.index.remove(target, digest, kind)
        self.cache.remove(kind, digest)
        logger.info("resource_removed", target=target, file=path.name, digest=digest)
        return digest
