"""Metadata resolution for a single resource file.

Resolution walks an ordered list of tiers and stops at the first one
that answers:

1. ``CacheTier`` - exact digest hit in the metadata cache
2. ``CatalogTier`` - remote catalog lookup by digest
3. ``DescriptorTier`` - descriptor embedded in the archive
4. ``FilenameTier`` - synthetic record derived from the file name

The last tier always answers, so every readable file gets a record.
Answers from tiers after the cache are written back to it. A tier that
raises is logged and skipped.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import structlog

from craftpack_tools.core.cache import ResourceCache
from craftpack_tools.core.catalog import CatalogClient
from craftpack_tools.core.types import Provenance, ResourceKind, ResourceMetadata, SideSupport
from craftpack_tools.core.utils import base_name, slugify
from craftpack_tools.formats.descriptor import read_descriptor

logger = structlog.get_logger()


@dataclass(frozen=True)
class ResolveRequest:
    """A file to describe."""

    path: Path
    digest: str
    kind: ResourceKind

    @property
    def file_name(self) -> str:
        return self.path.name


class ResolverTier(Protocol):
    name: str

    async def resolve(self, request: ResolveRequest) -> ResourceMetadata | None: ...


class CacheTier:
    """Exact-digest cache lookup. Renames are written back to the cache."""

    name = "cache"

    def __init__(self, cache: ResourceCache):
        self.cache = cache

    async def resolve(self, request: ResolveRequest) -> ResourceMetadata | None:
        metadata = await asyncio.to_thread(self.cache.get, request.kind, request.digest)
        if metadata is None:
            return None
        if metadata.file_name != request.file_name:
            metadata.file_name = request.file_name
            await asyncio.to_thread(self.cache.set, request.kind, request.digest, metadata)
        return metadata


class CatalogTier:
    name = "catalog"

    def __init__(self, catalog: CatalogClient):
        self.catalog = catalog

    async def resolve(self, request: ResolveRequest) -> ResourceMetadata | None:
        metadata = await self.catalog.lookup_by_digest(request.digest)
        if metadata is not None:
            metadata.file_name = request.file_name
        return metadata


class DescriptorTier:
    name = "descriptor"

    async def resolve(self, request: ResolveRequest) -> ResourceMetadata | None:
        if request.kind != ResourceKind.MOD:
            return None
        descriptor = await asyncio.to_thread(read_descriptor, request.path)
        if descriptor is None:
            return None
        return ResourceMetadata(
            id=f"local_{descriptor.mod_id}_{request.digest[:8]}",
            slug=descriptor.mod_id,
            title=descriptor.name or descriptor.mod_id,
            description=descriptor.description or f"local: {request.file_name}",
            author=", ".join(descriptor.authors) or "local",
            categories=[descriptor.loader],
            versions=[descriptor.version] if descriptor.version else ["unknown"],
            file_name=request.file_name,
            project_type=request.kind.value,
            provenance=Provenance.DESCRIPTOR,
        )


class FilenameTier:
    """Always succeeds."""

    name = "filename"

    async def resolve(self, request: ResolveRequest) -> ResourceMetadata | None:
        base = base_name(request.file_name)
        slug = slugify(base)
        return ResourceMetadata(
            id=f"file_{slug}_{request.digest[:8]}",
            slug=slug,
            title=base,
            description=f"local: {request.file_name}",
            author="local",
            categories=["unknown"],
            client_side=SideSupport.OPTIONAL,
            server_side=SideSupport.OPTIONAL,
            versions=["unknown"],
            file_name=request.file_name,
            project_type=request.kind.value,
            provenance=Provenance.FILENAME,
        )


class MetadataResolver:
    """Runs the tier chain and caches non-cache answers.

    Args:
        cache: Metadata cache, consulted first and written after a miss
        tiers: Tiers tried after the cache, in order. Defaults to catalog
            (when given), descriptor and filename tiers.
        catalog: Catalog used to build the default tiers
    """

    def __init__(
        self,
        cache: ResourceCache,
        catalog: CatalogClient | None = None,
        tiers: list[ResolverTier] | None = None,
    ):
        self.cache = cache
        self.cache_tier = CacheTier(cache)
        if tiers is None:
            tiers = []
            if catalog is not None:
                tiers.append(CatalogTier(catalog))
            tiers.extend([DescriptorTier(), FilenameTier()])
        self.tiers = tiers

    async def resolve(self, path: Path, digest: str, kind: ResourceKind = ResourceKind.MOD) -> ResourceMetadata:
        """Describe one file.

        Args:
            path: File on disk (its name is recorded in the result)
            digest: Content digest of the file
            kind: Resource kind, also the cache namespace

        Returns:
            Metadata from the first tier that answered
        """
        request = ResolveRequest(path=path, digest=digest, kind=kind)
        cached = await self.cache_tier.resolve(request)
        if cached is not None:
            return cached

        for tier in self.tiers:
            try:
                metadata = await tier.resolve(request)
            except Exception as e:
                logger.warning("metadata_tier_failed", file=request.file_name, tier=tier.name, error=str(e))
                continue
            if metadata is None:
                continue
            logger.debug("metadata_resolved", file=request.file_name, tier=tier.name)
            await asyncio.to_thread(self.cache.set, kind, digest, metadata)
            return metadata

        # Reached when every tier failed or a custom tier list lacks a catch-all.
        metadata = await FilenameTier().resolve(request)
        assert metadata is not None
        await asyncio.to_thread(self.cache.set, kind, digest, metadata)
        return metadata
