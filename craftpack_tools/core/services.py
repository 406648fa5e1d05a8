"""Wiring of the shared components.

Everything is constructed explicitly from an :class:`AppConfig` and
passed down, so tests can build a fully isolated set of services.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from craftpack_tools.core.cache import ResourceCache
from craftpack_tools.core.catalog import CatalogClient, ModrinthCatalog, NullCatalog
from craftpack_tools.core.config import AppConfig
from craftpack_tools.core.download import Downloader
from craftpack_tools.core.executor import BoundedExecutor
from craftpack_tools.core.exporter import PackageExporter
from craftpack_tools.core.hasher import ContentHasher
from craftpack_tools.core.installation_index import InstallationIndex
from craftpack_tools.core.installer import PackageInstaller
from craftpack_tools.core.progress import ProgressChannel
from craftpack_tools.core.repository import TargetRepository
from craftpack_tools.core.resolver import MetadataResolver
from craftpack_tools.core.resources import LocalResourceManager
from craftpack_tools.core.scanner import DirectoryScanner

logger = structlog.get_logger()


@dataclass
class Services:
    """One instance of every component, sharing cache, index and registry."""

    config: AppConfig
    hasher: ContentHasher
    cache: ResourceCache
    index: InstallationIndex
    repository: TargetRepository
    catalog: CatalogClient
    downloader: Downloader
    executor: BoundedExecutor
    resolver: MetadataResolver
    scanner: DirectoryScanner
    resources: LocalResourceManager
    exporter: PackageExporter
    installer: PackageInstaller
    channel: ProgressChannel

    @classmethod
    def create(
        cls,
        config: AppConfig,
        catalog: CatalogClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        channel: ProgressChannel | None = None,
    ) -> Services:
        """Build services from configuration.

        Args:
            config: Application configuration
            catalog: Catalog to use, defaults to Modrinth (or an offline
                catalog when remote lookups are disabled)
            transport: httpx transport for the default catalog and downloader
            channel: Progress channel, a new buffered one by default
        """
        if catalog is None:
            catalog = ModrinthCatalog(config.catalog, transport) if config.catalog.enabled else NullCatalog()
        channel = channel or ProgressChannel()
        hasher = ContentHasher()
        cache = ResourceCache(config.cache_db_path)
        index = InstallationIndex(config.index_path)
        repository = TargetRepository(config.targets_path)
        downloader = Downloader(config.catalog, hasher, transport)
        executor = BoundedExecutor(config.scan.concurrent_downloads)
        resolver = MetadataResolver(cache, catalog)
        scanner = DirectoryScanner(hasher, resolver, index, executor, listener=repository)
        return cls(
            config=config,
            hasher=hasher,
            cache=cache,
            index=index,
            repository=repository,
            catalog=catalog,
            downloader=downloader,
            executor=executor,
            resolver=resolver,
            scanner=scanner,
            resources=LocalResourceManager(hasher, cache, index, resolver),
            exporter=PackageExporter(config, scanner, executor, repository, hasher, channel),
            installer=PackageInstaller(
                config, executor, downloader, catalog, resolver, cache, index, repository, hasher, channel
            ),
            channel=channel,
        )

    async def aclose(self) -> None:
        """Flush state and release connections."""
        self.index.flush()
        await self.catalog.aclose()
        await self.downloader.aclose()
        self.cache.close()
        logger.debug("services_closed")

    async def __aenter__(self) -> Services:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
