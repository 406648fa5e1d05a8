"""Remote catalog client.

The catalog identifies files by digest and describes projects, versions
and their dependencies. :class:`ModrinthCatalog` speaks the Modrinth v2
HTTP API. Lookups are best effort: HTTP and decoding failures are logged
and reported as "not found" so that resolution can fall through to local
tiers.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

import httpx
import pydantic
import structlog
from pydantic import BaseModel, ConfigDict, Field

from craftpack_tools.core.config import CatalogConfig
from craftpack_tools.core.types import (
    DependencyType,
    ProjectDependency,
    Provenance,
    RemoteFile,
    ResourceMetadata,
    SideSupport,
)

logger = structlog.get_logger()


class CatalogFile(BaseModel):
    """File attached to a catalog version."""
    url: str
    filename: str
    hashes: dict[str, str] = Field(default_factory=dict)
    size: int = 0
    primary: bool = False

    model_config = ConfigDict(extra="ignore")


class CatalogVersion(BaseModel):
    """A published version of a project."""
    id: str
    project_id: str
    name: str = ""
    version_number: str = ""
    game_versions: list[str] = Field(default_factory=list)
    loaders: list[str] = Field(default_factory=list)
    dependencies: list[ProjectDependency] = Field(default_factory=list)
    files: list[CatalogFile] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

    def file_for(self, digest: str | None = None) -> CatalogFile | None:
        """File matching ``digest``, else the primary file, else the first."""
        if digest is not None:
            for f in self.files:
                if f.hashes.get("sha1") == digest:
                    return f
        for f in self.files:
            if f.primary:
                return f
        return self.files[0] if self.files else None


class CatalogProject(BaseModel):
    """Project description."""
    id: str
    slug: str
    title: str
    description: str = ""
    categories: list[str] = Field(default_factory=list)
    client_side: str = "unknown"
    server_side: str = "unknown"
    downloads: int = 0
    followers: int = 0
    icon_url: str | None = None
    versions: list[str] = Field(default_factory=list)
    license: dict[str, Any] | None = None
    project_type: str = "mod"
    team: str = ""

    model_config = ConfigDict(extra="ignore")


class CatalogClient(Protocol):
    """What the scanner, exporter and installer need from a catalog."""

    async def lookup_by_digest(self, digest: str) -> ResourceMetadata | None: ...

    async def get_version(self, version_id: str) -> CatalogVersion | None: ...

    async def list_project_versions(
        self,
        project_id: str,
        game_versions: list[str] | None = None,
        loaders: list[str] | None = None,
    ) -> list[CatalogVersion]: ...

    async def search(self, query: str, project_type: str = "mod", limit: int = 20) -> list[dict[str, Any]]: ...

    async def aclose(self) -> None: ...


def _side(value: str) -> SideSupport:
    try:
        return SideSupport(value)
    except ValueError:
        return SideSupport.UNKNOWN


def build_metadata(
    project: CatalogProject,
    version: CatalogVersion,
    digest: str | None = None,
) -> ResourceMetadata:
    """Combine a project and one of its versions into a metadata record."""
    remote: RemoteFile | None = None
    catalog_file = version.file_for(digest)
    if catalog_file is not None:
        remote = RemoteFile(
            url=catalog_file.url,
            filename=catalog_file.filename,
            hashes=catalog_file.hashes,
            size=catalog_file.size,
            version_id=version.id,
            project_id=project.id,
        )
    return ResourceMetadata(
        id=project.id,
        slug=project.slug,
        title=project.title,
        description=project.description,
        author=project.team,
        categories=project.categories,
        client_side=_side(project.client_side),
        server_side=_side(project.server_side),
        downloads=project.downloads,
        followers=project.followers,
        icon_url=project.icon_url,
        versions=[version.version_number] if version.version_number else project.versions,
        license=(project.license or {}).get("id"),
        file_name=catalog_file.filename if catalog_file else None,
        project_type=project.project_type,
        provenance=Provenance.REMOTE,
        dependencies=version.dependencies,
        remote_file=remote,
    )


class ModrinthCatalog:
    """Modrinth v2 API client.

    Args:
        config: Catalog configuration
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(self, config: CatalogConfig | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config or CatalogConfig()
        self._transport = transport
        self._async_client: httpx.AsyncClient | None = None

    @property
    def async_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._async_client is None:
            self._async_client = httpx.AsyncClient(
                base_url=self.config.api_url,
                timeout=self.config.timeout,
                headers={"User-Agent": self.config.user_agent},
                follow_redirects=True,
                transport=self._transport,
            )
        return self._async_client

    async def _get_json(self, path: str, params: dict[str, Any] | None = None) -> Any | None:
        """GET a JSON document, None when missing or on any failure."""
        if not self.config.enabled:
            return None
        try:
            response = await self.async_client.get(path, params=params)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return response.json()
        except httpx.HTTPError as e:
            logger.warning("catalog_request_failed", path=path, error=str(e))
        except json.JSONDecodeError as e:
            logger.warning("catalog_response_invalid", path=path, error=str(e))
        return None

    async def get_project(self, project_id: str) -> CatalogProject | None:
        data = await self._get_json(f"/project/{project_id}")
        if data is None:
            return None
        try:
            return CatalogProject.model_validate(data)
        except pydantic.ValidationError as e:
            logger.warning("catalog_project_invalid", project_id=project_id, error=str(e))
            return None

    async def get_version(self, version_id: str) -> CatalogVersion | None:
        data = await self._get_json(f"/version/{version_id}")
        if data is None:
            return None
        try:
            return CatalogVersion.model_validate(data)
        except pydantic.ValidationError as e:
            logger.warning("catalog_version_invalid", version_id=version_id, error=str(e))
            return None

    async def get_version_by_digest(self, digest: str) -> CatalogVersion | None:
        data = await self._get_json(f"/version_file/{digest}", params={"algorithm": "sha1"})
        if data is None:
            return None
        try:
            return CatalogVersion.model_validate(data)
        except pydantic.ValidationError as e:
            logger.warning("catalog_version_invalid", digest=digest, error=str(e))
            return None

    async def lookup_by_digest(self, digest: str) -> ResourceMetadata | None:
        """Identify a file by SHA-1.

        Returns:
            Remote metadata including the exact downloadable file, or None
            if the catalog does not know the digest or is unreachable
        """
        version = await self.get_version_by_digest(digest)
        if version is None:
            return None
        project = await self.get_project(version.project_id)
        if project is None:
            return None
        logger.debug("catalog_digest_resolved", digest=digest, project=project.slug)
        return build_metadata(project, version, digest)

    async def list_project_versions(
        self,
        project_id: str,
        game_versions: list[str] | None = None,
        loaders: list[str] | None = None,
    ) -> list[CatalogVersion]:
        """Versions of a project, newest first, filtered server side."""
        params: dict[str, Any] = {}
        if game_versions:
            params["game_versions"] = json.dumps(game_versions)
        if loaders:
            params["loaders"] = json.dumps(loaders)
        data = await self._get_json(f"/project/{project_id}/version", params=params or None)
        if not isinstance(data, list):
            return []
        versions: list[CatalogVersion] = []
        for entry in data:
            try:
                versions.append(CatalogVersion.model_validate(entry))
            except pydantic.ValidationError as e:
                logger.debug("catalog_version_skipped", project_id=project_id, error=str(e))
        return versions

    async def search(self, query: str, project_type: str = "mod", limit: int = 20) -> list[dict[str, Any]]:
        """Free-text project search."""
        params = {
            "query": query,
            "limit": limit,
            "facets": json.dumps([[f"project_type:{project_type}"]]),
        }
        data = await self._get_json("/search", params=params)
        if not isinstance(data, dict):
            return []
        return list(data.get("hits", []))

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._async_client is not None:
            await self._async_client.aclose()
            self._async_client = None


class NullCatalog:
    """Offline catalog that knows nothing."""

    async def lookup_by_digest(self, digest: str) -> ResourceMetadata | None:
        return None

    async def get_version(self, version_id: str) -> CatalogVersion | None:
        return None

    async def list_project_versions(
        self,
        project_id: str,
        game_versions: list[str] | None = None,
        loaders: list[str] | None = None,
    ) -> list[CatalogVersion]:
        return []

    async def search(self, query: str, project_type: str = "mod", limit: int = 20) -> list[dict[str, Any]]:
        return []

    async def aclose(self) -> None:
        return None


def required_dependencies(dependencies: list[ProjectDependency]) -> list[ProjectDependency]:
    """Dependencies that must be installed alongside a project."""
    return [d for d in dependencies if d.dependency_type == DependencyType.REQUIRED]
