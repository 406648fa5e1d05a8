"""Pytest configuration and shared fixtures for craftpack_tools tests."""

import json
import tempfile
import zipfile
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from craftpack_tools.core.catalog import CatalogVersion
from craftpack_tools.core.config import AppConfig, CatalogConfig, ScanConfig
from craftpack_tools.core.repository import TargetRecord
from craftpack_tools.core.services import Services
from craftpack_tools.core.types import (
    Provenance,
    RemoteFile,
    ResourceKind,
    ResourceMetadata,
)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Configuration with every directory under tmp_path and no network."""
    return AppConfig(
        config_dir=tmp_path / "config",
        data_dir=tmp_path / "data",
        cache_dir=tmp_path / "cache",
        instances_dir=tmp_path / "instances",
        temp_dir=tmp_path / "work",
        catalog=CatalogConfig(enabled=False, max_retries=2, base_backoff=0.0),
        scan=ScanConfig(concurrent_downloads=4),
    )


@pytest.fixture
def config_file(app_config: AppConfig, tmp_path: Path) -> Path:
    """The app_config fixture saved as a JSON config file."""
    path = tmp_path / "config.json"
    app_config.save(path)
    return path


def write_jar(path: Path, mod_id: str | None = None, version: str = "1.0.0", payload: bytes = b"") -> Path:
    """Write a minimal mod archive, with a fabric descriptor when mod_id is given."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        if mod_id is not None:
            archive.writestr("fabric.mod.json", json.dumps({"id": mod_id, "version": version, "name": mod_id.title()}))
        archive.writestr("payload.bin", payload or path.name.encode())
    return path


@pytest.fixture
def make_jar() -> Callable[..., Path]:
    """Factory writing mod archives (see write_jar)."""
    return write_jar


class FakeCatalog:
    """In-memory catalog recording every call."""

    def __init__(self) -> None:
        self.by_digest: dict[str, ResourceMetadata] = {}
        self.versions: dict[str, CatalogVersion] = {}
        self.project_versions: dict[str, list[CatalogVersion]] = {}
        self.lookups: list[str] = []
        self.version_requests: list[str] = []

    def add_remote(self, digest: str, slug: str, url: str, project_id: str | None = None, **extra: Any) -> ResourceMetadata:
        project_id = project_id or f"proj-{slug}"
        metadata = ResourceMetadata(
            id=project_id,
            slug=slug,
            title=slug.title(),
            provenance=Provenance.REMOTE,
            remote_file=RemoteFile(
                url=url,
                filename=f"{slug}.jar",
                hashes={"sha1": digest},
                size=0,
                version_id=f"ver-{slug}",
                project_id=project_id,
            ),
            **extra,
        )
        self.by_digest[digest] = metadata
        return metadata

    async def lookup_by_digest(self, digest: str) -> ResourceMetadata | None:
        self.lookups.append(digest)
        metadata = self.by_digest.get(digest)
        return metadata.model_copy(deep=True) if metadata is not None else None

    async def get_version(self, version_id: str) -> CatalogVersion | None:
        self.version_requests.append(version_id)
        return self.versions.get(version_id)

    async def list_project_versions(
        self,
        project_id: str,
        game_versions: list[str] | None = None,
        loaders: list[str] | None = None,
    ) -> list[CatalogVersion]:
        return list(self.project_versions.get(project_id, []))

    async def search(self, query: str, project_type: str = "mod", limit: int = 20) -> list[dict[str, Any]]:
        return []

    async def aclose(self) -> None:
        return None


@pytest.fixture
def fake_catalog() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture
def services(app_config: AppConfig, fake_catalog: FakeCatalog) -> Generator[Services, None, None]:
    """Services wired to the fake catalog."""
    built = Services.create(app_config, catalog=fake_catalog)
    yield built
    built.cache.close()


@pytest.fixture
def instance(app_config: AppConfig, services: Services) -> Callable[..., Path]:
    """Factory creating a registered instance directory."""

    def create(name: str = "alpha", game_version: str = "1.20.1", loader: str = "fabric") -> Path:
        root = app_config.instances_dir / name
        for kind in ResourceKind:
            (root / kind.directory).mkdir(parents=True, exist_ok=True)
        services.repository.register(
            TargetRecord(name=name, game_version=game_version, loader=loader, loader_version="0.15.11")
        )
        return root

    return create


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest settings."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without an explicit marker as unit tests."""
    for item in items:
        if not any(item.get_closest_marker(name) for name in ("slow", "integration")):
            item.add_marker(pytest.mark.unit)
