"""Tests for craftpack_tools.core.exporter module."""

import asyncio
import hashlib
import json
import zipfile
from pathlib import Path

import pytest

from craftpack_tools.core.config import AppConfig, ExportConfig, ScanConfig
from craftpack_tools.core.errors import ErrorKind, ExportError, OperationCancelled
from craftpack_tools.core.exporter import ExportState
from craftpack_tools.core.progress import JobOutcome, ProgressEvent
from craftpack_tools.core.services import Services
from craftpack_tools.core.types import DependencyType, JobPhase, ProjectDependency, SideSupport

SODIUM_URL = "https://cdn.example/data/sodium.jar"


def _digest(path: Path) -> str:
    return hashlib.sha1(path.read_bytes()).hexdigest()


@pytest.fixture
def populated(instance, make_jar, fake_catalog):
    """An instance with remote, local and disabled mods plus config files."""
    root = instance("alpha")
    sodium = make_jar(root / "mods" / "sodium.jar", payload=b"sodium")
    fake_catalog.add_remote(
        _digest(sodium),
        "sodium",
        SODIUM_URL,
        server_side=SideSupport.UNSUPPORTED,
        dependencies=[
            ProjectDependency(project_id="proj-fabric-api", dependency_type=DependencyType.REQUIRED),
            ProjectDependency(project_id="proj-extras", dependency_type=DependencyType.OPTIONAL),
            ProjectDependency(project_id="proj-optifine", dependency_type=DependencyType.INCOMPATIBLE),
        ],
    )
    make_jar(root / "mods" / "local.jar", mod_id="localmod")
    make_jar(root / "mods" / "off.jar.disabled", payload=b"off")
    make_jar(root / "resourcepacks" / "faithful.zip", payload=b"faithful")
    (root / "config").mkdir()
    (root / "config" / "sodium.json").write_text("{}")
    (root / "options.txt").write_text("fov:70")
    (root / "logs").mkdir()
    (root / "logs" / "latest.log").write_text("noise")
    (root / ".craftpack").mkdir()
    (root / ".craftpack" / "state").write_text("internal")
    (root / "saves" / "World").mkdir(parents=True)
    (root / "saves" / "World" / "level.dat").write_bytes(b"level")
    return root


def _read_archive(path: Path) -> tuple[dict, list[str]]:
    with zipfile.ZipFile(path) as archive:
        manifest = json.loads(archive.read("modrinth.index.json"))
        return manifest, sorted(archive.namelist())


class TestPackageExporter:
    """Test PackageExporter class."""

    def test_export_contents(self, services: Services, populated: Path):
        """Catalog files become entries; everything else is an override."""
        output = asyncio.run(services.exporter.export("alpha", "My Pack", "1.0.0", summary="test"))

        assert output.name == "my-pack-1.0.0.mrpack"
        manifest, names = _read_archive(output)
        assert names == [
            "modrinth.index.json",
            "overrides/config/sodium.json",
            "overrides/mods/local.jar",
            "overrides/options.txt",
            "overrides/resourcepacks/faithful.zip",
            "overrides/saves/World/level.dat",
        ]

        assert manifest["name"] == "My Pack"
        assert manifest["versionId"] == "1.0.0"
        assert manifest["summary"] == "test"
        [entry] = manifest["files"]
        assert entry["path"] == "mods/sodium.jar"
        assert entry["downloads"] == [SODIUM_URL]
        assert entry["hashes"]["sha1"] == _digest(populated / "mods" / "sodium.jar")
        assert len(entry["hashes"]["sha512"]) == 128
        assert entry["env"] == {"client": "required", "server": "unsupported"}

    def test_manifest_dependencies(self, services: Services, populated: Path):
        output = asyncio.run(services.exporter.export("alpha", "My Pack", "1.0.0"))
        manifest, _ = _read_archive(output)

        deps = manifest["dependencies"]
        assert deps["minecraft"] == "1.20.1"
        assert deps["fabric-loader"] == "0.15.11"
        assert deps["dependencies"] == [
            {"project_id": "proj-extras", "dependency_type": "optional"},
            {"project_id": "proj-fabric-api", "dependency_type": "required"},
        ]

    def test_include_disabled_and_exclude_saves(self, app_config: AppConfig, fake_catalog, populated: Path):
        config = app_config.model_copy(
            update={"export": ExportConfig(include_disabled=True, include_saves=False)}
        )
        custom = Services.create(config, catalog=fake_catalog)
        try:
            output = asyncio.run(custom.exporter.export("alpha", "Pack", "2"))
        finally:
            custom.cache.close()

        _, names = _read_archive(output)
        assert "overrides/mods/off.jar.disabled" in names
        assert not any(name.startswith("overrides/saves/") for name in names)

    def test_state_machine(self, services: Services, populated: Path):
        exporter = services.exporter
        assert exporter.state == ExportState.IDLE

        output = asyncio.run(exporter.export("alpha", "Pack", "1"))
        assert exporter.state == ExportState.COMPLETED
        assert exporter.output_path == output

        exporter.mark_saved()
        assert exporter.state == ExportState.IDLE
        assert output.exists()

        second = asyncio.run(exporter.export("alpha", "Pack", "2"))
        assert exporter.cancel_export()
        assert exporter.state == ExportState.IDLE
        assert not second.exists()
        assert not exporter.cancel_export()

    def test_single_export_at_a_time(self, services: Services, populated: Path):
        exporter = services.exporter

        async def run():
            task = exporter.start_export("alpha", "Pack", "1")
            assert task is not None
            assert exporter.state == ExportState.EXPORTING
            assert exporter.start_export("alpha", "Pack", "1") is None
            with pytest.raises(ExportError, match="already running"):
                await exporter.export("alpha", "Pack", "1")
            return await task

        output = asyncio.run(run())
        assert output.exists()
        assert exporter.state == ExportState.COMPLETED

    def test_progress_phases(self, services: Services, populated: Path):
        asyncio.run(services.exporter.export("alpha", "Pack", "1"))

        events = services.channel.drain()
        phases = [e.phase for e in events if isinstance(e, ProgressEvent) and e.completed == 0]
        assert phases == [JobPhase.SCANNING, JobPhase.COPYING, JobPhase.ARCHIVING]
        assert events[-1] == JobOutcome("Pack", True)

    def test_cancel_mid_scan(self, app_config: AppConfig, fake_catalog, instance, make_jar):
        """Cancelling after 40 of 100 files leaves nothing behind."""
        root = instance("big")
        for i in range(100):
            make_jar(root / "mods" / f"mod-{i:03d}.jar", payload=f"mod {i}".encode())
        config = app_config.model_copy(update={"scan": ScanConfig(concurrent_downloads=1)})
        serial = Services.create(config, catalog=fake_catalog)
        scanned: list[int] = []

        def on_event(event):
            if isinstance(event, ProgressEvent) and event.phase == JobPhase.SCANNING:
                scanned.append(event.completed)
                if event.completed == 40:
                    serial.exporter.cancel_export()

        serial.channel.subscribe(on_event)
        try:
            with pytest.raises(OperationCancelled):
                asyncio.run(serial.exporter.export("big", "Big", "1"))
        finally:
            serial.cache.close()

        assert max(scanned) == 40
        assert serial.exporter.state == ExportState.IDLE
        assert serial.exporter.output_path is None
        assert [p for p in config.temp_dir.rglob("*") if p.is_file()] == []
        outcome = serial.channel.drain()[-1]
        assert outcome == JobOutcome("Big", False, cancelled=True)

    def test_unregistered_target(self, services: Services, app_config: AppConfig):
        (app_config.instances_dir / "ghost" / "mods").mkdir(parents=True)

        with pytest.raises(ExportError) as exc_info:
            asyncio.run(services.exporter.export("ghost", "Pack", "1"))

        assert exc_info.value.kind == ErrorKind.CONFIGURATION
        assert services.exporter.state == ExportState.IDLE
        assert services.exporter.last_error is exc_info.value

    def test_missing_instance(self, services: Services):
        with pytest.raises(ExportError, match="not found"):
            asyncio.run(services.exporter.export("nowhere", "Pack", "1"))
        assert services.exporter.state == ExportState.IDLE

    def test_hidden_files_are_not_exported(self, services: Services, instance):
        root = instance("alpha")
        (root / "options.txt").write_text("fov:70")
        (root / ".DS_Store").write_bytes(b"finder")
        (root / ".fabric" / "remappedJars").mkdir(parents=True)
        (root / ".fabric" / "remappedJars" / "big.jar").write_bytes(b"remapped")
        (root / "config" / ".hidden").mkdir(parents=True)
        (root / "config" / ".hidden" / "state.json").write_text("{}")
        (root / "config" / ".secret").write_text("x")
        (root / "config" / "visible.json").write_text("{}")

        output = asyncio.run(services.exporter.export("alpha", "Pack", "1"))

        _, names = _read_archive(output)
        assert names == ["modrinth.index.json", "overrides/config/visible.json", "overrides/options.txt"]


def _serial_services(app_config: AppConfig, fake_catalog) -> Services:
    config = app_config.model_copy(update={"scan": ScanConfig(concurrent_downloads=1)})
    return Services.create(config, catalog=fake_catalog)


class TestExportCancellation:
    """Cancelling an export after the scan has finished."""

    def _cancel_at(self, services: Services, phase: JobPhase, completed: int) -> list[int]:
        seen: list[int] = []

        def on_event(event):
            if isinstance(event, ProgressEvent) and event.phase == phase:
                seen.append(event.completed)
                if event.completed == completed:
                    services.exporter.cancel_export()

        services.channel.subscribe(on_event)
        return seen

    def test_cancel_mid_copy(self, app_config: AppConfig, fake_catalog, instance):
        """Cancelling after 40 of 100 copied files leaves nothing behind."""
        root = instance("big")
        (root / "config").mkdir()
        for i in range(100):
            (root / "config" / f"setting-{i:03d}.json").write_text(f'{{"value": {i}}}')
        serial = _serial_services(app_config, fake_catalog)
        copied = self._cancel_at(serial, JobPhase.COPYING, 40)
        try:
            with pytest.raises(OperationCancelled):
                asyncio.run(serial.exporter.export("big", "Big", "1"))
        finally:
            serial.cache.close()

        assert max(copied) == 40
        assert serial.exporter.state == ExportState.IDLE
        assert serial.exporter.output_path is None
        assert [p for p in app_config.temp_dir.rglob("*") if p.is_file()] == []
        assert serial.channel.drain()[-1] == JobOutcome("Big", False, cancelled=True)

    def test_cancel_while_archiving(self, app_config: AppConfig, fake_catalog, instance):
        root = instance("big")
        (root / "config").mkdir()
        for i in range(20):
            (root / "config" / f"setting-{i:03d}.json").write_text("{}")
        serial = _serial_services(app_config, fake_catalog)
        archived = self._cancel_at(serial, JobPhase.ARCHIVING, 5)
        try:
            with pytest.raises(OperationCancelled):
                asyncio.run(serial.exporter.export("big", "Big", "1"))
        finally:
            serial.cache.close()

        assert max(archived) == 5
        assert serial.exporter.state == ExportState.IDLE
        assert [p for p in app_config.temp_dir.rglob("*") if p.is_file()] == []
