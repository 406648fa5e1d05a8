"""Tests for craftpack_tools.formats.manifest module."""

import json

import pytest

from craftpack_tools.core.errors import ValidationError
from craftpack_tools.core.types import DependencyType, Environment
from craftpack_tools.formats.manifest import ManifestDependencies, ManifestFile, PackManifest

SHA1 = "a" * 40


def _file(path: str = "mods/sodium.jar", **extra) -> dict:
    entry = {
        "path": path,
        "hashes": {"sha1": SHA1, "sha512": "b" * 128},
        "downloads": ["https://cdn.example/sodium.jar"],
        "fileSize": 10,
    }
    entry.update(extra)
    return entry


def _manifest(**overrides) -> dict:
    data = {
        "formatVersion": 1,
        "game": "minecraft",
        "versionId": "1.0.0",
        "name": "Test Pack",
        "files": [_file()],
        "dependencies": {"minecraft": "1.20.1", "fabric-loader": "0.15.11"},
    }
    data.update(overrides)
    return data


class TestPackManifest:
    """Test PackManifest parsing."""

    def test_parse(self):
        manifest = PackManifest.parse(json.dumps(_manifest()))
        assert manifest.name == "Test Pack"
        assert manifest.version_id == "1.0.0"
        assert manifest.loader == ("fabric", "0.15.11")
        assert manifest.files[0].sha1 == SHA1
        assert manifest.files[0].file_size == 10

    def test_wrong_format_version(self):
        with pytest.raises(ValidationError):
            PackManifest.parse(json.dumps(_manifest(formatVersion=2)))

    def test_wrong_game(self):
        with pytest.raises(ValidationError):
            PackManifest.parse(json.dumps(_manifest(game="terraria")))

    def test_not_json(self):
        with pytest.raises(ValidationError):
            PackManifest.parse("not json")

    def test_empty_manifest_rejected(self):
        with pytest.raises(ValidationError, match="no files"):
            PackManifest.parse(json.dumps(_manifest(files=[], dependencies={})))

    def test_dependencies_only_is_valid(self):
        manifest = PackManifest.parse(json.dumps(_manifest(files=[])))
        assert manifest.files == []

    def test_project_dependencies(self):
        deps = {
            "minecraft": "1.20.1",
            "dependencies": [
                {"project_id": "P7dR8mSH", "dependency_type": "required"},
                {"project_id": "YL57xq9U", "dependency_type": "optional"},
            ],
        }
        manifest = PackManifest.parse(json.dumps(_manifest(files=[], dependencies=deps)))
        assert [d.dependency_type for d in manifest.dependencies.projects] == [
            DependencyType.REQUIRED,
            DependencyType.OPTIONAL,
        ]

    def test_env_filtering(self):
        files = [
            _file("mods/both.jar"),
            _file("mods/client.jar", env={"client": "required", "server": "unsupported"}),
            _file("mods/server.jar", env={"client": "unsupported", "server": "optional"}),
        ]
        manifest = PackManifest.parse(json.dumps(_manifest(files=files)))

        assert [f.path for f in manifest.files_for(Environment.CLIENT)] == ["mods/both.jar", "mods/client.jar"]
        assert [f.path for f in manifest.files_for(Environment.SERVER)] == ["mods/both.jar", "mods/server.jar"]

    def test_to_json_round_trip(self):
        manifest = PackManifest.parse(json.dumps(_manifest()))
        data = json.loads(manifest.to_json())

        assert data["formatVersion"] == 1
        assert data["versionId"] == "1.0.0"
        assert data["files"][0]["fileSize"] == 10
        assert data["dependencies"] == {"minecraft": "1.20.1", "fabric-loader": "0.15.11"}
        assert PackManifest.parse(manifest.to_json()) == manifest


class TestManifestFile:
    """Test ManifestFile validation."""

    @pytest.mark.parametrize("path", ["/etc/passwd", "../outside.jar", "mods/../../x.jar", "C:/x.jar", ""])
    def test_unsafe_paths(self, path):
        with pytest.raises(ValueError):
            ManifestFile(path=path, hashes={"sha1": SHA1})

    def test_backslashes_normalised(self):
        assert ManifestFile(path="mods\\a.jar", hashes={"sha1": SHA1}).path == "mods/a.jar"

    def test_sha1_required(self):
        with pytest.raises(ValueError):
            ManifestFile(path="mods/a.jar", hashes={"sha512": "b" * 128})

    def test_hash_case_normalised(self):
        assert ManifestFile(path="mods/a.jar", hashes={"sha1": "A" * 40}).sha1 == SHA1


class TestManifestDependencies:
    """Test loader detection."""

    @pytest.mark.parametrize(
        ("data", "expected"),
        [
            ({"quilt-loader": "0.21"}, ("quilt", "0.21")),
            ({"forge": "47.2.0"}, ("forge", "47.2.0")),
            ({"forge-loader": "47.2.0"}, ("forge", "47.2.0")),
            ({"neoforge": "20.4.1"}, ("neoforge", "20.4.1")),
            ({"minecraft": "1.20.1"}, ("vanilla", None)),
            ({"fabric-loader": "0.15", "forge": "47"}, ("fabric", "0.15")),
        ],
    )
    def test_loader(self, data, expected):
        assert ManifestDependencies.model_validate(data).loader() == expected
