"""Pack manifest (``modrinth.index.json``) model.

A pack archive contains this manifest plus an ``overrides/`` tree.
Each manifest file entry names a relative install path, its hashes,
download URLs and per-side support; the ``dependencies`` object names
the game version, the mod loader and, optionally, catalog projects the
pack requires.
"""

from __future__ import annotations

import json
from pathlib import PurePosixPath

import pydantic
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from craftpack_tools.core.errors import ValidationError
from craftpack_tools.core.types import Environment, ProjectDependency, SideSupport

MANIFEST_NAME = "modrinth.index.json"
FORMAT_VERSION = 1
GAME = "minecraft"

# Preference order when a manifest names more than one loader.
LOADER_KEYS = ("fabric_loader", "quilt_loader", "forge", "neoforge")
LOADER_NAMES = {
    "fabric_loader": "fabric",
    "quilt_loader": "quilt",
    "forge": "forge",
    "neoforge": "neoforge",
}


class FileEnv(BaseModel):
    """Per-side support of a manifest file."""
    client: SideSupport = SideSupport.REQUIRED
    server: SideSupport = SideSupport.REQUIRED

    def supports(self, environment: Environment) -> bool:
        side = self.client if environment == Environment.CLIENT else self.server
        return side != SideSupport.UNSUPPORTED


class ManifestFile(BaseModel):
    """Downloadable file listed in a manifest."""
    path: str
    hashes: dict[str, str]
    downloads: list[str] = Field(default_factory=list)
    file_size: int = Field(0, alias="fileSize")
    env: FileEnv | None = None

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Reject absolute paths and parent traversal."""
        normalized = v.replace("\\", "/")
        parts = PurePosixPath(normalized).parts
        if not parts or normalized.startswith("/") or ".." in parts or ":" in parts[0]:
            raise ValueError(f"Unsafe file path: {v}")
        return normalized

    @field_validator("hashes")
    @classmethod
    def validate_hashes(cls, v: dict[str, str]) -> dict[str, str]:
        """Require a SHA-1 and normalise hex case."""
        if "sha1" not in v:
            raise ValueError("File entry has no sha1 hash")
        return {algorithm: digest.lower() for algorithm, digest in v.items()}

    @property
    def sha1(self) -> str:
        return self.hashes["sha1"]

    def supports(self, environment: Environment) -> bool:
        """Whether this file should be installed on ``environment``."""
        return self.env is None or self.env.supports(environment)


class ManifestDependencies(BaseModel):
    """Game, loader and project dependencies of a pack."""
    minecraft: str | None = None
    forge: str | None = Field(None, validation_alias=AliasChoices("forge", "forge-loader"))
    neoforge: str | None = Field(None, validation_alias=AliasChoices("neoforge", "neoforge-loader"))
    fabric_loader: str | None = Field(None, alias="fabric-loader")
    quilt_loader: str | None = Field(None, alias="quilt-loader")
    projects: list[ProjectDependency] = Field(default_factory=list, alias="dependencies")

    model_config = ConfigDict(populate_by_name=True)

    def is_empty(self) -> bool:
        """No game version, loader or project dependency."""
        return self.minecraft is None and self.loader()[1] is None and not self.projects

    def loader(self) -> tuple[str, str | None]:
        """Detected loader name and version, ``("vanilla", None)`` if none."""
        for key in LOADER_KEYS:
            version = getattr(self, key)
            if version:
                return LOADER_NAMES[key], version
        return "vanilla", None


class PackManifest(BaseModel):
    """Top-level manifest document."""
    format_version: int = Field(FORMAT_VERSION, alias="formatVersion")
    game: str = GAME
    version_id: str = Field(..., alias="versionId")
    name: str
    summary: str | None = None
    files: list[ManifestFile] = Field(default_factory=list)
    dependencies: ManifestDependencies = Field(default_factory=ManifestDependencies)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("format_version")
    @classmethod
    def validate_format_version(cls, v: int) -> int:
        if v != FORMAT_VERSION:
            raise ValueError(f"Unsupported formatVersion: {v}")
        return v

    @field_validator("game")
    @classmethod
    def validate_game(cls, v: str) -> str:
        if v != GAME:
            raise ValueError(f"Unsupported game: {v}")
        return v

    @property
    def loader(self) -> tuple[str, str | None]:
        return self.dependencies.loader()

    def files_for(self, environment: Environment) -> list[ManifestFile]:
        """Files to install on one side, dropping unsupported ones."""
        return [f for f in self.files if f.supports(environment)]

    def to_json(self) -> str:
        data = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        # Loader-only packs keep the plain string map other launchers expect.
        if not data["dependencies"].get("dependencies"):
            data["dependencies"].pop("dependencies", None)
        return json.dumps(data, indent=2)

    @classmethod
    def parse(cls, data: bytes | str) -> PackManifest:
        """Parse and validate manifest JSON.

        Raises:
            ValidationError: If the JSON or its structure is invalid, or
                the manifest lists neither files nor dependencies
        """
        try:
            manifest = cls.model_validate_json(data)
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid pack manifest: {e}") from e
        if not manifest.files and manifest.dependencies.is_empty():
            raise ValidationError("Pack manifest lists no files and no dependencies")
        return manifest
