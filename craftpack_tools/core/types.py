"""Core type definitions for craftpack_tools."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class ResourceKind(StrEnum):
    """Categories of add-on files managed per instance.

    The value doubles as the cache namespace.
    """
    MOD = "mod"
    RESOURCEPACK = "resourcepack"
    SHADER = "shader"
    DATAPACK = "datapack"

    @property
    def directory(self) -> str:
        """Directory name holding this kind inside an instance."""
        return _KIND_DIRECTORIES[self]

    @property
    def extensions(self) -> frozenset[str]:
        """Recognised file extensions (lowercase, with dot)."""
        return RESOURCE_EXTENSIONS

    @classmethod
    def from_directory(cls, name: str) -> ResourceKind | None:
        """Map a directory name back to its kind."""
        for kind, directory in _KIND_DIRECTORIES.items():
            if directory == name:
                return kind
        return None


_KIND_DIRECTORIES = {
    ResourceKind.MOD: "mods",
    ResourceKind.RESOURCEPACK: "resourcepacks",
    ResourceKind.SHADER: "shaderpacks",
    ResourceKind.DATAPACK: "datapacks",
}

RESOURCE_EXTENSIONS = frozenset({".jar", ".zip"})

# First entry is what toggling writes; the second is still recognised.
DISABLED_SUFFIXES = (".disabled", ".disable")


class Provenance(StrEnum):
    """Which resolver tier produced a metadata record."""
    REMOTE = "remote"
    DESCRIPTOR = "descriptor"
    FILENAME = "filename"


class SideSupport(StrEnum):
    """Client/server support level of a project or manifest file."""
    REQUIRED = "required"
    OPTIONAL = "optional"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"


class DependencyType(StrEnum):
    """Relationship between a project and one of its dependencies."""
    REQUIRED = "required"
    OPTIONAL = "optional"
    INCOMPATIBLE = "incompatible"
    EMBEDDED = "embedded"


class Environment(StrEnum):
    """Side the local installation runs as."""
    CLIENT = "client"
    SERVER = "server"


class JobPhase(StrEnum):
    """Phases reported by long-running export/install jobs."""
    DOWNLOADING_PACK = "downloading_pack"
    EXTRACTING = "extracting"
    SCANNING = "scanning"
    COPYING = "copying"
    ARCHIVING = "archiving"
    DOWNLOADING_FILES = "downloading_files"
    INSTALLING_DEPENDENCIES = "installing_dependencies"


class ProjectDependency(BaseModel):
    """Dependency reference between catalog projects."""
    project_id: str | None = Field(None, description="Catalog project id")
    version_id: str | None = Field(None, description="Exact catalog version id")
    dependency_type: DependencyType = Field(
        DependencyType.REQUIRED, description="Dependency relationship"
    )

    model_config = ConfigDict(extra="allow")


class RemoteFile(BaseModel):
    """Downloadable file the catalog associates with a digest."""
    url: str = Field(..., description="Download URL")
    filename: str = Field(..., description="File name published by the catalog")
    hashes: dict[str, str] = Field(default_factory=dict, description="Algorithm to hex digest")
    size: int = Field(0, description="File size in bytes")
    version_id: str | None = Field(None, description="Catalog version id")
    project_id: str | None = Field(None, description="Catalog project id")


class ResourceMetadata(BaseModel):
    """Descriptive record for one resource file.

    Identity is the content digest the record is stored under, never the
    ``file_name``, which follows renames.
    """
    id: str = Field(..., description="Project id or synthetic local id")
    slug: str = Field(..., description="URL-safe project name")
    title: str = Field(..., description="Display name")
    description: str = Field("", description="Short description")
    author: str = Field("", description="Author or team")
    categories: list[str] = Field(default_factory=list)
    client_side: SideSupport = Field(SideSupport.OPTIONAL)
    server_side: SideSupport = Field(SideSupport.OPTIONAL)
    downloads: int = Field(0, description="Catalog download count")
    followers: int = Field(0, description="Catalog follower count")
    icon_url: str | None = Field(None)
    versions: list[str] = Field(default_factory=list, description="Known version strings")
    license: str | None = Field(None)
    file_name: str | None = Field(None, description="Current on-disk file name")
    project_type: str = Field("mod")
    provenance: Provenance = Field(Provenance.FILENAME)
    dependencies: list[ProjectDependency] = Field(default_factory=list)
    remote_file: RemoteFile | None = Field(None)

    model_config = ConfigDict(extra="allow")

    @property
    def is_remote(self) -> bool:
        """Whether the record came from the remote catalog."""
        return self.provenance == Provenance.REMOTE
