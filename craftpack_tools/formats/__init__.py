"""File formats: pack manifests, pack archives and mod descriptors."""

from craftpack_tools.formats.descriptor import ModDescriptor, read_descriptor
from craftpack_tools.formats.manifest import (
    MANIFEST_NAME,
    FileEnv,
    ManifestDependencies,
    ManifestFile,
    PackManifest,
)

__all__ = [
    "MANIFEST_NAME",
    "FileEnv",
    "ManifestDependencies",
    "ManifestFile",
    "ModDescriptor",
    "PackManifest",
    "read_descriptor",
]
