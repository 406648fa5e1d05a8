"""Embedded mod descriptor parsing.

Mod archives usually carry a small descriptor naming the mod id and
version. Supported descriptors, in lookup order:

- ``fabric.mod.json`` (Fabric)
- ``quilt.mod.json`` (Quilt, ``quilt_loader`` section)
- ``META-INF/mods.toml`` (Forge)
- ``META-INF/neoforge.mods.toml`` (NeoForge)
- ``mcmod.info`` (legacy Forge, JSON list or ``modList`` object)
"""

from __future__ import annotations

import json
import tomllib
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger()

# Forge descriptors use this placeholder, filled from the jar manifest.
_VERSION_PLACEHOLDER = "${file.jarVersion}"


@dataclass
class ModDescriptor:
    """Identity declared inside a mod archive.

    Attributes:
        mod_id: Declared mod id
        version: Declared version, None if absent or a build placeholder
        name: Display name, if declared
        description: Description, if declared
        authors: Declared authors
        loader: Loader family the descriptor belongs to
    """

    mod_id: str
    version: str | None = None
    name: str | None = None
    description: str | None = None
    authors: list[str] = field(default_factory=list)
    loader: str = "unknown"


def _names(values: Any) -> list[str]:
    """Normalise author lists (strings or ``{"name": ...}`` objects)."""
    if isinstance(values, str):
        return [values]
    if not isinstance(values, list):
        return []
    names: list[str] = []
    for value in values:
        if isinstance(value, str):
            names.append(value)
        elif isinstance(value, dict) and isinstance(value.get("name"), str):
            names.append(value["name"])
    return names


def _text(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _clean_version(version: Any) -> str | None:
    if not isinstance(version, str) or not version or version == _VERSION_PLACEHOLDER:
        return None
    return version


def parse_fabric(data: bytes) -> ModDescriptor | None:
    doc = json.loads(data)
    if not isinstance(doc, dict) or not doc.get("id"):
        return None
    return ModDescriptor(
        mod_id=str(doc["id"]),
        version=_clean_version(doc.get("version")),
        name=_text(doc.get("name")),
        description=_text(doc.get("description")),
        authors=_names(doc.get("authors")),
        loader="fabric",
    )


def parse_quilt(data: bytes) -> ModDescriptor | None:
    doc = json.loads(data)
    loader = doc.get("quilt_loader") if isinstance(doc, dict) else None
    if not isinstance(loader, dict) or not loader.get("id"):
        return None
    meta = loader.get("metadata")
    if not isinstance(meta, dict):
        meta = {}
    contributors = meta.get("contributors")
    return ModDescriptor(
        mod_id=str(loader["id"]),
        version=_clean_version(loader.get("version")),
        name=_text(meta.get("name")),
        description=_text(meta.get("description")),
        authors=[str(c) for c in contributors] if isinstance(contributors, dict) else [],
        loader="quilt",
    )


def parse_mods_toml(data: bytes, loader: str = "forge") -> ModDescriptor | None:
    doc = tomllib.loads(data.decode("utf-8"))
    mods = doc.get("mods")
    if not isinstance(mods, list) or not mods or not isinstance(mods[0], dict):
        return None
    first = mods[0]
    if not first.get("modId"):
        return None
    authors = first.get("authors") or doc.get("authors")
    return ModDescriptor(
        mod_id=str(first["modId"]),
        version=_clean_version(first.get("version")),
        name=_text(first.get("displayName")),
        description=(_text(first.get("description")) or "").strip() or None,
        authors=[a.strip() for a in authors.split(",")] if isinstance(authors, str) else _names(authors),
        loader=loader,
    )


def parse_mcmod_info(data: bytes) -> ModDescriptor | None:
    doc = json.loads(data)
    if isinstance(doc, dict):
        doc = doc.get("modList", [])
    if not isinstance(doc, list) or not doc or not isinstance(doc[0], dict):
        return None
    first = doc[0]
    if not first.get("modid"):
        return None
    return ModDescriptor(
        mod_id=str(first["modid"]),
        version=_clean_version(first.get("version")),
        name=_text(first.get("name")),
        description=_text(first.get("description")),
        authors=_names(first.get("authorList") or first.get("authors")),
        loader="forge",
    )


_PARSERS: list[tuple[str, Any]] = [
    ("fabric.mod.json", parse_fabric),
    ("quilt.mod.json", parse_quilt),
    ("META-INF/mods.toml", parse_mods_toml),
    ("META-INF/neoforge.mods.toml", lambda data: parse_mods_toml(data, loader="neoforge")),
    ("mcmod.info", parse_mcmod_info),
]


def read_descriptor(path: Path) -> ModDescriptor | None:
    """Read the first recognised descriptor in a mod archive.

    Descriptors that are missing, malformed, corrupt or encrypted are
    skipped. Non-zip files
    and unreadable archives yield None rather than raising.

    Args:
        path: Archive (.jar/.zip, possibly with a disabled suffix)

    Returns:
        Parsed descriptor, or None
    """
    try:
        with zipfile.ZipFile(path) as archive:
            names = set(archive.namelist())
            for member, parser in _PARSERS:
                if member not in names:
                    continue
                try:
                    descriptor = parser(archive.read(member))
                except (
                    ValueError,
                    UnicodeDecodeError,
                    tomllib.TOMLDecodeError,
                    AttributeError,
                    TypeError,
                    zlib.error,
                    zipfile.BadZipFile,
                    RuntimeError,
                    NotImplementedError,
                ) as e:
                    logger.debug("descriptor_parse_failed", path=str(path), member=member, error=str(e))
                    continue
                if descriptor is not None:
                    return descriptor
    except (zipfile.BadZipFile, OSError) as e:
        logger.debug("descriptor_archive_unreadable", path=str(path), error=str(e))
    return None
