"""Utility functions for craftpack_tools."""

from __future__ import annotations

import json
import os
import re
from collections.abc import Iterator
from pathlib import Path
from typing import Any, BinaryIO

from craftpack_tools.core.types import DISABLED_SUFFIXES

_DIGEST_RE = re.compile(r"^[0-9a-f]{40}$")
_SLUG_RE = re.compile(r"[^a-z0-9_\-.]+")


def chunked_read(stream: BinaryIO, chunk_size: int = 1024 * 1024) -> Iterator[bytes]:
    """Read a binary stream in fixed-size chunks.

    Args:
        stream: Binary stream to read from
        chunk_size: Size of each chunk in bytes

    Yields:
        Data chunks as bytes

    Raises:
        ValueError: If chunk_size is not positive

    Example:
        >>> import io
        >>> list(chunked_read(io.BytesIO(b"abcdefg"), chunk_size=3))
        [b'abc', b'def', b'g']
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    while chunk := stream.read(chunk_size):
        yield chunk


def format_size(size: int) -> str:
    """Format byte size as human-readable string.

    Example:
        >>> format_size(512)
        '512 B'
        >>> format_size(1536)
        '1.5 KB'
    """
    if size < 0:
        return "0 B"

    value = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if value < 1024.0:
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024.0
    return f"{value:.1f} PB"


def is_digest(value: str) -> bool:
    """Check whether a string is a lowercase SHA-1 hex digest.

    Example:
        >>> is_digest("da39a3ee5e6b4b0d3255bfef95601890afd80709")
        True
        >>> is_digest("DA39")
        False
    """
    return bool(_DIGEST_RE.match(value))


def is_disabled(name: str) -> bool:
    """Whether a file name carries a disabled suffix."""
    lowered = name.lower()
    return any(lowered.endswith(suffix) for suffix in DISABLED_SUFFIXES)


def strip_disabled_suffix(name: str) -> str:
    """Remove a trailing disabled suffix, if present.

    Example:
        >>> strip_disabled_suffix("sodium.jar.disabled")
        'sodium.jar'
        >>> strip_disabled_suffix("sodium.jar")
        'sodium.jar'
    """
    lowered = name.lower()
    for suffix in DISABLED_SUFFIXES:
        if lowered.endswith(suffix):
            return name[: -len(suffix)]
    return name


def base_name(name: str) -> str:
    """File name without disabled suffix and extension.

    Example:
        >>> base_name("Sodium 0.5.jar.disabled")
        'Sodium 0.5'
    """
    return Path(strip_disabled_suffix(name)).stem


def slugify(value: str) -> str:
    """Lowercase, spaces to dashes, drop everything else unsafe.

    Example:
        >>> slugify("Just Enough Items")
        'just-enough-items'
    """
    slug = value.strip().lower().replace(" ", "-")
    slug = _SLUG_RE.sub("", slug)
    return slug or "unnamed"


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON next to ``path`` and atomically move it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(data, separators=(",", ":")), encoding="utf-8")
    os.replace(tmp_path, path)
