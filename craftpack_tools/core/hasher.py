"""Content hashing for resource files.

A resource is identified by the lowercase hex SHA-1 of its bytes. The
file name never participates, so renaming or toggling the disabled
suffix keeps the digest stable.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from pathlib import Path

from craftpack_tools.core.errors import FileSystemError
from craftpack_tools.core.utils import chunked_read

CHUNK_SIZE = 1024 * 1024


class ContentHasher:
    """Streams files through hashlib in fixed-size chunks.

    Args:
        chunk_size: Read size in bytes
    """

    def __init__(self, chunk_size: int = CHUNK_SIZE):
        self.chunk_size = chunk_size

    def digest(self, path: Path) -> str:
        """Compute the SHA-1 digest of a file.

        Args:
            path: File to hash

        Returns:
            40 lowercase hex characters

        Raises:
            FileSystemError: If the file cannot be read
        """
        return self.digests(path, ("sha1",))["sha1"]

    def digests(self, path: Path, algorithms: Iterable[str] = ("sha1", "sha512")) -> dict[str, str]:
        """Compute several digests in a single pass over the file.

        Args:
            path: File to hash
            algorithms: hashlib algorithm names

        Returns:
            Mapping of algorithm name to hex digest

        Raises:
            FileSystemError: If the file cannot be read
        """
        hashers = {name: hashlib.new(name) for name in algorithms}
        try:
            with open(path, "rb") as f:
                for chunk in chunked_read(f, self.chunk_size):
                    for h in hashers.values():
                        h.update(chunk)
        except OSError as e:
            raise FileSystemError(f"Cannot hash {path}: {e}", path=str(path)) from e
        return {name: h.hexdigest() for name, h in hashers.items()}


def sha1_bytes(data: bytes) -> str:
    """SHA-1 hex digest of an in-memory buffer."""
    return hashlib.sha1(data).hexdigest()
