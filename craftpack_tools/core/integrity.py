"""Content integrity verification for downloaded resources.

Catalog downloads and pack files carry SHA-1 (and usually SHA-512)
hashes. A file is accepted only when its SHA-1 matches the expected
digest, and when a size is known, its size matches too.
"""

from __future__ import annotations

from pathlib import Path

import structlog

from craftpack_tools.core.errors import FileSystemError, ValidationError
from craftpack_tools.core.hasher import ContentHasher

logger = structlog.get_logger()


class IntegrityError(ValidationError):
    """Raised when content verification fails.

    Attributes:
        expected: Expected digest or size
        actual: Actual digest or size
        digest: Digest the file was requested under
    """

    def __init__(
        self,
        message: str,
        *,
        expected: str | int | None = None,
        actual: str | int | None = None,
        digest: str | None = None,
        path: str | None = None,
    ):
        self.expected = expected
        self.actual = actual
        self.digest = digest
        super().__init__(message, path=path)


def verify_file_digest(path: Path, expected_sha1: str, hasher: ContentHasher | None = None) -> str:
    """Verify that a file's SHA-1 matches the expected digest.

    Args:
        path: File to verify
        expected_sha1: Expected lowercase hex SHA-1
        hasher: Hasher to use, a default one when None

    Returns:
        The verified digest

    Raises:
        IntegrityError: If the digest does not match
    """
    actual = (hasher or ContentHasher()).digest(path)
    if actual != expected_sha1.lower():
        raise IntegrityError(
            f"Digest mismatch for {path.name}: expected {expected_sha1}, got {actual}",
            expected=expected_sha1,
            actual=actual,
            digest=expected_sha1,
            path=str(path),
        )
    return actual


def verify_file_size(path: Path, expected_size: int) -> bool:
    """Verify a file's size on disk.

    Raises:
        IntegrityError: If the size does not match
    """
    actual = path.stat().st_size
    if actual != expected_size:
        raise IntegrityError(
            f"Size mismatch for {path.name}: expected {expected_size}, got {actual}",
            expected=expected_size,
            actual=actual,
            path=str(path),
        )
    return True


def file_matches(path: Path, expected_sha1: str | None, hasher: ContentHasher | None = None) -> bool:
    """Whether an existing file already has the expected content.

    Never raises; a missing or unreadable file simply does not match.
    """
    if expected_sha1 is None or not path.is_file():
        return False
    try:
        verify_file_digest(path, expected_sha1, hasher)
    except (IntegrityError, FileSystemError, OSError) as e:
        logger.debug("existing_file_mismatch", path=str(path), error=str(e))
        return False
    return True
