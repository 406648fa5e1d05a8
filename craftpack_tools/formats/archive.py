"""Pack archive (zip) reading and writing."""

from __future__ import annotations

import os
import zipfile
from collections.abc import Callable
from pathlib import Path

import structlog

from craftpack_tools.core.cancellation import CancellationToken
from craftpack_tools.core.errors import FileSystemError, ValidationError

logger = structlog.get_logger()

PACK_EXTENSIONS = frozenset({".mrpack", ".zip"})


def write_pack(
    staging_dir: Path,
    output_path: Path,
    token: CancellationToken | None = None,
    on_file: Callable[[str], None] | None = None,
) -> int:
    """Zip the staging tree into ``output_path`` with deflate compression.

    The archive is written to a ``.part`` file and renamed when complete,
    so ``output_path`` either holds a whole archive or does not exist.

    Args:
        staging_dir: Directory holding the manifest and ``overrides/``
        output_path: Final archive path
        token: Checked between files
        on_file: Called with each archived relative path

    Returns:
        Number of files archived

    Raises:
        FileSystemError: If reading or writing fails
        OperationCancelled: If cancelled between files
    """
    part_path = output_path.with_name(output_path.name + ".part")
    count = 0
    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(part_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in sorted(staging_dir.rglob("*")):
                if not path.is_file():
                    continue
                if token is not None:
                    token.raise_if_cancelled()
                arcname = path.relative_to(staging_dir).as_posix()
                archive.write(path, arcname)
                count += 1
                if on_file:
                    on_file(arcname)
        os.replace(part_path, output_path)
    except OSError as e:
        raise FileSystemError(f"Cannot write archive {output_path}: {e}", path=str(output_path)) from e
    finally:
        part_path.unlink(missing_ok=True)
    logger.debug("pack_archive_written", path=str(output_path), files=count)
    return count


def extract_pack(archive_path: Path, destination: Path, token: CancellationToken | None = None) -> list[Path]:
    """Extract a pack archive, refusing members that escape ``destination``.

    Args:
        archive_path: ``.mrpack`` or ``.zip`` file
        destination: Directory to extract into
        token: Checked between members

    Returns:
        Extracted file paths

    Raises:
        ValidationError: If the file is not a non-empty zip, or a member
            path is unsafe
        FileSystemError: If extraction fails on disk
        OperationCancelled: If cancelled between members
    """
    if archive_path.suffix.lower() not in PACK_EXTENSIONS:
        raise ValidationError(f"Not a pack archive: {archive_path.name}", path=str(archive_path))
    try:
        if archive_path.stat().st_size == 0:
            raise ValidationError(f"Pack archive is empty: {archive_path.name}", path=str(archive_path))
    except OSError as e:
        raise FileSystemError(f"Cannot read {archive_path}: {e}", path=str(archive_path)) from e

    root = destination.resolve()
    extracted: list[Path] = []
    try:
        with zipfile.ZipFile(archive_path) as archive:
            for member in archive.infolist():
                if token is not None:
                    token.raise_if_cancelled()
                target = (root / member.filename).resolve()
                if not target.is_relative_to(root):
                    raise ValidationError(
                        f"Archive member escapes destination: {member.filename}",
                        path=str(archive_path),
                    )
                if member.is_dir():
                    target.mkdir(parents=True, exist_ok=True)
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                with archive.open(member) as src, open(target, "wb") as dst:
                    while chunk := src.read(1024 * 1024):
                        dst.write(chunk)
                extracted.append(target)
    except zipfile.BadZipFile as e:
        raise ValidationError(f"Corrupt pack archive {archive_path.name}: {e}", path=str(archive_path)) from e
    except OSError as e:
        raise FileSystemError(f"Cannot extract {archive_path}: {e}", path=str(archive_path)) from e
    return extracted
