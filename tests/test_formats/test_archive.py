"""Tests for craftpack_tools.formats.archive module."""

import zipfile
from pathlib import Path

import pytest

from craftpack_tools.core.cancellation import CancellationToken
from craftpack_tools.core.errors import OperationCancelled, ValidationError
from craftpack_tools.formats.archive import extract_pack, write_pack


def _staging(root: Path) -> Path:
    (root / "overrides" / "config").mkdir(parents=True)
    (root / "modrinth.index.json").write_text("{}")
    (root / "overrides" / "config" / "a.toml").write_text("a = 1")
    (root / "overrides" / "options.txt").write_text("fov:70")
    return root


class TestWritePack:
    """Test write_pack function."""

    def test_writes_every_file(self, tmp_path: Path):
        staging = _staging(tmp_path / "staging")
        output = tmp_path / "out" / "pack.mrpack"
        archived: list[str] = []

        count = write_pack(staging, output, on_file=archived.append)

        assert count == 3
        with zipfile.ZipFile(output) as archive:
            assert sorted(archive.namelist()) == [
                "modrinth.index.json",
                "overrides/config/a.toml",
                "overrides/options.txt",
            ]
            assert all(i.compress_type == zipfile.ZIP_DEFLATED for i in archive.infolist())
        assert sorted(archived) == sorted(["modrinth.index.json", "overrides/config/a.toml", "overrides/options.txt"])
        assert not (tmp_path / "out" / "pack.mrpack.part").exists()

    def test_cancelled_leaves_no_output(self, tmp_path: Path):
        staging = _staging(tmp_path / "staging")
        output = tmp_path / "pack.mrpack"
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelled):
            write_pack(staging, output, token)

        assert not output.exists()
        assert not (tmp_path / "pack.mrpack.part").exists()


class TestExtractPack:
    """Test extract_pack function."""

    def test_round_trip(self, tmp_path: Path):
        staging = _staging(tmp_path / "staging")
        archive = tmp_path / "pack.mrpack"
        write_pack(staging, archive)

        extracted = extract_pack(archive, tmp_path / "out")

        assert len(extracted) == 3
        assert (tmp_path / "out" / "overrides" / "options.txt").read_text() == "fov:70"

    def test_zip_slip_rejected(self, tmp_path: Path):
        archive = tmp_path / "evil.mrpack"
        with zipfile.ZipFile(archive, "w") as zf:
            zf.writestr("../escape.txt", "gotcha")

        with pytest.raises(ValidationError, match="escapes"):
            extract_pack(archive, tmp_path / "out")
        assert not (tmp_path / "escape.txt").exists()

    def test_wrong_extension(self, tmp_path: Path):
        path = tmp_path / "pack.tar"
        path.write_bytes(b"x")
        with pytest.raises(ValidationError):
            extract_pack(path, tmp_path / "out")

    def test_empty_file(self, tmp_path: Path):
        path = tmp_path / "pack.mrpack"
        path.write_bytes(b"")
        with pytest.raises(ValidationError, match="empty"):
            extract_pack(path, tmp_path / "out")

    def test_corrupt_zip(self, tmp_path: Path):
        path = tmp_path / "pack.zip"
        path.write_bytes(b"PK not really")
        with pytest.raises(ValidationError):
            extract_pack(path, tmp_path / "out")
