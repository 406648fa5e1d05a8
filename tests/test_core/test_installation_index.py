"""Tests for craftpack_tools.core.installation_index module."""

import json
import threading
from pathlib import Path

from craftpack_tools.core.installation_index import InstallationIndex
from craftpack_tools.core.types import ResourceKind


class TestInstallationIndex:
    """Test InstallationIndex class."""

    def test_never_scanned_vs_scanned_empty(self):
        """has_cache distinguishes a missing entry from an empty one."""
        index = InstallationIndex()
        assert not index.has_cache("alpha")

        index.add_all("alpha", [])
        assert index.has_cache("alpha")
        assert index.get_all("alpha") == set()

    def test_add_all_replaces(self):
        """A full scan replaces the entry; stale digests disappear."""
        index = InstallationIndex()
        index.add_all("alpha", ["a", "b", "c"])
        index.add_all("alpha", ["b", "d"])

        assert index.get_all("alpha") == {"b", "d"}
        assert not index.has("alpha", "a")

    def test_add_and_remove(self):
        index = InstallationIndex()
        index.add("alpha", "a")
        assert index.has("alpha", "a")
        index.remove("alpha", "a")
        assert not index.has("alpha", "a")
        index.remove("alpha", "missing")

    def test_kinds_are_separate(self):
        index = InstallationIndex()
        index.add("alpha", "a", ResourceKind.SHADER)
        assert index.has("alpha", "a", ResourceKind.SHADER)
        assert not index.has("alpha", "a")
        assert not index.has_cache("alpha", ResourceKind.MOD)

    def test_targets_are_separate(self):
        index = InstallationIndex()
        index.add_all("alpha", ["a"])
        index.add_all("beta", ["b"])
        assert not index.has("alpha", "b")
        assert index.targets() == ["alpha", "beta"]

        index.forget("alpha")
        assert not index.has_cache("alpha")
        assert index.has("beta", "b")

    def test_get_all_returns_copy(self):
        index = InstallationIndex()
        index.add_all("alpha", ["a"])
        snapshot = index.get_all("alpha")
        snapshot.add("zzz")
        assert not index.has("alpha", "zzz")

    def test_concurrent_adds_same_target(self):
        """Concurrent writers on one target lose no updates."""
        index = InstallationIndex()

        def add_range(start: int) -> None:
            for i in range(start, start + 200):
                index.add("alpha", f"{i:040x}")

        threads = [threading.Thread(target=add_range, args=(n * 200,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(index.get_all("alpha")) == 1600

    def test_flush_and_reload(self, tmp_path: Path):
        path = tmp_path / "index.json"
        index = InstallationIndex(path)
        index.add_all("alpha", ["a", "b"])
        index.add_all("beta", [], ResourceKind.DATAPACK)
        index.flush()

        reloaded = InstallationIndex(path)
        assert reloaded.get_all("alpha") == {"a", "b"}
        assert reloaded.has_cache("beta", ResourceKind.DATAPACK)
        assert json.loads(path.read_text())["version"] == 1

    def test_corrupt_state_means_never_scanned(self, tmp_path: Path):
        path = tmp_path / "index.json"
        path.write_text("{not json")
        index = InstallationIndex(path)
        assert not index.has_cache("alpha")

    def test_should_save_threshold(self, tmp_path: Path):
        index = InstallationIndex(tmp_path / "index.json")
        assert not index.should_save()
        for i in range(InstallationIndex.SAVE_INTERVAL_COUNT):
            index.add("alpha", str(i))
        # Reaching the threshold triggers an automatic flush.
        assert (tmp_path / "index.json").exists()
        assert not index.should_save()

    def test_flush_while_new_targets_appear(self, tmp_path: Path):
        """Flushing concurrently with writers creating entries is safe."""
        path = tmp_path / "index.json"
        index = InstallationIndex(path)
        errors: list[BaseException] = []
        done = threading.Event()

        def writer(n: int) -> None:
            try:
                for i in range(100):
                    index.add(f"target-{n}-{i}", f"{i:040x}", ResourceKind.MOD)
            except BaseException as e:
                errors.append(e)

        def flusher() -> None:
            try:
                while not done.is_set():
                    index.add("flusher", "0" * 40)
                    index.flush()
            except BaseException as e:
                errors.append(e)

        background = threading.Thread(target=flusher)
        background.start()
        writers = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in writers:
            t.start()
        for t in writers:
            t.join()
        done.set()
        background.join()
        index.flush()

        assert errors == []
        saved = json.loads(path.read_text())["targets"]
        assert len([t for t in saved if t.startswith("target-")]) == 400
        assert not index.should_save()
