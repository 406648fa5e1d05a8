"""On-disk layout of a game instance (an install target)."""

from __future__ import annotations

from pathlib import Path

from craftpack_tools.core.errors import ConfigurationError, FileSystemError
from craftpack_tools.core.types import ResourceKind

BOOKKEEPING_DIR = ".craftpack"
SAVES_DIR = "saves"
STANDARD_DIRS = ("config", SAVES_DIR)


def validate_target_name(name: str) -> str:
    """Reject names that are not a single safe path component.

    Raises:
        ConfigurationError: If the name is empty or contains separators
    """
    stripped = name.strip()
    if not stripped or stripped in {".", ".."} or "/" in stripped or "\\" in stripped:
        raise ConfigurationError(f"Invalid target name: {name!r}")
    return stripped


class InstanceLayout:
    """Paths of one instance under the instances root.

    Args:
        instances_dir: Root holding every instance
        name: Target name (directory name)
    """

    def __init__(self, instances_dir: Path, name: str):
        self.name = validate_target_name(name)
        self.root = instances_dir / self.name

    def kind_dir(self, kind: ResourceKind) -> Path:
        return self.root / kind.directory

    @property
    def bookkeeping_dir(self) -> Path:
        return self.root / BOOKKEEPING_DIR

    def required_dirs(self) -> list[Path]:
        """Directories a usable instance has, parents first."""
        dirs = [self.root]
        dirs.extend(self.kind_dir(kind) for kind in ResourceKind)
        dirs.extend(self.root / name for name in STANDARD_DIRS)
        dirs.append(self.bookkeeping_dir)
        return dirs

    def create(self) -> list[Path]:
        """Create missing directories.

        Returns:
            Directories that did not exist before, in creation order

        Raises:
            FileSystemError: If a directory cannot be created
        """
        created: list[Path] = []
        for directory in self.required_dirs():
            if directory.is_dir():
                continue
            try:
                directory.mkdir(parents=True, exist_ok=False)
            except FileExistsError as e:
                raise FileSystemError(f"Path exists and is not a directory: {directory}", path=str(directory)) from e
            except OSError as e:
                raise FileSystemError(f"Cannot create {directory}: {e}", path=str(directory)) from e
            created.append(directory)
        return created
