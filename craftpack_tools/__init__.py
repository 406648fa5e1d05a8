"""Content-addressed resource scanning and pack export/install for game instances."""

__version__ = "0.1.0"
__author__ = "craftpack-tools contributors"

from craftpack_tools.core.config import AppConfig
from craftpack_tools.core.types import ResourceKind, ResourceMetadata

__all__ = [
    "AppConfig",
    "ResourceKind",
    "ResourceMetadata",
    "__version__",
]
