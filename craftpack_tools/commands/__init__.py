"""CLI command implementations for craftpack_tools.

- scan: List, hash and describe resource directories
- pack: Export instances and install packs
- cache: Inspect and clear the metadata cache
- resource: Add, enable/disable and remove single resources
"""

from craftpack_tools.commands.cache import cache_group
from craftpack_tools.commands.pack import pack_group
from craftpack_tools.commands.resource import resource_group
from craftpack_tools.commands.scan import scan_group

__all__ = ["cache_group", "pack_group", "resource_group", "scan_group"]
