"""Protocol discovery via Python entry points.

Third-party packages add protocols by declaring them in their packaging
metadata::

    [project.entry-points."genostore.protocols"]
    gs = "genostore_gcs:GcsDataProtocol"
"""

from importlib.metadata import entry_points
from typing import Any

PROTOCOL_GROUP = "genostore.protocols"


def discover_protocols(group: str = PROTOCOL_GROUP) -> dict[str, Any]:
    """Discover all registered protocol classes.

    Args:
        group: Entry point group name

    Returns:
        Dictionary mapping protocol names to their classes
    """
    eps = entry_points(group=group)
    return {ep.name: ep.load() for ep in eps}
