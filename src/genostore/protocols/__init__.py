"""Contract shared by storage protocols."""

from genostore.protocols.data_protocol import (
    Capabilities,
    Compatibility,
    DataProtocol,
    Operation,
)
from genostore.protocols.metadata import UNKNOWN, DataFileMetadata

__all__ = [
    "Capabilities",
    "Compatibility",
    "DataFileMetadata",
    "DataProtocol",
    "Operation",
    "UNKNOWN",
]
