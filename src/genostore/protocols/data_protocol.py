"""DataProtocol contract implemented by every storage backend."""

from dataclasses import dataclass, fields
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, Protocol

from genostore.protocols.metadata import DataFileMetadata

if TYPE_CHECKING:
    from genostore.data_file import DataFile


class Operation(str, Enum):
    """Optional operations gated by a capability flag."""

    READ = "read"
    WRITE = "write"
    MKDIR = "mkdir"
    SYMLINK = "symlink"
    DELETE = "delete"
    LIST = "list"
    RENAME = "rename"


class Compatibility(str, Enum):
    """Execution modes a protocol can be used in."""

    LOCAL_ONLY = "local"
    DISTRIBUTED_ONLY = "distributed"
    ANY = "any"


@dataclass(frozen=True)
class Capabilities:
    """The seven capability flags of a protocol."""

    read: bool = False
    write: bool = False
    mkdir: bool = False
    symlink: bool = False
    delete: bool = False
    list: bool = False
    rename: bool = False

    def supports(self, operation: Operation) -> bool:
        return getattr(self, operation.value)

    def as_dict(self) -> dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


class DataProtocol(Protocol):
    """Protocol for storage backends (local disk, HDFS, S3, HTTP, storages)."""

    name: str
    capabilities: Capabilities
    compatibility: Compatibility

    def get_source_filename(self, source: str) -> str:
        """Get the filename part of a source."""
        ...

    def get_parent(self, data_file: "DataFile") -> "DataFile":
        """Get the parent of a data file."""
        ...

    def get_data(self, data_file: "DataFile") -> BinaryIO:
        """Open a data file for reading. Raises DataNotFoundError if missing."""
        ...

    def put_data(
        self,
        data_file: "DataFile",
        metadata: DataFileMetadata | None = None,
    ) -> BinaryIO:
        """Open a data file for writing."""
        ...

    def copy(self, src: "DataFile", dest: "DataFile") -> None:
        """Copy ``src`` (any protocol) to ``dest`` (this protocol)."""
        ...

    def exists(self, data_file: "DataFile", follow_link: bool = True) -> bool:
        """Test if a data file exists."""
        ...

    def get_metadata(self, data_file: "DataFile") -> DataFileMetadata:
        """Get the metadata of a data file. Raises DataNotFoundError if missing."""
        ...

    def mkdir(self, data_file: "DataFile") -> None:
        """Create a directory."""
        ...

    def mkdirs(self, data_file: "DataFile") -> None:
        """Create a directory and its missing parents."""
        ...

    def symlink(self, target: "DataFile", link: "DataFile") -> None:
        """Create a symbolic link."""
        ...

    def delete(self, data_file: "DataFile", recursive: bool = False) -> None:
        """Delete a file or directory."""
        ...

    def list(self, data_file: "DataFile") -> list["DataFile"]:
        """List the content of a directory."""
        ...

    def rename(self, src: "DataFile", dest: "DataFile") -> None:
        """Rename a file."""
        ...

    def source_as_path(self, data_file: "DataFile") -> Path | None:
        """Get the local path of a data file, if it has one."""
        ...
