"""Shared behavior of storage protocols."""

import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, ClassVar

from genostore.exceptions import ProtocolMismatchError, UnsupportedOperationError
from genostore.protocols.data_protocol import Capabilities, Compatibility, Operation
from genostore.protocols.metadata import DataFileMetadata

if TYPE_CHECKING:
    from genostore.config import Config
    from genostore.data_file import DataFile

SEPARATOR = "/"
COPY_BUFFER_SIZE = 64 * 1024

# Private hooks backing each optional operation
OPERATION_HOOKS: dict[Operation, tuple[str, ...]] = {
    Operation.READ: ("_get_data",),
    Operation.WRITE: ("_put_data",),
    Operation.MKDIR: ("_mkdir", "_mkdirs"),
    Operation.SYMLINK: ("_symlink",),
    Operation.DELETE: ("_delete",),
    Operation.LIST: ("_list",),
    Operation.RENAME: ("_rename",),
}


class AbstractDataProtocol(ABC):
    """Base class of storage protocols.

    Optional operations are disabled by default. A subclass enables one by
    setting the matching flag in ``capabilities`` and implementing the
    private hooks listed in ``OPERATION_HOOKS``; doing only one of the two
    is rejected when the class is created.
    """

    name: ClassVar[str] = ""
    capabilities: ClassVar[Capabilities] = Capabilities()
    compatibility: ClassVar[Compatibility] = Compatibility.ANY

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        for operation, hooks in OPERATION_HOOKS.items():
            supported = cls.capabilities.supports(operation)
            for hook in hooks:
                overridden = getattr(cls, hook) is not getattr(AbstractDataProtocol, hook)
                if overridden != supported:
                    raise TypeError(
                        f"{cls.__name__}: {hook}() and capabilities.{operation.value} "
                        "must be defined together"
                    )

    def __init__(self, config: "Config | None" = None) -> None:
        if config is None:
            from genostore.config import Config

            config = Config()
        self.config = config

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"

    #
    # Source helpers
    #

    def get_source_filename(self, source: str) -> str:
        """Get the text after the last separator of a source."""
        last_slash = source.rfind(SEPARATOR)
        if last_slash == -1:
            return source
        return source[last_slash + 1:]

    def get_parent(self, data_file: "DataFile") -> "DataFile":
        """Strip the filename and one separator from the source."""
        source = data_file.source
        parent_length = len(source) - len(self.get_source_filename(source)) - 1
        return data_file.derive(source[: max(parent_length, 0)])

    def source_as_path(self, data_file: "DataFile") -> Path | None:
        return None

    #
    # Capability checks
    #

    def _unsupported(self, operation: Operation) -> UnsupportedOperationError:
        return UnsupportedOperationError(self.name, operation.value)

    def _check(self, operation: Operation) -> None:
        if not self.capabilities.supports(operation):
            raise self._unsupported(operation)

    def _check_same_protocol(self, data_file: "DataFile", role: str) -> None:
        if data_file.protocol.name != self.name:
            raise ProtocolMismatchError(
                f"the protocol of the {role} is not {self.name} protocol: {data_file}"
            )

    #
    # Operations
    #

    def get_data(self, data_file: "DataFile") -> BinaryIO:
        self._check(Operation.READ)
        return self._get_data(data_file)

    def put_data(
        self,
        data_file: "DataFile",
        metadata: DataFileMetadata | None = None,
    ) -> BinaryIO:
        self._check(Operation.WRITE)
        return self._put_data(data_file, metadata)

    def copy(self, src: "DataFile", dest: "DataFile") -> None:
        """Read ``src`` through its protocol and write it to ``dest``."""
        self._check(Operation.WRITE)
        metadata = src.metadata()
        with src.raw_open() as in_stream, self.put_data(dest, metadata) as out_stream:
            shutil.copyfileobj(in_stream, out_stream, COPY_BUFFER_SIZE)

    @abstractmethod
    def exists(self, data_file: "DataFile", follow_link: bool = True) -> bool:
        """Test if a data file exists."""

    @abstractmethod
    def get_metadata(self, data_file: "DataFile") -> DataFileMetadata:
        """Get the metadata of a data file."""

    def mkdir(self, data_file: "DataFile") -> None:
        self._check(Operation.MKDIR)
        self._mkdir(data_file)

    def mkdirs(self, data_file: "DataFile") -> None:
        self._check(Operation.MKDIR)
        self._mkdirs(data_file)

    def symlink(self, target: "DataFile", link: "DataFile") -> None:
        self._check(Operation.SYMLINK)
        self._check_same_protocol(target, "target")
        self._check_same_protocol(link, "link")
        self._symlink(target, link)

    def delete(self, data_file: "DataFile", recursive: bool = False) -> None:
        self._check(Operation.DELETE)
        self._delete(data_file, recursive)

    def rename(self, src: "DataFile", dest: "DataFile") -> None:
        self._check(Operation.RENAME)
        self._check_same_protocol(dest, "dest")
        self._rename(src, dest)

    def list(self, data_file: "DataFile") -> "list[DataFile]":
        self._check(Operation.LIST)
        return self._list(data_file)

    #
    # Hooks, only called when the matching capability is enabled
    #

    def _get_data(self, data_file: "DataFile") -> BinaryIO:
        raise self._unsupported(Operation.READ)

    def _put_data(self, data_file: "DataFile", metadata: DataFileMetadata | None) -> BinaryIO:
        raise self._unsupported(Operation.WRITE)

    def _mkdir(self, data_file: "DataFile") -> None:
        raise self._unsupported(Operation.MKDIR)

    def _mkdirs(self, data_file: "DataFile") -> None:
        raise self._unsupported(Operation.MKDIR)

    def _symlink(self, target: "DataFile", link: "DataFile") -> None:
        raise self._unsupported(Operation.SYMLINK)

    def _delete(self, data_file: "DataFile", recursive: bool) -> None:
        raise self._unsupported(Operation.DELETE)

    def _rename(self, src: "DataFile", dest: "DataFile") -> None:
        raise self._unsupported(Operation.RENAME)

    def _list(self, data_file: "DataFile") -> "list[DataFile]":
        raise self._unsupported(Operation.LIST)
