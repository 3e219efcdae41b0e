"""Distributed filesystem protocols.

These protocols are only available when the engine runs in distributed
mode. Transport is delegated to an fsspec filesystem (``hdfs`` through
pyarrow, or ``webhdfs`` over HTTP).
"""

import io
import posixpath
import re
from abc import abstractmethod
from datetime import datetime
from functools import partial
from typing import TYPE_CHECKING, Any, BinaryIO, Callable, ClassVar
from urllib.parse import urlsplit, urlunsplit

import fsspec
from fsspec.spec import AbstractFileSystem

from genostore.caching import OnceCell
from genostore.compression import CompressionType
from genostore.config import Config
from genostore.exceptions import (
    ConfigError,
    DataNotFoundError,
    ExecutionModeError,
    StorageIOError,
)
from genostore.formats import content_type_from_filename, get_format_registry
from genostore.observability import get_logger
from genostore.protocols.data_protocol import Capabilities, Compatibility
from genostore.protocols.metadata import UNKNOWN, DataFileMetadata
from genostore.backends.base import AbstractDataProtocol

if TYPE_CHECKING:
    from genostore.data_file import DataFile

logger = get_logger(__name__)

# Output shards written by map/reduce tasks: part-00000, part-r-00000, part-m-00000
PART_FILE_PATTERN = re.compile(r"^part-(?:[rm]-)?\d+")


class ConcatenatedInputStream(io.RawIOBase):
    """Reads several streams one after the other as a single stream.

    Streams are opened lazily and closed as soon as they are exhausted.
    """

    def __init__(self, openers: list[Callable[[], BinaryIO]]) -> None:
        super().__init__()
        self._openers = list(openers)
        self._current: BinaryIO | None = None

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:  # type: ignore[no-untyped-def]
        while True:
            if self._current is None:
                if not self._openers:
                    return 0
                self._current = self._openers.pop(0)()

            data = self._current.read(len(b))
            if data:
                b[: len(data)] = data
                return len(data)

            self._current.close()
            self._current = None

    def close(self) -> None:
        if self._current is not None:
            self._current.close()
            self._current = None
        self._openers.clear()
        super().close()


def _modification_time(info: dict[str, Any]) -> int:
    """Get a modification time in epoch millis from an fsspec info dict."""
    for key in ("mtime", "modificationTime", "LastModified", "last_modified", "created"):
        value = info.get(key)
        if value is None:
            continue
        if isinstance(value, datetime):
            return int(value.timestamp() * 1000)
        if key == "modificationTime":
            # WebHDFS already reports millis
            return int(value)
        try:
            return int(float(value) * 1000)
        except (TypeError, ValueError):
            continue
    return UNKNOWN


class AbstractHadoopDataProtocol(AbstractDataProtocol):
    """Base of the protocols backed by a distributed filesystem."""

    compatibility: ClassVar[Compatibility] = Compatibility.DISTRIBUTED_ONLY
    capabilities: ClassVar[Capabilities] = Capabilities(read=True, write=True)

    def __init__(
        self,
        config: Config | None = None,
        filesystem: AbstractFileSystem | None = None,
    ) -> None:
        """Initialize the protocol.

        Args:
            config: Settings; must select distributed execution mode and
                define the ``hadoop`` section
            filesystem: Filesystem to use instead of building one from
                the settings on first use

        Raises:
            ExecutionModeError: If not running in distributed mode
            ConfigError: If the hadoop settings are missing
        """
        super().__init__(config)

        if not self.config.distributed:
            raise ExecutionModeError(
                f"The {self.name} protocol can only be used in distributed mode"
            )
        if self.config.hadoop is None:
            raise ConfigError(f"No hadoop configuration defined for the {self.name} protocol")

        self._filesystem: OnceCell[AbstractFileSystem] = OnceCell(self._create_filesystem)
        if filesystem is not None:
            self._filesystem.set(filesystem)

    @abstractmethod
    def _create_filesystem(self) -> AbstractFileSystem:
        """Build the fsspec filesystem from the settings."""

    @property
    def fs(self) -> AbstractFileSystem:
        return self._filesystem.get()

    def _path(self, data_file: "DataFile") -> str:
        if data_file.protocol_prefix is None:
            return data_file.source
        return urlsplit(data_file.source).path or "/"

    def _to_data_file(self, like: "DataFile", path: str) -> "DataFile":
        parts = urlsplit(like.source)
        if not path.startswith("/"):
            path = "/" + path
        return like.derive(urlunsplit((parts.scheme, parts.netloc, path, "", "")))

    def _part_files(self, path: str) -> list[str]:
        names = self.fs.ls(path, detail=False)
        parts = [
            p for p in names
            if PART_FILE_PATTERN.match(posixpath.basename(p.rstrip("/")))
        ]
        return sorted(parts, key=lambda p: posixpath.basename(p.rstrip("/")))

    def _get_data(self, data_file: "DataFile") -> BinaryIO:
        path = self._path(data_file)
        try:
            if self.fs.isdir(path):
                parts = self._part_files(path)
                if parts:
                    logger.debug(
                        "Concatenating part files",
                        context={"source": data_file.source, "parts": len(parts)},
                    )
                    openers = [partial(self.fs.open, p, "rb") for p in parts]
                    return io.BufferedReader(ConcatenatedInputStream(openers))
            return self.fs.open(path, "rb")
        except FileNotFoundError as e:
            raise DataNotFoundError(f"File not found: {data_file}") from e
        except OSError as e:
            raise StorageIOError(f"Cannot open {data_file}: {e}") from e

    def _put_data(self, data_file: "DataFile", metadata: DataFileMetadata | None) -> BinaryIO:
        try:
            return self.fs.open(self._path(data_file), "wb")
        except OSError as e:
            raise StorageIOError(f"Cannot create {data_file}: {e}") from e

    def exists(self, data_file: "DataFile", follow_link: bool = True) -> bool:
        try:
            return self.fs.exists(self._path(data_file))
        except OSError:
            # Unreadable link targets count as missing
            return False

    def get_metadata(self, data_file: "DataFile") -> DataFileMetadata:
        try:
            info = self.fs.info(self._path(data_file))
        except FileNotFoundError as e:
            raise DataNotFoundError(f"File not found: {data_file}") from e
        except OSError as e:
            raise StorageIOError(f"Cannot get metadata of {data_file}: {e}") from e

        name = data_file.name
        data_format = get_format_registry().from_filename(name)
        ct = CompressionType.from_filename(name)

        symbolic_link = None
        if info.get("islink") or info.get("type") in ("link", "symlink"):
            target = info.get("destination") or info.get("symlink")
            if target:
                symbolic_link = self._to_data_file(data_file, target)

        size = info.get("size")
        return DataFileMetadata(
            content_length=size if size is not None else UNKNOWN,
            content_type=(
                data_format.content_type if data_format is not None
                else content_type_from_filename(name)
            ),
            content_encoding=ct.content_encoding if ct is not None else None,
            last_modified=_modification_time(info),
            data_format=data_format,
            directory=info.get("type") == "directory",
            symbolic_link=symbolic_link,
        )


class HDFSDataProtocol(AbstractHadoopDataProtocol):
    """Protocol for ``hdfs://`` sources."""

    name: ClassVar[str] = "hdfs"
    capabilities: ClassVar[Capabilities] = Capabilities(
        read=True,
        write=True,
        mkdir=True,
        delete=True,
        list=True,
        rename=True,
    )

    def _create_filesystem(self) -> AbstractFileSystem:
        settings = self.config.hadoop
        logger.info("Connecting to HDFS", context={"host": settings.host, "port": settings.port})
        return fsspec.filesystem(
            "hdfs",
            host=settings.host,
            port=settings.port,
            user=settings.user,
            kerb_ticket=settings.kerb_ticket,
            **settings.extra,
        )

    def _mkdir(self, data_file: "DataFile") -> None:
        # Parents are always created, like mkdirs
        self._mkdirs(data_file)

    def _mkdirs(self, data_file: "DataFile") -> None:
        try:
            self.fs.makedirs(self._path(data_file), exist_ok=True)
        except OSError as e:
            raise StorageIOError(f"Unable to create the directory: {data_file}") from e

    def _delete(self, data_file: "DataFile", recursive: bool) -> None:
        try:
            self.fs.rm(self._path(data_file), recursive=recursive)
        except FileNotFoundError as e:
            raise DataNotFoundError(f"File not found: {data_file}") from e
        except OSError as e:
            raise StorageIOError(f"Cannot remove {data_file}: {e}") from e

    def _list(self, data_file: "DataFile") -> "list[DataFile]":
        path = self._path(data_file)
        if not self.fs.exists(path):
            raise DataNotFoundError(f"File not found: {data_file}")
        if not self.fs.isdir(path):
            raise StorageIOError(f"The file is not a directory: {data_file}")

        names = sorted(p.rstrip("/") for p in self.fs.ls(path, detail=False))
        return [self._to_data_file(data_file, p) for p in names]

    def _rename(self, src: "DataFile", dest: "DataFile") -> None:
        try:
            self.fs.mv(self._path(src), self._path(dest))
        except OSError as e:
            raise StorageIOError(f"Cannot rename {src} to {dest}") from e


class WebHDFSDataProtocol(AbstractHadoopDataProtocol):
    """Protocol for ``webhdfs://`` sources: HTTP access to HDFS, read/write only."""

    name: ClassVar[str] = "webhdfs"

    def _create_filesystem(self) -> AbstractFileSystem:
        settings = self.config.hadoop
        return fsspec.filesystem(
            "webhdfs",
            host=settings.host,
            port=settings.webhdfs_port,
            user=settings.user,
            use_https=settings.webhdfs_use_https,
            **settings.extra,
        )
