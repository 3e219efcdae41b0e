"""Logical file references.

A :class:`DataFile` wraps a source string such as ``/data/reads.fq.gz``,
``s3://bucket/genome.fasta`` or ``genome://hg38`` and routes every
operation to the protocol selected by the scheme of the source.
"""

import os
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO

from genostore.compression import CompressionType, remove_compression_extension
from genostore.exceptions import InvalidSourceError, UnknownProtocolError
from genostore.formats import DataFormat, get_format_registry
from genostore.protocols.data_protocol import Capabilities
from genostore.protocols.metadata import DataFileMetadata

if TYPE_CHECKING:
    from genostore.protocols.data_protocol import DataProtocol
    from genostore.registry import DataProtocolRegistry

SEPARATOR = "/"


def find_protocol_prefix(source: str) -> str | None:
    """Get the scheme of a source, or None if it has none.

    A scheme is a leading run of letters and digits followed by ``:/``.
    """
    pos = -1
    for i, c in enumerate(source):
        if not c.isalnum():
            pos = i
            break

    if pos <= 0 or len(source) <= pos + 1:
        return None

    if source[pos] == ":" and source[pos + 1] == "/":
        return source[:pos]
    return None


class DataFile:
    """A reference to data stored through any registered protocol."""

    def __init__(
        self,
        source: "str | os.PathLike[str] | DataFile",
        child: str | None = None,
        registry: "DataProtocolRegistry | None" = None,
    ) -> None:
        """Create a data file.

        Args:
            source: Source string, local path, or parent data file when
                ``child`` is given
            child: Optional name appended to ``source``
            registry: Registry used to resolve the protocol. Defaults to
                the registry of a parent data file, then the process registry.
        """
        if source is None:
            raise InvalidSourceError("The source can not be null.")

        if isinstance(source, DataFile):
            registry = registry or source._registry
            source = source.source
        elif isinstance(source, os.PathLike):
            source = os.fspath(source)

        if not isinstance(source, str):
            raise InvalidSourceError(f"Invalid source: {source!r}")

        if child is not None:
            source = f"{source}{SEPARATOR}{child}" if source else child

        self._source = source
        self._registry = registry
        self._protocol: "DataProtocol | None" = None

        prefix = find_protocol_prefix(source)
        self._protocol_prefix = prefix.strip().lower() if prefix else None

        last_slash = source.rfind(SEPARATOR)
        self._name = source if last_slash == -1 else source[last_slash + 1:]

    @property
    def source(self) -> str:
        return self._source

    @property
    def name(self) -> str:
        """Filename: the text after the last separator."""
        return self._name

    @property
    def basename(self) -> str:
        """Filename without its compression suffix and last extension."""
        name = remove_compression_extension(self._name)
        dot = name.rfind(".")
        return name if dot <= 0 else name[:dot]

    @property
    def extension(self) -> str:
        """Last extension of the filename, ignoring compression."""
        name = remove_compression_extension(self._name)
        dot = name.rfind(".")
        return "" if dot <= 0 else name[dot:]

    @property
    def compression(self) -> CompressionType | None:
        return CompressionType.from_filename(self._name)

    @property
    def data_format(self) -> DataFormat | None:
        return get_format_registry().from_filename(self._name)

    @property
    def protocol_prefix(self) -> str | None:
        """Lowercased scheme of the source, if any."""
        return self._protocol_prefix

    @property
    def registry(self) -> "DataProtocolRegistry":
        if self._registry is None:
            from genostore.registry import get_registry

            return get_registry()
        return self._registry

    @property
    def protocol(self) -> "DataProtocol":
        """Protocol handling this file.

        Raises:
            UnknownProtocolError: If no protocol is registered for the scheme
        """
        if self._protocol is None:
            registry = self.registry
            if self._protocol_prefix is None:
                protocol = registry.default
            else:
                protocol = registry.resolve(self._protocol_prefix)
            if protocol is None:
                raise UnknownProtocolError(self._protocol_prefix or "")
            self._protocol = protocol
        return self._protocol

    @property
    def capabilities(self) -> Capabilities:
        return self.protocol.capabilities

    @property
    def parent(self) -> "DataFile":
        return self.protocol.get_parent(self)

    @property
    def is_local(self) -> bool:
        """True if the file is handled by the default protocol."""
        try:
            return self.protocol.name == self.registry.default.name
        except UnknownProtocolError:
            return False

    def child(self, name: str) -> "DataFile":
        """Get a file inside this directory."""
        return DataFile(self, name)

    def derive(self, source: str) -> "DataFile":
        """Create another data file resolved with the same registry."""
        return DataFile(source, registry=self._registry)

    def to_path(self) -> Path | None:
        """Get the local path of the file, if the protocol has one."""
        return self.protocol.source_as_path(self)

    def metadata(self) -> DataFileMetadata:
        """Fetch the metadata of the file."""
        return self.protocol.get_metadata(self)

    def raw_open(self) -> BinaryIO:
        """Open the file for reading without decompression."""
        return self.protocol.get_data(self)

    def open(self) -> BinaryIO:
        """Open the file for reading, decompressing it if needed."""
        stream = self.raw_open()
        try:
            ct = CompressionType.from_content_encoding(self.metadata().content_encoding)
        except Exception:
            stream.close()
            raise
        if ct is None:
            return stream
        return ct.open_input(stream)

    def raw_create(self, metadata: DataFileMetadata | None = None) -> BinaryIO:
        """Open the file for writing without compression."""
        return self.protocol.put_data(self, metadata)

    def create(self, metadata: DataFileMetadata | None = None) -> BinaryIO:
        """Open the file for writing, compressing it if needed.

        The compression follows the content encoding of ``metadata`` when
        set, otherwise the suffix of the filename.
        """
        stream = self.raw_create(metadata)
        if metadata is not None and metadata.content_encoding is not None:
            ct = CompressionType.from_content_encoding(metadata.content_encoding)
        else:
            ct = self.compression
        if ct is None:
            return stream
        return ct.open_output(stream)

    def copy_to(self, dest: "DataFile") -> None:
        """Copy the raw content of this file to ``dest``."""
        if dest is None:
            raise InvalidSourceError("The destination DataFile is null.")
        dest.protocol.copy(self, dest)

    def exists(self, follow_link: bool = True) -> bool:
        try:
            protocol = self.protocol
        except UnknownProtocolError:
            return False
        return protocol.exists(self, follow_link)

    def mkdir(self) -> None:
        self.protocol.mkdir(self)

    def mkdirs(self) -> None:
        self.protocol.mkdirs(self)

    def symlink(self, link: "DataFile", relativize: bool = False) -> None:
        """Create ``link`` pointing to this file.

        Args:
            link: Link to create
            relativize: Store a target relative to the directory of the link
        """
        if link is None:
            raise InvalidSourceError("The link can not be null.")

        target = self
        if relativize:
            target_path = self.to_path()
            link_path = link.to_path()
            if target_path is not None and link_path is not None:
                relative = os.path.relpath(
                    os.path.abspath(target_path),
                    os.path.dirname(os.path.abspath(link_path)),
                )
                target = self.derive(relative)

        self.protocol.symlink(target, link)

    def delete(self, recursive: bool = False) -> None:
        self.protocol.delete(self, recursive)

    def list(self) -> list["DataFile"]:
        return self.protocol.list(self)

    def rename_to(self, dest: "DataFile") -> None:
        self.protocol.rename(self, dest)

    def __eq__(self, other: Any) -> bool:
        if other is self:
            return True
        if not isinstance(other, DataFile):
            return NotImplemented
        return self._source == other._source

    def __lt__(self, other: "DataFile") -> bool:
        if not isinstance(other, DataFile):
            return NotImplemented
        return self._source < other._source

    def __hash__(self) -> int:
        return hash(self._source)

    def __str__(self) -> str:
        return self._source

    def __repr__(self) -> str:
        return f"DataFile({self._source!r})"
