"""Local filesystem protocol."""

import os
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO, ClassVar

from genostore.compression import CompressionType
from genostore.exceptions import DataNotFoundError, InvalidSourceError, StorageIOError
from genostore.formats import content_type_from_filename, get_format_registry
from genostore.observability import get_logger
from genostore.protocols.data_protocol import Capabilities, Compatibility
from genostore.protocols.metadata import DataFileMetadata
from genostore.backends.base import AbstractDataProtocol

if TYPE_CHECKING:
    from genostore.data_file import DataFile

logger = get_logger(__name__)


class FileDataProtocol(AbstractDataProtocol):
    """Protocol for files on a local or mounted filesystem.

    This is the default protocol, used for sources without a scheme.
    """

    name: ClassVar[str] = "file"
    compatibility: ClassVar[Compatibility] = Compatibility.ANY
    capabilities: ClassVar[Capabilities] = Capabilities(
        read=True,
        write=True,
        mkdir=True,
        symlink=True,
        delete=True,
        list=True,
        rename=True,
    )

    def source_as_path(self, data_file: "DataFile") -> Path:
        if data_file is None or data_file.source is None:
            raise InvalidSourceError("The source is null.")

        source = data_file.source
        prefix = data_file.protocol_prefix
        if prefix is None:
            return Path(source)

        # file:/path, file:///path and file://localhost/path
        path = source[len(prefix) + 1:]
        if path.startswith("//"):
            path = path[2:]
            if not path.startswith("/"):
                slash = path.find("/")
                path = "/" if slash == -1 else path[slash:]
        return Path(path)

    def _get_data(self, data_file: "DataFile") -> BinaryIO:
        path = self.source_as_path(data_file)
        try:
            return open(path, "rb")
        except FileNotFoundError as e:
            raise DataNotFoundError(f"File not found: {data_file}") from e
        except OSError as e:
            raise StorageIOError(f"Cannot open {data_file}: {e}") from e

    def _put_data(self, data_file: "DataFile", metadata: DataFileMetadata | None) -> BinaryIO:
        path = self.source_as_path(data_file)
        try:
            return open(path, "wb")
        except OSError as e:
            raise StorageIOError(f"Cannot create {data_file}: {e}") from e

    def exists(self, data_file: "DataFile", follow_link: bool = True) -> bool:
        path = self.source_as_path(data_file)
        return os.path.exists(path) if follow_link else os.path.lexists(path)

    def get_metadata(self, data_file: "DataFile") -> DataFileMetadata:
        path = self.source_as_path(data_file)

        if not self.exists(data_file, True):
            # Broken link
            if self.exists(data_file, False):
                return DataFileMetadata(symbolic_link=self._link_target(data_file, path))
            raise DataNotFoundError(f"File not found: {data_file}")

        st = path.stat()
        name = data_file.name
        data_format = get_format_registry().from_filename(name)
        if data_format is not None:
            content_type = data_format.content_type
        else:
            content_type = content_type_from_filename(name)

        ct = CompressionType.from_filename(data_file.source)

        return DataFileMetadata(
            content_length=st.st_size,
            content_type=content_type,
            content_encoding=ct.content_encoding if ct is not None else None,
            last_modified=int(st.st_mtime * 1000),
            data_format=data_format,
            directory=path.is_dir(),
            symbolic_link=self._link_target(data_file, path) if path.is_symlink() else None,
        )

    @staticmethod
    def _link_target(data_file: "DataFile", path: Path) -> "DataFile | None":
        try:
            return data_file.derive(os.readlink(path))
        except OSError as e:
            # readlink() intermittently fails on some cluster filesystems
            logger.warning(
                "Cannot read symbolic link target",
                context={"source": data_file.source},
                error=e,
            )
            return None

    def _mkdir(self, data_file: "DataFile") -> None:
        try:
            self.source_as_path(data_file).mkdir()
        except OSError as e:
            raise StorageIOError(f"Unable to create the directory: {data_file}") from e

    def _mkdirs(self, data_file: "DataFile") -> None:
        try:
            self.source_as_path(data_file).mkdir(parents=True)
        except OSError as e:
            raise StorageIOError(f"Unable to create the directory: {data_file}") from e

    def _symlink(self, target: "DataFile", link: "DataFile") -> None:
        link_path = self.source_as_path(link)
        if os.path.lexists(link_path):
            raise StorageIOError(f"the symlink already exists: {link}")

        try:
            os.symlink(self.source_as_path(target), link_path)
        except OSError as e:
            raise StorageIOError(f"Cannot create symbolic link {link}: {e}") from e

    def _delete(self, data_file: "DataFile", recursive: bool) -> None:
        path = self.source_as_path(data_file)

        if os.path.abspath(path).strip("/") == "":
            raise StorageIOError(f"Cannot remove /: {data_file}")

        try:
            if not (recursive and path.is_dir() and not path.is_symlink()):
                if path.is_dir() and not path.is_symlink():
                    os.rmdir(path)
                else:
                    os.unlink(path)
                return
        except OSError as e:
            raise StorageIOError(f"Cannot remove {data_file}: {e}") from e

        self._delete_tree(path)

    @staticmethod
    def _delete_tree(root: Path) -> None:
        """Remove every file of a tree, then its directories bottom-up."""
        files: list[str] = []
        directories: list[str] = []

        def on_error(e: OSError) -> None:
            raise StorageIOError(f"Cannot remove file: {e.filename}") from e

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            directories.append(dirpath)
            for dirname in dirnames:
                full = os.path.join(dirpath, dirname)
                # Links to directories are removed like files
                if os.path.islink(full):
                    files.append(full)
            files.extend(os.path.join(dirpath, f) for f in filenames)

        for f in files:
            try:
                os.unlink(f)
            except OSError as e:
                raise StorageIOError(f"Cannot remove file: {f}") from e

        # os.walk is top-down, so reversed order deletes children first
        for d in reversed(directories):
            try:
                os.rmdir(d)
            except OSError as e:
                raise StorageIOError(f"Cannot remove directory: {d}") from e

    def _list(self, data_file: "DataFile") -> "list[DataFile]":
        path = self.source_as_path(data_file)

        if not path.exists():
            raise DataNotFoundError(f"File not found: {data_file}")
        if not path.is_dir():
            raise StorageIOError(f"The file is not a directory: {data_file}")

        return [data_file.derive(os.path.join(path, name)) for name in sorted(os.listdir(path))]

    def _rename(self, src: "DataFile", dest: "DataFile") -> None:
        try:
            os.rename(self.source_as_path(src), self.source_as_path(dest))
        except OSError as e:
            raise StorageIOError(f"Cannot rename {src} to {dest}") from e
