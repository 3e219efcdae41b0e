"""Compression types recognized from file names and content encodings."""

import bz2
import gzip
import io
from enum import Enum
from typing import Any, BinaryIO


class CompressionType(Enum):
    """Supported stream compressions."""

    GZIP = (".gz", "gzip")
    BZIP2 = (".bz2", "bzip2")

    def __init__(self, extension: str, content_encoding: str) -> None:
        self.extension = extension
        self.content_encoding = content_encoding

    @classmethod
    def from_filename(cls, filename: str | None) -> "CompressionType | None":
        """Get the compression type matching the suffix of a filename."""
        if not filename:
            return None
        for ct in cls:
            if filename.endswith(ct.extension):
                return ct
        return None

    @classmethod
    def from_content_encoding(cls, encoding: str | None) -> "CompressionType | None":
        """Get the compression type for an HTTP-style content encoding."""
        if not encoding:
            return None
        encoding = encoding.strip().lower()
        for ct in cls:
            if ct.content_encoding == encoding:
                return ct
        return None

    def open_input(self, raw: BinaryIO) -> BinaryIO:
        """Wrap a readable stream with a decompressor."""
        if self is CompressionType.GZIP:
            stream: BinaryIO = gzip.GzipFile(fileobj=raw, mode="rb")
        else:
            stream = bz2.BZ2File(raw, mode="rb")
        return ChainedStream(stream, raw)

    def open_output(self, raw: BinaryIO) -> BinaryIO:
        """Wrap a writable stream with a compressor."""
        if self is CompressionType.GZIP:
            stream: BinaryIO = gzip.GzipFile(fileobj=raw, mode="wb")
        else:
            stream = bz2.BZ2File(raw, mode="wb")
        return ChainedStream(stream, raw)


def remove_compression_extension(filename: str) -> str:
    """Strip a recognized compression suffix from a filename."""
    ct = CompressionType.from_filename(filename)
    if ct is None:
        return filename
    return filename[: -len(ct.extension)]


class ChainedStream(io.BufferedIOBase):
    """A codec stream that also closes the backend stream it wraps.

    ``GzipFile`` and ``BZ2File`` leave a caller-supplied file object open,
    but backends such as object storage only commit data when their own
    stream is closed.
    """

    def __init__(self, outer: BinaryIO, inner: BinaryIO) -> None:
        super().__init__()
        self._outer = outer
        self._inner = inner

    def readable(self) -> bool:
        return self._outer.readable()

    def writable(self) -> bool:
        return self._outer.writable()

    def read(self, size: int | None = -1) -> bytes:
        return self._outer.read(-1 if size is None else size)

    def read1(self, size: int = -1) -> bytes:
        return self._outer.read1(size)  # type: ignore[attr-defined]

    def readinto(self, b) -> int:  # type: ignore[no-untyped-def]
        return self._outer.readinto(b)  # type: ignore[attr-defined]

    def write(self, b) -> int:  # type: ignore[no-untyped-def]
        return self._outer.write(b)

    def flush(self) -> None:
        if not self._outer.closed:
            self._outer.flush()

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._outer.close()
        finally:
            try:
                self._inner.close()
            finally:
                super().close()

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        abort = getattr(self._inner, "abort", None)
        if exc_type is None or abort is None:
            self.close()
            return
        try:
            self._outer.close()
        finally:
            try:
                abort()
            finally:
                super().close()
