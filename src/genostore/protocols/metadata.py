"""Normalized metadata returned by every protocol."""

from dataclasses import dataclass
from typing import TYPE_CHECKING

from genostore.formats import DataFormat

if TYPE_CHECKING:
    from genostore.data_file import DataFile

UNKNOWN = -1


@dataclass(frozen=True)
class DataFileMetadata:
    """Metadata of a data file.

    Numeric fields use ``-1`` for unknown values. ``directory`` and
    ``symbolic_link`` are independent: a link to a directory sets both.
    """

    content_length: int = UNKNOWN
    content_type: str | None = None
    content_encoding: str | None = None
    content_md5: str | None = None
    last_modified: int = UNKNOWN
    data_format: DataFormat | None = None
    directory: bool = False
    symbolic_link: "DataFile | None" = None

    @classmethod
    def propagate(cls, other: "DataFileMetadata | None") -> "DataFileMetadata":
        """Copy the transferable fields of ``other`` for a write.

        Format, directory and link fields belong to the destination and
        are not carried over.
        """
        if other is None:
            return cls()
        return cls(
            content_length=other.content_length,
            content_type=other.content_type,
            content_encoding=other.content_encoding,
            content_md5=other.content_md5,
            last_modified=other.last_modified,
        )

    @property
    def is_symbolic_link(self) -> bool:
        return self.symbolic_link is not None
