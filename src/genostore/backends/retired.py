"""Placeholder for protocols that have been removed."""

from typing import TYPE_CHECKING

from genostore.config import Config
from genostore.exceptions import DeprecatedProtocolError, UnsupportedOperationError
from genostore.protocols.data_protocol import Operation
from genostore.protocols.metadata import DataFileMetadata
from genostore.backends.base import AbstractDataProtocol

if TYPE_CHECKING:
    from genostore.data_file import DataFile


class RetiredDataProtocol(AbstractDataProtocol):
    """Protocol whose every operation fails with DeprecatedProtocolError.

    Keeping retired names registered gives users an explicit message
    instead of an unknown protocol error.
    """

    def __init__(
        self,
        config: Config | None = None,
        name: str = "",
        replacement: str | None = None,
    ) -> None:
        super().__init__(config)
        self.name = name
        self.replacement = replacement

    def _unsupported(self, operation: Operation) -> UnsupportedOperationError:
        return DeprecatedProtocolError(self.name, operation.value, self.replacement)

    def exists(self, data_file: "DataFile", follow_link: bool = True) -> bool:
        raise DeprecatedProtocolError(self.name, "exists", self.replacement)

    def get_metadata(self, data_file: "DataFile") -> DataFileMetadata:
        raise DeprecatedProtocolError(self.name, "get_metadata", self.replacement)
