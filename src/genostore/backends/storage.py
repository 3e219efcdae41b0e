"""Read-only protocols resolving reference data from storage repositories.

A source such as ``genome://hg38`` is looked up in the repository
directory configured for genomes as ``hg38.fasta``, ``hg38.fa``... with an
optional compression suffix. The repository directory can itself live on
any protocol.
"""

from typing import TYPE_CHECKING, BinaryIO, ClassVar

from genostore.compression import CompressionType, remove_compression_extension
from genostore.config import RepositoryConfig
from genostore.exceptions import ConfigError, RepositoryMissError
from genostore.observability import get_logger
from genostore.protocols.data_protocol import Capabilities, Compatibility
from genostore.protocols.metadata import DataFileMetadata
from genostore.backends.base import AbstractDataProtocol

if TYPE_CHECKING:
    from pathlib import Path

    from genostore.data_file import DataFile

logger = get_logger(__name__)


class AbstractStorageDataProtocol(AbstractDataProtocol):
    """Base of the repository lookup protocols."""

    compatibility: ClassVar[Compatibility] = Compatibility.ANY
    capabilities: ClassVar[Capabilities] = Capabilities(read=True)

    # Field of RepositoriesConfig holding the settings of the protocol
    repository_key: ClassVar[str] = ""

    @property
    def repository(self) -> RepositoryConfig:
        return getattr(self.config.repositories, self.repository_key)

    @property
    def extensions(self) -> list[str]:
        return list(self.repository.extensions)

    def get_basename(self, data_file: "DataFile") -> str:
        """Get the name to look up, without compression or accepted extension."""
        name = remove_compression_extension(data_file.name)
        lower = name.lower()
        for extension in self.extensions:
            if lower.endswith(extension.lower()) and len(name) > len(extension):
                return name[: -len(extension)]
        return name

    def _repository_dir(self, data_file: "DataFile") -> "DataFile":
        path = self.repository.path
        if not path:
            raise ConfigError(f"No repository path defined for the {self.name} storage")
        return data_file.derive(path.rstrip("/") or "/")

    def _candidates(self, basename: str, extension: str) -> list[str]:
        filename = basename + extension
        return [filename] + [filename + ct.extension for ct in CompressionType]

    def resolve(self, data_file: "DataFile") -> "DataFile":
        """Find the repository file matching a source.

        Extensions are tried in their configured order; the first file found
        wins.

        Raises:
            ConfigError: If the repository path is not set
            RepositoryMissError: If no file matches
        """
        directory = self._repository_dir(data_file)
        basename = self.get_basename(data_file)

        for extension in self.extensions:
            for candidate in self._candidates(basename, extension):
                resolved = directory.child(candidate)
                if resolved.exists():
                    logger.debug(
                        "Resolved storage entry",
                        context={"source": data_file.source, "resolved": resolved.source},
                    )
                    return resolved

        raise RepositoryMissError(self.name, basename, self.extensions)

    def _get_data(self, data_file: "DataFile") -> BinaryIO:
        return self.resolve(data_file).raw_open()

    def exists(self, data_file: "DataFile", follow_link: bool = True) -> bool:
        try:
            resolved = self.resolve(data_file)
        except RepositoryMissError:
            return False
        return resolved.exists(follow_link)

    def get_metadata(self, data_file: "DataFile") -> DataFileMetadata:
        return self.resolve(data_file).metadata()

    def source_as_path(self, data_file: "DataFile") -> "Path | None":
        return self.resolve(data_file).to_path()


class GenomeStorageDataProtocol(AbstractStorageDataProtocol):
    """Reference genome sequences."""

    name: ClassVar[str] = "genome"
    repository_key: ClassVar[str] = "genome"


class GffStorageDataProtocol(AbstractStorageDataProtocol):
    """GFF annotations."""

    name: ClassVar[str] = "gff"
    repository_key: ClassVar[str] = "gff"


class GtfStorageDataProtocol(AbstractStorageDataProtocol):
    """GTF annotations."""

    name: ClassVar[str] = "gtf"
    repository_key: ClassVar[str] = "gtf"


class AdditionalAnnotationStorageDataProtocol(AbstractStorageDataProtocol):
    """Additional annotation tables."""

    name: ClassVar[str] = "additionalannotation"
    repository_key: ClassVar[str] = "additional_annotation"
