"""Caches of genome descriptions and mapper index archives.

Both caches are directories holding a tab-separated index file next to the
cached files, so results computed by one workflow run can be reused by the
next. Like repositories, the directories can live on any protocol.

Example:
    storage = open_genome_desc_storage()
    if storage is not None:
        description = storage.get(DataFile("/data/hg38.fa"))
"""

import hashlib
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, ClassVar, Generic, Mapping, TypeVar

from pydantic import BaseModel, Field

from genostore.data_file import DataFile
from genostore.exceptions import StorageIOError
from genostore.observability import get_logger
from genostore.protocols.metadata import UNKNOWN
from genostore.registry import DataProtocolRegistry, get_registry

logger = get_logger(__name__)

MD5_CHUNK_SIZE = 64 * 1024


def md5sum(stream: BinaryIO) -> str:
    """Hex MD5 digest of a stream, read to its end."""
    digest = hashlib.md5()
    for chunk in iter(lambda: stream.read(MD5_CHUNK_SIZE), b""):
        digest.update(chunk)
    return digest.hexdigest()


class GenomeDescription(BaseModel):
    """Names and lengths of the sequences of a genome, in file order."""

    genome_name: str
    md5sum: str | None = None
    sequences: dict[str, int] = Field(default_factory=dict)

    @property
    def sequence_count(self) -> int:
        return len(self.sequences)

    @property
    def genome_length(self) -> int:
        return sum(self.sequences.values())

    def save(self, data_file: DataFile) -> None:
        with data_file.create() as out:
            out.write(self.model_dump_json(indent=2).encode("utf-8"))

    @classmethod
    def load(cls, data_file: DataFile) -> "GenomeDescription":
        with data_file.open() as stream:
            return cls.model_validate_json(stream.read())


@dataclass(frozen=True)
class MapperInfo:
    """Identity of the mapper an index was built with."""

    name: str
    version: str = ""
    flavor: str = ""

    @property
    def key(self) -> str:
        return self.name.strip().lower()


E = TypeVar("E")


class IndexedStorage(ABC, Generic[E]):
    """Directory of cached files listed in a tab-separated index file.

    Index lines that are blank, commented, malformed or point to a missing
    file are skipped. A missing index file is created with only its header.

    Raises:
        StorageIOError: If the directory does not exist
    """

    index_filename: ClassVar[str]
    header: ClassVar[list[str]]
    kind: ClassVar[str]

    def __init__(self, directory: DataFile) -> None:
        self.directory = directory
        self._entries: dict[tuple, E] = {}
        self._lock = threading.RLock()
        self.load()
        logger.info(
            f"{self.kind.capitalize()} storage found",
            context={"directory": directory.source, "entries": len(self)},
        )

    @property
    def index_file(self) -> DataFile:
        return self.directory.child(self.index_filename)

    def __len__(self) -> int:
        return len(self._entries)

    @abstractmethod
    def _parse(self, fields: list[str]) -> E | None:
        """Build an entry from the fields of an index line, None if invalid."""

    @abstractmethod
    def _format(self, entry: E) -> list[str]:
        """Fields of the index line of an entry."""

    @abstractmethod
    def _key(self, entry: E) -> tuple:
        pass

    @abstractmethod
    def _file(self, entry: E) -> DataFile:
        pass

    def _check_directory(self) -> None:
        if not self.directory.exists():
            raise StorageIOError(
                f"{self.kind.capitalize()} storage directory not found: {self.directory.source}"
            )

    def load(self) -> None:
        """Read the index file, replacing the entries in memory."""
        with self._lock:
            self._check_directory()
            if not self.index_file.exists():
                self._entries = {}
                self.save()
                return

            with self.index_file.open() as stream:
                text = stream.read().decode("utf-8")

            entries: dict[tuple, E] = {}
            for line in text.splitlines():
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                entry = self._parse(line.split("\t"))
                if entry is not None and self._file(entry).exists():
                    entries[self._key(entry)] = entry
            self._entries = entries

    def save(self) -> None:
        """Write the entries in memory to the index file."""
        with self._lock:
            self._check_directory()
            lines = ["#" + "\t".join(self.header)]
            lines.extend("\t".join(self._format(entry)) for entry in self._entries.values())
            with self.index_file.create() as out:
                out.write(("\n".join(lines) + "\n").encode("utf-8"))


@dataclass
class GenomeDescEntry:
    genome_name: str
    md5sum: str
    length: int
    file: DataFile


class GenomeDescStorage(IndexedStorage[GenomeDescEntry]):
    """Genome descriptions keyed by the MD5 and length of the genome file.

    Example:
        storage = GenomeDescStorage(DataFile("s3://refs/genome_desc"))
        description = storage.get(genome_file)
        if description is None:
            description = describe(genome_file)
            storage.put(genome_file, description)
    """

    index_filename: ClassVar[str] = "genomes_desc_storage.txt"
    header: ClassVar[list[str]] = ["Genome", "GenomeFileMD5", "GenomeFileLength"]
    kind: ClassVar[str] = "genome description"

    def __init__(self, directory: DataFile) -> None:
        # (file, last modified, md5) of the last genome file read
        self._last_md5: tuple[DataFile, int, str] | None = None
        super().__init__(directory)

    def _parse(self, fields: list[str]) -> GenomeDescEntry | None:
        if len(fields) != 4:
            return None
        try:
            length = int(fields[2])
        except ValueError:
            return None
        return GenomeDescEntry(fields[0], fields[1], length, self.directory.child(fields[3]))

    def _format(self, entry: GenomeDescEntry) -> list[str]:
        return [entry.genome_name, entry.md5sum, str(entry.length), entry.file.name]

    def _key(self, entry: GenomeDescEntry) -> tuple:
        return (entry.md5sum, entry.length)

    def _file(self, entry: GenomeDescEntry) -> DataFile:
        return entry.file

    def _md5sum(self, genome_file: DataFile, last_modified: int) -> str:
        cached = self._last_md5
        if (
            cached is not None
            and last_modified != UNKNOWN
            and cached[0] == genome_file
            and cached[1] == last_modified
        ):
            return cached[2]

        with genome_file.raw_open() as stream:
            md5 = md5sum(stream)
        if last_modified != UNKNOWN:
            self._last_md5 = (genome_file, last_modified, md5)
        return md5

    def _key_for(self, genome_file: DataFile) -> tuple[str, int]:
        metadata = genome_file.metadata()
        return (self._md5sum(genome_file, metadata.last_modified), metadata.content_length)

    def get(self, genome_file: DataFile) -> GenomeDescription | None:
        """Get the cached description of a genome file, or None."""
        context = {"genome": genome_file.source}
        try:
            key = self._key_for(genome_file)
        except OSError as e:
            logger.warning("Cannot compute the checksum of the genome file", context=context, error=e)
            return None

        entry = self._entries.get(key)
        if entry is None:
            return None
        try:
            return GenomeDescription.load(entry.file)
        except (OSError, ValueError) as e:
            logger.warning("Cannot read genome description file", context=context, error=e)
            return None

    def put(self, genome_file: DataFile, description: GenomeDescription) -> bool:
        """Add the description of a genome file.

        Returns:
            True if a new entry was written
        """
        context = {"genome": genome_file.source, "directory": self.directory.source}
        with self._lock:
            try:
                key = self._key_for(genome_file)
                if key in self._entries:
                    return False
                md5, length = key
                entry = GenomeDescEntry(
                    genome_name=genome_file.name,
                    md5sum=md5,
                    length=length,
                    file=self.directory.child(f"{md5}_{length}.gdesc"),
                )
                description.save(entry.file)
                self._entries[key] = entry
                self.save()
            except OSError as e:
                logger.warning("Cannot add genome description to storage", context=context, error=e)
                return False

        logger.info("Genome description added to storage", context=context)
        return True


@dataclass
class GenomeIndexEntry:
    genome_name: str
    checksum: str
    sequences: int
    length: int
    mapper: str
    file: DataFile
    description: str | None = None


def index_fields(
    mapper: MapperInfo,
    genome: GenomeDescription,
    additional: Mapping[str, str],
) -> dict[str, str]:
    """Values identifying a mapper index, additional ones sorted by key."""
    fields = {
        "mapper.name": mapper.name,
        "mapper.version": mapper.version.strip(),
        "mapper.flavor": mapper.flavor.strip(),
        "genome.md5sum": (genome.md5sum or "").strip(),
    }
    fields.update(sorted(additional.items()))
    return fields


def index_checksum(fields: Mapping[str, str]) -> str:
    digest = hashlib.md5()
    for key, value in fields.items():
        digest.update(key.encode("utf-8"))
        digest.update(value.encode("utf-8"))
    return digest.hexdigest()


class GenomeIndexStorage(IndexedStorage[GenomeIndexEntry]):
    """Mapper index archives keyed by mapper and genome.

    The key is the mapper name with a checksum of the mapper version and
    flavor, the genome checksum and any additional build parameters.
    """

    index_filename: ClassVar[str] = "genomes_index_storage.txt"
    header: ClassVar[list[str]] = [
        "Genome",
        "Checksum",
        "GenomeSequences",
        "GenomeLength",
        "Mapper",
        "IndexFile",
        "Description",
    ]
    kind: ClassVar[str] = "genome index"

    def _parse(self, fields: list[str]) -> GenomeIndexEntry | None:
        if len(fields) not in (6, 7):
            return None
        try:
            sequences, length = int(fields[2]), int(fields[3])
        except ValueError:
            return None
        return GenomeIndexEntry(
            genome_name=fields[0],
            checksum=fields[1],
            sequences=sequences,
            length=length,
            mapper=fields[4],
            file=self.directory.child(fields[5]),
            description=fields[6] if len(fields) == 7 else None,
        )

    def _format(self, entry: GenomeIndexEntry) -> list[str]:
        fields = [
            entry.genome_name or "???",
            entry.checksum,
            str(entry.sequences),
            str(entry.length),
            entry.mapper,
            entry.file.name,
        ]
        if entry.description is not None:
            fields.append(entry.description)
        return fields

    def _key(self, entry: GenomeIndexEntry) -> tuple:
        return (entry.mapper.strip().lower(), entry.checksum)

    def _file(self, entry: GenomeIndexEntry) -> DataFile:
        return entry.file

    def get(
        self,
        mapper: MapperInfo,
        genome: GenomeDescription,
        additional: Mapping[str, str] | None = None,
    ) -> DataFile | None:
        """Get the cached index archive, or None."""
        checksum = index_checksum(index_fields(mapper, genome, additional or {}))
        entry = self._entries.get((mapper.key, checksum))
        return entry.file if entry is not None else None

    def put(
        self,
        mapper: MapperInfo,
        genome: GenomeDescription,
        additional: Mapping[str, str] | None,
        archive: DataFile,
    ) -> bool:
        """Copy an index archive into the storage.

        The index file is reloaded first to keep the entries added by other
        processes sharing the directory.

        Returns:
            True if a new entry was written
        """
        context = {"archive": archive.source, "directory": self.directory.source}
        with self._lock:
            try:
                self.load()
            except OSError as e:
                logger.warning("Cannot reload the genome index storage", context=context, error=e)

            if not archive.exists():
                return False

            fields = index_fields(mapper, genome, additional or {})
            checksum = index_checksum(fields)
            if (mapper.key, checksum) in self._entries:
                return False

            entry = GenomeIndexEntry(
                genome_name=genome.genome_name.strip(),
                checksum=checksum,
                sequences=genome.sequence_count,
                length=genome.genome_length,
                mapper=mapper.key,
                file=self.directory.child(f"{mapper.key}-{checksum}.zip"),
                description="{" + ", ".join(f"{k}={v}" for k, v in fields.items()) + "}",
            )
            try:
                archive.copy_to(entry.file)
                self._entries[self._key(entry)] = entry
                self.save()
            except OSError as e:
                logger.warning("Cannot add index archive to storage", context=context, error=e)
                return False

        logger.info("Index archive added to storage", context=context)
        return True


S = TypeVar("S", bound=IndexedStorage)


def _open_storage(cls: type[S], path: str | None, registry: DataProtocolRegistry) -> S | None:
    if not path:
        return None
    try:
        return cls(DataFile(path, registry=registry))
    except OSError as e:
        logger.warning(f"{cls.kind.capitalize()} storage unavailable", context={"path": path}, error=e)
        return None


def open_genome_desc_storage(
    registry: DataProtocolRegistry | None = None,
) -> GenomeDescStorage | None:
    """Open the genome description storage of the settings, None if unusable."""
    registry = registry or get_registry()
    return _open_storage(GenomeDescStorage, registry.config.storages.genome_desc_path, registry)


def open_genome_index_storage(
    registry: DataProtocolRegistry | None = None,
) -> GenomeIndexStorage | None:
    """Open the genome index storage of the settings, None if unusable."""
    registry = registry or get_registry()
    return _open_storage(GenomeIndexStorage, registry.config.storages.genome_index_path, registry)
