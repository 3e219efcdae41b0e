"""Logical data formats resolved from file names."""

import mimetypes
from dataclasses import dataclass

from genostore.compression import remove_compression_extension


@dataclass(frozen=True)
class DataFormat:
    """A logical format of workflow data."""

    name: str
    extensions: tuple[str, ...]
    content_type: str = "text/plain"
    description: str = ""

    @property
    def default_extension(self) -> str:
        """First declared extension."""
        return self.extensions[0]


DEFAULT_FORMATS: tuple[DataFormat, ...] = (
    DataFormat("genome_fasta", (".fasta", ".fa", ".fna", ".fas"), description="Genome sequence"),
    DataFormat("reads_fastq", (".fastq", ".fq"), description="Sequencing reads"),
    DataFormat("annotation_gff", (".gff", ".gff3"), description="GFF annotation"),
    DataFormat("annotation_gtf", (".gtf",), description="GTF annotation"),
    DataFormat("mapper_results_sam", (".sam",), description="SAM alignments"),
    DataFormat(
        "mapper_results_bam",
        (".bam",),
        content_type="application/octet-stream",
        description="BAM alignments",
    ),
    DataFormat("peaks_bed", (".bed",), description="BED intervals"),
    DataFormat(
        "additional_annotation_tsv",
        (".tsv",),
        content_type="text/tab-separated-values",
        description="Additional annotation",
    ),
)


class DataFormatRegistry:
    """Resolves data formats from file extensions."""

    def __init__(self, formats: tuple[DataFormat, ...] = DEFAULT_FORMATS) -> None:
        self._by_extension: dict[str, DataFormat] = {}
        self._by_name: dict[str, DataFormat] = {}
        for fmt in formats:
            self.register(fmt)

    def register(self, fmt: DataFormat) -> None:
        """Add a format; later registrations win on shared extensions."""
        self._by_name[fmt.name] = fmt
        for ext in fmt.extensions:
            self._by_extension[ext.lower()] = fmt

    def get(self, name: str) -> DataFormat | None:
        return self._by_name.get(name)

    def from_filename(self, filename: str | None) -> DataFormat | None:
        """Get the format of a file, ignoring any compression suffix."""
        if not filename:
            return None
        name = remove_compression_extension(filename)
        dot = name.rfind(".")
        if dot <= 0:
            return None
        return self._by_extension.get(name[dot:].lower())

    @property
    def formats(self) -> list[DataFormat]:
        return list(self._by_name.values())


_registry = DataFormatRegistry()


def get_format_registry() -> DataFormatRegistry:
    """Get the process-wide format registry."""
    return _registry


def content_type_from_filename(filename: str) -> str | None:
    """Guess a content type from a filename without its compression suffix."""
    fmt = _registry.from_filename(filename)
    if fmt is not None:
        return fmt.content_type
    content_type, _ = mimetypes.guess_type(remove_compression_extension(filename), strict=False)
    return content_type
