"""Tests for data formats and compression."""

import bz2
import gzip
import io

import pytest

from genostore.compression import (
    ChainedStream,
    CompressionType,
    remove_compression_extension,
)
from genostore.formats import (
    DataFormat,
    DataFormatRegistry,
    content_type_from_filename,
    get_format_registry,
)


class ClosingBuffer(io.BytesIO):
    """BytesIO keeping its content after close."""

    def close(self) -> None:
        self.final = self.getvalue()
        super().close()


class TestCompressionType:
    """Tests for CompressionType."""

    @pytest.mark.parametrize(
        "filename,expected",
        [
            ("reads.fq.gz", CompressionType.GZIP),
            ("genome.fasta.bz2", CompressionType.BZIP2),
            ("genome.fasta", None),
            ("", None),
        ],
    )
    def test_from_filename(self, filename, expected) -> None:
        """Compression is detected from the suffix."""
        assert CompressionType.from_filename(filename) is expected

    def test_from_content_encoding(self) -> None:
        """Content encodings are matched case-insensitively."""
        assert CompressionType.from_content_encoding("GZIP ") is CompressionType.GZIP
        assert CompressionType.from_content_encoding("bzip2") is CompressionType.BZIP2
        assert CompressionType.from_content_encoding("identity") is None
        assert CompressionType.from_content_encoding(None) is None

    def test_remove_compression_extension(self) -> None:
        """Only a known compression suffix is removed."""
        assert remove_compression_extension("reads.fq.gz") == "reads.fq"
        assert remove_compression_extension("reads.fq") == "reads.fq"

    def test_gzip_output_closes_backend_stream(self) -> None:
        """Closing the compressor also closes the wrapped stream."""
        raw = ClosingBuffer()
        with CompressionType.GZIP.open_output(raw) as out:
            out.write(b"ACGT" * 10)

        assert raw.closed
        assert gzip.decompress(raw.final) == b"ACGT" * 10

    def test_bzip2_input(self) -> None:
        """Decompressing stream reads the original content."""
        raw = io.BytesIO(bz2.compress(b">chr1\nACGT\n"))
        stream = CompressionType.BZIP2.open_input(raw)

        assert isinstance(stream, ChainedStream)
        assert stream.read() == b">chr1\nACGT\n"
        stream.close()
        assert raw.closed


class TestDataFormatRegistry:
    """Tests for DataFormatRegistry."""

    def test_from_filename(self) -> None:
        """Formats are found by extension, ignoring compression."""
        registry = get_format_registry()

        assert registry.from_filename("hg38.fa.gz").name == "genome_fasta"
        assert registry.from_filename("genes.GTF").name == "annotation_gtf"
        assert registry.from_filename("README") is None
        assert registry.from_filename(".fasta") is None

    def test_register_overrides_extension(self) -> None:
        """A later format wins on a shared extension."""
        registry = DataFormatRegistry()
        registry.register(DataFormat("counts", (".tsv",)))

        assert registry.from_filename("x.tsv").name == "counts"
        assert registry.get("additional_annotation_tsv") is not None

    def test_default_extension(self) -> None:
        """The first extension is the default one."""
        assert get_format_registry().get("reads_fastq").default_extension == ".fastq"

    def test_content_type(self) -> None:
        """Content types come from the format, then from mimetypes."""
        assert content_type_from_filename("a.bam") == "application/octet-stream"
        assert content_type_from_filename("a.tsv.gz") == "text/tab-separated-values"
        assert content_type_from_filename("index.html") == "text/html"
