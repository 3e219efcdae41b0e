"""Tests for the HTTP protocols."""

import gzip

import httpx
import pytest

from genostore.backends.url import HttpDataProtocol, HttpsDataProtocol
from genostore.config import Config
from genostore.data_file import DataFile
from genostore.exceptions import (
    DataNotFoundError,
    InvalidSourceError,
    StorageIOError,
    UnsupportedOperationError,
)
from genostore.protocols.metadata import DataFileMetadata
from genostore.registry import DataProtocolRegistry, ProtocolEntry


class FakeServer:
    """In-memory HTTP server for httpx.MockTransport."""

    def __init__(self) -> None:
        self.files: dict[str, tuple[bytes, dict[str, str]]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: int | None = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            return httpx.Response(self.fail_with)

        if request.method == "PUT":
            self.files[request.url.path] = (request.content, dict(request.headers))
            return httpx.Response(201)

        if request.url.path not in self.files:
            return httpx.Response(404)
        content, headers = self.files[request.url.path]
        # A stream keeps the body unread, as with a real connection
        return httpx.Response(
            200,
            headers={"Content-Length": str(len(content)), **headers},
            stream=httpx.ByteStream(content),
        )


@pytest.fixture
def server():
    """Fake server."""
    return FakeServer()


@pytest.fixture
def http(server):
    """Build data files served by the fake server."""
    config = Config()
    transport = httpx.MockTransport(server.handler)
    registry = DataProtocolRegistry(
        config,
        entries=[
            ProtocolEntry("http", lambda c: HttpDataProtocol(c, transport=transport), HttpDataProtocol),
            ProtocolEntry("https", lambda c: HttpsDataProtocol(c, transport=transport), HttpsDataProtocol),
        ],
        discover=False,
    )

    def make(source: str) -> DataFile:
        return DataFile(source, registry=registry)

    return make


class TestRead:
    """Tests for GET based operations."""

    def test_read(self, http, server) -> None:
        """The body is streamed."""
        server.files["/data/genome.fa"] = (b">chr1\nACGT\n", {})

        with http("http://example.org/data/genome.fa").raw_open() as stream:
            assert stream.read() == b">chr1\nACGT\n"

    def test_raw_body_not_decoded(self, http, server) -> None:
        """Encoded bodies are returned as sent; open() decompresses."""
        body = gzip.compress(b"ACGT")
        server.files["/reads.fq"] = (body, {"Content-Encoding": "gzip"})
        f = http("https://example.org/reads.fq")

        with f.raw_open() as stream:
            assert stream.read() == body
        with f.open() as stream:
            assert stream.read() == b"ACGT"

    def test_not_found(self, http) -> None:
        """404 raises DataNotFoundError."""
        f = http("http://example.org/missing.fa")

        with pytest.raises(DataNotFoundError):
            f.raw_open()
        assert not f.exists()

    def test_server_error(self, http, server) -> None:
        """Other error statuses raise StorageIOError."""
        server.fail_with = 503
        f = http("http://example.org/genome.fa")

        with pytest.raises(StorageIOError, match="503"):
            f.raw_open()
        assert not f.exists()

    def test_exists(self, http, server) -> None:
        """A successful GET means the file exists."""
        server.files["/genome.fa"] = (b"x", {})
        assert http("http://example.org/genome.fa").exists()

    def test_metadata_from_headers(self, http, server) -> None:
        """Metadata only uses the response headers."""
        server.files["/genome.fa"] = (
            b"12345",
            {
                "Content-Type": "application/x-fasta",
                "Last-Modified": "Tue, 02 Jan 2024 03:04:05 GMT",
            },
        )
        md = http("http://example.org/genome.fa").metadata()

        assert md.content_length == 5
        assert md.content_type == "application/x-fasta"
        assert md.content_encoding is None
        assert md.last_modified == 1704164645000
        assert md.data_format is None

    def test_configured_headers(self, server) -> None:
        """Headers from the settings are sent with every request."""
        config = Config.from_dict({"http": {"headers": {"Authorization": "Bearer t"}}})
        protocol = HttpDataProtocol(config, transport=httpx.MockTransport(server.handler))
        server.files["/a"] = (b"", {})

        assert protocol.exists(DataFile("http://example.org/a"))
        assert server.requests[0].headers["Authorization"] == "Bearer t"
        protocol.close()


class TestWrite:
    """Tests for PUT uploads."""

    def test_put_on_close(self, http, server) -> None:
        """The body is sent when the stream is closed."""
        f = http("http://example.org/out/reads.fq")

        with f.raw_create(DataFileMetadata(content_type="text/plain")) as out:
            out.write(b"@r1\n")
            out.write(b"ACGT\n")
            assert server.requests == []

        content, headers = server.files["/out/reads.fq"]
        assert content == b"@r1\nACGT\n"
        assert headers["content-type"] == "text/plain"

    def test_put_error(self, http, server) -> None:
        """A rejected upload raises StorageIOError on close."""
        server.fail_with = 403
        out = http("http://example.org/out/reads.fq").raw_create()
        out.write(b"x")

        with pytest.raises(StorageIOError, match="403"):
            out.close()

    def test_failed_block_not_sent(self, http, server) -> None:
        """Nothing is sent when the block raises."""
        with pytest.raises(RuntimeError):
            with http("http://example.org/out/reads.fq").raw_create() as out:
                out.write(b"@r1\n")
                raise RuntimeError("reader failed")

        assert server.requests == []
        assert "/out/reads.fq" not in server.files


class TestSources:
    """Tests for URL validation and capabilities."""

    def test_missing_host(self, http) -> None:
        """URLs without host are rejected."""
        with pytest.raises(InvalidSourceError):
            http("http:///genome.fa").raw_open()

    def test_structural_operations(self, http) -> None:
        """Only read and write are supported."""
        f = http("https://example.org/dir")

        with pytest.raises(UnsupportedOperationError, match="https"):
            f.list()
        with pytest.raises(UnsupportedOperationError):
            f.mkdirs()

    def test_client_reused(self, server) -> None:
        """The client is created once and can be closed."""
        protocol = HttpDataProtocol(transport=httpx.MockTransport(server.handler))

        assert protocol.client is protocol.client
        protocol.close()
        assert not protocol._client.initialized
