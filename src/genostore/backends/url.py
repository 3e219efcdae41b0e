"""HTTP(S) protocols backed by httpx."""

import io
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any, BinaryIO, ClassVar, Iterator

import httpx

from genostore.caching import OnceCell
from genostore.config import Config
from genostore.exceptions import DataNotFoundError, InvalidSourceError, StorageIOError
from genostore.observability import get_logger
from genostore.protocols.data_protocol import Capabilities, Compatibility
from genostore.protocols.metadata import UNKNOWN, DataFileMetadata
from genostore.backends.base import AbstractDataProtocol

if TYPE_CHECKING:
    from genostore.data_file import DataFile

logger = get_logger(__name__)


class ResponseStream(io.RawIOBase):
    """Readable stream over the undecoded body of a streamed response."""

    def __init__(self, response: httpx.Response) -> None:
        super().__init__()
        self._response = response
        self._chunks: Iterator[bytes] = response.iter_raw()
        self._pending = b""

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:  # type: ignore[no-untyped-def]
        while not self._pending:
            try:
                self._pending = next(self._chunks)
            except StopIteration:
                return 0
            except httpx.HTTPError as e:
                raise StorageIOError(f"Error while reading {self._response.url}: {e}") from e

        n = min(len(b), len(self._pending))
        b[:n] = self._pending[:n]
        self._pending = self._pending[n:]
        return n

    def close(self) -> None:
        if not self.closed:
            self._response.close()
        super().close()


class RequestBodyStream(io.BytesIO):
    """Collects the body of a PUT request, sent when closed.

    Nothing is sent when a ``with`` block exits on an exception.
    """

    def __init__(
        self,
        protocol: "HttpDataProtocol",
        url: httpx.URL,
        metadata: DataFileMetadata | None,
    ) -> None:
        super().__init__()
        self._protocol = protocol
        self._url = url
        self._metadata = metadata
        self._aborted = False

    def abort(self) -> None:
        """Close the stream without sending the body."""
        self._aborted = True
        self.close()

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        if exc_type is not None:
            self.abort()
        else:
            self.close()

    def close(self) -> None:
        if self.closed:
            return
        body = self.getvalue()
        super().close()
        if not self._aborted:
            self._protocol._send_body(self._url, body, self._metadata)


def _parse_http_date(value: str | None) -> int:
    if not value:
        return UNKNOWN
    try:
        return int(parsedate_to_datetime(value).timestamp() * 1000)
    except (TypeError, ValueError):
        return UNKNOWN


class HttpDataProtocol(AbstractDataProtocol):
    """Protocol for ``http://`` URLs."""

    name: ClassVar[str] = "http"
    compatibility: ClassVar[Compatibility] = Compatibility.ANY
    capabilities: ClassVar[Capabilities] = Capabilities(read=True, write=True)

    def __init__(
        self,
        config: Config | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        super().__init__(config)
        self._transport = transport
        self._client: OnceCell[httpx.Client] = OnceCell(self._create_client)

    def _create_client(self) -> httpx.Client:
        settings = self.config.http
        return httpx.Client(
            transport=self._transport,
            timeout=settings.timeout_seconds,
            headers=settings.headers,
            follow_redirects=True,
        )

    @property
    def client(self) -> httpx.Client:
        return self._client.get()

    def close(self) -> None:
        """Close the HTTP client if it was created."""
        if self._client.initialized:
            self._client.get().close()
            self._client.reset()

    def _url(self, data_file: "DataFile") -> httpx.URL:
        try:
            url = httpx.URL(data_file.source)
        except httpx.InvalidURL as e:
            raise InvalidSourceError(f"Invalid URL: {data_file.source}") from e
        if not url.host:
            raise InvalidSourceError(f"Invalid URL, no host: {data_file.source}")
        return url

    def _open(self, data_file: "DataFile") -> httpx.Response:
        url = self._url(data_file)
        try:
            response = self.client.send(self.client.build_request("GET", url), stream=True)
        except httpx.HTTPError as e:
            raise StorageIOError(f"Cannot fetch {data_file}: {e}") from e

        if response.status_code == httpx.codes.NOT_FOUND:
            response.close()
            raise DataNotFoundError(f"File not found: {data_file}")
        if response.is_error:
            response.close()
            raise StorageIOError(f"Cannot fetch {data_file}: HTTP {response.status_code}")
        return response

    def _get_data(self, data_file: "DataFile") -> BinaryIO:
        return io.BufferedReader(ResponseStream(self._open(data_file)))

    def _put_data(self, data_file: "DataFile", metadata: DataFileMetadata | None) -> BinaryIO:
        return RequestBodyStream(self, self._url(data_file), metadata)

    def _send_body(self, url: httpx.URL, body: bytes, metadata: DataFileMetadata | None) -> None:
        headers: dict[str, str] = {}
        if metadata is not None:
            if metadata.content_type:
                headers["Content-Type"] = metadata.content_type
            if metadata.content_encoding:
                headers["Content-Encoding"] = metadata.content_encoding

        try:
            response = self.client.put(url, content=body, headers=headers)
        except httpx.HTTPError as e:
            raise StorageIOError(f"Cannot upload to {url}: {e}") from e

        if response.is_error:
            raise StorageIOError(f"Cannot upload to {url}: HTTP {response.status_code}")
        logger.debug("Uploaded", context={"url": str(url), "size": len(body)})

    def exists(self, data_file: "DataFile", follow_link: bool = True) -> bool:
        try:
            response = self._open(data_file)
        except StorageIOError:
            return False
        response.close()
        return True

    def get_metadata(self, data_file: "DataFile") -> DataFileMetadata:
        response = self._open(data_file)
        response.close()

        headers = response.headers
        length = headers.get("content-length")
        return DataFileMetadata(
            content_length=int(length) if length and length.isdigit() else UNKNOWN,
            content_type=headers.get("content-type"),
            content_encoding=headers.get("content-encoding"),
            last_modified=_parse_http_date(headers.get("last-modified")),
        )


class HttpsDataProtocol(HttpDataProtocol):
    """Protocol for ``https://`` URLs."""

    name: ClassVar[str] = "https"
