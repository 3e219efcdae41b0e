"""Amazon S3 protocol.

Reads stream the object body directly. Writes go to a local temporary file
that is uploaded with the boto3 transfer manager when the stream is closed.
"""

import asyncio
import dataclasses
import io
import os
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO, Callable, ClassVar
from urllib.parse import urlsplit

import boto3
from boto3.s3.transfer import TransferConfig, create_transfer_manager
from botocore.exceptions import BotoCoreError, ClientError

from genostore.caching import OnceCell
from genostore.config import Config, S3Config
from genostore.exceptions import (
    DataNotFoundError,
    InvalidSourceError,
    StorageIOError,
    TransferError,
    UploadCancelledError,
    UploadTimeoutError,
)
from genostore.formats import get_format_registry
from genostore.observability import Timer, emit_counter, emit_timer, get_logger
from genostore.protocols.data_protocol import Capabilities, Compatibility, Operation
from genostore.protocols.metadata import UNKNOWN, DataFileMetadata
from genostore.backends.base import AbstractDataProtocol

if TYPE_CHECKING:
    from genostore.data_file import DataFile

logger = get_logger(__name__)

TEMP_FILE_SUFFIX = ".s3upload"
NOT_FOUND_CODES = frozenset({"NoSuchKey", "NoSuchBucket", "NotFound", "404"})


@dataclass(frozen=True)
class S3Object:
    """Bucket and key of an S3 source."""

    bucket: str
    key: str

    @property
    def uri(self) -> str:
        return f"s3://{self.bucket}/{self.key}"


def parse_s3_source(source: str) -> S3Object:
    """Split an ``s3://bucket/key`` source.

    Raises:
        InvalidSourceError: If the source is not an S3 object URI
    """
    try:
        parts = urlsplit(source)
    except ValueError as e:
        raise InvalidSourceError(f"Invalid S3 source: {source}") from e

    key = parts.path.lstrip("/")
    if parts.scheme.lower() != "s3" or not parts.netloc or not key:
        raise InvalidSourceError(f"Invalid S3 source: {source}")
    return S3Object(bucket=parts.netloc, key=key)


def _is_not_found(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") in NOT_FOUND_CODES


class UploadTask:
    """Handle on the upload of a local file to S3.

    ``run()`` performs the upload on the calling thread, retrying failed
    attempts. ``cancel()`` may be called from any thread and stops the
    task at its next backoff or polling step. Awaiting the task runs it in
    the default executor of the event loop.

    Example:
        task = protocol.upload(Path("/tmp/reads.fq"), DataFile("s3://b/reads.fq"))
        task.run(timeout=600)
    """

    def __init__(
        self,
        transfer_manager: Any,
        path: Path,
        target: S3Object,
        extra_args: dict[str, str],
        settings: S3Config,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        self.path = path
        self.target = target
        self._transfer_manager = transfer_manager
        self._extra_args = extra_args
        self._settings = settings
        self._cancelled = threading.Event()
        self._sleep = sleep or self._cancelled.wait

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        """Request the task to stop."""
        self._cancelled.set()

    def run(self, timeout: float | None = None) -> None:
        """Upload the file, blocking until done.

        Args:
            timeout: Maximum seconds for the whole upload, retries included

        Raises:
            UploadTimeoutError: If the deadline passes
            UploadCancelledError: If ``cancel()`` was called
            TransferError: If every attempt failed
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        attempts = max(self._settings.upload_attempts, 1)
        context = {"source": str(self.path), "destination": self.target.uri}
        last_error: BaseException | None = None

        with Timer() as timer:
            for attempt in range(1, attempts + 1):
                self._check_interrupted(deadline)
                try:
                    self._attempt(deadline)
                except (UploadTimeoutError, UploadCancelledError):
                    raise
                except Exception as e:
                    last_error = e
                    logger.warning(
                        "Upload attempt failed",
                        context={**context, "attempt": attempt, "attempts": attempts},
                        error=e,
                    )
                    emit_counter("genostore.s3.upload_retries", {"bucket": self.target.bucket})
                    if attempt < attempts:
                        self._backoff(deadline)
                    continue

                logger.info("Upload complete", context=context, duration_ms=timer.duration_ms)
                emit_timer("genostore.s3.upload", timer.duration_ms, {"bucket": self.target.bucket})
                return

        emit_counter("genostore.s3.upload_failures", {"bucket": self.target.bucket})
        raise TransferError(
            f"Unable to upload {self.path} to {self.target.uri}: {last_error}"
        ) from last_error

    def _attempt(self, deadline: float | None) -> None:
        future = self._transfer_manager.upload(
            str(self.path),
            self.target.bucket,
            self.target.key,
            extra_args=self._extra_args,
        )

        while not future.done():
            try:
                self._check_interrupted(deadline)
            except (UploadTimeoutError, UploadCancelledError):
                future.cancel()
                raise
            self._cancelled.wait(self._settings.poll_interval_seconds)

        future.result()

    def _backoff(self, deadline: float | None) -> None:
        delay = self._settings.retry_delay_seconds
        if deadline is not None and time.monotonic() + delay > deadline:
            self._sleep(max(deadline - time.monotonic(), 0.0))
        else:
            self._sleep(delay)
        self._check_interrupted(deadline)

    def _check_interrupted(self, deadline: float | None) -> None:
        if self._cancelled.is_set():
            raise UploadCancelledError(f"Upload to {self.target.uri} cancelled")
        if deadline is not None and time.monotonic() >= deadline:
            raise UploadTimeoutError(f"Upload to {self.target.uri} timed out")

    async def _run_async(self) -> None:
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(None, self.run)
        try:
            await future
        except asyncio.CancelledError:
            self.cancel()
            raise

    def __await__(self):  # type: ignore[no-untyped-def]
        return self._run_async().__await__()


class S3OutputStream(io.BufferedWriter):
    """Buffers written data in a temporary file, uploaded on close.

    Leaving a ``with`` block on an exception aborts the stream: the
    temporary file is removed and nothing is uploaded.
    """

    def __init__(
        self,
        protocol: "S3DataProtocol",
        data_file: "DataFile",
        metadata: DataFileMetadata | None,
        temp_dir: str | None,
    ) -> None:
        self._aborted = False
        fd, name = tempfile.mkstemp(suffix=TEMP_FILE_SUFFIX, dir=temp_dir)
        super().__init__(io.FileIO(fd, "wb"))
        self.temp_path = Path(name)
        self._protocol = protocol
        self._data_file = data_file
        self._metadata = metadata

    def abort(self) -> None:
        """Close the stream and drop the written data."""
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
        try:
            super().close()
            if self._aborted:
                logger.info("Upload aborted", context={"destination": self._data_file.source})
                return
            metadata = DataFileMetadata.propagate(self._metadata)
            if metadata.content_length < 0:
                metadata = dataclasses.replace(
                    metadata, content_length=self.temp_path.stat().st_size
                )
            self._protocol.upload(self.temp_path, self._data_file, metadata).run()
        finally:
            try:
                self.temp_path.unlink()
            except OSError as e:
                logger.warning(
                    "Cannot remove temporary file",
                    context={"path": str(self.temp_path)},
                    error=e,
                )


class S3DataProtocol(AbstractDataProtocol):
    """Protocol for ``s3://bucket/key`` sources."""

    name: ClassVar[str] = "s3"
    compatibility: ClassVar[Compatibility] = Compatibility.LOCAL_ONLY
    capabilities: ClassVar[Capabilities] = Capabilities(read=True, write=True)

    def __init__(
        self,
        config: Config | None = None,
        client_factory: Callable[[], Any] | None = None,
        transfer_manager_factory: Callable[[Any], Any] | None = None,
        sleep: Callable[[float], object] | None = None,
    ) -> None:
        """Initialize the protocol.

        Args:
            config: Settings, ``s3`` section used
            client_factory: Builds the S3 client instead of boto3
            transfer_manager_factory: Builds the transfer manager from a client
            sleep: Called with the backoff delay between upload attempts
        """
        super().__init__(config)
        self._client: OnceCell[Any] = OnceCell(client_factory or self._create_client)
        tm_factory = transfer_manager_factory or self._create_transfer_manager
        self._transfer_manager: OnceCell[Any] = OnceCell(lambda: tm_factory(self.client))
        self._sleep = sleep

    @property
    def settings(self) -> S3Config:
        return self.config.s3

    @property
    def client(self) -> Any:
        return self._client.get()

    @property
    def transfer_manager(self) -> Any:
        return self._transfer_manager.get()

    def _create_client(self) -> Any:
        logger.debug("Creating S3 client", context={"region": self.settings.region})
        return boto3.client(
            "s3",
            aws_access_key_id=self.settings.access_key,
            aws_secret_access_key=self.settings.secret_key,
            region_name=self.settings.region,
            endpoint_url=self.settings.endpoint_url,
        )

    def _create_transfer_manager(self, client: Any) -> Any:
        transfer_config = TransferConfig(
            multipart_threshold=self.settings.multipart_threshold,
            multipart_chunksize=self.settings.multipart_chunksize,
        )
        return create_transfer_manager(client, transfer_config)

    def _get_object(self, data_file: "DataFile") -> dict[str, Any]:
        target = parse_s3_source(data_file.source)
        try:
            return self.client.get_object(Bucket=target.bucket, Key=target.key)
        except ClientError as e:
            if _is_not_found(e):
                raise DataNotFoundError(f"File not found: {data_file}") from e
            raise StorageIOError(f"Cannot fetch {data_file}: {e}") from e
        except BotoCoreError as e:
            raise StorageIOError(f"Cannot fetch {data_file}: {e}") from e

    def _get_data(self, data_file: "DataFile") -> BinaryIO:
        return self._get_object(data_file)["Body"]

    def _put_data(self, data_file: "DataFile", metadata: DataFileMetadata | None) -> BinaryIO:
        parse_s3_source(data_file.source)
        try:
            return S3OutputStream(self, data_file, metadata, self.config.temp_dir)
        except OSError as e:
            raise StorageIOError(f"Cannot create temporary file for {data_file}: {e}") from e

    def exists(self, data_file: "DataFile", follow_link: bool = True) -> bool:
        target = parse_s3_source(data_file.source)
        try:
            response = self.client.get_object(Bucket=target.bucket, Key=target.key)
        except (BotoCoreError, ClientError):
            return False
        response["Body"].close()
        return True

    def get_metadata(self, data_file: "DataFile") -> DataFileMetadata:
        response = self._get_object(data_file)
        response["Body"].close()

        last_modified = response.get("LastModified")
        etag = response.get("ETag")
        return DataFileMetadata(
            content_length=response.get("ContentLength", UNKNOWN),
            content_type=response.get("ContentType"),
            content_encoding=response.get("ContentEncoding"),
            content_md5=etag.strip('"') if etag else None,
            last_modified=(
                int(last_modified.timestamp() * 1000) if last_modified is not None else UNKNOWN
            ),
            data_format=get_format_registry().from_filename(data_file.name),
        )

    def upload(
        self,
        path: Path,
        data_file: "DataFile",
        metadata: DataFileMetadata | None = None,
    ) -> UploadTask:
        """Prepare the upload of a local file to ``data_file``.

        The returned task does nothing until it is run or awaited.
        """
        target = parse_s3_source(data_file.source)
        extra_args: dict[str, str] = {}
        if metadata is not None:
            if metadata.content_type:
                extra_args["ContentType"] = metadata.content_type
            if metadata.content_encoding:
                extra_args["ContentEncoding"] = metadata.content_encoding

        logger.info(
            "Uploading",
            context={
                "source": str(path),
                "destination": target.uri,
                "content_length": metadata.content_length if metadata else UNKNOWN,
            },
        )
        return UploadTask(
            self.transfer_manager,
            path,
            target,
            extra_args,
            self.settings,
            sleep=self._sleep,
        )

    def copy(self, src: "DataFile", dest: "DataFile") -> None:
        """Copy ``src`` to S3, uploading local files without a temporary copy."""
        self._check(Operation.WRITE)
        path = src.to_path()
        if path is None or not os.path.isfile(path):
            super().copy(src, dest)
            return

        metadata = DataFileMetadata.propagate(src.metadata())
        self.upload(Path(path), dest, metadata).run()
