"""genostore exceptions."""


class StorageError(Exception):
    """Base exception for genostore."""

    pass


class ConfigError(StorageError):
    """Configuration error."""

    pass


class ExecutionModeError(StorageError):
    """Protocol used in an execution mode it does not support."""

    pass


class InvalidSourceError(StorageError, ValueError):
    """Null or malformed data file source."""

    pass


class UnknownProtocolError(InvalidSourceError):
    """No protocol is registered for the scheme of a source."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown protocol: {name}")
        self.protocol = name


class StorageIOError(StorageError, OSError):
    """I/O failure reported by a protocol."""

    pass


class DataNotFoundError(StorageIOError, FileNotFoundError):
    """Requested data does not exist."""

    pass


class RepositoryMissError(DataNotFoundError):
    """No file in a storage repository matches the requested name."""

    def __init__(self, protocol: str, name: str, extensions: list[str]) -> None:
        super().__init__(
            f"No {name} entry found in the {protocol} storage "
            f"(searched extensions: {', '.join(extensions)})"
        )
        self.protocol = protocol
        self.name = name


class UnsupportedOperationError(StorageIOError):
    """Operation disabled by the capabilities of a protocol."""

    def __init__(self, protocol: str, operation: str, message: str | None = None) -> None:
        super().__init__(
            message
            or f"The {operation}() method is not supported by the {protocol} protocol"
        )
        self.protocol = protocol
        self.operation = operation


class DeprecatedProtocolError(UnsupportedOperationError):
    """Protocol has been retired."""

    def __init__(self, protocol: str, operation: str, replacement: str | None = None) -> None:
        message = f"The {protocol} protocol is deprecated"
        if replacement:
            message += f", use the {replacement} protocol instead"
        super().__init__(protocol, operation, message)
        self.replacement = replacement


class ProtocolMismatchError(StorageIOError):
    """Both endpoints of an operation must use the same protocol."""

    pass


class TransferError(StorageIOError):
    """Network transfer failed."""

    pass


class UploadTimeoutError(TransferError):
    """Upload did not complete before the deadline."""

    pass


class UploadCancelledError(TransferError):
    """Upload was cancelled by the caller."""

    pass
