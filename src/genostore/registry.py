"""Registry mapping scheme names to protocol instances."""

import threading
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Iterable

from genostore.backends.hadoop import HDFSDataProtocol, WebHDFSDataProtocol
from genostore.backends.local import FileDataProtocol
from genostore.backends.retired import RetiredDataProtocol
from genostore.backends.s3 import S3DataProtocol
from genostore.backends.storage import (
    AdditionalAnnotationStorageDataProtocol,
    GenomeStorageDataProtocol,
    GffStorageDataProtocol,
    GtfStorageDataProtocol,
)
from genostore.backends.url import HttpDataProtocol, HttpsDataProtocol
from genostore.caching import OnceCell
from genostore.config import Config
from genostore.data_file import find_protocol_prefix
from genostore.exceptions import UnknownProtocolError
from genostore.observability import get_logger
from genostore.plugins import discover_protocols
from genostore.protocols.data_protocol import Compatibility, DataProtocol

logger = get_logger(__name__)

DEFAULT_PROTOCOL = FileDataProtocol.name


@dataclass(frozen=True)
class ProtocolEntry:
    """How to build the protocol registered under a name."""

    name: str
    factory: Callable[[Config], DataProtocol]
    implementation: type
    compatibility: Compatibility = Compatibility.ANY

    @classmethod
    def for_class(cls, implementation: Any, name: str | None = None) -> "ProtocolEntry":
        """Build an entry calling ``implementation(config)``."""
        return cls(
            name=name or implementation.name,
            factory=implementation,
            implementation=implementation,
            compatibility=getattr(implementation, "compatibility", Compatibility.ANY),
        )


BUILTIN_PROTOCOLS = (
    FileDataProtocol,
    HDFSDataProtocol,
    WebHDFSDataProtocol,
    S3DataProtocol,
    HttpDataProtocol,
    HttpsDataProtocol,
    GenomeStorageDataProtocol,
    GffStorageDataProtocol,
    GtfStorageDataProtocol,
    AdditionalAnnotationStorageDataProtocol,
)


def builtin_entries() -> list[ProtocolEntry]:
    return [ProtocolEntry.for_class(cls) for cls in BUILTIN_PROTOCOLS]


def normalize_name(name: str) -> str:
    return name.strip().lower()


class DataProtocolRegistry:
    """Name to protocol lookup for one execution mode.

    Entries come from the built-in protocols, the ``genostore.protocols``
    entry points and the retired protocols of the settings, later sources
    overriding earlier ones. Entries not compatible with the execution
    mode are dropped. The ``file`` protocol is always present.

    Protocols are created on first lookup, once per name.

    Example:
        registry = DataProtocolRegistry(Config(execution_mode="local"))
        registry.resolve("S3 ")  # S3DataProtocol
        registry.resolve("hdfs")  # None in local mode
    """

    def __init__(
        self,
        config: Config | None = None,
        entries: Iterable[ProtocolEntry] | None = None,
        discover: bool = True,
    ) -> None:
        """Initialize the registry.

        Args:
            config: Settings passed to every protocol
            entries: Entries to use instead of the built-in protocols
            discover: Also load protocols declared as entry points
        """
        self.config = config or Config()
        self._lock = threading.Lock()
        self._instances: dict[str, DataProtocol] = {}
        self._entries: dict[str, ProtocolEntry] = {}

        candidates = builtin_entries() if entries is None else list(entries)
        if discover:
            candidates.extend(
                ProtocolEntry.for_class(cls, name) for name, cls in discover_protocols().items()
            )
        candidates.extend(
            ProtocolEntry(
                name=retired.name,
                factory=partial(
                    RetiredDataProtocol,
                    name=normalize_name(retired.name),
                    replacement=retired.replacement,
                ),
                implementation=RetiredDataProtocol,
            )
            for retired in self.config.retired_protocols
        )

        for entry in candidates:
            self.register(entry)

        self._entries[DEFAULT_PROTOCOL] = ProtocolEntry.for_class(FileDataProtocol)

    def _is_compatible(self, compatibility: Compatibility) -> bool:
        if compatibility == Compatibility.ANY:
            return True
        if self.config.distributed:
            return compatibility == Compatibility.DISTRIBUTED_ONLY
        return compatibility == Compatibility.LOCAL_ONLY

    def register(self, entry: ProtocolEntry) -> bool:
        """Add an entry, replacing any previous one with the same name.

        Returns:
            False if the entry was skipped for the current execution mode
        """
        name = normalize_name(entry.name)
        if not self._is_compatible(entry.compatibility):
            logger.debug(
                "Protocol skipped for execution mode",
                context={"protocol": name, "mode": self.config.execution_mode.value},
            )
            return False

        with self._lock:
            if name in self._entries:
                logger.debug("Protocol overridden", context={"protocol": name})
            self._entries[name] = entry
            self._instances.pop(name, None)
        return True

    def resolve(self, name: str | None) -> DataProtocol | None:
        """Get the protocol registered under ``name``, or None."""
        if name is None:
            return None

        name = normalize_name(name)
        entry = self._entries.get(name)
        if entry is None:
            return None
        return self._instance(name, entry)

    def _instance(self, name: str, entry: ProtocolEntry) -> DataProtocol:
        instance = self._instances.get(name)
        if instance is not None:
            return instance

        with self._lock:
            # Double-check after acquiring lock
            instance = self._instances.get(name)
            if instance is None:
                instance = entry.factory(self.config)
                self._instances[name] = instance
        return instance

    def is_known(self, name: str | None) -> bool:
        return name is not None and normalize_name(name) in self._entries

    def list_known(self) -> dict[str, type]:
        """Implementation classes of the available protocols, by sorted name."""
        return {name: entry.implementation for name, entry in sorted(self._entries.items())}

    @property
    def default(self) -> DataProtocol:
        """Protocol used for sources without a scheme."""
        return self._instance(DEFAULT_PROTOCOL, self._entries[DEFAULT_PROTOCOL])

    def resolve_source(self, source: str) -> DataProtocol:
        """Get the protocol handling a source string.

        Raises:
            UnknownProtocolError: If the scheme has no registered protocol
        """
        prefix = find_protocol_prefix(source)
        if prefix is None:
            return self.default

        protocol = self.resolve(prefix)
        if protocol is None:
            raise UnknownProtocolError(normalize_name(prefix))
        return protocol


_registry: OnceCell[DataProtocolRegistry] = OnceCell(DataProtocolRegistry)


def get_registry() -> DataProtocolRegistry:
    """Get the process registry, created with default settings on first use."""
    return _registry.get()


def set_registry(registry: DataProtocolRegistry) -> None:
    """Replace the process registry."""
    _registry.set(registry)


def reset_registry() -> None:
    """Forget the process registry; the next access builds a new one."""
    _registry.reset()
