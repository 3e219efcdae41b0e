"""genostore - Storage protocols for genomics workflows."""

from genostore.caching import OnceCell
from genostore.compression import CompressionType
from genostore.config import Config, ExecutionMode
from genostore.data_file import DataFile
from genostore.formats import DataFormat, get_format_registry
from genostore.observability import (
    LogLevel,
    StructuredLogger,
    TaskContext,
    Timer,
    configure_logging,
    emit_counter,
    emit_metric,
    emit_timer,
    get_logger,
    register_metric_callback,
)
from genostore.protocols import (
    Capabilities,
    Compatibility,
    DataFileMetadata,
    DataProtocol,
    Operation,
)
from genostore.registry import (
    DataProtocolRegistry,
    ProtocolEntry,
    get_registry,
    reset_registry,
    set_registry,
)
from genostore.storages import (
    GenomeDescription,
    GenomeDescStorage,
    GenomeIndexStorage,
    MapperInfo,
    open_genome_desc_storage,
    open_genome_index_storage,
)

__version__ = "0.1.0"
__all__ = [
    # Core
    "Config",
    "DataFile",
    "ExecutionMode",
    # Protocols
    "Capabilities",
    "Compatibility",
    "DataFileMetadata",
    "DataProtocol",
    "DataProtocolRegistry",
    "Operation",
    "ProtocolEntry",
    "get_registry",
    "reset_registry",
    "set_registry",
    # Storages
    "GenomeDescStorage",
    "GenomeDescription",
    "GenomeIndexStorage",
    "MapperInfo",
    "open_genome_desc_storage",
    "open_genome_index_storage",
    # Formats
    "CompressionType",
    "DataFormat",
    "get_format_registry",
    # Caching
    "OnceCell",
    # Observability
    "LogLevel",
    "StructuredLogger",
    "TaskContext",
    "Timer",
    "configure_logging",
    "emit_counter",
    "emit_metric",
    "emit_timer",
    "get_logger",
    "register_metric_callback",
]
