"""Tests for the protocol registry and plugin discovery."""

import threading
from unittest.mock import MagicMock, patch

import pytest

from genostore.backends.hadoop import HDFSDataProtocol
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
from genostore.config import Config, HadoopConfig
from genostore.exceptions import ConfigError, DeprecatedProtocolError, UnknownProtocolError
from genostore.plugins import PROTOCOL_GROUP, discover_protocols
from genostore.protocols.data_protocol import Compatibility
from genostore.registry import (
    DataProtocolRegistry,
    ProtocolEntry,
    get_registry,
    reset_registry,
    set_registry,
)


class TestRegistryLookup:
    """Tests for name lookup."""

    def test_local_mode_protocols(self, registry) -> None:
        """Local mode drops the distributed-only protocols."""
        assert registry.list_known() == {
            "additionalannotation": AdditionalAnnotationStorageDataProtocol,
            "file": FileDataProtocol,
            "genome": GenomeStorageDataProtocol,
            "gff": GffStorageDataProtocol,
            "gtf": GtfStorageDataProtocol,
            "http": HttpDataProtocol,
            "https": HttpsDataProtocol,
            "s3": S3DataProtocol,
        }
        assert list(registry.list_known()) == sorted(registry.list_known())
        assert registry.resolve("hdfs") is None
        assert not registry.is_known("webhdfs")

    def test_distributed_mode_protocols(self) -> None:
        """Distributed mode drops the local-only protocols."""
        config = Config(execution_mode="distributed", hadoop=HadoopConfig())
        registry = DataProtocolRegistry(config, discover=False)

        assert registry.is_known("hdfs")
        assert registry.is_known("webhdfs")
        assert not registry.is_known("s3")
        assert registry.is_known("file")

    def test_names_are_normalized(self, registry) -> None:
        """Lookups ignore case and surrounding spaces."""
        assert isinstance(registry.resolve("  S3 "), S3DataProtocol)
        assert registry.is_known("FILE")
        assert not registry.is_known(None)
        assert registry.resolve(None) is None

    def test_single_instance_per_name(self, registry) -> None:
        """The same instance is returned for every lookup."""
        assert registry.resolve("s3") is registry.resolve("S3")

    def test_concurrent_resolve(self) -> None:
        """Concurrent first lookups create one instance."""
        created = []

        def factory(config: Config) -> FileDataProtocol:
            created.append(1)
            return FileDataProtocol(config)

        registry = DataProtocolRegistry(
            entries=[ProtocolEntry("local2", factory, FileDataProtocol)],
            discover=False,
        )
        results: list[object] = []
        threads = [
            threading.Thread(target=lambda: results.append(registry.resolve("local2")))
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(created) == 1
        assert all(r is results[0] for r in results)

    def test_default_always_present(self) -> None:
        """The file protocol is available with an empty table."""
        registry = DataProtocolRegistry(entries=[], discover=False)

        assert registry.list_known() == {"file": FileDataProtocol}
        assert isinstance(registry.default, FileDataProtocol)
        assert registry.resolve("file") is registry.default

    def test_resolve_source(self, registry) -> None:
        """Sources are routed by scheme."""
        assert registry.resolve_source("/data/x.fq") is registry.default
        assert isinstance(registry.resolve_source("s3://b/k"), S3DataProtocol)
        with pytest.raises(UnknownProtocolError) as exc_info:
            registry.resolve_source("Gopher://host/x")
        assert exc_info.value.protocol == "gopher"


class TestRegistryEntries:
    """Tests for entry sources."""

    def test_register_incompatible_entry(self, registry) -> None:
        """Entries for another execution mode are skipped."""
        entry = ProtocolEntry.for_class(HDFSDataProtocol)

        assert entry.compatibility == Compatibility.DISTRIBUTED_ONLY
        assert not registry.register(entry)
        assert not registry.is_known("hdfs")

    def test_retired_protocols(self) -> None:
        """Retired protocols from the settings resolve to the stub."""
        config = Config.from_dict(
            {"retired_protocols": [{"name": "FTP", "replacement": "https"}]}
        )
        registry = DataProtocolRegistry(config, discover=False)
        protocol = registry.resolve("ftp")

        assert isinstance(protocol, RetiredDataProtocol)
        assert protocol.name == "ftp"
        assert protocol.replacement == "https"

    def test_retired_protocol_fails_on_use(self) -> None:
        """Reading through a retired protocol names the replacement."""
        config = Config.from_dict({"retired_protocols": [{"name": "ftp", "replacement": "https"}]})
        set_registry(DataProtocolRegistry(config, discover=False))

        from genostore.data_file import DataFile

        with pytest.raises(DeprecatedProtocolError, match="use the https protocol"):
            DataFile("ftp://host/genome.fa").open()

    def test_distributed_protocol_without_hadoop_settings(self) -> None:
        """Construction fails when the hadoop section is missing."""
        registry = DataProtocolRegistry(Config(execution_mode="distributed"), discover=False)

        with pytest.raises(ConfigError):
            registry.resolve("hdfs")

    def test_discovered_protocols(self) -> None:
        """Entry point protocols are merged into the table."""

        class MemoryDataProtocol(FileDataProtocol):
            name = "mem"

        with patch(
            "genostore.registry.discover_protocols",
            return_value={"mem": MemoryDataProtocol},
        ):
            registry = DataProtocolRegistry(Config())

        assert isinstance(registry.resolve("mem"), MemoryDataProtocol)


class TestProcessRegistry:
    """Tests for the process-wide accessor."""

    def test_get_registry_is_cached(self) -> None:
        """The same registry is returned until reset."""
        first = get_registry()

        assert get_registry() is first
        reset_registry()
        with patch("genostore.registry.discover_protocols", return_value={}):
            assert get_registry() is not first

    def test_set_registry(self, registry) -> None:
        """An explicit registry replaces the process one."""
        set_registry(registry)
        assert get_registry() is registry


class TestPlugins:
    """Tests for entry point discovery."""

    def test_discover_protocols(self) -> None:
        """Entry points are loaded by name."""
        ep = MagicMock()
        ep.name = "mem"
        ep.load.return_value = FileDataProtocol

        with patch("genostore.plugins.entry_points", return_value=[ep]) as mock_eps:
            protocols = discover_protocols()

        mock_eps.assert_called_once_with(group=PROTOCOL_GROUP)
        assert protocols == {"mem": FileDataProtocol}
