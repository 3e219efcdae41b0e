"""Pytest configuration and fixtures."""

import logging

import pytest

from genostore.config import Config
from genostore.observability import ROOT_LOGGER
from genostore.registry import DataProtocolRegistry, reset_registry, set_registry


@pytest.fixture
def sample_config_dict():
    """Sample configuration dictionary for testing."""
    return {
        "execution_mode": "local",
        "temp_dir": "/tmp",
        "s3": {
            "access_key": "test-access-key",
            "secret_key": "test-secret-key",
            "region": "eu-west-3",
            "retry_delay_seconds": 0,
        },
        "repositories": {
            "genome": {"path": "/data/genomes"},
            "gtf": {"path": "/data/annotations", "extensions": [".gtf", ".gtf2"]},
        },
        "storages": {"genome_desc_path": "/data/genome_desc"},
        "retired_protocols": [{"name": "ftp", "replacement": "https"}],
        "logging": {"level": "DEBUG", "format": "text"},
    }


@pytest.fixture
def config():
    """Local mode settings."""
    return Config()


@pytest.fixture
def registry(config):
    """Registry of the built-in protocols, without entry point discovery."""
    return DataProtocolRegistry(config, discover=False)


@pytest.fixture(autouse=True)
def process_registry():
    """Isolate the process registry between tests."""
    set_registry(DataProtocolRegistry(Config(), discover=False))
    yield
    reset_registry()


@pytest.fixture
def package_logger():
    """The genostore logger, restored after the test."""
    logger = logging.getLogger(ROOT_LOGGER)
    level, handlers = logger.level, list(logger.handlers)
    yield logger
    logger.setLevel(level)
    logger.handlers[:] = handlers
