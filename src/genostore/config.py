"""Configuration loading with environment variable substitution."""

import json
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from genostore.observability import configure_logging

ENV_VAR_PATTERN = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


def substitute_env_vars(value: Any) -> Any:
    """Recursively substitute ${VAR_NAME} patterns with environment variables."""
    if isinstance(value, str):
        def replace(match: re.Match[str]) -> str:
            var_name = match.group(1)
            env_value = os.environ.get(var_name)
            if env_value is None:
                raise ValueError(f"Environment variable {var_name} is not set")
            return env_value

        return ENV_VAR_PATTERN.sub(replace, value)
    elif isinstance(value, dict):
        return {k: substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [substitute_env_vars(v) for v in value]
    return value


class ExecutionMode(str, Enum):
    """Context the workflow engine runs in."""

    LOCAL = "local"
    DISTRIBUTED = "distributed"


class S3Config(BaseModel):
    """Object storage settings."""

    access_key: str | None = None
    secret_key: str | None = None
    region: str | None = None
    endpoint_url: str | None = None
    upload_attempts: int = 3
    retry_delay_seconds: float = 10.0
    poll_interval_seconds: float = 0.5
    # 1 byte forces every non-empty upload through the multipart path
    multipart_threshold: int = 1
    multipart_chunksize: int = 8 * 1024 * 1024


class HadoopConfig(BaseModel):
    """Distributed filesystem client settings."""

    host: str = "default"
    port: int = 8020
    user: str | None = None
    kerb_ticket: str | None = None
    webhdfs_port: int = 9870
    webhdfs_use_https: bool = False
    extra: dict[str, Any] = Field(default_factory=dict)


class HttpConfig(BaseModel):
    """HTTP protocol settings."""

    timeout_seconds: float = 30.0
    headers: dict[str, str] = Field(default_factory=dict)


class RepositoryConfig(BaseModel):
    """A storage repository of pre-staged reference files."""

    path: str | None = None
    extensions: list[str] = Field(default_factory=list)


class RepositoriesConfig(BaseModel):
    """Storage repositories for reference data."""

    genome: RepositoryConfig = Field(
        default_factory=lambda: RepositoryConfig(
            extensions=[".fasta", ".fa", ".fna", ".fas"]
        )
    )
    gff: RepositoryConfig = Field(
        default_factory=lambda: RepositoryConfig(extensions=[".gff", ".gff3"])
    )
    gtf: RepositoryConfig = Field(
        default_factory=lambda: RepositoryConfig(extensions=[".gtf"])
    )
    additional_annotation: RepositoryConfig = Field(
        default_factory=lambda: RepositoryConfig(extensions=[".tsv"])
    )


class StoragesConfig(BaseModel):
    """Directories of the genome description and mapper index caches."""

    genome_desc_path: str | None = None
    genome_index_path: str | None = None


class RetiredProtocolConfig(BaseModel):
    """A protocol name kept only to report its retirement."""

    name: str
    replacement: str | None = None


class LoggingConfig(BaseModel):
    """Logging settings."""

    level: str = "INFO"
    format: str = "json"  # json | text


class Config(BaseModel):
    """Main configuration for genostore."""

    execution_mode: ExecutionMode = ExecutionMode.LOCAL
    temp_dir: str | None = None
    s3: S3Config = Field(default_factory=S3Config)
    hadoop: HadoopConfig | None = None
    http: HttpConfig = Field(default_factory=HttpConfig)
    repositories: RepositoriesConfig = Field(default_factory=RepositoriesConfig)
    storages: StoragesConfig = Field(default_factory=StoragesConfig)
    retired_protocols: list[RetiredProtocolConfig] = Field(default_factory=list)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def distributed(self) -> bool:
        """True when running in distributed execution mode."""
        return self.execution_mode == ExecutionMode.DISTRIBUTED

    def apply_logging(self) -> None:
        """Configure the genostore logger from the logging section."""
        configure_logging(self.logging.level, self.logging.format)

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from a YAML or JSON file."""
        path = Path(path)
        with path.open() as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)

        # Substitute environment variables
        data = substitute_env_vars(data or {})
        return cls.model_validate(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Config":
        """Load configuration from a dictionary."""
        data = substitute_env_vars(data)
        return cls.model_validate(data)
