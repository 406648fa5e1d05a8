"""Configuration management for craftpack-tools."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, Field, field_validator

from craftpack_tools.core.types import Environment

logger = structlog.get_logger()

DEFAULT_CONFIG_FILE = Path.home() / ".config" / "craftpack-tools" / "config.json"


class CatalogConfig(BaseModel):
    """Remote catalog (Modrinth v2 API) configuration."""

    api_url: str = Field(
        default="https://api.modrinth.com/v2",
        description="Catalog API base URL"
    )
    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    max_retries: int = Field(default=3, description="Maximum attempts per download")
    base_backoff: float = Field(default=0.5, description="Base backoff delay in seconds")
    user_agent: str = Field(
        default="craftpack-tools/0.1.0",
        description="User-Agent sent with every request"
    )
    enabled: bool = Field(default=True, description="Whether remote lookups are made")

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        """Validate API URL."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid API URL: {v}")
        return v.rstrip("/")

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        """Validate timeout value."""
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_max_retries(cls, v: int) -> int:
        """Validate max retries value."""
        if v < 1:
            raise ValueError("Max retries must be at least 1")
        return v


class ScanConfig(BaseModel):
    """Scanning and download concurrency settings."""

    concurrent_downloads: int = Field(
        default=8,
        description="Upper bound on concurrent hashing/download tasks"
    )
    environment: Environment = Field(
        default=Environment.CLIENT,
        description="Side used to filter manifest files"
    )

    @field_validator("concurrent_downloads")
    @classmethod
    def validate_concurrent_downloads(cls, v: int) -> int:
        """Validate concurrency limit."""
        if v < 1:
            raise ValueError("Concurrent downloads must be at least 1")
        return v


class ExportConfig(BaseModel):
    """Package export policy."""

    include_disabled: bool = Field(
        default=False,
        description="Bundle resources carrying the disabled suffix"
    )
    include_saves: bool = Field(
        default=True,
        description="Bundle the saves directory into overrides"
    )
    excluded_directories: list[str] = Field(
        default=["logs", "crash-reports", ".craftpack"],
        description="Instance directories never copied into a package"
    )


class AppConfig(BaseModel):
    """Application configuration."""

    # Directory settings
    config_dir: Path = Field(
        default=Path.home() / ".config" / "craftpack-tools",
        description="Configuration directory"
    )
    data_dir: Path = Field(
        default=Path.home() / ".local" / "share" / "craftpack-tools",
        description="Data directory (target registry, installation index)"
    )
    cache_dir: Path = Field(
        default=Path.home() / ".cache" / "craftpack",
        description="Metadata cache directory"
    )
    instances_dir: Path = Field(
        default=Path.home() / ".local" / "share" / "craftpack-tools" / "instances",
        description="Root directory of game instances"
    )
    temp_dir: Path | None = Field(
        default=None,
        description="Scratch directory for staging, defaults to the system temp dir"
    )

    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)

    # Output settings
    output_format: str = Field(
        default="rich",
        description="Output format (rich, json, plain)"
    )
    log_level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    def model_post_init(self, __context) -> None:
        """Ensure directories exist."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @property
    def cache_db_path(self) -> Path:
        """SQLite file backing the metadata cache."""
        return self.cache_dir / "metadata.db"

    @property
    def index_path(self) -> Path:
        """JSON file backing the installation index."""
        return self.data_dir / "installation_index.json"

    @property
    def targets_path(self) -> Path:
        """JSON file backing the target registry."""
        return self.data_dir / "targets.json"

    @classmethod
    def load(cls, config_file: Path | None = None) -> AppConfig:
        """Load configuration from file.

        Args:
            config_file: Path to config file, uses default if None

        Returns:
            Application configuration
        """
        if config_file is None:
            config_file = DEFAULT_CONFIG_FILE

        if config_file.exists():
            with open(config_file) as f:
                data = json.load(f)
                return cls(**data)

        return cls()

    def save(self, config_file: Path | None = None) -> None:
        """Save configuration to file.

        Args:
            config_file: Path to config file, uses default if None
        """
        if config_file is None:
            config_file = self.config_dir / "config.json"

        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2, default=str)

        logger.info("config_saved", path=str(config_file))

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: str) -> str:
        """Validate output format."""
        valid_formats = {"rich", "json", "plain"}
        if v not in valid_formats:
            raise ValueError(f"Invalid output format: {v}. Valid formats: {valid_formats}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Valid levels: {valid_levels}")
        return v
