"""
Configuration management for SchemaBridge.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation. HTTP binding
settings live in api/settings.py.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set SCHEMABRIDGE_CONVERSIONS_MODULE
    - Invalid configuration aborts startup before anything is served

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class StorageConfig:
    """Object store configuration.

    Attributes:
        data_dir: Directory for the SQLite database
        db_filename: SQLite database file name
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    data_dir: str = "/var/lib/schemabridge"
    db_filename: str = "objects.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            data_dir=os.getenv("DATA_DIR", "/var/lib/schemabridge"),
            db_filename=os.getenv("SCHEMABRIDGE_DB_FILENAME", "objects.db"),
            wal_mode=_env_bool("SQLITE_WAL_MODE", "true"),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class ConversionConfig:
    """Conversion engine configuration.

    Attributes:
        conversions_module: Python module that registers kinds and edges
        hop_timeout_seconds: Per-hop timeout for author functions (0 = none)
        batch_workers: Threads converting items of one batch (1 = sequential)
        max_batch_size: Largest accepted batch (0 = unlimited)
    """

    conversions_module: str | None = None
    hop_timeout_seconds: float = 0.0
    batch_workers: int = 1
    max_batch_size: int = 0

    @property
    def hop_timeout(self) -> float | None:
        return self.hop_timeout_seconds or None

    @classmethod
    def from_env(cls) -> ConversionConfig:
        """Load configuration from environment variables."""
        return cls(
            conversions_module=os.getenv("SCHEMABRIDGE_CONVERSIONS_MODULE"),
            hop_timeout_seconds=float(os.getenv("CONVERSION_HOP_TIMEOUT_SECONDS", "0")),
            batch_workers=int(os.getenv("CONVERSION_BATCH_WORKERS", "1")),
            max_batch_size=int(os.getenv("CONVERSION_MAX_BATCH_SIZE", "0")),
        )


@dataclass(frozen=True)
class MigrationConfig:
    """Migration driver configuration.

    Attributes:
        max_workers: Concurrent object conversions within one run
        max_passes: Passes over deferred (conflicting) objects before failing
        lease_ttl_seconds: Lifetime of the per-kind run lease
        auto_resume: Resume non-terminal checkpoints on startup
    """

    max_workers: int = 4
    max_passes: int = 3
    lease_ttl_seconds: int = 300
    auto_resume: bool = True

    @classmethod
    def from_env(cls) -> MigrationConfig:
        """Load configuration from environment variables."""
        return cls(
            max_workers=int(os.getenv("MIGRATION_MAX_WORKERS", "4")),
            max_passes=int(os.getenv("MIGRATION_MAX_PASSES", "3")),
            lease_ttl_seconds=int(os.getenv("MIGRATION_LEASE_TTL_SECONDS", "300")),
            auto_resume=_env_bool("MIGRATION_AUTO_RESUME", "true"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        storage: Object store configuration
        conversion: Conversion engine configuration
        migration: Migration driver configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    conversion: ConversionConfig = field(default_factory=ConversionConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            conversion=ConversionConfig.from_env(),
            migration=MigrationConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.conversion.hop_timeout_seconds < 0:
            raise ValueError("CONVERSION_HOP_TIMEOUT_SECONDS must be >= 0")
        if self.conversion.batch_workers < 1:
            raise ValueError("CONVERSION_BATCH_WORKERS must be >= 1")
        if self.conversion.max_batch_size < 0:
            raise ValueError("CONVERSION_MAX_BATCH_SIZE must be >= 0")
        if self.migration.max_workers < 1:
            raise ValueError("MIGRATION_MAX_WORKERS must be >= 1")
        if self.migration.max_passes < 1:
            raise ValueError("MIGRATION_MAX_PASSES must be >= 1")
        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        if not self.conversion.conversions_module:
            logger.warning(
                "SCHEMABRIDGE_CONVERSIONS_MODULE is not set; "
                "only kinds registered programmatically will be served"
            )
        if not os.path.exists(self.storage.data_dir):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "data_dir": self.storage.data_dir,
                "conversions_module": self.conversion.conversions_module,
                "hop_timeout_seconds": self.conversion.hop_timeout_seconds,
                "batch_workers": self.conversion.batch_workers,
                "migration_workers": self.migration.max_workers,
                "migration_max_passes": self.migration.max_passes,
                "log_level": self.observability.log_level,
            },
        )
