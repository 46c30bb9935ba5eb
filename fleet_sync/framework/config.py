"""
Configuration management for the synchronization layer.

Provides typed configuration classes with environment variable
injection and validation.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from ..utils.errors import ConfigurationError


DEFAULT_TABLE_DEPENDENCIES = "tasks=team_members,vehicles"


def parse_dependencies(raw: str) -> Dict[str, List[str]]:
    """
    Parse ``table=key1,key2;table2=key3`` into a dependency mapping.

    Raises:
        ConfigurationError: If an entry has no ``=`` separator.
    """
    mapping: Dict[str, List[str]] = {}
    for entry in (raw or "").split(";"):
        entry = entry.strip()
        if not entry:
            continue
        if "=" not in entry:
            raise ConfigurationError(
                f"Invalid dependency entry: {entry}",
                config_key="FLEET_SYNC_TABLE_DEPENDENCIES",
                config_value=raw,
            )
        table, keys = entry.split("=", 1)
        mapping.setdefault(table.strip(), []).extend(
            key.strip() for key in keys.split(",") if key.strip()
        )
    return mapping


@dataclass
class BackendConfig:
    """Backend database configuration."""
    postgres_dsn: str = field(default_factory=lambda: os.getenv("FLEET_SYNC_POSTGRES_DSN", "postgresql://localhost:5432/fleet"))
    pool_min_size: int = field(default_factory=lambda: int(os.getenv("FLEET_SYNC_POOL_MIN", "1")))
    pool_max_size: int = field(default_factory=lambda: int(os.getenv("FLEET_SYNC_POOL_MAX", "10")))
    timeout: float = field(default_factory=lambda: float(os.getenv("FLEET_SYNC_QUERY_TIMEOUT", "30")))
    schema: str = field(default_factory=lambda: os.getenv("FLEET_SYNC_SCHEMA", "public"))


@dataclass
class RealtimeConfig:
    """Realtime change-notification configuration."""
    enabled: bool = field(default_factory=lambda: os.getenv("FLEET_SYNC_REALTIME_ENABLED", "true").lower() == "true")
    debounce_ms: int = field(default_factory=lambda: int(os.getenv("FLEET_SYNC_DEBOUNCE_MS", "150")))
    channel_prefix: str = field(default_factory=lambda: os.getenv("FLEET_SYNC_CHANNEL_PREFIX", "table_changes_"))
    max_resubscribe_attempts: int = field(default_factory=lambda: int(os.getenv("FLEET_SYNC_RESUBSCRIBE_ATTEMPTS", "3")))
    resubscribe_backoff_seconds: float = field(default_factory=lambda: float(os.getenv("FLEET_SYNC_RESUBSCRIBE_BACKOFF", "1.0")))

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0


@dataclass
class CacheConfig:
    """Cache revalidation configuration."""
    revalidation_interval_seconds: float = field(default_factory=lambda: float(os.getenv("FLEET_SYNC_REVALIDATION_INTERVAL", "30")))
    default_id_field: str = field(default_factory=lambda: os.getenv("FLEET_SYNC_ID_FIELD", "id"))


@dataclass
class ObservabilityConfig:
    """Observability configuration."""
    log_level: str = field(default_factory=lambda: os.getenv("FLEET_SYNC_LOG_LEVEL", "info"))
    log_format: str = field(default_factory=lambda: os.getenv("FLEET_SYNC_LOG_FORMAT", "json"))
    metrics_enabled: bool = field(default_factory=lambda: os.getenv("FLEET_SYNC_METRICS_ENABLED", "true").lower() == "true")


@dataclass
class SyncConfig:
    """Top-level synchronization configuration."""
    service_name: str = field(default_factory=lambda: os.getenv("FLEET_SYNC_SERVICE_NAME", "fleet-dashboard"))
    environment: str = field(default_factory=lambda: os.getenv("FLEET_SYNC_ENV", "local"))

    backend: BackendConfig = field(default_factory=BackendConfig)
    realtime: RealtimeConfig = field(default_factory=RealtimeConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    # Cross-table invalidation edges
    dependency_file: Optional[str] = field(default_factory=lambda: os.getenv("FLEET_SYNC_DEPENDENCY_FILE"))
    table_dependencies: Dict[str, List[str]] = field(
        default_factory=lambda: parse_dependencies(
            os.getenv("FLEET_SYNC_TABLE_DEPENDENCIES", DEFAULT_TABLE_DEPENDENCIES)
        )
    )

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.service_name:
            raise ConfigurationError("service_name is required", config_key="service_name")

        if self.environment not in ["local", "dev", "staging", "prod"]:
            raise ConfigurationError(
                f"Invalid environment: {self.environment}",
                config_key="environment",
                config_value=self.environment,
            )

        if self.realtime.debounce_ms < 0:
            raise ConfigurationError(
                "debounce_ms must be non-negative",
                config_key="debounce_ms",
                config_value=self.realtime.debounce_ms,
            )

        if self.cache.revalidation_interval_seconds <= 0:
            raise ConfigurationError(
                "revalidation_interval_seconds must be positive",
                config_key="revalidation_interval_seconds",
                config_value=self.cache.revalidation_interval_seconds,
            )

    @classmethod
    def from_env(cls, service_name: Optional[str] = None) -> "SyncConfig":
        """Create configuration from environment variables."""
        if service_name:
            return cls(service_name=service_name)
        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            "service_name": self.service_name,
            "environment": self.environment,
            "backend": {
                "pool_min_size": self.backend.pool_min_size,
                "pool_max_size": self.backend.pool_max_size,
                "timeout": self.backend.timeout,
                "schema": self.backend.schema,
            },
            "realtime": {
                "enabled": self.realtime.enabled,
                "debounce_ms": self.realtime.debounce_ms,
                "channel_prefix": self.realtime.channel_prefix,
                "max_resubscribe_attempts": self.realtime.max_resubscribe_attempts,
                "resubscribe_backoff_seconds": self.realtime.resubscribe_backoff_seconds,
            },
            "cache": {
                "revalidation_interval_seconds": self.cache.revalidation_interval_seconds,
                "default_id_field": self.cache.default_id_field,
            },
            "observability": {
                "log_level": self.observability.log_level,
                "log_format": self.observability.log_format,
                "metrics_enabled": self.observability.metrics_enabled,
            },
            "dependency_file": self.dependency_file,
            "table_dependencies": {table: list(keys) for table, keys in self.table_dependencies.items()},
        }
