"""Infrastructure layer shared by all services.

Depends only on ``wotgraph.models`` and is depended upon by
``wotgraph.services``.

Attributes:
    Pool: asyncpg pool with retry/backoff and JSON codecs.
    Database: Query facade with default timeouts and bulk node staging.
        Services use it, never ``Pool`` directly.
    BaseService: Lifecycle base class (run / run_forever / shutdown,
        YAML factories, metrics helpers).
    Logger: Structured key=value / JSON logger.
    MetricsServer: Prometheus scrape endpoint.
"""

from .base_service import BaseService, BaseServiceConfig, ConfigT
from .database import Database, DatabaseFacadeConfig, DatabaseTimeoutsConfig
from .exceptions import (
    BuildConflict,
    BuildError,
    BuildFailure,
    ConfigurationError,
    DuplicateSeeder,
    FetchError,
    FetchFailure,
    FetchTimeout,
    InvalidInput,
    RegistryError,
    SeederNotFound,
    WotGraphError,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    BUILD_DURATION_SECONDS,
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)
from .pool import DatabaseConfig, Pool, PoolConfig
from .yaml import load_yaml


__all__ = [
    "BUILD_DURATION_SECONDS",
    "CYCLE_DURATION_SECONDS",
    "SERVICE_COUNTER",
    "SERVICE_GAUGE",
    "SERVICE_INFO",
    "BaseService",
    "BaseServiceConfig",
    "BuildConflict",
    "BuildError",
    "BuildFailure",
    "ConfigT",
    "ConfigurationError",
    "Database",
    "DatabaseConfig",
    "DatabaseFacadeConfig",
    "DatabaseTimeoutsConfig",
    "DuplicateSeeder",
    "FetchError",
    "FetchFailure",
    "FetchTimeout",
    "InvalidInput",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "Pool",
    "PoolConfig",
    "RegistryError",
    "SeederNotFound",
    "StructuredFormatter",
    "WotGraphError",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
