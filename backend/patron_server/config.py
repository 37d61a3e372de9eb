"""
Configuration management for the Patron indexer.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - PACKAGE_ID must be set before the synchronizer can run
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep from_env() and the dataclass defaults in sync
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

SUI_RPC_URLS = {
    "mainnet": "https://fullnode.mainnet.sui.io",
    "testnet": "https://fullnode.testnet.sui.io",
    "devnet": "https://fullnode.devnet.sui.io",
}


class StoreBackend(Enum):
    """Supported materialized store backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


@dataclass(frozen=True)
class LedgerConfig:
    """Ledger (Sui full node) connection configuration.

    Attributes:
        network: Network name used to pick the default RPC URL
        rpc_url: Explicit JSON-RPC URL (overrides network)
        package_id: Published package whose events are indexed
        timeout_seconds: Per-request timeout
    """

    network: str = "testnet"
    rpc_url: str | None = None
    package_id: str | None = None
    timeout_seconds: float = 15.0

    @property
    def endpoint(self) -> str:
        """Resolved JSON-RPC endpoint."""
        if self.rpc_url:
            return self.rpc_url
        return SUI_RPC_URLS.get(self.network, SUI_RPC_URLS["testnet"])

    @classmethod
    def from_env(cls) -> LedgerConfig:
        """Load configuration from environment variables."""
        return cls(
            network=os.getenv("SUI_NETWORK", "testnet").lower(),
            rpc_url=os.getenv("SUI_RPC_URL") or None,
            package_id=os.getenv("PACKAGE_ID") or None,
            timeout_seconds=float(os.getenv("LEDGER_TIMEOUT_SECONDS", "15")),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Materialized store configuration.

    Attributes:
        backend: sqlite (durable) or memory (process-local)
        data_dir: Directory for the SQLite database file
        db_name: SQLite database file name
        wal_mode: SQLite WAL journal mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    backend: StoreBackend = StoreBackend.SQLITE
    data_dir: str = "/var/lib/patron"
    db_name: str = "indexer.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("STORE_BACKEND", "sqlite").lower()
        try:
            backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(f"Invalid STORE_BACKEND '{backend_str}'. Must be one of: sqlite, memory")

        return cls(
            backend=backend,
            data_dir=os.getenv("DATA_DIR", "/var/lib/patron"),
            db_name=os.getenv("SQLITE_DB_NAME", "indexer.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class SyncConfig:
    """Synchronizer configuration.

    Attributes:
        page_size: Events requested per queryEvents call
        max_pages_per_run: Pages fetched per event type in one sync() call
        secret: Bearer token required by GET /events (None = open)
    """

    page_size: int = 50
    max_pages_per_run: int = 1
    secret: str | None = None

    @classmethod
    def from_env(cls) -> SyncConfig:
        """Load configuration from environment variables."""
        return cls(
            page_size=int(os.getenv("SYNC_PAGE_SIZE", "50")),
            max_pages_per_run=int(os.getenv("SYNC_MAX_PAGES", "1")),
            secret=os.getenv("SYNC_SECRET") or None,
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration."""

    host: str = "0.0.0.0"
    port: int = 8081
    cors_origins: tuple[str, ...] = ("*",)

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8081")),
            cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
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
    """Complete indexer configuration.

    Attributes:
        ledger: Ledger connection configuration
        storage: Store backend configuration
        sync: Synchronizer configuration
        http: HTTP server configuration
        observability: Logging configuration
    """

    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If configuration is missing or invalid.
        """
        config = cls(
            ledger=LedgerConfig.from_env(),
            storage=StorageConfig.from_env(),
            sync=SyncConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.ledger.network not in SUI_RPC_URLS and not self.ledger.rpc_url:
            raise ValueError(
                f"Unknown SUI_NETWORK '{self.ledger.network}' and no SUI_RPC_URL given"
            )
        if not self.ledger.package_id:
            raise ValueError("PACKAGE_ID is required for the indexer")
        if not 1 <= self.sync.page_size <= 1000:
            raise ValueError("SYNC_PAGE_SIZE must be between 1 and 1000")
        if self.sync.max_pages_per_run < 1:
            raise ValueError("SYNC_MAX_PAGES must be at least 1")

        if self.storage.backend == StoreBackend.SQLITE and not os.path.exists(
            self.storage.data_dir
        ):
            logger.warning(
                f"Data directory does not exist: {self.storage.data_dir}. "
                "It will be created on first write."
            )
        if self.storage.backend == StoreBackend.MEMORY:
            logger.warning("Using in-memory store; indexed state is lost on restart")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Indexer configuration loaded",
            extra={
                "ledger_endpoint": self.ledger.endpoint,
                "package_id": self.ledger.package_id,
                "store_backend": self.storage.backend.value,
                "data_dir": self.storage.data_dir,
                "page_size": self.sync.page_size,
                "max_pages_per_run": self.sync.max_pages_per_run,
                "sync_secret_set": self.sync.secret is not None,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "log_level": self.observability.log_level,
            },
        )
