"""
Configuration management for RefDB Server.

All configuration is done via environment variables - no config files.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST point DATABASE_PATH at persistent storage
    - Validation happens once, at startup

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


class HandleBackend(Enum):
    """Supported collaboration-service backends."""

    WEBSOCKET = "websocket"
    MEMORY = "memory"


@dataclass(frozen=True)
class StorageConfig:
    """Backing store configuration.

    Attributes:
        database_path: Path of the SQLite database file
        max_connections: Maximum concurrent connections (pool size)
        busy_timeout_ms: SQLite busy timeout in milliseconds
        wal_mode: SQLite WAL journal mode enabled
    """

    database_path: str = "refdb.sqlite3"
    max_connections: int = 10
    busy_timeout_ms: int = 5000
    wal_mode: bool = True

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            database_path=os.getenv("DATABASE_PATH", "refdb.sqlite3"),
            max_connections=int(os.getenv("DB_MAX_CONNECTIONS", "10")),
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
        )


@dataclass(frozen=True)
class HandleServiceConfig:
    """Collaboration service client configuration.

    Attributes:
        backend: Which HandleService implementation to use
        url: WebSocket URL of the collaboration service
        request_timeout_s: Maximum wait for an acknowledgement
        connect_timeout_s: Maximum wait for the channel to open
    """

    backend: HandleBackend = HandleBackend.WEBSOCKET
    url: str = "ws://localhost:3000/"
    request_timeout_s: float = 10.0
    connect_timeout_s: float = 5.0

    @classmethod
    def from_env(cls) -> HandleServiceConfig:
        """Load configuration from environment variables."""
        backend_str = os.getenv("HANDLE_SERVICE_BACKEND", "websocket").lower()
        try:
            backend = HandleBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid HANDLE_SERVICE_BACKEND '{backend_str}'. Must be one of: websocket, memory"
            )
        return cls(
            backend=backend,
            url=os.getenv("HANDLE_SERVICE_URL", "ws://localhost:3000/"),
            request_timeout_s=float(os.getenv("HANDLE_SERVICE_TIMEOUT_S", "10.0")),
            connect_timeout_s=float(os.getenv("HANDLE_SERVICE_CONNECT_TIMEOUT_S", "5.0")),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP/RPC server configuration."""

    host: str = "localhost"
    port: int = 8000

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "localhost"),
            port=int(os.getenv("HTTP_PORT", "8000")),
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
        storage: Backing store configuration
        handles: Collaboration service client configuration
        http: HTTP/RPC server configuration
        observability: Logging configuration
    """

    storage: StorageConfig = field(default_factory=StorageConfig)
    handles: HandleServiceConfig = field(default_factory=HandleServiceConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        config = cls(
            storage=StorageConfig.from_env(),
            handles=HandleServiceConfig.from_env(),
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
        if not self.storage.database_path:
            raise ValueError("DATABASE_PATH must not be empty")
        if self.storage.max_connections < 1:
            raise ValueError("DB_MAX_CONNECTIONS must be at least 1")

        if self.handles.backend == HandleBackend.WEBSOCKET and not self.handles.url:
            raise ValueError("HANDLE_SERVICE_URL is required when HANDLE_SERVICE_BACKEND=websocket")
        if self.handles.request_timeout_s <= 0 or self.handles.connect_timeout_s <= 0:
            raise ValueError("Handle service timeouts must be positive")

        if not 0 < self.http.port < 65536:
            raise ValueError(f"HTTP_PORT out of range: {self.http.port}")

        if self.observability.log_format not in ("json", "text"):
            raise ValueError(
                f"Invalid LOG_FORMAT '{self.observability.log_format}'. Must be one of: json, text"
            )

        db_dir = os.path.dirname(os.path.abspath(self.storage.database_path))
        if not os.path.exists(db_dir):
            logger.warning(
                f"Database directory does not exist: {db_dir}. It will be created on startup."
            )

    def log_config(self) -> None:
        """Log configuration."""
        logger.info(
            "Server configuration loaded",
            extra={
                "database_path": self.storage.database_path,
                "db_max_connections": self.storage.max_connections,
                "handle_backend": self.handles.backend.value,
                "handle_service_url": self.handles.url
                if self.handles.backend == HandleBackend.WEBSOCKET
                else None,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "log_level": self.observability.log_level,
            },
        )
