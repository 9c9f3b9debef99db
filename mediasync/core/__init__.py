"""
Core module for mediasync.

Foundational components used throughout the application:
    - exceptions: Custom exception classes for error handling
    - config: Configuration loading and validation
    - database: Thread-safe SQLite storage
    - logger: Logging system with console and file outputs
    - cancellation: Cooperative cancellation token
    - events: Explicit publish/subscribe channels

Usage:
    from mediasync.core import (
        Config, load_config,
        Database,
        setup_logging, get_logger,
        MediaSyncError, ConfigError, DatabaseError
    )
"""

from mediasync.core.cancellation import CancellationToken
from mediasync.core.config import (
    Config,
    DeviceConfig,
    DiscoveryConfig,
    LoggingConfig,
    NetworkConfig,
    StorageConfig,
    SyncConfig,
    load_config,
)
from mediasync.core.database import Database
from mediasync.core.events import EventChannel
from mediasync.core.exceptions import (
    ApiError,
    ConfigError,
    DatabaseError,
    DiscoveryError,
    MediaSyncError,
    ServerUnavailableError,
    SyncCancelledError,
    TransferError,
)
from mediasync.core.logger import (
    get_logger,
    log_transfer_failure,
    setup_logging,
    shutdown_logging,
)

__all__ = [
    # Cancellation
    "CancellationToken",
    # Config
    "Config",
    "DeviceConfig",
    "DiscoveryConfig",
    "LoggingConfig",
    "NetworkConfig",
    "StorageConfig",
    "SyncConfig",
    "load_config",
    # Database
    "Database",
    # Events
    "EventChannel",
    # Exceptions
    "MediaSyncError",
    "ConfigError",
    "DatabaseError",
    "ApiError",
    "ServerUnavailableError",
    "DiscoveryError",
    "TransferError",
    "SyncCancelledError",
    # Logger
    "setup_logging",
    "get_logger",
    "log_transfer_failure",
    "shutdown_logging",
]
