"""
Exception classes for mediasync.

Each exception carries a human-readable message plus an optional details
dictionary so callers can log context without parsing strings.

Exception Hierarchy:
    MediaSyncError (base)
        ConfigError - Configuration file issues
        DatabaseError - Local SQLite store issues
        ApiError - Remote server rejected or failed a request
        ServerUnavailableError - No address of a server answered
        DiscoveryError - LAN discovery socket could not be used
        TransferError - A file could not be downloaded or saved
        SyncCancelledError - Cooperative cancellation was observed
"""


class MediaSyncError(Exception):
    """
    Base exception for all mediasync errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional context (server id, url, item id).

    Example:
        try:
            coordinator.sync(progress)
        except MediaSyncError as e:
            logger.error(f"Sync failed: {e.message}")
            if e.details:
                logger.debug(f"Details: {e.details}")
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return the error message for display."""
        return self.message


class ConfigError(MediaSyncError):
    """
    Raised when there's an issue with the configuration file.

    This is a CRITICAL error that should stop program execution.

    Common causes:
        - config.yaml has invalid YAML syntax
        - A section is not a mapping
        - Invalid field values (e.g., negative timeout)
    """
    pass


class DatabaseError(MediaSyncError):
    """
    Raised when the local SQLite store cannot be opened or written.

    Common causes:
        - Data directory missing or not writable
        - Schema version mismatch
        - Corrupted database file
    """
    pass


class ApiError(MediaSyncError):
    """
    Raised when a request to a media server fails.

    Covers both transport failures (timeouts, refused connections) where
    status_code is None, and HTTP error responses.

    Attributes:
        status_code: HTTP status code, or None for transport failures.
    """

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        status_code: int | None = None
    ) -> None:
        super().__init__(message, details)
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        """True when the server answered 404."""
        return self.status_code == 404

    @property
    def is_auth_error(self) -> bool:
        """True when the server rejected our credentials."""
        return self.status_code in (401, 403)


class ServerUnavailableError(MediaSyncError):
    """Raised when every candidate address of a server failed to answer."""
    pass


class DiscoveryError(MediaSyncError):
    """Raised when the discovery socket cannot be created or bound."""
    pass


class TransferError(MediaSyncError):
    """
    Raised when a file download or local save fails.

    NON-CRITICAL: the engine logs it and moves to the next item. The
    item stays unacknowledged so the server offers it again next sync.
    """
    pass


class SyncCancelledError(MediaSyncError):
    """
    Raised when a CancellationToken is observed as cancelled.

    This is not a failure. Loops that swallow per-item errors must
    re-raise it, and it is never logged at error level.
    """

    def __init__(self, message: str = "Sync cancelled", details: dict | None = None) -> None:
        super().__init__(message, details)
