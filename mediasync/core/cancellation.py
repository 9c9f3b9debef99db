"""
Cooperative cancellation for long-running sync work.

A CancellationToken is handed down from the caller through every sync
component. Components check it between phases and before each per-item
iteration; observing it raises SyncCancelledError.
"""

import threading

from mediasync.core.exceptions import SyncCancelledError


class CancellationToken:
    """
    Thread-safe, one-way cancellation flag.

    Example:
        token = CancellationToken()
        threading.Thread(target=coordinator.sync, args=(progress, token)).start()
        ...
        token.cancel()
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        """Request cancellation. Idempotent."""
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise SyncCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise SyncCancelledError()

    def wait(self, timeout: float) -> bool:
        """
        Sleep up to timeout seconds, waking early on cancellation.

        Returns:
            True if cancelled, False if the timeout elapsed.
        """
        return self._event.wait(timeout)
