"""
Explicit publish/subscribe channel.

Handlers are isolated from each other: one handler raising is logged and
the remaining handlers still run. The publisher never sees handler errors.

Usage:
    connected = EventChannel("connected")
    token = connected.subscribe(lambda result: print(result.state))
    connected.broadcast(result)
    connected.unsubscribe(token)
"""

import threading
from typing import Any, Callable

from mediasync.core.logger import get_logger


logger = get_logger(__name__)


class EventChannel:
    """A named list of handlers receiving one positional payload."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = threading.Lock()
        self._handlers: dict[int, Callable[[Any], None]] = {}
        self._next_token = 1

    def subscribe(self, handler: Callable[[Any], None]) -> int:
        """
        Register a handler.

        Returns:
            Token to pass to unsubscribe().
        """
        with self._lock:
            token = self._next_token
            self._next_token += 1
            self._handlers[token] = handler
        return token

    def unsubscribe(self, token: int) -> bool:
        """Remove a handler. Returns False if the token was unknown."""
        with self._lock:
            return self._handlers.pop(token, None) is not None

    def broadcast(self, payload: Any = None) -> int:
        """
        Call every handler with payload.

        Returns:
            Number of handlers that completed without raising.
        """
        with self._lock:
            handlers = list(self._handlers.values())

        delivered = 0
        for handler in handlers:
            try:
                handler(payload)
                delivered += 1
            except Exception as e:
                logger.error(f"Handler for '{self.name}' event failed: {e}", exc_info=True)
        return delivered

    def __len__(self) -> int:
        with self._lock:
            return len(self._handlers)
