"""
Local players: what a playback target on this device can reach.

A player answers three questions before playback is routed to it:
can it open a local file, a local directory, or a URL. URL reachability
is probed with a HEAD request and cached per host for a while, since the
answer rarely changes until the network does.
"""

import threading
import time
from pathlib import Path
from typing import Callable, Protocol
from urllib.parse import urlsplit

import requests

from mediasync.core.events import EventChannel
from mediasync.core.logger import get_logger


logger = get_logger(__name__)

URL_PROBE_TIMEOUT = 5.0


class LocalPlayer(Protocol):
    def can_access_file(self, path: str) -> bool: ...

    def can_access_directory(self, path: str) -> bool: ...

    def can_access_url(self, url: str, requires_custom_request_headers: bool) -> bool: ...


def host_from_url(url: str) -> str:
    return urlsplit(url).netloc.lower()


class UrlReachabilityCache:
    """
    Per-host cache of URL probe results.

    Attributes:
        ttl: Seconds a probe result stays valid.
    """

    def __init__(
        self,
        ttl: float,
        session: requests.Session | None = None,
        timeout: float = URL_PROBE_TIMEOUT,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        self.ttl = ttl
        self.timeout = timeout
        self._session = session or requests.Session()
        self._clock = clock
        self._results: dict[str, tuple[bool, float]] = {}
        self._lock = threading.Lock()

    def can_access(self, url: str) -> bool:
        key = host_from_url(url)
        now = self._clock()

        with self._lock:
            cached = self._results.get(key)
            if cached is not None and now - cached[1] <= self.ttl:
                return cached[0]

        reachable = self._probe(url)

        with self._lock:
            self._results[key] = (reachable, now)
        return reachable

    def _probe(self, url: str) -> bool:
        try:
            with self._session.head(url, timeout=self.timeout, allow_redirects=True):
                return True
        except requests.exceptions.RequestException as e:
            logger.debug(f"URL not reachable: {url}: {e}")
            return False

    def clear(self) -> None:
        with self._lock:
            self._results.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


class DefaultLocalPlayer:
    """Player running on this machine: full filesystem access, URLs probed."""

    URL_CACHE_TTL = 180.0

    def __init__(
        self,
        url_cache: UrlReachabilityCache | None = None,
        network_changed: EventChannel | None = None
    ) -> None:
        self.url_cache = url_cache if url_cache is not None else UrlReachabilityCache(self.URL_CACHE_TTL)
        self._network_changed = network_changed
        self._subscription = (
            network_changed.subscribe(self._on_network_changed) if network_changed is not None else None
        )

    def _on_network_changed(self, _payload: object) -> None:
        self.url_cache.clear()

    def can_access_file(self, path: str) -> bool:
        return Path(path).is_file()

    def can_access_directory(self, path: str) -> bool:
        return Path(path).is_dir()

    def can_access_url(self, url: str, requires_custom_request_headers: bool) -> bool:
        if requires_custom_request_headers:
            return False
        return self.url_cache.can_access(url)

    def close(self) -> None:
        if self._network_changed is not None and self._subscription is not None:
            self._network_changed.unsubscribe(self._subscription)
            self._subscription = None


class PortablePlayer:
    """Player on another device (e.g. a phone on the LAN): no local filesystem."""

    URL_CACHE_TTL = 7200.0

    def __init__(
        self,
        url_cache: UrlReachabilityCache | None = None,
        network_changed: EventChannel | None = None
    ) -> None:
        self.url_cache = url_cache if url_cache is not None else UrlReachabilityCache(self.URL_CACHE_TTL)
        self._network_changed = network_changed
        self._subscription = (
            network_changed.subscribe(self._on_network_changed) if network_changed is not None else None
        )

    def _on_network_changed(self, _payload: object) -> None:
        self.url_cache.clear()

    def can_access_file(self, path: str) -> bool:
        return False

    def can_access_directory(self, path: str) -> bool:
        return False

    def can_access_url(self, url: str, requires_custom_request_headers: bool) -> bool:
        if requires_custom_request_headers:
            return False
        return self.url_cache.can_access(url)

    def close(self) -> None:
        if self._network_changed is not None and self._subscription is not None:
            self._network_changed.unsubscribe(self._subscription)
            self._subscription = None
