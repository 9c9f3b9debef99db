"""
Connection management: pick a reachable address for each server.

For one server the candidate addresses are tried in a fixed order and the
first that answers the public system info probe wins:

    1. Local address, only when the device is on a local network
    2. Wake-on-LAN to every known MAC, then the local address once more
    3. Remote address

A stored access token is then validated; a rejected token is cleared but
the server still counts as reachable (SERVER_SIGN_IN).

Across servers, the last active server is tried first, then the rest by
last access time. If no known server answers, LAN discovery supplies
further candidates.

Usage:
    manager = ConnectionManager(store, config.device, config.network, config.discovery)
    result = manager.connect()
    if result.state == ConnectionState.SIGNED_IN:
        result.api_client.get_system_info()
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from mediasync.api.client import ApiClient
from mediasync.api.models import (
    ConnectionMode,
    ConnectionState,
    PublicSystemInfo,
    ServerRecord,
)
from mediasync.core.cancellation import CancellationToken
from mediasync.core.config import DeviceConfig, DiscoveryConfig, NetworkConfig
from mediasync.core.events import EventChannel
from mediasync.core.exceptions import ApiError, DiscoveryError, MediaSyncError
from mediasync.core.logger import get_logger
from mediasync.credentials import CredentialStore
from mediasync.network.connectivity import NetworkStatus
from mediasync.network.locator import ServerLocator


logger = get_logger(__name__)

# Creates an ApiClient for (address, server_id)
ClientFactory = Callable[[str, str], ApiClient]


@dataclass
class ConnectionResult:
    """Outcome of a connection attempt. Never persisted."""
    state: ConnectionState = ConnectionState.UNAVAILABLE
    server: ServerRecord | None = None
    api_client: ApiClient | None = None
    servers: list[ServerRecord] = field(default_factory=list)


def normalize_address(address: str) -> str:
    """
    Prefix http:// when no scheme is given and strip trailing slashes.

    Raises:
        ValueError: If address is empty.
    """
    if not address or not address.strip():
        raise ValueError("address is required")
    address = address.strip()
    if not address.lower().startswith("http"):
        address = "http://" + address
    return address.rstrip("/")


class ApiClientRegistry:
    """
    One bound ApiClient per server id.

    get_or_add() reuses the existing client for a server, re-pointing it
    at the winning address and applying the record's credentials.
    """

    def __init__(self, factory: ClientFactory) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._clients: dict[str, ApiClient] = {}

    def get(self, server_id: str) -> ApiClient | None:
        with self._lock:
            return self._clients.get(server_id)

    def get_or_add(self, server: ServerRecord, address: str) -> ApiClient:
        if not server.id:
            raise ValueError("server.id is required")

        with self._lock:
            client = self._clients.get(server.id)
            if client is None:
                client = self._factory(address, server.id)
                self._clients[server.id] = client
            else:
                client.change_server_location(address)

        if server.access_token:
            client.set_authentication_info(server.access_token, server.user_id)
        else:
            client.clear_authentication_info()
        return client

    def clients(self) -> list[ApiClient]:
        with self._lock:
            return list(self._clients.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)


class ConnectionManager:
    """
    Establishes reachable, authenticated sessions with known servers.

    Events:
        connected: ConnectionResult after every successful connection.
        local_user_signed_in: ServerRecord after a user signs in.
        signed_out: None after logout().
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        device: DeviceConfig,
        network_config: NetworkConfig,
        discovery_config: DiscoveryConfig | None = None,
        network_status: NetworkStatus | None = None,
        locator: ServerLocator | None = None,
        client_factory: ClientFactory | None = None
    ) -> None:
        self.credentials = credential_store
        self.device = device
        self.network_config = network_config
        self.discovery_config = discovery_config or DiscoveryConfig()
        self.network_status = network_status or NetworkStatus()
        self.locator = locator or ServerLocator(self.discovery_config)

        self._client_factory = client_factory or self._default_client_factory
        self.registry = ApiClientRegistry(self._client_factory)

        self.connected = EventChannel("connected")
        self.local_user_signed_in = EventChannel("local_user_signed_in")
        self.signed_out = EventChannel("signed_out")

    def _default_client_factory(self, address: str, server_id: str) -> ApiClient:
        return ApiClient(address, self.device, self.network_config, server_id=server_id)

    # =========================================================================
    # Candidate selection
    # =========================================================================

    def connect(self, cancellation: CancellationToken | None = None) -> ConnectionResult:
        """
        Connect to the best known server, falling back to LAN discovery.

        Returns:
            The first SIGNED_IN result; otherwise the first SERVER_SIGN_IN
            result; otherwise UNAVAILABLE.
        """
        cancellation = cancellation or CancellationToken()
        known = self._order_candidates(self.credentials.get_servers())

        result = self._connect_first(known, cancellation)
        if result.state != ConnectionState.UNAVAILABLE:
            return result

        known_addresses = {s.local_address for s in known if s.local_address}
        discovered = [
            s for s in self._discover(cancellation)
            if s.local_address not in known_addresses
        ]
        if discovered:
            logger.info(f"No known server reachable, trying {len(discovered)} discovered server(s)")
            result = self._connect_first(discovered, cancellation)

        result.servers = known + discovered
        return result

    def _order_candidates(self, servers: list[ServerRecord]) -> list[ServerRecord]:
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        ordered = sorted(servers, key=lambda s: s.date_last_accessed or epoch, reverse=True)

        active_id = self.credentials.active_server_id
        if active_id:
            ordered.sort(key=lambda s: s.id != active_id)
        return ordered

    def _connect_first(self, servers: list[ServerRecord], cancellation: CancellationToken) -> ConnectionResult:
        fallback: ConnectionResult | None = None
        for server in servers:
            cancellation.raise_if_cancelled()

            result = self.connect_to_server(server, cancellation)
            if result.state == ConnectionState.SIGNED_IN:
                return result
            if result.state == ConnectionState.SERVER_SIGN_IN and fallback is None:
                fallback = result

        return fallback or ConnectionResult(state=ConnectionState.UNAVAILABLE)

    def _discover(self, cancellation: CancellationToken) -> list[ServerRecord]:
        if not self.network_status.is_local_network_available():
            return []
        try:
            found = self.locator.find_servers(self.discovery_config.timeout, cancellation)
        except DiscoveryError as e:
            logger.warning(f"Server discovery failed: {e}")
            return []
        return [s.to_server_record() for s in found]

    # =========================================================================
    # Single server
    # =========================================================================

    def connect_to_server(
        self,
        server: ServerRecord,
        cancellation: CancellationToken | None = None
    ) -> ConnectionResult:
        """Try the server's addresses in order and establish a session."""
        cancellation = cancellation or CancellationToken()
        result = ConnectionResult(state=ConnectionState.UNAVAILABLE, server=server)

        info: PublicSystemInfo | None = None
        mode = ConnectionMode.LOCAL

        if server.local_address and self.network_status.is_local_network_available():
            logger.debug(f"Connecting to local address of {server.name or server.id}...")
            info = self._try_connect(server.local_address)

            if info is None and server.mac_addresses:
                cancellation.raise_if_cancelled()
                self.wake_server(server)
                info = self._try_connect(server.local_address)

        if info is None and server.remote_address:
            cancellation.raise_if_cancelled()
            logger.debug(f"Connecting to remote address of {server.name or server.id}...")
            info = self._try_connect(server.remote_address)
            mode = ConnectionMode.REMOTE

        if info is None:
            logger.info(f"Server {server.name or server.id} is unavailable")
            return result

        address = server.get_address(mode)
        server.import_public_info(info)
        if not server.id:
            logger.warning(f"Server at {address} did not report an id")
            return result

        client = self.registry.get_or_add(server, address)

        if server.access_token:
            self._validate_authentication(server, client)

        server.date_last_accessed = datetime.now(timezone.utc)
        self.credentials.add_or_update_server(server)
        self.credentials.set_active_server_id(server.id)

        result.api_client = client
        result.state = (
            ConnectionState.SIGNED_IN if server.access_token else ConnectionState.SERVER_SIGN_IN
        )
        result.servers = [server]
        logger.info(f"Connected to {server.name} ({mode.value}): {result.state.value}")

        self.connected.broadcast(result)
        return result

    def connect_to_address(
        self,
        address: str,
        cancellation: CancellationToken | None = None
    ) -> ConnectionResult:
        """
        Connect to a server given only its address.

        Raises:
            ValueError: If address is empty.
        """
        address = normalize_address(address)

        info = self._try_connect(address)
        if info is None:
            return ConnectionResult(state=ConnectionState.UNAVAILABLE)

        server = ServerRecord(local_address=address)
        server.import_public_info(info)

        existing = self.credentials.get_server(server.id) if server.id else None
        if existing is not None:
            existing.merge(server)
            existing.local_address = address
            server = existing

        return self.connect_to_server(server, cancellation)

    def _try_connect(self, address: str) -> PublicSystemInfo | None:
        client = self._client_factory(address, "")
        try:
            return client.get_public_system_info(timeout=self.network_config.probe_timeout)
        except MediaSyncError as e:
            logger.debug(f"Probe of {address} failed: {e}")
            return None

    def _validate_authentication(self, server: ServerRecord, client: ApiClient) -> None:
        logger.debug("Validating saved authentication")
        try:
            info = client.validate_authentication()
            server.import_system_info(info)
        except ApiError as e:
            logger.info(f"Saved credentials for {server.name} were rejected: {e}")
            server.clear_authentication()
            client.clear_authentication_info()

    # =========================================================================
    # Wake-on-LAN
    # =========================================================================

    def wake_server(self, server: ServerRecord) -> None:
        """Send a wake-on-LAN packet to every MAC of the server. Never raises."""
        for mac in server.mac_addresses:
            try:
                self.network_status.send_wake_on_lan(mac)
            except (OSError, ValueError) as e:
                logger.error(f"Error sending wake-on-LAN to {mac}: {e}")

    def wake_all_servers(self) -> None:
        for server in self.credentials.get_servers():
            self.wake_server(server)

    # =========================================================================
    # Server list, sign-in and sign-out
    # =========================================================================

    def get_available_servers(self, cancellation: CancellationToken | None = None) -> list[ServerRecord]:
        """
        Known servers merged with servers answering LAN discovery.

        Discovered servers are matched to known ones by local address.
        """
        cancellation = cancellation or CancellationToken()
        servers = self.credentials.get_servers()
        by_address = {s.local_address: s for s in servers if s.local_address}

        for found in self._discover(cancellation):
            known = by_address.get(found.local_address)
            if known is not None:
                if found.name:
                    known.name = found.name
            else:
                servers.append(found)
                by_address[found.local_address] = found

        return servers

    def get_api_client(self, server_id: str) -> ApiClient | None:
        return self.registry.get(server_id)

    def authenticate(self, server: ServerRecord, username: str, password: str) -> ServerRecord:
        """
        Sign a user in on a connected server and store the token.

        Raises:
            ValueError: If the server has no bound client (connect first).
            ApiError: If the server rejects the credentials.
        """
        client = self.registry.get(server.id)
        if client is None:
            raise ValueError(f"Not connected to server {server.id}")

        user, access_token = client.authenticate_by_name(username, password)
        server.user_id = user.get("Id")
        server.access_token = access_token
        server.date_last_accessed = datetime.now(timezone.utc)
        client.set_authentication_info(server.access_token, server.user_id)

        self.credentials.add_or_update_server(server)
        self.local_user_signed_in.broadcast(server)
        return server

    def logout(self) -> None:
        """Log out every bound client and forget all stored tokens."""
        for client in self.registry.clients():
            if client.access_token:
                try:
                    client.logout()
                except ApiError as e:
                    logger.warning(f"Server-side logout failed: {e}")
                    client.clear_authentication_info()

        for server in self.credentials.get_servers():
            server.clear_authentication()
            server.exchange_token = None
            self.credentials.add_or_update_server(server)

        self.signed_out.broadcast(None)
