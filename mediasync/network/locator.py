"""
LAN discovery of media servers over UDP broadcast.

Protocol:
    1. Send the ASCII probe "who is MediaBrowserServer_v2?" to
       255.255.255.255:7359 from an ephemeral local port.
    2. Collect unicast replies until the timeout elapses.
    3. Accept a reply only if it comes from source port 7359 and its
       payload starts (case-insensitively) with "MediaBrowserServer".
       The rest is '|' delimited: "MediaBrowserServer|<name>|<ip>:<port>",
       or "MediaBrowserServer|<ip>:<port>" where the name defaults to the ip.

Nobody answering is a normal outcome and yields an empty list.
"""

import socket
import time
from typing import Callable

from mediasync.api.models import DiscoveredServer
from mediasync.core.cancellation import CancellationToken
from mediasync.core.config import DiscoveryConfig
from mediasync.core.exceptions import DiscoveryError
from mediasync.core.logger import get_logger


logger = get_logger(__name__)

BROADCAST_ADDRESS = "255.255.255.255"
RECEIVE_BUFFER_SIZE = 4096

# Upper bound on a single blocking receive so cancellation is noticed promptly
_POLL_INTERVAL = 0.25


def parse_discovery_reply(payload: str, prefix: str) -> DiscoveredServer | None:
    """
    Parse a discovery reply payload.

    Returns:
        DiscoveredServer, or None if the payload is malformed.
    """
    text = payload.strip()
    if not text.lower().startswith(prefix.lower()):
        return None

    fields = text.split("|")
    if len(fields) == 2:
        name, endpoint = None, fields[1]
    elif len(fields) == 3:
        name, endpoint = fields[1], fields[2]
    else:
        return None

    host, sep, port = endpoint.strip().rpartition(":")
    if not sep or not host or not port.isdigit() or not 0 < int(port) < 65536:
        return None

    address = f"http://{host}:{port}"
    return DiscoveredServer(id="", name=(name or "").strip() or host, address=address)


class ServerLocator:
    """
    Finds servers answering the discovery broadcast.

    Args:
        config: Discovery settings (port, probe, response prefix).
        socket_factory: Creates the UDP socket; replaced in tests.
    """

    def __init__(
        self,
        config: DiscoveryConfig | None = None,
        socket_factory: Callable[..., socket.socket] = socket.socket
    ) -> None:
        self.config = config or DiscoveryConfig()
        self._socket_factory = socket_factory

    def find_servers(
        self,
        timeout: float | None = None,
        cancellation: CancellationToken | None = None
    ) -> list[DiscoveredServer]:
        """
        Broadcast the probe and collect replies for `timeout` seconds.

        Raises:
            DiscoveryError: If the socket cannot be created, bound or used
                            to send the probe.
            SyncCancelledError: If cancellation fires while listening.
        """
        timeout = self.config.timeout if timeout is None else timeout
        logger.debug(f"Searching for servers with timeout of {timeout:.1f}s")

        try:
            sock = self._socket_factory(socket.AF_INET, socket.SOCK_DGRAM)
        except OSError as e:
            raise DiscoveryError(f"Cannot create discovery socket: {e}") from e

        found: dict[str, DiscoveredServer] = {}
        try:
            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
                sock.bind(("", 0))
                sock.sendto(self.config.probe.encode("ascii"), (BROADCAST_ADDRESS, self.config.port))
            except OSError as e:
                raise DiscoveryError(
                    f"Cannot send discovery broadcast: {e}",
                    details={"port": self.config.port}
                ) from e

            deadline = time.monotonic() + timeout
            while True:
                if cancellation is not None:
                    cancellation.raise_if_cancelled()

                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break

                sock.settimeout(min(remaining, _POLL_INTERVAL))
                try:
                    data, (host, port) = sock.recvfrom(RECEIVE_BUFFER_SIZE)
                except socket.timeout:
                    continue
                except OSError as e:
                    logger.warning(f"Discovery listen aborted: {e}")
                    break

                server = self._handle_reply(data, host, port)
                if server is not None and server.address not in found:
                    found[server.address] = server
        finally:
            sock.close()

        logger.debug(f"Discovery finished, {len(found)} server(s) found")
        return list(found.values())

    def _handle_reply(self, data: bytes, host: str, port: int) -> DiscoveredServer | None:
        if port != self.config.port:
            logger.debug(f"Ignoring discovery reply from {host}:{port} (wrong source port)")
            return None

        payload = data.decode("utf-8", errors="replace")
        logger.debug(f"Received response from {host}:{port}: {payload}")

        server = parse_discovery_reply(payload, self.config.response_prefix)
        if server is None:
            logger.debug(f"Ignoring malformed discovery reply from {host}: {payload!r}")
        return server
