"""
Network module for mediasync.

    - ServerLocator: UDP broadcast discovery of servers on the LAN
    - NetworkStatus: local network detection and wake-on-LAN
    - ConnectionManager: address selection and session establishment
"""

from mediasync.network.connection import (
    ApiClientRegistry,
    ConnectionManager,
    ConnectionResult,
    normalize_address,
)
from mediasync.network.connectivity import NetworkStatus, build_magic_packet
from mediasync.network.locator import ServerLocator, parse_discovery_reply

__all__ = [
    "ApiClientRegistry",
    "ConnectionManager",
    "ConnectionResult",
    "normalize_address",
    "NetworkStatus",
    "build_magic_packet",
    "ServerLocator",
    "parse_discovery_reply",
]
