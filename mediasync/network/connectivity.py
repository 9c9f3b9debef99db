"""
Network status and wake-on-LAN.

NetworkStatus answers one question for the connection manager: is this
device on a local network where LAN addresses are worth trying. It also
sends wake-on-LAN magic packets.
"""

import ipaddress
import socket

from mediasync.core.logger import get_logger


logger = get_logger(__name__)

WAKE_ON_LAN_PORT = 9


def build_magic_packet(mac_address: str) -> bytes:
    """
    Build a wake-on-LAN magic packet: 6 bytes of 0xFF then the MAC 16 times.

    Raises:
        ValueError: If mac_address is not 12 hex digits (separators ignored).
    """
    digits = "".join(c for c in mac_address if c not in ":-. ")
    if len(digits) != 12:
        raise ValueError(f"Invalid MAC address: {mac_address!r}")
    mac = bytes.fromhex(digits)
    return b"\xff" * 6 + mac * 16


def get_local_ip() -> str | None:
    """Address of the interface carrying the default route, without sending traffic."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
    except OSError:
        return None


class NetworkStatus:
    """Default network provider backed by the host's sockets."""

    def is_local_network_available(self) -> bool:
        """True when the default interface has a private (LAN) address."""
        ip = get_local_ip()
        if ip is None:
            return False
        try:
            address = ipaddress.ip_address(ip)
        except ValueError:
            return False
        return address.is_private and not address.is_loopback

    def send_wake_on_lan(self, mac_address: str, port: int = WAKE_ON_LAN_PORT) -> None:
        """
        Broadcast a magic packet for mac_address.

        Raises:
            ValueError: Malformed MAC address.
            OSError: Socket failure.
        """
        packet = build_magic_packet(mac_address)
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_BROADCAST, 1)
            s.sendto(packet, ("255.255.255.255", port))
        logger.debug(f"Sent wake-on-LAN packet to {mac_address}")
