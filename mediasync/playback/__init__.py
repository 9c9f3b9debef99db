"""Local playback targets and their reachability checks."""

from mediasync.playback.players import (
    DefaultLocalPlayer,
    LocalPlayer,
    PortablePlayer,
    UrlReachabilityCache,
)

__all__ = [
    "DefaultLocalPlayer",
    "LocalPlayer",
    "PortablePlayer",
    "UrlReachabilityCache",
]
