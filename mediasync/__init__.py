"""
mediasync - offline media synchronization engine.

Keeps a client-local media cache in step with one or more remote media
servers over intermittent connectivity, choosing between LAN, WAN and
wake-on-LAN paths to reach each server.

Usage:
    mediasync discover                 List servers answering on the LAN
    mediasync connect [ADDRESS]        Connect to a known or new server
    mediasync sync                     Sync every known server
"""

__version__ = "0.4.0"
