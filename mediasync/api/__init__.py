"""
Media server API module for mediasync.

    - ApiClient: requests-based REST client bound to one server
    - Data models for server DTOs and local sync state

Usage:
    from mediasync.api import ApiClient, ServerRecord, SyncedItem
"""

from mediasync.api.client import ApiClient, iter_response_chunks
from mediasync.api.models import (
    AdditionalFile,
    CatalogItem,
    ConnectionMode,
    ConnectionState,
    ContentUploadHistory,
    DevicesOptions,
    DiscoveredServer,
    ImageType,
    ItemFileInfo,
    ItemFileType,
    LocalFileInfo,
    LocalItem,
    MediaSource,
    MediaStream,
    OfflineUser,
    PublicSystemInfo,
    ServerRecord,
    ServerUser,
    SyncDataRequest,
    SyncDataResult,
    SyncedItem,
    SystemInfo,
    UserAction,
)

__all__ = [
    # Client
    "ApiClient",
    "iter_response_chunks",
    # Models
    "AdditionalFile",
    "CatalogItem",
    "ConnectionMode",
    "ConnectionState",
    "ContentUploadHistory",
    "DevicesOptions",
    "DiscoveredServer",
    "ImageType",
    "ItemFileInfo",
    "ItemFileType",
    "LocalFileInfo",
    "LocalItem",
    "MediaSource",
    "MediaStream",
    "OfflineUser",
    "PublicSystemInfo",
    "ServerRecord",
    "ServerUser",
    "SyncDataRequest",
    "SyncDataResult",
    "SyncedItem",
    "SystemInfo",
    "UserAction",
]
