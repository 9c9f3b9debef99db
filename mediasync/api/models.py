"""
Data models for media server entities and local sync state.

Server JSON uses PascalCase keys; every model that arrives from the server
has a from_api() factory, and every model that is sent back or stored has
a to_dict() producing the same PascalCase shape. Stored models round-trip
through to_dict()/from_api() so the local database keeps the server's
representation.

Design Decisions:
    - Server-owned DTOs (SyncedItem, SystemInfo) are frozen
    - ServerRecord, LocalItem and CatalogItem are mutable: they are updated
      in place by the connection manager and the sync engine (media source
      paths are rewritten to local files), then persisted
    - Unknown keys are ignored; missing keys fall back to empty defaults

Usage:
    from mediasync.api.models import ServerRecord, SyncedItem

    server = ServerRecord.from_api(stored_dict)
    items = [SyncedItem.from_api(d) for d in response.json()]
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        # Python < 3.11 does not accept the trailing Z
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_datetime(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class ItemFileType(str, Enum):
    """Kind of a file stored for a local item."""
    MEDIA = "Media"
    IMAGE = "Image"
    SUBTITLES = "Subtitles"


class ImageType(str, Enum):
    PRIMARY = "Primary"
    THUMB = "Thumb"
    BACKDROP = "Backdrop"


class ConnectionState(str, Enum):
    """Terminal states of a connection attempt."""
    UNAVAILABLE = "Unavailable"
    SERVER_SIGN_IN = "ServerSignIn"
    SIGNED_IN = "SignedIn"


class ConnectionMode(str, Enum):
    LOCAL = "Local"
    REMOTE = "Remote"


# =============================================================================
# Server identity and system info
# =============================================================================

@dataclass
class ServerUser:
    """A user authorized on a server for offline access."""
    id: str
    is_signed_in_offline: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ServerUser":
        return cls(id=data.get("Id", ""), is_signed_in_offline=bool(data.get("IsSignedInOffline", False)))

    def to_dict(self) -> dict[str, Any]:
        return {"Id": self.id, "IsSignedInOffline": self.is_signed_in_offline}


@dataclass
class ServerRecord:
    """
    A known media server as persisted by the credential store.

    Attributes:
        id: Server id. Stable once assigned.
        name: Friendly server name.
        local_address: LAN base URL, e.g. "http://192.168.1.20:8096".
        remote_address: WAN base URL.
        mac_addresses: Wake-on-LAN targets.
        access_token: Stored session token, None when signed out.
        exchange_token: Token that can be traded for an access token.
        user_id: Id of the signed-in user for access_token.
        users: Users authorized for offline access on this device.
        date_last_accessed: Last successful connection (UTC).
    """
    id: str = ""
    name: str = ""
    local_address: str | None = None
    remote_address: str | None = None
    mac_addresses: list[str] = field(default_factory=list)
    access_token: str | None = None
    exchange_token: str | None = None
    user_id: str | None = None
    users: list[ServerUser] = field(default_factory=list)
    date_last_accessed: datetime | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ServerRecord":
        return cls(
            id=data.get("Id") or "",
            name=data.get("Name") or "",
            local_address=data.get("LocalAddress"),
            remote_address=data.get("RemoteAddress"),
            mac_addresses=list(data.get("MacAddresses") or []),
            access_token=data.get("AccessToken"),
            exchange_token=data.get("ExchangeToken"),
            user_id=data.get("UserId"),
            users=[ServerUser.from_api(u) for u in data.get("Users") or []],
            date_last_accessed=_parse_datetime(data.get("DateLastAccessed")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "Name": self.name,
            "LocalAddress": self.local_address,
            "RemoteAddress": self.remote_address,
            "MacAddresses": list(self.mac_addresses),
            "AccessToken": self.access_token,
            "ExchangeToken": self.exchange_token,
            "UserId": self.user_id,
            "Users": [u.to_dict() for u in self.users],
            "DateLastAccessed": _format_datetime(self.date_last_accessed),
        }

    @property
    def has_credentials(self) -> bool:
        return bool(self.access_token or self.exchange_token)

    def get_address(self, mode: ConnectionMode) -> str | None:
        return self.local_address if mode == ConnectionMode.LOCAL else self.remote_address

    def import_public_info(self, info: "PublicSystemInfo") -> None:
        """
        Refresh name and addresses from freshly fetched system info.

        The id is only filled in when it was empty.
        """
        if not self.id:
            self.id = info.id
        if info.server_name:
            self.name = info.server_name
        if info.local_address:
            self.local_address = info.local_address
        if info.wan_address:
            self.remote_address = info.wan_address

    def import_system_info(self, info: "SystemInfo") -> None:
        self.import_public_info(info)
        if info.mac_address and info.mac_address not in self.mac_addresses:
            self.mac_addresses.append(info.mac_address)

    def clear_authentication(self) -> None:
        self.access_token = None
        self.user_id = None

    def merge(self, other: "ServerRecord") -> None:
        """Fold a newer record for the same server into this one."""
        for attr in ("name", "local_address", "remote_address", "access_token",
                     "exchange_token", "user_id"):
            value = getattr(other, attr)
            if value:
                setattr(self, attr, value)
        for mac in other.mac_addresses:
            if mac not in self.mac_addresses:
                self.mac_addresses.append(mac)
        if other.users:
            self.users = list(other.users)
        if other.date_last_accessed and (
            self.date_last_accessed is None or other.date_last_accessed > self.date_last_accessed
        ):
            self.date_last_accessed = other.date_last_accessed


@dataclass(frozen=True)
class DiscoveredServer:
    """A server that answered the LAN discovery broadcast."""
    id: str
    name: str
    address: str

    def to_server_record(self) -> ServerRecord:
        return ServerRecord(id=self.id, name=self.name, local_address=self.address)


@dataclass(frozen=True)
class PublicSystemInfo:
    """Unauthenticated system info, used as the reachability probe."""
    id: str
    server_name: str
    version: str = ""
    local_address: str | None = None
    wan_address: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PublicSystemInfo":
        return cls(
            id=data.get("Id", ""),
            server_name=data.get("ServerName", ""),
            version=data.get("Version", ""),
            local_address=data.get("LocalAddress"),
            wan_address=data.get("WanAddress"),
        )


@dataclass(frozen=True)
class SystemInfo(PublicSystemInfo):
    """Authenticated system info."""
    supports_sync: bool = False
    mac_address: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SystemInfo":
        return cls(
            id=data.get("Id", ""),
            server_name=data.get("ServerName", ""),
            version=data.get("Version", ""),
            local_address=data.get("LocalAddress"),
            wan_address=data.get("WanAddress"),
            supports_sync=bool(data.get("SupportsSync", False)),
            mac_address=data.get("MacAddress"),
        )


# =============================================================================
# Catalog items
# =============================================================================

@dataclass
class MediaStream:
    index: int
    type: str = ""
    codec: str | None = None
    language: str | None = None
    is_forced: bool = False
    is_external: bool = False
    path: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MediaStream":
        return cls(
            index=int(data.get("Index", 0)),
            type=data.get("Type", ""),
            codec=data.get("Codec"),
            language=data.get("Language"),
            is_forced=bool(data.get("IsForced", False)),
            is_external=bool(data.get("IsExternal", False)),
            path=data.get("Path"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "Index": self.index,
            "Type": self.type,
            "Codec": self.codec,
            "Language": self.language,
            "IsForced": self.is_forced,
            "IsExternal": self.is_external,
            "Path": self.path,
        }


@dataclass
class MediaSource:
    id: str = ""
    path: str | None = None
    protocol: str = "Http"
    container: str | None = None
    media_streams: list[MediaStream] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "MediaSource":
        return cls(
            id=data.get("Id", ""),
            path=data.get("Path"),
            protocol=data.get("Protocol", "Http"),
            container=data.get("Container"),
            media_streams=[MediaStream.from_api(s) for s in data.get("MediaStreams") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "Path": self.path,
            "Protocol": self.protocol,
            "Container": self.container,
            "MediaStreams": [s.to_dict() for s in self.media_streams],
        }


@dataclass
class CatalogItem:
    """
    A library item as described by the server.

    Only the fields the sync engine and local browsing need are modelled.
    """
    id: str
    name: str = ""
    type: str = ""
    media_type: str | None = None
    series_id: str | None = None
    series_name: str | None = None
    season_name: str | None = None
    series_primary_image_tag: str | None = None
    album: str | None = None
    album_id: str | None = None
    album_artist: str | None = None
    album_primary_image_tag: str | None = None
    image_tags: dict[str, str] = field(default_factory=dict)
    media_sources: list[MediaSource] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "CatalogItem":
        return cls(
            id=data.get("Id", ""),
            name=data.get("Name", ""),
            type=data.get("Type", ""),
            media_type=data.get("MediaType"),
            series_id=data.get("SeriesId"),
            series_name=data.get("SeriesName"),
            season_name=data.get("SeasonName"),
            series_primary_image_tag=data.get("SeriesPrimaryImageTag"),
            album=data.get("Album"),
            album_id=data.get("AlbumId"),
            album_artist=data.get("AlbumArtist"),
            album_primary_image_tag=data.get("AlbumPrimaryImageTag"),
            image_tags=dict(data.get("ImageTags") or {}),
            media_sources=[MediaSource.from_api(s) for s in data.get("MediaSources") or []],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "Name": self.name,
            "Type": self.type,
            "MediaType": self.media_type,
            "SeriesId": self.series_id,
            "SeriesName": self.series_name,
            "SeasonName": self.season_name,
            "SeriesPrimaryImageTag": self.series_primary_image_tag,
            "Album": self.album,
            "AlbumId": self.album_id,
            "AlbumArtist": self.album_artist,
            "AlbumPrimaryImageTag": self.album_primary_image_tag,
            "ImageTags": dict(self.image_tags),
            "MediaSources": [s.to_dict() for s in self.media_sources],
        }

    @property
    def has_primary_image(self) -> bool:
        return ImageType.PRIMARY.value in self.image_tags

    @property
    def is_episode(self) -> bool:
        return self.type == "Episode"

    @property
    def is_photo(self) -> bool:
        return (self.media_type or "").lower() == "photo"


@dataclass
class LocalItem:
    """
    A catalog item cached on this device.

    Attributes:
        id: Local id, md5(server_id + item_id) as uppercase hex.
        server_id: Owning server.
        item_id: The item's id on that server.
        item: Embedded catalog metadata, media source paths pointing at local files.
        local_path: Absolute path of the primary media file.
        user_ids_with_access: Users allowed to see this item offline.
    """
    id: str
    server_id: str
    item_id: str
    item: CatalogItem
    local_path: str | None = None
    user_ids_with_access: list[str] = field(default_factory=list)

    def has_same_access(self, user_ids: list[str]) -> bool:
        """Case-insensitive, order-sensitive comparison of access lists."""
        if len(user_ids) != len(self.user_ids_with_access):
            return False
        return all(a.lower() == b.lower() for a, b in zip(self.user_ids_with_access, user_ids))


@dataclass(frozen=True)
class ItemFileInfo:
    """A file on disk belonging to a local item."""
    name: str
    path: str
    item_id: str
    type: ItemFileType
    image_type: ImageType | None = None
    index: int = 0


@dataclass(frozen=True)
class AdditionalFile:
    """A side file of a sync job item, e.g. an external subtitle track."""
    name: str
    type: ItemFileType
    index: int = 0

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "AdditionalFile":
        try:
            file_type = ItemFileType(data.get("Type", "Media"))
        except ValueError:
            file_type = ItemFileType.MEDIA
        return cls(name=data.get("Name", ""), type=file_type, index=int(data.get("Index", 0)))


@dataclass(frozen=True)
class SyncedItem:
    """One job item the server has ready for this device."""
    sync_job_item_id: str
    item: CatalogItem
    original_file_name: str | None = None
    additional_files: tuple[AdditionalFile, ...] = ()
    server_id: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SyncedItem":
        return cls(
            sync_job_item_id=str(data.get("SyncJobItemId", "")),
            item=CatalogItem.from_api(data.get("Item") or {}),
            original_file_name=data.get("OriginalFileName"),
            additional_files=tuple(AdditionalFile.from_api(f) for f in data.get("AdditionalFiles") or []),
            server_id=data.get("ServerId"),
        )


# =============================================================================
# Offline users and actions
# =============================================================================

@dataclass
class OfflineUser:
    """Cached user record allowing sign-in without the server."""
    id: str
    name: str = ""
    server_id: str | None = None
    primary_image_tag: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "OfflineUser":
        return cls(
            id=data.get("Id", ""),
            name=data.get("Name", ""),
            server_id=data.get("ServerId"),
            primary_image_tag=data.get("PrimaryImageTag"),
            raw=dict(data),
        )

    def to_dict(self) -> dict[str, Any]:
        data = dict(self.raw)
        data.update({
            "Id": self.id,
            "Name": self.name,
            "ServerId": self.server_id,
            "PrimaryImageTag": self.primary_image_tag,
        })
        return data

    @property
    def has_primary_image(self) -> bool:
        return bool(self.primary_image_tag)


@dataclass
class UserAction:
    """
    A playback event recorded while offline.

    Attributes:
        type: Event type, e.g. "PlayedItem".
        position_ticks: Playback position in 100ns ticks, when relevant.
    """
    server_id: str
    item_id: str
    user_id: str
    type: str
    date: datetime
    position_ticks: int | None = None
    id: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "UserAction":
        return cls(
            id=data.get("Id"),
            server_id=data.get("ServerId", ""),
            item_id=data.get("ItemId", ""),
            user_id=data.get("UserId", ""),
            type=data.get("Type", ""),
            date=_parse_datetime(data.get("Date")) or datetime.now(timezone.utc),
            position_ticks=data.get("PositionTicks"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "Id": self.id,
            "ServerId": self.server_id,
            "ItemId": self.item_id,
            "UserId": self.user_id,
            "Type": self.type,
            "Date": _format_datetime(self.date),
            "PositionTicks": self.position_ticks,
        }


# =============================================================================
# Reconciliation
# =============================================================================

@dataclass(frozen=True)
class SyncDataRequest:
    target_id: str
    local_item_ids: list[str]
    offline_user_ids: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "TargetId": self.target_id,
            "LocalItemIds": list(self.local_item_ids),
            "OfflineUserIds": list(self.offline_user_ids),
        }


@dataclass(frozen=True)
class SyncDataResult:
    """
    Server verdict on the local item set.

    Attributes:
        item_ids_to_remove: Server item ids the device must drop.
        item_user_access: Server item id -> user ids allowed to see it.
    """
    item_ids_to_remove: list[str] = field(default_factory=list)
    item_user_access: dict[str, list[str]] = field(default_factory=dict)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "SyncDataResult":
        return cls(
            item_ids_to_remove=list(data.get("ItemIdsToRemove") or []),
            item_user_access={k: list(v or []) for k, v in (data.get("ItemUserAccess") or {}).items()},
        )


# =============================================================================
# Camera upload
# =============================================================================

@dataclass(frozen=True)
class DevicesOptions:
    enabled_camera_upload_devices: list[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "DevicesOptions":
        return cls(enabled_camera_upload_devices=list(data.get("EnabledCameraUploadDevices") or []))


@dataclass(frozen=True)
class LocalFileInfo:
    """A photo or video on this device, candidate for camera upload."""
    id: str
    name: str
    full_path: str
    album: str | None = None
    mime_type: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "LocalFileInfo":
        return cls(
            id=data.get("Id", ""),
            name=data.get("Name", ""),
            full_path=data.get("FullPath", ""),
            album=data.get("Album"),
            mime_type=data.get("MimeType"),
        )


@dataclass(frozen=True)
class ContentUploadHistory:
    device_id: str = ""
    files_uploaded: list[LocalFileInfo] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ContentUploadHistory":
        return cls(
            device_id=data.get("DeviceId", ""),
            files_uploaded=[LocalFileInfo.from_api(f) for f in data.get("FilesUploaded") or []],
        )

    def uploaded_paths(self) -> set[str]:
        return {f.full_path.lower() for f in self.files_uploaded if f.full_path}
