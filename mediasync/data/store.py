"""
Local asset store: cached items, their files, offline users and actions.

Combines the SQLite Database (metadata) with the filesystem (media,
images, subtitles).

Architecture:
    data_directory/
    ├── mediasync.db
    ├── media/
    │   └── Home Server/
    │       ├── TV/<series>/<season>/<file>       # episodes
    │       ├── Videos/<name>/<file>              # other videos
    │       ├── Music/<album artist>/<album>/<file>
    │       └── Photos/<album>/<file>
    └── images/
        ├── items/<owner id>/<tag>.<ext>          # container images (series, album)
        └── users/<user id>/<tag>.<ext>           # offline user avatars

Item images and subtitles are stored beside the media file:
    <stem>.jpg, <stem>-thumb.jpg (episodes), <stem>.<lang>[.foreign].<codec>

Usage:
    store = LocalAssetStore(Database(path), media_root, image_root)
    local_item = store.create_local_item(catalog_item, server, "file.mkv")
    store.add_or_update(local_item)
"""

import hashlib
import os
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from mediasync.api.models import (
    CatalogItem,
    ImageType,
    ItemFileInfo,
    ItemFileType,
    LocalItem,
    OfflineUser,
    ServerRecord,
    UserAction,
)
from mediasync.core.database import Database
from mediasync.core.exceptions import TransferError
from mediasync.core.logger import get_logger


logger = get_logger(__name__)

# Characters that are invalid in filenames on various operating systems
_INVALID_CHARS_PATTERN = re.compile(r'[<>:"/\\|?*\x00-\x1f]')

_MAX_FILENAME_LENGTH = 200

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".webp")
SUBTITLE_EXTENSIONS = (".srt", ".vtt")

_MIME_EXTENSIONS = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/webp": ".webp",
    "image/gif": ".gif",
}


def sanitize_filename(name: str | None) -> str:
    """
    Sanitize a string for use as a file or directory name.

    Behavior:
        - Replaces invalid characters with underscores
        - Strips leading/trailing whitespace and dots
        - Truncates to maximum length
        - Returns "Unknown" if result is empty
    """
    if not name:
        return "Unknown"

    result = _INVALID_CHARS_PATTERN.sub("_", name)

    # Dots at start can hide files on Unix
    result = result.strip(" .")

    if len(result) > _MAX_FILENAME_LENGTH:
        result = result[:_MAX_FILENAME_LENGTH].rstrip(" .")

    return result if result else "Unknown"


def _same_file_name(a: Path, b: Path) -> bool:
    # Case-insensitive filesystems treat beach.JPG and beach.jpg as one file
    return str(a).lower() == str(b).lower()


def classify_file(name: str) -> ItemFileType:
    """Classify an item file by extension."""
    ext = os.path.splitext(name)[1].lower()
    if ext in IMAGE_EXTENSIONS:
        return ItemFileType.IMAGE
    if ext in SUBTITLE_EXTENSIONS:
        return ItemFileType.SUBTITLES
    return ItemFileType.MEDIA


def extension_for_mime_type(mime_type: str | None) -> str:
    if not mime_type:
        return ".jpg"
    return _MIME_EXTENSIONS.get(mime_type.split(";")[0].strip().lower(), ".jpg")


@dataclass(frozen=True)
class LocalItemQuery:
    """Filters for LocalAssetStore.get_items(); None means "any"."""
    server_id: str | None = None
    type: str | None = None
    media_type: str | None = None
    album_id: str | None = None
    album_artist: str | None = None
    exclude_types: tuple[str, ...] = ()


class LocalAssetStore:
    """
    Persistent cache of synced items and everything attached to them.

    Attributes:
        database: Metadata storage.
        media_root: Root directory for media, item images and subtitles.
        image_root: Root directory for container and user images.
    """

    def __init__(self, database: Database, media_root: Path, image_root: Path) -> None:
        self.database = database
        self.media_root = media_root
        self.image_root = image_root
        self.media_root.mkdir(parents=True, exist_ok=True)
        self.image_root.mkdir(parents=True, exist_ok=True)

    # =========================================================================
    # Local Items
    # =========================================================================

    @staticmethod
    def get_local_id(server_id: str, item_id: str) -> str:
        return hashlib.md5((server_id + item_id).encode("utf-8")).hexdigest().upper()

    def create_local_item(
        self,
        item: CatalogItem,
        server: ServerRecord,
        original_file_name: str | None
    ) -> LocalItem:
        """
        Build (without saving) the local record for a server item.

        Media source paths are rewritten to the local file so playback
        resolves to disk.
        """
        parts = self._get_directory_parts(item, server)
        file_name = sanitize_filename(original_file_name or item.name)
        local_path = self.media_root.joinpath(*parts, file_name)

        for source in item.media_sources:
            source.path = str(local_path)
            source.protocol = "File"

        return LocalItem(
            id=self.get_local_id(server.id, item.id),
            server_id=server.id,
            item_id=item.id,
            item=item,
            local_path=str(local_path),
        )

    def _get_directory_parts(self, item: CatalogItem, server: ServerRecord) -> list[str]:
        parts = [server.name or server.id]
        media_type = (item.media_type or "").lower()

        if item.is_episode:
            parts += ["TV", item.series_name or "Unknown Series"]
            if item.season_name:
                parts.append(item.season_name)
        elif media_type == "video":
            parts += ["Videos", item.name]
        elif media_type == "audio":
            parts.append("Music")
            if item.album_artist:
                parts.append(item.album_artist)
            if item.album:
                parts.append(item.album)
        elif media_type == "photo":
            parts.append("Photos")
            if item.album:
                parts.append(item.album)

        return [sanitize_filename(p) for p in parts]

    def add_or_update(self, local_item: LocalItem) -> None:
        item = local_item.item
        self.database.upsert_local_item({
            "id": local_item.id,
            "server_id": local_item.server_id,
            "item_id": local_item.item_id,
            "name": item.name,
            "item_type": item.type,
            "media_type": item.media_type,
            "album_id": item.album_id,
            "album_artist": item.album_artist,
            "series_name": item.series_name,
            "local_path": local_item.local_path,
            "user_ids_with_access": list(local_item.user_ids_with_access),
            "item": item.to_dict(),
        })

    def get_local_item(self, local_id: str) -> LocalItem | None:
        row = self.database.get_local_item(local_id)
        return self._row_to_local_item(row) if row else None

    def get_local_item_for(self, server_id: str, item_id: str) -> LocalItem | None:
        return self.get_local_item(self.get_local_id(server_id, item_id))

    def delete(self, local_item: LocalItem) -> None:
        self.database.delete_local_item(local_item.id)

    def get_server_item_ids(self, server_id: str) -> list[str]:
        return self.database.get_server_item_ids(server_id)

    def _row_to_local_item(self, row: dict) -> LocalItem:
        return LocalItem(
            id=row["id"],
            server_id=row["server_id"],
            item_id=row["item_id"],
            item=CatalogItem.from_api(row["item"]),
            local_path=row.get("local_path"),
            user_ids_with_access=list(row.get("user_ids_with_access") or []),
        )

    # =========================================================================
    # Browsing
    # =========================================================================

    def get_items(self, query: LocalItemQuery) -> list[LocalItem]:
        rows = self.database.query_local_items(
            server_id=query.server_id,
            item_type=query.type,
            media_type=query.media_type,
            album_id=query.album_id,
            album_artist=query.album_artist,
            exclude_types=list(query.exclude_types) or None,
        )
        return [self._row_to_local_item(r) for r in rows]

    def get_item_types(self, server_id: str) -> list[str]:
        return self.database.get_distinct_values("item_type", server_id)

    def get_album_artists(self, server_id: str) -> list[str]:
        return self.database.get_distinct_values("album_artist", server_id)

    def get_tv_shows(self, server_id: str) -> list[str]:
        return self.database.get_distinct_values("series_name", server_id)

    # =========================================================================
    # Item Files
    # =========================================================================

    def get_files(self, local_item: LocalItem) -> list[ItemFileInfo]:
        files = []
        for row in self.database.get_item_files(local_item.id):
            image_type = ImageType(row["image_type"]) if row.get("image_type") else None
            files.append(ItemFileInfo(
                name=row["name"],
                path=row["path"],
                item_id=local_item.id,
                type=ItemFileType(row["type"]),
                image_type=image_type,
                index=row.get("stream_index") or 0,
            ))
        return files

    def delete_file(self, file: ItemFileInfo) -> None:
        """
        Remove a file from disk and forget it.

        Raises:
            OSError: If the file exists but cannot be removed.
        """
        try:
            os.remove(file.path)
        except FileNotFoundError:
            logger.debug(f"File already gone: {file.path}")
        self.database.delete_item_file(file.path)

    def _record_file(self, local_item: LocalItem, path: Path, file_type: ItemFileType,
                     image_type: ImageType | None = None, index: int = 0) -> ItemFileInfo:
        self.database.add_item_file({
            "local_item_id": local_item.id,
            "name": path.name,
            "path": str(path),
            "type": file_type.value,
            "image_type": image_type.value if image_type else None,
            "stream_index": index,
        })
        return ItemFileInfo(
            name=path.name,
            path=str(path),
            item_id=local_item.id,
            type=file_type,
            image_type=image_type,
            index=index,
        )

    def _write_file(self, path: Path, chunks: Iterable[bytes]) -> int:
        """
        Write chunks to path via a .partial file, renamed on completion.

        Returns:
            Number of bytes written.

        Raises:
            TransferError: If the local write fails.
        """
        partial = path.with_name(path.name + ".partial")
        written = 0
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(partial, "wb") as f:
                for chunk in chunks:
                    f.write(chunk)
                    written += len(chunk)
            os.replace(partial, path)
        except OSError as e:
            raise TransferError(
                f"Failed to write {path}: {e}",
                details={"path": str(path), "original_error": str(e)}
            ) from e
        finally:
            if partial.exists():
                partial.unlink()
        return written

    def save_media(self, chunks: Iterable[bytes], local_item: LocalItem) -> ItemFileInfo:
        """Stream the primary media file to local_item.local_path."""
        if not local_item.local_path:
            raise ValueError("local_item.local_path is required")

        path = Path(local_item.local_path)
        logger.debug(f"Saving media to {path}")
        self._write_file(path, chunks)
        return self._record_file(local_item, path, ItemFileType.MEDIA)

    def save_item_image(
        self,
        local_item: LocalItem,
        image_type: ImageType,
        data: bytes,
        mime_type: str | None
    ) -> ItemFileInfo:
        """
        Save an image of the item itself beside its media file.

        Photos share their extension with the image, so the image type is
        appended when the name would collide with the media file.
        """
        media_path = Path(local_item.local_path or "")
        stem = media_path.stem
        if local_item.item.is_episode:
            stem += "-thumb"
        extension = extension_for_mime_type(mime_type)
        path = media_path.with_name(stem + extension)
        if _same_file_name(path, media_path):
            path = media_path.with_name(f"{stem}-{image_type.value.lower()}{extension}")

        self._write_file(path, [data])
        return self._record_file(local_item, path, ItemFileType.IMAGE, image_type=image_type)

    def save_subtitles(
        self,
        data: bytes,
        subtitle_format: str,
        local_item: LocalItem,
        language: str | None,
        is_forced: bool,
        index: int = 0
    ) -> ItemFileInfo:
        """
        Save a subtitle track as <stem>[.<lang>][.foreign].<format>.

        When another stream of the item already owns that name, the stream
        index is added: <stem>.<lang>.<index>.<format>.
        """
        media_path = Path(local_item.local_path or "")
        name = media_path.stem
        if language and language.strip():
            name += "." + language.strip().lower()
        if is_forced:
            name += ".foreign"
        extension = subtitle_format.lower()
        path = media_path.with_name(f"{name}.{extension}")

        owners = {
            row["path"]: row.get("stream_index") or 0
            for row in self.database.get_item_files(local_item.id)
        }
        if _same_file_name(path, media_path) or owners.get(str(path), index) != index:
            path = media_path.with_name(f"{name}.{index}.{extension}")

        self._write_file(path, [data])
        return self._record_file(local_item, path, ItemFileType.SUBTITLES, index=index)

    # =========================================================================
    # Container Images (series, album)
    # =========================================================================

    def has_image(self, owner_id: str, image_tag: str) -> bool:
        path = self.database.get_image_path(owner_id, image_tag)
        return path is not None and os.path.exists(path)

    def save_image(self, owner_id: str, image_tag: str, data: bytes, mime_type: str | None) -> Path:
        path = self.image_root / "items" / sanitize_filename(owner_id) / (
            sanitize_filename(image_tag) + extension_for_mime_type(mime_type)
        )
        self._write_file(path, [data])
        self.database.add_image(owner_id, image_tag, str(path))
        return path

    # =========================================================================
    # Offline Users
    # =========================================================================

    def save_offline_user(self, user: OfflineUser) -> None:
        self.database.upsert_offline_user(user.id, user.server_id, user.to_dict())

    def get_offline_user(self, user_id: str) -> OfflineUser | None:
        data = self.database.get_offline_user(user_id)
        return OfflineUser.from_api(data) if data else None

    def delete_offline_user(self, user_id: str) -> None:
        self.database.delete_offline_user(user_id)

    def has_user_image(self, user: OfflineUser) -> bool:
        if not user.primary_image_tag:
            return False
        return self.has_image(self._user_image_owner(user.id), user.primary_image_tag)

    def save_user_image(self, user: OfflineUser, data: bytes, mime_type: str | None) -> Path:
        """Replace the cached avatar of a user."""
        if not user.primary_image_tag:
            raise ValueError("user.primary_image_tag is required")

        self.delete_user_image(user.id)
        path = self.image_root / "users" / sanitize_filename(user.id) / (
            sanitize_filename(user.primary_image_tag) + extension_for_mime_type(mime_type)
        )
        self._write_file(path, [data])
        self.database.add_image(self._user_image_owner(user.id), user.primary_image_tag, str(path))
        return path

    def delete_user_image(self, user_id: str) -> None:
        owner = self._user_image_owner(user_id)
        for path in self.database.get_image_paths(owner):
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
        self.database.delete_images(owner)

    @staticmethod
    def _user_image_owner(user_id: str) -> str:
        return f"user:{user_id}"

    # =========================================================================
    # User Actions
    # =========================================================================

    def record_user_action(self, action: UserAction) -> UserAction:
        """Store an offline playback event, assigning it an id."""
        action.id = uuid.uuid4().hex
        row = action.to_dict()
        self.database.add_user_action({
            "id": action.id,
            "server_id": action.server_id,
            "item_id": action.item_id,
            "user_id": action.user_id,
            "type": action.type,
            "date": row["Date"],
            "position_ticks": action.position_ticks,
        })
        return action

    def get_user_actions(self, server_id: str) -> list[UserAction]:
        return [
            UserAction.from_api({
                "Id": r["id"],
                "ServerId": r["server_id"],
                "ItemId": r["item_id"],
                "UserId": r["user_id"],
                "Type": r["type"],
                "Date": r["date"],
                "PositionTicks": r["position_ticks"],
            })
            for r in self.database.get_user_actions(server_id)
        ]

    def delete_user_action(self, action: UserAction) -> None:
        if action.id:
            self.database.delete_user_action(action.id)
