"""
This device: identity and camera roll.

The camera roll is the set of folders configured under
device.camera_roll_directories. They are scanned recursively for photos
and videos, which ContentUploader offers to servers that enabled camera
upload for this device.
"""

import hashlib
import mimetypes
from pathlib import Path

from mediasync.api.models import LocalFileInfo
from mediasync.core.config import DeviceConfig
from mediasync.core.logger import get_logger


logger = get_logger(__name__)

PHOTO_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".gif", ".heic", ".webp", ".bmp", ".tif", ".tiff"})
VIDEO_EXTENSIONS = frozenset({".mp4", ".mov", ".m4v", ".3gp", ".avi", ".mkv", ".webm"})


class Device:
    """
    Identity and local content of the machine running the client.

    Attributes:
        device_id: Stable identifier sent to servers.
        name: Friendly name shown in the server dashboard.
        camera_roll_directories: Folders scanned for uploadable content.
    """

    def __init__(self, config: DeviceConfig) -> None:
        self.device_id = config.device_id
        self.name = config.name
        self.camera_roll_directories = list(config.camera_roll_directories)

    def get_local_photos(self) -> list[LocalFileInfo]:
        return self._scan(PHOTO_EXTENSIONS)

    def get_local_videos(self) -> list[LocalFileInfo]:
        return self._scan(VIDEO_EXTENSIONS)

    def _scan(self, extensions: frozenset[str]) -> list[LocalFileInfo]:
        files = []
        for directory in self.camera_roll_directories:
            if not directory.is_dir():
                logger.debug(f"Camera roll directory not found: {directory}")
                continue
            for path in sorted(directory.rglob("*")):
                if path.is_file() and path.suffix.lower() in extensions:
                    files.append(self._to_file_info(path))
        return files

    @staticmethod
    def _to_file_info(path: Path) -> LocalFileInfo:
        full_path = str(path.resolve())
        mime_type, _ = mimetypes.guess_type(path.name)
        return LocalFileInfo(
            id=hashlib.md5(full_path.encode("utf-8")).hexdigest(),
            name=path.name,
            full_path=full_path,
            album=path.parent.name or None,
            mime_type=mime_type,
        )
