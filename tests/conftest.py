"""Test configuration and fixtures"""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from mediasync.api.models import (
    ContentUploadHistory,
    DevicesOptions,
    LocalFileInfo,
    OfflineUser,
    ServerRecord,
    ServerUser,
    SyncDataRequest,
    SyncDataResult,
    SyncedItem,
    SystemInfo,
    UserAction,
)
from mediasync.core.config import DeviceConfig, NetworkConfig
from mediasync.core.database import Database
from mediasync.core.exceptions import ApiError
from mediasync.data.store import LocalAssetStore


class FakeResponse:
    """Streaming response stand-in: context manager with iter_content()."""

    def __init__(self, data: bytes, fail_after: int | None = None) -> None:
        self.data = data
        self.fail_after = fail_after
        self.headers = {"Content-Length": str(len(data))}
        self.closed = False

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.closed = True

    def iter_content(self, chunk_size: int = 1024):
        for offset in range(0, len(self.data), 4):
            if self.fail_after is not None and offset >= self.fail_after:
                raise ApiError("Connection reset while downloading")
            yield self.data[offset:offset + 4]


class FakeMediaServer:
    """
    In-memory media server exposing the ApiClient calls the sync layer uses.

    assigned maps server item id -> user ids with access; anything the
    device reports that is not assigned comes back in item_ids_to_remove.
    """

    def __init__(self, device_id: str = "device-1", supports_sync: bool = True) -> None:
        self.device_id = device_id
        self.supports_sync = supports_sync

        self.assigned: dict[str, list[str]] = {}
        self.ready: list[SyncedItem] = []
        self.files: dict[str, bytes] = {}
        self.failing_files: set[str] = set()
        self.additional_files: dict[tuple[str, str], bytes] = {}
        self.missing_images: set[str] = set()

        self.offline_users: dict[str, dict] = {}
        self.user_errors: dict[str, int] = {}

        self.enabled_upload_devices: list[str] = []
        self.upload_history: list[LocalFileInfo] = []
        self.uploaded: list[LocalFileInfo] = []
        self.failing_uploads: set[str] = set()

        self.fail_offline_actions = False
        self.reported_actions: list[list[UserAction]] = []
        self.sync_data_requests: list[SyncDataRequest] = []
        self.transferred: list[str] = []
        self.image_requests: list[str] = []

    # Setup helpers

    def add_job_item(
        self,
        job_item_id: str,
        item: dict,
        data: bytes = b"media-bytes",
        original_file_name: str | None = None,
        additional_files: list[dict] | None = None,
        users: list[str] | None = None
    ) -> None:
        self.ready.append(SyncedItem.from_api({
            "SyncJobItemId": job_item_id,
            "Item": item,
            "OriginalFileName": original_file_name,
            "AdditionalFiles": additional_files or [],
        }))
        self.files[job_item_id] = data
        self.assigned[item["Id"]] = users or []

    # System

    def get_system_info(self) -> SystemInfo:
        return SystemInfo.from_api({"Id": "server-1", "ServerName": "Home", "SupportsSync": self.supports_sync})

    # Sync

    def report_offline_actions(self, actions: list[UserAction]) -> None:
        if not actions:
            raise ValueError("actions must not be empty")
        if self.fail_offline_actions:
            raise ApiError("Server error", status_code=500)
        self.reported_actions.append(list(actions))

    def sync_data(self, request: SyncDataRequest) -> SyncDataResult:
        self.sync_data_requests.append(request)
        local_ids = request.local_item_ids
        return SyncDataResult(
            item_ids_to_remove=[i for i in local_ids if i not in self.assigned],
            item_user_access={i: list(self.assigned[i]) for i in local_ids if i in self.assigned},
        )

    def get_ready_sync_items(self, target_id: str) -> list[SyncedItem]:
        return list(self.ready)

    def get_sync_job_item_file(self, job_item_id: str) -> FakeResponse:
        if job_item_id in self.failing_files:
            return FakeResponse(self.files[job_item_id], fail_after=4)
        return FakeResponse(self.files[job_item_id])

    def get_sync_job_item_additional_file(self, job_item_id: str, name: str) -> bytes:
        try:
            return self.additional_files[(job_item_id, name)]
        except KeyError:
            raise ApiError(f"No such file: {name}", status_code=404)

    def report_sync_job_item_transferred(self, job_item_id: str) -> None:
        self.transferred.append(job_item_id)
        self.ready = [j for j in self.ready if j.sync_job_item_id != job_item_id]

    # Images and users

    def get_image_url(self, item_id: str, image_type: str, tag: str | None = None,
                      max_width: int | None = None) -> str:
        return f"http://fake/Items/{item_id}/Images/{image_type}?tag={tag}"

    def get_user_image_url(self, user_id: str, tag: str | None = None) -> str:
        return f"http://fake/Users/{user_id}/Images/Primary?tag={tag}"

    def get_image(self, url: str) -> tuple[bytes, str | None]:
        self.image_requests.append(url)
        if url in self.missing_images:
            raise ApiError("Image not found", status_code=404)
        return b"image-bytes", "image/jpeg"

    def get_offline_user(self, user_id: str) -> OfflineUser:
        if user_id in self.user_errors:
            raise ApiError("Request failed", status_code=self.user_errors[user_id])
        if user_id not in self.offline_users:
            raise ApiError("User not found", status_code=404)
        return OfflineUser.from_api(self.offline_users[user_id])

    # Camera upload

    def get_devices_options(self) -> DevicesOptions:
        return DevicesOptions(enabled_camera_upload_devices=list(self.enabled_upload_devices))

    def get_content_upload_history(self, device_id: str) -> ContentUploadHistory:
        return ContentUploadHistory(device_id=device_id, files_uploaded=list(self.upload_history))

    def upload_file(self, file: LocalFileInfo, device_id: str) -> None:
        if file.name in self.failing_uploads:
            raise ApiError("Upload rejected", status_code=500)
        self.uploaded.append(file)


def make_item(item_id: str, name: str = "Movie", **fields) -> dict:
    """Catalog item payload for a video with a single media source."""
    item = {
        "Id": item_id,
        "Name": name,
        "Type": "Movie",
        "MediaType": "Video",
        "ImageTags": {},
        "MediaSources": [{"Id": item_id, "Protocol": "Http", "MediaStreams": []}],
    }
    item.update(fields)
    return item


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def device_config():
    return DeviceConfig(device_id="device-1", name="Test Device")


@pytest.fixture
def network_config():
    return NetworkConfig(request_timeout=5, probe_timeout=1)


@pytest.fixture
def database(temp_dir):
    db = Database(temp_dir / "mediasync.db")
    yield db
    db.close()


@pytest.fixture
def store(database, temp_dir):
    return LocalAssetStore(database, temp_dir / "media", temp_dir / "images")


@pytest.fixture
def fake_server():
    return FakeMediaServer()


@pytest.fixture
def server_record():
    """A signed-in server with one offline user."""
    return ServerRecord(
        id="server-1",
        name="Home",
        local_address="http://192.168.1.20:8096",
        remote_address="https://media.example.com",
        access_token="token-1",
        user_id="user-1",
        users=[ServerUser(id="user-1")],
        date_last_accessed=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
