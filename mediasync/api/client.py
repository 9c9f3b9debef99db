"""
HTTP client for a single media server.

One ApiClient is bound to one server id. The connection manager re-points
it at whichever address won the last connection attempt and sets or
clears its authentication; other subsystems may keep using the same
instance, so the auth header is last-write-wins.

Every failure is raised as ApiError: transport failures carry
status_code=None, HTTP errors carry the response status.

Usage:
    client = ApiClient("http://192.168.1.20:8096", device_config, network_config)
    client.set_authentication_info(token, user_id)
    info = client.get_system_info()
"""

import threading
from pathlib import Path
from typing import Any, Iterator

import requests

from mediasync.api.models import (
    ContentUploadHistory,
    DevicesOptions,
    LocalFileInfo,
    OfflineUser,
    PublicSystemInfo,
    SyncDataRequest,
    SyncDataResult,
    SyncedItem,
    SystemInfo,
    UserAction,
)
from mediasync.core.config import DeviceConfig, NetworkConfig
from mediasync.core.exceptions import ApiError
from mediasync.core.logger import get_logger


logger = get_logger(__name__)

TOKEN_HEADER = "X-MediaBrowser-Token"
DOWNLOAD_CHUNK_SIZE = 64 * 1024


class ApiClient:
    """
    Media server REST client built on requests.Session.

    Attributes:
        server_id: Id of the server this client is bound to (may be empty
                   until the first successful probe).
        device: Identity sent in the Authorization header.
        timeout: Default per-call timeout in seconds.
    """

    def __init__(
        self,
        server_address: str,
        device: DeviceConfig,
        network: NetworkConfig,
        server_id: str = "",
        session: requests.Session | None = None
    ) -> None:
        self.server_id = server_id
        self.device = device
        self.timeout = network.request_timeout
        self._lock = threading.Lock()
        self._server_address = server_address.rstrip("/")
        self._access_token: str | None = None
        self._user_id: str | None = None

        self.session = session or requests.Session()
        self.session.headers.update({
            "User-Agent": network.user_agent,
            "Accept": "application/json",
        })
        self._update_authorization_header()

    # =========================================================================
    # Address and authentication
    # =========================================================================

    @property
    def server_address(self) -> str:
        return self._server_address

    @property
    def device_id(self) -> str:
        return self.device.device_id

    @property
    def access_token(self) -> str | None:
        return self._access_token

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def change_server_location(self, address: str) -> None:
        """Point the client at a different base URL for the same server."""
        with self._lock:
            self._server_address = address.rstrip("/")

    def set_authentication_info(self, access_token: str | None, user_id: str | None = None) -> None:
        with self._lock:
            self._access_token = access_token
            self._user_id = user_id
            self._update_authorization_header()

    def clear_authentication_info(self) -> None:
        self.set_authentication_info(None, None)

    def _update_authorization_header(self) -> None:
        parts = [
            f'Client="{self.device.app_name}"',
            f'Device="{self.device.name}"',
            f'DeviceId="{self.device.device_id}"',
            f'Version="{self.device.app_version}"',
        ]
        if self._user_id:
            parts.insert(0, f'UserId="{self._user_id}"')
        self.session.headers["X-Emby-Authorization"] = "MediaBrowser " + ", ".join(parts)

        if self._access_token:
            self.session.headers[TOKEN_HEADER] = self._access_token
        else:
            self.session.headers.pop(TOKEN_HEADER, None)

    # =========================================================================
    # Request plumbing
    # =========================================================================

    def get_api_url(self, path: str) -> str:
        return f"{self._server_address}/{path.lstrip('/')}"

    def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: Any = None,
        data: Any = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
        stream: bool = False
    ) -> requests.Response:
        url = path if path.startswith("http") else self.get_api_url(path)
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                data=data,
                headers=headers,
                timeout=timeout or self.timeout,
                stream=stream,
            )
            response.raise_for_status()
            return response
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise ApiError(
                f"{method} {url} failed with HTTP {status}",
                details={"url": url, "server_id": self.server_id},
                status_code=status,
            ) from e
        except requests.exceptions.RequestException as e:
            raise ApiError(
                f"{method} {url} failed: {e}",
                details={"url": url, "server_id": self.server_id, "original_error": str(e)},
            ) from e

    def _get_json(self, path: str, params: dict[str, Any] | None = None, timeout: float | None = None) -> Any:
        response = self._request("GET", path, params=params, timeout=timeout)
        try:
            return response.json()
        except ValueError as e:
            raise ApiError(
                f"Invalid JSON from {path}",
                details={"url": response.url, "server_id": self.server_id},
                status_code=response.status_code,
            ) from e

    def _post_json(self, path: str, payload: Any, params: dict[str, Any] | None = None) -> Any:
        response = self._request("POST", path, params=params, json=payload)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    # =========================================================================
    # System
    # =========================================================================

    def get_public_system_info(self, timeout: float | None = None) -> PublicSystemInfo:
        """Unauthenticated reachability probe."""
        return PublicSystemInfo.from_api(self._get_json("System/Info/Public", timeout=timeout))

    def get_system_info(self) -> SystemInfo:
        return SystemInfo.from_api(self._get_json("System/Info"))

    def get_user(self, user_id: str) -> dict[str, Any]:
        return self._get_json(f"Users/{user_id}")

    def validate_authentication(self) -> SystemInfo:
        """
        Check that the stored token is still accepted.

        Fetches authenticated system info and, when a user id is set, the
        user record. Any failure raises ApiError.
        """
        info = self.get_system_info()
        if self._user_id:
            self.get_user(self._user_id)
        return info

    def authenticate_by_name(self, username: str, password: str) -> tuple[dict[str, Any], str]:
        """
        Sign in with a user name and password.

        Returns:
            (user record, access token). The client is not modified; the
            caller decides whether to keep the token.
        """
        data = self._post_json("Users/AuthenticateByName", {"Username": username, "Pw": password})
        if not data or not data.get("AccessToken"):
            raise ApiError(
                "Authentication response did not contain an access token",
                details={"server_id": self.server_id, "username": username},
            )
        return data.get("User") or {}, data["AccessToken"]

    def logout(self) -> None:
        if self._access_token:
            self._request("POST", "Sessions/Logout")
        self.clear_authentication_info()

    # =========================================================================
    # Sync
    # =========================================================================

    def sync_data(self, request: SyncDataRequest) -> SyncDataResult:
        data = self._post_json("Sync/Data", request.to_dict())
        return SyncDataResult.from_api(data or {})

    def get_ready_sync_items(self, target_id: str) -> list[SyncedItem]:
        data = self._get_json("Sync/Items/Ready", params={"TargetId": target_id})
        return [SyncedItem.from_api(d) for d in data or []]

    def get_sync_job_item_file(self, job_item_id: str) -> requests.Response:
        """
        Open the media file of a job item as a streaming response.

        The caller must close the response (use it as a context manager).
        """
        return self._request("GET", f"Sync/JobItems/{job_item_id}/File", stream=True)

    def get_sync_job_item_additional_file(self, job_item_id: str, name: str) -> bytes:
        response = self._request(
            "GET", f"Sync/JobItems/{job_item_id}/AdditionalFiles", params={"Name": name}
        )
        return response.content

    def report_sync_job_item_transferred(self, job_item_id: str) -> None:
        self._request("POST", f"Sync/JobItems/{job_item_id}/Transferred")

    def report_offline_actions(self, actions: list[UserAction]) -> None:
        if not actions:
            raise ValueError("actions must not be empty")
        self._post_json("Sync/OfflineActions", [a.to_dict() for a in actions])

    # =========================================================================
    # Users and images
    # =========================================================================

    def get_offline_user(self, user_id: str) -> OfflineUser:
        return OfflineUser.from_api(self._get_json(f"Users/{user_id}/Offline"))

    def get_image_url(self, item_id: str, image_type: str, tag: str | None = None,
                      max_width: int | None = None) -> str:
        params = []
        if tag:
            params.append(f"tag={tag}")
        if max_width:
            params.append(f"maxWidth={max_width}")
        url = self.get_api_url(f"Items/{item_id}/Images/{image_type}")
        return f"{url}?{'&'.join(params)}" if params else url

    def get_user_image_url(self, user_id: str, tag: str | None = None) -> str:
        url = self.get_api_url(f"Users/{user_id}/Images/Primary")
        return f"{url}?tag={tag}" if tag else url

    def get_image(self, url: str) -> tuple[bytes, str | None]:
        """Download an image. Returns (content, content type)."""
        response = self._request("GET", url)
        return response.content, response.headers.get("Content-Type")

    # =========================================================================
    # Camera upload
    # =========================================================================

    def get_devices_options(self) -> DevicesOptions:
        return DevicesOptions.from_api(self._get_json("System/Configuration/devices") or {})

    def get_content_upload_history(self, device_id: str) -> ContentUploadHistory:
        data = self._get_json("Devices/CameraUploads", params={"DeviceId": device_id})
        return ContentUploadHistory.from_api(data or {})

    def upload_file(self, file: LocalFileInfo, device_id: str) -> None:
        params = {"DeviceId": device_id, "Name": file.name, "Id": file.id}
        if file.album:
            params["Album"] = file.album

        headers = {"Content-Type": file.mime_type or "application/octet-stream"}
        with open(Path(file.full_path), "rb") as f:
            self._request("POST", "Devices/CameraUploads", params=params, data=f, headers=headers)


def iter_response_chunks(response: requests.Response, chunk_size: int = DOWNLOAD_CHUNK_SIZE) -> Iterator[bytes]:
    """Yield non-empty chunks of a streaming response, mapping read errors to ApiError."""
    try:
        for chunk in response.iter_content(chunk_size=chunk_size):
            if chunk:
                yield chunk
    except requests.exceptions.RequestException as e:
        raise ApiError(f"Download interrupted: {e}", details={"url": response.url}) from e
