"""
Camera upload: send this device's photos and videos to a server.

Only runs when the server lists this device among its camera upload
devices. Files already in the server's upload history (compared by full
path, case-insensitive) are skipped.
"""

from mediasync.api.client import ApiClient
from mediasync.core.cancellation import CancellationToken
from mediasync.core.exceptions import MediaSyncError
from mediasync.core.logger import get_logger
from mediasync.device import Device
from mediasync.sync.progress import COMPLETE, ProgressCallback, ignore_progress


logger = get_logger(__name__)


class ContentUploader:
    """Uploads new camera roll content through a bound ApiClient."""

    def __init__(self, api_client: ApiClient, device: Device) -> None:
        self.api_client = api_client
        self.device = device

    def upload_images(
        self,
        progress: ProgressCallback = ignore_progress,
        cancellation: CancellationToken | None = None
    ) -> int:
        """
        Upload every local photo and video the server has not seen yet.

        Args:
            progress: Receives cumulative 0-100 after each file.
            cancellation: Checked before each file.

        Returns:
            Number of files uploaded successfully.

        Raises:
            ApiError: Device options or upload history could not be fetched.
            SyncCancelledError: Cancellation was observed.
        """
        cancellation = cancellation or CancellationToken()
        device_id = self.device.device_id

        options = self.api_client.get_devices_options()
        if device_id not in options.enabled_camera_upload_devices:
            logger.debug("Camera upload is not enabled for this device")
            progress(COMPLETE)
            return 0

        uploaded_paths = self.api_client.get_content_upload_history(device_id).uploaded_paths()

        files = self.device.get_local_photos() + self.device.get_local_videos()
        files = [f for f in files if f.full_path.lower() not in uploaded_paths]
        logger.info(f"{len(files)} files to upload")

        uploaded = 0
        for done, file in enumerate(files, start=1):
            cancellation.raise_if_cancelled()
            logger.debug(f"Uploading {file.full_path}")

            try:
                self.api_client.upload_file(file, device_id)
                uploaded += 1
            except (MediaSyncError, OSError) as e:
                logger.error(f"Error uploading file {file.full_path}: {e}")

            progress(100.0 * done / len(files))

        progress(COMPLETE)
        return uploaded
