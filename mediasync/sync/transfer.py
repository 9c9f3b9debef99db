"""
Streaming download of a job item's media file into the local store.
"""

from typing import Iterator

from mediasync.api.client import ApiClient, iter_response_chunks
from mediasync.api.models import ItemFileInfo, LocalItem
from mediasync.core.cancellation import CancellationToken
from mediasync.core.logger import get_logger
from mediasync.data.store import LocalAssetStore
from mediasync.sync.progress import ProgressCallback


logger = get_logger(__name__)


class FileTransferManager:
    """Downloads media in chunks, reporting byte-level progress (0-100)."""

    def __init__(self, store: LocalAssetStore) -> None:
        self.store = store

    def get_item_file(
        self,
        api_client: ApiClient,
        local_item: LocalItem,
        job_item_id: str,
        progress: ProgressCallback,
        cancellation: CancellationToken
    ) -> ItemFileInfo:
        """
        Download the media file of a job item to local_item.local_path.

        Raises:
            ApiError: The server request failed or the stream broke.
            TransferError: The local write failed.
            SyncCancelledError: Cancellation observed between chunks.
        """
        logger.debug(f"Downloading job item {job_item_id} to {local_item.local_path}")

        with api_client.get_sync_job_item_file(job_item_id) as response:
            total = int(response.headers.get("Content-Length") or 0)
            chunks = self._track(iter_response_chunks(response), total, progress, cancellation)
            file_info = self.store.save_media(chunks, local_item)

        progress(100.0)
        return file_info

    def _track(
        self,
        chunks: Iterator[bytes],
        total: int,
        progress: ProgressCallback,
        cancellation: CancellationToken
    ) -> Iterator[bytes]:
        received = 0
        for chunk in chunks:
            cancellation.raise_if_cancelled()
            received += len(chunk)
            if total > 0:
                progress(min(100.0, received * 100.0 / total))
            yield chunk
