"""
Media sync with a single server.

Workflow:
    1. Capability check: skip servers that do not support sync
    2. Replay offline user actions, oldest first, then forget them
    3. Reconciliation pass 1: drop items the server no longer assigns
    4. Reconciliation pass 2: same request again, now also applying
       per-item user access
    5. Retrieve new media: for each ready job item
       a. Persist the LocalItem
       b. Download the primary media file
       c. Reconcile item and container images
       d. Download requested subtitle tracks
       e. Acknowledge the transfer

The reconciliation request is sent twice so the server learns about the
removals of pass 1 before it computes access lists.

Usage:
    engine = MediaSyncEngine(store)
    stats = engine.sync(api_client, server, progress=print)
"""

from dataclasses import dataclass

from mediasync.api.client import ApiClient
from mediasync.api.models import (
    CatalogItem,
    ImageType,
    ItemFileInfo,
    ItemFileType,
    LocalItem,
    ServerRecord,
    SyncDataRequest,
    SyncedItem,
)
from mediasync.core.cancellation import CancellationToken
from mediasync.core.exceptions import MediaSyncError, SyncCancelledError
from mediasync.core.logger import get_logger, log_transfer_failure
from mediasync.data.store import LocalAssetStore
from mediasync.sync.progress import (
    ACTIONS_REPLAYED,
    COMPLETE,
    FIRST_PASS_DONE,
    ITEM_IMAGES_DONE,
    ITEM_MEDIA_SPAN,
    ITEM_SUBTITLES_DONE,
    RETRIEVAL_SPAN,
    RETRIEVAL_START,
    SECOND_PASS_DONE,
    ProgressCallback,
    ignore_progress,
    scaled,
)
from mediasync.sync.transfer import FileTransferManager


logger = get_logger(__name__)


@dataclass
class MediaSyncStats:
    """
    Counters from one media sync run.

    Attributes:
        actions_reported: Offline actions submitted to the server.
        items_removed: Local items deleted by reconciliation.
        access_updated: Local items whose user access list changed.
        items_transferred: Job items downloaded and acknowledged.
        items_failed: Job items whose media could not be downloaded.
        skipped: True if the server does not support sync.
    """

    actions_reported: int = 0
    items_removed: int = 0
    access_updated: int = 0
    items_transferred: int = 0
    items_failed: int = 0
    skipped: bool = False


class MediaSyncEngine:
    """
    Brings the local store in line with one server's sync assignments.

    Attributes:
        store: Local asset store receiving items and files.
        transfer: Downloads primary media files.
    """

    def __init__(self, store: LocalAssetStore, transfer: FileTransferManager | None = None) -> None:
        self.store = store
        self.transfer = transfer or FileTransferManager(store)

    def sync(
        self,
        api_client: ApiClient,
        server: ServerRecord,
        progress: ProgressCallback = ignore_progress,
        cancellation: CancellationToken | None = None
    ) -> MediaSyncStats:
        """
        Run the full media sync for one server.

        Args:
            api_client: Client bound and authenticated to server.
            server: The server record (id and authorized users are used).
            progress: Receives 0-100.
            cancellation: Checked between phases and before each job item.

        Returns:
            MediaSyncStats for the run.

        Raises:
            ApiError: Capability check, action replay or reconciliation failed.
            SyncCancelledError: Cancellation was observed.
        """
        cancellation = cancellation or CancellationToken()
        stats = MediaSyncStats()

        system_info = api_client.get_system_info()
        if not system_info.supports_sync:
            logger.info(f"Skipping media sync: server {server.name or server.id} does not support sync")
            stats.skipped = True
            progress(COMPLETE)
            return stats

        logger.info(f"Starting media sync with server {server.name or server.id}")

        stats.actions_reported = self._report_offline_actions(api_client, server, cancellation)
        progress(ACTIONS_REPLAYED)

        self._sync_data(api_client, server, stats, apply_user_access=False, cancellation=cancellation)
        progress(FIRST_PASS_DONE)

        self._sync_data(api_client, server, stats, apply_user_access=True, cancellation=cancellation)
        progress(SECOND_PASS_DONE)

        self._get_new_media(
            api_client,
            server,
            stats,
            scaled(progress, RETRIEVAL_START, RETRIEVAL_SPAN),
            cancellation
        )
        progress(COMPLETE)

        logger.info(
            f"Media sync with {server.name or server.id} complete: "
            f"{stats.items_transferred} transferred, {stats.items_failed} failed, "
            f"{stats.items_removed} removed"
        )
        return stats

    # =========================================================================
    # Offline actions
    # =========================================================================

    def _report_offline_actions(
        self,
        api_client: ApiClient,
        server: ServerRecord,
        cancellation: CancellationToken
    ) -> int:
        actions = self.store.get_user_actions(server.id)
        cancellation.raise_if_cancelled()

        actions.sort(key=lambda a: a.date)
        logger.debug(f"Reporting {len(actions)} offline actions to server {server.id}")

        if not actions:
            return 0

        # Local copies are only dropped once the server has accepted the batch
        api_client.report_offline_actions(actions)
        for action in actions:
            self.store.delete_user_action(action)

        return len(actions)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def _sync_data(
        self,
        api_client: ApiClient,
        server: ServerRecord,
        stats: MediaSyncStats,
        apply_user_access: bool,
        cancellation: CancellationToken
    ) -> None:
        request = SyncDataRequest(
            target_id=api_client.device_id,
            local_item_ids=self.store.get_server_item_ids(server.id),
            offline_user_ids=[u.id for u in server.users],
        )
        result = api_client.sync_data(request)
        cancellation.raise_if_cancelled()

        for item_id in result.item_ids_to_remove:
            try:
                if self._remove_item(server.id, item_id):
                    stats.items_removed += 1
            except SyncCancelledError:
                raise
            except (MediaSyncError, OSError) as e:
                logger.error(f"Error deleting item from device. Id: {item_id}: {e}", exc_info=True)

        if not apply_user_access:
            return

        for item_id, user_ids in result.item_user_access.items():
            local_item = self.store.get_local_item_for(server.id, item_id)
            if local_item is None:
                continue
            if not local_item.has_same_access(user_ids):
                local_item.user_ids_with_access = list(user_ids)
                self.store.add_or_update(local_item)
                stats.access_updated += 1

    def _remove_item(self, server_id: str, item_id: str) -> bool:
        local_item = self.store.get_local_item_for(server_id, item_id)
        if local_item is None:
            return False

        for file in self.store.get_files(local_item):
            self.store.delete_file(file)

        self.store.delete(local_item)
        logger.debug(f"Removed {local_item.item.name} ({item_id}) from device")
        return True

    # =========================================================================
    # New media
    # =========================================================================

    def _get_new_media(
        self,
        api_client: ApiClient,
        server: ServerRecord,
        stats: MediaSyncStats,
        progress: ProgressCallback,
        cancellation: CancellationToken
    ) -> None:
        job_items = api_client.get_ready_sync_items(api_client.device_id)
        total = len(job_items)
        logger.info(f"{total} items ready for transfer from {server.name or server.id}")

        for index, job_item in enumerate(job_items):
            cancellation.raise_if_cancelled()

            item_span = 100.0 / total
            item_progress = scaled(progress, index * item_span, item_span)

            try:
                transferred = self._get_item(api_client, server, job_item, item_progress, cancellation)
            except SyncCancelledError:
                raise
            except (MediaSyncError, OSError) as e:
                log_transfer_failure(
                    logger,
                    server.name or server.id,
                    job_item.item.name,
                    job_item.sync_job_item_id,
                    str(e)
                )
                transferred = False

            if transferred:
                stats.items_transferred += 1
            else:
                stats.items_failed += 1

            progress((index + 1) * item_span)

    def _get_item(
        self,
        api_client: ApiClient,
        server: ServerRecord,
        job_item: SyncedItem,
        progress: ProgressCallback,
        cancellation: CancellationToken
    ) -> bool:
        """
        Transfer one job item.

        Returns:
            True if the transfer was acknowledged, False if the media
            download failed (the server re-offers the item next sync).
        """
        local_item = self.store.create_local_item(job_item.item, server, job_item.original_file_name)

        # A re-offered item keeps the access list granted by reconciliation
        existing = self.store.get_local_item(local_item.id)
        if existing is not None:
            local_item.user_ids_with_access = list(existing.user_ids_with_access)

        self.store.add_or_update(local_item)

        try:
            self.transfer.get_item_file(
                api_client,
                local_item,
                job_item.sync_job_item_id,
                scaled(progress, 0.0, ITEM_MEDIA_SPAN),
                cancellation
            )
        except SyncCancelledError:
            raise
        except MediaSyncError as e:
            log_transfer_failure(
                logger,
                server.name or server.id,
                job_item.item.name,
                job_item.sync_job_item_id,
                str(e)
            )
            return False

        progress(ITEM_MEDIA_SPAN)

        local_files = self.store.get_files(local_item)
        self._get_item_images(api_client, local_item, local_files)
        self._get_container_images(api_client, local_item.item)
        progress(ITEM_IMAGES_DONE)

        self._get_item_subtitles(api_client, job_item, local_item)
        progress(ITEM_SUBTITLES_DONE)

        api_client.report_sync_job_item_transferred(job_item.sync_job_item_id)
        progress(COMPLETE)
        return True

    # =========================================================================
    # Images
    # =========================================================================

    def _get_item_images(
        self,
        api_client: ApiClient,
        local_item: LocalItem,
        local_files: list[ItemFileInfo]
    ) -> None:
        item = local_item.item
        server_images = {ImageType.PRIMARY: item.image_tags[ImageType.PRIMARY.value]} \
            if item.has_primary_image else {}

        local_images = [f for f in local_files if f.type == ItemFileType.IMAGE]

        for image in local_images:
            if image.image_type not in server_images:
                try:
                    self.store.delete_file(image)
                except (MediaSyncError, OSError) as e:
                    logger.warning(f"Could not delete stale image {image.path}: {e}")

        cached_types = {f.image_type for f in local_images}
        for image_type, tag in server_images.items():
            if image_type in cached_types:
                continue
            try:
                url = api_client.get_image_url(item.id, image_type.value, tag)
                data, content_type = api_client.get_image(url)
                self.store.save_item_image(local_item, image_type, data, content_type)
            except MediaSyncError as e:
                logger.warning(f"Could not download {image_type.value} image for {item.name}: {e}")

    def _get_container_images(self, api_client: ApiClient, item: CatalogItem) -> None:
        if item.is_episode:
            owner_id, tag = item.series_id, item.series_primary_image_tag
        elif item.is_photo:
            owner_id, tag = item.album_id, item.album_primary_image_tag
        else:
            return

        if not owner_id or not tag or not tag.strip():
            return
        if self.store.has_image(owner_id, tag):
            return

        try:
            url = api_client.get_image_url(owner_id, ImageType.PRIMARY.value, tag)
            data, content_type = api_client.get_image(url)
            self.store.save_image(owner_id, tag, data, content_type)
        except MediaSyncError as e:
            logger.warning(f"Could not download container image {owner_id} for {item.name}: {e}")

    # =========================================================================
    # Subtitles
    # =========================================================================

    def _get_item_subtitles(self, api_client: ApiClient, job_item: SyncedItem, local_item: LocalItem) -> None:
        subtitle_files = [f for f in job_item.additional_files if f.type == ItemFileType.SUBTITLES]
        if not subtitle_files:
            return

        sources = local_item.item.media_sources
        streams = sources[0].media_streams if sources else []
        has_downloads = False

        for file in subtitle_files:
            stream = next(
                (s for s in streams if s.type == "Subtitle" and s.index == file.index),
                None
            )
            if stream is None:
                logger.warning(f"No subtitle stream {file.index} on {local_item.item.name}, skipping {file.name}")
                continue

            try:
                data = api_client.get_sync_job_item_additional_file(job_item.sync_job_item_id, file.name)
                saved = self.store.save_subtitles(
                    data,
                    stream.codec or "srt",
                    local_item,
                    stream.language,
                    stream.is_forced,
                    index=file.index
                )
            except MediaSyncError as e:
                logger.warning(f"Could not download subtitles {file.name} for {local_item.item.name}: {e}")
                continue

            stream.path = saved.path
            has_downloads = True

        if has_downloads:
            self.store.add_or_update(local_item)
