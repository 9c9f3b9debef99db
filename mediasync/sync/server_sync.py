"""
Full sync with one server: connect, camera upload, offline users, media.

Progress weighting (sync.camera_upload_weight, default 0.25):
    camera upload     0 -> 25
    media sync       25 -> 100

Offline users are refreshed between the two and report no progress.
"""

import threading

from mediasync.api.client import ApiClient
from mediasync.api.models import ConnectionState, ServerRecord
from mediasync.core.cancellation import CancellationToken
from mediasync.core.config import SyncConfig
from mediasync.core.exceptions import ServerUnavailableError
from mediasync.core.logger import get_logger
from mediasync.data.store import LocalAssetStore
from mediasync.device import Device
from mediasync.network.connection import ConnectionManager
from mediasync.sync.media_sync import MediaSyncEngine, MediaSyncStats
from mediasync.sync.progress import COMPLETE, ProgressCallback, ignore_progress, scaled
from mediasync.sync.uploader import ContentUploader
from mediasync.sync.users import OfflineUserReconciler


logger = get_logger(__name__)

_LOCK_POLL_INTERVAL = 0.25


class ServerSync:
    """
    Runs every sync phase against one server.

    Two runs for the same server id never interleave; runs for different
    servers are independent.
    """

    def __init__(
        self,
        connection_manager: ConnectionManager,
        store: LocalAssetStore,
        device: Device,
        sync_config: SyncConfig | None = None,
        engine: MediaSyncEngine | None = None
    ) -> None:
        self.connection_manager = connection_manager
        self.store = store
        self.device = device
        self.sync_config = sync_config or SyncConfig()
        self.engine = engine or MediaSyncEngine(store)
        self.users = OfflineUserReconciler(store)

        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _get_lock(self, server_id: str) -> threading.Lock:
        key = server_id.lower()
        with self._locks_guard:
            if key not in self._locks:
                self._locks[key] = threading.Lock()
            return self._locks[key]

    def sync(
        self,
        server: ServerRecord,
        progress: ProgressCallback = ignore_progress,
        cancellation: CancellationToken | None = None
    ) -> MediaSyncStats | None:
        """
        Sync one server.

        Returns:
            Media sync stats, or None when the server was skipped for lack
            of credentials.

        Raises:
            ServerUnavailableError: No address of the server answered.
            ApiError: A phase contract call failed.
            SyncCancelledError: Cancellation was observed.
        """
        cancellation = cancellation or CancellationToken()
        lock = self._get_lock(server.id)

        while not lock.acquire(timeout=_LOCK_POLL_INTERVAL):
            cancellation.raise_if_cancelled()

        try:
            return self._sync(server, progress, cancellation)
        finally:
            lock.release()

    def _sync(
        self,
        server: ServerRecord,
        progress: ProgressCallback,
        cancellation: CancellationToken
    ) -> MediaSyncStats | None:
        if not server.has_credentials:
            self._log_no_authentication(server)
            progress(COMPLETE)
            return None

        result = self.connection_manager.connect_to_server(server, cancellation)

        if result.state == ConnectionState.UNAVAILABLE:
            raise ServerUnavailableError(
                f"Server {server.name or server.id} is unavailable",
                details={"server_id": server.id}
            )

        if result.state != ConnectionState.SIGNED_IN or result.api_client is None:
            self._log_no_authentication(server)
            progress(COMPLETE)
            return None

        stats = self._run_phases(result.server or server, result.api_client, progress, cancellation)
        progress(COMPLETE)
        return stats

    def _run_phases(
        self,
        server: ServerRecord,
        api_client: ApiClient,
        progress: ProgressCallback,
        cancellation: CancellationToken
    ) -> MediaSyncStats:
        upload_span = 100.0 * self.sync_config.camera_upload_weight if self.sync_config.camera_upload else 0.0

        if self.sync_config.camera_upload:
            ContentUploader(api_client, self.device).upload_images(
                scaled(progress, 0.0, upload_span), cancellation
            )

        cancellation.raise_if_cancelled()

        if self.sync_config.supports_offline_access:
            self.users.update_offline_users(server, api_client, cancellation)

        cancellation.raise_if_cancelled()

        return self.engine.sync(
            api_client,
            server,
            scaled(progress, upload_span, 100.0 - upload_span),
            cancellation
        )

    @staticmethod
    def _log_no_authentication(server: ServerRecord) -> None:
        logger.info(
            f"Skipping sync process for server {server.name or server.id}. "
            "No server authentication information available."
        )
