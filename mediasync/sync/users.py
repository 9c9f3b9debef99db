"""
Offline user refresh.

Keeps a local copy of every user authorized on a server so they can sign
in while the server is unreachable. Users the server reports as gone
(404) or no longer allowed (403) are removed locally; any other failure
leaves the cached copy as is.
"""

from mediasync.api.client import ApiClient
from mediasync.api.models import OfflineUser, ServerRecord
from mediasync.core.cancellation import CancellationToken
from mediasync.core.exceptions import ApiError, MediaSyncError, SyncCancelledError
from mediasync.core.logger import get_logger
from mediasync.data.store import LocalAssetStore


logger = get_logger(__name__)


class OfflineUserReconciler:
    """Refreshes cached offline users and their avatars for one server."""

    def __init__(self, store: LocalAssetStore) -> None:
        self.store = store

    def update_offline_users(
        self,
        server: ServerRecord,
        api_client: ApiClient,
        cancellation: CancellationToken | None = None
    ) -> int:
        """
        Refresh every user listed on the server record.

        Returns:
            Number of users successfully refreshed.

        Raises:
            SyncCancelledError: Cancellation was observed between users.
        """
        cancellation = cancellation or CancellationToken()
        updated = 0

        for user in server.users:
            cancellation.raise_if_cancelled()
            try:
                if self._save_offline_user(user.id, api_client):
                    updated += 1
            except SyncCancelledError:
                raise
            except (MediaSyncError, OSError) as e:
                logger.error(f"Error refreshing offline user {user.id}: {e}")

        logger.debug(f"Refreshed {updated}/{len(server.users)} offline users for {server.id}")
        return updated

    def _save_offline_user(self, user_id: str, api_client: ApiClient) -> bool:
        try:
            offline_user = api_client.get_offline_user(user_id)
            self.store.save_offline_user(offline_user)
        except ApiError as e:
            logger.error(f"Error getting user info for {user_id}: {e}")
            if e.is_not_found or e.status_code == 403:
                self.store.delete_offline_user(user_id)
                self.store.delete_user_image(user_id)
            return False
        except MediaSyncError as e:
            logger.error(f"Error saving offline user {user_id}: {e}")
            return False

        try:
            self._update_user_image(offline_user, api_client)
        except (MediaSyncError, OSError) as e:
            logger.warning(f"Could not refresh image for user {offline_user.name or user_id}: {e}")

        return True

    def _update_user_image(self, user: OfflineUser, api_client: ApiClient) -> None:
        if not user.has_primary_image:
            self.store.delete_user_image(user.id)
            return

        if self.store.has_user_image(user):
            return

        url = api_client.get_user_image_url(user.id, user.primary_image_tag)
        data, content_type = api_client.get_image(url)
        self.store.save_user_image(user, data, content_type)
