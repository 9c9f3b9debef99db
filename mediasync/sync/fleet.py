"""
Sync every known server, one after another.

Each server gets an equal share of the overall progress. A server that
fails is logged and skipped; its share is still credited so the bar
always reaches 100.
"""

from dataclasses import dataclass, field

from mediasync.api.models import ServerRecord
from mediasync.core.cancellation import CancellationToken
from mediasync.core.exceptions import SyncCancelledError
from mediasync.core.logger import get_logger
from mediasync.network.connection import ConnectionManager
from mediasync.sync.progress import COMPLETE, MonotonicProgress, ProgressCallback, ignore_progress, scaled
from mediasync.sync.server_sync import ServerSync


logger = get_logger(__name__)


@dataclass
class FleetSyncStats:
    """
    Outcome per server of one fleet sync.

    Attributes:
        synced: Ids of servers synced to completion.
        skipped: Ids of servers skipped for lack of credentials.
        failed: Server id -> error message.
    """

    synced: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.synced) + len(self.skipped) + len(self.failed)


class FleetSyncCoordinator:
    """Runs ServerSync for every available server sequentially."""

    def __init__(self, connection_manager: ConnectionManager, server_sync: ServerSync) -> None:
        self.connection_manager = connection_manager
        self.server_sync = server_sync

    def sync(
        self,
        progress: ProgressCallback = ignore_progress,
        cancellation: CancellationToken | None = None
    ) -> FleetSyncStats:
        """
        Sync all servers known to the connection manager.

        Raises:
            SyncCancelledError: Cancellation was observed; servers not yet
                                started are not synced.
        """
        cancellation = cancellation or CancellationToken()
        servers = self.connection_manager.get_available_servers(cancellation)
        return self.sync_servers(servers, progress, cancellation)

    def sync_servers(
        self,
        servers: list[ServerRecord],
        progress: ProgressCallback = ignore_progress,
        cancellation: CancellationToken | None = None
    ) -> FleetSyncStats:
        cancellation = cancellation or CancellationToken()
        monotonic = MonotonicProgress(progress)
        stats = FleetSyncStats()

        logger.info(f"Syncing {len(servers)} server(s)")

        for index, server in enumerate(servers):
            cancellation.raise_if_cancelled()

            span = 100.0 / len(servers)
            label = server.name or server.id

            try:
                result = self.server_sync.sync(server, scaled(monotonic, index * span, span), cancellation)
            except SyncCancelledError:
                logger.info("Sync cancelled")
                raise
            except Exception as e:
                logger.error(f"Sync with server {label} failed: {e}", exc_info=True)
                stats.failed[server.id] = str(e)
            else:
                if result is None:
                    stats.skipped.append(server.id)
                else:
                    stats.synced.append(server.id)

            monotonic((index + 1) * span)

        monotonic(COMPLETE)
        logger.info(
            f"Fleet sync complete: {len(stats.synced)} synced, "
            f"{len(stats.skipped)} skipped, {len(stats.failed)} failed"
        )
        return stats
