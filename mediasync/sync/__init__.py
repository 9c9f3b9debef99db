"""
Sync module for mediasync.

    - FleetSyncCoordinator: all servers, sequentially
    - ServerSync: connect, camera upload, offline users, media sync
    - MediaSyncEngine: action replay, reconciliation, media retrieval
    - OfflineUserReconciler: cached users and avatars
    - ContentUploader: camera roll upload
    - FileTransferManager: streaming media download

Usage:
    from mediasync.sync import FleetSyncCoordinator, ServerSync

    fleet = FleetSyncCoordinator(manager, ServerSync(manager, store, device))
    fleet.sync(progress=print)
"""

from mediasync.sync.fleet import FleetSyncCoordinator, FleetSyncStats
from mediasync.sync.media_sync import MediaSyncEngine, MediaSyncStats
from mediasync.sync.progress import MonotonicProgress, ProgressCallback, scaled
from mediasync.sync.server_sync import ServerSync
from mediasync.sync.transfer import FileTransferManager
from mediasync.sync.uploader import ContentUploader
from mediasync.sync.users import OfflineUserReconciler

__all__ = [
    # Orchestration
    "FleetSyncCoordinator",
    "FleetSyncStats",
    "ServerSync",
    # Phases
    "MediaSyncEngine",
    "MediaSyncStats",
    "OfflineUserReconciler",
    "ContentUploader",
    "FileTransferManager",
    # Progress
    "MonotonicProgress",
    "ProgressCallback",
    "scaled",
]
