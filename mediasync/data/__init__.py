"""Local storage of synced items, files, offline users and actions."""

from mediasync.data.store import (
    LocalAssetStore,
    LocalItemQuery,
    classify_file,
    sanitize_filename,
)

__all__ = [
    "LocalAssetStore",
    "LocalItemQuery",
    "classify_file",
    "sanitize_filename",
]
