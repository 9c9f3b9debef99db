"""
Persistent store of known servers and their credentials.

The store is a single JSON file (servers.json in the data directory)
holding every known ServerRecord plus the id of the last active server.
Access tokens live in it, so the file is written owner-readable only.

File layout:
    {
      "ActiveServerId": "abc123",
      "Servers": [ {ServerRecord.to_dict()}, ... ]
    }
"""

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from mediasync.api.models import ServerRecord
from mediasync.core.logger import get_logger


logger = get_logger(__name__)


class CredentialStore:
    """
    Thread-safe JSON-backed list of known servers.

    Records returned by get_servers() are copies; changes must be saved
    back with add_or_update_server().
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()
        self._servers: dict[str, ServerRecord] = {}
        self._active_server_id: str | None = None
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            # A corrupt credentials file means re-discovery, not a crash
            logger.warning(f"Failed to load stored servers from {self.path}: {e}")
            return

        for entry in data.get("Servers") or []:
            record = ServerRecord.from_api(entry)
            if record.id:
                self._servers[record.id] = record
        self._active_server_id = data.get("ActiveServerId")

    def _save(self) -> None:
        data: dict[str, Any] = {
            "ActiveServerId": self._active_server_id,
            "Servers": [s.to_dict() for s in self._servers.values()],
            "SavedAt": datetime.now(timezone.utc).isoformat(),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Written beside the target with owner-only mode, then swapped in
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        tmp_path.unlink(missing_ok=True)
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            tmp_path.unlink(missing_ok=True)
            raise

    def get_servers(self) -> list[ServerRecord]:
        with self._lock:
            return [ServerRecord.from_api(s.to_dict()) for s in self._servers.values()]

    def get_server(self, server_id: str) -> ServerRecord | None:
        with self._lock:
            record = self._servers.get(server_id)
            return ServerRecord.from_api(record.to_dict()) if record else None

    def add_or_update_server(self, server: ServerRecord) -> None:
        """Insert a server or merge it into the stored record with the same id."""
        if not server.id:
            raise ValueError("server.id is required")

        with self._lock:
            existing = self._servers.get(server.id)
            if existing is None:
                self._servers[server.id] = ServerRecord.from_api(server.to_dict())
            else:
                existing.merge(server)
                # Cleared credentials must stick, merge() only copies set values
                existing.access_token = server.access_token
                existing.user_id = server.user_id
                existing.exchange_token = server.exchange_token
            self._save()

    def remove_server(self, server_id: str) -> bool:
        with self._lock:
            removed = self._servers.pop(server_id, None) is not None
            if self._active_server_id == server_id:
                self._active_server_id = None
            if removed:
                self._save()
            return removed

    @property
    def active_server_id(self) -> str | None:
        return self._active_server_id

    def set_active_server_id(self, server_id: str | None) -> None:
        with self._lock:
            self._active_server_id = server_id
            self._save()
