"""
Thread-safe SQLite database for mediasync.

Schema:
    local_items:     One row per cached item (server item metadata as JSON)
    item_files:      Files on disk belonging to a local item
    user_actions:    Playback events recorded offline, pending upload
    offline_users:   Cached user records for offline sign-in
    images:          Cached images keyed by owner (item, container or user) and tag

Rows are plain dicts; conversion to models happens in LocalAssetStore.

Usage:
    db = Database(data_dir / "mediasync.db")
    db.upsert_local_item(row)
    for item_id in db.get_server_item_ids(server_id):
        ...
"""

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

from mediasync.core.exceptions import DatabaseError


DATABASE_VERSION = 1


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS local_items (
    id TEXT PRIMARY KEY,
    server_id TEXT NOT NULL,
    item_id TEXT NOT NULL,

    -- Denormalised for local browsing queries
    name TEXT,
    item_type TEXT,
    media_type TEXT,
    album_id TEXT,
    album_artist TEXT,
    series_name TEXT,

    local_path TEXT,
    user_ids_with_access TEXT,  -- JSON array
    item TEXT NOT NULL,         -- JSON blob of the catalog item

    updated_at TEXT,
    UNIQUE(server_id, item_id)
);

CREATE TABLE IF NOT EXISTS item_files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    local_item_id TEXT NOT NULL,
    name TEXT NOT NULL,
    path TEXT NOT NULL UNIQUE,
    type TEXT NOT NULL,
    image_type TEXT,
    stream_index INTEGER DEFAULT 0,
    FOREIGN KEY (local_item_id) REFERENCES local_items(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS user_actions (
    id TEXT PRIMARY KEY,
    server_id TEXT NOT NULL,
    item_id TEXT NOT NULL,
    user_id TEXT NOT NULL,
    type TEXT NOT NULL,
    date TEXT NOT NULL,
    position_ticks INTEGER
);

CREATE TABLE IF NOT EXISTS offline_users (
    id TEXT PRIMARY KEY,
    server_id TEXT,
    data TEXT NOT NULL,  -- JSON blob of the user record
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS images (
    owner_id TEXT NOT NULL,
    image_tag TEXT NOT NULL,
    path TEXT NOT NULL,
    created_at TEXT,
    PRIMARY KEY (owner_id, image_tag)
);

CREATE INDEX IF NOT EXISTS idx_local_items_server ON local_items(server_id);
CREATE INDEX IF NOT EXISTS idx_item_files_item ON item_files(local_item_id);
CREATE INDEX IF NOT EXISTS idx_user_actions_server ON user_actions(server_id);
"""


class Database:
    """
    Thread-safe SQLite database.

    Uses a single persistent connection with thread locking for safety.
    All public methods acquire self._lock before executing.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None

        if not db_path.parent.exists():
            raise DatabaseError(
                f"Parent directory does not exist: {db_path.parent}",
                details={"path": str(db_path.parent)}
            )

        try:
            self._init_database()
        except sqlite3.Error as e:
            raise DatabaseError(
                f"Failed to initialize database: {e}",
                details={"path": str(db_path)}
            ) from e

    @contextmanager
    def _get_connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Yield the persistent connection, creating it on first use.

        sqlite3.Error raised inside the block is rolled back and re-raised
        as DatabaseError.
        """
        if self._conn is None:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=30.0,
                check_same_thread=False  # Thread safety handled by _lock
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        try:
            yield self._conn
        except sqlite3.Error as e:
            self._conn.rollback()
            raise DatabaseError(f"Database operation failed: {e}", details={"path": str(self.db_path)}) from e

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _init_database(self) -> None:
        with self._get_connection() as conn:
            conn.executescript(_SCHEMA_SQL)

            cursor = conn.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()

            if row is None:
                conn.execute("INSERT INTO schema_version (version) VALUES (?)", (DATABASE_VERSION,))
            elif row[0] != DATABASE_VERSION:
                raise DatabaseError(
                    f"Database version mismatch: expected {DATABASE_VERSION}, got {row[0]}",
                    details={"expected": DATABASE_VERSION, "actual": row[0]}
                )
            conn.commit()

    def _now_iso(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    # =========================================================================
    # Local Items
    # =========================================================================

    def upsert_local_item(self, row: dict[str, Any]) -> None:
        """
        Insert or replace a local item row.

        Expected keys: id, server_id, item_id, name, item_type, media_type,
        album_id, album_artist, series_name, local_path,
        user_ids_with_access (list), item (dict).
        """
        values = dict(row)
        values["user_ids_with_access"] = json.dumps(values.get("user_ids_with_access") or [])
        values["item"] = json.dumps(values["item"])
        values["updated_at"] = self._now_iso()

        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO local_items (
                        id, server_id, item_id, name, item_type, media_type,
                        album_id, album_artist, series_name, local_path,
                        user_ids_with_access, item, updated_at
                    ) VALUES (
                        :id, :server_id, :item_id, :name, :item_type, :media_type,
                        :album_id, :album_artist, :series_name, :local_path,
                        :user_ids_with_access, :item, :updated_at
                    )
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        item_type = excluded.item_type,
                        media_type = excluded.media_type,
                        album_id = excluded.album_id,
                        album_artist = excluded.album_artist,
                        series_name = excluded.series_name,
                        local_path = excluded.local_path,
                        user_ids_with_access = excluded.user_ids_with_access,
                        item = excluded.item,
                        updated_at = excluded.updated_at
                """, values)
                conn.commit()

    def get_local_item(self, local_id: str) -> dict[str, Any] | None:
        with self._lock:
            with self._get_connection() as conn:
                row = conn.execute("SELECT * FROM local_items WHERE id = ?", (local_id,)).fetchone()
                return self._deserialize_item_row(row) if row else None

    def delete_local_item(self, local_id: str) -> bool:
        """Delete an item row; its item_files rows cascade."""
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM local_items WHERE id = ?", (local_id,))
                conn.commit()
                return cursor.rowcount > 0

    def get_server_item_ids(self, server_id: str) -> list[str]:
        """Server-side item ids of everything cached for a server."""
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT item_id FROM local_items WHERE server_id = ? ORDER BY item_id",
                    (server_id,)
                )
                return [row[0] for row in cursor.fetchall()]

    def query_local_items(
        self,
        server_id: str | None = None,
        item_type: str | None = None,
        media_type: str | None = None,
        album_id: str | None = None,
        album_artist: str | None = None,
        exclude_types: list[str] | None = None
    ) -> list[dict[str, Any]]:
        """Filter local items; every argument left as None is ignored."""
        clauses = []
        params: list[Any] = []
        for column, value in (
            ("server_id", server_id),
            ("item_type", item_type),
            ("media_type", media_type),
            ("album_id", album_id),
            ("album_artist", album_artist),
        ):
            if value is not None:
                clauses.append(f"{column} = ? COLLATE NOCASE")
                params.append(value)
        if exclude_types:
            placeholders = ", ".join("?" for _ in exclude_types)
            clauses.append(f"item_type NOT IN ({placeholders})")
            params.extend(exclude_types)

        sql = "SELECT * FROM local_items"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY name COLLATE NOCASE"

        with self._lock:
            with self._get_connection() as conn:
                rows = conn.execute(sql, params).fetchall()
                return [self._deserialize_item_row(r) for r in rows]

    def get_distinct_values(self, column: str, server_id: str) -> list[str]:
        """Distinct non-empty values of item_type, album_artist or series_name."""
        if column not in ("item_type", "album_artist", "series_name"):
            raise ValueError(f"Unsupported column: {column}")

        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    f"SELECT DISTINCT {column} FROM local_items "
                    f"WHERE server_id = ? AND {column} IS NOT NULL AND {column} != '' "
                    f"ORDER BY {column} COLLATE NOCASE",
                    (server_id,)
                )
                return [row[0] for row in cursor.fetchall()]

    def _deserialize_item_row(self, row: sqlite3.Row) -> dict[str, Any]:
        data = dict(row)
        data["user_ids_with_access"] = json.loads(data.get("user_ids_with_access") or "[]")
        data["item"] = json.loads(data["item"])
        return data

    # =========================================================================
    # Item Files
    # =========================================================================

    def add_item_file(self, row: dict[str, Any]) -> None:
        """Record a file; a row with the same path is replaced."""
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO item_files (local_item_id, name, path, type, image_type, stream_index)
                    VALUES (:local_item_id, :name, :path, :type, :image_type, :stream_index)
                    ON CONFLICT(path) DO UPDATE SET
                        local_item_id = excluded.local_item_id,
                        name = excluded.name,
                        type = excluded.type,
                        image_type = excluded.image_type,
                        stream_index = excluded.stream_index
                """, row)
                conn.commit()

    def get_item_files(self, local_item_id: str) -> list[dict[str, Any]]:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT * FROM item_files WHERE local_item_id = ? ORDER BY id",
                    (local_item_id,)
                )
                return [dict(r) for r in cursor.fetchall()]

    def delete_item_file(self, path: str) -> bool:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM item_files WHERE path = ?", (path,))
                conn.commit()
                return cursor.rowcount > 0

    # =========================================================================
    # User Actions
    # =========================================================================

    def add_user_action(self, row: dict[str, Any]) -> None:
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO user_actions (id, server_id, item_id, user_id, type, date, position_ticks)
                    VALUES (:id, :server_id, :item_id, :user_id, :type, :date, :position_ticks)
                """, row)
                conn.commit()

    def get_user_actions(self, server_id: str) -> list[dict[str, Any]]:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute(
                    "SELECT * FROM user_actions WHERE server_id = ? ORDER BY date",
                    (server_id,)
                )
                return [dict(r) for r in cursor.fetchall()]

    def delete_user_action(self, action_id: str) -> bool:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM user_actions WHERE id = ?", (action_id,))
                conn.commit()
                return cursor.rowcount > 0

    # =========================================================================
    # Offline Users
    # =========================================================================

    def upsert_offline_user(self, user_id: str, server_id: str | None, data: dict[str, Any]) -> None:
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO offline_users (id, server_id, data, updated_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        server_id = excluded.server_id,
                        data = excluded.data,
                        updated_at = excluded.updated_at
                """, (user_id, server_id, json.dumps(data), self._now_iso()))
                conn.commit()

    def get_offline_user(self, user_id: str) -> dict[str, Any] | None:
        with self._lock:
            with self._get_connection() as conn:
                row = conn.execute("SELECT data FROM offline_users WHERE id = ?", (user_id,)).fetchone()
                return json.loads(row[0]) if row else None

    def delete_offline_user(self, user_id: str) -> bool:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM offline_users WHERE id = ?", (user_id,))
                conn.commit()
                return cursor.rowcount > 0

    # =========================================================================
    # Images
    # =========================================================================

    def add_image(self, owner_id: str, image_tag: str, path: str) -> None:
        with self._lock:
            with self._get_connection() as conn:
                conn.execute("""
                    INSERT INTO images (owner_id, image_tag, path, created_at)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(owner_id, image_tag) DO UPDATE SET
                        path = excluded.path,
                        created_at = excluded.created_at
                """, (owner_id, image_tag, path, self._now_iso()))
                conn.commit()

    def get_image_path(self, owner_id: str, image_tag: str) -> str | None:
        with self._lock:
            with self._get_connection() as conn:
                row = conn.execute(
                    "SELECT path FROM images WHERE owner_id = ? AND image_tag = ?",
                    (owner_id, image_tag)
                ).fetchone()
                return row[0] if row else None

    def get_image_paths(self, owner_id: str) -> list[str]:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("SELECT path FROM images WHERE owner_id = ?", (owner_id,))
                return [row[0] for row in cursor.fetchall()]

    def delete_images(self, owner_id: str) -> int:
        with self._lock:
            with self._get_connection() as conn:
                cursor = conn.execute("DELETE FROM images WHERE owner_id = ?", (owner_id,))
                conn.commit()
                return cursor.rowcount
