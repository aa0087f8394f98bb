"""
Persistent local cache using SQLite.

Holds two independent things:

- the single archive slot (``ArchiveCache``): the raw archive buffer plus
  its metadata, so the library can restore offline without re-importing;
- per-name user preferences (``PreferenceStore``): favorite flag and last
  use time, which survive archive reloads because they are keyed by asset
  name rather than by id.

Storage is best-effort. Quota errors, read-only filesystems and unopenable
databases are logged and swallowed: writes are dropped, reads miss.
"""

import json
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional

from .errors import StorageUnavailable
from .types import ArchiveMetadata, ArchiveRecord, Preference

logger = logging.getLogger(__name__)

ARCHIVE_SLOT = "archive"

# sqlite3.Error covers locked/corrupt/full databases; OSError covers the
# directory itself being unusable.
_STORAGE_ERRORS = (sqlite3.Error, OSError)


class _SqliteSlot:
    """Shared connection handling for the cache tables."""

    _schema = ""

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        try:
            self._init_db()
        except _STORAGE_ERRORS as e:
            logger.warning("Cache unavailable at %s: %s", db_path, e)
            self._conn = None

    def _init_db(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # Wait for concurrent writers instead of failing immediately
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.execute(self._schema)
        self._conn.commit()

    @property
    def available(self) -> bool:
        return self._conn is not None

    def _require(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageUnavailable(f"Cache database not open: {self._db_path}")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None


class ArchiveCache(_SqliteSlot):
    """
    The single durable archive slot.

    Later writes overwrite earlier ones. ``persist`` and ``read`` never
    raise storage errors to callers.
    """

    _schema = """
        CREATE TABLE IF NOT EXISTS archive_slot (
            slot TEXT PRIMARY KEY,
            buffer BLOB NOT NULL,
            metadata_json TEXT NOT NULL
        )
    """

    def persist(self, buffer: bytes, metadata: ArchiveMetadata) -> bool:
        """Write the slot. Returns False if the write was dropped."""
        try:
            self._put(buffer, metadata)
            return True
        except (StorageUnavailable, *_STORAGE_ERRORS) as e:
            logger.warning("Archive cache write skipped: %s", e)
            return False

    def _put(self, buffer: bytes, metadata: ArchiveMetadata) -> None:
        conn = self._require()
        metadata_json = json.dumps({
            "name": metadata.name,
            "size": metadata.size,
            "count": metadata.count,
            "updated_at": metadata.updated_at,
        }, ensure_ascii=False)
        with self._lock:
            conn.execute("""
                INSERT OR REPLACE INTO archive_slot (slot, buffer, metadata_json)
                VALUES (?, ?, ?)
            """, (ARCHIVE_SLOT, sqlite3.Binary(buffer), metadata_json))
            conn.commit()

    def read(self) -> Optional[ArchiveRecord]:
        """Read the slot, or None if empty or unreadable."""
        try:
            return self._get()
        except (StorageUnavailable, *_STORAGE_ERRORS) as e:
            logger.warning("Archive cache read failed: %s", e)
            return None

    def _get(self) -> Optional[ArchiveRecord]:
        conn = self._require()
        with self._lock:
            row = conn.execute(
                "SELECT buffer, metadata_json FROM archive_slot WHERE slot = ?",
                (ARCHIVE_SLOT,),
            ).fetchone()
        if row is None:
            return None
        try:
            meta = json.loads(row["metadata_json"])
            metadata = ArchiveMetadata(
                name=meta["name"],
                size=int(meta["size"]),
                count=int(meta["count"]),
                updated_at=meta.get("updated_at", ""),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding archive cache with bad metadata: %s", e)
            return None
        return ArchiveRecord(buffer=bytes(row["buffer"]), metadata=metadata)

    def clear(self) -> None:
        try:
            conn = self._require()
            with self._lock:
                conn.execute("DELETE FROM archive_slot")
                conn.commit()
        except (StorageUnavailable, *_STORAGE_ERRORS) as e:
            logger.warning("Archive cache clear skipped: %s", e)


class PreferenceStore(_SqliteSlot):
    """Favorite and recency attributes keyed by asset name."""

    _schema = """
        CREATE TABLE IF NOT EXISTS preferences (
            name TEXT PRIMARY KEY,
            is_favorite INTEGER NOT NULL DEFAULT 0,
            last_used_at TEXT
        )
    """

    def set_favorite(self, name: str, is_favorite: bool) -> None:
        try:
            conn = self._require()
            with self._lock:
                conn.execute("""
                    INSERT INTO preferences (name, is_favorite) VALUES (?, ?)
                    ON CONFLICT(name) DO UPDATE SET is_favorite = excluded.is_favorite
                """, (name, int(is_favorite)))
                conn.commit()
        except (StorageUnavailable, *_STORAGE_ERRORS) as e:
            logger.warning("Favorite for %s not saved: %s", name, e)

    def mark_used(self, name: str, when: str) -> None:
        try:
            conn = self._require()
            with self._lock:
                conn.execute("""
                    INSERT INTO preferences (name, last_used_at) VALUES (?, ?)
                    ON CONFLICT(name) DO UPDATE SET last_used_at = excluded.last_used_at
                """, (name, when))
                conn.commit()
        except (StorageUnavailable, *_STORAGE_ERRORS) as e:
            logger.warning("Last use of %s not saved: %s", name, e)

    def all(self) -> dict[str, Preference]:
        try:
            conn = self._require()
            with self._lock:
                rows = conn.execute(
                    "SELECT name, is_favorite, last_used_at FROM preferences"
                ).fetchall()
        except (StorageUnavailable, *_STORAGE_ERRORS) as e:
            logger.warning("Preferences unavailable: %s", e)
            return {}
        return {
            row["name"]: Preference(
                name=row["name"],
                is_favorite=bool(row["is_favorite"]),
                last_used_at=row["last_used_at"],
            )
            for row in rows
        }
