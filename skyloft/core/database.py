"""
SQLite persistence for the video library index.
"""
import logging
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional

from skyloft.core.dto.video import VideoRecord

logger = logging.getLogger(__name__)

# Column name -> declaration, in table order. Columns missing from an older
# file are added on open.
VIDEO_COLUMNS = {
    "id": "TEXT PRIMARY KEY",
    "source_url": "TEXT",
    "prompt": "TEXT",
    "author": "TEXT",
    "external_job_id": "TEXT",
    "saved_at": "TEXT NOT NULL",
    "duration": "REAL",
    "resolution": "TEXT",
    "file_size": "INTEGER",
    "local_path": "TEXT NOT NULL",
    "thumbnail_path": "TEXT",
    "favorite": "INTEGER DEFAULT 0",
    "play_count": "INTEGER DEFAULT 0",
    "last_played": "TEXT",
}


class LibraryDatabase:
    """Manages the ``videos`` table of the library index"""

    VERSION = "1.0.0"

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to the SQLite file. Parent directories are created.
        """
        db_path = Path(db_path)
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def connect(self):
        """Establish database connection"""
        self.conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,
            timeout=30.0
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._initialize_schema()

    def _initialize_schema(self):
        """Create schema if not exists and add any missing columns"""
        with self._lock:
            cursor = self.conn.cursor()
            columns_sql = ",\n".join(f"{name} {decl}" for name, decl in VIDEO_COLUMNS.items())
            cursor.execute(f"CREATE TABLE IF NOT EXISTS videos (\n{columns_sql}\n)")

            cursor.execute("PRAGMA table_info(videos)")
            existing = {row["name"] for row in cursor.fetchall()}
            for name, decl in VIDEO_COLUMNS.items():
                if name in existing:
                    continue
                # ALTER TABLE cannot add PRIMARY KEY / NOT NULL without default
                plain = decl.replace("PRIMARY KEY", "").replace("NOT NULL", "").strip()
                logger.info(f"Migrating videos table: adding column {name}")
                cursor.execute(f"ALTER TABLE videos ADD COLUMN {name} {plain}")

            cursor.execute("CREATE INDEX IF NOT EXISTS idx_videos_saved_at ON videos(saved_at DESC)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_videos_favorite ON videos(favorite)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_videos_author ON videos(author)")
            self.conn.commit()
        logger.debug(f"Library database ready at {self.db_path}")

    def close(self):
        """Close database connection"""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    # ------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------

    def insert(self, record: VideoRecord) -> bool:
        """
        Insert a new record.

        Returns:
            False if the ID already exists or the write fails
        """
        row = record.to_row()
        names = ", ".join(row.keys())
        placeholders = ", ".join(f":{k}" for k in row.keys())
        with self._lock:
            try:
                self.conn.execute(f"INSERT INTO videos ({names}) VALUES ({placeholders})", row)
                self.conn.commit()
                return True
            except sqlite3.IntegrityError:
                logger.warning(f"Video {record.id} already in library")
                return False
            except sqlite3.Error as e:
                logger.error(f"Failed to insert video {record.id}: {e}")
                self.conn.rollback()
                return False

    def delete(self, record_id: str) -> bool:
        with self._lock:
            try:
                cursor = self.conn.execute("DELETE FROM videos WHERE id = ?", (record_id,))
                self.conn.commit()
                return cursor.rowcount > 0
            except sqlite3.Error as e:
                logger.error(f"Failed to delete video {record_id}: {e}")
                self.conn.rollback()
                return False

    def delete_many(self, record_ids: List[str]) -> int:
        if not record_ids:
            return 0
        with self._lock:
            try:
                cursor = self.conn.executemany(
                    "DELETE FROM videos WHERE id = ?", [(rid,) for rid in record_ids]
                )
                self.conn.commit()
                return cursor.rowcount
            except sqlite3.Error as e:
                logger.error(f"Failed to delete {len(record_ids)} videos: {e}")
                self.conn.rollback()
                return 0

    def update_play_count(self, record_id: str, played_at: str) -> bool:
        with self._lock:
            try:
                cursor = self.conn.execute(
                    "UPDATE videos SET play_count = play_count + 1, last_played = ? WHERE id = ?",
                    (played_at, record_id),
                )
                self.conn.commit()
                return cursor.rowcount > 0
            except sqlite3.Error as e:
                logger.error(f"Failed to update play count for {record_id}: {e}")
                return False

    def set_favorite(self, record_id: str, favorite: bool) -> bool:
        with self._lock:
            try:
                cursor = self.conn.execute(
                    "UPDATE videos SET favorite = ? WHERE id = ?",
                    (1 if favorite else 0, record_id),
                )
                self.conn.commit()
                return cursor.rowcount > 0
            except sqlite3.Error as e:
                logger.error(f"Failed to update favorite for {record_id}: {e}")
                return False

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------

    def fetch(self, record_id: str) -> Optional[VideoRecord]:
        with self._lock:
            row = self.conn.execute("SELECT * FROM videos WHERE id = ?", (record_id,)).fetchone()
        return VideoRecord.from_row(row) if row else None

    def fetch_all(self) -> List[VideoRecord]:
        """All records, most recently saved first"""
        with self._lock:
            rows = self.conn.execute("SELECT * FROM videos ORDER BY saved_at DESC").fetchall()
        return [VideoRecord.from_row(row) for row in rows]

    def count(self) -> int:
        with self._lock:
            return self.conn.execute("SELECT COUNT(*) FROM videos").fetchone()[0]

    def referenced_paths(self) -> List[str]:
        """Every local_path and thumbnail_path known to the index"""
        with self._lock:
            rows = self.conn.execute("SELECT local_path, thumbnail_path FROM videos").fetchall()
        paths = []
        for row in rows:
            paths.append(row["local_path"])
            if row["thumbnail_path"]:
                paths.append(row["thumbnail_path"])
        return paths
