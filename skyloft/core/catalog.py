"""
Catalog of saved clips.

CatalogStore owns the durable index (LibraryDatabase), the disliked set, and the
in-memory visible view: every indexed record whose file exists and which is not
disliked, most recently saved first. All mutation runs on the coordination
thread; the lock keeps worker-thread scans from seeing a half-applied change.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import Executor
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Set, Tuple

from PyQt6.QtCore import QObject, pyqtSignal

from skyloft.core.database import LibraryDatabase
from skyloft.core.disliked import DislikedStore
from skyloft.core.dto.video import VideoRecord
from skyloft.core.errors import NotFoundError
from skyloft.core.paths import LibraryPaths
from skyloft.utils.file_utils import file_size, normalized, safe_unlink

logger = logging.getLogger(__name__)


class CatalogStore(QObject):

    view_changed = pyqtSignal(tuple)      # tuple[VideoRecord, ...]
    record_added = pyqtSignal(object)     # VideoRecord
    record_removed = pyqtSignal(str)      # record id
    record_updated = pyqtSignal(object)   # VideoRecord

    def __init__(
        self,
        database: LibraryDatabase,
        disliked: DislikedStore,
        paths: LibraryPaths,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self.db = database
        self.disliked = disliked
        self.paths = paths
        self._view: List[VideoRecord] = []
        self._claimed: Set[str] = set()
        self._lock = threading.RLock()

    # ------------------------------------------------------------
    # View access
    # ------------------------------------------------------------

    @property
    def view(self) -> Tuple[VideoRecord, ...]:
        with self._lock:
            return tuple(self._view)

    @property
    def count(self) -> int:
        return len(self._view)

    def get(self, record_id: str) -> Optional[VideoRecord]:
        with self._lock:
            for record in self._view:
                if record.id == record_id:
                    return record
        return None

    def require(self, record_id: str) -> VideoRecord:
        """Like get(), but raises NotFoundError for IDs outside the view."""
        record = self.get(record_id)
        if record is None:
            raise NotFoundError(record_id)
        return record

    def index_of(self, record_id: Optional[str]) -> Optional[int]:
        if record_id is None:
            return None
        with self._lock:
            for i, record in enumerate(self._view):
                if record.id == record_id:
                    return i
        return None

    def _emit_view(self):
        self.view_changed.emit(self.view)

    def _place(self, record: VideoRecord):
        """Insert into the view keeping saved_at descending order."""
        for i, existing in enumerate(self._view):
            if record.saved_at >= existing.saved_at:
                self._view.insert(i, record)
                return
        self._view.append(record)

    def _replace_in_view(self, record: VideoRecord) -> bool:
        for i, existing in enumerate(self._view):
            if existing.id == record.id:
                self._view[i] = record
                return True
        return False

    def _is_visible(self, record: VideoRecord) -> bool:
        return record.exists and record.id not in self.disliked

    # ------------------------------------------------------------
    # Load / insert / delete
    # ------------------------------------------------------------

    def load_all(self) -> List[VideoRecord]:
        """
        Rebuild the visible view from the index.

        Records whose file is missing are pruned from the index (files are never
        touched here). Disliked records stay indexed but are left out of the view.

        Returns:
            The new visible view, most recent first
        """
        with self._lock:
            records = self.db.fetch_all()
            missing = [r.id for r in records if not r.exists]
            if missing:
                removed = self.db.delete_many(missing)
                logger.info(f"Pruned {removed} library entries with missing files")
                self.disliked.discard_many(missing)
            self._view = [r for r in records if r.exists and r.id not in self.disliked]
            view = list(self._view)
        logger.info(f"Library loaded: {len(view)} visible of {len(records) - len(missing)} indexed")
        self._emit_view()
        return view

    def insert(self, record: VideoRecord) -> bool:
        with self._lock:
            if not self.db.insert(record):
                return False
            visible = self._is_visible(record)
            if visible:
                self._place(record)
        logger.info(f"Added video {record.id} to library")
        self.record_added.emit(record)
        if visible:
            self._emit_view()
        return True

    def delete(self, record_id: str) -> bool:
        """
        Remove a record from the index, then best-effort remove its files.

        Returns:
            False if the ID is unknown or the index delete failed
        """
        with self._lock:
            record = self.db.fetch(record_id)
            if record is None:
                logger.warning(f"Delete requested for unknown video {record_id}")
                return False
            if not self.db.delete(record_id):
                return False
            in_view = any(r.id == record_id for r in self._view)
            self._view = [r for r in self._view if r.id != record_id]
            self.disliked.discard(record_id)

        if not safe_unlink(record.local_path):
            logger.warning(f"Video file left behind for {record_id}: {record.local_path}")
        safe_unlink(record.thumbnail_path)

        logger.info(f"Deleted video {record_id}")
        self.record_removed.emit(record_id)
        if in_view:
            self._emit_view()
        return True

    def clear_all(self) -> int:
        """Delete every record and its files. Returns the number removed."""
        with self._lock:
            records = self.db.fetch_all()
            removed = self.db.delete_many([r.id for r in records])
            self._view = []
            self.disliked.clear()
        for record in records:
            safe_unlink(record.local_path)
            safe_unlink(record.thumbnail_path)
        logger.info(f"Cleared library: {removed} videos removed")
        self._emit_view()
        return removed

    def enforce_max_count(self, max_count: int) -> List[str]:
        """
        Delete the oldest records until at most ``max_count`` remain indexed.

        Returns:
            IDs that were deleted
        """
        if max_count <= 0:
            return []
        records = self.db.fetch_all()
        excess = records[max_count:]
        deleted = [r.id for r in excess if self.delete(r.id)]
        if deleted:
            logger.info(f"Auto-save limit {max_count}: removed {len(deleted)} oldest videos")
        return deleted

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------

    def search(self, query: str) -> List[VideoRecord]:
        query = (query or "").strip()
        view = self.view
        if not query:
            return list(view)
        return [r for r in view if r.matches(query)]

    def list_favorites(self) -> List[VideoRecord]:
        return [r for r in self.view if r.favorite]

    @property
    def total_storage_bytes(self) -> int:
        return sum(file_size(r.local_path) for r in self.view)

    # ------------------------------------------------------------
    # Per-record mutation
    # ------------------------------------------------------------

    def toggle_favorite(self, record_id: str) -> bool:
        with self._lock:
            record = self.get(record_id) or self.db.fetch(record_id)
            if record is None:
                logger.warning(f"Favorite toggle for unknown video {record_id}")
                return False
            updated = record.with_favorite(not record.favorite)
            if not self.db.set_favorite(record_id, updated.favorite):
                return False
            self._replace_in_view(updated)
        self.record_updated.emit(updated)
        return True

    def increment_play_count(self, record_id: str) -> bool:
        now = datetime.now()
        with self._lock:
            record = self.get(record_id)
            if record is None:
                return False
            if not self.db.update_play_count(record_id, now.isoformat()):
                return False
            updated = record.with_play(now)
            self._replace_in_view(updated)
        self.record_updated.emit(updated)
        return True

    # ------------------------------------------------------------
    # Disliked
    # ------------------------------------------------------------

    def is_disliked(self, record_id: str) -> bool:
        return record_id in self.disliked

    @property
    def disliked_count(self) -> int:
        return len(self.disliked)

    def dislike(self, record_id: str) -> bool:
        """Hide a record from the view without deleting it."""
        with self._lock:
            if not self.disliked.add(record_id):
                return False
            before = len(self._view)
            self._view = [r for r in self._view if r.id != record_id]
            changed = len(self._view) != before
        logger.info(f"Disliked video {record_id}")
        if changed:
            self._emit_view()
        return True

    def undislike(self, record_id: str) -> bool:
        with self._lock:
            if not self.disliked.discard(record_id):
                return False
            record = self.db.fetch(record_id)
            restored = record is not None and record.exists and self.get(record_id) is None
            if restored:
                self._place(record)
        if restored:
            self._emit_view()
        return True

    def clear_disliked(self):
        self.disliked.clear()
        logger.info("Cleared disliked videos")
        self.load_all()

    # ------------------------------------------------------------
    # In-flight claims
    # ------------------------------------------------------------

    def claim_paths(self, paths: Iterable[Path]):
        """Mark files as being written by an ingestion; orphan cleanup leaves them alone."""
        with self._lock:
            self._claimed.update(normalized(p) for p in paths)

    def release_paths(self, paths: Iterable[Path]):
        with self._lock:
            self._claimed.difference_update(normalized(p) for p in paths)

    @property
    def claimed_paths(self) -> frozenset:
        with self._lock:
            return frozenset(self._claimed)

    # ------------------------------------------------------------
    # Orphan cleanup
    # ------------------------------------------------------------

    def cleanup_orphaned_files(self) -> int:
        """
        Delete files in the videos/thumbnails directories that no record references.

        Refuses to run while the index is empty so a failed or fresh index can
        never wipe a library directory. Claimed files and ``*.part`` downloads
        are never touched. The directory scan runs without the lock; the
        referenced set is read and candidates are removed under it, so a file
        claimed or indexed before that point survives.

        Returns:
            Number of files removed
        """
        candidates = [
            entry
            for directory in (self.paths.videos, self.paths.thumbnails)
            for entry in directory.iterdir()
            if entry.is_file() and not entry.name.endswith(".part")
        ]

        removed = 0
        with self._lock:
            if self.db.count() == 0:
                logger.warning("Skipping orphan cleanup: library index is empty")
                return 0
            protected = {normalized(p) for p in self.db.referenced_paths()}
            protected.update(self._claimed)
            for entry in candidates:
                if normalized(entry) in protected or not entry.is_file():
                    continue
                if safe_unlink(entry):
                    removed += 1
                    logger.debug(f"Removed orphaned file {entry}")
        if removed:
            logger.info(f"Orphan cleanup removed {removed} files")
        return removed

    async def cleanup_orphaned_files_async(self, executor: Executor) -> int:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, self.cleanup_orphaned_files)
