"""
Persisted set of video IDs the user has hidden.
"""
import json
import logging
import threading
from pathlib import Path
from typing import Iterable, Set

logger = logging.getLogger(__name__)


class DislikedStore:
    """JSON-backed string set, kept in memory for O(1) membership checks."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._ids: Set[str] = set()
        self._lock = threading.Lock()
        self._load()

    def _load(self):
        if not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read disliked list {self.path}: {e}")
            return
        if isinstance(data, list):
            self._ids = {str(item) for item in data}
        logger.debug(f"Loaded {len(self._ids)} disliked IDs")

    def _save(self):
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(sorted(self._ids)), encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to save disliked list: {e}")

    def __contains__(self, record_id: str) -> bool:
        return record_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, record_id: str) -> bool:
        with self._lock:
            if record_id in self._ids:
                return False
            self._ids.add(record_id)
            self._save()
            return True

    def discard(self, record_id: str) -> bool:
        with self._lock:
            if record_id not in self._ids:
                return False
            self._ids.discard(record_id)
            self._save()
            return True

    def discard_many(self, record_ids: Iterable[str]):
        with self._lock:
            before = len(self._ids)
            self._ids.difference_update(record_ids)
            if len(self._ids) != before:
                self._save()

    def clear(self):
        with self._lock:
            self._ids.clear()
            self._save()
