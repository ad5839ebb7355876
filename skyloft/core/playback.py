"""
Playback position over the catalog's visible view.
"""
from __future__ import annotations

import logging
from typing import Optional, Tuple

from PyQt6.QtCore import QObject, pyqtSignal

from skyloft.core.catalog import CatalogStore
from skyloft.core.configuration import ConfigurationManager
from skyloft.core.dto.playback import PlaybackPosition
from skyloft.core.dto.video import VideoRecord

logger = logging.getLogger(__name__)


class PlaybackSession(QObject):
    """
    Tracks which record is current and whether it is playing.

    The session never caches the list: every move reads the catalog's live view,
    and view changes re-sync the index or fall back to the first record when the
    current one disappears.
    """

    current_changed = pyqtSignal(object)   # VideoRecord or None
    playing_changed = pyqtSignal(bool)
    muted_changed = pyqtSignal(bool)

    def __init__(
        self,
        catalog: CatalogStore,
        config: Optional[ConfigurationManager] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self.catalog = catalog
        self.config = config
        self._current: Optional[VideoRecord] = None
        self._index = 0
        self._playing = False
        self._muted = config.config.behavior.mute_audio if config else True
        catalog.view_changed.connect(self._on_view_changed)

    # ------------------------------------------------------------
    # State
    # ------------------------------------------------------------

    @property
    def current(self) -> Optional[VideoRecord]:
        return self._current

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def is_muted(self) -> bool:
        return self._muted

    @property
    def position(self) -> PlaybackPosition:
        return PlaybackPosition(
            current_index=self._index,
            current_video_id=self._current.id if self._current else None,
            is_playing=self._playing,
            is_muted=self._muted,
        )

    @property
    def position_label(self) -> str:
        count = self.catalog.count
        if count == 0:
            return "No videos"
        return f"{self._index + 1} / {count}"

    def _set_playing(self, playing: bool):
        if playing != self._playing:
            self._playing = playing
            self.playing_changed.emit(playing)

    def _set_current(self, record: Optional[VideoRecord]):
        self._current = record
        self.current_changed.emit(record)

    # ------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------

    def play(self, record: VideoRecord) -> bool:
        index = self.catalog.index_of(record.id)
        if index is None:
            logger.warning(f"Cannot play {record.id}: not in library view")
            return False
        self._index = index
        self.catalog.increment_play_count(record.id)
        self._set_current(self.catalog.get(record.id) or record)
        self._set_playing(True)
        self._persist_last_played(record.id)
        logger.info(f"Playing {record.id} ({self.position_label})")
        return True

    def play_first(self) -> bool:
        view = self.catalog.view
        if not view:
            self._clear()
            return False
        return self.play(view[0])

    def next(self) -> bool:
        return self._step(1)

    def previous(self) -> bool:
        return self._step(-1)

    def _step(self, delta: int) -> bool:
        view = self.catalog.view
        if not view:
            self._clear()
            return False
        index = self.catalog.index_of(self._current.id) if self._current else None
        if index is None:
            return self.play(view[0])
        return self.play(view[(index + delta) % len(view)])

    def _clear(self):
        had_current = self._current is not None
        self._index = 0
        self._current = None
        self._set_playing(False)
        if had_current:
            self.current_changed.emit(None)

    # ------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------

    def pause(self):
        self._set_playing(False)

    def resume(self):
        if self._current is None:
            self.play_first()
            return
        self._set_playing(True)

    def toggle_play_pause(self):
        if self._playing:
            self.pause()
        else:
            self.resume()

    def set_muted(self, muted: bool):
        if muted != self._muted:
            self._muted = muted
            self.muted_changed.emit(muted)

    def toggle_mute(self):
        self.set_muted(not self._muted)

    # ------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------

    def _persist_last_played(self, record_id: str):
        if self.config is not None:
            self.config.remember("library", last_played_id=record_id)

    def restore_last_played(self) -> bool:
        """
        Select the persisted last-played record without starting playback.

        Returns:
            True if the record is still in the view
        """
        if self.config is None:
            return False
        record_id = self.config.config.library.last_played_id
        index = self.catalog.index_of(record_id)
        if index is None:
            return False
        self._index = index
        self._set_current(self.catalog.get(record_id))
        logger.info(f"Restored last played video {record_id}")
        return True

    # ------------------------------------------------------------
    # Catalog reactions
    # ------------------------------------------------------------

    def _on_view_changed(self, view: Tuple[VideoRecord, ...]):
        if self._current is None:
            return
        for i, record in enumerate(view):
            if record.id == self._current.id:
                self._index = i
                self._current = record
                return
        logger.info(f"Current video {self._current.id} left the library; falling back to first")
        if view:
            self.play_first()
        else:
            self._clear()
