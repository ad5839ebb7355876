"""
Wiring between detector events, the ingestion pipeline, the catalog, the
playback session, the schedule gate and the render sink.
"""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

from skyloft.core.catalog import CatalogStore
from skyloft.core.configuration import AppConfiguration, ConfigurationManager
from skyloft.core.download_manager import DownloadPipeline
from skyloft.core.dto.playback import ScheduleState
from skyloft.core.dto.video import VideoMetadata, VideoRecord
from skyloft.core.errors import DownloadError, NotFoundError
from skyloft.core.playback import PlaybackSession
from skyloft.core.scheduler import ScheduleGate

logger = logging.getLogger(__name__)


class RenderSink(Protocol):
    """Surface that renders the current clip. ``finished`` is a bound Qt signal."""

    finished: Any

    def load_and_play(self, path: str) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def set_muted(self, muted: bool) -> None: ...

    def seek(self, seconds: float) -> None: ...


class Orchestrator(QObject):

    video_saved = pyqtSignal(object)        # VideoRecord, when notify_on_save is on
    ingest_error = pyqtSignal(str, str)     # source, error kind

    def __init__(
        self,
        config: ConfigurationManager,
        catalog: CatalogStore,
        pipeline: DownloadPipeline,
        session: PlaybackSession,
        gate: ScheduleGate,
        executor: Executor,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self.config = config
        self.catalog = catalog
        self.pipeline = pipeline
        self.session = session
        self.gate = gate
        self.executor = executor
        self.sink: Optional[RenderSink] = None
        self._tasks: set = set()

        self._advance_timer = QTimer(self)
        self._advance_timer.setSingleShot(True)
        self._advance_timer.timeout.connect(self._on_advance_timeout)

        session.current_changed.connect(self._on_current_changed)
        session.playing_changed.connect(self._on_playing_changed)
        session.muted_changed.connect(self._on_muted_changed)
        gate.decision_changed.connect(self._on_gate_changed)
        pipeline.ingest_finished.connect(self._on_record_ingested)
        config.config_changed.connect(self._on_config_changed)

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def attach_sink(self, sink: RenderSink):
        self.sink = sink
        sink.finished.connect(self._on_sink_finished)
        sink.set_muted(self.session.is_muted)
        if self.session.current is not None:
            self._load_current(self.session.current)

    def start(self):
        """Restore or start playback, begin gating, and clean up orphans in the background."""
        if not self.session.restore_last_played():
            self.session.play_first()
        if self.config.config.behavior.auto_start:
            self.session.resume()
        else:
            self.session.pause()
        self.gate.start()
        self._spawn(self.run_orphan_cleanup())

    async def shutdown(self):
        self._advance_timer.stop()
        self.gate.stop()
        for task in list(self._tasks):
            task.cancel()
        await self.pipeline.close()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------

    def on_video_detected(self, url: str, metadata: Optional[Dict[str, Any]] = None) -> Optional[asyncio.Task]:
        """Detector entry point. Returns the ingestion task, or None when auto-save is off."""
        if not self.config.config.streaming.auto_save_enabled:
            logger.debug(f"Auto-save disabled; ignoring detected video {url}")
            return None
        return self._spawn(self._ingest_url(url, VideoMetadata.from_dict(metadata, source_url=url)))

    async def _ingest_url(self, url: str, metadata: VideoMetadata) -> Optional[VideoRecord]:
        try:
            return await self.pipeline.ingest_from_url(url, metadata)
        except DownloadError as e:
            logger.warning(f"Detected video not saved [{e.kind}]: {e}")
            self.ingest_error.emit(url, e.kind)
            return None

    async def import_files(self, paths: Iterable[str | Path]) -> List[VideoRecord]:
        imported = []
        for path in paths:
            try:
                record = await self.pipeline.ingest_from_local_file(path)
            except DownloadError as e:
                logger.warning(f"Import failed for {path}: {e}")
                self.ingest_error.emit(str(path), e.kind)
                continue
            if record is not None:
                imported.append(record)
        logger.info(f"Imported {len(imported)} videos")
        return imported

    def _on_record_ingested(self, record: VideoRecord):
        streaming = self.config.config.streaming
        if streaming.auto_save_enabled and record.source_url:
            self.catalog.enforce_max_count(streaming.auto_save_count)
        if self.config.config.behavior.notify_on_save:
            self.video_saved.emit(record)
        if self.session.current is None:
            self.session.play_first()

    async def run_orphan_cleanup(self) -> int:
        try:
            return await self.catalog.cleanup_orphaned_files_async(self.executor)
        except OSError as e:
            logger.warning(f"Orphan cleanup failed: {e}")
            return 0

    # ------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------

    def next_video(self):
        self.session.next()

    def previous_video(self):
        self.session.previous()

    def play_video(self, record_id: str) -> bool:
        try:
            record = self.catalog.require(record_id)
        except NotFoundError as e:
            logger.warning(str(e))
            return False
        return self.session.play(record)

    def toggle_play_pause(self):
        self.gate.toggle_user_pause()

    def toggle_mute(self):
        self.session.toggle_mute()

    def toggle_favorite_current(self) -> bool:
        current = self.session.current
        return self.catalog.toggle_favorite(current.id) if current else False

    def dislike_current(self) -> bool:
        current = self.session.current
        return self.catalog.dislike(current.id) if current else False

    def delete_current(self) -> bool:
        current = self.session.current
        return self.catalog.delete(current.id) if current else False

    # ------------------------------------------------------------
    # Render sink plumbing
    # ------------------------------------------------------------

    @property
    def should_render(self) -> bool:
        return self.session.is_playing and not self.gate.paused

    def _load_current(self, record: VideoRecord):
        if self.sink is None:
            return
        self.sink.load_and_play(record.local_path)
        if not self.should_render:
            self.sink.pause()

    def _on_current_changed(self, record: Optional[VideoRecord]):
        if record is None:
            self._advance_timer.stop()
            if self.sink is not None:
                self.sink.pause()
            return
        self._load_current(record)
        self._restart_advance_timer()

    def _on_playing_changed(self, playing: bool):
        self._apply_render_state()

    def _on_muted_changed(self, muted: bool):
        if self.sink is not None:
            self.sink.set_muted(muted)

    def _on_gate_changed(self, state: ScheduleState):
        self._apply_render_state()

    def _apply_render_state(self):
        if self.sink is not None and self.session.current is not None:
            if self.should_render:
                self.sink.resume()
            else:
                self.sink.pause()
        self._restart_advance_timer()

    def _on_sink_finished(self):
        if self.should_render:
            self.session.next()

    # ------------------------------------------------------------
    # Auto-advance
    # ------------------------------------------------------------

    def _restart_advance_timer(self):
        seconds = self.config.config.library.auto_advance_seconds
        if seconds > 0 and self.should_render and self.session.current is not None:
            self._advance_timer.start(int(seconds * 1000))
        else:
            self._advance_timer.stop()

    def _on_advance_timeout(self):
        if self.should_render:
            self.session.next()

    def _on_config_changed(self, config: AppConfiguration):
        if config.library.auto_advance_seconds <= 0:
            self._advance_timer.stop()
        elif not self._advance_timer.isActive():
            self._restart_advance_timer()
