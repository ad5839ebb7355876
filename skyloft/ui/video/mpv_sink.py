"""
Render sink backed by libmpv, hosted in a frameless desktop-level window.
"""
from __future__ import annotations

import logging
from typing import Optional

import mpv
from PyQt6.QtCore import QObject, Qt, pyqtSignal
from PyQt6.QtWidgets import QWidget

from skyloft.core.configuration import OverlaySettings

logger = logging.getLogger(__name__)


class MPVSignals(QObject):
    eof = pyqtSignal()


class MpvRenderSink(QWidget):
    """
    Background video surface.

    mpv property callbacks arrive on mpv's event thread; they are forwarded to
    the Qt thread through MPVSignals before touching the player again.
    """

    finished = pyqtSignal()

    def __init__(self, overlay: Optional[OverlaySettings] = None, parent: Optional[QWidget] = None):
        super().__init__(parent)
        self.setWindowFlags(
            Qt.WindowType.FramelessWindowHint
            | Qt.WindowType.WindowStaysOnBottomHint
            | Qt.WindowType.Tool
        )
        self.setAttribute(Qt.WidgetAttribute.WA_NativeWindow)
        self.setAttribute(Qt.WidgetAttribute.WA_ShowWithoutActivating)
        self.setStyleSheet("background-color: black;")

        self.signals = MPVSignals()
        self.signals.eof.connect(self.finished.emit)
        self._current_path: Optional[str] = None

        self.player = mpv.MPV(
            wid=int(self.winId()),
            osc="no",
            input_default_bindings="no",
            input_vo_keyboard="no",
            keep_open="yes",
            hwdec="auto-safe",
            msg_level="all=no",
            mute="yes",
        )
        self.player.observe_property("eof-reached", self._mpv_eof)
        if overlay is not None:
            self.apply_overlay(overlay)

    # ------------------------------------------------------------
    # RenderSink
    # ------------------------------------------------------------

    def load_and_play(self, path: str):
        self._current_path = path
        logger.info(f"Loading {path}")
        self.player.play(path)
        self.player.pause = False  # type: ignore[attr-defined]

    def pause(self):
        self.player.pause = True  # type: ignore[attr-defined]

    def resume(self):
        if self._current_path is None:
            return
        self.player.pause = False  # type: ignore[attr-defined]

    def set_muted(self, muted: bool):
        self.player.mute = muted  # type: ignore[attr-defined]

    def seek(self, seconds: float):
        if self._current_path is None:
            return
        self.player.seek(max(0.0, seconds), reference="absolute")

    # ------------------------------------------------------------
    # Appearance
    # ------------------------------------------------------------

    def apply_overlay(self, overlay: OverlaySettings):
        """Map overlay settings onto window opacity and mpv video filters."""
        self.setWindowOpacity(overlay.opacity)
        self.player.brightness = int(round(overlay.brightness * 100))  # type: ignore[attr-defined]
        self.player.saturation = int(round((overlay.saturation - 1.0) * 100))  # type: ignore[attr-defined]
        self.player.vf = f"gblur=sigma={overlay.blur:g}" if overlay.blur > 0 else ""  # type: ignore[attr-defined]

    def cover_screen(self):
        screen = self.screen()
        if screen is not None:
            self.setGeometry(screen.geometry())
        self.show()
        self.lower()

    # ------------------------------------------------------------
    # mpv callbacks (mpv thread)
    # ------------------------------------------------------------

    def _mpv_eof(self, _, value):
        if value:
            # Cross-thread emit; delivered queued on the Qt thread
            self.signals.eof.emit()

    def closeEvent(self, event):
        try:
            self.player.terminate()
        except mpv.ShutdownError:
            pass
        super().closeEvent(event)
