"""
Environment probes used by the schedule gate: power source and foreground windows.
"""
from __future__ import annotations

import ctypes
import logging
import os
import sys
from dataclasses import dataclass
from typing import List, Optional, Tuple

import psutil

logger = logging.getLogger(__name__)

# Desktop shell windows never count as a full-screen app
SHELL_WINDOW_CLASSES = {"Progman", "WorkerW", "Shell_TrayWnd", "Shell_SecondaryTrayWnd"}
SHELL_PROCESS_NAMES = {"explorer.exe", "finder", "dock", "gnome-shell", "plasmashell"}

FULLSCREEN_COVERAGE = 0.95


@dataclass(frozen=True, slots=True)
class WindowInfo:
    pid: int
    owner: str
    width: int
    height: int
    window_class: str = ""

    @property
    def is_shell(self) -> bool:
        return self.window_class in SHELL_WINDOW_CLASSES or self.owner.lower() in SHELL_PROCESS_NAMES

    def covers(self, screen: Tuple[int, int], coverage: float = FULLSCREEN_COVERAGE) -> bool:
        screen_w, screen_h = screen
        if screen_w <= 0 or screen_h <= 0:
            return False
        return self.width >= screen_w * coverage and self.height >= screen_h * coverage


def on_ac_power() -> bool:
    """
    True when running on external power.

    Machines without a battery (or where the state cannot be read) count as AC.
    """
    try:
        battery = psutil.sensors_battery()
    except (AttributeError, NotImplementedError, OSError) as e:
        logger.debug(f"Battery state unavailable: {e}")
        return True
    if battery is None or battery.power_plugged is None:
        return True
    return bool(battery.power_plugged)


def _process_name(pid: int) -> str:
    try:
        return psutil.Process(pid).name()
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return ""


def _foreground_windows_win32() -> List[WindowInfo]:
    from ctypes import wintypes

    user32 = ctypes.WinDLL("user32", use_last_error=True)
    hwnd = user32.GetForegroundWindow()
    if not hwnd:
        return []

    rect = wintypes.RECT()
    if not user32.GetWindowRect(hwnd, ctypes.byref(rect)):
        return []
    pid = wintypes.DWORD()
    user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
    class_buf = ctypes.create_unicode_buffer(256)
    user32.GetClassNameW(hwnd, class_buf, 256)

    return [WindowInfo(
        pid=int(pid.value),
        owner=_process_name(int(pid.value)),
        width=rect.right - rect.left,
        height=rect.bottom - rect.top,
        window_class=class_buf.value,
    )]


def list_foreground_windows() -> List[WindowInfo]:
    """
    Windows currently in front of the desktop.

    Only implemented on Windows; other platforms report none, which leaves the
    full-screen evaluator permanently clear.
    """
    if sys.platform != "win32":
        return []
    try:
        return _foreground_windows_win32()
    except OSError as e:
        logger.debug(f"Foreground window query failed: {e}")
        return []


def primary_screen_size() -> Optional[Tuple[int, int]]:
    """Pixel size of the primary screen, or None without a GUI application."""
    from PyQt6.QtGui import QGuiApplication

    if not isinstance(QGuiApplication.instance(), QGuiApplication):
        return None
    screen = QGuiApplication.primaryScreen()
    if screen is None:
        return None
    geometry = screen.geometry()
    ratio = screen.devicePixelRatio()
    return int(geometry.width() * ratio), int(geometry.height() * ratio)


def fullscreen_app_active(
    windows: List[WindowInfo],
    screen: Optional[Tuple[int, int]],
    own_pid: Optional[int] = None,
) -> bool:
    """True when a non-shell window from another process covers the screen."""
    if not screen:
        return False
    own_pid = os.getpid() if own_pid is None else own_pid
    for window in windows:
        if window.pid == own_pid or window.is_shell:
            continue
        if window.covers(screen):
            logger.debug(f"Full-screen window detected: {window.owner or window.pid} {window.width}x{window.height}")
            return True
    return False
