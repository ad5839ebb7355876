"""
Schedule gate: decides whether playback should run right now.

Four independent evaluators each own one pause reason and only ever set or
clear that reason. Playback is paused while any reason is active; the reason
reported is the first active one in evaluator order (active window, power,
foreground, user).
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Set, Tuple

from PyQt6.QtCore import QObject, QTimer, pyqtSignal
from PyQt6.QtGui import QGuiApplication

from skyloft.core.configuration import AppConfiguration, ConfigurationManager
from skyloft.core.dto.playback import PauseReason, ScheduleState
from skyloft.core import system_probes

logger = logging.getLogger(__name__)

REASON_ORDER: Tuple[PauseReason, ...] = (
    PauseReason.OUTSIDE_ACTIVE_WINDOW,
    PauseReason.ON_BATTERY_POWER,
    PauseReason.FOREGROUND_FULLSCREEN_APP,
    PauseReason.USER_REQUESTED,
)

WINDOW_CHECK_MS = 60_000
POWER_CHECK_MS = 30_000
FOREGROUND_CHECK_MS = 5_000


def parse_hhmm(value: str) -> Optional[int]:
    """Minutes since midnight for an ``HH:mm`` string, None if malformed."""
    try:
        hours, minutes = (int(part) for part in str(value).strip().split(":"))
    except (TypeError, ValueError):
        return None
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        return None
    return hours * 60 + minutes


def is_within_active_window(now: datetime, start: int, end: int) -> bool:
    """
    Whether ``now`` falls in [start, end) minutes of the day.

    Windows with start > end wrap past midnight. start == end is treated as
    always active.
    """
    current = now.hour * 60 + now.minute
    if start == end:
        return True
    if start < end:
        return start <= current < end
    return current >= start or current < end


def _detect_fullscreen_app() -> bool:
    return system_probes.fullscreen_app_active(
        system_probes.list_foreground_windows(),
        system_probes.primary_screen_size(),
    )


class ScheduleGate(QObject):

    decision_changed = pyqtSignal(object)   # ScheduleState
    low_power_changed = pyqtSignal(bool)

    def __init__(
        self,
        config: ConfigurationManager,
        clock: Callable[[], datetime] = datetime.now,
        power_probe: Callable[[], bool] = system_probes.on_ac_power,
        fullscreen_probe: Callable[[], bool] = _detect_fullscreen_app,
        activation_source: Optional[QObject] = None,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self.config = config
        self._clock = clock
        self._power_probe = power_probe
        self._fullscreen_probe = fullscreen_probe
        self._activation_source = activation_source
        self._activation_hooked = False

        self._active: Set[PauseReason] = set()
        self._state = ScheduleState()
        self._on_battery = False

        self._window_timer = QTimer(self)
        self._window_timer.setInterval(WINDOW_CHECK_MS)
        self._window_timer.timeout.connect(self.evaluate_active_window)

        self._power_timer = QTimer(self)
        self._power_timer.setInterval(POWER_CHECK_MS)
        self._power_timer.timeout.connect(self.evaluate_power)

        self._foreground_timer = QTimer(self)
        self._foreground_timer.setInterval(FOREGROUND_CHECK_MS)
        self._foreground_timer.timeout.connect(self.evaluate_foreground)

        config.config_changed.connect(self._on_config_changed)

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    def start(self):
        self.evaluate_all()
        self._window_timer.start()
        self._power_timer.start()
        self._foreground_timer.start()
        self._hook_activation_events()
        logger.info(f"Schedule gate started: {self._describe()}")

    def stop(self):
        self._window_timer.stop()
        self._power_timer.stop()
        self._foreground_timer.stop()

    # ------------------------------------------------------------
    # State
    # ------------------------------------------------------------

    @property
    def state(self) -> ScheduleState:
        return self._state

    @property
    def paused(self) -> bool:
        return self._state.paused

    @property
    def reason(self) -> PauseReason:
        return self._state.reason

    @property
    def on_battery(self) -> bool:
        return self._on_battery

    @property
    def user_paused(self) -> bool:
        return PauseReason.USER_REQUESTED in self._active

    def _describe(self) -> str:
        if not self._state.paused:
            return "playing"
        return f"paused ({self._state.reason.value})"

    # ------------------------------------------------------------
    # Arbitration
    # ------------------------------------------------------------

    def _set_reason(self, reason: PauseReason, active: bool):
        if active:
            self._active.add(reason)
        else:
            self._active.discard(reason)
        self._publish()

    def _publish(self):
        reason = next((r for r in REASON_ORDER if r in self._active), PauseReason.NONE)
        state = ScheduleState(paused=bool(self._active), reason=reason)
        if state == self._state:
            return
        self._state = state
        logger.info(f"Playback gate -> {self._describe()}")
        self.decision_changed.emit(state)

    # ------------------------------------------------------------
    # Evaluators
    # ------------------------------------------------------------

    @property
    def _settings(self):
        return self.config.config.schedule

    def evaluate_active_window(self):
        schedule = self._settings
        if not schedule.enabled:
            self._set_reason(PauseReason.OUTSIDE_ACTIVE_WINDOW, False)
            return
        start = parse_hhmm(schedule.start_time)
        end = parse_hhmm(schedule.end_time)
        if start is None or end is None:
            logger.warning(f"Invalid schedule window {schedule.start_time!r}-{schedule.end_time!r}; treating as always active")
            self._set_reason(PauseReason.OUTSIDE_ACTIVE_WINDOW, False)
            return
        inside = is_within_active_window(self._clock(), start, end)
        self._set_reason(PauseReason.OUTSIDE_ACTIVE_WINDOW, not inside)

    def evaluate_power(self):
        on_battery = not self._power_probe()
        if on_battery != self._on_battery:
            self._on_battery = on_battery
            logger.info("Switched to battery power" if on_battery else "Switched to AC power")
            self.low_power_changed.emit(on_battery)
        self._set_reason(PauseReason.ON_BATTERY_POWER, self._settings.pause_on_battery and on_battery)

    def evaluate_foreground(self):
        if not self._settings.pause_on_fullscreen:
            self._set_reason(PauseReason.FOREGROUND_FULLSCREEN_APP, False)
            return
        try:
            fullscreen = bool(self._fullscreen_probe())
        except OSError as e:
            logger.debug(f"Full-screen check failed: {e}")
            fullscreen = False
        self._set_reason(PauseReason.FOREGROUND_FULLSCREEN_APP, fullscreen)

    def notify_foreground_changed(self):
        """Re-check the foreground between polls (activation changes)."""
        self.evaluate_foreground()

    def _hook_activation_events(self):
        if self._activation_hooked:
            return
        source = self._activation_source
        if source is None:
            app = QGuiApplication.instance()
            source = app if isinstance(app, QGuiApplication) else None
        if source is None:
            logger.debug("No GUI application; foreground is checked by polling only")
            return
        source.applicationStateChanged.connect(self._on_application_state_changed)
        self._activation_hooked = True

    def _on_application_state_changed(self, state):
        self.notify_foreground_changed()

    def evaluate_all(self):
        self.evaluate_active_window()
        self.evaluate_power()
        self.evaluate_foreground()

    # ------------------------------------------------------------
    # User override
    # ------------------------------------------------------------

    def user_pause(self):
        self._set_reason(PauseReason.USER_REQUESTED, True)

    def user_resume(self):
        self._set_reason(PauseReason.USER_REQUESTED, False)

    def toggle_user_pause(self):
        self._set_reason(PauseReason.USER_REQUESTED, not self.user_paused)

    def _on_config_changed(self, _config: AppConfiguration):
        self.evaluate_all()
