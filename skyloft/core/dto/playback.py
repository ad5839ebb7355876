from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PauseReason(str, Enum):
    NONE = "none"
    OUTSIDE_ACTIVE_WINDOW = "outside-active-window"
    ON_BATTERY_POWER = "on-battery-power"
    FOREGROUND_FULLSCREEN_APP = "foreground-fullscreen-app"
    USER_REQUESTED = "user-requested"


@dataclass(frozen=True, slots=True)
class ScheduleState:
    paused: bool = False
    reason: PauseReason = PauseReason.NONE


@dataclass(frozen=True, slots=True)
class PlaybackPosition:
    current_index: int = 0
    current_video_id: Optional[str] = None
    is_playing: bool = False
    is_muted: bool = True
