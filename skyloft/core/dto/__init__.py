from skyloft.core.dto.video import VideoMetadata, VideoRecord
from skyloft.core.dto.playback import PauseReason, PlaybackPosition, ScheduleState

__all__ = [
    "VideoMetadata",
    "VideoRecord",
    "PauseReason",
    "PlaybackPosition",
    "ScheduleState",
]
