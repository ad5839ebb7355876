"""
Application configuration.

Structured settings persisted as JSON. Decoding is tolerant: unknown keys are
ignored and missing keys take their defaults, so older and newer config files
both load.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from PyQt6.QtCore import QObject, QTimer, pyqtSignal

logger = logging.getLogger(__name__)

DEFAULT_LIBRARY_DIR = Path.home() / ".skyloft-wp"

QUALITY_CHOICES = ("auto", "high", "medium", "low")


def _clamp(value: Any, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return max(low, min(high, number))


def _section_from_dict(cls, data: Any):
    """Build a dataclass section from a dict, keeping only known fields."""
    if not isinstance(data, dict):
        return cls()
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class StreamingSettings:
    selected_source_id: str = ""
    sources: List[Dict[str, Any]] = field(default_factory=list)
    connection_enabled: bool = False
    auto_save_enabled: bool = True
    auto_save_count: int = 10


@dataclass
class LibrarySettings:
    path: str = str(DEFAULT_LIBRARY_DIR)
    last_played_id: Optional[str] = None
    auto_advance_seconds: int = 0

    @property
    def library_path(self) -> Path:
        return Path(self.path).expanduser()


@dataclass
class ScheduleSettings:
    enabled: bool = False
    start_time: str = "09:00"
    end_time: str = "18:00"
    pause_on_battery: bool = True
    pause_on_fullscreen: bool = True


@dataclass
class BehaviorSettings:
    auto_start: bool = True
    mute_audio: bool = True
    quality: str = "auto"
    notify_on_save: bool = True
    use_as_wallpaper: bool = True
    use_as_screensaver: bool = False
    screensaver_idle_time: int = 300

    def __post_init__(self):
        if self.quality not in QUALITY_CHOICES:
            self.quality = "auto"


def _default_shortcuts() -> Dict[str, str]:
    return {
        "next_video": "Ctrl+Alt+Right",
        "prev_video": "Ctrl+Alt+Left",
        "save_video": "Ctrl+Alt+S",
        "toggle_mute": "Ctrl+Alt+M",
        "toggle_play_pause": "Ctrl+Alt+Space",
        "open_library": "Ctrl+Alt+L",
        "copy_prompt": "Ctrl+Alt+C",
        "show_controls": "Ctrl+Alt+O",
    }


@dataclass
class OverlaySettings:
    opacity: float = 1.0
    brightness: float = 0.0
    saturation: float = 1.0
    blur: float = 0.0

    def __post_init__(self):
        self.opacity = _clamp(self.opacity, 0.0, 1.0, 1.0)
        self.brightness = _clamp(self.brightness, -1.0, 1.0, 0.0)
        self.saturation = _clamp(self.saturation, 0.0, 2.0, 1.0)
        self.blur = _clamp(self.blur, 0.0, 50.0, 0.0)


@dataclass
class AppConfiguration:
    streaming: StreamingSettings = field(default_factory=StreamingSettings)
    library: LibrarySettings = field(default_factory=LibrarySettings)
    schedule: ScheduleSettings = field(default_factory=ScheduleSettings)
    behavior: BehaviorSettings = field(default_factory=BehaviorSettings)
    shortcuts: Dict[str, str] = field(default_factory=_default_shortcuts)
    overlay: OverlaySettings = field(default_factory=OverlaySettings)
    logging: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfiguration":
        if not isinstance(data, dict):
            return cls()
        shortcuts = _default_shortcuts()
        if isinstance(data.get("shortcuts"), dict):
            shortcuts.update({k: v for k, v in data["shortcuts"].items() if k in shortcuts})
        levels = data.get("logging")
        return cls(
            streaming=_section_from_dict(StreamingSettings, data.get("streaming")),
            library=_section_from_dict(LibrarySettings, data.get("library")),
            schedule=_section_from_dict(ScheduleSettings, data.get("schedule")),
            behavior=_section_from_dict(BehaviorSettings, data.get("behavior")),
            shortcuts=shortcuts,
            overlay=_section_from_dict(OverlaySettings, data.get("overlay")),
            logging=dict(levels) if isinstance(levels, dict) else {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ConfigurationManager(QObject):
    """
    Owns the live AppConfiguration and its JSON file.

    Writes are debounced; ``config_changed`` fires on every update so listeners
    can re-evaluate synchronously.
    """

    config_changed = pyqtSignal(object)  # AppConfiguration

    SAVE_DEBOUNCE_MS = 500

    def __init__(self, config_path: Path, parent: Optional[QObject] = None):
        super().__init__(parent)
        self.config_path = Path(config_path)
        self._config = self._load()

        self._save_timer = QTimer(self)
        self._save_timer.setSingleShot(True)
        self._save_timer.setInterval(self.SAVE_DEBOUNCE_MS)
        self._save_timer.timeout.connect(self.save_now)

    @property
    def config(self) -> AppConfiguration:
        return self._config

    # ------------------------------------------------------------
    # Load / save
    # ------------------------------------------------------------

    def _load(self) -> AppConfiguration:
        if not self.config_path.exists():
            logger.info(f"No configuration at {self.config_path}, using defaults")
            return AppConfiguration()
        try:
            data = json.loads(self.config_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read configuration {self.config_path}: {e}")
            return AppConfiguration()
        return AppConfiguration.from_dict(data)

    def save_now(self) -> bool:
        self._save_timer.stop()
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.config_path.with_suffix(".json.tmp")
            tmp.write_text(json.dumps(self._config.to_dict(), indent=2), encoding="utf-8")
            tmp.replace(self.config_path)
            return True
        except OSError as e:
            logger.error(f"Failed to save configuration: {e}")
            return False

    def schedule_save(self):
        self._save_timer.start()

    # ------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------

    def update(self, section: str, **changes: Any) -> AppConfiguration:
        """
        Replace fields of one section and notify listeners.

        Args:
            section: Section attribute name (e.g. "schedule")
            **changes: Field values to set on that section

        Returns:
            The new configuration
        """
        self._apply(section, changes)
        self.config_changed.emit(self._config)
        return self._config

    def remember(self, section: str, **changes: Any) -> AppConfiguration:
        """Persist bookkeeping values (e.g. last played ID) without notifying listeners."""
        return self._apply(section, changes)

    def _apply(self, section: str, changes: Dict[str, Any]) -> AppConfiguration:
        current = getattr(self._config, section)
        if isinstance(current, dict):
            new_section = {**current, **changes}
        else:
            new_section = replace(current, **changes)
        self._config = replace(self._config, **{section: new_section})
        logger.debug(f"Configuration section '{section}' updated: {changes}")
        self.schedule_save()
        return self._config

    # Key/value view used by LoggingManager
    def get_config(self, key: str, default: Optional[str] = None) -> Optional[str]:
        if key.startswith("log_level_"):
            return self._config.logging.get(key[len("log_level_"):], default)
        return default

    def set_config(self, key: str, value: str):
        if key.startswith("log_level_"):
            self.update("logging", **{key[len("log_level_"):]: value})
