"""
Centralized logging configuration with categorized loggers.

This module provides a flexible logging system with:
- Named categories for different subsystems
- Per-category log level control
- Persistent levels via the configuration store
"""
import logging
from typing import Dict, Optional
from pathlib import Path
from logging.handlers import TimedRotatingFileHandler


class LoggerCategory:
    """Named categories for application loggers"""
    CORE = "core"                  # Context, paths, orchestrator
    CATALOG = "catalog"            # Library database and catalog store
    DOWNLOAD = "download"          # Ingestion pipeline
    MEDIA = "media"                # ffprobe / thumbnails
    NETWORK = "network"            # HTTP session setup
    PLAYBACK = "playback"          # Playback session and render sink
    SCHEDULE = "schedule"          # Schedule gate and system probes
    SETTINGS = "settings"          # Configuration


DEFAULT_LOG_LEVELS = {
    LoggerCategory.CORE: logging.INFO,
    LoggerCategory.CATALOG: logging.INFO,
    LoggerCategory.DOWNLOAD: logging.INFO,
    LoggerCategory.MEDIA: logging.INFO,
    LoggerCategory.NETWORK: logging.WARNING,
    LoggerCategory.PLAYBACK: logging.INFO,
    LoggerCategory.SCHEDULE: logging.INFO,
    LoggerCategory.SETTINGS: logging.WARNING,  # Every play persists last_played_id
}


# Map module names to categories
MODULE_TO_CATEGORY = {
    # Core
    'skyloft.core.context': LoggerCategory.CORE,
    'skyloft.core.orchestrator': LoggerCategory.CORE,

    # Catalog
    'skyloft.core.catalog': LoggerCategory.CATALOG,
    'skyloft.core.database': LoggerCategory.CATALOG,
    'skyloft.core.disliked': LoggerCategory.CATALOG,
    'skyloft.utils.file_utils': LoggerCategory.CATALOG,

    # Download
    'skyloft.core.download_manager': LoggerCategory.DOWNLOAD,

    # Network
    'skyloft.core.http_client': LoggerCategory.NETWORK,

    # Media
    'skyloft.media': LoggerCategory.MEDIA,
    'skyloft.media.processor': LoggerCategory.MEDIA,

    # Playback
    'skyloft.core.playback': LoggerCategory.PLAYBACK,
    'skyloft.ui.video': LoggerCategory.PLAYBACK,
    'skyloft.ui.video.mpv_sink': LoggerCategory.PLAYBACK,

    # Schedule
    'skyloft.core.scheduler': LoggerCategory.SCHEDULE,
    'skyloft.core.system_probes': LoggerCategory.SCHEDULE,

    # Settings
    'skyloft.core.configuration': LoggerCategory.SETTINGS,
}


class LoggingManager:
    """Manages application-wide logging configuration"""

    LOG_FILE_NAME = "skyloft.log"

    def __init__(self, log_dir: Optional[Path] = None, config_store=None):
        """
        Initialize logging manager.

        Args:
            log_dir: Directory for log files
            config_store: Object with get_config/set_config for persistent levels
        """
        self.log_dir = log_dir or (Path.home() / ".skyloft-wp" / "logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.config_store = config_store
        self._category_levels: Dict[str, int] = {}
        self._load_levels()

    def _load_levels(self):
        """Load log levels from the configuration store"""
        if not self.config_store:
            self._category_levels = DEFAULT_LOG_LEVELS.copy()
            return

        for category, default_level in DEFAULT_LOG_LEVELS.items():
            config_key = f'log_level_{category}'
            level_name = self.config_store.get_config(config_key, logging.getLevelName(default_level))
            level = logging.getLevelName(str(level_name).upper())
            self._category_levels[category] = level if isinstance(level, int) else default_level

    def attach_config_store(self, config_store):
        """Adopt persisted levels once configuration is available"""
        self.config_store = config_store
        self._load_levels()
        for category, level in self._category_levels.items():
            self._apply_category_level(category, level)

    def get_category_level(self, category: str) -> int:
        """Get log level for a category"""
        return self._category_levels.get(category, logging.INFO)

    def set_category_level(self, category: str, level: int):
        """Set log level for a category"""
        self._category_levels[category] = level
        if self.config_store:
            self.config_store.set_config(f'log_level_{category}', logging.getLevelName(level))
        self._apply_category_level(category, level)

    def _apply_category_level(self, category: str, level: int):
        """Apply level to all loggers in a category"""
        for module_name, cat in MODULE_TO_CATEGORY.items():
            if cat == category:
                logging.getLogger(module_name).setLevel(level)

    def setup_logging(self, root_level: int = logging.INFO):
        """
        Setup application logging with categories.

        Args:
            root_level: Root logger level (default: INFO)
        """
        log_file = self.log_dir / self.LOG_FILE_NAME

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        file_handler = TimedRotatingFileHandler(
            log_file,
            when="midnight",
            interval=1,
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)

        root_logger = logging.getLogger()
        root_logger.setLevel(root_level)
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
        root_logger.addHandler(file_handler)
        root_logger.addHandler(stream_handler)

        for category, level in self._category_levels.items():
            self._apply_category_level(category, level)

        # Silence noisy third-party loggers
        logging.getLogger('aiohttp').setLevel(logging.WARNING)
        logging.getLogger('asyncio').setLevel(logging.WARNING)
        logging.getLogger('qasync').setLevel(logging.WARNING)

    def get_all_levels(self) -> Dict[str, int]:
        """Get all category log levels"""
        return self._category_levels.copy()


# Global instance
_logging_manager: Optional[LoggingManager] = None


def get_logging_manager(log_dir: Optional[Path] = None, config_store=None) -> LoggingManager:
    """Get or create the global logging manager"""
    global _logging_manager
    if _logging_manager is None:
        _logging_manager = LoggingManager(log_dir=log_dir, config_store=config_store)
    return _logging_manager


def setup_logging(log_dir: Optional[Path] = None, config_store=None) -> LoggingManager:
    """Setup application logging (convenience function)"""
    manager = get_logging_manager(log_dir, config_store)
    manager.setup_logging()
    return manager
