from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from skyloft.core.catalog import CatalogStore
from skyloft.core.configuration import DEFAULT_LIBRARY_DIR, ConfigurationManager
from skyloft.core.database import LibraryDatabase
from skyloft.core.disliked import DislikedStore
from skyloft.core.download_manager import DownloadPipeline
from skyloft.core.orchestrator import Orchestrator
from skyloft.core.paths import LibraryPaths
from skyloft.core.playback import PlaybackSession
from skyloft.core.scheduler import ScheduleGate
from skyloft.media.processor import MediaProcessor

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = DEFAULT_LIBRARY_DIR / "config.json"


def _subprocess_kwargs() -> dict:
    """Get platform-specific subprocess kwargs to hide console windows on Windows."""
    kwargs = {}
    if sys.platform == 'win32':
        kwargs['creationflags'] = subprocess.CREATE_NO_WINDOW
    return kwargs


class AppContext:
    """
    Explicitly constructed service container.

    Builds every service once, in dependency order, and tears them down in
    reverse on close(). Construct it inside a running Qt application; the
    asyncio loop must exist before the pipeline performs any transfer.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        library_dir: Optional[Path] = None,
        processor: Optional[MediaProcessor] = None,
        max_workers: int = 4,
    ):
        """
        Args:
            config_path: JSON configuration file. Defaults to ~/.skyloft-wp/config.json
            library_dir: Overrides the library path from configuration
            processor: Media prober/thumbnailer (injectable for tests)
            max_workers: Size of the blocking-I/O worker pool
        """
        self.config_manager = ConfigurationManager(config_path or DEFAULT_CONFIG_PATH)
        self.paths = LibraryPaths(library_dir or self.config_manager.config.library.library_path)
        logger.info(f"Library directory: {self.paths.base}")

        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="skyloft-io")

        self.database = LibraryDatabase(self.paths.database)
        self.database.connect()
        self.disliked = DislikedStore(self.paths.disliked)
        self.catalog = CatalogStore(self.database, self.disliked, self.paths)

        self.processor = processor or MediaProcessor()
        self.pipeline = DownloadPipeline(
            self.catalog,
            self.paths,
            self.processor,
            self.executor,
        )
        self.session = PlaybackSession(self.catalog, self.config_manager)
        self.gate = ScheduleGate(self.config_manager)
        self.orchestrator = Orchestrator(
            self.config_manager,
            self.catalog,
            self.pipeline,
            self.session,
            self.gate,
            self.executor,
        )
        self._closed = False

    def start(self) -> None:
        self._check_ffmpeg_availability()
        self.catalog.load_all()
        self.orchestrator.start()

    def _check_ffmpeg_availability(self) -> None:
        """Check if ffmpeg and ffprobe are available for probing and thumbnails."""
        for tool, purpose in (("ffmpeg", "Thumbnail generation"), ("ffprobe", "Video metadata extraction")):
            path = shutil.which(tool)
            if not path:
                logger.warning(
                    f"{tool} not found in PATH. {purpose} will be unavailable. "
                    "Install ffmpeg: https://ffmpeg.org/download.html"
                )
                continue
            try:
                result = subprocess.run(
                    [path, "-version"],
                    capture_output=True,
                    text=True,
                    timeout=5,
                    **_subprocess_kwargs(),
                )
            except (OSError, subprocess.TimeoutExpired) as e:
                logger.warning(f"{tool} found but failed to execute: {e}")
                continue
            if result.returncode == 0:
                version_line = result.stdout.split("\n", 1)[0]
                logger.info(f"{tool} found: {version_line}")
            else:
                logger.warning(f"{tool} found but returned error: {result.stderr}")

    async def shutdown(self) -> None:
        """Stop async work (transfers, background tasks)."""
        await self.orchestrator.shutdown()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.gate.stop()
        self.config_manager.save_now()
        self.executor.shutdown(wait=False, cancel_futures=True)
        self.database.close()
        logger.info("Application context closed")
