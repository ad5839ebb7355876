from __future__ import annotations

import json
import logging
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from PyQt6.QtGui import QImage

from skyloft.core.errors import ProbeError

logger = logging.getLogger(__name__)

VIDEO_EXTS = {".mp4", ".webm", ".mkv", ".mov", ".avi", ".m4v"}

THUMBNAIL_SIZE = (320, 180)
THUMBNAIL_QUALITY = 80
PROBE_TIMEOUT = 30


def _subprocess_kwargs() -> dict:
    """Get platform-specific subprocess kwargs to hide console windows on Windows."""
    kwargs = {}
    if sys.platform == 'win32':
        kwargs['creationflags'] = subprocess.CREATE_NO_WINDOW
    return kwargs


@dataclass(frozen=True, slots=True)
class MediaProbe:
    duration: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    file_size: Optional[int] = None

    @property
    def resolution(self) -> Optional[str]:
        if self.width and self.height:
            return f"{self.width}x{self.height}"
        return None


class MediaProcessor:
    """
    Pure media inspection utility.

    Responsibilities:
    - Probe duration / dimensions with ffprobe
    - Extract a representative frame with ffmpeg and save it as a JPEG thumbnail

    Non-responsibilities:
    - Threading (callers run these on a worker pool)
    - Catalog bookkeeping
    """

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------

    def probe(self, source: str | Path) -> MediaProbe:
        """
        Read container metadata.

        Returns a probe with None fields when ffprobe is unavailable or a field
        cannot be read.

        Raises:
            ProbeError: ffprobe ran but could not open the file as media
        """
        path = Path(source)
        size = path.stat().st_size if path.exists() else None
        if not self._ffprobe_available():
            logger.warning("ffprobe not found on PATH; skipping metadata probe")
            return MediaProbe(file_size=size)

        cmd = [
            "ffprobe",
            "-v", "error",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            "-select_streams", "v:0",
            str(path),
        ]
        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=True,
                text=True,
                timeout=PROBE_TIMEOUT,
                **_subprocess_kwargs(),
            )
        except subprocess.CalledProcessError as e:
            raise ProbeError(f"Not a readable media file: {path.name}: {(e.stderr or '').strip()}", str(path))
        except subprocess.TimeoutExpired:
            logger.warning(f"ffprobe timed out for {path}")
            return MediaProbe(file_size=size)

        try:
            info = json.loads(proc.stdout or "{}")
        except ValueError:
            logger.warning(f"Unparseable ffprobe output for {path}")
            return MediaProbe(file_size=size)

        streams = info.get("streams") or []
        if not streams:
            raise ProbeError(f"No video stream in {path.name}", str(path))
        stream = streams[0]

        return MediaProbe(
            duration=self._parse_duration(info.get("format", {}).get("duration") or stream.get("duration")),
            width=self._parse_int(stream.get("width")),
            height=self._parse_int(stream.get("height")),
            file_size=size,
        )

    def generate_thumbnail(
        self,
        source: str | Path,
        destination: str | Path,
        duration: Optional[float] = None,
        size: Tuple[int, int] = THUMBNAIL_SIZE,
    ) -> Path:
        """
        Save a JPEG thumbnail of a video.

        The frame is taken at 10% of the duration, capped at one second.

        Raises:
            RuntimeError: ffmpeg missing, decode failure, or write failure
        """
        if not self._ffmpeg_available():
            raise RuntimeError("ffmpeg not found on PATH")
        source = Path(source)
        destination = Path(destination)

        timestamp = self._thumbnail_timestamp(duration)
        img = self._extract_video_frame(source, size, timestamp)
        if (img is None or img.isNull()) and timestamp > 0:
            img = self._extract_video_frame(source, size, 0.0)
        if img is None or img.isNull():
            raise RuntimeError(f"Failed to decode video frame: {source}")

        destination.parent.mkdir(parents=True, exist_ok=True)
        if not img.save(str(destination), "JPG", THUMBNAIL_QUALITY):
            raise RuntimeError(f"Failed to write thumbnail: {destination}")
        return destination

    # ------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------

    @staticmethod
    def _thumbnail_timestamp(duration: Optional[float]) -> float:
        if not duration or duration <= 0:
            return 0.0
        return min(1.0, duration * 0.1)

    @staticmethod
    def _parse_duration(value) -> Optional[float]:
        try:
            duration = float(value)
        except (TypeError, ValueError):
            return None
        return duration if duration > 0 else None

    @staticmethod
    def _parse_int(value) -> Optional[int]:
        try:
            number = int(value)
        except (TypeError, ValueError):
            return None
        return number if number > 0 else None

    def _ffmpeg_available(self) -> bool:
        return shutil.which("ffmpeg") is not None

    def _ffprobe_available(self) -> bool:
        return shutil.which("ffprobe") is not None

    def _extract_video_frame(
        self,
        source: Path,
        size: Tuple[int, int],
        timestamp: float,
    ) -> Optional[QImage]:
        cmd = [
            "ffmpeg",
            "-loglevel", "error",
            "-ss", str(max(timestamp, 0.0)),
            "-i", str(source),
            "-frames:v", "1",
            "-vf", self._scale_filter(size),
            "-f", "image2pipe",
            "-vcodec", "png",
            "-",
        ]
        try:
            proc = subprocess.run(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=True,
                timeout=PROBE_TIMEOUT,
                **_subprocess_kwargs(),
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as e:
            logger.debug(f"Frame extraction failed for {source} at {timestamp:.2f}s: {e}")
            return None

        img = QImage.fromData(proc.stdout, "PNG")
        if img.isNull():
            return None
        return img

    @staticmethod
    def _scale_filter(size: Tuple[int, int]) -> str:
        w, h = size
        return f"scale={w}:{h}:force_original_aspect_ratio=decrease"
