from pathlib import Path
from typing import Optional

from skyloft.core.configuration import DEFAULT_LIBRARY_DIR


class LibraryPaths:
    """
    Filesystem layout of a library directory.

    All paths are absolute. Directory properties create the directory on access.
    """

    def __init__(self, base_dir: Optional[Path] = None):
        """
        Args:
            base_dir: Library root. Defaults to ~/.skyloft-wp
        """
        self.base = Path(base_dir or DEFAULT_LIBRARY_DIR).expanduser().resolve()
        self.base.mkdir(parents=True, exist_ok=True)

    @property
    def videos(self) -> Path:
        """Saved clip files"""
        path = self.base / "videos"
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def thumbnails(self) -> Path:
        """Generated JPEG thumbnails"""
        path = self.base / "thumbnails"
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def logs(self) -> Path:
        path = self.base / "logs"
        path.mkdir(parents=True, exist_ok=True)
        return path

    @property
    def database(self) -> Path:
        return self.base / "library.sqlite"

    @property
    def disliked(self) -> Path:
        return self.base / "disliked.json"

    def video_file(self, record_id: str, extension: str) -> Path:
        ext = extension.lstrip(".").lower() or "mp4"
        return self.videos / f"{record_id}.{ext}"

    def thumbnail_file(self, record_id: str) -> Path:
        return self.thumbnails / f"{record_id}.jpg"
