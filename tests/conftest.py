"""
Shared fixtures for the Skyloft test suite.

A single QCoreApplication backs every QObject/QTimer; signals are connected
directly so they fire synchronously without spinning an event loop.
"""
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional
import uuid

import pytest
from PyQt6.QtCore import QCoreApplication

from skyloft.core.catalog import CatalogStore
from skyloft.core.configuration import ConfigurationManager
from skyloft.core.database import LibraryDatabase
from skyloft.core.disliked import DislikedStore
from skyloft.core.dto.video import VideoRecord
from skyloft.core.errors import ProbeError
from skyloft.core.paths import LibraryPaths
from skyloft.media.processor import MediaProbe


@pytest.fixture(scope="session", autouse=True)
def qapp():
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


@pytest.fixture
def paths(tmp_path) -> LibraryPaths:
    return LibraryPaths(tmp_path / "library")


@pytest.fixture
def config_manager(tmp_path) -> ConfigurationManager:
    return ConfigurationManager(tmp_path / "config.json")


@pytest.fixture
def database(paths):
    db = LibraryDatabase(paths.database)
    db.connect()
    yield db
    db.close()


@pytest.fixture
def catalog(database, paths) -> CatalogStore:
    return CatalogStore(database, DislikedStore(paths.disliked), paths)


@pytest.fixture
def executor():
    pool = ThreadPoolExecutor(max_workers=2, thread_name_prefix="test-io")
    yield pool
    pool.shutdown(wait=True)


_BASE_TIME = datetime(2024, 5, 1, 12, 0, 0)


def make_record(
    paths: LibraryPaths,
    minutes: int = 0,
    prompt: Optional[str] = None,
    author: Optional[str] = None,
    with_file: bool = True,
    with_thumbnail: bool = False,
) -> VideoRecord:
    """Record saved ``minutes`` after a fixed base time, with its file on disk."""
    record_id = str(uuid.uuid4())
    video = paths.video_file(record_id, "mp4")
    if with_file:
        video.write_bytes(b"\x00" * 128)
    thumbnail = None
    if with_thumbnail:
        thumbnail = paths.thumbnail_file(record_id)
        thumbnail.write_bytes(b"jpg")
    return VideoRecord(
        id=record_id,
        local_path=str(video),
        saved_at=_BASE_TIME + timedelta(minutes=minutes),
        prompt=prompt,
        author=author,
        thumbnail_path=str(thumbnail) if thumbnail else None,
    )


@pytest.fixture
def record_factory(paths):
    def factory(**kwargs) -> VideoRecord:
        return make_record(paths, **kwargs)
    return factory


class FakeProcessor:
    """Stands in for ffprobe/ffmpeg."""

    def __init__(self, probe_error: bool = False, thumbnail_error: bool = False):
        self.probe_error = probe_error
        self.thumbnail_error = thumbnail_error
        self.probed = []

    def probe(self, source):
        self.probed.append(Path(source))
        if self.probe_error:
            raise ProbeError(f"Not a readable media file: {Path(source).name}", str(source))
        return MediaProbe(duration=8.0, width=1920, height=1080, file_size=Path(source).stat().st_size)

    def generate_thumbnail(self, source, destination, duration=None):
        if self.thumbnail_error:
            raise RuntimeError("Failed to decode video frame")
        Path(destination).write_bytes(b"thumb")
        return Path(destination)


@pytest.fixture
def fake_processor():
    return FakeProcessor()
