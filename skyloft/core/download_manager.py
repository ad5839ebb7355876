"""
Ingestion pipeline: remote URL or local file -> saved clip in the catalog.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import shutil
import uuid
from concurrent.futures import Executor
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Dict, Optional, Set
from urllib.parse import unquote, urlparse

import aiohttp
from PyQt6.QtCore import QObject, pyqtSignal

from skyloft.core.catalog import CatalogStore
from skyloft.core.dto.video import VideoMetadata, VideoRecord
from skyloft.core.errors import (
    DownloadCancelled,
    DownloadError,
    PersistError,
    ProbeError,
    SourceError,
    TransferError,
)
from skyloft.core.http_client import (
    HttpClientConfig,
    create_async_session,
    get_media_headers_with_referer,
    is_downloadable_url,
)
from skyloft.core.paths import LibraryPaths
from skyloft.media.processor import VIDEO_EXTS, MediaProbe, MediaProcessor
from skyloft.utils.file_utils import file_size, safe_unlink

logger = logging.getLogger(__name__)


def _extension_from_url(url: str) -> str:
    suffix = Path(unquote(urlparse(url).path)).suffix.lower()
    return suffix.lstrip(".") if suffix in VIDEO_EXTS else "mp4"


class DownloadPipeline(QObject):
    """
    Turns a source into a fully-formed catalog record.

    Steps per ingestion: allocate an ID, transfer into the library, probe,
    thumbnail, insert. Any failure after the transfer starts removes every file
    written for that ID before the error propagates.
    """

    ingest_started = pyqtSignal(str)        # source key
    ingest_finished = pyqtSignal(object)    # VideoRecord
    ingest_failed = pyqtSignal(str, str)    # source key, error kind

    def __init__(
        self,
        catalog: CatalogStore,
        paths: LibraryPaths,
        processor: MediaProcessor,
        executor: Executor,
        http_config: Optional[HttpClientConfig] = None,
        max_concurrent: int = 2,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        parent: Optional[QObject] = None,
    ):
        super().__init__(parent)
        self.catalog = catalog
        self.paths = paths
        self.processor = processor
        self.executor = executor
        self.http_config = http_config or HttpClientConfig()
        self.max_concurrent = max_concurrent
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.session: Optional[aiohttp.ClientSession] = None
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self._chunk_size = 64 * 1024

        self._seen_urls: Set[str] = set()
        self._in_flight: Dict[str, asyncio.Future] = {}
        self._cancelled: Set[str] = set()
        self.total_downloaded = 0

    # ------------------------------------------------------------
    # Session
    # ------------------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None or self.session.closed:
            self.session = create_async_session(self.http_config)
        return self.session

    async def close(self):
        """Cancel in-flight work and close the HTTP session"""
        self.cancel_all()
        pending = [t for t in self._in_flight.values() if not t.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self.session:
            await self.session.close()
            self.session = None

    # ------------------------------------------------------------
    # State
    # ------------------------------------------------------------

    @property
    def active_count(self) -> int:
        return len(self._in_flight)

    def forget_source(self, url: str):
        """Allow a previously seen URL to be ingested again."""
        self._seen_urls.discard(url)

    def is_in_flight(self, key: str) -> bool:
        return key in self._in_flight

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------

    async def ingest_from_url(self, url: str, metadata: Optional[VideoMetadata] = None) -> Optional[VideoRecord]:
        """
        Download a remote clip into the library.

        Returns:
            The new record, or None when the URL was already processed this session

        Raises:
            DownloadError subclass describing the failure
        """
        if not is_downloadable_url(url):
            raise SourceError(f"Not a downloadable URL: {url!r}", url)
        if url in self._seen_urls:
            logger.debug(f"Skipping already processed URL: {url}")
            return None
        self._seen_urls.add(url)
        metadata = metadata or VideoMetadata(source_url=url)
        return await self._run(url, self._ingest_url(url, metadata))

    async def ingest_from_local_file(self, path: str | Path, metadata: Optional[VideoMetadata] = None) -> Optional[VideoRecord]:
        """
        Copy a local clip into the library.

        The prompt defaults to the source file's name without extension.

        Returns:
            The new record, or None when the same file is already being imported
        """
        source = Path(path).expanduser()
        if not source.is_file():
            raise SourceError(f"File not found: {source}", str(source))
        key = str(source.resolve())
        if key in self._in_flight:
            logger.debug(f"Import already in progress: {key}")
            return None
        metadata = metadata or VideoMetadata(prompt=source.stem)
        return await self._run(key, self._ingest_local(source, metadata))

    def cancel(self, key: str) -> bool:
        """Cancel an in-flight ingestion. Unknown or finished keys are a no-op."""
        task = self._in_flight.get(key)
        if task is None or task.done():
            return False
        self._cancelled.add(key)
        task.cancel()
        logger.info(f"Cancelled ingestion: {key}")
        return True

    def cancel_all(self) -> int:
        return sum(1 for key in list(self._in_flight) if self.cancel(key))

    # ------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------

    async def _run(self, key: str, coro: Awaitable[VideoRecord]) -> VideoRecord:
        task = asyncio.ensure_future(coro)
        self._in_flight[key] = task
        self.ingest_started.emit(key)
        try:
            record = await task
        except asyncio.CancelledError:
            if key not in self._cancelled:
                raise
            error = DownloadCancelled(f"Ingestion cancelled: {key}", key)
            self.ingest_failed.emit(key, error.kind)
            raise error from None
        except DownloadError as e:
            logger.error(f"Ingestion failed [{e.kind}] for {key}: {e}")
            self.ingest_failed.emit(key, e.kind)
            raise
        finally:
            self._in_flight.pop(key, None)
            self._cancelled.discard(key)

        self.total_downloaded += 1
        logger.info(f"Saved {record.file_name} ({record.display_duration}, {record.display_file_size})")
        self.ingest_finished.emit(record)
        return record

    async def _ingest_url(self, url: str, metadata: VideoMetadata) -> VideoRecord:
        record_id = str(uuid.uuid4())
        destination = self.paths.video_file(record_id, _extension_from_url(url))
        with self._claim_paths(record_id, destination):
            async with self.semaphore:
                await self._transfer_with_retries(url, destination)
            return await self._finalize(record_id, destination, metadata, source_url=url)

    async def _ingest_local(self, source: Path, metadata: VideoMetadata) -> VideoRecord:
        record_id = str(uuid.uuid4())
        destination = self.paths.video_file(record_id, source.suffix or "mp4")
        with self._claim_paths(record_id, destination):
            try:
                await self._in_worker(shutil.copy2, source, destination)
            except OSError as e:
                raise TransferError(f"Copy failed for {source}: {e}", str(source)) from e
            logger.info(f"Imported {source.name} as {record_id}")
            return await self._finalize(record_id, destination, metadata, source_url=None)

    def _claim_paths(self, record_id: str, destination: Path) -> "_PathClaim":
        return _PathClaim(self, [
            destination,
            self._part_path(destination),
            self.paths.thumbnail_file(record_id),
        ])

    async def _in_worker(self, fn, *args):
        """
        Run blocking work on the pool.

        Worker threads cannot be interrupted: on cancellation this waits for the
        call to return before re-raising, so cleanup runs after its last write.
        """
        future = asyncio.get_running_loop().run_in_executor(self.executor, fn, *args)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            while not future.done():
                with contextlib.suppress(asyncio.CancelledError):
                    await asyncio.wait({future})
            if not future.cancelled():
                future.exception()
            raise

    @staticmethod
    def _part_path(destination: Path) -> Path:
        return destination.with_name(destination.name + ".part")

    async def _transfer_with_retries(self, url: str, destination: Path):
        last_error: Optional[TransferError] = None
        for attempt in range(1, self.max_retries + 1):
            try:
                await self._transfer(url, destination)
                return
            except TransferError as e:
                last_error = e
                if e.status is not None and 400 <= e.status < 500:
                    break
                if attempt < self.max_retries:
                    delay = self.retry_delay * attempt
                    logger.warning(f"Download attempt {attempt}/{self.max_retries} failed for {url}: {e}; retrying in {delay:.1f}s")
                    await asyncio.sleep(delay)
        raise last_error

    async def _transfer(self, url: str, destination: Path):
        part = self._part_path(destination)
        session = await self._get_session()
        completed = False
        try:
            async with session.get(url, headers=get_media_headers_with_referer(url)) as response:
                if not 200 <= response.status < 300:
                    raise TransferError(f"HTTP {response.status} for {url}", url, status=response.status)
                with open(part, "wb") as f:
                    async for chunk in response.content.iter_chunked(self._chunk_size):
                        f.write(chunk)
            part.replace(destination)
            completed = True
            logger.info(f"Downloaded {url} -> {destination.name} ({file_size(destination)} bytes)")
        except asyncio.TimeoutError as e:
            raise TransferError(f"Timed out downloading {url}", url) from e
        except aiohttp.ClientError as e:
            raise TransferError(f"Network error downloading {url}: {e}", url) from e
        except OSError as e:
            raise PersistError(f"Could not write {destination}: {e}", url) from e
        finally:
            if not completed:
                safe_unlink(part)

    async def _finalize(
        self,
        record_id: str,
        destination: Path,
        metadata: VideoMetadata,
        source_url: Optional[str],
    ) -> VideoRecord:
        try:
            probe = await self._in_worker(self.processor.probe, destination)
        except ProbeError:
            raise
        except OSError as e:
            logger.warning(f"Probe failed for {destination.name}, saving without metadata: {e}")
            probe = MediaProbe(file_size=file_size(destination))

        thumbnail = self.paths.thumbnail_file(record_id)
        thumbnail_path: Optional[str] = None
        try:
            await self._in_worker(self.processor.generate_thumbnail, destination, thumbnail, probe.duration)
            thumbnail_path = str(thumbnail)
        except (RuntimeError, OSError) as e:
            logger.warning(f"Thumbnail generation failed for {record_id}: {e}")
            safe_unlink(thumbnail)

        record = VideoRecord(
            id=record_id,
            local_path=str(destination),
            saved_at=datetime.now(),
            source_url=source_url,
            prompt=metadata.prompt,
            author=metadata.author,
            external_job_id=metadata.job_id,
            duration=probe.duration,
            resolution=probe.resolution,
            file_size_bytes=probe.file_size if probe.file_size is not None else file_size(destination),
            thumbnail_path=thumbnail_path,
        )
        if not self.catalog.insert(record):
            raise PersistError(f"Catalog insert failed for {record_id}", source_url or str(destination))
        return record


class _PathClaim:
    """
    Registers an ingestion's files as in flight and removes them unless the
    ingestion completes.
    """

    def __init__(self, pipeline: DownloadPipeline, paths):
        self.pipeline = pipeline
        self.paths = list(paths)

    def __enter__(self):
        self.pipeline.catalog.claim_paths(self.paths)
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            for path in self.paths:
                safe_unlink(path)
        self.pipeline.catalog.release_paths(self.paths)
        return False
