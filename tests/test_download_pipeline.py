"""
DownloadPipeline against a real local aiohttp server.
"""
import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from unittest.mock import patch

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from skyloft.core.download_manager import DownloadPipeline
from skyloft.core.dto.video import VideoMetadata
from skyloft.core.http_client import HttpClientConfig
from skyloft.core.errors import (
    DownloadCancelled,
    PersistError,
    ProbeError,
    SourceError,
    TransferError,
)
from tests.conftest import FakeProcessor

CLIP = b"\x00\x00\x00\x18ftypmp42" + b"\x01" * 4096


class SlowThumbnailProcessor(FakeProcessor):
    """Thumbnail step that keeps writing after it has been asked to stop."""

    def __init__(self, delay=0.3):
        super().__init__()
        self.delay = delay
        self.thumbnail_started = threading.Event()
        self.thumbnail_written = threading.Event()

    def generate_thumbnail(self, source, destination, duration=None):
        self.thumbnail_started.set()
        time.sleep(self.delay)
        try:
            return super().generate_thumbnail(source, destination, duration)
        finally:
            self.thumbnail_written.set()


class ClipServer:
    """Serves /clip.mp4, /missing (404), /broken (500) and a slow /stall.mp4."""

    def __init__(self):
        self.hits = {}
        self.stall_started = asyncio.Event()
        self.app = web.Application()
        self.app.router.add_get("/clip.mp4", self._clip)
        self.app.router.add_get("/missing", self._missing)
        self.app.router.add_get("/broken", self._broken)
        self.app.router.add_get("/stall.mp4", self._stall)

    def _count(self, request):
        self.hits[request.path] = self.hits.get(request.path, 0) + 1

    async def _clip(self, request):
        self._count(request)
        return web.Response(body=CLIP, content_type="video/mp4")

    async def _missing(self, request):
        self._count(request)
        return web.Response(status=404)

    async def _broken(self, request):
        self._count(request)
        return web.Response(status=500)

    async def _stall(self, request):
        self._count(request)
        response = web.StreamResponse(headers={"Content-Type": "video/mp4"})
        await response.prepare(request)
        try:
            for _ in range(300):
                await response.write(b"\x00" * 1024)
                self.stall_started.set()
                await asyncio.sleep(0.1)
        except ConnectionResetError:
            pass
        return response


def _library_files(paths):
    return sorted(p.name for d in (paths.videos, paths.thumbnails) for p in d.iterdir())


def run_with_server(test_body):
    async def runner():
        clips = ClipServer()
        async with TestServer(clips.app) as server:
            await test_body(clips, server)
    asyncio.run(runner())


def make_pipeline(catalog, paths, executor, processor=None, http_config=None):
    return DownloadPipeline(
        catalog,
        paths,
        processor or FakeProcessor(),
        executor,
        http_config=http_config,
        retry_delay=0,
    )


def test_ingest_from_url_creates_record_file_and_thumbnail(catalog, paths, executor):
    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor)
        url = str(server.make_url("/clip.mp4"))
        try:
            record = await pipeline.ingest_from_url(
                url, VideoMetadata(source_url=url, prompt="tidal glow", author="mara", job_id="j-1")
            )
        finally:
            await pipeline.close()

        assert Path(record.local_path).read_bytes() == CLIP
        assert Path(record.local_path).name == f"{record.id}.mp4"
        assert Path(record.thumbnail_path).name == f"{record.id}.jpg"
        assert record.resolution == "1920x1080"
        assert record.duration == 8.0
        assert record.file_size_bytes == len(CLIP)
        assert (record.prompt, record.author, record.external_job_id) == ("tidal glow", "mara", "j-1")
        assert catalog.get(record.id) == record
        assert pipeline.total_downloaded == 1

    run_with_server(body)


def test_same_url_ingested_once_per_process(catalog, paths, executor):
    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor)
        url = str(server.make_url("/clip.mp4"))
        try:
            first = await pipeline.ingest_from_url(url)
            second = await pipeline.ingest_from_url(url)
        finally:
            await pipeline.close()

        assert first is not None
        assert second is None
        assert clips.hits["/clip.mp4"] == 1
        assert catalog.count == 1
        assert len(list(paths.videos.iterdir())) == 1

    run_with_server(body)


def test_client_error_status_is_transfer_failure_without_retry(catalog, paths, executor):
    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor)
        failures = []
        pipeline.ingest_failed.connect(lambda key, kind: failures.append(kind))
        try:
            with pytest.raises(TransferError) as excinfo:
                await pipeline.ingest_from_url(str(server.make_url("/missing")))
        finally:
            await pipeline.close()

        assert excinfo.value.status == 404
        assert excinfo.value.kind == "transfer_failed"
        assert clips.hits["/missing"] == 1
        assert failures == ["transfer_failed"]
        assert _library_files(paths) == []

    run_with_server(body)


def test_server_error_is_retried_then_fails(catalog, paths, executor):
    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor)
        try:
            with pytest.raises(TransferError):
                await pipeline.ingest_from_url(str(server.make_url("/broken")))
        finally:
            await pipeline.close()

        assert clips.hits["/broken"] == pipeline.max_retries
        assert _library_files(paths) == []
        assert catalog.count == 0

    run_with_server(body)


def test_invalid_url_is_source_error(catalog, paths, executor):
    async def body():
        pipeline = make_pipeline(catalog, paths, executor)
        with pytest.raises(SourceError):
            await pipeline.ingest_from_url("ftp://example.com/clip.mp4")
        with pytest.raises(SourceError):
            await pipeline.ingest_from_url("not a url")
        await pipeline.close()

    asyncio.run(body())


def test_undecodable_download_is_removed(catalog, paths, executor):
    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor, FakeProcessor(probe_error=True))
        try:
            with pytest.raises(ProbeError):
                await pipeline.ingest_from_url(str(server.make_url("/clip.mp4")))
        finally:
            await pipeline.close()

        assert _library_files(paths) == []
        assert catalog.count == 0

    run_with_server(body)


def test_thumbnail_failure_is_not_fatal(catalog, paths, executor):
    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor, FakeProcessor(thumbnail_error=True))
        try:
            record = await pipeline.ingest_from_url(str(server.make_url("/clip.mp4")))
        finally:
            await pipeline.close()

        assert record.thumbnail_path is None
        assert Path(record.local_path).exists()
        assert list(paths.thumbnails.iterdir()) == []

    run_with_server(body)


def test_catalog_insert_failure_cleans_up(catalog, paths, executor):
    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor)
        try:
            with patch.object(catalog, "insert", return_value=False):
                with pytest.raises(PersistError):
                    await pipeline.ingest_from_url(str(server.make_url("/clip.mp4")))
        finally:
            await pipeline.close()

        assert _library_files(paths) == []

    run_with_server(body)


def test_cancel_removes_partial_file_and_is_idempotent(catalog, paths, executor):
    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor)
        url = str(server.make_url("/stall.mp4"))
        task = asyncio.ensure_future(pipeline.ingest_from_url(url))
        await asyncio.wait_for(clips.stall_started.wait(), timeout=10)
        await asyncio.sleep(0.05)

        assert pipeline.is_in_flight(url)
        assert pipeline.cancel(url)
        assert not pipeline.cancel("http://unknown.example/clip.mp4")

        with pytest.raises(DownloadCancelled):
            await task
        assert not pipeline.cancel(url)
        assert pipeline.active_count == 0
        await pipeline.close()

        assert _library_files(paths) == []
        assert catalog.count == 0

    run_with_server(body)


def test_local_import_uses_file_stem_as_prompt(catalog, paths, executor, tmp_path):
    source = tmp_path / "Misty Harbor.mov"
    source.write_bytes(CLIP)

    async def body():
        pipeline = make_pipeline(catalog, paths, executor)
        record = await pipeline.ingest_from_local_file(source)
        await pipeline.close()
        return record

    record = asyncio.run(body())

    assert record.prompt == "Misty Harbor"
    assert record.source_url is None
    assert Path(record.local_path).suffix == ".mov"
    assert Path(record.local_path).read_bytes() == CLIP
    assert source.exists()


def test_local_import_of_missing_file_is_source_error(catalog, paths, executor, tmp_path):
    async def body():
        pipeline = make_pipeline(catalog, paths, executor)
        with pytest.raises(SourceError):
            await pipeline.ingest_from_local_file(tmp_path / "nope.mp4")

    asyncio.run(body())


def test_concurrent_requests_for_same_url_transfer_once(catalog, paths, executor):
    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor)
        url = str(server.make_url("/clip.mp4"))
        try:
            results = await asyncio.gather(pipeline.ingest_from_url(url), pipeline.ingest_from_url(url))
        finally:
            await pipeline.close()

        assert sum(1 for r in results if r is not None) == 1
        assert clips.hits["/clip.mp4"] == 1
        assert catalog.count == 1

    run_with_server(body)


def test_stalled_transfer_times_out_as_transfer_failure(catalog, paths, executor):
    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor, http_config=HttpClientConfig(transfer_timeout=0.2))
        try:
            with pytest.raises(TransferError) as excinfo:
                await pipeline.ingest_from_url(str(server.make_url("/stall.mp4")))
        finally:
            await pipeline.close()

        assert excinfo.value.status is None
        assert clips.hits["/stall.mp4"] == pipeline.max_retries
        assert _library_files(paths) == []

    run_with_server(body)


def test_cancel_all_and_close_drain_every_ingestion(catalog, paths, executor):
    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor)
        tasks = [
            asyncio.ensure_future(pipeline.ingest_from_url(str(server.make_url(f"/stall.mp4?n={n}"))))
            for n in range(2)
        ]
        for _ in range(200):
            if clips.hits.get("/stall.mp4", 0) == 2:
                break
            await asyncio.sleep(0.02)
        await asyncio.sleep(0.1)

        assert pipeline.active_count == 2
        assert pipeline.cancel_all() == 2
        await pipeline.close()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(r, DownloadCancelled) for r in results)
        assert pipeline.active_count == 0
        assert pipeline.cancel_all() == 0
        assert _library_files(paths) == []

    run_with_server(body)


def test_cancel_during_thumbnail_waits_for_worker_before_cleanup(catalog, paths, executor):
    processor = SlowThumbnailProcessor()

    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor, processor)
        url = str(server.make_url("/clip.mp4"))
        task = asyncio.ensure_future(pipeline.ingest_from_url(url))
        while not processor.thumbnail_started.is_set():
            await asyncio.sleep(0.01)

        assert pipeline.cancel(url)
        with pytest.raises(DownloadCancelled):
            await task
        await pipeline.close()

        assert processor.thumbnail_written.is_set()
        assert _library_files(paths) == []
        assert catalog.count == 0

    run_with_server(body)


def test_orphan_cleanup_spares_download_in_progress(catalog, paths, executor, record_factory):
    catalog.insert(record_factory())
    stray = paths.videos / "stray.mp4"
    stray.write_bytes(b"x")
    release = threading.Event()
    scan_pool = ThreadPoolExecutor(max_workers=1)
    scan_pool.submit(release.wait, 10)

    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor)
        cleanup = asyncio.ensure_future(catalog.cleanup_orphaned_files_async(scan_pool))
        url = str(server.make_url("/stall.mp4"))
        ingest = asyncio.ensure_future(pipeline.ingest_from_url(url))
        await asyncio.wait_for(clips.stall_started.wait(), timeout=10)

        release.set()
        removed = await cleanup
        partials = [p.name for p in paths.videos.iterdir() if p.name.endswith(".part")]

        pipeline.cancel(url)
        with pytest.raises(DownloadCancelled):
            await ingest
        await pipeline.close()

        assert removed == 1
        assert not stray.exists()
        assert len(partials) == 1

    try:
        run_with_server(body)
    finally:
        release.set()
        scan_pool.shutdown(wait=True)


def test_forgotten_source_can_be_ingested_again(catalog, paths, executor):
    async def body(clips, server):
        pipeline = make_pipeline(catalog, paths, executor)
        url = str(server.make_url("/missing"))
        try:
            with pytest.raises(TransferError):
                await pipeline.ingest_from_url(url)
            assert await pipeline.ingest_from_url(url) is None

            pipeline.forget_source(url)
            with pytest.raises(TransferError):
                await pipeline.ingest_from_url(url)
        finally:
            await pipeline.close()

        assert clips.hits["/missing"] == 2

    run_with_server(body)
