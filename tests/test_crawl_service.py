"""Tests for crawl job control, progress checkpoints and hashing."""

# pylint: disable=redefined-outer-name

import concurrent.futures
import hashlib
import io
import logging
import threading
import time
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from photocatalog.connections import ConnectionManager
from photocatalog.crawler import CancellationToken, CrawlEngine, CrawlService, HashComputationError, hash_stream
from photocatalog.crawler.progress import Checkpointer, format_duration
from photocatalog.credentials import FernetCredentialStore, generate_key
from photocatalog.database import Backend, BackendNotFoundError, Catalog, CrawlJob, CrawlStatus, Database, ProtocolType


@pytest.fixture
def catalog(tmp_path: Path):
    with Database(tmp_path / "catalog.db") as db:
        yield Catalog(db)


@pytest.fixture
def backend(catalog: Catalog, tmp_path: Path) -> Backend:
    root = tmp_path / "photos"
    root.mkdir()
    (root / "a.jpg").write_bytes(b"a")
    (root / "b.jpg").write_bytes(b"b")
    return catalog.add_backend(Backend(id=None, name="photos", protocol=ProtocolType.LOCAL, connection_url=str(root)))


@pytest.fixture
def service(catalog: Catalog):
    connections = ConnectionManager(catalog, FernetCredentialStore(generate_key()))
    with CrawlService(catalog, CrawlEngine(catalog, connections), max_workers=2) as crawl_service:
        yield crawl_service
    connections.shutdown()


def _blocking_engine(catalog: Catalog, started: threading.Event) -> Mock:
    """Engine double that stays IN_PROGRESS until its token is cancelled."""

    def run(job_id, token, extract_exif):
        job = catalog.get_job(job_id)
        job.status = CrawlStatus.IN_PROGRESS
        catalog.save_job(job)
        started.set()
        deadline = time.monotonic() + 5
        while not token.cancelled and time.monotonic() < deadline:
            time.sleep(0.01)
        job.status = CrawlStatus.CANCELLED if token.cancelled else CrawlStatus.COMPLETED
        catalog.save_job(job)
        return job

    engine = Mock()
    engine.run.side_effect = run
    return engine


class TestCrawlService:
    """Tests for CrawlService."""

    def test_start_returns_pending_job(self, service, backend):
        job = service.start_crawl(backend.id, root_path="  ")

        assert job.id is not None
        assert job.status == CrawlStatus.PENDING
        assert job.root_path == ""

    def test_wait_for_completion(self, service, catalog, backend):
        job = service.start_crawl(backend.id)

        finished = service.wait(job.id, timeout=10)

        assert finished.status == CrawlStatus.COMPLETED
        assert finished.files_added == 2
        assert catalog.count_not_deleted(backend.id) == 2

    def test_unknown_backend(self, service):
        with pytest.raises(BackendNotFoundError):
            service.start_crawl(99)

    def test_list_jobs(self, service, backend):
        first = service.start_crawl(backend.id)
        service.wait(first.id, timeout=10)
        second = service.start_crawl(backend.id, incremental=True)
        service.wait(second.id, timeout=10)

        jobs = service.list_jobs(backend.id)

        assert [job.id for job in jobs] == [second.id, first.id]
        assert jobs[0].incremental

    def test_cancel_terminal_job_is_noop(self, service, backend):
        job = service.start_crawl(backend.id)
        service.wait(job.id, timeout=10)

        result = service.request_cancel(job.id)

        assert result.status == CrawlStatus.COMPLETED
        assert service.get_job(job.id).status == CrawlStatus.COMPLETED

    def test_cancel_running_job(self, catalog, backend):
        started = threading.Event()
        service = CrawlService(catalog, _blocking_engine(catalog, started), max_workers=1)
        job = service.start_crawl(backend.id)
        assert started.wait(5)

        returned = service.request_cancel(job.id)
        finished = service.wait(job.id, timeout=5)
        service.shutdown()

        assert returned.status == CrawlStatus.IN_PROGRESS
        assert finished.status == CrawlStatus.CANCELLED

    def test_cancel_pending_job(self, catalog, backend):
        started = threading.Event()
        engine = _blocking_engine(catalog, started)
        service = CrawlService(catalog, engine, max_workers=1)
        running = service.start_crawl(backend.id)
        assert started.wait(5)
        queued = service.start_crawl(backend.id)

        cancelled = service.request_cancel(queued.id)

        assert cancelled.status == CrawlStatus.CANCELLED
        assert cancelled.ended_at_unix is not None
        assert service.get_job(queued.id).status == CrawlStatus.CANCELLED

        service.request_cancel(running.id)
        service.shutdown()
        queued_token = engine.run.call_args_list[1].args[1]
        assert queued_token.cancelled

    def test_cancel_leaves_claimed_job_to_its_token(self, catalog, backend):
        service = CrawlService(catalog, Mock(), max_workers=1)
        job = catalog.create_job(CrawlJob(id=None, backend_id=backend.id))
        snapshots = iter([catalog.get_job(job.id)])
        catalog.transition_job(job.id, CrawlStatus.PENDING, CrawlStatus.IN_PROGRESS, started_at_unix=time.time())
        real_get_job = catalog.get_job

        with patch.object(catalog, "get_job", side_effect=lambda job_id: next(snapshots, None) or real_get_job(job_id)):
            returned = service.request_cancel(job.id)
        service.shutdown()

        assert returned.status == CrawlStatus.IN_PROGRESS
        stored = catalog.get_job(job.id)
        assert stored.status == CrawlStatus.IN_PROGRESS
        assert stored.ended_at_unix is None

    def test_wait_timeout(self, catalog, backend):
        started = threading.Event()
        service = CrawlService(catalog, _blocking_engine(catalog, started), max_workers=1)
        job = service.start_crawl(backend.id)
        assert started.wait(5)

        with pytest.raises(concurrent.futures.TimeoutError):
            service.wait(job.id, timeout=0.05)

        service.shutdown(cancel_running=True)
        assert service.get_job(job.id).status == CrawlStatus.CANCELLED

    def test_clear_history_keeps_running_jobs(self, service, catalog, backend):
        done = service.start_crawl(backend.id)
        service.wait(done.id, timeout=10)
        running = catalog.create_job(CrawlJob(id=None, backend_id=backend.id, status=CrawlStatus.IN_PROGRESS))

        deleted = service.clear_history(backend.id)

        assert deleted == 1
        assert [job.id for job in service.list_jobs(backend.id)] == [running.id]

    def test_worker_exception_is_logged(self, catalog, backend, caplog):
        engine = Mock()
        engine.run.side_effect = RuntimeError("boom")
        service = CrawlService(catalog, engine, max_workers=1)

        with caplog.at_level(logging.ERROR, logger="photocatalog.crawler.service"):
            job = service.start_crawl(backend.id)
            service.shutdown()

        assert f"Crawl job {job.id} worker raised: boom" in caplog.text


class TestCheckpointer:
    """Tests for periodic job saves."""

    def test_saves_every_interval(self):
        save = Mock()
        checkpointer = Checkpointer(save, interval=3)
        job = CrawlJob(id=1, backend_id=1)

        for _ in range(7):
            checkpointer.visit(job)

        assert save.call_count == 2

    def test_interval_at_least_one(self):
        save = Mock()
        checkpointer = Checkpointer(save, interval=0)
        checkpointer.visit(CrawlJob(id=1, backend_id=1))
        assert save.call_count == 1


class TestFormatDuration:
    """Tests for format_duration function."""

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(None, "-"), (5.9, "5s"), (65, "1m 5s"), (3725, "1h 2m 5s")],
    )
    def test_format(self, seconds, expected):
        assert format_duration(seconds) == expected


class TestHashStream:
    """Tests for hash_stream function."""

    def test_matches_sha256(self):
        data = b"x" * 20000
        assert hash_stream(io.BytesIO(data), chunk_size=4096) == hashlib.sha256(data).hexdigest()

    def test_empty_stream(self):
        assert hash_stream(io.BytesIO(b"")) == hashlib.sha256(b"").hexdigest()

    def test_read_error(self):
        stream = Mock()
        stream.read.side_effect = OSError("reset")
        with pytest.raises(HashComputationError):
            hash_stream(stream)


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_cancel(self):
        token = CancellationToken()
        assert not token.cancelled
        token.cancel()
        token.cancel()
        assert token.cancelled
