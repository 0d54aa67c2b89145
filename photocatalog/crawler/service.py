"""Job control: start, cancel, poll and wait for crawl jobs."""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Self

from photocatalog.crawler.cancellation import CancellationToken
from photocatalog.crawler.engine import CrawlEngine
from photocatalog.database import Catalog, CrawlJob, CrawlStatus

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = [status for status in CrawlStatus if status.is_terminal]


class CrawlService:
    """Runs crawl jobs on a bounded worker pool.

    ``start_crawl`` returns as soon as the job is persisted; callers poll
    ``get_job`` or block on ``wait``.
    """

    def __init__(self, catalog: Catalog, engine: CrawlEngine, max_workers: int = 4):
        self.catalog = catalog
        self.engine = engine
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="crawl")
        self._tokens: dict[int, CancellationToken] = {}
        self._futures: dict[int, Future] = {}
        self._lock = threading.Lock()

    def start_crawl(
        self,
        backend_id: int,
        root_path: str | None = "",
        incremental: bool = False,
        extract_exif: bool = False,
    ) -> CrawlJob:
        backend = self.catalog.get_backend(backend_id)
        job = self.catalog.create_job(
            CrawlJob(
                id=None,
                backend_id=backend_id,
                root_path=(root_path or "").strip(),
                status=CrawlStatus.PENDING,
                incremental=incremental,
            )
        )
        token = CancellationToken()
        with self._lock:
            self._tokens[job.id] = token
            future = self._executor.submit(self.engine.run, job.id, token, extract_exif)
            self._futures[job.id] = future
        future.add_done_callback(lambda f, job_id=job.id: self._job_finished(job_id, f))

        logger.info(
            "Queued %s crawl job %s for backend %s",
            "incremental" if incremental else "full",
            job.id,
            backend.name,
        )
        return job

    def request_cancel(self, job_id: int) -> CrawlJob:
        """Ask a job to stop. Terminal jobs are returned unchanged."""
        job = self.catalog.get_job(job_id)
        if job.status.is_terminal:
            return job

        with self._lock:
            token = self._tokens.get(job_id)
        if token is not None:
            token.cancel()

        # A job the engine has not claimed yet is cancelled in place; one it
        # has claimed stops on its token.
        if job.status == CrawlStatus.PENDING:
            self.catalog.transition_job(job_id, CrawlStatus.PENDING, CrawlStatus.CANCELLED, ended_at_unix=time.time())

        logger.info("Cancellation requested for crawl job %s", job_id)
        return self.catalog.get_job(job_id)

    def get_job(self, job_id: int) -> CrawlJob:
        return self.catalog.get_job(job_id)

    def list_jobs(self, backend_id: int | None = None) -> list[CrawlJob]:
        return self.catalog.list_jobs(backend_id)

    def wait(self, job_id: int, timeout: float | None = None) -> CrawlJob:
        """Block until the job's worker returns, then return the stored job.

        Raises concurrent.futures.TimeoutError if the job is still running.
        """
        with self._lock:
            future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.catalog.get_job(job_id)

    def clear_history(self, backend_id: int) -> int:
        """Delete finished jobs of a backend. Running jobs are kept."""
        self.catalog.get_backend(backend_id)
        deleted = self.catalog.delete_jobs_for_backend(backend_id, TERMINAL_STATUSES)
        logger.info("Cleared %d crawl job(s) of backend %s", deleted, backend_id)
        return deleted

    def shutdown(self, wait: bool = True, cancel_running: bool = False) -> None:
        if cancel_running:
            with self._lock:
                tokens = list(self._tokens.values())
            for token in tokens:
                token.cancel()
        self._executor.shutdown(wait=wait)

    def _job_finished(self, job_id: int, future: Future) -> None:
        with self._lock:
            self._tokens.pop(job_id, None)
            self._futures.pop(job_id, None)
        if not future.cancelled() and future.exception() is not None:
            logger.error("Crawl job %s worker raised: %s", job_id, future.exception())

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown(wait=True, cancel_running=exc_type is not None)
