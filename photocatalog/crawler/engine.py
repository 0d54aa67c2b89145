"""Crawl engine: walks a backend and reconciles the catalog with what it finds."""

import logging
import time
from dataclasses import dataclass, field

from photocatalog.connections import ConnectionManager
from photocatalog.crawler.cancellation import CancellationToken
from photocatalog.crawler.hashing import DEFAULT_CHUNK_SIZE, HashComputationError, hash_stream
from photocatalog.crawler.progress import Checkpointer
from photocatalog.database import Catalog, CatalogImage, CrawlJob, CrawlStatus
from photocatalog.extractor import ExifResult, MetadataExtractor
from photocatalog.filesystem import FileEntry, StorageError, StorageProvider
from photocatalog.filesystem.ignore import is_ignored_name, is_ignored_path
from photocatalog.filesystem.mime import guess_content_type, is_image_entry
from photocatalog.filesystem.paths import join_relative, normalize_relative

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


@dataclass
class _CrawlState:
    """Everything one run of a job needs while walking the tree."""

    job: CrawlJob
    provider: StorageProvider
    token: CancellationToken
    start_path: str
    checkpointer: Checkpointer
    extract_exif: bool
    last_crawled_at_unix: float | None
    visited: set[str] | None
    unreadable: list[str] = field(default_factory=list)

    @property
    def backend_id(self) -> int:
        return self.job.backend_id

    @property
    def incremental(self) -> bool:
        return self.visited is None


class CrawlEngine:
    """Runs crawl jobs to a terminal status.

    A job goes PENDING -> IN_PROGRESS -> COMPLETED, CANCELLED or FAILED and
    is never left IN_PROGRESS. Work committed before a cancel or failure is
    kept.
    """

    def __init__(
        self,
        catalog: Catalog,
        connections: ConnectionManager,
        extractor: MetadataExtractor | None = None,
        save_interval: int = 5,
        hash_chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.catalog = catalog
        self.connections = connections
        self.extractor = extractor
        self.save_interval = save_interval
        self.hash_chunk_size = hash_chunk_size

    def run(self, job_id: int, token: CancellationToken, extract_exif: bool = False) -> CrawlJob:
        job = self.catalog.get_job(job_id)
        started_at = job.started_at_unix or time.time()
        if job.status != CrawlStatus.PENDING or not self.catalog.transition_job(
            job_id, CrawlStatus.PENDING, CrawlStatus.IN_PROGRESS, started_at_unix=started_at
        ):
            job = self.catalog.get_job(job_id)
            logger.info("Crawl job %s is %s, not running it", job_id, job.status.value)
            return job
        job.status = CrawlStatus.IN_PROGRESS
        job.started_at_unix = started_at

        if extract_exif and self.extractor is None:
            logger.warning("EXIF extraction requested for job %s but no extractor is available", job_id)
            extract_exif = False

        try:
            backend = self.catalog.get_backend(job.backend_id)
            provider = self.connections.get_provider(job.backend_id)
            state = _CrawlState(
                job=job,
                provider=provider,
                token=token,
                start_path=normalize_root(job.root_path, backend.root_path),
                checkpointer=Checkpointer(self.catalog.save_job, self.save_interval),
                extract_exif=extract_exif,
                last_crawled_at_unix=backend.last_crawled_at_unix,
                visited=None if job.incremental else set(),
            )
            logger.info(
                "Starting %s crawl job %s of backend %s at /%s",
                "incremental" if job.incremental else "full",
                job.id,
                backend.name,
                state.start_path,
            )

            self._crawl_directory(state, state.start_path)

            # last_crawled is the job start: files changed mid-walk stay newer than it.
            crawled_at = None
            if token.cancelled:
                job.status = CrawlStatus.CANCELLED
                job.ended_at_unix = job.ended_at_unix or time.time()
            else:
                if state.visited is not None:
                    self._mark_deleted_images(state)
                crawled_at = job.started_at_unix
                job.status = CrawlStatus.COMPLETED
                job.ended_at_unix = time.time()

            image_count = self.catalog.count_not_deleted(job.backend_id)
            self.catalog.update_crawl_summary(job.backend_id, image_count, crawled_at)
            self.catalog.save_job(job)
            logger.info(
                "Crawl job %s %s: %d processed, %d added, %d updated, %d deleted, %d error(s)",
                job.id,
                job.status.value,
                job.files_processed,
                job.files_added,
                job.files_updated,
                job.files_deleted,
                len(job.errors),
            )
        except Exception as e:
            logger.exception("Crawl job %s failed", job.id)
            job.status = CrawlStatus.FAILED
            job.ended_at_unix = time.time()
            job.errors.append(str(e) or type(e).__name__)
            self.catalog.save_job(job)

        return job

    def _crawl_directory(self, state: _CrawlState, relative: str) -> None:
        if state.token.cancelled or is_ignored_path(relative):
            return

        job = state.job
        job.current_path = relative or "/"
        state.checkpointer.visit(job)

        try:
            entries = state.provider.list_directory(relative)
        except StorageError as e:
            target = relative or "/"
            message = f"Failed to list path '{target}': {e}"
            if relative == state.start_path:
                raise StorageError(message) from e
            logger.warning("Skipping unreadable path '%s' during crawl job %s: %s", target, job.id, e)
            job.errors.append(message)
            state.unreadable.append(relative)
            return

        for entry in entries:
            if state.token.cancelled:
                return
            if not entry.name or is_ignored_name(entry.name):
                continue

            child = join_relative(relative, entry.name)
            if entry.is_directory:
                self._crawl_directory(state, child)
            elif is_image_entry(entry):
                self._crawl_file(state, entry, child)

    def _crawl_file(self, state: _CrawlState, entry: FileEntry, path: str) -> None:
        job = state.job
        if state.visited is not None:
            state.visited.add(path)

        if (
            state.incremental
            and state.last_crawled_at_unix is not None
            and entry.modified_at_unix is not None
            and entry.modified_at_unix <= state.last_crawled_at_unix
            and self.catalog.find_by_backend_and_path(state.backend_id, path) is not None
        ):
            return

        try:
            self._upsert_image(state, entry, path)
        except (StorageError, HashComputationError) as e:
            logger.warning("Failed to index '%s' during crawl job %s: %s", path, job.id, e)
            job.errors.append(f"Failed to index '{path}': {e}")
            return

        job.files_processed += 1
        state.checkpointer.visit(job)

    def _upsert_image(self, state: _CrawlState, entry: FileEntry, path: str) -> None:
        job = state.job
        existing = self.catalog.find_by_backend_and_path(state.backend_id, path)

        if existing is not None:
            changed = False
            if entry.size != existing.file_size:
                existing.file_size = entry.size
                changed = True
            if entry.modified_at_unix is not None and entry.modified_at_unix != existing.modified_at_unix:
                existing.modified_at_unix = entry.modified_at_unix
                changed = True
            if entry.mime_type is not None and entry.mime_type != existing.mime_type:
                existing.mime_type = entry.mime_type
                changed = True

            if changed or existing.deleted:
                if changed:
                    existing.file_hash = self._compute_hash(state.provider, path)
                existing.deleted = False
                existing.indexed_at_unix = time.time()
                self.catalog.upsert_image(existing)
                job.files_updated += 1

            if state.extract_exif and (changed or not self.catalog.has_metadata(existing.id)):
                exif = self._read_exif(state.provider, path)
                if not exif.failed:
                    _apply_exif(existing, exif)
                    self.catalog.upsert_image(existing)
                    self.catalog.replace_metadata(existing.id, exif.metadata)
            return

        now = time.time()
        modified = entry.modified_at_unix if entry.modified_at_unix is not None else now
        image = CatalogImage(
            id=None,
            backend_id=state.backend_id,
            file_name=entry.name,
            file_path=path,
            file_size=entry.size or 0,
            file_hash=self._compute_hash(state.provider, path),
            mime_type=entry.mime_type or guess_content_type(entry.name) or DEFAULT_MIME_TYPE,
            created_at_unix=modified,
            modified_at_unix=modified,
            indexed_at_unix=now,
        )

        exif = self._read_exif(state.provider, path) if state.extract_exif else None
        if exif is not None and not exif.failed:
            _apply_exif(image, exif)
        self.catalog.upsert_image(image)
        if exif is not None and not exif.failed:
            self.catalog.replace_metadata(image.id, exif.metadata)
        job.files_added += 1

    def _compute_hash(self, provider: StorageProvider, path: str) -> str:
        with provider.read_stream(path) as stream:
            return hash_stream(stream, self.hash_chunk_size)

    def _read_exif(self, provider: StorageProvider, path: str) -> ExifResult:
        try:
            with provider.read_stream(path) as stream:
                return self.extractor.extract(stream)
        except (StorageError, OSError) as e:
            logger.warning("Failed to read image for EXIF extraction: %s: %s", path, e)
            return ExifResult.failed_result()

    def _mark_deleted_images(self, state: _CrawlState) -> None:
        """Soft-delete live records under the crawl root that were not seen.

        Records below a directory that could not be listed are left alone.
        """
        stale = [
            image.id
            for image in self.catalog.find_all_by_backend(state.backend_id)
            if not image.deleted
            and _is_within(image.file_path, state.start_path)
            and image.file_path not in state.visited
            and not any(_is_within(image.file_path, skipped) for skipped in state.unreadable)
        ]
        if stale:
            logger.info("Marking %d image(s) deleted for backend %s", len(stale), state.backend_id)
        state.job.files_deleted += self.catalog.mark_deleted(stale)


def normalize_root(requested: str | None, backend_root: str | None) -> str:
    """Make a requested crawl root relative to the backend's configured root."""
    if requested is None:
        return ""
    trimmed = requested.strip()
    if trimmed in ("", "/"):
        return ""

    backend_root = (backend_root or "").strip()
    if backend_root:
        normalized = trimmed.rstrip("/\\")
        normalized_backend = backend_root.rstrip("/\\")
        if normalized == normalized_backend:
            return ""
        if normalized.startswith(normalized_backend + "/") or normalized.startswith(normalized_backend + "\\"):
            trimmed = normalized[len(normalized_backend) :]

    return normalize_relative(trimmed)


def _is_within(path: str, directory: str) -> bool:
    return not directory or path == directory or path.startswith(directory + "/")


def _apply_exif(image: CatalogImage, exif: ExifResult) -> None:
    image.captured_at_unix = exif.captured_at_unix
    image.width = exif.width
    image.height = exif.height
