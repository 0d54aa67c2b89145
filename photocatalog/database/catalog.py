"""Catalog repository: backends, images, image metadata and crawl jobs."""

import json
import logging
import sqlite3
import threading
from typing import Iterable

from .connection import Database
from .models import Backend, CatalogImage, ConnectionStatus, CrawlJob, CrawlStatus, ProtocolType

logger = logging.getLogger(__name__)

EXIF_SOURCE = "exif"


class BackendNotFoundError(LookupError):
    """Raised when a backend id is unknown."""


class JobNotFoundError(LookupError):
    """Raised when a crawl job id is unknown."""


class Catalog:
    """Typed access to the catalog tables.

    Every method takes the catalog lock, so one instance can be shared by
    crawl workers, the connection health check and the CLI.
    """

    def __init__(self, db: Database):
        self.db = db
        self._lock = threading.RLock()

    # Backends

    def add_backend(self, backend: Backend) -> Backend:
        with self._lock:
            cursor = self.db.conn.execute(
                """
                INSERT INTO backends (
                    name, protocol, connection_url, root_path, encrypted_credentials,
                    status, last_connected_at_unix, last_connected_at,
                    last_crawled_at_unix, last_crawled_at, image_count, auto_connect,
                    created_at_unix, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    backend.name,
                    backend.protocol.value,
                    backend.connection_url,
                    backend.root_path,
                    backend.encrypted_credentials,
                    backend.status.value,
                    backend.last_connected_at_unix,
                    _to_int(backend.last_connected_at_unix),
                    backend.last_crawled_at_unix,
                    _to_int(backend.last_crawled_at_unix),
                    backend.image_count,
                    backend.auto_connect,
                    backend.created_at_unix,
                    int(backend.created_at_unix),
                ),
            )
            self.db.conn.commit()
            assert cursor.lastrowid is not None
            backend.id = cursor.lastrowid
            return backend

    def save_backend(self, backend: Backend) -> Backend:
        if backend.id is None:
            return self.add_backend(backend)
        with self._lock:
            self.db.conn.execute(
                """
                UPDATE backends
                SET name = ?, protocol = ?, connection_url = ?, root_path = ?,
                    encrypted_credentials = ?, status = ?,
                    last_connected_at_unix = ?, last_connected_at = ?,
                    last_crawled_at_unix = ?, last_crawled_at = ?,
                    image_count = ?, auto_connect = ?
                WHERE id = ?
                """,
                (
                    backend.name,
                    backend.protocol.value,
                    backend.connection_url,
                    backend.root_path,
                    backend.encrypted_credentials,
                    backend.status.value,
                    backend.last_connected_at_unix,
                    _to_int(backend.last_connected_at_unix),
                    backend.last_crawled_at_unix,
                    _to_int(backend.last_crawled_at_unix),
                    backend.image_count,
                    backend.auto_connect,
                    backend.id,
                ),
            )
            self.db.conn.commit()
            return backend

    def set_backend_status(
        self,
        backend_id: int,
        status: ConnectionStatus,
        last_connected_at_unix: float | None = None,
    ) -> None:
        """Update the connection status, leaving every other column alone."""
        with self._lock:
            if last_connected_at_unix is None:
                self.db.conn.execute(
                    "UPDATE backends SET status = ? WHERE id = ?",
                    (status.value, backend_id),
                )
            else:
                self.db.conn.execute(
                    """
                    UPDATE backends
                    SET status = ?, last_connected_at_unix = ?, last_connected_at = ?
                    WHERE id = ?
                    """,
                    (status.value, last_connected_at_unix, int(last_connected_at_unix), backend_id),
                )
            self.db.conn.commit()

    def update_crawl_summary(
        self,
        backend_id: int,
        image_count: int,
        last_crawled_at_unix: float | None = None,
    ) -> None:
        with self._lock:
            if last_crawled_at_unix is None:
                self.db.conn.execute(
                    "UPDATE backends SET image_count = ? WHERE id = ?",
                    (image_count, backend_id),
                )
            else:
                self.db.conn.execute(
                    """
                    UPDATE backends
                    SET image_count = ?, last_crawled_at_unix = ?, last_crawled_at = ?
                    WHERE id = ?
                    """,
                    (image_count, last_crawled_at_unix, int(last_crawled_at_unix), backend_id),
                )
            self.db.conn.commit()

    def find_backend(self, backend_id: int) -> Backend | None:
        with self._lock:
            row = self.db.conn.execute("SELECT * FROM backends WHERE id = ?", (backend_id,)).fetchone()
        return _row_to_backend(row) if row else None

    def get_backend(self, backend_id: int) -> Backend:
        backend = self.find_backend(backend_id)
        if backend is None:
            raise BackendNotFoundError(f"Backend not found: {backend_id}")
        return backend

    def list_backends(self) -> list[Backend]:
        with self._lock:
            rows = self.db.conn.execute("SELECT * FROM backends ORDER BY name").fetchall()
        return [_row_to_backend(row) for row in rows]

    # Images

    def find_by_backend_and_path(self, backend_id: int, file_path: str) -> CatalogImage | None:
        with self._lock:
            row = self.db.conn.execute(
                "SELECT * FROM images WHERE backend_id = ? AND file_path = ?",
                (backend_id, file_path),
            ).fetchone()
        return _row_to_image(row) if row else None

    def find_all_by_backend(self, backend_id: int) -> list[CatalogImage]:
        with self._lock:
            rows = self.db.conn.execute(
                "SELECT * FROM images WHERE backend_id = ? ORDER BY file_path",
                (backend_id,),
            ).fetchall()
        return [_row_to_image(row) for row in rows]

    def upsert_image(self, image: CatalogImage) -> CatalogImage:
        """Insert a new record or update the one for (backend_id, file_path)."""
        values = (
            image.file_name,
            image.file_size,
            image.file_hash,
            image.mime_type,
            image.width,
            image.height,
            image.captured_at_unix,
            _to_int(image.captured_at_unix),
            image.deleted,
            image.created_at_unix,
            image.modified_at_unix,
            _to_int(image.modified_at_unix),
            image.indexed_at_unix,
            int(image.indexed_at_unix),
        )
        with self._lock:
            self.db.conn.execute(
                """
                INSERT INTO images (
                    file_name, file_size, file_hash, mime_type, width, height,
                    captured_at_unix, captured_at, deleted, created_at_unix,
                    modified_at_unix, modified_at, indexed_at_unix, indexed_at,
                    backend_id, file_path
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(backend_id, file_path) DO UPDATE SET
                    file_name = excluded.file_name,
                    file_size = excluded.file_size,
                    file_hash = excluded.file_hash,
                    mime_type = excluded.mime_type,
                    width = excluded.width,
                    height = excluded.height,
                    captured_at_unix = excluded.captured_at_unix,
                    captured_at = excluded.captured_at,
                    deleted = excluded.deleted,
                    modified_at_unix = excluded.modified_at_unix,
                    modified_at = excluded.modified_at,
                    indexed_at_unix = excluded.indexed_at_unix,
                    indexed_at = excluded.indexed_at
                """,
                (*values, image.backend_id, image.file_path),
            )
            self.db.conn.commit()
            row = self.db.conn.execute(
                "SELECT id FROM images WHERE backend_id = ? AND file_path = ?",
                (image.backend_id, image.file_path),
            ).fetchone()
        image.id = row["id"]
        return image

    def mark_deleted(self, image_ids: Iterable[int]) -> int:
        ids = [(image_id,) for image_id in image_ids]
        if not ids:
            return 0
        with self._lock:
            self.db.conn.executemany("UPDATE images SET deleted = TRUE WHERE id = ?", ids)
            self.db.conn.commit()
        return len(ids)

    def count_not_deleted(self, backend_id: int) -> int:
        with self._lock:
            row = self.db.conn.execute(
                "SELECT COUNT(*) AS n FROM images WHERE backend_id = ? AND deleted = FALSE",
                (backend_id,),
            ).fetchone()
        return row["n"]

    # Image metadata

    def replace_metadata(self, image_id: int, metadata: dict[str, str], source: str = EXIF_SOURCE) -> None:
        """Replace all metadata of one source for an image. Blank values are dropped."""
        rows = [(image_id, source, key, value) for key, value in metadata.items() if value and value.strip()]
        with self._lock:
            self.db.conn.execute(
                "DELETE FROM image_metadata WHERE image_id = ? AND source = ?",
                (image_id, source),
            )
            if rows:
                self.db.conn.executemany(
                    "INSERT INTO image_metadata (image_id, source, key, value) VALUES (?, ?, ?, ?)",
                    rows,
                )
            self.db.conn.commit()

    def get_metadata(self, image_id: int, source: str = EXIF_SOURCE) -> dict[str, str]:
        with self._lock:
            rows = self.db.conn.execute(
                "SELECT key, value FROM image_metadata WHERE image_id = ? AND source = ? ORDER BY key",
                (image_id, source),
            ).fetchall()
        return {row["key"]: row["value"] for row in rows}

    def has_metadata(self, image_id: int, source: str = EXIF_SOURCE) -> bool:
        with self._lock:
            row = self.db.conn.execute(
                "SELECT 1 FROM image_metadata WHERE image_id = ? AND source = ? LIMIT 1",
                (image_id, source),
            ).fetchone()
        return row is not None

    # Crawl jobs

    def create_job(self, job: CrawlJob) -> CrawlJob:
        with self._lock:
            cursor = self.db.conn.execute(
                """
                INSERT INTO crawl_jobs (backend_id, root_path, status, incremental, errors_json)
                VALUES (?, ?, ?, ?, ?)
                """,
                (job.backend_id, job.root_path, job.status.value, job.incremental, _dump_errors(job)),
            )
            self.db.conn.commit()
            assert cursor.lastrowid is not None
            job.id = cursor.lastrowid
        if job.started_at_unix is not None or job.files_processed:
            self.save_job(job)
        return job

    def save_job(self, job: CrawlJob) -> CrawlJob:
        if job.id is None:
            return self.create_job(job)
        with self._lock:
            self.db.conn.execute(
                """
                UPDATE crawl_jobs
                SET status = ?, started_at_unix = ?, started_at = ?,
                    ended_at_unix = ?, ended_at = ?,
                    files_processed = ?, files_added = ?, files_updated = ?, files_deleted = ?,
                    current_path = ?, errors_json = ?
                WHERE id = ?
                """,
                (
                    job.status.value,
                    job.started_at_unix,
                    _to_int(job.started_at_unix),
                    job.ended_at_unix,
                    _to_int(job.ended_at_unix),
                    job.files_processed,
                    job.files_added,
                    job.files_updated,
                    job.files_deleted,
                    job.current_path,
                    _dump_errors(job),
                    job.id,
                ),
            )
            self.db.conn.commit()
        return job

    def transition_job(
        self,
        job_id: int,
        expected: CrawlStatus,
        status: CrawlStatus,
        started_at_unix: float | None = None,
        ended_at_unix: float | None = None,
    ) -> bool:
        """Move a job to ``status`` only if it is still in ``expected``.

        Returns False, writing nothing, when another writer got there first.
        """
        with self._lock:
            cursor = self.db.conn.execute(
                """
                UPDATE crawl_jobs
                SET status = ?,
                    started_at_unix = COALESCE(?, started_at_unix), started_at = COALESCE(?, started_at),
                    ended_at_unix = COALESCE(?, ended_at_unix), ended_at = COALESCE(?, ended_at)
                WHERE id = ? AND status = ?
                """,
                (
                    status.value,
                    started_at_unix,
                    _to_int(started_at_unix),
                    ended_at_unix,
                    _to_int(ended_at_unix),
                    job_id,
                    expected.value,
                ),
            )
            self.db.conn.commit()
        return cursor.rowcount == 1

    def find_job(self, job_id: int) -> CrawlJob | None:
        with self._lock:
            row = self.db.conn.execute("SELECT * FROM crawl_jobs WHERE id = ?", (job_id,)).fetchone()
        return _row_to_job(row) if row else None

    def get_job(self, job_id: int) -> CrawlJob:
        job = self.find_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Crawl job not found: {job_id}")
        return job

    def list_jobs(self, backend_id: int | None = None) -> list[CrawlJob]:
        with self._lock:
            if backend_id is None:
                rows = self.db.conn.execute("SELECT * FROM crawl_jobs ORDER BY id DESC").fetchall()
            else:
                rows = self.db.conn.execute(
                    "SELECT * FROM crawl_jobs WHERE backend_id = ? ORDER BY id DESC",
                    (backend_id,),
                ).fetchall()
        return [_row_to_job(row) for row in rows]

    def delete_jobs_for_backend(self, backend_id: int, statuses: Iterable[CrawlStatus]) -> int:
        values = [status.value for status in statuses]
        if not values:
            return 0
        placeholders = ", ".join("?" for _ in values)
        with self._lock:
            cursor = self.db.conn.execute(
                f"DELETE FROM crawl_jobs WHERE backend_id = ? AND status IN ({placeholders})",
                (backend_id, *values),
            )
            self.db.conn.commit()
        return cursor.rowcount


def _to_int(value: float | None) -> int | None:
    return int(value) if value is not None else None


def _dump_errors(job: CrawlJob) -> str | None:
    if not job.errors:
        return None
    try:
        return json.dumps(job.errors)
    except (TypeError, ValueError) as e:
        logger.warning("Could not serialize errors of crawl job %s: %s", job.id, e)
        return None


def _load_errors(raw: str | None, job_id: int) -> list[str]:
    if not raw:
        return []
    try:
        errors = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Could not parse errors of crawl job %s: %s", job_id, e)
        return []
    if not isinstance(errors, list):
        logger.warning("Unexpected errors payload on crawl job %s", job_id)
        return []
    return [str(error) for error in errors]


def _row_to_backend(row: sqlite3.Row) -> Backend:
    return Backend(
        id=row["id"],
        name=row["name"],
        protocol=ProtocolType(row["protocol"]),
        connection_url=row["connection_url"],
        root_path=row["root_path"],
        encrypted_credentials=row["encrypted_credentials"],
        status=ConnectionStatus(row["status"]),
        last_connected_at_unix=row["last_connected_at_unix"],
        last_crawled_at_unix=row["last_crawled_at_unix"],
        image_count=row["image_count"],
        auto_connect=bool(row["auto_connect"]),
        created_at_unix=row["created_at_unix"],
    )


def _row_to_image(row: sqlite3.Row) -> CatalogImage:
    return CatalogImage(
        id=row["id"],
        backend_id=row["backend_id"],
        file_name=row["file_name"],
        file_path=row["file_path"],
        file_size=row["file_size"],
        file_hash=row["file_hash"],
        mime_type=row["mime_type"],
        width=row["width"],
        height=row["height"],
        captured_at_unix=row["captured_at_unix"],
        deleted=bool(row["deleted"]),
        created_at_unix=row["created_at_unix"],
        modified_at_unix=row["modified_at_unix"],
        indexed_at_unix=row["indexed_at_unix"],
    )


def _row_to_job(row: sqlite3.Row) -> CrawlJob:
    return CrawlJob(
        id=row["id"],
        backend_id=row["backend_id"],
        root_path=row["root_path"],
        status=CrawlStatus(row["status"]),
        started_at_unix=row["started_at_unix"],
        ended_at_unix=row["ended_at_unix"],
        files_processed=row["files_processed"],
        files_added=row["files_added"],
        files_updated=row["files_updated"],
        files_deleted=row["files_deleted"],
        current_path=row["current_path"],
        incremental=bool(row["incremental"]),
        errors=_load_errors(row["errors_json"], row["id"]),
    )
