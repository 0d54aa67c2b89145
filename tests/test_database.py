"""Tests for database module."""

# pylint: disable=redefined-outer-name

import sqlite3
from pathlib import Path

import pytest

from photocatalog.database import (
    Backend,
    BackendNotFoundError,
    Catalog,
    CatalogImage,
    ConnectionStatus,
    CrawlJob,
    CrawlStatus,
    Database,
    JobNotFoundError,
    ProtocolType,
)


@pytest.fixture
def catalog(tmp_path: Path):
    with Database(tmp_path / "catalog.db") as db:
        yield Catalog(db)


@pytest.fixture
def backend(catalog: Catalog) -> Backend:
    return catalog.add_backend(Backend(id=None, name="nas", protocol=ProtocolType.LOCAL, connection_url="/photos"))


def _image(backend_id: int, path: str, **kwargs) -> CatalogImage:
    defaults = {
        "file_size": 10,
        "file_hash": "a" * 64,
        "mime_type": "image/jpeg",
        "modified_at_unix": 1_700_000_000.5,
        "indexed_at_unix": 1_700_000_100.0,
    }
    defaults.update(kwargs)
    return CatalogImage(id=None, backend_id=backend_id, file_name=path.rsplit("/", 1)[-1], file_path=path, **defaults)


class TestDatabase:
    """Tests for Database class."""

    def test_creates_database_file(self, tmp_path: Path) -> None:
        db_path = tmp_path / "test.db"
        with Database(db_path):
            assert db_path.exists()

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        db_path = tmp_path / "subdir" / "nested" / "test.db"
        with Database(db_path):
            assert db_path.exists()

    def test_schema_creates_tables(self, tmp_path: Path):
        with Database(tmp_path / "test.db") as db:
            tables = db.conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
            table_names = {row["name"] for row in tables}

            assert {"backends", "images", "image_metadata", "crawl_jobs"} <= table_names

    def test_foreign_keys_enabled(self, tmp_path: Path):
        with Database(tmp_path / "test.db") as db:
            result = db.conn.execute("PRAGMA foreign_keys").fetchone()
            assert result[0] == 1

    def test_reopen_keeps_data(self, tmp_path: Path):
        db_path = tmp_path / "test.db"
        with Database(db_path) as db:
            Catalog(db).add_backend(Backend(id=None, name="a", protocol=ProtocolType.LOCAL, connection_url="/a"))
        with Database(db_path) as db:
            assert [b.name for b in Catalog(db).list_backends()] == ["a"]


class TestCatalogBackends:
    """Tests for backend persistence."""

    def test_add_and_get(self, catalog: Catalog, backend: Backend):
        loaded = catalog.get_backend(backend.id)

        assert loaded.name == "nas"
        assert loaded.protocol == ProtocolType.LOCAL
        assert loaded.status == ConnectionStatus.DISCONNECTED
        assert loaded.last_crawled_at_unix is None

    def test_names_are_unique(self, catalog: Catalog, backend: Backend):
        with pytest.raises(sqlite3.IntegrityError):
            catalog.add_backend(Backend(id=None, name="nas", protocol=ProtocolType.FTP, connection_url="ftp://x"))

    def test_get_unknown(self, catalog: Catalog):
        assert catalog.find_backend(99) is None
        with pytest.raises(BackendNotFoundError):
            catalog.get_backend(99)

    def test_set_status_keeps_other_columns(self, catalog: Catalog, backend: Backend):
        catalog.update_crawl_summary(backend.id, 7, 1_700_000_000.0)
        catalog.set_backend_status(backend.id, ConnectionStatus.CONNECTED, 1_700_000_500.0)

        loaded = catalog.get_backend(backend.id)
        assert loaded.status == ConnectionStatus.CONNECTED
        assert loaded.last_connected_at_unix == 1_700_000_500.0
        assert loaded.image_count == 7
        assert loaded.last_crawled_at_unix == 1_700_000_000.0

    def test_crawl_summary_without_timestamp(self, catalog: Catalog, backend: Backend):
        catalog.update_crawl_summary(backend.id, 3)

        loaded = catalog.get_backend(backend.id)
        assert loaded.image_count == 3
        assert loaded.last_crawled_at_unix is None

    def test_list_sorted_by_name(self, catalog: Catalog, backend: Backend):
        catalog.add_backend(Backend(id=None, name="attic", protocol=ProtocolType.SMB, connection_url="smb://h/s"))
        assert [b.name for b in catalog.list_backends()] == ["attic", "nas"]


class TestCatalogImages:
    """Tests for image records."""

    def test_upsert_inserts_then_updates(self, catalog: Catalog, backend: Backend):
        first = catalog.upsert_image(_image(backend.id, "a/b.jpg"))
        second = catalog.upsert_image(_image(backend.id, "a/b.jpg", file_size=20, file_hash="b" * 64))

        assert first.id == second.id
        stored = catalog.find_by_backend_and_path(backend.id, "a/b.jpg")
        assert stored.file_size == 20
        assert stored.file_hash == "b" * 64
        assert stored.modified_at_unix == 1_700_000_000.5
        assert len(catalog.find_all_by_backend(backend.id)) == 1

    def test_same_path_on_other_backend(self, catalog: Catalog, backend: Backend):
        other = catalog.add_backend(Backend(id=None, name="other", protocol=ProtocolType.LOCAL, connection_url="/o"))
        a = catalog.upsert_image(_image(backend.id, "x.jpg"))
        b = catalog.upsert_image(_image(other.id, "x.jpg"))
        assert a.id != b.id

    def test_mark_deleted_and_count(self, catalog: Catalog, backend: Backend):
        a = catalog.upsert_image(_image(backend.id, "a.jpg"))
        catalog.upsert_image(_image(backend.id, "b.jpg"))

        assert catalog.mark_deleted([a.id]) == 1
        assert catalog.mark_deleted([]) == 0
        assert catalog.count_not_deleted(backend.id) == 1
        assert catalog.find_by_backend_and_path(backend.id, "a.jpg").deleted

    def test_deleting_backend_cascades(self, catalog: Catalog, backend: Backend):
        catalog.upsert_image(_image(backend.id, "a.jpg"))
        catalog.db.conn.execute("DELETE FROM backends WHERE id = ?", (backend.id,))
        assert catalog.find_all_by_backend(backend.id) == []


class TestCatalogMetadata:
    """Tests for image metadata."""

    def test_replace_drops_blank_values(self, catalog: Catalog, backend: Backend):
        image = catalog.upsert_image(_image(backend.id, "a.jpg"))

        catalog.replace_metadata(image.id, {"camera.make": "Canon", "camera.model": "  "})

        assert catalog.get_metadata(image.id) == {"camera.make": "Canon"}
        assert catalog.has_metadata(image.id)

    def test_replace_overwrites_previous(self, catalog: Catalog, backend: Backend):
        image = catalog.upsert_image(_image(backend.id, "a.jpg"))
        catalog.replace_metadata(image.id, {"camera.make": "Canon", "gps.latitude": "1.000000"})

        catalog.replace_metadata(image.id, {"camera.make": "Nikon"})

        assert catalog.get_metadata(image.id) == {"camera.make": "Nikon"}

    def test_sources_are_separate(self, catalog: Catalog, backend: Backend):
        image = catalog.upsert_image(_image(backend.id, "a.jpg"))
        catalog.replace_metadata(image.id, {"k": "exif"})
        catalog.replace_metadata(image.id, {"k": "manual"}, source="manual")

        assert catalog.get_metadata(image.id) == {"k": "exif"}
        assert catalog.get_metadata(image.id, source="manual") == {"k": "manual"}
        assert not catalog.has_metadata(image.id, source="xmp")


class TestCatalogJobs:
    """Tests for crawl job persistence."""

    def test_create_and_save(self, catalog: Catalog, backend: Backend):
        job = catalog.create_job(CrawlJob(id=None, backend_id=backend.id, root_path="2024", incremental=True))

        job.status = CrawlStatus.COMPLETED
        job.started_at_unix = 100.0
        job.ended_at_unix = 160.5
        job.files_added = 4
        job.errors.append("Failed to list path 'x': denied")
        catalog.save_job(job)

        loaded = catalog.get_job(job.id)
        assert loaded.status == CrawlStatus.COMPLETED
        assert loaded.incremental
        assert loaded.root_path == "2024"
        assert loaded.files_added == 4
        assert loaded.errors == ["Failed to list path 'x': denied"]
        assert loaded.duration_seconds == 60.5

    def test_transition_from_expected_status(self, catalog: Catalog, backend: Backend):
        job = catalog.create_job(CrawlJob(id=None, backend_id=backend.id))

        assert catalog.transition_job(job.id, CrawlStatus.PENDING, CrawlStatus.IN_PROGRESS, started_at_unix=100.0)

        loaded = catalog.get_job(job.id)
        assert loaded.status == CrawlStatus.IN_PROGRESS
        assert loaded.started_at_unix == 100.0
        assert loaded.ended_at_unix is None

    def test_transition_refused_after_status_moved(self, catalog: Catalog, backend: Backend):
        job = catalog.create_job(CrawlJob(id=None, backend_id=backend.id))
        catalog.transition_job(job.id, CrawlStatus.PENDING, CrawlStatus.IN_PROGRESS, started_at_unix=100.0)

        moved = catalog.transition_job(job.id, CrawlStatus.PENDING, CrawlStatus.CANCELLED, ended_at_unix=200.0)

        assert not moved
        loaded = catalog.get_job(job.id)
        assert loaded.status == CrawlStatus.IN_PROGRESS
        assert loaded.started_at_unix == 100.0
        assert loaded.ended_at_unix is None

    def test_unknown_job(self, catalog: Catalog):
        assert catalog.find_job(5) is None
        with pytest.raises(JobNotFoundError):
            catalog.get_job(5)

    def test_corrupt_errors_payload(self, catalog: Catalog, backend: Backend):
        job = catalog.create_job(CrawlJob(id=None, backend_id=backend.id))
        catalog.db.conn.execute("UPDATE crawl_jobs SET errors_json = 'not json' WHERE id = ?", (job.id,))

        assert catalog.get_job(job.id).errors == []

    def test_list_newest_first(self, catalog: Catalog, backend: Backend):
        other = catalog.add_backend(Backend(id=None, name="other", protocol=ProtocolType.LOCAL, connection_url="/o"))
        first = catalog.create_job(CrawlJob(id=None, backend_id=backend.id))
        second = catalog.create_job(CrawlJob(id=None, backend_id=backend.id))
        catalog.create_job(CrawlJob(id=None, backend_id=other.id))

        assert [j.id for j in catalog.list_jobs(backend.id)] == [second.id, first.id]
        assert len(catalog.list_jobs()) == 3

    def test_delete_by_status(self, catalog: Catalog, backend: Backend):
        done = catalog.create_job(CrawlJob(id=None, backend_id=backend.id, status=CrawlStatus.COMPLETED))
        running = catalog.create_job(CrawlJob(id=None, backend_id=backend.id, status=CrawlStatus.IN_PROGRESS))

        deleted = catalog.delete_jobs_for_backend(backend.id, [CrawlStatus.COMPLETED, CrawlStatus.FAILED])

        assert deleted == 1
        assert catalog.find_job(done.id) is None
        assert catalog.find_job(running.id) is not None
