"""Tests for the connection manager."""

# pylint: disable=redefined-outer-name

import threading
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from photocatalog.connections import HEALTH_CHECK_JOB_ID, ConnectionManager
from photocatalog.credentials import FernetCredentialStore, generate_key
from photocatalog.database import Backend, BackendNotFoundError, Catalog, ConnectionStatus, Database, ProtocolType
from photocatalog.filesystem import LocalStorageProvider, StorageConnectionError


class CountingProvider(LocalStorageProvider):
    """Local provider that records connects and can be made to drop its session."""

    def __init__(self, root_path, connect_delay: float = 0.0):
        super().__init__(root_path)
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.connect_delay = connect_delay
        self.dropped = False

    def connect(self) -> None:
        self.connect_calls += 1
        time.sleep(self.connect_delay)
        super().connect()

    def disconnect(self) -> None:
        self.disconnect_calls += 1
        super().disconnect()

    def is_connected(self) -> bool:
        return not self.dropped and super().is_connected()


class RecordingFactory:
    def __init__(self, connect_delay: float = 0.0):
        self.created: list[CountingProvider] = []
        self.connect_delay = connect_delay
        self._lock = threading.Lock()

    def __call__(self, backend, credential_store, config):
        provider = CountingProvider(backend.connection_url, self.connect_delay)
        with self._lock:
            self.created.append(provider)
        return provider


@pytest.fixture
def catalog(tmp_path: Path):
    with Database(tmp_path / "catalog.db") as db:
        yield Catalog(db)


@pytest.fixture
def backend(catalog: Catalog, tmp_path: Path) -> Backend:
    root = tmp_path / "photos"
    root.mkdir()
    return catalog.add_backend(Backend(id=None, name="photos", protocol=ProtocolType.LOCAL, connection_url=str(root)))


@pytest.fixture
def factory() -> RecordingFactory:
    return RecordingFactory()


@pytest.fixture
def manager(catalog: Catalog, factory: RecordingFactory):
    manager = ConnectionManager(catalog, FernetCredentialStore(generate_key()), provider_factory=factory)
    yield manager
    manager.shutdown()


class TestConnect:
    """Tests for ConnectionManager.connect."""

    def test_connect_marks_backend_connected(self, manager, catalog, backend):
        provider = manager.connect(backend)

        assert provider.is_connected()
        stored = catalog.get_backend(backend.id)
        assert stored.status == ConnectionStatus.CONNECTED
        assert stored.last_connected_at_unix is not None
        assert backend.status == ConnectionStatus.CONNECTED

    def test_connect_is_idempotent(self, manager, factory, backend):
        first = manager.connect(backend)
        second = manager.connect(backend)

        assert first is second
        assert len(factory.created) == 1
        assert manager.active_connection_count() == 1

    def test_reconnects_stale_provider(self, manager, factory, backend):
        first = manager.connect(backend)
        first.dropped = True

        second = manager.connect(backend)

        assert second is not first
        assert first.disconnect_calls >= 1
        assert len(factory.created) == 2

    def test_failure_marks_error_and_raises(self, manager, catalog, tmp_path):
        broken = catalog.add_backend(
            Backend(id=None, name="broken", protocol=ProtocolType.LOCAL, connection_url=str(tmp_path / "missing"))
        )

        with pytest.raises(StorageConnectionError):
            manager.connect(broken)

        assert catalog.get_backend(broken.id).status == ConnectionStatus.ERROR
        assert not manager.is_connected(broken.id)
        assert manager.active_connection_count() == 0

    def test_unsaved_backend(self, manager):
        with pytest.raises(ValueError):
            manager.connect(Backend(id=None, name="x", protocol=ProtocolType.LOCAL, connection_url="/"))

    def test_concurrent_connects_share_one_provider(self, catalog, backend):
        factory = RecordingFactory(connect_delay=0.05)
        manager = ConnectionManager(catalog, FernetCredentialStore(generate_key()), provider_factory=factory)
        results: list = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(manager.get_provider(backend.id))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        manager.shutdown()

        assert len(factory.created) == 1
        assert all(result is results[0] for result in results)


class TestLifecycle:
    """Tests for lookup, disconnect, health check and shutdown."""

    def test_get_provider_unknown_backend(self, manager):
        with pytest.raises(BackendNotFoundError):
            manager.get_provider(42)

    def test_disconnect(self, manager, catalog, backend):
        provider = manager.connect(backend)

        manager.disconnect(backend.id)

        assert not provider.is_connected()
        assert not manager.is_connected(backend.id)
        assert catalog.get_backend(backend.id).status == ConnectionStatus.DISCONNECTED

    def test_health_check_evicts_dead_connections(self, manager, catalog, backend):
        provider = manager.connect(backend)
        assert manager.health_check() == 0

        provider.dropped = True

        assert manager.health_check() == 1
        assert manager.active_connection_count() == 0
        assert catalog.get_backend(backend.id).status == ConnectionStatus.DISCONNECTED

    def test_health_check_then_reconnect(self, manager, factory, backend):
        manager.connect(backend).dropped = True
        manager.health_check()

        provider = manager.get_provider(backend.id)

        assert provider.is_connected()
        assert len(factory.created) == 2

    def test_shutdown_closes_everything(self, manager, catalog, backend):
        provider = manager.connect(backend)

        manager.shutdown()

        assert provider.disconnect_calls == 1
        assert manager.active_connection_count() == 0
        assert catalog.get_backend(backend.id).status == ConnectionStatus.DISCONNECTED

    def test_start_schedules_health_check(self, manager):
        with patch("photocatalog.connections.BackgroundScheduler") as scheduler_class:
            manager.start()
            manager.start()

        scheduler = scheduler_class.return_value
        scheduler_class.assert_called_once()
        _, kwargs = scheduler.add_job.call_args
        assert kwargs["id"] == HEALTH_CHECK_JOB_ID
        assert kwargs["seconds"] == 300
        scheduler.start.assert_called_once()

        manager.shutdown()
        scheduler.shutdown.assert_called_once_with(wait=False)


class TestProbes:
    """Tests for test_connection and directory_tree."""

    def test_test_connection_success(self, manager, backend):
        result = manager.test_connection(backend.id)
        assert result.success

    def test_test_connection_failure_is_reported(self, manager, catalog, tmp_path):
        broken = catalog.add_backend(
            Backend(id=None, name="broken", protocol=ProtocolType.LOCAL, connection_url=str(tmp_path / "missing"))
        )

        result = manager.test_connection(broken.id)

        assert not result.success
        assert "does not exist" in result.message

    def test_test_connection_unknown_backend(self, manager):
        with pytest.raises(BackendNotFoundError):
            manager.test_connection(42)

    def test_directory_tree(self, manager, backend):
        root = Path(backend.connection_url)
        (root / "photo.jpg").write_bytes(b"x")
        (root / ".hidden.jpg").write_bytes(b"x")

        tree = manager.directory_tree(backend.id, "/")

        assert tree.image_count == 1
