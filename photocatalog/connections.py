"""Connection lifecycle for storage backends.

The manager owns at most one provider per backend. Connection creation is
serialized per backend, and a background health check evicts providers
whose session has gone away so the next request reconnects.
"""

import logging
import threading
import time
from typing import Callable, Self

from apscheduler.schedulers.background import BackgroundScheduler

from photocatalog.config import Config
from photocatalog.credentials import CredentialStore
from photocatalog.database import Backend, Catalog, ConnectionStatus
from photocatalog.filesystem import (
    ConnectionTestResult,
    DirectoryTreeNode,
    StorageProvider,
    create_provider,
    sanitize_connection_url,
)
from photocatalog.filesystem.paths import normalize_relative

logger = logging.getLogger(__name__)

HEALTH_CHECK_JOB_ID = "connection_health_check"

ProviderFactory = Callable[[Backend, CredentialStore, Config], StorageProvider]


class ConnectionManager:
    """Caches one live StorageProvider per backend id."""

    def __init__(
        self,
        catalog: Catalog,
        credential_store: CredentialStore,
        config: Config | None = None,
        provider_factory: ProviderFactory = create_provider,
    ):
        self.catalog = catalog
        self.credential_store = credential_store
        self.config = config or Config()
        self.provider_factory = provider_factory
        self._providers: dict[int, StorageProvider] = {}
        self._backend_locks: dict[int, threading.Lock] = {}
        self._lock = threading.Lock()
        self._scheduler: BackgroundScheduler | None = None

    def connect(self, backend: Backend) -> StorageProvider:
        """Return the live provider for a backend, connecting if needed.

        On failure the backend is marked ERROR and the error is re-raised.
        """
        if backend.id is None:
            raise ValueError("Backend must be saved before connecting")

        with self._backend_lock(backend.id):
            cached = self._cached(backend.id)
            if cached is not None:
                if cached.is_connected():
                    return cached
                logger.info("Discarding stale connection for backend %s", backend.name)
                self._evict(backend.id, cached)

            logger.info(
                "Connecting to backend %s (%s %s)",
                backend.name,
                backend.protocol.value,
                sanitize_connection_url(backend.connection_url),
            )
            self.catalog.set_backend_status(backend.id, ConnectionStatus.CONNECTING)
            backend.status = ConnectionStatus.CONNECTING

            provider = None
            try:
                provider = self.provider_factory(backend, self.credential_store, self.config)
                provider.connect()
            except Exception as e:
                logger.error("Failed to connect to backend %s: %s", backend.name, e)
                if provider is not None:
                    _disconnect_quietly(provider)
                self.catalog.set_backend_status(backend.id, ConnectionStatus.ERROR)
                backend.status = ConnectionStatus.ERROR
                raise

            with self._lock:
                self._providers[backend.id] = provider
            now = time.time()
            self.catalog.set_backend_status(backend.id, ConnectionStatus.CONNECTED, now)
            backend.status = ConnectionStatus.CONNECTED
            backend.last_connected_at_unix = now
            logger.info("Connected to backend %s", backend.name)
            return provider

    def get_provider(self, backend_id: int) -> StorageProvider:
        cached = self._cached(backend_id)
        if cached is not None and cached.is_connected():
            return cached
        return self.connect(self.catalog.get_backend(backend_id))

    def disconnect(self, backend_id: int) -> None:
        with self._backend_lock(backend_id):
            with self._lock:
                provider = self._providers.pop(backend_id, None)
            if provider is not None:
                _disconnect_quietly(provider)
                logger.info("Disconnected backend %s", backend_id)
            self.catalog.set_backend_status(backend_id, ConnectionStatus.DISCONNECTED)

    def is_connected(self, backend_id: int) -> bool:
        provider = self._cached(backend_id)
        return provider is not None and provider.is_connected()

    def active_connection_count(self) -> int:
        with self._lock:
            return len(self._providers)

    def health_check(self) -> int:
        """Evict cached providers that are no longer connected. Returns the eviction count."""
        with self._lock:
            snapshot = list(self._providers.items())

        evicted = 0
        for backend_id, provider in snapshot:
            if provider.is_connected():
                continue
            with self._backend_lock(backend_id):
                # A concurrent connect may already have replaced it
                if self._cached(backend_id) is not provider:
                    continue
                logger.warning("Connection lost for backend %s, removing from cache", backend_id)
                self._evict(backend_id, provider)
                self.catalog.set_backend_status(backend_id, ConnectionStatus.DISCONNECTED)
                evicted += 1
        return evicted

    def test_connection(self, backend_id: int) -> ConnectionTestResult:
        backend = self.catalog.get_backend(backend_id)
        logger.info("Testing connection to backend %s", backend.name)
        try:
            provider = self.get_provider(backend_id)
            return provider.test_connection()
        except Exception as e:
            logger.error("Connection test failed for backend %s: %s", backend.name, e)
            return ConnectionTestResult.failed(f"Connection test failed: {e}", 0)

    def directory_tree(self, backend_id: int, path: str | None = None) -> DirectoryTreeNode:
        provider = self.get_provider(backend_id)
        relative = normalize_relative(path)
        logger.info("Building directory tree for backend %s at /%s", backend_id, relative)
        return provider.build_directory_tree(relative)

    def start(self) -> None:
        """Schedule the periodic health check."""
        if self._scheduler is not None:
            return
        scheduler = BackgroundScheduler()
        scheduler.add_job(
            self.health_check,
            "interval",
            seconds=self.config.connections.health_check_interval_seconds,
            id=HEALTH_CHECK_JOB_ID,
            replace_existing=True,
            name="Connection health check",
        )
        scheduler.start()
        self._scheduler = scheduler

    def shutdown(self) -> None:
        """Stop the health check and close every connection."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        with self._lock:
            providers = list(self._providers.items())
            self._providers.clear()

        logger.info("Closing %d connection(s)", len(providers))
        for backend_id, provider in providers:
            _disconnect_quietly(provider)
            try:
                self.catalog.set_backend_status(backend_id, ConnectionStatus.DISCONNECTED)
            except Exception as e:
                logger.warning("Could not record disconnect of backend %s: %s", backend_id, e)

    def _backend_lock(self, backend_id: int) -> threading.Lock:
        with self._lock:
            lock = self._backend_locks.get(backend_id)
            if lock is None:
                lock = self._backend_locks[backend_id] = threading.Lock()
            return lock

    def _cached(self, backend_id: int) -> StorageProvider | None:
        with self._lock:
            return self._providers.get(backend_id)

    def _evict(self, backend_id: int, provider: StorageProvider) -> None:
        with self._lock:
            if self._providers.get(backend_id) is provider:
                del self._providers[backend_id]
        _disconnect_quietly(provider)

    def __enter__(self) -> Self:
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.shutdown()


def _disconnect_quietly(provider: StorageProvider) -> None:
    try:
        provider.disconnect()
    except Exception as e:
        logger.warning("Error disconnecting %s: %s", provider.label, e)
