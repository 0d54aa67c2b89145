"""Protocol-agnostic storage provider interface."""

import logging
import time
from abc import ABC, abstractmethod
from typing import BinaryIO, Self

from photocatalog.filesystem.errors import NotConnectedError, StorageError
from photocatalog.filesystem.ignore import is_ignored_name
from photocatalog.filesystem.mime import is_image_entry
from photocatalog.filesystem.models import ConnectionTestResult, DirectoryTreeNode, FileEntry
from photocatalog.filesystem.paths import file_name_of, normalize_relative

logger = logging.getLogger(__name__)


class StorageProvider(ABC):
    """Uniform file access over one storage backend.

    All paths accepted and returned are relative to the backend root and use
    ``/`` as separator. Implementations are not thread-safe; callers use one
    provider from one operation at a time.
    """

    @property
    @abstractmethod
    def label(self) -> str:
        """Human readable location, safe to log (no secrets)."""

    @abstractmethod
    def connect(self) -> None:
        """Open the session. Raises StorageConnectionError."""

    @abstractmethod
    def disconnect(self) -> None:
        """Release the session. Never raises, safe to repeat."""

    @abstractmethod
    def is_connected(self) -> bool:
        """Cheap liveness check without a network round-trip."""

    @abstractmethod
    def list_directory(self, path: str) -> list[FileEntry]:
        """List the direct children of a directory.

        Raises StorageAccessError or StorageNotFoundError so callers can tell
        a forbidden subtree from a missing one.
        """

    @abstractmethod
    def read_stream(self, path: str) -> BinaryIO:
        """Open a file for streaming reads. The caller closes the stream."""

    @abstractmethod
    def stat_file(self, path: str) -> FileEntry:
        """Describe a single file or directory."""

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Return whether the path exists. Never raises."""

    @abstractmethod
    def test_connection(self) -> ConnectionTestResult:
        """Probe the backend. Never raises."""

    def skip_in_tree(self, name: str) -> bool:
        """Directories the tree builder never descends into."""
        return False

    def build_directory_tree(self, path: str = "") -> DirectoryTreeNode:
        """Build an image-count tree rooted at ``path``.

        A failure to list the starting directory is raised; failures below it
        are logged and the affected subtree is left out.
        """
        self._require_connected()
        relative = normalize_relative(path)
        root = DirectoryTreeNode(
            name=file_name_of(relative) if relative else self.label,
            path=relative or "/",
        )
        self._fill_tree(root, self.list_directory(relative))
        return root

    def _fill_tree(self, node: DirectoryTreeNode, entries: list[FileEntry]) -> None:
        for entry in entries:
            if is_ignored_name(entry.name):
                continue
            if entry.is_directory:
                if self.skip_in_tree(entry.name):
                    logger.debug("Skipping protected directory: %s", entry.path)
                    continue
                try:
                    children = self.list_directory(entry.path)
                except StorageError as e:
                    logger.warning("Omitting unreadable directory %s on %s: %s", entry.path, self.label, e)
                    continue
                child = DirectoryTreeNode(name=entry.name, path=entry.path)
                self._fill_tree(child, children)
                node.add_child(child)
            elif is_image_entry(entry):
                node.add_image()

    def _require_connected(self) -> None:
        if not self.is_connected():
            raise NotConnectedError(f"Not connected to {self.label}")

    def __enter__(self) -> Self:
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()


def elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
