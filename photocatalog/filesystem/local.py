"""Local disk storage provider."""

import logging
import os
import stat
import time
from pathlib import Path
from typing import BinaryIO

from photocatalog.filesystem.base import StorageProvider, elapsed_ms
from photocatalog.filesystem.errors import (
    StorageAccessError,
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
)
from photocatalog.filesystem.mime import detect_content_type
from photocatalog.filesystem.models import ConnectionTestResult, FileEntry
from photocatalog.filesystem.paths import file_name_of, join_relative, normalize_relative

logger = logging.getLogger(__name__)


class LocalStorageProvider(StorageProvider):
    """Reads a directory tree on a locally mounted filesystem."""

    def __init__(self, root_path: str | Path, max_path_length: int = 4096) -> None:
        self.root = Path(root_path).expanduser()
        self.max_path_length = max_path_length
        self._connected = False

    @property
    def label(self) -> str:
        return f"local:{self.root}"

    def connect(self) -> None:
        if not self.root.exists():
            raise StorageConnectionError(f"Root path does not exist: {self.root}")
        if not self.root.is_dir():
            raise StorageConnectionError(f"Root path is not a directory: {self.root}")
        self.root = self.root.resolve()
        self._connected = True
        logger.info("Connected to local filesystem: %s", self.root)

    def disconnect(self) -> None:
        if self._connected:
            logger.info("Disconnected from local filesystem: %s", self.root)
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected and self.root.is_dir()

    def list_directory(self, path: str) -> list[FileEntry]:
        self._require_connected()
        relative = normalize_relative(path)
        directory = self._resolve(relative)

        try:
            with os.scandir(directory) as it:
                dir_entries = sorted(it, key=lambda e: e.name)
        except OSError as e:
            raise _translate_os_error(e, relative) from e

        entries: list[FileEntry] = []
        for dir_entry in dir_entries:
            entry = self._process_entry(dir_entry, relative)
            if entry is not None:
                entries.append(entry)
        return entries

    def read_stream(self, path: str) -> BinaryIO:
        self._require_connected()
        relative = normalize_relative(path)
        target = self._resolve(relative)
        try:
            return open(target, "rb")
        except OSError as e:
            raise _translate_os_error(e, relative) from e

    def stat_file(self, path: str) -> FileEntry:
        self._require_connected()
        relative = normalize_relative(path)
        target = self._resolve(relative)
        try:
            stat_result = target.stat()
        except OSError as e:
            raise _translate_os_error(e, relative) from e
        return _build_entry(file_name_of(relative) or self.root.name, relative, stat_result, target)

    def exists(self, path: str) -> bool:
        try:
            return self._resolve(normalize_relative(path)).exists()
        except StorageError:
            return False

    def test_connection(self) -> ConnectionTestResult:
        start = time.monotonic()
        if not self.root.exists():
            return ConnectionTestResult.failed(f"Root path does not exist: {self.root}", elapsed_ms(start))
        if not self.root.is_dir():
            return ConnectionTestResult.failed(f"Root path is not a directory: {self.root}", elapsed_ms(start))
        if not os.access(self.root, os.R_OK | os.X_OK):
            return ConnectionTestResult.failed(f"Root path is not readable: {self.root}", elapsed_ms(start))
        return ConnectionTestResult.ok(f"Successfully accessed local path: {self.root}", elapsed_ms(start))

    def _resolve(self, relative: str) -> Path:
        target = Path(os.path.normpath(self.root / relative)) if relative else self.root
        try:
            target.relative_to(self.root)
        except ValueError as e:
            raise StorageAccessError(f"Path escapes backend root: {relative}") from e
        return target

    def _process_entry(self, dir_entry: os.DirEntry, parent: str) -> FileEntry | None:
        try:
            if dir_entry.is_symlink():
                return None

            if len(dir_entry.path) > self.max_path_length:
                logger.warning("Path too long, skipping: %s", dir_entry.path)
                return None

            stat_result = dir_entry.stat(follow_symlinks=False)
            return _build_entry(dir_entry.name, join_relative(parent, dir_entry.name), stat_result, dir_entry.path)

        except PermissionError:
            logger.warning("Permission denied: %s", dir_entry.path)
            return None
        except FileNotFoundError:
            logger.warning("File disappeared during listing: %s", dir_entry.path)
            return None
        except OSError as e:
            logger.error("Error processing %s: %s", dir_entry.path, e)
            return None


def _build_entry(name: str, relative: str, stat_result: os.stat_result, full_path: str | Path) -> FileEntry:
    is_directory = stat.S_ISDIR(stat_result.st_mode)
    return FileEntry(
        name=name,
        path=relative,
        size=0 if is_directory else stat_result.st_size,
        is_directory=is_directory,
        modified_at_unix=stat_result.st_mtime,
        mime_type=None if is_directory else detect_content_type(full_path),
    )


def _translate_os_error(error: OSError, relative: str) -> StorageError:
    display = relative or "/"
    if isinstance(error, PermissionError):
        return StorageAccessError(f"Permission denied: {display}")
    if isinstance(error, (FileNotFoundError, NotADirectoryError)):
        return StorageNotFoundError(f"Path not found: {display}")
    return StorageError(f"Error accessing {display}: {error}")
