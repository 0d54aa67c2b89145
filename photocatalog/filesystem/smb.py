"""SMB/CIFS share storage provider backed by smbprotocol's smbclient."""

import errno
import logging
import stat
import time
from typing import BinaryIO
from urllib.parse import unquote, urlsplit

import smbclient
from smbprotocol.exceptions import (
    AccessDenied,
    LogonFailure,
    SMBAuthenticationError,
    SMBException,
    SMBOSError,
)

from photocatalog.filesystem.base import StorageProvider, elapsed_ms
from photocatalog.filesystem.errors import (
    StorageAccessError,
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
)
from photocatalog.filesystem.mime import guess_image_type
from photocatalog.filesystem.models import ConnectionTestResult, FileEntry
from photocatalog.filesystem.paths import file_name_of, join_relative, normalize_relative, split_segments

logger = logging.getLogger(__name__)

DEFAULT_SMB_PORT = 445

PROTECTED_DIRECTORIES = {
    "$RECYCLE.BIN",
    "SYSTEM VOLUME INFORMATION",
    "RECYCLER",
    "CONFIG.MSI",
    "RECOVERY",
    "$WINDOWS.~BT",
    "$WINDOWS.~WS",
    "MSOCACHE",
    "PERFLOGS",
    "WINDOWSIMAGEBACKUP",
    "FOUND.000",
}


def parse_share_url(connection_url: str, root_path: str | None = None) -> tuple[str, int | None, str]:
    """Split a share URL into (server, port, UNC base path).

    Accepts ``smb://host[:port]/share[/dir]`` and ``\\\\host\\share[\\dir]``.
    ``root_path`` is appended unless the URL already ends with it or it
    already starts with the URL's share path (compared case-insensitively,
    as SMB paths are).
    """
    url = connection_url.strip()
    port: int | None = None

    if url.lower().startswith("smb://"):
        parts = urlsplit(url)
        server = parts.hostname or ""
        port = parts.port
        segments = split_segments(unquote(parts.path))
    else:
        segments = split_segments(url)
        server = segments.pop(0) if segments else ""

    if not server or not segments:
        raise ValueError(f"SMB URL must name a server and a share: {connection_url}")

    root_segments = split_segments(root_path or "")
    base_lower = [s.lower() for s in segments]
    root_lower = [s.lower() for s in root_segments]

    if not root_lower or base_lower[-len(root_lower) :] == root_lower:
        combined = segments
    elif root_lower[: len(base_lower)] == base_lower:
        combined = root_segments
    else:
        combined = segments + root_segments

    return server, port, "\\\\" + server + "\\" + "\\".join(combined)


class SmbStorageProvider(StorageProvider):
    """Reads a directory tree from an SMB 2/3 share."""

    def __init__(
        self,
        connection_url: str,
        username: str = "",
        password: str = "",
        domain: str = "",
        root_path: str | None = None,
        port: int | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.server, url_port, self.base_path = parse_share_url(connection_url, root_path)
        self.port = port or url_port or DEFAULT_SMB_PORT
        self.username = username
        self.password = password
        self.domain = domain or ""
        self.timeout = timeout
        self._connection_cache: dict = {}
        self._session = None
        self._connected = False

    @property
    def label(self) -> str:
        return f"smb:{self.base_path}"

    def connect(self) -> None:
        self.disconnect()
        try:
            self._session = smbclient.register_session(
                self.server,
                username=self._qualified_username(),
                password=self.password or None,
                port=self.port,
                connection_timeout=self.timeout,
                connection_cache=self._connection_cache,
            )
            root_stat = smbclient.stat(self.base_path, connection_cache=self._connection_cache)
        except (LogonFailure, SMBAuthenticationError) as e:
            self.disconnect()
            raise StorageConnectionError(f"SMB authentication failed for {self.label}: {e}") from e
        except AccessDenied as e:
            self.disconnect()
            raise StorageConnectionError(f"SMB access denied for {self.label}: {e}") from e
        except SMBOSError as e:
            self.disconnect()
            if e.errno in (errno.ENOENT, errno.ENOTDIR):
                raise StorageConnectionError(f"SMB root path does not exist: {self.base_path}") from e
            raise StorageConnectionError(f"SMB protocol error for {self.label}: {e}") from e
        except (SMBException, OSError, ValueError) as e:
            self.disconnect()
            raise StorageConnectionError(f"SMB protocol error for {self.label}: {e}") from e

        if not stat.S_ISDIR(root_stat.st_mode):
            self.disconnect()
            raise StorageConnectionError(f"SMB root path is not a directory: {self.base_path}")

        self._connected = True
        logger.info("Connected to SMB share: %s", self.label)

    def disconnect(self) -> None:
        self._connected = False
        if self._session is None and not self._connection_cache:
            return
        try:
            smbclient.reset_connection_cache(fail_on_error=False, connection_cache=self._connection_cache)
        except (SMBException, OSError) as e:
            logger.warning("Error closing SMB session for %s: %s", self.label, e)
        finally:
            self._connection_cache = {}
            if self._session is not None:
                logger.info("Disconnected from SMB share: %s", self.label)
            self._session = None

    def is_connected(self) -> bool:
        return self._connected and self._session is not None

    def skip_in_tree(self, name: str) -> bool:
        return name.strip().upper() in PROTECTED_DIRECTORIES

    def list_directory(self, path: str) -> list[FileEntry]:
        self._require_connected()
        relative = normalize_relative(path)
        try:
            dir_entries = list(smbclient.scandir(self._remote(relative), connection_cache=self._connection_cache))
        except (SMBException, OSError) as e:
            raise _translate_smb_error(e, relative) from e

        entries: list[FileEntry] = []
        for dir_entry in sorted(dir_entries, key=lambda e: e.name):
            if dir_entry.name in (".", ".."):
                continue
            try:
                stat_result = dir_entry.stat()
                is_directory = dir_entry.is_dir()
            except (SMBException, OSError) as e:
                logger.warning("Error reading SMB entry %s/%s: %s", relative, dir_entry.name, e)
                continue
            entries.append(_build_entry(dir_entry.name, join_relative(relative, dir_entry.name), stat_result, is_directory))
        return entries

    def read_stream(self, path: str) -> BinaryIO:
        self._require_connected()
        relative = normalize_relative(path)
        try:
            return smbclient.open_file(self._remote(relative), mode="rb", connection_cache=self._connection_cache)
        except (SMBException, OSError) as e:
            raise _translate_smb_error(e, relative) from e

    def stat_file(self, path: str) -> FileEntry:
        self._require_connected()
        relative = normalize_relative(path)
        try:
            stat_result = smbclient.stat(self._remote(relative), connection_cache=self._connection_cache)
        except (SMBException, OSError) as e:
            raise _translate_smb_error(e, relative) from e
        name = file_name_of(relative) or self.base_path.rsplit("\\", 1)[-1]
        return _build_entry(name, relative, stat_result, stat.S_ISDIR(stat_result.st_mode))

    def exists(self, path: str) -> bool:
        if not self.is_connected():
            return False
        try:
            smbclient.stat(self._remote(normalize_relative(path)), connection_cache=self._connection_cache)
            return True
        except (SMBException, OSError):
            return False

    def test_connection(self) -> ConnectionTestResult:
        start = time.monotonic()
        opened_here = not self.is_connected()
        try:
            if opened_here:
                self.connect()
            smbclient.stat(self.base_path, connection_cache=self._connection_cache)
            return ConnectionTestResult.ok(f"Successfully connected to SMB share: {self.base_path}", elapsed_ms(start))
        except (StorageError, SMBException, OSError) as e:
            return ConnectionTestResult.failed(f"SMB connection test failed: {e}", elapsed_ms(start))
        finally:
            if opened_here:
                self.disconnect()

    def _qualified_username(self) -> str | None:
        if not self.username:
            return None
        if self.domain and "\\" not in self.username and "@" not in self.username:
            return f"{self.domain}\\{self.username}"
        return self.username

    def _remote(self, relative: str) -> str:
        if not relative:
            return self.base_path
        return self.base_path + "\\" + relative.replace("/", "\\")


def _build_entry(name: str, relative: str, stat_result, is_directory: bool) -> FileEntry:
    return FileEntry(
        name=name,
        path=relative,
        size=0 if is_directory else int(stat_result.st_size),
        is_directory=is_directory,
        modified_at_unix=float(stat_result.st_mtime) if stat_result.st_mtime else None,
        mime_type=None if is_directory else guess_image_type(name),
    )


def _translate_smb_error(error: Exception, relative: str) -> StorageError:
    display = relative or "/"
    if isinstance(error, (AccessDenied, PermissionError)):
        return StorageAccessError(f"Access denied: {display}")
    if isinstance(error, OSError) and error.errno in (errno.EACCES, errno.EPERM):
        return StorageAccessError(f"Access denied: {display}")
    if isinstance(error, OSError) and error.errno in (errno.ENOENT, errno.ENOTDIR):
        return StorageNotFoundError(f"Path not found: {display}")
    return StorageError(f"SMB error on {display}: {error}")
