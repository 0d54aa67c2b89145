"""SFTP storage provider backed by paramiko."""

import errno
import logging
import stat
import time
from typing import BinaryIO

import paramiko

from photocatalog.filesystem.base import StorageProvider, elapsed_ms
from photocatalog.filesystem.errors import (
    StorageAccessError,
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
)
from photocatalog.filesystem.mime import guess_image_type
from photocatalog.filesystem.models import ConnectionTestResult, FileEntry
from photocatalog.filesystem.paths import file_name_of, join_relative, join_remote, normalize_relative

logger = logging.getLogger(__name__)

DEFAULT_SFTP_PORT = 22


class SftpStorageProvider(StorageProvider):
    """Reads a directory tree over an SSH session's SFTP channel."""

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_SFTP_PORT,
        username: str = "",
        password: str = "",
        root_path: str = "/",
        timeout: float = 30.0,
        insecure_host_key: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.root_path = root_path.rstrip("/") or ("/" if root_path.startswith("/") else ".")
        self.timeout = timeout
        self.insecure_host_key = insecure_host_key
        self._client: paramiko.SSHClient | None = None
        self._sftp: paramiko.SFTPClient | None = None

    @property
    def label(self) -> str:
        return f"sftp://{self.host}:{self.port}/{self.root_path.lstrip('/')}"

    def connect(self) -> None:
        self.disconnect()
        client = paramiko.SSHClient()
        if self.insecure_host_key:
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        else:
            client.load_system_host_keys()
            client.set_missing_host_key_policy(paramiko.RejectPolicy())

        try:
            client.connect(
                self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                timeout=self.timeout,
                banner_timeout=self.timeout,
                auth_timeout=self.timeout,
                look_for_keys=not self.password,
                allow_agent=not self.password,
            )
            sftp = client.open_sftp()
            root_attrs = sftp.stat(self.root_path)
        except paramiko.AuthenticationException as e:
            client.close()
            raise StorageConnectionError(f"SFTP authentication failed for {self.label}: {e}") from e
        except paramiko.SSHException as e:
            client.close()
            raise StorageConnectionError(f"SFTP protocol error for {self.label}: {e}") from e
        except OSError as e:
            client.close()
            if e.errno == errno.ENOENT:
                raise StorageConnectionError(f"SFTP root path does not exist: {self.root_path}") from e
            raise StorageConnectionError(f"Unable to reach SFTP server {self.host}:{self.port}: {e}") from e

        if root_attrs.st_mode is not None and not stat.S_ISDIR(root_attrs.st_mode):
            sftp.close()
            client.close()
            raise StorageConnectionError(f"SFTP root path is not a directory: {self.root_path}")

        self._client = client
        self._sftp = sftp
        logger.info("Connected to SFTP server: %s:%s", self.host, self.port)

    def disconnect(self) -> None:
        sftp, client = self._sftp, self._client
        self._sftp = None
        self._client = None
        if sftp is None and client is None:
            return
        try:
            if sftp is not None:
                sftp.close()
        except (paramiko.SSHException, OSError) as e:
            logger.warning("Error closing SFTP channel for %s: %s", self.label, e)
        finally:
            if client is not None:
                client.close()
        logger.info("Disconnected from SFTP server: %s:%s", self.host, self.port)

    def is_connected(self) -> bool:
        if self._sftp is None or self._client is None:
            return False
        transport = self._client.get_transport()
        return transport is not None and transport.is_active()

    def list_directory(self, path: str) -> list[FileEntry]:
        self._require_connected()
        relative = normalize_relative(path)
        try:
            attrs = self._sftp.listdir_attr(self._remote(relative))
        except (paramiko.SSHException, OSError) as e:
            raise _translate_sftp_error(e, relative) from e

        entries = [
            _build_entry(attr.filename, join_relative(relative, attr.filename), attr)
            for attr in sorted(attrs, key=lambda a: a.filename)
            if attr.filename not in (".", "..")
        ]
        return entries

    def read_stream(self, path: str) -> BinaryIO:
        self._require_connected()
        relative = normalize_relative(path)
        try:
            return self._sftp.open(self._remote(relative), "rb")
        except (paramiko.SSHException, OSError) as e:
            raise _translate_sftp_error(e, relative) from e

    def stat_file(self, path: str) -> FileEntry:
        self._require_connected()
        relative = normalize_relative(path)
        try:
            attrs = self._sftp.stat(self._remote(relative))
        except (paramiko.SSHException, OSError) as e:
            raise _translate_sftp_error(e, relative) from e
        name = file_name_of(relative) or file_name_of(self.root_path) or "/"
        return _build_entry(name, relative, attrs)

    def exists(self, path: str) -> bool:
        if not self.is_connected():
            return False
        try:
            self._sftp.stat(self._remote(normalize_relative(path)))
            return True
        except (paramiko.SSHException, OSError):
            return False

    def test_connection(self) -> ConnectionTestResult:
        start = time.monotonic()
        opened_here = not self.is_connected()
        try:
            if opened_here:
                self.connect()
            self._sftp.stat(self.root_path)
            return ConnectionTestResult.ok(
                f"Successfully connected to SFTP server: {self.host}:{self.port}", elapsed_ms(start)
            )
        except (StorageError, paramiko.SSHException, OSError) as e:
            return ConnectionTestResult.failed(f"SFTP connection test failed: {e}", elapsed_ms(start))
        finally:
            if opened_here:
                self.disconnect()

    def _remote(self, relative: str) -> str:
        return join_remote(self.root_path, relative)


def _build_entry(name: str, relative: str, attrs: paramiko.SFTPAttributes) -> FileEntry:
    is_directory = attrs.st_mode is not None and stat.S_ISDIR(attrs.st_mode)
    # SFTP reports whole epoch seconds
    modified = float(attrs.st_mtime) if attrs.st_mtime is not None else None
    return FileEntry(
        name=name,
        path=relative,
        size=0 if is_directory else int(attrs.st_size or 0),
        is_directory=is_directory,
        modified_at_unix=modified,
        mime_type=None if is_directory else guess_image_type(name),
    )


def _translate_sftp_error(error: Exception, relative: str) -> StorageError:
    display = relative or "/"
    if isinstance(error, OSError):
        if error.errno in (errno.EACCES, errno.EPERM):
            return StorageAccessError(f"Permission denied: {display}")
        if error.errno in (errno.ENOENT, errno.ENOTDIR):
            return StorageNotFoundError(f"Path not found: {display}")
    return StorageError(f"SFTP error on {display}: {error}")
