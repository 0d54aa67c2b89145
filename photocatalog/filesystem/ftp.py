"""FTP storage provider backed by ftplib."""

import ftplib
import io
import logging
import time
from datetime import datetime, timezone
from typing import BinaryIO

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

DEFAULT_FTP_PORT = 21

_FTP_ERRORS = (ftplib.Error, OSError, EOFError)

_MONTHS = {
    name: index
    for index, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"], start=1
    )
}


class _RetrieveStream(io.RawIOBase):
    """Data connection of a RETR command.

    Closing the stream closes the data socket and reads the transfer's
    final reply so the control connection can be reused.
    """

    def __init__(self, ftp: ftplib.FTP, conn) -> None:
        super().__init__()
        self._ftp = ftp
        self._conn = conn
        self._reader = conn.makefile("rb")

    def readable(self) -> bool:
        return True

    def readinto(self, buffer) -> int:
        return self._reader.readinto(buffer)

    def close(self) -> None:
        if self.closed:
            return
        try:
            self._reader.close()
            self._conn.close()
            self._ftp.voidresp()
        except _FTP_ERRORS as e:
            logger.warning("FTP transfer did not complete cleanly: %s", e)
        finally:
            super().close()


class FtpStorageProvider(StorageProvider):
    """Reads a directory tree from an FTP server in passive binary mode."""

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_FTP_PORT,
        username: str = "anonymous",
        password: str = "",
        root_path: str = "/",
        timeout: float = 30.0,
        passive: bool = True,
        encoding: str = "utf-8",
    ) -> None:
        self.host = host
        self.port = port
        self.username = username or "anonymous"
        self.password = password
        self.root_path = root_path or "/"
        self.timeout = timeout
        self.passive = passive
        self.encoding = encoding
        self._ftp: ftplib.FTP | None = None
        self._root = self.root_path
        self._use_mlsd = True

    @property
    def label(self) -> str:
        return f"ftp://{self.host}:{self.port}/{self.root_path.lstrip('/')}"

    def connect(self) -> None:
        self.disconnect()
        ftp = ftplib.FTP(timeout=self.timeout, encoding=self.encoding)
        try:
            ftp.connect(self.host, self.port)
            ftp.login(self.username, self.password)
            ftp.set_pasv(self.passive)
            ftp.voidcmd("TYPE I")
            ftp.cwd(self.root_path)
            root = ftp.pwd()
        except ftplib.error_perm as e:
            _close_quietly(ftp)
            code = _reply_code(e)
            if code == "530":
                raise StorageConnectionError(f"FTP authentication failed for {self.label}: {e}") from e
            if code == "550":
                raise StorageConnectionError(f"FTP root path does not exist: {self.root_path}") from e
            raise StorageConnectionError(f"FTP protocol error for {self.label}: {e}") from e
        except _FTP_ERRORS as e:
            _close_quietly(ftp)
            raise StorageConnectionError(f"Unable to reach FTP server {self.host}:{self.port}: {e}") from e

        self._ftp = ftp
        self._root = root
        self._use_mlsd = True
        logger.info("Connected to FTP server: %s:%s", self.host, self.port)

    def disconnect(self) -> None:
        ftp = self._ftp
        self._ftp = None
        if ftp is None:
            return
        try:
            ftp.quit()
        except _FTP_ERRORS as e:
            logger.debug("FTP QUIT failed for %s: %s", self.label, e)
            _close_quietly(ftp)
        logger.info("Disconnected from FTP server: %s:%s", self.host, self.port)

    def is_connected(self) -> bool:
        return self._ftp is not None and self._ftp.sock is not None

    def list_directory(self, path: str) -> list[FileEntry]:
        self._require_connected()
        relative = normalize_relative(path)
        remote = self._remote(relative)

        if self._use_mlsd:
            try:
                return self._list_mlsd(remote, relative)
            except ftplib.error_perm as e:
                if _reply_code(e) not in ("500", "501", "502"):
                    raise _translate_ftp_error(e, relative) from e
                logger.info("FTP server %s does not support MLSD, using LIST", self.host)
                self._use_mlsd = False
            except _FTP_ERRORS as e:
                raise _translate_ftp_error(e, relative) from e

        try:
            return self._list_plain(remote, relative)
        except _FTP_ERRORS as e:
            raise _translate_ftp_error(e, relative) from e

    def read_stream(self, path: str) -> BinaryIO:
        self._require_connected()
        relative = normalize_relative(path)
        try:
            self._ftp.voidcmd("TYPE I")
            conn = self._ftp.transfercmd(f"RETR {self._remote(relative)}")
        except _FTP_ERRORS as e:
            raise _translate_ftp_error(e, relative) from e
        return _RetrieveStream(self._ftp, conn)

    def stat_file(self, path: str) -> FileEntry:
        self._require_connected()
        relative = normalize_relative(path)
        if not relative:
            return FileEntry(name=file_name_of(self._root) or "/", path="", size=0, is_directory=True)

        parent, _, name = relative.rpartition("/")
        for entry in self.list_directory(parent):
            if entry.name == name:
                return entry
        raise StorageNotFoundError(f"Path not found: {relative}")

    def exists(self, path: str) -> bool:
        if not self.is_connected():
            return False
        try:
            self.stat_file(path)
            return True
        except StorageError:
            return False

    def test_connection(self) -> ConnectionTestResult:
        start = time.monotonic()
        opened_here = not self.is_connected()
        try:
            if opened_here:
                self.connect()
            self._ftp.voidcmd("NOOP")
            return ConnectionTestResult.ok(
                f"Successfully connected to FTP server: {self.host}:{self.port}", elapsed_ms(start)
            )
        except (StorageError, *_FTP_ERRORS) as e:
            return ConnectionTestResult.failed(f"FTP connection test failed: {e}", elapsed_ms(start))
        finally:
            if opened_here:
                self.disconnect()

    def _remote(self, relative: str) -> str:
        return join_remote(self._root, relative)

    def _list_mlsd(self, remote: str, relative: str) -> list[FileEntry]:
        entries: list[FileEntry] = []
        for name, facts in self._ftp.mlsd(remote, facts=["type", "size", "modify"]):
            kind = facts.get("type", "").lower()
            if name in (".", "..") or kind in ("cdir", "pdir"):
                continue
            is_directory = kind == "dir"
            entries.append(
                FileEntry(
                    name=name,
                    path=join_relative(relative, name),
                    size=0 if is_directory else int(facts.get("size", 0) or 0),
                    is_directory=is_directory,
                    modified_at_unix=parse_mlsd_time(facts.get("modify")),
                    mime_type=None if is_directory else guess_image_type(name),
                )
            )
        return sorted(entries, key=lambda e: e.name)

    def _list_plain(self, remote: str, relative: str) -> list[FileEntry]:
        lines: list[str] = []
        self._ftp.retrlines(f"LIST {remote}", lines.append)
        entries: list[FileEntry] = []
        for line in lines:
            entry = parse_list_line(line, relative)
            if entry is None:
                logger.debug("Unparsed FTP LIST line: %s", line)
                continue
            entries.append(entry)
        return sorted(entries, key=lambda e: e.name)


def parse_mlsd_time(value: str | None) -> float | None:
    """Parse an MLSD ``modify`` fact (UTC ``YYYYMMDDHHMMSS[.sss]``)."""
    if not value:
        return None
    try:
        parsed = datetime.strptime(value.split(".")[0], "%Y%m%d%H%M%S")
    except ValueError:
        return None
    return parsed.replace(tzinfo=timezone.utc).timestamp()


def parse_list_line(line: str, parent: str, now: datetime | None = None) -> FileEntry | None:
    """Parse one Unix ``ls -l`` style LIST line."""
    parts = line.split(None, 8)
    if len(parts) < 9 or parts[0][0] not in "d-l":
        return None

    permissions, size_text, month, day, time_or_year, name = (
        parts[0],
        parts[4],
        parts[5],
        parts[6],
        parts[7],
        parts[8],
    )
    if permissions.startswith("l"):
        name = name.split(" -> ", 1)[0]
    if name in (".", ".."):
        return None

    is_directory = permissions.startswith("d")
    try:
        size = int(size_text)
    except ValueError:
        size = 0

    return FileEntry(
        name=name,
        path=join_relative(parent, name),
        size=0 if is_directory else size,
        is_directory=is_directory,
        modified_at_unix=_parse_list_time(month, day, time_or_year, now),
        mime_type=None if is_directory else guess_image_type(name),
    )


def _parse_list_time(month: str, day: str, time_or_year: str, now: datetime | None) -> float | None:
    month_number = _MONTHS.get(month[:3].lower())
    if month_number is None or not day.isdigit():
        return None

    now = now or datetime.now(timezone.utc)
    try:
        if ":" in time_or_year:
            hour, minute = (int(p) for p in time_or_year.split(":", 1))
            stamp = datetime(now.year, month_number, int(day), hour, minute, tzinfo=timezone.utc)
            # Recent entries omit the year; a date ahead of now belongs to last year
            if stamp > now:
                stamp = stamp.replace(year=now.year - 1)
        else:
            stamp = datetime(int(time_or_year), month_number, int(day), tzinfo=timezone.utc)
    except ValueError:
        return None
    return stamp.timestamp()


def _reply_code(error: Exception) -> str:
    return str(error)[:3]


def _translate_ftp_error(error: Exception, relative: str) -> StorageError:
    display = relative or "/"
    code = _reply_code(error) if isinstance(error, ftplib.Error) else ""
    text = str(error).lower()
    if code in ("530", "532", "553") or (code == "550" and ("permission" in text or "denied" in text)):
        return StorageAccessError(f"Permission denied: {display}")
    if code == "550":
        return StorageNotFoundError(f"Path not found: {display}")
    return StorageError(f"FTP error on {display}: {error}")


def _close_quietly(ftp: ftplib.FTP) -> None:
    try:
        ftp.close()
    except OSError:
        pass
