"""Storage providers for local disks and network shares."""

from .base import StorageProvider
from .errors import (
    NotConnectedError,
    StorageAccessError,
    StorageConnectionError,
    StorageError,
    StorageNotFoundError,
)
from .factory import create_provider, sanitize_connection_url
from .ftp import FtpStorageProvider
from .local import LocalStorageProvider
from .models import ConnectionTestResult, DirectoryTreeNode, FileEntry
from .sftp import SftpStorageProvider
from .smb import SmbStorageProvider

__all__ = [
    "StorageProvider",
    "LocalStorageProvider",
    "SmbStorageProvider",
    "SftpStorageProvider",
    "FtpStorageProvider",
    "create_provider",
    "sanitize_connection_url",
    "FileEntry",
    "DirectoryTreeNode",
    "ConnectionTestResult",
    "StorageError",
    "StorageConnectionError",
    "StorageAccessError",
    "StorageNotFoundError",
    "NotConnectedError",
]
