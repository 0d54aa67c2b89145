"""Build a storage provider for a configured backend."""

import logging
from typing import Any
from urllib.parse import unquote, urlsplit

from photocatalog.config import Config
from photocatalog.credentials import CredentialStore, parse_credentials
from photocatalog.database.models import Backend, ProtocolType
from photocatalog.filesystem.base import StorageProvider
from photocatalog.filesystem.ftp import DEFAULT_FTP_PORT, FtpStorageProvider
from photocatalog.filesystem.local import LocalStorageProvider
from photocatalog.filesystem.sftp import DEFAULT_SFTP_PORT, SftpStorageProvider
from photocatalog.filesystem.smb import SmbStorageProvider

logger = logging.getLogger(__name__)


def create_provider(
    backend: Backend,
    credential_store: CredentialStore,
    config: Config | None = None,
) -> StorageProvider:
    """Return an unconnected provider for the backend's protocol.

    Stored credentials are decrypted once here and handed to the provider;
    they are not kept anywhere else.
    """
    config = config or Config()
    credentials = parse_credentials(credential_store.decrypt(backend.encrypted_credentials))

    match backend.protocol:
        case ProtocolType.LOCAL:
            return LocalStorageProvider(
                backend.connection_url or backend.root_path,
                max_path_length=config.crawler.max_path_length,
            )
        case ProtocolType.SMB:
            return SmbStorageProvider(
                backend.connection_url,
                username=_text(credentials, "username"),
                password=_text(credentials, "password"),
                domain=_text(credentials, "domain"),
                root_path=backend.root_path,
                port=_port(credentials, backend.connection_url, None),
                timeout=config.connections.smb_timeout_seconds,
            )
        case ProtocolType.SFTP:
            return SftpStorageProvider(
                _host(credentials, backend.connection_url),
                port=_port(credentials, backend.connection_url, DEFAULT_SFTP_PORT),
                username=_text(credentials, "username"),
                password=_text(credentials, "password"),
                root_path=_remote_root(backend),
                timeout=config.connections.sftp_timeout_seconds,
                insecure_host_key=config.connections.sftp_insecure_host_key,
            )
        case ProtocolType.FTP:
            return FtpStorageProvider(
                _host(credentials, backend.connection_url),
                port=_port(credentials, backend.connection_url, DEFAULT_FTP_PORT),
                username=_text(credentials, "username") or "anonymous",
                password=_text(credentials, "password"),
                root_path=_remote_root(backend),
                timeout=config.connections.ftp_timeout_seconds,
            )
        case _:
            raise ValueError(f"Unsupported protocol: {backend.protocol}")


def sanitize_connection_url(url: str) -> str:
    """Mask the password of a URL's user-info part for logging."""
    parts = urlsplit(url)
    if parts.password is None:
        return url
    netloc = parts.netloc.replace(f":{parts.password}@", ":****@", 1)
    return parts._replace(netloc=netloc).geturl()


def _text(credentials: dict[str, Any], key: str) -> str:
    value = credentials.get(key)
    return "" if value is None else str(value)


def _host(credentials: dict[str, Any], connection_url: str) -> str:
    host = _text(credentials, "host")
    if host:
        return host
    return _split_url(connection_url).hostname or "localhost"


def _port(credentials: dict[str, Any], connection_url: str, default: int | None) -> int | None:
    value = credentials.get("port")
    if value not in (None, ""):
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid port in credentials: %r", value)
    try:
        return _split_url(connection_url).port or default
    except ValueError:
        return default


def _remote_root(backend: Backend) -> str:
    if backend.root_path:
        return backend.root_path
    return unquote(_split_url(backend.connection_url).path) or "/"


def _split_url(connection_url: str):
    url = connection_url.strip()
    if "://" not in url:
        # Bare "host[:port]/path" forms
        url = "//" + url
    return urlsplit(url)
