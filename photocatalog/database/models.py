"""Data models for the catalog database."""

import time
from dataclasses import dataclass, field
from enum import Enum


class ProtocolType(Enum):
    """Storage protocol a backend is reached with."""

    LOCAL = "local"
    SMB = "smb"
    SFTP = "sftp"
    FTP = "ftp"


class ConnectionStatus(Enum):
    """Connection state of a backend."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class CrawlStatus(Enum):
    """Status of a crawl job."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (CrawlStatus.COMPLETED, CrawlStatus.FAILED, CrawlStatus.CANCELLED)


@dataclass
class Backend:
    """A configured storage location that gets crawled."""

    id: int | None
    name: str
    protocol: ProtocolType
    connection_url: str
    root_path: str = ""
    encrypted_credentials: str = ""
    status: ConnectionStatus = ConnectionStatus.DISCONNECTED
    last_connected_at_unix: float | None = None
    last_crawled_at_unix: float | None = None
    image_count: int = 0
    auto_connect: bool = False
    created_at_unix: float = field(default_factory=time.time)


@dataclass
class CatalogImage:
    """An image file recorded for a backend. (backend_id, file_path) is unique."""

    id: int | None
    backend_id: int
    file_name: str
    file_path: str
    file_size: int
    file_hash: str
    mime_type: str
    width: int | None = None
    height: int | None = None
    captured_at_unix: float | None = None
    deleted: bool = False
    created_at_unix: float | None = None
    modified_at_unix: float | None = None
    indexed_at_unix: float = field(default_factory=time.time)


@dataclass
class CrawlJob:
    """One traversal run over a backend."""

    id: int | None
    backend_id: int
    root_path: str = ""
    status: CrawlStatus = CrawlStatus.PENDING
    started_at_unix: float | None = None
    ended_at_unix: float | None = None
    files_processed: int = 0
    files_added: int = 0
    files_updated: int = 0
    files_deleted: int = 0
    current_path: str | None = None
    incremental: bool = False
    errors: list[str] = field(default_factory=list)

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at_unix is None:
            return None
        end = self.ended_at_unix if self.ended_at_unix is not None else time.time()
        return max(0.0, end - self.started_at_unix)
