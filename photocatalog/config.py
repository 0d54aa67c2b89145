"""Configuration module for photocatalog."""

import os
from dataclasses import dataclass, field
from pathlib import Path

SECRET_KEY_ENV = "PHOTOCATALOG_SECRET_KEY"


def _get_project_root() -> Path:
    return Path(__file__).parent.parent


@dataclass
class CrawlerConfig:
    save_interval: int = 5
    hash_chunk_size: int = 8192
    max_workers: int = 4
    max_path_length: int = 4096


@dataclass
class ConnectionConfig:
    health_check_interval_seconds: int = 300
    sftp_timeout_seconds: float = 30.0
    ftp_timeout_seconds: float = 30.0
    smb_timeout_seconds: float = 30.0
    sftp_insecure_host_key: bool = True


@dataclass
class CredentialConfig:
    secret_key: str | None = field(default_factory=lambda: os.environ.get(SECRET_KEY_ENV))


@dataclass
class Config:
    database_path: Path = field(default_factory=lambda: _get_project_root() / "data" / "catalog.db")
    crawler: CrawlerConfig = field(default_factory=CrawlerConfig)
    connections: ConnectionConfig = field(default_factory=ConnectionConfig)
    credentials: CredentialConfig = field(default_factory=CredentialConfig)
