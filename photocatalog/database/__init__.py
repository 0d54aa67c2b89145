"""Database module for photocatalog."""

from .catalog import EXIF_SOURCE, BackendNotFoundError, Catalog, JobNotFoundError
from .connection import Database
from .models import Backend, CatalogImage, ConnectionStatus, CrawlJob, CrawlStatus, ProtocolType
from .schema import create_schema

__all__ = [
    "Database",
    "Catalog",
    "create_schema",
    "Backend",
    "CatalogImage",
    "CrawlJob",
    "ProtocolType",
    "ConnectionStatus",
    "CrawlStatus",
    "BackendNotFoundError",
    "JobNotFoundError",
    "EXIF_SOURCE",
]
