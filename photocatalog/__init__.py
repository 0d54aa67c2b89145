"""Photo Catalog - Index images across local disks and network shares."""

__version__ = "0.1.0"

from photocatalog.connections import ConnectionManager
from photocatalog.crawler import CrawlEngine, CrawlService
from photocatalog.database import Catalog, Database

__all__ = ["Database", "Catalog", "ConnectionManager", "CrawlEngine", "CrawlService"]
