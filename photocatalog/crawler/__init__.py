"""Crawling of storage backends into the catalog."""

from .cancellation import CancellationToken
from .engine import CrawlEngine, normalize_root
from .hashing import HashComputationError, hash_stream
from .service import CrawlService

__all__ = [
    "CrawlEngine",
    "CrawlService",
    "CancellationToken",
    "HashComputationError",
    "hash_stream",
    "normalize_root",
]
