"""Periodic persistence and reporting of crawl progress."""

import logging
from typing import Callable

from photocatalog.database import CrawlJob

logger = logging.getLogger(__name__)


class Checkpointer:
    """Saves a running job every ``interval`` visited nodes.

    Directories and processed files both count as visits, so pollers see
    progress without one write per file.
    """

    def __init__(self, save: Callable[[CrawlJob], object], interval: int = 5):
        self.save = save
        self.interval = max(1, interval)
        self.visits = 0

    def visit(self, job: CrawlJob) -> None:
        self.visits += 1
        if self.visits % self.interval == 0:
            self.save(job)
            logger.debug(
                "Crawl job %s: %d processed, %d added, %d updated at %s",
                job.id,
                job.files_processed,
                job.files_added,
                job.files_updated,
                job.current_path or "/",
            )


def format_duration(seconds: float | None) -> str:
    if seconds is None:
        return "-"
    hours, remainder = divmod(int(seconds), 3600)
    minutes, secs = divmod(remainder, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
