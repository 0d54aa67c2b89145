"""Cooperative cancellation for crawl jobs."""

import threading


class CancellationToken:
    """Set once by a cancel request, polled by the crawl loop."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()
