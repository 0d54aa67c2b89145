"""Errors raised by storage providers."""


class StorageError(Exception):
    """Base class for storage provider failures."""


class StorageConnectionError(StorageError):
    """Raised when a session cannot be established (auth, host, root path)."""


class StorageAccessError(StorageError):
    """Raised when a path exists but may not be read."""


class StorageNotFoundError(StorageError):
    """Raised when a path does not exist on the backend."""


class NotConnectedError(StorageError):
    """Raised when an operation is attempted on a disconnected provider."""
