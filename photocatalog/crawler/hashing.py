"""Streaming content hashes."""

import hashlib
from typing import BinaryIO

DEFAULT_CHUNK_SIZE = 8192


class HashComputationError(Exception):
    """Raised when a file cannot be read to the end while hashing."""


def hash_stream(stream: BinaryIO, chunk_size: int = DEFAULT_CHUNK_SIZE) -> str:
    """Return the hex SHA-256 of everything left in the stream."""
    digest = hashlib.sha256()
    try:
        for chunk in iter(lambda: stream.read(chunk_size), b""):
            digest.update(chunk)
    except (OSError, EOFError) as e:
        raise HashComputationError(f"Read failed while hashing: {e}") from e
    return digest.hexdigest()
