"""Content type classification.

Images are recognised by extension only. Other local files are identified
from their bytes with libmagic when it is available, falling back to the
platform MIME table.
"""

import logging
import mimetypes
import os
from pathlib import Path

from photocatalog.filesystem.models import FileEntry
from photocatalog.filesystem.paths import parse_filename

try:
    import magic
except ImportError:  # libmagic shared library not installed
    magic = None

logger = logging.getLogger(__name__)

IMAGE_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "bmp": "image/bmp",
    "webp": "image/webp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "heic": "image/heic",
    "heif": "image/heif",
}


def guess_image_type(filename: str | None) -> str | None:
    """Return the image MIME type for a filename, or None for non-images."""
    if not filename:
        return None
    extension = parse_filename(filename).extension
    if extension is None:
        return None
    return IMAGE_TYPES.get(extension)


def is_image_name(filename: str | None) -> bool:
    return guess_image_type(filename) is not None


def is_image_entry(entry: FileEntry) -> bool:
    return not entry.is_directory and is_image_name(entry.name)


def guess_content_type(filename: str | None) -> str | None:
    """Image types first, then the platform MIME table."""
    image_type = guess_image_type(filename)
    if image_type is not None or not filename:
        return image_type
    content_type, _ = mimetypes.guess_type(filename, strict=False)
    return content_type


def detect_content_type(path: str | Path) -> str | None:
    """Content type of a local file, read from its bytes for non-images."""
    name = os.path.basename(os.fspath(path))
    image_type = guess_image_type(name)
    if image_type is not None:
        return image_type

    if magic is not None:
        try:
            return magic.from_file(os.fspath(path), mime=True)
        except (magic.MagicException, OSError) as e:
            logger.debug("Content detection failed for %s: %s", path, e)

    return guess_content_type(name)
