"""EXIF metadata extraction from image streams."""

from photocatalog.extractor.exiftool import ExiftoolNotFoundError, ExiftoolRunner
from photocatalog.extractor.extractor import ExifResult, MetadataExtractor

__all__ = [
    "ExiftoolRunner",
    "ExiftoolNotFoundError",
    "MetadataExtractor",
    "ExifResult",
]
