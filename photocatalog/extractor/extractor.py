"""MetadataExtractor implementation."""

import logging
from dataclasses import dataclass, field
from typing import BinaryIO

from photocatalog.extractor.exiftool import ExiftoolRunner
from photocatalog.extractor.parser import clean_text, get_first_value, parse_exif_date, to_float, to_int

logger = logging.getLogger(__name__)


@dataclass
class ExifResult:
    """Optical fields and flat tag map read from one image."""

    failed: bool = False
    captured_at_unix: float | None = None
    width: int | None = None
    height: int | None = None
    metadata: dict[str, str] = field(default_factory=dict)

    @classmethod
    def failed_result(cls) -> "ExifResult":
        return cls(failed=True)


class MetadataExtractor:
    """Extracts EXIF fields from image streams using exiftool."""

    def __init__(self, exiftool: ExiftoolRunner | None = None) -> None:
        self.exiftool = exiftool or ExiftoolRunner()

    def extract(self, stream: BinaryIO | None) -> ExifResult:
        """Read an image stream. Never raises; failures return a failed result."""
        if stream is None:
            return ExifResult.failed_result()

        try:
            result = self.exiftool.extract_stream(stream)
        except Exception as e:
            logger.warning("Failed to read image for EXIF extraction: %s", e)
            return ExifResult.failed_result()

        if result.error:
            logger.warning("Failed to extract EXIF metadata: %s", result.error)
            return ExifResult.failed_result()

        meta = result.metadata
        tags: dict[str, str] = {}
        captured_at_unix = self._extract_captured_at(meta, tags)
        width, height = self._extract_dimensions(meta, tags)
        self._extract_camera_info(meta, tags)
        self._extract_gps_info(meta, tags)

        return ExifResult(
            failed=False,
            captured_at_unix=captured_at_unix,
            width=width,
            height=height,
            metadata=tags,
        )

    def _extract_captured_at(self, meta: dict, tags: dict[str, str]) -> float | None:
        captured = parse_exif_date(
            get_first_value(meta, "EXIF:DateTimeOriginal", "XMP:DateTimeOriginal")
        )
        if captured is None:
            return None
        tags["datetime.original"] = captured.isoformat()
        return captured.timestamp()

    def _extract_dimensions(self, meta: dict, tags: dict[str, str]) -> tuple[int | None, int | None]:
        width = to_int(
            get_first_value(meta, "EXIF:ExifImageWidth", "File:ImageWidth", "PNG:ImageWidth")
        )
        height = to_int(
            get_first_value(meta, "EXIF:ExifImageHeight", "File:ImageHeight", "PNG:ImageHeight")
        )
        if width is not None and height is not None:
            tags["image.width"] = str(width)
            tags["image.height"] = str(height)
        return width, height

    def _extract_camera_info(self, meta: dict, tags: dict[str, str]) -> None:
        for key, field_name in (
            ("camera.make", "EXIF:Make"),
            ("camera.model", "EXIF:Model"),
            ("camera.orientation", "EXIF:Orientation"),
        ):
            value = clean_text(meta.get(field_name))
            if value is not None:
                tags[key] = value

    def _extract_gps_info(self, meta: dict, tags: dict[str, str]) -> None:
        # Composite values are already signed by their N/S, E/W refs
        latitude = to_float(get_first_value(meta, "Composite:GPSLatitude", "EXIF:GPSLatitude"))
        longitude = to_float(get_first_value(meta, "Composite:GPSLongitude", "EXIF:GPSLongitude"))
        if latitude is not None and longitude is not None:
            tags["gps.latitude"] = f"{latitude:.6f}"
            tags["gps.longitude"] = f"{longitude:.6f}"

        altitude = to_float(get_first_value(meta, "Composite:GPSAltitude", "EXIF:GPSAltitude"))
        if altitude is not None:
            tags["gps.altitude"] = f"{altitude:.2f}"
